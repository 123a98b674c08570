# hrvstream/config/settings.py
"""
Central configuration for hrvstream.

Every tunable lives here, grouped per concern:
    - file system paths (logs, recordings)
    - Kafka connection for the live ECG source
    - PipelineConfig: one immutable record per pipeline invocation
    - SQI status thresholds
    - streaming router queue sizes / backpressure
    - HTTP service

Usage:
    from hrvstream.config.settings import settings, PipelineConfig

    cfg = settings.pipeline.replace(fs=360.0)
"""

import os
from dataclasses import dataclass, field, fields, replace as dc_replace
from pathlib import Path
from typing import Any, Dict, Tuple

from hrvstream.signals.errors import ConfigurationError


# Project root: .../package
BASE_DIR = Path(__file__).resolve().parents[2]


@dataclass(frozen=True)
class PathSettings:
    """
    File and directory locations.

    Environment:
        HRVSTREAM_LOG_DIR
        HRVSTREAM_RECORDINGS_DIR
    """

    base_dir: Path = BASE_DIR
    log_dir: Path = Path(os.getenv("HRVSTREAM_LOG_DIR", str(BASE_DIR / "logs")))
    recordings_dir: Path = Path(os.getenv("HRVSTREAM_RECORDINGS_DIR", str(BASE_DIR / "data" / "recordings")))


@dataclass(frozen=True)
class KafkaSettings:
    """
    Kafka connection for the live ECG chunk source.

    Environment:
        KAFKA_BOOTSTRAP
        KAFKA_ECG_TOPIC
        KAFKA_GROUP_ID
    """

    bootstrap_servers: str = os.getenv("KAFKA_BOOTSTRAP", "localhost:9092")
    ecg_topic: str = os.getenv("KAFKA_ECG_TOPIC", "ecg-stream")
    group_id: str = os.getenv("KAFKA_GROUP_ID", "hrvstream-router")


@dataclass(frozen=True)
class PipelineConfig:
    """
    Immutable parameter record shared by the batch path and the router.

    Detector:
        fs                     sampling rate of the waveform (Hz)
        lowcut_hz, highcut_hz  QRS band-pass cutoffs (Pan & Tompkins: 5-15 Hz)
        filter_order           Butterworth order of the band-pass
        integration_window_s   moving-window integration length (150 ms)
        min_rr_s               refractory period between beats
        threshold_scale        search-back trigger, multiple of the expected RR
        search_back_s          how far back a search-back may look
        learning_s             initial window used to seed peak levels

    RR builder:
        artifact_threshold     relative deviation from the local median
        artifact_radius        neighbours taken on each side for the median
        exclude_artifacts      compute HRV on NORMAL intervals only

    Frequency domain:
        interp_fs              tachogram resampling rate (Hz)
        interp_method          "cubic" or "linear"
        welch_nperseg          Welch segment length (samples of the resampled grid)
        min_freq_intervals     minimum RR count (~2 min at adult heart rates)

    Nonlinear:
        sampen_m, sampen_r     embedding dimension, tolerance as a fraction of SDNN
        sampen_min_intervals   minimum RR count for sample entropy
        dfa_scales             (min, max) box sizes in beats for DFA alpha1
    """

    fs: float = 250.0
    lowcut_hz: float = 5.0
    highcut_hz: float = 15.0
    filter_order: int = 2
    integration_window_s: float = 0.150
    min_rr_s: float = 0.25
    threshold_scale: float = 1.66
    search_back_s: float = 2.0
    learning_s: float = 2.0

    artifact_threshold: float = 0.20
    artifact_radius: int = 5
    exclude_artifacts: bool = False

    interp_fs: float = 4.0
    interp_method: str = "cubic"
    welch_nperseg: int = 256
    min_freq_intervals: int = 100

    sampen_m: int = 2
    sampen_r: float = 0.2
    sampen_min_intervals: int = 10
    dfa_scales: Tuple[int, int] = (4, 16)

    def validate(self) -> "PipelineConfig":
        """Raise ConfigurationError on inconsistent values, return self otherwise."""
        if self.fs <= 0:
            raise ConfigurationError(f"fs must be positive, got {self.fs}")
        if not 0 < self.lowcut_hz < self.highcut_hz:
            raise ConfigurationError(
                f"band-pass needs 0 < lowcut < highcut, got {self.lowcut_hz}..{self.highcut_hz} Hz"
            )
        if self.highcut_hz >= self.fs / 2.0:
            raise ConfigurationError(
                f"highcut {self.highcut_hz} Hz must be below Nyquist ({self.fs / 2.0} Hz)"
            )
        if self.filter_order < 1:
            raise ConfigurationError("filter_order must be >= 1")
        for name in ("integration_window_s", "min_rr_s", "search_back_s", "learning_s", "interp_fs"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")
        if self.threshold_scale <= 1.0:
            raise ConfigurationError("threshold_scale must be > 1")
        if not 0 < self.artifact_threshold < 1:
            raise ConfigurationError("artifact_threshold must be in (0, 1)")
        if self.artifact_radius < 1:
            raise ConfigurationError("artifact_radius must be >= 1")
        if self.interp_method not in ("cubic", "linear"):
            raise ConfigurationError(f"unknown interp_method {self.interp_method!r}")
        if self.welch_nperseg < 8:
            raise ConfigurationError("welch_nperseg must be >= 8")
        if self.sampen_m < 1 or self.sampen_r <= 0:
            raise ConfigurationError("sample entropy needs m >= 1 and r > 0")
        lo, hi = self.dfa_scales
        if not 2 <= lo < hi:
            raise ConfigurationError(f"dfa_scales must satisfy 2 <= min < max, got {self.dfa_scales}")
        return self

    def replace(self, **changes: Any) -> "PipelineConfig":
        """Copy with `changes` applied; the copy is validated."""
        return dc_replace(self, **changes).validate()

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class SQISettings:
    """
    Fixed thresholds mapping (kurtosis, snr, rr_cv) to a quality status.

    BAD:        snr < snr_bad  or  rr_cv > rr_cv_bad
    UNCERTAIN:  kurtosis < kurtosis_good  or  snr < snr_good  or  rr_cv > rr_cv_good
    GOOD:       otherwise

    snr is the ratio of Welch power inside the QRS band to the power outside it.
    Inputs shorter than min_duration_s are reported as BAD.
    """

    kurtosis_good: float = 5.0
    snr_good: float = 0.5
    snr_bad: float = 0.1
    rr_cv_good: float = 0.15
    rr_cv_bad: float = 0.30
    min_duration_s: float = 2.0


@dataclass(frozen=True)
class StreamingSettings:
    """
    Router queues and backpressure.
    """

    command_queue_size: int = 32
    update_queue_size: int = 32
    # producers wait at most this long on a full command queue, then drop
    put_timeout_s: float = 0.5
    default_stream_id: str = "ecg"


@dataclass(frozen=True)
class StoreSettings:
    """
    Limits for the figure data kept in snapshots.
    """

    max_waveform_points: int = 2048


@dataclass(frozen=True)
class ApiSettings:
    """
    HTTP service settings.
    """

    host: str = os.getenv("HRVSTREAM_API_HOST", "127.0.0.1")
    port: int = int(os.getenv("HRVSTREAM_API_PORT", "8000"))
    # start the Kafka ECG consumer together with the service
    enable_kafka: bool = os.getenv("HRVSTREAM_ENABLE_KAFKA", "1") == "1"


@dataclass(frozen=True)
class AppSettings:
    paths: PathSettings = field(default_factory=PathSettings)
    kafka: KafkaSettings = field(default_factory=KafkaSettings)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    sqi: SQISettings = field(default_factory=SQISettings)
    streaming: StreamingSettings = field(default_factory=StreamingSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    api: ApiSettings = field(default_factory=ApiSettings)


# Single global configuration object
settings = AppSettings()
