# hrvstream/hrv_metrics/sqi.py
"""
Signal quality indices for an ECG segment.

    kurtosis  Pearson kurtosis of the waveform (clean ECG is strongly peaked)
    snr       Welch power in the QRS band / power outside it
    rr_cv     population SD / mean of the RR intervals

The thresholds turning these into GOOD / UNCERTAIN / BAD live in
settings.sqi (SQISettings). evaluate() never raises: anything it cannot
measure makes the report BAD and is listed in `reasons`.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np
from scipy.signal import welch
from scipy.stats import kurtosis as _kurtosis

from hrvstream.config.settings import PipelineConfig, SQISettings, settings
from hrvstream.signals.types import RRSeries, TimeSeries


class SQIStatus(str, Enum):
    GOOD = "GOOD"
    UNCERTAIN = "UNCERTAIN"
    BAD = "BAD"


@dataclass(frozen=True)
class SQIReport:
    kurtosis: float
    snr: float
    rr_cv: float
    status: SQIStatus
    reasons: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, object]:
        return {
            "kurtosis": self.kurtosis,
            "snr": self.snr,
            "rr_cv": self.rr_cv,
            "status": self.status.value,
            "reasons": list(self.reasons),
        }


def signal_kurtosis(samples: np.ndarray) -> float:
    if samples.size < 4 or float(np.std(samples)) == 0.0:
        return float("nan")
    return float(_kurtosis(samples, fisher=False, bias=True))


def band_snr(samples: np.ndarray, fs: float, low_hz: float, high_hz: float) -> float:
    """In-band / out-of-band Welch power ratio."""
    nperseg = min(samples.size, int(2 * fs))
    if nperseg < 8:
        return float("nan")
    freqs, psd = welch(samples - np.mean(samples), fs=fs, nperseg=nperseg)
    in_band = (freqs >= low_hz) & (freqs <= high_hz)
    signal_power = float(np.sum(psd[in_band]))
    noise_power = float(np.sum(psd[~in_band]))
    if noise_power <= 0.0:
        return float("inf") if signal_power > 0 else float("nan")
    return signal_power / noise_power


def rr_cv(intervals: np.ndarray) -> float:
    if intervals.size < 2:
        return float("nan")
    mean = float(np.mean(intervals))
    if mean <= 0:
        return float("nan")
    return float(np.std(intervals, ddof=0) / mean)


def evaluate(
    series: Optional[TimeSeries],
    rr: Optional[RRSeries],
    config: Optional[PipelineConfig] = None,
    thresholds: Optional[SQISettings] = None,
) -> SQIReport:
    config = config or PipelineConfig()
    thr = thresholds or settings.sqi
    reasons: List[str] = []
    bad = False

    kurt = snr = float("nan")
    if series is None or series.duration_s < thr.min_duration_s:
        bad = True
        reasons.append(f"waveform shorter than {thr.min_duration_s:g} s")
    else:
        kurt = signal_kurtosis(series.samples)
        snr = band_snr(series.samples, series.fs, config.lowcut_hz, config.highcut_hz)

    cv = rr_cv(rr.intervals) if rr is not None else float("nan")
    if rr is None or len(rr) < 2:
        bad = True
        reasons.append("fewer than 2 RR intervals")

    # BAD rules
    if np.isfinite(snr) and snr < thr.snr_bad:
        bad = True
        reasons.append(f"snr {snr:.3f} < {thr.snr_bad}")
    if np.isfinite(cv) and cv > thr.rr_cv_bad:
        bad = True
        reasons.append(f"rr_cv {cv:.3f} > {thr.rr_cv_bad}")
    if series is not None and not bad and not np.isfinite(kurt):
        bad = True
        reasons.append("kurtosis undefined (flat waveform)")
    if series is not None and not bad and np.isnan(snr):
        bad = True
        reasons.append("snr undefined (segment too short for Welch at this rate)")

    if bad:
        return SQIReport(kurt, snr, cv, SQIStatus.BAD, tuple(reasons))

    # UNCERTAIN rules
    if kurt < thr.kurtosis_good:
        reasons.append(f"kurtosis {kurt:.2f} < {thr.kurtosis_good}")
    if snr < thr.snr_good:
        reasons.append(f"snr {snr:.3f} < {thr.snr_good}")
    if cv > thr.rr_cv_good:
        reasons.append(f"rr_cv {cv:.3f} > {thr.rr_cv_good}")

    status = SQIStatus.UNCERTAIN if reasons else SQIStatus.GOOD
    return SQIReport(kurt, snr, cv, status, tuple(reasons))
