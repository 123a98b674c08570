# hrvstream/hrv_metrics/service_hrv.py
"""
Batch HRV service.

Responsibilities:
    - analyze_events(): events (+ optional waveform) -> RR, time, frequency,
      nonlinear and SQI results. The streaming router calls exactly this
      function, so live and batch results are identical.
    - run_pipeline(): the full waveform -> metrics path used by the CLI.
    - metrics_to_json(): flat, unit-suffixed output record.
    - load_rr_csv() / load_ecg_csv(): tabular input helpers.
"""

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import numpy as np
import pandas as pd

from hrvstream.config.settings import PipelineConfig, settings
from hrvstream.detection.detector import detect
from hrvstream.hrv_metrics.frequency import HRVFrequencyMetrics, compute_frequency_domain
from hrvstream.hrv_metrics.metrics import HRVTimeMetrics, compute_time_domain
from hrvstream.hrv_metrics.nonlinear import HRVNonlinearMetrics, compute_nonlinear
from hrvstream.hrv_metrics.rr_builder import build
from hrvstream.hrv_metrics.sqi import SQIReport, evaluate
from hrvstream.signals.errors import ConfigurationError, EmptyInput, PipelineError
from hrvstream.signals.types import Events, RRSeries, TimeSeries


# order in which strict mode reports failures
STAGES: Tuple[str, ...] = ("detect", "rr", "time", "frequency", "nonlinear")


@dataclass(frozen=True)
class PipelineResult:
    events: Optional[Events] = None
    rr: Optional[RRSeries] = None
    time: Optional[HRVTimeMetrics] = None
    frequency: Optional[HRVFrequencyMetrics] = None
    nonlinear: Optional[HRVNonlinearMetrics] = None
    sqi: Optional[SQIReport] = None
    errors: Dict[str, PipelineError] = field(default_factory=dict)

    def error_messages(self) -> Dict[str, str]:
        return {name: str(exc) for name, exc in self.errors.items()}

    def first_error(self) -> Optional[PipelineError]:
        for stage in STAGES:
            if stage in self.errors:
                return self.errors[stage]
        return None


# -------------------- PER-CATEGORY COMPUTATION -------------------- #

def compute_rr(events: Events, config: PipelineConfig) -> RRSeries:
    return build(events, config)


def compute_time(rr: RRSeries, config: PipelineConfig) -> HRVTimeMetrics:
    return compute_time_domain(rr, config)


def compute_frequency(rr: RRSeries, config: PipelineConfig) -> HRVFrequencyMetrics:
    return compute_frequency_domain(rr, config.interp_fs, config)


def compute_nonlinear_metrics(rr: RRSeries, config: PipelineConfig) -> HRVNonlinearMetrics:
    return compute_nonlinear(rr, config)


HRV_ENGINES = {
    "time": compute_time,
    "frequency": compute_frequency,
    "nonlinear": compute_nonlinear_metrics,
}


def analyze_events(
    events: Events,
    series: Optional[TimeSeries] = None,
    config: Optional[PipelineConfig] = None,
) -> PipelineResult:
    """
    Everything downstream of the detector. Failures are collected per
    category; SQI is always present.
    """
    config = (config or settings.pipeline).validate()
    errors: Dict[str, PipelineError] = {}
    results: Dict[str, object] = {}

    rr: Optional[RRSeries] = None
    try:
        rr = compute_rr(events, config)
    except PipelineError as exc:
        errors["rr"] = exc

    if rr is not None:
        for name, engine in HRV_ENGINES.items():
            try:
                results[name] = engine(rr, config)
            except PipelineError as exc:
                errors[name] = exc
    else:
        for name in HRV_ENGINES:
            errors[name] = EmptyInput("no RR series available", stage=name)

    return PipelineResult(
        events=events,
        rr=rr,
        sqi=evaluate(series, rr, config),
        errors=errors,
        **results,
    )


def analyze_rr(rr: RRSeries, config: Optional[PipelineConfig] = None) -> PipelineResult:
    """HRV engines on a ready-made RR series (no waveform, no SQI)."""
    config = (config or settings.pipeline).validate()
    errors: Dict[str, PipelineError] = {}
    results: Dict[str, object] = {}
    for name, engine in HRV_ENGINES.items():
        try:
            results[name] = engine(rr, config)
        except PipelineError as exc:
            errors[name] = exc
    return PipelineResult(rr=rr, errors=errors, **results)


def run_pipeline(
    series: Optional[TimeSeries] = None,
    events: Optional[Events] = None,
    config: Optional[PipelineConfig] = None,
    strict: bool = True,
) -> PipelineResult:
    """
    Waveform and / or annotations -> metrics.

    With `events` given the detector is skipped. strict=True raises the first
    failure (in STAGES order); strict=False returns it inside `errors`.
    """
    config = (config or settings.pipeline).validate()
    if series is None and events is None:
        raise EmptyInput("run_pipeline needs a waveform or annotated events", stage="input")

    if events is None:
        try:
            events = detect(series, config)
        except PipelineError as exc:
            if strict:
                raise
            return PipelineResult(
                sqi=evaluate(series, None, config),
                errors={"detect": exc},
            )
    elif series is not None:
        events.validate_against(series)

    result = analyze_events(events, series, config)
    if strict:
        first = result.first_error()
        if first is not None:
            raise first
    return result


# -------------------- JSON OUTPUT -------------------- #

def _clean(value):
    if isinstance(value, (np.floating, float)):
        value = float(value)
        return None if math.isnan(value) else value
    if isinstance(value, np.integer):
        return int(value)
    return value


def metrics_to_json(result: PipelineResult) -> Dict[str, object]:
    """
    Flat record with unit-suffixed keys (_s, _s2, _bpm, _hz; plain ratios).
    NaN values become None (JSON null).
    """
    out: Dict[str, object] = {}
    out["n_events"] = len(result.events) if result.events is not None else 0

    if result.rr is not None:
        out["n_intervals"] = len(result.rr)
        for name, count in result.rr.artifact_counts().items():
            out[f"artifacts_{name}"] = count
    if result.time is not None:
        out.update(result.time.to_dict())
    if result.frequency is not None:
        out.update(result.frequency.to_dict())
    if result.nonlinear is not None:
        out.update(result.nonlinear.to_dict())
    if result.sqi is not None:
        out["sqi_kurtosis"] = result.sqi.kurtosis
        out["sqi_snr"] = result.sqi.snr
        out["sqi_rr_cv"] = result.sqi.rr_cv
        out["sqi_status"] = result.sqi.status.value
    for name, message in result.error_messages().items():
        out[f"error_{name}"] = message
    if result.nonlinear is not None:
        for name, message in result.nonlinear.errors.items():
            out[f"error_nonlinear_{name}"] = message

    return {key: _clean(value) for key, value in out.items()}


# -------------------- FIGURE DATA -------------------- #

def hr_timeseries(rr: RRSeries, max_points: int = 500) -> Tuple[np.ndarray, np.ndarray]:
    """
    Instantaneous heart rate (bpm) at each beat time (s).
    Long series are cut to the last max_points values.
    """
    t_sec = rr.beat_times_s()[1:]
    hr_bpm = 60.0 / rr.intervals
    if t_sec.size > max_points:
        t_sec = t_sec[-max_points:]
        hr_bpm = hr_bpm[-max_points:]
    return t_sec, hr_bpm


def poincare_points(rr: RRSeries, max_points: int = 1000) -> Tuple[np.ndarray, np.ndarray]:
    """RR_n (x) against RR_n+1 (y) in seconds."""
    x = rr.intervals[:-1]
    y = rr.intervals[1:]
    if x.size > max_points:
        x = x[-max_points:]
        y = y[-max_points:]
    return x, y


# -------------------- INPUT FILES -------------------- #

PathLike = Union[str, Path]


def load_rr_csv(path: PathLike) -> RRSeries:
    """
    RR intervals from a CSV file.

    Accepted layouts:
        - a column named 'rr' (seconds) or 'rr_ms' (milliseconds)
        - a single header-less column of seconds
    """
    csv_path = Path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"RR file not found: {csv_path}")

    df = pd.read_csv(csv_path)
    columns = [str(c).strip().lower() for c in df.columns]
    df.columns = columns

    if "rr" in columns:
        rr_sec = df["rr"].to_numpy(dtype=float)
    elif "rr_ms" in columns:
        rr_sec = df["rr_ms"].to_numpy(dtype=float) / 1000.0
    else:
        raw = pd.read_csv(csv_path, header=None)
        if raw.shape[1] != 1:
            raise ConfigurationError(
                f"RR column not found in {csv_path}. Expected 'rr', 'rr_ms' or a single column; "
                f"got columns: {columns}",
                stage="input",
            )
        rr_sec = pd.to_numeric(raw.iloc[:, 0], errors="coerce").to_numpy(dtype=float)

    return RRSeries.from_intervals(rr_sec)


def load_ecg_csv(path: PathLike, fs: float, column: Optional[str] = None) -> TimeSeries:
    """ECG samples from a CSV file (one value per row, or a named column)."""
    csv_path = Path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"ECG file not found: {csv_path}")
    if column is None:
        df = pd.read_csv(csv_path, header=None)
        values = pd.to_numeric(df.iloc[:, -1], errors="coerce")
    else:
        df = pd.read_csv(csv_path)
        if column not in df.columns:
            raise ConfigurationError(f"column {column!r} not in {list(df.columns)}", stage="input")
        values = pd.to_numeric(df[column], errors="coerce")
    samples = values.dropna().to_numpy(dtype=float)
    return TimeSeries(samples, fs)


def rr_table(rr: RRSeries) -> pd.DataFrame:
    """One row per interval: beat time, RR, artifact flag."""
    return pd.DataFrame(
        {
            "beat_time_s": rr.beat_times_s()[1:],
            "rr_s": rr.intervals,
            "artifact": [a.value for a in rr.artifacts],
        }
    )
