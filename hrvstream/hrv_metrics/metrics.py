# hrvstream/hrv_metrics/metrics.py
# Time-domain HRV metrics from RR intervals (seconds).

from dataclasses import asdict, dataclass
from typing import Dict, Optional, Sequence, Union

import numpy as np

from hrvstream.config.settings import PipelineConfig
from hrvstream.signals.errors import TooFewSamples
from hrvstream.signals.types import RRSeries


ArrayLike = Union[Sequence[float], np.ndarray]

NN50_THRESHOLD_S = 0.050


@dataclass(frozen=True)
class HRVTimeMetrics:
    n_beats: int
    avnn_s: float
    sdnn_s: float
    rmssd_s: float
    nn50: int
    pnn50: float          # fraction 0..1
    mean_hr_bpm: float
    hr_min_bpm: float
    hr_max_bpm: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def _select(rr: RRSeries, config: Optional[PipelineConfig]) -> np.ndarray:
    """Intervals used for statistics; NORMAL only when exclude_artifacts is set."""
    if config is not None and config.exclude_artifacts:
        return rr.normal_intervals()
    return rr.intervals


def welford_sd(values: ArrayLike) -> float:
    """Sample standard deviation (ddof=1) by Welford's online update."""
    count = 0
    mean = 0.0
    m2 = 0.0
    for x in np.asarray(values, dtype=np.float64):
        count += 1
        delta = x - mean
        mean += delta / count
        m2 += delta * (x - mean)
    if count < 2:
        return float("nan")
    return float(np.sqrt(m2 / (count - 1)))


def rmssd(rr_s: ArrayLike) -> float:
    """Root mean square of successive differences (s)."""
    rr = np.asarray(rr_s, dtype=np.float64)
    if rr.size < 2:
        return float("nan")
    diff = np.diff(rr)
    return float(np.sqrt(np.mean(diff ** 2)))


def nn50(rr_s: ArrayLike, threshold_s: float = NN50_THRESHOLD_S) -> int:
    """Counts successive differences strictly greater than threshold_s."""
    rr = np.asarray(rr_s, dtype=np.float64)
    if rr.size < 2:
        return 0
    return int(np.sum(np.abs(np.diff(rr)) > threshold_s))


def pnn50(rr_s: ArrayLike, threshold_s: float = NN50_THRESHOLD_S) -> float:
    """NN50 as a fraction of the (n - 1) successive pairs."""
    rr = np.asarray(rr_s, dtype=np.float64)
    if rr.size < 2:
        return float("nan")
    return float(nn50(rr, threshold_s) / (rr.size - 1))


def compute_time_domain(rr: RRSeries, config: Optional[PipelineConfig] = None) -> HRVTimeMetrics:
    """
    AVNN, SDNN, RMSSD, NN50 / pNN50 and heart-rate summary.

    Raises:
        TooFewSamples  fewer than two usable intervals
    """
    values = _select(rr, config)
    if values.size < 2:
        raise TooFewSamples(f"time-domain HRV needs at least 2 intervals, got {values.size}")

    hr = 60.0 / values
    return HRVTimeMetrics(
        n_beats=int(values.size) + 1,
        avnn_s=float(np.mean(values)),
        sdnn_s=welford_sd(values),
        rmssd_s=rmssd(values),
        nn50=nn50(values),
        pnn50=pnn50(values),
        mean_hr_bpm=float(60.0 / np.mean(values)),
        hr_min_bpm=float(np.min(hr)),
        hr_max_bpm=float(np.max(hr)),
    )
