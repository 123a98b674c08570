# hrvstream/hrv_metrics/nonlinear.py
"""
Nonlinear HRV: Poincare SD1 / SD2, sample entropy, DFA alpha1.

Each sub-metric is computed independently; one that cannot be computed is
left as None and its reason is stored in `errors`. Only when all of them
fail does compute_nonlinear() raise.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from hrvstream.config.settings import PipelineConfig
from hrvstream.signals.errors import TooFewSamples
from hrvstream.signals.types import RRSeries


@dataclass(frozen=True)
class HRVNonlinearMetrics:
    sd1_s: Optional[float] = None
    sd2_s: Optional[float] = None
    sd1_sd2: Optional[float] = None
    sampen: Optional[float] = None
    dfa_alpha1: Optional[float] = None
    errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {
            "sd1_s": self.sd1_s,
            "sd2_s": self.sd2_s,
            "sd1_sd2": self.sd1_sd2,
            "sampen": self.sampen,
            "dfa_alpha1": self.dfa_alpha1,
        }


# -------------------- POINCARE -------------------- #

def poincare(rr_s: np.ndarray):
    """SD1 / SD2 in seconds from the variance of successive differences."""
    if rr_s.size < 3:
        raise TooFewSamples(f"Poincare needs 3 intervals, got {rr_s.size}", stage="nonlinear")
    var_diff = float(np.var(np.diff(rr_s), ddof=1))
    sdnn = float(np.std(rr_s, ddof=1))
    sd1 = float(np.sqrt(0.5 * var_diff))
    sd2 = float(np.sqrt(max(2.0 * sdnn ** 2 - 0.5 * var_diff, 0.0)))
    return sd1, sd2


# -------------------- SAMPLE ENTROPY -------------------- #

def _count_matches(x: np.ndarray, m: int, tol: float, n_templates: int) -> int:
    templates = sliding_window_view(x, m)[:n_templates]
    count = 0
    # pairs i < j only, one row at a time so memory stays O(n * m)
    for i in range(n_templates - 1):
        dist = np.max(np.abs(templates[i + 1:] - templates[i]), axis=1)
        count += int(np.count_nonzero(dist <= tol))
    return count


def sample_entropy(rr_s: np.ndarray, m: int = 2, r: float = 0.2, min_intervals: int = 10) -> float:
    """
    SampEn(m, r * SDNN) = -ln(A / B).

    B counts template pairs of length m, A of length m + 1, both over the
    same N - m starting points.
    """
    n = rr_s.size
    if n < max(min_intervals, m + 2):
        raise TooFewSamples(f"sample entropy needs {max(min_intervals, m + 2)} intervals, got {n}",
                            stage="nonlinear")
    tol = r * float(np.std(rr_s, ddof=1))
    n_templates = n - m
    b = _count_matches(rr_s, m, tol, n_templates)
    a = _count_matches(rr_s, m + 1, tol, n_templates)
    if a == 0 or b == 0:
        raise TooFewSamples("sample entropy undefined: no matching templates", stage="nonlinear")
    return float(-np.log(a / b))


# -------------------- DFA -------------------- #

def dfa_alpha1(rr_s: np.ndarray, scales=(4, 16)) -> float:
    """Short-term scaling exponent over box sizes scales[0]..min(scales[1], N // 2)."""
    n = rr_s.size
    lo, hi = scales
    hi = min(hi, n // 2)
    if hi - lo + 1 < 2:
        raise TooFewSamples(f"DFA needs at least two box sizes, N={n}", stage="nonlinear")

    profile = np.cumsum(rr_s - np.mean(rr_s))
    sizes = np.arange(lo, hi + 1)
    fluct = np.empty(sizes.size)
    for k, size in enumerate(sizes):
        n_boxes = n // size
        boxes = profile[: n_boxes * size].reshape(n_boxes, size)
        x = np.arange(size, dtype=np.float64)
        xc = x - x.mean()
        slope = (boxes - boxes.mean(axis=1, keepdims=True)) @ xc / np.sum(xc ** 2)
        trend = boxes.mean(axis=1, keepdims=True) + slope[:, None] * xc
        fluct[k] = np.sqrt(np.mean((boxes - trend) ** 2))

    if np.any(fluct <= 0):
        raise TooFewSamples("DFA undefined: zero fluctuation", stage="nonlinear")
    alpha, _ = np.polyfit(np.log(sizes), np.log(fluct), 1)
    return float(alpha)


def compute_nonlinear(rr: RRSeries, config: Optional[PipelineConfig] = None) -> HRVNonlinearMetrics:
    """
    Raises:
        TooFewSamples  every sub-metric failed
    """
    config = config or PipelineConfig()
    values = rr.normal_intervals() if config.exclude_artifacts else rr.intervals
    errors: Dict[str, str] = {}
    out: Dict[str, Optional[float]] = {}

    try:
        sd1, sd2 = poincare(values)
        out["sd1_s"], out["sd2_s"] = sd1, sd2
        out["sd1_sd2"] = sd1 / sd2 if sd2 > 0 else None
    except TooFewSamples as exc:
        errors["poincare"] = exc.message

    try:
        out["sampen"] = sample_entropy(values, config.sampen_m, config.sampen_r, config.sampen_min_intervals)
    except TooFewSamples as exc:
        errors["sampen"] = exc.message

    try:
        out["dfa_alpha1"] = dfa_alpha1(values, config.dfa_scales)
    except TooFewSamples as exc:
        errors["dfa_alpha1"] = exc.message

    if not out:
        raise TooFewSamples("; ".join(errors.values()), stage="nonlinear")
    return HRVNonlinearMetrics(errors=errors, **out)
