# hrvstream/hrv_metrics/frequency.py
"""
Frequency-domain HRV.

Steps:
    1) place every RR value at its beat time (cumulative sum)
    2) resample on a uniform grid at interp_fs (cubic spline or linear)
    3) remove the mean
    4) Welch PSD (Hann window, 50 % overlap)
    5) integrate VLF / LF / HF bands with the trapezoidal rule
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np
from scipy.integrate import trapezoid
from scipy.interpolate import CubicSpline
from scipy.signal import welch

from hrvstream.config.settings import PipelineConfig
from hrvstream.signals.errors import TooFewSamples
from hrvstream.signals.types import RRSeries


BANDS: Dict[str, Tuple[float, float]] = {
    "vlf": (0.0033, 0.04),
    "lf": (0.04, 0.15),
    "hf": (0.15, 0.40),
}

# shortest resampled tachogram Welch is run on
MIN_GRID_POINTS = 16


@dataclass(frozen=True, eq=False)
class HRVFrequencyMetrics:
    vlf_s2: float
    lf_s2: float
    hf_s2: float
    total_s2: float
    lf_norm: float
    hf_norm: float
    lf_hf: float
    interp_fs: float
    freqs_hz: np.ndarray
    psd_s2_per_hz: np.ndarray

    def to_dict(self) -> Dict[str, float]:
        return {
            "vlf_s2": self.vlf_s2,
            "lf_s2": self.lf_s2,
            "hf_s2": self.hf_s2,
            "total_s2": self.total_s2,
            "lf_norm": self.lf_norm,
            "hf_norm": self.hf_norm,
            "lf_hf": self.lf_hf,
            "interp_fs_hz": self.interp_fs,
        }


def resample_tachogram(rr_s: np.ndarray, interp_fs: float, method: str = "cubic",
                       times_s: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Evenly sampled, mean-removed RR signal.

    times_s: time of the beat closing each interval. Defaults to the running
    sum of rr_s; pass the full-series times when rr_s has gaps.
    """
    t = np.cumsum(rr_s) if times_s is None else np.asarray(times_s, dtype=np.float64)
    t = t - t[0]
    grid = np.arange(0.0, t[-1], 1.0 / interp_fs)
    if method == "cubic":
        resampled = CubicSpline(t, rr_s)(grid)
    else:
        resampled = np.interp(grid, t, rr_s)
    return resampled - np.mean(resampled)


def band_power(freqs: np.ndarray, psd: np.ndarray, low: float, high: float) -> float:
    mask = (freqs >= low) & (freqs < high)
    if np.count_nonzero(mask) < 2:
        return 0.0
    return float(trapezoid(psd[mask], freqs[mask]))


def compute_frequency_domain(
    rr: RRSeries,
    interp_fs: Optional[float] = None,
    config: Optional[PipelineConfig] = None,
) -> HRVFrequencyMetrics:
    """
    Welch band powers of the resampled tachogram.

    Raises:
        TooFewSamples  fewer than min_freq_intervals intervals, or a resampled
                       grid too short for Welch
    """
    config = config or PipelineConfig()
    fs = float(interp_fs if interp_fs is not None else config.interp_fs)

    values, times = rr.intervals, np.cumsum(rr.intervals)
    if config.exclude_artifacts:
        keep = rr.normal_mask()
        values, times = values[keep], times[keep]
    if values.size < config.min_freq_intervals:
        raise TooFewSamples(
            f"frequency-domain HRV needs {config.min_freq_intervals} intervals, got {values.size}",
            stage="frequency",
        )

    signal = resample_tachogram(values, fs, config.interp_method, times_s=times)
    if signal.size < MIN_GRID_POINTS:
        raise TooFewSamples(
            f"resampled tachogram has {signal.size} points at {fs} Hz", stage="frequency"
        )

    nperseg = min(config.welch_nperseg, signal.size)
    freqs, psd = welch(signal, fs=fs, window="hann", nperseg=nperseg, noverlap=nperseg // 2)

    vlf = band_power(freqs, psd, *BANDS["vlf"])
    lf = band_power(freqs, psd, *BANDS["lf"])
    hf = band_power(freqs, psd, *BANDS["hf"])
    lf_hf_sum = lf + hf

    freqs.flags.writeable = False
    psd.flags.writeable = False
    return HRVFrequencyMetrics(
        vlf_s2=vlf,
        lf_s2=lf,
        hf_s2=hf,
        total_s2=vlf + lf + hf,
        lf_norm=float(lf / lf_hf_sum) if lf_hf_sum > 0 else float("nan"),
        hf_norm=float(hf / lf_hf_sum) if lf_hf_sum > 0 else float("nan"),
        lf_hf=float(lf / hf) if hf > 0 else float("nan"),
        interp_fs=fs,
        freqs_hz=freqs,
        psd_s2_per_hz=psd,
    )
