# hrvstream/hrv_metrics/rr_builder.py
"""
Beat events -> RR interval series with artifact flags.

Each interval is compared with the median of its neighbours (up to
`artifact_radius` on each side, the interval itself excluded). A relative
deviation above `artifact_threshold` flags it:

    short, and together with an adjacent short interval ~ the local median
        -> EXTRA     (a spurious beat split one interval in two)
    other short intervals
        -> ECTOPIC   (premature beat)
    long
        -> MISSED    (a beat was not detected, two intervals merged)

Flagged intervals stay in the series; the HRV engines decide whether to use
them (PipelineConfig.exclude_artifacts).
"""

from typing import List

import numpy as np

from hrvstream.config.settings import PipelineConfig
from hrvstream.signals.errors import ConfigurationError, EmptyInput
from hrvstream.signals.types import ArtifactClass, Events, RRSeries


def _local_medians(rr: np.ndarray, radius: int) -> np.ndarray:
    med = np.empty_like(rr)
    n = rr.size
    for i in range(n):
        neighbours = np.concatenate([rr[max(0, i - radius):i], rr[i + 1:min(n, i + radius + 1)]])
        med[i] = np.median(neighbours) if neighbours.size else rr[i]
    return med


def classify_intervals(rr: np.ndarray, threshold: float, radius: int) -> List[ArtifactClass]:
    """Artifact class per interval (seconds in, one flag per interval out)."""
    rr = np.asarray(rr, dtype=np.float64)
    if rr.size < 3:
        return [ArtifactClass.NORMAL] * rr.size

    med = _local_medians(rr, radius)
    dev = (rr - med) / med
    short = dev < -threshold

    flags: List[ArtifactClass] = []
    for i, value in enumerate(rr):
        if dev[i] > threshold:
            flags.append(ArtifactClass.MISSED)
        elif short[i]:
            pair = False
            for j in (i - 1, i + 1):
                if 0 <= j < rr.size and short[j]:
                    if abs(value + rr[j] - med[i]) <= threshold * med[i]:
                        pair = True
            flags.append(ArtifactClass.EXTRA if pair else ArtifactClass.ECTOPIC)
        else:
            flags.append(ArtifactClass.NORMAL)
    return flags


def build(events: Events, config: PipelineConfig) -> RRSeries:
    """
    Successive differences of beat times, in seconds.

    Raises:
        EmptyInput          fewer than two events
        ConfigurationError  events sampled at a different rate than config.fs
    """
    if len(events) < 2:
        raise EmptyInput(f"need at least 2 beats to form an RR interval, got {len(events)}")
    if events.fs != config.fs:
        raise ConfigurationError(
            f"events at {events.fs} Hz, config expects {config.fs} Hz", stage="rr"
        )

    rr = np.diff(events.indices).astype(np.float64) / events.fs
    flags = classify_intervals(rr, config.artifact_threshold, config.artifact_radius)
    return RRSeries(rr, artifacts=tuple(flags), start_s=float(events.indices[0]) / events.fs)
