# hrvstream/signals/types.py
"""
Core value types passed between pipeline stages.

All three containers are immutable: their numpy arrays are private copies
with the WRITEABLE flag cleared, so the same object can be handed from the
worker thread to the consumer thread without any locking.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Optional, Sequence, Tuple, Union

import numpy as np

from hrvstream.signals.errors import ConfigurationError, EmptyInput


ArrayLike = Union[Sequence[float], np.ndarray]


def _frozen_array(values: ArrayLike, dtype=np.float64) -> np.ndarray:
    arr = np.array(values, dtype=dtype, copy=True).reshape(-1)
    arr.flags.writeable = False
    return arr


# -------------------- TIME SERIES -------------------- #

@dataclass(frozen=True, eq=False)
class TimeSeries:
    """
    Uniformly sampled waveform.

    Attributes:
        samples:
            1D float64 array (read-only).
        fs:
            Sampling rate in Hz, strictly positive.
    """

    samples: np.ndarray
    fs: float

    def __post_init__(self) -> None:
        fs = float(self.fs)
        if not np.isfinite(fs) or fs <= 0:
            raise ConfigurationError(f"sampling rate must be positive, got {self.fs!r}", stage="input")
        object.__setattr__(self, "fs", fs)
        object.__setattr__(self, "samples", _frozen_array(self.samples))

    def __len__(self) -> int:
        return int(self.samples.size)

    @property
    def duration_s(self) -> float:
        return len(self) / self.fs

    def times(self) -> np.ndarray:
        return np.arange(len(self), dtype=np.float64) / self.fs

    def concat(self, other: "TimeSeries") -> "TimeSeries":
        if other.fs != self.fs:
            raise ConfigurationError(
                f"cannot append a {other.fs} Hz chunk to a {self.fs} Hz series", stage="input"
            )
        return TimeSeries(np.concatenate([self.samples, other.samples]), self.fs)


# -------------------- EVENTS -------------------- #

@dataclass(frozen=True, eq=False)
class Events:
    """
    Point events on a sample grid (detected beats or external annotations).

    Attributes:
        indices:
            Strictly increasing, non-negative sample indices (int64, read-only).
        fs:
            Sampling rate the indices refer to (Hz).
        labels:
            Optional label per event.
        durations:
            Optional duration per event, in seconds.
    """

    indices: np.ndarray
    fs: float
    labels: Optional[Tuple[Optional[str], ...]] = None
    durations: Optional[Tuple[Optional[float], ...]] = None

    def __post_init__(self) -> None:
        fs = float(self.fs)
        if not np.isfinite(fs) or fs <= 0:
            raise ConfigurationError(f"sampling rate must be positive, got {self.fs!r}", stage="input")
        object.__setattr__(self, "fs", fs)

        idx = _frozen_array(self.indices, dtype=np.int64)
        if idx.size and idx[0] < 0:
            raise ConfigurationError("event indices must be non-negative", stage="input")
        if idx.size > 1 and np.any(np.diff(idx) <= 0):
            raise ConfigurationError("event indices must be strictly increasing", stage="input")
        object.__setattr__(self, "indices", idx)

        for name in ("labels", "durations"):
            values = getattr(self, name)
            if values is None:
                continue
            values = tuple(values)
            if len(values) != idx.size:
                raise ConfigurationError(
                    f"{name} has {len(values)} entries for {idx.size} events", stage="input"
                )
            object.__setattr__(self, name, values)

    def __len__(self) -> int:
        return int(self.indices.size)

    def times_s(self) -> np.ndarray:
        return self.indices.astype(np.float64) / self.fs

    def validate_against(self, series: TimeSeries) -> None:
        """Raise if any index falls outside `series` or the rates disagree."""
        if series.fs != self.fs:
            raise ConfigurationError(
                f"events at {self.fs} Hz paired with a {series.fs} Hz series", stage="input"
            )
        if len(self) and int(self.indices[-1]) >= len(series):
            raise ConfigurationError(
                f"event index {int(self.indices[-1])} outside series of length {len(series)}",
                stage="input",
            )

    @classmethod
    def from_times(
        cls,
        times_s: Iterable[float],
        fs: float,
        labels: Optional[Sequence[Optional[str]]] = None,
        durations: Optional[Sequence[Optional[float]]] = None,
    ) -> "Events":
        """
        Convert onsets in seconds to sample indices.

        Onsets are rounded to the nearest sample and clipped at 0. When two
        onsets land on the same sample only the first is kept, so the result
        always satisfies the strictly-increasing invariant.
        """
        if fs <= 0:
            raise ConfigurationError(f"sampling rate must be positive, got {fs!r}", stage="input")
        t = np.asarray(list(times_s), dtype=np.float64)
        order = np.argsort(t, kind="stable")
        idx = np.rint(np.maximum(t[order], 0.0) * fs).astype(np.int64)
        keep = np.ones(idx.size, dtype=bool)
        if idx.size > 1:
            keep[1:] = np.diff(idx) > 0

        def _pick(values):
            if values is None:
                return None
            values = list(values)
            return tuple(values[i] for i, k in zip(order, keep) if k)

        return cls(idx[keep], fs, labels=_pick(labels), durations=_pick(durations))


# -------------------- RR SERIES -------------------- #

class ArtifactClass(str, Enum):
    NORMAL = "normal"
    ECTOPIC = "ectopic"
    MISSED = "missed"
    EXTRA = "extra"


@dataclass(frozen=True, eq=False)
class RRSeries:
    """
    Beat-to-beat intervals in seconds with one artifact flag per interval.

    `start_s` is the time of the first beat, so beat k sits at
    start_s + sum(intervals[:k]).
    """

    intervals: np.ndarray
    artifacts: Tuple[ArtifactClass, ...] = field(default=())
    start_s: float = 0.0

    def __post_init__(self) -> None:
        rr = _frozen_array(self.intervals)
        if rr.size == 0:
            raise EmptyInput("RR series needs at least one interval")
        if not np.all(np.isfinite(rr)) or np.any(rr <= 0):
            raise ConfigurationError("RR intervals must be finite and strictly positive", stage="rr")
        object.__setattr__(self, "intervals", rr)

        flags = tuple(ArtifactClass(a) for a in self.artifacts) if self.artifacts else (
            (ArtifactClass.NORMAL,) * rr.size
        )
        if len(flags) != rr.size:
            raise ConfigurationError(
                f"{len(flags)} artifact flags for {rr.size} intervals", stage="rr"
            )
        object.__setattr__(self, "artifacts", flags)
        object.__setattr__(self, "start_s", float(self.start_s))

    def __len__(self) -> int:
        return int(self.intervals.size)

    @classmethod
    def from_intervals(cls, values: ArrayLike, start_s: float = 0.0) -> "RRSeries":
        """Wrap raw RR values (seconds); NaNs are dropped, flags default to NORMAL."""
        arr = np.asarray(values, dtype=np.float64).reshape(-1)
        arr = arr[~np.isnan(arr)]
        return cls(arr, start_s=start_s)

    def normal_mask(self) -> np.ndarray:
        return np.array([a is ArtifactClass.NORMAL for a in self.artifacts], dtype=bool)

    def normal_intervals(self) -> np.ndarray:
        return self.intervals[self.normal_mask()]

    def beat_times_s(self) -> np.ndarray:
        return self.start_s + np.concatenate([[0.0], np.cumsum(self.intervals)])

    def artifact_counts(self) -> Dict[str, int]:
        counts = {a.value: 0 for a in ArtifactClass}
        for a in self.artifacts:
            counts[a.value] += 1
        return counts
