# hrvstream/streaming/store.py
"""
Consumer-side store of derived data.

Responsibilities:
    - submit(): stage raw router updates and mark categories dirty. Never computes.
    - prepare(): resolve the dirty categories of one stream (adopting results
      the worker already computed when they match the store's config),
      bump the stream version and hand out an immutable Snapshot.
    - set_interp_fs(): change the tachogram resampling rate; only the
      frequency category of each ECG stream becomes dirty.

Ownership:
    A Store belongs to exactly one thread (the consumer / presentation
    thread). It has no locks.

Categories:
    waveform, rr, time, frequency, nonlinear, sqi, rr_figure
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, Mapping, Optional, Tuple

import numpy as np

from hrvstream.config.settings import PipelineConfig, StoreSettings, settings
from hrvstream.hrv_metrics.frequency import HRVFrequencyMetrics
from hrvstream.hrv_metrics.metrics import HRVTimeMetrics
from hrvstream.hrv_metrics.nonlinear import HRVNonlinearMetrics
from hrvstream.hrv_metrics.service_hrv import HRV_ENGINES, compute_rr, hr_timeseries
from hrvstream.hrv_metrics.sqi import SQIReport, evaluate
from hrvstream.signals.errors import EmptyInput, PipelineError
from hrvstream.signals.types import Events, RRSeries, TimeSeries
from hrvstream.streaming.router import (
    EcgUpdate,
    EventsUpdate,
    HrvUpdate,
    RecordingUpdate,
    StreamUpdate,
)
from hrvstream.utils.logging_utils import get_logger

logger = get_logger(module_name="store", logfile_name="store.log")


class Modality(str, Enum):
    ECG = "ECG"
    EEG = "EEG"
    EYE = "EYE"


CATEGORIES: Tuple[str, ...] = ("waveform", "rr", "time", "frequency", "nonlinear", "sqi", "rr_figure")
HRV_CATEGORIES: Tuple[str, ...] = ("rr", "time", "frequency", "nonlinear", "sqi", "rr_figure")
WAVEFORM_CATEGORIES: Tuple[str, ...] = ("waveform", "sqi")


@dataclass(frozen=True, eq=False)
class FigureData:
    """x / y pairs ready for plotting (read-only arrays)."""

    x: np.ndarray
    y: np.ndarray

    def __post_init__(self) -> None:
        for name in ("x", "y"):
            arr = np.array(getattr(self, name), dtype=np.float64, copy=True)
            arr.flags.writeable = False
            object.__setattr__(self, name, arr)

    def __len__(self) -> int:
        return int(self.x.size)


@dataclass(frozen=True, eq=False)
class Snapshot:
    stream_id: str
    modality: Modality
    version: int
    series: Optional[TimeSeries]
    events: Optional[Events]
    rr: Optional[RRSeries]
    time: Optional[HRVTimeMetrics]
    frequency: Optional[HRVFrequencyMetrics]
    nonlinear: Optional[HRVNonlinearMetrics]
    sqi: Optional[SQIReport]
    waveform_figure: Optional[FigureData]
    rr_figure: Optional[FigureData]
    errors: Mapping[str, str]
    dirty: Mapping[str, bool]
    refreshed: Tuple[str, ...] = ()


class _Entry:
    def __init__(self, stream_id: str, modality: Modality) -> None:
        self.stream_id = stream_id
        self.modality = modality
        self.staged_version = 0
        self.series_version = 0
        self.series: Optional[TimeSeries] = None
        self.events: Optional[Events] = None
        self.staged: Optional[HrvUpdate] = None
        self.values: Dict[str, object] = {name: None for name in CATEGORIES}
        self.errors: Dict[str, str] = {}
        self.dirty: Dict[str, bool] = {name: False for name in CATEGORIES}
        self.errors_changed = False
        self.version = 0
        self.snapshot: Optional[Snapshot] = None

    def mark(self, categories) -> None:
        for name in categories:
            self.dirty[name] = True


class Store:
    def __init__(self, config: Optional[PipelineConfig] = None, store: Optional[StoreSettings] = None) -> None:
        self.config = (config or settings.pipeline).validate()
        self.limits = store or settings.store
        self._entries: Dict[str, _Entry] = {}
        self.recording: Optional[RecordingUpdate] = None
        self.discarded = 0

    # ---- streams ---- #

    def open_stream(self, stream_id: str, modality: Modality = Modality.ECG) -> None:
        entry = self._entries.get(stream_id)
        if entry is None:
            self._entries[stream_id] = _Entry(stream_id, Modality(modality))
        else:
            entry.modality = Modality(modality)

    def streams(self) -> Dict[str, Modality]:
        return {sid: e.modality for sid, e in self._entries.items()}

    def _entry(self, stream_id: str) -> _Entry:
        if stream_id not in self._entries:
            self.open_stream(stream_id)
        return self._entries[stream_id]

    def dirty(self, stream_id: str) -> Mapping[str, bool]:
        """Read-only view of the current dirty flags of a stream."""
        return MappingProxyType(self._entry(stream_id).dirty)

    def version(self, stream_id: str) -> int:
        return self._entry(stream_id).version

    # ---- submit ---- #

    def submit(self, update: StreamUpdate) -> bool:
        """Stage one router update. Returns False when it was discarded as stale."""
        if isinstance(update, RecordingUpdate):
            self.recording = update
            return True
        if update.stream_id is None:
            return False

        entry = self._entry(update.stream_id)
        if update.version < entry.staged_version:
            self.discarded += 1
            logger.info(
                "Discarded stale %s v%d for %s (staged v%d)",
                type(update).__name__, update.version, update.stream_id, entry.staged_version,
            )
            return False
        entry.staged_version = update.version

        if isinstance(update, EcgUpdate):
            if update.error is not None:
                entry.errors["waveform"] = update.error
                return True
            entry.series = update.series
            entry.series_version = update.version
            entry.errors.pop("waveform", None)
            entry.mark(WAVEFORM_CATEGORIES)
        elif isinstance(update, EventsUpdate):
            entry.staged = None
            entry.events = update.events
            if update.error is not None:
                entry.errors["rr"] = update.error
            entry.mark(HRV_CATEGORIES)
        elif isinstance(update, HrvUpdate):
            entry.staged = update
            entry.events = update.events
            entry.errors.pop("router", None)
            entry.mark(HRV_CATEGORIES)
        elif update.error is not None:
            entry.errors["router"] = update.error
            entry.errors_changed = True
        return True

    def set_interp_fs(self, interp_fs: float) -> None:
        self.config = self.config.replace(interp_fs=float(interp_fs))
        for entry in self._entries.values():
            if entry.modality is Modality.ECG:
                entry.dirty["frequency"] = True

    # ---- prepare ---- #

    def _adoptable(self, entry: _Entry, category: str) -> bool:
        staged = entry.staged
        if staged is None or staged.config is None:
            return False
        if category == "frequency":
            return staged.config == self.config
        if category == "sqi" and staged.version != entry.series_version:
            return False
        return staged.config.replace(interp_fs=self.config.interp_fs) == self.config

    def _resolve(self, entry: _Entry, category: str) -> None:
        values, errors = entry.values, entry.errors

        if category == "waveform":
            values["waveform"] = self._waveform_figure(entry.series)
            return
        if category == "rr_figure":
            rr = values["rr"]
            if rr is None:
                values["rr_figure"] = None
            else:
                t_sec, hr_bpm = hr_timeseries(rr, max_points=self.limits.max_waveform_points)
                values["rr_figure"] = FigureData(t_sec, hr_bpm)
            return
        if category == "sqi":
            if self._adoptable(entry, "sqi"):
                values["sqi"] = entry.staged.sqi
            else:
                values["sqi"] = evaluate(entry.series, values["rr"], self.config)
            return

        staged = entry.staged
        if self._adoptable(entry, category):
            values[category] = getattr(staged, category)
            message = staged.errors.get(category)
            if message is None:
                errors.pop(category, None)
            else:
                errors[category] = message
            return

        try:
            if category == "rr":
                if entry.events is None:
                    raise EmptyInput("no beat events yet")
                values["rr"] = compute_rr(entry.events, self.config)
            else:
                if values["rr"] is None:
                    raise EmptyInput("no RR series available", stage=category)
                values[category] = HRV_ENGINES[category](values["rr"], self.config)
        except PipelineError as exc:
            values[category] = None
            errors[category] = str(exc)
            return
        errors.pop(category, None)

    def _waveform_figure(self, series: Optional[TimeSeries]) -> Optional[FigureData]:
        if series is None:
            return None
        n = len(series)
        start = max(0, n - int(self.limits.max_waveform_points))
        t = np.arange(start, n, dtype=np.float64) / series.fs
        return FigureData(t, series.samples[start:])

    def prepare(self, stream_id: str) -> Snapshot:
        """
        Resolve dirty categories and return the stream's current snapshot.

        Nothing dirty and no new router error: the previous snapshot is
        returned unchanged (same version).
        """
        entry = self._entry(stream_id)
        pending = [name for name in CATEGORIES if entry.dirty[name]]
        if entry.modality is not Modality.ECG:
            for name in HRV_CATEGORIES:
                entry.dirty[name] = False
            pending = [name for name in pending if name == "waveform"]

        if not pending and not entry.errors_changed and entry.snapshot is not None:
            return entry.snapshot

        for name in pending:
            self._resolve(entry, name)
            entry.dirty[name] = False

        if pending or entry.errors_changed:
            entry.version += 1
        entry.errors_changed = False
        values = entry.values
        entry.snapshot = Snapshot(
            stream_id=stream_id,
            modality=entry.modality,
            version=entry.version,
            series=entry.series,
            events=entry.events,
            rr=values["rr"],
            time=values["time"],
            frequency=values["frequency"],
            nonlinear=values["nonlinear"],
            sqi=values["sqi"],
            waveform_figure=values["waveform"],
            rr_figure=values["rr_figure"],
            errors=MappingProxyType(dict(entry.errors)),
            dirty=MappingProxyType(dict(entry.dirty)),
            refreshed=tuple(pending),
        )
        return entry.snapshot

    def drain(self, poll: Callable[[], list]) -> int:
        """Submit everything `poll` returns; returns the number of accepted updates."""
        accepted = 0
        for update in poll():
            if self.submit(update):
                accepted += 1
        return accepted
