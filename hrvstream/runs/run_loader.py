# hrvstream/runs/run_loader.py
"""
Run-bundle replay helpers.

A run bundle is a directory holding:
    run.json     manifest (task, design, trial counts, seed, ISI, start time, ...)
    events.tsv   tab-separated event table (onset in seconds, event type, ...)

Column names are chosen by the caller through RunEventFilter and matched
case-insensitively. Event types are filtered through an allow-list; an empty
allow-list keeps every row.
"""

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from hrvstream.signals.errors import ConfigurationError, EmptyInput
from hrvstream.signals.types import Events

PathLike = Union[str, Path]

REQUIRED_MANIFEST_KEYS = ("task", "design", "total_trials", "total_events", "isi_ms", "start_time_unix")


@dataclass(frozen=True)
class RunManifest:
    task: str
    design: str
    total_trials: int
    total_events: int
    isi_ms: float
    start_time_unix: float
    seed: Optional[int] = None
    randomization_policy: Optional[str] = None
    isi_jitter_ms: Optional[float] = None
    trial_onsets_s: Optional[List[float]] = None
    sub: Optional[str] = None
    ses: Optional[str] = None
    run: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunManifest":
        known = {f.name for f in fields(cls)}
        missing = [name for name in REQUIRED_MANIFEST_KEYS if name not in data]
        if missing:
            raise ConfigurationError(f"manifest is missing {missing}", stage="input")
        return cls(**{k: v for k, v in data.items() if k in known})


def load_manifest(path: PathLike) -> RunManifest:
    manifest_path = Path(path)
    try:
        with manifest_path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"parsing manifest {manifest_path}: {exc}", stage="input") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"manifest {manifest_path} is not a JSON object", stage="input")
    return RunManifest.from_dict(data)


@dataclass(frozen=True)
class RunEventFilter:
    onset_column: str = "onset"
    event_type_column: str = "event_type"
    duration_column: Optional[str] = "duration"
    label_column: Optional[str] = "event_type"
    allowed_event_types: Sequence[str] = ("stim",)

    @classmethod
    def allow_all(cls) -> "RunEventFilter":
        return cls(allowed_event_types=())

    @classmethod
    def with_allowed_types(cls, types: Sequence[str]) -> "RunEventFilter":
        return cls(allowed_event_types=tuple(types))

    def matches(self, value: str) -> bool:
        if not self.allowed_event_types:
            return True
        normalized = str(value).strip().lower()
        return any(normalized == t.strip().lower() for t in self.allowed_event_types)


@dataclass(frozen=True)
class RunEventRecord:
    onset: float
    event_type: str
    duration: Optional[float] = None
    label: Optional[str] = None


def load_events(path: PathLike, event_filter: Optional[RunEventFilter] = None) -> List[RunEventRecord]:
    """
    Read a run-bundle event table.

    A missing onset column falls back to the first column, a missing event
    type column to the column after the onset.
    """
    flt = event_filter or RunEventFilter()
    df = pd.read_csv(path, sep="\t", dtype=str, keep_default_na=False)
    df.columns = [str(c).strip() for c in df.columns]
    lookup = {c.lower(): i for i, c in enumerate(df.columns)}

    def _idx(name: Optional[str]) -> Optional[int]:
        if name is None:
            return None
        return lookup.get(name.lower())

    onset_idx = _idx(flt.onset_column)
    if onset_idx is None:
        onset_idx = 0
    type_idx = _idx(flt.event_type_column)
    if type_idx is None:
        type_idx = onset_idx + 1
    if type_idx >= df.shape[1]:
        raise ConfigurationError(f"no event type column in {path}", stage="input")
    duration_idx = _idx(flt.duration_column)
    label_idx = _idx(flt.label_column)

    records: List[RunEventRecord] = []
    for row in df.itertuples(index=False, name=None):
        event_type = str(row[type_idx]).strip()
        if not flt.matches(event_type):
            continue
        onset_raw = str(row[onset_idx]).strip()
        try:
            onset = float(onset_raw)
        except ValueError as exc:
            raise ConfigurationError(f"parsing onset {onset_raw!r} in {path}", stage="input") from exc

        duration = None
        if duration_idx is not None:
            try:
                duration = float(str(row[duration_idx]).strip())
            except ValueError:
                duration = None
        label = str(row[label_idx]).strip() if label_idx is not None else None
        records.append(RunEventRecord(onset=onset, event_type=event_type, duration=duration, label=label))
    return records


def events_from_times(times_s: Sequence[float], fs: float) -> Events:
    return Events.from_times(times_s, fs)


def events_from_records(records: Sequence[RunEventRecord], fs: float) -> Events:
    """Onsets -> sample indices (rounded, clipped at 0), labels and durations attached."""
    if not records:
        raise EmptyInput("no run events matched the filter", stage="input")
    return Events.from_times(
        [r.onset for r in records],
        fs,
        labels=[r.label for r in records],
        durations=[r.duration for r in records],
    )


@dataclass(frozen=True)
class RunBundle:
    manifest: RunManifest
    records: List[RunEventRecord] = field(default_factory=list)

    def events(self, fs: float) -> Events:
        return events_from_records(self.records, fs)

    def trial_events(self, fs: float) -> Events:
        """Trial onsets from the manifest, when it lists them."""
        if not self.manifest.trial_onsets_s:
            raise EmptyInput("manifest lists no trial onsets", stage="input")
        return events_from_times(np.asarray(self.manifest.trial_onsets_s, dtype=float), fs)


def load_bundle(
    directory: PathLike,
    event_filter: Optional[RunEventFilter] = None,
    manifest_name: str = "run.json",
    events_name: str = "events.tsv",
) -> RunBundle:
    root = Path(directory)
    manifest = load_manifest(root / manifest_name)
    events_path = root / events_name
    records = load_events(events_path, event_filter) if events_path.exists() else []
    return RunBundle(manifest=manifest, records=records)
