# hrvstream/runs/run_simulator.py
"""
Run-bundle generation.

Builds the same bundle layout run_loader reads back:
    run.json     manifest
    events.tsv   one "stim" row per trial, plus a "response" row when the
                 trial carries a response key, RT or value

Trial order is shuffled with a seeded generator ("shuffle" permutes all
trials, "block-shuffle" permutes within runs of consecutive equal blocks).
Onsets advance by trial duration + ISI, the ISI drawn uniformly from
isi_ms +/- isi_jitter_ms and clipped at 0.

Configuration:
    - design JSON: {"name", "timing": {"isi_ms", "isi_jitter_ms"},
                    "randomization": {"policy", "seed"}}
    - trials CSV: duration_ms required; trial, block, stim_id, condition,
                  resp_key, resp_rt_ms, value optional
"""

import json
import time
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from hrvstream.runs.run_loader import RunManifest
from hrvstream.signals.errors import ConfigurationError, EmptyInput
from hrvstream.utils.logging_utils import get_logger

logger = get_logger(module_name="run_simulator", logfile_name="runs.log")

PathLike = Union[str, Path]

DEFAULT_ISI_MS = 750.0

EVENT_COLUMNS = [
    "onset", "duration", "trial", "block", "event_type",
    "stim_id", "condition", "resp_key", "resp_rt", "value",
]


@dataclass(frozen=True)
class RunDesign:
    name: str
    isi_ms: float = DEFAULT_ISI_MS
    isi_jitter_ms: float = 0.0
    policy: Optional[str] = None     # "block-shuffle", anything else shuffles all trials
    seed: Optional[int] = None
    randomize: bool = False          # design has a randomization section


@dataclass(frozen=True)
class TrialSpec:
    trial: int
    duration_ms: float
    block: int = 1
    stim_id: str = ""
    condition: str = ""
    resp_key: Optional[str] = None
    resp_rt_ms: Optional[float] = None
    value: Optional[str] = None

    @property
    def has_response(self) -> bool:
        return self.resp_key is not None or self.resp_rt_ms is not None or self.value is not None


@dataclass(frozen=True)
class SimulatedRun:
    manifest: RunManifest
    events: pd.DataFrame


# -------------------- INPUT -------------------- #

def read_design(path: PathLike) -> RunDesign:
    design_path = Path(path)
    try:
        with design_path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"parsing design {design_path}: {exc}", stage="input") from exc
    if not isinstance(data, dict) or "name" not in data:
        raise ConfigurationError(f"design {design_path} needs a 'name'", stage="input")

    timing = data.get("timing") or {}
    randomization = data.get("randomization")
    return RunDesign(
        name=str(data["name"]),
        isi_ms=float(timing.get("isi_ms") or DEFAULT_ISI_MS),
        isi_jitter_ms=float(timing.get("isi_jitter_ms") or 0.0),
        policy=(randomization or {}).get("policy"),
        seed=(randomization or {}).get("seed"),
        randomize=randomization is not None,
    )


def _opt(value) -> Optional[str]:
    text = "" if value is None else str(value).strip()
    return text or None


def read_trials(path: PathLike) -> List[TrialSpec]:
    df = pd.read_csv(path, dtype=str, keep_default_na=False, skipinitialspace=True)
    df.columns = [str(c).strip() for c in df.columns]
    if "duration_ms" not in df.columns:
        raise ConfigurationError(f"trials file {path} has no duration_ms column", stage="input")

    trials: List[TrialSpec] = []
    for idx, row in enumerate(df.to_dict("records")):
        raw_trial = _opt(row.get("trial"))
        block = _opt(row.get("block"))
        rt = _opt(row.get("resp_rt_ms"))
        try:
            trial = int(float(raw_trial)) if raw_trial else 0
            duration_ms = float(row["duration_ms"])
            block_no = int(float(block)) if block else 1
            resp_rt_ms = float(rt) if rt else None
        except ValueError as exc:
            raise ConfigurationError(f"parsing trial row {idx + 1} in {path}: {exc}", stage="input") from exc
        trial = trial or idx + 1
        stim_id = _opt(row.get("stim_id")) or f"trial-{trial}"
        trials.append(
            TrialSpec(
                trial=trial,
                duration_ms=duration_ms,
                block=block_no,
                stim_id=stim_id.replace(" ", "-"),
                condition=_opt(row.get("condition")) or "",
                resp_key=_opt(row.get("resp_key")),
                resp_rt_ms=resp_rt_ms,
                value=_opt(row.get("value")),
            )
        )
    return trials


# -------------------- SCHEDULE -------------------- #

def _shuffle(trials: List[TrialSpec], policy: Optional[str], rng: np.random.Generator) -> List[TrialSpec]:
    if policy != "block-shuffle":
        return [trials[i] for i in rng.permutation(len(trials))]

    out: List[TrialSpec] = []
    start = 0
    while start < len(trials):
        end = start + 1
        while end < len(trials) and trials[end].block == trials[start].block:
            end += 1
        segment = trials[start:end]
        out.extend(segment[i] for i in rng.permutation(len(segment)))
        start = end
    return out


def simulate_run(
    design: RunDesign,
    trials: Sequence[TrialSpec],
    sub: str = "01",
    ses: str = "01",
    run: str = "01",
    start_time_unix: Optional[float] = None,
) -> SimulatedRun:
    """
    Schedule `trials` according to `design`.

    The same design (seed included) and trials always give the same event
    table; only start_time_unix defaults to the wall clock.
    """
    if not trials:
        raise EmptyInput("no trials to schedule", stage="input")

    rng = np.random.default_rng(design.seed if design.seed is not None else 0)
    order = list(trials)
    if design.randomize:
        order = _shuffle(order, design.policy, rng)

    isi_s = design.isi_ms / 1000.0
    jitter_s = design.isi_jitter_ms / 1000.0
    rows = []
    stim_onsets = []
    onset = 0.0
    for t in order:
        duration = t.duration_ms / 1000.0
        resp_rt = t.resp_rt_ms / 1000.0 if t.resp_rt_ms is not None else None
        common = dict(trial=t.trial, block=t.block, stim_id=t.stim_id, condition=t.condition,
                      resp_key=t.resp_key, resp_rt=resp_rt, value=t.value)
        rows.append(dict(onset=onset, duration=duration, event_type="stim", **common))
        stim_onsets.append(onset)
        if t.has_response:
            rows.append(dict(onset=onset + duration, duration=0.0, event_type="response", **common))

        offset = rng.uniform(-jitter_s, jitter_s) if jitter_s > 0 else 0.0
        onset += duration + max(isi_s + offset, 0.0)

    events = pd.DataFrame(rows, columns=EVENT_COLUMNS)
    manifest = RunManifest(
        task=design.name,
        design=design.name,
        total_trials=len(order),
        total_events=len(events),
        isi_ms=design.isi_ms,
        start_time_unix=time.time() if start_time_unix is None else float(start_time_unix),
        seed=design.seed,
        randomization_policy=design.policy,
        isi_jitter_ms=design.isi_jitter_ms if design.isi_jitter_ms > 0 else None,
        trial_onsets_s=stim_onsets,
        sub=sub,
        ses=ses,
        run=run,
    )
    logger.info("Simulated run '%s': %d trials, %d events", design.name, len(order), len(events))
    return SimulatedRun(manifest=manifest, events=events)


# -------------------- OUTPUT -------------------- #

def write_events_tsv(path: PathLike, events: pd.DataFrame) -> Path:
    out = Path(path)
    events.reindex(columns=EVENT_COLUMNS).to_csv(out, sep="\t", index=False, na_rep="")
    return out


def write_manifest(path: PathLike, manifest: RunManifest) -> Path:
    out = Path(path)
    with out.open("w", encoding="utf-8") as fh:
        json.dump(asdict(manifest), fh, indent=2)
    return out


def write_bundle(
    directory: PathLike,
    simulated: SimulatedRun,
    manifest_name: str = "run.json",
    events_name: str = "events.tsv",
) -> Path:
    root = Path(directory)
    root.mkdir(parents=True, exist_ok=True)
    write_events_tsv(root / events_name, simulated.events)
    write_manifest(root / manifest_name, simulated.manifest)
    logger.info("Run bundle written to %s", root)
    return root


def with_seed(design: RunDesign, seed: int) -> RunDesign:
    return replace(design, seed=seed, randomize=True)
