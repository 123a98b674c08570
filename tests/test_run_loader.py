import json

import pytest

from hrvstream.runs.run_loader import (
    RunEventFilter,
    events_from_records,
    load_bundle,
    load_events,
    load_manifest,
)
from hrvstream.signals.errors import ConfigurationError, EmptyInput

MANIFEST = {
    "task": "oddball",
    "design": "block",
    "total_trials": 3,
    "total_events": 4,
    "isi_ms": 800,
    "start_time_unix": 1700000000.0,
    "seed": 42,
    "trial_onsets_s": [1.0, 3.0, 5.0],
    "operator": "ignored",
}

EVENTS_TSV = (
    "Onset\tEvent_Type\tDuration\n"
    "1.000\tstim\t0.5\n"
    "2.004\tresponse\tn/a\n"
    "3.000\tSTIM\t0.5\n"
    "5.004\tstim\t\n"
)


@pytest.fixture
def bundle_dir(tmp_path):
    (tmp_path / "run.json").write_text(json.dumps(MANIFEST))
    (tmp_path / "events.tsv").write_text(EVENTS_TSV)
    return tmp_path


def test_manifest_keeps_known_keys(bundle_dir):
    manifest = load_manifest(bundle_dir / "run.json")
    assert manifest.task == "oddball"
    assert manifest.seed == 42
    assert manifest.randomization_policy is None


def test_manifest_missing_keys(tmp_path):
    path = tmp_path / "run.json"
    path.write_text(json.dumps({"task": "x"}))
    with pytest.raises(ConfigurationError):
        load_manifest(path)
    path.write_text("{not json")
    with pytest.raises(ConfigurationError):
        load_manifest(path)


def test_default_filter_keeps_stim_rows(bundle_dir):
    records = load_events(bundle_dir / "events.tsv")
    assert [r.onset for r in records] == [1.0, 3.0, 5.004]
    assert [r.duration for r in records] == [0.5, 0.5, None]
    assert records[1].label == "STIM"


def test_allow_all_and_custom_types(bundle_dir):
    path = bundle_dir / "events.tsv"
    assert len(load_events(path, RunEventFilter.allow_all())) == 4
    only = load_events(path, RunEventFilter.with_allowed_types(["Response"]))
    assert [r.event_type for r in only] == ["response"]


def test_positional_fallback(tmp_path):
    path = tmp_path / "events.tsv"
    path.write_text("t\tkind\n0.5\tstim\n1.5\tstim\n")
    records = load_events(path)
    assert [r.onset for r in records] == [0.5, 1.5]


def test_bad_onset(tmp_path):
    path = tmp_path / "events.tsv"
    path.write_text("onset\tevent_type\nsoon\tstim\n")
    with pytest.raises(ConfigurationError):
        load_events(path)


def test_bundle_events(bundle_dir):
    bundle = load_bundle(bundle_dir)
    events = bundle.events(250.0)
    assert events.indices.tolist() == [250, 750, 1251]
    assert events.labels == ("stim", "STIM", "stim")
    assert bundle.trial_events(100.0).indices.tolist() == [100, 300, 500]


def test_bundle_without_events(tmp_path):
    (tmp_path / "run.json").write_text(json.dumps({k: v for k, v in MANIFEST.items() if k != "trial_onsets_s"}))
    bundle = load_bundle(tmp_path)
    with pytest.raises(EmptyInput):
        bundle.events(250.0)
    with pytest.raises(EmptyInput):
        bundle.trial_events(250.0)
    with pytest.raises(EmptyInput):
        events_from_records([], 250.0)
