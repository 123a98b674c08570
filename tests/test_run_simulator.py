import json

import numpy as np
import pandas as pd
import pytest

from hrvstream.cli import main
from hrvstream.runs.run_loader import RunEventFilter, load_bundle
from hrvstream.runs.run_simulator import (
    RunDesign,
    TrialSpec,
    read_design,
    read_trials,
    simulate_run,
    write_bundle,
)
from hrvstream.signals.errors import ConfigurationError, EmptyInput


@pytest.fixture
def trials():
    return [
        TrialSpec(trial=k + 1, duration_ms=200.0, block=1 if k < 4 else 2, stim_id=f"s{k + 1}")
        for k in range(8)
    ]


def stim_rows(run):
    return run.events[run.events["event_type"] == "stim"]


def test_same_seed_same_run(trials):
    design = RunDesign("stroop", isi_ms=500, isi_jitter_ms=100, seed=42, randomize=True)
    a = simulate_run(design, trials, start_time_unix=0.0)
    b = simulate_run(design, trials, start_time_unix=0.0)
    pd.testing.assert_frame_equal(a.events, b.events)
    assert a.manifest == b.manifest

    c = simulate_run(RunDesign("stroop", isi_ms=500, isi_jitter_ms=100, seed=7, randomize=True),
                     trials, start_time_unix=0.0)
    assert not np.allclose(c.events["onset"], a.events["onset"])


def test_fixed_order_schedule(trials):
    run = simulate_run(RunDesign("plain", isi_ms=500), trials[:3])
    assert list(run.events["stim_id"]) == ["s1", "s2", "s3"]
    assert run.events["onset"].tolist() == pytest.approx([0.0, 0.7, 1.4])
    assert run.manifest.trial_onsets_s == pytest.approx([0.0, 0.7, 1.4])
    assert run.manifest.isi_jitter_ms is None
    assert run.manifest.total_events == 3


def test_block_shuffle_keeps_blocks(trials):
    design = RunDesign("blocks", policy="block-shuffle", seed=42, randomize=True)
    stims = stim_rows(simulate_run(design, trials))
    assert stims["block"].tolist() == [1, 1, 1, 1, 2, 2, 2, 2]
    assert set(stims["stim_id"][:4]) == {"s1", "s2", "s3", "s4"}


def test_jitter_stays_in_range(trials):
    design = RunDesign("jitter", isi_ms=500, isi_jitter_ms=100, seed=3, randomize=True)
    onsets = stim_rows(simulate_run(design, trials))["onset"].to_numpy()
    isi = np.diff(onsets) - 0.2
    assert np.all(isi >= 0.4 - 1e-12) and np.all(isi <= 0.6 + 1e-12)


def test_response_row(trials):
    trial = TrialSpec(trial=1, duration_ms=1000.0, stim_id="a", resp_key="J", resp_rt_ms=450.0)
    run = simulate_run(RunDesign("resp"), [trial])
    assert run.events["event_type"].tolist() == ["stim", "response"]
    assert run.events["onset"].tolist() == [0.0, 1.0]
    assert run.events["resp_rt"].tolist() == [0.45, 0.45]
    assert run.manifest.total_trials == 1 and run.manifest.total_events == 2


def test_no_trials():
    with pytest.raises(EmptyInput):
        simulate_run(RunDesign("empty"), [])


def test_bundle_reads_back(tmp_path, trials):
    design = RunDesign("stroop", isi_ms=500, seed=1, randomize=True)
    run = simulate_run(design, trials + [TrialSpec(9, 200.0, block=2, stim_id="s9", resp_key="K")])
    root = write_bundle(tmp_path / "sub-01" / "run-01", run)

    bundle = load_bundle(root)
    assert bundle.manifest == run.manifest
    onsets = stim_rows(run)["onset"].tolist()
    assert [r.onset for r in bundle.records] == onsets
    assert [r.duration for r in bundle.records] == pytest.approx([0.2] * 9)

    everything = load_bundle(root, RunEventFilter.allow_all())
    assert len(everything.records) == 10
    assert np.array_equal(bundle.trial_events(1000.0).indices, np.round(np.array(onsets) * 1000).astype(int))


def test_design_and_trials_files(tmp_path):
    design_path = tmp_path / "design.json"
    design_path.write_text(json.dumps({
        "name": "stroop",
        "timing": {"isi_ms": 600, "isi_jitter_ms": 50},
        "randomization": {"policy": "block-shuffle", "seed": 42},
    }))
    design = read_design(design_path)
    assert design == RunDesign("stroop", 600.0, 50.0, "block-shuffle", 42, True)
    assert read_design_without_randomization(tmp_path).randomize is False

    trials_path = tmp_path / "trials.csv"
    trials_path.write_text(
        "trial,block,stim_id,condition,duration_ms,resp_key,resp_rt_ms,value\n"
        ",, red word,congruent,800,J,450,1\n"
        "7,2,,incongruent,800,,,\n"
    )
    first, second = read_trials(trials_path)
    assert first == TrialSpec(1, 800.0, 1, "red-word", "congruent", "J", 450.0, "1")
    assert second == TrialSpec(7, 800.0, 2, "trial-7", "incongruent")
    assert not second.has_response


def read_design_without_randomization(tmp_path):
    path = tmp_path / "plain.json"
    path.write_text(json.dumps({"name": "plain"}))
    return read_design(path)


def test_bad_inputs(tmp_path):
    path = tmp_path / "design.json"
    path.write_text(json.dumps({"timing": {}}))
    with pytest.raises(ConfigurationError):
        read_design(path)

    trials_path = tmp_path / "trials.csv"
    trials_path.write_text("trial,stim_id\n1,a\n")
    with pytest.raises(ConfigurationError):
        read_trials(trials_path)
    trials_path.write_text("duration_ms\nlong\n")
    with pytest.raises(ConfigurationError):
        read_trials(trials_path)


def test_run_simulate_command(tmp_path, capsys):
    (tmp_path / "design.json").write_text(json.dumps({"name": "stroop", "randomization": {"seed": 5}}))
    (tmp_path / "trials.csv").write_text("duration_ms,stim_id\n300,a\n300,b\n300,c\n")
    out = tmp_path / "runs" / "sub-01" / "task-stroop_run-01"
    code = main([
        "run-simulate", "--design", str(tmp_path / "design.json"),
        "--trials", str(tmp_path / "trials.csv"), "--out", str(out), "--seed", "9",
    ])
    assert code == 0
    manifest = json.loads((out / "run.json").read_text())
    assert manifest["task"] == "stroop" and manifest["seed"] == 9
    assert "stim" in (out / "events.tsv").read_text()
    assert "3 events for 3 trials" in capsys.readouterr().out
