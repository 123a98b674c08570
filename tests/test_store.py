import numpy as np
import pytest

from hrvstream.hrv_metrics.service_hrv import analyze_events
from hrvstream.signals.types import Events, TimeSeries
from hrvstream.streaming.router import (
    EcgUpdate,
    EventsUpdate,
    HrvUpdate,
    RecordingState,
    RecordingUpdate,
    StreamUpdate,
)
from hrvstream.streaming.store import Modality, Store


@pytest.fixture
def hrv_config(config):
    return config.replace(min_freq_intervals=10)


@pytest.fixture
def events(config):
    return Events(np.cumsum(np.r_[100, np.tile([190, 210, 200, 205, 195], 6)]), config.fs)


def hrv_update(version, events, series, config, stream_id="ecg"):
    result = analyze_events(events, series, config)
    return HrvUpdate(
        stream_id,
        version,
        events=events,
        rr=result.rr,
        time=result.time,
        frequency=result.frequency,
        nonlinear=result.nonlinear,
        sqi=result.sqi,
        errors=result.error_messages(),
        config=config,
    )


def full_cycle(store, version, series, events, config):
    store.submit(EcgUpdate("ecg", version, series=series))
    store.submit(EventsUpdate("ecg", version, events=events))
    store.submit(hrv_update(version, events, series, config))
    return store.prepare("ecg")


def test_adopts_worker_results(hrv_config, ecg_10s, events):
    series, _ = ecg_10s
    store = Store(hrv_config)
    update = hrv_update(1, events, series, hrv_config)
    store.submit(EcgUpdate("ecg", 1, series=series))
    store.submit(update)
    snap = store.prepare("ecg")
    assert snap.version == 1
    assert snap.time is update.time
    assert snap.frequency is update.frequency
    assert snap.sqi is update.sqi
    assert snap.errors == {}
    assert len(snap.rr_figure) == len(events) - 1


def test_unchanged_store_returns_same_snapshot(hrv_config, ecg_10s, events):
    series, _ = ecg_10s
    store = Store(hrv_config)
    first = full_cycle(store, 1, series, events, hrv_config)
    again = store.prepare("ecg")
    assert again is first
    assert store.version("ecg") == 1


def test_stale_updates_are_discarded(hrv_config, ecg_10s, events):
    series, _ = ecg_10s
    store = Store(hrv_config)
    assert store.submit(EcgUpdate("ecg", 3, series=series))
    assert not store.submit(hrv_update(2, events, series, hrv_config))
    assert store.discarded == 1
    snap = store.prepare("ecg")
    assert snap.rr is None
    assert snap.refreshed == ("waveform", "sqi")


def test_waveform_update_refreshes_only_waveform_and_sqi(hrv_config, make_ecg, events):
    series, _ = make_ecg(10.0)
    store = Store(hrv_config)
    full_cycle(store, 1, series, events, hrv_config)
    longer, _ = make_ecg(12.0)
    store.submit(EcgUpdate("ecg", 2, series=longer))
    assert [k for k, v in store.dirty("ecg").items() if v] == ["waveform", "sqi"]
    snap = store.prepare("ecg")
    assert snap.version == 2
    assert snap.refreshed == ("waveform", "sqi")
    assert snap.series is longer
    # staged HRV belongs to version 1, so SQI is computed here
    assert snap.sqi is not None


def test_interp_fs_change_recomputes_frequency_only(hrv_config, ecg_10s, events):
    series, _ = ecg_10s
    store = Store(hrv_config)
    before = full_cycle(store, 1, series, events, hrv_config)
    store.set_interp_fs(2.0)
    assert [k for k, v in store.dirty("ecg").items() if v] == ["frequency"]
    after = store.prepare("ecg")
    assert after.refreshed == ("frequency",)
    assert after.version == before.version + 1
    assert after.frequency.interp_fs == 2.0
    assert before.frequency.interp_fs == hrv_config.interp_fs
    assert after.time is before.time


def test_config_mismatch_recomputes(config, hrv_config, ecg_10s, events):
    series, _ = ecg_10s
    store = Store(hrv_config.replace(exclude_artifacts=True))
    update = hrv_update(1, events, series, hrv_config)
    store.submit(update)
    snap = store.prepare("ecg")
    assert snap.time is not update.time
    assert snap.time.avnn_s == pytest.approx(update.time.avnn_s)


def test_events_without_hrv_are_computed_locally(config, events):
    store = Store(config)
    store.submit(EventsUpdate("ecg", 1, events=events))
    snap = store.prepare("ecg")
    assert snap.time is not None
    assert snap.frequency is None
    assert snap.errors["frequency"].startswith("TooFewSamples")


def test_error_events_clear_results(hrv_config, ecg_10s, events):
    series, _ = ecg_10s
    store = Store(hrv_config)
    full_cycle(store, 1, series, events, hrv_config)
    store.submit(EventsUpdate("ecg", 2, error="InsufficientSignal [detect]: 0 beat(s)", stage="detect"))
    snap = store.prepare("ecg")
    assert snap.rr is None and snap.time is None
    assert "rr" in snap.errors


def test_non_ecg_streams_skip_hrv(config, events):
    store = Store(config)
    store.open_stream("eeg", Modality.EEG)
    store.submit(EcgUpdate("eeg", 1, series=TimeSeries(np.sin(np.arange(500) / 10.0), config.fs)))
    store.submit(EventsUpdate("eeg", 1, events=events))
    snap = store.prepare("eeg")
    assert snap.modality is Modality.EEG
    assert snap.refreshed == ("waveform",)
    assert snap.rr is None
    assert not any(store.dirty("eeg").values())


def test_waveform_figure_is_capped(config, make_ecg):
    series, _ = make_ecg(20.0)
    store = Store(config)
    store.submit(EcgUpdate("ecg", 1, series=series))
    fig = store.prepare("ecg").waveform_figure
    assert len(fig) == 2048
    assert fig.x[-1] == pytest.approx((len(series) - 1) / config.fs)


def test_recording_updates_and_drain(config):
    store = Store(config)
    updates = [
        RecordingUpdate(None, 1, state=RecordingState.STARTING),
        RecordingUpdate(None, 2, state=RecordingState.RECORDING),
    ]
    assert store.drain(lambda: updates) == 2
    assert store.recording.state is RecordingState.RECORDING


def test_snapshot_is_read_only(config, ecg_10s):
    series, _ = ecg_10s
    store = Store(config)
    store.submit(EcgUpdate("ecg", 1, series=series))
    snap = store.prepare("ecg")
    with pytest.raises(TypeError):
        snap.errors["x"] = "y"
    with pytest.raises(ValueError):
        snap.waveform_figure.y[0] = 1.0


def test_router_error_shows_in_next_snapshot(hrv_config, ecg_10s, events):
    series, _ = ecg_10s
    store = Store(hrv_config)
    first = full_cycle(store, 3, series, events, hrv_config)
    assert store.submit(StreamUpdate("ecg", 3, error="RuntimeError('boom')", stage="router"))
    snap = store.prepare("ecg")
    assert snap.version == first.version + 1
    assert snap.errors["router"] == "RuntimeError('boom')"
    assert snap.time is first.time
    # the next completed computation clears it
    store.submit(hrv_update(4, events, series, hrv_config))
    assert "router" not in store.prepare("ecg").errors
