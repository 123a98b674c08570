import pytest

from hrvstream.dashboard.tabs import EcgTab, EegTab, EyeTab, TabSet, _fmt, make_tab
from hrvstream.streaming.router import StreamingRouter
from hrvstream.streaming.store import Modality, Store


@pytest.fixture
def running(config):
    router = StreamingRouter(config).start()
    yield router, Store(config)
    router.shutdown()


def test_fmt():
    assert _fmt(None) == "N/A"
    assert _fmt(float("nan")) == "N/A"
    assert _fmt("abc") == "N/A"
    assert _fmt(12.345, 2) == "12.35"


def test_make_tab():
    assert isinstance(make_tab("a", Modality.ECG), EcgTab)
    assert isinstance(make_tab("b", "EEG"), EegTab)
    assert isinstance(make_tab("c", Modality.EYE), EyeTab)


def test_ecg_tab_renders_metrics(running, ecg_10s):
    router, store = running
    tabs = TabSet(router, store, [EcgTab("ecg"), EegTab("eeg")])
    empty = tabs.tick()
    assert empty["status"] == "Signal quality: Unknown"
    assert all(card["value"] == "N/A" for card in empty["cards"])

    series, _ = ecg_10s
    router.submit_ecg("ecg", series)
    router.wait_idle(timeout=30)
    view = tabs.tick()
    cards = {c["title"]: c for c in view["cards"]}
    assert cards["Mean HR"]["value"] != "N/A"
    assert cards["LF/HF"]["value"] == "N/A"
    assert view["status"].startswith("Signal quality: ")
    assert len(view["hr"]["x"]) == len(view["poincare"]["x"]) + 1
    assert "frequency" in view["errors"]
    # nothing new: cached view object
    assert tabs.tick() is view


def test_switching_tabs_suspends_the_old_one(running):
    router, store = running
    ecg, eeg = EcgTab("ecg"), EegTab("eeg")
    tabs = TabSet(router, store, [ecg, eeg])
    tabs.tick()
    assert ecg.view is not None
    tabs.select(1)
    assert ecg.view is None
    view = tabs.tick()
    assert view["title"] == "EEG"
    assert "cards" not in view
    with pytest.raises(IndexError):
        tabs.select(2)


def test_tick_survives_closed_router(config):
    router = StreamingRouter(config).start()
    tabs = TabSet(router, Store(config), [EcgTab("ecg")])
    router.shutdown()
    view = tabs.tick()
    assert view["stream"] == "ecg"


def test_tabset_needs_tabs(running):
    router, store = running
    with pytest.raises(ValueError):
        TabSet(router, store, [])
