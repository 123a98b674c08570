import numpy as np
import pytest

from hrvstream.hrv_metrics.rr_builder import build, classify_intervals
from hrvstream.signals.errors import ConfigurationError, EmptyInput
from hrvstream.signals.types import ArtifactClass, Events

N = ArtifactClass.NORMAL


def test_intervals_sum_to_event_span(config):
    events = Events([100, 300, 505, 700, 910], config.fs)
    rr = build(events, config)
    assert len(rr) == len(events) - 1
    assert rr.intervals.sum() == pytest.approx((910 - 100) / config.fs)
    assert rr.start_s == pytest.approx(100 / config.fs)
    assert np.allclose(rr.beat_times_s(), events.times_s())


@pytest.mark.parametrize("indices", [[], [42]])
def test_too_few_events(config, indices):
    with pytest.raises(EmptyInput):
        build(Events(indices, config.fs), config)


def test_rate_mismatch(config):
    with pytest.raises(ConfigurationError):
        build(Events([0, 200], 500.0), config)


def test_split_beat_and_missed_beat():
    rr = [0.8, 0.8, 0.8, 0.4, 0.4, 0.8, 0.8, 1.6, 0.8, 0.8, 0.8]
    flags = classify_intervals(rr, threshold=0.2, radius=5)
    expected = [N] * len(rr)
    expected[3] = expected[4] = ArtifactClass.EXTRA
    expected[7] = ArtifactClass.MISSED
    assert flags == expected


def test_premature_beat_is_ectopic():
    rr = [0.8, 0.8, 0.8, 0.8, 0.55, 0.95, 0.8, 0.8, 0.8, 0.8]
    flags = classify_intervals(rr, threshold=0.2, radius=5)
    assert flags[4] is ArtifactClass.ECTOPIC
    assert flags.count(N) == len(rr) - 1


def test_short_series_is_never_flagged():
    assert classify_intervals([0.8, 2.0], threshold=0.2, radius=5) == [N, N]


def test_flags_survive_into_series(config):
    # beat at 1000 missing
    events = Events([0, 200, 400, 600, 800, 1200, 1400, 1600, 1800], config.fs)
    rr = build(events, config)
    assert rr.artifacts[4] is ArtifactClass.MISSED
    assert rr.artifact_counts()["missed"] == 1
    assert len(rr.normal_intervals()) == len(rr) - 1
