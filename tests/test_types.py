import numpy as np
import pytest

from hrvstream.signals.errors import ConfigurationError, EmptyInput, PipelineError
from hrvstream.signals.types import ArtifactClass, Events, RRSeries, TimeSeries


def test_timeseries_is_read_only_copy():
    data = np.array([1.0, 2.0, 3.0])
    ts = TimeSeries(data, 2.0)
    data[0] = 99.0
    assert ts.samples[0] == 1.0
    with pytest.raises(ValueError):
        ts.samples[0] = 5.0
    assert len(ts) == 3
    assert ts.duration_s == pytest.approx(1.5)


@pytest.mark.parametrize("fs", [0.0, -1.0, float("nan")])
def test_timeseries_rejects_bad_rate(fs):
    with pytest.raises(ConfigurationError):
        TimeSeries([1.0], fs)


def test_concat_checks_rate():
    a = TimeSeries([1.0, 2.0], 10.0)
    b = TimeSeries([3.0], 10.0)
    assert a.concat(b).samples.tolist() == [1.0, 2.0, 3.0]
    with pytest.raises(ConfigurationError):
        a.concat(TimeSeries([3.0], 20.0))


def test_events_must_increase():
    with pytest.raises(ConfigurationError):
        Events([5, 5, 6], 100.0)
    with pytest.raises(ConfigurationError):
        Events([-1, 2], 100.0)
    ev = Events([1, 5, 9], 100.0, labels=["a", "b", "c"])
    assert ev.times_s().tolist() == pytest.approx([0.01, 0.05, 0.09])


def test_events_from_times_rounds_clips_and_dedupes():
    ev = Events.from_times([0.0104, -0.5, 0.0096, 0.02], 100.0, labels=["x", "neg", "dup", "y"])
    assert ev.indices.tolist() == [0, 1, 2]
    assert ev.labels == ("neg", "dup", "y")


def test_validate_against_series():
    ev = Events([0, 9], 10.0)
    ev.validate_against(TimeSeries(np.zeros(10), 10.0))
    with pytest.raises(ConfigurationError):
        ev.validate_against(TimeSeries(np.zeros(9), 10.0))


def test_rrseries_defaults_and_validation():
    rr = RRSeries.from_intervals([0.8, np.nan, 0.9], start_s=1.0)
    assert len(rr) == 2
    assert rr.artifacts == (ArtifactClass.NORMAL, ArtifactClass.NORMAL)
    assert rr.beat_times_s().tolist() == pytest.approx([1.0, 1.8, 2.7])
    with pytest.raises(EmptyInput):
        RRSeries([])
    with pytest.raises(ConfigurationError):
        RRSeries([0.8, 0.0])


def test_error_carries_stage():
    err = EmptyInput("nothing here")
    assert isinstance(err, PipelineError)
    assert err.stage == "rr"
    assert str(err) == "EmptyInput [rr]: nothing here"
