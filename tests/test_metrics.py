import numpy as np
import pytest

from hrvstream.hrv_metrics.metrics import compute_time_domain, nn50, pnn50, rmssd, welford_sd
from hrvstream.signals.errors import TooFewSamples
from hrvstream.signals.types import ArtifactClass, RRSeries


def test_four_interval_example():
    m = compute_time_domain(RRSeries.from_intervals([0.80, 0.82, 0.78, 0.81]))
    assert m.n_beats == 5
    assert m.avnn_s == pytest.approx(0.8025)
    assert m.sdnn_s == pytest.approx(0.017078, abs=1e-6)
    assert m.rmssd_s == pytest.approx(np.sqrt(0.0029 / 3))
    assert m.nn50 == 0
    assert m.pnn50 == 0.0
    assert m.mean_hr_bpm == pytest.approx(60.0 / 0.8025)
    assert m.hr_max_bpm == pytest.approx(60.0 / 0.78)
    assert m.hr_min_bpm == pytest.approx(60.0 / 0.82)


def test_welford_matches_numpy():
    values = np.random.default_rng(1).normal(0.8, 0.05, 500)
    assert welford_sd(values) == pytest.approx(np.std(values, ddof=1), rel=1e-12)
    assert np.isnan(welford_sd([0.8]))


def test_nn50_counts_large_differences():
    rr = [0.80, 0.84, 0.90, 0.93]
    assert nn50(rr) == 1
    assert pnn50(rr) == pytest.approx(1 / 3)
    assert np.isnan(rmssd([0.8]))


def test_single_interval_is_too_few():
    with pytest.raises(TooFewSamples):
        compute_time_domain(RRSeries.from_intervals([0.8]))


def test_exclude_artifacts(config):
    rr = RRSeries(
        [0.8, 0.8, 1.6, 0.8, 0.8],
        artifacts=[ArtifactClass.NORMAL] * 2 + [ArtifactClass.MISSED] + [ArtifactClass.NORMAL] * 2,
    )
    everything = compute_time_domain(rr, config)
    normal_only = compute_time_domain(rr, config.replace(exclude_artifacts=True))
    assert everything.avnn_s == pytest.approx(0.96)
    assert normal_only.avnn_s == pytest.approx(0.8)
    assert normal_only.sdnn_s == pytest.approx(0.0)
    assert normal_only.n_beats == 5


def test_exclusion_can_leave_too_little(config):
    rr = RRSeries([0.8, 1.6], artifacts=[ArtifactClass.NORMAL, ArtifactClass.MISSED])
    with pytest.raises(TooFewSamples):
        compute_time_domain(rr, config.replace(exclude_artifacts=True))
