import numpy as np
import pytest

from hrvstream.hrv_metrics.nonlinear import compute_nonlinear, dfa_alpha1, poincare, sample_entropy
from hrvstream.signals.errors import TooFewSamples
from hrvstream.signals.types import RRSeries


@pytest.fixture
def white_rr():
    return np.random.default_rng(3).normal(0.8, 0.05, 400)


def test_white_noise_profile(white_rr, config):
    m = compute_nonlinear(RRSeries.from_intervals(white_rr), config)
    assert m.errors == {}
    assert 0.75 < m.sd1_sd2 < 1.25
    assert m.sampen > 1.0
    assert 0.3 < m.dfa_alpha1 < 0.8


def test_correlated_series_has_higher_alpha(white_rr):
    walk = 0.8 + 0.002 * np.cumsum(white_rr - white_rr.mean())
    assert dfa_alpha1(walk) > dfa_alpha1(white_rr) + 0.5


def test_poincare_of_alternating_series():
    sd1, sd2 = poincare(np.array([0.7, 0.9] * 20))
    # all variance lies across the identity line
    assert sd1 > 10 * sd2


def test_sample_entropy_of_constant_series_is_zero():
    assert sample_entropy(np.full(30, 0.8)) == pytest.approx(0.0)


def test_sample_entropy_needs_enough_intervals():
    with pytest.raises(TooFewSamples):
        sample_entropy(np.full(5, 0.8))


def test_partial_failure_keeps_what_could_be_computed(config):
    m = compute_nonlinear(RRSeries.from_intervals([0.8, 0.82, 0.79, 0.81, 0.8]), config)
    assert m.sd1_s is not None
    assert m.sampen is None and m.dfa_alpha1 is None
    assert set(m.errors) == {"sampen", "dfa_alpha1"}


def test_total_failure_raises(config):
    with pytest.raises(TooFewSamples) as info:
        compute_nonlinear(RRSeries.from_intervals([0.8, 0.82]), config)
    assert info.value.stage == "nonlinear"


def test_sample_entropy_matches_pairwise_count():
    rr = np.random.default_rng(11).normal(0.8, 0.05, 60)
    tol = 0.2 * np.std(rr, ddof=1)

    def pairs(m):
        t = np.array([rr[i:i + m] for i in range(rr.size - 2)])
        return sum(
            np.max(np.abs(t[i] - t[j])) <= tol
            for i in range(len(t)) for j in range(i + 1, len(t))
        )

    assert sample_entropy(rr) == pytest.approx(-np.log(pairs(3) / pairs(2)))


def test_holter_length_series():
    rr = np.random.default_rng(5).normal(0.8, 0.05, 12000)
    m = compute_nonlinear(RRSeries.from_intervals(rr))
    assert m.errors == {}
    assert np.isfinite(m.sampen) and m.sampen > 1.0
