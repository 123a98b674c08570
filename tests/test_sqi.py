import numpy as np
import pytest

from hrvstream.config.settings import SQISettings
from hrvstream.hrv_metrics.sqi import SQIStatus, evaluate, rr_cv, signal_kurtosis
from hrvstream.signals.types import RRSeries, TimeSeries

STEADY_RR = RRSeries.from_intervals([0.8, 0.81, 0.79, 0.8, 0.82])

LENIENT = SQISettings(kurtosis_good=0.0, snr_good=0.0, snr_bad=0.0, rr_cv_good=1.0, rr_cv_bad=2.0)


def test_clean_ecg_is_peaked(config, ecg_10s):
    series, _ = ecg_10s
    report = evaluate(series, STEADY_RR, config)
    assert report.kurtosis > 5.0
    assert report.status in (SQIStatus.GOOD, SQIStatus.UNCERTAIN)
    assert report.status is not SQIStatus.BAD


def test_all_rules_passed_is_good(config, ecg_10s):
    series, _ = ecg_10s
    report = evaluate(series, STEADY_RR, config, thresholds=LENIENT)
    assert report.status is SQIStatus.GOOD
    assert report.reasons == ()


def test_mains_hum_is_bad(config):
    t = np.arange(2500) / config.fs
    hum = np.sin(2 * np.pi * 50.0 * t) + 0.1 * np.random.default_rng(0).standard_normal(t.size)
    report = evaluate(TimeSeries(hum, config.fs), STEADY_RR, config)
    assert report.status is SQIStatus.BAD
    assert any(r.startswith("snr") for r in report.reasons)


def test_irregular_rhythm_is_bad(config, ecg_10s):
    series, _ = ecg_10s
    chaotic = RRSeries.from_intervals([0.4, 1.2, 0.5, 1.4, 0.45])
    report = evaluate(series, chaotic, config)
    assert report.status is SQIStatus.BAD
    assert report.rr_cv > 0.30


def test_moderate_variability_is_uncertain(config, ecg_10s):
    series, _ = ecg_10s
    rr = RRSeries.from_intervals([0.7, 1.0, 0.7, 1.0, 0.75])
    thresholds = SQISettings(kurtosis_good=0.0, snr_good=0.0, snr_bad=0.0)
    report = evaluate(series, rr, config, thresholds=thresholds)
    assert report.status is SQIStatus.UNCERTAIN
    assert report.reasons[0].startswith("rr_cv")


def test_missing_inputs_never_raise(config, ecg_10s):
    series, _ = ecg_10s
    assert evaluate(series, None, config).status is SQIStatus.BAD
    assert evaluate(None, STEADY_RR, config).status is SQIStatus.BAD
    short = TimeSeries(series.samples[:100], series.fs)
    report = evaluate(short, STEADY_RR, config)
    assert report.status is SQIStatus.BAD
    assert np.isnan(report.kurtosis)


def test_flat_waveform(config):
    flat = TimeSeries(np.zeros(2500), config.fs)
    report = evaluate(flat, STEADY_RR, config)
    assert report.status is SQIStatus.BAD
    assert np.isnan(signal_kurtosis(flat.samples))


def test_rr_cv_uses_population_sd():
    assert rr_cv(np.array([0.9, 1.1])) == pytest.approx(0.1)
    assert np.isnan(rr_cv(np.array([0.8])))


def test_report_serialises(config, ecg_10s):
    series, _ = ecg_10s
    data = evaluate(series, STEADY_RR, config).to_dict()
    assert set(data) == {"kurtosis", "snr", "rr_cv", "status", "reasons"}
    assert isinstance(data["reasons"], list)


def test_unmeasurable_snr_is_bad(config):
    # 3 Hz leaves fewer than 8 samples per Welch segment
    samples = np.random.default_rng(4).standard_normal(9)
    report = evaluate(TimeSeries(samples, 3.0), STEADY_RR, config, thresholds=LENIENT)
    assert np.isnan(report.snr)
    assert np.isfinite(report.kurtosis)
    assert report.status is SQIStatus.BAD
    assert report.reasons == ("snr undefined (segment too short for Welch at this rate)",)
