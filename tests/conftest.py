import os
import tempfile

# keep test logs out of the project tree; must happen before hrvstream is imported
os.environ.setdefault("HRVSTREAM_LOG_DIR", tempfile.mkdtemp(prefix="hrvstream-logs-"))
os.environ.setdefault("HRVSTREAM_ENABLE_KAFKA", "0")

import numpy as np
import pytest

from hrvstream.config.settings import PipelineConfig
from hrvstream.signals.types import TimeSeries

FS = 250.0


def _beat_times(duration_s: float, start_s: float = 0.5, mean_rr: float = 0.8,
                swing: float = 0.05, period_s: float = 8.0):
    times = []
    t = start_s
    while t < duration_s - 0.4:
        times.append(t)
        t += mean_rr + swing * np.sin(2 * np.pi * t / period_s)
    return np.asarray(times)


def synthetic_ecg(duration_s: float = 10.0, fs: float = FS, seed: int = 7, noise: float = 0.01, **rr_kwargs):
    """Gaussian QRS (sigma 10 ms) + T wave (sigma 40 ms, +250 ms) + white noise."""
    t = np.arange(int(round(duration_s * fs))) / fs
    beats = _beat_times(duration_s, **rr_kwargs)
    x = np.zeros_like(t)
    for bt in beats:
        x += np.exp(-0.5 * ((t - bt) / 0.010) ** 2)
        x += 0.25 * np.exp(-0.5 * ((t - bt - 0.25) / 0.040) ** 2)
    x += noise * np.random.default_rng(seed).standard_normal(t.size)
    return TimeSeries(x, fs), beats


@pytest.fixture
def config():
    return PipelineConfig(fs=FS)


@pytest.fixture
def make_ecg():
    return synthetic_ecg


@pytest.fixture
def ecg_10s():
    return synthetic_ecg(10.0)
