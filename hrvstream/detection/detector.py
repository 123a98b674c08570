# hrvstream/detection/detector.py
"""
Causal Pan-Tompkins QRS detector.

Responsibilities:
    - Turn an ECG waveform into beat events (sample indices).
    - Work incrementally: BeatDetector.feed() accepts chunks of any size and
      keeps every filter / threshold state between calls, so feeding a
      recording in pieces gives exactly the beats of feeding it at once.
    - detect() is the batch entry point used by the CLI path; it is a single
      feed() followed by events().

Stages (Pan & Tompkins, 1985):
    1. Butterworth band-pass (lowcut_hz..highcut_hz), SOS form, state carried.
    2. Five-point derivative  y[n] = (2x[n] + x[n-1] - x[n-3] - 2x[n-4]) * fs / 8
    3. Squaring.
    4. Moving-window integration over integration_window_s.
    5. Adaptive thresholds on local maxima of the integrated signal:
           SPKI = 0.125 * peak + 0.875 * SPKI     (signal peaks)
           NPKI = 0.125 * peak + 0.875 * NPKI     (noise peaks)
           THR1 = NPKI + 0.25 * (SPKI - NPKI),  THR2 = 0.5 * THR1
       with a refractory period (min_rr_s) and a search-back for beats missed
       for longer than threshold_scale * mean RR.

Configuration:
    PipelineConfig (hrvstream.config.settings)
"""

import copy
from collections import deque
from typing import Deque, List, NamedTuple, Optional

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view
from scipy.signal import butter, sosfilt, sosfilt_zi

from hrvstream.config.settings import PipelineConfig
from hrvstream.signals.errors import ConfigurationError, InsufficientSignal
from hrvstream.signals.types import Events, TimeSeries


SIGNAL_WEIGHT = 0.125
NOISE_WEIGHT = 0.125
SEARCH_BACK_WEIGHT = 0.25
THRESHOLD_FACTOR = 0.25
RR_AVERAGE_BEATS = 8

# integrated peaks below this are filter round-off, not signal
_MIN_PEAK = 1e-10


class _Candidate(NamedTuple):
    index: int      # position of the local maximum in the integrated signal
    value: float    # integrated amplitude
    beat: int       # refined QRS location in the band-passed signal


# -------------------- THRESHOLD STATE -------------------- #

class _Thresholds:
    """
    Stage 5 on its own: consumes local maxima in order and decides beats.

    Kept separate from the filter chain so events() can run the end-of-data
    finalisation on a copy without disturbing the live state.
    """

    def __init__(self, config: PipelineConfig) -> None:
        fs = config.fs
        self.refractory = int(round(config.min_rr_s * fs))
        self.search_back = int(round(config.search_back_s * fs))
        self.learning = max(int(round(config.learning_s * fs)), 1)
        self.threshold_scale = config.threshold_scale

        self.learned = False
        self.learn_y: List[np.ndarray] = []
        self.learn_len = 0
        self.backlog: List[_Candidate] = []

        self.spki = 0.0
        self.npki = 0.0
        self.thr1 = 0.0
        self.thr2 = 0.0

        self.beats: List[_Candidate] = []
        self.pending: Optional[_Candidate] = None
        self.noise: Deque[_Candidate] = deque()

    # ---- learning window ---- #

    def collect(self, y: np.ndarray) -> None:
        if self.learned or self.learn_len >= self.learning:
            return
        part = y[: self.learning - self.learn_len]
        self.learn_y.append(part.copy())
        self.learn_len += part.size

    def learn(self) -> None:
        y = np.concatenate(self.learn_y) if self.learn_y else np.zeros(1)
        self.spki = 0.25 * float(np.max(y))
        self.npki = 0.5 * float(np.mean(y))
        self._update_thresholds()
        self.learned = True
        self.learn_y = []
        backlog, self.backlog = self.backlog, []
        for cand in backlog:
            self._classify(cand)

    def push(self, cand: _Candidate) -> None:
        if not self.learned:
            if cand.index < self.learning:
                self.backlog.append(cand)
                return
            self.learn()
        self._classify(cand)

    def finish(self) -> List[int]:
        if not self.learned:
            self.learn()
        beats = list(self.beats)
        if self.pending is not None:
            beats.append(self.pending)
        return [b.beat for b in beats]

    # ---- decisions ---- #

    def _update_thresholds(self) -> None:
        self.thr1 = self.npki + THRESHOLD_FACTOR * (self.spki - self.npki)
        self.thr2 = 0.5 * self.thr1

    def _last_beat(self) -> Optional[_Candidate]:
        if self.pending is not None:
            return self.pending
        return self.beats[-1] if self.beats else None

    def _rr_average(self) -> Optional[float]:
        marks = [b.index for b in self.beats[-RR_AVERAGE_BEATS:]]
        if self.pending is not None:
            marks.append(self.pending.index)
        marks = marks[-(RR_AVERAGE_BEATS + 1):]
        if len(marks) < 2:
            return None
        return float(np.mean(np.diff(marks)))

    def _accept(self, cand: _Candidate, weight: float) -> None:
        """Make `cand` the pending beat, confirming the previous one."""
        if self.pending is not None:
            self.beats.append(self.pending)
        self.pending = cand
        self.spki = weight * cand.value + (1.0 - weight) * self.spki
        self._update_thresholds()

    def _search_back(self, now: int) -> None:
        last = self._last_beat()
        rr_avg = self._rr_average()
        if last is None or rr_avg is None:
            return
        if now - last.index <= self.threshold_scale * rr_avg:
            return
        lo = max(last.index + self.refractory, now - self.search_back)
        best = None
        for cand in self.noise:
            if lo <= cand.index < now and cand.value > self.thr2:
                if best is None or cand.value > best.value:
                    best = cand
        if best is not None:
            self.noise = deque(c for c in self.noise if c.index > best.index)
            self._accept(best, SEARCH_BACK_WEIGHT)

    def _classify(self, cand: _Candidate) -> None:
        while self.noise and self.noise[0].index < cand.index - self.search_back:
            self.noise.popleft()

        self._search_back(cand.index)

        if cand.value > self.thr1:
            last = self._last_beat()
            if last is not None and cand.index - last.index < self.refractory:
                # two peaks inside one refractory period: keep the larger
                if self.pending is not None and cand.value > self.pending.value:
                    self.pending = cand
                    self.spki = SIGNAL_WEIGHT * cand.value + (1.0 - SIGNAL_WEIGHT) * self.spki
                    self._update_thresholds()
                return
            self._accept(cand, SIGNAL_WEIGHT)
            return

        self.npki = NOISE_WEIGHT * cand.value + (1.0 - NOISE_WEIGHT) * self.npki
        self._update_thresholds()
        self.noise.append(cand)


# -------------------- DETECTOR -------------------- #

class BeatDetector:
    """
    Stateful detector for one ECG stream.

    Usage:
        det = BeatDetector(config)
        for chunk in chunks:
            det.feed(chunk)
        events = det.events()
    """

    def __init__(self, config: PipelineConfig) -> None:
        config.validate()
        self.config = config
        self.fs = float(config.fs)
        self.window = max(int(round(config.integration_window_s * self.fs)), 1)

        self._sos = butter(
            config.filter_order,
            [config.lowcut_hz, config.highcut_hz],
            btype="bandpass",
            fs=self.fs,
            output="sos",
        )
        self._zi: Optional[np.ndarray] = None

        self._n = 0
        self._bp_tail = np.zeros(0)
        self._deriv_tail = np.zeros(4)
        self._sq_tail = np.zeros(self.window - 1)
        self._y_tail = np.zeros(0)

        self._thresholds = _Thresholds(config)

    @property
    def samples_seen(self) -> int:
        return self._n

    def feed(self, chunk) -> None:
        """Run one chunk of raw samples through all five stages."""
        if isinstance(chunk, TimeSeries):
            if chunk.fs != self.fs:
                raise ConfigurationError(
                    f"detector runs at {self.fs} Hz, chunk is {chunk.fs} Hz", stage="detect"
                )
            x = chunk.samples
        else:
            x = np.asarray(chunk, dtype=np.float64).reshape(-1)
        if x.size == 0:
            return
        if not np.all(np.isfinite(x)):
            raise ConfigurationError("ECG samples must be finite", stage="detect")

        start = self._n

        # 1) band-pass
        if self._zi is None:
            self._zi = sosfilt_zi(self._sos) * x[0]
        bp, self._zi = sosfilt(self._sos, x, zi=self._zi)

        # 2) derivative
        ext = np.concatenate([self._deriv_tail, bp])
        deriv = (2.0 * ext[4:] + ext[3:-1] - ext[1:-3] - 2.0 * ext[:-4]) * (self.fs / 8.0)
        self._deriv_tail = ext[-4:].copy()

        # 3) squaring, 4) moving-window integration
        sq_ext = np.concatenate([self._sq_tail, deriv ** 2])
        y = sliding_window_view(sq_ext, self.window).sum(axis=1) / self.window
        self._sq_tail = sq_ext[sq_ext.size - (self.window - 1):].copy()

        self._thresholds.collect(y)

        # band-passed history for beat refinement
        bp_ext = np.concatenate([self._bp_tail, bp])
        bp_base = start - self._bp_tail.size

        # 5) local maxima, one sample of look-ahead
        y_ext = np.concatenate([self._y_tail, y])
        y_base = start - self._y_tail.size
        if y_ext.size >= 3:
            mid = y_ext[1:-1]
            is_peak = (y_ext[:-2] < mid) & (mid >= y_ext[2:]) & (mid > _MIN_PEAK)
            for j in np.flatnonzero(is_peak) + 1:
                idx = y_base + int(j)
                lo = max(idx - self.window + 1, bp_base, 0)
                seg = bp_ext[lo - bp_base: idx - bp_base + 1]
                beat = lo + int(np.argmax(np.abs(seg)))
                self._thresholds.push(_Candidate(idx, float(y_ext[j]), beat))

        self._y_tail = y_ext[-2:].copy()
        keep = self.window + 2
        self._bp_tail = bp_ext[-keep:].copy()
        self._n += x.size

    def events(self) -> Events:
        """
        Beats found so far, including the most recent tentative one.

        Does not modify the detector; later feed() calls continue from the
        same state.
        """
        state = copy.deepcopy(self._thresholds)
        locs: List[int] = []
        for loc in state.finish():
            if not locs or loc > locs[-1]:
                locs.append(loc)
        return Events(np.asarray(locs, dtype=np.int64), self.fs)


def detect(series: TimeSeries, config: PipelineConfig) -> Events:
    """
    Batch detection over a whole waveform.

    Raises:
        ConfigurationError  series.fs differs from config.fs or config is invalid
        InsufficientSignal  fewer than two beats were found
    """
    if series.fs != config.fs:
        raise ConfigurationError(
            f"series sampled at {series.fs} Hz, config expects {config.fs} Hz", stage="detect"
        )
    det = BeatDetector(config)
    det.feed(series)
    events = det.events()
    if len(events) < 2:
        raise InsufficientSignal(
            f"found {len(events)} beat(s) in {series.duration_s:.1f} s of signal"
        )
    return events
