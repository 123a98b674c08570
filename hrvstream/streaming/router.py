# hrvstream/streaming/router.py
"""
Streaming router: runs the pipeline off the consumer thread.

Responsibilities:
    - Own one worker thread, a bounded command queue and a bounded update queue.
    - Keep per-stream state (detector + accumulated waveform) on the worker.
    - Turn each ProcessEcg into EcgUpdate -> EventsUpdate -> HrvUpdate,
      using the same functions as the batch pipeline.
    - Drive the optional recording sink (OFF / STARTING / RECORDING / ERROR).

Threading:
    Commands in, updates out, nothing shared. Every payload is immutable.
    submit_*() wait at most put_timeout_s on a full command queue and then
    drop the command; the worker never blocks on a full update queue, it
    evicts the oldest update instead (newest wins).

Configuration:
    - settings.streaming (queue sizes, put timeout)
    - PipelineConfig passed to the constructor
"""

import queue
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import numpy as np

from hrvstream.config.settings import PipelineConfig, StreamingSettings, settings
from hrvstream.detection.detector import BeatDetector
from hrvstream.hrv_metrics.frequency import HRVFrequencyMetrics
from hrvstream.hrv_metrics.metrics import HRVTimeMetrics
from hrvstream.hrv_metrics.nonlinear import HRVNonlinearMetrics
from hrvstream.hrv_metrics.service_hrv import analyze_events
from hrvstream.hrv_metrics.sqi import SQIReport, evaluate
from hrvstream.signals.errors import (
    ChannelClosed,
    ConfigurationError,
    InsufficientSignal,
    PipelineError,
)
from hrvstream.signals.types import Events, RRSeries, TimeSeries
from hrvstream.streaming.recorder import CsvRecorder
from hrvstream.utils.logging_utils import get_logger

logger = get_logger(module_name="router", logfile_name="router.log")


class RouterState(str, Enum):
    IDLE = "IDLE"
    PROCESSING = "PROCESSING"


class RecordingState(str, Enum):
    OFF = "OFF"
    STARTING = "STARTING"
    RECORDING = "RECORDING"
    ERROR = "ERROR"


# -------------------- COMMANDS -------------------- #

@dataclass(frozen=True)
class ProcessEcg:
    stream_id: str
    chunk: TimeSeries


@dataclass(frozen=True)
class IngestEvents:
    stream_id: str
    events: Events


@dataclass(frozen=True)
class StartRecording:
    path: Path
    fs: float
    stream_id: Optional[str] = None   # None records every ECG stream


@dataclass(frozen=True)
class StopRecording:
    pass


@dataclass(frozen=True)
class Shutdown:
    pass


StreamCommand = Union[ProcessEcg, IngestEvents, StartRecording, StopRecording, Shutdown]


# -------------------- UPDATES -------------------- #

@dataclass(frozen=True)
class StreamUpdate:
    stream_id: Optional[str]
    version: int
    error: Optional[str] = None
    stage: Optional[str] = None


@dataclass(frozen=True)
class EcgUpdate(StreamUpdate):
    series: Optional[TimeSeries] = None     # whole waveform received so far


@dataclass(frozen=True)
class EventsUpdate(StreamUpdate):
    events: Optional[Events] = None


@dataclass(frozen=True)
class HrvUpdate(StreamUpdate):
    events: Optional[Events] = None
    rr: Optional[RRSeries] = None
    time: Optional[HRVTimeMetrics] = None
    frequency: Optional[HRVFrequencyMetrics] = None
    nonlinear: Optional[HRVNonlinearMetrics] = None
    sqi: Optional[SQIReport] = None
    errors: Dict[str, str] = field(default_factory=dict)
    config: Optional[PipelineConfig] = None


@dataclass(frozen=True)
class RecordingUpdate(StreamUpdate):
    state: RecordingState = RecordingState.OFF
    path: Optional[Path] = None
    samples: int = 0
    message: Optional[str] = None


class _StreamState:
    def __init__(self, config: PipelineConfig) -> None:
        self.detector = BeatDetector(config)
        self.series: Optional[TimeSeries] = None
        self.version = 0

    def next_version(self) -> int:
        self.version += 1
        return self.version


RecorderFactory = Callable[[Path, float], CsvRecorder]


class StreamingRouter:
    """
    Usage:
        router = StreamingRouter(config)
        router.start()
        router.submit_ecg("ecg", chunk)
        for update in router.poll_updates():
            store.submit(update)
        router.shutdown()
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        streaming: Optional[StreamingSettings] = None,
        recorder_factory: Optional[RecorderFactory] = None,
    ) -> None:
        self.config = (config or settings.pipeline).validate()
        self.streaming = streaming or settings.streaming
        self._recorder_factory = recorder_factory or CsvRecorder

        self._commands: "queue.Queue[StreamCommand]" = queue.Queue(maxsize=self.streaming.command_queue_size)
        self._updates: "queue.Queue[StreamUpdate]" = queue.Queue(maxsize=self.streaming.update_queue_size)

        self._cond = threading.Condition()
        self._state = RouterState.IDLE
        self._pending = 0
        self._closed = False
        self._thread: Optional[threading.Thread] = None

        # worker-owned
        self._streams: Dict[str, _StreamState] = {}
        self._recorder: Optional[CsvRecorder] = None
        self._recording_stream: Optional[str] = None
        self._recording_state = RecordingState.OFF
        self._recording_version = 0

        self.dropped_commands = 0
        self.dropped_updates = 0

    # ---- lifecycle ---- #

    def start(self) -> "StreamingRouter":
        if self._thread is not None:
            return self
        self._thread = threading.Thread(target=self._run, name="hrvstream-router", daemon=True)
        self._thread.start()
        logger.info(
            "Router started (command_queue=%d, update_queue=%d, fs=%.1f)",
            self.streaming.command_queue_size,
            self.streaming.update_queue_size,
            self.config.fs,
        )
        return self

    def __enter__(self) -> "StreamingRouter":
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def state(self) -> RouterState:
        with self._cond:
            return self._state

    @property
    def recording_state(self) -> RecordingState:
        with self._cond:
            return self._recording_state

    def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        with self._cond:
            if self._closed:
                return
            self._closed = True
        if self.is_alive:
            try:
                self._commands.put(Shutdown(), timeout=timeout)
            except queue.Full:
                logger.error("Command queue still full after %s s, worker left running", timeout)
                return
            self._thread.join(timeout)
        logger.info(
            "Router stopped (dropped_commands=%d, dropped_updates=%d)",
            self.dropped_commands,
            self.dropped_updates,
        )

    # ---- producer side ---- #

    def _submit(self, command: StreamCommand) -> bool:
        with self._cond:
            if self._closed or not self.is_alive:
                raise ChannelClosed("router is not running")
            self._pending += 1
        try:
            self._commands.put(command, timeout=self.streaming.put_timeout_s)
        except queue.Full:
            with self._cond:
                self._pending -= 1
                self._cond.notify_all()
            self.dropped_commands += 1
            logger.warning("Command queue full, dropped %s", type(command).__name__)
            return False
        return True

    def submit_ecg(self, stream_id: str, chunk: TimeSeries) -> bool:
        return self._submit(ProcessEcg(stream_id, chunk))

    def submit_events(self, stream_id: str, events: Events) -> bool:
        return self._submit(IngestEvents(stream_id, events))

    def start_recording(self, path: Union[str, Path], fs: Optional[float] = None,
                        stream_id: Optional[str] = None) -> bool:
        return self._submit(StartRecording(Path(path), float(fs or self.config.fs), stream_id))

    def stop_recording(self) -> bool:
        return self._submit(StopRecording())

    # ---- consumer side ---- #

    def poll_updates(self, max_items: Optional[int] = None) -> List[StreamUpdate]:
        """Drain available updates without blocking."""
        out: List[StreamUpdate] = []
        while max_items is None or len(out) < max_items:
            try:
                out.append(self._updates.get_nowait())
            except queue.Empty:
                break
        if not out and self._thread is not None and not self.is_alive:
            raise ChannelClosed("router worker has stopped")
        return out

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every accepted command was processed. Returns False on timeout."""
        with self._cond:
            return self._cond.wait_for(
                lambda: self._pending == 0 or not self.is_alive, timeout=timeout
            )

    # ---- worker ---- #

    def _run(self) -> None:
        while True:
            command = self._commands.get()
            if isinstance(command, Shutdown):
                self._close_recorder()
                break
            with self._cond:
                self._state = RouterState.PROCESSING
            try:
                self._handle(command)
            except Exception as exc:
                logger.error("Unexpected failure on %s", type(command).__name__, exc_info=True)
                stream_id = getattr(command, "stream_id", None)
                st = self._streams.get(stream_id)
                version = st.version if st is not None else 0
                self._publish(StreamUpdate(stream_id, version, error=repr(exc), stage="router"))
            finally:
                with self._cond:
                    self._state = RouterState.IDLE
                    self._pending -= 1
                    self._cond.notify_all()
        with self._cond:
            self._cond.notify_all()

    def _publish(self, update: StreamUpdate) -> None:
        while True:
            try:
                self._updates.put_nowait(update)
                return
            except queue.Full:
                try:
                    self._updates.get_nowait()
                    self.dropped_updates += 1
                except queue.Empty:
                    pass

    def _stream(self, stream_id: str) -> _StreamState:
        if stream_id not in self._streams:
            self._streams[stream_id] = _StreamState(self.config)
        return self._streams[stream_id]

    def _handle(self, command: StreamCommand) -> None:
        if isinstance(command, ProcessEcg):
            self._process_ecg(command)
        elif isinstance(command, IngestEvents):
            self._ingest_events(command)
        elif isinstance(command, StartRecording):
            self._start_recording(command)
        elif isinstance(command, StopRecording):
            self._stop_recording()

    def _process_ecg(self, command: ProcessEcg) -> None:
        st = self._stream(command.stream_id)
        version = st.next_version()
        chunk = command.chunk

        if chunk.fs != self.config.fs:
            exc = ConfigurationError(
                f"chunk at {chunk.fs} Hz on a {self.config.fs} Hz router", stage="input"
            )
            self._publish(EcgUpdate(command.stream_id, version, error=str(exc), stage=exc.stage))
            return
        if not np.all(np.isfinite(chunk.samples)):
            exc = ConfigurationError("ECG chunk contains non-finite samples", stage="input")
            self._publish(EcgUpdate(command.stream_id, version, error=str(exc), stage=exc.stage))
            return

        # waveform, recording and detector stay sample-aligned
        st.series = chunk if st.series is None else st.series.concat(chunk)
        self._record(command.stream_id, chunk)
        self._publish(EcgUpdate(command.stream_id, version, series=st.series))

        try:
            st.detector.feed(chunk)
            events = st.detector.events()
            if len(events) < 2:
                raise InsufficientSignal(
                    f"{len(events)} beat(s) after {st.series.duration_s:.1f} s"
                )
        except PipelineError as exc:
            message = str(exc)
            self._publish(EventsUpdate(command.stream_id, version, error=message, stage=exc.stage))
            self._publish(
                HrvUpdate(
                    command.stream_id,
                    version,
                    error=message,
                    stage=exc.stage,
                    sqi=evaluate(st.series, None, self.config),
                    errors={name: message for name in ("rr", "time", "frequency", "nonlinear")},
                    config=self.config,
                )
            )
            return

        self._publish(EventsUpdate(command.stream_id, version, events=events))
        self._publish_hrv(command.stream_id, version, events, st.series)

    def _ingest_events(self, command: IngestEvents) -> None:
        st = self._stream(command.stream_id)
        version = st.next_version()
        events = command.events
        if events.fs != self.config.fs:
            exc = ConfigurationError(
                f"events at {events.fs} Hz on a {self.config.fs} Hz router", stage="input"
            )
            self._publish(EventsUpdate(command.stream_id, version, error=str(exc), stage=exc.stage))
            return
        self._publish(EventsUpdate(command.stream_id, version, events=events))
        self._publish_hrv(command.stream_id, version, events, st.series)

    def _publish_hrv(self, stream_id: str, version: int, events: Events,
                     series: Optional[TimeSeries]) -> None:
        result = analyze_events(events, series, self.config)
        rr_error = result.errors.get("rr")
        self._publish(
            HrvUpdate(
                stream_id,
                version,
                error=str(rr_error) if rr_error is not None else None,
                stage=rr_error.stage if rr_error is not None else None,
                events=events,
                rr=result.rr,
                time=result.time,
                frequency=result.frequency,
                nonlinear=result.nonlinear,
                sqi=result.sqi,
                errors=result.error_messages(),
                config=self.config,
            )
        )

    # ---- recording ---- #

    def _set_recording(self, state: RecordingState, message: Optional[str] = None) -> None:
        with self._cond:
            self._recording_state = state
        self._recording_version += 1
        path = self._recorder.path if self._recorder is not None else None
        samples = self._recorder.samples_written if self._recorder is not None else 0
        self._publish(
            RecordingUpdate(
                self._recording_stream,
                self._recording_version,
                error=message if state is RecordingState.ERROR else None,
                stage="recording" if state is RecordingState.ERROR else None,
                state=state,
                path=path,
                samples=samples,
                message=message,
            )
        )

    def _start_recording(self, command: StartRecording) -> None:
        self._close_recorder()
        self._recording_stream = command.stream_id
        self._recorder = self._recorder_factory(command.path, command.fs)
        self._set_recording(RecordingState.STARTING)
        try:
            self._recorder.open()
        except PipelineError as exc:
            logger.error("Recording could not start: %s", exc)
            self._recorder.close()
            self._set_recording(RecordingState.ERROR, str(exc))
            return
        logger.info("Recording to %s", command.path)
        self._set_recording(RecordingState.RECORDING)

    def _stop_recording(self) -> None:
        if self._recorder is None:
            self._set_recording(RecordingState.OFF)
            return
        self._close_recorder()
        logger.info("Recording stopped after %d samples", self._recorder.samples_written)
        self._set_recording(RecordingState.OFF)
        self._recorder = None

    def _close_recorder(self) -> None:
        if self._recorder is not None and self._recorder.is_open:
            self._recorder.close()

    def _record(self, stream_id: str, chunk: TimeSeries) -> None:
        if self._recording_state is not RecordingState.RECORDING or self._recorder is None:
            return
        if self._recording_stream is not None and stream_id != self._recording_stream:
            return
        try:
            self._recorder.write(chunk)
        except PipelineError as exc:
            logger.error("Recording failed, sink closed: %s", exc)
            self._recorder.close()
            self._set_recording(RecordingState.ERROR, str(exc))
