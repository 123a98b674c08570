# hrvstream/streaming/recorder.py
"""
Per-chunk recording sink.

Every ECG chunk handed to write() is appended to a CSV file as rows of
(sample_index, timestamp, value) and is on disk when write() returns.
Failures surface as RecordingIOError so the router can switch its recording
state to ERROR without touching the processing path.
"""

from pathlib import Path
from typing import Union

import numpy as np
import pandas as pd

from hrvstream.signals.errors import ConfigurationError, RecordingIOError
from hrvstream.signals.types import TimeSeries

COLUMNS = ["sample_index", "timestamp", "value"]


class CsvRecorder:
    def __init__(self, path: Union[str, Path], fs: float) -> None:
        self.path = Path(path)
        self.fs = float(fs)
        self.samples_written = 0
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            pd.DataFrame(columns=COLUMNS).to_csv(self.path, index=False)
        except OSError as exc:
            raise RecordingIOError(f"cannot open {self.path}: {exc}") from exc
        self.samples_written = 0
        self._open = True

    def write(self, chunk: TimeSeries) -> int:
        if not self._open:
            raise RecordingIOError(f"recorder for {self.path} is not open")
        if chunk.fs != self.fs:
            raise ConfigurationError(
                f"recording runs at {self.fs} Hz, chunk is {chunk.fs} Hz", stage="recording"
            )
        idx = np.arange(self.samples_written, self.samples_written + len(chunk), dtype=np.int64)
        df = pd.DataFrame(
            {
                "sample_index": idx,
                "timestamp": idx / self.fs,
                "value": chunk.samples,
            }
        )
        try:
            # pandas opens and closes the file per call, so the chunk is flushed
            df.to_csv(self.path, mode="a", header=False, index=False)
        except OSError as exc:
            raise RecordingIOError(f"write to {self.path} failed: {exc}") from exc
        self.samples_written += len(chunk)
        return len(chunk)

    def close(self) -> None:
        self._open = False
