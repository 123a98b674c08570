# hrvstream/signals/errors.py
"""
Error taxonomy shared by the batch pipeline and the streaming router.

Every error carries the pipeline stage that raised it, so a batch caller can
report "which step failed" and the router can tag its error updates with it.

    InsufficientSignal   detector found fewer than two beats
    EmptyInput           a stage received no usable input at all
    TooFewSamples        input exists but is too short for the statistic
    ConfigurationError   invalid sampling rate, cutoffs, windows, ...
    RecordingIOError     the recording sink failed to open or write
    ChannelClosed        the router worker is gone
"""

from typing import Optional


class PipelineError(Exception):
    """Base class. `stage` names the component that failed."""

    default_stage: str = "pipeline"

    def __init__(self, message: str, stage: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage or self.default_stage

    @property
    def kind(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        return f"{self.kind} [{self.stage}]: {self.message}"


class InsufficientSignal(PipelineError):
    default_stage = "detect"


class EmptyInput(PipelineError):
    default_stage = "rr"


class TooFewSamples(PipelineError):
    default_stage = "hrv"


class ConfigurationError(PipelineError):
    default_stage = "config"


class RecordingIOError(PipelineError):
    default_stage = "recording"


class ChannelClosed(PipelineError):
    default_stage = "router"
