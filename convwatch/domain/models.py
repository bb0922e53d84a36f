import threading
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

class JobStatus(str, Enum):
    PENDING = "PENDING"
    CONVERTING = "CONVERTING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"

class ConversionOutcome(str, Enum):
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"

class ProgressSnapshot(BaseModel):
    """Point-in-time encoding progress. The all-default value means idle."""

    model_config = ConfigDict(frozen=True)

    input_file: Optional[str] = None
    frame: int = 0
    fps: float = 0.0
    size_kb: int = 0
    out_time_s: float = 0.0
    bitrate_kbps: float = 0.0
    speed: float = 0.0
    duration_s: float = 0.0
    percent: float = 0.0

    @property
    def is_idle(self) -> bool:
        return self == IDLE_SNAPSHOT

IDLE_SNAPSHOT = ProgressSnapshot()

class ConversionResult(BaseModel):
    outcome: ConversionOutcome
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    output_path: Optional[Path] = None
    duration_seconds: Optional[float] = None

    @classmethod
    def failed(cls, error: Exception, **kwargs) -> "ConversionResult":
        return cls(
            outcome=ConversionOutcome.FAILED,
            error_kind=type(error).__name__,
            error_message=str(error),
            **kwargs,
        )

    @classmethod
    def cancelled(cls, **kwargs) -> "ConversionResult":
        return cls(outcome=ConversionOutcome.CANCELLED, **kwargs)

class Job(BaseModel):
    """One pending or active conversion, keyed by ``input_path``.

    ``cancel_event`` is the cooperative cancellation token: the job table sets
    it when the file vanishes or on shutdown, and the dispatcher sets it once
    the conversion is done.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    input_path: Path
    cancel_event: threading.Event = Field(default_factory=threading.Event, exclude=True)
    created_at: datetime = Field(default_factory=datetime.now)
    status: JobStatus = JobStatus.PENDING
    result: Optional[ConversionResult] = None
    settled_size: Optional[int] = None  # size when CopyTimeout fired

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def finished(self) -> bool:
        return self.result is not None

    def cancel(self) -> None:
        self.cancel_event.set()
