"""Domain events for the watch/convert pipeline.

Events flow through the EventBus from the dispatcher thread. The lifecycle
controller subscribes to them and forwards each one into its own mailbox, so
the job table and the cached progress snapshot are only ever touched from the
controller thread.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pydantic import BaseModel
from .models import ConversionResult, Job, ProgressSnapshot


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class JobEvent(Event):
    """Base class for events related to a specific conversion job."""

    job: Job


class JobStarted(JobEvent):
    """Emitted when the dispatcher dequeues a job and begins converting it."""

    pass


class JobFinished(JobEvent):
    """Emitted once per dequeued job with its terminal outcome."""

    result: ConversionResult


class ProgressUpdated(Event):
    """Latest progress from the running conversion, or the idle snapshot."""

    snapshot: ProgressSnapshot


class DispatcherStopped(Event):
    """Emitted once after the dispatcher has drained its closed queue."""

    pass
