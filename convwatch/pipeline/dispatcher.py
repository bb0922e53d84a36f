import logging
import queue
import threading
from typing import Optional, Protocol
from convwatch.domain.errors import DispatcherClosed, DispatcherFull
from convwatch.domain.events import DispatcherStopped, JobFinished, JobStarted, ProgressUpdated
from convwatch.domain.models import (
    IDLE_SNAPSHOT,
    ConversionOutcome,
    ConversionResult,
    Job,
    ProgressSnapshot,
)
from convwatch.infrastructure.event_bus import EventBus
from convwatch.pipeline.conversion import ProgressSink


class Runner(Protocol):
    def run(self, job: Job, sink: ProgressSink) -> ConversionResult: ...


class Dispatcher:
    """Single worker that converts queued jobs strictly one at a time.

    Jobs arrive through a bounded queue. Progress, start and finish
    notifications are published on the EventBus; after every job, whatever
    its outcome, an idle snapshot follows. ``close()`` ends intake: anything
    still queued is drained as a cancellation without touching the engine,
    then DispatcherStopped is published.

    Args:
        runner: Converts a single job (normally a ConversionTask).
        event_bus: EventBus receiving job and progress events.
        queue_size: Capacity of the pending-job queue.
    """

    def __init__(self, runner: Runner, event_bus: EventBus, queue_size: int = 100):
        self.runner = runner
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)
        self._queue: "queue.Queue[Optional[Job]]" = queue.Queue(maxsize=queue_size)
        self._closed = threading.Event()
        self._close_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self.stopped = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="convwatch-dispatcher", daemon=True)
        self._thread.start()

    def submit(self, job: Job, block: bool = True) -> None:
        """Queues a job.

        With ``block=False`` a full queue raises DispatcherFull instead of
        waiting for the worker to make room.
        """
        if self._closed.is_set():
            raise DispatcherClosed(f"Dispatcher closed, cannot queue {job.input_path}")
        try:
            self._queue.put(job, block=block)
        except queue.Full:
            raise DispatcherFull(f"Dispatcher queue full, cannot queue {job.input_path}") from None

    def close(self) -> None:
        """Stops accepting jobs. Safe to call more than once."""
        with self._close_lock:
            if self._closed.is_set():
                return
            self._closed.set()
        # Sentinel goes behind any queued jobs so they are drained first
        if not self.stopped.is_set():
            self._queue.put(None)

    def join(self, timeout: Optional[float] = None) -> bool:
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _publish_progress(self, snapshot: ProgressSnapshot) -> None:
        self.event_bus.publish(ProgressUpdated(snapshot=snapshot))

    def _run(self) -> None:
        try:
            while True:
                job = self._queue.get()
                if job is None:
                    break
                self._process(job)
        finally:
            self.logger.info("Dispatcher stopped")
            self.stopped.set()
            self.event_bus.publish(DispatcherStopped())

    def _process(self, job: Job) -> None:
        name = job.input_path.name

        if job.cancelled or self._closed.is_set():
            job.cancel()
            self.logger.info(f"Conversion cancelled: {name}")
            self.event_bus.publish(JobFinished(job=job, result=ConversionResult.cancelled()))
            self._publish_progress(IDLE_SNAPSHOT)
            return

        self.logger.info(f"Converting file: {name}")
        self.event_bus.publish(JobStarted(job=job))
        try:
            result = self.runner.run(job, self._publish_progress)
        except Exception as exc:
            self.logger.exception(f"Unexpected error converting {name}")
            result = ConversionResult.failed(exc)

        # Mark the job done; also releases anything still waiting on its token
        job.cancel()

        if result.outcome == ConversionOutcome.COMPLETED:
            self.logger.info(f"Conversion complete: {name} ({result.duration_seconds}s)")
        elif result.outcome == ConversionOutcome.CANCELLED:
            self.logger.info(f"Conversion cancelled: {name}")
        else:
            self.logger.error(f"Error converting file: {name}: {result.error_kind}: {result.error_message}")

        self.event_bus.publish(JobFinished(job=job, result=result))
        self._publish_progress(IDLE_SNAPSHOT)
