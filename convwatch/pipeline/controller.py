"""Lifecycle controller: the watch loop that owns all mutable pipeline state.

Each iteration scans the watched directory, reconciles the job table against
it, and then handles at most one message from its mailbox (progress or job
events relayed from the dispatcher thread, or a snapshot request from the
progress broker), waiting up to the poll interval for one to arrive.

The job table and the cached progress snapshot are only touched here, so
neither needs a lock. Everything that crosses threads goes through the
mailbox queue or a threading.Event.

States: RUNNING -> DRAINING -> TERMINATED.
"""

import logging
import queue
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, Protocol
from convwatch.config.models import AppConfig
from convwatch.domain.errors import DirectoryListError, DispatcherFull, TransportShutdownError
from convwatch.domain.events import DispatcherStopped, JobFinished, JobStarted, ProgressUpdated
from convwatch.domain.models import IDLE_SNAPSHOT, ProgressSnapshot
from convwatch.infrastructure.event_bus import EventBus
from convwatch.infrastructure.file_scanner import FileScanner
from convwatch.pipeline.broker import ProgressBroker, SnapshotRequest
from convwatch.pipeline.conversion import file_size
from convwatch.pipeline.dispatcher import Dispatcher
from convwatch.pipeline.job_table import JobTable


class ControllerState(str, Enum):
    RUNNING = "RUNNING"
    DRAINING = "DRAINING"
    TERMINATED = "TERMINATED"


class Transport(Protocol):
    def start(self) -> None: ...
    def stop(self) -> None: ...


class LifecycleController:
    """Ties scanner, job table, dispatcher and progress broker together.

    Args:
        config: AppConfig; uses watch.directory, watch.poll_interval_s and
            server.reply_timeout_s.
        scanner: FileScanner for the watched directory.
        dispatcher: Dispatcher executing queued jobs.
        event_bus: EventBus the dispatcher publishes on.
        size_of: File size probe, used to release timed-out jobs whose file
            changed afterwards.
    """

    def __init__(
        self,
        config: AppConfig,
        scanner: FileScanner,
        dispatcher: Dispatcher,
        event_bus: EventBus,
        size_of: Callable[[Path], Optional[int]] = file_size,
    ):
        self.config = config
        self.scanner = scanner
        self.dispatcher = dispatcher
        self.event_bus = event_bus
        self.size_of = size_of
        self.logger = logging.getLogger(__name__)

        self.mailbox: "queue.Queue[Any]" = queue.Queue()
        self.broker = ProgressBroker(self.mailbox, reply_timeout=config.server.reply_timeout_s)
        self.jobs = JobTable()
        self.snapshot: ProgressSnapshot = IDLE_SNAPSHOT
        self.state = ControllerState.RUNNING

        self._shutdown_requested = threading.Event()
        self._dispatcher_stopped = False

        self._setup_subscriptions()

    def _setup_subscriptions(self):
        # Relay dispatcher-thread events into the mailbox; handled on our thread
        for event_type in (ProgressUpdated, JobStarted, JobFinished, DispatcherStopped):
            self.event_bus.subscribe(event_type, self.mailbox.put)

    @property
    def poll_interval(self) -> float:
        return self.config.watch.poll_interval_s

    def request_shutdown(self) -> None:
        """Asks the loop to shut down. Safe to call from a signal handler."""
        self._shutdown_requested.set()

    def run(self, transport: Optional[Transport] = None) -> None:
        """Runs until shutdown completes.

        Raises DirectoryListError if the watched directory cannot be listed,
        and TransportShutdownError if the transport failed to stop (after
        every other shutdown step has finished).
        """
        directory = self.config.watch.directory
        self.logger.info(f"Watching {directory} (poll={self.poll_interval}s)")

        if transport is not None:
            transport.start()
        self.dispatcher.start()

        try:
            self._run_loop()
        except DirectoryListError as exc:
            self.logger.error(f"Fatal: {exc}")
            self._abort(transport)
            raise

        self._drain()
        self._terminate(transport)

    # ------------------------------------------------------------------
    # RUNNING
    # ------------------------------------------------------------------

    def _run_loop(self) -> None:
        while self.state == ControllerState.RUNNING:
            self._reconcile()

            if self._shutdown_requested.is_set():
                self._begin_shutdown()
                break

            try:
                message = self.mailbox.get(timeout=self.poll_interval)
            except queue.Empty:
                continue
            self._handle(message)

    def _reconcile(self) -> None:
        self.jobs.release_changed(self.size_of)

        result = self.scanner.poll(self.config.watch.directory, self.jobs.paths())

        for index, path in enumerate(result.discovered):
            job, created = self.jobs.register(path)
            if not created:
                continue
            try:
                self.dispatcher.submit(job, block=False)
            except DispatcherFull:
                # Left unregistered; a later scan picks these up again
                self.jobs.discard(path)
                deferred = len(result.discovered) - index
                self.logger.debug(f"Queue full, deferring {deferred} file(s)")
                break
            self.logger.info(f"New file: {path.name}")

        for path in result.vanished:
            self.logger.info(f"File removed: {path.name}")
            self.jobs.cancel_and_remove(path)

    def _handle(self, message: Any) -> None:
        if isinstance(message, SnapshotRequest):
            self.broker.answer(message, self.snapshot)
        elif isinstance(message, ProgressUpdated):
            self.snapshot = message.snapshot
        elif isinstance(message, JobStarted):
            self.jobs.mark_started(message.job)
        elif isinstance(message, JobFinished):
            self.jobs.finish(message.job, message.result, size_of=self.size_of)
        elif isinstance(message, DispatcherStopped):
            self.logger.warning("Dispatcher stopped while running")
            self._dispatcher_stopped = True
            self._begin_shutdown()
        else:
            self.logger.debug(f"Ignoring unexpected message: {message!r}")

    def _begin_shutdown(self) -> None:
        cancelled = self.jobs.cancel_all()
        self.logger.info(f"Shutting down: cancelled {cancelled} pending job(s)")
        self.dispatcher.close()
        self.snapshot = IDLE_SNAPSHOT
        self.state = ControllerState.DRAINING

    # ------------------------------------------------------------------
    # DRAINING / TERMINATED
    # ------------------------------------------------------------------

    def _drain(self) -> None:
        while not self._dispatcher_stopped:
            try:
                message = self.mailbox.get(timeout=self.poll_interval)
            except queue.Empty:
                continue
            if isinstance(message, SnapshotRequest):
                self.broker.answer(message, IDLE_SNAPSHOT)
            elif isinstance(message, JobFinished):
                self.jobs.finish(message.job, message.result)
            elif isinstance(message, DispatcherStopped):
                self._dispatcher_stopped = True

        self.dispatcher.join()
        self.broker.close()
        self.logger.info("Dispatcher drained")

    def _terminate(self, transport: Optional[Transport]) -> None:
        self.state = ControllerState.TERMINATED
        if transport is not None:
            try:
                transport.stop()
            except TransportShutdownError as exc:
                self.logger.error(f"Error stopping server: {exc}")
                raise
        self.logger.info("Application terminated successfully")

    def _abort(self, transport: Optional[Transport]) -> None:
        """Best-effort teardown after a fatal error; the error is re-raised by run()."""
        self.jobs.cancel_all()
        self.dispatcher.close()
        self.dispatcher.join()
        self.broker.close()
        self.state = ControllerState.TERMINATED
        if transport is not None:
            try:
                transport.stop()
            except TransportShutdownError as exc:
                self.logger.error(f"Error stopping server: {exc}")
