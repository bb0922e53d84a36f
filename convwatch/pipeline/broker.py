"""Rendezvous between HTTP handler threads and the lifecycle controller.

The controller is the only reader and writer of the cached progress snapshot.
An observer thread never touches it: ``request()`` drops a SnapshotRequest
into the controller's mailbox and blocks on that request's private one-slot
reply queue. The controller answers from its cache without waiting for fresh
progress.

Every request is answered exactly once. After ``close()`` the mailbox is
drained and each pending request receives the idle snapshot; requests made
after closure get the idle snapshot immediately. A request that is put into
the mailbox before ``closed`` is set is always seen by the drain in
``close()``, and one put afterwards sees the flag itself, so no observer can
be left waiting.
"""

import logging
import queue
import threading
from typing import Any, List
from convwatch.domain.models import IDLE_SNAPSHOT, ProgressSnapshot

logger = logging.getLogger(__name__)


class SnapshotRequest:
    """One outstanding progress request with its reply slot."""

    __slots__ = ("reply",)

    def __init__(self):
        self.reply: "queue.Queue[ProgressSnapshot]" = queue.Queue(maxsize=1)

    def answer(self, snapshot: ProgressSnapshot) -> bool:
        try:
            self.reply.put_nowait(snapshot)
        except queue.Full:
            return False
        return True


class ProgressBroker:
    """Observer-facing side of the progress rendezvous.

    Args:
        mailbox: The controller's inbound message queue.
        reply_timeout: Upper bound on how long ``request()`` blocks.
    """

    def __init__(self, mailbox: "queue.Queue[Any]", reply_timeout: float = 5.0):
        self.mailbox = mailbox
        self.reply_timeout = reply_timeout
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def request(self) -> ProgressSnapshot:
        """Returns the controller's latest snapshot. Called from observer threads."""
        if self._closed.is_set():
            return IDLE_SNAPSHOT

        request = SnapshotRequest()
        self.mailbox.put(request)
        if self._closed.is_set():
            # close() may or may not have drained us; answer locally either way
            request.answer(IDLE_SNAPSHOT)

        try:
            return request.reply.get(timeout=self.reply_timeout)
        except queue.Empty:
            logger.warning("Progress request not answered within %.1fs", self.reply_timeout)
            return IDLE_SNAPSHOT

    @staticmethod
    def answer(request: SnapshotRequest, snapshot: ProgressSnapshot) -> bool:
        """Controller side: reply to one request. False if already answered."""
        return request.answer(snapshot)

    def close(self) -> List[Any]:
        """Refuses further requests and answers pending ones with idle.

        Returns the non-request messages drained from the mailbox.
        """
        self._closed.set()
        leftovers = []
        while True:
            try:
                message = self.mailbox.get_nowait()
            except queue.Empty:
                break
            if isinstance(message, SnapshotRequest):
                message.answer(IDLE_SNAPSHOT)
            else:
                leftovers.append(message)
        return leftovers
