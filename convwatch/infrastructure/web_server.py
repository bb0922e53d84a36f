"""JSON progress endpoint for convwatch.

Every GET, whatever the path, returns the current progress snapshot. Handler
threads never read pipeline state directly: each request performs one
rendezvous through the ProgressBroker and serializes whatever the controller
hands back.

Uses stdlib http.server + socketserver only.
"""
from __future__ import annotations

import logging
import socketserver
import threading
from http.server import BaseHTTPRequestHandler
from typing import TYPE_CHECKING, Optional

from convwatch.domain.errors import TransportShutdownError

if TYPE_CHECKING:
    from convwatch.pipeline.broker import ProgressBroker

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8080


class ProgressRequestHandler(BaseHTTPRequestHandler):
    """Serves the progress snapshot as JSON."""

    broker: "ProgressBroker"

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        logger.debug("%s - %s", self.address_string(), format % args)

    def _send_body(self, body: bytes, content_type: str, status: int = 200) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self) -> None:
        snapshot = self.broker.request()
        try:
            body = snapshot.model_dump_json().encode("utf-8")
        except Exception as exc:
            logger.warning("Progress serialization failed: %s", exc)
            self._send_body(str(exc).encode("utf-8"), "text/plain; charset=utf-8", status=500)
            return
        self._send_body(body, "application/json")


class _ThreadingHTTPServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    """Thread-per-request HTTP server with address reuse and daemon threads."""

    allow_reuse_address = True
    daemon_threads = True  # request threads die when main thread exits


class ProgressServer:
    """HTTP transport for progress polling.

    Usage::

        server = ProgressServer(broker, port=8080)
        server.start()   # non-blocking
        # ... controller runs ...
        server.stop()    # bounded by shutdown_timeout, raises TransportShutdownError
    """

    def __init__(
        self,
        broker: "ProgressBroker",
        port: int = DEFAULT_PORT,
        host: str = "0.0.0.0",
        shutdown_timeout: float = 5.0,
    ) -> None:
        self.broker = broker
        self.port = port
        self.host = host
        self.shutdown_timeout = shutdown_timeout
        self._server: Optional[_ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> Optional[tuple]:
        """Bound (host, port), or None when not serving."""
        if self._server is None:
            return None
        return self._server.server_address[:2]

    def start(self) -> None:
        """Start the listener in a daemon background thread."""
        # Per-server handler class so the broker is not shared between servers
        handler = type("BoundProgressRequestHandler", (ProgressRequestHandler,), {"broker": self.broker})
        try:
            self._server = _ThreadingHTTPServer((self.host, self.port), handler)
        except OSError as exc:
            logger.warning("Progress server: could not bind to %s:%d: %s", self.host, self.port, exc)
            return

        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="convwatch-progress-server",
            daemon=True,
        )
        self._thread.start()
        host, port = self.address
        display_host = "localhost" if host in ("0.0.0.0", "::") else host
        logger.info("Progress server: http://%s:%d/", display_host, port)

    def stop(self) -> None:
        """Gracefully stop the server, giving up after shutdown_timeout seconds."""
        if self._server is None:
            return

        server, self._server = self._server, None
        stopper = threading.Thread(target=server.shutdown, name="convwatch-progress-shutdown", daemon=True)
        stopper.start()
        stopper.join(timeout=self.shutdown_timeout)
        if stopper.is_alive():
            raise TransportShutdownError(
                f"Progress server did not stop within {self.shutdown_timeout:.1f}s"
            )

        try:
            server.server_close()
        except OSError as exc:
            raise TransportShutdownError(f"Progress server close failed: {exc}") from exc

        if self._thread:
            self._thread.join(timeout=self.shutdown_timeout)
            self._thread = None
        logger.info("Progress server stopped")
