"""Error taxonomy for the watch/convert pipeline.

Only ``DirectoryListError`` and ``TransportShutdownError`` surface at process
level. Everything else is a per-job outcome: the dispatcher records it on the
job's ``ConversionResult`` and moves on to the next queued file.
"""


class ConvwatchError(Exception):
    """Base class for all convwatch errors."""


class DirectoryListError(ConvwatchError):
    """The watched directory could not be listed. Fatal for the controller."""


class CopyTimeout(ConvwatchError):
    """Input file size kept changing past the readiness timeout."""

    def __init__(self, path, waited_s: float, last_size=None):
        self.path = path
        self.waited_s = waited_s
        self.last_size = last_size
        super().__init__(f"{path} still changing after {waited_s:.1f}s (size={last_size})")


class EngineStartError(ConvwatchError):
    """ffmpeg could not be spawned."""


class EngineParseError(ConvwatchError):
    """A progress line from ffmpeg could not be parsed. Logged, never fatal."""

    def __init__(self, message: str, line: str = ""):
        self.line = line
        super().__init__(message)


class EngineRunError(ConvwatchError):
    """ffmpeg exited with a failure status."""

    def __init__(self, returncode: int):
        self.returncode = returncode
        super().__init__(f"ffmpeg exited with code {returncode}")


class TransportShutdownError(ConvwatchError):
    """The HTTP status server did not shut down within its timeout."""


class DispatcherClosed(ConvwatchError):
    """A job was submitted after the dispatcher queue was closed."""


class DispatcherFull(ConvwatchError):
    """A non-blocking submit found the dispatcher queue at capacity."""
