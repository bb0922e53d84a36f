"""Single-file conversion: readiness wait, cancellation check, ffmpeg run.

A file that is still being copied into the watched directory must not be
converted, so ``run`` first waits for the file size to settle. The job's
cancel event is checked before ffmpeg is started and is handed to the engine
as its cancellation input for the duration of the encode.
"""

import logging
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, Protocol
from convwatch.config.models import ConversionConfig
from convwatch.domain.errors import CopyTimeout, EngineParseError, EngineRunError, EngineStartError
from convwatch.domain.models import ConversionOutcome, ConversionResult, Job, ProgressSnapshot

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressSnapshot], None]


class Engine(Protocol):
    def start(self, input_path: Path, output_path: Path, args: List[str], cancel_event: threading.Event): ...


def file_size(path: Path) -> Optional[int]:
    """Current size in bytes, or None if the file cannot be stat'ed."""
    try:
        return path.stat().st_size
    except OSError:
        return None


def wait_until_stable(
    path: Path,
    cancel_event: threading.Event,
    interval: float,
    timeout: float,
    size_of: Callable[[Path], Optional[int]] = file_size,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Blocks until two consecutive non-zero size samples match.

    Returns False if ``cancel_event`` is set first. Raises CopyTimeout if the
    size is still changing after ``timeout`` seconds. A missing file counts
    as unstable; the controller cancels the job if it stays gone.
    """
    if cancel_event.is_set():
        return False

    started = clock()
    previous = size_of(path)
    while True:
        if cancel_event.wait(interval):
            return False
        current = size_of(path)
        if current and current == previous:
            return True
        previous = current
        waited = clock() - started
        if waited >= timeout:
            raise CopyTimeout(path, waited, last_size=current)


class ConversionTask:
    """Runs one job through ffmpeg and maps the result to a ConversionOutcome."""

    def __init__(
        self,
        engine: Engine,
        config: ConversionConfig,
        output_dir: Path,
        size_of: Callable[[Path], Optional[int]] = file_size,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.engine = engine
        self.config = config
        self.output_dir = output_dir
        self.size_of = size_of
        self.clock = clock

    def codec_args(self) -> List[str]:
        # Re-encode video, pass audio and subtitles through untouched
        return [
            "-c:v", self.config.video_codec,
            "-c:a", "copy",
            "-c:s", "copy",
            *self.config.extra_args,
        ]

    def output_path_for(self, input_path: Path) -> Path:
        """``<stem><ext>``, or ``<stem>.<source suffix>[.N]<ext>`` if that exists.

        Never returns a path that already exists.
        """
        extension = self.config.output_extension
        output_path = self.output_dir / f"{input_path.stem}{extension}"
        if not output_path.exists():
            return output_path

        base = f"{input_path.stem}.{input_path.suffix.lstrip('.')}" if input_path.suffix else input_path.stem
        output_path = self.output_dir / f"{base}{extension}"
        counter = 1
        while output_path.exists():
            output_path = self.output_dir / f"{base}.{counter}{extension}"
            counter += 1
        return output_path

    def run(self, job: Job, sink: ProgressSink) -> ConversionResult:
        started = self.clock()
        name = job.input_path.name

        def elapsed() -> float:
            return round(self.clock() - started, 3)

        try:
            ready = wait_until_stable(
                job.input_path,
                job.cancel_event,
                interval=self.config.settle_interval_s,
                timeout=self.config.copy_timeout_s,
                size_of=self.size_of,
                clock=self.clock,
            )
        except CopyTimeout as exc:
            return ConversionResult.failed(exc, duration_seconds=elapsed())

        if not ready or job.cancelled:
            logger.debug(f"CANCELLED_BEFORE_START: {name}")
            return ConversionResult.cancelled(duration_seconds=elapsed())

        output_path = self.output_path_for(job.input_path)
        try:
            process = self.engine.start(job.input_path, output_path, self.codec_args(), job.cancel_event)
        except EngineStartError as exc:
            return ConversionResult.failed(exc, duration_seconds=elapsed())

        for event in process.events():
            if isinstance(event, EngineParseError):
                logger.warning(f"PARSE_ERROR: {name}: {event} [{event.line}]")
                continue
            sink(event)

        try:
            process.wait()
        except EngineRunError as exc:
            return ConversionResult.failed(exc, duration_seconds=elapsed())

        if process.cancelled:
            return ConversionResult.cancelled(duration_seconds=elapsed())

        return ConversionResult(
            outcome=ConversionOutcome.COMPLETED,
            output_path=output_path,
            duration_seconds=elapsed(),
        )
