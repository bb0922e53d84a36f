import subprocess
import re
import logging
import threading
import queue
from pathlib import Path
from typing import Iterator, List, Optional, Union
from convwatch.config.models import CONTAINER_EXTENSIONS
from convwatch.domain.errors import EngineParseError, EngineRunError, EngineStartError
from convwatch.domain.models import ProgressSnapshot

logger = logging.getLogger(__name__)

_MUXERS = {ext: muxer for muxer, ext in CONTAINER_EXTENSIONS.items()}

_DURATION_RE = re.compile(r"Duration:\s*(-?\d+):(\d+):(\d+(?:\.\d+)?)")
_FIELD_RE = re.compile(r"(\w+)=\s*(\S+)")


def _clock_to_seconds(value: str) -> float:
    """'01:02:03.50' -> 3723.5. Negative clocks (pre-roll) count as zero."""
    if value.startswith("-"):
        return 0.0
    h, m, s = value.split(":")
    return int(h) * 3600 + int(m) * 60 + float(s)


def _number(value: str, suffixes: tuple = ()) -> float:
    if value == "N/A":
        return 0.0
    for suffix in suffixes:
        if value.endswith(suffix):
            value = value[: -len(suffix)]
            break
    return float(value)


def parse_duration(line: str) -> Optional[float]:
    """Reads the input duration from ffmpeg's 'Duration: HH:MM:SS.xx' header line."""
    match = _DURATION_RE.search(line)
    if not match:
        return None
    return _clock_to_seconds(":".join(match.groups()))


def is_progress_line(line: str) -> bool:
    return "time=" in line and ("frame=" in line or line.startswith("size="))


def parse_progress_line(line: str, input_file: Optional[str] = None, duration: float = 0.0) -> ProgressSnapshot:
    """Parses an ffmpeg stats line into a ProgressSnapshot.

    Example input::

        frame=  100 fps= 25 q=28.0 size=    512kB time=00:00:04.00 bitrate=1048.6kbits/s speed=1.02x

    Raises EngineParseError when a field is present but malformed.
    """
    fields = dict(_FIELD_RE.findall(line))
    try:
        frame = int(_number(fields.get("frame", "0")))
        fps = _number(fields.get("fps", "0"))
        size_raw = fields.get("size", fields.get("Lsize", "0"))
        size_kb = int(_number(size_raw, ("KiB", "kB", "B")))
        time_raw = fields.get("time", "N/A")
        out_time = 0.0 if time_raw == "N/A" else _clock_to_seconds(time_raw)
        bitrate = _number(fields.get("bitrate", "0"), ("kbits/s",))
        speed = _number(fields.get("speed", "0"), ("x",))
    except ValueError as exc:
        raise EngineParseError(f"Unparseable progress line: {exc}", line=line) from exc

    percent = 0.0
    if duration > 0:
        percent = min(100.0, (out_time / duration) * 100.0)

    return ProgressSnapshot(
        input_file=input_file,
        frame=frame,
        fps=fps,
        size_kb=size_kb,
        out_time_s=out_time,
        bitrate_kbps=bitrate,
        speed=speed,
        duration_s=duration,
        percent=percent,
    )


class FFmpegProcess:
    """A running ffmpeg conversion.

    ``events()`` yields progress snapshots (and non-fatal parse errors) while
    ffmpeg runs, and terminates the process once ``cancel_event`` is set.
    ``wait()`` blocks until exit, sets ``done`` and finalizes the output:
    the ``.tmp`` file is renamed on success and removed otherwise.
    """

    def __init__(
        self,
        process: subprocess.Popen,
        cancel_event: threading.Event,
        input_path: Path,
        output_path: Path,
        poll_interval: float = 0.1,
    ):
        self.process = process
        self.cancel_event = cancel_event
        self.input_path = input_path
        self.output_path = output_path
        self.tmp_path = output_path.with_suffix(".tmp")
        self.poll_interval = poll_interval
        self.done = threading.Event()
        self.cancelled = False
        self.duration = 0.0

        self._lines: "queue.Queue[Optional[str]]" = queue.Queue()
        self._reader = threading.Thread(target=self._read_output, name="ffmpeg-reader", daemon=True)
        self._reader.start()

    def _read_output(self):
        try:
            if self.process.stdout:
                for line in self.process.stdout:
                    self._lines.put(line)
        finally:
            self._lines.put(None)

    def _terminate(self):
        logger.info(f"FFMPEG_INTERRUPTED: {self.input_path.name} (cancelled)")
        self.cancelled = True
        self.process.terminate()
        try:
            self.process.wait(timeout=3)
        except subprocess.TimeoutExpired:
            self.process.kill()
            self.process.wait()

    def events(self) -> Iterator[Union[ProgressSnapshot, EngineParseError]]:
        input_file = self.input_path.name
        while True:
            if self.cancel_event.is_set():
                self._terminate()
                return

            try:
                line = self._lines.get(timeout=self.poll_interval)
            except queue.Empty:
                continue

            if line is None:
                return

            line = line.strip()
            if not line:
                continue

            if not self.duration:
                duration = parse_duration(line)
                if duration:
                    self.duration = duration
                    continue

            if not is_progress_line(line):
                continue

            try:
                yield parse_progress_line(line, input_file=input_file, duration=self.duration)
            except EngineParseError as exc:
                yield exc

    def _discard_tmp(self):
        if self.tmp_path.exists():
            self.tmp_path.unlink()

    def wait(self) -> int:
        try:
            self.process.wait()
        finally:
            self.done.set()

        returncode = self.process.returncode
        if self.cancelled:
            self._discard_tmp()
            return returncode
        if returncode != 0:
            self._discard_tmp()
            raise EngineRunError(returncode)

        if self.tmp_path.exists():
            self.tmp_path.rename(self.output_path)
        return returncode


class FFmpegAdapter:
    """Spawns ffmpeg conversions with cooperative cancellation."""

    def __init__(self, ffmpeg_path: str = "ffmpeg", poll_interval: float = 0.1):
        self.ffmpeg_path = ffmpeg_path
        self.poll_interval = poll_interval
        self.logger = logging.getLogger(__name__)

    def build_command(self, input_path: Path, output_path: Path, args: List[str]) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        cmd = [
            self.ffmpeg_path,
            "-y",  # Overwrite output files
            "-hide_banner",
            "-nostdin",
            "-i", str(input_path),
            *args,
        ]
        # Write to .tmp during conversion (renamed on success); the muxer is
        # forced since .tmp does not indicate a format.
        muxer = _MUXERS.get(output_path.suffix, "mp4")
        cmd.extend(["-f", muxer, str(output_path.with_suffix(".tmp"))])
        return cmd

    def start(
        self,
        input_path: Path,
        output_path: Path,
        args: List[str],
        cancel_event: threading.Event,
    ) -> FFmpegProcess:
        """Starts ffmpeg and returns the running process wrapper.

        Raises EngineStartError if the output directory or the process
        cannot be created.
        """
        cmd = self.build_command(input_path, output_path, args)
        self.logger.info(f"FFMPEG_START: {input_path.name} -> {output_path}")
        self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")

        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                universal_newlines=True,
                bufsize=1,
            )
        except OSError as exc:
            raise EngineStartError(f"Cannot start {self.ffmpeg_path}: {exc}") from exc

        return FFmpegProcess(
            process,
            cancel_event,
            input_path=input_path,
            output_path=output_path,
            poll_interval=self.poll_interval,
        )
