import threading
import time
import pytest
import yaml
from pathlib import Path
from convwatch.config.models import AppConfig
from convwatch.domain.errors import EngineRunError, EngineStartError
from convwatch.domain.models import ProgressSnapshot
from convwatch.infrastructure.event_bus import EventBus

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def watch_dir(tmp_path):
    """Creates an empty watched directory."""
    directory = tmp_path / "watch"
    directory.mkdir()
    return directory

@pytest.fixture
def sample_config(watch_dir, tmp_path):
    """Returns an AppConfig with intervals short enough for tests."""
    return AppConfig(
        general={"debug": False},
        watch={
            "directory": watch_dir,
            "extensions": [".mp4", ".mkv", ".avi"],
            "poll_interval_s": 0.01,
            "queue_size": 100,
        },
        conversion={
            "output_dir": tmp_path / "out",
            "settle_interval_s": 0.01,
            "copy_timeout_s": 5.0,
        },
        server={
            "host": "127.0.0.1",
            "port": 0,
            "shutdown_timeout_s": 1.0,
            "reply_timeout_s": 2.0,
        },
    )

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "convwatch.yaml"

    content = {
        'general': {
            'debug': True,
        },
        'watch': {
            'directory': str(tmp_path / "incoming"),
            'extensions': ['mp4', '.mkv'],
            'poll_interval_s': 0.5,
            'queue_size': 10,
        },
        'conversion': {
            'video_codec': 'libx265',
            'container': 'matroska',
            'settle_interval_s': 2.0,
            'copy_timeout_s': 120,
        },
        'server': {
            'port': 9090,
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

# ============================================================================
# File System Fixtures
# ============================================================================

@pytest.fixture
def make_video(watch_dir):
    """Writes a dummy video file into the watched directory."""
    def _make(name: str, size: int = 2048) -> Path:
        path = watch_dir / name
        path.write_bytes(b"x" * size)
        return path
    return _make

# ============================================================================
# Synchronization helpers
# ============================================================================

@pytest.fixture
def wait_for():
    """Polls a predicate until it holds or the timeout expires."""
    def _wait(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()
    return _wait

# ============================================================================
# Fake transcoding engine
# ============================================================================

class FakeProcess:
    """Stands in for FFmpegProcess: yields scripted events, then waits."""

    def __init__(self, engine, input_path, output_path, cancel_event):
        self.engine = engine
        self.input_path = input_path
        self.output_path = output_path
        self.cancel_event = cancel_event
        self.cancelled = False
        self.done = threading.Event()

    def events(self):
        for event in self.engine.events:
            yield event
        if self.engine.block:
            while not self.cancel_event.wait(0.005):
                if self.engine.release.is_set():
                    break
            if self.cancel_event.is_set() and not self.engine.release.is_set():
                self.cancelled = True

    def wait(self):
        self.engine._finished(self)
        self.done.set()
        if self.engine.returncode:
            raise EngineRunError(self.engine.returncode)
        return 0


class FakeEngine:
    """Records every start() call and the interval each run occupied.

    With ``block=True`` a run lasts until its cancel event is set or
    ``release`` is set.
    """

    def __init__(self, events=None, block=False, returncode=0, fail_start=False):
        self.events = list(events) if events is not None else [
            ProgressSnapshot(input_file="clip", frame=10, out_time_s=1.0),
            ProgressSnapshot(input_file="clip", frame=20, out_time_s=2.0),
        ]
        self.block = block
        self.returncode = returncode
        self.fail_start = fail_start
        self.release = threading.Event()
        self.calls = []
        self.intervals = []
        self.processes = []
        self._active = {}
        self._lock = threading.Lock()

    def start(self, input_path, output_path, args, cancel_event):
        if self.fail_start:
            raise EngineStartError("ffmpeg not found")
        process = FakeProcess(self, input_path, output_path, cancel_event)
        with self._lock:
            self.calls.append(input_path)
            self.processes.append(process)
            self._active[id(process)] = time.monotonic()
        return process

    def _finished(self, process):
        with self._lock:
            started = self._active.pop(id(process))
            self.intervals.append((process.input_path, started, time.monotonic()))

    @property
    def call_names(self):
        with self._lock:
            return [p.name for p in self.calls]


@pytest.fixture
def make_engine():
    """Returns the FakeEngine class for tests needing custom behaviour."""
    return FakeEngine

@pytest.fixture
def fake_engine():
    return FakeEngine()

@pytest.fixture
def blocking_engine():
    engine = FakeEngine(block=True)
    yield engine
    engine.release.set()


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
