import threading
import time
import pytest
from pathlib import Path
from typing import List, Optional
from bpff.config.models import AppConfig
from bpff.config.workspace import Workspace
from bpff.domain.models import ProgressTick, WorkItem
from bpff.infrastructure.event_bus import EventBus

# ============================================================================
# Fake encoder
# ============================================================================

class FakeHandle:
    """Scripted stand-in for EncoderHandle.

    A writer thread appends `chunks` to the output file, reporting one progress
    tick per chunk, then writes `trailer` bytes without a tick (like a muxer
    finalizing the container). `hang=True` keeps the "process" alive until it
    is killed or stopped.
    """

    def __init__(
        self,
        output_path: Path,
        chunks: List[int],
        on_line=None,
        on_progress=None,
        exit_code: int = 0,
        trailer: int = 0,
        hang: bool = False,
        media_duration: float = 10.0,
        tick_delay: float = 0.01,
        start_delay: float = 0.05,
    ):
        self.output_path = output_path
        self.chunks = chunks
        self.on_line = on_line
        self.on_progress = on_progress
        self.exit_code = exit_code
        self.trailer = trailer
        self.hang = hang
        self.media_duration = media_duration
        self.tick_delay = tick_delay
        self.start_delay = start_delay
        self.args = ["ffmpeg", "-i", "input", str(output_path)]
        self.ticks_emitted = 0
        self.kill_calls = 0
        self.stop_calls = 0
        self._killed = threading.Event()
        self._returncode: Optional[int] = None
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def _run(self):
        time.sleep(self.start_delay)
        with open(self.output_path, "wb") as f:
            total = len(self.chunks) or 1
            for index, size in enumerate(self.chunks):
                if self._killed.is_set():
                    break
                f.write(b"x" * size)
                f.flush()
                self.ticks_emitted += 1
                if self.on_line:
                    self.on_line(f"frame={index} time=00:00:0{index}.00 speed=2.0x")
                if self.on_progress:
                    self.on_progress(ProgressTick(
                        percent_complete=min(100.0, (index + 1) / total * 100.0),
                        speed_multiplier=2.0,
                    ))
                time.sleep(self.tick_delay)
            if not self._killed.is_set() and self.trailer:
                f.write(b"x" * self.trailer)
        if self.hang:
            self._killed.wait(timeout=10)
        if self.on_line and self.exit_code:
            self.on_line("Conversion failed!")
        self._returncode = -9 if self._killed.is_set() else self.exit_code

    @property
    def returncode(self) -> Optional[int]:
        return self._returncode

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        self._thread.join(timeout)
        if self._thread.is_alive():
            return None
        return self._returncode

    def kill(self):
        self.kill_calls += 1
        self._killed.set()

    def terminate(self):
        self._killed.set()

    def stop(self, grace: float = 3.0):
        self.stop_calls += 1
        self._killed.set()
        self._thread.join(grace)


class FakeEncoder:
    """Hands out FakeHandles; `scripts` maps source file names to FakeHandle kwargs."""

    def __init__(self, scripts: Optional[dict] = None, default: Optional[dict] = None):
        self.scripts = scripts or {}
        self.default = default or {"chunks": [10]}
        self.handles: List[FakeHandle] = []
        self.started: List[Path] = []
        self._lock = threading.Lock()

    def start(self, input_path, output_path, options, on_line=None, on_progress=None):
        script = dict(self.scripts.get(Path(input_path).name, self.default))
        if script.pop("raise", None):
            raise RuntimeError(f"encoder exploded on {Path(input_path).name}")
        handle = FakeHandle(Path(output_path), on_line=on_line, on_progress=on_progress, **script)
        with self._lock:
            self.started.append(Path(input_path))
            self.handles.append(handle)
        return handle


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config():
    """Returns a sample AppConfig object for testing."""
    return AppConfig(
        general={
            "concurrency": 2,
            "overwrite": True,
            "extensions": [".mp4", ".mkv"],
            "max_failed_attempts": 3,
            "abort_grace_seconds": 0.0,
            "failed_display_seconds": 5.0,
            "scan_attempts": 2,
            "scan_backoff_seconds": 0.0,
        },
        checkpoint={"interval_seconds": 60, "max_age_days": 5},
        watch={"enabled": False},
    )


@pytest.fixture
def workspace(tmp_path):
    """A created workspace under tmp_path/workspace."""
    return Workspace(tmp_path / "workspace").create()


@pytest.fixture
def source_dir(tmp_path):
    root = tmp_path / "media"
    root.mkdir()
    return root


@pytest.fixture
def make_media(source_dir):
    """Creates a media file of `size` bytes under the source root."""
    def _make(name: str, size: int, directory: Optional[Path] = None) -> WorkItem:
        path = (directory or source_dir) / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"s" * size)
        return WorkItem(path=path, size_bytes=size)
    return _make


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def fake_encoder():
    return FakeEncoder()


@pytest.fixture
def make_encoder():
    """Builds a FakeEncoder from per-file scripts."""
    def _make(scripts: Optional[dict] = None, default: Optional[dict] = None) -> FakeEncoder:
        return FakeEncoder(scripts=scripts, default=default)
    return _make
