import os
import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional
from pydantic import ValidationError
from bpff.domain.models import Checkpoint

class CheckpointStore:
    """Sole writer of the checkpoint file.

    Writes go to a sibling temp file which is fsynced and then `os.replace`d
    over the checkpoint, so a crash mid-write leaves the previous checkpoint intact.
    """

    def __init__(self, path: Path, max_age: timedelta = timedelta(days=5)):
        self.path = Path(path)
        self.max_age = max_age
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._timer_stop = threading.Event()
        self._timer_thread: Optional[threading.Thread] = None

    @property
    def _tmp_path(self) -> Path:
        return self.path.with_name(self.path.name + ".tmp")

    def load(self) -> Optional[Checkpoint]:
        """Returns the stored checkpoint, or None when it is absent or cannot be parsed."""
        if not self.path.exists():
            return None
        try:
            text = self.path.read_text(encoding="utf-8")
            checkpoint = Checkpoint.model_validate_json(text)
        except (OSError, UnicodeDecodeError) as e:
            self.logger.warning(f"Checkpoint unreadable, ignoring it: {self.path} ({e})")
            return None
        except (ValidationError, ValueError) as e:
            self.logger.warning(f"Checkpoint corrupt, ignoring it: {self.path} ({type(e).__name__})")
            return None
        self.logger.info(
            f"Checkpoint loaded: {len(checkpoint.completed_ledger)} records, "
            f"{len(checkpoint.pending_paths)} pending, created {checkpoint.creation_time.isoformat()}"
        )
        return checkpoint

    def is_stale(self, checkpoint: Checkpoint, now: Optional[datetime] = None) -> bool:
        return checkpoint.age(now) > self.max_age

    def save(self, checkpoint: Checkpoint):
        payload = checkpoint.model_dump_json(indent=2)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._tmp_path
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(payload)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        self.logger.debug(
            f"Checkpoint saved: {len(checkpoint.pending_paths)} pending, "
            f"{len(checkpoint.completed_ledger)} records"
        )

    def start_timer(self, snapshot_fn: Callable[[], Checkpoint], interval: float):
        """Saves `snapshot_fn()` every `interval` seconds on a daemon thread."""
        if self._timer_thread and self._timer_thread.is_alive():
            return
        self._timer_stop.clear()

        def _loop():
            while not self._timer_stop.wait(interval):
                try:
                    self.save(snapshot_fn())
                except OSError as e:
                    self.logger.error(f"Periodic checkpoint failed: {e}")

        self._timer_thread = threading.Thread(target=_loop, name="checkpoint-timer", daemon=True)
        self._timer_thread.start()

    def stop_timer(self):
        self._timer_stop.set()
        if self._timer_thread:
            self._timer_thread.join(timeout=5)
            self._timer_thread = None
