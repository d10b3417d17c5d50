"""Shared mutable state of one run.

The scheduler, the job runners, the watch feed and the display all read and
write through a single RunState instance. Every access goes through one
re-entrant lock; callers never touch the containers directly.
"""

import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from bpff.domain.models import (
    Checkpoint,
    JobRecord,
    ProgressTick,
    WatchEvent,
    WatchEventKind,
    WorkItem,
)


class InFlightJob:
    """Live bookkeeping for one claimed item."""

    def __init__(self, item: WorkItem, ordinal: int):
        self.item = item
        self.ordinal = ordinal
        self.started_at = datetime.now()
        self.started_monotonic = time.monotonic()
        self.percent = 0.0
        self.speed = 0.0
        self.speed_samples: List[float] = []
        self.current_size = 0


class RunState:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._lock = threading.RLock()
        self._clock = clock
        self.run_started = clock()

        self._pending: List[WorkItem] = []
        self._needs_rescan = False
        self._in_flight: Dict[Path, InFlightJob] = {}
        self._ledger: List[JobRecord] = []
        self._latest: Dict[Path, JobRecord] = {}
        self._deferred: Dict[Path, WorkItem] = {}
        self._failure_counts: Dict[str, int] = {}
        self._session_failed: Set[Path] = set()

        self._claimed = 0
        self._session_completed = 0
        self._moving: Set[Path] = set()
        self._failed_until: Dict[Path, float] = {}
        self._messages: List[Tuple[str, float]] = []
        self._status = ""

    # Restore / export

    def restore(self, checkpoint: Checkpoint):
        """Loads ledger and failure counters from a checkpoint; pending is set separately."""
        with self._lock:
            self._ledger = list(checkpoint.completed_ledger)
            self._latest = {}
            for record in self._ledger:
                self._latest[record.path] = record
            self._failure_counts = dict(checkpoint.failure_counts)

    def to_checkpoint(self) -> Checkpoint:
        """In-flight and deferred items are exported as pending so a later run retries them.

        A job whose record is already in the ledger but which has not left the
        in-flight map yet is exported as done only.
        """
        with self._lock:
            pending: List[WorkItem] = []
            seen = set(self._latest)
            in_flight = [job.item for job in self._in_flight.values()]
            for item in in_flight + list(self._pending) + list(self._deferred.values()):
                if item.path not in seen:
                    seen.add(item.path)
                    pending.append(item)
            return Checkpoint(
                creation_time=datetime.now(),
                needs_rescan=self._needs_rescan,
                total_size=sum(item.size_bytes for item in pending),
                saved_bytes=self._saved_bytes_locked(),
                completed_ledger=list(self._ledger),
                pending_paths=pending,
                failure_counts=dict(self._failure_counts),
            )

    # Pending set

    @property
    def needs_rescan(self) -> bool:
        with self._lock:
            return self._needs_rescan

    def request_rescan(self):
        with self._lock:
            self._needs_rescan = True

    def replace_pending(self, items: Iterable[WorkItem]) -> Tuple[int, int]:
        """Installs a new ordered pending list; returns (added, removed) relative to the old one.

        Completed and in-flight paths are dropped. Clears `needs_rescan`.
        """
        with self._lock:
            old_paths = {item.path for item in self._pending}
            excluded = set(self._latest) | set(self._in_flight)
            new_pending: List[WorkItem] = []
            seen: Set[Path] = set()
            for item in items:
                if item.path in excluded or item.path in seen:
                    continue
                seen.add(item.path)
                new_pending.append(item)
                self._deferred.pop(item.path, None)
            self._pending = new_pending
            self._needs_rescan = False
            return len(seen - old_paths), len(old_paths - seen)

    def pending_items(self) -> List[WorkItem]:
        with self._lock:
            return list(self._pending)

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def pending_bytes(self) -> int:
        with self._lock:
            return sum(item.size_bytes for item in self._pending)

    def apply_watch_event(self, event: WatchEvent, apply_fn: Callable[[List[WorkItem], WatchEvent, Set[Path]], List[WorkItem]], given_up: Iterable[Path] = ()) -> bool:
        """Offers a watch event to the pending set; returns True when it changed anything."""
        with self._lock:
            ignored = set(self._latest) | set(self._in_flight) | self._moving | set(given_up)
            before = [item.path for item in self._pending]
            self._pending = list(apply_fn(list(self._pending), event, ignored))
            changed = before != [item.path for item in self._pending]
            if event.kind == WatchEventKind.DELETED and event.path not in ignored:
                if self._deferred.pop(event.path, None) is not None:
                    changed = True
            return changed

    def claim_next(self) -> Optional[WorkItem]:
        """Moves the head of the pending list into the in-flight map."""
        with self._lock:
            if not self._pending:
                return None
            item = self._pending.pop(0)
            self._claimed += 1
            self._in_flight[item.path] = InFlightJob(item, self._claimed)
            return item

    # In-flight jobs

    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def in_flight_jobs(self) -> List[InFlightJob]:
        with self._lock:
            return sorted(self._in_flight.values(), key=lambda job: job.ordinal)

    def in_flight_speed_samples(self) -> List[float]:
        with self._lock:
            samples: List[float] = []
            for job in self._in_flight.values():
                samples.extend(job.speed_samples)
            return samples

    def update_progress(self, path: Path, tick: ProgressTick, current_size: int):
        with self._lock:
            job = self._in_flight.get(path)
            if job is None:
                return
            job.percent = tick.percent_complete
            job.speed = tick.speed_multiplier
            if tick.speed_multiplier > 0:
                job.speed_samples.append(tick.speed_multiplier)
            job.current_size = current_size

    def finish_job(self, path: Path):
        with self._lock:
            self._in_flight.pop(path, None)

    # Ledger

    def append_record(self, record: JobRecord):
        """Appends in completion order; the path leaves pending and deferred, its failure count resets."""
        with self._lock:
            self._ledger.append(record)
            self._latest[record.path] = record
            self._pending = [item for item in self._pending if item.path != record.path]
            self._deferred.pop(record.path, None)
            self._failure_counts.pop(str(record.path), None)
            self._session_failed.discard(record.path)
            self._session_completed += 1

    def ledger(self) -> List[JobRecord]:
        with self._lock:
            return list(self._ledger)

    def completed_paths(self) -> Set[Path]:
        with self._lock:
            return set(self._latest)

    def latest_record(self, path: Path) -> Optional[JobRecord]:
        with self._lock:
            return self._latest.get(path)

    def drop_unsuccessful(self) -> int:
        """Forgets files whose latest record is unsuccessful so they are evaluated again."""
        with self._lock:
            retry = {path for path, record in self._latest.items() if not record.successful}
            self._ledger = [record for record in self._ledger if record.path not in retry]
            for path in retry:
                del self._latest[path]
            return len(retry)

    @property
    def session_completed(self) -> int:
        with self._lock:
            return self._session_completed

    @property
    def claimed_count(self) -> int:
        with self._lock:
            return self._claimed

    def _saved_bytes_locked(self) -> int:
        return sum(record.saved_bytes for record in self._latest.values())

    def saved_bytes(self) -> int:
        with self._lock:
            return self._saved_bytes_locked()

    def processed_bytes(self) -> int:
        with self._lock:
            return sum(record.original_size for record in self._latest.values())

    # Failures and deferral

    def defer(self, item: WorkItem):
        with self._lock:
            if item.path not in self._latest:
                self._deferred[item.path] = item

    def deferred_items(self) -> List[WorkItem]:
        with self._lock:
            return list(self._deferred.values())

    def record_failure(self, path: Path) -> int:
        with self._lock:
            key = str(path)
            self._failure_counts[key] = self._failure_counts.get(key, 0) + 1
            self._session_failed.add(path)
            return self._failure_counts[key]

    def failure_count(self, path: Path) -> int:
        with self._lock:
            return self._failure_counts.get(str(path), 0)

    def session_failed_paths(self) -> Set[Path]:
        with self._lock:
            return set(self._session_failed)

    def given_up_paths(self, max_attempts: int) -> Set[Path]:
        with self._lock:
            return {Path(p) for p, count in self._failure_counts.items() if count >= max_attempts}

    def retryable_failed_paths(self, max_attempts: int) -> Set[Path]:
        with self._lock:
            return {Path(p) for p, count in self._failure_counts.items() if 0 < count < max_attempts}

    def clear_failures(self) -> int:
        with self._lock:
            count = len(self._failure_counts)
            self._failure_counts.clear()
            return count

    # Display-only sets and messages

    def set_moving(self, path: Path, moving: bool):
        with self._lock:
            if moving:
                self._moving.add(path)
            else:
                self._moving.discard(path)

    def moving_paths(self) -> List[Path]:
        with self._lock:
            return sorted(self._moving)

    def flag_failed(self, path: Path, seconds: float):
        with self._lock:
            self._failed_until[path] = self._clock() + seconds

    def failed_paths(self) -> List[Path]:
        """Recently failed files; entries expire after their display window."""
        with self._lock:
            now = self._clock()
            self._failed_until = {p: t for p, t in self._failed_until.items() if t > now}
            return sorted(self._failed_until)

    def post_message(self, text: str, seconds: float):
        with self._lock:
            self._messages.append((text, self._clock() + seconds))

    def active_messages(self) -> List[str]:
        with self._lock:
            now = self._clock()
            self._messages = [(text, until) for text, until in self._messages if until > now]
            return [text for text, _ in self._messages]

    @property
    def status(self) -> str:
        with self._lock:
            return self._status

    def set_status(self, text: str):
        with self._lock:
            self._status = text

    def runtime_seconds(self) -> float:
        return max(0.0, self._clock() - self.run_started)
