import os
import time
import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Set
from bpff.domain.models import WatchEvent, WatchEventKind, WorkItem

logger = logging.getLogger(__name__)


def reconcile(pending: Iterable[WorkItem], completed_paths: Iterable[Path], given_up: Iterable[Path] = ()) -> List[WorkItem]:
    """Drops paths already in the ledger (or past the retry cap) and duplicate paths.

    Idempotent: reconcile(reconcile(p, l), l) == reconcile(p, l).
    """
    excluded = set(completed_paths) | set(given_up)
    seen: Set[Path] = set()
    result: List[WorkItem] = []
    for item in pending:
        if item.path in excluded or item.path in seen:
            continue
        seen.add(item.path)
        result.append(item)
    return result


def order(pending: Iterable[WorkItem]) -> List[WorkItem]:
    """Largest first; `sorted` is stable, so ties keep discovery order."""
    return sorted(pending, key=lambda item: -item.size_bytes)


def apply_watch_event(
    pending: List[WorkItem],
    event: WatchEvent,
    ignored_paths: Iterable[Path] = (),
    extensions: Optional[Iterable[str]] = None,
) -> List[WorkItem]:
    """Returns the pending list after a created/deleted event, re-ordered largest first."""
    if event.path in set(ignored_paths):
        return list(pending)
    if extensions is not None and event.path.suffix.lower() not in {e.lower() for e in extensions}:
        return list(pending)

    if event.kind == WatchEventKind.CREATED:
        if any(item.path == event.path for item in pending):
            return list(pending)
        return order(list(pending) + [WorkItem(path=event.path, size_bytes=max(0, event.size_bytes))])
    return [item for item in pending if item.path != event.path]


class WorkCatalog:
    """Recursively discovers media files under the source roots."""

    def __init__(
        self,
        extensions: List[str],
        attempts: int = 3,
        backoff: float = 1.0,
        exclude_dirs: Iterable[Path] = (),
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.extensions = [(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions]
        self.attempts = max(1, attempts)
        self.backoff = backoff
        self.exclude_dirs = {Path(p).resolve() for p in exclude_dirs}
        self._sleep = sleep

    def discover(self, roots: Iterable[Path]) -> List[WorkItem]:
        """Items in discovery order, without duplicates across overlapping roots."""
        seen: Set[Path] = set()
        items: List[WorkItem] = []
        for root in roots:
            for item in self._scan_with_retry(Path(root)):
                if item.path not in seen:
                    seen.add(item.path)
                    items.append(item)
        logger.info(f"Discovery found {len(items)} media file(s)")
        return items

    def apply_watch_event(self, pending: List[WorkItem], event: WatchEvent, ignored_paths: Iterable[Path] = ()) -> List[WorkItem]:
        return apply_watch_event(pending, event, ignored_paths, self.extensions)

    def _scan_with_retry(self, root: Path) -> List[WorkItem]:
        for attempt in range(1, self.attempts + 1):
            try:
                return self._scan(root)
            except OSError as e:
                logger.warning(f"Scanning {root} failed (attempt {attempt}/{self.attempts}): {e}")
                if attempt < self.attempts:
                    self._sleep(self.backoff * attempt)
        logger.error(f"Skipping {root}: still unreadable after {self.attempts} attempt(s)")
        return []

    def _on_walk_error(self, error: OSError):
        logger.warning(f"Skipping unreadable directory {getattr(error, 'filename', '')}: {error.strerror or error}")

    def _scan(self, root: Path) -> List[WorkItem]:
        # Fails loudly for the root itself; os.walk would report it through onerror only
        with os.scandir(root):
            pass

        items: List[WorkItem] = []
        for dirpath, dirs, files in os.walk(str(root), onerror=self._on_walk_error):
            dir_path = Path(dirpath)
            # Deterministic traversal, never descend into the workspace
            dirs[:] = sorted(d for d in dirs if (dir_path / d).resolve() not in self.exclude_dirs)
            files.sort()

            for file_name in files:
                file_path = dir_path / file_name
                if file_path.suffix.lower() not in self.extensions:
                    continue
                try:
                    size = file_path.stat().st_size
                except OSError as e:
                    logger.warning(f"Skipping {file_path}: {e}")
                    continue
                items.append(WorkItem(path=file_path, size_bytes=size))
        return items
