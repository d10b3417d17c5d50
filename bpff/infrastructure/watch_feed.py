import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from bpff.domain.models import WatchEvent, WatchEventKind

WatchCallback = Callable[[WatchEvent], None]


def is_under(path: Path, dirs: Iterable[Path]) -> bool:
    resolved = Path(path).resolve()
    return any(resolved == d or d in resolved.parents for d in dirs)


class SourceEventHandler(FileSystemEventHandler):
    """
    Translates watchdog events under the source roots into WatchEvents.
    Directory changes cannot be applied item by item; they request a rescan instead.
    Anything under `exclude_dirs` (the workspace, when it lives inside a root) is ignored.
    """

    def __init__(
        self,
        extensions: Iterable[str],
        on_event: WatchCallback,
        on_rescan: Callable[[], None],
        exclude_dirs: Iterable[Path] = (),
    ):
        super().__init__()
        self.extensions = {e.lower() for e in extensions}
        self.exclude_dirs = [Path(p).resolve() for p in exclude_dirs]
        self.on_event = on_event
        self.on_rescan = on_rescan
        self.logger = logging.getLogger(__name__)

    def _is_excluded(self, path: str) -> bool:
        return is_under(Path(path), self.exclude_dirs)

    def _is_media_file(self, path: str) -> bool:
        return Path(path).suffix.lower() in self.extensions and not self._is_excluded(path)

    @staticmethod
    def _size_of(path: Path) -> int:
        try:
            return path.stat().st_size
        except OSError:
            return 0

    def _emit_created(self, raw_path: str):
        path = Path(raw_path)
        self.on_event(WatchEvent(kind=WatchEventKind.CREATED, path=path, size_bytes=self._size_of(path)))

    def _emit_deleted(self, raw_path: str):
        self.on_event(WatchEvent(kind=WatchEventKind.DELETED, path=Path(raw_path)))

    def on_created(self, event):
        if event.is_directory and self._is_excluded(event.src_path):
            return
        if event.is_directory:
            self.logger.info(f"WATCH: directory created {event.src_path}, rescan requested")
            self.on_rescan()
        elif self._is_media_file(event.src_path):
            self._emit_created(event.src_path)

    def on_deleted(self, event):
        if event.is_directory and self._is_excluded(event.src_path):
            return
        if event.is_directory:
            self.logger.info(f"WATCH: directory deleted {event.src_path}, rescan requested")
            self.on_rescan()
        elif self._is_media_file(event.src_path):
            self._emit_deleted(event.src_path)

    def on_moved(self, event):
        if event.is_directory and self._is_excluded(event.src_path) and self._is_excluded(event.dest_path):
            return
        if event.is_directory:
            self.logger.info(f"WATCH: directory moved {event.src_path} -> {event.dest_path}, rescan requested")
            self.on_rescan()
            return
        if self._is_media_file(event.src_path):
            self._emit_deleted(event.src_path)
        if self._is_media_file(event.dest_path):
            self._emit_created(event.dest_path)


class WatchFeed:
    """Recursive watchdog observer over every source root."""

    def __init__(
        self,
        roots: List[Path],
        extensions: Iterable[str],
        on_event: WatchCallback,
        on_rescan: Callable[[], None],
        exclude_dirs: Iterable[Path] = (),
    ):
        self.roots = list(roots)
        self.handler = SourceEventHandler(extensions, on_event, on_rescan, exclude_dirs=exclude_dirs)
        self.logger = logging.getLogger(__name__)
        self._observer: Optional[Observer] = None

    def start(self):
        if self._observer is not None:
            return
        observer = Observer()
        for root in self.roots:
            observer.schedule(self.handler, str(root), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        self.logger.info(f"Watch feed started on {len(self.roots)} root(s)")

    def is_alive(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    def stop(self):
        observer = self._observer
        if observer is None:
            return
        self._observer = None
        observer.stop()
        observer.join(timeout=5)
        self.logger.info("Watch feed stopped")
