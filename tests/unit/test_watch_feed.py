from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock
from bpff.domain.models import WatchEventKind
from bpff.infrastructure.watch_feed import SourceEventHandler, WatchFeed


def _fs_event(src, dest=None, is_directory=False):
    return SimpleNamespace(src_path=str(src), dest_path=str(dest) if dest else "", is_directory=is_directory)


def _handler():
    events, rescans = [], []
    handler = SourceEventHandler([".mp4", ".MKV"], events.append, lambda: rescans.append(1))
    return handler, events, rescans


def test_created_media_file_emits_event_with_size(tmp_path):
    handler, events, _ = _handler()
    clip = tmp_path / "new.mp4"
    clip.write_bytes(b"x" * 42)
    handler.on_created(_fs_event(clip))
    assert events[0].kind == WatchEventKind.CREATED
    assert events[0].path == clip
    assert events[0].size_bytes == 42


def test_non_media_files_are_ignored(tmp_path):
    handler, events, rescans = _handler()
    handler.on_created(_fs_event(tmp_path / "notes.txt"))
    handler.on_deleted(_fs_event(tmp_path / "notes.txt"))
    assert events == []
    assert rescans == []


def test_deleted_media_file_emits_event(tmp_path):
    handler, events, _ = _handler()
    handler.on_deleted(_fs_event(tmp_path / "gone.mkv"))
    assert events[0].kind == WatchEventKind.DELETED


def test_move_is_delete_plus_create(tmp_path):
    handler, events, _ = _handler()
    handler.on_moved(_fs_event(tmp_path / "a.mp4", tmp_path / "b.mp4"))
    assert [(e.kind, e.path.name) for e in events] == [
        (WatchEventKind.DELETED, "a.mp4"),
        (WatchEventKind.CREATED, "b.mp4"),
    ]


def test_rename_to_other_extension_only_deletes(tmp_path):
    handler, events, _ = _handler()
    handler.on_moved(_fs_event(tmp_path / "a.mp4", tmp_path / "a.mp4.bak"))
    assert [e.kind for e in events] == [WatchEventKind.DELETED]


def test_directory_changes_request_rescan(tmp_path):
    handler, events, rescans = _handler()
    handler.on_created(_fs_event(tmp_path / "season2", is_directory=True))
    handler.on_moved(_fs_event(tmp_path / "a", tmp_path / "b", is_directory=True))
    handler.on_deleted(_fs_event(tmp_path / "old", is_directory=True))
    assert events == []
    assert len(rescans) == 3


def test_watch_feed_lifecycle(tmp_path, monkeypatch):
    observer = MagicMock()
    observer.is_alive.return_value = True
    monkeypatch.setattr("bpff.infrastructure.watch_feed.Observer", lambda: observer)

    feed = WatchFeed([tmp_path], [".mp4"], MagicMock(), MagicMock())
    feed.start()
    observer.schedule.assert_called_once_with(feed.handler, str(tmp_path), recursive=True)
    observer.start.assert_called_once()
    assert feed.is_alive()

    feed.stop()
    observer.stop.assert_called_once()
    observer.join.assert_called_once()
    assert not feed.is_alive()
    feed.stop()


def test_events_under_excluded_dir_are_dropped(tmp_path):
    workspace = tmp_path / ".local" / "share" / "bpff" / "ws"
    (workspace / "encoded").mkdir(parents=True)
    events, rescans = [], []
    handler = SourceEventHandler([".mp4"], events.append, lambda: rescans.append(1), exclude_dirs=[workspace])

    kept = workspace / "encoded" / "A.mp4"
    kept.write_bytes(b"x" * 10)
    handler.on_created(_fs_event(kept))
    handler.on_moved(_fs_event(workspace / "tmp" / "A.mp4", kept))
    handler.on_deleted(_fs_event(workspace / "tmp" / "B.mp4"))
    handler.on_created(_fs_event(workspace / "tmp", is_directory=True))
    handler.on_deleted(_fs_event(workspace / "tmp", is_directory=True))
    assert events == []
    assert rescans == []

    outside = tmp_path / "A.mp4"
    outside.write_bytes(b"x" * 5)
    handler.on_created(_fs_event(outside))
    assert [e.path for e in events] == [outside]


def test_move_out_of_excluded_dir_creates_only_destination(tmp_path):
    workspace = tmp_path / "ws"
    workspace.mkdir()
    events = []
    handler = SourceEventHandler([".mp4"], events.append, MagicMock(), exclude_dirs=[workspace])
    handler.on_moved(_fs_event(workspace / "clip.mp4", tmp_path / "clip.mp4"))
    assert [(e.kind, e.path) for e in events] == [(WatchEventKind.CREATED, tmp_path / "clip.mp4")]


def test_watch_feed_passes_exclusions_to_handler(tmp_path):
    feed = WatchFeed([tmp_path], [".mp4"], MagicMock(), MagicMock(), exclude_dirs=[tmp_path / "ws"])
    assert feed.handler.exclude_dirs == [(tmp_path / "ws").resolve()]
