import time
import pytest
from datetime import datetime, timedelta
from pathlib import Path
from bpff.domain.models import Checkpoint, JobRecord, WorkItem
from bpff.infrastructure.checkpoint_store import CheckpointStore


def _checkpoint(created=None) -> Checkpoint:
    return Checkpoint(
        creation_time=created or datetime(2026, 3, 1, 12, 0, 0),
        needs_rescan=False,
        total_size=300,
        saved_bytes=40,
        completed_ledger=[
            JobRecord(
                path=Path("/media/a.mp4"),
                started_at=datetime(2026, 3, 1, 11, 0, 0),
                elapsed_seconds=12.5,
                original_size=100,
                new_size=60,
                media_duration=30.0,
                average_speed=2.4,
                successful=True,
            )
        ],
        pending_paths=[WorkItem(path=Path("/media/b.mp4"), size_bytes=200), WorkItem(path=Path("/media/c.mp4"), size_bytes=100)],
        failure_counts={"/media/d.mp4": 1},
    )


def test_round_trip(tmp_path):
    store = CheckpointStore(tmp_path / "checkpoint.json")
    original = _checkpoint()
    store.save(original)
    assert store.load() == original
    assert not (tmp_path / "checkpoint.json.tmp").exists()


def test_missing_file_loads_as_none(tmp_path):
    assert CheckpointStore(tmp_path / "nope.json").load() is None


@pytest.mark.parametrize("content", ["", "{", '{"creation_time": "not a date"}', "[1, 2, 3]"])
def test_corrupt_file_loads_as_none(tmp_path, content):
    path = tmp_path / "checkpoint.json"
    path.write_text(content)
    assert CheckpointStore(path).load() is None


def test_truncated_file_loads_as_none(tmp_path):
    store = CheckpointStore(tmp_path / "checkpoint.json")
    store.save(_checkpoint())
    text = store.path.read_text()
    store.path.write_text(text[: len(text) // 2])
    assert store.load() is None


def test_save_keeps_previous_file_when_write_fails(tmp_path, monkeypatch):
    store = CheckpointStore(tmp_path / "checkpoint.json")
    first = _checkpoint()
    store.save(first)

    def failing_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("bpff.infrastructure.checkpoint_store.os.replace", failing_replace)
    with pytest.raises(OSError):
        store.save(_checkpoint(created=datetime(2026, 4, 1)))
    assert store.load() == first


def test_ten_day_old_checkpoint_is_stale_with_five_day_threshold():
    store = CheckpointStore(Path("/unused"), max_age=timedelta(days=5))
    now = datetime(2026, 3, 20)
    assert store.is_stale(_checkpoint(created=now - timedelta(days=10)), now=now)
    assert not store.is_stale(_checkpoint(created=now - timedelta(days=1)), now=now)


def test_timer_saves_periodically(tmp_path):
    store = CheckpointStore(tmp_path / "checkpoint.json")
    calls = []

    def snapshot():
        calls.append(1)
        return _checkpoint()

    store.start_timer(snapshot, interval=0.05)
    try:
        deadline = datetime.now() + timedelta(seconds=2)
        while len(calls) < 2 and datetime.now() < deadline:
            time.sleep(0.01)
    finally:
        store.stop_timer()
    assert len(calls) >= 2
    assert store.load() is not None
