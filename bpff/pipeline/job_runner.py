"""One encode of one file.

State machine: QUEUED -> RUNNING -> {SUCCEEDED, FAILED, ABORTED}, plus
INTERRUPTED (Ctrl+C), ABANDONED (unexpected exception) and SKIPPED (source
vanished before the encode started). Exceptions never leave `run()`.
"""

import os
import errno
import shutil
import hashlib
import logging
import threading
import time
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import List, Optional, TYPE_CHECKING

from pydantic import BaseModel

from bpff.config.models import AppConfig
from bpff.domain.events import (
    JobAbandoned,
    JobAborted,
    JobFailed,
    JobStarted,
    JobSucceeded,
)
from bpff.domain.models import JobRecord, JobStatus, ProgressTick, WorkItem
from bpff.infrastructure.event_bus import EventBus
from bpff.infrastructure.housekeeping import PARTIAL_SUFFIX
from bpff.infrastructure.quarantine import QuarantineStore
from bpff.pipeline.state import RunState

if TYPE_CHECKING:
    from bpff.infrastructure.ffmpeg import EncoderHandle, FFmpegEncoder

TRANSCRIPT_LINES = 1000
WAIT_SLICE = 0.2


class JobOutcome(BaseModel):
    status: JobStatus
    record: Optional[JobRecord] = None
    error_message: Optional[str] = None


class JobRunner:
    def __init__(
        self,
        config: AppConfig,
        encoder: "FFmpegEncoder",
        state: RunState,
        quarantine: QuarantineStore,
        event_bus: EventBus,
        tmp_dir: Path,
        kept_dir: Path,
        interrupt_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.encoder = encoder
        self.state = state
        self.quarantine = quarantine
        self.event_bus = event_bus
        self.tmp_dir = Path(tmp_dir)
        self.kept_dir = Path(kept_dir)
        self.interrupt_event = interrupt_event or threading.Event()
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _path_digest(path: Path) -> str:
        return hashlib.sha1(str(path).encode("utf-8")).hexdigest()[:8]

    def temp_path_for(self, source: Path) -> Path:
        """Same container as the source; the digest keeps same-named files from different folders apart."""
        return self.tmp_dir / f"{source.stem}_{self._path_digest(source)}_tmp{source.suffix}"

    def kept_path_for(self, source: Path) -> Path:
        candidate = self.kept_dir / source.name
        if candidate.exists():
            candidate = self.kept_dir / f"{source.stem}_{self._path_digest(source)}{source.suffix}"
        return candidate

    def run(self, item: WorkItem) -> JobOutcome:
        tmp_path = self.temp_path_for(item.path)
        try:
            return self._run(item, tmp_path)
        except Exception as e:
            message = f"{type(e).__name__}: {e}"
            self.logger.error(f"JOB_ABANDONED: {item.path.name} ({message})")
            try:
                self.quarantine.write_exception(e, {"path": item.path, "size_bytes": item.size_bytes, "tmp_path": tmp_path})
            except OSError as write_error:
                self.logger.error(f"Could not write exception record for {item.path.name}: {write_error}")
            self._discard(tmp_path)
            self.event_bus.publish(JobAbandoned(item=item, error_message=message))
            return JobOutcome(status=JobStatus.ABANDONED, error_message=message)

    def _run(self, item: WorkItem, tmp_path: Path) -> JobOutcome:
        filename = item.path.name
        try:
            original_size = item.path.stat().st_size
        except FileNotFoundError:
            self.logger.info(f"JOB_SKIPPED: {filename} (source no longer exists)")
            return JobOutcome(status=JobStatus.SKIPPED, error_message="Source no longer exists")

        self.tmp_dir.mkdir(parents=True, exist_ok=True)
        started_at = datetime.now()
        t0 = time.monotonic()
        speeds: List[float] = []
        transcript: deque = deque(maxlen=TRANSCRIPT_LINES)
        aborted = threading.Event()
        handle_box: List["EncoderHandle"] = []

        def on_line(line: str):
            transcript.append(line)

        def on_progress(tick: ProgressTick):
            if tick.speed_multiplier > 0:
                speeds.append(tick.speed_multiplier)
            try:
                current_size = tmp_path.stat().st_size
            except OSError:
                current_size = 0
            self.state.update_progress(item.path, tick, current_size)
            # Growth guard
            if current_size > 0 and current_size >= original_size and not aborted.is_set():
                aborted.set()
                self.logger.warning(
                    f"JOB_ABORTING: {filename} output {current_size} >= original {original_size}"
                )
                if handle_box:
                    handle_box[0].kill()

        self.logger.info(f"JOB_START: {filename} ({original_size} bytes)")
        self.event_bus.publish(JobStarted(item=item))
        handle = self.encoder.start(item.path, tmp_path, self.config.encoder, on_line=on_line, on_progress=on_progress)
        handle_box.append(handle)
        if aborted.is_set():
            handle.kill()

        interrupted = False
        while True:
            code = handle.wait(timeout=WAIT_SLICE)
            if code is not None:
                break
            if aborted.is_set():
                handle.kill()
                continue
            if self.interrupt_event.is_set():
                self.logger.info(f"JOB_INTERRUPTED: {filename} (shutdown signal)")
                handle.stop(grace=3.0)
                interrupted = True
                break

        elapsed = time.monotonic() - t0
        average_speed = sum(speeds) / len(speeds) if speeds else 0.0

        if aborted.is_set():
            return self._abort(item, tmp_path, started_at, elapsed, original_size, handle.media_duration, average_speed)

        if interrupted:
            self._discard(tmp_path)
            return JobOutcome(status=JobStatus.INTERRUPTED, error_message="Interrupted by user")

        if handle.returncode != 0:
            return self._fail(item, tmp_path, handle, list(transcript))

        new_size = tmp_path.stat().st_size
        replaced = False
        if new_size < original_size:
            if self.config.general.overwrite:
                self._promote(tmp_path, item.path)
                replaced = True
                self.logger.info(f"JOB_COMPLETED: {filename} replaced ({original_size} -> {new_size} bytes)")
            else:
                kept = self.kept_path_for(item.path)
                self._move(tmp_path, kept)
                self.logger.info(f"JOB_COMPLETED: {filename} kept as {kept} ({original_size} -> {new_size} bytes)")
        else:
            self._discard(tmp_path)
            self.logger.info(f"JOB_NO_IMPROVEMENT: {filename} ({new_size} >= {original_size} bytes)")

        record = JobRecord(
            path=item.path,
            started_at=started_at,
            elapsed_seconds=elapsed,
            original_size=original_size,
            new_size=new_size,
            media_duration=handle.media_duration,
            average_speed=average_speed,
            successful=True,
        )
        self.event_bus.publish(JobSucceeded(item=item, record=record, replaced=replaced))
        return JobOutcome(status=JobStatus.SUCCEEDED, record=record)

    def _abort(self, item, tmp_path, started_at, elapsed, original_size, media_duration, average_speed) -> JobOutcome:
        # Deleted after a grace delay so a late write from the dying process cannot recreate it
        timer = threading.Timer(self.config.general.abort_grace_seconds, self._discard, args=(tmp_path,))
        timer.daemon = True
        timer.start()

        record = JobRecord(
            path=item.path,
            started_at=started_at,
            elapsed_seconds=elapsed,
            original_size=original_size,
            new_size=original_size,
            media_duration=media_duration,
            average_speed=average_speed,
            successful=False,
        )
        self.logger.info(f"JOB_ABORTED: {item.path.name} (output not smaller than source)")
        self.event_bus.publish(JobAborted(item=item, record=record))
        return JobOutcome(status=JobStatus.ABORTED, record=record, error_message="Converted file is larger")

    def _fail(self, item: WorkItem, tmp_path: Path, handle: "EncoderHandle", transcript: List[str]) -> JobOutcome:
        code = handle.returncode
        message = f"Encoder exited with code {code}"
        quarantine_path: Optional[Path] = None
        try:
            quarantine_path = self.quarantine.write_failure(item, code, handle.args, transcript)
        except OSError as e:
            self.logger.error(f"Could not write quarantine record for {item.path.name}: {e}")
        self._discard(tmp_path)
        self.state.flag_failed(item.path, self.config.general.failed_display_seconds)
        self.logger.error(f"JOB_FAILED: {item.path.name} ({message})")
        self.event_bus.publish(JobFailed(item=item, exit_code=code, error_message=message, quarantine_path=quarantine_path))
        return JobOutcome(status=JobStatus.FAILED, error_message=message)

    def _promote(self, tmp_path: Path, target: Path):
        """Replaces the source; cross-device moves go through a sibling partial file."""
        self.state.set_moving(target, True)
        try:
            try:
                os.replace(tmp_path, target)
            except OSError as e:
                if e.errno != errno.EXDEV:
                    raise
                part = target.with_name(target.name + PARTIAL_SUFFIX)
                shutil.copy2(tmp_path, part)
                os.replace(part, target)
                tmp_path.unlink()
        finally:
            self.state.set_moving(target, False)

    def _move(self, tmp_path: Path, target: Path):
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(tmp_path), str(target))

    def _discard(self, tmp_path: Path):
        try:
            tmp_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Could not delete temporary output {tmp_path}: {e}")
