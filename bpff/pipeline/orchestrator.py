"""Pipeline orchestrator: startup, scheduling and teardown of one batch run.

Startup decides where the pending list comes from (checkpoint or fresh
discovery), reconciles it with the ledger and orders it largest first. The
Scheduler then drains it while the checkpoint timer and the watch feed run
alongside. Teardown is idempotent and retries its own cleanup.

The orchestrator renders nothing; `snapshot()` hands the display everything it
needs.
"""

import threading
import logging
import time
from datetime import timedelta
from pathlib import Path
from typing import Callable, List, Optional

from pydantic import BaseModel

from bpff.config.models import AppConfig
from bpff.config.workspace import Workspace, shorten_path
from bpff.domain.events import (
    ActionMessage,
    DiscoveryFinished,
    DiscoveryStarted,
    WatchEventApplied,
)
from bpff.domain.models import Checkpoint, DisplaySnapshot, JobLine, WatchEvent, WorkItem
from bpff.infrastructure.checkpoint_store import CheckpointStore
from bpff.infrastructure.event_bus import EventBus
from bpff.infrastructure.housekeeping import HousekeepingService
from bpff.infrastructure.quarantine import QuarantineStore
from bpff.infrastructure.watch_feed import WatchFeed, is_under
from bpff.pipeline import catalog as catalog_ops
from bpff.pipeline.catalog import WorkCatalog
from bpff.pipeline.job_runner import JobRunner
from bpff.pipeline.scheduler import Scheduler
from bpff.pipeline.state import RunState
from bpff.pipeline.stats import estimate

TEARDOWN_ATTEMPTS = 3
TEARDOWN_BACKOFF = 0.5


class RunSummary(BaseModel):
    files_found: int = 0
    files_to_process: int = 0
    already_processed: int = 0
    given_up: int = 0
    completed: int = 0
    interrupted: bool = False


class Orchestrator:
    """Resumable batch run over a set of source roots.

    Args:
        config: AppConfig (general, encoder, checkpoint, watch, ui sections).
        workspace: Workspace holding checkpoint, temp outputs and error records.
        event_bus: EventBus shared with the display and the keyboard listener.
        encoder: Encoder collaborator (FFmpegEncoder in production).
        force_rescan: Ignore the checkpoint's pending list and rediscover.
        reevaluate: Forget unsuccessful (aborted) records so those files are tried again.
        retry_failed: Reset the failed-attempt counters.
    """

    def __init__(
        self,
        config: AppConfig,
        workspace: Workspace,
        event_bus: EventBus,
        encoder,
        force_rescan: bool = False,
        reevaluate: bool = False,
        retry_failed: bool = False,
        housekeeping: Optional[HousekeepingService] = None,
        watch_feed_factory: Optional[Callable[..., WatchFeed]] = None,
        poll_interval: float = 1.0,
    ):
        self.config = config
        self.workspace = workspace
        self.event_bus = event_bus
        self.force_rescan = force_rescan
        self.reevaluate = reevaluate
        self.retry_failed = retry_failed
        self.housekeeping = housekeeping or HousekeepingService()
        self.watch_feed_factory = watch_feed_factory or WatchFeed
        self.logger = logging.getLogger(__name__)

        general = config.general
        self.state = RunState()
        self.interrupt_event = threading.Event()
        self.checkpoint_store = CheckpointStore(
            workspace.checkpoint_file,
            max_age=timedelta(days=config.checkpoint.max_age_days),
        )
        self.quarantine = QuarantineStore(workspace.error_dir)
        self.catalog = WorkCatalog(
            extensions=general.extensions,
            attempts=general.scan_attempts,
            backoff=general.scan_backoff_seconds,
            exclude_dirs=[workspace.root],
        )
        self.runner = JobRunner(
            config=config,
            encoder=encoder,
            state=self.state,
            quarantine=self.quarantine,
            event_bus=event_bus,
            tmp_dir=workspace.tmp_dir,
            kept_dir=workspace.kept_dir,
            interrupt_event=self.interrupt_event,
        )
        self.scheduler = Scheduler(
            state=self.state,
            runner=self.runner,
            event_bus=event_bus,
            checkpoint_store=self.checkpoint_store,
            rediscover=self._rediscover,
            max_failed_attempts=general.max_failed_attempts,
            interrupt_event=self.interrupt_event,
            on_tick=self._check_watch_feed,
            poll_interval=poll_interval,
        )

        self.roots: List[Path] = []
        self.watch_feed: Optional[WatchFeed] = None
        self._watch_dead_reported = False
        self._finished = False
        self._torn_down = False
        self._teardown_lock = threading.Lock()

    # Startup

    def _given_up(self) -> set:
        return self.state.given_up_paths(self.config.general.max_failed_attempts)

    def _prepare(self, items: List[WorkItem]) -> List[WorkItem]:
        reconciled = catalog_ops.reconcile(items, self.state.completed_paths(), self._given_up())
        return catalog_ops.order(reconciled)

    def _rediscover(self) -> List[WorkItem]:
        """Mid-run rescan; files that failed this session wait for the next run."""
        failed_now = self.state.session_failed_paths()
        items = [item for item in self.catalog.discover(self.roots) if item.path not in failed_now]
        return self._prepare(items)

    def _failed_items(self) -> List[WorkItem]:
        """Quarantined paths below the retry cap that still exist."""
        items = []
        for path in self.state.retryable_failed_paths(self.config.general.max_failed_attempts):
            try:
                items.append(WorkItem(path=path, size_bytes=path.stat().st_size))
            except OSError:
                continue
        return items

    def _load_checkpoint(self) -> Optional[Checkpoint]:
        checkpoint = self.checkpoint_store.load()
        if checkpoint is None:
            return None
        if self.checkpoint_store.is_stale(checkpoint):
            self.logger.info(
                f"Checkpoint is older than {self.config.checkpoint.max_age_days} days, "
                f"discarding its file list"
            )
            checkpoint = checkpoint.model_copy(update={"pending_paths": [], "needs_rescan": True})
        return checkpoint

    def startup(self, roots: List[Path]) -> RunSummary:
        """Restores state and installs the ordered pending list; returns discovery counts."""
        self.roots = [Path(r) for r in roots]
        self.housekeeping.reset_temp_dir(self.workspace.tmp_dir)
        for root in self.roots:
            self.housekeeping.cleanup_partial_files(root)

        checkpoint = self._load_checkpoint()
        if checkpoint is not None:
            self.state.restore(checkpoint)
        if self.reevaluate:
            dropped = self.state.drop_unsuccessful()
            self.logger.info(f"Re-evaluation: {dropped} unsuccessful record(s) forgotten")
        if self.retry_failed:
            cleared = self.state.clear_failures()
            self.logger.info(f"Failed-attempt counters reset for {cleared} file(s)")

        must_discover = (
            checkpoint is None
            or checkpoint.needs_rescan
            or not checkpoint.pending_paths
            or self.force_rescan
            or self.reevaluate
            or self.retry_failed
        )
        if must_discover:
            self.logger.info(f"Discovery started: {len(self.roots)} folder(s)")
            for root in self.roots:
                self.event_bus.publish(DiscoveryStarted(directory=root))
            items = self.catalog.discover(self.roots)
        else:
            self.logger.info(f"Resuming {len(checkpoint.pending_paths)} pending item(s) from checkpoint")
            items = list(checkpoint.pending_paths) + self._failed_items()

        completed = self.state.completed_paths()
        given_up = self._given_up()
        pending = self._prepare(items)
        summary = RunSummary(
            files_found=len({item.path for item in items}),
            files_to_process=len(pending),
            already_processed=len({item.path for item in items if item.path in completed}),
            given_up=len({item.path for item in items if item.path in given_up and item.path not in completed}),
        )
        self.state.replace_pending(pending)

        self.logger.info(
            f"Discovery finished: found={summary.files_found}, to_process={summary.files_to_process}, "
            f"already_processed={summary.already_processed}, given_up={summary.given_up}"
        )
        self.event_bus.publish(DiscoveryFinished(
            files_found=summary.files_found,
            files_to_process=summary.files_to_process,
            already_processed=summary.already_processed,
            given_up=summary.given_up,
            source_folders_count=len(self.roots),
        ))
        return summary

    # Watch feed

    def on_watch_event(self, event: WatchEvent):
        if is_under(event.path, [self.workspace.root.resolve()]):
            self.logger.debug(f"WATCH: ignoring workspace file {event.path}")
            return
        accepted = self.state.apply_watch_event(event, self.catalog.apply_watch_event, self._given_up())
        if accepted:
            self.logger.info(f"WATCH: {event.kind.value} {event.path}")
        self.event_bus.publish(WatchEventApplied(event=event, accepted=accepted))

    def _start_watch_feed(self):
        if not self.config.watch.enabled:
            return
        try:
            feed = self.watch_feed_factory(
                self.roots,
                self.config.general.extensions,
                self.on_watch_event,
                self.state.request_rescan,
                exclude_dirs=[self.workspace.root],
            )
            feed.start()
        except OSError as e:
            self.logger.error(f"Watch feed could not start, changes need a manual rescan: {e}")
            return
        self.watch_feed = feed

    def _check_watch_feed(self):
        """A dead observer means missed events; the pending set is stale."""
        feed = self.watch_feed
        if feed is None or self._watch_dead_reported or feed.is_alive():
            return
        self._watch_dead_reported = True
        self.logger.warning("Watch feed stopped unexpectedly, rescan scheduled")
        self.state.request_rescan()
        self.event_bus.publish(ActionMessage(message="File watcher stopped, rescanning"))

    # Run

    def run(self, roots: List[Path]) -> RunSummary:
        summary = self.startup(roots)
        if summary.files_found == 0:
            self.logger.info("No files found, exiting")
            self.scheduler.save_checkpoint()
            self._finished = True
            self.teardown()
            return summary

        self.scheduler.save_checkpoint()
        self.checkpoint_store.start_timer(self.state.to_checkpoint, self.config.checkpoint.interval_seconds)
        self._start_watch_feed()
        try:
            self.scheduler.run(self.state.pending_items(), self.config.general.concurrency)
        finally:
            self._finished = True
            self.teardown()

        summary.completed = self.state.session_completed
        summary.interrupted = self.interrupt_event.is_set()
        return summary

    def request_shutdown(self):
        self.scheduler.request_shutdown()

    def teardown(self):
        """Stops background work, flushes the checkpoint and wipes the temp dir; safe to call twice."""
        with self._teardown_lock:
            if self._torn_down:
                return
            self._torn_down = True

        if self.watch_feed is not None:
            self.watch_feed.stop()
        self.checkpoint_store.stop_timer()

        for attempt in range(1, TEARDOWN_ATTEMPTS + 1):
            try:
                self.checkpoint_store.save(self.state.to_checkpoint())
                break
            except OSError as e:
                self.logger.warning(f"Final checkpoint failed (attempt {attempt}/{TEARDOWN_ATTEMPTS}): {e}")
                if attempt < TEARDOWN_ATTEMPTS:
                    time.sleep(TEARDOWN_BACKOFF * attempt)
        else:
            self.logger.error("Giving up on the final checkpoint")

        self.housekeeping.reset_temp_dir(
            self.workspace.tmp_dir, attempts=TEARDOWN_ATTEMPTS, backoff=TEARDOWN_BACKOFF
        )
        self.logger.info("Teardown complete")

    # Display sink

    def post_message(self, text: str, seconds: Optional[float] = None):
        self.state.post_message(text, seconds if seconds is not None else self.config.ui.message_seconds)

    def set_status(self, text: str):
        self.state.set_status(text)

    def snapshot(self) -> DisplaySnapshot:
        state = self.state
        jobs = state.in_flight_jobs()
        pending_count = state.pending_count()
        total = state.claimed_count + pending_count
        runtime = state.runtime_seconds()
        parallelism = self.scheduler.concurrency_limit

        keep = self.config.ui.path_display_length
        directory = ", ".join(shorten_path(root, keep) for root in self.roots)
        lines = [
            JobLine(
                name=job.item.path.name,
                ordinal=job.ordinal,
                total=total,
                percent=job.percent,
                speed=job.speed,
                current_size=job.current_size,
                original_size=job.item.size_bytes,
            )
            for job in jobs
        ]
        pending_bytes = state.pending_bytes() + sum(job.item.size_bytes for job in jobs)
        return DisplaySnapshot(
            directory=directory,
            jobs=lines,
            runtime_seconds=runtime,
            saved_bytes=state.saved_bytes(),
            total_bytes=state.processed_bytes() + pending_bytes,
            completed_count=state.session_completed,
            pending_count=pending_count,
            concurrency=parallelism,
            estimate=estimate(
                state.ledger(),
                state.in_flight_speed_samples(),
                pending_bytes,
                remaining_items=pending_count + len(jobs),
                session_completed=state.session_completed,
                elapsed=runtime,
                parallelism=parallelism,
            ),
            status=state.status,
            paused=self.scheduler.paused,
            shutdown_requested=self.scheduler.shutdown_requested,
            moving=[p.name for p in state.moving_paths()],
            failed=[p.name for p in state.failed_paths()],
            messages=state.active_messages(),
            finished=self._finished,
        )
