import threading
import concurrent.futures
import logging
import time
from typing import Callable, Dict, List, Optional

from bpff.config.models import MAX_CONCURRENCY
from bpff.domain.events import (
    ActionMessage,
    CheckpointSaved,
    InterruptRequested,
    PauseToggled,
    ProcessingFinished,
    QueueUpdated,
    RequestShutdown,
    RescanRequested,
    ThreadControlEvent,
)
from bpff.domain.models import JobStatus, WorkItem
from bpff.infrastructure.checkpoint_store import CheckpointStore
from bpff.infrastructure.event_bus import EventBus
from bpff.pipeline.job_runner import JobOutcome, JobRunner
from bpff.pipeline.state import RunState


class Scheduler:
    """Drains the pending list through a bounded worker pool.

    Submit-on-demand: a new item is claimed only while fewer than the current
    concurrency limit are in flight, so the limit can change at runtime
    (keys < and >) without rebuilding the pool. The pool itself is sized for
    the maximum limit.

    Pause, graceful shutdown and interrupt are honored before every dequeue.
    A pending rescan is performed at the dequeue point; in-flight items are
    never touched by it.
    """

    def __init__(
        self,
        state: RunState,
        runner: JobRunner,
        event_bus: EventBus,
        checkpoint_store: Optional[CheckpointStore] = None,
        rediscover: Optional[Callable[[], List[WorkItem]]] = None,
        max_failed_attempts: int = 3,
        interrupt_event: Optional[threading.Event] = None,
        on_tick: Optional[Callable[[], None]] = None,
        poll_interval: float = 1.0,
    ):
        self.state = state
        self.runner = runner
        self.event_bus = event_bus
        self.checkpoint_store = checkpoint_store
        self.rediscover = rediscover
        self.max_failed_attempts = max_failed_attempts
        self.interrupt_event = interrupt_event or runner.interrupt_event
        self.on_tick = on_tick
        self.poll_interval = poll_interval
        self.logger = logging.getLogger(__name__)

        self._cond = threading.Condition()
        self._limit = 1
        self._paused = False
        self._shutdown_requested = False
        self._checkpoint_lock = threading.Lock()

        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.event_bus.subscribe(PauseToggled, self._on_pause_toggled)
        self.event_bus.subscribe(RequestShutdown, self._on_shutdown_request)
        self.event_bus.subscribe(InterruptRequested, self._on_interrupt_requested)
        self.event_bus.subscribe(RescanRequested, self._on_rescan_requested)
        self.event_bus.subscribe(ThreadControlEvent, self._on_thread_control)

    # Control

    @property
    def concurrency_limit(self) -> int:
        with self._cond:
            return self._limit

    @property
    def paused(self) -> bool:
        with self._cond:
            return self._paused

    @property
    def shutdown_requested(self) -> bool:
        with self._cond:
            return self._shutdown_requested

    def _on_pause_toggled(self, event: PauseToggled):
        with self._cond:
            self._paused = not self._paused
            paused = self._paused
            self._cond.notify_all()
        message = "Paused, running jobs will finish" if paused else "Resumed"
        self.logger.info(f"Pause toggled: paused={paused}")
        self.event_bus.publish(ActionMessage(message=message))

    def _on_shutdown_request(self, event: RequestShutdown):
        with self._cond:
            # Toggle shutdown state (press S again to cancel)
            if self._shutdown_requested:
                self._shutdown_requested = False
                message = "SHUTDOWN cancelled"
            else:
                self._shutdown_requested = True
                message = "SHUTDOWN requested (press S to cancel)"
            self._cond.notify_all()
        self.logger.info(message)
        self.event_bus.publish(ActionMessage(message=message))

    def _on_interrupt_requested(self, event: InterruptRequested):
        self.logger.info("Interrupt requested - terminating active encodes...")
        self.interrupt_event.set()
        with self._cond:
            self._shutdown_requested = True
            self._cond.notify_all()
        self.event_bus.publish(ActionMessage(message="Ctrl+C - interrupting active encodes..."))

    def _on_rescan_requested(self, event: RescanRequested):
        self.state.request_rescan()
        with self._cond:
            self._cond.notify_all()
        self.event_bus.publish(ActionMessage(message="RESCAN requested"))

    def _on_thread_control(self, event: ThreadControlEvent):
        with self._cond:
            if self._shutdown_requested:
                return
            old_val = self._limit
            requested = self._limit + event.change
            self._limit = max(1, min(MAX_CONCURRENCY, requested))
            new_val = self._limit
            self._cond.notify_all()
        if new_val != old_val:
            self.event_bus.publish(ActionMessage(message=f"Threads: {old_val} → {new_val}"))
        elif requested > new_val:
            self.event_bus.publish(ActionMessage(message=f"Threads: {new_val} (max)"))
        elif requested < new_val:
            self.event_bus.publish(ActionMessage(message=f"Threads: {new_val} (min)"))

    def request_shutdown(self):
        """Stops dequeuing; idempotent (unlike the S key, which toggles)."""
        with self._cond:
            self._shutdown_requested = True
            self._cond.notify_all()

    def _dequeue_blocked(self) -> bool:
        with self._cond:
            return self._paused or self._shutdown_requested or self.interrupt_event.is_set()

    def _stopping(self) -> bool:
        with self._cond:
            return self._shutdown_requested or self.interrupt_event.is_set()

    # Checkpointing

    def save_checkpoint(self):
        if self.checkpoint_store is None:
            return
        with self._checkpoint_lock:
            checkpoint = self.state.to_checkpoint()
            try:
                self.checkpoint_store.save(checkpoint)
            except OSError as e:
                self.logger.error(f"Checkpoint save failed: {e}")
                return
        self.event_bus.publish(CheckpointSaved(
            path=self.checkpoint_store.path,
            pending_count=len(checkpoint.pending_paths),
            completed_count=len(checkpoint.completed_ledger),
        ))

    # Work

    def _execute(self, item: WorkItem) -> JobOutcome:
        outcome = self.runner.run(item)
        self._commit(item, outcome)
        return outcome

    def _commit(self, item: WorkItem, outcome: JobOutcome):
        """Runs on the worker thread; the record is appended before the path leaves the in-flight map."""
        if outcome.record is not None:
            self.state.append_record(outcome.record)
        elif outcome.status == JobStatus.FAILED:
            # Quarantined, not pending: the failure counter brings it back on the next run
            attempts = self.state.record_failure(item.path)
            if attempts >= self.max_failed_attempts:
                self.logger.warning(
                    f"Giving up on {item.path.name} after {attempts} failed attempt(s)"
                )
        elif outcome.status in (JobStatus.ABANDONED, JobStatus.INTERRUPTED):
            self.state.defer(item)
        self.state.finish_job(item.path)
        self.save_checkpoint()

    def _rescan(self):
        if self.rediscover is None:
            return
        self.logger.info("Rescan started")
        items = self.rediscover()
        added, removed = self.state.replace_pending(items)
        if added > 0 and removed > 0:
            message = f"Rescanned: +{added} new, -{removed} removed"
        elif added > 0:
            message = f"Rescanned: +{added} new files"
        elif removed > 0:
            message = f"Rescanned: -{removed} removed"
        else:
            message = "Rescanned: no changes"
        self.logger.info(message)
        self.event_bus.publish(ActionMessage(message=message))

    def _publish_queue(self):
        self.event_bus.publish(QueueUpdated(
            pending_count=self.state.pending_count(),
            pending_bytes=self.state.pending_bytes(),
        ))

    def _refill(self, executor: concurrent.futures.ThreadPoolExecutor, in_flight: Dict[concurrent.futures.Future, WorkItem]):
        if self._dequeue_blocked():
            return
        if self.state.needs_rescan and self.rediscover is not None:
            self._rescan()
        submitted = False
        while len(in_flight) < self.concurrency_limit and not self._dequeue_blocked():
            item = self.state.claim_next()
            if item is None:
                break
            in_flight[executor.submit(self._execute, item)] = item
            submitted = True
        if submitted:
            self._publish_queue()

    def _has_more_work(self) -> bool:
        return self.state.pending_count() > 0 or (self.state.needs_rescan and self.rediscover is not None)

    def run(self, pending: List[WorkItem], concurrency_limit: int):
        """Processes `pending` (already ordered) with at most `concurrency_limit` jobs in flight."""
        with self._cond:
            self._limit = max(1, min(MAX_CONCURRENCY, concurrency_limit))
        # A rescan requested before the run started still applies
        rescan_requested = self.state.needs_rescan
        self.state.replace_pending(pending)
        if rescan_requested:
            self.state.request_rescan()
        self._publish_queue()

        in_flight: Dict[concurrent.futures.Future, WorkItem] = {}
        with concurrent.futures.ThreadPoolExecutor(max_workers=MAX_CONCURRENCY, thread_name_prefix="job") as executor:
            try:
                while True:
                    if self.on_tick:
                        self.on_tick()
                    self._refill(executor, in_flight)

                    if not in_flight:
                        if self._stopping() or not self._has_more_work():
                            break
                        # Paused with work left: wait for a key instead of spinning
                        with self._cond:
                            self._cond.wait(timeout=self.poll_interval)
                        continue

                    done, _ = concurrent.futures.wait(
                        set(in_flight.keys()),
                        timeout=self.poll_interval,
                        return_when=concurrent.futures.FIRST_COMPLETED
                    )
                    for future in done:
                        item = in_flight.pop(future)
                        try:
                            future.result()
                        except Exception as e:
                            self.logger.error(f"Worker for {item.path.name} failed: {e}")
                            self.state.finish_job(item.path)
                            self.state.defer(item)

                self._publish_queue()
                if not self._stopping():
                    self.event_bus.publish(ProcessingFinished())
                self.logger.info("Scheduler drained")

            except KeyboardInterrupt:
                self.logger.info("Ctrl+C detected - stopping new tasks and interrupting active jobs...")
                self.interrupt_event.set()
                with self._cond:
                    self._shutdown_requested = True

                for future in list(in_flight.keys()):
                    if not future.done():
                        future.cancel()

                # Wait for running jobs to see the interrupt (max 10 seconds)
                self.logger.info("Waiting for active encoder processes to terminate (max 10s)...")
                deadline = time.monotonic() + 10.0
                while True:
                    running = [future for future in in_flight if not future.done()]
                    if not running:
                        break
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    concurrent.futures.wait(
                        running,
                        timeout=min(0.2, remaining),
                        return_when=concurrent.futures.FIRST_COMPLETED
                    )

                executor.shutdown(wait=False, cancel_futures=True)
                raise
            finally:
                self.save_checkpoint()
