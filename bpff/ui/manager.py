import logging
from pathlib import Path
from typing import Callable, Optional

import typer

from bpff.config.models import UiConfig
from bpff.infrastructure.event_bus import EventBus
from bpff.domain.events import (
    ActionMessage,
    CheckpointSaved,
    DiscoveryFinished,
    DiscoveryStarted,
    EditSettings,
    JobAbandoned,
    JobAborted,
    JobFailed,
    JobStarted,
    JobSucceeded,
    OpenWorkspace,
    PauseToggled,
    ProcessingFinished,
    QueueUpdated,
    WatchEventApplied,
)

logger = logging.getLogger(__name__)


class UIManager:
    """Subscribes to EventBus and turns events into status lines and timed messages.

    `sink` is the orchestrator's display side (post_message / set_status).
    """

    def __init__(
        self,
        bus: EventBus,
        sink,
        ui_config: Optional[UiConfig] = None,
        workspace_dir: Optional[Path] = None,
        settings_file: Optional[Path] = None,
        launcher: Callable[..., int] = typer.launch,
    ):
        self.bus = bus
        self.sink = sink
        self.ui_config = ui_config or UiConfig()
        self.workspace_dir = workspace_dir
        self.settings_file = settings_file
        self.launcher = launcher
        self._paused = False
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(DiscoveryStarted, self.on_discovery_started)
        self.bus.subscribe(DiscoveryFinished, self.on_discovery_finished)
        self.bus.subscribe(JobStarted, self.on_job_started)
        self.bus.subscribe(JobSucceeded, self.on_job_succeeded)
        self.bus.subscribe(JobAborted, self.on_job_aborted)
        self.bus.subscribe(JobFailed, self.on_job_failed)
        self.bus.subscribe(JobAbandoned, self.on_job_abandoned)
        self.bus.subscribe(WatchEventApplied, self.on_watch_event)
        self.bus.subscribe(CheckpointSaved, self.on_checkpoint_saved)
        self.bus.subscribe(QueueUpdated, self.on_queue_updated)
        self.bus.subscribe(PauseToggled, self.on_pause_toggled)
        self.bus.subscribe(ActionMessage, self.on_action_message)
        self.bus.subscribe(OpenWorkspace, self.on_open_workspace)
        self.bus.subscribe(EditSettings, self.on_edit_settings)
        self.bus.subscribe(ProcessingFinished, self.on_processing_finished)

    def on_discovery_started(self, event: DiscoveryStarted):
        self.sink.set_status(f"Scanning {event.directory}...")

    def on_discovery_finished(self, event: DiscoveryFinished):
        logger.debug(
            f"UI: discovery counters: found={event.files_found}, to_process={event.files_to_process}, "
            f"already_processed={event.already_processed}, given_up={event.given_up}"
        )
        self.sink.set_status(
            f"Found {event.files_found} file(s), {event.files_to_process} to process"
        )

    def on_job_started(self, event: JobStarted):
        self.sink.set_status(f"Encoding {event.item.path.name}")

    def on_job_succeeded(self, event: JobSucceeded):
        record = event.record
        if record.saved_bytes > 0:
            verb = "Replaced" if event.replaced else "Encoded"
            self.sink.set_status(f"{verb} {event.item.path.name}")
        else:
            self.sink.set_status(f"No savings for {event.item.path.name}")

    def on_job_aborted(self, event: JobAborted):
        self.sink.post_message(
            f"Converted file is larger: {event.item.path.name}",
            self.ui_config.abort_message_seconds,
        )

    def on_job_failed(self, event: JobFailed):
        self.sink.set_status(f"Failed to process {event.item.path.name} ({event.error_message})")

    def on_job_abandoned(self, event: JobAbandoned):
        self.sink.post_message(f"Error on {event.item.path.name}: {event.error_message}", self.ui_config.message_seconds)

    def on_watch_event(self, event: WatchEventApplied):
        if event.accepted:
            self.sink.post_message("Detected filesystem change!", self.ui_config.message_seconds)

    def on_checkpoint_saved(self, event: CheckpointSaved):
        logger.debug(f"UI: checkpoint saved ({event.pending_count} pending, {event.completed_count} done)")

    def on_queue_updated(self, event: QueueUpdated):
        logger.debug(f"UI: queue has {event.pending_count} item(s), {event.pending_bytes} bytes")

    def on_pause_toggled(self, event: PauseToggled):
        self._paused = not self._paused
        self.sink.set_status("Paused" if self._paused else "Running")

    def on_action_message(self, event: ActionMessage):
        """Handle user action feedback messages."""
        seconds = event.seconds if event.seconds is not None else self.ui_config.message_seconds
        self.sink.post_message(event.message, seconds)

    def _launch(self, target: Optional[Path], label: str):
        if target is None:
            return
        try:
            self.launcher(str(target))
        except OSError as e:
            logger.warning(f"Could not open {label} {target}: {e}")
            self.sink.post_message(f"Could not open {label}", self.ui_config.message_seconds)
            return
        self.sink.post_message(f"Opened {label}", self.ui_config.message_seconds)

    def on_open_workspace(self, event: OpenWorkspace):
        self._launch(self.workspace_dir, "workspace")

    def on_edit_settings(self, event: EditSettings):
        self._launch(self.settings_file, "settings")

    def on_processing_finished(self, event: ProcessingFinished):
        self.sink.set_status("Finished")
