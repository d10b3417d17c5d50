"""Domain events for the batch pipeline.

Events represent state changes and notifications that flow through the EventBus,
decoupling the orchestrator from the display and the keyboard listener.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from typing import Optional
from pydantic import BaseModel
from .models import JobRecord, WatchEvent, WorkItem


class Event(BaseModel):
    """Base class for all domain events.

    Events are validated Pydantic models. They are not frozen by default.
    """

    pass


class JobEvent(Event):
    """Base class for events related to a single work item."""

    item: WorkItem


class JobStarted(JobEvent):
    """Emitted when the encoder is launched for an item."""

    pass


class JobSucceeded(JobEvent):
    """Emitted when the encoder exits cleanly; `replaced` tells if the source was overwritten."""

    record: JobRecord
    replaced: bool = False


class JobAborted(JobEvent):
    """Emitted when the growth guard kills an encode."""

    record: JobRecord


class JobFailed(JobEvent):
    """Emitted on nonzero encoder exit; a quarantine record was written."""

    exit_code: Optional[int] = None
    error_message: str
    quarantine_path: Optional[Path] = None


class JobAbandoned(JobEvent):
    """Emitted when an unexpected exception ended the attempt."""

    error_message: str


class DiscoveryStarted(Event):
    """Emitted when file discovery begins."""

    directory: Path


class DiscoveryFinished(Event):
    """Emitted after discovery and reconciliation against the ledger."""

    files_found: int
    files_to_process: int = 0
    already_processed: int = 0
    given_up: int = 0
    source_folders_count: int = 1


class QueueUpdated(Event):
    """Emitted when the pending set changes size."""

    pending_count: int
    pending_bytes: int


class CheckpointSaved(Event):
    path: Path
    pending_count: int
    completed_count: int


class WatchEventApplied(Event):
    """Emitted after a watch event was offered to the pending set."""

    event: WatchEvent
    accepted: bool


class ProcessingFinished(Event):
    """Emitted when the scheduler drained everything it was given."""

    pass


class ActionMessage(Event):
    """User feedback displayed for a limited time."""

    message: str
    seconds: Optional[float] = None


class PauseToggled(Event):
    """Key 'P': stop/continue dequeuing new items."""

    pass


class RequestShutdown(Event):
    """Key 'S': graceful shutdown, in-flight jobs finish first."""

    pass


class InterruptRequested(Event):
    """Ctrl+C or SIGTERM: terminate in-flight encodes and exit."""

    pass


class RescanRequested(Event):
    """Key 'R': rediscover at the start of the next cycle."""

    pass


class ThreadControlEvent(Event):
    """Keys '<' or '>': adjust the concurrency limit."""

    change: int  # +1 or -1


class OpenWorkspace(Event):
    """Key 'O'."""

    pass


class EditSettings(Event):
    """Key 'E'."""

    pass
