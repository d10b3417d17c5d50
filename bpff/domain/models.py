from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

class JobStatus(str, Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    ABORTED = "ABORTED"
    INTERRUPTED = "INTERRUPTED"  # Ctrl+C during encode
    ABANDONED = "ABANDONED"  # unexpected exception, retried next pass
    SKIPPED = "SKIPPED"  # source vanished before the encode started

class WorkItem(BaseModel):
    path: Path
    size_bytes: int = Field(ge=0)

class JobRecord(BaseModel):
    """Terminal outcome of one processing attempt.

    Reduction ratio convention is new/original throughout the project.
    """

    model_config = ConfigDict(frozen=True)

    path: Path
    started_at: datetime
    elapsed_seconds: float = Field(ge=0)
    original_size: int = Field(ge=0)
    new_size: int = Field(ge=0)
    media_duration: float = 0.0
    average_speed: float = 0.0
    successful: bool

    @property
    def saved_bytes(self) -> int:
        if not self.successful:
            return 0
        return max(0, self.original_size - self.new_size)

    @property
    def reduction_ratio(self) -> float:
        if self.original_size <= 0:
            return 1.0
        return self.new_size / self.original_size

class ProgressTick(BaseModel):
    """Already-parsed encoder progress."""
    percent_complete: float = Field(default=0.0, ge=0.0, le=100.0)
    speed_multiplier: float = 0.0

class WatchEventKind(str, Enum):
    CREATED = "created"
    DELETED = "deleted"

class WatchEvent(BaseModel):
    kind: WatchEventKind
    path: Path
    size_bytes: int = 0

class CatalogState(BaseModel):
    pending: List[WorkItem] = Field(default_factory=list)
    needs_rescan: bool = False

class Checkpoint(BaseModel):
    creation_time: datetime
    needs_rescan: bool = False
    total_size: int = 0
    saved_bytes: int = 0
    completed_ledger: List[JobRecord] = Field(default_factory=list)
    pending_paths: List[WorkItem] = Field(default_factory=list)
    failure_counts: Dict[str, int] = Field(default_factory=dict)

    def age(self, now: Optional[datetime] = None) -> timedelta:
        now = now or datetime.now()
        return now - self.creation_time

    def catalog_state(self) -> CatalogState:
        return CatalogState(pending=list(self.pending_paths), needs_rescan=self.needs_rescan)

class Estimate(BaseModel):
    eta_by_duration: float
    eta_by_throughput: float
    eta_blended: float
    projected_savings: float

class JobLine(BaseModel):
    """One running job as the display sees it."""
    name: str
    ordinal: int
    total: int
    percent: float = 0.0
    speed: float = 0.0
    current_size: int = 0
    original_size: int = 0

class DisplaySnapshot(BaseModel):
    directory: str = ""
    jobs: List[JobLine] = Field(default_factory=list)
    runtime_seconds: float = 0.0
    saved_bytes: int = 0
    total_bytes: int = 0
    completed_count: int = 0
    pending_count: int = 0
    concurrency: int = 0
    estimate: Optional[Estimate] = None
    status: str = ""
    paused: bool = False
    shutdown_requested: bool = False
    moving: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    messages: List[str] = Field(default_factory=list)
    finished: bool = False
