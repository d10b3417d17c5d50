import re
import logging
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from bpff.domain.models import WorkItem

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_identifier(name: str, max_length: int = 100) -> str:
    """Reduces a file name to characters that are safe in any file system."""
    cleaned = _UNSAFE_CHARS.sub("_", name).strip("._")
    return cleaned[:max_length] or "unnamed"


def _timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d-%H%M%S-%f")


class FailureRecord(BaseModel):
    path: Path
    size_bytes: int
    exit_code: Optional[int]
    arguments: List[str]
    transcript: List[str]
    created_at: datetime


class ExceptionRecord(BaseModel):
    exception_type: str
    message: str
    traceback: List[str]
    context: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class QuarantineStore:
    """Writes one JSON record per failed encode or unexpected exception."""

    def __init__(self, error_dir: Path):
        self.error_dir = Path(error_dir)
        self.logger = logging.getLogger(__name__)

    def write_failure(self, item: WorkItem, exit_code: Optional[int], arguments: List[str], transcript: List[str]) -> Path:
        now = datetime.now()
        record = FailureRecord(
            path=item.path,
            size_bytes=item.size_bytes,
            exit_code=exit_code,
            arguments=list(arguments),
            transcript=list(transcript),
            created_at=now,
        )
        target = self.error_dir / f"{sanitize_identifier(item.path.name)}_{_timestamp(now)}_error.json"
        self._write(target, record)
        self.logger.info(f"Quarantined {item.path.name} (exit code {exit_code}) -> {target.name}")
        return target

    def write_exception(self, exc: BaseException, context: Optional[Dict[str, Any]] = None) -> Path:
        now = datetime.now()
        record = ExceptionRecord(
            exception_type=type(exc).__name__,
            message=str(exc),
            traceback=traceback.format_exception(type(exc), exc, exc.__traceback__),
            context={k: str(v) for k, v in (context or {}).items()},
            created_at=now,
        )
        target = self.error_dir / f"error_{_timestamp(now)}.json"
        self._write(target, record)
        self.logger.error(f"Unexpected {record.exception_type}: {record.message} (details in {target.name})")
        return target

    def _write(self, target: Path, record: BaseModel):
        self.error_dir.mkdir(parents=True, exist_ok=True)
        target.write_text(record.model_dump_json(indent=2), encoding="utf-8")
