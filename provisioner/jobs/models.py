"""Job system data models."""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from provisioner.jobs.types import ErrorCode, JobKind, JobStatus, LogLevel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ErrorInfo:
    """Structured failure reported to polling clients."""

    message: str
    code: str = ErrorCode.STAGE_ERROR.value

    def to_dict(self) -> dict[str, str]:
        return {"message": self.message, "code": self.code}


@dataclass(frozen=True)
class WorkItem:
    """One unit of work, e.g. a domain optionally paired with metadata."""

    key: str
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LogEntry:
    """An entry in a job's log. `seq` is its absolute offset."""

    seq: int
    level: LogLevel
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class JobProgress:
    """Counters for a running job. `total` is fixed at creation."""

    total: int
    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    current_item: Optional[str] = None

    @property
    def percentage(self) -> int:
        if self.total <= 0:
            return 0
        return round(self.processed / self.total * 100)


@dataclass(frozen=True)
class ItemOutcome:
    """Final result for a single item, one per submitted item."""

    item_key: str
    success: bool
    skipped: bool = False
    error: Optional[ErrorInfo] = None
    stage_failed: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_key": self.item_key,
            "success": self.success,
            "skipped": self.skipped,
            "error": self.error.to_dict() if self.error else None,
            "stage_failed": self.stage_failed,
            "payload": dict(self.payload),
            "attempts": self.attempts,
        }


@dataclass
class Job:
    """A bulk operation. Owned and mutated exclusively by the ProcessStore."""

    id: UUID
    kind: JobKind
    items: tuple[WorkItem, ...]
    progress: JobProgress
    status: JobStatus = JobStatus.RUNNING
    info: dict[str, Any] = field(default_factory=dict)

    results: list[ItemOutcome] = field(default_factory=list)
    logs: deque[LogEntry] = field(default_factory=deque)
    logs_dropped: int = 0

    stop_requested: bool = False
    error: Optional[ErrorInfo] = None

    # Lifecycle timestamps
    started_at: datetime = field(default_factory=utcnow)
    last_updated: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    @property
    def logs_total(self) -> int:
        """Entries ever appended, including those dropped by retention."""
        return self.logs_dropped + len(self.logs)

    @property
    def finished_at(self) -> Optional[datetime]:
        return self.completed_at or self.failed_at


@dataclass(frozen=True)
class JobSnapshot:
    """Read-only projection of a job without its log sequence."""

    id: UUID
    kind: JobKind
    status: JobStatus
    progress: JobProgress
    results: tuple[ItemOutcome, ...]
    stop_requested: bool
    info: dict[str, Any]
    started_at: datetime
    last_updated: Optional[datetime]
    completed_at: Optional[datetime]
    failed_at: Optional[datetime]
    duration_ms: Optional[int]
    error: Optional[ErrorInfo]


@dataclass(frozen=True)
class LogPage:
    """One page of a job's log feed."""

    logs: tuple[LogEntry, ...]
    total: int
    has_more: bool
    next_offset: int
