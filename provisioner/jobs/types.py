"""Job system type definitions."""

from enum import Enum


class JobKind(str, Enum):
    """Bulk workflow kinds."""

    CREATION = "creation"
    DELETION = "deletion"
    ADMIN_CHANGE = "admin_change"


class JobStatus(str, Enum):
    """Job lifecycle statuses."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Check if this status is terminal (job won't change)."""
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class LogLevel(str, Enum):
    """Levels accepted on job log entries."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class ErrorCode(str, Enum):
    """Codes attached to externally visible failures."""

    INVALID_JOB = "INVALID_JOB"
    SETUP_ERROR = "SETUP_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    STAGE_ERROR = "STAGE_ERROR"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    FORCE_STOPPED = "FORCE_STOPPED"
    STOPPED_BEFORE_START = "STOPPED_BEFORE_START"
    INTERNAL_ERROR = "INTERNAL_ERROR"
