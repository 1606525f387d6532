"""Job system package."""

from provisioner.jobs.types import ErrorCode, JobKind, JobStatus, LogLevel
from provisioner.jobs.models import ErrorInfo, ItemOutcome, Job, LogEntry, WorkItem
from provisioner.jobs.store import InvalidJobError, ProcessStore
from provisioner.jobs.registry import (
    SetupError,
    WorkflowDefinition,
    WorkflowRegistry,
    default_registry,
)

__all__ = [
    "ErrorCode",
    "JobKind",
    "JobStatus",
    "LogLevel",
    "ErrorInfo",
    "ItemOutcome",
    "Job",
    "LogEntry",
    "WorkItem",
    "InvalidJobError",
    "ProcessStore",
    "SetupError",
    "WorkflowDefinition",
    "WorkflowRegistry",
    "default_registry",
]
