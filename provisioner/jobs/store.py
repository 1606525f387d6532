"""In-memory process store: the single source of truth for job state.

Every mutation is a plain synchronous method, so on a single event loop each
one runs as an uninterrupted step and needs no lock. Other components hold a
reference to the store and a job id; they never touch `Job` objects directly.
"""

import dataclasses
import itertools
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional, Union
from uuid import UUID, uuid4

import structlog

from provisioner.jobs.models import (
    ErrorInfo,
    ItemOutcome,
    Job,
    JobProgress,
    JobSnapshot,
    LogEntry,
    LogPage,
    WorkItem,
    utcnow,
)
from provisioner.jobs.types import ErrorCode, JobKind, JobStatus, LogLevel

logger = structlog.get_logger(__name__)

DEFAULT_LOG_RETENTION = 1000

_COUNTERS = ("processed", "successful", "failed", "skipped")

# Also accept the "warning" and "success" level spellings
_LEVEL_ALIASES = {
    "warning": LogLevel.WARN,
    "success": LogLevel.INFO,
}

_STRUCTLOG_METHOD = {
    LogLevel.DEBUG: "debug",
    LogLevel.INFO: "info",
    LogLevel.WARN: "warning",
    LogLevel.ERROR: "error",
}


class InvalidJobError(ValueError):
    """Raised when a job submission is malformed (e.g. no items)."""

    def __init__(self, message: str):
        self.message = message
        self.code = ErrorCode.INVALID_JOB.value
        super().__init__(message)


def _coerce_level(level: Union[LogLevel, str]) -> LogLevel:
    if isinstance(level, LogLevel):
        return level
    value = level.lower()
    if value in _LEVEL_ALIASES:
        return _LEVEL_ALIASES[value]
    return LogLevel(value)


def _coerce_item(item: Union[WorkItem, str]) -> WorkItem:
    if isinstance(item, WorkItem):
        return item
    return WorkItem(key=str(item))


def _coerce_error(error: Union[ErrorInfo, BaseException, str]) -> ErrorInfo:
    if isinstance(error, ErrorInfo):
        return error
    if isinstance(error, BaseException):
        code = getattr(error, "code", None) or ErrorCode.INTERNAL_ERROR.value
        return ErrorInfo(message=str(error) or type(error).__name__, code=str(code))
    return ErrorInfo(message=str(error), code=ErrorCode.INTERNAL_ERROR.value)


class ProcessStore:
    """Registry of jobs with their progress, results and logs."""

    def __init__(self, log_retention_limit: int = DEFAULT_LOG_RETENTION):
        self._jobs: dict[UUID, Job] = {}
        self._log_retention_limit = log_retention_limit

    def __contains__(self, job_id: UUID) -> bool:
        return job_id in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def create_job(
        self,
        kind: JobKind,
        items: Iterable[Union[WorkItem, str]],
        info: Optional[dict[str, Any]] = None,
    ) -> Job:
        """Register a new running job.

        Raises:
            InvalidJobError: if `items` is empty.
        """
        work_items = tuple(_coerce_item(i) for i in items)
        if not work_items:
            raise InvalidJobError("Job requires at least one item")

        job = Job(
            id=uuid4(),
            kind=JobKind(kind),
            items=work_items,
            progress=JobProgress(total=len(work_items)),
            status=JobStatus.RUNNING,
            info=dict(info or {}),
        )
        self._jobs[job.id] = job

        self.append_log(
            job.id,
            LogLevel.INFO,
            "Process started",
            {"kind": job.kind.value, "total": len(work_items), **job.info},
        )
        logger.info(
            "job_created",
            job_id=str(job.id),
            kind=job.kind.value,
            total=len(work_items),
        )
        return job

    def complete_job(self, job_id: UUID) -> bool:
        """Mark a job completed. No-op if it is already terminal."""
        return self._finish(job_id, JobStatus.COMPLETED)

    def cancel_job(self, job_id: UUID, reason: str = "Process stopped by user") -> bool:
        """Mark a job cancelled. No-op if it is already terminal."""
        return self._finish(job_id, JobStatus.CANCELLED, reason=reason)

    def fail_job(self, job_id: UUID, error: Union[ErrorInfo, BaseException, str]) -> bool:
        """Mark a job failed with a structured error. No-op if already terminal."""
        return self._finish(job_id, JobStatus.FAILED, error=_coerce_error(error))

    def delete_job(self, job_id: UUID) -> bool:
        """Remove a job record entirely."""
        job = self._jobs.pop(job_id, None)
        if job is None:
            return False
        logger.debug("job_deleted", job_id=str(job_id), status=job.status.value)
        return True

    def request_stop(self, job_id: UUID) -> bool:
        """Raise the cooperative stop flag. Idempotent.

        Returns False only when the job is unknown.
        """
        job = self._jobs.get(job_id)
        if job is None:
            return False
        if job.stop_requested or job.status.is_terminal:
            return True

        job.stop_requested = True
        job.last_updated = utcnow()
        self.append_log(job_id, LogLevel.WARN, "Process stop requested by user")
        return True

    def is_stop_requested(self, job_id: UUID) -> bool:
        """True if a stop was requested or the job no longer exists."""
        job = self._jobs.get(job_id)
        return job is None or job.stop_requested

    def _finish(
        self,
        job_id: UUID,
        status: JobStatus,
        error: Optional[ErrorInfo] = None,
        reason: Optional[str] = None,
    ) -> bool:
        job = self._jobs.get(job_id)
        if job is None:
            logger.warning(
                "job_finish_unknown", job_id=str(job_id), status=status.value
            )
            return False
        if job.status.is_terminal:
            logger.debug(
                "job_already_terminal",
                job_id=str(job_id),
                status=job.status.value,
                requested=status.value,
            )
            return False

        now = utcnow()
        job.status = status
        job.error = error
        job.last_updated = now
        job.progress.current_item = None
        job.duration_ms = int((now - job.started_at).total_seconds() * 1000)
        if status == JobStatus.FAILED:
            job.failed_at = now
        else:
            job.completed_at = now

        summary = {
            "status": status.value,
            "duration_ms": job.duration_ms,
            "processed": job.progress.processed,
            "successful": job.progress.successful,
            "failed": job.progress.failed,
            "skipped": job.progress.skipped,
        }
        if status == JobStatus.COMPLETED:
            self.append_log(job_id, LogLevel.INFO, "Process completed", summary)
        elif status == JobStatus.CANCELLED:
            self.append_log(
                job_id, LogLevel.WARN, f"Process cancelled: {reason}", summary
            )
        else:
            assert error is not None
            self.append_log(
                job_id,
                LogLevel.ERROR,
                f"Process failed: {error.message}",
                {**summary, "error": error.to_dict()},
            )
        logger.info("job_finished", job_id=str(job_id), **summary)
        return True

    # =========================================================================
    # Mutation during execution
    # =========================================================================

    def append_log(
        self,
        job_id: UUID,
        level: Union[LogLevel, str],
        message: str,
        data: Optional[dict[str, Any]] = None,
    ) -> Optional[LogEntry]:
        """Append a log entry. Unknown job ids are ignored with a warning."""
        job = self._jobs.get(job_id)
        if job is None:
            logger.warning("job_log_unknown", job_id=str(job_id), message=message)
            return None

        lvl = _coerce_level(level)
        entry = LogEntry(
            seq=job.logs_total,
            level=lvl,
            message=message,
            data=dict(data or {}),
        )
        job.logs.append(entry)
        overflow = len(job.logs) - self._log_retention_limit
        for _ in range(max(overflow, 0)):
            job.logs.popleft()
            job.logs_dropped += 1

        getattr(logger, _STRUCTLOG_METHOD[lvl])(
            message, job_id=str(job_id), data=entry.data
        )
        return entry

    def update_progress(self, job_id: UUID, **fields: Any) -> None:
        """Merge fields into the job's progress.

        Counters never decrease: the larger of the stored and supplied value
        is kept. `total` is fixed at creation and cannot be changed here.
        """
        job = self._jobs.get(job_id)
        if job is None:
            logger.warning("job_progress_unknown", job_id=str(job_id))
            return
        if job.status.is_terminal:
            return

        progress = job.progress
        for name, value in fields.items():
            if name in _COUNTERS:
                setattr(progress, name, max(getattr(progress, name), int(value)))
            elif name == "current_item":
                progress.current_item = value
            else:
                raise ValueError(f"Unknown progress field: {name}")
        job.last_updated = utcnow()

    def record_outcome(self, job_id: UUID, outcome: ItemOutcome) -> bool:
        """Append an item outcome and bump the matching counters."""
        job = self._jobs.get(job_id)
        if job is None:
            logger.warning(
                "job_outcome_unknown", job_id=str(job_id), item=outcome.item_key
            )
            return False
        if job.status.is_terminal:
            logger.warning(
                "job_outcome_after_terminal",
                job_id=str(job_id),
                item=outcome.item_key,
                status=job.status.value,
            )
            return False

        job.results.append(outcome)
        progress = job.progress
        progress.processed += 1
        if outcome.success:
            progress.successful += 1
        elif outcome.skipped:
            progress.skipped += 1
        else:
            progress.failed += 1
        job.last_updated = utcnow()
        return True

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, job_id: UUID) -> Optional[Job]:
        return self._jobs.get(job_id)

    def get_status(self, job_id: UUID) -> Optional[JobSnapshot]:
        """Read-only projection of a job, without its logs."""
        job = self._jobs.get(job_id)
        if job is None:
            return None
        return self._snapshot(job)

    def list_jobs(self) -> list[JobSnapshot]:
        return [self._snapshot(job) for job in self._jobs.values()]

    def get_logs(
        self, job_id: UUID, limit: int = 100, offset: int = 0
    ) -> Optional[LogPage]:
        """Page through a job's logs without draining them.

        `offset` is an absolute sequence number. Offsets that fall below the
        retention window start at the oldest retained entry.
        """
        job = self._jobs.get(job_id)
        if job is None:
            return None

        total = job.logs_total
        start = min(max(offset, job.logs_dropped, 0), total)
        index = start - job.logs_dropped
        entries = tuple(itertools.islice(job.logs, index, index + max(limit, 0)))
        end = start + len(entries)
        return LogPage(logs=entries, total=total, has_more=end < total, next_offset=end)

    def purge_expired(
        self, retention_seconds: float, now: Optional[datetime] = None
    ) -> int:
        """Delete terminal jobs that finished more than `retention_seconds` ago."""
        now = now or utcnow()
        cutoff = now - timedelta(seconds=retention_seconds)
        expired = [
            job.id
            for job in self._jobs.values()
            if job.status.is_terminal
            and job.finished_at is not None
            and job.finished_at <= cutoff
        ]
        for job_id in expired:
            self.delete_job(job_id)
        if expired:
            logger.info("jobs_purged", count=len(expired))
        return len(expired)

    def stats(self) -> dict[str, int]:
        jobs = list(self._jobs.values())
        return {
            "jobs": len(jobs),
            "running": sum(1 for j in jobs if not j.status.is_terminal),
            "total_logs": sum(len(j.logs) for j in jobs),
        }

    @staticmethod
    def _snapshot(job: Job) -> JobSnapshot:
        return JobSnapshot(
            id=job.id,
            kind=job.kind,
            status=job.status,
            progress=dataclasses.replace(job.progress),
            results=tuple(job.results),
            stop_requested=job.stop_requested,
            info=dict(job.info),
            started_at=job.started_at,
            last_updated=job.last_updated,
            completed_at=job.completed_at,
            failed_at=job.failed_at,
            duration_ms=job.duration_ms,
            error=job.error,
        )
