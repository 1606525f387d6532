"""Read-only projections of job state for polling clients."""

from typing import Optional
from uuid import UUID

from provisioner.jobs.models import ErrorInfo, ItemOutcome, JobSnapshot, LogEntry
from provisioner.jobs.store import ProcessStore
from provisioner.schemas import (
    ErrorDetail,
    ItemOutcomeResponse,
    JobStatusResponse,
    LogEntryResponse,
    LogPageResponse,
    ProgressResponse,
)

DEFAULT_LOG_LIMIT = 100


def _error(error: Optional[ErrorInfo]) -> Optional[ErrorDetail]:
    if error is None:
        return None
    return ErrorDetail(message=error.message, code=error.code)


def _outcome(outcome: ItemOutcome) -> ItemOutcomeResponse:
    return ItemOutcomeResponse(
        item_key=outcome.item_key,
        success=outcome.success,
        skipped=outcome.skipped,
        error=_error(outcome.error),
        stage_failed=outcome.stage_failed,
        payload=dict(outcome.payload),
        attempts=outcome.attempts,
    )


def _entry(entry: LogEntry) -> LogEntryResponse:
    return LogEntryResponse(
        seq=entry.seq,
        timestamp=entry.timestamp,
        level=entry.level,
        message=entry.message,
        data=dict(entry.data),
    )


class StatusReporter:
    """Renders store snapshots as API responses. Never mutates the store."""

    def __init__(self, store: ProcessStore):
        self._store = store

    def render(self, snapshot: JobSnapshot, include_results: bool = True) -> JobStatusResponse:
        progress = snapshot.progress
        results = None
        if include_results and snapshot.results:
            results = [_outcome(o) for o in snapshot.results]

        return JobStatusResponse(
            job_id=snapshot.id,
            kind=snapshot.kind,
            status=snapshot.status,
            progress=ProgressResponse(
                total=progress.total,
                processed=progress.processed,
                successful=progress.successful,
                failed=progress.failed,
                skipped=progress.skipped,
                percentage=progress.percentage,
                current_item=progress.current_item,
            ),
            stop_requested=snapshot.stop_requested,
            results=results,
            error=_error(snapshot.error),
            info=dict(snapshot.info),
            started_at=snapshot.started_at,
            last_updated=snapshot.last_updated,
            completed_at=snapshot.completed_at,
            failed_at=snapshot.failed_at,
            duration_ms=snapshot.duration_ms,
        )

    def status(self, job_id: UUID) -> Optional[JobStatusResponse]:
        snapshot = self._store.get_status(job_id)
        if snapshot is None:
            return None
        return self.render(snapshot)

    def list(self) -> list[JobStatusResponse]:
        return [
            self.render(s, include_results=False) for s in self._store.list_jobs()
        ]

    def logs(
        self, job_id: UUID, limit: int = DEFAULT_LOG_LIMIT, offset: int = 0
    ) -> Optional[LogPageResponse]:
        page = self._store.get_logs(job_id, limit=limit, offset=offset)
        if page is None:
            return None
        return LogPageResponse(
            job_id=job_id,
            logs=[_entry(e) for e in page.logs],
            total=page.total,
            offset=offset,
            limit=limit,
            has_more=page.has_more,
            next_offset=page.next_offset,
        )
