"""Bulk job endpoints: submit, poll status and logs, stop, delete."""

from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, HTTPException, Query, status

from provisioner.jobs.engine import JobEngine
from provisioner.jobs.models import WorkItem
from provisioner.jobs.store import InvalidJobError
from provisioner.jobs.types import JobKind, JobStatus, LogLevel
from provisioner.schemas import (
    JobListResponse,
    JobStatusResponse,
    JobSubmitRequest,
    JobSubmitResponse,
    LogPageResponse,
    StopResponse,
)
from provisioner.utils.domains import MAX_DOMAINS_PER_JOB, validate_domains

router = APIRouter(prefix="/jobs")
logger = structlog.get_logger(__name__)

# Set by the application lifespan
_engine: Optional[JobEngine] = None


def set_engine(engine: Optional[JobEngine]) -> None:
    """Set the job engine for this router."""
    global _engine
    _engine = engine


def get_engine() -> Optional[JobEngine]:
    return _engine


def _get_engine() -> JobEngine:
    if _engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job engine not available",
        )
    return _engine


def _not_found(job_id: UUID) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Job {job_id} not found",
    )


@router.post(
    "/{kind}",
    response_model=JobSubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        202: {"description": "Job accepted and running"},
        400: {"description": "No valid domains or missing credentials"},
    },
)
async def submit_job(kind: JobKind, request: JobSubmitRequest) -> JobSubmitResponse:
    """
    Submit a bulk job over a list of domains.

    Domains are normalised, validated and de-duplicated first. Rejected
    entries are returned in the response and noted in the job log. The job
    runs in the background; poll `GET /jobs/{job_id}` for progress.
    """
    engine = _get_engine()
    checked = validate_domains(request.domains)

    if not checked.valid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No valid domains provided",
        )
    if len(checked.valid) > MAX_DOMAINS_PER_JOB:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"At most {MAX_DOMAINS_PER_JOB} domains per job",
        )

    info = {}
    if checked.has_rejections:
        info = {
            "invalid_domains": len(checked.invalid),
            "duplicate_domains": len(checked.duplicates),
        }

    options = dict(request.options)
    if kind == JobKind.CREATION and checked.has_adsense_ids:
        # Entries carrying a publisher id turn the AdSense stage on
        options.setdefault("adsense", True)

    try:
        job_id = await engine.submit(
            kind,
            [WorkItem(key=d, meta=checked.meta.get(d, {})) for d in checked.valid],
            credentials=request.credentials,
            options=options,
            info=info,
        )
    except InvalidJobError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    if checked.has_rejections:
        engine.store.append_log(
            job_id,
            LogLevel.WARN,
            f"Ignored {len(checked.invalid)} invalid and "
            f"{len(checked.duplicates)} duplicate domain(s)",
            {"invalid": checked.invalid, "duplicates": checked.duplicates},
        )

    logger.info(
        "job_submitted",
        job_id=str(job_id),
        kind=kind.value,
        total=len(checked.valid),
    )
    return JobSubmitResponse(
        job_id=job_id,
        kind=kind,
        status=JobStatus.RUNNING,
        total=len(checked.valid),
        invalid_domains=checked.invalid,
        duplicate_domains=checked.duplicates,
    )


@router.get("", response_model=JobListResponse)
async def list_jobs() -> JobListResponse:
    """List jobs still held in memory (results omitted)."""
    jobs = _get_engine().list_jobs()
    return JobListResponse(jobs=jobs, total=len(jobs))


@router.get(
    "/{job_id}",
    response_model=JobStatusResponse,
    responses={
        200: {"description": "Job status retrieved"},
        404: {"description": "Job not found"},
    },
)
async def get_job_status(job_id: UUID) -> JobStatusResponse:
    """
    Get the status and progress of a job.

    Job statuses:
    - running: items are being processed
    - completed: every item has an outcome (also used after a stop for
      deletion and admin-change jobs)
    - cancelled: a creation job was stopped
    - failed: the job could not start or hit an internal error
    """
    response = _get_engine().get_status(job_id)
    if response is None:
        raise _not_found(job_id)
    return response


@router.get(
    "/{job_id}/logs",
    response_model=LogPageResponse,
    responses={404: {"description": "Job not found"}},
)
async def get_job_logs(
    job_id: UUID,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0, description="Absolute log offset to read from"),
) -> LogPageResponse:
    """Page through a job's log. Resume with the returned `next_offset`."""
    page = _get_engine().get_logs(job_id, limit=limit, offset=offset)
    if page is None:
        raise _not_found(job_id)
    return page


@router.post(
    "/{job_id}/stop",
    response_model=StopResponse,
    responses={404: {"description": "Job not found"}},
)
async def stop_job(job_id: UUID) -> StopResponse:
    """Ask a job to stop. In-flight items finish; unstarted items are skipped."""
    engine = _get_engine()
    if not engine.request_stop(job_id):
        raise _not_found(job_id)
    snapshot = engine.get_status(job_id)
    return StopResponse(
        job_id=job_id,
        stop_requested=True,
        status=snapshot.status if snapshot else JobStatus.RUNNING,
    )


@router.delete(
    "/{job_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"description": "Job not found"}},
)
async def delete_job(job_id: UUID) -> None:
    """Stop (if running) and remove a job."""
    if not _get_engine().delete(job_id):
        raise _not_found(job_id)
