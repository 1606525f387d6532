"""Job engine: submits bulk jobs and drives them to a terminal status.

One generic run loop serves every job kind. A kind only contributes its
`WorkflowDefinition` (stage list, stop policy, preflight).
"""

import asyncio
from typing import Any, Callable, Iterable, Optional, Union
from uuid import UUID

import structlog

import provisioner.jobs.workflows  # noqa: F401
from provisioner.config import Settings, get_settings
from provisioner.jobs.metrics import (
    ITEMS_IN_FLIGHT,
    record_attempt_failure,
    record_item_settled,
    record_job_finished,
    record_job_submitted,
    record_jobs_purged,
)
from provisioner.jobs.models import ErrorInfo, ItemOutcome, WorkItem
from provisioner.jobs.queue import BoundedWorkQueue
from provisioner.jobs.registry import (
    SetupError,
    WorkflowDefinition,
    WorkflowRegistry,
    default_registry,
)
from provisioner.jobs.reporter import DEFAULT_LOG_LIMIT, StatusReporter
from provisioner.jobs.retry import RetryPolicy, RetryWrapper
from provisioner.jobs.stages import ItemContext, ItemLog, StageSequencer
from provisioner.jobs.store import InvalidJobError, ProcessStore
from provisioner.jobs.types import ErrorCode, JobKind, JobStatus, LogLevel
from provisioner.schemas import JobCredentials, JobStatusResponse, LogPageResponse
from provisioner.services.factory import CollaboratorFactory
from provisioner.services.protocols import Collaborators

logger = structlog.get_logger(__name__)

# Builds the collaborators of one job from its credentials
CollaboratorBuilder = Callable[[JobCredentials], Collaborators]


class JobEngine:
    """
    Owns the lifecycle of bulk jobs.

    Features:
    - Fire-and-forget submission; each job runs on its own asyncio task
    - Bounded per-job concurrency, fixed-attempt retry per item
    - Per-kind terminal status when a stop request is observed
    - Background reaper removing finished jobs after the retention window
    """

    def __init__(
        self,
        store: ProcessStore,
        registry: Optional[WorkflowRegistry] = None,
        settings: Optional[Settings] = None,
        collaborator_factory: Optional[CollaboratorBuilder] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._settings = settings or get_settings()
        self._store = store
        self._registry = registry or default_registry
        self._build_collaborators = (
            collaborator_factory or CollaboratorFactory(self._settings).build
        )
        self._policy = retry_policy or RetryPolicy(
            max_attempts=self._settings.retry_max_attempts,
            delay_seconds=self._settings.retry_delay_seconds,
        )
        self._concurrency = self._settings.max_concurrent_items
        self.reporter = StatusReporter(store)

        # Background task management
        self._tasks: dict[UUID, asyncio.Task] = {}
        self._reaper_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def store(self) -> ProcessStore:
        return self._store

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    # =========================================================================
    # Submission
    # =========================================================================

    async def submit(
        self,
        kind: Union[JobKind, str],
        items: Iterable[Union[WorkItem, str]],
        credentials: Optional[JobCredentials] = None,
        options: Optional[dict[str, Any]] = None,
        info: Optional[dict[str, Any]] = None,
    ) -> UUID:
        """Create a job and start it in the background.

        Raises:
            InvalidJobError: unknown kind, no items or missing credentials.
        """
        try:
            definition = self._registry.get(JobKind(kind))
        except (KeyError, ValueError) as e:
            raise InvalidJobError(f"Unknown job kind: {kind}") from e

        credentials = credentials or JobCredentials()
        options = dict(options or {})
        self._check_credentials(definition, credentials, options)
        if credentials.cloudflare is not None:
            options.setdefault("record_value", credentials.cloudflare.record_value)

        job = self._store.create_job(definition.kind, items, info=info)
        record_job_submitted(definition.kind.value)

        task = asyncio.create_task(
            self._run_job(job.id, job.items, definition, credentials, options),
            name=f"job-{job.id}",
        )
        self._tasks[job.id] = task
        task.add_done_callback(lambda _t, job_id=job.id: self._tasks.pop(job_id, None))
        return job.id

    @staticmethod
    def _check_credentials(
        definition: WorkflowDefinition,
        credentials: JobCredentials,
        options: dict[str, Any],
    ) -> None:
        required = set(definition.requires)
        if definition.wants_remote_shell(options) and "ssh" not in required:
            # Optional remote stages were requested
            required.add("ssh")
        missing = sorted(name for name in required if getattr(credentials, name) is None)
        if missing:
            raise InvalidJobError(f"Missing credentials: {', '.join(missing)}")

    # =========================================================================
    # Execution
    # =========================================================================

    async def _run_job(
        self,
        job_id: UUID,
        items: tuple[WorkItem, ...],
        definition: WorkflowDefinition,
        credentials: JobCredentials,
        options: dict[str, Any],
    ) -> None:
        store = self._store
        kind = definition.kind.value
        log = logger.bind(job_id=str(job_id), kind=kind)
        collaborators: Optional[Collaborators] = None

        def is_stopped() -> bool:
            return store.is_stop_requested(job_id)

        try:
            try:
                collaborators = self._build_collaborators(credentials)
                if definition.preflight is not None:
                    store.append_log(job_id, LogLevel.INFO, "Testing connections")
                    await definition.preflight(collaborators, options)
                stages = definition.build_stages(options)
            except SetupError as e:
                log.warning("job_setup_failed", error=e.message, code=e.code)
                store.fail_job(job_id, ErrorInfo(e.message, e.code))
                return
            except Exception as e:
                log.warning("job_setup_failed", error=str(e), error_type=type(e).__name__)
                store.fail_job(
                    job_id,
                    ErrorInfo(
                        f"Setup failed: {str(e) or type(e).__name__}",
                        ErrorCode.SETUP_ERROR.value,
                    ),
                )
                return

            sequencer = StageSequencer(stages, is_stopped)
            session_factory = (
                collaborators.shell_factory
                if definition.wants_remote_shell(options)
                else None
            )
            retry = RetryWrapper(
                self._policy,
                is_stopped,
                session_factory=session_factory,
                on_attempt_failed=lambda result: record_attempt_failure(
                    kind, result.stage or ""
                ),
            )

            async def process(item: WorkItem) -> None:
                await self._process_item(
                    job_id, kind, item, sequencer, retry, collaborators, options
                )

            def skip(item: WorkItem) -> None:
                store.record_outcome(
                    job_id,
                    ItemOutcome(
                        item_key=item.key,
                        success=False,
                        skipped=True,
                        error=ErrorInfo(
                            "Stopped before start",
                            ErrorCode.STOPPED_BEFORE_START.value,
                        ),
                    ),
                )
                record_item_settled(kind, "skipped")

            log.info("job_started", total=len(items))
            queue: BoundedWorkQueue[WorkItem] = BoundedWorkQueue(self._concurrency)
            try:
                stats = await queue.run(items, process, is_stopped=is_stopped, on_skip=skip)
            except Exception as e:
                log.exception("job_internal_error", error=str(e))
                store.fail_job(
                    job_id,
                    ErrorInfo(
                        f"Internal error: {str(e) or type(e).__name__}",
                        ErrorCode.INTERNAL_ERROR.value,
                    ),
                )
                return

            if stats.skipped:
                store.append_log(
                    job_id,
                    LogLevel.WARN,
                    f"Stop requested, {stats.skipped} item(s) not started",
                    {"skipped": stats.skipped},
                )
            self._finish(job_id, definition)
        except asyncio.CancelledError:
            log.warning("job_task_cancelled")
            store.fail_job(
                job_id,
                ErrorInfo(
                    "Job cancelled before it finished",
                    ErrorCode.INTERNAL_ERROR.value,
                ),
            )
            raise
        finally:
            if collaborators is not None:
                try:
                    await collaborators.aclose()
                except Exception as e:
                    log.warning("collaborators_close_failed", error=str(e))
            snapshot = store.get_status(job_id)
            if snapshot is None:
                record_job_finished(kind, "deleted", None)
            else:
                record_job_finished(kind, snapshot.status.value, snapshot.duration_ms)

    def _finish(self, job_id: UUID, definition: WorkflowDefinition) -> None:
        store = self._store
        if not store.is_stop_requested(job_id):
            store.complete_job(job_id)
        elif definition.stop_status == JobStatus.CANCELLED:
            store.cancel_job(job_id)
        else:
            store.complete_job(job_id)

    async def _process_item(
        self,
        job_id: UUID,
        kind: str,
        item: WorkItem,
        sequencer: StageSequencer,
        retry: RetryWrapper,
        collaborators: Collaborators,
        options: dict[str, Any],
    ) -> None:
        store = self._store
        emit = self._item_logger(job_id, item.key)
        carry: dict[str, Any] = {}

        def build_context(attempt: int, session: Any) -> ItemContext:
            return ItemContext(
                item=item,
                attempt=attempt,
                collaborators=collaborators,
                options=options,
                emit=emit,
                session=session,
                carry=carry,
            )

        store.update_progress(job_id, current_item=item.key)
        emit(LogLevel.INFO, "Processing", {})
        ITEMS_IN_FLIGHT.inc()
        try:
            outcome = await retry.run(item, sequencer, build_context, emit)
        finally:
            ITEMS_IN_FLIGHT.dec()

        store.record_outcome(job_id, outcome)
        self._log_outcome(emit, outcome)
        if outcome.success:
            record_item_settled(kind, "success")
        elif outcome.skipped:
            record_item_settled(kind, "skipped")
        else:
            record_item_settled(kind, "failed")

    def _item_logger(self, job_id: UUID, key: str) -> ItemLog:
        store = self._store

        def emit(level: LogLevel, message: str, data: dict[str, Any]) -> None:
            store.append_log(job_id, level, f"[{key}] {message}", {"item": key, **data})

        return emit

    @staticmethod
    def _log_outcome(emit: ItemLog, outcome: ItemOutcome) -> None:
        error = outcome.error.to_dict() if outcome.error else None
        if outcome.success:
            emit(LogLevel.INFO, "Completed", {"attempts": outcome.attempts})
        elif outcome.skipped:
            assert outcome.error is not None
            emit(LogLevel.WARN, f"Skipped: {outcome.error.message}", {"error": error})
        else:
            assert outcome.error is not None
            emit(
                LogLevel.ERROR,
                f"Failed after {outcome.attempts} attempt(s) at stage "
                f"'{outcome.stage_failed}': {outcome.error.message}",
                {"error": error, "stage": outcome.stage_failed},
            )

    # =========================================================================
    # Queries and control
    # =========================================================================

    def get_status(self, job_id: UUID) -> Optional[JobStatusResponse]:
        return self.reporter.status(job_id)

    def get_logs(
        self, job_id: UUID, limit: int = DEFAULT_LOG_LIMIT, offset: int = 0
    ) -> Optional[LogPageResponse]:
        return self.reporter.logs(job_id, limit=limit, offset=offset)

    def list_jobs(self) -> list[JobStatusResponse]:
        return self.reporter.list()

    def request_stop(self, job_id: UUID) -> bool:
        """Raise the job's stop flag. Returns False if the job is unknown."""
        stopped = self._store.request_stop(job_id)
        if stopped:
            logger.info("job_stop_requested", job_id=str(job_id))
        return stopped

    def delete(self, job_id: UUID) -> bool:
        """Remove a job record. A running job is stopped first so it drains quietly."""
        self._store.request_stop(job_id)
        return self._store.delete_job(job_id)

    def purge_expired(self) -> int:
        count = self._store.purge_expired(self._settings.job_retention_seconds)
        record_jobs_purged(count)
        return count

    # =========================================================================
    # Background reaper and shutdown
    # =========================================================================

    async def start_reaper(self) -> None:
        """Start the retention reaper background task."""
        if self._reaper_task is not None and not self._reaper_task.done():
            logger.warning("Job reaper already running")
            return

        logger.info(
            "Starting job reaper",
            interval_seconds=self._settings.cleanup_interval_seconds,
            retention_seconds=self._settings.job_retention_seconds,
        )
        self._stop_event.clear()
        self._reaper_task = asyncio.create_task(self._reaper_loop())

    async def _reaper_loop(self) -> None:
        """Purge expired jobs every interval until stop_event is set."""
        interval = self._settings.cleanup_interval_seconds

        while not self._stop_event.is_set():
            # Wait for next tick (interruptible)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                self.purge_expired()
            except Exception as e:
                logger.exception("Job reaper tick failed", error=str(e))

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop the reaper, ask running jobs to stop and wait for them to drain."""
        timeout = self._settings.shutdown_timeout_seconds if timeout is None else timeout
        self._stop_event.set()

        if self._reaper_task is not None:
            try:
                await asyncio.wait_for(self._reaper_task, timeout=timeout)
            except asyncio.TimeoutError:
                self._reaper_task.cancel()
            self._reaper_task = None

        tasks = list(self._tasks.values())
        if not tasks:
            return

        logger.info("Stopping running jobs", count=len(tasks))
        for job_id in list(self._tasks):
            self._store.request_stop(job_id)

        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Job shutdown timeout, cancelled tasks", count=len(pending))
            await asyncio.gather(*pending, return_exceptions=True)
