"""Fixed-attempt retry around a single item's stage sequence.

Each attempt acquires a fresh remote-shell session (when the workflow needs
one) and releases it on every exit path. Intermediate failures are logged
only; the last attempt's error becomes the item's recorded failure.
"""

import asyncio
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog

from provisioner.jobs.models import ErrorInfo, ItemOutcome, WorkItem
from provisioner.jobs.stages import (
    ItemContext,
    ItemLog,
    SequenceResult,
    SequenceStatus,
    StageSequencer,
)
from provisioner.jobs.types import ErrorCode, LogLevel

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[Any]]
ContextFactory = Callable[[int, Any], ItemContext]

CONNECT_STAGE = "connect"


@dataclass
class RetryPolicy:
    """Configuration for per-item retry behavior."""

    max_attempts: int = 3
    delay_seconds: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")


def _force_stopped(stage: str) -> SequenceResult:
    return SequenceResult(
        status=SequenceStatus.FORCE_STOPPED,
        stage=stage,
        error=ErrorInfo("Force-stopped by user", ErrorCode.FORCE_STOPPED.value),
    )


class RetryWrapper:
    """Gives one item up to `policy.max_attempts` runs of its stage sequence."""

    def __init__(
        self,
        policy: RetryPolicy,
        is_stopped: Callable[[], bool],
        session_factory: Optional[SessionFactory] = None,
        on_attempt_failed: Optional[Callable[[SequenceResult], None]] = None,
    ):
        self._policy = policy
        self._is_stopped = is_stopped
        self._session_factory = session_factory
        self._on_attempt_failed = on_attempt_failed

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def run(
        self,
        item: WorkItem,
        sequencer: StageSequencer,
        build_context: ContextFactory,
        emit: ItemLog,
    ) -> ItemOutcome:
        """Run the sequence until it succeeds, skips, stops or runs out of attempts."""
        max_attempts = self._policy.max_attempts
        last: Optional[SequenceResult] = None
        attempts = 0

        for attempt in range(1, max_attempts + 1):
            attempts = attempt
            result = await self._attempt(attempt, sequencer, build_context)

            if result.status != SequenceStatus.FAILED:
                return self._outcome(item, result, attempt)

            last = result
            assert result.error is not None
            emit(
                LogLevel.WARN,
                f"Attempt {attempt}/{max_attempts} failed at stage "
                f"'{result.stage}': {result.error.message}",
                {
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "stage": result.stage,
                    "error": result.error.to_dict(),
                },
            )
            if self._on_attempt_failed is not None:
                self._on_attempt_failed(result)

            if attempt == max_attempts:
                break
            if self._is_stopped():
                emit(
                    LogLevel.WARN,
                    "Stop requested, not retrying",
                    {"attempt": attempt},
                )
                break
            await asyncio.sleep(self._policy.delay_seconds)

        assert last is not None
        return self._outcome(item, last, attempts)

    async def _attempt(
        self,
        attempt: int,
        sequencer: StageSequencer,
        build_context: ContextFactory,
    ) -> SequenceResult:
        if self._session_factory is None:
            return await sequencer.run(build_context(attempt, None))

        if self._is_stopped():
            return _force_stopped(CONNECT_STAGE)

        session_cm = self._session_factory()
        try:
            session = await session_cm.__aenter__()
        except Exception as e:
            return SequenceResult(
                status=SequenceStatus.FAILED,
                stage=CONNECT_STAGE,
                error=ErrorInfo(
                    f"Remote shell connection failed: {str(e) or type(e).__name__}",
                    ErrorCode.CONNECTION_ERROR.value,
                ),
            )

        try:
            if self._is_stopped():
                return _force_stopped(CONNECT_STAGE)
            return await sequencer.run(build_context(attempt, session))
        finally:
            try:
                await session_cm.__aexit__(None, None, None)
            except Exception as e:
                logger.warning(
                    "session_release_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )

    @staticmethod
    def _outcome(item: WorkItem, result: SequenceResult, attempts: int) -> ItemOutcome:
        if result.status == SequenceStatus.SUCCEEDED:
            return ItemOutcome(
                item_key=item.key,
                success=True,
                payload=result.payload,
                attempts=attempts,
            )
        if result.status in (SequenceStatus.SKIPPED, SequenceStatus.FORCE_STOPPED):
            return ItemOutcome(
                item_key=item.key,
                success=False,
                skipped=True,
                error=result.error,
                payload=result.payload,
                attempts=attempts,
            )
        return ItemOutcome(
            item_key=item.key,
            success=False,
            error=result.error,
            stage_failed=result.stage,
            payload=result.payload,
            attempts=attempts,
        )
