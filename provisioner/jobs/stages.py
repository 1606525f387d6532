"""Workflow stage sequencer.

Runs a named, ordered list of stages for one item and one attempt:

- the stop flag is re-checked before every stage
- the first failing stage aborts the rest (earlier effects are kept, there
  is no rollback)
- a stage may end the sequence early with `SkipRemaining`, which records
  the item as skipped
- each stage may return a dict; it is merged into `ctx.state` for later
  stages and into the final payload
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

import structlog

from provisioner.jobs.models import ErrorInfo, WorkItem
from provisioner.jobs.types import ErrorCode, LogLevel

logger = structlog.get_logger(__name__)


class StageError(Exception):
    """A typed stage failure."""

    def __init__(self, message: str, code: str = ErrorCode.STAGE_ERROR.value):
        self.message = message
        self.code = code
        super().__init__(message)


class SkipRemaining(Exception):
    """Raised by a pre-check stage to skip the rest of the item's stages."""

    def __init__(self, reason: str, code: str = ErrorCode.ALREADY_EXISTS.value):
        self.reason = reason
        self.code = code
        super().__init__(reason)


# Item-level log hook: (level, message, data)
ItemLog = Callable[[LogLevel, str, dict[str, Any]], None]


@dataclass
class ItemContext:
    """Everything a stage can see while processing one item."""

    item: WorkItem
    attempt: int
    collaborators: Any
    options: dict[str, Any]
    emit: ItemLog
    session: Any = None
    state: dict[str, Any] = field(default_factory=dict)
    # Shared by every attempt of the item; survives a failed attempt
    carry: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return self.item.key

    def log(self, level: LogLevel, message: str, **data: Any) -> None:
        self.emit(level, message, data)

    def info(self, message: str, **data: Any) -> None:
        self.emit(LogLevel.INFO, message, data)

    def warn(self, message: str, **data: Any) -> None:
        self.emit(LogLevel.WARN, message, data)


StageFn = Callable[[ItemContext], Awaitable[Optional[dict[str, Any]]]]


@dataclass(frozen=True)
class Stage:
    """One named step of an item workflow."""

    name: str
    run: StageFn
    description: Optional[str] = None


class SequenceStatus(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"
    FORCE_STOPPED = "force_stopped"


@dataclass
class SequenceResult:
    """Outcome of a single attempt over the stage list."""

    status: SequenceStatus
    payload: dict[str, Any] = field(default_factory=dict)
    stage: Optional[str] = None
    error: Optional[ErrorInfo] = None
    completed_stages: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == SequenceStatus.SUCCEEDED


class StageSequencer:
    """Executes stages in order for one item."""

    def __init__(self, stages: Sequence[Stage], is_stopped: Callable[[], bool]):
        self._stages = list(stages)
        self._is_stopped = is_stopped

    @property
    def stage_names(self) -> list[str]:
        return [s.name for s in self._stages]

    async def run(self, ctx: ItemContext) -> SequenceResult:
        payload: dict[str, Any] = {}
        completed: list[str] = []

        for stage in self._stages:
            if self._is_stopped():
                ctx.warn(
                    f"Force-stopped by user before stage '{stage.name}'",
                    stage=stage.name,
                )
                return SequenceResult(
                    status=SequenceStatus.FORCE_STOPPED,
                    payload=payload,
                    stage=stage.name,
                    error=ErrorInfo(
                        message="Force-stopped by user",
                        code=ErrorCode.FORCE_STOPPED.value,
                    ),
                    completed_stages=completed,
                )

            ctx.info(f"Stage: {stage.description or stage.name}", stage=stage.name)
            try:
                contribution = await stage.run(ctx)
            except SkipRemaining as skip:
                ctx.warn(f"{skip.reason}. Skipping.", stage=stage.name)
                return SequenceResult(
                    status=SequenceStatus.SKIPPED,
                    payload=payload,
                    stage=stage.name,
                    error=ErrorInfo(message=skip.reason, code=skip.code),
                    completed_stages=completed,
                )
            except StageError as e:
                return self._failed(stage, ErrorInfo(e.message, e.code), payload, completed)
            except Exception as e:
                logger.debug(
                    "stage_exception",
                    item=ctx.key,
                    stage=stage.name,
                    error_type=type(e).__name__,
                )
                message = str(e) or type(e).__name__
                return self._failed(
                    stage,
                    ErrorInfo(message, ErrorCode.STAGE_ERROR.value),
                    payload,
                    completed,
                )

            if contribution:
                ctx.state.update(contribution)
                payload.update(contribution)
            completed.append(stage.name)

        return SequenceResult(
            status=SequenceStatus.SUCCEEDED,
            payload=payload,
            completed_stages=completed,
        )

    @staticmethod
    def _failed(
        stage: Stage,
        error: ErrorInfo,
        payload: dict[str, Any],
        completed: list[str],
    ) -> SequenceResult:
        return SequenceResult(
            status=SequenceStatus.FAILED,
            payload=payload,
            stage=stage.name,
            error=error,
            completed_stages=completed,
        )
