"""Workflow registry: maps a job kind to its stages and terminal policy."""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from provisioner.jobs.stages import Stage
from provisioner.jobs.types import ErrorCode, JobKind, JobStatus

# Stage factory signature: def build(options: dict) -> list[Stage]
StageFactory = Callable[[dict[str, Any]], list[Stage]]

# Preflight signature: async def preflight(collaborators, options) -> None
Preflight = Callable[[Any, dict[str, Any]], Awaitable[None]]


class SetupError(Exception):
    """Raised before any item runs when a job cannot be started."""

    def __init__(self, message: str, code: str = ErrorCode.SETUP_ERROR.value):
        self.message = message
        self.code = code
        super().__init__(message)


@dataclass(frozen=True)
class WorkflowDefinition:
    """How one job kind runs.

    Attributes:
        kind: Job kind served by this definition
        build_stages: Builds the ordered stage list from the job options
        stop_status: Terminal status applied when the job was stopped
        requires: Credential sections the job needs (whm, cloudflare, ssh)
        uses_remote_shell: Open a fresh shell session for every attempt;
            may be a predicate over the job options
        preflight: Optional check run once before any item starts
    """

    kind: JobKind
    build_stages: StageFactory
    stop_status: JobStatus = JobStatus.COMPLETED
    requires: frozenset[str] = frozenset()
    uses_remote_shell: Union[bool, Callable[[dict[str, Any]], bool]] = False
    preflight: Optional[Preflight] = None

    def wants_remote_shell(self, options: dict[str, Any]) -> bool:
        if callable(self.uses_remote_shell):
            return bool(self.uses_remote_shell(options))
        return self.uses_remote_shell


class WorkflowRegistry:
    """Registry mapping job kinds to their workflow definitions."""

    def __init__(self):
        self._definitions: dict[JobKind, WorkflowDefinition] = {}

    def register(self, definition: WorkflowDefinition) -> None:
        """Register (or replace) the definition for a kind."""
        self._definitions[definition.kind] = definition

    def get(self, kind: JobKind) -> WorkflowDefinition:
        """Get the definition for a kind. Raises KeyError if not found."""
        kind = JobKind(kind)
        if kind not in self._definitions:
            raise KeyError(f"No workflow registered for job kind: {kind.value}")
        return self._definitions[kind]

    def kinds(self) -> list[JobKind]:
        return list(self._definitions)

    def __contains__(self, kind: JobKind) -> bool:
        return kind in self._definitions

    def workflow(
        self,
        kind: JobKind,
        stop_status: JobStatus = JobStatus.COMPLETED,
        requires: tuple[str, ...] = (),
        uses_remote_shell: Union[bool, Callable[[dict[str, Any]], bool]] = False,
        preflight: Optional[Preflight] = None,
    ) -> Callable[[StageFactory], StageFactory]:
        """Decorator to register a stage factory."""

        def decorator(fn: StageFactory) -> StageFactory:
            self.register(
                WorkflowDefinition(
                    kind=kind,
                    build_stages=fn,
                    stop_status=stop_status,
                    requires=frozenset(requires),
                    uses_remote_shell=uses_remote_shell,
                    preflight=preflight,
                )
            )
            return fn

        return decorator


# Global registry instance
default_registry = WorkflowRegistry()
