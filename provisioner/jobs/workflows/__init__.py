"""Workflow kinds.

Each module registers its stage factory with `default_registry` on import.

Stage contract:
    async def stage(ctx: ItemContext) -> dict | None:
        - ctx.item / ctx.key: the work item being processed
        - ctx.session: this attempt's remote shell (None if the kind has none)
        - ctx.collaborators: panel and DNS clients shared by the job
        - ctx.state: contributions of earlier stages
        - Returns: dict merged into ctx.state and the item's payload
"""

# Import workflows to trigger registration
from provisioner.jobs.workflows import admin_change  # noqa: F401
from provisioner.jobs.workflows import creation  # noqa: F401
from provisioner.jobs.workflows import deletion  # noqa: F401

__all__ = ["admin_change", "creation", "deletion"]
