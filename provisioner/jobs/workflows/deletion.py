"""Bulk account deletion.

Per domain: find the panel account serving it, terminate it, and optionally
remove the domain's DNS records. Domains with no account are skipped.
A stop request ends the job as `completed` with partial results.

Options:
    remove_dns: also delete the domain's DNS records (default False)
"""

from typing import Any, Optional

from provisioner.jobs.registry import default_registry
from provisioner.jobs.stages import ItemContext, SkipRemaining, Stage, StageError
from provisioner.jobs.types import JobKind, JobStatus
from provisioner.jobs.workflows.common import check_connections, require_control_panel
from provisioner.services.protocols import CollaboratorError


async def find_account(ctx: ItemContext) -> dict[str, Any]:
    panel = require_control_panel(ctx)
    account = await panel.find_account_by_key(ctx.key)
    if account is None:
        raise SkipRemaining(f"No account found for {ctx.key}", code="ACCOUNT_NOT_FOUND")
    ctx.info(f"Found account: {account.username}", username=account.username)
    return {"username": account.username, "email": account.email}


async def delete_account(ctx: ItemContext) -> dict[str, Any]:
    panel = require_control_panel(ctx)
    username = ctx.state["username"]
    try:
        result = await panel.delete_account(username)
    except CollaboratorError as e:
        raise StageError(f"Account deletion failed: {e.message}", code=e.code) from e
    ctx.info(f"Account deleted: {username}")
    return {"message": result.get("message")}


async def remove_dns(ctx: ItemContext) -> Optional[dict[str, Any]]:
    dns = ctx.collaborators.dns
    if dns is None:
        ctx.info("No DNS provider configured, keeping DNS records")
        return None

    removed = []
    for record in await dns.list_records(ctx.key):
        await dns.delete_record(record)
        removed.append(record.id)
    ctx.info(f"Removed {len(removed)} DNS record(s)", records=removed)
    return {"dns_records_removed": len(removed)}


@default_registry.workflow(
    JobKind.DELETION,
    stop_status=JobStatus.COMPLETED,
    requires=("whm",),
    preflight=check_connections,
)
def deletion_stages(options: dict[str, Any]) -> list[Stage]:
    stages = [
        Stage("find_account", find_account, "Finding account"),
        Stage("delete_account", delete_account, "Terminating account"),
    ]
    if options.get("remove_dns"):
        stages.append(Stage("remove_dns", remove_dns, "Removing DNS records"))
    return stages
