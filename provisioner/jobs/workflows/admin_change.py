"""Bulk WordPress admin change over SSH.

Per domain: resolve the cPanel user and the first WordPress administrator,
read the admin email, set a new password and create a temporary magic login
link. The magic link is best effort; failing to create one does not fail
the item. A stop request ends the job as `completed` with partial results.

Options:
    new_password: password to set on every site (generated per site if absent)
    magic_link: create a temporary login link (default True)
"""

import shlex
from typing import Any

from provisioner.jobs.registry import default_registry
from provisioner.jobs.stages import ItemContext, Stage
from provisioner.jobs.types import JobKind, JobStatus
from provisioner.jobs.workflows.common import (
    check_remote_shell,
    create_magic_link,
    docroot,
    find_cpanel_user,
    find_wp_admin,
    run_command,
    set_wp_password,
)
from provisioner.utils.credentials import generate_password


async def read_admin_email(ctx: ItemContext) -> dict[str, Any]:
    path = docroot(ctx.state["cpanel_user"])
    email = await run_command(
        ctx,
        f"wp user get {shlex.quote(ctx.state['wp_user'])} --field=email "
        f"--path={shlex.quote(path)} --allow-root",
        "read WordPress admin email",
    )
    ctx.info(f"WordPress admin email: {email}")
    return {"wp_email": email}


async def change_password(ctx: ItemContext) -> dict[str, Any]:
    password = ctx.options.get("new_password") or generate_password()
    await set_wp_password(ctx, password)
    ctx.info(f"Password updated for {ctx.state['wp_user']}")
    return {"new_password": password}


@default_registry.workflow(
    JobKind.ADMIN_CHANGE,
    stop_status=JobStatus.COMPLETED,
    requires=("ssh",),
    uses_remote_shell=True,
    preflight=check_remote_shell,
)
def admin_change_stages(options: dict[str, Any]) -> list[Stage]:
    stages = [
        Stage("cpanel_user", find_cpanel_user, "Looking up cPanel user"),
        Stage("wp_admin", find_wp_admin, "Looking up WordPress admin"),
        Stage("wp_email", read_admin_email, "Reading WordPress admin email"),
        Stage("wp_password", change_password, "Changing WordPress password"),
    ]
    if options.get("magic_link", True):
        stages.append(Stage("magic_link", create_magic_link, "Creating magic login link"))
    return stages
