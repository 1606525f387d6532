"""Helpers shared by the workflow kinds."""

import json
import shlex
from typing import Any, Optional

from provisioner.jobs.registry import SetupError
from provisioner.jobs.stages import ItemContext, StageError
from provisioner.services.protocols import CollaboratorError, Collaborators
from provisioner.utils.credentials import random_mailbox


async def check_connections(collaborators: Collaborators, options: dict[str, Any]) -> None:
    """Preflight: every configured HTTP collaborator must answer before items start."""
    checks = (
        ("control panel", collaborators.control_panel),
        ("DNS provider", collaborators.dns),
    )
    for label, client in checks:
        if client is None:
            continue
        try:
            await client.test_connection()
        except CollaboratorError as e:
            raise SetupError(f"Cannot reach {label}: {e.message}") from e


async def check_remote_shell(collaborators: Collaborators, options: dict[str, Any]) -> None:
    """Preflight: the SSH credentials must open a session and run a trivial command."""
    if collaborators.shell_factory is None:
        raise SetupError("Remote shell is not configured")
    try:
        async with collaborators.shell_factory() as session:
            await session.run("echo ok")
    except CollaboratorError as e:
        raise SetupError(f"Cannot reach remote shell: {e.message}") from e


def require_session(ctx: ItemContext) -> Any:
    if ctx.session is None:
        raise StageError("Remote shell is not configured", code="SSH_NOT_CONFIGURED")
    return ctx.session


def require_control_panel(ctx: ItemContext) -> Any:
    panel = ctx.collaborators.control_panel
    if panel is None:
        raise StageError("Control panel is not configured", code="WHM_NOT_CONFIGURED")
    return panel


async def run_command(ctx: ItemContext, command: str, action: str) -> str:
    """Run a remote command; a non-zero exit fails the stage. Returns trimmed stdout."""
    session = require_session(ctx)
    result = await session.run(command)
    if result.exit_code != 0:
        detail = result.stderr.strip() or "no stderr output"
        raise StageError(f"Failed to {action}: {detail}", code="REMOTE_COMMAND_FAILED")
    return result.stdout.strip()


def docroot(cpanel_user: str) -> str:
    return f"/home/{cpanel_user}/public_html"


async def find_cpanel_user(ctx: ItemContext) -> dict[str, Any]:
    domain = shlex.quote(f"domain: {ctx.key}")
    command = (
        f"whmapi1 listaccts | awk -v d={domain} "
        "'index($0, d){found=1} found && /user:/{print $2; exit}'"
    )
    user = await run_command(ctx, command, "look up cPanel user")
    if not user:
        raise StageError(f"cPanel user not found for {ctx.key}", code="ACCOUNT_NOT_FOUND")
    ctx.info(f"Found cPanel user: {user}", cpanel_user=user)
    return {"cpanel_user": user}


async def find_wp_admin(ctx: ItemContext) -> dict[str, Any]:
    path = docroot(ctx.state["cpanel_user"])
    output = await run_command(
        ctx,
        f"wp user list --path={shlex.quote(path)} --role=administrator "
        "--field=user_login --allow-root",
        "list WordPress administrators",
    )
    admin = output.splitlines()[0].strip() if output else ""
    if not admin:
        raise StageError("WordPress admin user not found", code="WP_ADMIN_NOT_FOUND")
    ctx.info(f"Found WordPress admin: {admin}", wp_user=admin)
    return {"wp_user": admin}


async def set_wp_password(ctx: ItemContext, password: str) -> None:
    path = docroot(ctx.state["cpanel_user"])
    await run_command(
        ctx,
        f"wp user update {shlex.quote(ctx.state['wp_user'])} "
        f"--user_pass={shlex.quote(password)} --path={shlex.quote(path)} --allow-root",
        "update WordPress password",
    )


async def create_magic_link(ctx: ItemContext) -> dict[str, Any]:
    login_url = f"https://{ctx.key}/wp-admin/"
    fallback = {"login_url": login_url, "has_magic_link": False}
    path = docroot(ctx.state["cpanel_user"])
    email = random_mailbox(ctx.key)

    try:
        result = await require_session(ctx).run(
            f"wp tlwp create --email={shlex.quote(email)} --role=administrator "
            f"--allow-root --path={shlex.quote(path)}"
        )
    except CollaboratorError as e:
        ctx.warn(f"Magic link creation error: {e.message}")
        return fallback

    data = parse_json(result.stdout.strip()) if result.exit_code == 0 else None
    if not data or data.get("status") != "success" or not data.get("login_url"):
        ctx.warn(
            "Magic link creation failed",
            exit_code=result.exit_code,
            stderr=result.stderr.strip(),
        )
        return fallback

    ctx.info("Magic login created", expires=data.get("expires"))
    return {
        "login_url": data["login_url"],
        "has_magic_link": True,
        "temp_user": data.get("username"),
        "temp_user_id": data.get("user_id"),
        "temp_email": data.get("email") or email,
        "expires": data.get("expires"),
        "max_login_limit": data.get("max_login_limit") or 1,
    }


def parse_json(output: str) -> Optional[dict[str, Any]]:
    try:
        data = json.loads(output)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None
