"""Bulk account creation.

Per domain:
1. Skip the domain if the panel already hosts it
2. Point its DNS record at the server (when a DNS provider is configured)
3. Create the panel account with a generated username and password
4. Optionally clone a WordPress site onto it, then configure the site over
   the remote shell: admin password, AdSense publisher id, ads.txt and a
   magic login link

An account created by a failed attempt is reused by the next attempts of
the same item, so a retry resumes with the remote steps instead of finding
its own account and skipping the domain.

A stop request ends the job as `cancelled`.

Options:
    record_value: DNS record content (filled from the Cloudflare credentials)
    strict_dns: fail the item when the DNS step fails (default: warn and go on)
    email_template: contact email, `{domain}` is substituted (default admin@domain)
    plan, maxaddons, maxparked, maxsubs, maxsql: passed to the panel
    master_domain: WordPress site to clone onto each new account
    wp_password: admin password to set on the cloned site
    adsense: replace the publisher id in the theme header with the one
        given in the item's `domain|id` entry
    adsense_header: header file, relative to the document root
    ads_txt: content written to the site's ads.txt
    magic_link: create a temporary login link (default False)
"""

import json
import shlex
from typing import Any, Optional

from provisioner.jobs.registry import default_registry
from provisioner.jobs.stages import ItemContext, SkipRemaining, Stage, StageError
from provisioner.jobs.types import ErrorCode, JobKind, JobStatus
from provisioner.jobs.workflows.common import (
    check_connections,
    create_magic_link,
    docroot,
    find_cpanel_user,
    find_wp_admin,
    require_control_panel,
    require_session,
    run_command,
    set_wp_password,
)
from provisioner.services.protocols import AccountDetails, CollaboratorError
from provisioner.utils.credentials import (
    contact_email,
    generate_password,
    generate_username,
)

ACCOUNT_LIMIT_OPTIONS = ("maxaddons", "maxparked", "maxsubs", "maxsql")

# createacct field names differ from the option names for some limits
_PANEL_FIELDS = {"maxaddons": "maxaddon", "maxsubs": "maxsub"}

DEFAULT_ADSENSE_HEADER = "wp-content/themes/superfast/header.php"

# Options that need the cPanel user of the new account on the remote host
_SITE_OPTIONS = ("wp_password", "adsense", "ads_txt", "magic_link")

# Key in ItemContext.carry holding the account created by an earlier attempt
_CREATED = "created_account"


async def check_existing(ctx: ItemContext) -> Optional[dict[str, Any]]:
    created = ctx.carry.get(_CREATED)
    if created is not None:
        ctx.info(f"Reusing account {created['username']} from an earlier attempt")
        return dict(created)

    panel = require_control_panel(ctx)
    if await panel.account_exists(ctx.key):
        raise SkipRemaining(
            f"Domain {ctx.key} already exists", code=ErrorCode.ALREADY_EXISTS.value
        )
    return None


async def configure_dns(ctx: ItemContext) -> Optional[dict[str, Any]]:
    dns = ctx.collaborators.dns
    value = ctx.options.get("record_value")
    if dns is None or not value:
        ctx.info("No DNS provider configured, skipping DNS record")
        return None

    try:
        record = await dns.upsert_record(ctx.key, value)
    except CollaboratorError as e:
        if ctx.options.get("strict_dns"):
            raise StageError(f"DNS record failed: {e.message}", code=e.code) from e
        ctx.warn(f"Failed to create DNS record: {e.message}", error_code=e.code)
        return {"dns": None}

    ctx.info(f"DNS record {record.get('action', 'created')} for {ctx.key} -> {value}")
    return {"dns": record}


async def create_account(ctx: ItemContext) -> Optional[dict[str, Any]]:
    if _CREATED in ctx.carry:
        # Credentials were merged by check_existing
        return None

    panel = require_control_panel(ctx)
    options = ctx.options

    extra: dict[str, Any] = {
        "quota": "unlimited",
        "bwlimit": "unlimited",
        "hasshell": 0,
        "cgi": 1,
    }
    for name in ACCOUNT_LIMIT_OPTIONS:
        if options.get(name) is not None:
            extra[_PANEL_FIELDS.get(name, name)] = options[name]

    details = AccountDetails(
        domain=ctx.key,
        username=generate_username(),
        password=generate_password(),
        email=contact_email(ctx.key, options.get("email_template")),
        plan=options.get("plan"),
        extra=extra,
    )
    try:
        result = await panel.create_account(details)
    except CollaboratorError as e:
        raise StageError(f"Account creation failed: {e.message}", code=e.code) from e

    ctx.info(
        f"Account created: {details.username}",
        username=details.username,
        email=details.email,
    )
    account = {
        "username": details.username,
        "password": details.password,
        "email": details.email,
        "message": result.get("message"),
    }
    ctx.carry[_CREATED] = account
    return dict(account)


async def clone_site(ctx: ItemContext) -> dict[str, Any]:
    master = ctx.options["master_domain"]
    output = await run_command(
        ctx,
        f"wp-toolkit --list -domain-name {shlex.quote(master)} -format json",
        f"look up WordPress instance for {master}",
    )
    try:
        items = json.loads(output or "[]")
    except ValueError:
        items = []
    if not isinstance(items, list) or not items or not isinstance(items[0], dict):
        items = []
    if not items or not items[0].get("id"):
        raise StageError(
            f"WordPress instance not found for {master}", code="WP_INSTANCE_NOT_FOUND"
        )

    source_id = items[0]["id"]
    await run_command(
        ctx,
        f"wp-toolkit --clone -source-instance-id {shlex.quote(str(source_id))} "
        f"-target-domain-name {shlex.quote(ctx.key)} -force-overwrite yes -format json",
        "clone WordPress site",
    )
    ctx.info(f"Cloned WordPress from {master}", source_instance=source_id)
    return {"cloned_from": master}


async def update_wp_password(ctx: ItemContext) -> dict[str, Any]:
    password = ctx.options["wp_password"]
    await set_wp_password(ctx, password)
    ctx.info("WordPress admin password updated")
    return {"wp_password_set": True}


async def update_adsense(ctx: ItemContext) -> Optional[dict[str, Any]]:
    """Swap the publisher id in the theme header. A missing header only warns."""
    adsense_id = ctx.item.meta.get("adsense_id")
    if not adsense_id:
        ctx.info("No AdSense id for this domain")
        return None

    session = require_session(ctx)
    publisher = f"pub-{adsense_id}"
    relative = ctx.options.get("adsense_header") or DEFAULT_ADSENSE_HEADER
    header = f"{docroot(ctx.state['cpanel_user'])}/{relative.lstrip('/')}"

    check = await session.run(f"test -f {shlex.quote(header)} && echo exists")
    if check.stdout.strip() != "exists":
        ctx.warn(f"AdSense update skipped: {header} not found")
        return {"adsense_id": publisher, "adsense_updated": False}

    expression = f"s/pub-[0-9]\\{{16\\}}/{publisher}/g"
    result = await session.run(
        f"sed -i.bak {shlex.quote(expression)} {shlex.quote(header)}"
    )
    if result.exit_code != 0:
        ctx.warn(
            f"Failed to edit {header}: {result.stderr.strip() or 'no stderr output'}"
        )
        return {"adsense_id": publisher, "adsense_updated": False}

    ctx.info(f"AdSense id set to {publisher}")
    return {"adsense_id": publisher, "adsense_updated": True}


async def write_ads_txt(ctx: ItemContext) -> dict[str, Any]:
    path = f"{docroot(ctx.state['cpanel_user'])}/ads.txt"
    content = ctx.options["ads_txt"].rstrip("\n")
    await run_command(
        ctx,
        f"printf '%s\\n' {shlex.quote(content)} > {shlex.quote(path)}",
        "write ads.txt",
    )
    ctx.info("ads.txt written")
    return {"ads_txt": True}


def _site_configured(options: dict[str, Any]) -> bool:
    return any(options.get(name) for name in _SITE_OPTIONS)


def needs_remote_shell(options: dict[str, Any]) -> bool:
    return bool(options.get("master_domain")) or _site_configured(options)


@default_registry.workflow(
    JobKind.CREATION,
    stop_status=JobStatus.CANCELLED,
    requires=("whm",),
    uses_remote_shell=needs_remote_shell,
    preflight=check_connections,
)
def creation_stages(options: dict[str, Any]) -> list[Stage]:
    stages = [
        Stage("check_existing", check_existing, "Checking for existing account"),
        Stage("dns", configure_dns, "Configuring DNS record"),
        Stage("create_account", create_account, "Creating panel account"),
    ]
    if options.get("master_domain"):
        stages.append(Stage("clone_site", clone_site, "Cloning WordPress site"))
    if not _site_configured(options):
        return stages

    stages.append(Stage("cpanel_user", find_cpanel_user, "Looking up cPanel user"))
    if options.get("wp_password") or options.get("magic_link"):
        stages.append(Stage("wp_admin", find_wp_admin, "Looking up WordPress admin"))
    if options.get("wp_password"):
        stages.append(
            Stage("wp_password", update_wp_password, "Setting WordPress password")
        )
    if options.get("adsense"):
        stages.append(Stage("adsense", update_adsense, "Updating AdSense id"))
    if options.get("ads_txt"):
        stages.append(Stage("ads_txt", write_ads_txt, "Writing ads.txt"))
    if options.get("magic_link"):
        stages.append(Stage("magic_link", create_magic_link, "Creating magic login link"))
    return stages
