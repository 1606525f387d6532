"""Builds the collaborator clients for one job from its credentials."""

from functools import partial
from typing import Optional

import structlog

from provisioner.config import Settings, get_settings
from provisioner.schemas import JobCredentials
from provisioner.services.cloudflare import CloudflareClient
from provisioner.services.protocols import Collaborators
from provisioner.services.ssh import SshSession
from provisioner.services.whm import WhmClient

logger = structlog.get_logger(__name__)


class CollaboratorFactory:
    """Creates WHM, Cloudflare and SSH adapters for the sections present in the credentials."""

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()

    def build(self, credentials: JobCredentials) -> Collaborators:
        settings = self._settings
        collaborators = Collaborators()

        if credentials.whm is not None:
            whm = credentials.whm
            collaborators.control_panel = WhmClient(
                host=whm.host,
                username=whm.username,
                api_token=whm.api_token,
                password=whm.password,
                port=whm.port,
                use_ssl=whm.ssl,
                verify_ssl=settings.whm_verify_ssl,
                timeout=settings.request_timeout_seconds,
            )

        if credentials.cloudflare is not None:
            cf = credentials.cloudflare
            collaborators.dns = CloudflareClient(
                email=cf.email,
                api_key=cf.api_key,
                record_type=cf.record_type,
                base_url=settings.cloudflare_api_url,
                ttl=settings.dns_record_ttl,
                proxied=settings.dns_proxied,
                timeout=settings.request_timeout_seconds,
            )

        if credentials.ssh is not None:
            ssh = credentials.ssh
            collaborators.shell_factory = partial(
                SshSession,
                host=ssh.host,
                username=ssh.username,
                password=ssh.password,
                port=ssh.port,
                connect_timeout=settings.ssh_connect_timeout_seconds,
                command_timeout=settings.ssh_command_timeout_seconds,
            )

        logger.debug(
            "collaborators_built",
            control_panel=collaborators.control_panel is not None,
            dns=collaborators.dns is not None,
            remote_shell=collaborators.shell_factory is not None,
        )
        return collaborators
