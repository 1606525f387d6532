"""Collaborator clients: hosting control panel, DNS provider, remote shell."""

from provisioner.services.protocols import (
    Account,
    AccountDetails,
    CollaboratorError,
    Collaborators,
    CommandResult,
    ControlPanelClient,
    DnsClient,
    DnsRecord,
    RemoteShellSession,
)

__all__ = [
    "Account",
    "AccountDetails",
    "CollaboratorError",
    "Collaborators",
    "CommandResult",
    "ControlPanelClient",
    "DnsClient",
    "DnsRecord",
    "RemoteShellSession",
]
