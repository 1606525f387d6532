"""Collaborator interfaces consumed by the job workflows.

The engine only depends on these protocols. Concrete adapters live beside
this module (`whm`, `cloudflare`, `ssh`); tests supply in-memory fakes.
"""

from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class Account:
    """A hosting-panel account."""

    username: str
    domain: str
    email: Optional[str] = None
    plan: Optional[str] = None
    suspended: bool = False
    addon_domains: tuple[str, ...] = ()
    parked_domains: tuple[str, ...] = ()
    sub_domains: tuple[str, ...] = ()

    def serves(self, domain: str) -> bool:
        """True if the account hosts `domain` as main, addon, parked or sub domain."""
        return (
            self.domain == domain
            or domain in self.addon_domains
            or domain in self.parked_domains
            or domain in self.sub_domains
        )


@dataclass(frozen=True)
class DnsRecord:
    """A DNS record as returned by the provider."""

    id: str
    zone_id: str
    name: str
    type: str
    content: str
    proxied: bool = False
    ttl: int = 1


@dataclass(frozen=True)
class CommandResult:
    """Result of one remote command."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class AccountDetails:
    """Parameters for creating a panel account."""

    domain: str
    username: str
    password: str
    email: Optional[str] = None
    plan: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)


class CollaboratorError(Exception):
    """Raised by an adapter when a collaborator call fails."""

    def __init__(self, message: str, code: str = "COLLABORATOR_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


@runtime_checkable
class ControlPanelClient(Protocol):
    """Hosting control panel (e.g. WHM)."""

    async def test_connection(self) -> None: ...

    async def account_exists(self, domain: str) -> bool: ...

    async def create_account(self, details: AccountDetails) -> dict[str, Any]: ...

    async def delete_account(self, username: str) -> dict[str, Any]: ...

    async def find_account_by_key(self, domain: str) -> Optional[Account]: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class DnsClient(Protocol):
    """DNS provider (e.g. Cloudflare)."""

    async def test_connection(self) -> None: ...

    async def upsert_record(self, name: str, value: str) -> dict[str, Any]: ...

    async def list_records(self, name: str) -> list[DnsRecord]: ...

    async def delete_record(self, record: DnsRecord) -> dict[str, Any]: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class RemoteShellSession(Protocol):
    """One remote shell session, owned by a single attempt."""

    async def connect(self) -> None: ...

    async def run(self, command: str) -> CommandResult: ...

    async def dispose(self) -> None: ...

    async def __aenter__(self) -> "RemoteShellSession": ...

    async def __aexit__(self, exc_type, exc, tb) -> None: ...


@dataclass
class Collaborators:
    """The collaborator clients used by one job.

    Panel and DNS clients are shared by every item of the job. The shell
    factory opens a new session per attempt.
    """

    control_panel: Optional[ControlPanelClient] = None
    dns: Optional[DnsClient] = None
    shell_factory: Optional[Callable[[], AbstractAsyncContextManager[Any]]] = None

    async def aclose(self) -> None:
        """Close every client, then re-raise the first close error."""
        first_error: Optional[Exception] = None
        for client in (self.control_panel, self.dns):
            if client is None:
                continue
            try:
                await client.aclose()
            except Exception as e:
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error
