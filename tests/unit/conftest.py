"""Shared fixtures for unit tests.

In-memory fakes for the control panel, DNS provider and remote shell, plus
helpers to build an engine that never touches the network.
"""

import asyncio
from typing import Any, Callable, Optional

import pytest

from provisioner.config import Settings
from provisioner.jobs.engine import JobEngine
from provisioner.jobs.store import ProcessStore
from provisioner.services.protocols import (
    Account,
    AccountDetails,
    CollaboratorError,
    Collaborators,
    CommandResult,
    DnsRecord,
)


class FakeControlPanel:
    """Control panel holding accounts in a dict keyed by main domain."""

    def __init__(self, accounts: Optional[list[Account]] = None):
        self.accounts: dict[str, Account] = {a.domain: a for a in accounts or []}
        self.created: list[AccountDetails] = []
        self.deleted: list[str] = []
        self.fail_connection = False
        self.fail_create: dict[str, int] = {}  # domain -> remaining failures
        self.create_delay = 0.0
        self.closed = False
        # Called as hook(action, value) before each exists/create/delete call
        self.hook: Optional[Callable[[str, str], None]] = None
        self.active = 0
        self.peak_active = 0

    async def test_connection(self) -> None:
        if self.fail_connection:
            raise CollaboratorError("connection refused", code="REQUEST_FAILED")

    def _call_hook(self, action: str, value: str) -> None:
        if self.hook is not None:
            self.hook(action, value)

    async def account_exists(self, domain: str) -> bool:
        self._call_hook("exists", domain)
        return any(a.serves(domain) for a in self.accounts.values())

    async def create_account(self, details: AccountDetails) -> dict[str, Any]:
        self._call_hook("create", details.domain)
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        try:
            if self.create_delay:
                await asyncio.sleep(self.create_delay)
        finally:
            self.active -= 1
        remaining = self.fail_create.get(details.domain, 0)
        if remaining:
            if remaining > 0:
                self.fail_create[details.domain] = remaining - 1
            raise CollaboratorError("quota exceeded", code="WHM_API_ERROR")
        self.created.append(details)
        self.accounts[details.domain] = Account(
            username=details.username, domain=details.domain, email=details.email
        )
        return {"domain": details.domain, "username": details.username, "message": "ok"}

    async def delete_account(self, username: str) -> dict[str, Any]:
        self._call_hook("delete", username)
        for domain, account in list(self.accounts.items()):
            if account.username == username:
                del self.accounts[domain]
                self.deleted.append(username)
                return {"username": username, "message": "Account deleted"}
        raise CollaboratorError(f"No such user {username}", code="WHM_API_ERROR")

    async def find_account_by_key(self, domain: str) -> Optional[Account]:
        for account in self.accounts.values():
            if account.serves(domain):
                return account
        return None

    async def aclose(self) -> None:
        self.closed = True


class FakeDns:
    """DNS provider keeping one record per name."""

    def __init__(self):
        self.records: dict[str, DnsRecord] = {}
        self.fail_names: set[str] = set()
        self.closed = False

    async def test_connection(self) -> None:
        return None

    async def upsert_record(self, name: str, value: str) -> dict[str, Any]:
        if name in self.fail_names:
            raise CollaboratorError("zone not found", code="DOMAIN_NOT_IN_CLOUDFLARE")
        action = "replaced" if name in self.records else "created"
        self.records[name] = DnsRecord(
            id=f"rec-{name}", zone_id="zone", name=name, type="A", content=value
        )
        return {"record_id": f"rec-{name}", "name": name, "content": value, "action": action}

    async def list_records(self, name: str) -> list[DnsRecord]:
        record = self.records.get(name)
        return [record] if record else []

    async def delete_record(self, record: DnsRecord) -> dict[str, Any]:
        self.records.pop(record.name, None)
        return {"id": record.id, "name": record.name}

    async def aclose(self) -> None:
        self.closed = True


class FakeShell:
    """Remote shell session factory.

    `responses` maps a command substring to the result returned for any
    command containing it, or to a list of results handed out in order (the
    last one repeats). Unmatched commands succeed with empty output.
    """

    def __init__(self, responses: Optional[dict[str, CommandResult]] = None):
        self.responses = dict(responses or {})
        self.commands: list[str] = []
        self.opened = 0
        self.closed = 0
        self.fail_connect = False

    def __call__(self) -> "FakeSession":
        return FakeSession(self)


class FakeSession:
    def __init__(self, shell: FakeShell):
        self._shell = shell

    async def connect(self) -> None:
        if self._shell.fail_connect:
            raise CollaboratorError("Connection refused", code="SSH_CONNECTION_ERROR")
        self._shell.opened += 1

    async def run(self, command: str) -> CommandResult:
        self._shell.commands.append(command)
        for needle, result in self._shell.responses.items():
            if needle in command:
                if isinstance(result, list):
                    return result.pop(0) if len(result) > 1 else result[0]
                return result
        return CommandResult(exit_code=0, stdout="", stderr="")

    async def dispose(self) -> None:
        self._shell.closed += 1

    async def __aenter__(self) -> "FakeSession":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()


@pytest.fixture
def panel():
    return FakeControlPanel()


@pytest.fixture
def dns():
    return FakeDns()


@pytest.fixture
def shell():
    return FakeShell()


@pytest.fixture
def collaborators(panel, dns, shell):
    return Collaborators(control_panel=panel, dns=dns, shell_factory=shell)


@pytest.fixture
def settings():
    """Settings with no retry delay and no .env lookup."""
    return Settings(
        _env_file=None,
        max_concurrent_items=3,
        retry_max_attempts=3,
        retry_delay_seconds=0,
        job_retention_seconds=300,
        shutdown_timeout_seconds=5,
    )


@pytest.fixture
def store(settings):
    return ProcessStore(log_retention_limit=settings.log_retention_limit)


@pytest.fixture
def engine(store, settings, collaborators):
    """Engine whose jobs all share the fake collaborators."""
    return JobEngine(
        store,
        settings=settings,
        collaborator_factory=lambda credentials: collaborators,
    )


@pytest.fixture
def wait_for_job():
    """Await a job until it is terminal and its run task has exited."""

    async def _wait(engine: JobEngine, job_id, timeout: float = 5.0):
        async def _poll():
            while True:
                snapshot = engine.store.get_status(job_id)
                finished = snapshot is None or snapshot.status.is_terminal
                if finished and engine.active_jobs == 0:
                    return snapshot
                await asyncio.sleep(0.005)

        return await asyncio.wait_for(_poll(), timeout=timeout)

    return _wait
