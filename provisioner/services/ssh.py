"""Remote shell sessions over SSH."""

import asyncio
from typing import Optional

import asyncssh
import structlog

from provisioner.services.protocols import CollaboratorError, CommandResult

logger = structlog.get_logger(__name__)


class SshSession:
    """
    One SSH connection, used as an async context manager.

    Password auth, host keys are not checked (targets are panel servers
    provisioned on demand). Each command gets its own timeout.
    """

    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        port: int = 22,
        connect_timeout: float = 20.0,
        command_timeout: float = 120.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self._password = password
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self._conn: Optional[asyncssh.SSHClientConnection] = None

    @property
    def connected(self) -> bool:
        return self._conn is not None

    async def connect(self) -> None:
        if self._conn is not None:
            return
        try:
            self._conn = await asyncssh.connect(
                self.host,
                port=self.port,
                username=self.username,
                password=self._password,
                known_hosts=None,
                connect_timeout=self.connect_timeout,
            )
        except (OSError, asyncssh.Error, asyncio.TimeoutError) as e:
            raise CollaboratorError(
                f"SSH connection failed: {str(e) or type(e).__name__}",
                code="SSH_CONNECTION_ERROR",
            ) from e
        logger.debug("ssh_connected", host=self.host, port=self.port)

    async def run(self, command: str) -> CommandResult:
        if self._conn is None:
            raise CollaboratorError("SSH session is not connected", code="SSH_NOT_CONNECTED")
        try:
            result = await self._conn.run(
                command, check=False, timeout=self.command_timeout
            )
        except asyncssh.TimeoutError as e:
            raise CollaboratorError(
                f"Remote command timed out after {self.command_timeout}s",
                code="SSH_TIMEOUT",
            ) from e
        except asyncssh.Error as e:
            raise CollaboratorError(
                f"Remote command failed: {str(e) or type(e).__name__}",
                code="SSH_ERROR",
            ) from e

        return CommandResult(
            exit_code=result.exit_status if result.exit_status is not None else -1,
            stdout=str(result.stdout or ""),
            stderr=str(result.stderr or ""),
        )

    async def dispose(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        conn.close()
        await conn.wait_closed()
        logger.debug("ssh_disconnected", host=self.host)

    async def __aenter__(self) -> "SshSession":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()
