"""
Remote command execution over SSH (asyncssh).

``RemoteExecutor.execute`` opens a session, runs exactly one command,
returns its output with trailing whitespace trimmed and closes the
session. ``RemoteExecutor.session`` keeps one connection open for a
sequence of commands that must run in order on the same host.

Nothing here retries. Fallback is expressed by the caller, usually through
CommandProber's ordered candidate list.
"""

import asyncio
import errno
import logging
import socket
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import asyncssh

from config import settings
from services.credentials import SshTarget
from services.errors import CommandFailed, ConnectionFailed, ConnectionFailureReason

logger = logging.getLogger(__name__)

_UNREACHABLE_ERRNOS = {errno.EHOSTUNREACH, errno.ENETUNREACH, errno.EHOSTDOWN}


def classify_connect_error(exc: BaseException) -> ConnectionFailureReason:
    """Map an exception raised while connecting to a failure reason."""
    if isinstance(exc, asyncssh.PermissionDenied):
        return ConnectionFailureReason.AUTHENTICATION
    if isinstance(exc, asyncssh.HostKeyNotVerifiable):
        return ConnectionFailureReason.HOST_KEY
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ConnectionFailureReason.TIMEOUT
    if isinstance(exc, ConnectionRefusedError):
        return ConnectionFailureReason.REFUSED
    if isinstance(exc, socket.gaierror):
        return ConnectionFailureReason.UNREACHABLE
    if isinstance(exc, OSError) and exc.errno in _UNREACHABLE_ERRNOS:
        return ConnectionFailureReason.UNREACHABLE
    return ConnectionFailureReason.OTHER


class RemoteSession:
    """One open SSH connection. Commands run strictly one at a time."""

    def __init__(self, target: SshTarget, conn, command_timeout: float):
        self.target = target
        self._conn = conn
        self._command_timeout = command_timeout
        self._lock = asyncio.Lock()

    async def run(self, command: str, timeout: Optional[float] = None) -> str:
        """
        Run one command and return its trimmed stdout.

        Raises:
            CommandFailed: non-zero exit or command timeout
            ConnectionFailed: the connection dropped while running
        """
        async with self._lock:
            try:
                result = await asyncio.wait_for(
                    self._conn.run(command, check=False),
                    timeout=timeout or self._command_timeout,
                )
            except asyncio.TimeoutError:
                raise CommandFailed(command)
            except asyncssh.ConnectionLost as e:
                raise ConnectionFailed(self.target.address, ConnectionFailureReason.OTHER, str(e))
            except asyncssh.Error as e:
                raise CommandFailed(command, stderr=str(e))

        stdout = result.stdout or ""
        if isinstance(stdout, bytes):
            stdout = stdout.decode("utf-8", errors="replace")
        if result.exit_status not in (0, None):
            stderr = result.stderr or ""
            if isinstance(stderr, bytes):
                stderr = stderr.decode("utf-8", errors="replace")
            raise CommandFailed(command, result.exit_status, stderr)
        return stdout.rstrip()


class RemoteExecutor:
    """Opens authenticated SSH sessions to managed hosts."""

    def __init__(
        self,
        connect_timeout: Optional[float] = None,
        command_timeout: Optional[float] = None,
        known_hosts: Optional[str] = None,
    ):
        self.connect_timeout = connect_timeout or settings.SSH_CONNECT_TIMEOUT
        self.command_timeout = command_timeout or settings.SSH_COMMAND_TIMEOUT
        self.known_hosts = known_hosts if known_hosts is not None else settings.SSH_KNOWN_HOSTS

    def _connect_options(self, target: SshTarget) -> dict:
        options = {
            "host": target.address,
            "port": target.port,
            "username": target.username,
            "known_hosts": self.known_hosts,
            "connect_timeout": self.connect_timeout,
        }
        if target.private_key_path:
            options["client_keys"] = [target.private_key_path]
        else:
            # Only the supplied password; don't fall back to agent or ~/.ssh keys
            options["client_keys"] = None
            options["agent_path"] = None
        if target.password:
            options["password"] = target.password
        return options

    async def _connect(self, target: SshTarget):
        try:
            return await asyncio.wait_for(
                asyncssh.connect(**self._connect_options(target)),
                timeout=self.connect_timeout,
            )
        except (asyncssh.Error, OSError, asyncio.TimeoutError) as e:
            reason = classify_connect_error(e)
            logger.warning(f"SSH connection to {target} failed: {reason.value}: {e}")
            raise ConnectionFailed(target.address, reason, str(e)) from e

    @asynccontextmanager
    async def session(self, target: SshTarget) -> AsyncIterator[RemoteSession]:
        """Open one connection for a sequence of ordered commands."""
        conn = await self._connect(target)
        logger.debug(f"SSH session opened to {target}")
        try:
            yield RemoteSession(target, conn, self.command_timeout)
        finally:
            conn.close()
            await conn.wait_closed()
            logger.debug(f"SSH session closed to {target}")

    async def execute(self, target: SshTarget, command: str) -> str:
        """Open a session, run exactly one command, close the session."""
        async with self.session(target) as remote:
            return await remote.run(command)
