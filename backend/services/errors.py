"""
Error kinds for the discovery engine.

Connection failures are classified once, at the executor boundary, into a
ConnectionFailureReason. Callers branch on ``kind`` and ``reason`` and
never inspect message text.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    CONNECTION_FAILED = "connection_failed"
    COMMAND_FAILED = "command_failed"
    PARSE_FAILED = "parse_failed"
    NOT_FOUND = "not_found"
    SERVICE_UNAVAILABLE = "service_unavailable"


class ConnectionFailureReason(str, Enum):
    AUTHENTICATION = "authentication"
    REFUSED = "refused"
    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"
    HOST_KEY = "host_key"
    OTHER = "other"


class DiscoveryError(Exception):
    """Base class for all engine errors."""

    kind: ErrorKind = ErrorKind.COMMAND_FAILED

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConnectionFailed(DiscoveryError):
    """The remote shell session could not be opened or was lost."""

    kind = ErrorKind.CONNECTION_FAILED

    def __init__(self, host: str, reason: ConnectionFailureReason, detail: str = ""):
        self.host = host
        self.reason = reason
        message = f"Connection to {host} failed ({reason.value})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class CommandFailed(DiscoveryError):
    """A single remote command errored, timed out or exited non-zero."""

    kind = ErrorKind.COMMAND_FAILED

    def __init__(self, command: str, exit_status: Optional[int] = None, stderr: str = ""):
        self.command = command
        self.exit_status = exit_status
        self.stderr = stderr
        status = "timed out" if exit_status is None else f"exited {exit_status}"
        message = f"Command {command!r} {status}"
        if stderr:
            message = f"{message}: {stderr.strip()[:200]}"
        super().__init__(message)


class ParseFailed(DiscoveryError):
    kind = ErrorKind.PARSE_FAILED


class NotFound(DiscoveryError):
    kind = ErrorKind.NOT_FOUND


class ServiceUnavailable(DiscoveryError):
    """An optional collaborator is not configured or not answering."""

    kind = ErrorKind.SERVICE_UNAVAILABLE
