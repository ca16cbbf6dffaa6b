"""Services package: remote execution, discovery, reconciliation and conflict resolution."""

from .errors import (
    ErrorKind,
    ConnectionFailureReason,
    DiscoveryError,
    ConnectionFailed,
    CommandFailed,
    ParseFailed,
    NotFound,
    ServiceUnavailable,
)

__all__ = [
    "ErrorKind",
    "ConnectionFailureReason",
    "DiscoveryError",
    "ConnectionFailed",
    "CommandFailed",
    "ParseFailed",
    "NotFound",
    "ServiceUnavailable",
]
