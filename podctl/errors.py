"""
Exceptions for podctl.

Every failure point in resolution, connection and transfer has its own
exception class. Each class carries a stable ``exit_code`` that the CLI tools
return, so scripts can tell a missing service apart from a refused dial.

The underlying library exception (httpx, paramiko, OSError) is chained via
``__cause__`` (standard ``raise LookupFailed(...) from cause`` pattern).
"""

from typing import Optional


class PodctlError(Exception):
    """Base class for all podctl errors.

    Attributes:
        message: Human-readable description of the failure.
        exit_code: Process exit code the CLI reports for this failure.
    """

    exit_code = 1

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class ConfigurationError(PodctlError):
    """Settings are missing or invalid (endpoint, timeouts, host-key policy)."""

    exit_code = 3


# -- path arguments ---------------------------------------------------------


class InvalidPathSpec(PodctlError):
    """Copy arguments do not name exactly one remote endpoint."""

    exit_code = 2


# -- endpoint resolution ----------------------------------------------------


class LookupFailed(PodctlError):
    """DescribeServices failed at the transport or application level."""

    exit_code = 10


class ServiceNotFound(PodctlError):
    """DescribeServices returned no rows for the identifier."""

    exit_code = 11

    def __init__(self, service_id: str):
        self.service_id = service_id
        super().__init__(f"Service {service_id!r} not found")


class CredentialIssuanceFailed(PodctlError):
    """The control plane did not issue usable connection credentials."""

    exit_code = 12


# -- transport / session ----------------------------------------------------


class DialFailed(PodctlError):
    """TCP connect, SSH handshake, host-key check or authentication failed.

    Attributes:
        host: Remote host that was dialed (None if unknown)
        port: Remote port that was dialed (None if unknown)
    """

    exit_code = 20

    def __init__(self, message: str, host: Optional[str] = None, port: Optional[int] = None):
        self.host = host
        self.port = port
        where = f" ({host}:{port})" if host is not None else ""
        super().__init__(f"{message}{where}")


class SessionSetupFailed(PodctlError):
    """Session channel could not be opened on the transport."""

    exit_code = 21


class PtyRequestFailed(PodctlError):
    """Remote side refused the pseudo-terminal request."""

    exit_code = 22


class ShellStartFailed(PodctlError):
    """Remote side refused to start an interactive shell."""

    exit_code = 23


class RemoteSessionError(PodctlError):
    """Session ended without a clean exit status."""

    exit_code = 24


# -- file transfer ----------------------------------------------------------


class LocalFileOpenFailed(PodctlError):
    """Local source (or destination) file could not be opened."""

    exit_code = 30

    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(f"Cannot open local file {path!r}: {reason}")


class TransferFailed(PodctlError):
    """I/O or SCP protocol error on either side of a copy."""

    exit_code = 31


__all__ = [
    "PodctlError",
    "ConfigurationError",
    "InvalidPathSpec",
    "LookupFailed",
    "ServiceNotFound",
    "CredentialIssuanceFailed",
    "DialFailed",
    "SessionSetupFailed",
    "PtyRequestFailed",
    "ShellStartFailed",
    "RemoteSessionError",
    "LocalFileOpenFailed",
    "TransferFailed",
]
