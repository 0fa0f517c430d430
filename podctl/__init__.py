"""
podctl - reach container-backed compute services over one-time SSH credentials.

Quick start:
    import podctl

    settings = podctl.Settings.from_env()
    status = podctl.connect("svc-123", settings=settings)
    podctl.copy("report.csv", "svc-123:/data/report.csv", settings=settings)

Every call resolves fresh credentials through the control plane; nothing is
cached between calls.
"""

import logging
from typing import Optional

from podctl.config import Settings
from podctl.controlplane import ControlPlane, HTTPControlPlane, ServiceRecord, SSHEntry, JupyterEntry
from podctl.errors import (  # noqa: F401
    PodctlError,
    ConfigurationError,
    InvalidPathSpec,
    LookupFailed,
    ServiceNotFound,
    CredentialIssuanceFailed,
    DialFailed,
    SessionSetupFailed,
    PtyRequestFailed,
    ShellStartFailed,
    RemoteSessionError,
    LocalFileOpenFailed,
    TransferFailed,
)
from podctl.pathspec import CopyPlan, Direction, PathSpec, parse_copy_args
from podctl.resolver import ConnectionDescriptor, EndpointResolver
from podctl.ssh import Connection, CommandResult
from podctl.transfer import TransferResult

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def _control_plane(settings: Settings, control_plane: Optional[ControlPlane]) -> tuple[ControlPlane, bool]:
    """Return (control_plane, owned). Owned clients are closed by the caller."""
    if control_plane is not None:
        return control_plane, False
    return HTTPControlPlane(settings), True


def resolve(service_id: str, *, settings: Settings, control_plane: Optional[ControlPlane] = None) -> ConnectionDescriptor:
    """Resolve fresh one-time SSH credentials for a service."""
    cp, owned = _control_plane(settings, control_plane)
    try:
        return EndpointResolver(cp).resolve(service_id)
    finally:
        if owned:
            cp.close()


def connect(service_id: str, *, settings: Settings, control_plane: Optional[ControlPlane] = None) -> int:
    """Open an interactive shell on a service. Returns the remote exit status."""
    from podctl.session import open_interactive

    descriptor = resolve(service_id, settings=settings, control_plane=control_plane)
    return open_interactive(descriptor, settings)


def copy(
    source: str,
    destination: str,
    *,
    settings: Settings,
    control_plane: Optional[ControlPlane] = None,
) -> TransferResult:
    """Copy one file to or from a service; exactly one path carries ``SERVICE:``."""
    from podctl import transfer

    plan = parse_copy_args(source, destination)
    descriptor = resolve(plan.service_id, settings=settings, control_plane=control_plane)
    return transfer.copy(plan, descriptor, settings)


__all__ = [
    "__version__",
    "Settings",
    "ControlPlane",
    "HTTPControlPlane",
    "ServiceRecord",
    "SSHEntry",
    "JupyterEntry",
    "EndpointResolver",
    "ConnectionDescriptor",
    "Connection",
    "CommandResult",
    "PathSpec",
    "CopyPlan",
    "Direction",
    "parse_copy_args",
    "TransferResult",
    "resolve",
    "connect",
    "copy",
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
