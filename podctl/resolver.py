"""
Endpoint resolution - service identifier to one-time SSH connection parameters.

Resolution is a two-call sequence against the control plane:

    DescribeServices(service_id)          -> zone code of the service
    DescribeServiceSSH(zone, service_id)  -> "<user>@<host>:<port>" + password

The result is a ConnectionDescriptor good for exactly one connection attempt.
Descriptors are never cached; every session or transfer resolves afresh.
"""

import logging
from dataclasses import dataclass, field

from podctl.controlplane import ControlPlane
from podctl.errors import CredentialIssuanceFailed, ServiceNotFound

logger = logging.getLogger(__name__)

# Control-plane convention: every pod accepts this login, whatever the issued URL says.
REMOTE_USER = "pod"
DEFAULT_SSH_PORT = 22


@dataclass(frozen=True)
class ConnectionDescriptor:
    """Single-use SSH connection parameters (password excluded from repr)."""

    host: str
    port: int
    password: str = field(repr=False)
    user: str = REMOTE_USER

    @property
    def authority(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


def parse_connection_url(url: str) -> tuple[str, int]:
    """Extract (host, port) from ``<user>@<host>:<port>``.

    The user segment is discarded. A bracketed IPv6 host (``[::1]:22``) is
    accepted; a missing port means 22.

    Raises:
        CredentialIssuanceFailed: If the authority has no host or a bad port
    """
    authority = url.strip().rpartition("@")[2]
    if authority.startswith("["):
        host, sep, rest = authority[1:].partition("]")
        if not sep:
            raise CredentialIssuanceFailed(f"Malformed connection URL {url!r}")
        port_str = rest[1:] if rest.startswith(":") else rest
    elif authority.count(":") == 1:
        host, _, port_str = authority.partition(":")
    else:
        host, port_str = authority, ""

    if not host:
        raise CredentialIssuanceFailed(f"Connection URL {url!r} has no host")
    if not port_str:
        return host, DEFAULT_SSH_PORT
    try:
        port = int(port_str)
    except ValueError:
        raise CredentialIssuanceFailed(f"Connection URL {url!r} has invalid port {port_str!r}")
    if port < 1 or port > 65535:
        raise CredentialIssuanceFailed(f"Connection URL {url!r} port must be 1-65535, got {port}")
    return host, port


class EndpointResolver:
    """Resolve service identifiers through a ControlPlane.

    Args:
        control_plane: Collaborator answering DescribeServices/DescribeServiceSSH.
    """

    def __init__(self, control_plane: ControlPlane):
        self._control_plane = control_plane

    def _zone_of(self, service_id: str) -> str:
        if not service_id:
            raise ValueError("service_id must be a non-empty string")
        rows = self._control_plane.describe_services(service_id, page_size=1, page_num=1)
        if not rows:
            raise ServiceNotFound(service_id)
        record = rows[0]
        logger.debug(
            "Service %s is in zone %s (status=%s, model=%s, image=%s)",
            service_id,
            record.zone_code,
            record.status or "-",
            record.service_model or "-",
            record.image_id or "-",
        )
        return record.zone_code

    def resolve(self, service_id: str) -> ConnectionDescriptor:
        """Resolve a service identifier into fresh SSH credentials.

        Raises:
            ValueError: If service_id is empty
            LookupFailed: If the service lookup fails
            ServiceNotFound: If no service matches the identifier
            CredentialIssuanceFailed: If credential issuance fails or returns nothing usable
        """
        zone_code = self._zone_of(service_id)
        entries = self._control_plane.describe_service_ssh(zone_code, service_id)
        if not entries:
            raise CredentialIssuanceFailed(f"No SSH credentials issued for service {service_id!r}")

        entry = entries[0]
        host, port = parse_connection_url(entry.url)
        descriptor = ConnectionDescriptor(host=host, port=port, password=entry.password)
        logger.info("Resolved %s (zone %s) -> %s", service_id, zone_code, descriptor.authority)
        return descriptor

    def resolve_jupyter(self, service_id: str) -> str:
        """Resolve the first Jupyter URL published for a service.

        Raises:
            ValueError: If service_id is empty
            LookupFailed: If the service lookup fails
            ServiceNotFound: If no service matches the identifier
            CredentialIssuanceFailed: If no Jupyter URL is published
        """
        zone_code = self._zone_of(service_id)
        for entry in self._control_plane.describe_service_jupyter(zone_code, service_id):
            if entry.urls:
                return entry.urls[0]
        raise CredentialIssuanceFailed(f"No Jupyter URL published for service {service_id!r}")


__all__ = [
    "ConnectionDescriptor",
    "EndpointResolver",
    "parse_connection_url",
    "REMOTE_USER",
    "DEFAULT_SSH_PORT",
]
