"""
Settings - explicit configuration threaded through the control-plane client,
the endpoint resolver and the SSH drivers.

Settings are validated at construction (fail fast). Build them directly or
from environment variables:

    settings = Settings.from_env()
    settings = Settings(endpoint="https://api.example.com:443", access_key="...", secret_key="...")

Environment variables:
    PODCTL_ENDPOINT          control-plane URL, ``<protocol>://<host>:<port>``
    PODCTL_ACCESS_KEY        access key id
    PODCTL_SECRET_KEY        secret access key
    PODCTL_TIMEOUT           control-plane request timeout in seconds
    PODCTL_CONNECT_TIMEOUT   SSH dial/handshake timeout in seconds
    PODCTL_HOST_KEY_POLICY   "accept" or "known_hosts"
    PODCTL_KNOWN_HOSTS       known_hosts file for the "known_hosts" policy
"""

import os
import re
from dataclasses import dataclass, field
from typing import Optional

from podctl.errors import ConfigurationError

DEFAULT_TIMEOUT = 10.0
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_CONTEXT_PATH = "platform"
DEFAULT_KNOWN_HOSTS = "~/.ssh/known_hosts"

HOST_KEY_POLICIES = ("accept", "known_hosts")

_ENDPOINT_RE = re.compile(r"^(\w+)://([^/:]+):(\d+)/?$")


def _get_env_float(name: str, default: float) -> float:
    """Get environment variable as float."""
    val = os.environ.get(name)
    if val is None or val == "":
        return default
    try:
        return float(val)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be a number, got {val!r}")


@dataclass(frozen=True)
class Endpoint:
    """Parsed control-plane endpoint."""

    protocol: str
    host: str
    port: int
    context_path: str = DEFAULT_CONTEXT_PATH

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}/{self.context_path}"


def parse_endpoint(endpoint: str) -> Endpoint:
    """Parse ``<protocol>://<host>:<port>`` into an Endpoint.

    Raises:
        ConfigurationError: If the endpoint is empty or malformed
    """
    if not endpoint or not endpoint.strip():
        raise ConfigurationError("endpoint is empty")
    m = _ENDPOINT_RE.match(endpoint.strip())
    if m is None:
        raise ConfigurationError(f"endpoint must look like <protocol>://<host>:<port>, got {endpoint!r}")
    protocol, host, port_str = m.groups()
    if protocol not in ("http", "https"):
        raise ConfigurationError(f"endpoint protocol must be http or https, got {protocol!r}")
    port = int(port_str)
    if port < 1 or port > 65535:
        raise ConfigurationError(f"endpoint port must be 1-65535, got {port}")
    return Endpoint(protocol=protocol, host=host, port=port)


@dataclass(frozen=True)
class Settings:
    """Configuration for one podctl invocation.

    Args:
        endpoint: Control-plane URL (``https://api.example.com:443``)
        access_key: Access key id sent with every control-plane request
        secret_key: Secret access key (excluded from repr)
        timeout: Control-plane request timeout in seconds
        connect_timeout: TCP connect + SSH handshake timeout in seconds
        host_key_policy: "accept" (log and accept any key) or "known_hosts"
        known_hosts: known_hosts file used by the "known_hosts" policy
    """

    endpoint: str
    access_key: str = ""
    secret_key: str = field(default="", repr=False)
    timeout: float = DEFAULT_TIMEOUT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    host_key_policy: str = "accept"
    known_hosts: str = DEFAULT_KNOWN_HOSTS

    def __post_init__(self):
        # raises ConfigurationError on a bad endpoint
        parse_endpoint(self.endpoint)
        if self.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {self.timeout}")
        if self.connect_timeout <= 0:
            raise ConfigurationError(f"connect_timeout must be positive, got {self.connect_timeout}")
        if self.host_key_policy not in HOST_KEY_POLICIES:
            raise ConfigurationError(
                f"host_key_policy must be 'accept' or 'known_hosts', got {self.host_key_policy!r}"
            )

    @property
    def parsed_endpoint(self) -> Endpoint:
        return parse_endpoint(self.endpoint)

    @property
    def known_hosts_path(self) -> str:
        return os.path.expanduser(self.known_hosts)

    @classmethod
    def from_env(
        cls,
        *,
        endpoint: Optional[str] = None,
        timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        host_key_policy: Optional[str] = None,
    ) -> "Settings":
        """Create Settings from PODCTL_* environment variables.

        Keyword arguments that are not None override the environment.

        Raises:
            ConfigurationError: If PODCTL_ENDPOINT is unset or any value is invalid
        """
        effective_endpoint = endpoint if endpoint is not None else os.environ.get("PODCTL_ENDPOINT", "")
        if not effective_endpoint:
            raise ConfigurationError("No control-plane endpoint: set PODCTL_ENDPOINT or pass --endpoint")
        return cls(
            endpoint=effective_endpoint,
            access_key=os.environ.get("PODCTL_ACCESS_KEY", ""),
            secret_key=os.environ.get("PODCTL_SECRET_KEY", ""),
            timeout=timeout if timeout is not None else _get_env_float("PODCTL_TIMEOUT", DEFAULT_TIMEOUT),
            connect_timeout=(
                connect_timeout
                if connect_timeout is not None
                else _get_env_float("PODCTL_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT)
            ),
            host_key_policy=(
                host_key_policy
                if host_key_policy is not None
                else os.environ.get("PODCTL_HOST_KEY_POLICY", "accept")
            ),
            known_hosts=os.environ.get("PODCTL_KNOWN_HOSTS", DEFAULT_KNOWN_HOSTS),
        )


__all__ = ["Settings", "Endpoint", "parse_endpoint", "HOST_KEY_POLICIES"]
