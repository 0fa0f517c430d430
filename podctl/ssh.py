"""
SSH transport shared by the session and transfer drivers.

One Connection = one dial to one resolved pod: TCP connect, SSH handshake,
host-key policy check and password authentication as the fixed ``pod`` user.
Connections are single-use and never pooled. close() is idempotent, so the
transport is closed exactly once whatever path the caller takes.

Example:
    from podctl.ssh import Connection

    with Connection.open(descriptor, settings) as conn:
        result = conn.exec("hostname")
        print(result.stdout)
"""

from __future__ import annotations

import base64
import hashlib
import logging
import socket
import time
from dataclasses import dataclass
from typing import Optional

import paramiko

from podctl.config import Settings
from podctl.errors import DialFailed, SessionSetupFailed
from podctl.resolver import ConnectionDescriptor

logger = logging.getLogger(__name__)

_RECV_SIZE = 65536


# ---------------------------------------------------------------------------
# CommandResult
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CommandResult:
    """Result of a one-shot remote command."""

    command: str
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


# ---------------------------------------------------------------------------
# Host keys
# ---------------------------------------------------------------------------


def fingerprint(key: paramiko.PKey) -> str:
    """OpenSSH-style SHA256 fingerprint of a host key."""
    digest = hashlib.sha256(key.asbytes()).digest()
    return "SHA256:" + base64.b64encode(digest).decode().rstrip("=")


def _known_hosts_name(host: str, port: int) -> str:
    if port == 22:
        return host
    return f"[{host}]:{port}"


def verify_host_key(transport: paramiko.Transport, descriptor: ConnectionDescriptor, settings: Settings) -> None:
    """Apply the configured host-key policy to a started transport.

    "accept" logs the key and accepts it. "known_hosts" requires a matching
    entry in settings.known_hosts.

    Raises:
        DialFailed: If the server key is missing or does not match
    """
    key = transport.get_remote_server_key()
    fp = fingerprint(key)

    if settings.host_key_policy == "accept":
        logger.warning(
            "Host key for %s not verified (host_key_policy=accept): %s %s",
            descriptor.authority,
            key.get_name(),
            fp,
        )
        return

    name = _known_hosts_name(descriptor.host, descriptor.port)
    try:
        host_keys = paramiko.HostKeys(settings.known_hosts_path)
    except OSError as e:
        raise DialFailed(
            f"Cannot read known_hosts file {settings.known_hosts_path}: {e}",
            host=descriptor.host,
            port=descriptor.port,
        ) from e

    known = host_keys.lookup(name)
    if known is None or key.get_name() not in known:
        raise DialFailed(f"Unknown host key {key.get_name()} {fp}", host=descriptor.host, port=descriptor.port)
    if known[key.get_name()] != key:
        raise DialFailed(
            f"Host key mismatch for {name}: server sent {fp}",
            host=descriptor.host,
            port=descriptor.port,
        )
    logger.debug("Host key for %s verified against %s", name, settings.known_hosts_path)


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


class Connection:
    """An authenticated SSH transport to one resolved pod.

    Use Connection.open() to dial; use as a context manager or call close().
    """

    def __init__(self, transport: paramiko.Transport, descriptor: ConnectionDescriptor):
        self._transport = transport
        self._descriptor = descriptor
        self._closed = False

    @classmethod
    def open(cls, descriptor: ConnectionDescriptor, settings: Settings) -> Connection:
        """Dial, handshake, check the host key and authenticate as ``pod``.

        Raises:
            DialFailed: On any connect, handshake, host-key or auth failure.
                Nothing is left open when this is raised.
        """
        host, port = descriptor.host, descriptor.port
        transport: Optional[paramiko.Transport] = None
        try:
            sock = socket.create_connection((host, port), timeout=settings.connect_timeout)
            try:
                transport = paramiko.Transport(sock)
            except Exception:
                sock.close()
                raise
            transport.banner_timeout = settings.connect_timeout
            transport.auth_timeout = settings.connect_timeout
            transport.start_client(timeout=settings.connect_timeout)
            verify_host_key(transport, descriptor, settings)
            transport.auth_password(descriptor.user, descriptor.password)
            if not transport.is_authenticated():
                raise DialFailed("Authentication failed: password rejected", host=host, port=port)
        except DialFailed:
            _close_quietly(transport)
            raise
        except paramiko.AuthenticationException as e:
            _close_quietly(transport)
            raise DialFailed(f"Authentication failed: {e}", host=host, port=port) from e
        except (socket.error, paramiko.SSHException, OSError, EOFError) as e:
            _close_quietly(transport)
            raise DialFailed(f"Connection failed: {e}", host=host, port=port) from e

        transport.set_keepalive(30)
        logger.info("SSH connected to %s as %s", descriptor.authority, descriptor.user)
        return cls(transport, descriptor)

    @property
    def transport(self) -> paramiko.Transport:
        return self._transport

    @property
    def descriptor(self) -> ConnectionDescriptor:
        return self._descriptor

    @property
    def closed(self) -> bool:
        return self._closed

    def open_session(self) -> paramiko.Channel:
        """Open a session channel.

        Raises:
            SessionSetupFailed: If the transport is gone or the server refuses
        """
        if self._closed or not self._transport.is_active():
            raise SessionSetupFailed("Transport is no longer active")
        try:
            return self._transport.open_session()
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise SessionSetupFailed(f"Cannot open session channel: {e}") from e

    def exec(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        """Run a one-shot command on a fresh channel and collect its output.

        Raises:
            SessionSetupFailed: If the channel cannot be opened
            TimeoutError: If timeout is exceeded
        """
        chan = self.open_session()
        try:
            chan.exec_command(command)
            chan.shutdown_write()

            deadline = time.monotonic() + timeout if timeout is not None else None
            stdout_chunks: list[bytes] = []
            stderr_chunks: list[bytes] = []

            while True:
                if deadline is not None and time.monotonic() >= deadline:
                    raise TimeoutError(f"Command timed out after {timeout}s: {command!r}")
                if chan.recv_ready():
                    data = chan.recv(_RECV_SIZE)
                    if data:
                        stdout_chunks.append(data)
                if chan.recv_stderr_ready():
                    data = chan.recv_stderr(_RECV_SIZE)
                    if data:
                        stderr_chunks.append(data)
                if chan.exit_status_ready() and not chan.recv_ready() and not chan.recv_stderr_ready():
                    break
                if not chan.recv_ready() and not chan.recv_stderr_ready() and not chan.exit_status_ready():
                    chan.status_event.wait(0.1)

            exit_code = chan.recv_exit_status()
            return CommandResult(
                command=command,
                exit_code=exit_code,
                stdout=b"".join(stdout_chunks).decode(errors="replace"),
                stderr=b"".join(stderr_chunks).decode(errors="replace"),
            )
        finally:
            chan.close()

    def close(self) -> None:
        """Close the transport (idempotent)."""
        if self._closed:
            return
        self._closed = True
        _close_quietly(self._transport)
        logger.info("SSH connection to %s closed", self._descriptor.authority)

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"Connection({self._descriptor.authority}, {state})"


def _close_quietly(transport: Optional[paramiko.Transport]) -> None:
    if transport is None:
        return
    try:
        transport.close()
    except Exception:
        logger.debug("Error closing SSH transport", exc_info=True)


__all__ = ["Connection", "CommandResult", "fingerprint", "verify_host_key"]
