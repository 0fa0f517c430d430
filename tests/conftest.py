"""
Shared pytest fixtures for podctl unit tests.

FakePod is an in-memory stand-in for a pod reachable over SSH: its channels
speak the scp sink/source protocol and answer the handful of one-shot
commands the transfer driver runs (test -d, mv -f, rm -f).
"""

import shlex
import threading
from unittest.mock import MagicMock

import paramiko
import pytest

from podctl.config import Settings
from podctl.resolver import ConnectionDescriptor
from podctl.ssh import Connection
from podctl.testing import FakeControlPlane


# ---------------------------------------------------------------------------
# Settings / descriptors / control plane
# ---------------------------------------------------------------------------


@pytest.fixture
def settings():
    return Settings(endpoint="https://api.example.com:443", access_key="ak", secret_key="sk")


@pytest.fixture
def descriptor():
    return ConnectionDescriptor(host="10.0.0.5", port=22, password="p@ss")


@pytest.fixture
def fake_cp():
    fake = FakeControlPlane()
    fake.add_service("svc-123", zone_code="zone-a")
    fake.set_ssh("svc-123", url="pod@10.0.0.5:22", password="p@ss")
    return fake


# ---------------------------------------------------------------------------
# paramiko doubles
# ---------------------------------------------------------------------------


_RealTransport = paramiko.Transport
_RealChannel = paramiko.Channel


def make_host_key(name="ssh-ed25519", blob=b"host-key-blob"):
    key = MagicMock()
    key.get_name.return_value = name
    key.asbytes.return_value = blob
    return key


def make_mock_transport(active=True):
    """Create a mock paramiko.Transport that completes handshake and auth."""
    t = MagicMock(spec=_RealTransport)
    t.is_active.return_value = active
    t.is_authenticated.return_value = True
    t.get_remote_server_key.return_value = make_host_key()
    t.open_session.return_value = MagicMock(spec=_RealChannel)
    return t


@pytest.fixture
def mock_transport():
    return make_mock_transport()


# ---------------------------------------------------------------------------
# FakePod: scp-speaking channels over an in-memory filesystem
# ---------------------------------------------------------------------------


class FakePodChannel:
    """Minimal paramiko.Channel look-alike driven by FakePod."""

    def __init__(self, pod):
        self._pod = pod
        self._out = bytearray()
        self._in = bytearray()
        self._handler = None
        self._exit_status = None
        self.status_event = threading.Event()
        self.command = None
        self.closed = False

    # -- helpers used by handlers --

    def emit(self, data: bytes) -> None:
        self._out += data

    def exit(self, status: int) -> None:
        self._exit_status = status
        self.status_event.set()

    def take_input(self, n=None) -> bytes:
        n = len(self._in) if n is None else n
        data = bytes(self._in[:n])
        del self._in[:n]
        return data

    @property
    def pending_input(self) -> bytearray:
        return self._in

    # -- Channel API --

    def exec_command(self, command: str) -> None:
        self.command = command
        self._pod.commands.append(command)
        self._handler = self._pod.handler_for(command, self)

    def sendall(self, data: bytes) -> None:
        if self._pod.fail_send:
            raise OSError("Broken pipe")
        self._in += data
        if self._handler is not None:
            self._handler.feed()

    send = sendall

    def recv(self, n: int) -> bytes:
        data = bytes(self._out[:n])
        del self._out[:n]
        return data

    def recv_ready(self) -> bool:
        return bool(self._out)

    def recv_stderr_ready(self) -> bool:
        return False

    def recv_stderr(self, n: int) -> bytes:
        return b""

    def exit_status_ready(self) -> bool:
        return self._exit_status is not None

    def recv_exit_status(self) -> int:
        return -1 if self._exit_status is None else self._exit_status

    def shutdown_write(self) -> None:
        if self._handler is not None:
            self._handler.eof()

    def close(self) -> None:
        self.closed = True


class _SinkHandler:
    """Remote ``scp -t PATH``: receives one file."""

    def __init__(self, pod, chan, path):
        self.pod, self.chan, self.path = pod, chan, path
        self.state = "header"
        self.size = 0
        self.mode = None
        self.data = bytearray()
        if pod.reject_upload:
            chan.emit(b"\x02scp: " + path.encode() + b": Permission denied\n")
            chan.exit(1)
            self.state = "dead"
        else:
            chan.emit(b"\x00")

    def feed(self):
        buf = self.chan.pending_input
        while buf:
            if self.state == "header":
                idx = buf.find(b"\n")
                if idx < 0:
                    return
                line = self.chan.take_input(idx + 1)[:-1].decode()
                mode, size, _name = line[1:].split(" ", 2)
                self.mode, self.size = mode, int(size)
                self.state = "data"
                self.chan.emit(b"\x00")
            elif self.state == "data":
                need = self.size - len(self.data)
                self.data += self.chan.take_input(need)
                if len(self.data) == self.size:
                    self.state = "trailer"
            elif self.state == "trailer":
                if self.chan.take_input(1) != b"\x00":
                    self.chan.emit(b"\x02scp: protocol error\n")
                    self.chan.exit(1)
                    self.state = "dead"
                    return
                self.pod.files[self.path] = bytes(self.data)
                self.pod.modes[self.path] = self.mode
                self.chan.emit(b"\x00")
                self.state = "done"
            else:
                self.chan.take_input()

    def eof(self):
        if self.chan.exit_status_ready():
            return
        self.chan.exit(0 if self.state == "done" else 1)


class _SourceHandler:
    """Remote ``scp -f PATH``: sends one file."""

    def __init__(self, pod, chan, path):
        self.pod, self.chan, self.path = pod, chan, path
        self.acks = 0

    def feed(self):
        while self.chan.take_input(1) == b"\x00":
            self.acks += 1
            if self.acks == 1:
                if self.path not in self.pod.files:
                    self.chan.emit(b"\x01scp: " + self.path.encode() + b": No such file or directory\n")
                    self.chan.exit(1)
                    return
                data = self.pod.files[self.path]
                name = self.path.rsplit("/", 1)[-1]
                mode = self.pod.modes.get(self.path) or "0644"
                self.chan.emit(f"C{mode} {len(data)} {name}\n".encode())
            elif self.acks == 2:
                self.chan.emit(self.pod.files[self.path] + b"\x00")
            elif self.acks == 3:
                self.chan.exit(0)

    def eof(self):
        if not self.chan.exit_status_ready():
            self.chan.exit(0)


class FakePod:
    """In-memory pod filesystem answering scp and a few shell commands."""

    def __init__(self):
        self.files: dict[str, bytes] = {}
        self.modes: dict[str, str] = {}
        self.dirs: set[str] = {"/", "/data"}
        self.commands: list[str] = []
        self.reject_upload = False
        self.fail_send = False
        self.fail_mv = False

    def handler_for(self, command, chan):
        argv = shlex.split(command)
        if argv[:2] == ["scp", "-t"]:
            return _SinkHandler(self, chan, argv[2])
        if argv[:2] == ["scp", "-f"]:
            return _SourceHandler(self, chan, argv[2])
        if argv[:2] == ["test", "-d"]:
            chan.exit(0 if argv[2].rstrip("/") in self.dirs or argv[2] == "/" else 1)
        elif argv[:2] == ["mv", "-f"]:
            src, dst = argv[2], argv[3]
            if self.fail_mv or src not in self.files:
                chan.emit(b"")
                chan.exit(1)
            else:
                self.files[dst] = self.files.pop(src)
                self.modes[dst] = self.modes.pop(src, None)
                chan.exit(0)
        elif argv[:2] == ["rm", "-f"]:
            self.files.pop(argv[2], None)
            chan.exit(0)
        else:
            chan.exit(127)
        return None

    def open_session(self):
        return FakePodChannel(self)


class FakePodTransport:
    """Transport double whose sessions land on a FakePod."""

    def __init__(self, pod):
        self.pod = pod
        self.close_calls = 0

    def is_active(self):
        return self.close_calls == 0

    def open_session(self):
        return self.pod.open_session()

    def close(self):
        self.close_calls += 1


@pytest.fixture
def pod():
    return FakePod()


@pytest.fixture
def pod_connection(pod, descriptor):
    """A real Connection whose transport is backed by the FakePod."""
    return Connection(FakePodTransport(pod), descriptor)
