"""
Single-file secure copy over an authenticated Connection.

Implements the sending and receiving halves of the SCP protocol by running
``scp -t`` / ``scp -f`` on the pod over an exec channel:

    upload:    -> C0655 <size> <name>\\n   <- \\0   -> <data> \\0   <- \\0
    download:  -> \\0   <- C<mode> <size> <name>\\n   -> \\0   <- <data> \\0   -> \\0

Responses are a single byte: ``\\0`` ok, ``\\1`` warning, ``\\2`` fatal error;
the error text follows up to a newline.

Uploads land in a temporary remote file that is renamed over the target only
after the whole file was acknowledged. Downloads go to a temporary local file
that replaces the destination only on success.
"""

import logging
import os
import posixpath
import shlex
import socket
import tempfile
import uuid
from dataclasses import dataclass
from typing import BinaryIO

import paramiko

from podctl.config import Settings
from podctl.errors import LocalFileOpenFailed, SessionSetupFailed, TransferFailed
from podctl.pathspec import CopyPlan, Direction
from podctl.resolver import ConnectionDescriptor
from podctl.ssh import Connection

logger = logging.getLogger(__name__)

# Remote files are always created with this mode, whatever the local permissions.
REMOTE_FILE_MODE = "0655"

_CHUNK_SIZE = 32768
_MAX_LINE = 64 * 1024


@dataclass(frozen=True)
class TransferResult:
    """Outcome of a completed copy."""

    direction: Direction
    local_path: str
    remote_path: str
    size: int


# ---------------------------------------------------------------------------
# SCP protocol primitives
# ---------------------------------------------------------------------------


def _recv_exact(chan: paramiko.Channel, n: int) -> bytes:
    chunks = []
    remaining = n
    while remaining > 0:
        data = chan.recv(min(remaining, _CHUNK_SIZE))
        if not data:
            raise TransferFailed(f"Connection closed with {remaining} of {n} bytes outstanding")
        chunks.append(data)
        remaining -= len(data)
    return b"".join(chunks)


def _read_line(chan: paramiko.Channel) -> bytes:
    buf = bytearray()
    while True:
        b = chan.recv(1)
        if not b:
            raise TransferFailed("Connection closed in the middle of an SCP message")
        if b == b"\n":
            return bytes(buf)
        buf += b
        if len(buf) > _MAX_LINE:
            raise TransferFailed("SCP message line too long")


def _expect_ack(chan: paramiko.Channel) -> None:
    """Consume one response byte; raise on anything but ``\\0``."""
    code = chan.recv(1)
    if code == b"\x00":
        return
    if not code:
        raise TransferFailed("Connection closed while waiting for SCP acknowledgement")
    if code in (b"\x01", b"\x02"):
        message = _read_line(chan).decode(errors="replace")
        raise TransferFailed(f"Remote scp: {message}")
    raise TransferFailed(f"Unexpected SCP response {code + _read_line(chan)!r}")


def _parse_file_header(line: bytes) -> tuple[int, int, str]:
    """Parse ``C<mode> <size> <name>`` into (mode, size, name); mode is an int."""
    text = line.decode(errors="replace")
    parts = text[1:].split(" ", 2)
    if not text.startswith("C") or len(parts) != 3:
        raise TransferFailed(f"Unexpected SCP header {text!r}")
    mode_str, size_str, name = parts
    try:
        mode = int(mode_str, 8)
    except ValueError:
        raise TransferFailed(f"Invalid mode in SCP header {text!r}")
    try:
        size = int(size_str)
    except ValueError:
        raise TransferFailed(f"Invalid size in SCP header {text!r}")
    if size < 0:
        raise TransferFailed(f"Invalid size in SCP header {text!r}")
    return mode, size, name


def _finish(chan: paramiko.Channel, command: str) -> None:
    chan.shutdown_write()
    status = chan.recv_exit_status()
    if status != 0:
        raise TransferFailed(f"{command!r} exited with status {status}")


def scp_send(conn: Connection, src: BinaryIO, size: int, remote_path: str, mode: str = REMOTE_FILE_MODE) -> None:
    """Stream ``size`` bytes from ``src`` into ``remote_path`` via ``scp -t``.

    Raises:
        SessionSetupFailed: If the channel cannot be opened
        TransferFailed: On any protocol or I/O error
    """
    command = f"scp -t {shlex.quote(remote_path)}"
    chan = conn.open_session()
    try:
        chan.exec_command(command)
        _expect_ack(chan)

        name = posixpath.basename(remote_path) or "file"
        chan.sendall(f"C{mode} {size} {name}\n".encode())
        _expect_ack(chan)

        sent = 0
        while sent < size:
            chunk = src.read(min(_CHUNK_SIZE, size - sent))
            if not chunk:
                raise TransferFailed(f"Local file shrank during copy ({sent} of {size} bytes sent)")
            chan.sendall(chunk)
            sent += len(chunk)
        chan.sendall(b"\x00")
        _expect_ack(chan)

        _finish(chan, command)
    except (socket.error, paramiko.SSHException, OSError, EOFError) as e:
        raise TransferFailed(f"Upload to {remote_path} failed: {e}") from e
    finally:
        chan.close()


def scp_receive(conn: Connection, remote_path: str, dst: BinaryIO) -> tuple[int, int]:
    """Stream ``remote_path`` into ``dst`` via ``scp -f``.

    Returns:
        (bytes written, permission bits from the remote file header)

    Raises:
        SessionSetupFailed: If the channel cannot be opened
        TransferFailed: On any protocol or I/O error
    """
    command = f"scp -f {shlex.quote(remote_path)}"
    chan = conn.open_session()
    try:
        chan.exec_command(command)
        chan.sendall(b"\x00")

        line = _read_line(chan)
        if line[:1] in (b"\x01", b"\x02"):
            raise TransferFailed(f"Remote scp: {line[1:].decode(errors='replace')}")
        mode, size, _ = _parse_file_header(line)
        chan.sendall(b"\x00")

        remaining = size
        while remaining > 0:
            data = chan.recv(min(_CHUNK_SIZE, remaining))
            if not data:
                raise TransferFailed(f"Connection closed with {remaining} of {size} bytes outstanding")
            dst.write(data)
            remaining -= len(data)
        _expect_ack(chan)
        chan.sendall(b"\x00")

        _finish(chan, command)
        return size, mode
    except (socket.error, paramiko.SSHException, OSError, EOFError) as e:
        raise TransferFailed(f"Download of {remote_path} failed: {e}") from e
    finally:
        chan.close()


# ---------------------------------------------------------------------------
# Transfer driver
# ---------------------------------------------------------------------------


def _remote_temp_path(remote_path: str) -> str:
    head, tail = posixpath.split(remote_path)
    return posixpath.join(head, f".{tail or 'file'}.podctl-{uuid.uuid4().hex[:8]}.part")


def _remote_command(conn: Connection, command: str, timeout: float) -> None:
    try:
        result = conn.exec(command, timeout=timeout)
    except (SessionSetupFailed, TimeoutError, socket.error, paramiko.SSHException, OSError) as e:
        raise TransferFailed(f"{command!r} failed: {e}") from e
    if not result.ok:
        raise TransferFailed(f"{command!r} failed (exit={result.exit_code}): {result.stderr.strip()}")


def _remote_is_dir(conn: Connection, remote_path: str, timeout: float) -> bool:
    try:
        return conn.exec(f"test -d {shlex.quote(remote_path)}", timeout=timeout).ok
    except (TimeoutError, socket.error, paramiko.SSHException, OSError) as e:
        raise TransferFailed(f"Cannot inspect remote path {remote_path}: {e}") from e


def upload(conn: Connection, local_path: str, remote_path: str, *, timeout: float = 30.0) -> int:
    """Copy a local file to the pod. Returns the number of bytes sent.

    Raises:
        LocalFileOpenFailed: If the local file cannot be opened for reading
        TransferFailed: On any remote or protocol error (target left untouched)
    """
    try:
        src = open(local_path, "rb")
    except OSError as e:
        raise LocalFileOpenFailed(local_path, e.strerror or str(e)) from e

    with src:
        try:
            size = os.fstat(src.fileno()).st_size
        except OSError as e:
            raise LocalFileOpenFailed(local_path, e.strerror or str(e)) from e

        target = remote_path
        if _remote_is_dir(conn, remote_path, timeout):
            target = posixpath.join(remote_path, os.path.basename(local_path))

        tmp_path = _remote_temp_path(target)
        try:
            scp_send(conn, src, size, tmp_path)
            _remote_command(conn, f"mv -f {shlex.quote(tmp_path)} {shlex.quote(target)}", timeout)
        except Exception:
            try:
                conn.exec(f"rm -f {shlex.quote(tmp_path)}", timeout=5.0)
            except Exception:
                logger.debug("Could not remove temporary remote file %s", tmp_path, exc_info=True)
            raise

    logger.info("Uploaded %s -> %s (%d bytes)", local_path, target, size)
    return size


def download(conn: Connection, remote_path: str, local_path: str) -> int:
    """Copy a file from the pod to a local path. Returns the number of bytes received.

    A directory destination receives the remote file's basename.
    The file gets the remote mode masked by the local umask, as scp does.

    Raises:
        LocalFileOpenFailed: If the local destination cannot be created
        TransferFailed: On any remote or protocol error (destination left untouched)
    """
    target = local_path
    if os.path.isdir(target):
        target = os.path.join(target, posixpath.basename(remote_path.rstrip("/")) or "file")

    directory = os.path.dirname(os.path.abspath(target))
    try:
        fd, tmp_path = tempfile.mkstemp(prefix=".podctl-", suffix=".part", dir=directory)
    except OSError as e:
        raise LocalFileOpenFailed(target, e.strerror or str(e)) from e

    try:
        with os.fdopen(fd, "wb") as dst:
            size, mode = scp_receive(conn, remote_path, dst)
        os.chmod(tmp_path, (mode & 0o7777) & ~_current_umask())
        os.replace(tmp_path, target)
    except OSError as e:
        _unlink_quietly(tmp_path)
        raise TransferFailed(f"Writing {target} failed: {e}") from e
    except BaseException:
        _unlink_quietly(tmp_path)
        raise

    logger.info("Downloaded %s -> %s (%d bytes)", remote_path, target, size)
    return size


def _current_umask() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return umask


def _unlink_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except OSError:
        pass


def copy(plan: CopyPlan, descriptor: ConnectionDescriptor, settings: Settings) -> TransferResult:
    """Dial the resolved pod and run one copy in the planned direction.

    The local file handle is released before the transport on every path.

    Raises:
        DialFailed, SessionSetupFailed, LocalFileOpenFailed, TransferFailed
    """
    with Connection.open(descriptor, settings) as conn:
        if plan.direction is Direction.UPLOAD:
            size = upload(conn, plan.local_path, plan.remote_path, timeout=settings.timeout)
        else:
            size = download(conn, plan.remote_path, plan.local_path)
    return TransferResult(
        direction=plan.direction,
        local_path=plan.local_path,
        remote_path=plan.remote_path,
        size=size,
    )


__all__ = [
    "copy",
    "upload",
    "download",
    "scp_send",
    "scp_receive",
    "TransferResult",
    "REMOTE_FILE_MODE",
]
