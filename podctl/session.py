"""
Interactive session driver - the local process becomes a dumb terminal for a
remote shell.

Sequence (each step its own failure point, never skipped or reordered):

    dial -> open session -> request pty -> start shell -> bridge + wait

The remote pty is requested with echo disabled; the local terminal is left
in its normal (cooked) mode and does the echoing and line editing itself.
"""

import logging
import os
import select
import socket
import struct
import sys
from typing import BinaryIO, Optional

import paramiko
from paramiko.common import cMSG_CHANNEL_REQUEST
from paramiko.message import Message

from podctl.config import Settings
from podctl.errors import PtyRequestFailed, RemoteSessionError, ShellStartFailed
from podctl.resolver import ConnectionDescriptor
from podctl.ssh import Connection

logger = logging.getLogger(__name__)

TERM = "linux"
PTY_ROWS = 32
PTY_COLS = 160

# RFC 4254 section 8 opcodes
TTY_OP_END = 0
ECHO = 53
TTY_OP_ISPEED = 128
TTY_OP_OSPEED = 129

TERMINAL_MODES = {
    ECHO: 0,
    TTY_OP_ISPEED: 14400,
    TTY_OP_OSPEED: 14400,
}

_BUF_SIZE = 32768
_POLL_INTERVAL = 0.1


def encode_terminal_modes(modes: dict[int, int]) -> bytes:
    """Encode terminal modes as opcode/uint32 pairs terminated by TTY_OP_END."""
    out = b"".join(struct.pack(">BI", opcode, value) for opcode, value in modes.items())
    return out + bytes([TTY_OP_END])


def request_pty(
    chan: paramiko.Channel,
    term: str = TERM,
    rows: int = PTY_ROWS,
    cols: int = PTY_COLS,
    modes: Optional[dict[int, int]] = None,
) -> None:
    """Send a pty-req carrying explicit terminal modes and wait for the reply.

    Same wire message as Channel.get_pty(), which always sends an empty
    mode list.

    Raises:
        PtyRequestFailed: If the server refuses or the channel drops
    """
    encoded = encode_terminal_modes(TERMINAL_MODES if modes is None else modes)
    m = Message()
    m.add_byte(cMSG_CHANNEL_REQUEST)
    m.add_int(chan.remote_chanid)
    m.add_string("pty-req")
    m.add_boolean(True)
    m.add_string(term)
    m.add_int(cols)
    m.add_int(rows)
    m.add_int(0)
    m.add_int(0)
    m.add_string(encoded)
    try:
        chan._event_pending()
        chan.transport._send_user_message(m)
        chan._wait_for_event()
    except (paramiko.SSHException, OSError, EOFError) as e:
        raise PtyRequestFailed(f"Request pty failed: {e}") from e
    logger.debug("pty granted: term=%s rows=%d cols=%d", term, rows, cols)


def _bridge(chan: paramiko.Channel, stdin: BinaryIO, stdout: BinaryIO, stderr: BinaryIO) -> None:
    """Pump bytes between the channel and local streams until the remote side finishes.

    Local EOF on stdin half-closes the channel; the loop keeps draining
    remote output until the shell exits or the channel closes.
    """
    stdin_fd = stdin.fileno()
    stdin_open = True

    while True:
        watch: list = [chan, stdin_fd] if stdin_open else [chan]
        r, _, _ = select.select(watch, [], [], _POLL_INTERVAL)

        while chan.recv_stderr_ready():
            data = chan.recv_stderr(_BUF_SIZE)
            if not data:
                break
            stderr.write(data)
            stderr.flush()

        # the channel wakes select for stderr too; recv() only when it cannot block
        if chan.recv_ready() or (chan in r and chan.eof_received):
            data = chan.recv(_BUF_SIZE)
            if not data:
                break
            stdout.write(data)
            stdout.flush()

        if stdin_open and stdin_fd in r:
            data = os.read(stdin_fd, _BUF_SIZE)
            if data:
                chan.sendall(data)
            else:
                stdin_open = False
                chan.shutdown_write()

        if chan.exit_status_ready() and not chan.recv_ready() and not chan.recv_stderr_ready():
            break


def _wait_exit_status(chan: paramiko.Channel, timeout: float) -> int:
    if not chan.exit_status_ready():
        chan.status_event.wait(timeout)
    if not chan.exit_status_ready():
        raise RemoteSessionError("Remote shell closed without reporting an exit status")
    status = chan.recv_exit_status()
    if status < 0:
        raise RemoteSessionError("Remote shell closed without reporting an exit status")
    return status


def run_shell(
    conn: Connection,
    stdin: BinaryIO,
    stdout: BinaryIO,
    stderr: BinaryIO,
    *,
    exit_timeout: float = 10.0,
) -> int:
    """Open a pty shell on an established connection and bridge it.

    Returns the remote shell's exit status. The channel is closed on every
    path; the connection is left to the caller.

    Raises:
        SessionSetupFailed, PtyRequestFailed, ShellStartFailed, RemoteSessionError
    """
    chan = conn.open_session()
    try:
        request_pty(chan)

        try:
            chan.invoke_shell()
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise ShellStartFailed(f"Start shell failed: {e}") from e
        logger.debug("Remote shell started on %s", conn.descriptor.authority)

        try:
            _bridge(chan, stdin, stdout, stderr)
        except (socket.error, paramiko.SSHException, OSError) as e:
            raise RemoteSessionError(f"Session I/O failed: {e}") from e

        status = _wait_exit_status(chan, exit_timeout)
        logger.info("Remote shell on %s exited with status %d", conn.descriptor.authority, status)
        return status
    finally:
        chan.close()


def open_interactive(
    descriptor: ConnectionDescriptor,
    settings: Settings,
    stdin: Optional[BinaryIO] = None,
    stdout: Optional[BinaryIO] = None,
    stderr: Optional[BinaryIO] = None,
) -> int:
    """Run an interactive shell on a resolved pod, bridged to the local process.

    Args:
        descriptor: Fresh one-time credentials from EndpointResolver.resolve()
        settings: Dial timeout and host-key policy
        stdin/stdout/stderr: Binary streams (default: the process's own)

    Returns:
        Remote shell exit status

    Raises:
        DialFailed, SessionSetupFailed, PtyRequestFailed, ShellStartFailed,
        RemoteSessionError
    """
    stdin = stdin if stdin is not None else sys.stdin.buffer
    stdout = stdout if stdout is not None else sys.stdout.buffer
    stderr = stderr if stderr is not None else sys.stderr.buffer

    with Connection.open(descriptor, settings) as conn:
        return run_shell(conn, stdin, stdout, stderr, exit_timeout=settings.connect_timeout)


__all__ = [
    "open_interactive",
    "run_shell",
    "request_pty",
    "encode_terminal_modes",
    "TERMINAL_MODES",
    "TERM",
    "PTY_ROWS",
    "PTY_COLS",
]
