"""Tests for podctl.session - pty request, shell start and the I/O bridge."""

import io
import os
import select
import socket
from unittest.mock import MagicMock, patch

import paramiko
import pytest
from paramiko.common import cMSG_CHANNEL_REQUEST

from podctl.errors import (
    DialFailed,
    PtyRequestFailed,
    RemoteSessionError,
    SessionSetupFailed,
    ShellStartFailed,
)
from podctl.session import (
    PTY_COLS,
    PTY_ROWS,
    TERM,
    TERMINAL_MODES,
    _bridge,
    encode_terminal_modes,
    open_interactive,
    request_pty,
    run_shell,
)
from podctl.ssh import Connection


# ---------------------------------------------------------------------------
# Terminal modes / pty-req
# ---------------------------------------------------------------------------


class TestTerminalModes:
    def test_echo_off_and_speeds(self):
        assert TERMINAL_MODES == {53: 0, 128: 14400, 129: 14400}

    def test_encoding(self):
        expected = (
            b"\x35\x00\x00\x00\x00"  # ECHO = 0
            b"\x80\x00\x00\x38\x40"  # TTY_OP_ISPEED = 14400
            b"\x81\x00\x00\x38\x40"  # TTY_OP_OSPEED = 14400
            b"\x00"
        )
        assert encode_terminal_modes(TERMINAL_MODES) == expected

    def test_empty(self):
        assert encode_terminal_modes({}) == b"\x00"

    def test_pty_geometry(self):
        assert (TERM, PTY_ROWS, PTY_COLS) == ("linux", 32, 160)


class TestRequestPty:
    def _chan(self):
        chan = MagicMock()
        chan.remote_chanid = 7
        return chan

    def test_wire_message(self):
        chan = self._chan()
        request_pty(chan)

        chan.transport._send_user_message.assert_called_once()
        m = chan.transport._send_user_message.call_args[0][0]
        m.rewind()
        assert m.get_byte() == cMSG_CHANNEL_REQUEST
        assert m.get_int() == 7
        assert m.get_text() == "pty-req"
        assert m.get_boolean() is True
        assert m.get_text() == "linux"
        assert m.get_int() == 160  # width in characters
        assert m.get_int() == 32  # height in rows
        assert m.get_int() == 0
        assert m.get_int() == 0
        assert m.get_binary() == encode_terminal_modes(TERMINAL_MODES)

    def test_waits_for_reply(self):
        chan = self._chan()
        request_pty(chan)
        names = [c[0] for c in chan.mock_calls]
        assert names.index("_event_pending") < names.index("transport._send_user_message")
        assert names.index("transport._send_user_message") < names.index("_wait_for_event")

    def test_refused(self):
        chan = self._chan()
        chan._wait_for_event.side_effect = paramiko.SSHException("Channel request failed")
        with pytest.raises(PtyRequestFailed, match="Request pty failed"):
            request_pty(chan)

    def test_channel_closed(self):
        chan = self._chan()
        chan._wait_for_event.side_effect = EOFError()
        with pytest.raises(PtyRequestFailed):
            request_pty(chan)


# ---------------------------------------------------------------------------
# run_shell sequencing
# ---------------------------------------------------------------------------


def _make_conn(order):
    chan = MagicMock()
    chan.exit_status_ready.return_value = True
    chan.recv_exit_status.return_value = 0
    chan.invoke_shell.side_effect = lambda: order.append("invoke_shell")

    conn = MagicMock()
    conn.descriptor.authority = "10.0.0.5:22"

    def _open_session():
        order.append("open_session")
        return chan

    conn.open_session.side_effect = _open_session
    return conn, chan


@patch("podctl.session._bridge")
@patch("podctl.session.request_pty")
class TestRunShell:
    def _run(self, conn):
        return run_shell(conn, io.BytesIO(), io.BytesIO(), io.BytesIO(), exit_timeout=0.01)

    def test_steps_in_order(self, mock_pty, mock_bridge):
        order = []
        conn, chan = _make_conn(order)
        mock_pty.side_effect = lambda c: order.append("request_pty")
        mock_bridge.side_effect = lambda *a: order.append("bridge")

        assert self._run(conn) == 0
        assert order == ["open_session", "request_pty", "invoke_shell", "bridge"]
        mock_pty.assert_called_once_with(chan)
        chan.close.assert_called_once()

    def test_exit_status_propagated(self, mock_pty, mock_bridge):
        conn, chan = _make_conn([])
        chan.recv_exit_status.return_value = 42
        assert self._run(conn) == 42

    def test_session_failure_stops(self, mock_pty, mock_bridge):
        conn, chan = _make_conn([])
        conn.open_session.side_effect = SessionSetupFailed("Transport is no longer active")

        with pytest.raises(SessionSetupFailed):
            self._run(conn)

        mock_pty.assert_not_called()
        chan.invoke_shell.assert_not_called()
        mock_bridge.assert_not_called()

    def test_pty_failure_stops(self, mock_pty, mock_bridge):
        conn, chan = _make_conn([])
        mock_pty.side_effect = PtyRequestFailed("Request pty failed: refused")

        with pytest.raises(PtyRequestFailed):
            self._run(conn)

        chan.invoke_shell.assert_not_called()
        mock_bridge.assert_not_called()
        chan.close.assert_called_once()

    def test_shell_failure_stops(self, mock_pty, mock_bridge):
        conn, chan = _make_conn([])
        chan.invoke_shell.side_effect = paramiko.SSHException("Channel request failed")

        with pytest.raises(ShellStartFailed, match="Start shell failed"):
            self._run(conn)

        mock_bridge.assert_not_called()
        chan.close.assert_called_once()

    def test_bridge_io_error(self, mock_pty, mock_bridge):
        conn, chan = _make_conn([])
        mock_bridge.side_effect = OSError("Socket is closed")

        with pytest.raises(RemoteSessionError, match="Session I/O failed"):
            self._run(conn)

        chan.close.assert_called_once()

    def test_no_exit_status(self, mock_pty, mock_bridge):
        conn, chan = _make_conn([])
        chan.exit_status_ready.return_value = False

        with pytest.raises(RemoteSessionError, match="without reporting"):
            self._run(conn)

        chan.status_event.wait.assert_called_once_with(0.01)

    def test_negative_exit_status(self, mock_pty, mock_bridge):
        conn, chan = _make_conn([])
        chan.recv_exit_status.return_value = -1

        with pytest.raises(RemoteSessionError):
            self._run(conn)


# ---------------------------------------------------------------------------
# open_interactive
# ---------------------------------------------------------------------------


class TestOpenInteractive:
    @patch("podctl.session._bridge")
    @patch("podctl.session.request_pty")
    def test_success_closes_transport(self, mock_pty, mock_bridge, descriptor, settings, mock_transport):
        chan = mock_transport.open_session.return_value
        chan.exit_status_ready.return_value = True
        chan.recv_exit_status.return_value = 0

        with patch.object(Connection, "open", return_value=Connection(mock_transport, descriptor)) as mock_open:
            rc = open_interactive(descriptor, settings, io.BytesIO(), io.BytesIO(), io.BytesIO())

        assert rc == 0
        mock_open.assert_called_once_with(descriptor, settings)
        mock_transport.close.assert_called_once()

    @patch("podctl.session.request_pty")
    def test_failure_closes_transport_once(self, mock_pty, descriptor, settings, mock_transport):
        mock_pty.side_effect = PtyRequestFailed("refused")

        with patch.object(Connection, "open", return_value=Connection(mock_transport, descriptor)):
            with pytest.raises(PtyRequestFailed):
                open_interactive(descriptor, settings, io.BytesIO(), io.BytesIO(), io.BytesIO())

        mock_transport.close.assert_called_once()
        mock_transport.open_session.return_value.invoke_shell.assert_not_called()

    @patch("podctl.session.run_shell")
    def test_dial_failure(self, mock_run, descriptor, settings):
        with patch.object(Connection, "open", side_effect=DialFailed("Connection failed", host="10.0.0.5", port=22)):
            with pytest.raises(DialFailed):
                open_interactive(descriptor, settings, io.BytesIO(), io.BytesIO(), io.BytesIO())
        mock_run.assert_not_called()


# ---------------------------------------------------------------------------
# _bridge over a real socket pair
# ---------------------------------------------------------------------------


class _ShellChannel:
    """Channel double over one end of a socketpair; the other end plays the pod."""

    def __init__(self):
        self.local, self.remote = socket.socketpair()
        self.received = bytearray()
        self.stderr_chunks = [b"warning: motd missing\n"]
        self.status = None
        self.eof_received = False

    def fileno(self):
        return self.local.fileno()

    def recv(self, n):
        return self.local.recv(n)

    def recv_ready(self):
        r, _, _ = select.select([self.local], [], [], 0)
        return bool(r)

    def recv_stderr_ready(self):
        return bool(self.stderr_chunks)

    def recv_stderr(self, n):
        return self.stderr_chunks.pop(0)

    def sendall(self, data):
        self.received += data

    def shutdown_write(self):
        # the remote shell answers EOF by printing and exiting
        self.remote.sendall(b"logout\n")
        self.remote.close()
        self.eof_received = True
        self.status = 0

    def exit_status_ready(self):
        return self.status is not None

    def close(self):
        self.local.close()


class TestBridge:
    def test_forwards_both_directions(self):
        chan = _ShellChannel()
        chan.remote.sendall(b"pod$ ")
        read_fd, write_fd = os.pipe()
        os.write(write_fd, b"ls -l\n")
        os.close(write_fd)
        stdout, stderr = io.BytesIO(), io.BytesIO()

        try:
            with os.fdopen(read_fd, "rb", buffering=0) as stdin:
                _bridge(chan, stdin, stdout, stderr)
        finally:
            chan.close()

        assert bytes(chan.received) == b"ls -l\n"
        assert stdout.getvalue() == b"pod$ logout\n"
        assert stderr.getvalue() == b"warning: motd missing\n"
        assert chan.exit_status_ready()

    def test_stderr_wakeup_does_not_block_on_stdout(self):
        # select reports the channel readable while only stderr has data
        chan = MagicMock()
        chan.eof_received = False
        chan.recv_ready.return_value = False
        stderr_chunks = [b"warning: quota low\n"]
        chan.recv_stderr_ready.side_effect = lambda: bool(stderr_chunks)
        chan.recv_stderr.side_effect = lambda n: stderr_chunks.pop(0)
        chan.recv.side_effect = AssertionError("recv() would block")
        chan.exit_status_ready.side_effect = [False, True]
        stdin = MagicMock()
        stdin.fileno.return_value = 99
        stdout, stderr = io.BytesIO(), io.BytesIO()

        with patch("podctl.session.select.select", return_value=([chan, 99], [], [])), \
                patch("podctl.session.os.read", return_value=b"pwd\n") as mock_read:
            _bridge(chan, stdin, stdout, stderr)

        chan.recv.assert_not_called()
        assert mock_read.call_count == 2
        chan.sendall.assert_called_with(b"pwd\n")
        assert stderr.getvalue() == b"warning: quota low\n"
        assert stdout.getvalue() == b""
