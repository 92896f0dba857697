"""Shared fakes for channel-level tests.

``FakeChannel`` mimics the part of ``paramiko.Channel`` that sshcomm uses;
``FakeTransport`` hands out pre-built channels from ``open_session()``.
"""

from __future__ import annotations

import io
import itertools
import threading
from unittest.mock import MagicMock

import pytest

_chan_ids = itertools.count(1)


class FakeChannel:
    """In-memory stand-in for a paramiko session channel.

    If *release* is given, stdout reads and the exit-status wait block until
    it is set, which lets tests observe a command that is still running.
    """

    def __init__(
        self,
        stdout: bytes = b"",
        stderr: bytes = b"",
        exit_status: int | BaseException = 0,
        release: threading.Event | None = None,
    ) -> None:
        self.chanid = next(_chan_ids)
        self.remote_chanid = self.chanid + 100
        self.transport = MagicMock()
        self.closed = False
        self.active = True
        self.eof_sent = False
        self.eof_received = False
        self.close_count = 0
        self.eof_count = 0
        self.exec_commands: list[str] = []
        self.stdin_data = bytearray()
        self.exit_status = exit_status
        self.release = release
        self.pty_error: BaseException | None = None
        self.exec_error: BaseException | None = None
        self.send_error: BaseException | None = None
        self._stdout = io.BytesIO(stdout)
        self._stderr = io.BytesIO(stderr)

    # pty request plumbing used by Session.request_pty
    def _event_pending(self) -> None:
        pass

    def _wait_for_event(self) -> None:
        if self.pty_error is not None:
            raise self.pty_error

    def exec_command(self, command: str) -> None:
        if self.exec_error is not None:
            raise self.exec_error
        self.exec_commands.append(command)

    def sendall(self, data: bytes) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.stdin_data += data

    def shutdown_write(self) -> None:
        self.eof_count += 1

    def recv(self, nbytes: int) -> bytes:
        if self.release is not None:
            self.release.wait(timeout=5)
        return self._stdout.read(nbytes)

    def recv_stderr(self, nbytes: int) -> bytes:
        return self._stderr.read(nbytes)

    def makefile(self, mode: str = "rb") -> io.BytesIO:
        return self._stdout

    def recv_exit_status(self) -> int:
        if self.release is not None:
            self.release.wait(timeout=5)
        if isinstance(self.exit_status, BaseException):
            raise self.exit_status
        return self.exit_status

    def close(self) -> None:
        self.closed = True
        self.close_count += 1

    def sent_pty_request(self):
        """Return the ``pty-req`` message passed to the transport, if any."""
        calls = self.transport._send_user_message.call_args_list
        return calls[-1].args[0] if calls else None


class FakeTransport:
    """Hands out the given channels in order from ``open_session()``."""

    def __init__(self, *channels: FakeChannel) -> None:
        self._channels = list(channels)
        self._lock = threading.Lock()
        self.opened: list[FakeChannel] = []
        self.open_error: BaseException | None = None

    def open_session(self) -> FakeChannel:
        if self.open_error is not None:
            raise self.open_error
        with self._lock:
            channel = self._channels.pop(0)
            self.opened.append(channel)
        return channel


def parse_sink_stream(data: bytes) -> tuple[str, int, str, bytes, bytes]:
    """Split what an SCP sink received into (mode, length, name, body, rest)."""
    header, _, remainder = data.partition(b"\n")
    assert header.startswith(b"C"), header
    mode, length, name = header[1:].decode("utf-8").split(" ", 2)
    size = int(length)
    return mode, size, name, remainder[:size], remainder[size:]


@pytest.fixture()
def fake_channel() -> FakeChannel:
    """A channel whose command exits 0 with no output."""
    return FakeChannel()


@pytest.fixture()
def fake_transport(fake_channel: FakeChannel) -> FakeTransport:
    """A transport that yields ``fake_channel`` once."""
    return FakeTransport(fake_channel)
