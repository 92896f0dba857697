"""Single-use SSH session wrapper around a paramiko channel.

A :class:`Session` owns exactly one channel for exactly one remote command.
Local byte streams are bound before the command starts and are pumped by
daemon threads; :meth:`Session.wait` reports the remote outcome as an
exception when the command did not exit cleanly.
"""

from __future__ import annotations

import logging
import struct
import threading
from typing import BinaryIO, Mapping, Optional

import paramiko
from paramiko.common import cMSG_CHANNEL_REQUEST
from paramiko.message import Message

logger = logging.getLogger(__name__)

CHUNK_SIZE = 32 * 1024

# ---------------------------------------------------------------------------
# Terminal mode opcodes (RFC 4254 §8)
# ---------------------------------------------------------------------------

TTY_OP_END = 0
ECHO = 53
TTY_OP_ISPEED = 128
TTY_OP_OSPEED = 129


# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------


class SessionError(Exception):
    """Raised when a session is misused or the remote side ends abnormally."""


class ExitStatusError(SessionError):
    """The remote command exited with a non-zero status.

    The status is available as :attr:`exit_status`.
    """

    def __init__(self, exit_status: int) -> None:
        """Initialise with the remote exit status."""
        super().__init__(f"remote command exited with status {exit_status}")
        self.exit_status = exit_status


class ExitMissingError(SessionError):
    """The remote side closed the channel without reporting an exit status."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def encode_terminal_modes(modes: Mapping[int, int]) -> bytes:
    """Encode *modes* as an RFC 4254 terminal-modes string.

    Each mode is an opcode byte followed by a big-endian uint32 value; the
    string is terminated by ``TTY_OP_END``.
    """
    encoded = bytearray()
    for opcode, value in sorted(modes.items()):
        encoded += struct.pack(">BI", opcode, value)
    encoded.append(TTY_OP_END)
    return bytes(encoded)


def _write_stream(stream: BinaryIO, data: bytes) -> None:
    stream.write(data)
    flush = getattr(stream, "flush", None)
    if flush is not None:
        flush()


# ---------------------------------------------------------------------------
# Stdin pipe
# ---------------------------------------------------------------------------


class StdinPipe:
    """Write end of the remote command's stdin.

    Closing the pipe sends EOF to the remote side.  The pipe may be closed
    only once; a second close raises :exc:`ValueError`.
    """

    def __init__(self, channel: paramiko.Channel) -> None:
        self._channel = channel
        self._lock = threading.Lock()
        self.closed = False

    def write(self, data: bytes) -> int:
        """Send *data* to the remote stdin; returns the number of bytes written."""
        if self.closed:
            raise ValueError("write to closed stdin pipe")
        self._channel.sendall(data)
        return len(data)

    def close(self) -> None:
        """Send EOF to the remote side."""
        with self._lock:
            if self.closed:
                raise ValueError("stdin pipe already closed")
            self.closed = True
        self._channel.shutdown_write()


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class Session:
    """One remote command on one channel.

    Assign ``stdin``/``stdout``/``stderr`` (binary file-like objects) or take
    a pipe before calling :meth:`start`.  Unbound output is discarded; an
    unbound stdin sends EOF as soon as the command starts.
    """

    def __init__(self, channel: paramiko.Channel, chunk_size: int = CHUNK_SIZE) -> None:
        self._channel = channel
        self._chunk_size = chunk_size
        self.stdin: Optional[BinaryIO] = None
        self.stdout: Optional[BinaryIO] = None
        self.stderr: Optional[BinaryIO] = None

        self._stdin_pipe: StdinPipe | None = None
        self._stdout_pipe: BinaryIO | None = None
        self._started = False
        self._closed = False
        self._output_threads: list[threading.Thread] = []
        self._copy_error: BaseException | None = None

    @classmethod
    def open(cls, transport, chunk_size: int = CHUNK_SIZE) -> "Session":
        """Open a new channel on *transport* and wrap it.

        *transport* is anything with an ``open_session()`` method, normally a
        ``paramiko.Transport``.
        """
        channel = transport.open_session()
        logger.debug("Opened SSH session channel %s", getattr(channel, "chanid", "?"))
        return cls(channel, chunk_size=chunk_size)

    @property
    def channel(self) -> paramiko.Channel:
        """The underlying paramiko channel."""
        return self._channel

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def request_pty(
        self,
        term: str = "xterm",
        width: int = 80,
        height: int = 40,
        modes: Mapping[int, int] | None = None,
    ) -> None:
        """Request a pseudo-terminal with explicit terminal *modes*.

        ``Channel.get_pty`` always sends an empty modes string, so the
        ``pty-req`` message is built here.

        Raises:
            paramiko.SSHException: If the server refuses the request.
        """
        self._ensure_not_started("request a pty")
        channel = self._channel
        if channel.closed or channel.eof_received or channel.eof_sent or not channel.active:
            raise paramiko.SSHException("Channel is not open")

        m = Message()
        m.add_byte(cMSG_CHANNEL_REQUEST)
        m.add_int(channel.remote_chanid)
        m.add_string("pty-req")
        m.add_boolean(True)
        m.add_string(term)
        m.add_int(width)
        m.add_int(height)
        m.add_int(0)
        m.add_int(0)
        m.add_string(encode_terminal_modes(modes or {}))
        channel._event_pending()
        channel.transport._send_user_message(m)
        channel._wait_for_event()
        logger.debug("PTY granted: %s %dx%d", term, width, height)

    def stdin_pipe(self) -> StdinPipe:
        """Return a pipe connected to the remote stdin (before :meth:`start`)."""
        self._ensure_not_started("take the stdin pipe")
        if self.stdin is not None or self._stdin_pipe is not None:
            raise SessionError("stdin already bound")
        self._stdin_pipe = StdinPipe(self._channel)
        return self._stdin_pipe

    def stdout_pipe(self) -> BinaryIO:
        """Return a reader over the remote stdout (before :meth:`start`)."""
        self._ensure_not_started("take the stdout pipe")
        if self.stdout is not None or self._stdout_pipe is not None:
            raise SessionError("stdout already bound")
        self._stdout_pipe = self._channel.makefile("rb")
        return self._stdout_pipe

    def _ensure_not_started(self, action: str) -> None:
        if self._closed:
            raise SessionError(f"cannot {action}: session is closed")
        if self._started:
            raise SessionError(f"cannot {action}: session already started")

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def start(self, command: str) -> None:
        """Execute *command* remotely and begin pumping the bound streams."""
        self._ensure_not_started("start a command")
        self._channel.exec_command(command)
        self._started = True

        if self._stdin_pipe is None:
            self._spawn(self._copy_stdin, "stdin", output=False)
        if self._stdout_pipe is None:
            self._spawn(self._copy_stdout, "stdout", output=True)
        self._spawn(self._copy_stderr, "stderr", output=True)

    def wait(self) -> None:
        """Block until the remote command exits.

        Raises:
            ExitStatusError: The command exited with a non-zero status.
            ExitMissingError: The channel closed without an exit status.
            SessionError: A local stream copy failed.
        """
        if not self._started:
            raise SessionError("session not started")
        for thread in self._output_threads:
            thread.join()

        exit_status = self._channel.recv_exit_status()
        if exit_status == -1:
            raise ExitMissingError("remote command ended without an exit status")
        if exit_status != 0:
            raise ExitStatusError(exit_status)
        if self._copy_error is not None:
            raise SessionError(f"stream copy failed: {self._copy_error}") from self._copy_error

    def close(self) -> None:
        """Close the channel.  Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._channel.close()
        logger.debug("Closed SSH session channel %s", getattr(self._channel, "chanid", "?"))

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Stream copiers
    # ------------------------------------------------------------------

    def _spawn(self, target, name: str, output: bool) -> None:
        thread = threading.Thread(
            target=self._guarded_copy,
            args=(target, output),
            name=f"session-{name}",
            daemon=True,
        )
        thread.start()
        if output:
            self._output_threads.append(thread)

    def _guarded_copy(self, target, output: bool) -> None:
        try:
            target()
        except (OSError, ValueError, TypeError, paramiko.SSHException) as exc:
            logger.debug("Stream copy %s failed: %s", target.__name__, exc)
            # stdin may fail once the remote command has already exited
            if output and self._copy_error is None:
                self._copy_error = exc

    def _copy_stdin(self) -> None:
        if self.stdin is not None:
            while True:
                chunk = self.stdin.read(self._chunk_size)
                if not chunk:
                    break
                self._channel.sendall(chunk)
        self._channel.shutdown_write()

    def _copy_stdout(self) -> None:
        self._drain(self._channel.recv, self.stdout)

    def _copy_stderr(self) -> None:
        self._drain(self._channel.recv_stderr, self.stderr)

    def _drain(self, recv, stream: BinaryIO | None) -> None:
        write_error: Exception | None = None
        while True:
            data = recv(self._chunk_size)
            if not data:
                break
            if stream is None or write_error is not None:
                continue
            try:
                _write_stream(stream, data)
            except (OSError, ValueError, TypeError) as exc:
                # keep reading so the remote side never stalls on a full window
                write_error = exc
        if write_error is not None:
            raise write_error
