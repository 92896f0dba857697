"""SCP sink-mode framing.

Implements the sending side of the legacy ``scp -t`` protocol for a single
file: a ``C<mode> <length> <name>`` control line, the raw body, and a NUL
terminator.  The remote sink answers each phase with one status byte
(0 = ok, 1 = warning, 2 = fatal, the latter two followed by a message line).
Those bytes are only checked when an acknowledgement reader is supplied.
"""

from __future__ import annotations

import logging
from typing import BinaryIO, Union

from sshcomm.utils.path_helpers import quote_remote_path

logger = logging.getLogger(__name__)

ACK_OK = 0
ACK_WARNING = 1
ACK_FATAL = 2

DEFAULT_FILE_MODE = "0644"
END_OF_FILE = b"\x00"

Source = Union[bytes, bytearray, memoryview, BinaryIO]


class SCPError(Exception):
    """Raised when the remote SCP sink rejects or fails an upload.

    ``exit_status`` is the sink's exit status when it reported one, else
    ``None``.  ``stdout``/``stderr`` hold whatever the sink printed, for
    diagnostics only.
    """

    def __init__(
        self,
        message: str,
        exit_status: int | None = None,
        stdout: bytes = b"",
        stderr: bytes = b"",
    ) -> None:
        """Initialise with optional exit status and captured output."""
        super().__init__(message)
        self.exit_status = exit_status
        self.stdout = stdout
        self.stderr = stderr


def sink_command(scp_command: str, target_dir: str) -> str:
    """Return the remote command that starts a sink writing into *target_dir*."""
    return f"{scp_command} {quote_remote_path(target_dir)}"


def control_line(filename: str, length: int, mode: str = DEFAULT_FILE_MODE) -> bytes:
    """Build the ``C`` control line announcing one file of *length* bytes."""
    if "/" in filename or "\n" in filename:
        raise ValueError(f"Invalid SCP filename: {filename!r}")
    return f"C{mode} {length} {filename}\n".encode("utf-8")


def read_payload(source: Source) -> bytes:
    """Materialise *source* fully in memory.

    The control line declares the exact length before the body is sent, so
    the whole upload has to be buffered first.
    """
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source)
    data = source.read()
    if isinstance(data, str):
        raise TypeError("SCP source must be opened in binary mode")
    return data or b""


def read_ack(reader: BinaryIO) -> None:
    """Consume one status byte from the sink.

    Raises:
        SCPError: On a warning/fatal status, an unknown byte, or EOF.
    """
    status = reader.read(1)
    if not status:
        raise SCPError("remote scp closed the stream before acknowledging")

    code = status[0]
    if code == ACK_OK:
        return

    message = reader.readline().decode("utf-8", errors="replace").rstrip("\n")
    if code == ACK_WARNING:
        raise SCPError(f"remote scp warning: {message}")
    if code == ACK_FATAL:
        raise SCPError(f"remote scp error: {message}")
    raise SCPError(f"unexpected scp status byte {code!r}")


def send_file(
    pipe,
    filename: str,
    payload: bytes,
    mode: str = DEFAULT_FILE_MODE,
    ack_reader: BinaryIO | None = None,
) -> None:
    """Frame *payload* as one SCP file and write it to *pipe*.

    When *ack_reader* is given, the sink's initial, post-header and
    post-body status bytes are validated.  Does not close *pipe*.
    """
    if ack_reader is not None:
        read_ack(ack_reader)

    header = control_line(filename, len(payload), mode)
    logger.debug("SCP control line: %r", header)
    pipe.write(header)
    if ack_reader is not None:
        read_ack(ack_reader)

    pipe.write(payload)
    pipe.write(END_OF_FILE)
    if ack_reader is not None:
        read_ack(ack_reader)
