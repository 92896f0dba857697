"""Run commands and upload files over an established SSH connection.

Every operation opens its own session on the shared connection and closes
it when done, so one connection can serve many operations concurrently.
"""

from __future__ import annotations

import io
import itertools
import logging
import threading
from concurrent.futures import Future
from contextlib import ExitStack
from typing import Any, BinaryIO, NoReturn

from sshcomm import scp
from sshcomm.remote_cmd import RemoteCommand
from sshcomm.session import (
    CHUNK_SIZE,
    ECHO,
    TTY_OP_ISPEED,
    TTY_OP_OSPEED,
    ExitStatusError,
    Session,
    SessionError,
)
from sshcomm.utils.path_helpers import human_readable_size, split_remote_path

logger = logging.getLogger(__name__)

DEFAULT_PTY_TERM = "xterm"
DEFAULT_PTY_WIDTH = 80
DEFAULT_PTY_HEIGHT = 40
DEFAULT_PTY_SPEED = 14400  # baud; any explicit value will do
DEFAULT_SCP_COMMAND = "scp -vt"

_thread_ids = itertools.count(1)


class Communicator:
    """Executes remote commands and SCP uploads over one SSH connection.

    *transport* is the caller-owned connection: any object whose
    ``open_session()`` returns a paramiko-compatible channel, normally a
    ``paramiko.Transport`` or an :class:`~sshcomm.connection.SSHConnection`.
    It is never closed here.
    """

    def __init__(
        self,
        transport,
        *,
        pty_term: str = DEFAULT_PTY_TERM,
        pty_width: int = DEFAULT_PTY_WIDTH,
        pty_height: int = DEFAULT_PTY_HEIGHT,
        pty_speed: int = DEFAULT_PTY_SPEED,
        scp_command: str = DEFAULT_SCP_COMMAND,
        file_mode: str = scp.DEFAULT_FILE_MODE,
        verify_acks: bool = False,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        """Initialise the communicator (no session is opened yet).

        Args:
            transport: Connection that sessions are opened on.
            pty_term: Terminal type sent with the pty request.
            pty_width: Terminal width in characters.
            pty_height: Terminal height in rows.
            pty_speed: Input/output baud rate sent as terminal modes.
            scp_command: Remote command that starts an SCP sink; the target
                directory is appended.
            file_mode: Octal permission string for uploaded files.
            verify_acks: Read and check the sink's status bytes during upload.
            chunk_size: Read size for session stream copiers.
        """
        self._transport = transport
        self.pty_term = pty_term
        self.pty_width = pty_width
        self.pty_height = pty_height
        self.terminal_modes = {
            ECHO: 0,
            TTY_OP_ISPEED: pty_speed,
            TTY_OP_OSPEED: pty_speed,
        }
        self.scp_command = scp_command
        self.file_mode = file_mode
        self.verify_acks = verify_acks
        self.chunk_size = chunk_size

    @classmethod
    def from_config(cls, transport, config: Any) -> "Communicator":
        """Build a communicator using settings from a ``ConfigManager``."""
        return cls(transport, **config.settings.communicator_options())

    def _open_session(self) -> Session:
        return Session.open(self._transport, chunk_size=self.chunk_size)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def start(self, cmd: RemoteCommand) -> "Future[int]":
        """Start *cmd* on the remote host and return without waiting for it.

        The returned future resolves to the exit status, at the same moment
        ``cmd.exited`` becomes true.  A command that fails for any reason
        other than a non-zero exit (e.g. a dropped connection) resolves to 0.

        Raises:
            ValueError: If the command text is empty.
            RuntimeError: If *cmd* was already started by this or another
                communicator.
            paramiko.SSHException: If the session, pty or exec request fails.
                Nothing is left running in that case.
        """
        if not cmd.command:
            raise ValueError("Remote command must be a non-empty string")

        cmd.mark_started()
        try:
            session = self._open_session()
        except BaseException:
            cmd.clear_started()
            raise
        try:
            session.stdin = cmd.stdin
            session.stdout = cmd.stdout
            session.stderr = cmd.stderr
            session.request_pty(
                self.pty_term,
                self.pty_width,
                self.pty_height,
                self.terminal_modes,
            )
            logger.info("Starting remote command: %s", cmd.command)
            session.start(cmd.command + "\n")
        except BaseException:
            session.close()
            cmd.clear_started()
            raise

        future: Future[int] = Future()
        future.set_running_or_notify_cancel()
        thread = threading.Thread(
            target=self._wait_for_exit,
            args=(session, cmd, future),
            name=f"remote-cmd-{next(_thread_ids)}",
            daemon=True,
        )
        thread.start()
        return future

    def _wait_for_exit(self, session: Session, cmd: RemoteCommand, future: "Future[int]") -> None:
        """Background task: wait for the remote command and record its status."""
        exit_status = 0
        try:
            session.wait()
        except ExitStatusError as exc:
            exit_status = exc.exit_status
        except Exception as exc:
            logger.warning("Remote command %r ended abnormally: %s", cmd.command, exc)
        finally:
            session.close()

        try:
            cmd.set_exited(exit_status)
        except RuntimeError as exc:
            logger.error("Could not record exit of %r: %s", cmd.command, exc)
            future.set_exception(exc)
            return
        future.set_result(exit_status)

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload(self, remote_path: str, source: scp.Source) -> int:
        """Upload *source* to *remote_path* with the SCP sink protocol.

        *source* is read fully into memory before anything is sent.  Returns
        the number of bytes uploaded.

        Raises:
            ValueError: If *remote_path* is invalid.
            SCPError: If the remote sink fails or exits non-zero.
            paramiko.SSHException: If the session cannot be set up.
        """
        target_dir, target_file = split_remote_path(remote_path)
        stdout = io.BytesIO()
        stderr = io.BytesIO()

        logger.debug("Opening new SSH session for upload to %s", remote_path)
        with self._open_session() as session, ExitStack() as pipe_owner:
            pipe = session.stdin_pipe()
            pipe_owner.callback(pipe.close)
            session.stderr = stderr

            ack_reader: BinaryIO | None = None
            if self.verify_acks:
                ack_reader = session.stdout_pipe()
            else:
                session.stdout = stdout

            logger.debug("Starting remote scp process in sink mode")
            session.start(scp.sink_command(self.scp_command, target_dir))

            payload = scp.read_payload(source)
            logger.info(
                "Uploading %s to %s", human_readable_size(len(payload)), remote_path
            )
            scp.send_file(pipe, target_file, payload, self.file_mode, ack_reader)

            # Closing stdin sends EOF; emptying the stack keeps it from
            # being closed a second time on the way out.
            logger.debug("Upload data sent, closing stdin pipe")
            pipe_owner.close()
            if ack_reader is not None:
                stdout.write(ack_reader.read())

            logger.debug("Waiting for remote scp to exit")
            try:
                session.wait()
            except ExitStatusError as exc:
                logger.error("scp exited with non-zero status %d", exc.exit_status)
                raise scp.SCPError(
                    f"Upload to {remote_path} failed: {exc}",
                    exit_status=exc.exit_status,
                    stdout=stdout.getvalue(),
                    stderr=stderr.getvalue(),
                ) from exc
            except SessionError as exc:
                raise scp.SCPError(
                    f"Upload to {remote_path} failed: {exc}",
                    stdout=stdout.getvalue(),
                    stderr=stderr.getvalue(),
                ) from exc

        logger.debug("scp stdout (length %d): %r", len(stdout.getvalue()), stdout.getvalue())
        logger.debug(
            "scp stderr (length %d): %s",
            len(stderr.getvalue()),
            stderr.getvalue().decode("utf-8", errors="replace"),
        )
        logger.info("Upload complete: %s", remote_path)
        return len(payload)

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    def download(self, remote_path: str, dest: BinaryIO) -> NoReturn:
        """Downloading is not supported; always raises."""
        raise NotImplementedError(f"download of {remote_path!r} is not implemented")
