"""Remote command description and its write-once completion state."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import BinaryIO, Optional

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class RemoteCommand:
    """A shell command to run remotely, plus the streams wired to it.

    ``exited`` and ``exit_status`` are written exactly once by the task that
    watches the remote process.  ``exit_status`` is meaningful only after
    ``exited`` is true; :meth:`wait` is the synchronisation point for
    readers on other threads.

    A command runs at most once: :meth:`mark_started` claims it before any
    remote session is opened.
    """

    command: str
    stdin: Optional[BinaryIO] = None
    stdout: Optional[BinaryIO] = None
    stderr: Optional[BinaryIO] = None
    started: bool = field(default=False, init=False)
    exited: bool = field(default=False, init=False)
    exit_status: int = field(default=0, init=False)
    _done: threading.Event = field(default_factory=threading.Event, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def mark_started(self) -> None:
        """Claim the command for a single run.

        Raises:
            RuntimeError: If the command was already started or has exited.
        """
        with self._lock:
            if self.started or self.exited:
                raise RuntimeError(f"Command {self.command!r} already started")
            self.started = True

    def clear_started(self) -> None:
        """Release the claim after a start that never reached the remote host."""
        with self._lock:
            if not self.exited:
                self.started = False

    def set_exited(self, exit_status: int) -> None:
        """Record the final *exit_status* and mark the command as exited.

        Raises:
            RuntimeError: If the command has already been marked exited.
        """
        with self._lock:
            if self.exited:
                raise RuntimeError(f"Command {self.command!r} already exited")
            self.exit_status = exit_status
            self.exited = True
        self._done.set()
        logger.debug("Remote command %r exited with status %d", self.command, exit_status)

    def wait(self, timeout: float | None = None) -> int:
        """Block until the command has exited and return its exit status.

        Raises:
            TimeoutError: If *timeout* elapses first.
        """
        if not self._done.wait(timeout):
            raise TimeoutError(f"Command {self.command!r} still running after {timeout}s")
        return self.exit_status
