"""Remote path validation and splitting utilities."""

from __future__ import annotations

import logging
import os
import posixpath
import shlex
from pathlib import Path

logger = logging.getLogger(__name__)


def human_readable_size(size_bytes: int | float) -> str:
    """Convert a byte count to a human-readable string (e.g. "4.2 MB").

    Uses 1024-based units (KiB/MiB/GiB) but labels them KB/MB/GB for
    familiarity with everyday usage.
    """
    if size_bytes < 0:
        return "0 B"
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size_bytes < 1024.0:
            if unit == "B":
                return f"{int(size_bytes)} B"
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} PB"


def validate_remote_path(path: str) -> bool:
    """Return True if *path* is safe to hand to the remote host.

    Rejects empty paths, paths that contain null bytes or newlines (either
    would corrupt the SCP control line). Relative components such as ``..``
    are left for the remote shell to resolve.
    """
    if not path:
        logger.warning("Remote path rejected — empty")
        return False
    if "\x00" in path:
        logger.warning("Remote path rejected — contains null byte: %r", path)
        return False
    if "\n" in path or "\r" in path:
        logger.warning("Remote path rejected — contains line break: %r", path)
        return False
    return True


def split_remote_path(path: str) -> tuple[str, str]:
    """Split *path* into ``(directory, filename)`` using POSIX rules.

    A bare filename resolves to the remote working directory (``"."``).

    Raises:
        ValueError: If *path* is invalid or names a directory (trailing slash).

    Example::

        >>> split_remote_path("/home/u/out.txt")
        ('/home/u', 'out.txt')
        >>> split_remote_path("out.txt")
        ('.', 'out.txt')
    """
    if not validate_remote_path(path):
        raise ValueError(f"Invalid remote path: {path!r}")

    directory, filename = posixpath.split(path)
    if filename in ("", ".", ".."):
        raise ValueError(f"Remote path has no filename: {path!r}")
    return directory or ".", filename


def quote_remote_path(path: str) -> str:
    """Quote *path* for interpolation into a remote POSIX shell command."""
    return shlex.quote(path)


def normalize_local_path(path: str | os.PathLike[str]) -> Path:
    """Resolve *path* to an absolute ``pathlib.Path`` on the local filesystem."""
    return Path(path).expanduser().resolve()
