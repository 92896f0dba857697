"""sshcomm — run remote commands and upload files over SSH."""

from __future__ import annotations

from sshcomm.communicator import Communicator
from sshcomm.config import ConfigManager, Settings
from sshcomm.connection import NotConnectedError, SSHConnection
from sshcomm.remote_cmd import RemoteCommand
from sshcomm.scp import SCPError
from sshcomm.session import ExitMissingError, ExitStatusError, Session, SessionError

__all__ = [
    "Communicator",
    "ConfigManager",
    "ExitMissingError",
    "ExitStatusError",
    "NotConnectedError",
    "RemoteCommand",
    "SCPError",
    "SSHConnection",
    "Session",
    "SessionError",
    "Settings",
]
