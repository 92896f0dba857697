"""Authenticated SSH connections that a :class:`Communicator` runs over.

:class:`SSHConnection` either dials the host itself or runs SSH over a
socket the caller has already connected (a jump host, a proxy, a test
harness).  Host keys are checked against a ``known_hosts`` file; unknown
hosts are refused unless ``accept_new_host`` is set, in which case the key is
recorded on first use.  Passwords can be kept in the OS keyring.
"""

from __future__ import annotations

import logging
import socket
import threading
from pathlib import Path
from typing import Any

import keyring
import paramiko
from keyring.errors import PasswordDeleteError

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "sshcomm"


class NotConnectedError(Exception):
    """Raised when a session is requested before connecting or after closing."""


class SSHConnection:
    """One authenticated SSH connection, shared by any number of sessions.

    :meth:`open_session` may be called from several threads at once; paramiko
    serialises channel creation on the transport.  The connection is never
    re-established automatically.
    """

    def __init__(
        self,
        host: str,
        port: int = 22,
        username: str = "root",
        key_path: str | None = None,
        timeout: float = 15.0,
        keepalive_interval: int = 30,
        known_hosts: Path | None = None,
        accept_new_host: bool = False,
    ) -> None:
        """Store connection parameters; nothing is opened until :meth:`connect`.

        Args:
            host: Hostname or address, also the name checked in known_hosts.
            port: SSH port.
            username: Remote user.
            key_path: Private key file.  Without one, password authentication
                is used, falling back to the agent and default keys.
            timeout: TCP and banner timeout in seconds.
            keepalive_interval: Seconds between transport keepalives (0 disables).
            known_hosts: Host key file (default ``~/.ssh/known_hosts``).
            accept_new_host: Record the key of a host missing from
                *known_hosts* instead of refusing it.
        """
        self.host = host
        self.port = port
        self.username = username
        self.key_path = key_path
        self.timeout = timeout
        self.keepalive_interval = keepalive_interval
        self.known_hosts = known_hosts or Path.home() / ".ssh" / "known_hosts"
        self.accept_new_host = accept_new_host

        self._client: paramiko.SSHClient | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Any, **params: Any) -> "SSHConnection":
        """Create a connection using timeouts from a :class:`~sshcomm.config.Settings`."""
        params.setdefault("timeout", settings.ssh_timeout)
        params.setdefault("keepalive_interval", settings.keepalive_interval)
        return cls(**params)

    # ------------------------------------------------------------------
    # Connect / close
    # ------------------------------------------------------------------

    def connect(
        self, sock: socket.socket | None = None, password: str | None = None
    ) -> "SSHConnection":
        """Run the SSH handshake and authenticate.

        Args:
            sock: Already-connected socket to speak SSH over.  When omitted
                the host is dialed directly.
            password: Password to authenticate with.  When omitted, a
                password stored with :meth:`remember_password` is used.

        Returns:
            ``self``, so the call can be used in a ``with`` statement.

        Raises:
            paramiko.SSHException: Unknown or mismatched host key, or a
                protocol failure (``AuthenticationException`` on bad
                credentials).
            OSError: The host could not be reached.
        """
        with self._lock:
            if self._client is not None:
                logger.debug("connect() called but already connected to %s", self.host)
                return self

            logger.info("Connecting to %s@%s:%d", self.username, self.host, self.port)
            client = paramiko.SSHClient()
            self._load_host_keys(client)
            try:
                client.connect(**self._auth_kwargs(sock, password))
            except Exception:
                client.close()
                raise

            transport = client.get_transport()
            if transport is not None and self.keepalive_interval:
                transport.set_keepalive(self.keepalive_interval)
            self._client = client
        logger.info("Connected to %s", self.host)
        return self

    def _load_host_keys(self, client: paramiko.SSHClient) -> None:
        if self.accept_new_host:
            # AutoAddPolicy only persists keys when a host key file was loaded
            if not self.known_hosts.exists():
                self.known_hosts.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
                self.known_hosts.touch(mode=0o600)
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        if self.known_hosts.exists():
            client.load_host_keys(str(self.known_hosts))

    def _auth_kwargs(self, sock: socket.socket | None, password: str | None) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "hostname": self.host,
            "port": self.port,
            "username": self.username,
            "timeout": self.timeout,
        }
        if sock is not None:
            kwargs["sock"] = sock

        if self.key_path:
            kwargs["key_filename"] = self.key_path
            kwargs["allow_agent"] = True
            kwargs["look_for_keys"] = False
            return kwargs

        password = password or self.stored_password()
        if password:
            kwargs["password"] = password
        kwargs["allow_agent"] = kwargs["look_for_keys"] = not password
        return kwargs

    def close(self) -> None:
        """Close the connection.  Safe to call more than once."""
        with self._lock:
            client, self._client = self._client, None
        if client is not None:
            client.close()
            logger.info("Disconnected from %s", self.host)

    def __enter__(self) -> "SSHConnection":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @property
    def transport(self) -> paramiko.Transport:
        """The live paramiko transport.

        Raises:
            NotConnectedError: If not connected, or the transport has died.
        """
        client = self._client
        transport = client.get_transport() if client is not None else None
        if transport is None or not transport.is_active():
            raise NotConnectedError(f"Not connected to {self.host}")
        return transport

    @property
    def connected(self) -> bool:
        try:
            self.transport
        except NotConnectedError:
            return False
        return True

    def open_session(self) -> paramiko.Channel:
        """Open a new session channel; used by :class:`Communicator`."""
        return self.transport.open_session()

    def communicator(self, config=None, **kwargs):
        """Return a :class:`Communicator` that opens its sessions here.

        Settings come from *config* (a ``ConfigManager``) when given,
        otherwise from *kwargs*.
        """
        from sshcomm.communicator import Communicator

        if config is not None:
            return Communicator.from_config(self, config)
        return Communicator(self, **kwargs)

    # ------------------------------------------------------------------
    # Stored passwords
    # ------------------------------------------------------------------

    @property
    def keyring_account(self) -> str:
        return f"{self.username}@{self.host}:{self.port}"

    def stored_password(self) -> str | None:
        return keyring.get_password(KEYRING_SERVICE, self.keyring_account)

    def remember_password(self, password: str) -> None:
        """Keep *password* in the OS keyring for later :meth:`connect` calls."""
        keyring.set_password(KEYRING_SERVICE, self.keyring_account, password)
        logger.debug("Password stored in keyring for %s", self.keyring_account)

    def forget_password(self) -> bool:
        """Remove the stored password.  Returns False if there was none."""
        try:
            keyring.delete_password(KEYRING_SERVICE, self.keyring_account)
        except PasswordDeleteError:
            return False
        logger.debug("Password removed from keyring for %s", self.keyring_account)
        return True
