"""Communicator settings and saved hosts for sshcomm.

Everything lives in one JSON document, ``~/.sshcomm/config.json``::

    {
      "settings": {"pty_width": 132, "scp_verify_acks": true},
      "hosts": {"builder": {"host": "10.0.0.20", "port": 2222, "username": "ci"}}
    }

Only settings that differ from :class:`Settings` defaults need to be present.
Passwords never reach this file; they are kept in the OS keyring by
:class:`~sshcomm.connection.SSHConnection`.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

_FILE_MODE_RE = re.compile(r"^[0-7]{4}$")
_TRUE_WORDS = {"1", "true", "yes", "on"}
_FALSE_WORDS = {"0", "false", "no", "off"}


@dataclass
class Settings:
    """Tunables for connections and the :class:`Communicator`."""

    ssh_timeout: float = 15.0
    keepalive_interval: int = 30
    pty_term: str = "xterm"
    pty_width: int = 80
    pty_height: int = 40
    pty_speed: int = 14400
    scp_command: str = "scp -vt"
    scp_file_mode: str = "0644"
    scp_verify_acks: bool = False
    stream_chunk_size: int = 32768

    def communicator_options(self) -> dict[str, Any]:
        """Keyword arguments for ``Communicator(transport, **options)``."""
        return {
            "pty_term": self.pty_term,
            "pty_width": self.pty_width,
            "pty_height": self.pty_height,
            "pty_speed": self.pty_speed,
            "scp_command": self.scp_command,
            "file_mode": self.scp_file_mode,
            "verify_acks": self.scp_verify_acks,
            "chunk_size": self.stream_chunk_size,
        }


SETTING_NAMES = tuple(f.name for f in fields(Settings))


@dataclass
class HostEntry:
    """A saved destination, looked up by its alias."""

    name: str
    host: str
    port: int = 22
    username: Optional[str] = None
    key_path: Optional[str] = None

    @property
    def label(self) -> str:
        user = f"{self.username}@" if self.username else ""
        return f"{user}{self.host}:{self.port}"


def coerce_setting(key: str, value: Any) -> Any:
    """Convert *value* to the type of setting *key* and check its range.

    Strings are parsed, so values typed on a command line are accepted.

    Raises:
        KeyError: If *key* is not a known setting.
        ValueError: If *value* cannot be used for *key*.
    """
    if key not in SETTING_NAMES:
        raise KeyError(f"Unknown setting: {key}")
    default = getattr(Settings, key)

    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        word = str(value).strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
        raise ValueError(f"{key} must be a boolean, got {value!r}")

    if isinstance(default, (int, float)):
        if isinstance(value, bool):
            raise ValueError(f"{key} must be a number, got {value!r}")
        try:
            number = type(default)(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{key} must be a number, got {value!r}") from exc
        # keepalive_interval 0 disables keepalives
        if number < 0 or (number == 0 and key != "keepalive_interval"):
            raise ValueError(f"{key} must be positive, got {value!r}")
        return number

    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} must be a non-empty string, got {value!r}")
    if key == "scp_file_mode" and not _FILE_MODE_RE.match(value):
        raise ValueError(f"scp_file_mode must be four octal digits, got {value!r}")
    return value


class ConfigManager:
    """Loads, validates and persists :class:`Settings` and saved hosts.

    The file is rewritten atomically.  An unreadable file is replaced with
    defaults; a single bad setting falls back to its default with a warning.
    """

    def __init__(self, base_dir: Path | None = None) -> None:
        self.path = (base_dir or Path.home() / ".sshcomm") / "config.json"
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.settings = Settings()
        self._hosts: dict[str, HostEntry] = {}
        self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        if not self.path.exists():
            logger.debug("No config file at %s, using defaults", self.path)
            return
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(document, dict):
                raise ValueError("config root must be a JSON object")
            settings = document.get("settings", {})
            hosts = document.get("hosts", {})
            if not isinstance(settings, dict) or not isinstance(hosts, dict):
                raise ValueError("'settings' and 'hosts' must be JSON objects")
        except (json.JSONDecodeError, ValueError, OSError) as exc:
            logger.warning("Unreadable %s (%s), resetting to defaults", self.path, exc)
            self._save()
            return

        for key, value in settings.items():
            try:
                setattr(self.settings, key, coerce_setting(key, value))
            except (KeyError, ValueError) as exc:
                logger.warning("Ignoring setting %s from %s: %s", key, self.path, exc)

        for name, entry in hosts.items():
            try:
                self._hosts[name] = HostEntry(
                    name=name,
                    host=entry["host"],
                    port=int(entry.get("port", 22)),
                    username=entry.get("username"),
                    key_path=entry.get("key_path"),
                )
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                logger.warning("Ignoring saved host %s: %s", name, exc)

    def _save(self) -> None:
        defaults = Settings()
        changed = {
            key: value
            for key, value in asdict(self.settings).items()
            if value != getattr(defaults, key)
        }
        hosts = {
            name: {k: v for k, v in asdict(entry).items() if k != "name"}
            for name, entry in sorted(self._hosts.items())
        }
        tmp = self.path.with_suffix(".tmp")
        try:
            tmp.write_text(
                json.dumps({"settings": changed, "hosts": hosts}, indent=2),
                encoding="utf-8",
            )
            tmp.replace(self.path)
        except OSError as exc:
            logger.error("Failed to write %s: %s", self.path, exc)
            raise

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get(self, key: str) -> Any:
        """Return the current value of setting *key*.

        Raises:
            KeyError: If *key* is not a known setting.
        """
        if key not in SETTING_NAMES:
            raise KeyError(f"Unknown setting: {key}")
        return getattr(self.settings, key)

    def set(self, key: str, value: Any) -> Any:
        """Validate and store setting *key*; returns the stored value."""
        value = coerce_setting(key, value)
        setattr(self.settings, key, value)
        self._save()
        logger.debug("Setting updated: %s = %r", key, value)
        return value

    def reset(self, key: str) -> None:
        """Return setting *key* to its default."""
        self.set(key, getattr(Settings, key))

    # ------------------------------------------------------------------
    # Saved hosts
    # ------------------------------------------------------------------

    def hosts(self) -> list[HostEntry]:
        """Saved hosts, sorted by alias."""
        return [self._hosts[name] for name in sorted(self._hosts)]

    def host(self, name: str) -> HostEntry | None:
        return self._hosts.get(name)

    def save_host(
        self,
        name: str,
        host: str,
        port: int = 22,
        username: str | None = None,
        key_path: str | None = None,
    ) -> HostEntry:
        """Save *host* under alias *name*, replacing any previous entry."""
        if not name or not host:
            raise ValueError("A saved host needs both an alias and an address")
        entry = HostEntry(name, host, int(port), username, key_path)
        self._hosts[name] = entry
        self._save()
        logger.info("Saved host %s (%s)", name, entry.label)
        return entry

    def remove_host(self, name: str) -> bool:
        """Forget alias *name*.  Returns False if it was not saved."""
        if self._hosts.pop(name, None) is None:
            return False
        self._save()
        logger.info("Removed saved host %s", name)
        return True
