"""Tests for sshcomm/config.py — settings validation and saved hosts."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from sshcomm.config import SETTING_NAMES, ConfigManager, HostEntry, Settings, coerce_setting


@pytest.fixture()
def tmp_config(tmp_path: Path) -> ConfigManager:
    """Return a ConfigManager backed by a temporary directory."""
    return ConfigManager(base_dir=tmp_path)


def _write(tmp_path: Path, document) -> None:
    (tmp_path / "config.json").write_text(json.dumps(document), encoding="utf-8")


class TestDefaults:
    def test_missing_file_gives_defaults_without_writing(self, tmp_path: Path) -> None:
        cm = ConfigManager(base_dir=tmp_path)
        assert cm.settings == Settings()
        assert not (tmp_path / "config.json").exists()

    def test_communicator_options_match_defaults(self, tmp_config: ConfigManager) -> None:
        assert tmp_config.settings.communicator_options() == {
            "pty_term": "xterm",
            "pty_width": 80,
            "pty_height": 40,
            "pty_speed": 14400,
            "scp_command": "scp -vt",
            "file_mode": "0644",
            "verify_acks": False,
            "chunk_size": 32768,
        }

    def test_only_changed_settings_are_written(self, tmp_path: Path) -> None:
        cm = ConfigManager(base_dir=tmp_path)
        cm.set("pty_width", 132)
        document = json.loads((tmp_path / "config.json").read_text(encoding="utf-8"))
        assert document == {"settings": {"pty_width": 132}, "hosts": {}}


class TestLoading:
    def test_partial_settings_are_merged(self, tmp_path: Path) -> None:
        _write(tmp_path, {"settings": {"pty_width": 132, "scp_verify_acks": True}})
        cm = ConfigManager(base_dir=tmp_path)
        assert cm.get("pty_width") == 132
        assert cm.get("scp_verify_acks") is True
        assert cm.get("pty_height") == 40

    def test_bad_value_falls_back_to_default(self, tmp_path: Path) -> None:
        _write(tmp_path, {"settings": {"scp_file_mode": "rwx", "pty_height": 50}})
        cm = ConfigManager(base_dir=tmp_path)
        assert cm.get("scp_file_mode") == "0644"
        assert cm.get("pty_height") == 50

    def test_unknown_setting_is_ignored(self, tmp_path: Path) -> None:
        _write(tmp_path, {"settings": {"colour_theme": "dark"}})
        cm = ConfigManager(base_dir=tmp_path)
        assert cm.settings == Settings()

    @pytest.mark.parametrize(
        "content",
        ["{ not json", "[1, 2, 3]", '{"settings": []}', '{"hosts": "builder"}'],
    )
    def test_unreadable_file_is_reset(self, tmp_path: Path, content: str) -> None:
        (tmp_path / "config.json").write_text(content, encoding="utf-8")
        cm = ConfigManager(base_dir=tmp_path)
        assert cm.settings == Settings()
        assert json.loads((tmp_path / "config.json").read_text(encoding="utf-8")) == {
            "settings": {},
            "hosts": {},
        }

    def test_broken_host_entry_is_skipped(self, tmp_path: Path) -> None:
        _write(tmp_path, {"hosts": {"ok": {"host": "10.0.0.1"}, "broken": {"port": 22}}})
        cm = ConfigManager(base_dir=tmp_path)
        assert [entry.name for entry in cm.hosts()] == ["ok"]


class TestCoerceSetting:
    @pytest.mark.parametrize(
        "key, raw, expected",
        [
            ("pty_width", "132", 132),
            ("ssh_timeout", "2.5", 2.5),
            ("scp_verify_acks", "yes", True),
            ("scp_verify_acks", "off", False),
            ("keepalive_interval", 0, 0),
            ("scp_file_mode", "0600", "0600"),
        ],
    )
    def test_accepted(self, key: str, raw, expected) -> None:
        assert coerce_setting(key, raw) == expected

    @pytest.mark.parametrize(
        "key, raw",
        [
            ("pty_width", "wide"),
            ("pty_width", 0),
            ("stream_chunk_size", -1),
            ("pty_speed", True),
            ("scp_verify_acks", "maybe"),
            ("scp_file_mode", "644"),
            ("scp_command", ""),
        ],
    )
    def test_rejected(self, key: str, raw) -> None:
        with pytest.raises(ValueError):
            coerce_setting(key, raw)

    def test_unknown_key(self) -> None:
        with pytest.raises(KeyError):
            coerce_setting("colour_theme", "dark")


class TestSettings:
    def test_set_persists_to_disk(self, tmp_path: Path) -> None:
        ConfigManager(base_dir=tmp_path).set("scp_verify_acks", "true")
        assert ConfigManager(base_dir=tmp_path).get("scp_verify_acks") is True

    def test_set_rejects_invalid_value_without_writing(self, tmp_config: ConfigManager) -> None:
        with pytest.raises(ValueError):
            tmp_config.set("scp_file_mode", "999")
        assert tmp_config.get("scp_file_mode") == "0644"
        assert not tmp_config.path.exists()

    def test_get_unknown_key_raises(self, tmp_config: ConfigManager) -> None:
        with pytest.raises(KeyError):
            tmp_config.get("colour_theme")

    def test_reset_restores_default(self, tmp_path: Path) -> None:
        cm = ConfigManager(base_dir=tmp_path)
        cm.set("pty_term", "vt100")
        cm.reset("pty_term")
        assert ConfigManager(base_dir=tmp_path).get("pty_term") == "xterm"

    def test_every_setting_is_listed(self) -> None:
        assert set(SETTING_NAMES) == set(Settings().__dict__)


class TestSavedHosts:
    def test_save_and_look_up(self, tmp_path: Path) -> None:
        ConfigManager(base_dir=tmp_path).save_host("builder", "10.0.0.20", 2222, "ci")
        entry = ConfigManager(base_dir=tmp_path).host("builder")
        assert entry == HostEntry("builder", "10.0.0.20", 2222, "ci", None)
        assert entry.label == "ci@10.0.0.20:2222"

    def test_saving_same_alias_replaces(self, tmp_config: ConfigManager) -> None:
        tmp_config.save_host("builder", "192.168.1.1")
        tmp_config.save_host("builder", "10.0.0.1", key_path="/keys/ci")
        assert [(e.host, e.key_path) for e in tmp_config.hosts()] == [("10.0.0.1", "/keys/ci")]

    def test_hosts_sorted_by_alias(self, tmp_config: ConfigManager) -> None:
        tmp_config.save_host("zeta", "z")
        tmp_config.save_host("alpha", "a")
        assert [e.name for e in tmp_config.hosts()] == ["alpha", "zeta"]

    def test_alias_and_address_required(self, tmp_config: ConfigManager) -> None:
        with pytest.raises(ValueError):
            tmp_config.save_host("", "10.0.0.1")
        with pytest.raises(ValueError):
            tmp_config.save_host("builder", "")

    def test_remove(self, tmp_path: Path) -> None:
        cm = ConfigManager(base_dir=tmp_path)
        cm.save_host("builder", "10.0.0.20")
        assert cm.remove_host("builder") is True
        assert cm.remove_host("builder") is False
        assert ConfigManager(base_dir=tmp_path).host("builder") is None

    def test_label_without_username(self) -> None:
        assert HostEntry("b", "10.0.0.20").label == "10.0.0.20:22"
