"""Tests for sshcomm/utils/path_helpers.py."""

from __future__ import annotations

import pytest

from sshcomm.utils.path_helpers import (
    human_readable_size,
    split_remote_path,
    validate_remote_path,
)


class TestValidateRemotePath:
    @pytest.mark.parametrize(
        "path", ["/home/u/out.txt", "out.txt", "./a/b", "/", "../releases/out.txt", "/tmp/../etc/x"]
    )
    def test_accepts(self, path: str) -> None:
        assert validate_remote_path(path) is True

    @pytest.mark.parametrize("path", ["", "a\x00b", "a\nb", "a\rb"])
    def test_rejects(self, path: str) -> None:
        assert validate_remote_path(path) is False


class TestSplitRemotePath:
    def test_absolute(self) -> None:
        assert split_remote_path("/home/u/out.txt") == ("/home/u", "out.txt")

    def test_root_file(self) -> None:
        assert split_remote_path("/out.txt") == ("/", "out.txt")

    def test_bare_filename(self) -> None:
        assert split_remote_path("out.txt") == (".", "out.txt")

    def test_trailing_slash_rejected(self) -> None:
        with pytest.raises(ValueError, match="no filename"):
            split_remote_path("/home/u/")

    def test_parent_relative_kept_verbatim(self) -> None:
        assert split_remote_path("../releases/out.txt") == ("../releases", "out.txt")

    @pytest.mark.parametrize("path", ["..", "/home/u/..", "/home/u/."])
    def test_directory_components_have_no_filename(self, path: str) -> None:
        with pytest.raises(ValueError, match="no filename"):
            split_remote_path(path)

    def test_invalid_rejected(self) -> None:
        with pytest.raises(ValueError, match="Invalid remote path"):
            split_remote_path("/home/u/out\n.txt")


class TestHumanReadableSize:
    def test_bytes(self) -> None:
        assert human_readable_size(5) == "5 B"

    def test_kilobytes(self) -> None:
        assert human_readable_size(2048) == "2.0 KB"

    def test_negative(self) -> None:
        assert human_readable_size(-1) == "0 B"
