"""Tests for backend-relative key helpers."""

from __future__ import annotations

import pytest

from multistore._errors import InvalidPath
from multistore._path import (
    is_directory_key,
    join_key,
    key_name,
    normalize_key,
    parent_key,
    rebase_key,
    relative_key,
)


class TestNormalizeKey:
    def test_backslash_to_forward_slash(self) -> None:
        assert normalize_key("a\\b\\c") == "a/b/c"

    def test_leading_and_duplicate_slashes(self) -> None:
        assert normalize_key("//a//b/") == "a/b/"

    def test_dot_segments_dropped(self) -> None:
        assert normalize_key("./a/./b") == "a/b"

    def test_directory_flag(self) -> None:
        assert normalize_key("a/b", directory=True) == "a/b/"

    def test_root(self) -> None:
        assert normalize_key("/") == ""
        assert normalize_key("", directory=True) == ""

    @pytest.mark.parametrize("raw", ["../x", "a/../b", ".."])
    def test_double_dot_rejected(self, raw: str) -> None:
        with pytest.raises(InvalidPath):
            normalize_key(raw)

    def test_null_byte_rejected(self) -> None:
        with pytest.raises(InvalidPath, match="null byte"):
            normalize_key("a\0b")


class TestKeyHelpers:
    def test_is_directory_key(self) -> None:
        assert is_directory_key("")
        assert is_directory_key("a/")
        assert not is_directory_key("a")

    def test_join_key(self) -> None:
        assert join_key("uploads", "a.txt") == "uploads/a.txt"
        assert join_key("uploads/", "sub/") == "uploads/sub/"
        assert join_key("", "a.txt") == "a.txt"
        assert join_key("/", "a.txt") == "a.txt"

    def test_key_name(self) -> None:
        assert key_name("a/b/c.txt") == "c.txt"
        assert key_name("a/b/") == "b"
        assert key_name("top") == "top"

    def test_parent_key(self) -> None:
        assert parent_key("a/b/c.txt") == "a/b/"
        assert parent_key("a/b/") == "a/"
        assert parent_key("top.txt") == ""

    def test_relative_key(self) -> None:
        assert relative_key("dir/sub/b.txt", "dir/") == "sub/b.txt"
        with pytest.raises(InvalidPath):
            relative_key("other/b.txt", "dir/")

    def test_rebase_key(self) -> None:
        assert rebase_key("dir/sub/b.txt", "dir/", "copy/") == "copy/sub/b.txt"
