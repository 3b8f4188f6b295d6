"""Shared test fixtures."""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING

import pytest

from multistore import Entry, EntryType
from multistore.providers import MemoryProvider

if TYPE_CHECKING:
    from collections.abc import Callable


@pytest.fixture
def memory() -> MemoryProvider:
    return MemoryProvider("test-bucket")


@pytest.fixture
def make_entry() -> Callable[..., Entry]:
    """Build entries with predictable ids (``e0``, ``e1``, ...) unless one is given."""
    counter = itertools.count()

    def _make(path: str, *, id: str | None = None, directory: bool = False, size: int | None = None) -> Entry:
        return Entry(
            id=id if id is not None else f"e{next(counter)}",
            name=path.rstrip("/").rsplit("/", 1)[-1],
            type=EntryType.DIRECTORY if directory else EntryType.FILE,
            path=path,
            size=size,
        )

    return _make
