"""Stable entry identities and the id <-> path map."""

from __future__ import annotations

import re
import secrets
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from multistore._models import Entry

_ENTRY_ID_RE = re.compile(r"^entry_[a-z0-9]+_[a-f0-9]{16}$")
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(n: int) -> str:
    if n == 0:
        return "0"
    digits = []
    while n:
        n, rem = divmod(n, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_entry_id() -> str:
    """Return a fresh id of the form ``entry_<base36 millis>_<16 hex>``."""
    millis = time.time_ns() // 1_000_000
    return f"entry_{_base36(millis)}_{secrets.token_hex(8)}"


def is_valid_entry_id(entry_id: str) -> bool:
    return bool(_ENTRY_ID_RE.match(entry_id))


class EntryIdMap:
    """Two-way ``path <-> id`` map; the only record of an id's current path.

    Re-registering a path under a different id drops the old id's binding.
    Registering an id at a new path moves it there, which is how renames
    are recorded.
    """

    def __init__(self) -> None:
        self._path_to_id: dict[str, str] = {}
        self._id_to_path: dict[str, str] = {}

    def register_entry(self, path: str, entry_id: str) -> None:
        old_id = self._path_to_id.get(path)
        if old_id is not None and old_id != entry_id:
            self._id_to_path.pop(old_id, None)
        old_path = self._id_to_path.get(entry_id)
        if old_path is not None and old_path != path:
            self._path_to_id.pop(old_path, None)
        self._path_to_id[path] = entry_id
        self._id_to_path[entry_id] = path

    def register_entries(self, entries: Iterable[Entry]) -> None:
        for entry in entries:
            self.register_entry(entry.path, entry.id)

    def get_id(self, path: str) -> str | None:
        return self._path_to_id.get(path)

    def get_path(self, entry_id: str) -> str | None:
        return self._id_to_path.get(entry_id)

    def has_entry(self, path: str) -> bool:
        return path in self._path_to_id

    def all_entries(self) -> list[tuple[str, str]]:
        """Every ``(path, id)`` pair in registration order."""
        return list(self._path_to_id.items())

    def remove_entry(self, path: str) -> None:
        entry_id = self._path_to_id.pop(path, None)
        if entry_id is not None:
            self._id_to_path.pop(entry_id, None)

    def clear(self) -> None:
        self._path_to_id.clear()
        self._id_to_path.clear()

    def __len__(self) -> int:
        return len(self._path_to_id)

    def __contains__(self, path: object) -> bool:
        return path in self._path_to_id

    def __repr__(self) -> str:
        return f"EntryIdMap(size={len(self)})"
