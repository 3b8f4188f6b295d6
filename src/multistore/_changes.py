"""Diff two listing snapshots into creates, deletes, moves, copies and reorders."""

from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING

from multistore._entry_id import generate_entry_id

if TYPE_CHECKING:
    from collections.abc import Sequence

    from multistore._entry_id import EntryIdMap
    from multistore._models import Entry

log = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class Reorder:
    """Same entry at a different list position. Informational only."""

    entry: Entry
    old_index: int
    new_index: int


@dataclasses.dataclass
class DetectedChanges:
    """Result of :func:`detect_changes`.

    :param creates: Edited entries with no counterpart in the original.
    :param deletes: Original entries missing from the edited list.
    :param moves: Original entry -> new path, for same-id path changes.
    :param copies: Original entry -> path of its duplicate.
    :param reorders: Position-only changes.
    """

    creates: list[Entry] = dataclasses.field(default_factory=list)
    deletes: list[Entry] = dataclasses.field(default_factory=list)
    moves: dict[Entry, str] = dataclasses.field(default_factory=dict)
    copies: dict[Entry, str] = dataclasses.field(default_factory=dict)
    reorders: list[Reorder] = dataclasses.field(default_factory=list)

    @property
    def total(self) -> int:
        """Number of changes that translate into operations."""
        return len(self.creates) + len(self.deletes) + len(self.moves) + len(self.copies)

    @property
    def is_empty(self) -> bool:
        return self.total == 0


def _resolve_ids(edited: Sequence[Entry], id_map: EntryIdMap) -> list[Entry]:
    resolved = []
    for entry in edited:
        if not entry.id:
            entry = entry.with_id(id_map.get_id(entry.path) or generate_entry_id())
        resolved.append(entry)
    return resolved


def detect_changes(original: Sequence[Entry], edited: Sequence[Entry], id_map: EntryIdMap) -> DetectedChanges:
    """Compare two snapshots of the same directory.

    Identity is the entry id, never the path: only a same-id path change
    is a move. A new id landing on an original path with the same type is
    read as a duplicate of that original and reported as a copy instead of
    a create.

    :param original: Last-known listing.
    :param edited: Listing after user edits. Entries without an id are
        resolved through ``id_map`` or given a fresh id.
    :param id_map: Identity map for the directory.
    """
    edited = _resolve_ids(edited, id_map)
    changes = DetectedChanges()

    original_by_id = {e.id: e for e in original}
    original_by_path = {e.path: e for e in original}
    edited_by_id = {e.id: e for e in edited}

    for entry in edited:
        if entry.id in original_by_id:
            continue
        at_path = original_by_path.get(entry.path)
        if at_path is not None and at_path.type is entry.type:
            changes.copies[at_path] = entry.path
        else:
            changes.creates.append(entry)

    for entry in original:
        counterpart = edited_by_id.get(entry.id)
        if counterpart is None:
            changes.deletes.append(entry)
        elif counterpart.path != entry.path:
            changes.moves[entry] = counterpart.path

    edited_index = {e.id: j for j, e in enumerate(edited)}
    for i, entry in enumerate(original):
        j = edited_index.get(entry.id)
        if j is not None and j != i:
            changes.reorders.append(Reorder(entry, i, j))

    log.debug(
        "Detected %d creates, %d deletes, %d moves, %d copies, %d reorders",
        len(changes.creates),
        len(changes.deletes),
        len(changes.moves),
        len(changes.copies),
        len(changes.reorders),
    )
    return changes
