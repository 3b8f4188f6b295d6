"""Entries, listing pages and progress events."""

from __future__ import annotations

import dataclasses
import enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime


class EntryType(enum.Enum):
    """Shape of a listed entry."""

    FILE = "file"
    DIRECTORY = "directory"
    BUCKET = "bucket"


@dataclasses.dataclass(frozen=True)
class EntryMetadata:
    """Provider-specific details attached to an :class:`Entry`.

    Every field is optional; providers fill in what they know.
    """

    content_type: str | None = None
    etag: str | None = None
    storage_class: str | None = None
    version_id: str | None = None
    permissions: str | None = None
    owner: str | None = None
    group: str | None = None
    accessed: datetime | None = None
    symlink_target: str | None = None
    region: str | None = None
    created_at: datetime | None = None
    total_size: int | None = None
    object_count: int | None = None
    custom: dict[str, str] = dataclasses.field(default_factory=dict)
    provider_data: dict[str, object] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(frozen=True, eq=False)
class Entry:
    """One listed file, directory or container.

    ``id`` is the stable identity and survives renames; ``path`` is the
    backend-relative location used for network calls.

    :param id: Opaque identity, unique within a listing snapshot.
    :param name: Display name (final path component).
    :param type: File, directory or bucket.
    :param path: Backend-relative path. Object-store directories end with ``/``.
    :param size: Size in bytes, if known.
    :param modified: Last modification time, if known.
    :param metadata: Optional provider-specific details.
    """

    id: str
    name: str
    type: EntryType
    path: str
    size: int | None = None
    modified: datetime | None = None
    metadata: EntryMetadata | None = None

    @property
    def is_directory(self) -> bool:
        return self.type is not EntryType.FILE

    def with_path(self, path: str, name: str | None = None) -> Entry:
        """Return a copy at a new location, keeping the identity."""
        if name is None:
            name = path.rstrip("/").rsplit("/", 1)[-1]
        return dataclasses.replace(self, path=path, name=name)

    def with_id(self, entry_id: str) -> Entry:
        return dataclasses.replace(self, id=entry_id)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Entry):
            return self.id == other.id
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.id)


@dataclasses.dataclass(frozen=True)
class ListResult:
    """One page of a directory listing.

    :param entries: Entries on this page.
    :param continuation_token: Opaque token for the next page.
    :param has_more: Whether another page exists.
    :param total_count: Total entry count, when the backend reports it.
    """

    entries: list[Entry]
    continuation_token: str | None = None
    has_more: bool = False
    total_count: int | None = None


def _percent(done: float, total: float | None) -> float:
    if not total:
        return 0.0
    return max(0.0, min(100.0, done * 100.0 / total))


@dataclasses.dataclass(frozen=True)
class ProgressEvent:
    """Progress of a long-running operation.

    ``files_processed`` and ``total_files`` are set by batch operations.
    """

    operation: str
    bytes_transferred: int = 0
    total_bytes: int | None = None
    percentage: float = 0.0
    current_file: str | None = None
    files_processed: int | None = None
    total_files: int | None = None

    @classmethod
    def for_bytes(
        cls,
        operation: str,
        bytes_transferred: int,
        total_bytes: int | None = None,
        current_file: str | None = None,
    ) -> ProgressEvent:
        return cls(
            operation=operation,
            bytes_transferred=bytes_transferred,
            total_bytes=total_bytes,
            percentage=_percent(bytes_transferred, total_bytes),
            current_file=current_file,
        )

    @classmethod
    def for_files(
        cls,
        operation: str,
        files_processed: int,
        total_files: int | None = None,
        current_file: str | None = None,
    ) -> ProgressEvent:
        return cls(
            operation=operation,
            percentage=_percent(files_processed, total_files),
            current_file=current_file,
            files_processed=files_processed,
            total_files=total_files,
        )
