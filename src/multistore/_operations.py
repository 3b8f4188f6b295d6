"""Typed, immutable operations and the plan that orders them."""

from __future__ import annotations

import dataclasses
import enum
from typing import TYPE_CHECKING, Union

from multistore._models import EntryType

if TYPE_CHECKING:
    from collections.abc import Iterator

    from multistore._models import Entry


class OperationKind(enum.Enum):
    CREATE = "create"
    DELETE = "delete"
    MOVE = "move"
    COPY = "copy"
    DOWNLOAD = "download"
    UPLOAD = "upload"


@dataclasses.dataclass(frozen=True)
class CreateOperation:
    """Create a file or directory at ``path``.

    :param content: Initial file content; ignored for directories.
    """

    id: str
    path: str
    entry_type: EntryType = EntryType.FILE
    content: bytes | None = None
    entry: Entry | None = None

    kind = OperationKind.CREATE

    @property
    def source_path(self) -> str:
        return self.path


@dataclasses.dataclass(frozen=True)
class DeleteOperation:
    id: str
    path: str
    entry: Entry | None = None
    recursive: bool = False

    kind = OperationKind.DELETE

    @property
    def source_path(self) -> str:
        return self.path


@dataclasses.dataclass(frozen=True)
class _TransferOperation:
    id: str
    source: str
    destination: str
    entry: Entry | None = None
    recursive: bool = False

    @property
    def source_path(self) -> str:
        return self.source


@dataclasses.dataclass(frozen=True)
class MoveOperation(_TransferOperation):
    kind = OperationKind.MOVE


@dataclasses.dataclass(frozen=True)
class CopyOperation(_TransferOperation):
    kind = OperationKind.COPY


@dataclasses.dataclass(frozen=True)
class DownloadOperation(_TransferOperation):
    """Remote ``source`` to local ``destination``."""

    kind = OperationKind.DOWNLOAD


@dataclasses.dataclass(frozen=True)
class UploadOperation(_TransferOperation):
    """Local ``source`` to remote ``destination``."""

    kind = OperationKind.UPLOAD


Operation = Union[  # noqa: UP007
    CreateOperation,
    DeleteOperation,
    MoveOperation,
    CopyOperation,
    DownloadOperation,
    UploadOperation,
]


@dataclasses.dataclass(frozen=True)
class PlanSummary:
    creates: int = 0
    deletes: int = 0
    moves: int = 0
    copies: int = 0
    total: int = 0


@dataclasses.dataclass(frozen=True)
class OperationPlan:
    """Ordered operations plus per-kind counts.

    Built once per reconciliation pass and consumed once.
    """

    operations: tuple[Operation, ...] = ()
    summary: PlanSummary = PlanSummary()

    def __iter__(self) -> Iterator[Operation]:
        return iter(self.operations)

    def __len__(self) -> int:
        return len(self.operations)

    @property
    def is_empty(self) -> bool:
        return not self.operations
