"""Turn detected changes into an ordered, conflict-checked plan."""

from __future__ import annotations

import itertools
import logging
from typing import TYPE_CHECKING

from multistore._operations import (
    CopyOperation,
    CreateOperation,
    DeleteOperation,
    MoveOperation,
    OperationPlan,
    PlanSummary,
)
from multistore._result import OperationResult

if TYPE_CHECKING:
    from collections.abc import Callable

    from multistore._changes import DetectedChanges
    from multistore._operations import Operation

log = logging.getLogger(__name__)


def _sequential_ids() -> Callable[[], str]:
    counter = itertools.count()
    return lambda: f"op-{next(counter)}"


def build_operation_plan(changes: DetectedChanges, id_generator: Callable[[], str] | None = None) -> OperationPlan:
    """Order ``changes`` as creates, copies, moves, then deletes.

    Deletes run last so nothing a later operation reads from is gone.

    :param changes: Output of :func:`~multistore.detect_changes`.
    :param id_generator: Produces operation ids; defaults to ``op-0``, ``op-1``, ...
    """
    next_id = id_generator or _sequential_ids()
    operations: list[Operation] = []

    for entry in changes.creates:
        operations.append(CreateOperation(id=next_id(), path=entry.path, entry_type=entry.type, entry=entry))
    for entry, dest in changes.copies.items():
        operations.append(
            CopyOperation(id=next_id(), source=entry.path, destination=dest, entry=entry, recursive=entry.is_directory)
        )
    for entry, dest in changes.moves.items():
        operations.append(
            MoveOperation(id=next_id(), source=entry.path, destination=dest, entry=entry, recursive=entry.is_directory)
        )
    for entry in changes.deletes:
        operations.append(DeleteOperation(id=next_id(), path=entry.path, entry=entry, recursive=entry.is_directory))

    summary = PlanSummary(
        creates=len(changes.creates),
        deletes=len(changes.deletes),
        moves=len(changes.moves),
        copies=len(changes.copies),
        total=len(operations),
    )
    log.debug("Built plan with %d operations", summary.total)
    return OperationPlan(operations=tuple(operations), summary=summary)


def find_path_conflicts(plan: OperationPlan) -> list[str]:
    """Return every source path addressed by more than one operation, in plan order."""
    seen: set[str] = set()
    conflicts: list[str] = []
    for op in plan.operations:
        path = op.source_path
        if path in seen and path not in conflicts:
            conflicts.append(path)
        seen.add(path)
    return conflicts


def validate_operation_plan(plan: OperationPlan) -> OperationResult[None]:
    """Reject plans where two operations address the same source path.

    Pure and I/O free. Returns a ``CONFLICT`` result naming the first
    duplicated path, otherwise success.
    """
    conflicts = find_path_conflicts(plan)
    if conflicts:
        path = conflicts[0]
        ops = [op.id for op in plan.operations if op.source_path == path]
        return OperationResult.conflict(f"Operations {', '.join(ops)} all address path {path!r}", path=path)
    return OperationResult.success()
