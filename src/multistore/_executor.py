"""Run an operation plan against a provider, and the detect-plan-execute pipeline."""

from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING

from multistore._cancellation import NEVER_CANCELLED
from multistore._changes import detect_changes
from multistore._models import EntryType, ProgressEvent
from multistore._operations import (
    CopyOperation,
    CreateOperation,
    DeleteOperation,
    DownloadOperation,
    MoveOperation,
    UploadOperation,
)
from multistore._planner import build_operation_plan, validate_operation_plan
from multistore._result import OperationResult, OperationStatus

if TYPE_CHECKING:
    from collections.abc import Sequence

    from multistore._cancellation import CancellationToken
    from multistore._entry_id import EntryIdMap
    from multistore._models import Entry
    from multistore._operations import Operation, OperationPlan
    from multistore._provider import Provider
    from multistore._result import OperationError
    from multistore._types import ProgressCallback

log = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class OperationFailure:
    operation: Operation
    error: OperationError | None

    @property
    def message(self) -> str:
        return self.error.message if self.error else "unknown error"


@dataclasses.dataclass
class ExecutionReport:
    """What happened to each operation of a plan.

    :param succeeded: Ids of operations that completed.
    :param failed: Ids of operations whose provider call failed.
    :param skipped: Ids never attempted because the run was cancelled.
    :param cancelled: Whether the run stopped on cancellation.
    :param failures: Error detail per failed operation, in plan order.
    """

    succeeded: list[str] = dataclasses.field(default_factory=list)
    failed: list[str] = dataclasses.field(default_factory=list)
    skipped: list[str] = dataclasses.field(default_factory=list)
    cancelled: bool = False
    failures: list[OperationFailure] = dataclasses.field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed) + len(self.skipped)

    def summary(self) -> str:
        """One line describing the run, listing every failure."""
        text = f"{len(self.succeeded)} of {self.total} operations succeeded"
        if self.failed:
            text += f", {len(self.failed)} failed"
        if self.skipped:
            text += f", {len(self.skipped)} skipped"
        if self.cancelled:
            text += " (cancelled)"
        if self.failures:
            details = "; ".join(
                f"{f.operation.kind.value} {f.operation.source_path}: {f.message}" for f in self.failures
            )
            text += f": {details}"
        return text


async def _dispatch(provider: Provider, op: Operation, token: CancellationToken) -> OperationResult[object]:
    if isinstance(op, CreateOperation):
        if op.entry_type is EntryType.FILE:
            return await provider.write(op.path, op.content if op.content is not None else b"")
        return await provider.mkdir(op.path)
    if isinstance(op, CopyOperation):
        return await provider.copy(op.source, op.destination, recursive=op.recursive, token=token)
    if isinstance(op, MoveOperation):
        return await provider.move(op.source, op.destination, recursive=op.recursive, token=token)
    if isinstance(op, DeleteOperation):
        return await provider.delete(op.path, recursive=op.recursive, token=token)
    if isinstance(op, DownloadOperation):
        return await provider.download_to_local(op.source, op.destination, recursive=op.recursive, token=token)
    if isinstance(op, UploadOperation):
        return await provider.upload_from_local(op.source, op.destination, recursive=op.recursive, token=token)
    raise TypeError(f"Unknown operation type: {type(op).__name__}")


async def execute_plan(
    provider: Provider,
    plan: OperationPlan,
    *,
    token: CancellationToken = NEVER_CANCELLED,
    on_progress: ProgressCallback | None = None,
) -> OperationResult[ExecutionReport]:
    """Run every operation of ``plan`` in order.

    The plan is validated first; an invalid plan returns its ``CONFLICT``
    result without touching the provider. A failed operation is recorded
    and the run continues. The token is checked before each operation;
    once cancelled, the rest of the plan is reported as skipped.

    :returns: ``SUCCESS``, ``CANCELLED`` or ``ERROR``, with the
        :class:`ExecutionReport` attached in every case.
    """
    validation = validate_operation_plan(plan)
    if not validation.ok:
        return validation  # type: ignore[return-value]

    report = ExecutionReport()
    ops = list(plan.operations)
    for index, op in enumerate(ops):
        if token.is_cancelled:
            report.cancelled = True
            report.skipped.extend(o.id for o in ops[index:])
            break
        log.debug("Executing %s %s (%s)", op.kind.value, op.source_path, op.id)
        result = await _dispatch(provider, op, token)
        if result.status is OperationStatus.CANCELLED:
            report.cancelled = True
            report.skipped.extend(o.id for o in ops[index:])
            break
        if result.ok:
            report.succeeded.append(op.id)
        else:
            log.warning("Operation %s (%s %s) failed: %s", op.id, op.kind.value, op.source_path, result.message)
            report.failed.append(op.id)
            report.failures.append(OperationFailure(op, result.error))
        if on_progress is not None:
            on_progress(ProgressEvent.for_files("execute", index + 1, len(ops), current_file=op.source_path))

    if report.cancelled:
        log.info("Plan execution cancelled: %s", report.summary())
        return OperationResult.cancelled(report)
    if report.failed:
        return OperationResult.failure(report.summary(), data=report)
    return OperationResult.success(report)


async def reconcile(
    provider: Provider,
    original: Sequence[Entry],
    edited: Sequence[Entry],
    id_map: EntryIdMap,
    *,
    token: CancellationToken = NEVER_CANCELLED,
    on_progress: ProgressCallback | None = None,
) -> OperationResult[ExecutionReport]:
    """Detect the changes between two listings, plan them and execute the plan.

    On success the identity map is updated with the entries' new paths.
    """
    changes = detect_changes(original, edited, id_map)
    plan = build_operation_plan(changes)
    if plan.is_empty:
        return OperationResult.success(ExecutionReport())
    result = await execute_plan(provider, plan, token=token, on_progress=on_progress)
    report = result.data
    if isinstance(report, ExecutionReport):
        done = set(report.succeeded)
        for op in plan.operations:
            if op.id not in done:
                continue
            if isinstance(op, MoveOperation) and op.entry is not None:
                id_map.register_entry(op.destination, op.entry.id)
            elif isinstance(op, DeleteOperation):
                id_map.remove_entry(op.path)
            elif isinstance(op, CreateOperation) and op.entry is not None:
                id_map.register_entry(op.path, op.entry.id)
    return result
