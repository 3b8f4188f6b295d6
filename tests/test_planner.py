"""Tests for operation planning and plan validation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from multistore import (
    CopyOperation,
    CreateOperation,
    DeleteOperation,
    DetectedChanges,
    EntryType,
    MoveOperation,
    OperationKind,
    OperationPlan,
    OperationStatus,
    build_operation_plan,
    find_path_conflicts,
    validate_operation_plan,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from multistore import Entry


class TestBuildOperationPlan:
    def test_empty(self) -> None:
        plan = build_operation_plan(DetectedChanges())
        assert plan.is_empty
        assert len(plan) == 0
        assert plan.summary.total == 0

    def test_order_creates_copies_moves_deletes(self, make_entry: Callable[..., Entry]) -> None:
        created = make_entry("new.txt")
        copied = make_entry("c.txt")
        moved = make_entry("m.txt")
        deleted = make_entry("d.txt")
        changes = DetectedChanges(
            creates=[created],
            deletes=[deleted],
            moves={moved: "moved/m.txt"},
            copies={copied: "c copy.txt"},
        )
        plan = build_operation_plan(changes)
        assert [op.kind for op in plan] == [
            OperationKind.CREATE,
            OperationKind.COPY,
            OperationKind.MOVE,
            OperationKind.DELETE,
        ]
        assert [op.id for op in plan] == ["op-0", "op-1", "op-2", "op-3"]

    def test_summary_counts(self, make_entry: Callable[..., Entry]) -> None:
        changes = DetectedChanges(creates=[make_entry("a"), make_entry("b")], deletes=[make_entry("c")])
        summary = build_operation_plan(changes).summary
        assert (summary.creates, summary.deletes, summary.moves, summary.copies, summary.total) == (2, 1, 0, 0, 3)

    def test_operation_fields(self, make_entry: Callable[..., Entry]) -> None:
        folder = make_entry("docs/", directory=True)
        changes = DetectedChanges(creates=[make_entry("new/", directory=True)], moves={folder: "archive/"})
        create, move = build_operation_plan(changes).operations
        assert isinstance(create, CreateOperation)
        assert create.entry_type is EntryType.DIRECTORY
        assert isinstance(move, MoveOperation)
        assert (move.source, move.destination, move.recursive) == ("docs/", "archive/", True)
        assert move.entry == folder

    def test_deletes_of_files_are_not_recursive(self, make_entry: Callable[..., Entry]) -> None:
        (op,) = build_operation_plan(DetectedChanges(deletes=[make_entry("a.txt")])).operations
        assert isinstance(op, DeleteOperation)
        assert op.recursive is False

    def test_custom_id_generator(self, make_entry: Callable[..., Entry]) -> None:
        ids = iter(["x", "y"])
        plan = build_operation_plan(
            DetectedChanges(creates=[make_entry("a"), make_entry("b")]), id_generator=lambda: next(ids)
        )
        assert [op.id for op in plan] == ["x", "y"]


class TestValidateOperationPlan:
    def test_valid(self) -> None:
        plan = OperationPlan(
            operations=(
                CopyOperation(id="1", source="a.txt", destination="b.txt"),
                DeleteOperation(id="2", path="c.txt"),
            )
        )
        assert validate_operation_plan(plan).ok
        assert find_path_conflicts(plan) == []

    def test_empty_plan_is_valid(self) -> None:
        assert validate_operation_plan(OperationPlan()).ok

    def test_two_operations_on_same_source(self) -> None:
        plan = OperationPlan(
            operations=(
                MoveOperation(id="1", source="a.txt", destination="b.txt"),
                DeleteOperation(id="2", path="a.txt"),
            )
        )
        result = validate_operation_plan(plan)
        assert result.status is OperationStatus.CONFLICT
        assert result.data == "a.txt"
        assert "1, 2" in result.message

    def test_conflicts_listed_once_in_plan_order(self) -> None:
        plan = OperationPlan(
            operations=(
                DeleteOperation(id="1", path="b"),
                DeleteOperation(id="2", path="a"),
                DeleteOperation(id="3", path="b"),
                DeleteOperation(id="4", path="a"),
                DeleteOperation(id="5", path="b"),
            )
        )
        assert find_path_conflicts(plan) == ["b", "a"]
