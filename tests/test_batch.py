"""Tests for the paginated batch object engine."""

from __future__ import annotations

import pytest

from multistore import (
    ALREADY_CANCELLED,
    BatchSummary,
    CancellationTokenSource,
    ObjectPage,
    OperationResult,
    OperationStatus,
    batch_object_operation,
    copy_directory,
    delete_directory,
    move_directory,
    move_object,
)
from multistore.providers import MemoryProvider

BUCKET = "test-bucket"


class FlakyClient:
    """Wraps a provider and fails selected calls."""

    def __init__(self, inner: MemoryProvider, *, fail_copy: tuple[str, ...] = (), fail_listing: bool = False) -> None:
        self.inner = inner
        self.fail_copy = set(fail_copy)
        self.fail_listing = fail_listing
        self.copied: list[str] = []
        self.deleted: list[str] = []

    async def list_objects_page(
        self, bucket: str, prefix: str, *, continuation_token: str | None = None, max_keys: int | None = None
    ) -> OperationResult[ObjectPage]:
        if self.fail_listing:
            return OperationResult.connection_failed("listing unavailable")
        return await self.inner.list_objects_page(
            bucket, prefix, continuation_token=continuation_token, max_keys=max_keys
        )

    async def copy_object(
        self, source_bucket: str, source_key: str, dest_bucket: str, dest_key: str
    ) -> OperationResult[None]:
        self.copied.append(source_key)
        if source_key in self.fail_copy:
            return OperationResult.failure(f"copy of {source_key} failed")
        return await self.inner.copy_object(source_bucket, source_key, dest_bucket, dest_key)

    async def delete_object(self, bucket: str, key: str) -> OperationResult[None]:
        self.deleted.append(key)
        return await self.inner.delete_object(bucket, key)


class RecordingClient:
    """Serves fixed listing pages and records every call in order."""

    def __init__(self, pages: list[list[str]]) -> None:
        self.pages = pages
        self.calls: list[tuple[str, ...]] = []

    async def list_objects_page(
        self, bucket: str, prefix: str, *, continuation_token: str | None = None, max_keys: int | None = None
    ) -> OperationResult[ObjectPage]:
        self.calls.append(("list", continuation_token or ""))
        index = int(continuation_token or 0)
        following = str(index + 1) if index + 1 < len(self.pages) else None
        return OperationResult.success(ObjectPage(keys=list(self.pages[index]), continuation_token=following))

    async def copy_object(
        self, source_bucket: str, source_key: str, dest_bucket: str, dest_key: str
    ) -> OperationResult[None]:
        self.calls.append(("copy", source_key, dest_key))
        return OperationResult.success()

    async def delete_object(self, bucket: str, key: str) -> OperationResult[None]:
        self.calls.append(("delete", key))
        return OperationResult.success()


@pytest.fixture
def store() -> MemoryProvider:
    provider = MemoryProvider(BUCKET, buckets=["other"])
    for key in ("src/", "src/a.txt", "src/sub/b.txt", "outside.txt"):
        provider._put_object(BUCKET, key, key.encode(), None, None)
    return provider


def _fill(provider: MemoryProvider, count: int, prefix: str = "src/") -> None:
    for i in range(count):
        provider._put_object(BUCKET, f"{prefix}k{i}", b"x", None, None)


class TestCopy:
    @pytest.mark.asyncio
    async def test_copy_directory(self, store: MemoryProvider) -> None:
        result = await copy_directory(store, BUCKET, "src/", BUCKET, "dst/")
        assert result.ok
        summary = result.data
        assert isinstance(summary, BatchSummary)
        assert (summary.processed, summary.succeeded, summary.failed, summary.skipped) == (2, 2, 0, 0)
        assert store.keys() == ["dst/a.txt", "dst/sub/b.txt", "outside.txt", "src/", "src/a.txt", "src/sub/b.txt"]
        assert (await store.read("dst/sub/b.txt")).data == b"src/sub/b.txt"

    @pytest.mark.asyncio
    async def test_copy_across_buckets(self, store: MemoryProvider) -> None:
        result = await copy_directory(store, BUCKET, "src/", "other", "src/")
        assert result.ok
        assert store.keys("other") == ["src/a.txt", "src/sub/b.txt"]

    @pytest.mark.asyncio
    async def test_exclude_key(self, store: MemoryProvider) -> None:
        result = await batch_object_operation(store, BUCKET, "src/", BUCKET, "dst/", exclude_key="src/a.txt")
        assert result.ok
        assert [k for k in store.keys() if k.startswith("dst/")] == ["dst/sub/b.txt"]

    @pytest.mark.asyncio
    async def test_destination_inside_source_is_conflict(self, store: MemoryProvider) -> None:
        before = store.keys()
        result = await copy_directory(store, BUCKET, "src/", BUCKET, "src/inner/")
        assert result.status is OperationStatus.CONFLICT
        assert store.keys() == before

    @pytest.mark.asyncio
    async def test_empty_prefix(self, store: MemoryProvider) -> None:
        result = await copy_directory(store, BUCKET, "nothing/", BUCKET, "dst/")
        assert result.ok
        assert result.data == BatchSummary()

    @pytest.mark.asyncio
    async def test_per_object_failure_continues(self, store: MemoryProvider) -> None:
        client = FlakyClient(store, fail_copy=("src/a.txt",))
        result = await copy_directory(client, BUCKET, "src/", BUCKET, "dst/")
        assert result.status is OperationStatus.ERROR
        summary = result.data
        assert isinstance(summary, BatchSummary)
        assert (summary.processed, summary.succeeded, summary.failed) == (2, 1, 1)
        assert [f.key for f in summary.errors] == ["src/a.txt"]
        assert "copy of src/a.txt failed" in result.message
        assert "dst/sub/b.txt" in store.keys()


class TestPagination:
    @pytest.mark.asyncio
    async def test_progress_total_grows_with_pages(self) -> None:
        provider = MemoryProvider(BUCKET)
        _fill(provider, 5)
        calls: list[tuple[int, int, str]] = []
        result = await copy_directory(
            provider, BUCKET, "src/", BUCKET, "dst/", page_size=2, on_progress=lambda *a: calls.append(a)
        )
        assert result.ok
        assert [(done, total) for done, total, _ in calls] == [(1, 2), (2, 2), (3, 4), (4, 4), (5, 5)]
        assert [key for _, _, key in calls] == [f"src/k{i}" for i in range(5)]
        assert len([k for k in provider.keys() if k.startswith("dst/")]) == 5

    @pytest.mark.asyncio
    async def test_delete_while_paging(self) -> None:
        provider = MemoryProvider(BUCKET)
        provider._put_object(BUCKET, "src/", b"", None, None)
        _fill(provider, 7)
        provider._put_object(BUCKET, "keep.txt", b"", None, None)
        result = await delete_directory(provider, BUCKET, "src/", page_size=3)
        assert result.ok
        assert result.data is not None and result.data.succeeded == 8
        assert provider.keys() == ["keep.txt"]


class TestMove:
    @pytest.mark.asyncio
    async def test_move_directory(self, store: MemoryProvider) -> None:
        result = await move_directory(store, BUCKET, "src/", "dst/")
        assert result.ok
        # The source marker is left for the caller.
        assert store.keys() == ["dst/a.txt", "dst/sub/b.txt", "outside.txt", "src/"]

    @pytest.mark.asyncio
    async def test_failed_copy_keeps_source(self, store: MemoryProvider) -> None:
        client = FlakyClient(store, fail_copy=("src/a.txt",))
        result = await move_directory(client, BUCKET, "src/", "dst/")
        assert result.status is OperationStatus.ERROR
        assert "src/a.txt" not in client.deleted
        assert client.deleted == ["src/sub/b.txt"]
        assert "src/a.txt" in store.keys()
        assert "dst/sub/b.txt" in store.keys()

    @pytest.mark.asyncio
    async def test_move_object(self, store: MemoryProvider) -> None:
        result = await move_object(store, BUCKET, "outside.txt", "inside.txt")
        assert result.ok
        assert "outside.txt" not in store.keys()
        assert (await store.read("inside.txt")).data == b"outside.txt"

    @pytest.mark.asyncio
    async def test_move_object_never_deletes_after_failed_copy(self, store: MemoryProvider) -> None:
        client = FlakyClient(store, fail_copy=("outside.txt",))
        result = await move_object(client, BUCKET, "outside.txt", "inside.txt")
        assert not result.ok
        assert client.deleted == []
        assert "outside.txt" in store.keys()


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, store: MemoryProvider) -> None:
        result = await copy_directory(store, BUCKET, "src/", BUCKET, "dst/", token=ALREADY_CANCELLED)
        assert result.status is OperationStatus.CANCELLED
        summary = result.data
        assert isinstance(summary, BatchSummary)
        assert summary.cancelled
        assert summary.processed == 0
        assert not any(k.startswith("dst/") for k in store.keys())

    @pytest.mark.asyncio
    async def test_cancel_skips_rest_of_page(self) -> None:
        provider = MemoryProvider(BUCKET)
        _fill(provider, 4)
        source = CancellationTokenSource()

        def on_progress(done: int, total: int, key: str) -> None:
            if done == 1:
                source.cancel()

        result = await copy_directory(
            provider, BUCKET, "src/", BUCKET, "dst/", token=source.token, on_progress=on_progress
        )
        assert result.status is OperationStatus.CANCELLED
        summary = result.data
        assert isinstance(summary, BatchSummary)
        assert (summary.processed, summary.succeeded, summary.skipped) == (1, 1, 3)
        assert [k for k in provider.keys() if k.startswith("dst/")] == ["dst/k0"]


class TestListingFailure:
    @pytest.mark.asyncio
    async def test_listing_failure_aborts(self, store: MemoryProvider) -> None:
        client = FlakyClient(store, fail_listing=True)
        result = await delete_directory(client, BUCKET, "src/")
        assert result.status is OperationStatus.CONNECTION_FAILED
        assert isinstance(result.data, BatchSummary)
        assert result.data.processed == 0
        assert client.deleted == []
        assert "src/a.txt" in store.keys()


class TestCallSequence:
    @pytest.mark.asyncio
    async def test_two_page_move(self) -> None:
        client = RecordingClient([["d/a"], ["d/b"]])
        result = await move_directory(client, BUCKET, "d/", "e/")
        assert result.ok
        assert client.calls == [
            ("list", ""),
            ("copy", "d/a", "e/a"),
            ("delete", "d/a"),
            ("list", "1"),
            ("copy", "d/b", "e/b"),
            ("delete", "d/b"),
        ]
        assert result.data is not None
        assert (result.data.processed, result.data.succeeded) == (2, 2)

    @pytest.mark.asyncio
    async def test_two_page_copy_never_deletes(self) -> None:
        client = RecordingClient([["d/a"], ["d/b"]])
        result = await copy_directory(client, BUCKET, "d/", BUCKET, "e/")
        assert result.ok
        assert [call[0] for call in client.calls] == ["list", "copy", "list", "copy"]

    @pytest.mark.asyncio
    async def test_move_object_is_copy_then_delete(self) -> None:
        client = RecordingClient([])
        result = await move_object(client, BUCKET, "a.txt", "b.txt")
        assert result.ok
        assert client.calls == [("copy", "a.txt", "b.txt"), ("delete", "a.txt")]


class TestPrefixBoundaries:
    @pytest.mark.asyncio
    async def test_sibling_prefix_allowed(self) -> None:
        provider = MemoryProvider(BUCKET)
        provider._put_object(BUCKET, "logs/a.txt", b"a", None, None)
        result = await batch_object_operation(provider, BUCKET, "logs", BUCKET, "logs-archive")
        assert result.ok
        assert provider.keys() == ["logs-archive/a.txt", "logs/a.txt"]

    @pytest.mark.asyncio
    async def test_sibling_prefix_with_trailing_slash_allowed(self) -> None:
        client = RecordingClient([[]])
        result = await batch_object_operation(client, BUCKET, "logs", BUCKET, "logs-archive/")
        assert result.ok

    @pytest.mark.asyncio
    @pytest.mark.parametrize("dest", ["logs/inner/", "logs/", "logs"])
    async def test_nested_prefix_conflicts(self, dest: str) -> None:
        client = RecordingClient([["logs/a.txt"]])
        result = await batch_object_operation(client, BUCKET, "logs", BUCKET, dest)
        assert result.status is OperationStatus.CONFLICT
        assert client.calls == []
