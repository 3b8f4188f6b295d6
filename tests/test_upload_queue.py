"""Tests for the upload queue."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from multistore import (
    ALREADY_CANCELLED,
    OperationResult,
    UploadQueue,
    UploadStatus,
)
from multistore.providers import MemoryProvider

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def files(tmp_path: Path) -> list[str]:
    paths = []
    for name, size in (("a.txt", 10), ("b.txt", 20), ("c.txt", 30)):
        p = tmp_path / name
        p.write_bytes(b"x" * size)
        paths.append(str(p))
    return paths


class TestQueueManagement:
    def test_add_files(self, files: list[str]) -> None:
        queue = UploadQueue()
        ids = queue.add_files(files, "uploads")
        assert len(ids) == 3
        items = queue.all_items()
        assert [i.remote_path for i in items] == ["uploads/a.txt", "uploads/b.txt", "uploads/c.txt"]
        assert [i.size for i in items] == [10, 20, 30]
        assert all(i.status is UploadStatus.PENDING for i in items)

    def test_add_files_with_known_sizes(self) -> None:
        queue = UploadQueue()
        (item_id,) = queue.add_files(["/nowhere/x.bin"], "", sizes={"/nowhere/x.bin": 99})
        item = queue.get_item(item_id)
        assert item is not None
        assert item.size == 99
        assert item.remote_path == "x.bin"

    def test_unknown_size_defaults_to_zero(self) -> None:
        queue = UploadQueue()
        (item_id,) = queue.add_files(["/nowhere/x.bin"], "dest")
        assert queue.get_item(item_id).size == 0  # type: ignore[union-attr]

    def test_get_unknown_item(self) -> None:
        assert UploadQueue().get_item("nope") is None

    def test_is_duplicate(self, files: list[str]) -> None:
        queue = UploadQueue()
        (item_id, *_) = queue.add_files(files, "uploads")
        assert queue.is_duplicate(files[0], "uploads")
        assert not queue.is_duplicate(files[0], "elsewhere")
        queue.mark_completed(item_id)
        assert not queue.is_duplicate(files[0], "uploads")

    def test_clear_completed(self, files: list[str]) -> None:
        queue = UploadQueue()
        a, b, c = queue.add_files(files, "uploads")
        queue.mark_completed(a)
        queue.cancel(b)
        queue.mark_failed(c, "boom")
        assert queue.clear_completed() == 2
        assert [i.id for i in queue.all_items()] == [c]

    def test_clear(self, files: list[str]) -> None:
        queue = UploadQueue()
        queue.add_files(files, "uploads")
        queue.clear()
        assert len(queue) == 0

    def test_invalid_concurrency(self) -> None:
        with pytest.raises(ValueError):
            UploadQueue(max_concurrent=0)


class TestStateTransitions:
    def test_progress_and_completion(self, files: list[str]) -> None:
        queue = UploadQueue()
        (item_id, *_) = queue.add_files(files, "uploads")
        queue.mark_uploading(item_id)
        queue.update_progress(item_id, 5, 10)
        item = queue.get_item(item_id)
        assert item is not None
        assert item.status is UploadStatus.UPLOADING
        assert item.started_at is not None
        assert (item.bytes_uploaded, item.progress) == (5, 50)
        queue.mark_completed(item_id)
        assert (item.status, item.progress, item.bytes_uploaded) == (UploadStatus.COMPLETED, 100, 10)
        assert item.completed_at is not None

    def test_retry_is_bounded(self, files: list[str]) -> None:
        queue = UploadQueue(max_retries=2)
        (item_id, *_) = queue.add_files(files, "uploads")
        for _ in range(2):
            queue.mark_failed(item_id, "boom")
            assert queue.retry(item_id)
        queue.mark_failed(item_id, "boom")
        assert not queue.retry(item_id)
        item = queue.get_item(item_id)
        assert item is not None
        assert item.status is UploadStatus.FAILED
        assert item.retries == 2

    def test_retry_resets_item(self, files: list[str]) -> None:
        queue = UploadQueue()
        (item_id, *_) = queue.add_files(files, "uploads")
        queue.update_progress(item_id, 4, 10)
        queue.mark_failed(item_id, "boom")
        assert queue.retry(item_id)
        item = queue.get_item(item_id)
        assert item is not None
        assert (item.status, item.progress, item.bytes_uploaded, item.error) == (UploadStatus.PENDING, 0, 0, None)

    def test_pending_to_process_respects_slots(self, files: list[str]) -> None:
        queue = UploadQueue(max_concurrent=2)
        queue.add_files(files, "uploads")
        batch = queue.pending_to_process()
        assert len(batch) == 2
        queue.mark_processing(item.id for item in batch)
        assert queue.pending_to_process() == []
        queue.mark_completed(batch[0].id)
        assert [i.local_path for i in queue.pending_to_process()] == [files[2]]

    def test_stats(self, files: list[str]) -> None:
        queue = UploadQueue()
        a, b, c = queue.add_files(files, "uploads")
        queue.mark_completed(a)
        queue.mark_uploading(b)
        queue.update_progress(b, 10, 20)
        stats = queue.stats()
        assert (stats.total, stats.pending, stats.uploading, stats.completed) == (3, 1, 1, 1)
        assert (stats.total_size, stats.uploaded_size) == (60, 20)
        assert stats.total_progress == 33


class _FailingProvider(MemoryProvider):
    """Fails the first ``failures`` uploads with a retryable error."""

    def __init__(self, failures: int, *, retryable: bool = True) -> None:
        super().__init__("uploads-bucket")
        self.failures = failures
        self.retryable = retryable
        self.attempts = 0

    async def upload_from_local(self, local_path: Any, remote_path: str, **kwargs: Any) -> OperationResult[None]:
        self.attempts += 1
        if self.attempts <= self.failures:
            if self.retryable:
                return OperationResult.connection_failed("network blip")
            return OperationResult.permission_denied(remote_path)
        return await super().upload_from_local(local_path, remote_path, **kwargs)


class TestProcess:
    @pytest.mark.asyncio
    async def test_uploads_everything(self, files: list[str], memory: MemoryProvider) -> None:
        queue = UploadQueue(max_concurrent=2)
        queue.add_files(files, "uploads")
        stats = await queue.process(memory)
        assert stats.completed == 3
        assert stats.total_progress == 100
        assert memory.keys() == ["uploads/a.txt", "uploads/b.txt", "uploads/c.txt"]
        assert (await memory.read("uploads/c.txt")).data == b"x" * 30

    @pytest.mark.asyncio
    async def test_retryable_failure_is_retried(self, files: list[str]) -> None:
        provider = _FailingProvider(1)
        queue = UploadQueue(max_concurrent=1, retry_delay=0.001)
        queue.add_files(files[:1], "uploads")
        stats = await queue.process(provider)
        assert stats.completed == 1
        assert queue.all_items()[0].retries == 1
        assert provider.attempts == 2

    @pytest.mark.asyncio
    async def test_permanent_failure_is_not_retried(self, files: list[str]) -> None:
        provider = _FailingProvider(1, retryable=False)
        queue = UploadQueue(retry_delay=0.001)
        queue.add_files(files[:1], "uploads")
        stats = await queue.process(provider)
        assert stats.failed == 1
        item = queue.all_items()[0]
        assert item.error == "Access denied: uploads/a.txt"
        assert provider.attempts == 1

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, files: list[str]) -> None:
        provider = _FailingProvider(10)
        queue = UploadQueue(max_retries=2, retry_delay=0.001)
        queue.add_files(files[:1], "uploads")
        stats = await queue.process(provider)
        assert stats.failed == 1
        assert provider.attempts == 3

    @pytest.mark.asyncio
    async def test_auto_retry_disabled(self, files: list[str]) -> None:
        provider = _FailingProvider(1)
        queue = UploadQueue(retry_delay=0.001)
        queue.add_files(files[:1], "uploads")
        stats = await queue.process(provider, auto_retry=False)
        assert stats.failed == 1

    @pytest.mark.asyncio
    async def test_cancelled_token_cancels_pending(self, files: list[str], memory: MemoryProvider) -> None:
        queue = UploadQueue()
        queue.add_files(files, "uploads")
        stats = await queue.process(memory, ALREADY_CANCELLED)
        assert stats.cancelled == 3
        assert memory.keys() == []
