"""Upload queue: bounded-concurrency uploads with progress tracking and retries."""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from multistore._cancellation import NEVER_CANCELLED
from multistore._path import join_key
from multistore._result import OperationStatus

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from multistore._cancellation import CancellationToken
    from multistore._models import ProgressEvent
    from multistore._provider import Provider

log = logging.getLogger(__name__)


class UploadStatus(enum.Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclasses.dataclass
class UploadItem:
    """One queued upload. Mutated in place as it moves through the queue."""

    id: str
    local_path: str
    remote_path: str
    size: int = 0
    status: UploadStatus = UploadStatus.PENDING
    progress: int = 0
    bytes_uploaded: int = 0
    retries: int = 0
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclasses.dataclass(frozen=True)
class UploadStats:
    total: int = 0
    pending: int = 0
    uploading: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    total_size: int = 0
    uploaded_size: int = 0
    total_progress: int = 0


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _percent(done: int, total: int) -> int:
    return round(done * 100 / total) if total > 0 else 0


class UploadQueue:
    """Queue of local files to upload, processed with bounded concurrency.

    Items are kept in insertion order. ``max_concurrent`` bounds how many
    items :meth:`pending_to_process` hands out at once; ``max_retries``
    bounds :meth:`retry` per item.

    :param max_concurrent: Uploads in flight at once.
    :param max_retries: Retries allowed per item.
    :param retry_delay: Seconds before the first automatic retry; doubles each time.
    """

    def __init__(self, max_concurrent: int = 3, max_retries: int = 3, retry_delay: float = 1.0) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._items: dict[str, UploadItem] = {}
        self._processing: set[str] = set()

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"UploadQueue(items={len(self._items)}, processing={len(self._processing)})"

    # region: queue management
    def add_files(
        self, local_paths: Iterable[str], destination: str, sizes: Mapping[str, int] | None = None
    ) -> list[str]:
        """Queue each file for upload into the ``destination`` directory.

        :param sizes: Known file sizes; missing ones are read from the filesystem.
        :returns: The new item ids, in order.
        """
        ids = []
        for local_path in local_paths:
            size = sizes.get(local_path) if sizes else None
            if size is None:
                try:
                    size = os.path.getsize(local_path)
                except OSError:
                    size = 0
            item = UploadItem(
                id=str(uuid.uuid4()),
                local_path=local_path,
                remote_path=join_key(destination, os.path.basename(local_path)),
                size=size,
            )
            self._items[item.id] = item
            ids.append(item.id)
        return ids

    def get_item(self, item_id: str) -> UploadItem | None:
        return self._items.get(item_id)

    def all_items(self) -> list[UploadItem]:
        return list(self._items.values())

    def by_status(self, status: UploadStatus) -> list[UploadItem]:
        return [item for item in self._items.values() if item.status is status]

    def is_duplicate(self, local_path: str, destination: str) -> bool:
        """Whether an upload to the same target is already pending or running."""
        target = join_key(destination, os.path.basename(local_path))
        return any(
            item.remote_path == target and item.status in (UploadStatus.PENDING, UploadStatus.UPLOADING)
            for item in self._items.values()
        )

    def clear_completed(self) -> int:
        """Drop completed and cancelled items. Returns how many were removed."""
        done = [i for i, item in self._items.items() if item.status in (UploadStatus.COMPLETED, UploadStatus.CANCELLED)]
        for item_id in done:
            del self._items[item_id]
        return len(done)

    def clear(self) -> None:
        self._items.clear()
        self._processing.clear()

    # endregion

    # region: state transitions
    def update_progress(self, item_id: str, bytes_uploaded: int, total_bytes: int) -> None:
        item = self._items.get(item_id)
        if item is None:
            return
        item.bytes_uploaded = bytes_uploaded
        item.progress = _percent(bytes_uploaded, total_bytes)

    def mark_uploading(self, item_id: str) -> None:
        item = self._items.get(item_id)
        if item is not None:
            item.status = UploadStatus.UPLOADING
            item.started_at = _now()

    def mark_completed(self, item_id: str) -> None:
        item = self._items.get(item_id)
        if item is not None:
            item.status = UploadStatus.COMPLETED
            item.progress = 100
            item.bytes_uploaded = item.size
            item.completed_at = _now()
            self._processing.discard(item_id)

    def mark_failed(self, item_id: str, error: str) -> None:
        item = self._items.get(item_id)
        if item is not None:
            item.status = UploadStatus.FAILED
            item.error = error
            item.completed_at = _now()
            self._processing.discard(item_id)

    def retry(self, item_id: str) -> bool:
        """Put an item back to pending, unless it has used all its retries."""
        item = self._items.get(item_id)
        if item is None or item.retries >= self.max_retries:
            return False
        item.retries += 1
        item.status = UploadStatus.PENDING
        item.progress = 0
        item.bytes_uploaded = 0
        item.error = None
        item.started_at = None
        item.completed_at = None
        return True

    def cancel(self, item_id: str) -> None:
        item = self._items.get(item_id)
        if item is not None:
            item.status = UploadStatus.CANCELLED
            item.completed_at = _now()
            self._processing.discard(item_id)

    def pending_to_process(self) -> list[UploadItem]:
        """Pending items that fit in the free concurrency slots."""
        free = max(0, self.max_concurrent - len(self._processing))
        pending = [item for item in self.by_status(UploadStatus.PENDING) if item.id not in self._processing]
        return pending[:free]

    def mark_processing(self, item_ids: Iterable[str]) -> None:
        self._processing.update(item_ids)

    def stats(self) -> UploadStats:
        items = self._items.values()
        total_size = sum(item.size for item in items)
        uploaded = sum(item.bytes_uploaded for item in items)
        return UploadStats(
            total=len(self._items),
            pending=len(self.by_status(UploadStatus.PENDING)),
            uploading=len(self.by_status(UploadStatus.UPLOADING)),
            completed=len(self.by_status(UploadStatus.COMPLETED)),
            failed=len(self.by_status(UploadStatus.FAILED)),
            cancelled=len(self.by_status(UploadStatus.CANCELLED)),
            total_size=total_size,
            uploaded_size=uploaded,
            total_progress=_percent(uploaded, total_size),
        )

    # endregion

    # region: processing
    async def _upload(self, provider: Provider, item: UploadItem, token: CancellationToken, auto_retry: bool) -> None:
        self.mark_uploading(item.id)

        def _progress(event: ProgressEvent) -> None:
            self.update_progress(item.id, event.bytes_transferred, event.total_bytes or item.size)

        result = await provider.upload_from_local(item.local_path, item.remote_path, on_progress=_progress, token=token)
        if result.ok:
            self.mark_completed(item.id)
            return
        if result.status is OperationStatus.CANCELLED:
            self.cancel(item.id)
            return
        log.warning("Upload of %s to %s failed: %s", item.local_path, item.remote_path, result.message)
        self.mark_failed(item.id, result.message)
        if auto_retry and result.retryable and item.retries < self.max_retries:
            delay = self.retry_delay * (2**item.retries)
            await asyncio.sleep(delay)
            if not token.is_cancelled:
                self.retry(item.id)

    async def process(
        self,
        provider: Provider,
        token: CancellationToken = NEVER_CANCELLED,
        *,
        auto_retry: bool = True,
    ) -> UploadStats:
        """Upload every pending item through ``provider.upload_from_local``.

        At most ``max_concurrent`` uploads run at once. Failures whose
        result is retryable are retried with exponential delay while the
        item has retries left. Cancelling the token stops new uploads,
        marks the pending ones cancelled and lets running ones observe the
        token.
        """
        running: dict[asyncio.Task[None], str] = {}
        while True:
            if token.is_cancelled:
                for item in self.by_status(UploadStatus.PENDING):
                    self.cancel(item.id)
            else:
                batch = self.pending_to_process()
                self.mark_processing(item.id for item in batch)
                for item in batch:
                    task = asyncio.create_task(self._upload(provider, item, token, auto_retry))
                    running[task] = item.id
            if not running:
                break
            done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                item_id = running.pop(task)
                self._processing.discard(item_id)
                task.result()
        return self.stats()

    # endregion
