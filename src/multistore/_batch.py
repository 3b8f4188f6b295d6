"""Paginated, cancellable copy/move/delete over object-store prefixes.

Objects are processed strictly one at a time in listing order. Pages are
processed as they arrive, so the progress denominator is the number of
keys enumerated so far and grows while pagination proceeds.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING, Protocol

from multistore._cancellation import NEVER_CANCELLED
from multistore._result import OperationResult

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from multistore._cancellation import CancellationToken
    from multistore._result import OperationError
    from multistore._types import BatchProgressCallback

log = logging.getLogger(__name__)

#: Keys requested per listing page when the caller does not say otherwise.
DEFAULT_PAGE_SIZE = 1000


@dataclasses.dataclass(frozen=True)
class ObjectPage:
    """One page of a flat (delimiter-less) key listing.

    :param keys: Keys on this page, in backend order.
    :param continuation_token: Token for the next page, ``None`` on the last one.
    """

    keys: list[str]
    continuation_token: str | None = None

    @property
    def has_more(self) -> bool:
        return self.continuation_token is not None


class ObjectClient(Protocol):
    """The three per-object calls the batch engine needs from a backend."""

    async def list_objects_page(
        self,
        bucket: str,
        prefix: str,
        *,
        continuation_token: str | None = None,
        max_keys: int | None = None,
    ) -> OperationResult[ObjectPage]: ...

    async def copy_object(
        self, source_bucket: str, source_key: str, dest_bucket: str, dest_key: str
    ) -> OperationResult[None]: ...

    async def delete_object(self, bucket: str, key: str) -> OperationResult[None]: ...


@dataclasses.dataclass(frozen=True)
class ObjectFailure:
    key: str
    error: OperationError | None


@dataclasses.dataclass
class BatchSummary:
    """Counters for one batch run.

    :param processed: Objects an operation was attempted on.
    :param succeeded: Objects fully handled (copy, and delete for moves).
    :param failed: Objects with a failed call.
    :param skipped: Listed objects never attempted because of cancellation.
    :param cancelled: Whether the run stopped on cancellation.
    :param errors: One entry per failed object.
    """

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False
    errors: list[ObjectFailure] = dataclasses.field(default_factory=list)

    def describe(self) -> str:
        text = f"{self.succeeded} succeeded, {self.failed} failed, {self.skipped} skipped"
        if self.errors:
            details = "; ".join(f"{f.key}: {f.error.message if f.error else 'unknown error'}" for f in self.errors)
            text = f"{text} ({details})"
        return text


# region: single objects
async def copy_object(
    client: ObjectClient, source_bucket: str, source_key: str, dest_bucket: str, dest_key: str
) -> OperationResult[None]:
    """Copy one object, within or across containers."""
    return await client.copy_object(source_bucket, source_key, dest_bucket, dest_key)


async def move_object(
    client: ObjectClient,
    bucket: str,
    source_key: str,
    dest_key: str,
    *,
    dest_bucket: str | None = None,
) -> OperationResult[None]:
    """Copy then delete one object.

    The delete is never issued when the copy fails; the copy's result is
    returned unchanged in that case.
    """
    result = await client.copy_object(bucket, source_key, dest_bucket or bucket, dest_key)
    if not result.ok:
        return result
    return await client.delete_object(bucket, source_key)


# endregion


def _nested(prefix: str, parent: str) -> bool:
    """Whether ``prefix`` is ``parent`` or lies below it, on ``/`` boundaries."""
    if not parent:
        return True
    boundary = parent if parent.endswith("/") else parent + "/"
    return prefix == parent or prefix.startswith(boundary)


async def _pages(
    client: ObjectClient,
    bucket: str,
    prefix: str,
    page_size: int | None,
    token: CancellationToken,
) -> AsyncIterator[OperationResult[ObjectPage] | None]:
    """Yield listing results page by page; ``None`` signals cancellation."""
    continuation: str | None = None
    while True:
        if token.is_cancelled:
            yield None
            return
        result = await client.list_objects_page(bucket, prefix, continuation_token=continuation, max_keys=page_size)
        yield result
        if not result.ok or result.data is None or not result.data.has_more:
            return
        continuation = result.data.continuation_token


async def _run_batch(
    client: ObjectClient,
    bucket: str,
    prefix: str,
    action: Callable[[str], Awaitable[OperationResult[None]]],
    *,
    exclude: set[str],
    on_progress: BatchProgressCallback | None,
    token: CancellationToken,
    page_size: int | None,
) -> OperationResult[BatchSummary]:
    summary = BatchSummary()
    total = 0
    async for listing in _pages(client, bucket, prefix, page_size, token):
        if listing is None:
            summary.cancelled = True
            break
        if not listing.ok:
            log.warning("Listing %s/%s failed: %s", bucket, prefix, listing.message)
            return OperationResult(listing.status, data=summary, error=listing.error)
        keys = [k for k in listing.data.keys if k not in exclude]  # type: ignore[union-attr]
        total += len(keys)
        for index, key in enumerate(keys):
            if token.is_cancelled:
                summary.cancelled = True
                summary.skipped += len(keys) - index
                break
            result = await action(key)
            summary.processed += 1
            if result.ok:
                summary.succeeded += 1
            else:
                summary.failed += 1
                summary.errors.append(ObjectFailure(key, result.error))
                log.debug("Batch step failed for %s: %s", key, result.message)
            if on_progress is not None:
                on_progress(summary.processed, total, key)
        if summary.cancelled:
            break

    if summary.cancelled:
        log.info("Batch over %s/%s cancelled: %s", bucket, prefix, summary.describe())
        return OperationResult.cancelled(summary)
    if summary.failed:
        return OperationResult.failure(
            f"{summary.failed} of {summary.processed} objects failed: {summary.describe()}", data=summary
        )
    return OperationResult.success(summary)


async def batch_object_operation(
    client: ObjectClient,
    source_bucket: str,
    source_prefix: str,
    dest_bucket: str,
    dest_prefix: str,
    *,
    delete_source: bool = False,
    exclude_key: str | None = None,
    on_progress: BatchProgressCallback | None = None,
    token: CancellationToken = NEVER_CANCELLED,
    page_size: int | None = DEFAULT_PAGE_SIZE,
) -> OperationResult[BatchSummary]:
    """Copy (or move) every object under ``source_prefix`` to ``dest_prefix``.

    The key equal to ``source_prefix`` (a directory marker) and
    ``exclude_key`` are skipped. Destination keys keep the sub-path
    relative to the prefix. With ``delete_source`` each source object is
    deleted right after its own copy succeeds. Per-object failures are
    recorded and the batch continues; a failed listing ends it.

    Prefixes are used verbatim; pass directory prefixes with a trailing ``/``.

    :returns: ``SUCCESS``, ``CANCELLED`` or ``ERROR``, always carrying a
        :class:`BatchSummary`.
    """
    if source_bucket == dest_bucket and _nested(dest_prefix, source_prefix):
        return OperationResult.conflict(
            f"Destination prefix {dest_prefix!r} lies inside source prefix {source_prefix!r}", path=dest_prefix
        )

    async def step(key: str) -> OperationResult[None]:
        dest_key = dest_prefix + key[len(source_prefix) :]
        if delete_source:
            return await move_object(client, source_bucket, key, dest_key, dest_bucket=dest_bucket)
        return await copy_object(client, source_bucket, key, dest_bucket, dest_key)

    exclude = {source_prefix}
    if exclude_key is not None:
        exclude.add(exclude_key)
    log.debug(
        "%s %s/%s -> %s/%s", "Moving" if delete_source else "Copying", source_bucket, source_prefix, dest_bucket, dest_prefix
    )
    return await _run_batch(
        client,
        source_bucket,
        source_prefix,
        step,
        exclude=exclude,
        on_progress=on_progress,
        token=token,
        page_size=page_size,
    )


async def copy_directory(
    client: ObjectClient,
    source_bucket: str,
    source_prefix: str,
    dest_bucket: str,
    dest_prefix: str,
    *,
    on_progress: BatchProgressCallback | None = None,
    token: CancellationToken = NEVER_CANCELLED,
    page_size: int | None = DEFAULT_PAGE_SIZE,
) -> OperationResult[BatchSummary]:
    return await batch_object_operation(
        client,
        source_bucket,
        source_prefix,
        dest_bucket,
        dest_prefix,
        on_progress=on_progress,
        token=token,
        page_size=page_size,
    )


async def move_directory(
    client: ObjectClient,
    bucket: str,
    source_prefix: str,
    dest_prefix: str,
    *,
    dest_bucket: str | None = None,
    on_progress: BatchProgressCallback | None = None,
    token: CancellationToken = NEVER_CANCELLED,
    page_size: int | None = DEFAULT_PAGE_SIZE,
) -> OperationResult[BatchSummary]:
    """Move every object under ``source_prefix``; the source marker is left for the caller."""
    return await batch_object_operation(
        client,
        bucket,
        source_prefix,
        dest_bucket or bucket,
        dest_prefix,
        delete_source=True,
        on_progress=on_progress,
        token=token,
        page_size=page_size,
    )


async def delete_directory(
    client: ObjectClient,
    bucket: str,
    prefix: str,
    *,
    on_progress: BatchProgressCallback | None = None,
    token: CancellationToken = NEVER_CANCELLED,
    page_size: int | None = DEFAULT_PAGE_SIZE,
) -> OperationResult[BatchSummary]:
    """Delete every object under ``prefix``, including its directory marker.

    Deleting keys while paging through the same listing is safe as long as
    continuation tokens resume after the last listed key, as S3 tokens do.
    """

    async def step(key: str) -> OperationResult[None]:
        return await client.delete_object(bucket, key)

    return await _run_batch(
        client, bucket, prefix, step, exclude=set(), on_progress=on_progress, token=token, page_size=page_size
    )
