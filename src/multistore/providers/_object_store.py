"""Shared provider for flat key/value object stores (S3, GCS, in-memory).

Subclasses implement a handful of blocking key primitives; this class
builds the full provider contract on top of them and doubles as the
:class:`~multistore.ObjectClient` the batch engine drives, so recursive
copy, move and delete of a prefix go through the paginated engine.
"""

from __future__ import annotations

import abc
import dataclasses
import logging
from typing import TYPE_CHECKING, Any

from multistore._batch import (
    DEFAULT_PAGE_SIZE,
    ObjectPage,
    copy_directory,
    delete_directory,
    move_directory,
)
from multistore._cancellation import NEVER_CANCELLED
from multistore._entry_id import generate_entry_id
from multistore._errors import AlreadyExists, CapabilityNotSupported, InvalidPath, NotFound, ProviderError
from multistore._models import Entry, EntryMetadata, EntryType, ListResult, ProgressEvent
from multistore._path import key_name, normalize_key
from multistore._provider import Provider, paginate
from multistore._result import OperationResult
from multistore._retry import OBJECT_STORE_RETRY

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from multistore._cancellation import CancellationToken
    from multistore._retry import RetryPolicy
    from multistore._types import BatchProgressCallback, Content, ProgressCallback

log = logging.getLogger(__name__)

#: Bytes per ranged read and per streamed write part when progress is reported.
DEFAULT_CHUNK_SIZE = 5 * 1024 * 1024


@dataclasses.dataclass(frozen=True)
class ObjectInfo:
    """What an object store reports about one key (or one container)."""

    key: str
    size: int | None = None
    modified: datetime | None = None
    etag: str | None = None
    content_type: str | None = None
    storage_class: str | None = None
    metadata: dict[str, str] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(frozen=True)
class KeyListing:
    """One page of a delimited listing."""

    objects: list[ObjectInfo]
    prefixes: list[str] = dataclasses.field(default_factory=list)
    continuation_token: str | None = None


def read_content(content: Content) -> bytes:
    if isinstance(content, (bytes, bytearray, memoryview)):
        return bytes(content)
    return content.read()


class ObjectStoreProvider(Provider):
    """Provider contract over flat keys; directories are ``/``-terminated prefixes.

    :param bucket: Selected container. ``None`` lists containers at the root.
    :param retry_policy: Backoff for transient per-call failures.
    :param page_size: Keys requested per listing page.
    :param chunk_size: Bytes per read range and write part; progress is
        reported once per chunk.
    """

    def __init__(
        self,
        bucket: str | None = None,
        *,
        retry_policy: RetryPolicy = OBJECT_STORE_RETRY,
        page_size: int = DEFAULT_PAGE_SIZE,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if bucket is not None and not bucket.strip():
            raise ValueError("bucket must be a non-empty string or None")
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._bucket = bucket
        self._retry = retry_policy
        self._page_size = page_size
        self._chunk_size = chunk_size

    # region: primitives
    @abc.abstractmethod
    def _list_keys(
        self,
        bucket: str,
        prefix: str,
        *,
        delimiter: str | None,
        continuation_token: str | None,
        max_keys: int,
    ) -> KeyListing:
        """List keys under ``prefix``; with a delimiter, group sub-prefixes."""

    @abc.abstractmethod
    def _head_object(self, bucket: str, key: str) -> ObjectInfo:
        """:raises NotFound: If the key does not exist."""

    @abc.abstractmethod
    def _get_object(self, bucket: str, key: str, offset: int | None, length: int | None) -> bytes:
        """:raises NotFound: If the key does not exist."""

    @abc.abstractmethod
    def _put_object(
        self, bucket: str, key: str, data: bytes, content_type: str | None, metadata: dict[str, str] | None
    ) -> None: ...

    def _put_stream(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str | None,
        metadata: dict[str, str] | None,
        on_chunk: Callable[[int], None],
    ) -> None:
        """Upload ``data``, calling ``on_chunk`` with the size of every part sent.

        Backends with multipart uploads override this; the default is one
        :meth:`_put_object` call reported as a single part.
        """
        self._put_object(bucket, key, data, content_type, metadata)
        on_chunk(len(data))

    @abc.abstractmethod
    def _copy_object(self, source_bucket: str, source_key: str, dest_bucket: str, dest_key: str) -> None:
        """Server-side copy, preserving metadata."""

    @abc.abstractmethod
    def _delete_object(self, bucket: str, key: str) -> None:
        """Delete one key. Deleting a missing key is not an error."""

    def _list_buckets(self) -> list[ObjectInfo]:
        raise CapabilityNotSupported("Listing containers is not supported", capability="containers", provider=self.name)

    def _set_object_metadata(self, bucket: str, key: str, metadata: dict[str, str]) -> None:
        raise CapabilityNotSupported("Object metadata is not supported", capability="metadata", provider=self.name)

    def _presign(self, bucket: str, key: str, operation: str, ttl_seconds: int) -> str:
        raise CapabilityNotSupported(
            "Presigned URLs are not supported", capability="presigned_urls", provider=self.name
        )

    # endregion

    # region: helpers
    def _require_bucket(self) -> str:
        if self._bucket is None:
            raise InvalidPath("No container selected", provider=self.name)
        return self._bucket

    def _call(self, func: Any, *args: Any, **kwargs: Any) -> Any:
        return self._retry.call(func, *args, **kwargs)

    def _child_path(self, parent: str, name: str, *, directory: bool = False) -> str:
        return normalize_key(f"{parent}/{name}", directory=directory)

    def _object_entry(self, info: ObjectInfo) -> Entry:
        is_dir = info.key.endswith("/")
        return Entry(
            id=generate_entry_id(),
            name=key_name(info.key),
            type=EntryType.DIRECTORY if is_dir else EntryType.FILE,
            path=info.key,
            size=None if is_dir else info.size,
            modified=info.modified,
            metadata=EntryMetadata(
                content_type=info.content_type,
                etag=info.etag,
                storage_class=info.storage_class,
                custom=dict(info.metadata),
            ),
        )

    @staticmethod
    def _prefix_entry(prefix: str) -> Entry:
        return Entry(id=generate_entry_id(), name=key_name(prefix), type=EntryType.DIRECTORY, path=prefix)

    def _bucket_entry(self, info: ObjectInfo) -> Entry:
        return Entry(
            id=generate_entry_id(),
            name=info.key,
            type=EntryType.BUCKET,
            path=info.key,
            modified=info.modified,
            metadata=EntryMetadata(created_at=info.modified),
        )

    @staticmethod
    def _batch_progress(operation: str, on_progress: ProgressCallback | None) -> BatchProgressCallback | None:
        if on_progress is None:
            return None

        def _forward(completed: int, total: int, key: str) -> None:
            on_progress(ProgressEvent.for_files(operation, completed, total, current_file=key))

        return _forward

    def _stat(self, path: str) -> Entry:
        bucket = self._require_bucket()
        key = normalize_key(path)
        if key == "":
            return Entry(id=generate_entry_id(), name=bucket, type=EntryType.BUCKET, path="")
        if not key.endswith("/"):
            try:
                return self._object_entry(self._call(self._head_object, bucket, key))
            except NotFound:
                key += "/"
        listing = self._call(self._list_keys, bucket, key, delimiter="/", continuation_token=None, max_keys=1)
        if listing.objects or listing.prefixes:
            return self._prefix_entry(key)
        raise NotFound(f"Not found: {path}", path=path, provider=self.name)

    def _list_all(self, bucket: str, prefix: str, delimiter: str | None, token: str | None, limit: int | None) -> ListResult:
        entries: list[Entry] = []
        while True:
            want = self._page_size if limit is None else min(self._page_size, limit - len(entries))
            listing: KeyListing = self._call(
                self._list_keys, bucket, prefix, delimiter=delimiter, continuation_token=token, max_keys=want
            )
            entries.extend(self._prefix_entry(p) for p in listing.prefixes)
            entries.extend(self._object_entry(o) for o in listing.objects if o.key != prefix)
            token = listing.continuation_token
            if token is None or (limit is not None and len(entries) >= limit):
                break
        return ListResult(entries=entries, continuation_token=token, has_more=token is not None)

    def _has_children(self, bucket: str, prefix: str) -> bool:
        listing = self._call(self._list_keys, bucket, prefix, delimiter=None, continuation_token=None, max_keys=2)
        return any(o.key != prefix for o in listing.objects)

    def _prefix_in_use(self, bucket: str, prefix: str) -> bool:
        listing = self._call(self._list_keys, bucket, prefix, delimiter=None, continuation_token=None, max_keys=1)
        return bool(listing.objects or listing.prefixes)

    def _delete_empty_prefix(self, bucket: str, prefix: str) -> None:
        if self._has_children(bucket, prefix):
            raise ProviderError(f"Directory not empty: {prefix}", path=prefix, provider=self.name)
        self._call(self._delete_object, bucket, prefix)

    def _copy_key(self, bucket: str, source: str, dest: str, overwrite: bool) -> None:
        if not overwrite:
            try:
                self._call(self._head_object, bucket, dest)
            except NotFound:
                pass
            else:
                raise AlreadyExists(f"Destination already exists: {dest}", path=dest, provider=self.name)
        self._call(self._copy_object, bucket, source, bucket, dest)

    # endregion

    # region: ObjectClient
    async def list_objects_page(
        self,
        bucket: str,
        prefix: str,
        *,
        continuation_token: str | None = None,
        max_keys: int | None = None,
    ) -> OperationResult[ObjectPage]:
        def _page() -> ObjectPage:
            listing: KeyListing = self._call(
                self._list_keys,
                bucket,
                prefix,
                delimiter=None,
                continuation_token=continuation_token,
                max_keys=max_keys or self._page_size,
            )
            return ObjectPage(keys=[o.key for o in listing.objects], continuation_token=listing.continuation_token)

        return await self._run(_page)

    async def copy_object(
        self, source_bucket: str, source_key: str, dest_bucket: str, dest_key: str
    ) -> OperationResult[None]:
        return await self._run(self._call, self._copy_object, source_bucket, source_key, dest_bucket, dest_key)

    async def delete_object(self, bucket: str, key: str) -> OperationResult[None]:
        return await self._run(self._call, self._delete_object, bucket, key)

    # endregion

    # region: provider contract
    async def list(
        self,
        path: str = "",
        *,
        limit: int | None = None,
        continuation_token: str | None = None,
        recursive: bool = False,
    ) -> OperationResult[ListResult]:
        if self._bucket is None and not path.strip("/"):
            buckets = await self._run(self._call, self._list_buckets)
            if not buckets.ok:
                return buckets  # type: ignore[return-value]
            entries = [self._bucket_entry(b) for b in buckets.data]  # type: ignore[union-attr]
            return await self._run(paginate, entries, limit, continuation_token)

        def _list() -> ListResult:
            bucket = self._require_bucket()
            prefix = normalize_key(path, directory=True)
            return self._list_all(bucket, prefix, None if recursive else "/", continuation_token, limit)

        return await self._run(_list)

    async def get_metadata(self, path: str) -> OperationResult[Entry]:
        return await self._run(self._stat, path)

    async def read(
        self,
        path: str,
        *,
        offset: int | None = None,
        length: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> OperationResult[bytes]:
        relay = self._relay_progress(on_progress)

        def _read() -> bytes:
            key = normalize_key(path)
            if key.endswith("/") or not key:
                raise InvalidPath(f"Not a file: {path}", path=path, provider=self.name)
            bucket = self._require_bucket()
            if relay is None:
                return self._call(self._get_object, bucket, key, offset, length)
            return self._read_chunked(bucket, key, offset, length, path, relay)

        return await self._run(_read)

    def _read_chunked(
        self, bucket: str, key: str, offset: int | None, length: int | None, path: str, relay: ProgressCallback
    ) -> bytes:
        start = offset or 0
        size = self._call(self._head_object, bucket, key).size
        if size is None:
            data = self._call(self._get_object, bucket, key, offset, length)
            relay(ProgressEvent.for_bytes("read", len(data), len(data), current_file=path))
            return data
        end = size if length is None else min(size, start + length)
        total = max(end - start, 0)
        parts: list[bytes] = []
        done = 0
        for position in range(start, end, self._chunk_size):
            part = self._call(self._get_object, bucket, key, position, min(self._chunk_size, end - position))
            parts.append(part)
            done += len(part)
            relay(ProgressEvent.for_bytes("read", done, total, current_file=path))
        if not parts:
            relay(ProgressEvent.for_bytes("read", 0, 0, current_file=path))
        return b"".join(parts)

    async def write(
        self,
        path: str,
        content: Content,
        *,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> OperationResult[None]:
        relay = self._relay_progress(on_progress)

        def _write() -> None:
            key = normalize_key(path)
            if key.endswith("/") or not key:
                raise InvalidPath(f"Not a file path: {path}", path=path, provider=self.name)
            bucket = self._require_bucket()
            data = read_content(content)
            total = len(data)
            sent = 0

            def _on_chunk(count: int) -> None:
                nonlocal sent
                sent += count
                if relay is not None:
                    relay(ProgressEvent.for_bytes("write", sent, total, current_file=path))

            def _attempt() -> None:
                nonlocal sent
                sent = 0
                self._put_stream(bucket, key, data, content_type, metadata, _on_chunk)

            self._call(_attempt)

        return await self._run(_write)

    async def mkdir(self, path: str) -> OperationResult[None]:
        def _mkdir() -> None:
            bucket = self._require_bucket()
            prefix = normalize_key(path, directory=True)
            if prefix:
                self._call(self._put_object, bucket, prefix, b"", None, None)

        return await self._run(_mkdir)

    async def delete(
        self,
        path: str,
        *,
        recursive: bool = False,
        on_progress: ProgressCallback | None = None,
        token: CancellationToken = NEVER_CANCELLED,
    ) -> OperationResult[Any]:
        meta = await self.get_metadata(path)
        if not meta.ok:
            return meta
        entry: Entry = meta.data  # type: ignore[assignment]
        bucket = self._bucket or ""
        if not entry.is_directory:
            return await self.delete_object(bucket, entry.path)
        if not entry.path:
            return OperationResult.failure("Refusing to delete the container root")
        if not recursive:
            return await self._run(self._delete_empty_prefix, bucket, entry.path)
        return await delete_directory(
            self,
            bucket,
            entry.path,
            on_progress=self._batch_progress("delete", on_progress),
            token=token,
            page_size=self._page_size,
        )

    async def copy(
        self,
        source: str,
        dest: str,
        *,
        recursive: bool = False,
        overwrite: bool = False,
        on_progress: ProgressCallback | None = None,
        token: CancellationToken = NEVER_CANCELLED,
    ) -> OperationResult[Any]:
        return await self._transfer(source, dest, recursive, overwrite, on_progress, token, delete_source=False)

    async def move(
        self,
        source: str,
        dest: str,
        *,
        recursive: bool = False,
        overwrite: bool = False,
        on_progress: ProgressCallback | None = None,
        token: CancellationToken = NEVER_CANCELLED,
    ) -> OperationResult[Any]:
        return await self._transfer(source, dest, recursive, overwrite, on_progress, token, delete_source=True)

    async def _transfer(
        self,
        source: str,
        dest: str,
        recursive: bool,
        overwrite: bool,
        on_progress: ProgressCallback | None,
        token: CancellationToken,
        *,
        delete_source: bool,
    ) -> OperationResult[Any]:
        operation = "move" if delete_source else "copy"
        meta = await self.get_metadata(source)
        if not meta.ok:
            return meta
        entry: Entry = meta.data  # type: ignore[assignment]
        bucket = self._bucket or ""

        if not entry.is_directory:
            dest_key = normalize_key(dest)
            if dest_key.endswith("/") or not dest_key:
                dest_key += entry.name
            if dest_key == entry.path:
                return OperationResult.conflict(f"Source and destination are the same: {dest_key}", path=dest_key)
            result = await self._run(self._copy_key, bucket, entry.path, dest_key, overwrite)
            if not result.ok or not delete_source:
                return result
            return await self.delete_object(bucket, entry.path)

        if not recursive:
            return OperationResult.failure(f"{source} is a directory; pass recursive=True")
        if not entry.path:
            return OperationResult.failure(f"Cannot {operation} the container root")
        dest_prefix = normalize_key(dest, directory=True)
        if dest_prefix.startswith(entry.path):
            return OperationResult.conflict(f"Cannot {operation} {entry.path} into itself", path=dest_prefix)
        if not overwrite:
            taken = await self._run(self._prefix_in_use, bucket, dest_prefix)
            if not taken.ok:
                return taken
            if taken.data:
                return OperationResult.conflict(f"Destination already exists: {dest_prefix}", path=dest_prefix)
        marker = await self.mkdir(dest_prefix)
        if not marker.ok:
            return marker
        progress = self._batch_progress(operation, on_progress)
        if not delete_source:
            return await copy_directory(
                self, bucket, entry.path, bucket, dest_prefix, on_progress=progress, token=token, page_size=self._page_size
            )
        result = await move_directory(
            self, bucket, entry.path, dest_prefix, on_progress=progress, token=token, page_size=self._page_size
        )
        if not result.ok:
            return result
        removed = await self.delete_object(bucket, entry.path)
        return result if removed.ok else removed

    # endregion

    # region: optional operations
    async def list_containers(self) -> OperationResult[list[Entry]]:
        result = await self._run(self._call, self._list_buckets)
        if not result.ok:
            return result  # type: ignore[return-value]
        return OperationResult.success([self._bucket_entry(b) for b in result.data])  # type: ignore[union-attr]

    async def set_container(self, name: str | None) -> OperationResult[None]:
        if name is not None and not name.strip():
            return OperationResult.failure("Container name must be non-empty", code="INVALID_PATH")
        self._bucket = name
        log.debug("%s container set to %r", self.name, name)
        return OperationResult.success()

    async def get_container(self) -> OperationResult[str | None]:
        return OperationResult.success(self._bucket)

    async def set_metadata(self, path: str, metadata: dict[str, str]) -> OperationResult[None]:
        def _set() -> None:
            self._call(self._set_object_metadata, self._require_bucket(), normalize_key(path), metadata)

        return await self._run(_set)

    async def get_presigned_url(
        self, path: str, operation: str = "read", ttl_seconds: int = 3600
    ) -> OperationResult[str]:
        if operation not in ("read", "write"):
            return OperationResult.failure(f"Unknown presign operation: {operation!r}")

        def _presign() -> str:
            return self._presign(self._require_bucket(), normalize_key(path), operation, ttl_seconds)

        return await self._run(_presign)

    # endregion
