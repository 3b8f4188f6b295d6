"""In-process object store provider, used for tests and previews."""

from __future__ import annotations

import dataclasses
import hashlib
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from multistore._capabilities import Capability, CapabilitySet
from multistore._errors import NotFound
from multistore._retry import NO_RETRY
from multistore.providers._object_store import DEFAULT_CHUNK_SIZE, KeyListing, ObjectInfo, ObjectStoreProvider

if TYPE_CHECKING:
    from collections.abc import Iterable

    from multistore._retry import RetryPolicy

MEMORY_CAPABILITIES = CapabilitySet(
    {
        Capability.LIST,
        Capability.READ,
        Capability.WRITE,
        Capability.DELETE,
        Capability.MKDIR,
        Capability.RMDIR,
        Capability.COPY,
        Capability.MOVE,
        Capability.SERVER_SIDE_COPY,
        Capability.DOWNLOAD,
        Capability.UPLOAD,
        Capability.METADATA,
        Capability.CONTAINERS,
        Capability.BATCH_DELETE,
    }
)


@dataclasses.dataclass
class _StoredObject:
    data: bytes
    modified: datetime
    content_type: str | None = None
    metadata: dict[str, str] = dataclasses.field(default_factory=dict)

    @property
    def etag(self) -> str:
        return hashlib.md5(self.data).hexdigest()  # noqa: S324

    def info(self, key: str) -> ObjectInfo:
        return ObjectInfo(
            key=key,
            size=len(self.data),
            modified=self.modified,
            etag=self.etag,
            content_type=self.content_type,
            metadata=dict(self.metadata),
        )


class MemoryProvider(ObjectStoreProvider):
    """Object store kept in a dict, with S3 listing semantics.

    Continuation tokens resume after the last returned key, so deleting
    keys while paging is safe.

    :param bucket: Selected container; created if missing.
    :param buckets: Additional containers to create.
    :param capabilities: Override the declared capabilities.
    :param page_size: Keys per listing page.
    :param chunk_size: Bytes per read range when progress is reported.
    """

    _offload_io = False

    def __init__(
        self,
        bucket: str | None = "default",
        *,
        buckets: Iterable[str] = (),
        capabilities: CapabilitySet | None = None,
        page_size: int = 1000,
        retry_policy: RetryPolicy = NO_RETRY,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        super().__init__(bucket, retry_policy=retry_policy, page_size=page_size, chunk_size=chunk_size)
        self._capabilities = capabilities if capabilities is not None else MEMORY_CAPABILITIES
        self._lock = threading.Lock()
        self._buckets: dict[str, dict[str, _StoredObject]] = {}
        self._created: dict[str, datetime] = {}
        for name in [*([bucket] if bucket else []), *buckets]:
            self.create_bucket(name)

    @property
    def name(self) -> str:
        return "memory"

    @property
    def capabilities(self) -> CapabilitySet:
        return self._capabilities

    def create_bucket(self, name: str) -> None:
        with self._lock:
            self._buckets.setdefault(name, {})
            self._created.setdefault(name, datetime.now(tz=timezone.utc))

    def keys(self, bucket: str | None = None) -> list[str]:
        """Every key in ``bucket`` (default: the selected one), sorted."""
        return sorted(self._objects(bucket or self._require_bucket()))

    def _objects(self, bucket: str) -> dict[str, _StoredObject]:
        try:
            return self._buckets[bucket]
        except KeyError:
            raise NotFound(f"No such container: {bucket}", path=bucket, provider=self.name) from None

    # region: primitives
    def _list_keys(
        self,
        bucket: str,
        prefix: str,
        *,
        delimiter: str | None,
        continuation_token: str | None,
        max_keys: int,
    ) -> KeyListing:
        with self._lock:
            objects = self._objects(bucket)
            keys = sorted(k for k in objects if k.startswith(prefix))
            snapshot = {k: objects[k].info(k) for k in keys}
        listed: list[ObjectInfo] = []
        prefixes: list[str] = []
        last: str | None = None
        for key in keys:
            if continuation_token is not None:
                if key <= continuation_token:
                    continue
                if continuation_token.endswith("/") and key.startswith(continuation_token) and delimiter:
                    continue
            if len(listed) + len(prefixes) >= max_keys:
                return KeyListing(listed, prefixes, continuation_token=last)
            rest = key[len(prefix) :]
            if delimiter and delimiter in rest:
                common = prefix + rest.split(delimiter, 1)[0] + delimiter
                if prefixes and prefixes[-1] == common:
                    continue
                prefixes.append(common)
                last = common
            else:
                listed.append(snapshot[key])
                last = key
        return KeyListing(listed, prefixes)

    def _head_object(self, bucket: str, key: str) -> ObjectInfo:
        with self._lock:
            stored = self._objects(bucket).get(key)
        if stored is None:
            raise NotFound(f"Not found: {key}", path=key, provider=self.name)
        return stored.info(key)

    def _get_object(self, bucket: str, key: str, offset: int | None, length: int | None) -> bytes:
        with self._lock:
            stored = self._objects(bucket).get(key)
        if stored is None:
            raise NotFound(f"Not found: {key}", path=key, provider=self.name)
        start = offset or 0
        end = None if length is None else start + length
        return stored.data[start:end]

    def _put_object(
        self, bucket: str, key: str, data: bytes, content_type: str | None, metadata: dict[str, str] | None
    ) -> None:
        with self._lock:
            self._objects(bucket)[key] = _StoredObject(
                data=bytes(data),
                modified=datetime.now(tz=timezone.utc),
                content_type=content_type,
                metadata=dict(metadata or {}),
            )

    def _copy_object(self, source_bucket: str, source_key: str, dest_bucket: str, dest_key: str) -> None:
        with self._lock:
            stored = self._objects(source_bucket).get(source_key)
            if stored is None:
                raise NotFound(f"Not found: {source_key}", path=source_key, provider=self.name)
            self._objects(dest_bucket)[dest_key] = dataclasses.replace(
                stored, modified=datetime.now(tz=timezone.utc), metadata=dict(stored.metadata)
            )

    def _delete_object(self, bucket: str, key: str) -> None:
        with self._lock:
            self._objects(bucket).pop(key, None)

    def _list_buckets(self) -> list[ObjectInfo]:
        with self._lock:
            return [ObjectInfo(key=name, modified=self._created[name]) for name in sorted(self._buckets)]

    def _set_object_metadata(self, bucket: str, key: str, metadata: dict[str, str]) -> None:
        with self._lock:
            stored = self._objects(bucket).get(key)
            if stored is None:
                raise NotFound(f"Not found: {key}", path=key, provider=self.name)
            stored.metadata = dict(metadata)

    # endregion
