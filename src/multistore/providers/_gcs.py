"""Google Cloud Storage provider using google-cloud-storage."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from google.api_core import exceptions as gcs_exceptions

from multistore._capabilities import Capability, CapabilitySet
from multistore._errors import ConnectionFailed, NotFound, PermissionDenied, ProviderError
from multistore._retry import OBJECT_STORE_RETRY, is_transient
from multistore.providers._object_store import DEFAULT_CHUNK_SIZE, KeyListing, ObjectInfo, ObjectStoreProvider

if TYPE_CHECKING:
    from collections.abc import Iterator

    from multistore._retry import RetryPolicy

log = logging.getLogger(__name__)

GCS_CAPABILITIES = CapabilitySet(
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
        Capability.PRESIGNED_URLS,
        Capability.CONTAINERS,
    }
)

_SIGNED_URL_METHODS = {"read": "GET", "write": "PUT"}


def _blob_info(blob: Any) -> ObjectInfo:
    return ObjectInfo(
        key=blob.name,
        size=int(blob.size) if blob.size is not None else None,
        modified=blob.updated,
        etag=blob.etag,
        content_type=blob.content_type,
        storage_class=blob.storage_class,
        metadata=dict(blob.metadata or {}),
    )


class GCSProvider(ObjectStoreProvider):
    """Google Cloud Storage provider.

    :param bucket: Selected bucket. ``None`` lists buckets at the root.
    :param project: Project used for bucket listing.
    :param credentials: ``google.auth`` credentials; defaults to the environment.
    :param client: Pre-built ``storage.Client``, mainly for tests.
    :param retry_policy: Backoff for throttling and transient failures.
    :param page_size: Keys requested per listing page.
    :param chunk_size: Bytes per read range when progress is reported.
    """

    def __init__(
        self,
        bucket: str | None = None,
        *,
        project: str | None = None,
        credentials: Any = None,
        client: Any = None,
        retry_policy: RetryPolicy = OBJECT_STORE_RETRY,
        page_size: int = 1000,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        super().__init__(bucket, retry_policy=retry_policy, page_size=page_size, chunk_size=chunk_size)
        self._project = project
        self._credentials = credentials
        self._client_instance = client

    @property
    def name(self) -> str:
        return "gcs"

    @property
    def display_name(self) -> str:
        return f"gs://{self._bucket}" if self._bucket else "gcs"

    @property
    def capabilities(self) -> CapabilitySet:
        return GCS_CAPABILITIES

    @property
    def _client(self) -> Any:
        if self._client_instance is None:
            from google.cloud import storage

            log.debug("Creating GCS client (project=%s)", self._project)
            self._client_instance = storage.Client(project=self._project, credentials=self._credentials)
        return self._client_instance

    @contextmanager
    def _errors(self, path: str = "") -> Iterator[None]:
        """Map google-api-core exceptions to multistore errors."""
        try:
            yield
        except ProviderError:
            raise
        except gcs_exceptions.NotFound:
            raise NotFound(f"Not found: {path}", path=path, provider=self.name) from None
        except (gcs_exceptions.Forbidden, gcs_exceptions.Unauthorized):
            raise PermissionDenied(f"Permission denied: {path}", path=path, provider=self.name) from None
        except Exception as exc:
            if is_transient(exc):
                raise ConnectionFailed(str(exc), path=path, provider=self.name) from exc
            raise ProviderError(str(exc), path=path, provider=self.name) from exc

    def _blob(self, bucket: str, key: str) -> Any:
        blob = self._client.bucket(bucket).get_blob(key)
        if blob is None:
            raise NotFound(f"Not found: {key}", path=key, provider=self.name)
        return blob

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
        with self._errors(prefix):
            iterator = self._client.list_blobs(
                bucket,
                prefix=prefix or None,
                delimiter=delimiter,
                max_results=max_keys,
                page_token=continuation_token,
            )
            page = next(iterator.pages, None)
            if page is None:
                return KeyListing([])
            objects = [_blob_info(b) for b in page]
            prefixes = sorted(page.prefixes)
            return KeyListing(objects, prefixes, continuation_token=iterator.next_page_token)

    def _head_object(self, bucket: str, key: str) -> ObjectInfo:
        with self._errors(key):
            return _blob_info(self._blob(bucket, key))

    def _get_object(self, bucket: str, key: str, offset: int | None, length: int | None) -> bytes:
        start = offset or 0
        if length == 0:
            return b""
        # download_as_bytes treats ``end`` as inclusive.
        end = None if length is None else start + length - 1
        with self._errors(key):
            blob = self._client.bucket(bucket).blob(key)
            return bytes(blob.download_as_bytes(start=start or None, end=end))

    def _put_object(
        self, bucket: str, key: str, data: bytes, content_type: str | None, metadata: dict[str, str] | None
    ) -> None:
        with self._errors(key):
            blob = self._client.bucket(bucket).blob(key)
            if metadata:
                blob.metadata = dict(metadata)
            blob.upload_from_string(data, content_type=content_type or "application/octet-stream")

    def _copy_object(self, source_bucket: str, source_key: str, dest_bucket: str, dest_key: str) -> None:
        with self._errors(source_key):
            src = self._client.bucket(source_bucket)
            src.copy_blob(src.blob(source_key), self._client.bucket(dest_bucket), dest_key)

    def _delete_object(self, bucket: str, key: str) -> None:
        try:
            with self._errors(key):
                self._client.bucket(bucket).delete_blob(key)
        except NotFound:
            log.debug("Delete of missing object %s/%s ignored", bucket, key)

    def _list_buckets(self) -> list[ObjectInfo]:
        with self._errors():
            return [ObjectInfo(key=b.name, modified=b.time_created) for b in self._client.list_buckets()]

    def _set_object_metadata(self, bucket: str, key: str, metadata: dict[str, str]) -> None:
        with self._errors(key):
            blob = self._blob(bucket, key)
            blob.metadata = dict(metadata)
            blob.patch()

    def _presign(self, bucket: str, key: str, operation: str, ttl_seconds: int) -> str:
        with self._errors(key):
            blob = self._client.bucket(bucket).blob(key)
            return str(
                blob.generate_signed_url(
                    version="v4",
                    expiration=timedelta(seconds=ttl_seconds),
                    method=_SIGNED_URL_METHODS[operation],
                )
            )

    # endregion

    def close(self) -> None:
        if self._client_instance is not None:
            close = getattr(self._client_instance, "close", None)
            if close is not None:
                close()
            self._client_instance = None
