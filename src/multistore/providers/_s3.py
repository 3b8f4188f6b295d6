"""S3-compatible object storage provider using s3fs."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from multistore._capabilities import Capability, CapabilitySet
from multistore._errors import ConnectionFailed, NotFound, PermissionDenied, ProviderError
from multistore._retry import OBJECT_STORE_RETRY, is_transient
from multistore.providers._object_store import DEFAULT_CHUNK_SIZE, KeyListing, ObjectInfo, ObjectStoreProvider

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from multistore._retry import RetryPolicy

log = logging.getLogger(__name__)

S3_CAPABILITIES = CapabilitySet(
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
        Capability.BATCH_DELETE,
        Capability.CONTAINERS,
    }
)

_PRESIGN_METHODS = {"read": "get_object", "write": "put_object"}

#: Smallest part S3 accepts in a multipart upload, except for the last one.
MIN_PART_SIZE = 5 * 1024 * 1024


def _modified(value: Any) -> datetime | None:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class S3Provider(ObjectStoreProvider):
    """S3-compatible object storage provider using s3fs.

    All calls go through ``S3FileSystem.call_s3`` so listings are paged by
    the service rather than cached by fsspec.

    :param bucket: Selected bucket. ``None`` lists buckets at the root.
    :param endpoint_url: Custom endpoint URL (e.g. for MinIO).
    :param key: AWS access key ID.
    :param secret: AWS secret access key.
    :param region_name: AWS region name.
    :param client_options: Additional options passed to s3fs.
    :param retry_policy: Backoff for throttling and transient failures.
    :param page_size: Keys requested per listing page.
    :param chunk_size: Multipart part size and read range size. Writes larger
        than one chunk use a multipart upload and report progress per part.
    """

    def __init__(
        self,
        bucket: str | None = None,
        *,
        endpoint_url: str | None = None,
        key: str | None = None,
        secret: str | None = None,
        region_name: str | None = None,
        client_options: dict[str, Any] | None = None,
        retry_policy: RetryPolicy = OBJECT_STORE_RETRY,
        page_size: int = 1000,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if chunk_size < MIN_PART_SIZE:
            raise ValueError(f"chunk_size must be at least {MIN_PART_SIZE} bytes")
        super().__init__(bucket, retry_policy=retry_policy, page_size=page_size, chunk_size=chunk_size)
        self._endpoint_url = endpoint_url
        self._key = key
        self._secret = secret
        self._region_name = region_name
        self._client_options = client_options or {}
        self._fs_instance: Any = None

    @property
    def name(self) -> str:
        return "s3"

    @property
    def display_name(self) -> str:
        return f"s3://{self._bucket}" if self._bucket else "s3"

    @property
    def capabilities(self) -> CapabilitySet:
        return S3_CAPABILITIES

    # region: lazy filesystem
    @property
    def _fs(self) -> Any:
        if self._fs_instance is None:
            import s3fs  # type: ignore[import-untyped]

            opts: dict[str, Any] = dict(self._client_options)
            if self._endpoint_url is not None:
                opts["endpoint_url"] = self._endpoint_url
            if self._key is not None:
                opts["key"] = self._key
            if self._secret is not None:
                opts["secret"] = self._secret
            if self._region_name is not None:
                client_kwargs: dict[str, Any] = opts.setdefault("client_kwargs", {})
                client_kwargs["region_name"] = self._region_name
            opts.setdefault("anon", False)
            log.debug("Creating S3FileSystem (endpoint=%s)", self._endpoint_url)
            self._fs_instance = s3fs.S3FileSystem(**opts)
        return self._fs_instance

    # endregion

    # region: error mapping
    @contextmanager
    def _errors(self, path: str = "") -> Iterator[None]:
        """Map s3fs/botocore exceptions to multistore errors."""
        try:
            yield
        except ProviderError:
            raise
        except FileNotFoundError:
            raise NotFound(f"Not found: {path}", path=path, provider=self.name) from None
        except PermissionError:
            raise PermissionDenied(f"Permission denied: {path}", path=path, provider=self.name) from None
        except Exception as exc:
            raise self._classify_error(exc, path) from exc

    def _classify_error(self, exc: Exception, path: str) -> ProviderError:
        """Classify an unknown exception into a multistore error type."""
        msg = str(exc).lower()
        if "404" in msg or "nosuchkey" in msg or "nosuchbucket" in msg or "not found" in msg:
            return NotFound(f"Not found: {path}", path=path, provider=self.name)
        if "403" in msg or "accessdenied" in msg or "access denied" in msg:
            return PermissionDenied(f"Permission denied: {path}", path=path, provider=self.name)
        if is_transient(exc) or any(kw in msg for kw in ("endpoint", "connect", "timeout", "dns", "name or service")):
            return ConnectionFailed(str(exc), path=path, provider=self.name)
        return ProviderError(str(exc), path=path, provider=self.name)

    def _s3(self, method: str, path: str, **kwargs: Any) -> Any:
        with self._errors(path):
            return self._fs.call_s3(method, **kwargs)

    # endregion

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
        kwargs: dict[str, Any] = {"Bucket": bucket, "Prefix": prefix, "MaxKeys": max_keys}
        if delimiter:
            kwargs["Delimiter"] = delimiter
        if continuation_token:
            kwargs["ContinuationToken"] = continuation_token
        response = self._s3("list_objects_v2", prefix, **kwargs)
        objects = [
            ObjectInfo(
                key=item["Key"],
                size=int(item.get("Size", 0)),
                modified=_modified(item.get("LastModified")),
                etag=str(item.get("ETag", "")).strip('"') or None,
                storage_class=item.get("StorageClass"),
            )
            for item in response.get("Contents", [])
        ]
        prefixes = [p["Prefix"] for p in response.get("CommonPrefixes", [])]
        token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        return KeyListing(objects, prefixes, continuation_token=token)

    def _head_object(self, bucket: str, key: str) -> ObjectInfo:
        response = self._s3("head_object", key, Bucket=bucket, Key=key)
        return ObjectInfo(
            key=key,
            size=int(response.get("ContentLength", 0)),
            modified=_modified(response.get("LastModified")),
            etag=str(response.get("ETag", "")).strip('"') or None,
            content_type=response.get("ContentType"),
            storage_class=response.get("StorageClass"),
            metadata=dict(response.get("Metadata", {})),
        )

    def _get_object(self, bucket: str, key: str, offset: int | None, length: int | None) -> bytes:
        start = offset or 0
        if length == 0:
            return b""
        end = None if length is None else start + length
        with self._errors(key):
            return bytes(self._fs.cat_file(f"{bucket}/{key}", start=start or None, end=end))

    @staticmethod
    def _object_options(content_type: str | None, metadata: dict[str, str] | None) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if content_type:
            options["ContentType"] = content_type
        if metadata:
            options["Metadata"] = dict(metadata)
        return options

    def _put_object(
        self, bucket: str, key: str, data: bytes, content_type: str | None, metadata: dict[str, str] | None
    ) -> None:
        self._s3("put_object", key, Bucket=bucket, Key=key, Body=data, **self._object_options(content_type, metadata))

    def _put_stream(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str | None,
        metadata: dict[str, str] | None,
        on_chunk: Callable[[int], None],
    ) -> None:
        """Single PUT up to one chunk, multipart upload above it.

        A failed multipart upload is aborted before the error propagates.
        """
        if len(data) <= self._chunk_size:
            self._put_object(bucket, key, data, content_type, metadata)
            on_chunk(len(data))
            return
        upload = self._s3(
            "create_multipart_upload", key, Bucket=bucket, Key=key, **self._object_options(content_type, metadata)
        )
        upload_id = upload["UploadId"]
        parts: list[dict[str, Any]] = []
        try:
            for number, start in enumerate(range(0, len(data), self._chunk_size), start=1):
                body = data[start : start + self._chunk_size]
                response = self._s3(
                    "upload_part", key, Bucket=bucket, Key=key, UploadId=upload_id, PartNumber=number, Body=body
                )
                parts.append({"ETag": response["ETag"], "PartNumber": number})
                on_chunk(len(body))
            self._s3(
                "complete_multipart_upload",
                key,
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except Exception:
            log.warning("Aborting multipart upload of %s/%s after %d parts", bucket, key, len(parts))
            try:
                self._s3("abort_multipart_upload", key, Bucket=bucket, Key=key, UploadId=upload_id)
            except ProviderError:
                log.warning("Could not abort multipart upload %s", upload_id, exc_info=True)
            raise
        log.debug("Uploaded %s/%s in %d parts", bucket, key, len(parts))

    def _copy_object(self, source_bucket: str, source_key: str, dest_bucket: str, dest_key: str) -> None:
        self._s3(
            "copy_object",
            source_key,
            Bucket=dest_bucket,
            Key=dest_key,
            CopySource={"Bucket": source_bucket, "Key": source_key},
            MetadataDirective="COPY",
        )

    def _delete_object(self, bucket: str, key: str) -> None:
        self._s3("delete_object", key, Bucket=bucket, Key=key)

    def _list_buckets(self) -> list[ObjectInfo]:
        response = self._s3("list_buckets", "")
        return [ObjectInfo(key=b["Name"], modified=_modified(b.get("CreationDate"))) for b in response.get("Buckets", [])]

    def _set_object_metadata(self, bucket: str, key: str, metadata: dict[str, str]) -> None:
        head = self._head_object(bucket, key)
        kwargs: dict[str, Any] = {
            "Bucket": bucket,
            "Key": key,
            "CopySource": {"Bucket": bucket, "Key": key},
            "Metadata": dict(metadata),
            "MetadataDirective": "REPLACE",
        }
        if head.content_type:
            kwargs["ContentType"] = head.content_type
        self._s3("copy_object", key, **kwargs)

    def _presign(self, bucket: str, key: str, operation: str, ttl_seconds: int) -> str:
        with self._errors(key):
            return str(self._fs.url(f"{bucket}/{key}", expires=ttl_seconds, client_method=_PRESIGN_METHODS[operation]))

    # endregion

    def close(self) -> None:
        if self._fs_instance is not None:
            self._fs_instance.clear_instance_cache()
            self._fs_instance = None
