"""Provider abstract base class: the capability-negotiated contract."""

from __future__ import annotations

import abc
import asyncio
import logging
import os
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

from multistore._cancellation import NEVER_CANCELLED
from multistore._capabilities import Capability, required_capability
from multistore._errors import ProviderError
from multistore._models import EntryType, ListResult, ProgressEvent
from multistore._result import OperationResult, OperationStatus

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Sequence
    from types import TracebackType

    from multistore._cancellation import CancellationToken
    from multistore._capabilities import CapabilitySet
    from multistore._models import Entry
    from multistore._types import Content, PathLike, ProgressCallback

T = TypeVar("T")

log = logging.getLogger(__name__)


def paginate(entries: Sequence[Entry], limit: int | None = None, continuation_token: str | None = None) -> ListResult:
    """Slice a complete listing into one page.

    For backends that list a directory in a single call. The continuation
    token is the offset of the next page.

    :raises ProviderError: If ``continuation_token`` is not an offset.
    """
    try:
        start = int(continuation_token) if continuation_token else 0
    except ValueError:
        raise ProviderError(f"Invalid continuation token: {continuation_token!r}") from None
    if start < 0:
        raise ProviderError(f"Invalid continuation token: {continuation_token!r}")
    if limit is None or limit <= 0:
        page = list(entries[start:])
        return ListResult(entries=page, total_count=len(entries))
    end = start + limit
    has_more = end < len(entries)
    return ListResult(
        entries=list(entries[start:end]),
        continuation_token=str(end) if has_more else None,
        has_more=has_more,
        total_count=len(entries),
    )


def _rebase(path: str, source: str, dest: str) -> str:
    rel = path.rstrip("/")[len(source.rstrip("/")) :].lstrip("/")
    return f"{dest.rstrip('/')}/{rel}" if dest.strip("/") else rel


def _local_tree(root: Path) -> list[tuple[Path, list[str], list[str]]]:
    """Walk ``root`` eagerly, children sorted. Runs in a worker thread."""
    tree = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        tree.append((Path(dirpath), list(dirnames), sorted(filenames)))
    return tree


def _emit(on_progress: ProgressCallback | None, event: ProgressEvent) -> None:
    if on_progress is not None:
        on_progress(event)


class Provider(abc.ABC):
    """Abstract base class for all storage providers.

    Every public operation is a coroutine returning an
    :class:`~multistore.OperationResult`; nothing raises across this
    boundary. Concrete providers raise :class:`~multistore.ProviderError`
    subclasses internally and let :meth:`_run` convert them.

    Optional operations (see :data:`~multistore.OPTIONAL_OPERATIONS`)
    return ``UNIMPLEMENTED`` here; providers override the ones whose
    capability they declare.
    """

    #: Run blocking primitives in a worker thread.
    _offload_io = True

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Provider type tag (e.g. ``'local'``, ``'s3'``)."""

    @property
    def display_name(self) -> str:
        return self.name

    @property
    @abc.abstractmethod
    def capabilities(self) -> CapabilitySet:
        """Declared capabilities of this provider."""

    # region: capability introspection
    def get_capabilities(self) -> CapabilitySet:
        return self.capabilities

    def has_capability(self, cap: Capability) -> bool:
        return self.capabilities.supports(cap)

    def require(self, cap: Capability) -> None:
        """:raises CapabilityNotSupported: If ``cap`` is not declared."""
        self.capabilities.require(cap, provider=self.name)

    async def call_optional(self, operation: str, *args: Any, **kwargs: Any) -> OperationResult[Any]:
        """Dispatch an optional operation after checking its capability.

        Never touches the backend when the capability is absent.

        :raises ValueError: If ``operation`` is not an optional operation.
        """
        cap = required_capability(operation)
        if cap is None:
            raise ValueError(f"{operation!r} is not an optional operation")
        if not self.has_capability(cap):
            return OperationResult.unimplemented(operation)
        method: Callable[..., Any] = getattr(self, operation)
        return await method(*args, **kwargs)

    # endregion

    # region: plumbing
    async def _run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> OperationResult[T]:
        """Call a blocking primitive and wrap its outcome in a result."""
        try:
            if self._offload_io:
                data = await asyncio.to_thread(func, *args, **kwargs)
            else:
                data = func(*args, **kwargs)
        except Exception as exc:
            if not isinstance(exc, ProviderError):
                log.debug("Unmapped error from %s.%s", self.name, getattr(func, "__name__", func), exc_info=True)
            return OperationResult.from_exception(exc)
        return OperationResult.success(data)

    def _relay_progress(self, on_progress: ProgressCallback | None) -> ProgressCallback | None:
        """Wrap ``on_progress`` for primitives running inside :meth:`_run`.

        Events raised off the event loop thread are handed back with
        ``call_soon_threadsafe``, so they arrive in order and before the
        awaiting operation resumes. Must be called on the event loop.
        """
        if on_progress is None:
            return None
        loop = asyncio.get_running_loop()
        loop_thread = threading.get_ident()

        def _relay(event: ProgressEvent) -> None:
            if threading.get_ident() == loop_thread:
                on_progress(event)
            else:
                loop.call_soon_threadsafe(on_progress, event)

        return _relay

    async def walk(self, path: str) -> AsyncIterator[Entry]:
        """Yield every entry below ``path``, parents before children.

        :raises ProviderError: If a listing fails.
        """
        token: str | None = None
        subdirs: list[Entry] = []
        while True:
            result = await self.list(path, continuation_token=token)
            result.raise_for_status()
            page: ListResult = result.data  # type: ignore[assignment]
            for entry in page.entries:
                yield entry
                if entry.is_directory:
                    subdirs.append(entry)
            if not page.has_more:
                break
            token = page.continuation_token
        for sub in subdirs:
            async for entry in self.walk(sub.path):
                yield entry

    # endregion

    # region: mandatory operations
    @abc.abstractmethod
    async def list(
        self,
        path: str = "",
        *,
        limit: int | None = None,
        continuation_token: str | None = None,
        recursive: bool = False,
    ) -> OperationResult[ListResult]:
        """List the entries directly below ``path`` (or all, if ``recursive``)."""

    @abc.abstractmethod
    async def get_metadata(self, path: str) -> OperationResult[Entry]:
        """Return the entry at ``path``."""

    async def exists(self, path: str) -> OperationResult[bool]:
        result = await self.get_metadata(path)
        if result.ok:
            return OperationResult.success(True)
        if result.status is OperationStatus.NOT_FOUND:
            return OperationResult.success(False)
        return result  # type: ignore[return-value]

    @abc.abstractmethod
    async def read(
        self,
        path: str,
        *,
        offset: int | None = None,
        length: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> OperationResult[bytes]:
        """Read a file, optionally a byte range of it."""

    @abc.abstractmethod
    async def write(
        self,
        path: str,
        content: Content,
        *,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> OperationResult[None]:
        """Create or replace a file."""

    @abc.abstractmethod
    async def mkdir(self, path: str) -> OperationResult[None]:
        """Create a directory (and missing parents)."""

    @abc.abstractmethod
    async def delete(
        self,
        path: str,
        *,
        recursive: bool = False,
        on_progress: ProgressCallback | None = None,
        token: CancellationToken = NEVER_CANCELLED,
    ) -> OperationResult[None]:
        """Delete a file, or a directory when ``recursive``."""

    async def copy(
        self,
        source: str,
        dest: str,
        *,
        recursive: bool = False,
        overwrite: bool = False,
        on_progress: ProgressCallback | None = None,
        token: CancellationToken = NEVER_CANCELLED,
    ) -> OperationResult[None]:
        """Copy ``source`` to ``dest``.

        The base implementation streams through :meth:`read` and
        :meth:`write`; providers with a native copy override it.
        """
        if not self.capabilities.supports_all(Capability.READ, Capability.WRITE):
            return OperationResult.unimplemented("copy")
        return await self._copy_by_streaming(source, dest, recursive, overwrite, on_progress, token)

    async def move(
        self,
        source: str,
        dest: str,
        *,
        recursive: bool = False,
        overwrite: bool = False,
        on_progress: ProgressCallback | None = None,
        token: CancellationToken = NEVER_CANCELLED,
    ) -> OperationResult[None]:
        """Move ``source`` to ``dest``.

        The base implementation is :meth:`copy` then :meth:`delete`; the
        delete is only attempted after a successful copy.
        """
        if not self.has_capability(Capability.DELETE):
            return OperationResult.unimplemented("move")
        result = await self.copy(
            source, dest, recursive=recursive, overwrite=overwrite, on_progress=on_progress, token=token
        )
        if not result.ok:
            return result
        return await self.delete(source, recursive=recursive, token=token)

    async def download_to_local(
        self,
        remote_path: str,
        local_path: PathLike,
        *,
        recursive: bool = False,
        overwrite: bool = True,
        on_progress: ProgressCallback | None = None,
        token: CancellationToken = NEVER_CANCELLED,
    ) -> OperationResult[None]:
        """Copy a remote file (or tree, when ``recursive``) to the local filesystem."""
        meta = await self.get_metadata(remote_path)
        if not meta.ok:
            return meta  # type: ignore[return-value]
        target = Path(local_path)
        entry: Entry = meta.data  # type: ignore[assignment]
        if not entry.is_directory:
            return await self._download_file(entry.path, target, overwrite, on_progress)
        if not recursive:
            return OperationResult.failure(f"{remote_path} is a directory; pass recursive=True")

        files = 0
        try:
            await asyncio.to_thread(target.mkdir, parents=True, exist_ok=True)
            async for child in self.walk(entry.path):
                if token.is_cancelled:
                    return OperationResult.cancelled()
                local = target / _rebase(child.path, entry.path, "")
                if child.is_directory:
                    await asyncio.to_thread(local.mkdir, parents=True, exist_ok=True)
                    continue
                result = await self._download_file(child.path, local, overwrite, None)
                if not result.ok:
                    return result
                files += 1
                _emit(on_progress, ProgressEvent.for_files("download", files, current_file=child.path))
        except (ProviderError, OSError) as exc:
            return OperationResult.from_exception(exc)
        return OperationResult.success()

    async def upload_from_local(
        self,
        local_path: PathLike,
        remote_path: str,
        *,
        recursive: bool = False,
        overwrite: bool = True,
        on_progress: ProgressCallback | None = None,
        token: CancellationToken = NEVER_CANCELLED,
    ) -> OperationResult[None]:
        """Copy a local file (or tree, when ``recursive``) to the provider."""
        source = Path(local_path)
        if not await asyncio.to_thread(source.exists):
            return OperationResult.not_found(str(source))
        if not await asyncio.to_thread(source.is_dir):
            return await self._upload_file(source, remote_path, overwrite, on_progress)
        if not recursive:
            return OperationResult.failure(f"{source} is a directory; pass recursive=True")

        result = await self.mkdir(remote_path)
        if not result.ok:
            return result
        files = 0
        try:
            tree = await asyncio.to_thread(_local_tree, source)
        except OSError as exc:
            return OperationResult.from_exception(exc)
        for dirpath, dirnames, filenames in tree:
            rel_dir = dirpath.relative_to(source).as_posix()
            remote_dir = remote_path if rel_dir == "." else self._child_path(remote_path, rel_dir, directory=True)
            for dirname in dirnames:
                if token.is_cancelled:
                    return OperationResult.cancelled()
                result = await self.mkdir(self._child_path(remote_dir, dirname, directory=True))
                if not result.ok:
                    return result
            for filename in filenames:
                if token.is_cancelled:
                    return OperationResult.cancelled()
                result = await self._upload_file(
                    dirpath / filename, self._child_path(remote_dir, filename), overwrite, None
                )
                if not result.ok:
                    return result
                files += 1
                _emit(on_progress, ProgressEvent.for_files("upload", files, current_file=filename))
        return OperationResult.success()

    # endregion

    # region: compositions
    def _child_path(self, parent: str, name: str, *, directory: bool = False) -> str:
        """Path of ``name`` inside ``parent``. Object stores add a trailing slash for directories."""
        base = parent.rstrip("/")
        return f"{base}/{name}" if base else name

    async def _download_file(
        self, remote_path: str, target: Path, overwrite: bool, on_progress: ProgressCallback | None
    ) -> OperationResult[None]:
        if not overwrite and await asyncio.to_thread(target.exists):
            return OperationResult.conflict(f"Local file already exists: {target}", path=str(target))
        result = await self.read(remote_path, on_progress=on_progress)
        if not result.ok:
            return result  # type: ignore[return-value]
        data: bytes = result.data  # type: ignore[assignment]

        def _save() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        try:
            await asyncio.to_thread(_save)
        except OSError as exc:
            return OperationResult.from_exception(exc)
        return OperationResult.success()

    async def _upload_file(
        self, source: Path, remote_path: str, overwrite: bool, on_progress: ProgressCallback | None
    ) -> OperationResult[None]:
        if not overwrite:
            exists = await self.exists(remote_path)
            if not exists.ok:
                return exists  # type: ignore[return-value]
            if exists.data:
                return OperationResult.conflict(f"Destination already exists: {remote_path}", path=remote_path)
        try:
            data = await asyncio.to_thread(source.read_bytes)
        except OSError as exc:
            return OperationResult.from_exception(exc)
        return await self.write(remote_path, data, on_progress=on_progress)

    async def _copy_by_streaming(
        self,
        source: str,
        dest: str,
        recursive: bool,
        overwrite: bool,
        on_progress: ProgressCallback | None,
        token: CancellationToken,
    ) -> OperationResult[None]:
        meta = await self.get_metadata(source)
        if not meta.ok:
            return meta  # type: ignore[return-value]
        entry: Entry = meta.data  # type: ignore[assignment]
        if not entry.is_directory:
            return await self._copy_file(entry.path, dest, overwrite, on_progress)
        if not recursive:
            return OperationResult.failure(f"{source} is a directory; pass recursive=True")
        if f"{dest.strip('/')}/".startswith(f"{entry.path.strip('/')}/"):
            return OperationResult.conflict(f"Cannot copy {entry.path} into itself", path=dest)

        result = await self.mkdir(dest)
        if not result.ok:
            return result
        files = 0
        try:
            async for child in self.walk(entry.path):
                if token.is_cancelled:
                    return OperationResult.cancelled()
                target = _rebase(child.path, entry.path, dest)
                if child.is_directory:
                    result = await self.mkdir(target)
                else:
                    result = await self._copy_file(child.path, target, overwrite, None)
                    files += 1
                    _emit(on_progress, ProgressEvent.for_files("copy", files, current_file=child.path))
                if not result.ok:
                    return result
        except ProviderError as exc:
            return OperationResult.from_exception(exc)
        return OperationResult.success()

    async def _copy_file(
        self, source: str, dest: str, overwrite: bool, on_progress: ProgressCallback | None
    ) -> OperationResult[None]:
        if not overwrite:
            exists = await self.exists(dest)
            if not exists.ok:
                return exists  # type: ignore[return-value]
            if exists.data:
                return OperationResult.conflict(f"Destination already exists: {dest}", path=dest)
        data = await self.read(source)
        if not data.ok:
            return data  # type: ignore[return-value]
        return await self.write(dest, data.data, on_progress=on_progress)  # type: ignore[arg-type]

    # endregion

    # region: optional operations
    async def connect(self) -> OperationResult[None]:
        return OperationResult.unimplemented("connect")

    async def disconnect(self) -> OperationResult[None]:
        return OperationResult.unimplemented("disconnect")

    async def is_connected(self) -> OperationResult[bool]:
        return OperationResult.unimplemented("is_connected")

    async def list_containers(self) -> OperationResult[list[Entry]]:
        return OperationResult.unimplemented("list_containers")

    async def set_container(self, name: str) -> OperationResult[None]:
        return OperationResult.unimplemented("set_container")

    async def get_container(self) -> OperationResult[str | None]:
        return OperationResult.unimplemented("get_container")

    async def set_metadata(self, path: str, metadata: dict[str, str]) -> OperationResult[None]:
        return OperationResult.unimplemented("set_metadata")

    async def get_presigned_url(
        self, path: str, operation: str = "read", ttl_seconds: int = 3600
    ) -> OperationResult[str]:
        return OperationResult.unimplemented("get_presigned_url")

    async def read_symlink(self, path: str) -> OperationResult[str]:
        return OperationResult.unimplemented("read_symlink")

    async def set_permissions(self, path: str, mode: int) -> OperationResult[None]:
        return OperationResult.unimplemented("set_permissions")

    # endregion

    def close(self) -> None:  # noqa: B027
        """Release resources. Default is a no-op."""

    async def __aenter__(self) -> Provider:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await asyncio.to_thread(self.close)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


def entry_type_for(is_dir: bool) -> EntryType:
    return EntryType.DIRECTORY if is_dir else EntryType.FILE
