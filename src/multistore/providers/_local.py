"""Local filesystem provider, stdlib only."""

from __future__ import annotations

import errno
import os
import shutil
import stat
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from multistore._cancellation import NEVER_CANCELLED
from multistore._capabilities import Capability, CapabilitySet
from multistore._entry_id import generate_entry_id
from multistore._errors import AlreadyExists, InvalidPath, NotFound, PermissionDenied, ProviderError
from multistore._models import Entry, EntryMetadata, ListResult, ProgressEvent
from multistore._path import normalize_key
from multistore._provider import Provider, entry_type_for, paginate
from multistore._result import OperationResult

if TYPE_CHECKING:
    from collections.abc import Iterator

    from multistore._cancellation import CancellationToken
    from multistore._types import Content, ProgressCallback

LOCAL_CAPABILITIES = CapabilitySet(
    {
        Capability.LIST,
        Capability.READ,
        Capability.WRITE,
        Capability.DELETE,
        Capability.MKDIR,
        Capability.RMDIR,
        Capability.COPY,
        Capability.MOVE,
        Capability.DOWNLOAD,
        Capability.UPLOAD,
        Capability.PERMISSIONS,
        Capability.SYMLINKS,
    }
)

_CHUNK_SIZE = 1024 * 1024


class LocalProvider(Provider):
    """Provider over a directory of the local filesystem.

    :param root: Directory all paths are relative to. Created if missing.
    """

    def __init__(self, root: str) -> None:
        self._root = Path(root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def name(self) -> str:
        return "local"

    @property
    def capabilities(self) -> CapabilitySet:
        return LOCAL_CAPABILITIES

    @property
    def root(self) -> Path:
        return self._root

    # region: path safety
    def _resolve(self, path: str, *, follow: bool = True) -> Path:
        """Absolute path for ``path``, confined to the root.

        ``.resolve()`` follows symlinks, so a link pointing outside the root
        is rejected too. With ``follow=False`` only the parent is resolved,
        which lets callers act on the link itself.

        :raises InvalidPath: If the path escapes the root.
        """
        key = normalize_key(path).rstrip("/")
        candidate = self._root / key
        resolved = candidate.resolve() if follow else candidate.parent.resolve() / candidate.name
        try:
            resolved.relative_to(self._root)
        except ValueError:
            raise InvalidPath(f"Path escapes root directory: {path}", path=path, provider=self.name) from None
        return resolved if key else self._root

    def _key(self, full: Path) -> str:
        return full.relative_to(self._root).as_posix() if full != self._root else ""

    # endregion

    @contextmanager
    def _errors(self, path: str = "") -> Iterator[None]:
        """Map OS errors to multistore errors."""
        try:
            yield
        except ProviderError:
            raise
        except FileNotFoundError:
            raise NotFound(f"Not found: {path}", path=path, provider=self.name) from None
        except FileExistsError:
            raise AlreadyExists(f"Already exists: {path}", path=path, provider=self.name) from None
        except PermissionError:
            raise PermissionDenied(f"Permission denied: {path}", path=path, provider=self.name) from None
        except OSError as exc:
            if exc.errno in (errno.ENOTEMPTY, 145):
                raise ProviderError(f"Directory not empty: {path}", path=path, provider=self.name) from None
            raise ProviderError(str(exc), path=path, provider=self.name) from exc

    def _entry(self, full: Path) -> Entry:
        st = full.lstat()
        is_link = stat.S_ISLNK(st.st_mode)
        is_dir = full.is_dir()
        return Entry(
            id=generate_entry_id(),
            name=full.name or self._root.name,
            type=entry_type_for(is_dir),
            path=self._key(full),
            size=None if is_dir else st.st_size,
            modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            metadata=EntryMetadata(
                permissions=stat.filemode(st.st_mode),
                owner=str(st.st_uid),
                group=str(st.st_gid),
                accessed=datetime.fromtimestamp(st.st_atime, tz=timezone.utc),
                symlink_target=os.readlink(full) if is_link else None,
            ),
        )

    # region: blocking primitives
    def _list(self, path: str, limit: int | None, token: str | None, recursive: bool) -> ListResult:
        with self._errors(path):
            full = self._resolve(path)
            if not full.is_dir():
                raise NotFound(f"Not a directory: {path}", path=path, provider=self.name)
            children = sorted(full.rglob("*") if recursive else full.iterdir())
            return paginate([self._entry(c) for c in children], limit, token)

    def _stat(self, path: str) -> Entry:
        with self._errors(path):
            full = self._resolve(path, follow=False)
            return self._entry(full)

    def _read(self, path: str, offset: int | None, length: int | None) -> bytes:
        with self._errors(path):
            full = self._resolve(path)
            with full.open("rb") as f:
                if offset:
                    f.seek(offset)
                return f.read() if length is None else f.read(length)

    def _write(self, path: str, content: Content) -> int:
        with self._errors(path):
            full = self._resolve(path)
            if full == self._root or full.is_dir():
                raise InvalidPath(f"Is a directory: {path}", path=path, provider=self.name)
            full.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, (bytes, bytearray, memoryview)):
                full.write_bytes(bytes(content))
            else:
                with full.open("wb") as f:
                    shutil.copyfileobj(content, f, _CHUNK_SIZE)
            return full.stat().st_size

    def _mkdir(self, path: str) -> None:
        with self._errors(path):
            full = self._resolve(path)
            if full.exists() and not full.is_dir():
                raise AlreadyExists(f"A file exists at {path}", path=path, provider=self.name)
            full.mkdir(parents=True, exist_ok=True)

    def _delete(self, path: str, recursive: bool) -> None:
        with self._errors(path):
            full = self._resolve(path, follow=False)
            if full == self._root:
                raise InvalidPath("Refusing to delete the root directory", path=path, provider=self.name)
            if full.is_symlink() or not full.is_dir():
                full.unlink()
            elif recursive:
                shutil.rmtree(full)
            else:
                full.rmdir()

    def _transfer(self, source: str, dest: str, recursive: bool, overwrite: bool, *, move: bool) -> None:
        with self._errors(source):
            src = self._resolve(source, follow=False)
            dst = self._resolve(dest, follow=False)
            if not src.exists() and not src.is_symlink():
                raise NotFound(f"Source not found: {source}", path=source, provider=self.name)
            if src == dst:
                raise AlreadyExists(f"Source and destination are the same: {dest}", path=dest, provider=self.name)
            if src.is_dir() and not src.is_symlink() and dst.is_relative_to(src):
                raise InvalidPath(f"Cannot move or copy {source} into itself", path=dest, provider=self.name)
            if dst.exists():
                if not overwrite:
                    raise AlreadyExists(f"Destination already exists: {dest}", path=dest, provider=self.name)
                if dst.is_dir() and not dst.is_symlink():
                    shutil.rmtree(dst)
                else:
                    dst.unlink()
            dst.parent.mkdir(parents=True, exist_ok=True)
            if move:
                shutil.move(str(src), str(dst))
            elif src.is_dir() and not src.is_symlink():
                if not recursive:
                    raise InvalidPath(f"{source} is a directory; pass recursive=True", path=source, provider=self.name)
                shutil.copytree(src, dst, symlinks=True)
            else:
                shutil.copy2(src, dst, follow_symlinks=False)

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
        return await self._run(self._list, path, limit, continuation_token, recursive)

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
        result = await self._run(self._read, path, offset, length)
        if result.ok and on_progress is not None:
            size = len(result.data)  # type: ignore[arg-type]
            on_progress(ProgressEvent.for_bytes("read", size, size, current_file=path))
        return result

    async def write(
        self,
        path: str,
        content: Content,
        *,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> OperationResult[None]:
        result = await self._run(self._write, path, content)
        if not result.ok:
            return result  # type: ignore[return-value]
        if on_progress is not None:
            size: int = result.data  # type: ignore[assignment]
            on_progress(ProgressEvent.for_bytes("write", size, size, current_file=path))
        return OperationResult.success()

    async def mkdir(self, path: str) -> OperationResult[None]:
        return await self._run(self._mkdir, path)

    async def delete(
        self,
        path: str,
        *,
        recursive: bool = False,
        on_progress: ProgressCallback | None = None,
        token: CancellationToken = NEVER_CANCELLED,
    ) -> OperationResult[None]:
        if token.is_cancelled:
            return OperationResult.cancelled()
        return await self._run(self._delete, path, recursive)

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
        if token.is_cancelled:
            return OperationResult.cancelled()
        return await self._run(self._transfer, source, dest, recursive, overwrite, move=False)

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
        if token.is_cancelled:
            return OperationResult.cancelled()
        return await self._run(self._transfer, source, dest, recursive, overwrite, move=True)

    # endregion

    # region: optional operations
    async def read_symlink(self, path: str) -> OperationResult[str]:
        def _readlink() -> str:
            with self._errors(path):
                full = self._resolve(path, follow=False)
                if not full.is_symlink():
                    raise InvalidPath(f"Not a symlink: {path}", path=path, provider=self.name)
                return os.readlink(full)

        return await self._run(_readlink)

    async def set_permissions(self, path: str, mode: int) -> OperationResult[None]:
        def _chmod() -> None:
            with self._errors(path):
                os.chmod(self._resolve(path), mode)

        return await self._run(_chmod)

    # endregion
