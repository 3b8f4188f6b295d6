"""FTP provider using ftplib."""

from __future__ import annotations

import contextlib
import ftplib
import io
import logging
import posixpath
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from multistore._cancellation import NEVER_CANCELLED
from multistore._capabilities import Capability, CapabilitySet
from multistore._entry_id import generate_entry_id
from multistore._errors import (
    AlreadyExists,
    ConnectionFailed,
    InvalidPath,
    NotFound,
    PermissionDenied,
    ProviderError,
)
from multistore._models import Entry, EntryMetadata, EntryType, ListResult, ProgressEvent
from multistore._path import normalize_key
from multistore._provider import Provider, paginate
from multistore._result import OperationResult

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from multistore._cancellation import CancellationToken
    from multistore._types import Content, ProgressCallback

log = logging.getLogger(__name__)

# No COPY: the base class composes copy from read and write.
FTP_CAPABILITIES = CapabilitySet(
    {
        Capability.LIST,
        Capability.READ,
        Capability.WRITE,
        Capability.DELETE,
        Capability.MKDIR,
        Capability.RMDIR,
        Capability.MOVE,
        Capability.DOWNLOAD,
        Capability.UPLOAD,
        Capability.CONNECTION,
    }
)

_BLOCK_SIZE = 8192
_MLSD_FACTS = ["type", "size", "modify", "perm"]


def _parse_modify(value: str | None) -> datetime | None:
    """Parse an MLSD ``modify`` fact (``YYYYMMDDHHMMSS[.sss]``, UTC)."""
    if not value:
        return None
    try:
        return datetime.strptime(value[:14], "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


class FTPProvider(Provider):
    """FTP provider over a single control connection.

    Requires a server that supports ``MLSD`` (RFC 3659). All commands are
    serialized on one connection, opened lazily and retried with backoff.

    :param host: FTP server hostname.
    :param port: Control port (default: 21).
    :param username: Login name (default: anonymous).
    :param password: Login password.
    :param base_path: Root directory on the server.
    :param passive: Use passive mode for data connections.
    :param use_tls: Use explicit FTPS (``FTP_TLS``) and protect data channels.
    :param timeout: Socket timeout in seconds.
    :param connect_attempts: Total connection attempts before giving up.
    :param client_factory: Builds the ``ftplib.FTP``-compatible client, e.g. an ``FTP_TLS`` with a custom context.
    """

    def __init__(
        self,
        host: str,
        *,
        port: int = 21,
        username: str = "anonymous",
        password: str = "",
        base_path: str = "/",
        passive: bool = True,
        use_tls: bool = False,
        timeout: float = 30.0,
        connect_attempts: int = 3,
        client_factory: Callable[[], Any] | None = None,
    ) -> None:
        if not host or not host.strip():
            raise ValueError("host must be a non-empty string")
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._base_path = "/" + base_path.strip("/") if base_path.strip("/") else "/"
        self._passive = passive
        self._use_tls = use_tls
        self._timeout = timeout
        self._connect_attempts = max(1, connect_attempts)
        self._client_factory = client_factory or (ftplib.FTP_TLS if use_tls else ftplib.FTP)
        self._lock = threading.RLock()
        self._client: Any = None

    @property
    def name(self) -> str:
        return "ftp"

    @property
    def display_name(self) -> str:
        return f"ftp://{self._host}:{self._port}{self._base_path}"

    @property
    def capabilities(self) -> CapabilitySet:
        return FTP_CAPABILITIES

    # region: connection
    @property
    def _ftp(self) -> Any:
        if self._client is None:
            self._connect()
        return self._client

    def _connect(self) -> None:
        @retry(
            retry=retry_if_exception_type((OSError, EOFError, ftplib.error_temp)),
            stop=stop_after_attempt(self._connect_attempts),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            before_sleep=before_sleep_log(log, logging.WARNING),  # type: ignore[arg-type,unused-ignore]
            reraise=True,
        )
        def _do_connect() -> Any:
            log.info("Connecting to ftp://%s:%d as %s", self._host, self._port, self._username)
            client = self._client_factory()
            client.connect(self._host, self._port, timeout=self._timeout)
            client.login(self._username, self._password)
            if self._use_tls:
                client.prot_p()
            client.set_pasv(self._passive)
            return client

        try:
            client = _do_connect()
        except ftplib.error_perm as exc:
            raise PermissionDenied(f"Login failed: {exc}", provider=self.name) from exc
        except (OSError, EOFError, ftplib.Error) as exc:
            raise ConnectionFailed(f"Could not connect to {self._host}:{self._port}: {exc}", provider=self.name) from exc
        self._client = client
        self._ensure_dir(self._base_path)
        log.info("FTP connection established.")

    def _is_connected(self) -> bool:
        if self._client is None:
            return False
        try:
            self._client.voidcmd("NOOP")
            return True
        except (OSError, EOFError, ftplib.Error):
            return False

    def _close_client(self) -> None:
        if self._client is None:
            return
        try:
            self._client.quit()
        except (OSError, EOFError, ftplib.Error):
            with contextlib.suppress(Exception):
                self._client.close()
        self._client = None

    # endregion

    # region: error mapping
    @contextmanager
    def _errors(self, path: str = "") -> Iterator[None]:
        """Map ftplib reply codes and socket errors to multistore errors."""
        try:
            with self._lock:
                yield
        except ProviderError:
            raise
        except ftplib.error_perm as exc:
            reply = str(exc)[:3]
            if reply == "550":
                raise NotFound(f"Not found: {path}", path=path, provider=self.name) from None
            if reply in ("530", "532"):
                raise PermissionDenied(f"Permission denied: {path}", path=path, provider=self.name) from None
            if reply == "553":
                raise InvalidPath(f"File name not allowed: {path}", path=path, provider=self.name) from None
            raise ProviderError(str(exc), path=path, provider=self.name) from exc
        except (ftplib.error_temp, OSError, EOFError) as exc:
            self._client = None
            raise ConnectionFailed(str(exc), path=path, provider=self.name) from exc
        except ftplib.Error as exc:
            raise ProviderError(str(exc), path=path, provider=self.name) from exc

    # endregion

    # region: path helpers
    def _ftp_path(self, path: str) -> str:
        key = normalize_key(path).rstrip("/")
        return posixpath.join(self._base_path, key) if key else self._base_path

    def _key(self, ftp_path: str) -> str:
        if self._base_path == "/":
            return ftp_path.lstrip("/")
        return ftp_path[len(self._base_path) :].lstrip("/")

    def _ensure_dir(self, ftp_path: str) -> None:
        current = ""
        for part in ftp_path.split("/"):
            if not part:
                continue
            current = f"{current}/{part}"
            with contextlib.suppress(ftplib.error_perm):
                self._ftp.mkd(current)

    def _facts(self, ftp_path: str) -> list[tuple[str, dict[str, str]]]:
        """Children of ``ftp_path`` as ``(name, facts)``, without ``.`` and ``..``."""
        try:
            listing = list(self._ftp.mlsd(ftp_path, facts=_MLSD_FACTS))
        except ftplib.error_perm as exc:
            # RFC 3659 answers 501 when the MLSD target is not a directory.
            if str(exc)[:3] in ("501", "550"):
                key = self._key(ftp_path)
                raise NotFound(f"Not found: {key}", path=key, provider=self.name) from None
            raise
        return sorted(
            (name, facts)
            for name, facts in listing
            if facts.get("type", "").lower() not in ("cdir", "pdir") and name not in (".", "..")
        )

    def _entry(self, ftp_path: str, facts: dict[str, str]) -> Entry:
        is_dir = facts.get("type", "").lower() in ("dir", "cdir", "pdir")
        key = self._key(ftp_path)
        return Entry(
            id=generate_entry_id(),
            name=posixpath.basename(key) or posixpath.basename(self._base_path),
            type=EntryType.DIRECTORY if is_dir else EntryType.FILE,
            path=key,
            size=None if is_dir else int(facts.get("size", 0)),
            modified=_parse_modify(facts.get("modify")),
            metadata=EntryMetadata(permissions=facts.get("perm")),
        )

    def _lookup(self, ftp_path: str) -> dict[str, str]:
        if ftp_path == self._base_path:
            return {"type": "dir"}
        parent, name = posixpath.split(ftp_path)
        for child, facts in self._facts(parent):
            if child == name:
                return facts
        raise NotFound(f"Not found: {self._key(ftp_path)}", path=self._key(ftp_path), provider=self.name)

    # endregion

    # region: blocking primitives
    def _list_dir(self, ftp_path: str, recursive: bool) -> list[Entry]:
        entries: list[Entry] = []
        for name, facts in self._facts(ftp_path):
            child = posixpath.join(ftp_path, name)
            entry = self._entry(child, facts)
            entries.append(entry)
            if recursive and entry.is_directory:
                entries.extend(self._list_dir(child, recursive=True))
        return entries

    def _list(self, path: str, limit: int | None, token: str | None, recursive: bool) -> ListResult:
        with self._errors(path):
            ftp_path = self._ftp_path(path)
            if self._lookup(ftp_path).get("type", "").lower() not in ("dir", "cdir"):
                raise NotFound(f"Not a directory: {path}", path=path, provider=self.name)
            return paginate(self._list_dir(ftp_path, recursive), limit, token)

    def _stat(self, path: str) -> Entry:
        with self._errors(path):
            ftp_path = self._ftp_path(path)
            return self._entry(ftp_path, self._lookup(ftp_path))

    def _read(self, path: str, offset: int | None, length: int | None) -> bytes:
        with self._errors(path):
            buf = io.BytesIO()
            self._ftp.retrbinary(f"RETR {self._ftp_path(path)}", buf.write, _BLOCK_SIZE, offset or None)
            data = buf.getvalue()
            return data if length is None else data[:length]

    def _write(self, path: str, content: Content) -> int:
        with self._errors(path):
            ftp_path = self._ftp_path(path)
            if ftp_path == self._base_path:
                raise InvalidPath(f"Is a directory: {path}", path=path, provider=self.name)
            self._ensure_dir(posixpath.dirname(ftp_path))
            stream = io.BytesIO(bytes(content)) if isinstance(content, (bytes, bytearray, memoryview)) else content
            sent: list[int] = []
            self._ftp.storbinary(f"STOR {ftp_path}", stream, _BLOCK_SIZE, lambda block: sent.append(len(block)))
            return sum(sent)

    def _mkdir(self, path: str) -> None:
        with self._errors(path):
            ftp_path = self._ftp_path(path)
            try:
                facts = self._lookup(ftp_path)
            except NotFound:
                self._ensure_dir(ftp_path)
                return
            if facts.get("type", "").lower() not in ("dir", "cdir"):
                raise AlreadyExists(f"A file exists at {path}", path=path, provider=self.name)

    def _rmtree(self, ftp_path: str) -> None:
        for name, facts in self._facts(ftp_path):
            child = posixpath.join(ftp_path, name)
            if facts.get("type", "").lower() == "dir":
                self._rmtree(child)
            else:
                self._ftp.delete(child)
        self._ftp.rmd(ftp_path)

    def _delete(self, path: str, recursive: bool) -> None:
        with self._errors(path):
            ftp_path = self._ftp_path(path)
            if ftp_path == self._base_path:
                raise InvalidPath("Refusing to delete the root directory", path=path, provider=self.name)
            facts = self._lookup(ftp_path)
            if facts.get("type", "").lower() != "dir":
                self._ftp.delete(ftp_path)
            elif recursive:
                self._rmtree(ftp_path)
            else:
                if self._facts(ftp_path):
                    raise ProviderError(f"Directory not empty: {path}", path=path, provider=self.name)
                self._ftp.rmd(ftp_path)

    def _rename(self, source: str, dest: str, recursive: bool, overwrite: bool) -> None:
        with self._errors(source):
            src = self._ftp_path(source)
            dst = self._ftp_path(dest)
            if src == dst:
                raise AlreadyExists(f"Source and destination are the same: {dest}", path=dest, provider=self.name)
            is_dir = self._lookup(src).get("type", "").lower() == "dir"
            if is_dir and not recursive:
                raise InvalidPath(f"{source} is a directory; pass recursive=True", path=source, provider=self.name)
            if is_dir and dst.startswith(src + "/"):
                raise InvalidPath(f"Cannot move {source} into itself", path=dest, provider=self.name)
            try:
                existing = self._lookup(dst)
            except NotFound:
                existing = None
            if existing is not None:
                if not overwrite:
                    raise AlreadyExists(f"Destination already exists: {dest}", path=dest, provider=self.name)
                if existing.get("type", "").lower() == "dir":
                    self._rmtree(dst)
                else:
                    self._ftp.delete(dst)
            self._ensure_dir(posixpath.dirname(dst))
            self._ftp.rename(src, dst)

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
        return await self._run(self._rename, source, dest, recursive, overwrite)

    # endregion

    # region: optional operations
    async def connect(self) -> OperationResult[None]:
        def _open() -> None:
            with self._lock:
                if not self._is_connected():
                    self._client = None
                    self._connect()

        return await self._run(_open)

    async def disconnect(self) -> OperationResult[None]:
        return await self._run(self.close)

    async def is_connected(self) -> OperationResult[bool]:
        def _check() -> bool:
            with self._lock:
                return self._is_connected()

        return await self._run(_check)

    # endregion

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                log.info("Closing FTP connection to %s:%d", self._host, self._port)
            self._close_client()
