"""SFTP provider using pure paramiko."""

from __future__ import annotations

import contextlib
import errno
import logging
import os
import posixpath
import shutil
import stat
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

import paramiko
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    retry_if_not_exception_type,
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
from multistore._models import Entry, EntryMetadata, ListResult, ProgressEvent
from multistore._path import normalize_key
from multistore._provider import Provider, entry_type_for, paginate
from multistore._result import OperationResult

if TYPE_CHECKING:
    from collections.abc import Iterator

    from multistore._cancellation import CancellationToken
    from multistore._types import Content, ProgressCallback

log = logging.getLogger(__name__)

SFTP_CAPABILITIES = CapabilitySet(
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
        Capability.CONNECTION,
    }
)

# RFC 4253 compliant chunk size for SFTP data transfer
_CHUNK_SIZE = 32768


class HostKeyPolicy(Enum):
    """Controls how unknown remote host keys are handled.

    :cvar STRICT: Reject unknown hosts (production default).
    :cvar TRUST_ON_FIRST_USE: Save on first connect, verify after.
    :cvar AUTO_ADD: Accept any key (dev/testing ONLY).
    """

    STRICT = "strict"
    TRUST_ON_FIRST_USE = "tofu"
    AUTO_ADD = "auto"


def _load_host_keys_from_string(ssh: paramiko.SSHClient, keys_content: str) -> None:
    """Parse a known_hosts-formatted string into an SSHClient's host keys."""
    import tempfile

    with tempfile.NamedTemporaryFile(mode="w", suffix=".known_hosts", delete=True) as tmp:
        tmp.write(keys_content)
        tmp.flush()
        ssh.load_host_keys(tmp.name)


class SFTPProvider(Provider):
    """SFTP provider using pure paramiko.

    The connection is opened lazily on first use and re-opened when it
    goes stale. Connecting is retried with exponential backoff;
    authentication failures are not retried.

    :param host: SFTP server hostname (required, non-empty).
    :param port: SSH port (default: 22).
    :param username: SSH username.
    :param password: SSH password.
    :param pkey: paramiko.PKey instance for key-based auth.
    :param base_path: Root path on the remote server (default: ``/``). Created if missing.
    :param host_key_policy: Host key verification policy.
    :param known_host_keys: Known hosts string, overrides the file.
    :param host_keys_path: Path to known_hosts file (default: ``~/.ssh/known_hosts``).
    :param timeout: SSH connection timeout in seconds.
    :param connect_attempts: Total connection attempts before giving up.
    :param connect_kwargs: Extra kwargs passed to ``SSHClient.connect()``.
    """

    def __init__(
        self,
        host: str,
        *,
        port: int = 22,
        username: str | None = None,
        password: str | None = None,
        pkey: Any = None,
        base_path: str = "/",
        host_key_policy: HostKeyPolicy = HostKeyPolicy.STRICT,
        known_host_keys: str | None = None,
        host_keys_path: str | None = None,
        timeout: int = 10,
        connect_attempts: int = 3,
        connect_kwargs: dict[str, Any] | None = None,
    ) -> None:
        if not host or not host.strip():
            raise ValueError("host must be a non-empty string")
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._pkey = pkey
        self._base_path = "/" + base_path.strip("/") if base_path.strip("/") else "/"
        self._host_key_policy = host_key_policy
        self._known_host_keys = known_host_keys
        self._host_keys_path = host_keys_path
        self._timeout = timeout
        self._connect_attempts = max(1, connect_attempts)
        self._connect_kwargs = connect_kwargs or {}
        self._lock = threading.RLock()

        self._ssh_client: paramiko.SSHClient | None = None
        self._sftp_client: paramiko.SFTPClient | None = None

    @property
    def name(self) -> str:
        return "sftp"

    @property
    def display_name(self) -> str:
        return f"sftp://{self._host}:{self._port}{self._base_path}"

    @property
    def capabilities(self) -> CapabilitySet:
        return SFTP_CAPABILITIES

    # region: lazy connection
    @property
    def _sftp(self) -> paramiko.SFTPClient:
        """Lazy SFTP client with automatic reconnection on staleness."""
        with self._lock:
            if not self._is_connected():
                self._connect()
            if self._sftp_client is None:
                raise ConnectionFailed(f"No SFTP session to {self._host}:{self._port}", provider=self.name)
            return self._sftp_client

    def _connect(self) -> None:
        """Establish SSH + SFTP connection with tenacity retry."""
        self._close_clients()
        ssh = self._create_ssh_client()

        @retry(
            retry=retry_if_exception_type((paramiko.SSHException, OSError, EOFError))
            & retry_if_not_exception_type(paramiko.AuthenticationException),
            stop=stop_after_attempt(self._connect_attempts),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            before_sleep=before_sleep_log(log, logging.WARNING),  # type: ignore[arg-type,unused-ignore]
            reraise=True,
        )
        def _do_connect() -> None:
            log.info("Connecting to %s:%d as %s", self._host, self._port, self._username)
            ssh.connect(
                hostname=self._host,
                port=self._port,
                username=self._username,
                password=self._password,
                pkey=self._pkey,
                timeout=self._timeout,
                banner_timeout=self._timeout,
                auth_timeout=self._timeout,
                channel_timeout=self._timeout,
                **self._connect_kwargs,
            )

        try:
            _do_connect()
        except paramiko.AuthenticationException as exc:
            ssh.close()
            raise PermissionDenied(f"Authentication failed: {exc}", provider=self.name) from exc
        except (paramiko.SSHException, OSError, EOFError) as exc:
            ssh.close()
            raise ConnectionFailed(
                f"Could not connect to {self._host}:{self._port}: {exc}", provider=self.name
            ) from exc
        self._ssh_client = ssh
        self._sftp_client = ssh.open_sftp()
        self._ensure_dir(self._sftp_client, self._base_path)
        log.info("SFTP connection established.")

    def _create_ssh_client(self) -> paramiko.SSHClient:
        """Create and configure an SSHClient with host key policy."""
        ssh = paramiko.SSHClient()

        if self._known_host_keys:
            _load_host_keys_from_string(ssh, self._known_host_keys)
        elif self._host_key_policy in (HostKeyPolicy.STRICT, HostKeyPolicy.TRUST_ON_FIRST_USE):
            keys_path = self._host_keys_path or os.path.expanduser("~/.ssh/known_hosts")
            if os.path.isfile(keys_path):
                ssh.load_host_keys(keys_path)

        if self._host_key_policy == HostKeyPolicy.TRUST_ON_FIRST_USE:
            ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        elif self._host_key_policy == HostKeyPolicy.AUTO_ADD:
            log.warning("AUTO_ADD host key policy -- NOT safe for production.")
            ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        return ssh

    def _is_connected(self) -> bool:
        if self._sftp_client is None or self._ssh_client is None:
            return False
        try:
            self._sftp_client.stat(".")
            return True
        except Exception:  # noqa: BLE001
            return False

    def _close_clients(self) -> None:
        if self._sftp_client is not None:
            with contextlib.suppress(Exception):
                self._sftp_client.close()
            self._sftp_client = None
        if self._ssh_client is not None:
            with contextlib.suppress(Exception):
                self._ssh_client.close()
            self._ssh_client = None

    # endregion

    # region: path helpers
    def _sftp_path(self, path: str) -> str:
        key = normalize_key(path).rstrip("/")
        if not key:
            return self._base_path
        return posixpath.join(self._base_path, key)

    def _key(self, sftp_path: str) -> str:
        if self._base_path == "/":
            return sftp_path.lstrip("/")
        return sftp_path[len(self._base_path) :].lstrip("/")

    @staticmethod
    def _ensure_dir(sftp: paramiko.SFTPClient, sftp_path: str) -> None:
        """Create ``sftp_path`` and its missing parents."""
        current = ""
        for part in sftp_path.split("/"):
            if not part:
                continue
            current = f"{current}/{part}"
            try:
                sftp.stat(current)
            except OSError:
                with contextlib.suppress(OSError):
                    sftp.mkdir(current)

    def _exists(self, sftp_path: str) -> bool:
        try:
            self._sftp.lstat(sftp_path)
        except OSError as exc:
            if getattr(exc, "errno", None) == errno.ENOENT or isinstance(exc, FileNotFoundError):
                return False
            raise
        return True

    # endregion

    # region: error mapping
    @contextmanager
    def _errors(self, path: str = "") -> Iterator[None]:
        """Map paramiko/OS exceptions to multistore errors."""
        try:
            yield
        except ProviderError:
            raise
        except FileNotFoundError:
            raise NotFound(f"Not found: {path}", path=path, provider=self.name) from None
        except PermissionError:
            raise PermissionDenied(f"Permission denied: {path}", path=path, provider=self.name) from None
        except OSError as exc:
            code = getattr(exc, "errno", None)
            if code == errno.ENOENT:
                raise NotFound(f"Not found: {path}", path=path, provider=self.name) from None
            if code == errno.EACCES:
                raise PermissionDenied(f"Permission denied: {path}", path=path, provider=self.name) from None
            if code == errno.EEXIST:
                raise AlreadyExists(f"Already exists: {path}", path=path, provider=self.name) from None
            raise ProviderError(str(exc), path=path, provider=self.name) from exc
        except (paramiko.SSHException, EOFError) as exc:
            self._close_clients()
            raise ConnectionFailed(str(exc), path=path, provider=self.name) from exc

    # endregion

    def _entry(self, sftp_path: str, attrs: paramiko.SFTPAttributes) -> Entry:
        mode = attrs.st_mode or 0
        is_link = stat.S_ISLNK(mode)
        target = None
        if is_link:
            target = self._sftp.readlink(sftp_path)
            with contextlib.suppress(OSError):
                mode = self._sftp.stat(sftp_path).st_mode or mode
        is_dir = stat.S_ISDIR(mode)
        key = self._key(sftp_path)
        return Entry(
            id=generate_entry_id(),
            name=posixpath.basename(key) or posixpath.basename(self._base_path),
            type=entry_type_for(is_dir),
            path=key,
            size=None if is_dir else int(attrs.st_size or 0),
            modified=datetime.fromtimestamp(attrs.st_mtime, tz=timezone.utc) if attrs.st_mtime is not None else None,
            metadata=EntryMetadata(
                permissions=stat.filemode(attrs.st_mode) if attrs.st_mode is not None else None,
                owner=str(attrs.st_uid) if attrs.st_uid is not None else None,
                group=str(attrs.st_gid) if attrs.st_gid is not None else None,
                accessed=datetime.fromtimestamp(attrs.st_atime, tz=timezone.utc) if attrs.st_atime is not None else None,
                symlink_target=target,
            ),
        )

    # region: blocking primitives
    def _list_dir(self, sftp_path: str, recursive: bool) -> list[Entry]:
        entries: list[Entry] = []
        for attrs in sorted(self._sftp.listdir_attr(sftp_path), key=lambda a: a.filename):
            child = posixpath.join(sftp_path, attrs.filename)
            entry = self._entry(child, attrs)
            entries.append(entry)
            if recursive and entry.is_directory and not stat.S_ISLNK(attrs.st_mode or 0):
                entries.extend(self._list_dir(child, recursive=True))
        return entries

    def _list(self, path: str, limit: int | None, token: str | None, recursive: bool) -> ListResult:
        with self._errors(path):
            sftp_path = self._sftp_path(path)
            if not stat.S_ISDIR(self._sftp.stat(sftp_path).st_mode or 0):
                raise NotFound(f"Not a directory: {path}", path=path, provider=self.name)
            return paginate(self._list_dir(sftp_path, recursive), limit, token)

    def _stat(self, path: str) -> Entry:
        with self._errors(path):
            sftp_path = self._sftp_path(path)
            return self._entry(sftp_path, self._sftp.lstat(sftp_path))

    def _read(self, path: str, offset: int | None, length: int | None) -> bytes:
        with self._errors(path):
            with self._sftp.file(self._sftp_path(path), "r") as f:
                if offset:
                    f.seek(offset)
                if length is None:
                    f.prefetch()
                    return bytes(f.read())
                return bytes(f.read(length))

    def _write(self, path: str, content: Content) -> int:
        with self._errors(path):
            sftp_path = self._sftp_path(path)
            if sftp_path == self._base_path:
                raise InvalidPath(f"Is a directory: {path}", path=path, provider=self.name)
            self._ensure_dir(self._sftp, posixpath.dirname(sftp_path))
            with self._sftp.file(sftp_path, "w") as f:
                f.set_pipelined(True)
                if isinstance(content, (bytes, bytearray, memoryview)):
                    f.write(bytes(content))
                else:
                    shutil.copyfileobj(content, f, _CHUNK_SIZE)
            return int(self._sftp.stat(sftp_path).st_size or 0)

    def _mkdir(self, path: str) -> None:
        with self._errors(path):
            sftp_path = self._sftp_path(path)
            try:
                attrs = self._sftp.stat(sftp_path)
            except OSError:
                self._ensure_dir(self._sftp, sftp_path)
                return
            if not stat.S_ISDIR(attrs.st_mode or 0):
                raise AlreadyExists(f"A file exists at {path}", path=path, provider=self.name)

    def _rmtree(self, sftp_path: str) -> None:
        """Recursively remove a directory tree, bottom-up."""
        for attrs in self._sftp.listdir_attr(sftp_path):
            child = posixpath.join(sftp_path, attrs.filename)
            if stat.S_ISDIR(attrs.st_mode or 0):
                self._rmtree(child)
            else:
                self._sftp.remove(child)
        self._sftp.rmdir(sftp_path)

    def _delete(self, path: str, recursive: bool) -> None:
        with self._errors(path):
            sftp_path = self._sftp_path(path)
            if sftp_path == self._base_path:
                raise InvalidPath("Refusing to delete the root directory", path=path, provider=self.name)
            attrs = self._sftp.lstat(sftp_path)
            if not stat.S_ISDIR(attrs.st_mode or 0):
                self._sftp.remove(sftp_path)
            elif recursive:
                self._rmtree(sftp_path)
            else:
                if self._sftp.listdir(sftp_path):
                    raise ProviderError(f"Directory not empty: {path}", path=path, provider=self.name)
                self._sftp.rmdir(sftp_path)

    def _copy_tree(self, src: str, dst: str) -> None:
        self._ensure_dir(self._sftp, dst)
        for attrs in self._sftp.listdir_attr(src):
            child_src = posixpath.join(src, attrs.filename)
            child_dst = posixpath.join(dst, attrs.filename)
            if stat.S_ISDIR(attrs.st_mode or 0):
                self._copy_tree(child_src, child_dst)
            else:
                self._copy_stream(child_src, child_dst)

    def _copy_stream(self, src: str, dst: str) -> None:
        # No server-side copy in SFTP
        with self._sftp.file(src, "r") as src_f, self._sftp.file(dst, "w") as dst_f:
            src_f.prefetch()
            shutil.copyfileobj(src_f, dst_f, _CHUNK_SIZE)

    def _transfer(self, source: str, dest: str, recursive: bool, overwrite: bool, *, move: bool) -> None:
        with self._errors(source):
            src = self._sftp_path(source)
            dst = self._sftp_path(dest)
            if src == dst:
                raise AlreadyExists(f"Source and destination are the same: {dest}", path=dest, provider=self.name)
            try:
                attrs = self._sftp.stat(src)
            except OSError as exc:
                if getattr(exc, "errno", None) == errno.ENOENT or isinstance(exc, FileNotFoundError):
                    raise NotFound(f"Source not found: {source}", path=source, provider=self.name) from None
                raise
            is_dir = stat.S_ISDIR(attrs.st_mode or 0)
            if is_dir and dst.startswith(src.rstrip("/") + "/"):
                raise InvalidPath(f"Cannot move or copy {source} into itself", path=dest, provider=self.name)
            if is_dir and not recursive:
                raise InvalidPath(f"{source} is a directory; pass recursive=True", path=source, provider=self.name)
            if self._exists(dst):
                if not overwrite:
                    raise AlreadyExists(f"Destination already exists: {dest}", path=dest, provider=self.name)
                if stat.S_ISDIR(self._sftp.lstat(dst).st_mode or 0):
                    self._rmtree(dst)
                else:
                    self._sftp.remove(dst)
            self._ensure_dir(self._sftp, posixpath.dirname(dst))

            if not move:
                if is_dir:
                    self._copy_tree(src, dst)
                else:
                    self._copy_stream(src, dst)
                return
            # Try posix_rename (atomic), then rename, then copy+delete
            try:
                self._sftp.posix_rename(src, dst)
            except OSError:
                try:
                    self._sftp.rename(src, dst)
                except OSError:
                    if is_dir:
                        self._copy_tree(src, dst)
                        self._rmtree(src)
                    else:
                        self._copy_stream(src, dst)
                        self._sftp.remove(src)

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
    async def connect(self) -> OperationResult[None]:
        def _open() -> None:
            with self._lock:
                if not self._is_connected():
                    self._connect()

        return await self._run(_open)

    async def disconnect(self) -> OperationResult[None]:
        return await self._run(self.close)

    async def is_connected(self) -> OperationResult[bool]:
        return await self._run(self._is_connected)

    async def read_symlink(self, path: str) -> OperationResult[str]:
        def _readlink() -> str:
            with self._errors(path):
                sftp_path = self._sftp_path(path)
                if not stat.S_ISLNK(self._sftp.lstat(sftp_path).st_mode or 0):
                    raise InvalidPath(f"Not a symlink: {path}", path=path, provider=self.name)
                return str(self._sftp.readlink(sftp_path))

        return await self._run(_readlink)

    async def set_permissions(self, path: str, mode: int) -> OperationResult[None]:
        def _chmod() -> None:
            with self._errors(path):
                self._sftp.chmod(self._sftp_path(path), mode)

        return await self._run(_chmod)

    # endregion

    def close(self) -> None:
        with self._lock:
            if self._ssh_client is not None:
                log.info("Closing SFTP connection to %s:%d", self._host, self._port)
            self._close_clients()
