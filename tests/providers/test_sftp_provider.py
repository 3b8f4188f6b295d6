"""SFTP-specific tests against the in-process paramiko server."""

from __future__ import annotations

import os
import stat
from typing import TYPE_CHECKING

import pytest

pytest.importorskip("paramiko")

from multistore import Capability, OperationStatus  # noqa: E402
from multistore.providers import HostKeyPolicy, SFTPProvider  # noqa: E402
from tests.providers.support import SFTPServerInfo, free_port, make_sftp_provider  # noqa: E402
from tests.providers.sftp_server import REJECTED_PASSWORD  # noqa: E402

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

pytestmark = pytest.mark.asyncio


@pytest.fixture
def server(sftp_server: SFTPServerInfo | None) -> SFTPServerInfo:
    assert sftp_server is not None
    return sftp_server


@pytest.fixture
def sftp(server: SFTPServerInfo) -> Iterator[SFTPProvider]:
    provider = make_sftp_provider(server)
    assert isinstance(provider, SFTPProvider)
    yield provider
    provider.close()


def _local_base(server: SFTPServerInfo, provider: SFTPProvider) -> str:
    return os.path.join(server.root, provider._base_path.lstrip("/"))


class TestConstruction:
    async def test_empty_host_rejected(self) -> None:
        with pytest.raises(ValueError, match="host"):
            SFTPProvider("  ")

    async def test_identity(self) -> None:
        provider = SFTPProvider("example.com", port=2222, base_path="data/")
        assert provider.display_name == "sftp://example.com:2222/data"
        assert provider.has_capability(Capability.CONNECTION)
        assert provider.has_capability(Capability.SYMLINKS)
        assert not provider.has_capability(Capability.SERVER_SIDE_COPY)
        assert not provider.has_capability(Capability.CONTAINERS)


class TestConnection:
    async def test_lifecycle(self, sftp: SFTPProvider, server: SFTPServerInfo) -> None:
        assert (await sftp.is_connected()).data is False
        assert (await sftp.connect()).ok
        assert (await sftp.is_connected()).data is True
        assert os.path.isdir(_local_base(server, sftp))
        assert (await sftp.disconnect()).ok
        assert (await sftp.is_connected()).data is False

    async def test_reconnects_lazily(self, sftp: SFTPProvider) -> None:
        await sftp.write("a.txt", b"a")
        await sftp.disconnect()
        assert (await sftp.read("a.txt")).data == b"a"

    async def test_rejected_password(self, server: SFTPServerInfo) -> None:
        provider = make_sftp_provider(server, password=REJECTED_PASSWORD)
        try:
            result = await provider.read("a.txt")
            assert result.status is OperationStatus.PERMISSION_DENIED
            assert "Authentication failed" in result.message
        finally:
            provider.close()

    async def test_refused_connection(self, server: SFTPServerInfo) -> None:
        provider = make_sftp_provider(server, port=free_port())
        result = await provider.connect()
        assert result.status is OperationStatus.CONNECTION_FAILED
        assert result.retryable

    async def test_missing_session_is_a_connection_failure(
        self, sftp: SFTPProvider, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(sftp, "_connect", lambda: None)
        result = await sftp.read("a.txt")
        assert result.status is OperationStatus.CONNECTION_FAILED
        assert "No SFTP session" in result.message


class TestHostKeys:
    async def test_known_host_key_accepted(self, server: SFTPServerInfo) -> None:
        provider = make_sftp_provider(
            server, host_key_policy=HostKeyPolicy.STRICT, known_host_keys=server.host_key_entry
        )
        try:
            assert (await provider.connect()).ok
        finally:
            provider.close()

    async def test_unknown_host_rejected(self, server: SFTPServerInfo, tmp_path: Path) -> None:
        provider = make_sftp_provider(
            server,
            host_key_policy=HostKeyPolicy.STRICT,
            host_keys_path=str(tmp_path / "known_hosts"),
        )
        result = await provider.connect()
        assert result.status is OperationStatus.CONNECTION_FAILED


class TestSymlinks:
    async def test_read_symlink(self, sftp: SFTPProvider, server: SFTPServerInfo) -> None:
        await sftp.write("target.txt", b"t")
        os.symlink("target.txt", os.path.join(_local_base(server, sftp), "link.txt"))
        assert (await sftp.read_symlink("link.txt")).data == "target.txt"
        entry = (await sftp.get_metadata("link.txt")).data
        assert entry is not None and entry.metadata is not None
        assert entry.metadata.symlink_target == "target.txt"
        assert not entry.is_directory

    async def test_regular_file_is_not_a_symlink(self, sftp: SFTPProvider) -> None:
        await sftp.write("plain.txt", b"p")
        result = await sftp.read_symlink("plain.txt")
        assert result.status is OperationStatus.ERROR
        assert "Not a symlink" in result.message


class TestPermissions:
    async def test_set_permissions(self, sftp: SFTPProvider, server: SFTPServerInfo) -> None:
        await sftp.write("p.txt", b"p")
        assert (await sftp.call_optional("set_permissions", "p.txt", 0o600)).ok
        local = os.path.join(_local_base(server, sftp), "p.txt")
        assert stat.S_IMODE(os.stat(local).st_mode) == 0o600
        entry = (await sftp.get_metadata("p.txt")).data
        assert entry is not None and entry.metadata is not None
        assert entry.metadata.permissions == "-rw-------"


class TestRemoteTree:
    async def test_root_cannot_be_deleted(self, sftp: SFTPProvider, server: SFTPServerInfo) -> None:
        await sftp.write("a.txt", b"a")
        result = await sftp.delete("", recursive=True)
        assert result.status is OperationStatus.ERROR
        assert os.path.isfile(os.path.join(_local_base(server, sftp), "a.txt"))

    async def test_move_into_itself_rejected(self, sftp: SFTPProvider) -> None:
        await sftp.write("dir/a.txt", b"a")
        result = await sftp.move("dir", "dir/inner", recursive=True)
        assert not result.ok
        assert (await sftp.read("dir/a.txt")).data == b"a"

    async def test_recursive_delete(self, sftp: SFTPProvider, server: SFTPServerInfo) -> None:
        await sftp.write("dir/sub/a.txt", b"a")
        await sftp.write("dir/b.txt", b"b")
        assert (await sftp.delete("dir", recursive=True)).ok
        assert not os.path.exists(os.path.join(_local_base(server, sftp), "dir"))
