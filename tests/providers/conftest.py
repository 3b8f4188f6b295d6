"""Provider test fixtures, parameterized for conformance testing."""

from __future__ import annotations

import shutil
import tempfile
from typing import TYPE_CHECKING

import pytest

from multistore import NO_RETRY
from multistore.providers import LocalProvider, MemoryProvider
from tests.providers.support import (
    REGION,
    FTPServerInfo,
    SFTPServerInfo,
    free_port,
    make_ftp_provider,
    make_s3_bucket,
    make_sftp_provider,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from multistore import Provider


def _importable(*modules: str) -> bool:
    try:
        for module in modules:
            __import__(module)
    except ImportError:
        return False
    return True


def _s3_available() -> bool:
    return _importable("moto", "s3fs", "boto3")


def _gcs_available() -> bool:
    return _importable("google.cloud.storage")


def _sftp_available() -> bool:
    return _importable("paramiko")


def _ftp_available() -> bool:
    return _importable("pyftpdlib")


@pytest.fixture(scope="session")
def moto_server() -> Iterator[str | None]:
    """Start a moto HTTP server for the test session.

    Server mode instead of ``mock_aws()`` keeps s3fs/aiobotocore on a real
    HTTP connection.
    """
    if not _s3_available():
        yield None
        return
    from moto.moto_server.threaded_moto_server import ThreadedMotoServer

    port = free_port()
    server = ThreadedMotoServer(port=port, verbose=False)
    server.start()
    yield f"http://127.0.0.1:{port}"
    server.stop()


@pytest.fixture(scope="session")
def sftp_server() -> Iterator[SFTPServerInfo | None]:
    """Start an in-process SFTP server for the test session."""
    if not _sftp_available():
        yield None
        return

    from tests.providers.sftp_server import start_sftp_server, stop_sftp_server

    tmpdir = tempfile.mkdtemp(prefix="sftp_test_")
    thread, port, host_key, stop_event, server_socket = start_sftp_server(root=tmpdir, host="127.0.0.1")
    host_key_entry = f"[127.0.0.1]:{port} {host_key.get_name()} {host_key.get_base64()}"

    yield SFTPServerInfo(port=port, host_key_entry=host_key_entry, root=tmpdir)

    stop_sftp_server(thread, stop_event, server_socket)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture(scope="session")
def ftp_server() -> Iterator[FTPServerInfo | None]:
    """Start an in-process pyftpdlib server for the test session."""
    if not _ftp_available():
        yield None
        return

    from tests.providers.ftp_server import start_ftp_server, stop_ftp_server

    tmpdir = tempfile.mkdtemp(prefix="ftp_test_")
    thread, port, stop_event = start_ftp_server(root=tmpdir, host="127.0.0.1")

    yield FTPServerInfo(port=port, root=tmpdir)

    stop_ftp_server(thread, stop_event)
    shutil.rmtree(tmpdir, ignore_errors=True)


_s3_param = pytest.param("s3", marks=pytest.mark.skipif(not _s3_available(), reason="moto/s3fs not installed"))
_gcs_param = pytest.param(
    "gcs", marks=pytest.mark.skipif(not _gcs_available(), reason="google-cloud-storage not installed")
)
_sftp_param = pytest.param("sftp", marks=pytest.mark.skipif(not _sftp_available(), reason="paramiko not installed"))
_ftp_param = pytest.param("ftp", marks=pytest.mark.skipif(not _ftp_available(), reason="pyftpdlib not installed"))


@pytest.fixture(params=["local", "memory", _s3_param, _gcs_param, _sftp_param, _ftp_param])
def provider(
    request: pytest.FixtureRequest,
    tmp_path: Path,
    moto_server: str | None,
    sftp_server: SFTPServerInfo | None,
    ftp_server: FTPServerInfo | None,
) -> Iterator[Provider]:
    """Parameterized provider fixture. Add new providers here."""
    p: Provider
    if request.param == "local":
        p = LocalProvider(root=str(tmp_path / "root"))
    elif request.param == "memory":
        p = MemoryProvider("test-bucket")
    elif request.param == "s3":
        from multistore.providers import S3Provider

        assert moto_server is not None
        p = S3Provider(
            make_s3_bucket(moto_server),
            key="testing",
            secret="testing",
            region_name=REGION,
            endpoint_url=moto_server,
        )
    elif request.param == "gcs":
        from multistore.providers import GCSProvider
        from tests.providers.fake_gcs import FakeGCSClient

        p = GCSProvider("test-bucket", client=FakeGCSClient(["test-bucket"]), retry_policy=NO_RETRY)
    elif request.param == "sftp":
        assert sftp_server is not None
        p = make_sftp_provider(sftp_server)
    elif request.param == "ftp":
        assert ftp_server is not None
        p = make_ftp_provider(ftp_server)
    else:
        pytest.skip(f"Unknown provider: {request.param}")
    yield p
    p.close()
