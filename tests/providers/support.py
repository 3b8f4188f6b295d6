"""Helpers shared by the provider fixtures and provider-specific tests."""

from __future__ import annotations

import dataclasses
import socket
import uuid
from typing import TYPE_CHECKING

from multistore.providers import FTPProvider

if TYPE_CHECKING:
    from multistore import Provider

REGION = "us-east-1"


def free_port() -> int:
    with socket.socket() as s:
        s.bind(("", 0))
        return s.getsockname()[1]


@dataclasses.dataclass(frozen=True)
class SFTPServerInfo:
    port: int
    host_key_entry: str
    root: str


@dataclasses.dataclass(frozen=True)
class FTPServerInfo:
    port: int
    root: str


def make_s3_bucket(endpoint: str) -> str:
    import boto3

    bucket = f"test-{uuid.uuid4().hex[:8]}"
    client = boto3.client(
        "s3",
        endpoint_url=endpoint,
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        region_name=REGION,
    )
    client.create_bucket(Bucket=bucket)
    return bucket


def make_sftp_provider(server: SFTPServerInfo, **kwargs: object) -> Provider:
    from multistore.providers import HostKeyPolicy, SFTPProvider

    options: dict[str, object] = {
        "port": server.port,
        "username": "testuser",
        "password": "testpass",
        "base_path": f"/test_{uuid.uuid4().hex[:8]}",
        "host_key_policy": HostKeyPolicy.AUTO_ADD,
        "connect_attempts": 1,
        "connect_kwargs": {"allow_agent": False, "look_for_keys": False},
    }
    options.update(kwargs)
    return SFTPProvider("127.0.0.1", **options)  # type: ignore[arg-type]


def make_ftp_provider(server: FTPServerInfo, **kwargs: object) -> FTPProvider:
    from tests.providers.ftp_server import PASSWORD, USERNAME

    options: dict[str, object] = {
        "port": server.port,
        "username": USERNAME,
        "password": PASSWORD,
        "base_path": f"/test_{uuid.uuid4().hex[:8]}",
        "timeout": 10.0,
        "connect_attempts": 1,
    }
    options.update(kwargs)
    return FTPProvider("127.0.0.1", **options)  # type: ignore[arg-type]
