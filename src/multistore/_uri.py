"""Storage URIs identifying entries across providers.

Examples::

    s3://bucket/path/to/file.txt
    gcs://bucket/path/to/file.txt
    sftp://host:2222/path/to/file.txt
    file:///home/user/file.txt
    memory://default/path/to/file.txt
"""

from __future__ import annotations

import dataclasses
import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from multistore._models import Entry

SCHEMES = frozenset({"s3", "gcs", "sftp", "ftp", "file", "memory"})

# Schemes whose authority is ``host[:port]`` rather than a bucket.
_HOST_SCHEMES = frozenset({"sftp", "ftp"})

_PROVIDER_SCHEMES = {
    "s3": "s3",
    "gcs": "gcs",
    "sftp": "sftp",
    "ftp": "ftp",
    "file": "file",
    "local": "file",
    "memory": "memory",
}

_URI_PATTERN = re.compile(r"^(\w+)://([^/]*)(/.*)?$")
_HOST_PORT_PATTERN = re.compile(r"^([^:]+)(?::(\d+))?$")


@dataclasses.dataclass(frozen=True)
class ParsedUri:
    """Components of a storage URI.

    :param scheme: Storage scheme.
    :param authority: Bucket name, or ``host[:port]`` for connection schemes.
    :param path: Path within the provider; absolute only for ``file``.
    :param name: Last path segment.
    :param host: Host, for ``sftp`` and ``ftp``.
    :param port: Port, for ``sftp`` and ``ftp`` when given.
    """

    scheme: str
    authority: str | None
    path: str
    name: str
    host: str | None = None
    port: int | None = None


def _check_scheme(scheme: str) -> None:
    if scheme not in SCHEMES:
        raise ValueError(f"Unknown scheme: {scheme!r}. Supported: {sorted(SCHEMES)}")


def build_uri(scheme: str, authority: str | None, path: str) -> str:
    """Build a URI from its components.

    Leading slashes are dropped from the path except for ``file`` URIs,
    which always carry three slashes.

    :raises ValueError: For an unknown scheme, or a missing bucket/host.
    """
    _check_scheme(scheme)
    if scheme == "file":
        return f"file://{'' if path.startswith('/') else '/'}{path}"
    if scheme == "memory":
        return f"memory://{authority or 'default'}/{path.lstrip('/')}"
    if not authority:
        kind = "a host" if scheme in _HOST_SCHEMES else "a bucket name"
        raise ValueError(f"{scheme} URIs require {kind}")
    return f"{scheme}://{authority}/{path.lstrip('/')}"


def parse_uri(uri: str) -> ParsedUri:
    """Split a URI into its components.

    :raises ValueError: If the URI is malformed or the scheme unknown.
    """
    match = _URI_PATTERN.match(uri)
    if match is None:
        raise ValueError(f"Invalid URI format: {uri!r}")
    scheme, authority, path = match.group(1), match.group(2), match.group(3) or ""
    _check_scheme(scheme)
    if scheme != "file":
        path = path.lstrip("/")
    segments = [s for s in path.split("/") if s]

    host = port = None
    if scheme in _HOST_SCHEMES:
        host_port = _HOST_PORT_PATTERN.match(authority)
        if host_port is not None:
            host = host_port.group(1)
            port = int(host_port.group(2)) if host_port.group(2) else None

    return ParsedUri(
        scheme=scheme,
        authority=authority or None,
        path=path,
        name=segments[-1] if segments else "",
        host=host,
        port=port,
    )


def directory_path(uri: str) -> str:
    """Path of the directory containing ``uri``, with a trailing slash."""
    parsed = parse_uri(uri)
    segments = [s for s in parsed.path.split("/") if s][:-1]
    parent = "/".join(segments) + "/" if segments else ""
    if parsed.scheme == "file":
        return "/" + parent
    return parent


def parent_uri(uri: str) -> str:
    """URI of the directory containing ``uri``.

    >>> parent_uri("s3://bucket/path/to/file.txt")
    's3://bucket/path/to/'
    """
    parsed = parse_uri(uri)
    return build_uri(parsed.scheme, parsed.authority, directory_path(uri))


def entry_to_uri(entry: Entry, scheme: str, authority: str | None = None) -> str:
    return build_uri(scheme, authority, entry.path)


def destination_uri(entry: Entry, dest_dir: str, scheme: str, authority: str | None = None) -> str:
    """URI for ``entry`` placed inside ``dest_dir``, keeping its name."""
    prefix = dest_dir if not dest_dir or dest_dir.endswith("/") else dest_dir + "/"
    return build_uri(scheme, authority, prefix + entry.name)


def is_uri_in_path(uri: str, dir_path: str, scheme: str, authority: str | None = None) -> bool:
    """Whether ``uri`` is a direct child of ``dir_path`` in the given scheme and authority."""
    parsed = parse_uri(uri)
    if parsed.scheme != scheme or parsed.authority != authority:
        return False
    prefix = dir_path if not dir_path or dir_path.endswith("/") else dir_path + "/"
    if not parsed.path.startswith(prefix):
        return False
    rest = parsed.path[len(prefix) :]
    return len([s for s in rest.split("/") if s]) == 1 or rest == ""


def scheme_for_provider(provider_name: str) -> str:
    """Map a provider type tag to its URI scheme (``local`` is ``file``).

    :raises ValueError: For an unknown provider name.
    """
    try:
        return _PROVIDER_SCHEMES[provider_name.lower()]
    except KeyError:
        raise ValueError(f"Unknown provider name: {provider_name!r}") from None
