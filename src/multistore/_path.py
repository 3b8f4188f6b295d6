"""Helpers for backend-relative keys.

Keys never start with ``/``; directory-shaped keys end with one. The empty
key addresses the root of a provider (or of the selected container).
"""

from __future__ import annotations

from multistore._errors import InvalidPath


def normalize_key(raw: str, *, directory: bool = False) -> str:
    """Normalize ``raw`` into a key.

    Backslashes become forward slashes, empty and ``.`` segments are
    dropped. A trailing slash on the input (or ``directory=True``) is
    preserved as a trailing slash on the output.

    :raises InvalidPath: If the path contains a NUL byte or a ``..`` segment.
    """
    if "\0" in raw:
        raise InvalidPath("Path contains null byte", path=raw)
    p = raw.replace("\\", "/")
    parts: list[str] = []
    for segment in p.split("/"):
        if segment == "" or segment == ".":
            continue
        if segment == "..":
            raise InvalidPath("Path contains '..' segment", path=raw)
        parts.append(segment)
    key = "/".join(parts)
    if key and (directory or p.endswith("/")):
        key += "/"
    return key


def is_directory_key(key: str) -> bool:
    return key == "" or key.endswith("/")


def join_key(base: str, *names: str) -> str:
    """Join ``names`` onto ``base``; the result is normalized."""
    parts = [base.rstrip("/")] if base.strip("/") else []
    parts.extend(n for n in names if n)
    trailing = bool(names) and names[-1].endswith("/")
    return normalize_key("/".join(parts), directory=trailing)


def key_name(key: str) -> str:
    """Final component of ``key``, without any trailing slash."""
    return key.rstrip("/").rsplit("/", 1)[-1]


def parent_key(key: str) -> str:
    """Directory key containing ``key``; ``""`` for top-level keys."""
    stripped = key.rstrip("/")
    if "/" not in stripped:
        return ""
    return stripped.rsplit("/", 1)[0] + "/"


def relative_key(key: str, prefix: str) -> str:
    """Return ``key`` relative to ``prefix``.

    :raises InvalidPath: If ``key`` is not under ``prefix``.
    """
    if not key.startswith(prefix):
        raise InvalidPath(f"Key is not under prefix {prefix!r}", path=key)
    return key[len(prefix):]


def rebase_key(key: str, source_prefix: str, dest_prefix: str) -> str:
    """Replace ``source_prefix`` with ``dest_prefix``, keeping the sub-path.

    Example: ``rebase_key("dir/sub/b.txt", "dir/", "copy/")`` returns
    ``"copy/sub/b.txt"``.
    """
    return dest_prefix + relative_key(key, source_prefix)
