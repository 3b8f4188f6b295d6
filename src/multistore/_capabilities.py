"""Capability enum, CapabilitySet and the optional-operation gate map."""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING

from multistore._errors import CapabilityNotSupported

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator


class Capability(enum.Enum):
    """Operations a provider may support."""

    LIST = "list"
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    MKDIR = "mkdir"
    RMDIR = "rmdir"
    COPY = "copy"
    MOVE = "move"
    SERVER_SIDE_COPY = "server_side_copy"
    DOWNLOAD = "download"
    UPLOAD = "upload"
    RESUME = "resume"
    VERSIONING = "versioning"
    METADATA = "metadata"
    PERMISSIONS = "permissions"
    SYMLINKS = "symlinks"
    HARDLINKS = "hardlinks"
    PRESIGNED_URLS = "presigned_urls"
    BATCH_DELETE = "batch_delete"
    EXTENDED_ATTRS = "extended_attrs"
    CONTAINERS = "containers"
    FILE_LOCKING = "file_locking"
    DELEGATIONS = "delegations"
    CONNECTION = "connection"


# Optional operations and the capability that must be declared before
# they may be dispatched. Mandatory operations are absent from this map.
OPTIONAL_OPERATIONS: dict[str, Capability] = {
    "connect": Capability.CONNECTION,
    "disconnect": Capability.CONNECTION,
    "is_connected": Capability.CONNECTION,
    "list_containers": Capability.CONTAINERS,
    "set_container": Capability.CONTAINERS,
    "get_container": Capability.CONTAINERS,
    "set_metadata": Capability.METADATA,
    "get_presigned_url": Capability.PRESIGNED_URLS,
    "read_symlink": Capability.SYMLINKS,
    "set_permissions": Capability.PERMISSIONS,
}


def required_capability(operation: str) -> Capability | None:
    """Return the capability gating ``operation``, or ``None`` if it is mandatory."""
    return OPTIONAL_OPERATIONS.get(operation)


class CapabilitySet:
    """Immutable set of capabilities declared by a provider.

    :param capabilities: The supported capabilities.
    """

    __slots__ = ("_caps",)
    _caps: frozenset[Capability]

    def __init__(self, capabilities: Iterable[Capability]) -> None:
        object.__setattr__(self, "_caps", frozenset(capabilities))

    def supports(self, cap: Capability) -> bool:
        """Check whether a capability is supported."""
        return cap in self._caps

    def supports_all(self, *caps: Capability) -> bool:
        return all(c in self._caps for c in caps)

    def require(self, cap: Capability, *, provider: str = "") -> None:
        """Raise if a capability is not supported.

        :raises CapabilityNotSupported: If the capability is missing.
        """
        if cap not in self._caps:
            raise CapabilityNotSupported(
                f"Capability '{cap.value}' is not supported",
                capability=cap.value,
                provider=provider or None,
            )

    def union(self, *caps: Capability) -> CapabilitySet:
        return CapabilitySet(self._caps.union(caps))

    def without(self, *caps: Capability) -> CapabilitySet:
        return CapabilitySet(self._caps.difference(caps))

    def __contains__(self, cap: object) -> bool:
        return cap in self._caps

    def __iter__(self) -> Iterator[Capability]:
        return iter(self._caps)

    def __len__(self) -> int:
        return len(self._caps)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, CapabilitySet):
            return self._caps == other._caps
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._caps)

    def __repr__(self) -> str:
        names = sorted(c.name for c in self._caps)
        return f"CapabilitySet({{{', '.join(names)}}})"

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("CapabilitySet is immutable")

    def __delattr__(self, name: str) -> None:
        raise AttributeError("CapabilitySet is immutable")
