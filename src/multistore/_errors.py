"""Normalized exception hierarchy used inside providers.

Providers raise these while talking to a native client and the async
boundary converts them into an :class:`~multistore.OperationResult`.
"""

from __future__ import annotations

from typing import Optional


class ProviderError(Exception):
    """Base class for all multistore errors.

    :param message: Human-readable error description.
    :param path: The path involved in the error, if any.
    :param provider: The provider name involved, if any.
    """

    default_message = ""

    def __init__(self, message: str = "", *, path: Optional[str] = None, provider: Optional[str] = None) -> None:
        self.path = path
        self.provider = provider
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return super().__str__()

    def __str__(self) -> str:
        parts = [self.message]
        if self.path is not None:
            parts.append(f"path={self.path!r}")
        if self.provider is not None:
            parts.append(f"provider={self.provider!r}")
        return " | ".join(parts) if len(parts) > 1 else parts[0]

    def __repr__(self) -> str:
        cls = type(self).__name__
        args = [repr(self.message)]
        if self.path is not None:
            args.append(f"path={self.path!r}")
        if self.provider is not None:
            args.append(f"provider={self.provider!r}")
        return f"{cls}({', '.join(args)})"


class NotFound(ProviderError):
    """Raised when a file, folder or container does not exist."""


class AlreadyExists(ProviderError):
    """Raised when a target already exists and overwrite is not allowed."""


class PermissionDenied(ProviderError):
    """Raised when access is denied by the storage backend."""


class InvalidPath(ProviderError):
    """Raised for malformed, unsafe, or out-of-scope paths."""


class ConnectionFailed(ProviderError):
    """Raised when the backend cannot be reached or the session dropped."""


class CancellationError(ProviderError):
    """Raised by :meth:`CancellationToken.throw_if_cancelled`."""

    default_message = "Operation was cancelled"


class CapabilityNotSupported(ProviderError):
    """Raised when an operation requires an unsupported capability.

    :param capability: The name of the unsupported capability.
    """

    def __init__(
        self,
        message: str = "",
        *,
        path: Optional[str] = None,
        provider: Optional[str] = None,
        capability: str = "",
    ) -> None:
        self.capability = capability
        super().__init__(message, path=path, provider=provider)

    def __str__(self) -> str:
        base = super().__str__()
        if self.capability:
            if base:
                return f"{base} | capability={self.capability!r}"
            return f"capability={self.capability!r}"
        return base

    def __repr__(self) -> str:
        cls = type(self).__name__
        args = [repr(self.message)]
        if self.path is not None:
            args.append(f"path={self.path!r}")
        if self.provider is not None:
            args.append(f"provider={self.provider!r}")
        if self.capability:
            args.append(f"capability={self.capability!r}")
        return f"{cls}({', '.join(args)})"
