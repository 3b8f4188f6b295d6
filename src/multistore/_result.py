"""OperationResult: the envelope every provider call returns."""

from __future__ import annotations

import dataclasses
import enum
from typing import Any, Generic, TypeVar

from multistore._errors import (
    AlreadyExists,
    CancellationError,
    CapabilityNotSupported,
    ConnectionFailed,
    NotFound,
    PermissionDenied,
    ProviderError,
)

T = TypeVar("T")


class OperationStatus(enum.Enum):
    """Outcome of a provider call."""

    SUCCESS = "success"
    UNIMPLEMENTED = "unimplemented"
    CONNECTION_FAILED = "connection_failed"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclasses.dataclass(frozen=True)
class OperationError:
    """Error detail attached to a non-success result.

    :param code: Stable machine-readable code (e.g. ``"NOT_FOUND"``).
    :param message: Human-readable description.
    :param retryable: Whether repeating the call may succeed.
    :param cause: The underlying exception, when one exists.
    """

    code: str
    message: str
    retryable: bool = False
    cause: BaseException | None = None


# Exception class -> (status, code). Order matters: first isinstance match wins.
_EXCEPTION_STATUS: tuple[tuple[type[ProviderError], OperationStatus, str], ...] = (
    (NotFound, OperationStatus.NOT_FOUND, "NOT_FOUND"),
    (AlreadyExists, OperationStatus.CONFLICT, "ALREADY_EXISTS"),
    (PermissionDenied, OperationStatus.PERMISSION_DENIED, "PERMISSION_DENIED"),
    (CapabilityNotSupported, OperationStatus.UNIMPLEMENTED, "UNIMPLEMENTED"),
    (ConnectionFailed, OperationStatus.CONNECTION_FAILED, "CONNECTION_FAILED"),
    (CancellationError, OperationStatus.CANCELLED, "CANCELLED"),
)

_STATUS_EXCEPTION: dict[OperationStatus, type[ProviderError]] = {
    OperationStatus.NOT_FOUND: NotFound,
    OperationStatus.CONFLICT: AlreadyExists,
    OperationStatus.PERMISSION_DENIED: PermissionDenied,
    OperationStatus.UNIMPLEMENTED: CapabilityNotSupported,
    OperationStatus.CONNECTION_FAILED: ConnectionFailed,
    OperationStatus.CANCELLED: CancellationError,
}


@dataclasses.dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Success/unimplemented/error envelope for a single call.

    Results are never raised; callers branch on :attr:`status` (or the
    :attr:`ok` shortcut). Use :meth:`raise_for_status` to opt back into
    exceptions.

    :param status: The outcome.
    :param data: Optional payload. Failed batch calls still attach their summary.
    :param error: Error detail, present for every non-success status.
    """

    status: OperationStatus
    data: T | None = None
    error: OperationError | None = None

    # region: constructors
    @classmethod
    def success(cls, data: Any = None) -> OperationResult[Any]:
        return cls(OperationStatus.SUCCESS, data=data)

    @classmethod
    def unimplemented(cls, operation: str, message: str | None = None) -> OperationResult[Any]:
        return cls(
            OperationStatus.UNIMPLEMENTED,
            error=OperationError("UNIMPLEMENTED", message or f"{operation} not supported by this provider"),
        )

    @classmethod
    def not_found(cls, path: str) -> OperationResult[Any]:
        return cls(OperationStatus.NOT_FOUND, error=OperationError("NOT_FOUND", f"Path not found: {path}"))

    @classmethod
    def permission_denied(cls, path: str) -> OperationResult[Any]:
        return cls(
            OperationStatus.PERMISSION_DENIED,
            error=OperationError("PERMISSION_DENIED", f"Access denied: {path}"),
        )

    @classmethod
    def connection_failed(cls, message: str, cause: BaseException | None = None) -> OperationResult[Any]:
        return cls(
            OperationStatus.CONNECTION_FAILED,
            error=OperationError("CONNECTION_FAILED", message, retryable=True, cause=cause),
        )

    @classmethod
    def conflict(cls, message: str, path: str | None = None) -> OperationResult[Any]:
        return cls(OperationStatus.CONFLICT, data=path, error=OperationError("CONFLICT", message))

    @classmethod
    def cancelled(cls, data: Any = None) -> OperationResult[Any]:
        return cls(OperationStatus.CANCELLED, data=data, error=OperationError("CANCELLED", "Operation was cancelled"))

    @classmethod
    def failure(
        cls,
        message: str,
        *,
        code: str = "ERROR",
        retryable: bool = False,
        cause: BaseException | None = None,
        data: Any = None,
    ) -> OperationResult[Any]:
        return cls(OperationStatus.ERROR, data=data, error=OperationError(code, message, retryable, cause))

    @classmethod
    def from_exception(cls, exc: BaseException, data: Any = None) -> OperationResult[Any]:
        """Translate an exception into a result, keeping it as the ``cause``."""
        message = exc.message if isinstance(exc, ProviderError) else str(exc)
        for exc_type, status, code in _EXCEPTION_STATUS:
            if isinstance(exc, exc_type):
                retryable = status is OperationStatus.CONNECTION_FAILED
                return cls(status, data=data, error=OperationError(code, message, retryable, exc))
        return cls(OperationStatus.ERROR, data=data, error=OperationError("ERROR", message or type(exc).__name__, cause=exc))

    # endregion

    @property
    def ok(self) -> bool:
        return self.status is OperationStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status is not OperationStatus.SUCCESS

    @property
    def is_unimplemented(self) -> bool:
        return self.status is OperationStatus.UNIMPLEMENTED

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable

    @property
    def message(self) -> str:
        """Error message, or an empty string on success."""
        return self.error.message if self.error is not None else ""

    def raise_for_status(self) -> None:
        """Raise the matching :class:`ProviderError` subclass unless successful."""
        if self.ok:
            return
        cause = self.error.cause if self.error is not None else None
        if isinstance(cause, ProviderError):
            raise cause
        exc_type = _STATUS_EXCEPTION.get(self.status, ProviderError)
        raise exc_type(self.message) from cause

    def unwrap(self) -> T:
        """Return :attr:`data`, raising if the call did not succeed."""
        self.raise_for_status()
        return self.data  # type: ignore[return-value]

    def __repr__(self) -> str:
        if self.ok:
            return f"OperationResult(SUCCESS, data={self.data!r})"
        code = self.error.code if self.error is not None else ""
        return f"OperationResult({self.status.name}, code={code!r}, message={self.message!r})"
