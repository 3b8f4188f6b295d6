"""Transient-error classification and tenacity retry policies for object-store calls."""

from __future__ import annotations

import dataclasses
import errno
import logging
from typing import TYPE_CHECKING, Any, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from multistore._errors import ConnectionFailed

if TYPE_CHECKING:
    from collections.abc import Callable

T = TypeVar("T")

log = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

RETRYABLE_ERROR_CODES = frozenset(
    {
        "SlowDown",
        "RequestTimeout",
        "ServiceUnavailable",
        "RequestLimitExceeded",
        "ThrottlingException",
        "ProvisionedThroughputExceededException",
        "NetworkingError",
        "TimeoutError",
        "InternalError",
    }
)

_RETRYABLE_ERRNOS = frozenset({errno.ECONNRESET, errno.ETIMEDOUT, errno.EHOSTUNREACH, errno.ECONNREFUSED})


def _status_and_code(exc: BaseException) -> tuple[int | None, str | None]:
    """Pull an HTTP status and service error code out of SDK exceptions.

    Understands botocore's ``ClientError.response`` and the integer
    ``code`` attribute of google-api-core exceptions.
    """
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        error = response.get("Error") or {}
        meta = response.get("ResponseMetadata") or {}
        status = meta.get("HTTPStatusCode")
        return (int(status) if status is not None else None), error.get("Code")
    code = getattr(exc, "code", None)
    if isinstance(code, int):
        return code, None
    return None, None


def is_transient(exc: BaseException) -> bool:
    """Return ``True`` when repeating the failed call may succeed."""
    if isinstance(exc, ConnectionFailed):
        return True
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    if isinstance(exc, OSError) and exc.errno in _RETRYABLE_ERRNOS:
        return True
    status, code = _status_and_code(exc)
    if status in RETRYABLE_STATUS_CODES:
        return True
    if code in RETRYABLE_ERROR_CODES:
        return True
    return type(exc).__name__ in RETRYABLE_ERROR_CODES


@dataclasses.dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff settings.

    :param attempts: Total tries including the first one. ``1`` disables retrying.
    :param initial_delay: Seconds before the first retry.
    :param max_delay: Upper bound for a single wait.
    :param backoff: Growth factor between waits.
    """

    attempts: int = 3
    initial_delay: float = 0.1
    max_delay: float = 30.0
    backoff: float = 2.0

    def retrying(self) -> Retrying:
        return Retrying(
            retry=retry_if_exception(is_transient),
            stop=stop_after_attempt(max(1, self.attempts)),
            wait=wait_exponential(
                multiplier=self.initial_delay, min=self.initial_delay, max=self.max_delay, exp_base=self.backoff
            ),
            before_sleep=before_sleep_log(log, logging.WARNING),  # type: ignore[arg-type,unused-ignore]
            reraise=True,
        )

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``func``, retrying transient failures."""
        if self.attempts <= 1:
            return func(*args, **kwargs)
        return self.retrying()(func, *args, **kwargs)


DEFAULT_RETRY = RetryPolicy()
# Object stores throttle with 503 SlowDown; allow more, gentler attempts.
OBJECT_STORE_RETRY = RetryPolicy(attempts=5, initial_delay=0.05, max_delay=60.0, backoff=1.5)
NO_RETRY = RetryPolicy(attempts=1)
