"""Cooperative cancellation: token sources, read-only tokens and bridges.

The source is owned by whoever started a cancellable operation; the token
is handed down through every call chain and polled at loop heads::

    source = CancellationTokenSource()
    task = asyncio.create_task(copy_directory(client, ..., token=source.token))
    source.cancel()
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Any

from multistore._errors import CancellationError

if TYPE_CHECKING:
    import concurrent.futures
    from collections.abc import Callable

log = logging.getLogger(__name__)


def _noop() -> None:
    return None


def _notify(callback: Callable[[], None]) -> None:
    try:
        callback()
    except Exception:
        log.debug("Cancellation listener %r raised", callback, exc_info=True)


class CancellationToken:
    """Read-only view of a cancellation state."""

    __slots__ = ("_source",)

    def __init__(self, source: CancellationTokenSource) -> None:
        self._source = source

    @property
    def is_cancelled(self) -> bool:
        return self._source.is_cancelled

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register ``callback`` to run once on cancellation.

        :returns: A function that unregisters the callback.
        """
        return self._source._subscribe(callback)

    def throw_if_cancelled(self) -> None:
        """Raise :class:`CancellationError` if cancellation was requested."""
        if self.is_cancelled:
            raise CancellationError()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.is_cancelled})"


class CancellationTokenSource:
    """Controller for a :class:`CancellationToken`.

    Cancellation is permanent. Only the first :meth:`cancel` call has an
    effect; listener errors are logged and never stop other listeners.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._next_handle = 0
        self._detach: Callable[[], None] = _noop
        self._lock = threading.Lock()
        self._token = CancellationToken(self)

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Request cancellation and notify every registered listener."""
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
            detach, self._detach = self._detach, _noop
        detach()
        for callback in callbacks:
            _notify(callback)

    def close(self) -> None:
        """Detach from the parent source, if any, and drop every listener.

        Call this when a linked source outlives its purpose so a long-lived
        parent does not keep it alive. The cancellation state is unchanged.
        """
        with self._lock:
            self._callbacks.clear()
            detach, self._detach = self._detach, _noop
        detach()

    def create_linked_source(self) -> CancellationTokenSource:
        """Return a child source that is cancelled together with this one.

        Cancelling the child never affects this source. The child stops
        listening to this source once it is cancelled or closed.
        """
        linked = CancellationTokenSource()
        linked._detach = self._subscribe(linked.cancel)
        return linked

    def _subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        with self._lock:
            if not self._cancelled:
                handle = self._next_handle
                self._next_handle += 1
                self._callbacks[handle] = callback

                def unsubscribe() -> None:
                    with self._lock:
                        self._callbacks.pop(handle, None)

                return unsubscribe
        # Already cancelled: run immediately, there is nothing to unregister.
        _notify(callback)
        return _noop

    def __repr__(self) -> str:
        return f"CancellationTokenSource(cancelled={self._cancelled})"


class _ConstantToken(CancellationToken):
    """A token whose state never changes."""

    __slots__ = ("_cancelled",)

    def __init__(self, cancelled: bool) -> None:
        self._cancelled = cancelled

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        if self._cancelled:
            _notify(callback)
        return _noop

    def __repr__(self) -> str:
        return "ALREADY_CANCELLED" if self._cancelled else "NEVER_CANCELLED"


NEVER_CANCELLED: CancellationToken = _ConstantToken(False)
ALREADY_CANCELLED: CancellationToken = _ConstantToken(True)


# region: bridges
def from_future(future: asyncio.Future[Any] | concurrent.futures.Future[Any]) -> CancellationToken:
    """Return a token that is cancelled when ``future`` is cancelled."""
    source = CancellationTokenSource()
    if future.cancelled():
        source.cancel()
    else:

        def _on_done(fut: Any) -> None:
            if fut.cancelled():
                source.cancel()

        future.add_done_callback(_on_done)
    return source.token


def to_future(token: CancellationToken, loop: asyncio.AbstractEventLoop | None = None) -> asyncio.Future[None]:
    """Return an :class:`asyncio.Future` that is cancelled when ``token`` is.

    Must be called from within a running event loop unless ``loop`` is given.
    Cancellation may be requested from any thread.
    """
    loop = loop or asyncio.get_running_loop()
    future: asyncio.Future[None] = loop.create_future()
    if token.is_cancelled:
        future.cancel()
        return future

    def _cancel() -> None:
        if not future.done():
            future.cancel()

    def _on_cancel() -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            _cancel()
        else:
            loop.call_soon_threadsafe(_cancel)

    unsubscribe = token.on_cancel(_on_cancel)
    future.add_done_callback(lambda _: unsubscribe())
    return future


def to_event(token: CancellationToken) -> threading.Event:
    """Return a :class:`threading.Event` that is set when ``token`` cancels.

    Intended for blocking loops running in worker threads.
    """
    event = threading.Event()
    if token.is_cancelled:
        event.set()
    else:
        token.on_cancel(event.set)
    return event


# endregion
