"""
Cancellation Module - Cooperative cancellation tokens.
======================================================

A CancelToken is handed to every async step of a refresh. Steps call
raise_if_cancelled() (or check `cancelled`) before mutating any state, so
a refresh whose view has gone away stops without writing anything.

Tokens form a tree: cancelling a parent cancels every child created from
it, which lets the coordinator link a caller's token with its own timeout.
"""

import asyncio
from typing import Callable, Optional

from campusfy.shared.errors import RefreshCancelledError

TIMEOUT_REASON = "timeout"


class CancelToken:
    """
    Cooperative cancellation signal.

    Example:
        >>> token = CancelToken()
        >>> token.raise_if_cancelled()   # no-op
        >>> token.cancel("view closed")
        >>> token.cancelled
        True
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: Optional[str] = None
        self._event = asyncio.Event()
        self._children: list["CancelToken"] = []
        self._callbacks: list[Callable[["CancelToken"], None]] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._parent: Optional["CancelToken"] = None

    def __repr__(self) -> str:
        state = f"cancelled={self._reason!r}" if self._cancelled else "active"
        return f"CancelToken({state})"

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    @property
    def timed_out(self) -> bool:
        return self._reason == TIMEOUT_REASON

    def cancel(self, reason: str = "cancelled") -> None:
        """Signal cancellation. Only the first call has an effect."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        self._event.set()

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        for child in self._children:
            child.cancel(reason)
        for callback in self._callbacks:
            callback(self)

    def raise_if_cancelled(self) -> None:
        """
        Raises:
            RefreshCancelledError: If the token has been cancelled
        """
        if self._cancelled:
            raise RefreshCancelledError(self._reason or "cancelled")

    def add_callback(self, callback: Callable[["CancelToken"], None]) -> None:
        """Run `callback(token)` on cancellation (immediately if already cancelled)."""
        if self._cancelled:
            callback(self)
        else:
            self._callbacks.append(callback)

    def child(self) -> "CancelToken":
        """A new token that is cancelled whenever this one is."""
        token = CancelToken()
        if self._cancelled:
            token.cancel(self._reason or "cancelled")
        else:
            self._children.append(token)
            token._parent = self
        return token

    def detach(self) -> None:
        """Unlink from the parent token; later parent cancels no longer reach it."""
        if self._parent is not None:
            if self in self._parent._children:
                self._parent._children.remove(self)
            self._parent = None

    def with_timeout(self, seconds: Optional[float]) -> "CancelToken":
        """
        Cancel this token with reason "timeout" after `seconds`.

        Must be called from a running event loop. None or a non-positive
        value disables the deadline.
        """
        if seconds is None or seconds <= 0 or self._cancelled:
            return self
        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(seconds, self.cancel, TIMEOUT_REASON)
        return self

    def clear_timeout(self) -> None:
        """Disarm a pending deadline."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def wait(self) -> Optional[str]:
        """Block until cancelled, then return the reason."""
        await self._event.wait()
        return self._reason
