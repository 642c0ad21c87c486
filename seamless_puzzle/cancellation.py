"""Cooperative cancellation scopes.

A :class:`CancellationTokenSource` owns one scope; the :class:`CancellationToken`
it hands out is what long-running work polls.  Cancelling never waits for the
work to unwind.
"""

from __future__ import annotations

import threading
from typing import Optional

from .errors import OperationCancelledError


class CancellationToken:
    """Read-only view over a cancellation scope."""

    __slots__ = ("_event",)

    def __init__(self, event: Optional[threading.Event] = None) -> None:
        self._event = event if event is not None else threading.Event()

    @classmethod
    def none(cls) -> "CancellationToken":
        """Return a token that is never cancelled."""
        return cls()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("Operation was cancelled")

    def wait(self, seconds: float) -> bool:
        """Sleep up to *seconds*; return ``True`` if cancelled meanwhile."""
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)


class CancellationTokenSource:
    """Owner of a cancellation scope."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._token = CancellationToken(self._event)
        self._closed = False

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def closed(self) -> bool:
        return self._closed

    def cancel(self) -> None:
        self._event.set()

    def close(self) -> None:
        """Cancel the scope and mark it closed. Outstanding tokens stay cancelled."""
        self._event.set()
        self._closed = True


__all__ = ["CancellationToken", "CancellationTokenSource"]
