"""Bounded undo/redo history of tile-set snapshots.

:class:`HistoryStack` stores deep clones, so later in-place changes to the
live tiles never leak into history.  Snapshots dropped from the stacks
(capacity overflow, a push that invalidates redo, or :meth:`clear`) have their
buffers released.
"""

from __future__ import annotations

import logging
from threading import RLock
from typing import Callable, Generic, List, Optional, TypeVar

from .. import config
from ..asset import clone_assets, dispose_assets
from ..errors import release_quietly

logger = logging.getLogger(__name__)

T = TypeVar("T")


class HistoryStack(Generic[T]):
    """Two bounded stacks of snapshots; the undo top is the current state."""

    def __init__(
        self,
        max_depth: int = config.HISTORY_DEPTH,
        *,
        cloner: Callable[[T], T] = clone_assets,
        disposer: Callable[[T], None] = dispose_assets,
    ) -> None:
        if max_depth <= 0:
            raise ValueError("max_depth must be greater than zero")
        self._max_depth = max_depth
        self._cloner = cloner
        self._disposer = disposer
        self._undo_stack: List[T] = []
        self._redo_stack: List[T] = []
        self._lock = RLock()

    @property
    def max_depth(self) -> int:
        return self._max_depth

    @property
    def can_undo(self) -> bool:
        """True when a state exists below the current one."""
        with self._lock:
            return len(self._undo_stack) > 1

    @property
    def can_redo(self) -> bool:
        with self._lock:
            return bool(self._redo_stack)

    @property
    def undo_depth(self) -> int:
        with self._lock:
            return len(self._undo_stack)

    @property
    def redo_depth(self) -> int:
        with self._lock:
            return len(self._redo_stack)

    def current(self) -> Optional[T]:
        with self._lock:
            return self._undo_stack[-1] if self._undo_stack else None

    def push_state(self, snapshot: T) -> None:
        """Record a clone of *snapshot* as the new current state."""

        stored = self._cloner(snapshot)
        with self._lock:
            self._undo_stack.append(stored)
            dropped = list(self._redo_stack)
            self._redo_stack.clear()
            while len(self._undo_stack) > self._max_depth:
                dropped.append(self._undo_stack.pop(0))
        for entry in dropped:
            self._dispose(entry)

    def undo(self) -> Optional[T]:
        """Move the current state to redo and return the previous one.

        Returns ``None`` when there is no history at all (nothing moves) and
        when the state just undone was the only one (it moves to redo, so
        ``can_redo`` tells the two cases apart). The returned snapshot stays
        owned by the history; callers clone it before using it.
        """

        with self._lock:
            if not self._undo_stack:
                return None
            self._redo_stack.append(self._undo_stack.pop())
            return self._undo_stack[-1] if self._undo_stack else None

    def redo(self) -> Optional[T]:
        """Reapply the most recently undone state, or return ``None``."""

        with self._lock:
            if not self._redo_stack:
                return None
            snapshot = self._redo_stack.pop()
            self._undo_stack.append(snapshot)
            return snapshot

    def clear(self) -> None:
        """Release every stored snapshot. Safe to call repeatedly."""

        with self._lock:
            entries = self._undo_stack + self._redo_stack
            self._undo_stack.clear()
            self._redo_stack.clear()
        for entry in entries:
            self._dispose(entry)

    def _dispose(self, snapshot: T) -> None:
        release_quietly(lambda: self._disposer(snapshot), "history snapshot")


__all__ = ["HistoryStack"]
