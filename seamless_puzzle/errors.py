"""Exception hierarchy shared by the loader, compositor, exporter and sessions."""

from __future__ import annotations

import enum
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class PuzzleError(Exception):
    """Base class for every error raised by :mod:`seamless_puzzle`."""


class DecodeError(PuzzleError):
    """A single source could not be decoded. Batch loads skip the file."""


class UnsupportedLayoutError(PuzzleError, ValueError):
    """Raised for a layout mode the compositor does not know."""


class EmptyTilesError(PuzzleError, ValueError):
    """Raised when a composition is requested without any composable tile."""


class OperationCancelledError(PuzzleError):
    """Raised when a cancellation token fires. Callers stop quietly."""


class BufferReleasedError(PuzzleError, RuntimeError):
    """Raised when a released pixel buffer is accessed."""


class SessionDisposedError(PuzzleError, RuntimeError):
    """Raised when a disposed session is mutated."""


class ExportErrorCategory(enum.Enum):
    OUT_OF_MEMORY = "out_of_memory"
    IO = "io"
    CANCELLED = "cancelled"
    OTHER = "other"


_USER_MESSAGES = {
    ExportErrorCategory.OUT_OF_MEMORY: (
        "Not enough memory to save the puzzle. Try fewer or smaller images."
    ),
    ExportErrorCategory.IO: (
        "Saving failed. The disk may be full or the file may be in use."
    ),
    ExportErrorCategory.CANCELLED: "The operation was cancelled.",
}


class ExportError(PuzzleError):
    """Raised when composing or writing the exported PNG fails."""

    def __init__(self, category: ExportErrorCategory, message: str) -> None:
        super().__init__(message)
        self.category = category

    @property
    def user_message(self) -> str:
        return _USER_MESSAGES.get(self.category, f"Save failed: {self}")

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ExportError":
        """Wrap *exc* with the category that best describes it."""

        if isinstance(exc, ExportError):
            return exc
        if isinstance(exc, MemoryError):
            category = ExportErrorCategory.OUT_OF_MEMORY
        elif isinstance(exc, OperationCancelledError):
            category = ExportErrorCategory.CANCELLED
        elif isinstance(exc, OSError):
            category = ExportErrorCategory.IO
        else:
            category = ExportErrorCategory.OTHER
        return cls(category, str(exc) or exc.__class__.__name__)


def release_quietly(release: Optional[Callable[[], Any]], what: str = "buffer") -> bool:
    """Call *release* and log instead of raising when it fails.

    Release failures must never stop the remaining release steps, so every
    container runs its per-resource cleanup through this helper. Returns
    ``True`` when the release succeeded.
    """

    if release is None:
        return True
    try:
        release()
    except Exception as exc:  # noqa: BLE001 - a failed release must not abort the others
        logger.warning("Failed to release %s: %s", what, exc)
        return False
    return True


__all__ = [
    "BufferReleasedError",
    "DecodeError",
    "EmptyTilesError",
    "ExportError",
    "ExportErrorCategory",
    "OperationCancelledError",
    "PuzzleError",
    "SessionDisposedError",
    "UnsupportedLayoutError",
    "release_quietly",
]
