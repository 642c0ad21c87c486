"""Controller layer: session ownership, undo history and orchestration."""

from .history import HistoryStack
from .puzzle import PuzzleController
from .session import PuzzleSession, SessionState

__all__ = [
    "HistoryStack",
    "PuzzleController",
    "PuzzleSession",
    "SessionState",
]
