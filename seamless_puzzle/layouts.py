from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict, List, Tuple, Union

from .errors import UnsupportedLayoutError


class PuzzleMode(enum.Enum):
    """Arrangement used to stitch tiles together."""

    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"
    GRID4 = "grid4"
    GRID9 = "grid9"

    @property
    def is_grid(self) -> bool:
        return self in GRID_LAYOUTS

    @classmethod
    def parse(cls, value: Union[str, "PuzzleMode"]) -> "PuzzleMode":
        """Accept a mode, its name or its value, case-insensitively."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for mode in cls:
            if text in (mode.value, mode.name.lower()):
                return mode
        raise UnsupportedLayoutError(f"Unsupported puzzle mode: {value!r}")


@dataclass(frozen=True, slots=True)
class GridLayout:
    """Represents a fixed square-cell grid."""

    name: str
    rows: int
    cols: int

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        """
        Validate the grid structure.

        Raises:
            ValueError: If the grid structure is invalid
        """
        if not isinstance(self.rows, int) or not isinstance(self.cols, int):
            raise ValueError("Grid dimensions must be integers")
        if self.rows <= 0 or self.cols <= 0:
            raise ValueError("Grid dimensions must be positive")

    @property
    def cell_count(self) -> int:
        return self.rows * self.cols

    def canvas_size(self, cell_size: int) -> Tuple[int, int]:
        """Return the ``(width, height)`` of a canvas of ``cell_size`` cells."""
        return self.cols * cell_size, self.rows * cell_size

    def cell_origins(self, cell_size: int) -> List[Tuple[int, int]]:
        """
        Calculate the top-left corner of each cell, row-major.

        Args:
            cell_size (int): Edge length of a cell in pixels

        Returns:
            List[Tuple[int, int]]: ``(x, y)`` for every cell
        """
        return [
            (col * cell_size, row * cell_size)
            for row in range(self.rows)
            for col in range(self.cols)
        ]

    def fitted_cell_size(self, bounds: Tuple[int, int]) -> int:
        """Largest square cell such that the whole grid fits ``bounds``."""
        return max(1, min(bounds[0] // self.cols, bounds[1] // self.rows))


GRID_LAYOUTS: Dict[PuzzleMode, GridLayout] = {
    PuzzleMode.GRID4: GridLayout("2x2", 2, 2),
    PuzzleMode.GRID9: GridLayout("3x3", 3, 3),
}


def grid_for(mode: PuzzleMode) -> GridLayout:
    """Get the grid of a grid mode."""
    try:
        return GRID_LAYOUTS[mode]
    except KeyError:
        logging.getLogger(__name__).error("Mode '%s' has no grid layout", mode)
        raise UnsupportedLayoutError(f"Mode {mode!r} has no grid layout") from None


__all__ = ["GRID_LAYOUTS", "GridLayout", "PuzzleMode", "grid_for"]
