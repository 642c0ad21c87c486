# config.py
"""
Application configuration constants for Seamless Puzzle.

The constants below are the defaults. Components never read them directly;
they receive a :class:`PuzzleConfig` built once at startup and passed in.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Tuple

# Content cache
CACHE_CAPACITY = 100
CACHE_EVICT_BATCH = 10

# Undo / redo
HISTORY_DEPTH = 20

# Source limits
MAX_SOURCE_DIMENSION = 8000      # Larger sources are downsampled after decode

# Composition
GRID_CELL_SIZE = 1000            # Full resolution grid cell edge in pixels
PREVIEW_MAX_WIDTH = 2560
PREVIEW_MAX_HEIGHT = 1440
PREVIEW_DOWNSAMPLE_FACTOR = 4    # Preview tiles are pre-shrunk to 1/4 of the bounds
PROGRESS_INTERVAL_MS = 50        # Minimum gap between grid progress reports

# Orchestration timings
PREVIEW_DEBOUNCE_MS = 50
PREGENERATE_DELAY_MS = 100
RELEASE_GRACE_MS = 10

# Export
OUTPUT_FILENAME_PREFIX = "SeamlessPuzzle"
OUTPUT_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
# (max pixel count, PNG compress level); anything larger uses PNG_MAX_COMPRESSION
PNG_COMPRESSION_TIERS: Tuple[Tuple[int, int], ...] = (
    (2_000_000, 6),
    (4_000_000, 7),
    (7_000_000, 8),
)
PNG_MAX_COMPRESSION = 9

# Supported image formats
SUPPORTED_IMAGE_FORMATS = ['png', 'jpg', 'jpeg', 'bmp', 'gif', 'webp', 'tif', 'tiff']

# Performance monitor settings
MEMORY_THRESHOLD_BYTES = 1500 << 20  # 1.5 GB
MEMORY_CLEANUP_INTERVAL_SECS = 300   # 5 minutes in seconds

ENV_PREFIX = "SEAMLESS_PUZZLE_"


def default_output_dir() -> Path:
    """Return the user's Desktop, or the home directory when there is none."""

    desktop = Path.home() / "Desktop"
    return desktop if desktop.is_dir() else Path.home()


def _cpu_parallelism() -> int:
    return max(1, os.cpu_count() or 1)


@dataclass(frozen=True)
class PuzzleConfig:
    """Runtime configuration handed to every component that needs it."""

    cache_capacity: int = CACHE_CAPACITY
    cache_evict_batch: int = CACHE_EVICT_BATCH
    history_depth: int = HISTORY_DEPTH
    max_source_dimension: int = MAX_SOURCE_DIMENSION
    grid_cell_size: int = GRID_CELL_SIZE
    preview_max_width: int = PREVIEW_MAX_WIDTH
    preview_max_height: int = PREVIEW_MAX_HEIGHT
    preview_downsample_factor: int = PREVIEW_DOWNSAMPLE_FACTOR
    progress_interval_ms: int = PROGRESS_INTERVAL_MS
    preview_debounce_ms: int = PREVIEW_DEBOUNCE_MS
    pregenerate_delay_ms: int = PREGENERATE_DELAY_MS
    pregenerate_full_size: bool = True
    pregenerate_concurrency: int = field(default_factory=_cpu_parallelism)
    release_grace_ms: int = RELEASE_GRACE_MS
    # None lets every path in a batch decode at once
    loader_max_workers: Optional[int] = None
    output_dir: Path = field(default_factory=default_output_dir)
    memory_threshold_bytes: int = MEMORY_THRESHOLD_BYTES
    memory_cleanup_interval_secs: int = MEMORY_CLEANUP_INTERVAL_SECS

    def __post_init__(self) -> None:
        if self.cache_capacity <= 0:
            raise ValueError("cache_capacity must be greater than zero")
        if not 0 < self.cache_evict_batch <= self.cache_capacity:
            raise ValueError("cache_evict_batch must be within (0, cache_capacity]")
        if self.history_depth <= 0:
            raise ValueError("history_depth must be greater than zero")
        if self.pregenerate_concurrency <= 0:
            raise ValueError("pregenerate_concurrency must be greater than zero")
        if self.loader_max_workers is not None and self.loader_max_workers <= 0:
            raise ValueError("loader_max_workers must be positive when set")
        if self.preview_downsample_factor <= 0:
            raise ValueError("preview_downsample_factor must be greater than zero")

    @property
    def preview_bounds(self) -> Tuple[int, int]:
        return self.preview_max_width, self.preview_max_height

    @property
    def preview_tile_bounds(self) -> Tuple[int, int]:
        """Box each source tile is shrunk into before a preview is laid out."""
        factor = self.preview_downsample_factor
        return (
            max(1, self.preview_max_width // factor),
            max(1, self.preview_max_height // factor),
        )

    def with_screen(self, width: int, height: int) -> "PuzzleConfig":
        """Return a copy whose preview bounds never exceed the screen size."""

        return replace(
            self,
            preview_max_width=max(1, min(PREVIEW_MAX_WIDTH, int(width))),
            preview_max_height=max(1, min(PREVIEW_MAX_HEIGHT, int(height))),
        )

    @classmethod
    def from_env(cls, environ: Optional[dict] = None, **overrides) -> "PuzzleConfig":
        """Build a configuration from ``SEAMLESS_PUZZLE_*`` environment variables.

        Recognised variables:

        * ``SEAMLESS_PUZZLE_OUTPUT_DIR``: export directory
        * ``SEAMLESS_PUZZLE_LOADER_WORKERS``: decode worker cap
        * ``SEAMLESS_PUZZLE_SCREEN``: ``WIDTHxHEIGHT`` used to clamp previews

        Keyword ``overrides`` win over the environment.
        """

        env = os.environ if environ is None else environ
        values: dict = {}

        output_dir = env.get(f"{ENV_PREFIX}OUTPUT_DIR")
        if output_dir:
            values["output_dir"] = Path(output_dir).expanduser()

        workers = env.get(f"{ENV_PREFIX}LOADER_WORKERS")
        if workers:
            try:
                values["loader_max_workers"] = int(workers)
            except ValueError as exc:
                raise ValueError(f"Invalid {ENV_PREFIX}LOADER_WORKERS: {workers!r}") from exc

        values.update(overrides)
        config = cls(**values)

        screen = env.get(f"{ENV_PREFIX}SCREEN")
        if screen:
            try:
                width, height = (int(part) for part in screen.lower().split("x"))
            except ValueError as exc:
                raise ValueError(f"Invalid {ENV_PREFIX}SCREEN: {screen!r}") from exc
            config = config.with_screen(width, height)
        return config
