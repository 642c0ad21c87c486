"""Tile compositing.

:class:`Compositor` stitches an ordered list of tiles into one canvas in one
of four arrangements.  Strips keep every tile's aspect ratio and match the
largest height (horizontal) or width (vertical); grids crop each tile to a
fixed square cell.  Tiles are drawn strictly in input order at full opacity.

Every intermediate buffer is released as soon as it has been pasted, and a
cancelled or failed composition releases the partial canvas before the error
propagates.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, List, Optional, Sequence, Tuple

from PIL import Image

from . import config as config_module
from . import imaging
from .asset import ImageAsset
from .buffers import PixelBuffer
from .cache import ContentCache
from .cancellation import CancellationToken
from .errors import EmptyTilesError, release_quietly
from .layouts import GridLayout, PuzzleMode, grid_for

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], Any]


class _ProgressReporter:
    """Forwards monotonic progress values, optionally throttled."""

    def __init__(
        self,
        callback: Optional[ProgressCallback],
        interval: float,
        clock: Callable[[], float],
    ) -> None:
        self._callback = callback
        self._interval = interval
        self._clock = clock
        self._last_time: Optional[float] = None
        self._last_value = 0.0

    def report(self, value: float, *, force: bool = False) -> None:
        if self._callback is None:
            return
        value = min(1.0, max(self._last_value, value))
        now = self._clock()
        if not force and self._last_time is not None and now - self._last_time < self._interval:
            return
        self._last_time = now
        self._last_value = value
        self._callback(value)


class Compositor:
    """Builds full-resolution and preview composites."""

    def __init__(
        self,
        config: Optional[config_module.PuzzleConfig] = None,
        cache: Optional[ContentCache] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or config_module.PuzzleConfig()
        self._cache = cache
        self._clock = clock

    def compose(
        self,
        tiles: Sequence[ImageAsset],
        mode: PuzzleMode,
        *,
        progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> PixelBuffer:
        """Compose *tiles* at full resolution.

        Raises:
            EmptyTilesError: If no tile has pixels
            UnsupportedLayoutError: If *mode* is unknown
            OperationCancelledError: If *token* fires between tiles
        """
        mode = PuzzleMode.parse(mode)
        images = self._composable_images(tiles)
        return self._layout(images, mode, preview=False, progress=progress, token=token)

    def compose_preview(
        self,
        tiles: Sequence[ImageAsset],
        mode: PuzzleMode,
        *,
        progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> PixelBuffer:
        """Compose a fast, screen-bounded preview of *tiles*.

        Each source is first shrunk to a quarter of the preview bounds with a
        cheap filter; those copies are always released before returning.
        """
        mode = PuzzleMode.parse(mode)
        token = token or CancellationToken.none()
        composable = [tile for tile in tiles if tile.is_composable]
        if not composable:
            raise EmptyTilesError("No images provided")

        reduced: List[PixelBuffer] = []
        try:
            for tile in composable:
                token.raise_if_cancelled()
                reduced.append(self._preview_tile(tile))
            images = [buffer.image for buffer in reduced]
            return self._layout(images, mode, preview=True, progress=progress, token=token)
        finally:
            for buffer in reduced:
                release_quietly(buffer.release, "preview intermediate")

    def _preview_tile(self, tile: ImageAsset) -> PixelBuffer:
        bounds = self._config.preview_tile_bounds
        key = None
        if self._cache is not None and tile.content_hash:
            # The hash ignores scale and shape, so the source size is part of the key
            source = tile.pixels.size
            key = f"preview:{tile.content_hash}:{source[0]}x{source[1]}:{bounds[0]}x{bounds[1]}"
            cached = self._cache.get(key)
            if cached is not None:
                return cached
        reduced = PixelBuffer(imaging.downsample_to_fit(tile.pixels.image, bounds))
        if key is not None:
            self._cache.put(key, reduced.clone())
        return reduced

    @staticmethod
    def _composable_images(tiles: Sequence[ImageAsset]) -> List[Image.Image]:
        images = [tile.pixels.image for tile in tiles if tile.is_composable]
        if not images:
            raise EmptyTilesError("No images provided")
        return images

    def _layout(
        self,
        images: List[Image.Image],
        mode: PuzzleMode,
        *,
        preview: bool,
        progress: Optional[ProgressCallback],
        token: Optional[CancellationToken],
    ) -> PixelBuffer:
        if not images:
            raise EmptyTilesError("No images provided")
        token = token or CancellationToken.none()
        if mode is PuzzleMode.HORIZONTAL:
            return self._strip(images, horizontal=True, progress=progress, token=token)
        if mode is PuzzleMode.VERTICAL:
            return self._strip(images, horizontal=False, progress=progress, token=token)
        grid = grid_for(mode)
        if preview:
            cell_size = grid.fitted_cell_size(self._config.preview_bounds)
        else:
            cell_size = self._config.grid_cell_size
        return self._grid(images, grid, cell_size, progress=progress, token=token)

    def _strip(
        self,
        images: List[Image.Image],
        *,
        horizontal: bool,
        progress: Optional[ProgressCallback],
        token: CancellationToken,
    ) -> PixelBuffer:
        if horizontal:
            target = max(img.height for img in images)
            lengths = [imaging.scaled_length(img.width, target, img.height) for img in images]
            canvas_size: Tuple[int, int] = (sum(lengths), target)
        else:
            target = max(img.width for img in images)
            lengths = [imaging.scaled_length(img.height, target, img.width) for img in images]
            canvas_size = (target, sum(lengths))

        reporter = _ProgressReporter(progress, 0.0, self._clock)
        canvas = PixelBuffer.blank(canvas_size)
        try:
            offset = 0
            count = len(images)
            for index, (img, length) in enumerate(zip(images, lengths)):
                token.raise_if_cancelled()
                size = (length, target) if horizontal else (target, length)
                resized = img.resize(size, imaging.QUALITY_FILTER)
                try:
                    position = (offset, 0) if horizontal else (0, offset)
                    canvas.image.paste(resized, position)
                finally:
                    resized.close()
                offset += length
                reporter.report((index + 1) / count)
        except BaseException:
            release_quietly(canvas.release, "partial composite")
            raise
        return canvas

    def _grid(
        self,
        images: List[Image.Image],
        grid: GridLayout,
        cell_size: int,
        *,
        progress: Optional[ProgressCallback],
        token: CancellationToken,
    ) -> PixelBuffer:
        interval = self._config.progress_interval_ms / 1000.0
        reporter = _ProgressReporter(progress, interval, self._clock)
        placed_total = min(len(images), grid.cell_count)
        canvas = PixelBuffer.blank(grid.canvas_size(cell_size))
        try:
            for index, origin in enumerate(grid.cell_origins(cell_size)):
                if index >= placed_total:
                    break
                token.raise_if_cancelled()
                cell = imaging.crop_to_fill(images[index], (cell_size, cell_size))
                try:
                    canvas.image.paste(cell, origin)
                finally:
                    cell.close()
                reporter.report((index + 1) / placed_total)
            reporter.report(1.0, force=True)
        except BaseException:
            release_quietly(canvas.release, "partial composite")
            raise
        if len(images) > grid.cell_count:
            logger.debug(
                "Grid %s holds %d tiles; %d extra tiles ignored",
                grid.name, grid.cell_count, len(images) - grid.cell_count,
            )
        return canvas


__all__ = ["Compositor"]
