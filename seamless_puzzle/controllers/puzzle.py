"""Puzzle controller: sequences loading, previews, pregeneration and export.

:class:`PuzzleController` is the view-model of the application.  UI code calls
its commands and listens to three callbacks:

* ``on_status(str)``: human readable status text;
* ``on_progress(float)``: progress of the current load or save in ``[0, 1]``;
* ``on_preview(PixelBuffer)``: a freshly generated preview, owned by the
  callback.

Preview and pregeneration work runs on a private thread pool.  Every preview
request and every batch load gets its own cancellation scope; starting a new
one cancels the previous scope without waiting for it.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from threading import BoundedSemaphore, RLock
from typing import Any, Callable, Hashable, List, Optional, Sequence, Set, Tuple, Union
from pathlib import Path

from .. import config as config_module
from ..asset import ImageAsset, clone_assets, dispose_assets
from ..buffers import PixelBuffer
from ..cache import ContentCache
from ..cancellation import CancellationToken, CancellationTokenSource
from ..compositor import Compositor
from ..errors import (
    EmptyTilesError,
    ExportError,
    OperationCancelledError,
    SessionDisposedError,
    release_quietly,
)
from ..exporter import PuzzleExporter
from ..layouts import PuzzleMode
from ..loader import ImageLoader
from ..managers.diagnostics import DiagnosticsSnapshot, MemoryMonitor
from .history import HistoryStack
from .session import PuzzleSession

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], Any]
ProgressCallback = Callable[[float], Any]
PreviewCallback = Callable[[PixelBuffer], Any]

# Share of the save progress bar given to composition; export gets the rest
COMPOSE_PROGRESS_SHARE = 0.7


class PuzzleController:
    """Coordinates the tiles of one puzzle and the work done on them."""

    def __init__(
        self,
        config: Optional[config_module.PuzzleConfig] = None,
        *,
        loader: Optional[ImageLoader] = None,
        compositor: Optional[Compositor] = None,
        exporter: Optional[PuzzleExporter] = None,
        cache: Optional[ContentCache] = None,
        on_preview: Optional[PreviewCallback] = None,
        on_status: Optional[StatusCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self._config = config or config_module.PuzzleConfig()
        self._cache = cache if cache is not None else ContentCache.from_config(self._config)
        self._loader = loader or ImageLoader(self._config)
        self._compositor = compositor or Compositor(self._config, cache=self._cache)
        self._exporter = exporter or PuzzleExporter(self._config)
        self.monitor = MemoryMonitor(self._cache, self._config)

        self.on_preview = on_preview
        self.on_status = on_status
        self.on_progress = on_progress

        self._lock = RLock()
        self._executor = ThreadPoolExecutor(
            max_workers=self._config.pregenerate_concurrency + 2,
            thread_name_prefix="puzzle-bg",
        )
        self._pregenerate_gate = BoundedSemaphore(self._config.pregenerate_concurrency)
        self._pending: Set[Future] = set()
        self._preview_scope: Optional[CancellationTokenSource] = None
        self._batch_scope: Optional[CancellationTokenSource] = None

        self._session = self._new_session()
        self._history: HistoryStack[List[ImageAsset]] = HistoryStack(self._config.history_depth)
        self._history.push_state([])

        self._mode = PuzzleMode.HORIZONTAL
        self._preview_generated = False
        self.reorder_warning = False
        self._disposed = False

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------
    @property
    def config(self) -> config_module.PuzzleConfig:
        return self._config

    @property
    def cache(self) -> ContentCache:
        return self._cache

    @property
    def session(self) -> PuzzleSession:
        return self._session

    @property
    def history(self) -> HistoryStack:
        return self._history

    @property
    def tiles(self) -> List[ImageAsset]:
        return self._session.tiles

    @property
    def mode(self) -> PuzzleMode:
        return self._mode

    @property
    def preview_generated(self) -> bool:
        return self._preview_generated

    @property
    def can_undo(self) -> bool:
        # The baseline state counts, so a single loaded batch can be undone
        return self._history.undo_depth > 1

    @property
    def can_redo(self) -> bool:
        return self._history.can_redo

    @property
    def can_save(self) -> bool:
        return bool(self._session.tiles) and self._preview_generated

    @property
    def disposed(self) -> bool:
        return self._disposed

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def load_files(self, paths: Sequence[Union[str, Path]]) -> List[ImageAsset]:
        """Decode *paths* and append the results to the puzzle.

        Returns the assets that were added; an empty list when nothing decoded
        or when a newer batch superseded this one.
        """
        self._ensure_usable()
        if not paths:
            return []
        scope = CancellationTokenSource()
        with self._lock:
            previous, self._batch_scope = self._batch_scope, scope
        if previous is not None:
            previous.cancel()

        self._status("Loading images...")
        self._progress(0.0)

        def _loading(fraction: float) -> None:
            self._progress(fraction)
            self._status(f"Loading images... {int(fraction * 100)}%")

        try:
            assets = self._loader.load_files(paths, progress=_loading, token=scope.token)
        except OperationCancelledError:
            logger.debug("Load of %d files superseded", len(paths))
            return []
        finally:
            with self._lock:
                superseded = scope.cancelled
                if self._batch_scope is scope:
                    self._batch_scope = None
            scope.close()
            self._progress(0.0)

        with self._lock:
            if superseded or self._disposed or not assets:
                dispose_assets(assets)
                self._status("Ready" if not self._disposed else "Disposed")
                return []
            self._session.add_tiles(assets)
            self._push_history()
        failed = len(paths) - len(assets)
        if failed:
            self._status(f"Loaded {len(assets)} images ({failed} skipped)")
        else:
            self._status(f"Loaded {len(assets)} images")
        return assets

    def load_pasted_image(self, bitmap: Any) -> Optional[ImageAsset]:
        """Add a clipboard image; ``None`` when its format is unusable."""
        self._ensure_usable()
        asset = self._loader.load_clipboard_image(bitmap)
        if asset is None:
            self._status("Pasted image format is not supported")
            return None
        with self._lock:
            asset.order_index = len(self._session)
            self._session.add_tile(asset)
            self._push_history()
        self._status("Image pasted")
        return asset

    # ------------------------------------------------------------------
    # Preview and pregeneration
    # ------------------------------------------------------------------
    def set_layout_mode(self, mode: Union[str, PuzzleMode]) -> Future:
        """Switch layouts and request a fresh preview."""
        parsed = PuzzleMode.parse(mode)
        with self._lock:
            self._mode = parsed
            self.reorder_warning = False
        return self.request_preview()

    def request_preview(self) -> Future:
        """Schedule a debounced preview of the current tiles.

        Any pending preview (and the pregeneration it started) is cancelled.
        The returned future resolves to the preview size, or ``None`` when the
        request was superseded or there is nothing to show.  It never carries
        pixels: those reach ``on_preview`` or :meth:`preview_snapshot`.
        """
        return self._schedule_preview()

    def preview_snapshot(self) -> Optional[PixelBuffer]:
        """Return an owned copy of the current preview, or ``None``."""
        with self._lock:
            session = self._session
        return session.copy_preview()

    def _schedule_preview(self) -> Future:
        self._ensure_usable()
        scope = CancellationTokenSource()
        with self._lock:
            previous, self._preview_scope = self._preview_scope, scope
        if previous is not None:
            previous.cancel()
        return self._submit(self._render_preview, scope.token)

    def _render_preview(self, token: CancellationToken) -> Optional[Tuple[int, int]]:
        if token.wait(self._config.preview_debounce_ms / 1000):
            return None
        with self._lock:
            session = self._session
            mode = self._mode
            tiles = self._selected_tiles()
        if not tiles:
            self._preview_generated = False
            return None

        self._status("Generating preview...")
        try:
            preview = self._compositor.compose_preview(tiles, mode, token=token)
        except OperationCancelledError:
            logger.debug("Preview cancelled")
            return None
        except Exception as e:
            if token.cancelled:
                # Tiles were replaced underneath a superseded request
                logger.debug("Preview abandoned: %s", e)
                return None
            logger.warning("Preview generation failed: %s", e)
            self._preview_generated = False
            self._status("Preview failed")
            return None

        if token.cancelled:
            release_quietly(preview.release, "cancelled preview")
            return None
        size = preview.size
        callback = self.on_preview
        delivered = preview.clone() if callback is not None else None
        try:
            session.set_preview(preview)
        except SessionDisposedError:
            if delivered is not None:
                release_quietly(delivered.release, "orphaned preview")
            return None

        self._preview_generated = True
        self._status("Ready")
        if self._config.pregenerate_full_size:
            key = self._composite_key(tiles, mode)
            self._submit(self._pregenerate, session, tiles, mode, key, token)
        if delivered is not None:
            callback(delivered)
        return size

    def _pregenerate(
        self,
        session: PuzzleSession,
        tiles: List[ImageAsset],
        mode: PuzzleMode,
        key: Hashable,
        token: CancellationToken,
    ) -> None:
        """Compose the full-size image in the background so save is instant."""
        if token.wait(self._config.pregenerate_delay_ms / 1000):
            return
        while not self._pregenerate_gate.acquire(timeout=0.05):
            if token.cancelled:
                return
        try:
            if token.cancelled:
                return
            try:
                composite = self._compositor.compose(tiles, mode, token=token)
            except OperationCancelledError:
                return
            except Exception as e:
                if not token.cancelled:
                    logger.warning("Full-size pregeneration failed: %s", e)
                return
            if token.cancelled:
                release_quietly(composite.release, "cancelled composite")
                return
            try:
                session.set_composite(composite, key)
            except SessionDisposedError:
                return
            logger.debug("Pregenerated %dx%d composite", composite.width, composite.height)
        finally:
            self._pregenerate_gate.release()

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------
    def save(
        self, ensure_durable: bool = False, token: Optional[CancellationToken] = None
    ) -> Path:
        """Write the full-resolution puzzle and return the new file's path.

        Raises:
            ExportError: For any failure, categorised for the user
        """
        self._ensure_usable()
        token = token or CancellationToken.none()
        with self._lock:
            session = self._session
            mode = self._mode
            tiles = self._selected_tiles()

        composite: Optional[PixelBuffer] = None
        self._status("Saving...")
        try:
            if not tiles:
                raise EmptyTilesError("No images provided")
            composite = session.take_composite(self._composite_key(tiles, mode))
            if composite is None:
                composite = self._compositor.compose(
                    tiles,
                    mode,
                    progress=lambda p: self._progress(p * COMPOSE_PROGRESS_SHARE),
                    token=token,
                )
            else:
                logger.debug("Reusing pregenerated composite")
            self._progress(COMPOSE_PROGRESS_SHARE)
            path = self._exporter.save(
                composite,
                mode,
                len(tiles),
                progress=lambda p: self._progress(
                    COMPOSE_PROGRESS_SHARE + p * (1 - COMPOSE_PROGRESS_SHARE)
                ),
                token=token,
                ensure_durable=ensure_durable,
            )
        except Exception as exc:
            error = exc if isinstance(exc, ExportError) else ExportError.from_exception(exc)
            self._status(error.user_message)
            self._progress(0.0)
            if error is exc:
                raise
            raise error from exc
        finally:
            if composite is not None:
                release_quietly(composite.release, "composite")

        self._status(f"Saved to {path}")
        return path

    # ------------------------------------------------------------------
    # Tile editing
    # ------------------------------------------------------------------
    def remove_all(self) -> None:
        """Drop every tile, the cache and history, then start a fresh session."""
        self._ensure_usable()
        with self._lock:
            self._cancel_scopes()
            old, self._session = self._session, self._new_session()
            self._preview_generated = False
            self.reorder_warning = False
        old.dispose()
        self._cache.clear()
        self._history.clear()
        self._history.push_state([])
        self._status("All images removed")

    def undo(self) -> bool:
        """Restore the previous tile set; ``False`` when there is none."""
        self._ensure_usable()
        if not self.can_undo:
            return False
        snapshot = self._history.undo()
        self._restore(snapshot or [])
        return True

    def redo(self) -> bool:
        """Reapply the last undone tile set; ``False`` when there is none."""
        self._ensure_usable()
        snapshot = self._history.redo()
        if snapshot is None:
            return False
        self._restore(snapshot)
        return True

    def _restore(self, snapshot: List[ImageAsset]) -> None:
        # History keeps its snapshot; the live session gets its own copies
        clones = clone_assets(snapshot)
        with self._lock:
            self._cancel_preview()
            self._session.replace_tiles(clones)
            self.reorder_warning = False
            refresh = self._preview_generated and bool(clones)
            if not clones:
                self._preview_generated = False
        if refresh:
            self._schedule_preview()

    def move_tile(self, source: int, destination: int) -> None:
        """Move the tile at *source* so it ends up at *destination*."""
        self._ensure_usable()
        with self._lock:
            count = len(self._session)
            if not (0 <= source < count and 0 <= destination < count):
                raise IndexError(f"Tile index out of range: {source} -> {destination}")
            if source == destination:
                return
            self._cancel_preview()
            tile = self._session.pop_tile(source)
            self._session.insert_tile(destination, tile)
            if self._preview_generated:
                self.reorder_warning = True
            self._push_history()

    def set_selected(self, index: int, selected: bool) -> None:
        with self._lock:
            tiles = self._session.tiles
            tiles[index].selected = bool(selected)

    def remove_tile(self, index: int) -> None:
        """Remove and dispose one tile."""
        self._ensure_usable()
        with self._lock:
            self._cancel_preview()
            tile = self._session.pop_tile(index)
            tile.dispose()
            if not len(self._session):
                self._preview_generated = False
            self._push_history()

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------
    def diagnostics(self) -> DiagnosticsSnapshot:
        return self.monitor.snapshot()

    def clear_cache(self) -> None:
        self.monitor.clear_image_cache()

    def wait_for_idle(self, timeout: Optional[float] = None) -> None:
        """Block until background preview and pregeneration work is done.

        Raises:
            TimeoutError: If work is still running after *timeout* seconds
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                pending = set(self._pending)
            if not pending:
                return
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                raise TimeoutError(f"{len(pending)} background tasks still running")
            wait(pending, timeout=remaining, return_when=FIRST_COMPLETED)

    def dispose(self) -> None:
        """Cancel all work and release every buffer. Repeated calls are no-ops."""
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            self._cancel_scopes()
        self._executor.shutdown(wait=True, cancel_futures=True)
        self._session.dispose()
        self._history.clear()
        self._cache.clear()
        logger.debug("Controller disposed")

    def __enter__(self) -> "PuzzleController":
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _new_session(self) -> PuzzleSession:
        return PuzzleSession(grace_period=self._config.release_grace_ms / 1000)

    def _ensure_usable(self) -> None:
        if self._disposed:
            raise SessionDisposedError("Controller has been disposed")

    def _selected_tiles(self) -> List[ImageAsset]:
        tiles = [tile for tile in self._session.tiles if tile.is_composable]
        return [tile for tile in tiles if tile.selected] or tiles

    @staticmethod
    def _composite_key(tiles: Sequence[ImageAsset], mode: PuzzleMode) -> Hashable:
        return mode, tuple((id(tile), tile.content_hash) for tile in tiles)

    def _push_history(self) -> None:
        self._history.push_state(self._session.tiles)

    def _cancel_preview(self) -> None:
        scope, self._preview_scope = self._preview_scope, None
        if scope is not None:
            scope.cancel()

    def _cancel_scopes(self) -> None:
        self._cancel_preview()
        scope, self._batch_scope = self._batch_scope, None
        if scope is not None:
            scope.cancel()

    def _submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        with self._lock:
            if self._disposed:
                future: Future = Future()
                future.set_result(None)
                return future
            future = self._executor.submit(fn, *args)
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.error("Background task failed", exc_info=future.exception())

    def _status(self, message: str) -> None:
        if self.on_status is not None:
            self.on_status(message)

    def _progress(self, value: float) -> None:
        if self.on_progress is not None:
            self.on_progress(value)


__all__ = ["PuzzleController", "COMPOSE_PROGRESS_SHARE"]
