"""Puzzle session: the owner of every buffer of one puzzle in progress.

A :class:`PuzzleSession` holds the tiles, the full-size composite, the
preview and a cancellation scope.  It is replaced (disposed, then rebuilt)
whenever the tile set is wholly cleared.  Disposal follows the three-phase
release protocol used by every buffer container in the package:

1. cancel the session's token and give in-flight work a short grace period;
2. release every owned buffer individually, logging and skipping failures;
3. sever every owning reference so nothing released stays reachable.
"""

from __future__ import annotations

import enum
import logging
import time
from threading import RLock
from typing import Hashable, Iterable, List, Optional

from ..asset import ImageAsset, dispose_assets
from ..buffers import PixelBuffer
from ..cancellation import CancellationToken, CancellationTokenSource
from ..errors import SessionDisposedError, release_quietly

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    ACTIVE = "active"
    DISPOSING = "disposing"
    DISPOSED = "disposed"


class PuzzleSession:
    """Owns tiles, composite and preview buffers until disposal."""

    def __init__(self, grace_period: float = 0.01) -> None:
        self._lock = RLock()
        self._grace_period = grace_period
        self._tiles: List[ImageAsset] = []
        self._composite: Optional[PixelBuffer] = None
        self._composite_key: Optional[Hashable] = None
        self._preview: Optional[PixelBuffer] = None
        self._cancellation: Optional[CancellationTokenSource] = CancellationTokenSource()
        self._state = SessionState.ACTIVE

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is SessionState.ACTIVE

    @property
    def token(self) -> CancellationToken:
        """Token cancelled when the session is disposed."""
        with self._lock:
            if self._cancellation is None:
                source = CancellationTokenSource()
                source.cancel()
                return source.token
            return self._cancellation.token

    @property
    def tiles(self) -> List[ImageAsset]:
        """Snapshot of the tile list; the assets remain owned by the session."""
        with self._lock:
            return list(self._tiles)

    @property
    def composite(self) -> Optional[PixelBuffer]:
        return self._composite

    @property
    def composite_key(self) -> Optional[Hashable]:
        return self._composite_key

    @property
    def preview(self) -> Optional[PixelBuffer]:
        return self._preview

    def _ensure_active(self) -> None:
        if self._state is not SessionState.ACTIVE:
            raise SessionDisposedError("Session has been disposed")

    def add_tile(self, asset: ImageAsset) -> None:
        with self._lock:
            self._ensure_active()
            self._tiles.append(asset)

    def add_tiles(self, assets: Iterable[ImageAsset]) -> None:
        with self._lock:
            self._ensure_active()
            self._tiles.extend(assets)

    def insert_tile(self, index: int, asset: ImageAsset) -> None:
        with self._lock:
            self._ensure_active()
            self._tiles.insert(index, asset)

    def pop_tile(self, index: int) -> ImageAsset:
        """Detach the tile at *index*; ownership passes to the caller."""
        with self._lock:
            self._ensure_active()
            return self._tiles.pop(index)

    def replace_tiles(self, assets: Iterable[ImageAsset]) -> None:
        """Adopt *assets* as the tile set and dispose the previous tiles."""
        with self._lock:
            self._ensure_active()
            old, self._tiles = self._tiles, list(assets)
        keep = {id(asset) for asset in self._tiles}
        dispose_assets([asset for asset in old if id(asset) not in keep])

    def set_composite(self, buffer: Optional[PixelBuffer], key: Optional[Hashable] = None) -> None:
        """Store a full-size composite built for *key*, releasing the previous one."""
        with self._lock:
            if self._state is not SessionState.ACTIVE:
                if buffer is not None:
                    release_quietly(buffer.release, "composite")
                raise SessionDisposedError("Session has been disposed")
            stale, self._composite = self._composite, buffer
            self._composite_key = key if buffer is not None else None
        if stale is not None and stale is not buffer:
            release_quietly(stale.release, "composite")

    def take_composite(self, key: Optional[Hashable] = None) -> Optional[PixelBuffer]:
        """Transfer the composite to the caller if it was built for *key*.

        A composite built for another key is released and ``None`` returned.
        """
        with self._lock:
            buffer, stored_key = self._composite, self._composite_key
            self._composite = None
            self._composite_key = None
        if buffer is None:
            return None
        if key is not None and stored_key != key:
            release_quietly(buffer.release, "stale composite")
            return None
        return buffer

    def set_preview(self, buffer: Optional[PixelBuffer]) -> None:
        """Store the latest preview, releasing the previous one."""
        with self._lock:
            if self._state is not SessionState.ACTIVE:
                if buffer is not None:
                    release_quietly(buffer.release, "preview")
                raise SessionDisposedError("Session has been disposed")
            stale, self._preview = self._preview, buffer
        if stale is not None and stale is not buffer:
            release_quietly(stale.release, "preview")

    def copy_preview(self) -> Optional[PixelBuffer]:
        """Return an owned copy of the preview, or ``None`` when there is none."""
        with self._lock:
            if self._preview is None:
                return None
            return self._preview.clone()

    def dispose(self) -> None:
        """Run the three-phase release protocol. Repeated calls are no-ops."""
        with self._lock:
            if self._state is not SessionState.ACTIVE:
                return
            self._state = SessionState.DISPOSING
            cancellation = self._cancellation

        # 1. Cancel in-flight work and let it observe the token
        if cancellation is not None:
            cancellation.cancel()
        if self._grace_period > 0:
            time.sleep(self._grace_period)

        with self._lock:
            tiles = list(self._tiles)
            composite, preview = self._composite, self._preview

            # 2. Release each buffer on its own
            dispose_assets(tiles)
            if composite is not None:
                release_quietly(composite.release, "composite")
            if preview is not None:
                release_quietly(preview.release, "preview")

            # 3. Sever every owning reference
            self._tiles.clear()
            self._composite = None
            self._composite_key = None
            self._preview = None
            if cancellation is not None:
                release_quietly(cancellation.close, "cancellation source")
            self._cancellation = None
            self._state = SessionState.DISPOSED
        logger.debug("Session disposed (%d tiles released)", len(tiles))

    def __enter__(self) -> "PuzzleSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tiles)
