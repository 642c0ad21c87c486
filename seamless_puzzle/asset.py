"""Tile model: one decoded source image plus its derived metadata."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from . import imaging
from .buffers import PixelBuffer
from .errors import release_quietly

logger = logging.getLogger(__name__)

DEFAULT_THUMBNAIL_SIDE = 256


def compute_content_hash(image) -> str:
    """Cache and dedup key of a decoded image; see :func:`imaging.content_hash`."""
    return imaging.content_hash(image)


class SourceKind(enum.Enum):
    FILE = "file"
    CLIPBOARD = "clipboard"


@dataclass(eq=False)
class ImageAsset:
    """
    A tile participating in a puzzle.

    Attributes:
        source_path (Optional[str]): File the pixels were decoded from
        source_kind (SourceKind): Where the pixels came from
        pixels (Optional[PixelBuffer]): Owned RGBA buffer; ``None`` once disposed
        order_index (int): Submission index used to order batch results
        content_hash (Optional[str]): Perceptual cache/dedup key
        selected (bool): Whether the tile takes part in the composite
        loading (bool): True while a decode is in flight
        load_progress (float): Decode progress in ``[0, 1]``
    """

    source_path: Optional[str] = None
    source_kind: SourceKind = SourceKind.FILE
    pixels: Optional[PixelBuffer] = None
    order_index: int = 0
    content_hash: Optional[str] = None
    selected: bool = True
    loading: bool = False
    load_progress: float = 0.0
    _thumbnail: Optional[PixelBuffer] = field(default=None, init=False, repr=False)
    _thumbnail_side: int = field(default=0, init=False, repr=False)
    _thumbnail_dirty: bool = field(default=True, init=False, repr=False)
    _disposed: bool = field(default=False, init=False, repr=False)

    @classmethod
    def from_buffer(
        cls,
        buffer: PixelBuffer,
        *,
        source_path: Optional[str] = None,
        source_kind: SourceKind = SourceKind.FILE,
        order_index: int = 0,
    ) -> "ImageAsset":
        """Wrap a freshly decoded buffer and compute its content hash."""
        return cls(
            source_path=source_path,
            source_kind=source_kind,
            pixels=buffer,
            order_index=order_index,
            content_hash=compute_content_hash(buffer.image),
        )

    @property
    def is_composable(self) -> bool:
        return self.pixels is not None and not self.pixels.released

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def size(self) -> Optional[tuple]:
        return self.pixels.size if self.pixels is not None else None

    def replace_pixels(self, buffer: PixelBuffer) -> None:
        """Swap in *buffer*, releasing the old pixels and invalidating the thumbnail."""

        old, self.pixels = self.pixels, buffer
        if old is not None and old is not buffer:
            release_quietly(old.release, "replaced pixels")
        self.content_hash = compute_content_hash(buffer.image)
        self._thumbnail_dirty = True

    def thumbnail(self, max_side: int = DEFAULT_THUMBNAIL_SIDE) -> Optional[PixelBuffer]:
        """Return the cached thumbnail, rebuilding it only when marked dirty.

        The thumbnail stays owned by the asset; callers must not release it.
        """

        if not self.is_composable:
            return None
        if self._thumbnail is None or self._thumbnail_dirty or self._thumbnail_side != max_side:
            stale, self._thumbnail = self._thumbnail, None
            if stale is not None:
                release_quietly(stale.release, "thumbnail")
            image = imaging.downsample_to_fit(self.pixels.image, (max_side, max_side))
            self._thumbnail = PixelBuffer(image)
            self._thumbnail_side = max_side
            self._thumbnail_dirty = False
        return self._thumbnail

    def clone(self) -> "ImageAsset":
        """Deep copy: the pixel buffer is duplicated, never shared."""

        return ImageAsset(
            source_path=self.source_path,
            source_kind=self.source_kind,
            pixels=self.pixels.clone() if self.is_composable else None,
            order_index=self.order_index,
            content_hash=self.content_hash,
            selected=self.selected,
            loading=self.loading,
            load_progress=self.load_progress,
        )

    def dispose(self) -> None:
        """Release the thumbnail and pixels. Safe to call more than once."""

        if self._disposed:
            return
        self._disposed = True
        if self._thumbnail is not None:
            release_quietly(self._thumbnail.release, "thumbnail")
        if self.pixels is not None:
            release_quietly(self.pixels.release, f"pixels of {self.source_path or 'pasted image'}")
        self._thumbnail = None
        self._thumbnail_dirty = True
        self.pixels = None


def clone_assets(assets: Iterable[ImageAsset]) -> List[ImageAsset]:
    """Deep-clone every asset in order."""
    clones: List[ImageAsset] = []
    try:
        for asset in assets:
            clones.append(asset.clone())
    except Exception:
        dispose_assets(clones)
        raise
    return clones


def dispose_assets(assets: Optional[Iterable[ImageAsset]]) -> None:
    """Dispose each asset, isolating failures so every one gets a chance."""
    if not assets:
        return
    for asset in list(assets):
        if asset is None:
            continue
        release_quietly(asset.dispose, "image asset")


__all__ = [
    "DEFAULT_THUMBNAIL_SIDE",
    "ImageAsset",
    "SourceKind",
    "clone_assets",
    "compute_content_hash",
    "dispose_assets",
]
