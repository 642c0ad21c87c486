"""Owned pixel buffers with deterministic release.

Every decoded image, intermediate and composite lives inside a
:class:`PixelBuffer`.  Buffers are released explicitly (or through a ``with``
block); nothing relies on garbage collection to free pixel memory.  The
module-level :data:`buffer_metrics` counts allocations and releases so tests
can assert that a code path does not leak.
"""

from __future__ import annotations

from threading import Lock
from typing import Optional, Tuple

from PIL import Image

from .errors import BufferReleasedError

PIXEL_MODE = "RGBA"


class _BufferMetrics:
    """Thread-safe allocation counters."""

    def __init__(self) -> None:
        self._lock = Lock()
        self.allocated = 0
        self.released = 0

    def record_allocation(self) -> None:
        with self._lock:
            self.allocated += 1

    def record_release(self) -> None:
        with self._lock:
            self.released += 1

    @property
    def live(self) -> int:
        with self._lock:
            return self.allocated - self.released


buffer_metrics = _BufferMetrics()


class PixelBuffer:
    """Exclusive owner of one RGBA Pillow image."""

    __slots__ = ("_image", "_size", "_lock", "__weakref__")

    def __init__(self, image: Image.Image) -> None:
        if image.mode != PIXEL_MODE:
            converted = image.convert(PIXEL_MODE)
            image.close()
            image = converted
        self._image: Optional[Image.Image] = image
        self._size: Tuple[int, int] = image.size
        self._lock = Lock()
        buffer_metrics.record_allocation()

    @classmethod
    def blank(cls, size: Tuple[int, int]) -> "PixelBuffer":
        """Return a fully transparent buffer of *size*."""
        return cls(Image.new(PIXEL_MODE, size, (0, 0, 0, 0)))

    @property
    def image(self) -> Image.Image:
        image = self._image
        if image is None:
            raise BufferReleasedError("Pixel buffer has already been released")
        return image

    @property
    def released(self) -> bool:
        return self._image is None

    @property
    def size(self) -> Tuple[int, int]:
        return self._size

    @property
    def width(self) -> int:
        return self._size[0]

    @property
    def height(self) -> int:
        return self._size[1]

    @property
    def pixel_count(self) -> int:
        return self._size[0] * self._size[1]

    def clone(self) -> "PixelBuffer":
        """Return an independent copy that the caller owns."""
        return PixelBuffer(self.image.copy())

    def release(self) -> None:
        """Free the pixel memory. Calling it again is a no-op."""
        with self._lock:
            image, self._image = self._image, None
        if image is None:
            return
        buffer_metrics.record_release()
        image.close()

    def __enter__(self) -> "PixelBuffer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self.released else "live"
        return f"<PixelBuffer {self._size[0]}x{self._size[1]} {state}>"


__all__ = ["PIXEL_MODE", "PixelBuffer", "buffer_metrics"]
