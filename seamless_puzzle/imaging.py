"""Reusable image resampling helpers.

This module centralizes the Pillow transformations used by the loader,
compositor and exporter.  Functions are intentionally small and pure: they
never close their input and always return a new image the caller owns.
"""

from __future__ import annotations

import hashlib
from typing import Iterable, Tuple

from PIL import Image, ImageOps

from . import config

# Cheap filter for previews and hashing; LANCZOS for full-size output
FAST_FILTER = Image.Resampling.BILINEAR
QUALITY_FILTER = Image.Resampling.LANCZOS

HASH_SAMPLE_SIZE = (8, 8)


def scaled_length(length: int, target: int, reference: int) -> int:
    """Scale *length* by ``target / reference``, flooring, never below one pixel."""

    return max(1, int(length * target / reference))


def scale_to_height(image: Image.Image, height: int) -> Image.Image:
    """Resize ``image`` to ``height`` keeping its aspect ratio."""
    width = scaled_length(image.width, height, image.height)
    return image.resize((width, height), QUALITY_FILTER)


def scale_to_width(image: Image.Image, width: int) -> Image.Image:
    """Resize ``image`` to ``width`` keeping its aspect ratio."""
    height = scaled_length(image.height, width, image.width)
    return image.resize((width, height), QUALITY_FILTER)


def crop_to_fill(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """Resize and center-crop ``image`` so it exactly covers ``size``."""
    return ImageOps.fit(image, size, QUALITY_FILTER, centering=(0.5, 0.5))


def downsample_to_fit(image: Image.Image, bounds: Tuple[int, int]) -> Image.Image:
    """Shrink ``image`` so its longest side fits ``bounds``.

    Images already inside ``bounds`` are copied unchanged; this never upscales.
    """

    result = image.copy()
    if result.width > bounds[0] or result.height > bounds[1]:
        result.thumbnail(bounds, FAST_FILTER)
    return result


def auto_orient(image: Image.Image) -> Image.Image:
    """Apply the EXIF orientation tag, returning a new upright image."""

    oriented = ImageOps.exif_transpose(image)
    return oriented if oriented is not None else image.copy()


def content_hash(image: Image.Image) -> str:
    """Perceptual cache key: SHA-256 over an 8x8 bilinear thumbnail.

    Two visually identical images share the key; it is not collision-free.
    """

    sample = image.resize(HASH_SAMPLE_SIZE, FAST_FILTER)
    if sample.mode != "RGBA":
        converted = sample.convert("RGBA")
        sample.close()
        sample = converted
    try:
        return hashlib.sha256(sample.tobytes()).hexdigest()
    finally:
        sample.close()


def png_compress_level(
    pixel_count: int,
    tiers: Iterable[Tuple[int, int]] = config.PNG_COMPRESSION_TIERS,
    maximum: int = config.PNG_MAX_COMPRESSION,
) -> int:
    """Return the zlib level for a PNG of ``pixel_count`` pixels.

    Bigger canvases get stronger compression to keep files manageable; the
    level is clamped to the format maximum of 9.
    """

    for limit, level in tiers:
        if pixel_count <= limit:
            return min(level, 9)
    return min(maximum, 9)


__all__ = [
    "FAST_FILTER",
    "QUALITY_FILTER",
    "auto_orient",
    "content_hash",
    "crop_to_fill",
    "downsample_to_fit",
    "png_compress_level",
    "scale_to_height",
    "scale_to_width",
    "scaled_length",
]
