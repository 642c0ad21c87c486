"""Shared fixtures: tiny generated images and a fast controller config."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Tuple

import pytest
from PIL import Image

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from seamless_puzzle.asset import ImageAsset  # noqa: E402
from seamless_puzzle.buffers import PixelBuffer  # noqa: E402
from seamless_puzzle.config import PuzzleConfig  # noqa: E402


@pytest.fixture()
def make_image_file(tmp_path: Path) -> Callable[..., Path]:
    """Write a solid-colour image to ``tmp_path`` and return its path."""

    counter = {"n": 0}

    def _make(
        size: Tuple[int, int] = (40, 30),
        color: Tuple[int, ...] = (200, 40, 40),
        fmt: str = "PNG",
        suffix: str = ".png",
        mode: str = "RGB",
        name: str | None = None,
        **save_kwargs,
    ) -> Path:
        counter["n"] += 1
        path = tmp_path / (name or f"tile_{counter['n']}{suffix}")
        with Image.new(mode, size, color) as img:
            img.save(path, format=fmt, **save_kwargs)
        return path

    return _make


@pytest.fixture()
def make_asset() -> Callable[..., ImageAsset]:
    """Build an in-memory tile of the given size and colour."""

    created = []

    def _make(size=(40, 30), color=(10, 120, 200, 255), **kwargs) -> ImageAsset:
        asset = ImageAsset.from_buffer(PixelBuffer(Image.new("RGBA", size, color)), **kwargs)
        created.append(asset)
        return asset

    yield _make
    for asset in created:
        asset.dispose()


@pytest.fixture()
def fast_config(tmp_path: Path) -> PuzzleConfig:
    """Configuration with no debounce or pregeneration delay."""

    return PuzzleConfig(
        preview_debounce_ms=0,
        pregenerate_delay_ms=0,
        release_grace_ms=0,
        output_dir=tmp_path / "out",
        preview_max_width=400,
        preview_max_height=200,
    )
