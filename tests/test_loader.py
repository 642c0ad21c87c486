"""Tests for concurrent decoding, ordering and cancellation in ImageLoader."""
from __future__ import annotations

import pytest
from PIL import Image

from seamless_puzzle.asset import SourceKind, dispose_assets
from seamless_puzzle.buffers import buffer_metrics
from seamless_puzzle.cancellation import CancellationTokenSource
from seamless_puzzle.config import PuzzleConfig
from seamless_puzzle.errors import DecodeError, OperationCancelledError
from seamless_puzzle.loader import ImageLoader, encode_bitmap_png


def test_results_follow_submission_order(make_image_file):
    paths = [make_image_file(size=(10 + i, 10)) for i in range(6)]
    loader = ImageLoader(PuzzleConfig(loader_max_workers=3))
    assets = loader.load_files(paths)
    try:
        assert [a.order_index for a in assets] == list(range(6))
        assert [a.pixels.width for a in assets] == [10 + i for i in range(6)]
        assert all(a.source_kind is SourceKind.FILE for a in assets)
    finally:
        dispose_assets(assets)


def test_failed_files_are_skipped(make_image_file, tmp_path):
    good = make_image_file()
    corrupt = tmp_path / "corrupt.png"
    corrupt.write_bytes(b"not an image at all")
    missing = tmp_path / "missing.png"
    unsupported = tmp_path / "notes.txt"
    unsupported.write_text("hello")

    progress = []
    assets = ImageLoader().load_files(
        [corrupt, good, missing, unsupported], progress=progress.append
    )
    try:
        assert len(assets) == 1
        assert assets[0].source_path == str(good.resolve())
        assert assets[0].order_index == 1
        assert len(progress) == 4
        assert progress[-1] == pytest.approx(1.0)
        assert progress == sorted(progress)
    finally:
        dispose_assets(assets)


def test_empty_batch_returns_empty_list():
    assert ImageLoader().load_files([]) == []


def test_cancelled_batch_raises_and_releases(make_image_file):
    paths = [make_image_file() for _ in range(4)]
    source = CancellationTokenSource()
    source.cancel()
    before = buffer_metrics.live
    with pytest.raises(OperationCancelledError):
        ImageLoader().load_files(paths, token=source.token)
    assert buffer_metrics.live == before


def test_cancel_during_batch_disposes_decoded_assets(make_image_file):
    paths = [make_image_file() for _ in range(4)]
    source = CancellationTokenSource()
    before = buffer_metrics.live

    def cancel_after_first(fraction: float) -> None:
        source.cancel()

    with pytest.raises(OperationCancelledError):
        ImageLoader(PuzzleConfig(loader_max_workers=1)).load_files(
            paths, progress=cancel_after_first, token=source.token
        )
    assert buffer_metrics.live == before


def test_oversized_source_is_downsampled(make_image_file):
    path = make_image_file(size=(8001, 4))
    asset = ImageLoader().load_file(path)
    try:
        assert asset.pixels.width == 8000
        assert asset.pixels.height <= 4
    finally:
        asset.dispose()


def test_configurable_source_limit(make_image_file):
    path = make_image_file(size=(300, 60))
    asset = ImageLoader(PuzzleConfig(max_source_dimension=100)).load_file(path)
    try:
        assert max(asset.pixels.size) == 100
    finally:
        asset.dispose()


def test_exif_orientation_is_applied(make_image_file):
    exif = Image.Exif()
    exif[0x0112] = 6  # rotate 90 degrees clockwise
    path = make_image_file(size=(40, 20), fmt="JPEG", suffix=".jpg", exif=exif)
    asset = ImageLoader().load_file(path)
    try:
        assert asset.pixels.size == (20, 40)
    finally:
        asset.dispose()


def test_decoded_pixels_are_rgba(make_image_file):
    path = make_image_file(mode="L", color=128, fmt="BMP", suffix=".bmp")
    asset = ImageLoader().load_file(path)
    try:
        assert asset.pixels.image.mode == "RGBA"
    finally:
        asset.dispose()


def test_decode_bytes_rejects_garbage():
    with pytest.raises(DecodeError):
        ImageLoader().decode_bytes(b"\x00\x01garbage", source="junk")


def test_clipboard_image_uses_same_pipeline():
    loader = ImageLoader()
    with Image.new("RGB", (12, 8), (5, 6, 7)) as bitmap:
        asset = loader.load_clipboard_image(bitmap)
    try:
        assert asset.source_kind is SourceKind.CLIPBOARD
        assert asset.source_path is None
        assert asset.pixels.size == (12, 8)
        assert asset.pixels.image.getpixel((0, 0)) == (5, 6, 7, 255)
    finally:
        asset.dispose()


def test_unusable_clipboard_data_returns_none():
    assert ImageLoader().load_clipboard_image(b"nope") is None


def test_encode_bitmap_png_passes_bytes_through():
    assert encode_bitmap_png(bytearray(b"abc")) == b"abc"

