from __future__ import annotations

import io
import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from PIL import Image, UnidentifiedImageError

from . import config as config_module
from . import imaging
from .asset import ImageAsset, SourceKind, dispose_assets
from .buffers import PixelBuffer
from .cancellation import CancellationToken
from .errors import DecodeError, OperationCancelledError, release_quietly
from .validation import validate_image_path

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], Any]


class ImageLoader:
    """Decodes files and pasted bitmaps into :class:`ImageAsset` tiles."""

    VALID_EXTENSIONS = frozenset(config_module.SUPPORTED_IMAGE_FORMATS)

    def __init__(self, config: Optional[config_module.PuzzleConfig] = None) -> None:
        self._config = config or config_module.PuzzleConfig()

    @property
    def max_dimension(self) -> int:
        return self._config.max_source_dimension

    def load_files(
        self,
        paths: Sequence[Union[str, Path]],
        progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[ImageAsset]:
        """
        Decode *paths* concurrently.

        Args:
            paths: Ordered file paths
            progress: Receives ``completed / total`` after every completion
            token: Cancels the batch; pending decodes are dropped

        Returns:
            List[ImageAsset]: Successfully decoded tiles ordered by submission
            index. Files that fail to decode are skipped.

        Raises:
            OperationCancelledError: If *token* fires before the batch ends
        """
        token = token or CancellationToken.none()
        total = len(paths)
        if total == 0:
            return []
        token.raise_if_cancelled()

        workers = self._config.loader_max_workers or total
        results: List[ImageAsset] = []
        completed = 0
        counter_lock = Lock()

        def _report() -> None:
            nonlocal completed
            with counter_lock:
                completed += 1
                fraction = completed / total
            if progress is not None:
                progress(fraction)

        executor = ThreadPoolExecutor(
            max_workers=min(workers, total), thread_name_prefix="puzzle-loader"
        )
        try:
            futures: Dict[Future, str] = {
                executor.submit(self._load_indexed, str(path), index): str(path)
                for index, path in enumerate(paths)
            }
            pending = set(futures)
            while pending:
                done, pending = wait(pending, timeout=0.05, return_when=FIRST_COMPLETED)
                for future in done:
                    try:
                        asset = future.result()
                    except Exception as exc:  # noqa: BLE001 - one bad file never aborts the batch
                        logger.warning("Failed to load %s: %s", futures[future], exc)
                    else:
                        results.append(asset)
                    _report()
                if token.cancelled:
                    for future in pending:
                        future.cancel()
                    break
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

        if token.cancelled:
            # Anything finishing after the cancel point is collected here too
            for future in futures:
                if future.done() and not future.cancelled() and future.exception() is None:
                    asset = future.result()
                    if asset not in results:
                        results.append(asset)
            dispose_assets(results)
            logger.debug("Batch load of %d files cancelled", total)
            raise OperationCancelledError("Batch load was cancelled")

        results.sort(key=lambda asset: asset.order_index)
        return results

    def load_file(self, path: Union[str, Path], order_index: int = 0) -> Optional[ImageAsset]:
        """Decode a single file, returning ``None`` when it cannot be read."""
        try:
            return self._load_indexed(str(path), order_index)
        except Exception as exc:  # noqa: BLE001 - per-file failures are not fatal
            logger.warning("Failed to load %s: %s", path, exc)
            return None

    def _load_indexed(self, path: str, order_index: int) -> ImageAsset:
        try:
            safe_path = validate_image_path(path, self.VALID_EXTENSIONS)
        except ValueError as exc:
            raise DecodeError(str(exc)) from exc
        data = safe_path.read_bytes()
        buffer = self.decode_bytes(data, source=path)
        return self._make_asset(buffer, str(safe_path), SourceKind.FILE, order_index)

    def load_clipboard_image(self, bitmap: Any) -> Optional[ImageAsset]:
        """
        Decode a pasted bitmap through the same pipeline as files.

        ``bitmap`` may be a Pillow image, a ``QImage`` or encoded bytes.  It
        is re-encoded to PNG in memory first so every source goes through one
        decoder.  Returns ``None`` when the bitmap cannot be processed.
        """
        try:
            data = encode_bitmap_png(bitmap)
            buffer = self.decode_bytes(data, source="clipboard")
            return self._make_asset(buffer, None, SourceKind.CLIPBOARD, 0)
        except Exception as exc:  # noqa: BLE001 - a bad paste must not interrupt the user
            logger.warning("Failed to load pasted image: %s", exc)
            return None

    def decode_bytes(self, data: bytes, source: str = "<bytes>") -> PixelBuffer:
        """
        Decode encoded image bytes into an upright RGBA buffer.

        Sources whose width or height exceed ``max_dimension`` are shrunk to
        fit before orientation is corrected.

        Raises:
            DecodeError: If Pillow cannot read the data
        """
        limit = self.max_dimension
        try:
            with Image.open(io.BytesIO(data)) as img:
                if img.width > limit or img.height > limit:
                    # Fast-path: let JPEG decoders downscale while reading
                    img.draft("RGB", (limit, limit))
                img.load()
                if img.width > limit or img.height > limit:
                    img.thumbnail((limit, limit), imaging.FAST_FILTER)
                    logger.info("Downsampled oversized source %s to %dx%d", source, *img.size)
                oriented = imaging.auto_orient(img)
        except (
            UnidentifiedImageError,
            Image.DecompressionBombError,
            OSError,
            SyntaxError,
            ValueError,
        ) as exc:
            raise DecodeError(f"Cannot decode {source}: {exc}") from exc
        return PixelBuffer(oriented)

    def _make_asset(
        self,
        buffer: PixelBuffer,
        source_path: Optional[str],
        kind: SourceKind,
        order_index: int,
    ) -> ImageAsset:
        try:
            return ImageAsset.from_buffer(
                buffer, source_path=source_path, source_kind=kind, order_index=order_index
            )
        except Exception:
            release_quietly(buffer.release, "decoded buffer")
            raise


def encode_bitmap_png(bitmap: Any) -> bytes:
    """Re-encode a pasted bitmap as PNG bytes."""
    if isinstance(bitmap, (bytes, bytearray, memoryview)):
        return bytes(bitmap)
    if isinstance(bitmap, Image.Image):
        stream = io.BytesIO()
        bitmap.save(stream, format="PNG", compress_level=1)
        return stream.getvalue()
    return _encode_qimage_png(bitmap)


def _encode_qimage_png(bitmap: Any) -> bytes:
    from PySide6.QtCore import QBuffer, QByteArray, QIODevice
    from PySide6.QtGui import QImage, QPixmap

    if isinstance(bitmap, QPixmap):
        bitmap = bitmap.toImage()
    if not isinstance(bitmap, QImage):
        raise TypeError(f"Unsupported bitmap type: {type(bitmap).__name__}")
    if bitmap.isNull():
        raise DecodeError("Pasted image is empty")

    payload = QByteArray()
    qbuffer = QBuffer(payload)
    qbuffer.open(QIODevice.WriteOnly)
    try:
        if not bitmap.save(qbuffer, "PNG"):
            raise DecodeError("Qt could not encode the pasted image")
    finally:
        qbuffer.close()
    return bytes(payload.data())


__all__ = ["ImageLoader", "encode_bitmap_png"]
