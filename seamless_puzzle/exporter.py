"""PNG exporter with structured logging and metrics.

:class:`PuzzleExporter` writes a composite to a uniquely named PNG in the
configured output directory.  Failures surface as :class:`ExportError` with a
category, after the file stream has been closed and the partial file removed.
Every save emits structured logs carrying a correlation identifier (``cid``)
and is counted by ``export_metrics``.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO, Callable, Optional, Tuple

from PIL import ImageOps

from . import config as config_module
from . import imaging
from .buffers import PixelBuffer
from .cancellation import CancellationToken
from .errors import ExportError, OperationCancelledError
from .layouts import PuzzleMode
from .validation import validate_output_dir

ProgressCallback = Callable[[float], Any]


class _ExportMetrics:
    """Simple in-memory metrics collector."""

    def __init__(self) -> None:
        self.counters: Counter[str] = Counter()
        self.durations: list[float] = []

    def record(self, name: str, duration: float | None = None) -> None:
        self.counters[name] += 1
        if duration is not None:
            self.durations.append(duration)


export_metrics = _ExportMetrics()


@dataclass(slots=True)
class _ExportContext:
    """Holds state for one save."""

    cid: str
    log: logging.LoggerAdapter


class PuzzleExporter:
    """Encodes composites to PNG files."""

    MAX_NAME_ATTEMPTS = 10_000

    def __init__(
        self,
        config: Optional[config_module.PuzzleConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._config = config or config_module.PuzzleConfig()
        self._clock = clock

    @property
    def output_dir(self) -> Path:
        return Path(self._config.output_dir)

    def save(
        self,
        composite: PixelBuffer,
        mode: PuzzleMode,
        tile_count: int,
        progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
        ensure_durable: bool = False,
    ) -> Path:
        """Write *composite* and return the absolute path of the new file.

        The composite stays owned by the caller.  ``ensure_durable`` forces
        an ``fsync`` after the OS flush; it is slow and meant for explicit
        opt-in only.

        Raises:
            ExportError: With the category of the underlying failure
        """
        mode = PuzzleMode.parse(mode)
        token = token or CancellationToken.none()
        cid = uuid.uuid4().hex
        context = _ExportContext(
            cid=cid, log=logging.LoggerAdapter(logging.getLogger(__name__), {"cid": cid})
        )
        start = time.perf_counter()
        path: Optional[Path] = None
        try:
            token.raise_if_cancelled()
            image = composite.image
            # Composites carry no EXIF, so this normally leaves the pixels untouched
            ImageOps.exif_transpose(image, in_place=True)
            level = imaging.png_compress_level(image.width * image.height)
            if progress is not None:
                progress(0.0)

            path, handle = self._open_unique(self._prepare_output_dir(), context)
            with handle:
                image.save(handle, format="PNG", compress_level=level)
                token.raise_if_cancelled()
                handle.flush()
                if ensure_durable:
                    os.fsync(handle.fileno())
        except BaseException as exc:
            duration = (time.perf_counter() - start) * 1000
            export_metrics.record("failure", duration)
            if path is not None:
                self._remove_partial(path, context)
            if isinstance(exc, (KeyboardInterrupt, SystemExit)):
                raise
            error = ExportError.from_exception(exc)
            if isinstance(exc, OperationCancelledError):
                context.log.info("export cancelled", extra={"path": str(path)})
            else:
                context.log.error(
                    "export failed: %s", exc, extra={"category": error.category.value}
                )
            if error is exc:
                raise
            raise error from exc

        duration = (time.perf_counter() - start) * 1000
        export_metrics.record("success", duration)
        context.log.info(
            "export complete: %s (%s, %d tiles, level %d, %.0f ms)",
            path, mode.value, tile_count, level, duration,
            extra={"path": str(path), "duration_ms": duration, "durable": ensure_durable},
        )
        if progress is not None:
            progress(1.0)
        return path

    def _prepare_output_dir(self) -> Path:
        return validate_output_dir(self._config.output_dir)

    def candidate_names(self) -> Tuple[str, Callable[[int], str]]:
        """Return the base file name and a factory for collision suffixes."""
        prefix = config_module.OUTPUT_FILENAME_PREFIX
        timestamp = self._clock().strftime(config_module.OUTPUT_TIMESTAMP_FORMAT)
        base = f"{prefix}_{timestamp}.png"
        return base, lambda n: f"{prefix}_{timestamp}_{n}.png"

    def _open_unique(self, directory: Path, context: _ExportContext) -> Tuple[Path, BinaryIO]:
        """Create the first free ``SeamlessPuzzle_<ts>[_n].png`` exclusively."""
        base, numbered = self.candidate_names()
        name = base
        for attempt in range(1, self.MAX_NAME_ATTEMPTS + 1):
            path = directory / name
            try:
                handle = open(path, "xb")
            except FileExistsError:
                name = numbered(attempt)
                continue
            context.log.debug("writing %s", path)
            return path.resolve(), handle
        raise FileExistsError(f"No free file name for {base} in {directory}")

    @staticmethod
    def _remove_partial(path: Path, context: _ExportContext) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            context.log.warning("could not remove partial file %s: %s", path, exc)


__all__ = ["PuzzleExporter", "export_metrics"]
