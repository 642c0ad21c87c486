"""Seamless Puzzle: compose images into one seamless strip or grid."""

from .asset import ImageAsset, SourceKind
from .buffers import PixelBuffer, buffer_metrics
from .cache import ContentCache
from .cancellation import CancellationToken, CancellationTokenSource
from .compositor import Compositor
from .config import PuzzleConfig
from .errors import (
    DecodeError,
    EmptyTilesError,
    ExportError,
    ExportErrorCategory,
    OperationCancelledError,
    PuzzleError,
    UnsupportedLayoutError,
)
from .exporter import PuzzleExporter
from .layouts import PuzzleMode
from .loader import ImageLoader

__version__ = "1.0.0"

__all__ = [
    "CancellationToken",
    "CancellationTokenSource",
    "Compositor",
    "ContentCache",
    "DecodeError",
    "EmptyTilesError",
    "ExportError",
    "ExportErrorCategory",
    "ImageAsset",
    "ImageLoader",
    "OperationCancelledError",
    "PixelBuffer",
    "PuzzleConfig",
    "PuzzleError",
    "PuzzleExporter",
    "PuzzleMode",
    "SourceKind",
    "UnsupportedLayoutError",
    "buffer_metrics",
]
