"""Path checks applied before any file is read or written."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Set, Union
from urllib.parse import urlparse


def _has_url_scheme(path_str: str) -> bool:
    """Return True if *path_str* carries a URL scheme.

    One-letter schemes are Windows drive letters (``C:\\``), not URLs.
    """
    scheme = urlparse(path_str).scheme
    return len(scheme) > 1


def _normalise_extensions(exts: Iterable[str]) -> Set[str]:
    return {ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in exts}


def validate_image_path(path: Union[str, Path], allowed_exts: Iterable[str]) -> Path:
    """Resolve an input image *path* and check it can be decoded.

    ``allowed_exts`` may be given with or without the leading dot.

    Raises:
        ValueError: For URLs, missing files, directories and unsupported
            extensions
    """
    path_str = str(path)
    if _has_url_scheme(path_str):
        raise ValueError(f"URLs are not allowed: {path_str}")

    try:
        resolved = Path(path_str).expanduser().resolve(strict=True)
    except (FileNotFoundError, RuntimeError) as exc:
        raise ValueError(f"File does not exist: {path_str}") from exc

    if not resolved.is_file():
        raise ValueError(f"Not a file: {path_str}")
    if resolved.suffix.lower() not in _normalise_extensions(allowed_exts):
        raise ValueError(f"Unsupported file extension: {resolved.suffix or '(none)'}")
    return resolved


def validate_output_dir(path: Union[str, Path]) -> Path:
    """Resolve the export directory *path*, creating it when missing.

    Raises:
        ValueError: For URLs and paths that exist but are not directories
    """
    path_str = str(path)
    if _has_url_scheme(path_str):
        raise ValueError(f"URLs are not allowed: {path_str}")

    directory = Path(path_str).expanduser().resolve()
    if directory.exists() and not directory.is_dir():
        raise ValueError(f"Not a directory: {directory}")
    directory.mkdir(parents=True, exist_ok=True)
    return directory
