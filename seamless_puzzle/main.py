# main.py
"""
Logging setup and headless entry point for Seamless Puzzle.

``seamless-puzzle a.jpg b.png --mode grid4`` loads the images, composes them
at full resolution and writes one PNG, printing its path.
"""
import argparse
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Sequence

from . import config
from .asset import dispose_assets
from .compositor import Compositor
from .errors import ExportError, PuzzleError
from .exporter import PuzzleExporter
from .layouts import PuzzleMode
from .loader import ImageLoader

LOGGER_NAME = "seamless_puzzle"
LOG_FILE_NAME = "seamless_puzzle.log"


def configure_logging(
    level: Optional[str] = None, log_dir: Optional[Path] = None
) -> logging.Logger:
    """Configure and return the package logger.

    The handler setup is idempotent to avoid duplicate handlers when the module
    is imported multiple times (e.g., in tests). A rotating file handler limits
    on-disk log growth while mirroring output to stdout.
    """

    logger = logging.getLogger(LOGGER_NAME)
    level_name = (level or os.environ.get(f"{config.ENV_PREFIX}LOG_LEVEL") or "INFO").upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
    )

    log_path = (log_dir or Path.home() / ".seamless_puzzle") / LOG_FILE_NAME
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=1_048_576,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)
    logger.propagate = False

    return logger


def global_exception_handler(exc_type, value, tb):
    logging.getLogger(LOGGER_NAME).error("Uncaught exception", exc_info=(exc_type, value, tb))
    sys.__excepthook__(exc_type, value, tb)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="seamless-puzzle",
        description="Compose images into one seamless puzzle PNG.",
    )
    parser.add_argument("paths", nargs="+", help="Images to compose, in order")
    parser.add_argument(
        "--mode",
        default=PuzzleMode.HORIZONTAL.value,
        choices=[mode.value for mode in PuzzleMode],
        help="Layout of the puzzle (default: %(default)s)",
    )
    parser.add_argument("--output-dir", type=Path, help="Directory for the PNG")
    parser.add_argument(
        "--durable", action="store_true", help="fsync the file before returning"
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: INFO)")
    return parser


def run(args: argparse.Namespace) -> Path:
    """Load, compose and save once; return the written path."""
    overrides = {"output_dir": args.output_dir} if args.output_dir else {}
    cfg = config.PuzzleConfig.from_env(**overrides)
    tiles = ImageLoader(cfg).load_files(args.paths)
    try:
        if not tiles:
            raise PuzzleError("The given files could not be decoded")
        composite = Compositor(cfg).compose(tiles, PuzzleMode.parse(args.mode))
        try:
            return PuzzleExporter(cfg).save(
                composite, args.mode, len(tiles), ensure_durable=args.durable
            )
        finally:
            composite.release()
    finally:
        dispose_assets(tiles)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logger = configure_logging(args.log_level)
    sys.excepthook = global_exception_handler
    try:
        path = run(args)
    except ExportError as e:
        logger.error("Save failed: %s", e)
        print(e.user_message, file=sys.stderr)
        return 1
    except PuzzleError as e:
        logger.error("%s", e)
        print(str(e), file=sys.stderr)
        return 1
    print(path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
