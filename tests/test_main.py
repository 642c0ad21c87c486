"""Tests for logging setup and the command line entry point."""
from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

import pytest
from PIL import Image

from seamless_puzzle import main as main_module


@pytest.fixture()
def clean_logger():
    logger = logging.getLogger(main_module.LOGGER_NAME)
    saved = list(logger.handlers)
    level, propagate = logger.level, logger.propagate
    for handler in saved:
        logger.removeHandler(handler)
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in saved:
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = propagate


def test_configure_logging_is_idempotent(clean_logger, tmp_path):
    logger = main_module.configure_logging("debug", log_dir=tmp_path)
    again = main_module.configure_logging(log_dir=tmp_path)
    assert logger is again
    assert len(logger.handlers) == 2
    file_handler = next(h for h in logger.handlers if isinstance(h, RotatingFileHandler))
    assert file_handler.maxBytes == 1_048_576
    assert file_handler.backupCount == 5
    assert (tmp_path / main_module.LOG_FILE_NAME).exists()
    assert logger.propagate is False


def test_log_level_from_environment(clean_logger, tmp_path, monkeypatch):
    monkeypatch.setenv("SEAMLESS_PUZZLE_LOG_LEVEL", "warning")
    logger = main_module.configure_logging(log_dir=tmp_path)
    assert logger.level == logging.WARNING


def test_cli_writes_puzzle(clean_logger, make_image_file, tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(main_module, "configure_logging", lambda level=None: clean_logger)
    out_dir = tmp_path / "puzzles"
    paths = [str(make_image_file(size=(30, 20))), str(make_image_file(size=(10, 20)))]

    code = main_module.main(paths + ["--mode", "horizontal", "--output-dir", str(out_dir)])

    assert code == 0
    written = capsys.readouterr().out.strip().splitlines()[-1]
    with Image.open(written) as img:
        assert img.size == (40, 20)
    assert written.startswith(str(out_dir.resolve()))


def test_cli_fails_when_nothing_decodes(clean_logger, tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(main_module, "configure_logging", lambda level=None: clean_logger)
    bad = tmp_path / "bad.png"
    bad.write_bytes(b"nope")
    code = main_module.main([str(bad), "--output-dir", str(tmp_path)])
    assert code == 1
    assert "The given files could not be decoded" in capsys.readouterr().err


def test_cli_rejects_unknown_mode():
    with pytest.raises(SystemExit):
        main_module.build_parser().parse_args(["a.png", "--mode", "spiral"])
