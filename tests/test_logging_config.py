"""Tests for logging setup."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from team_orchestrator.logging_config import LOGGER_NAME, setup_logging


@pytest.fixture
def clean_logger():
	logger = logging.getLogger(LOGGER_NAME)
	saved = logger.handlers[:]
	logger.handlers.clear()
	yield logger
	for handler in logger.handlers:
		handler.close()
	logger.handlers[:] = saved


def test_console_and_file_handlers(clean_logger, tmp_path: Path):
	logger = setup_logging(tmp_path / "logs", "warning")

	assert logger is clean_logger
	console, file_handler = logger.handlers
	assert console.level == logging.WARNING
	assert isinstance(file_handler, RotatingFileHandler)
	assert file_handler.level == logging.DEBUG

	logging.getLogger(f"{LOGGER_NAME}.driver").debug("phase loop started")
	file_handler.flush()
	assert "phase loop started" in (tmp_path / "logs" / "orchestrator.log").read_text()


def test_no_duplicate_handlers(clean_logger, tmp_path: Path):
	setup_logging(tmp_path / "logs")
	setup_logging(tmp_path / "logs")
	assert len(clean_logger.handlers) == 2


def test_without_log_dir(clean_logger):
	setup_logging()
	assert len(clean_logger.handlers) == 1
