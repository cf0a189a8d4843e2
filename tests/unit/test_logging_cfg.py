"""Tests for gmail_mcp/utils/logging_cfg.py"""

import logging
import logging.handlers
import sys

import pytest

from gmail_mcp.utils.logging_cfg import LOG_FILE_NAME, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def test_file_and_stderr_handlers(tmp_path, restore_root_logger):
    log_file = setup_logging(log_dir=tmp_path / "logs")

    assert log_file == tmp_path / "logs" / LOG_FILE_NAME
    handlers = restore_root_logger.handlers
    file_handlers = [h for h in handlers if isinstance(h, logging.handlers.RotatingFileHandler)]
    console = [h for h in handlers if type(h) is logging.StreamHandler]
    assert len(file_handlers) == 1 and file_handlers[0].level == logging.INFO
    assert len(console) == 1
    assert console[0].stream is sys.stderr
    assert console[0].level == logging.WARNING
    assert "Gmail MCP Server Started" in log_file.read_text()


def test_debug_lowers_levels(tmp_path, restore_root_logger):
    setup_logging(debug=True, log_dir=tmp_path)

    assert restore_root_logger.level == logging.DEBUG
    assert all(h.level == logging.DEBUG for h in restore_root_logger.handlers)
    assert logging.getLogger("imaplib").level == logging.WARNING
