"""
Logging configuration for the Gmail MCP server.

This module sets up logging with a rotating file handler and console output.
Console output goes to stderr because stdout carries the MCP stdio transport.
"""
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional


# Default log directory
LOG_DIR = Path.home() / ".gmail_mcp" / "logs"
LOG_FILE_NAME = "server.log"

# Maximum log file size (10 MB)
MAX_LOG_SIZE = 10 * 1024 * 1024

# Number of backup log files to keep
BACKUP_COUNT = 5


def setup_logging(debug: bool = False, log_dir: Optional[Path] = None) -> Path:
    """
    Configure logging for the server process.

    Sets up:
    - Rotating file handler for <log_dir>/server.log
    - Console handler on stderr for immediate feedback
    - Appropriate log levels based on debug mode

    Args:
        debug: If True, sets log level to DEBUG. Otherwise, uses INFO.
        log_dir: Directory for the log file. Defaults to ~/.gmail_mcp/logs.

    Returns:
        Path of the log file in use.
    """
    log_dir = Path(log_dir) if log_dir else LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    log_level = logging.DEBUG if debug else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear any existing handlers
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    detailed_formatter = logging.Formatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    simple_formatter = logging.Formatter(
        fmt='%(levelname)s - %(message)s'
    )

    file_handler = logging.handlers.RotatingFileHandler(
        filename=str(log_file),
        maxBytes=MAX_LOG_SIZE,
        backupCount=BACKUP_COUNT,
        encoding='utf-8'
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(detailed_formatter)
    root_logger.addHandler(file_handler)

    # Console handler (only show WARNING and above unless debug)
    console_handler = logging.StreamHandler(sys.stderr)
    console_level = logging.DEBUG if debug else logging.WARNING
    console_handler.setLevel(console_level)
    console_handler.setFormatter(simple_formatter)
    root_logger.addHandler(console_handler)

    logger = logging.getLogger(__name__)
    logger.info("=" * 60)
    logger.info("Gmail MCP Server Started")
    logger.info(f"Log level: {logging.getLevelName(log_level)}")
    logger.info(f"Log file: {log_file}")
    logger.info("=" * 60)

    _suppress_noisy_loggers()
    return log_file


def _suppress_noisy_loggers() -> None:
    """Suppress verbose logging from third-party libraries."""
    for name in ("imaplib", "smtplib", "apscheduler", "mcp", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING)
