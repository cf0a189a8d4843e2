"""
Global settings and constants for the Gmail MCP server.

This module reads account credentials, server endpoints and scheduling
options from the environment (optionally populated from a .env file).
It is framework-agnostic and designed to be easily unit-testable.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from gmail_mcp.utils.errors import AuthenticationError


# Default server endpoints
DEFAULT_IMAP_HOST: str = "imap.gmail.com"
DEFAULT_IMAP_PORT: int = 993
DEFAULT_SMTP_HOST: str = "smtp.gmail.com"
DEFAULT_SMTP_PORT: int = 587
DEFAULT_TIMEOUT_SECONDS: int = 30

# Mailbox and result-size defaults
DEFAULT_MAILBOX: str = "INBOX"
DEFAULT_LIST_LIMIT: int = 50
MAX_LIST_LIMIT: int = 500

# Scheduled polling
DEFAULT_SCHEDULE_TIMES: List[str] = ["15:00", "19:00"]
SCHEDULED_FETCH_LIMIT: int = 50

# Logging
DEFAULT_LOG_DIR: Path = Path.home() / ".gmail_mcp" / "logs"


@dataclass
class Settings:
    """Process-wide settings resolved from the environment."""
    user: str
    password: str
    imap_host: str = DEFAULT_IMAP_HOST
    imap_port: int = DEFAULT_IMAP_PORT
    smtp_host: str = DEFAULT_SMTP_HOST
    smtp_port: int = DEFAULT_SMTP_PORT
    schedule_enabled: bool = False
    schedule_times: List[str] = field(default_factory=lambda: list(DEFAULT_SCHEDULE_TIMES))
    timezone: Optional[str] = None
    log_dir: Path = DEFAULT_LOG_DIR
    debug: bool = False


def _as_bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() == "true"


def _as_int(value: Optional[str], default: int, name: str) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def parse_schedule_times(value: Optional[str]) -> List[str]:
    """
    Split a comma-separated SCHEDULE_TIMES value.

    Returns the default times when the variable is unset or blank.
    """
    if value is None or not value.strip():
        return list(DEFAULT_SCHEDULE_TIMES)
    return [t.strip() for t in value.split(",") if t.strip()]


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    dotenv: bool = True,
) -> Settings:
    """
    Load settings from the environment.

    This function should be called once at process startup.

    Args:
        environ: Mapping to read from. Defaults to os.environ.
        dotenv: If True, load a .env file into os.environ first.

    Returns:
        The resolved Settings.

    Raises:
        AuthenticationError: If GMAIL_USER or GMAIL_APP_PASSWORD is missing.
    """
    if dotenv:
        load_dotenv()
    env = os.environ if environ is None else environ

    user = (env.get("GMAIL_USER") or "").strip()
    password = env.get("GMAIL_APP_PASSWORD") or ""
    if not user or not password:
        missing = [name for name, value in (("GMAIL_USER", user), ("GMAIL_APP_PASSWORD", password)) if not value]
        raise AuthenticationError(f"Missing required environment variables: {', '.join(missing)}")

    log_dir_env = env.get("LOG_DIR")

    return Settings(
        user=user,
        password=password,
        imap_host=env.get("IMAP_HOST") or DEFAULT_IMAP_HOST,
        imap_port=_as_int(env.get("IMAP_PORT"), DEFAULT_IMAP_PORT, "IMAP_PORT"),
        smtp_host=env.get("SMTP_HOST") or DEFAULT_SMTP_HOST,
        smtp_port=_as_int(env.get("SMTP_PORT"), DEFAULT_SMTP_PORT, "SMTP_PORT"),
        schedule_enabled=_as_bool(env.get("SCHEDULE_ENABLED")),
        schedule_times=parse_schedule_times(env.get("SCHEDULE_TIMES")),
        timezone=env.get("TIMEZONE") or None,
        log_dir=Path(log_dir_env).expanduser() if log_dir_env else DEFAULT_LOG_DIR,
        debug=_as_bool(env.get("DEBUG")),
    )
