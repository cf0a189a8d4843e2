"""Tests for gmail_mcp/config.py"""

from pathlib import Path

import pytest

from gmail_mcp.config import (
    DEFAULT_LOG_DIR,
    DEFAULT_SCHEDULE_TIMES,
    load_settings,
    parse_schedule_times,
)
from gmail_mcp.utils.errors import AuthenticationError


CREDENTIALS = {"GMAIL_USER": "me@gmail.com", "GMAIL_APP_PASSWORD": "abcd efgh ijkl mnop"}


def test_defaults():
    settings = load_settings(dict(CREDENTIALS), dotenv=False)

    assert settings.user == "me@gmail.com"
    assert settings.imap_host == "imap.gmail.com"
    assert settings.imap_port == 993
    assert settings.smtp_host == "smtp.gmail.com"
    assert settings.smtp_port == 587
    assert settings.schedule_enabled is False
    assert settings.schedule_times == DEFAULT_SCHEDULE_TIMES
    assert settings.timezone is None
    assert settings.log_dir == DEFAULT_LOG_DIR
    assert settings.debug is False


def test_overrides():
    env = dict(
        CREDENTIALS,
        IMAP_HOST="imap.example.com",
        IMAP_PORT="143",
        SMTP_PORT="465",
        SCHEDULE_ENABLED="TRUE",
        SCHEDULE_TIMES="08:00, 12:30",
        TIMEZONE="Asia/Tokyo",
        LOG_DIR="/tmp/gmail-logs",
        DEBUG="true",
    )

    settings = load_settings(env, dotenv=False)

    assert settings.imap_host == "imap.example.com"
    assert settings.imap_port == 143
    assert settings.smtp_port == 465
    assert settings.schedule_enabled is True
    assert settings.schedule_times == ["08:00", "12:30"]
    assert settings.timezone == "Asia/Tokyo"
    assert settings.log_dir == Path("/tmp/gmail-logs")
    assert settings.debug is True


@pytest.mark.parametrize("missing", ["GMAIL_USER", "GMAIL_APP_PASSWORD"])
def test_missing_credentials(missing):
    env = dict(CREDENTIALS)
    del env[missing]

    with pytest.raises(AuthenticationError, match=f"Missing required environment variables: {missing}"):
        load_settings(env, dotenv=False)


def test_schedule_enabled_only_for_true():
    assert load_settings(dict(CREDENTIALS, SCHEDULE_ENABLED="yes"), dotenv=False).schedule_enabled is False


def test_bad_port():
    with pytest.raises(ValueError, match="IMAP_PORT"):
        load_settings(dict(CREDENTIALS, IMAP_PORT="imaps"), dotenv=False)


def test_parse_schedule_times():
    assert parse_schedule_times(None) == DEFAULT_SCHEDULE_TIMES
    assert parse_schedule_times("") == DEFAULT_SCHEDULE_TIMES
    assert parse_schedule_times("  ") == DEFAULT_SCHEDULE_TIMES
    assert parse_schedule_times("15:00,,19:00 ") == ["15:00", "19:00"]

