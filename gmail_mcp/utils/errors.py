"""
Centralized error hierarchy for the Gmail MCP server.

This module provides a base exception class carrying a stable error code and
an HTTP-like status, the specific error types raised by the IMAP and SMTP
clients, the retry wrapper shared by both clients, and a helper for turning
any exception into the text shown to the tool caller.
"""
import asyncio
import logging
import re
from typing import Awaitable, Callable, Optional, TypeVar, Union


logger = logging.getLogger(__name__)

T = TypeVar("T")


class EmailClientError(Exception):
    """
    Base exception class for all email client errors.

    All application-specific exceptions inherit from this class so the tool
    layer can report a stable code and status for every failure.
    """

    def __init__(
        self,
        message: str,
        code: str,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.retryable = retryable


class AuthenticationError(EmailClientError):
    """Raised when the server rejects the account credentials."""

    def __init__(self, message: str = "Gmail authentication failed"):
        super().__init__(
            f"{message}. Please check GMAIL_USER and GMAIL_APP_PASSWORD in your .env file.",
            "AUTH_ERROR",
            401,
            False,
        )


class RateLimitError(EmailClientError):
    """Raised when the server throttles us. The only kind retried with backoff."""

    def __init__(self, message: str = "Gmail rate limit exceeded"):
        super().__init__(
            f"{message}. Please wait before retrying.",
            "RATE_LIMIT_ERROR",
            429,
            True,
        )


class ValidationError(EmailClientError):
    """Raised when caller input is missing or malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            f"Validation error in {field}: {message}" if field else f"Validation error: {message}",
            "VALIDATION_ERROR",
            400,
            False,
        )
        self.field = field


class NotFoundError(EmailClientError):
    """Raised when a requested resource does not exist."""

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found", "NOT_FOUND_ERROR", 404, False)
        self.resource = resource


class ImapError(EmailClientError):
    """Raised when an IMAP command fails at the protocol level."""

    def __init__(self, message: str, code: str = "IMAP_ERROR", status_code: int = 502, retryable: bool = False):
        super().__init__(message, code, status_code, retryable)


class ImapConnectionError(ImapError):
    """Raised when the IMAP channel cannot be opened or is lost."""

    def __init__(self, message: str):
        super().__init__(message, "IMAP_CONNECTION_ERROR", 503, True)


class SmtpError(EmailClientError):
    """Raised when SMTP submission fails."""

    def __init__(self, message: str, code: str = "SMTP_ERROR", status_code: int = 502, retryable: bool = False):
        super().__init__(message, code, status_code, retryable)


class SmtpConnectionError(SmtpError):
    """Raised when the SMTP channel cannot be opened or is lost."""

    def __init__(self, message: str):
        super().__init__(message, "SMTP_CONNECTION_ERROR", 503, True)


# Wording servers use when throttling a session (Gmail sends [THROTTLED],
# others [LIMIT] or plain English).
_THROTTLING_PATTERN = re.compile(
    r"\[THROTTLED\]|\[LIMIT\]|too many|rate limit|try again later|bandwidth limit",
    re.IGNORECASE,
)


def is_throttling_message(text: Union[str, bytes, None]) -> bool:
    """Return True if a server response reads like a throttling notice."""
    if not text:
        return False
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="ignore")
    return bool(_THROTTLING_PATTERN.search(text))


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run an async operation, retrying on throttling and unknown failures.

    Policy per attempt:
    - RateLimitError (before the last attempt): wait ``delay * 2**attempt``.
    - Any other non-retryable EmailClientError: re-raise immediately.
    - Last attempt: re-raise whatever was caught.
    - Anything else: wait ``delay * (attempt + 1)`` and try again.

    Args:
        operation: Zero-argument coroutine function to run.
        max_retries: Maximum number of attempts.
        delay: Base delay in seconds.
        sleep: Awaitable sleep function (injectable for tests).

    Returns:
        The operation's result.
    """
    last_error: Optional[BaseException] = None

    for attempt in range(max_retries):
        try:
            return await operation()
        except Exception as e:
            last_error = e

            if isinstance(e, RateLimitError) and attempt < max_retries - 1:
                wait_time = delay * (2 ** attempt)
                logger.warning(f"Rate limit hit, retrying in {wait_time:.1f}s...")
                await sleep(wait_time)
                continue

            if isinstance(e, EmailClientError) and not e.retryable:
                raise

            if attempt == max_retries - 1:
                raise

            wait_time = delay * (attempt + 1)
            logger.warning(f"Attempt {attempt + 1}/{max_retries} failed ({e}), retrying in {wait_time:.1f}s...")
            await sleep(wait_time)

    if last_error is not None:
        raise last_error
    raise ValueError("max_retries must be at least 1")


def human_friendly_message(exc: BaseException) -> str:
    """
    Convert an exception to the text reported back to the tool caller.

    Application errors carry their stable code and status; anything else is
    reported by message only.

    Args:
        exc: The exception to convert.

    Returns:
        A user-facing error message string.
    """
    if isinstance(exc, EmailClientError):
        text = f"Error: {exc.message}\n\nCode: {exc.code}"
        if exc.status_code:
            text += f"\nStatus: {exc.status_code}"
        return text

    if isinstance(exc, TimeoutError):
        return (
            "Error: The operation timed out. This might be due to a slow connection "
            "or server issues. Please try again."
        )
    if isinstance(exc, ConnectionError):
        return "Error: Could not connect to the server. Please check your internet connection and try again."

    error_msg = str(exc) if str(exc) else "Unknown error"
    return f"Error: {error_msg}"
