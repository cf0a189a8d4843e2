"""
High-level IMAP client wrapper.

This module provides an async interface for mailbox operations on top of
imaplib. The client owns exactly one connection; every operation is
serialized through an asyncio lock and each blocking round-trip runs in a
worker thread so the event loop stays responsive.
"""
import asyncio
import imaplib
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Tuple

from gmail_mcp.config import (
    DEFAULT_IMAP_HOST,
    DEFAULT_IMAP_PORT,
    DEFAULT_LIST_LIMIT,
    DEFAULT_MAILBOX,
    DEFAULT_TIMEOUT_SECONDS,
)
from gmail_mcp.core.message_parser import parse_flags, parse_message
from gmail_mcp.core.search import ALL_MESSAGES, SearchToken, parse_criteria, to_imap_args
from gmail_mcp.models import SEEN_FLAG, EmailMessage
from gmail_mcp.utils.errors import (
    AuthenticationError,
    EmailClientError,
    ImapConnectionError,
    ImapError,
    NotFoundError,
    RateLimitError,
    ValidationError,
    is_throttling_message,
    with_retry,
)


logger = logging.getLogger(__name__)

_UID_PATTERN = re.compile(rb"UID (\d+)")


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class ImapConfig:
    """Connection settings for the IMAP server."""
    user: str
    password: str
    host: str = DEFAULT_IMAP_HOST
    port: int = DEFAULT_IMAP_PORT
    timeout: float = DEFAULT_TIMEOUT_SECONDS


def _protocol_error(context: str, detail: Any) -> EmailClientError:
    """Build the error for a failed IMAP command, recognizing throttling."""
    if isinstance(detail, (list, tuple)):
        detail = b" ".join(d for d in detail if isinstance(d, bytes)).decode("utf-8", errors="ignore") or str(detail)
    text = str(detail)
    if is_throttling_message(text):
        return RateLimitError(f"{context}: {text}")
    return ImapError(f"{context}: {text}")


def _extract_fetch_payload(data: Sequence[Any], uid: int) -> Tuple[Optional[bytes], bytes]:
    """
    Split a UID FETCH response into the message literal and the metadata text.

    imaplib returns items such as:
        [(b'5 (UID 12 FLAGS (\\Seen) BODY[] {345}', b'<raw message>'), b')']
    Some servers put FLAGS after the literal, so the bytes item right after
    the matching tuple is kept as metadata too. Unsolicited FETCH lines for
    other messages (flag updates picked up by an earlier NOOP) can appear in
    the same list and are ignored.
    """
    items = list(data or [])
    for index, item in enumerate(items):
        if not (isinstance(item, tuple) and len(item) >= 2 and isinstance(item[1], bytes)):
            continue
        header_line = item[0] if isinstance(item[0], bytes) else b""
        uid_match = _UID_PATTERN.search(header_line)
        if uid_match and int(uid_match.group(1)) != uid:
            continue
        meta = header_line
        if index + 1 < len(items) and isinstance(items[index + 1], bytes):
            meta += b" " + items[index + 1]
        return item[1], meta
    return None, b""


class ImapClient:
    """
    High-level IMAP client.

    State machine: DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED.
    Read operations connect on demand, then select the requested mailbox
    (default INBOX) when it differs from the last one selected.
    """

    def __init__(
        self,
        config: ImapConfig,
        connection_factory: Optional[Callable[..., imaplib.IMAP4]] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        """
        Initialize the IMAP client.

        Args:
            config: Server and credential settings.
            connection_factory: Callable returning an imaplib-compatible
                connection; defaults to imaplib.IMAP4_SSL.
            max_retries: Attempts per operation for the retry wrapper.
            retry_delay: Base backoff delay in seconds.
        """
        self.config = config
        self._connection_factory = connection_factory or imaplib.IMAP4_SSL
        self.connection: Optional[imaplib.IMAP4] = None
        self.state = ConnectionState.DISCONNECTED
        self._selected_mailbox: Optional[str] = None
        self._lock = asyncio.Lock()
        self._max_retries = max_retries
        self._retry_delay = retry_delay

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED and self.connection is not None

    def _reset(self) -> None:
        """Drop the channel handle and return to DISCONNECTED."""
        self.connection = None
        self.state = ConnectionState.DISCONNECTED
        self._selected_mailbox = None

    async def _drop_connection(self) -> None:
        """Close the current channel, ignoring errors, and reset."""
        connection = self.connection
        self._reset()
        if connection is not None:
            await self._discard(connection)

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        """
        Run one blocking imaplib call in a worker thread.

        Connection-level failures invalidate the channel and surface as
        ImapConnectionError. Command-level IMAP4.error passes through.
        """
        try:
            return await asyncio.to_thread(func, *args)
        except imaplib.IMAP4.abort as e:
            await self._drop_connection()
            raise ImapConnectionError(f"IMAP connection lost: {e}")
        except OSError as e:
            await self._drop_connection()
            raise ImapConnectionError(f"IMAP connection error: {e}")

    async def _connect(self) -> None:
        """Establish and authenticate the connection. Caller holds the lock."""
        if self.is_connected():
            return

        host, port = self.config.host, self.config.port
        self.state = ConnectionState.CONNECTING
        logger.info(f"Connecting to IMAP server {host}:{port}")

        try:
            connection = await asyncio.to_thread(
                self._connection_factory, host, port, timeout=self.config.timeout
            )
        except (imaplib.IMAP4.error, OSError) as e:
            self._reset()
            raise ImapConnectionError(f"Failed to connect to IMAP server {host}:{port}: {e}")

        try:
            result, data = await asyncio.to_thread(connection.login, self.config.user, self.config.password)
            if result != 'OK':
                raise imaplib.IMAP4.error(data[0].decode('utf-8', errors='ignore') if data and data[0] else result)
        except imaplib.IMAP4.abort as e:
            self._reset()
            await self._discard(connection)
            raise ImapConnectionError(f"IMAP connection lost during login: {e}")
        except imaplib.IMAP4.error as e:
            self._reset()
            await self._discard(connection)
            if is_throttling_message(str(e)):
                raise RateLimitError(f"IMAP login throttled: {e}")
            raise AuthenticationError(f"IMAP authentication failed: {e}")
        except OSError as e:
            self._reset()
            await self._discard(connection)
            raise ImapConnectionError(f"IMAP connection error during login: {e}")

        self.connection = connection
        self.state = ConnectionState.CONNECTED
        self._selected_mailbox = None
        logger.info("IMAP connection established and authenticated")

    async def _discard(self, connection: imaplib.IMAP4) -> None:
        try:
            await asyncio.to_thread(connection.shutdown)
        except Exception as e:
            logger.debug(f"Error discarding IMAP connection: {e}")

    async def _ensure_connected(self) -> None:
        """Ensure the connection is alive, reconnecting after a failed NOOP."""
        if not self.is_connected():
            await self._connect()
            return
        try:
            await asyncio.to_thread(self.connection.noop)
        except Exception as e:
            logger.info(f"IMAP connection is stale ({e}), reconnecting")
            await self._drop_connection()
            await self._connect()

    async def connect(self) -> None:
        """Connect and authenticate (no-op if already connected)."""
        async with self._lock:
            await self._connect()

    async def disconnect(self) -> None:
        """Log out and close the connection."""
        async with self._lock:
            if self.connection is None:
                self._reset()
                return
            try:
                await asyncio.to_thread(self.connection.logout)
                logger.debug("IMAP connection closed gracefully")
            except Exception as e:
                logger.debug(f"Error during IMAP logout: {e}")
            finally:
                self._reset()

    async def __aenter__(self) -> "ImapClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.disconnect()
        return False

    # ------------------------------------------------------------------
    # Per-operation steps (caller holds the lock)
    # ------------------------------------------------------------------

    @staticmethod
    def _quote_mailbox_name(mailbox: str) -> str:
        """
        Quote a mailbox name if it contains spaces or special characters.

        For example: "Sent Mail" -> '"Sent Mail"', "[Gmail]/All Mail" -> '"[Gmail]/All Mail"'
        """
        if not mailbox or (mailbox.startswith('"') and mailbox.endswith('"')):
            return mailbox
        if any(c in mailbox for c in ' []/"\\'):
            escaped = mailbox.replace('\\', '\\\\').replace('"', '\\"')
            return f'"{escaped}"'
        return mailbox

    async def _open_mailbox(self, mailbox: str) -> None:
        await self._ensure_connected()
        if self._selected_mailbox == mailbox:
            return
        try:
            result, data = await self._run(self.connection.select, self._quote_mailbox_name(mailbox))
        except imaplib.IMAP4.error as e:
            raise _protocol_error(f"Failed to open mailbox '{mailbox}'", e)
        if result != 'OK':
            raise _protocol_error(f"Failed to open mailbox '{mailbox}'", data)
        self._selected_mailbox = mailbox

    async def _search(self, tokens: Sequence[SearchToken]) -> List[int]:
        try:
            result, data = await self._run(self.connection.uid, 'SEARCH', None, *to_imap_args(tokens))
        except imaplib.IMAP4.error as e:
            raise _protocol_error("IMAP search error", e)
        if result != 'OK':
            raise _protocol_error("IMAP search error", data)
        if not data or not data[0]:
            return []
        return [int(uid) for uid in data[0].split()]

    async def _fetch_message(self, uid: int) -> Optional[EmailMessage]:
        """Fetch and parse one message. Returns None if the server has no such UID."""
        try:
            # BODY.PEEK so fetching never sets \Seen
            result, data = await self._run(self.connection.uid, 'FETCH', str(uid), '(UID FLAGS BODY.PEEK[])')
        except imaplib.IMAP4.error as e:
            raise _protocol_error(f"IMAP fetch error for UID {uid}", e)
        if result != 'OK':
            raise _protocol_error(f"IMAP fetch error for UID {uid}", data)

        raw, meta = _extract_fetch_payload(data, uid)
        if raw is None:
            return None
        try:
            return parse_message(raw, uid, parse_flags(meta))
        except Exception as e:
            raise ImapError(f"Error parsing email {uid}: {e}")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def list_emails(
        self,
        criteria: Optional[Sequence[Any]] = None,
        mailbox: str = DEFAULT_MAILBOX,
        limit: int = DEFAULT_LIST_LIMIT,
        offset: int = 0,
    ) -> List[EmailMessage]:
        """
        List messages matching the criteria, newest match first.

        The UID list returned by SEARCH is reversed, then sliced by offset and
        limit. Freshness therefore follows the server's result order (ascending
        UIDs on Gmail), not message dates.

        A message that fails to fetch or parse is logged and left out.

        Args:
            criteria: Search criteria tokens or loose tool input. Defaults to ALL.
            mailbox: Mailbox to search in.
            limit: Maximum number of messages to return.
            offset: Number of newest matches to skip.

        Returns:
            The parsed messages.
        """
        if limit < 0:
            raise ValidationError("limit must not be negative", "limit")
        if offset < 0:
            raise ValidationError("offset must not be negative", "offset")
        tokens = parse_criteria(criteria) if criteria is not None else list(ALL_MESSAGES)
        if not tokens:
            tokens = list(ALL_MESSAGES)

        async def operation() -> List[EmailMessage]:
            async with self._lock:
                await self._open_mailbox(mailbox)
                uids = await self._search(tokens)
                if not uids:
                    return []

                selected = list(reversed(uids))[offset:offset + limit]
                emails: List[EmailMessage] = []
                for uid in selected:
                    try:
                        message = await self._fetch_message(uid)
                    except (ImapConnectionError, RateLimitError):
                        raise
                    except Exception as e:
                        logger.error(f"Error fetching email {uid} from {mailbox}: {e}")
                        continue
                    if message is None:
                        logger.warning(f"Email {uid} vanished from {mailbox} before it could be fetched")
                        continue
                    emails.append(message)
                return emails

        return await with_retry(operation, self._max_retries, self._retry_delay)

    async def get_email(self, uid: int, mailbox: str = DEFAULT_MAILBOX) -> EmailMessage:
        """
        Fetch a single message by UID.

        Raises:
            NotFoundError: If the mailbox has no message with this UID.
        """
        async def operation() -> EmailMessage:
            async with self._lock:
                await self._open_mailbox(mailbox)
                message = await self._fetch_message(uid)
                if message is None:
                    raise NotFoundError(f"Email with UID {uid}")
                return message

        return await with_retry(operation, self._max_retries, self._retry_delay)

    async def search_emails(
        self,
        criteria: Sequence[Any],
        mailbox: str = DEFAULT_MAILBOX,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> List[EmailMessage]:
        """Search messages. Same as list_emails with offset 0, but criteria is required."""
        tokens = parse_criteria(criteria)
        if not tokens:
            raise ValidationError("at least one search criterion is required", "criteria")
        return await self.list_emails(tokens, mailbox=mailbox, limit=limit, offset=0)

    async def mark_as_read(self, uids: Sequence[int], mailbox: str = DEFAULT_MAILBOX) -> None:
        """
        Add the \\Seen flag to every UID in one STORE command.

        The batch either succeeds or fails as a whole.
        """
        if not uids:
            raise ValidationError("at least one UID is required", "uids")
        if any(isinstance(u, bool) or not isinstance(u, int) or u <= 0 for u in uids):
            raise ValidationError("UIDs must be positive integers", "uids")
        uid_set = ",".join(str(u) for u in uids)

        async def operation() -> None:
            async with self._lock:
                await self._open_mailbox(mailbox)
                try:
                    result, data = await self._run(self.connection.uid, 'STORE', uid_set, '+FLAGS', f'({SEEN_FLAG})')
                except imaplib.IMAP4.error as e:
                    raise _protocol_error("Failed to mark as read", e)
                if result != 'OK':
                    raise _protocol_error("Failed to mark as read", data)
                logger.info(f"Marked {len(uids)} email(s) as read in {mailbox}")

        await with_retry(operation, self._max_retries, self._retry_delay)
