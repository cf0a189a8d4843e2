"""
SMTP client for sending emails.

This module provides an async SMTP client that authenticates with an app
password, composes MIME messages (text, HTML, attachments, threading
headers) and submits them over one long-lived connection.
"""
import asyncio
import logging
import mimetypes
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, formatdate, getaddresses, make_msgid
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

from gmail_mcp.config import DEFAULT_SMTP_HOST, DEFAULT_SMTP_PORT, DEFAULT_TIMEOUT_SECONDS
from gmail_mcp.models import OriginalContext, OutgoingAttachment, ReplyRequest, SendRequest
from gmail_mcp.utils.errors import (
    AuthenticationError,
    RateLimitError,
    SmtpConnectionError,
    SmtpError,
    ValidationError,
    with_retry,
)


logger = logging.getLogger(__name__)

REPLY_PREFIX = "Re:"

# 4xx replies that mean "try again later"
TRANSIENT_SMTP_CODES = frozenset({421, 450, 451, 452, 454})


@dataclass
class SmtpConfig:
    """Connection settings for the SMTP server."""
    user: str
    password: str
    host: str = DEFAULT_SMTP_HOST
    port: int = DEFAULT_SMTP_PORT
    timeout: float = DEFAULT_TIMEOUT_SECONDS


def _default_connection_factory(host: str, port: int, timeout: float) -> smtplib.SMTP:
    # Port 465 uses SSL from the start, other ports upgrade with STARTTLS
    if port == 465:
        return smtplib.SMTP_SSL(host, port, timeout=timeout)
    connection = smtplib.SMTP(host, port, timeout=timeout)
    connection.starttls()
    return connection


def _parse_recipients(value: Optional[Union[str, Sequence[str]]]) -> List[Tuple[str, str]]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    return [(name, addr) for name, addr in getaddresses([v for v in value if v]) if addr]


def normalize_recipients(value: Optional[Union[str, Sequence[str]]]) -> List[str]:
    """
    Turn a single address or a list of addresses into one entry per mailbox.

    Comma-separated strings are split, and display names are kept for the
    headers. Example: 'Bob <b@example.com>, c@example.com' ->
    ['Bob <b@example.com>', 'c@example.com']
    """
    return [formataddr(pair) for pair in _parse_recipients(value)]


def envelope_addresses(value: Optional[Union[str, Sequence[str]]]) -> List[str]:
    """Bare addresses for the SMTP envelope (RCPT TO)."""
    return [addr for _, addr in _parse_recipients(value)]


def default_reply_subject(original_subject: Optional[str]) -> str:
    """Subject used when the caller does not supply one."""
    if not original_subject:
        return f"{REPLY_PREFIX} (no subject)"
    if original_subject.startswith(REPLY_PREFIX):
        return original_subject
    return f"{REPLY_PREFIX} {original_subject}"


def build_reply_subject(reply_subject: Optional[str], original_subject: Optional[str]) -> str:
    """
    Final subject of a reply.

    The prefix check runs on each string separately: the reply subject is kept
    as is when either it or the original subject starts with "Re:", otherwise
    "Re: " is put in front of the original subject (or the reply subject when
    the original has none).
    """
    reply_subject = reply_subject or default_reply_subject(original_subject)
    if reply_subject.startswith(REPLY_PREFIX) or (original_subject or "").startswith(REPLY_PREFIX):
        return reply_subject
    return f"{REPLY_PREFIX} {original_subject or reply_subject}"


def build_references(original: OriginalContext) -> Optional[str]:
    """Original References plus the original Message-ID, space separated."""
    if original.references:
        ids = [ref for ref in [*original.references, original.message_id] if ref]
        return " ".join(ids)
    return original.message_id


class SmtpClient:
    """
    High-level SMTP client for sending emails.

    Holds one submission channel, opened on first use and reused until it
    drops. Submissions are serialized.
    """

    def __init__(
        self,
        config: SmtpConfig,
        connection_factory: Optional[Callable[..., smtplib.SMTP]] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        """
        Initialize the SMTP client.

        Args:
            config: Server and credential settings.
            connection_factory: Callable(host, port, timeout) returning a
                connected smtplib.SMTP-compatible object.
            max_retries: Attempts per submission for the retry wrapper.
            retry_delay: Base backoff delay in seconds.
        """
        self.config = config
        self._connection_factory = connection_factory or _default_connection_factory
        self.connection: Optional[smtplib.SMTP] = None
        self._lock = asyncio.Lock()
        self._max_retries = max_retries
        self._retry_delay = retry_delay

    def _reset(self) -> None:
        self.connection = None

    async def _connect(self) -> None:
        """Establish connection to SMTP server and authenticate. Caller holds the lock."""
        if self.connection is not None:
            return

        host, port = self.config.host, self.config.port
        logger.info(f"Connecting to SMTP server {host}:{port}")
        try:
            connection = await asyncio.to_thread(self._connection_factory, host, port, self.config.timeout)
        except (smtplib.SMTPException, OSError) as e:
            raise SmtpConnectionError(f"Failed to connect to SMTP server {host}:{port}: {e}")

        try:
            await asyncio.to_thread(connection.login, self.config.user, self.config.password)
        except smtplib.SMTPAuthenticationError as e:
            await self._discard(connection)
            raise AuthenticationError(f"SMTP authentication failed: {e.smtp_code} {self._reply_text(e)}")
        except smtplib.SMTPServerDisconnected as e:
            await self._discard(connection)
            raise SmtpConnectionError(f"SMTP connection lost during login: {e}")
        except smtplib.SMTPException as e:
            await self._discard(connection)
            raise SmtpError(f"SMTP login failed: {e}")
        except OSError as e:
            await self._discard(connection)
            raise SmtpConnectionError(f"SMTP connection error during login: {e}")

        self.connection = connection
        logger.info("SMTP connection established and authenticated")

    async def _discard(self, connection: smtplib.SMTP) -> None:
        try:
            await asyncio.to_thread(connection.close)
        except Exception as e:
            logger.debug(f"Error discarding SMTP connection: {e}")

    @staticmethod
    def _reply_text(exc: smtplib.SMTPResponseException) -> str:
        error = exc.smtp_error
        return error.decode("utf-8", errors="ignore") if isinstance(error, bytes) else str(error)

    async def _drop_connection(self) -> None:
        """Close the current channel, ignoring errors, and forget it."""
        connection = self.connection
        self._reset()
        if connection is not None:
            await self._discard(connection)

    async def _translate(self, exc: Exception) -> Exception:
        """Map smtplib failures to the application error taxonomy."""
        if isinstance(exc, smtplib.SMTPServerDisconnected):
            await self._drop_connection()
            return SmtpConnectionError(f"SMTP connection lost: {exc}")
        if isinstance(exc, smtplib.SMTPRecipientsRefused):
            return SmtpError(f"Recipients refused: {', '.join(exc.recipients)}")
        if isinstance(exc, smtplib.SMTPResponseException):
            text = f"{exc.smtp_code} {self._reply_text(exc)}"
            if exc.smtp_code in TRANSIENT_SMTP_CODES:
                if exc.smtp_code == 421:
                    await self._drop_connection()
                return RateLimitError(f"SMTP server busy: {text}")
            return SmtpError(f"Failed to send email: {text}")
        if isinstance(exc, smtplib.SMTPException):
            return SmtpError(f"Failed to send email: {exc}")
        if isinstance(exc, OSError):
            await self._drop_connection()
            return SmtpConnectionError(f"SMTP connection error: {exc}")
        return exc

    async def verify(self) -> None:
        """
        Confirm credentials and connectivity with a NOOP round-trip.

        Raises:
            AuthenticationError: If the server rejects the credentials.
            SmtpError: If the server cannot be reached or misbehaves.
        """
        async with self._lock:
            try:
                await self._connect()
                code, response = await asyncio.to_thread(self.connection.noop)
            except (AuthenticationError, SmtpError):
                raise
            except Exception as e:
                translated = await self._translate(e)
                raise SmtpError(f"SMTP verification failed: {translated}")
            if code != 250:
                raise SmtpError(f"SMTP verification failed: {code} {response!r}")
        logger.info("SMTP connection verified")

    def _load_attachment(self, attachment: OutgoingAttachment) -> bytes:
        if attachment.path:
            try:
                return Path(attachment.path).read_bytes()
            except OSError as e:
                raise ValidationError(f"cannot read attachment {attachment.path}: {e}", "attachments")
        content = attachment.content
        return content.encode("utf-8") if isinstance(content, str) else bytes(content)

    def _validate(self, request: SendRequest) -> None:
        if not normalize_recipients(request.to) or not request.subject or (not request.body and not request.html_body):
            raise ValidationError("to, subject, and body (or htmlBody) are required")
        for attachment in request.attachments or []:
            if not attachment.filename:
                raise ValidationError("every attachment needs a filename", "attachments")
            if attachment.path:
                if not Path(attachment.path).is_file():
                    raise ValidationError(f"attachment file not found: {attachment.path}", "attachments")
            elif attachment.content is None:
                raise ValidationError(
                    f"attachment {attachment.filename} needs either content or a path", "attachments"
                )

    def _build_mime_message(self, request: SendRequest) -> EmailMessage:
        """
        Build the MIME message for a validated request.

        Text and HTML bodies become multipart/alternative; attachments wrap
        the body in multipart/mixed. Bcc recipients are never written into
        the headers.
        """
        msg = EmailMessage()
        msg['From'] = self.config.user
        msg['To'] = ', '.join(normalize_recipients(request.to))
        cc = normalize_recipients(request.cc)
        if cc:
            msg['Cc'] = ', '.join(cc)
        reply_to = normalize_recipients(request.reply_to)
        if reply_to:
            msg['Reply-To'] = ', '.join(reply_to)
        msg['Subject'] = request.subject
        msg['Date'] = formatdate(localtime=True)

        domain = self.config.user.rpartition('@')[2] or None
        msg['Message-ID'] = make_msgid(domain=domain)

        if request.in_reply_to:
            msg['In-Reply-To'] = request.in_reply_to
        references = request.references
        if isinstance(references, (list, tuple)):
            references = ' '.join(r for r in references if r)
        if references:
            msg['References'] = references

        if request.body:
            msg.set_content(request.body)
            if request.html_body:
                msg.add_alternative(request.html_body, subtype='html')
        else:
            msg.set_content(request.html_body, subtype='html')

        for attachment in request.attachments or []:
            data = self._load_attachment(attachment)
            mime_type = attachment.content_type or mimetypes.guess_type(attachment.filename)[0] or 'application/octet-stream'
            main_type, _, sub_type = mime_type.partition('/')
            msg.add_attachment(
                data,
                maintype=main_type or 'application',
                subtype=sub_type or 'octet-stream',
                filename=attachment.filename,
            )
            logger.debug(f"Added attachment: {attachment.filename}")

        return msg

    async def send_email(self, request: SendRequest) -> str:
        """
        Send an email message.

        Validation happens before any network activity.

        Args:
            request: The message to send.

        Returns:
            The Message-ID assigned to the sent message.

        Raises:
            ValidationError: If recipients, subject or body are missing.
            SmtpError: If submission fails.
        """
        self._validate(request)
        mime_msg = self._build_mime_message(request)
        message_id = mime_msg['Message-ID']

        recipients = envelope_addresses(request.to)
        recipients.extend(envelope_addresses(request.cc))
        recipients.extend(envelope_addresses(request.bcc))

        async def operation() -> str:
            async with self._lock:
                await self._connect()
                logger.info(f"Sending email to {len(recipients)} recipient(s)")
                try:
                    failed_recipients = await asyncio.to_thread(
                        self.connection.send_message, mime_msg, self.config.user, recipients
                    )
                except Exception as e:
                    raise await self._translate(e)

                if failed_recipients:
                    error_msg = f"Failed to send to recipients: {', '.join(failed_recipients.keys())}"
                    logger.error(error_msg)
                    raise SmtpError(error_msg)

                logger.info(f"Email sent successfully: {message_id}")
                return message_id

        return await with_retry(operation, self._max_retries, self._retry_delay)

    async def reply_email(self, request: ReplyRequest, original: OriginalContext) -> str:
        """
        Reply to a message, preserving the thread.

        Args:
            request: Reply content. The subject defaults to "Re: <original subject>".
            original: Sender, subject, Message-ID and References of the original.

        Returns:
            The Message-ID of the reply.
        """
        if not request.body and not request.html_body:
            raise ValidationError("Either body or htmlBody must be provided")

        return await self.send_email(SendRequest(
            to=original.from_address.address if original.from_address else "",
            subject=build_reply_subject(request.subject, original.subject),
            body=request.body,
            html_body=request.html_body,
            cc=request.cc,
            bcc=request.bcc,
            in_reply_to=original.message_id,
            references=build_references(original),
        ))

    async def close(self) -> None:
        """Close the SMTP connection."""
        async with self._lock:
            if self.connection is None:
                return
            try:
                await asyncio.to_thread(self.connection.quit)
                logger.debug("SMTP connection closed gracefully")
            except Exception:
                try:
                    await asyncio.to_thread(self.connection.close)
                    logger.debug("SMTP connection closed")
                except Exception as e:
                    logger.debug(f"Error closing SMTP connection: {e}")
            finally:
                self._reset()
