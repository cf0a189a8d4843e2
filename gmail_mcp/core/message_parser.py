"""
Parsing of fetched RFC 822 messages into EmailMessage models.

Uses the standard library email package. Attachment parts are summarized by
metadata only; their content is hashed and measured, never returned.
"""
import email
import hashlib
import re
from email.header import decode_header
from email.message import Message
from email.utils import getaddresses, parsedate_to_datetime
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Union

from gmail_mcp.models import AttachmentInfo, EmailAddress, EmailBody, EmailMessage


_FLAGS_PATTERN = re.compile(rb"FLAGS \(([^)]*)\)")


def parse_flags(response: Union[bytes, str]) -> Set[str]:
    """
    Extract the flag list from an IMAP FETCH response line.

    Example: b'1 (UID 42 FLAGS (\\\\Seen \\\\Flagged))' -> {'\\\\Seen', '\\\\Flagged'}
    """
    if isinstance(response, str):
        response = response.encode("utf-8", errors="ignore")
    match = _FLAGS_PATTERN.search(response)
    if not match:
        return set()
    return {flag.decode("utf-8", errors="ignore") for flag in match.group(1).split()}


def decode_header_value(header: Optional[str]) -> Optional[str]:
    """Decode an RFC 2047 encoded header. None stays None."""
    if header is None:
        return None
    header = str(header)
    try:
        decoded_str = ""
        for part, encoding in decode_header(header):
            if isinstance(part, bytes):
                try:
                    decoded_str += part.decode(encoding or "utf-8", errors="replace")
                except LookupError:
                    decoded_str += part.decode("utf-8", errors="replace")
            else:
                decoded_str += part
        return decoded_str
    except Exception:
        return header


def _parse_addresses(msg: Message, name: str) -> Optional[List[EmailAddress]]:
    values = msg.get_all(name)
    if not values:
        return None
    addresses = []
    for display_name, address in getaddresses([str(v) for v in values]):
        if not address:
            continue
        addresses.append(EmailAddress(address=address, name=decode_header_value(display_name) or None))
    return addresses or None


def _parse_date(date_str: Optional[str]) -> Optional[datetime]:
    if not date_str:
        return None
    try:
        return parsedate_to_datetime(str(date_str))
    except (TypeError, ValueError, IndexError):
        return None


def _decode_payload(part: Message) -> Optional[str]:
    payload = part.get_payload(decode=True)
    if payload is None:
        return None
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def _is_attachment(part: Message) -> bool:
    disposition = (part.get_content_disposition() or "").lower()
    if disposition == "attachment":
        return True
    # Inline parts with a filename (images, documents) are attachments too,
    # inline text parts without one are body.
    return bool(part.get_filename()) and part.get_content_maintype() != "multipart"


def _attachment_info(part: Message) -> AttachmentInfo:
    payload = part.get_payload(decode=True) or b""
    content_id = part.get("Content-ID")
    return AttachmentInfo(
        filename=decode_header_value(part.get_filename()) or "unnamed",
        content_type=part.get_content_type() or "application/octet-stream",
        size=len(payload),
        content_id=str(content_id).strip() if content_id else None,
        checksum=hashlib.md5(payload).hexdigest(),
    )


def _collect_headers(msg: Message) -> Dict[str, List[str]]:
    headers: Dict[str, List[str]] = {}
    for key, value in msg.items():
        headers.setdefault(key.lower(), []).append(decode_header_value(value) or "")
    return headers


def _thread_id(msg: Message) -> Optional[str]:
    in_reply_to = msg.get("In-Reply-To")
    if in_reply_to and str(in_reply_to).strip():
        return str(in_reply_to).strip().split()[0]
    references = msg.get("References")
    if references and str(references).split():
        return str(references).split()[0]
    return None


def parse_message(raw: bytes, uid: int, flags: Iterable[str] = ()) -> EmailMessage:
    """
    Parse raw message bytes into an EmailMessage.

    Args:
        raw: The full RFC 822 message as fetched from the server.
        uid: The message UID in its mailbox.
        flags: Flags reported alongside the message.

    Returns:
        The parsed EmailMessage. Absent headers are None, never empty strings.
    """
    msg = email.message_from_bytes(raw)

    plain_text = None
    html_text = None
    attachments: List[AttachmentInfo] = []

    for part in msg.walk():
        if part.is_multipart():
            continue
        if _is_attachment(part):
            attachments.append(_attachment_info(part))
            continue
        content_type = part.get_content_type()
        if content_type == "text/plain" and plain_text is None:
            plain_text = _decode_payload(part)
        elif content_type == "text/html" and html_text is None:
            html_text = _decode_payload(part)

    senders = _parse_addresses(msg, "From")
    message_id = msg.get("Message-ID")

    return EmailMessage(
        uid=uid,
        message_id=str(message_id).strip() if message_id else None,
        subject=decode_header_value(msg.get("Subject")),
        from_address=senders[0] if senders else None,
        to=_parse_addresses(msg, "To"),
        cc=_parse_addresses(msg, "Cc"),
        bcc=_parse_addresses(msg, "Bcc"),
        reply_to=_parse_addresses(msg, "Reply-To"),
        date=_parse_date(msg.get("Date")),
        flags=set(flags),
        body=EmailBody(text=plain_text or None, html=html_text or None),
        attachments=attachments or None,
        headers=_collect_headers(msg),
        thread_id=_thread_id(msg),
    )
