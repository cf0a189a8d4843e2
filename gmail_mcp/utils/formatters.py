"""
Human-readable formatting of messages for tool responses and logs.
"""
import json
import re
from datetime import date, datetime
from typing import Any, List, Optional, Sequence

from gmail_mcp.models import EmailAddress, EmailMessage

_TAG_PATTERN = re.compile(r"<[^>]*>")

PREVIEW_LENGTH = 100
HTML_PREVIEW_LENGTH = 500


def truncate_text(text: str, max_length: int = 50) -> str:
    """Truncate text to max length with ellipsis"""
    if len(text) <= max_length:
        return text
    return text[:max_length - 3] + "..."


def format_file_size(size_bytes: float) -> str:
    """Format file size in human-readable format"""
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size_bytes < 1024.0:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} TB"


def format_address(addr: Optional[EmailAddress]) -> str:
    if not addr:
        return "N/A"
    return f"{addr.name} <{addr.address}>" if addr.name else addr.address


def format_addresses(addrs: Optional[Sequence[EmailAddress]]) -> str:
    if not addrs:
        return "N/A"
    return ", ".join(format_address(a) for a in addrs)


def format_email_summary(email: EmailMessage) -> str:
    """One message as a short multi-line block."""
    parts: List[str] = []

    if email.subject:
        parts.append(f"Subject: {email.subject}")
    if email.from_address:
        parts.append(f"From: {format_address(email.from_address)}")
    if email.to:
        parts.append(f"To: {format_addresses(email.to)}")
    if email.date:
        parts.append(f"Date: {email.date.isoformat()}")
    if email.unread:
        parts.append("[UNREAD]")
    parts.append(f"UID: {email.uid}")

    if email.body.text:
        preview = email.body.text[:PREVIEW_LENGTH].replace("\n", " ")
        parts.append(f"\nPreview: {preview}...")

    return "\n".join(parts)


def format_email_list(emails: Sequence[EmailMessage]) -> str:
    """Numbered summaries, or 'No emails found.'"""
    if not emails:
        return "No emails found."

    summary = "\n---\n".join(
        f"\n{index}. {format_email_summary(email)}" for index, email in enumerate(emails, start=1)
    )
    return f"Found {len(emails)} email(s):\n{summary}"


def format_email_content(email: EmailMessage) -> str:
    """Full message view: headers, text body, stripped HTML, attachments."""
    parts: List[str] = ["=" * 60]

    if email.subject:
        parts.append(f"Subject: {email.subject}")
    if email.from_address:
        parts.append(f"From: {format_address(email.from_address)}")
    if email.to:
        parts.append(f"To: {format_addresses(email.to)}")
    if email.cc:
        parts.append(f"CC: {format_addresses(email.cc)}")
    if email.bcc:
        parts.append(f"BCC: {format_addresses(email.bcc)}")
    if email.reply_to:
        parts.append(f"Reply-To: {format_addresses(email.reply_to)}")
    if email.date:
        parts.append(f"Date: {email.date.isoformat()}")
    parts.append(f"UID: {email.uid}")
    if email.message_id:
        parts.append(f"Message-ID: {email.message_id}")
    parts.append("=" * 60)

    if email.body.text:
        parts.append("\n--- Plain Text Body ---\n")
        parts.append(email.body.text)

    if email.body.html:
        parts.append("\n--- HTML Body (stripped) ---\n")
        parts.append(truncate_text(_TAG_PATTERN.sub("", email.body.html), HTML_PREVIEW_LENGTH))

    if email.attachments:
        parts.append("\n--- Attachments ---\n")
        for att in email.attachments:
            parts.append(f"- {att.filename} ({att.content_type}, {format_file_size(att.size)})")

    return "\n".join(parts)


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, EmailMessage):
        return value.to_dict()
    return str(value)


def format_json_response(data: Any) -> str:
    """Indented JSON; messages, datetimes and sets are converted."""
    return json.dumps(data, indent=2, ensure_ascii=False, default=_json_default)
