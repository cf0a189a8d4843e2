"""
Core domain models for the Gmail MCP server.

This module contains pure domain models (dataclasses) without any protocol
dependencies. Read-side models are produced by the IMAP client; request
models are consumed by the SMTP client.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Union

SEEN_FLAG = "\\Seen"

Recipients = Union[str, List[str]]


@dataclass(slots=True)
class EmailAddress:
    """A single mailbox address with an optional display name."""
    address: str
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"address": self.address}
        if self.name:
            data["name"] = self.name
        return data


@dataclass(slots=True)
class EmailBody:
    """Plain-text and HTML variants of a message body."""
    text: Optional[str] = None
    html: Optional[str] = None


@dataclass(slots=True)
class AttachmentInfo:
    """Metadata of an attachment. Content bytes are never kept."""
    filename: str
    content_type: str
    size: int
    content_id: Optional[str] = None
    checksum: Optional[str] = None  # MD5 hex digest of the decoded part


@dataclass(slots=True)
class EmailMessage:
    """Represents a message read from a mailbox."""
    uid: int  # IMAP UID, unique within one mailbox only
    message_id: Optional[str] = None
    subject: Optional[str] = None
    from_address: Optional[EmailAddress] = None
    to: Optional[List[EmailAddress]] = None
    cc: Optional[List[EmailAddress]] = None
    bcc: Optional[List[EmailAddress]] = None
    reply_to: Optional[List[EmailAddress]] = None
    date: Optional[datetime] = None
    flags: Set[str] = field(default_factory=set)  # e.g., {'\\Seen', '\\Flagged'}
    body: EmailBody = field(default_factory=EmailBody)
    attachments: Optional[List[AttachmentInfo]] = None
    headers: Dict[str, List[str]] = field(default_factory=dict)
    thread_id: Optional[str] = None

    @property
    def unread(self) -> bool:
        """True unless the \\Seen flag is present."""
        return SEEN_FLAG not in self.flags

    @property
    def references(self) -> Optional[List[str]]:
        """Message-IDs listed in the References header, oldest first."""
        values = self.headers.get("references")
        if not values:
            return None
        ids = " ".join(values).split()
        return ids or None

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-ready representation, omitting absent fields."""
        def addresses(items: Optional[List[EmailAddress]]) -> Optional[List[Dict[str, Any]]]:
            return [a.to_dict() for a in items] if items is not None else None

        data: Dict[str, Any] = {
            "uid": self.uid,
            "messageId": self.message_id,
            "subject": self.subject,
            "from": self.from_address.to_dict() if self.from_address else None,
            "to": addresses(self.to),
            "cc": addresses(self.cc),
            "bcc": addresses(self.bcc),
            "replyTo": addresses(self.reply_to),
            "date": self.date.isoformat() if self.date else None,
            "flags": sorted(self.flags),
            "unread": self.unread,
            "body": {k: v for k, v in (("text", self.body.text), ("html", self.body.html)) if v is not None},
            "attachments": [
                {
                    "filename": a.filename,
                    "contentType": a.content_type,
                    "size": a.size,
                    "contentId": a.content_id,
                    "checksum": a.checksum,
                }
                for a in self.attachments
            ] if self.attachments else None,
            "headers": self.headers,
            "threadId": self.thread_id,
        }
        return {k: v for k, v in data.items() if v is not None}


@dataclass(slots=True)
class OutgoingAttachment:
    """An attachment to send: inline content or a path on disk."""
    filename: str
    path: Optional[str] = None
    content: Optional[Union[str, bytes]] = None
    content_type: Optional[str] = None


@dataclass(slots=True)
class SendRequest:
    """A message to submit over SMTP."""
    to: Optional[Recipients]
    subject: Optional[str]
    body: Optional[str] = None
    html_body: Optional[str] = None
    cc: Optional[Recipients] = None
    bcc: Optional[Recipients] = None
    reply_to: Optional[Recipients] = None
    attachments: Optional[List[OutgoingAttachment]] = None
    in_reply_to: Optional[str] = None
    references: Optional[Union[str, List[str]]] = None


@dataclass(slots=True)
class ReplyRequest:
    """A reply to an existing message, identified by UID."""
    original_uid: int
    subject: Optional[str] = None
    body: Optional[str] = None
    html_body: Optional[str] = None
    cc: Optional[Recipients] = None
    bcc: Optional[Recipients] = None
    mailbox: str = "INBOX"


@dataclass(slots=True)
class OriginalContext:
    """Threading metadata of the message being answered."""
    from_address: Optional[EmailAddress] = None
    subject: Optional[str] = None
    message_id: Optional[str] = None
    references: Optional[List[str]] = None

    @classmethod
    def from_message(cls, message: EmailMessage) -> "OriginalContext":
        return cls(
            from_address=message.from_address,
            subject=message.subject,
            message_id=message.message_id,
            references=message.references,
        )
