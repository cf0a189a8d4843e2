"""
MCP tool surface for the Gmail IMAP/SMTP clients.

Each tool has a plain async handler (``handle_*``) that validates the raw
arguments with a pydantic model, calls the clients and renders the result
as text. ``create_server`` registers thin FastMCP wrappers around them.
"""
import logging
from typing import Any, Awaitable, Dict, List, Optional, Type, TypeVar, Union

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from gmail_mcp.config import DEFAULT_LIST_LIMIT, DEFAULT_MAILBOX, MAX_LIST_LIMIT
from gmail_mcp.models import OriginalContext, OutgoingAttachment, ReplyRequest, SendRequest
from gmail_mcp.network.imap_client import ImapClient
from gmail_mcp.network.smtp_client import SmtpClient, build_reply_subject
from gmail_mcp.utils.errors import ValidationError, human_friendly_message
from gmail_mcp.utils.formatters import format_email_content, format_email_list, format_json_response


logger = logging.getLogger(__name__)

SERVER_NAME = "gmail-mcp-server"

Recipients = Union[str, List[str]]
CriteriaItem = Union[str, List[str]]

M = TypeVar("M", bound=BaseModel)


class _ToolArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ListEmailsArgs(_ToolArgs):
    limit: int = Field(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT)
    offset: int = Field(0, ge=0)
    mailbox: str = DEFAULT_MAILBOX
    search_criteria: Optional[List[CriteriaItem]] = Field(None, alias="searchCriteria")


class ReadEmailArgs(_ToolArgs):
    uid: int = Field(..., ge=1)
    mailbox: str = DEFAULT_MAILBOX


class SearchEmailsArgs(_ToolArgs):
    criteria: List[CriteriaItem] = Field(..., min_length=1)
    mailbox: str = DEFAULT_MAILBOX
    limit: int = Field(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT)


class AttachmentArgs(_ToolArgs):
    filename: str
    path: Optional[str] = None
    content: Optional[str] = None
    content_type: Optional[str] = Field(None, alias="contentType")


class SendEmailArgs(_ToolArgs):
    to: Recipients
    subject: str
    body: Optional[str] = None
    html_body: Optional[str] = Field(None, alias="htmlBody")
    cc: Optional[Recipients] = None
    bcc: Optional[Recipients] = None
    reply_to: Optional[Recipients] = Field(None, alias="replyTo")
    attachments: Optional[List[AttachmentArgs]] = None


class ReplyEmailArgs(_ToolArgs):
    original_uid: int = Field(..., alias="originalUid", ge=1)
    subject: Optional[str] = None
    body: Optional[str] = None
    html_body: Optional[str] = Field(None, alias="htmlBody")
    cc: Optional[Recipients] = None
    bcc: Optional[Recipients] = None
    mailbox: str = DEFAULT_MAILBOX


class MarkReadArgs(_ToolArgs):
    uids: List[int] = Field(..., min_length=1)
    mailbox: str = DEFAULT_MAILBOX


def _parse_args(model: Type[M], args: Optional[Dict[str, Any]]) -> M:
    """Validate raw tool arguments, ignoring keys explicitly set to None."""
    cleaned = {k: v for k, v in (args or {}).items() if v is not None}
    try:
        return model.model_validate(cleaned)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(problems)


def _with_json(text: str, data: Any) -> str:
    return f"{text}\n\n--- JSON Data ---\n{format_json_response(data)}"


async def handle_list_emails(imap_client: ImapClient, args: Optional[Dict[str, Any]]) -> str:
    parsed = _parse_args(ListEmailsArgs, args)
    emails = await imap_client.list_emails(
        parsed.search_criteria or ["ALL"],
        mailbox=parsed.mailbox,
        limit=parsed.limit,
        offset=parsed.offset,
    )
    return _with_json(format_email_list(emails), {"emails": [e.to_dict() for e in emails], "count": len(emails)})


async def handle_read_email(imap_client: ImapClient, args: Optional[Dict[str, Any]]) -> str:
    parsed = _parse_args(ReadEmailArgs, args)
    email = await imap_client.get_email(parsed.uid, mailbox=parsed.mailbox)
    return _with_json(format_email_content(email), email.to_dict())


async def handle_search_emails(imap_client: ImapClient, args: Optional[Dict[str, Any]]) -> str:
    parsed = _parse_args(SearchEmailsArgs, args)
    emails = await imap_client.search_emails(parsed.criteria, mailbox=parsed.mailbox, limit=parsed.limit)
    return _with_json(format_email_list(emails), {"emails": [e.to_dict() for e in emails], "count": len(emails)})


async def handle_send_email(smtp_client: SmtpClient, args: Optional[Dict[str, Any]]) -> str:
    parsed = _parse_args(SendEmailArgs, args)
    message_id = await smtp_client.send_email(SendRequest(
        to=parsed.to,
        subject=parsed.subject,
        body=parsed.body,
        html_body=parsed.html_body,
        cc=parsed.cc,
        bcc=parsed.bcc,
        reply_to=parsed.reply_to,
        attachments=[
            OutgoingAttachment(
                filename=a.filename,
                path=a.path,
                content=a.content,
                content_type=a.content_type,
            )
            for a in parsed.attachments
        ] if parsed.attachments else None,
    ))
    recipients = parsed.to if isinstance(parsed.to, str) else ", ".join(parsed.to)
    return f"Email sent successfully!\n\nMessage ID: {message_id}\nTo: {recipients}\nSubject: {parsed.subject}"


async def handle_reply_email(
    imap_client: ImapClient,
    smtp_client: SmtpClient,
    args: Optional[Dict[str, Any]],
) -> str:
    parsed = _parse_args(ReplyEmailArgs, args)
    if not parsed.body and not parsed.html_body:
        raise ValidationError("Either body or htmlBody must be provided")

    original = await imap_client.get_email(parsed.original_uid, mailbox=parsed.mailbox)
    context = OriginalContext.from_message(original)

    message_id = await smtp_client.reply_email(
        ReplyRequest(
            original_uid=parsed.original_uid,
            subject=parsed.subject,
            body=parsed.body,
            html_body=parsed.html_body,
            cc=parsed.cc,
            bcc=parsed.bcc,
            mailbox=parsed.mailbox,
        ),
        context,
    )
    subject = build_reply_subject(parsed.subject, context.subject)
    return (
        f"Reply sent successfully!\n\nMessage ID: {message_id}\n"
        f"Original UID: {parsed.original_uid}\nSubject: {subject}"
    )


async def handle_mark_read(imap_client: ImapClient, args: Optional[Dict[str, Any]]) -> str:
    parsed = _parse_args(MarkReadArgs, args)
    await imap_client.mark_as_read(parsed.uids, mailbox=parsed.mailbox)
    return f"Marked {len(parsed.uids)} email(s) as read.\n\nUIDs: {', '.join(str(u) for u in parsed.uids)}"


async def _dispatch(tool_name: str, call: Awaitable[str]) -> str:
    """Await a handler, turning any failure into a ToolError for the client."""
    try:
        return await call
    except Exception as e:
        logger.error(f"Tool {tool_name} failed: {e}")
        raise ToolError(human_friendly_message(e)) from e


def create_server(imap_client: ImapClient, smtp_client: SmtpClient) -> FastMCP:
    """Build the FastMCP server exposing the six mail tools."""
    server = FastMCP(
        name=SERVER_NAME,
        instructions=(
            "Gmail over IMAP/SMTP. List, read, search and mark messages as read in a mailbox "
            "(default INBOX), send new messages and reply to existing ones. Search criteria are "
            'IMAP keywords combined with AND, e.g. ["UNSEEN", "FROM", "a@example.com"] or '
            '["SINCE", "01-Jan-2024"].'
        ),
    )

    @server.tool(
        name="gmail_list_emails",
        description=(
            "List recent emails using IMAP, newest first. Supports filtering by unread status, "
            "sender, date range, and more using IMAP search criteria."
        ),
    )
    async def gmail_list_emails(
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        mailbox: Optional[str] = None,
        searchCriteria: Optional[List[CriteriaItem]] = None,
    ) -> str:
        return await _dispatch("gmail_list_emails", handle_list_emails(imap_client, {
            "limit": limit, "offset": offset, "mailbox": mailbox, "searchCriteria": searchCriteria,
        }))

    @server.tool(
        name="gmail_read_email",
        description=(
            "Read full email content by IMAP UID. Returns subject, sender, recipients, "
            "body (text and HTML), attachments, and metadata."
        ),
    )
    async def gmail_read_email(uid: int, mailbox: Optional[str] = None) -> str:
        return await _dispatch("gmail_read_email", handle_read_email(imap_client, {
            "uid": uid, "mailbox": mailbox,
        }))

    @server.tool(
        name="gmail_search_emails",
        description=(
            "Search emails using IMAP search criteria. Supports UNSEEN, FROM, TO, SUBJECT, "
            "SINCE, BEFORE, and more."
        ),
    )
    async def gmail_search_emails(
        criteria: List[CriteriaItem],
        mailbox: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> str:
        return await _dispatch("gmail_search_emails", handle_search_emails(imap_client, {
            "criteria": criteria, "mailbox": mailbox, "limit": limit,
        }))

    @server.tool(
        name="gmail_send_email",
        description="Send a new email via SMTP. Supports CC, BCC, HTML body, and attachments.",
    )
    async def gmail_send_email(
        to: Recipients,
        subject: str,
        body: Optional[str] = None,
        htmlBody: Optional[str] = None,
        cc: Optional[Recipients] = None,
        bcc: Optional[Recipients] = None,
        replyTo: Optional[Recipients] = None,
        attachments: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        return await _dispatch("gmail_send_email", handle_send_email(smtp_client, {
            "to": to, "subject": subject, "body": body, "htmlBody": htmlBody,
            "cc": cc, "bcc": bcc, "replyTo": replyTo, "attachments": attachments,
        }))

    @server.tool(
        name="gmail_reply_email",
        description=(
            "Reply to an email by IMAP UID. Keeps the conversation thread (In-Reply-To and "
            "References) and defaults the subject to 'Re: <original subject>'."
        ),
    )
    async def gmail_reply_email(
        originalUid: int,
        subject: Optional[str] = None,
        body: Optional[str] = None,
        htmlBody: Optional[str] = None,
        cc: Optional[Recipients] = None,
        bcc: Optional[Recipients] = None,
        mailbox: Optional[str] = None,
    ) -> str:
        return await _dispatch("gmail_reply_email", handle_reply_email(imap_client, smtp_client, {
            "originalUid": originalUid, "subject": subject, "body": body, "htmlBody": htmlBody,
            "cc": cc, "bcc": bcc, "mailbox": mailbox,
        }))

    @server.tool(
        name="gmail_mark_read",
        description="Mark one or more emails as read by setting the \\Seen flag. Accepts a list of IMAP UIDs.",
    )
    async def gmail_mark_read(uids: List[int], mailbox: Optional[str] = None) -> str:
        return await _dispatch("gmail_mark_read", handle_mark_read(imap_client, {
            "uids": uids, "mailbox": mailbox,
        }))

    return server
