"""Tests for gmail_mcp/server.py"""

import json

import pytest
from mcp.server.fastmcp.exceptions import ToolError

from gmail_mcp.server import (
    create_server,
    handle_list_emails,
    handle_mark_read,
    handle_read_email,
    handle_reply_email,
    handle_search_emails,
    handle_send_email,
)
from gmail_mcp.utils.errors import NotFoundError, ValidationError


TOOL_NAMES = {
    "gmail_list_emails",
    "gmail_read_email",
    "gmail_search_emails",
    "gmail_send_email",
    "gmail_reply_email",
    "gmail_mark_read",
}


def json_part(text):
    _, _, payload = text.partition("\n\n--- JSON Data ---\n")
    return json.loads(payload)


class TestListAndSearch:
    @pytest.mark.asyncio
    async def test_list_renders_text_and_json(self, imap_client, fake_imap, raw_message):
        for uid in (1, 2, 3):
            fake_imap.add(uid, raw_message(subject=f"Message {uid}"))

        text = await handle_list_emails(imap_client, {"limit": 2})

        assert text.startswith("Found 2 email(s):")
        data = json_part(text)
        assert data["count"] == 2
        assert [e["uid"] for e in data["emails"]] == [3, 2]

    @pytest.mark.asyncio
    async def test_list_passes_criteria(self, imap_client, fake_imap):
        text = await handle_list_emails(imap_client, {"searchCriteria": ["UNSEEN"], "offset": None})

        assert text.startswith("No emails found.")
        assert fake_imap.commands_named("SEARCH") == [("SEARCH", None, "UNSEEN")]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("args", [{"limit": 0}, {"limit": 501}, {"offset": -1}, {"limit": "many"}])
    async def test_list_rejects_bad_paging(self, imap_client, fake_imap, args):
        with pytest.raises(ValidationError):
            await handle_list_emails(imap_client, args)
        assert fake_imap.commands == []

    @pytest.mark.asyncio
    async def test_search_requires_criteria(self, imap_client):
        with pytest.raises(ValidationError, match="criteria"):
            await handle_search_emails(imap_client, {"criteria": []})

    @pytest.mark.asyncio
    async def test_search_with_nested_pairs(self, imap_client, fake_imap, raw_message):
        fake_imap.add(9, raw_message())

        text = await handle_search_emails(imap_client, {"criteria": [["FROM", "alice@example.com"]]})

        assert json_part(text)["count"] == 1
        assert fake_imap.commands_named("SEARCH") == [("SEARCH", None, "FROM", '"alice@example.com"')]


class TestReadEmail:
    @pytest.mark.asyncio
    async def test_read(self, imap_client, fake_imap, raw_message):
        fake_imap.add(5, raw_message(subject="Invoice", html="<p>Total</p>"))

        text = await handle_read_email(imap_client, {"uid": 5})

        assert "Subject: Invoice" in text
        assert json_part(text)["subject"] == "Invoice"

    @pytest.mark.asyncio
    async def test_missing(self, imap_client):
        with pytest.raises(NotFoundError):
            await handle_read_email(imap_client, {"uid": 404})

    @pytest.mark.asyncio
    async def test_uid_required(self, imap_client):
        with pytest.raises(ValidationError, match="uid"):
            await handle_read_email(imap_client, {})


class TestSendAndReply:
    @pytest.mark.asyncio
    async def test_send(self, smtp_client, fake_smtp):
        text = await handle_send_email(smtp_client, {
            "to": ["a@example.com", "b@example.com"],
            "subject": "Hi",
            "htmlBody": "<p>Hello</p>",
            "replyTo": "desk@example.com",
            "attachments": [{"filename": "notes.txt", "content": "hello", "contentType": "text/plain"}],
        })

        msg, _, recipients = fake_smtp.sent[0]
        assert recipients == ["a@example.com", "b@example.com"]
        assert msg["Reply-To"] == "desk@example.com"
        assert text.startswith("Email sent successfully!")
        assert f"Message ID: {msg['Message-ID']}" in text
        assert "To: a@example.com, b@example.com" in text

    @pytest.mark.asyncio
    async def test_send_requires_body(self, smtp_client, smtp_factory):
        with pytest.raises(ValidationError, match="to, subject, and body"):
            await handle_send_email(smtp_client, {"to": "a@example.com", "subject": "Hi"})
        assert smtp_factory.calls == []

    @pytest.mark.asyncio
    async def test_reply(self, imap_client, smtp_client, fake_imap, fake_smtp, raw_message):
        fake_imap.add(5, raw_message(subject="Plans", message_id="<plans@example.com>"))

        text = await handle_reply_email(imap_client, smtp_client, {"originalUid": 5, "body": "Sounds good"})

        msg, _, recipients = fake_smtp.sent[0]
        assert recipients == ["alice@example.com"]
        assert msg["Subject"] == "Re: Plans"
        assert msg["In-Reply-To"] == "<plans@example.com>"
        assert "Original UID: 5" in text
        assert "Subject: Re: Plans" in text

    @pytest.mark.asyncio
    async def test_reply_body_checked_before_fetch(self, imap_client, smtp_client, fake_imap):
        with pytest.raises(ValidationError, match="body or htmlBody"):
            await handle_reply_email(imap_client, smtp_client, {"originalUid": 5})
        assert fake_imap.commands == []

    @pytest.mark.asyncio
    async def test_reply_to_missing_message(self, imap_client, smtp_client, fake_smtp):
        with pytest.raises(NotFoundError):
            await handle_reply_email(imap_client, smtp_client, {"originalUid": 77, "body": "x"})
        assert fake_smtp.sent == []


class TestMarkRead:
    @pytest.mark.asyncio
    async def test_mark_read(self, imap_client, fake_imap):
        text = await handle_mark_read(imap_client, {"uids": [4, 5]})

        assert text == "Marked 2 email(s) as read.\n\nUIDs: 4, 5"
        assert fake_imap.commands_named("STORE") == [("STORE", "4,5", "+FLAGS", "(\\Seen)")]

    @pytest.mark.asyncio
    async def test_empty_uids(self, imap_client):
        with pytest.raises(ValidationError):
            await handle_mark_read(imap_client, {"uids": []})


class TestCreateServer:
    @pytest.mark.asyncio
    async def test_registers_tools(self, imap_client, smtp_client):
        server = create_server(imap_client, smtp_client)

        tools = await server.list_tools()

        assert {tool.name for tool in tools} == TOOL_NAMES
        send = next(tool for tool in tools if tool.name == "gmail_send_email")
        assert {"to", "subject", "htmlBody", "replyTo"} <= set(send.inputSchema["properties"])
        assert set(send.inputSchema["required"]) == {"to", "subject"}

    @pytest.mark.asyncio
    async def test_errors_carry_code_and_status(self, imap_client, smtp_client):
        server = create_server(imap_client, smtp_client)

        with pytest.raises(ToolError) as excinfo:
            await server.call_tool("gmail_mark_read", {"uids": []})

        assert "VALIDATION_ERROR" in str(excinfo.value)
        assert "Status: 400" in str(excinfo.value)
