"""Shared test fixtures for the Gmail MCP server tests.

The IMAP and SMTP clients accept a connection factory, so every test runs
against in-memory fakes that speak the imaplib/smtplib call conventions:

    def test_something(imap_client, fake_imap, raw_message):
        fake_imap.add(1, raw_message(subject="Hello"))
        ...
"""

import imaplib
import smtplib
from email.message import EmailMessage as MimeMessage
from email.utils import format_datetime
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from gmail_mcp.network.imap_client import ImapClient, ImapConfig
from gmail_mcp.network.smtp_client import SmtpClient, SmtpConfig


USER = "me@gmail.com"
PASSWORD = "app-password"


# ─────────────────────────────────────────────────────────────────────────────
# Raw messages
# ─────────────────────────────────────────────────────────────────────────────


def build_raw_message(
    subject: Optional[str] = "Hello",
    from_: str = "Alice <alice@example.com>",
    to: str = "me@gmail.com",
    body: Optional[str] = "Hi there",
    html: Optional[str] = None,
    message_id: Optional[str] = "<msg-1@example.com>",
    in_reply_to: Optional[str] = None,
    references: Optional[str] = None,
    cc: Optional[str] = None,
    date: Optional[datetime] = datetime(2024, 3, 5, 10, 30, tzinfo=timezone.utc),
    attachment: Optional[Tuple[str, bytes, str]] = None,
) -> bytes:
    """Build RFC 822 bytes the way a server would return them."""
    msg = MimeMessage()
    if subject is not None:
        msg["Subject"] = subject
    msg["From"] = from_
    msg["To"] = to
    if cc:
        msg["Cc"] = cc
    if message_id:
        msg["Message-ID"] = message_id
    if in_reply_to:
        msg["In-Reply-To"] = in_reply_to
    if references:
        msg["References"] = references
    if date:
        msg["Date"] = format_datetime(date)

    if body is not None:
        msg.set_content(body)
        if html:
            msg.add_alternative(html, subtype="html")
    elif html:
        msg.set_content(html, subtype="html")

    if attachment:
        filename, data, mime_type = attachment
        maintype, _, subtype = mime_type.partition("/")
        msg.add_attachment(data, maintype=maintype, subtype=subtype, filename=filename)

    return msg.as_bytes()


@pytest.fixture
def raw_message() -> Callable[..., bytes]:
    return build_raw_message


# ─────────────────────────────────────────────────────────────────────────────
# IMAP fake
# ─────────────────────────────────────────────────────────────────────────────


class FakeImapConnection:
    """In-memory stand-in for imaplib.IMAP4_SSL."""

    def __init__(self):
        self.mailboxes: Dict[str, Dict[int, Tuple[bytes, List[str]]]] = {"INBOX": {}}
        self.selected: Optional[str] = None
        self.commands: List[Tuple] = []
        self.logged_in = False
        self.login_error: Optional[str] = None
        self.search_result: Optional[List[int]] = None
        self.fetch_errors: Dict[int, BaseException] = {}
        self.store_response: Tuple[str, List[bytes]] = ("OK", [b"STORE completed"])
        # untagged FETCH lines left over from earlier commands
        self.unsolicited_fetch: List[bytes] = []
        self.dead = False
        self.closed = False

    # helpers for tests

    def add(self, uid: int, raw: bytes, flags: Optional[List[str]] = None, mailbox: str = "INBOX") -> None:
        self.mailboxes.setdefault(mailbox, {})[uid] = (raw, list(flags or []))

    def commands_named(self, name: str) -> List[Tuple]:
        return [c for c in self.commands if c[0] == name]

    # imaplib surface

    def login(self, user, password):
        self.commands.append(("LOGIN", user))
        if self.login_error:
            raise imaplib.IMAP4.error(self.login_error)
        self.logged_in = True
        return "OK", [b"Logged in"]

    def noop(self):
        if self.dead:
            raise imaplib.IMAP4.abort("socket error: EOF")
        return "OK", [b"NOOP completed"]

    def select(self, mailbox):
        self.commands.append(("SELECT", mailbox))
        name = mailbox.strip('"')
        if name not in self.mailboxes:
            return "NO", [b"[NONEXISTENT] Unknown Mailbox"]
        self.selected = name
        return "OK", [str(len(self.mailboxes[name])).encode()]

    def uid(self, command, *args):
        self.commands.append((command.upper(),) + args)
        if self.dead:
            raise imaplib.IMAP4.abort("socket error: EOF")
        messages = self.mailboxes[self.selected]
        command = command.upper()

        if command == "SEARCH":
            uids = self.search_result if self.search_result is not None else sorted(messages)
            return "OK", [" ".join(str(u) for u in uids).encode()]

        if command == "FETCH":
            uid = int(args[0])
            if uid in self.fetch_errors:
                raise self.fetch_errors[uid]
            if uid not in messages:
                return "OK", [None]
            raw, flags = messages[uid]
            header = b"1 (UID %d FLAGS (%s) BODY[] {%d}" % (uid, " ".join(flags).encode(), len(raw))
            return "OK", list(self.unsolicited_fetch) + [(header, raw), b")"]

        if command == "STORE":
            result = self.store_response
            if result[0] == "OK":
                for uid in args[0].split(","):
                    entry = messages.get(int(uid))
                    if entry and "\\Seen" not in entry[1]:
                        entry[1].append("\\Seen")
            return result

        raise AssertionError(f"unexpected UID command {command}")

    def logout(self):
        self.commands.append(("LOGOUT",))
        self.closed = True
        return "BYE", [b"Logging out"]

    def shutdown(self):
        self.closed = True


class ConnectionFactory:
    """Callable handing out prepared connections and recording each call."""

    def __init__(self, *connections):
        self.connections = list(connections)
        self.calls: List[Tuple] = []

    def __call__(self, host, port, timeout=None):
        self.calls.append((host, port, timeout))
        if len(self.connections) > 1:
            return self.connections.pop(0)
        return self.connections[0]


@pytest.fixture
def fake_imap() -> FakeImapConnection:
    return FakeImapConnection()


@pytest.fixture
def imap_factory(fake_imap) -> ConnectionFactory:
    return ConnectionFactory(fake_imap)


@pytest.fixture
def imap_client(imap_factory) -> ImapClient:
    return ImapClient(ImapConfig(user=USER, password=PASSWORD), connection_factory=imap_factory, retry_delay=0)


# ─────────────────────────────────────────────────────────────────────────────
# SMTP fake
# ─────────────────────────────────────────────────────────────────────────────


class FakeSmtpConnection:
    """In-memory stand-in for a connected, not yet authenticated smtplib.SMTP."""

    def __init__(self):
        self.sent: List[Tuple[MimeMessage, str, List[str]]] = []
        self.logged_in = False
        self.login_error: Optional[BaseException] = None
        self.send_errors: List[BaseException] = []
        self.refused: Dict[str, Tuple[int, bytes]] = {}
        self.noop_reply: Tuple[int, bytes] = (250, b"2.0.0 OK")
        self.quit_called = False
        self.closed = False

    def login(self, user, password):
        if self.login_error:
            raise self.login_error
        self.logged_in = True
        return 235, b"2.7.0 Accepted"

    def noop(self):
        return self.noop_reply

    def send_message(self, msg, from_addr=None, to_addrs=None):
        if self.send_errors:
            raise self.send_errors.pop(0)
        self.sent.append((msg, from_addr, list(to_addrs)))
        return dict(self.refused)

    def quit(self):
        self.quit_called = True
        return 221, b"Bye"

    def close(self):
        self.closed = True


@pytest.fixture
def fake_smtp() -> FakeSmtpConnection:
    return FakeSmtpConnection()


@pytest.fixture
def smtp_factory(fake_smtp) -> ConnectionFactory:
    return ConnectionFactory(fake_smtp)


@pytest.fixture
def smtp_client(smtp_factory) -> SmtpClient:
    return SmtpClient(SmtpConfig(user=USER, password=PASSWORD), connection_factory=smtp_factory, retry_delay=0)


@pytest.fixture
def smtp_auth_error() -> smtplib.SMTPAuthenticationError:
    return smtplib.SMTPAuthenticationError(535, b"5.7.8 Username and Password not accepted")
