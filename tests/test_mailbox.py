"""Tests for the IMAP mailbox poller."""

import threading
from email.message import EmailMessage
from unittest.mock import MagicMock

import pytest

from receipt_recon.config import MailboxConfig
from receipt_recon.ingestion import MailboxPoller, PollResult, build_gmail_link
from receipt_recon.ingestion.mailbox import image_attachments, message_text, sender_display
from receipt_recon.state_store import ReceiptSource

SCOPE = "household"
RECEIPT_IMAGE = b"\xff\xd8\xff\xe0" + b"x" * 500


def make_message(
    sender="Chipotle <receipts@chipotle.com>",
    text=None,
    html=None,
    images=(),
    message_id="<abc123@chipotle.com>",
):
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = "me@example.com"
    msg["Subject"] = "Your receipt"
    if message_id:
        msg["Message-ID"] = message_id
    if text is not None:
        msg.set_content(text)
    if html is not None:
        if text is not None:
            msg.add_alternative(html, subtype="html")
        else:
            msg.set_content(html, subtype="html")
    for filename, payload in images:
        msg.add_attachment(payload, maintype="image", subtype="jpeg", filename=filename)
    return msg


class FakeMailbox:
    """Stands in for an IMAP4_SSL connection holding raw messages by UID."""

    def __init__(self, messages):
        self.messages = {str(uid).encode(): m.as_bytes() for uid, m in messages.items()}
        self.seen = []
        self.conn = MagicMock()
        self.conn.select.return_value = ("OK", [str(len(messages)).encode()])
        self.conn.uid.side_effect = self._uid

    def _uid(self, command, *args):
        if command == "SEARCH":
            unseen = [uid for uid in self.messages if uid not in self.seen]
            return "OK", [b" ".join(unseen)]
        if command == "FETCH":
            uid = args[0]
            raw = self.messages[uid]
            return "OK", [(b"%s (UID %s BODY[] {%d}" % (uid, uid, len(raw)), raw), b")"]
        if command == "STORE":
            self.seen.append(args[0])
            return "OK", [b""]
        raise AssertionError(f"unexpected command {command}")

    def factory(self, host, port):
        return self.conn


@pytest.fixture
def mailbox_config():
    return MailboxConfig(username="me@example.com", password="secret", min_attachment_bytes=100)


def make_poller(intake, config, messages):
    mailbox = FakeMailbox(messages)
    return MailboxPoller(intake, config, scope=SCOPE, imap_factory=mailbox.factory), mailbox


class TestHelpers:
    def test_gmail_link(self):
        assert build_gmail_link("<abc123@chipotle.com>") == (
            "https://mail.google.com/mail/u/0/#search/rfc822msgid:abc123%40chipotle.com"
        )

    def test_gmail_link_missing_id(self):
        assert build_gmail_link(None) == ""

    def test_sender_display(self):
        assert sender_display(make_message()) == '"Chipotle" <receipts@chipotle.com>'
        assert sender_display(make_message(sender="a@b.com")) == "a@b.com"

    def test_small_images_ignored(self):
        msg = make_message(
            text="see attached",
            images=[("logo.jpg", b"\xff\xd8tiny"), ("receipt.jpg", RECEIPT_IMAGE)],
        )

        images = image_attachments(msg, min_bytes=100)

        assert [name for name, _ in images] == ["receipt.jpg"]
        assert images[0][1] == RECEIPT_IMAGE

    def test_plain_text_preferred(self):
        msg = make_message(text="Total $5.00\n", html="<p>Total $9.99</p>")
        assert "5.00" in message_text(msg)

    def test_html_only(self):
        msg = make_message(html="<div>Dunkin</div><div>Total $6.39</div>")
        assert message_text(msg).splitlines() == ["Dunkin", "Total $6.39"]


class TestPollOnce:
    def test_text_receipt(self, intake, store, mailbox_config, sample_email_receipt):
        poller, mailbox = make_poller(
            intake, mailbox_config, {1: make_message(text=sample_email_receipt)}
        )

        result = poller.poll_once()

        assert result == PollResult(messages=1, receipts_stored=1)
        (receipt,) = store.get_orphan_receipts(SCOPE)
        assert receipt.vendor == "Chipotle"
        assert receipt.total_cents == 4404
        assert receipt.source is ReceiptSource.EMAIL
        assert receipt.external_link.endswith("rfc822msgid:abc123%40chipotle.com")
        assert mailbox.seen == [b"1"]
        mailbox.conn.login.assert_called_once_with("me@example.com", "secret")
        mailbox.conn.logout.assert_called_once()

    def test_image_attachment(self, intake, store, mailbox_config, uploads_dir):
        msg = make_message(text="Receipt attached", images=[("receipt.jpg", RECEIPT_IMAGE)])
        poller, _ = make_poller(intake, mailbox_config, {1: msg})

        result = poller.poll_once()

        assert result.receipts_stored == 1
        (receipt,) = store.get_orphan_receipts(SCOPE)
        assert receipt.image_sha256 is not None
        assert receipt.source is ReceiptSource.EMAIL
        assert len(list(uploads_dir.iterdir())) == 1

    def test_same_image_twice_is_duplicate(self, intake, store, mailbox_config):
        messages = {
            1: make_message(images=[("a.jpg", RECEIPT_IMAGE)], message_id="<one@x>"),
            2: make_message(images=[("b.jpg", RECEIPT_IMAGE)], message_id="<two@x>"),
        }
        poller, mailbox = make_poller(intake, mailbox_config, messages)

        result = poller.poll_once()

        assert result.receipts_stored == 1
        assert result.duplicates == 1
        assert len(store.get_orphan_receipts(SCOPE)) == 1
        assert sorted(mailbox.seen) == [b"1", b"2"]

    def test_allowed_senders(self, intake, store, sample_email_receipt):
        config = MailboxConfig(
            username="u", password="p", allowed_senders=["receipts@chipotle.com"]
        )
        messages = {
            1: make_message(text=sample_email_receipt),
            2: make_message(sender="Spam <spam@example.net>", text=sample_email_receipt),
        }
        poller, mailbox = make_poller(intake, config, messages)

        result = poller.poll_once()

        assert result.receipts_stored == 1
        assert result.skipped_senders == 1
        assert len(store.get_orphan_receipts(SCOPE)) == 1
        assert sorted(mailbox.seen) == [b"1", b"2"]

    def test_failed_message_stays_unseen(self, mailbox_config, sample_email_receipt):
        intake = MagicMock()
        intake.ingest_text.side_effect = [RuntimeError("db locked"), MagicMock()]
        messages = {
            1: make_message(text=sample_email_receipt),
            2: make_message(text=sample_email_receipt),
        }
        poller, mailbox = make_poller(intake, mailbox_config, messages)

        result = poller.poll_once()

        assert result.messages == 2
        assert result.receipts_stored == 1
        assert len(result.errors) == 1
        assert "db locked" in result.errors[0]
        assert mailbox.seen == [b"2"]

    def test_empty_mailbox(self, intake, mailbox_config):
        poller, mailbox = make_poller(intake, mailbox_config, {})

        assert poller.poll_once() == PollResult()
        mailbox.conn.close.assert_called_once()

    def test_select_failure(self, intake, mailbox_config):
        poller, mailbox = make_poller(intake, mailbox_config, {})
        mailbox.conn.select.return_value = ("NO", [b"no such folder"])

        with pytest.raises(Exception, match="Cannot select folder"):
            poller.poll_once()
        mailbox.conn.logout.assert_called_once()


class TestRunForever:
    def test_connection_errors_do_not_stop_polling(self, intake, mailbox_config):
        stop_event = threading.Event()
        attempts = []

        def factory(host, port):
            attempts.append((host, port))
            if len(attempts) == 2:
                stop_event.set()
            raise OSError("network unreachable")

        config = MailboxConfig(username="u", password="p", poll_interval_seconds=0)
        poller = MailboxPoller(intake, config, scope=SCOPE, imap_factory=factory)

        poller.run_forever(stop_event)

        assert attempts == [("imap.gmail.com", 993), ("imap.gmail.com", 993)]
