"""
IMAP mailbox poller for emailed receipts.

Each unread message is handled independently:
- Senders outside the allow-list are skipped (and marked read)
- Image attachments become image receipts (OCR)
- Messages without image attachments become text receipts
- A message is marked \\Seen only once it was processed without error,
  so a failing message is retried on the next poll
"""

import email
import imaplib
import logging
import threading
from dataclasses import dataclass, field
from email.message import Message
from email.utils import parseaddr
from typing import Callable, Optional
from urllib.parse import quote

from ..config import MailboxConfig
from ..extractors.text_extractor import strip_html
from ..schemas.outcomes import DuplicateImage, IngestOutcome
from ..services.intake import ReceiptIntake
from ..state_store import ReceiptSource

logger = logging.getLogger(__name__)

GMAIL_SEARCH_URL = "https://mail.google.com/mail/u/0/#search/rfc822msgid:"


@dataclass
class PollResult:
    """Summary of one mailbox poll."""

    messages: int = 0
    receipts_stored: int = 0
    duplicates: int = 0
    skipped_senders: int = 0
    errors: list[str] = field(default_factory=list)


def build_gmail_link(message_id: Optional[str]) -> str:
    """Search link that opens the original message in Gmail."""
    if not message_id:
        return ""
    clean = message_id.strip().removeprefix("<").removesuffix(">")
    return GMAIL_SEARCH_URL + quote(clean, safe="!'()*")


def sender_address(message: Message) -> str:
    """Lowercase address of the first From entry."""
    return parseaddr(str(message.get("From", "")))[1].lower()


def sender_display(message: Message) -> str:
    """'"Name" <address>' (or the bare address) for vendor detection."""
    name, address = parseaddr(str(message.get("From", "")))
    if name:
        return f'"{name}" <{address}>'
    return address


def image_attachments(message: Message, min_bytes: int) -> list[tuple[str, bytes]]:
    """Image parts large enough to be a receipt, as (filename, bytes)."""
    images = []
    for index, part in enumerate(message.walk()):
        if part.is_multipart() or not part.get_content_type().startswith("image/"):
            continue
        payload = part.get_payload(decode=True)
        if not payload or len(payload) < min_bytes:
            continue
        filename = part.get_filename() or f"attachment-{index}.{part.get_content_subtype()}"
        images.append((filename, payload))
    return images


def _decode_part(part: Message) -> str:
    payload = part.get_payload(decode=True)
    if payload is None:
        return ""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def message_text(message: Message) -> str:
    """Plain text body, or the stripped HTML body if there is no plain part."""
    plain = []
    html_parts = []
    for part in message.walk():
        if part.is_multipart() or part.get_content_disposition() == "attachment":
            continue
        content_type = part.get_content_type()
        if content_type == "text/plain":
            plain.append(_decode_part(part))
        elif content_type == "text/html":
            html_parts.append(_decode_part(part))

    if any(p.strip() for p in plain):
        return "\n".join(plain)
    if html_parts:
        return strip_html("\n".join(html_parts))
    return ""


class MailboxPoller:
    """
    Polls an IMAP folder and feeds receipts into intake.

    Usage:
        poller = MailboxPoller(intake, config.mailbox, scope=config.mailbox_scope)
        poller.poll_once()
    """

    def __init__(
        self,
        intake: ReceiptIntake,
        config: MailboxConfig,
        scope: str,
        imap_factory: Callable[[str, int], imaplib.IMAP4] = imaplib.IMAP4_SSL,
    ):
        """
        Initialize the poller.

        Args:
            intake: Receipt intake service
            config: Mailbox settings (credentials, folder, filters)
            scope: Ledger scope receiving mailbox receipts
            imap_factory: Connection constructor (host, port)
        """
        self.intake = intake
        self.config = config
        self.scope = scope
        self.imap_factory = imap_factory
        self.allowed_senders = {s.strip().lower() for s in config.allowed_senders if s.strip()}

    def _connect(self) -> imaplib.IMAP4:
        conn = self.imap_factory(self.config.host, self.config.port)
        conn.login(self.config.username, self.config.password)
        status, _ = conn.select(self.config.folder)
        if status != "OK":
            conn.logout()
            raise imaplib.IMAP4.error(f"Cannot select folder {self.config.folder}")
        return conn

    def process_message(self, message: Message, result: PollResult) -> list[IngestOutcome]:
        """Ingest the receipts carried by one message."""
        address = sender_address(message)
        logger.info("Received: subject=%r from=%s", message.get("Subject", ""), address)

        if self.allowed_senders and address not in self.allowed_senders:
            logger.info("Skipping sender not on the allow-list: %s", address)
            result.skipped_senders += 1
            return []

        link = build_gmail_link(message.get("Message-ID"))
        outcomes: list[IngestOutcome] = []

        images = image_attachments(message, self.config.min_attachment_bytes)
        if images:
            for filename, payload in images:
                outcomes.append(
                    self.intake.ingest_image(
                        self.scope,
                        payload,
                        filename,
                        source=ReceiptSource.EMAIL,
                        external_link=link,
                    )
                )
        else:
            text = message_text(message)
            if not text.strip():
                logger.info("Message from %s has no receipt content", address)
                return []
            outcomes.append(
                self.intake.ingest_text(
                    self.scope,
                    text,
                    sender=sender_display(message),
                    source=ReceiptSource.EMAIL,
                    external_link=link,
                )
            )

        for outcome in outcomes:
            if isinstance(outcome, DuplicateImage):
                result.duplicates += 1
            else:
                result.receipts_stored += 1
        return outcomes

    def poll_once(self) -> PollResult:
        """
        Fetch and process all unread messages.

        Raises:
            imaplib.IMAP4.error, OSError: If the mailbox cannot be reached
        """
        result = PollResult()
        conn = self._connect()
        try:
            status, data = conn.uid("SEARCH", None, "UNSEEN")
            if status != "OK":
                raise imaplib.IMAP4.error(f"UNSEEN search failed: {status}")
            uids = data[0].split() if data and data[0] else []

            for uid in uids:
                result.messages += 1
                try:
                    status, fetched = conn.uid("FETCH", uid, "(BODY.PEEK[])")
                    if status != "OK" or not fetched or not isinstance(fetched[0], tuple):
                        raise imaplib.IMAP4.error(f"Fetch of message {uid!r} failed")
                    message = email.message_from_bytes(fetched[0][1])
                    self.process_message(message, result)
                    conn.uid("STORE", uid, "+FLAGS", "(\\Seen)")
                except Exception as e:
                    logger.exception("Error processing message %r: %s", uid, e)
                    result.errors.append(f"{uid!r}: {e}")
        finally:
            try:
                conn.close()
            finally:
                conn.logout()

        logger.info(
            "Mailbox poll: %d messages, %d receipts, %d duplicates, %d skipped, %d errors",
            result.messages,
            result.receipts_stored,
            result.duplicates,
            result.skipped_senders,
            len(result.errors),
        )
        return result

    def run_forever(self, stop_event: threading.Event) -> None:
        """Poll on the configured interval until stop_event is set."""
        logger.info(
            "Polling %s every %ds", self.config.username, self.config.poll_interval_seconds
        )
        while not stop_event.is_set():
            try:
                self.poll_once()
            except (imaplib.IMAP4.error, OSError) as e:
                logger.error("IMAP error: %s", e)
            stop_event.wait(self.config.poll_interval_seconds)
