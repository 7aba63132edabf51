"""Mailbox ingestion of emailed receipts."""

from .mailbox import MailboxPoller, PollResult, build_gmail_link

__all__ = ["MailboxPoller", "PollResult", "build_gmail_link"]
