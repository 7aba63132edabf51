"""
Plain text receipt extractor.

Extracts vendor, date and total from emailed receipts (plain text or HTML
bodies) using line-oriented pattern matching.

Heuristics:
- Date: lines mentioning "date" are searched first, then the whole text
- Total: keyword priority ("grand total" before "total" before "balance"),
  scanning from the bottom; subtotal/tax/tip lines are skipped.
  Falls back to the largest amount on the receipt.
- Vendor: sender display name unless it is a generic mailbox name,
  else the first meaningful line of the body
"""

import html
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Optional

from .base import BaseReceiptExtractor, ReceiptExtraction

logger = logging.getLogger(__name__)

# Date shapes (ISO first so "2024-02-19" is never read as "24-02-19")
DATE_PATTERNS = [
    re.compile(r"\b(\d{4}-\d{1,2}-\d{1,2})\b"),
    re.compile(r"\b(\d{4}/\d{1,2}/\d{1,2})\b"),
    re.compile(r"\b(\d{1,2}/\d{1,2}/\d{2,4})\b"),
    re.compile(r"\b(\d{1,2}-\d{1,2}-\d{2,4})\b"),
    re.compile(r"\b(\d{1,2}\.\d{1,2}\.\d{2,4})\b"),
    re.compile(
        r"\b((?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s+\d{1,2},?\s+\d{2,4})\b",
        re.IGNORECASE,
    ),
]

DATE_KEYWORDS = ("date", "dt:")

# Most specific first
TOTAL_KEYWORDS_PRIORITY = [
    "grand total",
    "total due",
    "amount due",
    "balance due",
    "total",
    "balance",
    "purchase",
]

SKIP_KEYWORDS = [
    "subtotal",
    "sub total",
    "sub-total",
    "tax",
    "tip",
    "discount",
    "savings",
    "change",
]

AMOUNT_PATTERN = re.compile(r"\$?\s?\d{1,3}(?:,\d{3})*\.\d{2}")

VENDOR_SKIP_WORDS = {
    "welcome", "to", "thank", "you", "receipt", "register", "store",
    "cashier", "terminal", "transaction", "order", "invoice", "tel",
    "phone", "fax", "www", "http", "com", "org", "net",
}

GENERIC_SENDER_NAMES = (
    "noreply",
    "no-reply",
    "donotreply",
    "do-not-reply",
    "info",
    "support",
    "orders",
    "receipts",
    "billing",
)

_SENDER_DISPLAY_NAME = re.compile(r'^"?([^"<]+)"?\s*<')
_BLOCK_END = re.compile(r"</(?:p|div|tr|li|h\d)>", re.IGNORECASE)
_LINE_BREAK_TAG = re.compile(r"<br\s*/?>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]+>")


def strip_html(markup: str) -> str:
    """Reduce an HTML body to text, keeping block boundaries as line breaks."""
    text = _LINE_BREAK_TAG.sub("\n", markup)
    text = _BLOCK_END.sub("\n", text)
    text = _ANY_TAG.sub("", text)
    text = html.unescape(text).replace("\xa0", " ")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def looks_like_html(content: str) -> bool:
    return "<" in content and ">" in content


def _lines(text: str) -> list[str]:
    """Non-blank lines with whitespace collapsed."""
    return [" ".join(line.split()) for line in text.split("\n") if line.strip()]


def _has_skip_keyword(lower_line: str, keyword: str) -> bool:
    for skip in SKIP_KEYWORDS:
        if skip == keyword:
            continue
        if re.search(rf"\b{re.escape(skip)}\b", lower_line):
            return True
    return False


def _amount_value(amount_text: str) -> Decimal:
    try:
        return Decimal(re.sub(r"[$,\s]", "", amount_text))
    except InvalidOperation:
        return Decimal(0)


def extract_date(lines: list[str]) -> Optional[str]:
    """Find the receipt date (raw text as written)."""
    for line in lines:
        lower_line = line.lower()
        if not any(keyword in lower_line for keyword in DATE_KEYWORDS):
            continue
        for pattern in DATE_PATTERNS:
            match = pattern.search(line)
            if match:
                return match.group(1)

    full_text = " ".join(lines)
    for pattern in DATE_PATTERNS:
        match = pattern.search(full_text)
        if match:
            return match.group(1)

    return None


def extract_total(lines: list[str]) -> Optional[str]:
    """Find the receipt total (raw text, e.g. "$44.04")."""
    for keyword in TOTAL_KEYWORDS_PRIORITY:
        for line in reversed(lines):
            lower_line = line.lower()
            if keyword not in lower_line or _has_skip_keyword(lower_line, keyword):
                continue
            match = AMOUNT_PATTERN.search(line)
            if match:
                return re.sub(r"\s", "", match.group(0))

    # Fallback: largest amount anywhere
    largest: Optional[str] = None
    largest_value = Decimal(0)
    for line in lines:
        for token in line.split():
            match = AMOUNT_PATTERN.search(token)
            if not match:
                continue
            value = _amount_value(match.group(0))
            if value > largest_value:
                largest_value = value
                largest = re.sub(r"\s", "", match.group(0))
    return largest


def extract_vendor(lines: list[str], sender: Optional[str] = None) -> Optional[str]:
    """Find the vendor from the sender display name or the body header."""
    if sender:
        match = _SENDER_DISPLAY_NAME.match(sender.strip())
        if match:
            name = match.group(1).strip()
            lower_name = name.lower()
            if len(name) > 1 and not any(g in lower_name for g in GENERIC_SENDER_NAMES):
                return name

    for line in lines[:5]:
        if line.isdigit() or set(line) == {"*"}:
            continue
        if len(line) < 2:
            continue
        if any(pattern.search(line) for pattern in DATE_PATTERNS):
            continue
        if AMOUNT_PATTERN.search(line):
            continue
        if all(word in VENDOR_SKIP_WORDS for word in line.lower().split()):
            continue
        return line

    return None


class TextReceiptExtractor(BaseReceiptExtractor):
    """Heuristic extractor for receipts delivered as email text."""

    @property
    def name(self) -> str:
        return "text_heuristics"

    def extract(self, content: str, sender: Optional[str] = None) -> ReceiptExtraction:
        text = strip_html(content) if looks_like_html(content) else content
        lines = _lines(text)

        result = ReceiptExtraction(
            vendor=extract_vendor(lines, sender),
            date=extract_date(lines),
            total=extract_total(lines),
        )
        logger.debug(
            "Text extraction: vendor=%r date=%r total=%r", result.vendor, result.date, result.total
        )
        return result
