"""
Value normalization (SSOT).

Amounts are ALWAYS integer minor units (cents) once they enter the ledger.
Matching relies on exact integer equality, so floats never appear here:
strings are parsed with Decimal and rounded half-up to whole cents.

Dates are ALWAYS ISO YYYY-MM-DD strings once they enter the ledger.
"""

import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

# Characters stripped before parsing an amount ("$1,234.56 " -> "1234.56")
_AMOUNT_NOISE = re.compile(r"[$,\s]")

# Shapes accepted for extracted receipt dates (ordered by how often they appear)
RECEIPT_DATE_FORMATS = [
    "%m/%d/%Y",
    "%Y-%m-%d",
    "%m/%d/%y",
    "%m-%d-%Y",
    "%m-%d-%y",
    "%Y/%m/%d",
    "%m.%d.%Y",
    "%b %d, %Y",
    "%b %d %Y",
    "%B %d, %Y",
    "%B %d %Y",
]

_CENT = Decimal("0.01")

# Plain decimal notation only (no exponent, no NaN/Infinity)
_PLAIN_DECIMAL = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)$")

# SQLite INTEGER is a signed 64-bit value
MAX_CENTS = 2**63 - 1

# "Feb. 19, 2024" -> "Feb 19, 2024"
_MONTH_ABBREV_DOT = re.compile(r"^([A-Za-z]{3,9})\.")


def parse_cents(amount: str | None) -> int | None:
    """
    Parse a money string into integer cents.

    Args:
        amount: e.g. "$44.04", "1,234.5", "(12.00)", "-3"

    Returns:
        Integer cents, or None if the value is empty, not a plain decimal
        number, or too large to store

    Examples:
        >>> parse_cents("$44.04")
        4404
        >>> parse_cents("") is None
        True
    """
    if amount is None:
        return None

    cleaned = _AMOUNT_NOISE.sub("", amount)
    if not cleaned:
        return None

    negative = False
    if cleaned.startswith("(") and cleaned.endswith(")"):
        negative = True
        cleaned = cleaned[1:-1]

    if not _PLAIN_DECIMAL.match(cleaned):
        return None

    try:
        cents = int((Decimal(cleaned) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation:
        return None
    if abs(cents) > MAX_CENTS:
        return None
    return -cents if negative else cents


def format_cents(cents: int | None) -> str:
    """Format integer cents for display ("$44.04")."""
    if cents is None:
        return "-"
    sign = "-" if cents < 0 else ""
    value = (Decimal(abs(cents)) * _CENT).quantize(_CENT)
    return f"{sign}${value:,}"


def parse_statement_date(value: str, date_format: str = "%m/%d/%Y") -> str:
    """
    Normalize a statement date to ISO format.

    Raises:
        ValueError: If the value does not match the statement's date format
    """
    return datetime.strptime(value.strip(), date_format).date().isoformat()


def parse_receipt_date(value: str | None) -> str | None:
    """
    Normalize an extracted receipt date to ISO format.

    Extraction output is loosely formatted, so several shapes are tried.
    Unrecognised values become None (the receipt is then inert for matching).
    """
    if not value:
        return None

    cleaned = _MONTH_ABBREV_DOT.sub(r"\1", " ".join(value.strip().split()))
    for fmt in RECEIPT_DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def days_between(first: str, second: str) -> int:
    """Absolute distance in whole days between two ISO dates."""
    return abs((date.fromisoformat(first) - date.fromisoformat(second)).days)
