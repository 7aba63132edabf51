"""
Bank statement CSV parser.

Default layout (card export):
    Status,Date,Description,Debit,Credit,Member Name
    Posted,02/18/2024,DUNKIN #344563,6.39,,JANE DOE

Rules:
- Blank lines are ignored; the first remaining line is the header
- Row numbers are positions among non-blank lines (header = 0)
- Only debit rows are imported; a row without a debit is skipped
- A row whose date or amount cannot be normalized is skipped
- The raw row text is kept verbatim and fingerprinted
"""

import csv
import logging
import re
from dataclasses import dataclass, field

from ..config import StatementConfig
from ..schemas.fingerprint import row_fingerprint
from ..schemas.normalize import parse_cents, parse_statement_date
from ..state_store import StatementRow

logger = logging.getLogger(__name__)

# Positional fallback when a header name is not found
DEFAULT_POSITIONS = {
    "status": 0,
    "date": 1,
    "description": 2,
    "debit": 3,
    "credit": 4,
    "member": 5,
}

_LINE_BREAK = re.compile(r"\r?\n")


class StatementReadError(Exception):
    """Statement bytes cannot be read as text (structural failure)."""

    pass


@dataclass
class ParsedStatement:
    """Result of parsing a statement file."""

    line_count: int  # non-blank lines, header included
    rows: list[StatementRow] = field(default_factory=list)
    rows_skipped: int = 0

    @property
    def is_empty(self) -> bool:
        """True if there is no data row after the header."""
        return self.line_count < 2


def split_fields(line: str) -> list[str]:
    """Split one CSV line into trimmed fields (quotes and "" escapes honoured)."""
    fields = next(csv.reader([line], skipinitialspace=False), [])
    return [f.strip() for f in fields]


def _column_positions(header: list[str], layout: StatementConfig) -> dict[str, int]:
    """Resolve each logical column to an index using the header names."""
    names = {name.strip().lower(): idx for idx, name in enumerate(header)}
    wanted = {
        "status": layout.status_column,
        "date": layout.date_column,
        "description": layout.description_column,
        "debit": layout.debit_column,
        "credit": layout.credit_column,
        "member": layout.member_column,
    }
    positions = {}
    for key, column in wanted.items():
        positions[key] = names.get(column.strip().lower(), DEFAULT_POSITIONS[key])
    return positions


def _field(fields: list[str], index: int) -> str:
    return fields[index] if index < len(fields) else ""


def decode_statement(raw_bytes: bytes) -> str:
    """
    Decode statement bytes as UTF-8 (a leading BOM is dropped).

    Raises:
        StatementReadError: If the bytes are not valid UTF-8
    """
    try:
        return raw_bytes.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise StatementReadError(f"Statement is not valid UTF-8 text: {e}") from e


def parse_statement(raw_bytes: bytes, layout: StatementConfig | None = None) -> ParsedStatement:
    """
    Parse statement bytes into validated rows.

    Malformed rows are counted in rows_skipped; they never raise.

    Raises:
        StatementReadError: If the file cannot be decoded at all
    """
    layout = layout or StatementConfig()
    text = decode_statement(raw_bytes)
    lines = [line for line in _LINE_BREAK.split(text) if line.strip()]

    parsed = ParsedStatement(line_count=len(lines))
    if parsed.is_empty:
        return parsed

    try:
        header = split_fields(lines[0])
    except csv.Error as e:
        raise StatementReadError(f"Statement header is not valid CSV: {e}") from e
    positions = _column_positions(header, layout)

    for row_number, raw_line in enumerate(lines[1:], start=1):
        try:
            fields = split_fields(raw_line)
        except csv.Error:
            logger.debug("Row %d skipped: not valid CSV", row_number)
            parsed.rows_skipped += 1
            continue

        debit = _field(fields, positions["debit"])

        if not debit:
            logger.debug("Row %d skipped: no debit amount", row_number)
            parsed.rows_skipped += 1
            continue

        amount_cents = parse_cents(debit)
        if amount_cents is None:
            logger.debug("Row %d skipped: unparseable amount %r", row_number, debit)
            parsed.rows_skipped += 1
            continue

        raw_date = _field(fields, positions["date"])
        try:
            posted_date = parse_statement_date(raw_date, layout.date_format)
        except ValueError:
            logger.debug("Row %d skipped: unparseable date %r", row_number, raw_date)
            parsed.rows_skipped += 1
            continue

        parsed.rows.append(
            StatementRow(
                row_number=row_number,
                posted_date=posted_date,
                description=_field(fields, positions["description"]),
                amount_cents=amount_cents,
                raw_row_text=raw_line,
                raw_row_hash=row_fingerprint(raw_line),
                member_name=_field(fields, positions["member"]) or None,
                status=_field(fields, positions["status"]) or None,
            )
        )

    return parsed
