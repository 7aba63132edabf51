"""
SSOT (Single Source of Truth) schemas for the engine.

These canonical helpers and result types are the ONLY ones used across all
modules. No duplicated "near-same" hashing or parsing allowed.
"""

from .fingerprint import (
    content_fingerprint,
    file_fingerprint,
    fingerprint,
    image_fingerprint,
    row_fingerprint,
)
from .normalize import (
    days_between,
    format_cents,
    parse_cents,
    parse_receipt_date,
    parse_statement_date,
)
from .outcomes import (
    ContentCollision,
    DuplicateImage,
    DuplicateStatement,
    EmptyStatement,
    Imported,
    ImportOutcome,
    ImportRejection,
    Ingested,
    IngestOutcome,
    LedgerStats,
    Matched,
    MatchOutcome,
    Unmatched,
    UnmatchedReason,
)

__all__ = [
    # Fingerprints
    "fingerprint",
    "file_fingerprint",
    "row_fingerprint",
    "image_fingerprint",
    "content_fingerprint",
    # Normalization
    "parse_cents",
    "format_cents",
    "parse_statement_date",
    "parse_receipt_date",
    "days_between",
    # Outcomes
    "ImportOutcome",
    "Imported",
    "DuplicateStatement",
    "EmptyStatement",
    "ImportRejection",
    "IngestOutcome",
    "Ingested",
    "DuplicateImage",
    "ContentCollision",
    "MatchOutcome",
    "Matched",
    "Unmatched",
    "UnmatchedReason",
    "LedgerStats",
]
