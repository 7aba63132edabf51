"""
Outcome variants (SSOT).

Every engine operation returns one member of a small closed set of result
types. Each variant carries only the fields that make sense for it, so
callers branch on the type instead of probing optional keys.

- ImportOutcome = Imported | DuplicateStatement | EmptyStatement
- IngestOutcome = Ingested | DuplicateImage
- MatchOutcome  = Matched | Unmatched
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Union


class ImportRejection(str, Enum):
    """Reason a statement import was a no-op."""

    DUPLICATE = "duplicate"
    EMPTY = "empty"


class UnmatchedReason(str, Enum):
    """Why the matching engine left a receipt orphaned."""

    NOT_FOUND = "NOT_FOUND"  # receipt id does not exist
    INCOMPLETE = "INCOMPLETE"  # no extracted amount or date
    NO_CANDIDATE = "NO_CANDIDATE"  # nothing within amount/date window
    AMBIGUOUS = "AMBIGUOUS"  # tied best candidates


@dataclass(frozen=True)
class Imported:
    """Statement committed."""

    statement_id: int
    rows_imported: int
    rows_skipped: int
    receipts_matched: int = 0

    imported = True

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "imported": True,
            "statement_id": self.statement_id,
            "rows_imported": self.rows_imported,
            "rows_skipped": self.rows_skipped,
            "receipts_matched": self.receipts_matched,
        }


@dataclass(frozen=True)
class DuplicateStatement:
    """Byte-identical statement already imported in this scope."""

    statement_id: int

    imported = False
    reason = ImportRejection.DUPLICATE
    rows_imported = 0
    rows_skipped = 0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "imported": False,
            "reason": self.reason.value,
            "statement_id": self.statement_id,
        }


@dataclass(frozen=True)
class EmptyStatement:
    """Statement has no data rows."""

    imported = False
    reason = ImportRejection.EMPTY
    rows_imported = 0
    rows_skipped = 0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {"imported": False, "reason": self.reason.value}


ImportOutcome = Union[Imported, DuplicateStatement, EmptyStatement]


@dataclass(frozen=True)
class ContentCollision:
    """Advisory: an existing receipt has the same extracted date and amount."""

    receipt_id: int
    vendor: str | None
    receipt_date: str | None
    total_cents: int | None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "receipt_id": self.receipt_id,
            "vendor": self.vendor,
            "receipt_date": self.receipt_date,
            "total_cents": self.total_cents,
        }


@dataclass(frozen=True)
class Ingested:
    """Receipt stored (and possibly linked)."""

    receipt_id: int
    transaction_id: int | None = None
    collisions: tuple[ContentCollision, ...] = field(default_factory=tuple)

    @property
    def matched(self) -> bool:
        """True if the receipt was linked to a transaction."""
        return self.transaction_id is not None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "stored": True,
            "receipt_id": self.receipt_id,
            "transaction_id": self.transaction_id,
            "collisions": [c.to_dict() for c in self.collisions],
        }


@dataclass(frozen=True)
class DuplicateImage:
    """Byte-identical image already stored in this scope; new bytes discarded."""

    existing_receipt_id: int

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {"stored": False, "reason": "duplicate_image", "receipt_id": self.existing_receipt_id}


IngestOutcome = Union[Ingested, DuplicateImage]


@dataclass(frozen=True)
class Matched:
    """Receipt linked to a transaction."""

    receipt_id: int
    transaction_id: int
    tier: int  # 1 or 2; 0 if the link already existed

    matched = True


@dataclass(frozen=True)
class Unmatched:
    """Receipt left orphaned."""

    receipt_id: int
    reason: UnmatchedReason

    matched = False


MatchOutcome = Union[Matched, Unmatched]


@dataclass(frozen=True)
class LedgerStats:
    """Aggregate counts for one scope."""

    total: int
    with_documentation: int
    exempt: int
    verified: int

    @property
    def missing(self) -> int:
        """Transactions that still need a receipt."""
        return self.total - self.with_documentation - self.exempt

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "total": self.total,
            "with_documentation": self.with_documentation,
            "missing": self.missing,
            "exempt": self.exempt,
            "verified": self.verified,
        }
