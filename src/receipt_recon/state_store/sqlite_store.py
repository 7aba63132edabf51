"""
SQLite-based reconciliation store implementation.

Tables:
- statements: One row per imported statement file
- transactions: Ledger lines, owned by a statement (cascade delete)
- receipts: Documentation records, optionally linked to a transaction

Uniqueness invariants are enforced by the database, never by callers:
- statements(scope, file_sha256)
- transactions(statement_id, row_number) and (statement_id, raw_row_hash)
- receipts(scope, image_sha256) where image_sha256 IS NOT NULL
"""

import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from ..schemas.fingerprint import content_fingerprint
from ..schemas.outcomes import LedgerStats

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base exception for reconciliation store errors."""

    pass


class StoreClosedError(StoreError):
    """The store handle was used after close()."""

    pass


class DuplicateImageError(StoreError):
    """Receipt image bytes already stored in this scope."""

    def __init__(self, image_sha256: str, existing_receipt_id: int | None):
        self.image_sha256 = image_sha256
        self.existing_receipt_id = existing_receipt_id
        super().__init__(
            f"Duplicate receipt image {image_sha256[:16]} (existing receipt {existing_receipt_id})"
        )


class DuplicateStatementError(StoreError):
    """Statement file already imported in this scope."""

    def __init__(self, file_sha256: str, existing_statement_id: int | None):
        self.file_sha256 = file_sha256
        self.existing_statement_id = existing_statement_id
        super().__init__(
            f"Duplicate statement {file_sha256[:16]} (existing statement {existing_statement_id})"
        )


class ReceiptSource(str, Enum):
    """Provenance of a receipt."""

    UPLOAD = "upload"
    EMAIL = "email"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class StatementRecord:
    """Record of an imported statement file."""

    id: int
    scope: str
    filename: str
    file_sha256: str
    imported_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "StatementRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            scope=row["scope"],
            filename=row["filename"],
            file_sha256=row["file_sha256"],
            imported_at=row["imported_at"],
        )


@dataclass
class StatementRow:
    """A validated statement row, ready for insertion."""

    row_number: int
    posted_date: str  # YYYY-MM-DD
    description: str
    amount_cents: int
    raw_row_text: str
    raw_row_hash: str
    member_name: str | None = None
    status: str | None = None


@dataclass
class ReceiptRecord:
    """Record of a receipt (documentation for a transaction)."""

    id: int
    scope: str
    transaction_id: int | None
    vendor: str | None
    receipt_date: str | None
    total_cents: int | None
    total_text: str | None
    image_path: str | None
    image_sha256: str | None
    content_sha256: str | None
    source: ReceiptSource
    external_link: str
    created_at: str

    @property
    def is_orphan(self) -> bool:
        """True if not linked to any transaction."""
        return self.transaction_id is None

    @property
    def is_matchable(self) -> bool:
        """True if the receipt carries both an amount and a date."""
        return self.total_cents is not None and bool(self.receipt_date)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ReceiptRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            scope=row["scope"],
            transaction_id=row["transaction_id"],
            vendor=row["vendor"],
            receipt_date=row["receipt_date"],
            total_cents=row["total_cents"],
            total_text=row["total_text"],
            image_path=row["image_path"],
            image_sha256=row["image_sha256"],
            content_sha256=row["content_sha256"],
            source=ReceiptSource(row["source"]),
            external_link=row["external_link"] or "",
            created_at=row["created_at"],
        )


@dataclass
class TransactionRecord:
    """Record of a ledger transaction."""

    id: int
    statement_id: int
    scope: str
    row_number: int
    posted_date: str
    description: str
    amount_cents: int
    member_name: str | None
    status: str | None
    receipt_required: bool
    verified: bool
    raw_row_text: str
    raw_row_hash: str
    imported_at: str
    receipts: list[ReceiptRecord] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "TransactionRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            statement_id=row["statement_id"],
            scope=row["scope"],
            row_number=row["row_number"],
            posted_date=row["posted_date"],
            description=row["description"],
            amount_cents=row["amount_cents"],
            member_name=row["member_name"],
            status=row["status"],
            receipt_required=bool(row["receipt_required"]),
            verified=bool(row["verified"]),
            raw_row_text=row["raw_row_text"],
            raw_row_hash=row["raw_row_hash"],
            imported_at=row["imported_at"],
        )


class ReconciliationStore:
    """
    SQLite-based store for statements, transactions and receipts.

    The handle is constructed explicitly at process start and closed at
    shutdown; every call opens its own short-lived connection so concurrent
    writers are arbitrated by SQLite at commit time.

    Operations touching one scope's ledger are serialized with scope_lock().
    """

    SCHEMA_VERSION = 1
    BUSY_TIMEOUT_SECONDS = 30

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._closed = False
        self._scope_locks: dict[str, threading.RLock] = {}
        self._scope_locks_guard = threading.Lock()
        self._init_db()
        if run_migrations:
            self._run_migrations()

    # Lifecycle

    def close(self) -> None:
        """Close the store handle. Further calls raise StoreClosedError."""
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "ReconciliationStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @contextmanager
    def scope_lock(self, scope: str) -> Iterator[None]:
        """Serialize ledger work within one scope (re-entrant)."""
        with self._scope_locks_guard:
            lock = self._scope_locks.setdefault(scope, threading.RLock())
        with lock:
            yield

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        if self._closed:
            raise StoreClosedError(f"Store {self.db_path} is closed")
        conn = sqlite3.connect(str(self.db_path), timeout=self.BUSY_TIMEOUT_SECONDS)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute("PRAGMA journal_mode = WAL")

            # Schema version tracking
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            # Statements table
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS statements (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    scope TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    file_sha256 TEXT NOT NULL,
                    imported_at TEXT NOT NULL,
                    UNIQUE(scope, file_sha256)
                )
            """
            )

            # Transactions table
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    statement_id INTEGER NOT NULL
                        REFERENCES statements(id) ON DELETE CASCADE,
                    scope TEXT NOT NULL,
                    row_number INTEGER NOT NULL,
                    posted_date TEXT NOT NULL,
                    description TEXT NOT NULL,
                    amount_cents INTEGER NOT NULL,
                    member_name TEXT,
                    status TEXT,
                    receipt_required INTEGER NOT NULL DEFAULT 1,
                    verified INTEGER NOT NULL DEFAULT 0,
                    raw_row_text TEXT NOT NULL,
                    raw_row_hash TEXT NOT NULL,
                    imported_at TEXT NOT NULL,
                    UNIQUE(statement_id, row_number),
                    UNIQUE(statement_id, raw_row_hash)
                )
            """
            )

            # Receipts table
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS receipts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    scope TEXT NOT NULL,
                    transaction_id INTEGER
                        REFERENCES transactions(id) ON DELETE SET NULL,
                    vendor TEXT,
                    receipt_date TEXT,
                    total_cents INTEGER,
                    total_text TEXT,
                    image_path TEXT,
                    image_sha256 TEXT,  -- NULL for text-only receipts
                    content_sha256 TEXT,
                    source TEXT NOT NULL DEFAULT 'upload',
                    external_link TEXT DEFAULT '',
                    created_at TEXT NOT NULL
                )
            """
            )

            # Create indexes
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_scope ON transactions(scope)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_amount ON transactions(scope, amount_cents)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_row_hash ON transactions(scope, raw_row_hash)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_receipts_transaction_id ON receipts(transaction_id)"
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_receipts_scope ON receipts(scope)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_receipts_content ON receipts(scope, content_sha256)"
            )
            # Ingestion Guard enforcement point
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS uq_receipts_scope_image
                ON receipts(scope, image_sha256)
                WHERE image_sha256 IS NOT NULL
            """
            )

            # Set schema version
            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Statement methods

    def find_statement_by_hash(self, scope: str, file_sha256: str) -> StatementRecord | None:
        """Get a statement by whole-file fingerprint within a scope."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM statements WHERE scope = ? AND file_sha256 = ?",
                (scope, file_sha256),
            ).fetchone()
            return StatementRecord.from_row(row) if row else None

    def get_statement(self, scope: str, statement_id: int) -> StatementRecord | None:
        """Get a statement by ID within a scope."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM statements WHERE scope = ? AND id = ?", (scope, statement_id)
            ).fetchone()
            return StatementRecord.from_row(row) if row else None

    def get_statements(self, scope: str) -> list[StatementRecord]:
        """Get all statements of a scope, newest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM statements WHERE scope = ? ORDER BY imported_at DESC, id DESC",
                (scope,),
            ).fetchall()
            return [StatementRecord.from_row(row) for row in rows]

    def import_statement(
        self,
        scope: str,
        filename: str,
        file_sha256: str,
        rows: Iterable[StatementRow],
    ) -> tuple[int, int, int]:
        """
        Insert a statement and its rows as ONE unit of work.

        Rows that collide with the (statement, row_number) or
        (statement, raw_row_hash) invariants, or whose raw_row_hash is
        already in the scope's ledger, are ignored, not failed.

        Returns:
            (statement_id, rows_inserted, rows_ignored)

        Raises:
            DuplicateStatementError: If the file was already imported in scope
        """
        now = _now()
        inserted = 0
        ignored = 0

        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO statements (scope, filename, file_sha256, imported_at)
                    VALUES (?, ?, ?, ?)
                """,
                    (scope, filename, file_sha256, now),
                )
                statement_id = cursor.lastrowid

                for row in rows:
                    # A row already in the scope's ledger (e.g. from an
                    # overlapping earlier statement) is not inserted again.
                    cursor = conn.execute(
                        """
                        INSERT OR IGNORE INTO transactions
                        (statement_id, scope, row_number, posted_date, description, amount_cents,
                         member_name, status, raw_row_text, raw_row_hash, imported_at)
                        SELECT ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?
                        WHERE NOT EXISTS (
                            SELECT 1 FROM transactions WHERE scope = ? AND raw_row_hash = ?
                        )
                    """,
                        (
                            statement_id,
                            scope,
                            row.row_number,
                            row.posted_date,
                            row.description,
                            row.amount_cents,
                            row.member_name,
                            row.status,
                            row.raw_row_text,
                            row.raw_row_hash,
                            now,
                            scope,
                            row.raw_row_hash,
                        ),
                    )
                    if cursor.rowcount > 0:
                        inserted += 1
                    else:
                        ignored += 1
        except sqlite3.IntegrityError as e:
            if "file_sha256" not in str(e):
                raise
            existing = self.find_statement_by_hash(scope, file_sha256)
            raise DuplicateStatementError(file_sha256, existing.id if existing else None) from e

        return statement_id, inserted, ignored

    def delete_statement(self, scope: str, statement_id: int) -> bool:
        """
        Delete a statement and (cascade) its transactions.

        Receipts linked to those transactions survive as orphans.
        Returns True if deleted.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM statements WHERE scope = ? AND id = ?", (scope, statement_id)
            )
            return cursor.rowcount > 0

    # Transaction methods

    def _attach_receipts(
        self, conn: sqlite3.Connection, transactions: list[TransactionRecord]
    ) -> list[TransactionRecord]:
        """Attach linked receipts (oldest first) to each transaction."""
        if not transactions:
            return transactions

        by_id = {t.id: t for t in transactions}
        placeholders = ",".join("?" for _ in by_id)
        rows = conn.execute(
            f"""
            SELECT * FROM receipts
            WHERE transaction_id IN ({placeholders})
            ORDER BY created_at ASC, id ASC
        """,
            list(by_id),
        ).fetchall()

        for row in rows:
            by_id[row["transaction_id"]].receipts.append(ReceiptRecord.from_row(row))
        return transactions

    def get_transaction(
        self, scope: str, transaction_id: int, with_receipts: bool = True
    ) -> TransactionRecord | None:
        """Get a transaction by ID within a scope."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM transactions WHERE scope = ? AND id = ?", (scope, transaction_id)
            ).fetchone()
            if not row:
                return None
            txn = TransactionRecord.from_row(row)
            if with_receipts:
                self._attach_receipts(conn, [txn])
            return txn

    def get_transactions(
        self,
        scope: str,
        search: str | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
        missing_only: bool = False,
    ) -> list[TransactionRecord]:
        """
        Get transactions of a scope with their receipts attached.

        Args:
            scope: Owning scope
            search: Substring filter on the description
            date_from: Inclusive lower bound (YYYY-MM-DD)
            date_to: Inclusive upper bound (YYYY-MM-DD)
            missing_only: Only transactions that still need a receipt

        Returns:
            Transactions ordered newest first.
        """
        conditions = ["t.scope = ?"]
        params: list = [scope]

        if missing_only:
            conditions.append(
                "NOT EXISTS (SELECT 1 FROM receipts r WHERE r.transaction_id = t.id)"
                " AND t.receipt_required = 1"
            )
        if search:
            conditions.append("t.description LIKE ?")
            params.append(f"%{search}%")
        if date_from:
            conditions.append("t.posted_date >= ?")
            params.append(date_from)
        if date_to:
            conditions.append("t.posted_date <= ?")
            params.append(date_to)

        sql = (
            "SELECT t.* FROM transactions t WHERE "
            + " AND ".join(conditions)
            + " ORDER BY t.posted_date DESC, t.id DESC"
        )

        with self._transaction() as conn:
            rows = conn.execute(sql, params).fetchall()
            return self._attach_receipts(conn, [TransactionRecord.from_row(r) for r in rows])

    def get_unlinked_transactions(self, scope: str) -> list[TransactionRecord]:
        """Transactions that require a receipt and have none."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT t.* FROM transactions t
                WHERE t.scope = ?
                  AND t.receipt_required = 1
                  AND NOT EXISTS (SELECT 1 FROM receipts r WHERE r.transaction_id = t.id)
                ORDER BY t.posted_date DESC, t.id DESC
            """,
                (scope,),
            ).fetchall()
            return [TransactionRecord.from_row(row) for row in rows]

    def get_candidate_transactions(self, scope: str, documented: bool) -> list[TransactionRecord]:
        """
        Candidate pool for the matching engine.

        Args:
            scope: Owning scope
            documented: False -> transactions with no linked receipt (tier 1),
                        True -> transactions with at least one (tier 2)

        Only transactions that require a receipt are ever candidates.
        """
        predicate = "EXISTS" if documented else "NOT EXISTS"
        with self._transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT t.* FROM transactions t
                WHERE t.scope = ?
                  AND t.receipt_required = 1
                  AND {predicate} (SELECT 1 FROM receipts r WHERE r.transaction_id = t.id)
                ORDER BY t.id ASC
            """,
                (scope,),
            ).fetchall()
            return [TransactionRecord.from_row(row) for row in rows]

    def set_receipt_required(self, scope: str, transaction_id: int, value: bool) -> bool:
        """Set or clear the receipt-required flag. Returns True if updated."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE transactions SET receipt_required = ? WHERE scope = ? AND id = ?",
                (int(value), scope, transaction_id),
            )
            return cursor.rowcount > 0

    def set_verified(self, scope: str, transaction_id: int, value: bool) -> bool:
        """Set or clear the verified flag. Returns True if updated."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE transactions SET verified = ? WHERE scope = ? AND id = ?",
                (int(value), scope, transaction_id),
            )
            return cursor.rowcount > 0

    # Receipt methods

    def insert_receipt(
        self,
        scope: str,
        vendor: str | None = None,
        receipt_date: str | None = None,
        total_cents: int | None = None,
        total_text: str | None = None,
        image_path: str | None = None,
        image_sha256: str | None = None,
        source: ReceiptSource = ReceiptSource.UPLOAD,
        external_link: str = "",
    ) -> int:
        """
        Insert an unlinked receipt. Returns the receipt ID.

        The (scope, image_sha256) uniqueness is checked by the database at
        commit time; there is deliberately no existence check beforehand.

        Raises:
            DuplicateImageError: If the image bytes are already stored in scope
        """
        content_sha256 = content_fingerprint(receipt_date, total_cents)

        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO receipts
                    (scope, transaction_id, vendor, receipt_date, total_cents, total_text,
                     image_path, image_sha256, content_sha256, source, external_link, created_at)
                    VALUES (?, NULL, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        scope,
                        vendor,
                        receipt_date,
                        total_cents,
                        total_text,
                        image_path,
                        image_sha256,
                        content_sha256,
                        ReceiptSource(source).value,
                        external_link or "",
                        _now(),
                    ),
                )
                return cursor.lastrowid or 0
        except sqlite3.IntegrityError as e:
            if image_sha256 is None or "image_sha256" not in str(e):
                raise
            existing = self.find_receipt_by_image_hash(scope, image_sha256)
            raise DuplicateImageError(image_sha256, existing.id if existing else None) from e

    def get_receipt(self, receipt_id: int, scope: str | None = None) -> ReceiptRecord | None:
        """Get a receipt by ID, optionally restricted to a scope."""
        with self._transaction() as conn:
            if scope is None:
                row = conn.execute("SELECT * FROM receipts WHERE id = ?", (receipt_id,)).fetchone()
            else:
                row = conn.execute(
                    "SELECT * FROM receipts WHERE id = ? AND scope = ?", (receipt_id, scope)
                ).fetchone()
            return ReceiptRecord.from_row(row) if row else None

    def find_receipt_by_image_hash(self, scope: str, image_sha256: str) -> ReceiptRecord | None:
        """Get the receipt holding these image bytes in a scope."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM receipts WHERE scope = ? AND image_sha256 = ?",
                (scope, image_sha256),
            ).fetchone()
            return ReceiptRecord.from_row(row) if row else None

    def find_content_duplicates(
        self,
        scope: str,
        content_sha256: str,
        exclude_receipt_id: int | None = None,
    ) -> list[ReceiptRecord]:
        """Receipts in scope sharing an extracted date + amount key, oldest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM receipts
                WHERE scope = ? AND content_sha256 = ? AND id != ?
                ORDER BY created_at ASC, id ASC
            """,
                (scope, content_sha256, exclude_receipt_id if exclude_receipt_id is not None else -1),
            ).fetchall()
            return [ReceiptRecord.from_row(row) for row in rows]

    def get_orphan_receipts(self, scope: str, oldest_first: bool = False) -> list[ReceiptRecord]:
        """Receipts not linked to any transaction."""
        order = "ASC" if oldest_first else "DESC"
        with self._transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM receipts
                WHERE scope = ? AND transaction_id IS NULL
                ORDER BY created_at {order}, id {order}
            """,
                (scope,),
            ).fetchall()
            return [ReceiptRecord.from_row(row) for row in rows]

    def get_receipts_for_transaction(self, transaction_id: int) -> list[ReceiptRecord]:
        """Receipts linked to a transaction, in creation order."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM receipts
                WHERE transaction_id = ?
                ORDER BY created_at ASC, id ASC
            """,
                (transaction_id,),
            ).fetchall()
            return [ReceiptRecord.from_row(row) for row in rows]

    def link_receipt(self, receipt_id: int, transaction_id: int) -> bool:
        """Point a receipt at a transaction. Returns True if updated."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE receipts SET transaction_id = ? WHERE id = ?",
                (transaction_id, receipt_id),
            )
            return cursor.rowcount > 0

    def unlink_receipt(self, receipt_id: int) -> bool:
        """
        Clear a receipt's transaction reference (non-destructive).

        The receipt survives as an orphan. Returns True if updated.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE receipts SET transaction_id = NULL WHERE id = ?", (receipt_id,)
            )
            return cursor.rowcount > 0

    def delete_receipt(self, receipt_id: int) -> ReceiptRecord | None:
        """
        Remove a receipt row (destructive).

        Returns the deleted record so the caller can remove its image,
        or None if it did not exist.
        """
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM receipts WHERE id = ?", (receipt_id,)).fetchone()
            if not row:
                return None
            conn.execute("DELETE FROM receipts WHERE id = ?", (receipt_id,))
            return ReceiptRecord.from_row(row)

    def update_receipt_fields(
        self,
        receipt_id: int,
        vendor: str | None,
        receipt_date: str | None,
        total_cents: int | None,
        total_text: str | None,
    ) -> bool:
        """Correct the extracted fields of a receipt. Returns True if updated."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE receipts
                SET vendor = ?, receipt_date = ?, total_cents = ?, total_text = ?,
                    content_sha256 = ?
                WHERE id = ?
            """,
                (
                    vendor,
                    receipt_date,
                    total_cents,
                    total_text,
                    content_fingerprint(receipt_date, total_cents),
                    receipt_id,
                ),
            )
            return cursor.rowcount > 0

    # Statistics

    def get_stats(self, scope: str) -> LedgerStats:
        """
        Aggregate counts for a scope.

        with_documentation uses an EXISTS predicate: a transaction with
        several receipts is still counted once.
        """
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(CASE WHEN EXISTS (
                        SELECT 1 FROM receipts r WHERE r.transaction_id = t.id
                    ) THEN 1 ELSE 0 END), 0) AS with_documentation,
                    COALESCE(SUM(CASE WHEN t.receipt_required = 0 THEN 1 ELSE 0 END), 0) AS exempt,
                    COALESCE(SUM(CASE WHEN t.verified = 1 THEN 1 ELSE 0 END), 0) AS verified
                FROM transactions t
                WHERE t.scope = ?
            """,
                (scope,),
            ).fetchone()

            return LedgerStats(
                total=row["total"],
                with_documentation=row["with_documentation"],
                exempt=row["exempt"],
                verified=row["verified"],
            )
