"""
Reconciliation Store (SQLite-based).

Persistent relation between:
- Statements (imported files)
- Transactions (ledger lines owned by a statement)
- Receipts (documentation, zero-to-many per transaction)

Enforces uniqueness of statement files, statement rows and receipt images
at the storage layer.
"""

from .sqlite_store import (
    DuplicateImageError,
    DuplicateStatementError,
    ReceiptRecord,
    ReceiptSource,
    ReconciliationStore,
    StatementRecord,
    StatementRow,
    StoreClosedError,
    StoreError,
    TransactionRecord,
)

__all__ = [
    "ReconciliationStore",
    "StatementRecord",
    "StatementRow",
    "TransactionRecord",
    "ReceiptRecord",
    "ReceiptSource",
    "StoreError",
    "StoreClosedError",
    "DuplicateImageError",
    "DuplicateStatementError",
]
