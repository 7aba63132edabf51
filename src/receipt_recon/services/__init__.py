"""Services for statement import and receipt intake."""

from .importer import StatementImporter
from .intake import (
    IntakeError,
    ReceiptIntake,
    ReceiptLinkedError,
    ReceiptNotFoundError,
    TransactionNotFoundError,
)

__all__ = [
    "StatementImporter",
    "ReceiptIntake",
    "IntakeError",
    "ReceiptLinkedError",
    "ReceiptNotFoundError",
    "TransactionNotFoundError",
]
