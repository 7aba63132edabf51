"""Test fixtures and utilities."""

from pathlib import Path

import pytest

from receipt_recon.matching import MatchingEngine
from receipt_recon.services import ReceiptIntake, StatementImporter
from receipt_recon.state_store import ReconciliationStore

STATEMENT_HEADER = "Status,Date,Description,Debit,Credit,Member Name"

# Card export used across the suite (the DUNKIN / CHIPOTLE scenario)
SAMPLE_STATEMENT = """Status,Date,Description,Debit,Credit,Member Name
Posted,02/18/2024,DUNKIN #344563,6.39,,JANE DOE
Posted,02/19/2024,CHIPOTLE MEX GR,44.04,,JANE DOE
"""

SAMPLE_EMAIL_RECEIPT = """Chipotle Mexican Grill
Order #4471

Date: 02/19/2024

Burrito Bowl                 12.95
Chips & Guac                  5.10
Subtotal                     40.50
Tax                           3.54
Total                       $44.04

Thank you for your order!
"""


def statement_bytes(*rows: str) -> bytes:
    """Build statement CSV bytes from data lines (header added)."""
    return ("\n".join([STATEMENT_HEADER, *rows]) + "\n").encode("utf-8")


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_ledger.db"


@pytest.fixture
def store(temp_db):
    """Fresh reconciliation store, closed after the test."""
    store = ReconciliationStore(temp_db)
    yield store
    store.close()


@pytest.fixture
def engine(store) -> MatchingEngine:
    return MatchingEngine(store)


@pytest.fixture
def uploads_dir(tmp_path) -> Path:
    return tmp_path / "uploads"


@pytest.fixture
def importer(store, engine) -> StatementImporter:
    return StatementImporter(store, engine)


@pytest.fixture
def intake(store, engine, uploads_dir) -> ReceiptIntake:
    """Intake without OCR (images are stored with empty fields)."""
    return ReceiptIntake(store, engine, uploads_dir)


@pytest.fixture
def sample_statement() -> bytes:
    """DUNKIN 6.39 on 2024-02-18, CHIPOTLE 44.04 on 2024-02-19."""
    return SAMPLE_STATEMENT.encode("utf-8")


@pytest.fixture
def sample_email_receipt() -> str:
    return SAMPLE_EMAIL_RECEIPT


@pytest.fixture
def make_statement():
    """Builder for statement CSV bytes: make_statement("Posted,02/18/2024,...")."""
    return statement_bytes
