"""
CLI runner module.

Provides commands:
- import-statement: Import a bank statement CSV
- add-receipt / add-receipt-text: Add receipts (image or text)
- match: Sweep orphaned receipts through the matching engine
- link / unlink / correct / delete-receipt: Manual receipt operations
- delete-statement: Remove an imported statement
- exempt / verify: Transaction flags
- orphans / transactions / status: Ledger views
- poll-mail: Mailbox ingestion
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
