"""
Bank statements + receipts → one reconciled expense ledger.

A deterministic, idempotent engine that imports statement files into an
append-only transaction ledger, ingests receipts (uploaded or pulled from a
mailbox) behind strict deduplication guards, and links each receipt to the
most appropriate transaction.
"""

__version__ = "0.1.0"
