"""
Statement file parsing.

Turns raw statement bytes (bank CSV export) into validated rows with
normalized dates, integer-cent amounts and raw-row fingerprints.
"""

from .csv_parser import ParsedStatement, StatementReadError, parse_statement, split_fields

__all__ = [
    "ParsedStatement",
    "StatementReadError",
    "parse_statement",
    "split_fields",
]
