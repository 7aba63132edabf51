"""Matching engine for linking receipts to ledger transactions."""

from .engine import (
    DATE_WINDOW_DAYS,
    CandidateScore,
    MatchingEngine,
    token_overlap,
)

__all__ = ["MatchingEngine", "CandidateScore", "DATE_WINDOW_DAYS", "token_overlap"]
