"""Matching engine for linking receipts to ledger transactions.

The engine is deterministic: the same ledger and the same receipt always
produce the same decision. It never guesses. When the best candidates are
tied, the receipt stays orphaned for manual linking.

Algorithm (per receipt):
1. Tier 1 pool: transactions in scope that require a receipt and have none
2. Candidate reduction on tier 1; a unique winner is linked
3. Otherwise tier 2 pool: transactions that require a receipt and already
   have one (duplicate copies, multi-page receipts); reduction again
4. Otherwise the receipt stays orphaned

Candidate reduction:
a. Exact amount equality in integer cents (no tolerance)
b. Posted date within +/- DATE_WINDOW_DAYS of the receipt date
c. Rank by vendor/description token overlap (desc), then day distance (asc)
d. The top candidate wins only if no other candidate ties it on both
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..schemas.normalize import days_between
from ..schemas.outcomes import Matched, MatchOutcome, Unmatched, UnmatchedReason

if TYPE_CHECKING:
    from ..state_store import ReceiptRecord, ReconciliationStore, TransactionRecord

logger = logging.getLogger(__name__)

# Bank posting delay tolerance (fixed, not configurable)
DATE_WINDOW_DAYS = 2

TIER_UNDOCUMENTED = 1
TIER_DOCUMENTED = 2


def tokenize(text: str | None) -> list[str]:
    """Split text into lowercase whitespace-delimited tokens."""
    if not text:
        return []
    return text.lower().split()


def token_overlap(vendor: str | None, description: str | None) -> int:
    """Count vendor tokens that appear as whole tokens in the description.

    Args:
        vendor: Extracted vendor name (e.g. "Chipotle").
        description: Statement description (e.g. "CHIPOTLE MEX GR").

    Returns:
        Number of overlapping tokens (case-insensitive).
    """
    description_tokens = set(tokenize(description))
    if not description_tokens:
        return 0
    return sum(1 for token in tokenize(vendor) if token in description_tokens)


@dataclass
class CandidateScore:
    """Ranking of one surviving candidate."""

    transaction: TransactionRecord
    overlap: int
    date_distance: int

    @property
    def sort_key(self) -> tuple[int, int]:
        """Higher overlap first, then closer date."""
        return (-self.overlap, self.date_distance)

    def ties(self, other: CandidateScore) -> bool:
        """True if both ranking criteria are equal."""
        return self.sort_key == other.sort_key


class MatchingEngine:
    """Engine for linking receipts to transactions.

    The store handle is injected; the engine holds no state of its own.
    All work for one receipt runs under the store's scope lock so the
    candidate queries and the link write form one logical operation.
    """

    def __init__(self, state_store: ReconciliationStore) -> None:
        """Initialize the matching engine.

        Args:
            state_store: Reconciliation store holding the ledger.
        """
        self.store = state_store

    def rank_candidates(
        self,
        receipt: ReceiptRecord,
        candidates: list[TransactionRecord],
    ) -> list[CandidateScore]:
        """Filter candidates by amount and date window, then rank them.

        Args:
            receipt: Receipt with extracted amount and date.
            candidates: Candidate pool (one tier).

        Returns:
            Surviving candidates, best first.
        """
        if receipt.total_cents is None or not receipt.receipt_date:
            return []

        same_amount = [t for t in candidates if t.amount_cents == receipt.total_cents]
        if not same_amount:
            return []

        scored: list[CandidateScore] = []
        for txn in same_amount:
            distance = days_between(txn.posted_date, receipt.receipt_date)
            if distance > DATE_WINDOW_DAYS:
                continue
            scored.append(
                CandidateScore(
                    transaction=txn,
                    overlap=token_overlap(receipt.vendor, txn.description),
                    date_distance=distance,
                )
            )

        scored.sort(key=lambda s: s.sort_key)
        return scored

    def find_best_match(
        self,
        receipt: ReceiptRecord,
        candidates: list[TransactionRecord],
    ) -> TransactionRecord | None:
        """Run candidate reduction against one tier.

        Returns:
            The uniquely best transaction, or None if there is no survivor
            or the top candidates are tied.
        """
        ranked = self.rank_candidates(receipt, candidates)
        if not ranked:
            return None

        best = ranked[0]
        if len(ranked) > 1 and ranked[1].ties(best):
            logger.debug(
                "Receipt %d ambiguous: transactions %d and %d tie (overlap=%d, days=%d)",
                receipt.id,
                best.transaction.id,
                ranked[1].transaction.id,
                best.overlap,
                best.date_distance,
            )
            return None

        return best.transaction

    def _has_survivors(self, receipt: ReceiptRecord, candidates: list[TransactionRecord]) -> bool:
        return bool(self.rank_candidates(receipt, candidates))

    def match_receipt(self, receipt_id: int, scope: str | None = None) -> MatchOutcome:
        """Link one receipt to its best transaction, if any.

        Args:
            receipt_id: Receipt to match.
            scope: Optional scope restriction (receipts outside it are not found).

        Returns:
            Matched (tier 1 or 2; tier 0 if the receipt was already linked)
            or Unmatched with the reason.
        """
        receipt = self.store.get_receipt(receipt_id, scope=scope)
        if receipt is None:
            return Unmatched(receipt_id=receipt_id, reason=UnmatchedReason.NOT_FOUND)

        if not receipt.is_matchable:
            logger.debug("Receipt %d has no amount/date, nothing to match on", receipt_id)
            return Unmatched(receipt_id=receipt_id, reason=UnmatchedReason.INCOMPLETE)

        with self.store.scope_lock(receipt.scope):
            # Re-read under the lock: a concurrent action may have linked it
            receipt = self.store.get_receipt(receipt_id, scope=receipt.scope)
            if receipt is None:
                return Unmatched(receipt_id=receipt_id, reason=UnmatchedReason.NOT_FOUND)
            if receipt.transaction_id is not None:
                return Matched(receipt_id=receipt_id, transaction_id=receipt.transaction_id, tier=0)

            ambiguous = False
            for tier, documented in (
                (TIER_UNDOCUMENTED, False),
                (TIER_DOCUMENTED, True),
            ):
                pool = self.store.get_candidate_transactions(receipt.scope, documented=documented)
                best = self.find_best_match(receipt, pool)
                if best is not None:
                    self.store.link_receipt(receipt_id, best.id)
                    logger.info(
                        "Linked receipt %d (%s, %s, %d) -> transaction %d '%s' (tier %d)",
                        receipt_id,
                        receipt.vendor,
                        receipt.receipt_date,
                        receipt.total_cents,
                        best.id,
                        best.description,
                        tier,
                    )
                    return Matched(receipt_id=receipt_id, transaction_id=best.id, tier=tier)
                if self._has_survivors(receipt, pool):
                    ambiguous = True

        reason = UnmatchedReason.AMBIGUOUS if ambiguous else UnmatchedReason.NO_CANDIDATE
        logger.debug("Receipt %d left unmatched (%s)", receipt_id, reason.value)
        return Unmatched(receipt_id=receipt_id, reason=reason)

    def match_receipt_id(self, receipt_id: int) -> int | None:
        """Match a receipt and return the linked transaction ID (or None)."""
        outcome = self.match_receipt(receipt_id)
        return outcome.transaction_id if isinstance(outcome, Matched) else None

    def match_orphans(self, scope: str) -> list[Matched]:
        """Sweep every orphaned receipt in scope through the engine.

        Receipts are processed one at a time, oldest first, so earlier
        links move their transactions into tier 2 before later receipts
        are considered.

        Returns:
            The links made by this sweep.
        """
        linked: list[Matched] = []
        with self.store.scope_lock(scope):
            for orphan in self.store.get_orphan_receipts(scope, oldest_first=True):
                if not orphan.is_matchable:
                    continue
                outcome = self.match_receipt(orphan.id, scope=scope)
                if isinstance(outcome, Matched) and outcome.tier > 0:
                    linked.append(outcome)

        if linked:
            logger.info("Orphan sweep in scope '%s' linked %d receipts", scope, len(linked))
        return linked
