"""Statement import service.

Turns raw statement bytes into ledger transactions exactly once per file
and once per row:

1. File fingerprint: a byte-identical file already imported in the scope is
   rejected before parsing
2. Parse and validate rows (malformed rows are skipped, never fatal)
3. Insert the statement and its rows in one unit of work; rows already in
   the scope's ledger are counted as skipped
4. Sweep orphaned receipts through the matching engine, since the new
   transactions may be what they were waiting for
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..config import StatementConfig
from ..schemas.fingerprint import file_fingerprint
from ..schemas.outcomes import DuplicateStatement, EmptyStatement, Imported, ImportOutcome
from ..state_store import DuplicateStatementError
from ..statements import parse_statement

if TYPE_CHECKING:
    from ..matching import MatchingEngine
    from ..state_store import ReconciliationStore

logger = logging.getLogger(__name__)


class StatementImporter:
    """Imports bank statement files into a scope's ledger.

    Usage:
        importer = StatementImporter(store, engine, config.statement)
        outcome = importer.import_statement("household", raw_bytes, "feb.csv")
    """

    def __init__(
        self,
        state_store: ReconciliationStore,
        matching_engine: MatchingEngine,
        layout: StatementConfig | None = None,
    ) -> None:
        self.store = state_store
        self.engine = matching_engine
        self.layout = layout or StatementConfig()

    def _duplicate(self, scope: str, file_sha256: str) -> DuplicateStatement | None:
        existing = self.store.find_statement_by_hash(scope, file_sha256)
        if existing is None:
            return None
        logger.info(
            "Statement already imported in scope '%s' as #%d (%s), skipping",
            scope,
            existing.id,
            existing.filename,
        )
        return DuplicateStatement(statement_id=existing.id)

    def import_statement(self, scope: str, raw_bytes: bytes, display_name: str) -> ImportOutcome:
        """Import one statement file.

        Args:
            scope: Ledger the statement belongs to.
            raw_bytes: File content exactly as uploaded.
            display_name: Original filename (informational only).

        Returns:
            Imported, DuplicateStatement or EmptyStatement.

        Raises:
            StatementReadError: If the bytes cannot be decoded as text.
        """
        file_sha256 = file_fingerprint(raw_bytes)

        duplicate = self._duplicate(scope, file_sha256)
        if duplicate is not None:
            return duplicate

        parsed = parse_statement(raw_bytes, self.layout)
        if parsed.is_empty:
            logger.info("Statement '%s' has no data rows, nothing imported", display_name)
            return EmptyStatement()

        with self.store.scope_lock(scope):
            try:
                statement_id, inserted, ignored = self.store.import_statement(
                    scope=scope,
                    filename=display_name,
                    file_sha256=file_sha256,
                    rows=parsed.rows,
                )
            except DuplicateStatementError as e:
                # Lost a race with a concurrent import of the same bytes
                logger.info("Statement '%s' imported concurrently, skipping", display_name)
                return DuplicateStatement(statement_id=e.existing_statement_id or 0)

            matched = self.engine.match_orphans(scope)

        skipped = parsed.rows_skipped + ignored
        logger.info(
            "Imported statement '%s' into scope '%s': %d rows, %d skipped, %d receipts matched",
            display_name,
            scope,
            inserted,
            skipped,
            len(matched),
        )
        return Imported(
            statement_id=statement_id,
            rows_imported=inserted,
            rows_skipped=skipped,
            receipts_matched=len(matched),
        )
