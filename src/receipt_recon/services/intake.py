"""Receipt intake service.

Receipts enter the ledger from two sources: uploaded/emailed images (OCR)
and emailed text bodies (heuristics). Both paths end the same way:

1. Insert the receipt unlinked. The store rejects a second copy of the
   same image bytes in a scope (Ingestion Guard)
2. Look for existing receipts with the same extracted date and amount.
   These are reported as advisories, never blocked (Content Guard)
3. Forward match against the ledger

Manual operations (assign, unlink, delete, correct, exempt, verify) live
here as well so every mutation of a receipt goes through one place.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

from ..extractors import (
    BaseReceiptExtractor,
    OCRError,
    ReceiptExtraction,
    TextReceiptExtractor,
)
from ..schemas.fingerprint import content_fingerprint, image_fingerprint
from ..schemas.normalize import parse_cents, parse_receipt_date
from ..schemas.outcomes import (
    ContentCollision,
    DuplicateImage,
    Ingested,
    IngestOutcome,
    Matched,
)
from ..state_store import DuplicateImageError, ReceiptRecord, ReceiptSource

if TYPE_CHECKING:
    from ..extractors import MistralOCRClient
    from ..matching import MatchingEngine
    from ..state_store import ReconciliationStore

logger = logging.getLogger(__name__)


class IntakeError(Exception):
    """Base exception for manual receipt operations."""

    pass


class ReceiptNotFoundError(IntakeError):
    """No receipt with this ID in the scope."""

    def __init__(self, scope: str, receipt_id: int):
        self.scope = scope
        self.receipt_id = receipt_id
        super().__init__(f"Receipt {receipt_id} not found in scope '{scope}'")


class TransactionNotFoundError(IntakeError):
    """No transaction with this ID in the scope."""

    def __init__(self, scope: str, transaction_id: int):
        self.scope = scope
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} not found in scope '{scope}'")


class ReceiptLinkedError(IntakeError):
    """Destructive operation refused on a linked receipt."""

    def __init__(self, receipt_id: int, transaction_id: int):
        self.receipt_id = receipt_id
        self.transaction_id = transaction_id
        super().__init__(
            f"Receipt {receipt_id} is linked to transaction {transaction_id}; "
            "unlink it first or force the delete"
        )


class ReceiptIntake:
    """Stores receipts, raises guard advisories and triggers matching.

    Usage:
        intake = ReceiptIntake(store, engine, config.storage.uploads_dir, ocr_client)
        outcome = intake.ingest_image("household", image_bytes, "IMG_0042.jpg")
    """

    def __init__(
        self,
        state_store: ReconciliationStore,
        matching_engine: MatchingEngine,
        uploads_dir: Path | str,
        ocr_client: MistralOCRClient | None = None,
        text_extractor: BaseReceiptExtractor | None = None,
    ) -> None:
        """Initialize the intake service.

        Args:
            state_store: Reconciliation store.
            matching_engine: Engine used for the forward match.
            uploads_dir: Directory receiving stored receipt images.
            ocr_client: Image extractor; without one, images are stored
                with empty fields for manual correction.
            text_extractor: Extractor for text receipts.
        """
        self.store = state_store
        self.engine = matching_engine
        self.uploads_dir = Path(uploads_dir)
        self.ocr = ocr_client
        self.text_extractor = text_extractor or TextReceiptExtractor()

    # Extraction

    def _extract_image(self, image_bytes: bytes, filename: str) -> ReceiptExtraction:
        if self.ocr is None:
            logger.debug("No OCR client configured, storing '%s' without fields", filename)
            return ReceiptExtraction.empty()
        try:
            return self.ocr.analyze_image(image_bytes, filename)
        except OCRError as e:
            logger.warning("OCR failed for '%s': %s", filename, e)
            return ReceiptExtraction.empty()

    def _write_artifact(self, image_bytes: bytes, filename: str) -> Path:
        """Write image bytes under a fresh UUID name, keeping the extension."""
        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        path = self.uploads_dir / f"{uuid.uuid4()}{Path(filename).suffix.lower()}"
        path.write_bytes(image_bytes)
        return path

    # Guards and matching

    def _content_collisions(
        self,
        scope: str,
        receipt_id: int,
        receipt_date: str | None,
        total_cents: int | None,
    ) -> tuple[ContentCollision, ...]:
        content_sha256 = content_fingerprint(receipt_date, total_cents)
        if content_sha256 is None:
            return ()

        duplicates = self.store.find_content_duplicates(
            scope, content_sha256, exclude_receipt_id=receipt_id
        )
        if duplicates:
            logger.warning(
                "Receipt %d has the same date and amount as receipt(s) %s",
                receipt_id,
                ", ".join(str(r.id) for r in duplicates),
            )
        return tuple(
            ContentCollision(
                receipt_id=r.id,
                vendor=r.vendor,
                receipt_date=r.receipt_date,
                total_cents=r.total_cents,
            )
            for r in duplicates
        )

    def _forward_match(self, scope: str, receipt_id: int) -> int | None:
        outcome = self.engine.match_receipt(receipt_id, scope=scope)
        return outcome.transaction_id if isinstance(outcome, Matched) else None

    def _store(
        self,
        scope: str,
        extraction: ReceiptExtraction,
        source: ReceiptSource | str,
        external_link: str,
        image_path: Path | None = None,
        image_sha256: str | None = None,
    ) -> Ingested:
        receipt_date = parse_receipt_date(extraction.date)
        total_cents = parse_cents(extraction.total)
        if extraction.date and receipt_date is None:
            logger.warning("Unrecognised receipt date %r, stored without date", extraction.date)
        if extraction.total and total_cents is None:
            logger.warning("Unrecognised receipt total %r, stored without amount", extraction.total)

        receipt_id = self.store.insert_receipt(
            scope=scope,
            vendor=extraction.vendor,
            receipt_date=receipt_date,
            total_cents=total_cents,
            total_text=extraction.total,
            image_path=str(image_path) if image_path else None,
            image_sha256=image_sha256,
            source=ReceiptSource(source),
            external_link=external_link,
        )

        collisions = self._content_collisions(scope, receipt_id, receipt_date, total_cents)
        transaction_id = self._forward_match(scope, receipt_id)

        logger.info(
            "Stored receipt %d in scope '%s' (%s, %s, %s)%s",
            receipt_id,
            scope,
            extraction.vendor,
            receipt_date,
            extraction.total,
            f" -> transaction {transaction_id}" if transaction_id else " as orphan",
        )
        return Ingested(receipt_id=receipt_id, transaction_id=transaction_id, collisions=collisions)

    # Ingestion

    def ingest_image(
        self,
        scope: str,
        image_bytes: bytes,
        filename: str,
        source: ReceiptSource | str = ReceiptSource.UPLOAD,
        external_link: str = "",
    ) -> IngestOutcome:
        """Store a receipt image, extract its fields and match it.

        Returns:
            Ingested, or DuplicateImage if these exact bytes are already
            stored in the scope (the new bytes are discarded).
        """
        image_sha256 = image_fingerprint(image_bytes)

        # Fast path to avoid a paid OCR call; the insert below still decides
        existing = self.store.find_receipt_by_image_hash(scope, image_sha256)
        if existing is not None:
            logger.info("Image '%s' already stored as receipt %d, skipping", filename, existing.id)
            return DuplicateImage(existing_receipt_id=existing.id)

        extraction = self._extract_image(image_bytes, filename)
        image_path = self._write_artifact(image_bytes, filename)

        try:
            return self._store(
                scope,
                extraction,
                source=source,
                external_link=external_link,
                image_path=image_path,
                image_sha256=image_sha256,
            )
        except DuplicateImageError as e:
            image_path.unlink(missing_ok=True)
            logger.info(
                "Image '%s' stored concurrently as receipt %s, skipping",
                filename,
                e.existing_receipt_id,
            )
            return DuplicateImage(existing_receipt_id=e.existing_receipt_id or 0)
        except Exception:
            image_path.unlink(missing_ok=True)
            raise

    def ingest_text(
        self,
        scope: str,
        text: str,
        sender: str | None = None,
        source: ReceiptSource | str = ReceiptSource.EMAIL,
        external_link: str = "",
    ) -> Ingested:
        """Store a text receipt (e.g. an emailed order confirmation) and match it.

        Text receipts carry no image, so only the Content Guard applies.
        """
        extraction = self.text_extractor.extract(text, sender=sender)
        return self._store(scope, extraction, source=source, external_link=external_link)

    # Manual operations

    def _require_receipt(self, scope: str, receipt_id: int) -> ReceiptRecord:
        receipt = self.store.get_receipt(receipt_id, scope=scope)
        if receipt is None:
            raise ReceiptNotFoundError(scope, receipt_id)
        return receipt

    def assign(self, scope: str, receipt_id: int, transaction_id: int) -> ReceiptRecord:
        """Link a receipt to a transaction by hand (moves an existing link)."""
        with self.store.scope_lock(scope):
            self._require_receipt(scope, receipt_id)
            if self.store.get_transaction(scope, transaction_id, with_receipts=False) is None:
                raise TransactionNotFoundError(scope, transaction_id)
            self.store.link_receipt(receipt_id, transaction_id)
            logger.info("Receipt %d manually linked to transaction %d", receipt_id, transaction_id)
            return self._require_receipt(scope, receipt_id)

    def unlink(self, scope: str, receipt_id: int) -> bool:
        """Detach a receipt from its transaction; the receipt is kept as an orphan.

        Returns:
            False if the receipt was already orphaned.
        """
        with self.store.scope_lock(scope):
            receipt = self._require_receipt(scope, receipt_id)
            if receipt.is_orphan:
                return False
            self.store.unlink_receipt(receipt_id)
            logger.info(
                "Receipt %d unlinked from transaction %d", receipt_id, receipt.transaction_id
            )
            return True

    def delete(self, scope: str, receipt_id: int, force: bool = False) -> ReceiptRecord:
        """Remove a receipt and its stored image.

        Raises:
            ReceiptLinkedError: If the receipt is linked and force is False.
        """
        with self.store.scope_lock(scope):
            receipt = self._require_receipt(scope, receipt_id)
            if receipt.transaction_id is not None and not force:
                raise ReceiptLinkedError(receipt_id, receipt.transaction_id)
            deleted = self.store.delete_receipt(receipt_id) or receipt

        if deleted.image_path:
            Path(deleted.image_path).unlink(missing_ok=True)
        logger.info("Receipt %d deleted from scope '%s'", receipt_id, scope)
        return deleted

    def correct(
        self,
        scope: str,
        receipt_id: int,
        vendor: str | None,
        date: str | None,
        total: str | None,
    ) -> Ingested:
        """Replace a receipt's extracted fields.

        An orphaned receipt is run through the forward match again; a linked
        one keeps its link.
        """
        with self.store.scope_lock(scope):
            receipt = self._require_receipt(scope, receipt_id)
            receipt_date = parse_receipt_date(date)
            total_cents = parse_cents(total)
            self.store.update_receipt_fields(
                receipt_id,
                vendor=vendor,
                receipt_date=receipt_date,
                total_cents=total_cents,
                total_text=total,
            )
            logger.info("Receipt %d corrected (%s, %s, %s)", receipt_id, vendor, receipt_date, total)

            collisions = self._content_collisions(scope, receipt_id, receipt_date, total_cents)
            if receipt.is_orphan:
                transaction_id = self._forward_match(scope, receipt_id)
            else:
                transaction_id = receipt.transaction_id

        return Ingested(receipt_id=receipt_id, transaction_id=transaction_id, collisions=collisions)

    def set_receipt_required(self, scope: str, transaction_id: int, value: bool) -> None:
        """Mark a transaction as needing a receipt (True) or exempt (False)."""
        if not self.store.set_receipt_required(scope, transaction_id, value):
            raise TransactionNotFoundError(scope, transaction_id)
        logger.info(
            "Transaction %d %s", transaction_id, "requires a receipt" if value else "marked exempt"
        )

    def toggle_verified(self, scope: str, transaction_id: int) -> bool:
        """Flip the reviewer's verified flag. Returns the new value."""
        with self.store.scope_lock(scope):
            txn = self.store.get_transaction(scope, transaction_id, with_receipts=False)
            if txn is None:
                raise TransactionNotFoundError(scope, transaction_id)
            self.store.set_verified(scope, transaction_id, not txn.verified)
        logger.info("Transaction %d verified=%s", transaction_id, not txn.verified)
        return not txn.verified
