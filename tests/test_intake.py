"""Tests for the receipt intake service."""

import threading
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import responses

from receipt_recon.extractors import MistralOCRClient, OCRConnectionError, ReceiptExtraction
from receipt_recon.schemas.outcomes import DuplicateImage, Ingested
from receipt_recon.services import (
    ReceiptIntake,
    ReceiptLinkedError,
    ReceiptNotFoundError,
    TransactionNotFoundError,
)
from receipt_recon.state_store import ReceiptSource

SCOPE = "household"

IMAGE = b"\xff\xd8\xff\xe0" + b"receipt-jpeg-bytes" * 100
OTHER_IMAGE = b"\xff\xd8\xff\xe0" + b"another-receipt" * 100


def fake_ocr(vendor="Chipotle", date="02/19/2024", total="$44.04"):
    ocr = MagicMock()
    ocr.analyze_image.return_value = ReceiptExtraction(vendor=vendor, date=date, total=total)
    return ocr


@pytest.fixture
def ocr_intake(store, engine, uploads_dir):
    """Intake whose OCR always reads the Chipotle receipt."""
    return ReceiptIntake(store, engine, uploads_dir, ocr_client=fake_ocr())


@pytest.fixture
def ledger(importer, sample_statement):
    """Scope with the DUNKIN / CHIPOTLE statement imported."""
    importer.import_statement(SCOPE, sample_statement, "feb.csv")


class TestIngestImage:
    """Image receipts and the Ingestion Guard."""

    def test_scenario(self, ocr_intake, store, ledger):
        """The Chipotle receipt links to the Chipotle line."""
        outcome = ocr_intake.ingest_image(SCOPE, IMAGE, "IMG_0042.JPG")

        assert isinstance(outcome, Ingested)
        assert outcome.matched
        txn = store.get_transaction(SCOPE, outcome.transaction_id)
        assert txn.description == "CHIPOTLE MEX GR"
        stats = store.get_stats(SCOPE)
        assert stats.with_documentation == 1
        assert stats.missing == 1

    def test_fields_normalized(self, ocr_intake, store):
        outcome = ocr_intake.ingest_image(SCOPE, IMAGE, "IMG_0042.JPG")

        receipt = store.get_receipt(outcome.receipt_id)
        assert receipt.vendor == "Chipotle"
        assert receipt.receipt_date == "2024-02-19"
        assert receipt.total_cents == 4404
        assert receipt.total_text == "$44.04"
        assert receipt.source is ReceiptSource.UPLOAD
        assert not outcome.matched

    def test_image_written_with_uuid_name(self, ocr_intake, store, uploads_dir):
        outcome = ocr_intake.ingest_image(SCOPE, IMAGE, "IMG_0042.JPG")

        receipt = store.get_receipt(outcome.receipt_id)
        path = Path(receipt.image_path)
        assert path.parent == uploads_dir
        assert path.read_bytes() == IMAGE
        assert path.suffix == ".jpg"
        assert path.stem != "IMG_0042"

    def test_duplicate_image(self, ocr_intake, uploads_dir):
        """Same bytes again: no new record, no new file, OCR not called again."""
        first = ocr_intake.ingest_image(SCOPE, IMAGE, "a.jpg")
        second = ocr_intake.ingest_image(SCOPE, IMAGE, "b.jpg")

        assert second == DuplicateImage(existing_receipt_id=first.receipt_id)
        assert len(list(uploads_dir.iterdir())) == 1
        assert ocr_intake.ocr.analyze_image.call_count == 1

    def test_duplicate_image_other_scope(self, ocr_intake):
        ocr_intake.ingest_image("a", IMAGE, "a.jpg")
        assert isinstance(ocr_intake.ingest_image("b", IMAGE, "a.jpg"), Ingested)

    def test_race_discards_artifact(self, store, engine, uploads_dir):
        """Losing the insert race deletes the image that was already written."""
        intake = ReceiptIntake(store, engine, uploads_dir, ocr_client=fake_ocr())
        barrier = threading.Barrier(2)
        outcomes = []

        # Both callers pass the fast-path lookup before either inserts
        original_lookup = store.find_receipt_by_image_hash
        calls = {"n": 0}

        def lookup(scope, image_sha256):
            calls["n"] += 1
            if calls["n"] <= 2:
                barrier.wait()
                return None
            return original_lookup(scope, image_sha256)

        store.find_receipt_by_image_hash = lookup

        def worker():
            outcomes.append(intake.ingest_image(SCOPE, IMAGE, "race.jpg"))

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(type(o).__name__ for o in outcomes) == ["DuplicateImage", "Ingested"]
        assert len(store.get_orphan_receipts(SCOPE)) == 1
        assert len(list(uploads_dir.iterdir())) == 1

    def test_content_collision_advisory(self, store, engine, uploads_dir):
        """Different image, same date and amount: stored, with an advisory."""
        intake = ReceiptIntake(store, engine, uploads_dir, ocr_client=fake_ocr())
        first = intake.ingest_image(SCOPE, IMAGE, "a.jpg")
        second = intake.ingest_image(SCOPE, OTHER_IMAGE, "b.jpg")

        assert isinstance(second, Ingested)
        assert second.receipt_id != first.receipt_id
        assert [c.receipt_id for c in second.collisions] == [first.receipt_id]
        assert second.collisions[0].total_cents == 4404
        assert first.collisions == ()

    def test_ocr_failure_stores_inert_receipt(self, store, engine, uploads_dir, ledger):
        ocr = MagicMock()
        ocr.analyze_image.side_effect = OCRConnectionError("down")
        intake = ReceiptIntake(store, engine, uploads_dir, ocr_client=ocr)

        outcome = intake.ingest_image(SCOPE, IMAGE, "a.jpg")

        receipt = store.get_receipt(outcome.receipt_id)
        assert receipt.vendor is None
        assert receipt.total_cents is None
        assert receipt.is_orphan
        assert receipt.image_sha256 is not None

    @pytest.mark.parametrize("total", ["1E30", "99999999999999999999.99"])
    def test_unstorable_total_stored_without_amount(self, store, engine, uploads_dir, total):
        intake = ReceiptIntake(store, engine, uploads_dir, ocr_client=fake_ocr(total=total))

        outcome = intake.ingest_image(SCOPE, IMAGE, "a.jpg")

        assert isinstance(outcome, Ingested)
        receipt = store.get_receipt(outcome.receipt_id)
        assert receipt.total_cents is None
        assert receipt.total_text == total
        assert receipt.vendor == "Chipotle"

    def test_no_ocr_configured(self, intake, store):
        outcome = intake.ingest_image(SCOPE, IMAGE, "a.jpg")
        assert not store.get_receipt(outcome.receipt_id).is_matchable

    def test_unparseable_fields(self, store, engine, uploads_dir):
        intake = ReceiptIntake(
            store, engine, uploads_dir, ocr_client=fake_ocr(date="someday", total="lots")
        )
        outcome = intake.ingest_image(SCOPE, IMAGE, "a.jpg")

        receipt = store.get_receipt(outcome.receipt_id)
        assert receipt.receipt_date is None
        assert receipt.total_cents is None
        assert receipt.total_text == "lots"


class TestIngestText:
    def test_text_receipt_matched(self, intake, store, ledger, sample_email_receipt):
        outcome = intake.ingest_text(
            SCOPE,
            sample_email_receipt,
            sender='"Chipotle" <receipts@chipotle.com>',
            external_link="https://mail.google.com/mail/u/0/#search/rfc822msgid:abc",
        )

        assert outcome.matched
        receipt = store.get_receipt(outcome.receipt_id)
        assert receipt.source is ReceiptSource.EMAIL
        assert receipt.image_sha256 is None
        assert receipt.external_link.endswith("rfc822msgid:abc")

    def test_same_text_twice_collides_but_stores(self, intake, store, sample_email_receipt):
        first = intake.ingest_text(SCOPE, sample_email_receipt)
        second = intake.ingest_text(SCOPE, sample_email_receipt)

        assert second.receipt_id != first.receipt_id
        assert [c.receipt_id for c in second.collisions] == [first.receipt_id]


class TestManualOperations:
    """Assign, unlink, delete, correct and flags."""

    @pytest.fixture
    def linked(self, ocr_intake, ledger):
        outcome = ocr_intake.ingest_image(SCOPE, IMAGE, "a.jpg")
        assert outcome.matched
        return outcome

    def test_unlink_keeps_receipt(self, ocr_intake, store, linked):
        assert ocr_intake.unlink(SCOPE, linked.receipt_id) is True

        receipt = store.get_receipt(linked.receipt_id)
        assert receipt is not None
        assert receipt.is_orphan
        assert ocr_intake.unlink(SCOPE, linked.receipt_id) is False

    def test_delete_linked_refused(self, ocr_intake, store, linked):
        """Deleting a linked receipt needs explicit intent."""
        with pytest.raises(ReceiptLinkedError):
            ocr_intake.delete(SCOPE, linked.receipt_id)

        assert store.get_receipt(linked.receipt_id) is not None

    def test_delete_force_removes_image(self, ocr_intake, store, linked, uploads_dir):
        ocr_intake.delete(SCOPE, linked.receipt_id, force=True)

        assert store.get_receipt(linked.receipt_id) is None
        assert list(uploads_dir.iterdir()) == []
        assert store.get_stats(SCOPE).with_documentation == 0

    def test_delete_orphan(self, ocr_intake, store, uploads_dir):
        outcome = ocr_intake.ingest_image(SCOPE, IMAGE, "a.jpg")
        deleted = ocr_intake.delete(SCOPE, outcome.receipt_id)

        assert deleted.id == outcome.receipt_id
        assert list(uploads_dir.iterdir()) == []

    def test_deleted_bytes_can_be_ingested_again(self, ocr_intake):
        outcome = ocr_intake.ingest_image(SCOPE, IMAGE, "a.jpg")
        ocr_intake.delete(SCOPE, outcome.receipt_id)

        assert isinstance(ocr_intake.ingest_image(SCOPE, IMAGE, "a.jpg"), Ingested)

    def test_not_found(self, ocr_intake):
        with pytest.raises(ReceiptNotFoundError):
            ocr_intake.unlink(SCOPE, 999)
        with pytest.raises(ReceiptNotFoundError):
            ocr_intake.delete(SCOPE, 999)

    def test_wrong_scope_not_found(self, ocr_intake, linked):
        with pytest.raises(ReceiptNotFoundError):
            ocr_intake.delete("other", linked.receipt_id, force=True)

    def test_assign(self, ocr_intake, store, linked):
        dunkin = store.get_transactions(SCOPE, search="DUNKIN")[0]

        receipt = ocr_intake.assign(SCOPE, linked.receipt_id, dunkin.id)

        assert receipt.transaction_id == dunkin.id

    def test_assign_unknown_transaction(self, ocr_intake, linked):
        with pytest.raises(TransactionNotFoundError):
            ocr_intake.assign(SCOPE, linked.receipt_id, 999)

    def test_correct_orphan_rematches(self, store, engine, uploads_dir, ledger):
        intake = ReceiptIntake(store, engine, uploads_dir)
        outcome = intake.ingest_image(SCOPE, IMAGE, "a.jpg")
        assert not outcome.matched

        corrected = intake.correct(SCOPE, outcome.receipt_id, "Dunkin", "02/18/2024", "$6.39")

        txn = store.get_transaction(SCOPE, corrected.transaction_id)
        assert txn.description == "DUNKIN #344563"
        assert store.get_receipt(outcome.receipt_id).total_cents == 639

    def test_correct_linked_keeps_link(self, ocr_intake, store, linked):
        corrected = ocr_intake.correct(SCOPE, linked.receipt_id, "Chipotle", "02/19/2024", "$44.05")

        assert corrected.transaction_id == linked.transaction_id
        assert store.get_receipt(linked.receipt_id).total_cents == 4405

    def test_exempt(self, intake, store, ledger):
        dunkin = store.get_transactions(SCOPE, search="DUNKIN")[0]

        intake.set_receipt_required(SCOPE, dunkin.id, False)

        assert store.get_stats(SCOPE).exempt == 1
        assert store.get_stats(SCOPE).missing == 1
        with pytest.raises(TransactionNotFoundError):
            intake.set_receipt_required(SCOPE, 999, False)

    def test_toggle_verified(self, intake, store, ledger):
        txn = store.get_transactions(SCOPE)[0]

        assert intake.toggle_verified(SCOPE, txn.id) is True
        assert intake.toggle_verified(SCOPE, txn.id) is False
        with pytest.raises(TransactionNotFoundError):
            intake.toggle_verified(SCOPE, 999)


class TestOCRFieldTypes:
    """Whatever shape the OCR annotation takes, the receipt is stored."""

    @responses.activate
    def test_numeric_total_from_ocr(self, store, engine, uploads_dir, ledger):
        responses.add(
            responses.POST,
            "https://api.mistral.ai/v1/ocr",
            json={
                "document_annotation": {"vendor": "Chipotle", "date": "02/19/2024", "total": 44.04}
            },
            status=200,
        )
        intake = ReceiptIntake(store, engine, uploads_dir, ocr_client=MistralOCRClient("key"))

        outcome = intake.ingest_image(SCOPE, IMAGE, "a.jpg")

        assert outcome.matched
        assert store.get_receipt(outcome.receipt_id).total_cents == 4404

    @responses.activate
    def test_non_object_response_stores_inert_receipt(self, store, engine, uploads_dir):
        responses.add(responses.POST, "https://api.mistral.ai/v1/ocr", json=[1, 2], status=200)
        intake = ReceiptIntake(store, engine, uploads_dir, ocr_client=MistralOCRClient("key"))

        outcome = intake.ingest_image(SCOPE, IMAGE, "a.jpg")

        receipt = store.get_receipt(outcome.receipt_id)
        assert receipt.total_cents is None
        assert receipt.vendor is None
