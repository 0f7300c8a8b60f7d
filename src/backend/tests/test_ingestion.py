"""
Tests for the signed document pipeline: render, map, OCR, decide, write.
"""

import pytest
from unittest.mock import MagicMock, Mock

from conftest import FakePage, FakePdfEngine, PDF_BYTES
from workorder_engine.models.decision import ConfidenceLabel, DecisionReason, ExtractionResult
from workorder_engine.models.work_order import IssuerProfile, TemplateRegion
from workorder_engine.services.ingestion import (
    CONFIRMED,
    DUPLICATE,
    FAILED,
    NEEDS_REVIEW,
    SignedDocumentProcessor,
)
from workorder_engine.services.record_writer import INSERTED
from workorder_engine.services.review_queue import ReviewQueue

HEADER_REGION = TemplateRegion(page=1, x_pct=0.6, y_pct=0.05, w_pct=0.3, h_pct=0.05)
ACME = IssuerProfile(issuer_key="acme", domain_patterns="acme.com", template_region=HEADER_REGION, expected_digits=7)


def _extraction(identifier="1234567", label=ConfidenceLabel.HIGH, raw=0.95):
    return ExtractionResult(identifier_text=identifier, confidence_label=label, confidence_raw=raw,
                            raw_text=f"WO# {identifier}" if identifier else "")


@pytest.fixture
def services():
    store = Mock()
    store.find_by_file_hash.return_value = None
    store.find_by_key.return_value = None
    store.find_by_identifier.return_value = None
    store.upsert.return_value = {}
    store.existence_lookup.return_value = "acme:1234567"

    queue = Mock()
    queue.build_entry.side_effect = ReviewQueue(supabase=MagicMock()).build_entry
    queue.enqueue.return_value = "entry-1"

    profiles = Mock()
    profiles.list_profiles.return_value = [ACME]
    profiles.get_profile.return_value = ACME

    storage = Mock()
    storage.calculate_file_hash.return_value = "abc123"
    storage.upload_signed_artifacts.return_value = ("acme/ab/abc123/signed.pdf", "acme/ab/abc123/identifier_region.png")

    ocr = Mock()
    ocr.extract_identifier.return_value = _extraction()

    return {
        'work_order_store': store,
        'review_queue': queue,
        'profile_store': profiles,
        'storage': storage,
        'ocr_service': ocr,
    }


def _processor(services, engine=None):
    engine = engine or FakePdfEngine([FakePage(crop=(0, 0, 612, 792))])
    return SignedDocumentProcessor(engine, **services)


def _queued_entry(services):
    return services['review_queue'].enqueue.call_args.args[0]


class TestProcessDocument:
    """One document, one terminal state."""

    def test_confirmed_uploads_then_writes(self, services):
        """A matched work order gets artifacts and a SIGNED update."""
        result = _processor(services).process_document(PDF_BYTES, "signed.pdf", sender="dispatch@acme.com")

        assert result['status'] == CONFIRMED
        assert result['issuer_key'] == "acme"
        assert result['write_action'] == INSERTED
        assert result['record_key'] == "acme:1234567"
        services['storage'].upload_signed_artifacts.assert_called_once()
        written = services['work_order_store'].upsert.call_args.args[0]
        assert written['status'] == "SIGNED"
        assert written['signed_file_hash'] == "abc123"
        services['review_queue'].enqueue.assert_not_called()

    def test_crop_is_sent_to_ocr(self, services):
        """OCR receives a PNG crop and the issuer's identifier rule."""
        _processor(services).process_document(PDF_BYTES, "signed.pdf", issuer_key="acme")

        args, kwargs = services['ocr_service'].extract_identifier.call_args
        assert args[0].startswith(b"\x89PNG")
        assert kwargs['expected_digits'] == 7

    def test_no_identifier_never_uploads(self, services):
        """No identifier: review entry, no artifact upload."""
        services['ocr_service'].extract_identifier.return_value = _extraction(None)

        result = _processor(services).process_document(PDF_BYTES, "signed.pdf", issuer_key="acme")

        assert result['status'] == NEEDS_REVIEW
        assert result['reason'] == DecisionReason.NO_IDENTIFIER_EXTRACTED.value
        services['storage'].upload_signed_artifacts.assert_not_called()
        services['work_order_store'].upsert.assert_not_called()

    def test_original_not_found(self, services):
        """Unknown work orders are queued as blocked with the raw score kept."""
        services['ocr_service'].extract_identifier.return_value = _extraction("9999999")
        services['work_order_store'].existence_lookup.return_value = None

        result = _processor(services).process_document(PDF_BYTES, "signed.pdf", issuer_key="acme")

        assert result['reason'] == DecisionReason.ORIGINAL_NOT_FOUND.value
        entry = _queued_entry(services)
        assert entry['decision_reason'] == "OriginalNotFound"
        assert entry['confidence_label'] == "blocked"
        assert entry['ocr_confidence_label'] == "high"
        assert entry['confidence_raw'] == 0.95
        assert entry['identifier'] == "9999999"
        services['storage'].upload_signed_artifacts.assert_not_called()

    def test_no_matching_profile(self, services):
        """No issuer profile: TemplateNotConfigured, nothing rendered."""
        services['profile_store'].list_profiles.return_value = []

        result = _processor(services).process_document(PDF_BYTES, "signed.pdf", sender="ops@globex.com")

        assert result['reason'] == DecisionReason.TEMPLATE_NOT_CONFIGURED.value
        services['ocr_service'].extract_identifier.assert_not_called()

    def test_profile_without_region(self, services):
        """A profile with no template region is queued for configuration."""
        services['profile_store'].get_profile.return_value = IssuerProfile(issuer_key="acme")

        result = _processor(services).process_document(PDF_BYTES, "signed.pdf", issuer_key="acme")

        assert result['reason'] == DecisionReason.TEMPLATE_NOT_CONFIGURED.value
        assert _queued_entry(services)['issuer_key'] == "acme"

    def test_render_failure_is_queued(self, services):
        """A page without a valid box becomes RenderingFailed."""
        result = _processor(services, FakePdfEngine([FakePage()])).process_document(
            PDF_BYTES, "signed.pdf", issuer_key="acme"
        )

        assert result['status'] == NEEDS_REVIEW
        assert result['reason'] == DecisionReason.RENDERING_FAILED.value
        assert "NO_VALID_PAGE_BOX" in _queued_entry(services)['error']

    def test_invalid_pdf_is_queued(self, services):
        """Non-PDF data is queued, not raised."""
        result = _processor(services).process_document(b"this is not a pdf file", "signed.pdf", issuer_key="acme")
        assert result['reason'] == DecisionReason.RENDERING_FAILED.value

    def test_ocr_failure_is_queued(self, services):
        """OCR errors route the document to review."""
        services['ocr_service'].extract_identifier.side_effect = RuntimeError("tesseract not found")

        result = _processor(services).process_document(PDF_BYTES, "signed.pdf", issuer_key="acme")

        assert result['status'] == NEEDS_REVIEW
        assert result['reason'] == DecisionReason.MALFORMED_EXTRACTION.value

    def test_write_failure_removes_artifacts(self, services):
        """A failed write deletes uploaded artifacts and queues WriteFailed."""
        services['work_order_store'].upsert.side_effect = RuntimeError("connection reset")

        result = _processor(services).process_document(PDF_BYTES, "signed.pdf", issuer_key="acme")

        assert result['status'] == NEEDS_REVIEW
        assert result['reason'] == DecisionReason.WRITE_FAILED.value
        services['storage'].delete_files.assert_called_once_with(
            ["acme/ab/abc123/signed.pdf", "acme/ab/abc123/identifier_region.png"]
        )

    def test_upload_failure_skips_write(self, services):
        """No artifacts, no work-order write."""
        services['storage'].upload_signed_artifacts.return_value = (None, None)

        result = _processor(services).process_document(PDF_BYTES, "signed.pdf", issuer_key="acme")

        assert result['reason'] == DecisionReason.WRITE_FAILED.value
        services['work_order_store'].upsert.assert_not_called()

    def test_override_without_region_is_confirmed(self, services):
        """A manual identifier is decided even when the issuer has no template region."""
        services['profile_store'].get_profile.return_value = IssuerProfile(issuer_key="acme")

        result = _processor(services).process_document(
            PDF_BYTES, "signed.pdf", issuer_key="acme", identifier_override="1234567"
        )

        assert result['status'] == CONFIRMED
        assert result['decision']['overridden']
        services['ocr_service'].extract_identifier.assert_not_called()
        args = services['storage'].upload_signed_artifacts.call_args.args
        assert args[3] == PDF_BYTES
        assert args[4] is None
        services['review_queue'].enqueue.assert_not_called()

    def test_override_after_render_failure_is_confirmed(self, services):
        """A manual identifier is decided when the page cannot be rendered."""
        result = _processor(services, FakePdfEngine([FakePage()])).process_document(
            PDF_BYTES, "signed.pdf", issuer_key="acme", identifier_override="WO 1234567"
        )

        assert result['status'] == CONFIRMED
        assert result['decision']['identifier'] == "1234567"
        assert any("RenderingFailed" in w for w in result['warnings'])
        services['storage'].upload_signed_artifacts.assert_called_once()

    def test_override_without_match_is_queued(self, services):
        """A manual identifier that matches nothing still goes to review."""
        services['profile_store'].get_profile.return_value = IssuerProfile(issuer_key="acme")
        services['work_order_store'].existence_lookup.return_value = None

        result = _processor(services).process_document(
            PDF_BYTES, "signed.pdf", issuer_key="acme", identifier_override="9999999"
        )

        assert result['reason'] == DecisionReason.ORIGINAL_NOT_FOUND.value
        services['storage'].upload_signed_artifacts.assert_not_called()

    def test_text_layer_skips_ocr(self, services):
        """A digital PDF with a conforming number in the region is not OCR'd."""
        engine = FakePdfEngine([FakePage(crop=(0, 0, 612, 792), text="WO# 1234567")])

        result = _processor(services, engine).process_document(PDF_BYTES, "signed.pdf", issuer_key="acme")

        assert result['status'] == CONFIRMED
        assert result['extraction']['method'] == "digital_text"
        assert result['decision']['confidence_raw'] == 1.0
        services['ocr_service'].extract_identifier.assert_not_called()

    def test_multiple_numbers_are_queued(self, services):
        """Two conforming numbers in the region need a human to pick one."""
        engine = FakePdfEngine([FakePage(crop=(0, 0, 612, 792), text="WO 1234567\nWO 7654321")])

        result = _processor(services, engine).process_document(PDF_BYTES, "signed.pdf", issuer_key="acme")

        assert result['reason'] == DecisionReason.MULTIPLE_CANDIDATES.value
        services['storage'].upload_signed_artifacts.assert_not_called()

    def test_duplicate_document(self, services):
        """An already attached document is skipped."""
        services['work_order_store'].find_by_file_hash.return_value = {'job_key': "acme:1234567"}

        result = _processor(services).process_document(PDF_BYTES, "signed.pdf", issuer_key="acme")

        assert result['status'] == DUPLICATE
        assert result['record_key'] == "acme:1234567"
        services['ocr_service'].extract_identifier.assert_not_called()

    def test_review_queue_failure_is_reported(self, services):
        """If the review entry cannot be written the result says so."""
        services['ocr_service'].extract_identifier.return_value = _extraction(None)
        services['review_queue'].enqueue.side_effect = RuntimeError("queue down")

        result = _processor(services).process_document(PDF_BYTES, "signed.pdf", issuer_key="acme")

        assert result['status'] == FAILED
        assert result['errors']


class TestProcessBatch:
    """Failures are isolated per document."""

    def test_one_failure_does_not_stop_batch(self, services):
        """A crashing document is counted and the next one is processed."""
        services['profile_store'].list_profiles.side_effect = [RuntimeError("profiles unavailable"), [ACME]]

        summary = _processor(services).process_batch([
            {'pdf_data': PDF_BYTES, 'filename': "first.pdf", 'sender': "d@acme.com"},
            {'pdf_data': PDF_BYTES, 'filename': "second.pdf", 'sender': "d@acme.com"},
        ])

        assert summary['total'] == 2
        assert summary['failed'] == 1
        assert summary['confirmed'] == 1


class TestResolveReview:
    """Manual identifiers on review entries."""

    def test_resolve_without_document(self, services):
        """The stored read is re-decided with the override and resolved."""
        services['review_queue'].get_entry.return_value = {
            'id': "entry-1",
            'file_hash': "abc123",
            'file_name': "signed.pdf",
            'issuer_key': "acme",
            'identifier': "1234561",
            'confidence_label': "low",
            'ocr_confidence_label': "low",
            'confidence_raw': 0.4,
            'source': "signed_upload",
        }

        result = _processor(services).resolve_review("entry-1", "1234567")

        assert result['status'] == CONFIRMED
        assert result['resolved']
        services['review_queue'].mark_resolved.assert_called_once_with("entry-1", "1234567", "acme:1234567")
        services['storage'].upload_signed_artifacts.assert_not_called()

    def test_resolve_with_document(self, services):
        """Re-attaching the PDF runs the pipeline with the override."""
        services['review_queue'].get_entry.return_value = {
            'id': "entry-1", 'file_name': "signed.pdf", 'issuer_key': "acme", 'source': "signed_upload"
        }
        services['ocr_service'].extract_identifier.return_value = _extraction("1234561", ConfidenceLabel.LOW, 0.3)

        result = _processor(services).resolve_review("entry-1", "1234567", PDF_BYTES)

        assert result['status'] == CONFIRMED
        assert result['decision']['overridden']
        services['storage'].upload_signed_artifacts.assert_called_once()

    def test_unresolved_stays_pending(self, services):
        """An override that matches nothing leaves the entry open."""
        services['review_queue'].get_entry.return_value = {'id': "entry-1", 'issuer_key': "acme"}
        services['work_order_store'].existence_lookup.return_value = None

        result = _processor(services).resolve_review("entry-1", "9999999")

        assert not result['resolved']
        assert result['reason'] == DecisionReason.ORIGINAL_NOT_FOUND.value
        services['review_queue'].mark_resolved.assert_not_called()

    def test_missing_entry(self, services):
        """Unknown entries give None."""
        services['review_queue'].get_entry.return_value = None
        assert _processor(services).resolve_review("missing", "1234567") is None

    def test_resolve_matches_issuer_from_sender(self, services):
        """Entries without an issuer are matched from the stored sender."""
        services['review_queue'].get_entry.return_value = {
            'id': "entry-1", 'file_name': "signed.pdf", 'issuer_key': None,
            'sender': "dispatch@acme.com", 'subject': "Signed WO", 'source': "signed_email"
        }

        result = _processor(services).resolve_review("entry-1", "1234567", PDF_BYTES)

        assert result['status'] == CONFIRMED
        assert result['issuer_key'] == "acme"
        services['profile_store'].list_profiles.assert_called_once()

    def test_resolve_keeps_ocr_label(self, services):
        """The OCR label is read from its own column, not the display label."""
        services['review_queue'].get_entry.return_value = {
            'id': "entry-1", 'issuer_key': "acme", 'identifier': "9999999",
            'confidence_label': "blocked", 'ocr_confidence_label': "medium", 'confidence_raw': 0.7
        }

        result = _processor(services).resolve_review("entry-1", "1234567")

        assert result['decision']['confidence_label'] == "medium"

    def test_resolve_derives_label_from_raw_score(self, services):
        """Entries without an OCR label fall back to the raw score."""
        services['review_queue'].get_entry.return_value = {
            'id': "entry-1", 'issuer_key': "acme", 'identifier': "9999999",
            'confidence_label': "blocked", 'confidence_raw': 0.93
        }

        result = _processor(services).resolve_review("entry-1", "1234567")

        assert result['decision']['confidence_label'] == "high"
