"""
Tests for the review queue, issuer profile store and artifact storage.
"""

from unittest.mock import MagicMock, Mock

from conftest import table_response
from workorder_engine.models.decision import (
    ConfidenceLabel,
    DecisionOutcome,
    DecisionReason,
    DecisionStatus,
)
from workorder_engine.models.work_order import TemplateRegion
from workorder_engine.services.profile_store import ProfileStore
from workorder_engine.services.review_queue import ReviewQueue
from workorder_engine.services.storage import ArtifactStorage


class TestReviewQueue:
    """signed_review_queue table."""

    def test_entry_keeps_raw_confidence_and_reason(self):
        """Raw score and reason are separate columns."""
        outcome = DecisionOutcome(
            status=DecisionStatus.NEEDS_ATTENTION,
            reason=DecisionReason.ORIGINAL_NOT_FOUND,
            identifier="9999999",
            confidence_label=ConfidenceLabel.HIGH,
            confidence_raw=0.93
        )

        entry = ReviewQueue(supabase=MagicMock()).build_entry(
            DecisionReason.ORIGINAL_NOT_FOUND, "abc123", "signed.pdf", "signed_upload",
            outcome=outcome, issuer_key="acme", source_meta={'sender': "d@acme.com"}
        )

        assert entry['decision_reason'] == "OriginalNotFound"
        assert entry['confidence_raw'] == 0.93
        assert entry['confidence_label'] == "blocked"
        assert entry['ocr_confidence_label'] == "high"
        assert entry['sender'] == "d@acme.com"
        assert entry['resolved'] is False

    def test_enqueue_is_idempotent_per_hash_and_reason(self):
        """Enqueue upserts on (file_hash, decision_reason)."""
        client = MagicMock()
        client.table.return_value.upsert.return_value.execute.return_value = table_response([{'id': "entry-1"}])

        entry_id = ReviewQueue(supabase=client).enqueue({'file_hash': "abc123", 'decision_reason': "Matched"})

        assert entry_id == "entry-1"
        _, kwargs = client.table.return_value.upsert.call_args
        assert kwargs['on_conflict'] == "file_hash,decision_reason"
        assert kwargs['ignore_duplicates'] is True

    def test_enqueue_duplicate(self):
        """An existing entry returns None."""
        client = MagicMock()
        client.table.return_value.upsert.return_value.execute.return_value = table_response([])
        assert ReviewQueue(supabase=client).enqueue({'file_hash': "abc123"}) is None

    def test_list_pending_adds_messages(self):
        """Pending entries carry display title, message and tone."""
        client = MagicMock()
        chain = client.table.return_value.select.return_value.eq.return_value.order.return_value.limit.return_value
        chain.execute.return_value = table_response([
            {'id': "1", 'decision_reason': "LowConfidenceExtraction"},
            {'id': "2", 'decision_reason': "SomethingElse"},
        ])

        entries = ReviewQueue(supabase=client).list_pending(limit=5)

        assert entries[0]['reason_title'] == "Low confidence read"
        assert entries[1]['reason_title'] == "Needs review"

    def test_mark_resolved(self):
        """Resolution records the manual identifier and record key."""
        client = MagicMock()
        client.table.return_value.update.return_value.eq.return_value.execute.return_value = \
            table_response([{'id': "1"}])

        assert ReviewQueue(supabase=client).mark_resolved("1", "1234567", "acme:1234567")
        update = client.table.return_value.update.call_args.args[0]
        assert update['resolved'] is True
        assert update['resolved_record_key'] == "acme:1234567"


class TestProfileStore:
    """issuer_profiles table."""

    def test_list_profiles_skips_invalid_rows(self):
        """Rows that fail validation are skipped."""
        client = MagicMock()
        client.table.return_value.select.return_value.order.return_value.order.return_value.execute.return_value = \
            table_response([
                {'issuer_key': "acme", 'domain_patterns': "acme.com, acme-fm.com",
                 'template_region': {'page': 1, 'x_pct': 0.1, 'y_pct': 0.1, 'w_pct': 0.2, 'h_pct': 0.05}},
                {'issuer_key': "", 'domain_patterns': "broken.com"},
            ])

        profiles = ProfileStore(supabase=client).list_profiles()

        assert [p.issuer_key for p in profiles] == ["acme"]
        assert profiles[0].domain_patterns == ["acme.com", "acme-fm.com"]
        assert profiles[0].template_region.w_pct == 0.2

    def test_get_missing_profile(self):
        """Unknown issuers give None."""
        client = MagicMock()
        client.table.return_value.select.return_value.eq.return_value.limit.return_value.execute.return_value = \
            table_response([])
        assert ProfileStore(supabase=client).get_profile("nobody") is None

    def test_save_region(self):
        """Regions are stored as plain dicts."""
        client = MagicMock()
        client.table.return_value.update.return_value.eq.return_value.execute.return_value = \
            table_response([{'issuer_key': "acme"}])
        region = TemplateRegion(page=1, x_pct=0.1, y_pct=0.1, w_pct=0.2, h_pct=0.05)

        assert ProfileStore(supabase=client).save_region("acme", region)
        update = client.table.return_value.update.call_args.args[0]
        assert update['template_region']['box_source'] == "crop_box"


class TestArtifactStorage:
    """Content-addressed artifact paths."""

    def test_file_path(self):
        """{issuer}/{hash[:2]}/{hash}/{safe_filename}"""
        storage = ArtifactStorage(supabase=MagicMock(), bucket_name="signed")
        path = storage.generate_file_path("ACME Facilities", "abcdef", "../WO 1234567 (signed).pdf")
        assert path == "acme_facilities/ab/abcdef/WO_1234567_signed_.pdf"

    def test_unknown_issuer_path(self):
        """A missing issuer uses 'unknown'."""
        storage = ArtifactStorage(supabase=MagicMock(), bucket_name="signed")
        assert storage.generate_file_path(None, "abcdef", "a.pdf").startswith("unknown/ab/")

    def test_snippet_failure_rolls_back_pdf(self):
        """If the snippet upload fails the PDF is removed again."""
        storage = ArtifactStorage(supabase=MagicMock(), bucket_name="signed")
        storage.upload = Mock(side_effect=[True, False])
        storage.delete_file = Mock(return_value=True)

        assert storage.upload_signed_artifacts("acme", "abcdef", "a.pdf", b"%PDF-", b"png") == (None, None)
        storage.delete_file.assert_called_once_with("acme/ab/abcdef/a.pdf")

    def test_upload_failure_returns_false(self):
        """Storage errors are logged and reported as False."""
        client = MagicMock()
        client.storage.from_.return_value.upload.side_effect = RuntimeError("bucket missing")
        storage = ArtifactStorage(supabase=client, bucket_name="signed")
        assert storage.upload(b"data", "acme/ab/abcdef/a.pdf") is False
