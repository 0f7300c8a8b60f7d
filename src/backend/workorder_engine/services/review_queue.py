"""
Review queue for documents that need a human decision.

Entries are lightweight: no binary artifact is stored, only the decision,
the OCR confidence score and the source metadata.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from workorder_engine.models.decision import DecisionOutcome, DecisionReason
from workorder_engine.services.decision import review_reason_message
from workorder_engine.utils.supabase import get_supabase_client

logger = logging.getLogger(__name__)

REVIEW_TABLE = "signed_review_queue"


class ReviewQueue:
    """Reads and writes the signed_review_queue table."""

    def __init__(self, supabase=None):
        self.supabase = supabase or get_supabase_client()

    def build_entry(
        self,
        reason: DecisionReason,
        file_hash: str,
        file_name: str,
        source: str,
        outcome: Optional[DecisionOutcome] = None,
        issuer_key: Optional[str] = None,
        raw_text: str = "",
        source_meta: Optional[Dict] = None,
        error: Optional[str] = None
    ) -> Dict:
        """
        Build a review row.

        ``confidence_raw`` (OCR quality) and ``decision_reason`` (why it is
        queued) are separate columns. ``confidence_label`` is display only;
        ``ocr_confidence_label`` keeps the label the extraction produced.
        """
        source_meta = source_meta or {}
        return {
            'file_hash': file_hash,
            'file_name': file_name,
            'issuer_key': issuer_key,
            'decision_reason': reason.value,
            'identifier': outcome.identifier if outcome else None,
            'confidence_raw': outcome.confidence_raw if outcome else None,
            'confidence_label': outcome.display_confidence if outcome else None,
            'ocr_confidence_label': outcome.confidence_label.value if outcome else None,
            'raw_text': raw_text,
            'error': error,
            'source': source,
            'sender': source_meta.get('sender'),
            'subject': source_meta.get('subject'),
            'message_id': source_meta.get('message_id'),
            'resolved': False,
            'created_at': datetime.now(timezone.utc).isoformat(),
        }

    def enqueue(self, entry: Dict) -> Optional[str]:
        """
        Insert a review entry (one per file hash and reason).

        Returns:
            Entry ID, or None if an identical entry already exists
        """
        response = self.supabase.table(REVIEW_TABLE).upsert(
            entry,
            on_conflict='file_hash,decision_reason',
            ignore_duplicates=True
        ).execute()

        logger.info("Queued document for review", extra={
            "file_hash": entry.get('file_hash'),
            "reason": entry.get('decision_reason'),
            "issuer_key": entry.get('issuer_key')
        })

        if response.data:
            return response.data[0]['id']
        return None

    def list_pending(self, limit: int = 50) -> List[Dict]:
        """Unresolved entries, newest first, with display title and message."""
        response = self.supabase.table(REVIEW_TABLE).select('*').eq(
            'resolved', False
        ).order('created_at', desc=True).limit(limit).execute()

        entries = response.data or []
        for entry in entries:
            try:
                reason = DecisionReason(entry.get('decision_reason'))
            except ValueError:
                reason = None
            message = review_reason_message(reason)
            entry['reason_title'] = message['title']
            entry['reason_message'] = message['message']
            entry['reason_tone'] = message['tone']
        return entries

    def get_entry(self, entry_id: str) -> Optional[Dict]:
        response = self.supabase.table(REVIEW_TABLE).select('*').eq(
            'id', entry_id
        ).limit(1).execute()
        return response.data[0] if response.data else None

    def mark_resolved(self, entry_id: str, identifier: str, record_key: Optional[str]) -> bool:
        response = self.supabase.table(REVIEW_TABLE).update({
            'resolved': True,
            'resolved_at': datetime.now(timezone.utc).isoformat(),
            'manual_identifier': identifier,
            'resolved_record_key': record_key,
        }).eq('id', entry_id).execute()

        logger.info("Resolved review entry", extra={
            "entry_id": entry_id,
            "record_key": record_key
        })
        return bool(response.data)
