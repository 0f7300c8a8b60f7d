"""
Signed work-order processing pipeline.

Per document, strictly in order:
hash -> dedupe -> issuer profile -> render -> map region -> crop
-> text layer or OCR (with retries) -> decide -> (AUTO_CONFIRMED) upload artifacts -> write work order.

Every document ends in exactly one complete state: a work-order update with
its artifacts, or a review entry with no artifacts left behind.
"""

import logging
from typing import Dict, List, Optional

from workorder_engine.models.decision import (
    ConfidenceLabel,
    DecisionOutcome,
    DecisionReason,
    ExtractionResult,
)
from workorder_engine.models.work_order import IssuerProfile
from workorder_engine.services.decision import ConfidenceDecisionEngine
from workorder_engine.services.issuer_matching import IssuerDomainMatcher
from workorder_engine.services.ocr import OCRService, label_confidence
from workorder_engine.services.page_renderer import PageRenderer
from workorder_engine.services.pdf_engine import PdfEngine
from workorder_engine.services.profile_store import ProfileStore
from workorder_engine.services.record_writer import IdempotentRecordWriter
from workorder_engine.services.region_reader import RegionReader
from workorder_engine.services.review_queue import ReviewQueue
from workorder_engine.services.storage import ArtifactStorage
from workorder_engine.services.work_order_store import WorkOrderStore
from workorder_engine.utils.errors import GeometryError, RenderError

logger = logging.getLogger(__name__)

# Result states
CONFIRMED = "confirmed"
NEEDS_REVIEW = "needs_review"
DUPLICATE = "duplicate"
FAILED = "failed"


class SignedDocumentProcessor:
    """Processes signed work-order PDFs into work-order updates or review entries."""

    def __init__(
        self,
        engine: PdfEngine,
        work_order_store: Optional[WorkOrderStore] = None,
        review_queue: Optional[ReviewQueue] = None,
        profile_store: Optional[ProfileStore] = None,
        storage: Optional[ArtifactStorage] = None,
        ocr_service: Optional[OCRService] = None,
        decision_engine: Optional[ConfidenceDecisionEngine] = None
    ):
        """
        Args:
            engine: PDF engine handle owned by the caller
        """
        self.renderer = PageRenderer(engine)
        self.work_order_store = work_order_store or WorkOrderStore()
        self.review_queue = review_queue or ReviewQueue()
        self.profile_store = profile_store or ProfileStore()
        self.storage = storage or ArtifactStorage()
        self.ocr_service = ocr_service or OCRService()
        self.decision_engine = decision_engine or ConfidenceDecisionEngine()
        self.region_reader = RegionReader(self.renderer, self.ocr_service)
        self.writer = IdempotentRecordWriter(self.work_order_store)

    def _resolve_profile(
        self,
        issuer_key: Optional[str],
        sender: Optional[str],
        subject: Optional[str]
    ) -> Optional[IssuerProfile]:
        if issuer_key:
            return self.profile_store.get_profile(issuer_key)
        return IssuerDomainMatcher(self.profile_store.list_profiles()).match(sender, subject)

    def _queue_for_review(
        self,
        result: Dict,
        reason: DecisionReason,
        file_name: str,
        source: str,
        outcome: Optional[DecisionOutcome] = None,
        issuer_key: Optional[str] = None,
        raw_text: str = "",
        source_meta: Optional[Dict] = None,
        error: Optional[str] = None
    ) -> Dict:
        result['status'] = NEEDS_REVIEW
        result['reason'] = reason.value

        entry = self.review_queue.build_entry(
            reason=reason,
            file_hash=result['file_hash'],
            file_name=file_name,
            source=source,
            outcome=outcome,
            issuer_key=issuer_key,
            raw_text=raw_text,
            source_meta=source_meta,
            error=error
        )
        try:
            result['review_entry_id'] = self.review_queue.enqueue(entry)
        except Exception as e:
            error_msg = f"Failed to queue document for review: {str(e)}"
            logger.error(error_msg, extra={
                "file_hash": result['file_hash'],
                "reason": reason.value
            }, exc_info=True)
            result['status'] = FAILED
            result['errors'].append(error_msg)

        return result

    def process_document(
        self,
        pdf_data: bytes,
        filename: str,
        source: str = "signed_upload",
        issuer_key: Optional[str] = None,
        sender: Optional[str] = None,
        subject: Optional[str] = None,
        identifier_override: Optional[str] = None,
        source_meta: Optional[Dict] = None
    ) -> Dict:
        """
        Process one signed work-order PDF.

        Args:
            pdf_data: Raw PDF bytes
            filename: Original filename
            source: Ingestion path recorded on the work order
            issuer_key: Explicit issuer; otherwise matched from sender/subject
            sender: Sender address used for issuer matching
            subject: Subject used as a matching fallback
            identifier_override: Human-supplied work-order number
            source_meta: Extra source metadata stored on review entries

        Returns:
            Dictionary with processing results
        """
        file_hash = self.storage.calculate_file_hash(pdf_data)
        source_meta = dict(source_meta or {})
        source_meta.setdefault('sender', sender)
        source_meta.setdefault('subject', subject)

        result = {
            'file_hash': file_hash,
            'file_name': filename,
            'status': FAILED,
            'reason': None,
            'decision': None,
            'extraction': None,
            'issuer_key': issuer_key,
            'record_key': None,
            'write_action': None,
            'review_entry_id': None,
            'warnings': [],
            'errors': []
        }

        existing = self.work_order_store.find_by_file_hash(file_hash)
        if existing:
            logger.info("Skipping already processed signed document", extra={
                "file_hash": file_hash,
                "job_key": existing.get('job_key')
            })
            result['status'] = DUPLICATE
            result['record_key'] = existing.get('job_key')
            return result

        profile = self._resolve_profile(issuer_key, sender, subject)
        if profile is not None:
            issuer_key = profile.issuer_key
            result['issuer_key'] = issuer_key

        override = identifier_override.strip() if identifier_override else None

        if profile is None or profile.template_region is None:
            logger.info("No template region for document", extra={
                "file_hash": file_hash,
                "issuer_key": issuer_key
            })
            if override:
                return self._decide_without_read(
                    result, DecisionReason.TEMPLATE_NOT_CONFIGURED, override, pdf_data,
                    filename, source, issuer_key, source_meta
                )
            return self._queue_for_review(
                result, DecisionReason.TEMPLATE_NOT_CONFIGURED, filename, source,
                issuer_key=issuer_key, source_meta=source_meta
            )

        # Render, map, crop, read
        try:
            region_read = self.region_reader.read(
                pdf_data,
                profile.template_region,
                expected_digits=profile.expected_digits,
                identifier_pattern=profile.identifier_pattern
            )
        except (RenderError, GeometryError) as e:
            logger.warning("Could not render template region", extra={
                "file_hash": file_hash,
                "issuer_key": issuer_key,
                "code": e.code,
                "error": str(e)
            })
            if override:
                return self._decide_without_read(
                    result, DecisionReason.RENDERING_FAILED, override, pdf_data,
                    filename, source, issuer_key, source_meta
                )
            return self._queue_for_review(
                result, DecisionReason.RENDERING_FAILED, filename, source,
                issuer_key=issuer_key, source_meta=source_meta, error=str(e)
            )
        except Exception as e:
            logger.error("OCR failed for template region", extra={
                "file_hash": file_hash,
                "issuer_key": issuer_key
            }, exc_info=True)
            if override:
                return self._decide_without_read(
                    result, DecisionReason.MALFORMED_EXTRACTION, override, pdf_data,
                    filename, source, issuer_key, source_meta
                )
            return self._queue_for_review(
                result, DecisionReason.MALFORMED_EXTRACTION, filename, source,
                issuer_key=issuer_key, source_meta=source_meta, error=str(e)
            )

        result['warnings'].extend(region_read.warnings)
        result['extraction'] = region_read.describe()

        return self._decide_and_commit(
            result, region_read.extraction, override, pdf_data, region_read.snippet_png,
            filename, source, issuer_key, source_meta
        )

    def _decide_without_read(
        self,
        result: Dict,
        skipped: DecisionReason,
        identifier_override: str,
        pdf_data: bytes,
        filename: str,
        source: str,
        issuer_key: Optional[str],
        source_meta: Optional[Dict]
    ) -> Dict:
        """Decide on a manual identifier when the template region could not be read."""
        logger.info("Deciding on manual identifier without a region read", extra={
            "file_hash": result['file_hash'],
            "issuer_key": issuer_key,
            "skipped": skipped.value
        })
        result['warnings'].append(f"{skipped.value}: decided on the manual identifier")
        extraction = ExtractionResult(
            identifier_text=None,
            confidence_label=ConfidenceLabel.LOW,
            confidence_raw=0.0
        )
        return self._decide_and_commit(
            result, extraction, identifier_override, pdf_data, None,
            filename, source, issuer_key, source_meta
        )

    def _decide_and_commit(
        self,
        result: Dict,
        extraction: ExtractionResult,
        identifier_override: Optional[str],
        pdf_data: bytes,
        snippet_png: Optional[bytes],
        filename: str,
        source: str,
        issuer_key: Optional[str],
        source_meta: Optional[Dict]
    ) -> Dict:
        outcome = self.decision_engine.decide_safely(
            extraction,
            self.work_order_store.existence_lookup,
            issuer_key=issuer_key,
            identifier_override=identifier_override
        )
        result['decision'] = outcome.to_dict()

        logger.info("Decision for signed document", extra={
            "file_hash": result['file_hash'],
            "issuer_key": issuer_key,
            "status": outcome.status.value,
            "reason": outcome.reason.value,
            "confidence_raw": outcome.confidence_raw
        })

        if not outcome.is_confirmed:
            return self._queue_for_review(
                result, outcome.reason, filename, source, outcome=outcome,
                issuer_key=issuer_key, raw_text=extraction.raw_text, source_meta=source_meta
            )

        return self._commit_confirmed(
            result, outcome, pdf_data, snippet_png, filename, source,
            issuer_key, extraction.raw_text, source_meta
        )

    def _commit_confirmed(
        self,
        result: Dict,
        outcome: DecisionOutcome,
        pdf_data: Optional[bytes],
        snippet_png: Optional[bytes],
        filename: str,
        source: str,
        issuer_key: Optional[str],
        raw_text: str,
        source_meta: Optional[Dict]
    ) -> Dict:
        """Upload artifacts, then write; roll the artifacts back if the write fails."""
        file_hash = result['file_hash']
        pdf_path, snippet_path = None, None

        if pdf_data is not None:
            pdf_path, snippet_path = self.storage.upload_signed_artifacts(
                issuer_key, file_hash, filename, pdf_data, snippet_png
            )
            if not pdf_path:
                return self._queue_for_review(
                    result, DecisionReason.WRITE_FAILED, filename, source, outcome=outcome,
                    issuer_key=issuer_key, raw_text=raw_text, source_meta=source_meta,
                    error="Failed to upload signed artifacts"
                )

        fields = {
            'signed_pdf_path': pdf_path,
            'signed_preview_path': snippet_path,
            'signed_file_hash': file_hash,
        }

        try:
            write_result = self.writer.write(outcome, issuer_key, fields, source)
        except Exception as e:
            logger.error("Work order write failed, removing artifacts", extra={
                "file_hash": file_hash,
                "identifier": outcome.identifier
            }, exc_info=True)
            self.storage.delete_files([pdf_path, snippet_path])
            return self._queue_for_review(
                result, DecisionReason.WRITE_FAILED, filename, source, outcome=outcome,
                issuer_key=issuer_key, raw_text=raw_text, source_meta=source_meta, error=str(e)
            )

        result['status'] = CONFIRMED
        result['reason'] = outcome.reason.value
        result['record_key'] = write_result.record_key
        result['write_action'] = write_result.action
        result['signed_pdf_path'] = pdf_path
        return result

    def process_batch(self, documents: List[Dict]) -> Dict:
        """
        Process several documents; one failure never stops the batch.

        Args:
            documents: Dicts with ``pdf_data``, ``filename`` and optional
                ``process_document`` keyword arguments

        Returns:
            Summary with per-document results
        """
        summary = {
            'total': len(documents),
            'confirmed': 0,
            'needs_review': 0,
            'duplicates': 0,
            'failed': 0,
            'results': []
        }

        for document in documents:
            kwargs = dict(document)
            pdf_data = kwargs.pop('pdf_data')
            filename = kwargs.pop('filename', 'signed_work_order.pdf')
            try:
                result = self.process_document(pdf_data, filename, **kwargs)
            except Exception as e:
                error_msg = f"Error processing {filename}: {str(e)}"
                logger.error(error_msg, exc_info=True)
                result = {'file_name': filename, 'status': FAILED, 'errors': [error_msg]}

            summary['results'].append(result)
            if result['status'] == CONFIRMED:
                summary['confirmed'] += 1
            elif result['status'] == NEEDS_REVIEW:
                summary['needs_review'] += 1
            elif result['status'] == DUPLICATE:
                summary['duplicates'] += 1
            else:
                summary['failed'] += 1

        logger.info("Batch processing complete", extra={
            "total": summary['total'],
            "confirmed": summary['confirmed'],
            "needs_review": summary['needs_review'],
            "failed": summary['failed']
        })
        return summary

    def resolve_review(
        self,
        entry_id: str,
        identifier: str,
        pdf_data: Optional[bytes] = None
    ) -> Optional[Dict]:
        """
        Re-decide a review entry with a human-supplied identifier.

        With ``pdf_data`` the whole pipeline runs again with the override.
        Without it, the stored OCR result is re-decided and the work order is
        updated without artifacts. The entry is marked resolved only on
        AUTO_CONFIRMED.

        Returns:
            Processing result, or None if the entry does not exist
        """
        entry = self.review_queue.get_entry(entry_id)
        if entry is None:
            return None

        issuer_key = entry.get('issuer_key')
        source = entry.get('source') or "signed_review"

        if pdf_data is not None:
            result = self.process_document(
                pdf_data,
                entry.get('file_name') or "signed_work_order.pdf",
                source=source,
                issuer_key=issuer_key,
                sender=entry.get('sender'),
                subject=entry.get('subject'),
                identifier_override=identifier,
                source_meta={'message_id': entry.get('message_id')}
            )
        else:
            result = self._resolve_without_document(entry, identifier, issuer_key, source)

        if result['status'] in (CONFIRMED, DUPLICATE):
            self.review_queue.mark_resolved(entry_id, identifier, result.get('record_key'))
            result['resolved'] = True
        else:
            result['resolved'] = False
        return result

    def _resolve_without_document(
        self,
        entry: Dict,
        identifier: str,
        issuer_key: Optional[str],
        source: str
    ) -> Dict:
        raw = entry.get('confidence_raw')
        try:
            label = ConfidenceLabel(entry.get('ocr_confidence_label'))
        except ValueError:
            if raw is not None:
                label = label_confidence(float(raw))
            else:
                logger.warning("Review entry has no OCR confidence, treating as low", extra={
                    "entry_id": entry.get('id')
                })
                label = ConfidenceLabel.LOW

        extraction = ExtractionResult(
            identifier_text=entry.get('identifier'),
            confidence_label=label,
            confidence_raw=float(raw) if raw is not None else 0.0,
            raw_text=entry.get('raw_text') or ""
        )

        outcome = self.decision_engine.decide_safely(
            extraction,
            self.work_order_store.existence_lookup,
            issuer_key=issuer_key,
            identifier_override=identifier
        )

        result = {
            'file_hash': entry.get('file_hash'),
            'file_name': entry.get('file_name'),
            'status': NEEDS_REVIEW,
            'reason': outcome.reason.value,
            'decision': outcome.to_dict(),
            'issuer_key': issuer_key,
            'record_key': None,
            'write_action': None,
            'review_entry_id': entry.get('id'),
            'warnings': [],
            'errors': []
        }

        if not outcome.is_confirmed:
            return result

        return self._commit_confirmed(
            result, outcome, None, None, entry.get('file_name') or "", source,
            issuer_key, entry.get('raw_text') or "", None
        )
