"""
Idempotent work-order writer.

One logical work order maps to one row. The writer looks the record up by
WorkOrderKey, then by the key the decision matched, then by identifier alone
(adopting the existing key when the issuer part drifted between ingestion
paths), and inserts only when there is something worth storing.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

from workorder_engine.models.decision import DecisionOutcome
from workorder_engine.services.work_order_store import WorkOrderStore
from workorder_engine.utils.identifiers import generate_work_order_key

logger = logging.getLogger(__name__)

STATUS_SIGNED = "SIGNED"

UPDATED = "updated"
ADOPTED = "adopted"
INSERTED = "inserted"
SKIPPED = "skipped"

SUBSTANTIVE_FIELDS = (
    'customer_name',
    'service_address',
    'job_description',
    'scheduled_date',
    'amount',
    'currency',
    'notes',
    'signed_pdf_path',
)

# Set on every signed transition, regardless of existing values
SIGNED_FIELDS = (
    'signed_pdf_path',
    'signed_preview_path',
    'signed_file_hash',
    'signature_confidence',
    'signed_at',
)


@dataclass(frozen=True)
class WriteResult:
    action: str
    record_key: Optional[str]


def _is_empty(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def has_substantive_fields(fields: Dict) -> bool:
    return any(not _is_empty(fields.get(name)) for name in SUBSTANTIVE_FIELDS)


def merge_fields(existing: Dict, incoming: Dict, signed: bool) -> Dict:
    """
    Merge ``incoming`` into ``existing`` with field authority.

    Incoming values only fill empty fields. On a signed transition the signed
    fields are always taken from ``incoming``. A SIGNED status is never
    downgraded.
    """
    merged = dict(existing)
    for name, value in incoming.items():
        if _is_empty(value):
            continue
        if signed and name in SIGNED_FIELDS:
            merged[name] = value
        elif _is_empty(merged.get(name)):
            merged[name] = value

    if signed:
        merged['status'] = STATUS_SIGNED
    elif existing.get('status') != STATUS_SIGNED and not _is_empty(incoming.get('status')):
        merged['status'] = incoming['status']

    return merged


class IdempotentRecordWriter:
    """Persists exactly one authoritative update per logical work order."""

    def __init__(self, store: WorkOrderStore):
        self.store = store

    def write_record(
        self,
        issuer_key: Optional[str],
        identifier: str,
        fields: Dict,
        source: str,
        status: Optional[str] = None,
        record_key: Optional[str] = None
    ) -> WriteResult:
        """
        Write one work-order update.

        Args:
            issuer_key: Issuer of the work order
            identifier: Work-order number
            fields: Record fields to store
            source: Ingestion path ('signed_upload', 'signed_email', ...)
            status: Record status; SIGNED records are always persisted
            record_key: Key of a record already matched for this work order

        Returns:
            WriteResult with the action taken and the key written to
        """
        job_key = generate_work_order_key(issuer_key, identifier)
        signed = status == STATUS_SIGNED
        now = datetime.now(timezone.utc).isoformat()

        action = UPDATED
        existing = self.store.find_by_key(job_key)
        if existing is None and record_key and record_key != job_key:
            existing = self.store.find_by_key(record_key)
            if existing is not None:
                action = ADOPTED
                job_key = record_key
        if existing is None:
            existing = self.store.find_by_identifier(identifier)
            if existing is not None:
                action = ADOPTED
                logger.info("Adopting existing work order key", extra={
                    "computed_key": job_key,
                    "existing_key": existing.get('job_key')
                })
                job_key = existing.get('job_key') or job_key

        incoming = dict(fields)
        if status:
            incoming['status'] = status

        if existing is not None:
            record = merge_fields(existing, incoming, signed)
            record['job_key'] = job_key
            record['last_updated_at'] = now
            self.store.upsert(record)
            logger.info("Updated work order", extra={
                "job_key": job_key,
                "action": action,
                "status": record.get('status')
            })
            return WriteResult(action, job_key)

        if not signed and not has_substantive_fields(incoming):
            logger.info("Skipping work order with no substantive fields", extra={
                "job_key": job_key,
                "source": source
            })
            return WriteResult(SKIPPED, None)

        record = {name: value for name, value in incoming.items() if not _is_empty(value)}
        record.update({
            'job_key': job_key,
            'work_order_number': identifier,
            'issuer_key': issuer_key,
            'source': source,
            'created_at': now,
            'last_updated_at': now,
        })
        self.store.upsert(record)
        logger.info("Inserted work order", extra={
            "job_key": job_key,
            "status": record.get('status')
        })
        return WriteResult(INSERTED, job_key)

    def write(
        self,
        outcome: DecisionOutcome,
        issuer_key: Optional[str],
        fields: Dict,
        source: str
    ) -> WriteResult:
        """
        Persist an AUTO_CONFIRMED outcome as a signed work order.

        Raises:
            ValueError: If the outcome is not AUTO_CONFIRMED
        """
        if not outcome.is_confirmed or not outcome.identifier:
            raise ValueError(
                f"Only AUTO_CONFIRMED outcomes are written to work orders, got {outcome.status.value}"
            )

        signed_fields = dict(fields)
        signed_fields.setdefault('signature_confidence', outcome.display_confidence)
        signed_fields.setdefault('signed_at', datetime.now(timezone.utc).isoformat())

        return self.write_record(
            issuer_key=issuer_key,
            identifier=outcome.identifier,
            fields=signed_fields,
            source=source,
            status=STATUS_SIGNED,
            record_key=outcome.matched_record_key
        )
