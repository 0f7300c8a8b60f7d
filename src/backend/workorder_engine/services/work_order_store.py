"""
Work-order store backed by the Supabase ``work_orders`` table.
Lookups are retried with bounded exponential backoff.
"""

import logging
import time
from typing import Callable, Dict, Optional, TypeVar

from workorder_engine.config import settings
from workorder_engine.utils.identifiers import DEFAULT_ISSUER, normalize_key_part, split_work_order_key
from workorder_engine.utils.supabase import get_supabase_client

logger = logging.getLogger(__name__)

T = TypeVar("T")

WORK_ORDERS_TABLE = "work_orders"
IDENTIFIER_SCAN_LIMIT = 20


def call_with_backoff(
    func: Callable[[], T],
    attempts: int,
    base_delay: float,
    description: str,
    sleep: Callable[[float], None] = time.sleep
) -> T:
    """
    Call ``func`` up to ``attempts`` times, doubling the delay between tries.

    Raises:
        The last exception raised by ``func`` once attempts are exhausted
    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return func()
        except Exception as e:
            if attempt < attempts - 1:
                wait_time = base_delay * (2 ** attempt)
                logger.warning(
                    f"{description} failed, retrying (attempt {attempt + 1}/{attempts})",
                    extra={"error": str(e), "wait_seconds": wait_time}
                )
                sleep(wait_time)
            else:
                logger.error(f"{description} failed after all retries", extra={
                    "attempts": attempts,
                    "error": str(e)
                })
                raise


class WorkOrderStore:
    """Reads and writes work-order records."""

    def __init__(self, supabase=None, attempts: int = None, backoff_seconds: float = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.supabase = supabase or get_supabase_client()
        self.attempts = attempts if attempts is not None else settings.STORE_LOOKUP_ATTEMPTS
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.STORE_LOOKUP_BACKOFF_SECONDS
        )
        self._sleep = sleep

    def find_by_key(self, job_key: str) -> Optional[Dict]:
        response = self.supabase.table(WORK_ORDERS_TABLE).select('*').eq(
            'job_key', job_key
        ).limit(1).execute()
        return response.data[0] if response.data else None

    def find_by_identifier(self, identifier: str) -> Optional[Dict]:
        """Look up by work-order number alone, ignoring the issuer part of the key."""
        response = self.supabase.table(WORK_ORDERS_TABLE).select('*').eq(
            'work_order_number', identifier
        ).order('created_at', desc=False).limit(1).execute()
        return response.data[0] if response.data else None

    def find_by_identifier_for_issuer(self, identifier: str, issuer_key: Optional[str]) -> Optional[Dict]:
        """
        Look up by work-order number among records of one issuer.

        Records with no issuer ("unknown") are shared by every issuer. Records
        that belong to another issuer never match.

        Args:
            identifier: Work-order number
            issuer_key: Issuer the document was read for

        Returns:
            The oldest matching record, or None
        """
        issuer_part = normalize_key_part(issuer_key) or DEFAULT_ISSUER
        response = self.supabase.table(WORK_ORDERS_TABLE).select('*').eq(
            'work_order_number', identifier
        ).order('created_at', desc=False).limit(IDENTIFIER_SCAN_LIMIT).execute()

        for row in response.data or []:
            row_issuer = (
                normalize_key_part(row.get('issuer_key'))
                or split_work_order_key(row.get('job_key'))[0]
            )
            if row_issuer in (issuer_part, DEFAULT_ISSUER):
                return row
        return None

    def find_by_file_hash(self, file_hash: str) -> Optional[Dict]:
        """Record that already carries this signed document, if any."""
        response = self.supabase.table(WORK_ORDERS_TABLE).select('job_key').eq(
            'signed_file_hash', file_hash
        ).limit(1).execute()
        return response.data[0] if response.data else None

    def upsert(self, record: Dict) -> Dict:
        """
        Insert or update a record by ``job_key``.

        Returns:
            The stored row (or the submitted record if the API returned none)
        """
        response = self.supabase.table(WORK_ORDERS_TABLE).upsert(
            record,
            on_conflict='job_key'
        ).execute()

        logger.debug("Upserted work order", extra={
            "job_key": record.get('job_key'),
            "status": record.get('status')
        })
        return response.data[0] if response.data else record

    def find_by_key_with_retry(self, job_key: str) -> Optional[Dict]:
        return call_with_backoff(
            lambda: self.find_by_key(job_key),
            self.attempts, self.backoff_seconds,
            "Work order lookup by key", self._sleep
        )

    def find_by_identifier_with_retry(self, identifier: str, issuer_key: Optional[str]) -> Optional[Dict]:
        return call_with_backoff(
            lambda: self.find_by_identifier_for_issuer(identifier, issuer_key),
            self.attempts, self.backoff_seconds,
            "Work order lookup by identifier", self._sleep
        )

    def existence_lookup(self, job_key: str, identifier: str) -> Optional[str]:
        """
        Resolve the key of the existing record for a work order, if any.

        Tries the key first, then the identifier among records of the key's
        issuer or of no issuer. Exhausted retries are logged and reported as
        not found.
        """
        issuer_part, _ = split_work_order_key(job_key)
        try:
            record = self.find_by_key_with_retry(job_key)
            if record is None:
                record = self.find_by_identifier_with_retry(identifier, issuer_part)
        except Exception:
            logger.error("Work order lookup gave up, treating as not found", extra={
                "job_key": job_key,
                "identifier": identifier
            }, exc_info=True)
            return None

        if record is None:
            return None
        return record.get('job_key')
