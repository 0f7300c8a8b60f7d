"""
Issuer profile store backed by the Supabase ``issuer_profiles`` table.
"""

import logging
from typing import List, Optional

from pydantic import ValidationError

from workorder_engine.models.work_order import IssuerProfile, TemplateRegion
from workorder_engine.utils.supabase import get_supabase_client

logger = logging.getLogger(__name__)

PROFILES_TABLE = "issuer_profiles"


class ProfileStore:
    """Loads issuer profiles and stores captured template regions."""

    def __init__(self, supabase=None):
        self.supabase = supabase or get_supabase_client()

    def _to_profile(self, row: dict) -> Optional[IssuerProfile]:
        try:
            return IssuerProfile(**row)
        except ValidationError as e:
            logger.warning("Skipping invalid issuer profile", extra={
                "issuer_key": row.get('issuer_key'),
                "error": str(e)
            })
            return None

    def list_profiles(self) -> List[IssuerProfile]:
        """
        All profiles in matching priority order.

        Priority is the ``priority`` column, then creation time. Rows that do
        not validate are skipped.
        """
        response = self.supabase.table(PROFILES_TABLE).select('*').order(
            'priority', desc=False
        ).order('created_at', desc=False).execute()

        profiles = []
        for row in response.data or []:
            profile = self._to_profile(row)
            if profile:
                profiles.append(profile)
        return profiles

    def get_profile(self, issuer_key: str) -> Optional[IssuerProfile]:
        response = self.supabase.table(PROFILES_TABLE).select('*').eq(
            'issuer_key', issuer_key
        ).limit(1).execute()

        if not response.data:
            return None
        return self._to_profile(response.data[0])

    def save_region(self, issuer_key: str, region: TemplateRegion) -> bool:
        """
        Store the template region for an existing profile.

        Returns:
            True if a profile row was updated
        """
        response = self.supabase.table(PROFILES_TABLE).update({
            'template_region': region.model_dump()
        }).eq('issuer_key', issuer_key).execute()

        updated = bool(response.data)
        logger.info("Saved template region", extra={
            "issuer_key": issuer_key,
            "updated": updated,
            "page": region.page
        })
        return updated
