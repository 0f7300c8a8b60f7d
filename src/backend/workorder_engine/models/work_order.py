"""
Pydantic models for issuer profiles and template regions.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional

from workorder_engine.models.geometry import CROP_BOX


class TemplateRegion(BaseModel):
    """
    Page-relative region that holds the work-order number.

    Percentages are fractions of the page box named by ``box_source``.
    Persisted regions always use the crop-box convention.
    """
    page: int = Field(default=1, ge=1)
    x_pct: float = Field(ge=0, lt=1)
    y_pct: float = Field(ge=0, lt=1)
    w_pct: float = Field(gt=0, le=1)
    h_pct: float = Field(gt=0, le=1)
    box_source: str = CROP_BOX

    model_config = ConfigDict(frozen=True)


class IssuerProfile(BaseModel):
    """Issuer (facility manager) configuration used to pick a template."""
    issuer_key: str
    label: Optional[str] = None
    domain_patterns: List[str] = []
    subject_keywords: List[str] = []
    template_region: Optional[TemplateRegion] = None
    expected_digits: Optional[int] = None
    identifier_pattern: Optional[str] = None

    @field_validator('domain_patterns', 'subject_keywords', mode='before')
    @classmethod
    def _split_csv(cls, value):
        # Stored as "acme.com, acme-fm.com" in the profiles table
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(',')
        return [item.strip().lower() for item in value if item and item.strip()]

    @field_validator('issuer_key')
    @classmethod
    def _issuer_key_required(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("issuer_key is required")
        return value.strip()
