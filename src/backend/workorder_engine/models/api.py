"""
Request and response models for the HTTP API.
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

from workorder_engine.models.geometry import PageBox
from workorder_engine.models.work_order import TemplateRegion


class CssRect(BaseModel):
    """Rectangle drawn over the displayed page image, in CSS pixels."""
    x: float
    y: float
    width: float
    height: float


class BoundsPt(BaseModel):
    x0: float
    y0: float
    x1: float
    y1: float

    def to_page_box(self) -> PageBox:
        return PageBox(self.x0, self.y0, self.x1, self.y1)


class RegionCaptureRequest(BaseModel):
    """Template region drawn by a user over a rendered page."""
    page: int = Field(default=1, ge=1)
    rect: CssRect
    displayed_width: float
    displayed_height: float
    rendered_width_px: int
    rendered_height_px: int
    bounds_pt: BoundsPt


class RegionCaptureResponse(BaseModel):
    success: bool
    issuer_key: str
    region: TemplateRegion


class RenderResponse(BaseModel):
    """Rendered page for region drawing: image plus the geometry it represents."""
    image_data_url: str
    page: int
    total_pages: int
    width_px: int
    height_px: int
    page_width_pt: float
    page_height_pt: float
    bounds_pt: Dict[str, float]
    box_source: str
    scale: float
    reconciled: bool
    warnings: List[str] = []


class CropPreviewResponse(BaseModel):
    issuer_key: str
    image_data_url: str
    crop_px: Dict[str, int]
    region: TemplateRegion


class ReviewResolveResponse(BaseModel):
    entry_id: str
    resolved: bool
    status: str
    reason: Optional[str] = None
    record_key: Optional[str] = None
    decision: Optional[Dict[str, Any]] = None
