"""
Geometry value types shared by the page resolver, render pipeline and region mapper.

All point-space values use a top-left origin with y growing downwards, the
convention PyMuPDF exposes for page boxes.
"""

import base64
import math
from dataclasses import dataclass, field
from typing import List, Tuple

from workorder_engine.utils.errors import GeometryError


# Box sources, in resolution priority order
CROP_BOX = "crop_box"
MEDIA_BOX = "media_box"
BOUNDS = "bounds"
RENDERER_BOUNDS = "renderer_bounds"


@dataclass(frozen=True)
class PageBox:
    """A page rectangle in PDF points."""
    x0: float
    y0: float
    x1: float
    y1: float

    def __post_init__(self):
        values = (self.x0, self.y0, self.x1, self.y1)
        if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in values):
            raise GeometryError(f"Page box has non-finite coordinates: {values}")
        if self.x1 <= self.x0 or self.y1 <= self.y0:
            raise GeometryError(
                f"Page box has non-positive size: width={self.x1 - self.x0}, "
                f"height={self.y1 - self.y0}"
            )

    @property
    def width_pt(self) -> float:
        return self.x1 - self.x0

    @property
    def height_pt(self) -> float:
        return self.y1 - self.y0

    @property
    def has_origin_offset(self) -> bool:
        return self.x0 != 0 or self.y0 != 0

    def to_dict(self) -> dict:
        return {'x0': self.x0, 'y0': self.y0, 'x1': self.x1, 'y1': self.y1}


@dataclass(frozen=True)
class ResolvedPageBox:
    """A page box together with the strategy that produced it."""
    box: PageBox
    source: str


@dataclass(frozen=True)
class RenderTransform:
    """
    Point-to-pixel transform for one render call.

    The translation is applied before scaling, so that when ``composed`` is
    True the source box origin lands on pixel (0, 0).
    """
    scale: float
    translate_x: float = 0.0
    translate_y: float = 0.0
    composed: bool = False
    warnings: Tuple[str, ...] = ()

    @property
    def has_translation(self) -> bool:
        return self.translate_x != 0 or self.translate_y != 0

    def apply(self, x: float, y: float) -> Tuple[float, float]:
        """Map a point-space coordinate to pixel space."""
        return ((x + self.translate_x) * self.scale, (y + self.translate_y) * self.scale)


@dataclass(frozen=True)
class CropRectPt:
    """Absolute point-space rectangle inside a page box."""
    x: float
    y: float
    width: float
    height: float

    @property
    def x1(self) -> float:
        return self.x + self.width

    @property
    def y1(self) -> float:
        return self.y + self.height


@dataclass(frozen=True)
class CropRectPx:
    """Pixel rectangle relative to the rendered image origin."""
    left: int
    top: int
    width: int
    height: int
    dpi: int

    @property
    def right(self) -> int:
        return self.left + self.width

    @property
    def bottom(self) -> int:
        return self.top + self.height

    def as_pil_box(self) -> Tuple[int, int, int, int]:
        return (self.left, self.top, self.right, self.bottom)


@dataclass
class RenderedPage:
    """A rasterized page and the geometry it represents."""
    png_bytes: bytes
    width_px: int
    height_px: int
    box: PageBox
    box_source: str
    scale: float
    page: int
    total_pages: int
    reconciled: bool = False
    warnings: List[str] = field(default_factory=list)

    @property
    def page_width_pt(self) -> float:
        return self.box.width_pt

    @property
    def page_height_pt(self) -> float:
        return self.box.height_pt

    def to_data_url(self) -> str:
        return "data:image/png;base64," + base64.b64encode(self.png_bytes).decode('ascii')

    def describe(self) -> dict:
        """Geometry summary for API responses and logs (no pixel data)."""
        return {
            'page': self.page,
            'total_pages': self.total_pages,
            'width_px': self.width_px,
            'height_px': self.height_px,
            'page_width_pt': self.page_width_pt,
            'page_height_pt': self.page_height_pt,
            'bounds_pt': self.box.to_dict(),
            'box_source': self.box_source,
            'scale': self.scale,
            'reconciled': self.reconciled,
            'warnings': list(self.warnings),
        }
