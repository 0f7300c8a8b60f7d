"""
Post-render reconciliation between expected and actual raster size.

If the renderer ignored the requested box, the pixels no longer match the
box geometry. In that case the renderer's own bounds become the reported box
so coordinate mapping agrees with the image a reviewer sees.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from workorder_engine.config import settings
from workorder_engine.models.geometry import PageBox, RENDERER_BOUNDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciledGeometry:
    box: PageBox
    box_source: str
    width_px: int
    height_px: int
    reconciled: bool
    warning: Optional[str] = None


def expected_pixel_size(box: PageBox, scale: float) -> Tuple[int, int]:
    return round(box.width_pt * scale), round(box.height_pt * scale)


def reconcile_render(
    box: PageBox,
    box_source: str,
    scale: float,
    actual_width_px: int,
    actual_height_px: int,
    read_bounds: Callable[[], Optional[PageBox]],
    tolerance_px: int = None
) -> ReconciledGeometry:
    """
    Compare actual raster size to the size the box predicts.

    Args:
        box: Box the render was requested for
        box_source: Strategy name that produced ``box``
        scale: Scale used for the render
        actual_width_px: Width of the raster
        actual_height_px: Height of the raster
        read_bounds: Reads the page's generic bounds
        tolerance_px: Allowed difference per axis (defaults to RENDER_TOLERANCE_PX)

    Returns:
        ReconciledGeometry with the box every consumer should use
    """
    if tolerance_px is None:
        tolerance_px = settings.RENDER_TOLERANCE_PX

    expected_w, expected_h = expected_pixel_size(box, scale)

    if (abs(actual_width_px - expected_w) <= tolerance_px
            and abs(actual_height_px - expected_h) <= tolerance_px):
        return ReconciledGeometry(box, box_source, actual_width_px, actual_height_px, False)

    bounds = read_bounds()

    logger.warning("Rendered size does not match page box", extra={
        "expected_px": [expected_w, expected_h],
        "actual_px": [actual_width_px, actual_height_px],
        "box": box.to_dict(),
        "box_source": box_source,
        "renderer_bounds": bounds.to_dict() if bounds else None
    })

    warning = (
        f"Rendered {actual_width_px}x{actual_height_px}px, expected {expected_w}x{expected_h}px"
    )
    if bounds is None:
        return ReconciledGeometry(
            box, box_source, actual_width_px, actual_height_px, False,
            warning + "; renderer bounds unavailable, keeping requested box"
        )

    return ReconciledGeometry(
        bounds, RENDERER_BOUNDS, actual_width_px, actual_height_px, True,
        warning + "; using renderer bounds"
    )
