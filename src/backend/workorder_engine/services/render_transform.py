"""
Render transform construction: capped scale plus origin translation.
"""

import logging
import math

from workorder_engine.config import settings
from workorder_engine.models.geometry import PageBox, RenderTransform
from workorder_engine.utils.errors import RenderError

logger = logging.getLogger(__name__)

SCALE_ONLY_WARNING = (
    "Renderer cannot compose translate and scale; rendering scale-only, "
    "content may be offset for a page box with a non-zero origin"
)


def compute_render_scale(box: PageBox, max_width_px: float, default_scale: float) -> float:
    """Scale that keeps the rendered width at or under ``max_width_px``."""
    return min(default_scale, max_width_px / box.width_pt)


def build_render_transform(
    box: PageBox,
    max_width_px: float = None,
    default_scale: float = None,
    can_compose: bool = True
) -> RenderTransform:
    """
    Build the point-to-pixel transform for rendering ``box``.

    The scale is ``min(default_scale, max_width_px / width_pt)``. When the box
    origin is not (0, 0) the transform translates by (-x0, -y0) first and
    scales second, so the box origin lands on pixel (0, 0).

    Args:
        box: Resolved page box
        max_width_px: Rendered width cap (defaults to MAX_RENDERED_WIDTH)
        default_scale: Quality scale (defaults to DEFAULT_RENDER_SCALE)
        can_compose: Whether the backend can apply translate-then-scale

    Returns:
        RenderTransform

    Raises:
        RenderError: TRANSFORM_FAILED if the scale is not a positive finite number
    """
    if max_width_px is None:
        max_width_px = settings.MAX_RENDERED_WIDTH
    if default_scale is None:
        default_scale = settings.DEFAULT_RENDER_SCALE

    try:
        scale = compute_render_scale(box, max_width_px, default_scale)
    except (TypeError, ZeroDivisionError) as e:
        raise RenderError(f"Could not compute render scale: {str(e)}", RenderError.TRANSFORM_FAILED) from e

    if not math.isfinite(scale) or scale <= 0:
        raise RenderError(f"Invalid render scale: {scale}", RenderError.TRANSFORM_FAILED)

    if not box.has_origin_offset:
        return RenderTransform(scale=scale)

    if not can_compose:
        logger.warning(SCALE_ONLY_WARNING, extra={
            "box": box.to_dict(),
            "scale": scale
        })
        return RenderTransform(scale=scale, composed=False, warnings=(SCALE_ONLY_WARNING,))

    return RenderTransform(
        scale=scale,
        translate_x=-box.x0,
        translate_y=-box.y0,
        composed=True
    )
