"""
Template region mapping.

Application: a stored percentage region plus a page box becomes an absolute
point rectangle, then a pixel crop of the rendered page for OCR.

Capture: a rectangle drawn over the displayed page image (CSS pixels) becomes
a percentage region in the crop-box convention, ready to persist.
"""

import io
import logging
import math
from typing import Dict, Optional

from PIL import Image

from workorder_engine.models.geometry import (
    CROP_BOX,
    CropRectPt,
    CropRectPx,
    PageBox,
    RenderedPage,
)
from workorder_engine.models.work_order import TemplateRegion
from workorder_engine.utils.errors import RegionError

logger = logging.getLogger(__name__)

POINTS_PER_INCH = 72.0
CAPTURE_TOLERANCE_PT = 1.0
PCT_DECIMALS = 4


def _check_convention(region: TemplateRegion) -> None:
    # Crop box falls back to the media box when a PDF has none, so any box the
    # resolver returns is in the crop-box convention.
    if region.box_source != CROP_BOX:
        raise RegionError(
            f"Region was captured against '{region.box_source}', expected '{CROP_BOX}'",
            RegionError.BOX_MISMATCH
        )


def map_region_to_points(region: TemplateRegion, box: PageBox) -> CropRectPt:
    """
    Convert a percentage region to an absolute point rectangle inside ``box``.

    The rectangle is clamped to the box.

    Raises:
        RegionError: BOX_MISMATCH for a foreign box convention,
            DEGENERATE_REGION if nothing is left after clamping
    """
    _check_convention(region)

    x = box.x0 + region.x_pct * box.width_pt
    y = box.y0 + region.y_pct * box.height_pt
    w = region.w_pct * box.width_pt
    h = region.h_pct * box.height_pt

    left = max(x, box.x0)
    top = max(y, box.y0)
    right = min(x + w, box.x1)
    bottom = min(y + h, box.y1)

    if right - left <= 0 or bottom - top <= 0:
        raise RegionError(
            f"Region collapses after clamping to page box: {region.model_dump()}",
            RegionError.DEGENERATE_REGION
        )

    return CropRectPt(x=left, y=top, width=right - left, height=bottom - top)


def points_to_pixels(
    rect: CropRectPt,
    image_box: PageBox,
    px_per_pt: float,
    image_width_px: Optional[int] = None,
    image_height_px: Optional[int] = None
) -> CropRectPx:
    """
    Convert an absolute point rectangle to pixels of an image of ``image_box``.

    Pixel (0, 0) is the image box origin. Edges are rounded independently and
    clamped to the image, so the result never extends past the page.

    Raises:
        RegionError: DEGENERATE_REGION if the pixel rectangle is empty
    """
    if image_width_px is None:
        image_width_px = int(round(image_box.width_pt * px_per_pt))
    if image_height_px is None:
        image_height_px = int(round(image_box.height_pt * px_per_pt))

    def to_px(value: float, origin: float, limit: int) -> int:
        return min(max(int(round((value - origin) * px_per_pt)), 0), limit)

    left = to_px(rect.x, image_box.x0, image_width_px)
    top = to_px(rect.y, image_box.y0, image_height_px)
    right = to_px(rect.x1, image_box.x0, image_width_px)
    bottom = to_px(rect.y1, image_box.y0, image_height_px)

    if right - left <= 0 or bottom - top <= 0:
        raise RegionError(
            f"Pixel crop is empty: left={left}, top={top}, right={right}, bottom={bottom}",
            RegionError.DEGENERATE_REGION
        )

    return CropRectPx(
        left=left,
        top=top,
        width=right - left,
        height=bottom - top,
        dpi=int(round(px_per_pt * POINTS_PER_INCH))
    )


def map_template_region_to_crop(region: TemplateRegion, box: PageBox, dpi: int) -> CropRectPx:
    """
    Map a template region to a pixel crop of ``box`` rendered at ``dpi``.

    Pure function: identical inputs give identical output.
    """
    rect_pt = map_region_to_points(region, box)
    return points_to_pixels(rect_pt, box, dpi / POINTS_PER_INCH)


def map_region_to_rendered_page(region: TemplateRegion, rendered: RenderedPage) -> CropRectPx:
    """
    Map a template region onto an already rendered page.

    Percentages and pixels both use the box the reconciler reported for the
    image, since that is the area the pixels actually cover.
    """
    rect_pt = map_region_to_points(region, rendered.box)
    return points_to_pixels(
        rect_pt,
        rendered.box,
        rendered.scale,
        image_width_px=rendered.width_px,
        image_height_px=rendered.height_px
    )


def expand_region(region: TemplateRegion, pad_pct: float) -> TemplateRegion:
    """
    Grow a region by ``pad_pct`` of the page on every side, clamped to the page.

    Used to retry OCR when the first read is weak.
    """
    x_pct = max(0.0, region.x_pct - pad_pct)
    y_pct = max(0.0, region.y_pct - pad_pct)
    w_pct = min(1.0 - x_pct, region.w_pct + 2 * pad_pct)
    h_pct = min(1.0 - y_pct, region.h_pct + 2 * pad_pct)
    return region.model_copy(update={
        'x_pct': x_pct,
        'y_pct': y_pct,
        'w_pct': w_pct,
        'h_pct': h_pct,
    })


def crop_image(png_bytes: bytes, rect: CropRectPx) -> bytes:
    """Crop a rendered page PNG and return the crop as PNG bytes."""
    with Image.open(io.BytesIO(png_bytes)) as image:
        cropped = image.crop(rect.as_pil_box())
        output = io.BytesIO()
        cropped.save(output, format="PNG")
        return output.getvalue()


def css_rect_to_points(
    css_rect: Dict[str, float],
    displayed_width: float,
    displayed_height: float,
    rendered_width_px: int,
    rendered_height_px: int,
    box: PageBox
) -> CropRectPt:
    """
    Convert a rectangle drawn over the displayed page image to absolute points.

    Three steps: CSS pixels to image pixels (the image may be displayed
    scaled), image pixels to points (the render scale), then offset by the
    box origin.

    Args:
        css_rect: {'x', 'y', 'width', 'height'} in CSS pixels
        displayed_width: Width of the image element on screen
        displayed_height: Height of the image element on screen
        rendered_width_px: Natural width of the rendered image
        rendered_height_px: Natural height of the rendered image
        box: Page box the rendered image represents

    Raises:
        RegionError: INVALID_REGION for non-finite or non-positive input
    """
    values = [css_rect.get(key) for key in ('x', 'y', 'width', 'height')]
    values += [displayed_width, displayed_height, rendered_width_px, rendered_height_px]
    if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in values):
        raise RegionError(f"Capture rectangle has non-finite values: {css_rect}", RegionError.INVALID_REGION)
    if displayed_width <= 0 or displayed_height <= 0 or css_rect['width'] <= 0 or css_rect['height'] <= 0:
        raise RegionError(f"Capture rectangle has no area: {css_rect}", RegionError.INVALID_REGION)

    canvas_x = rendered_width_px / displayed_width
    canvas_y = rendered_height_px / displayed_height
    pt_per_px_x = box.width_pt / rendered_width_px
    pt_per_px_y = box.height_pt / rendered_height_px

    return CropRectPt(
        x=box.x0 + css_rect['x'] * canvas_x * pt_per_px_x,
        y=box.y0 + css_rect['y'] * canvas_y * pt_per_px_y,
        width=css_rect['width'] * canvas_x * pt_per_px_x,
        height=css_rect['height'] * canvas_y * pt_per_px_y
    )


def points_to_css_rect(
    rect: CropRectPt,
    displayed_width: float,
    displayed_height: float,
    rendered_width_px: int,
    rendered_height_px: int,
    box: PageBox
) -> Dict[str, float]:
    """Inverse of ``css_rect_to_points``, for drawing a stored region over a preview."""
    css_per_pt_x = (rendered_width_px / box.width_pt) * (displayed_width / rendered_width_px)
    css_per_pt_y = (rendered_height_px / box.height_pt) * (displayed_height / rendered_height_px)
    return {
        'x': (rect.x - box.x0) * css_per_pt_x,
        'y': (rect.y - box.y0) * css_per_pt_y,
        'width': rect.width * css_per_pt_x,
        'height': rect.height * css_per_pt_y,
    }


def capture_region(rect: CropRectPt, box: PageBox, page: int) -> TemplateRegion:
    """
    Express an absolute point rectangle as a crop-box percentage region.

    Rectangles may overhang the box by up to 1pt (rounding while drawing);
    anything further out is rejected rather than silently clipped.

    Raises:
        RegionError: OUT_OF_BOUNDS or DEGENERATE_REGION
    """
    if (rect.x < box.x0 - CAPTURE_TOLERANCE_PT
            or rect.y < box.y0 - CAPTURE_TOLERANCE_PT
            or rect.x1 > box.x1 + CAPTURE_TOLERANCE_PT
            or rect.y1 > box.y1 + CAPTURE_TOLERANCE_PT):
        raise RegionError(
            f"Region ({rect.x:.2f}, {rect.y:.2f}, {rect.width:.2f}x{rect.height:.2f}pt) "
            f"exceeds page box {box.to_dict()}",
            RegionError.OUT_OF_BOUNDS
        )

    left = max(rect.x, box.x0)
    top = max(rect.y, box.y0)
    right = min(rect.x1, box.x1)
    bottom = min(rect.y1, box.y1)

    x_pct = round((left - box.x0) / box.width_pt, PCT_DECIMALS)
    y_pct = round((top - box.y0) / box.height_pt, PCT_DECIMALS)
    w_pct = round((right - left) / box.width_pt, PCT_DECIMALS)
    h_pct = round((bottom - top) / box.height_pt, PCT_DECIMALS)

    if w_pct <= 0 or h_pct <= 0 or x_pct >= 1 or y_pct >= 1:
        raise RegionError(
            f"Captured region has no usable area: {rect}",
            RegionError.DEGENERATE_REGION
        )

    region = TemplateRegion(
        page=page,
        x_pct=x_pct,
        y_pct=y_pct,
        w_pct=min(w_pct, 1.0),
        h_pct=min(h_pct, 1.0),
        box_source=CROP_BOX
    )

    logger.debug("Captured template region", extra={
        "region": region.model_dump(),
        "box": box.to_dict()
    })
    return region
