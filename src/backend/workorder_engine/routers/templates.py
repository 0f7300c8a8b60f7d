"""
Template API router: render pages, capture and preview issuer template regions.
"""

from fastapi import APIRouter, HTTPException, Request, UploadFile, File, Form
import base64
import logging

from workorder_engine.models.api import (
    CropPreviewResponse,
    RegionCaptureRequest,
    RegionCaptureResponse,
    RenderResponse,
)
from workorder_engine.services.page_renderer import PageRenderer
from workorder_engine.services.profile_store import ProfileStore
from workorder_engine.services.template_regions import (
    capture_region,
    crop_image,
    css_rect_to_points,
    map_region_to_rendered_page,
)
from workorder_engine.config import settings
from workorder_engine.utils.errors import WorkOrderEngineError

router = APIRouter(prefix="/templates", tags=["templates"])
logger = logging.getLogger(__name__)


def _engine_error(e: WorkOrderEngineError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={'code': e.code, 'message': e.message}
    )


@router.post("/render", response_model=RenderResponse)
async def render_page(
    request: Request,
    file: UploadFile = File(...),
    page: int = Form(1)
):
    """
    Render one page for drawing a template region.

    The returned bounds and scale describe exactly the rendered pixels.
    """
    try:
        pdf_data = await file.read()
        rendered = PageRenderer(request.app.state.pdf_engine).render_page(pdf_data, page)

        return RenderResponse(image_data_url=rendered.to_data_url(), **rendered.describe())

    except WorkOrderEngineError as e:
        raise _engine_error(e)
    except Exception as e:
        logger.error("Template render failed", extra={"error": str(e)}, exc_info=True)
        raise HTTPException(
            status_code=500,
            detail=f"Failed to render page: {str(e)}"
        )


@router.post("/{issuer_key}/region", response_model=RegionCaptureResponse)
async def save_template_region(issuer_key: str, capture: RegionCaptureRequest):
    """Store a region drawn over a rendered page as the issuer's template."""
    try:
        box = capture.bounds_pt.to_page_box()
        rect_pt = css_rect_to_points(
            capture.rect.model_dump(),
            capture.displayed_width,
            capture.displayed_height,
            capture.rendered_width_px,
            capture.rendered_height_px,
            box
        )
        region = capture_region(rect_pt, box, capture.page)

        if not ProfileStore().save_region(issuer_key, region):
            raise HTTPException(
                status_code=404,
                detail=f"Issuer profile {issuer_key} not found"
            )

        return RegionCaptureResponse(success=True, issuer_key=issuer_key, region=region)

    except HTTPException:
        raise
    except WorkOrderEngineError as e:
        raise _engine_error(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to save template region: {str(e)}"
        )


@router.post("/{issuer_key}/preview-crop", response_model=CropPreviewResponse)
async def preview_crop(
    request: Request,
    issuer_key: str,
    file: UploadFile = File(...)
):
    """Crop the issuer's template region out of a sample PDF, as OCR would see it."""
    try:
        profile = ProfileStore().get_profile(issuer_key)
        if profile is None:
            raise HTTPException(
                status_code=404,
                detail=f"Issuer profile {issuer_key} not found"
            )
        if profile.template_region is None:
            raise HTTPException(
                status_code=400,
                detail=f"Issuer {issuer_key} has no template region"
            )

        pdf_data = await file.read()
        region = profile.template_region
        rendered = PageRenderer(request.app.state.pdf_engine).render_page(
            pdf_data, region.page, dpi=settings.CROP_DPI
        )
        rect = map_region_to_rendered_page(region, rendered)
        snippet = crop_image(rendered.png_bytes, rect)

        return CropPreviewResponse(
            issuer_key=issuer_key,
            image_data_url="data:image/png;base64," + base64.b64encode(snippet).decode('ascii'),
            crop_px={
                'left': rect.left,
                'top': rect.top,
                'width': rect.width,
                'height': rect.height,
                'dpi': rect.dpi,
            },
            region=region
        )

    except HTTPException:
        raise
    except WorkOrderEngineError as e:
        raise _engine_error(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to preview crop: {str(e)}"
        )
