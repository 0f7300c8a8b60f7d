"""
Page rendering service.
Validates the document, resolves the page box, rasterizes with the built
transform and reconciles the result before any geometry is reported.
"""

import logging
import math
from typing import Optional

from workorder_engine.config import settings
from workorder_engine.models.geometry import PageBox, RenderedPage
from workorder_engine.models.work_order import TemplateRegion
from workorder_engine.services.page_geometry import PageGeometryResolver
from workorder_engine.services.pdf_engine import PdfEngine
from workorder_engine.services.render_reconciler import reconcile_render
from workorder_engine.services.render_transform import build_render_transform
from workorder_engine.services.template_regions import map_region_to_points
from workorder_engine.utils.errors import GeometryError, RenderError

logger = logging.getLogger(__name__)

PDF_HEADER = b"%PDF-"
MIN_PDF_BYTES = 10


class PageRenderer:
    """Renders single PDF pages through an injected PdfEngine."""

    def __init__(self, engine: PdfEngine, resolver: Optional[PageGeometryResolver] = None):
        """
        Args:
            engine: Engine handle created once by the host at startup
            resolver: Page box resolver (defaults to crop, media, bounds order)
        """
        self.engine = engine
        self.resolver = resolver or PageGeometryResolver(engine)

    def validate_document(self, pdf_data: bytes) -> None:
        """
        Reject data that cannot be a renderable PDF.

        Raises:
            RenderError: INVALID_DOCUMENT
        """
        if not pdf_data or len(pdf_data) < MIN_PDF_BYTES:
            raise RenderError("PDF data is empty or truncated", RenderError.INVALID_DOCUMENT)

        if len(pdf_data) > settings.MAX_PDF_SIZE_BYTES:
            size_mb = len(pdf_data) / (1024 * 1024)
            limit_mb = settings.MAX_PDF_SIZE_BYTES / (1024 * 1024)
            raise RenderError(
                f"PDF too large: {size_mb:.2f}MB. Maximum: {limit_mb:.0f}MB",
                RenderError.INVALID_DOCUMENT
            )

        if not pdf_data.startswith(PDF_HEADER):
            raise RenderError("Data does not start with a %PDF- header", RenderError.INVALID_DOCUMENT)

    def render_page(
        self,
        pdf_data: bytes,
        page_number: int = 1,
        dpi: Optional[int] = None
    ) -> RenderedPage:
        """
        Render one page.

        Without ``dpi`` the page is rendered for display: default scale capped
        to MAX_RENDERED_WIDTH. With ``dpi`` it is rendered at ``dpi / 72`` with
        no width cap, for OCR crops.

        Args:
            pdf_data: Raw PDF bytes
            page_number: 1-based page number
            dpi: Optional render resolution

        Returns:
            RenderedPage whose box matches its pixels

        Raises:
            RenderError: Invalid document, page out of range, or rasterization failure
            GeometryError: No valid page box
        """
        self.validate_document(pdf_data)

        if page_number < 1:
            raise RenderError(f"Page must be >= 1, got {page_number}", RenderError.PAGE_OUT_OF_RANGE)

        document = self.engine.open_document(pdf_data)
        try:
            total_pages = self.engine.page_count(document)
            if page_number > total_pages:
                raise RenderError(
                    f"Page {page_number} does not exist (total pages: {total_pages})",
                    RenderError.PAGE_OUT_OF_RANGE
                )

            try:
                return self._render_loaded(document, page_number, total_pages, dpi)
            except (GeometryError, RenderError):
                raise
            except Exception as e:
                raise RenderError(
                    f"Failed to render PDF page {page_number}: {str(e)}",
                    RenderError.RENDER_FAILED
                ) from e
        finally:
            self.engine.close_document(document)

    def read_region_text(self, pdf_data: bytes, region: TemplateRegion) -> str:
        """
        Read the digital text layer inside a template region.

        Text positions are reported in the renderer's bounds space, which has
        the crop box's size with its origin at (0, 0).

        Args:
            pdf_data: Raw PDF bytes
            region: Template region, its page included

        Returns:
            Text inside the region (empty for scanned pages)

        Raises:
            RenderError: Invalid document, page out of range, or text extraction failure
            GeometryError: No valid page box, or the region collapses on it
        """
        self.validate_document(pdf_data)

        document = self.engine.open_document(pdf_data)
        try:
            total_pages = self.engine.page_count(document)
            if region.page > total_pages:
                raise RenderError(
                    f"Page {region.page} does not exist (total pages: {total_pages})",
                    RenderError.PAGE_OUT_OF_RANGE
                )

            try:
                page = self.engine.load_page(document, region.page - 1)
                box = self.resolver.resolve_bounds(page) or self.resolver.resolve(page).box
                clip = map_region_to_points(region, box)
                return self.engine.extract_text(page, PageBox(clip.x, clip.y, clip.x1, clip.y1)) or ""
            except (GeometryError, RenderError):
                raise
            except Exception as e:
                raise RenderError(
                    f"Failed to read text on PDF page {region.page}: {str(e)}",
                    RenderError.RENDER_FAILED
                ) from e
        finally:
            self.engine.close_document(document)

    def _render_loaded(
        self,
        document,
        page_number: int,
        total_pages: int,
        dpi: Optional[int]
    ) -> RenderedPage:
        page = self.engine.load_page(document, page_number - 1)
        resolved = self.resolver.resolve(page)

        if dpi is not None:
            transform = build_render_transform(
                resolved.box,
                max_width_px=math.inf,
                default_scale=dpi / 72.0,
                can_compose=self.engine.supports_composed_transform
            )
        else:
            transform = build_render_transform(
                resolved.box,
                can_compose=self.engine.supports_composed_transform
            )

        pixmap = self.engine.render(page, transform)
        if pixmap is None:
            raise RenderError(f"Renderer returned no data for page {page_number}", RenderError.EMPTY_RASTER)

        width_px, height_px = self.engine.get_pixmap_dims(pixmap)
        if width_px <= 0 or height_px <= 0:
            raise RenderError(
                f"Invalid pixmap dimensions: width={width_px}, height={height_px}",
                RenderError.EMPTY_RASTER
            )

        geometry = reconcile_render(
            resolved.box,
            resolved.source,
            transform.scale,
            width_px,
            height_px,
            read_bounds=lambda: self.resolver.resolve_bounds(page)
        )

        png_bytes = self.engine.pixmap_to_png(pixmap)
        if not png_bytes:
            raise RenderError(f"Renderer produced an empty image for page {page_number}", RenderError.EMPTY_RASTER)

        warnings = list(transform.warnings)
        if geometry.warning:
            warnings.append(geometry.warning)

        logger.debug("Rendered PDF page", extra={
            "page": page_number,
            "total_pages": total_pages,
            "scale": transform.scale,
            "width_px": geometry.width_px,
            "height_px": geometry.height_px,
            "box_source": geometry.box_source,
            "reconciled": geometry.reconciled
        })

        return RenderedPage(
            png_bytes=png_bytes,
            width_px=geometry.width_px,
            height_px=geometry.height_px,
            box=geometry.box,
            box_source=geometry.box_source,
            scale=transform.scale,
            page=page_number,
            total_pages=total_pages,
            reconciled=geometry.reconciled,
            warnings=warnings
        )
