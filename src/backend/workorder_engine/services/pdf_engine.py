"""
PDF engine capability used by the geometry and render services.

The rest of the engine only talks to ``PdfEngine``. Differences between PDF
library versions (attribute names, method names) are handled here and nowhere
else.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, Sequence, Tuple

import fitz  # PyMuPDF

from workorder_engine.models.geometry import BOUNDS, CROP_BOX, MEDIA_BOX, PageBox, RenderTransform
from workorder_engine.utils.errors import RenderError

logger = logging.getLogger(__name__)


class PdfEngine(Protocol):
    """Abstraction over the PDF library that opens, measures and rasterizes pages."""

    supports_composed_transform: bool

    def open_document(self, pdf_data: bytes) -> Any: ...

    def page_count(self, document: Any) -> int: ...

    def load_page(self, document: Any, index: int) -> Any: ...

    def get_page_box(self, page: Any, kind: str) -> Optional[Any]: ...

    def render(self, page: Any, transform: RenderTransform) -> Any: ...

    def get_pixmap_dims(self, pixmap: Any) -> Tuple[int, int]: ...

    def pixmap_to_png(self, pixmap: Any) -> bytes: ...

    def extract_text(self, page: Any, clip: PageBox) -> str: ...

    def close_document(self, document: Any) -> None: ...


# Attribute/method names per box kind, newest PyMuPDF spelling first
_BOX_ACCESSORS = {
    CROP_BOX: ("cropbox", "CropBox"),
    MEDIA_BOX: ("mediabox", "MediaBox"),
    BOUNDS: ("bound", "rect"),
}


def _first_attribute(obj: Any, names: Sequence[str]) -> Optional[Any]:
    """Return the first attribute in ``names`` that exists, calling it if callable."""
    for name in names:
        value = getattr(obj, name, None)
        if value is None:
            continue
        if callable(value):
            try:
                value = value()
            except TypeError:
                continue
        return value
    return None


class PyMuPDFEngine:
    """PdfEngine implementation over PyMuPDF (``fitz``)."""

    supports_composed_transform = True

    def open_document(self, pdf_data: bytes) -> Any:
        try:
            return fitz.open(stream=pdf_data, filetype="pdf")
        except Exception as e:
            raise RenderError(f"Could not open PDF: {str(e)}", RenderError.INVALID_DOCUMENT) from e

    def page_count(self, document: Any) -> int:
        return int(document.page_count)

    def load_page(self, document: Any, index: int) -> Any:
        return document.load_page(index)

    def get_page_box(self, page: Any, kind: str) -> Optional[Any]:
        names = _BOX_ACCESSORS.get(kind)
        if names is None:
            raise ValueError(f"Unknown page box kind: {kind}")
        try:
            return _first_attribute(page, names)
        except Exception as e:
            logger.debug("Page box accessor failed", extra={
                "kind": kind,
                "error": str(e)
            })
            return None

    def _matrix(self, transform: RenderTransform) -> "fitz.Matrix":
        scale_matrix = fitz.Matrix(transform.scale, transform.scale)
        if transform.composed and transform.has_translation:
            # Row-vector convention: the left operand is applied first
            translate = fitz.Matrix(1, 0, 0, 1, transform.translate_x, transform.translate_y)
            return translate * scale_matrix
        return scale_matrix

    def render(self, page: Any, transform: RenderTransform) -> Any:
        return page.get_pixmap(matrix=self._matrix(transform), alpha=False)

    def get_pixmap_dims(self, pixmap: Any) -> Tuple[int, int]:
        width = _first_attribute(pixmap, ("width", "w"))
        height = _first_attribute(pixmap, ("height", "h"))
        if width is None or height is None:
            irect = _first_attribute(pixmap, ("irect",))
            if irect is not None:
                width, height = irect.width, irect.height
        try:
            return int(width), int(height)
        except (TypeError, ValueError):
            raise RenderError(
                f"Invalid pixmap dimensions: width={width}, height={height}",
                RenderError.EMPTY_RASTER
            )

    def pixmap_to_png(self, pixmap: Any) -> bytes:
        tobytes = getattr(pixmap, "tobytes", None)
        if callable(tobytes):
            return tobytes("png")
        return pixmap.getPNGData()

    def extract_text(self, page: Any, clip: PageBox) -> str:
        """Text layer inside ``clip``, in the page's unrotated crop-box space."""
        return page.get_text("text", clip=fitz.Rect(clip.x0, clip.y0, clip.x1, clip.y1)) or ""

    def close_document(self, document: Any) -> None:
        document.close()
