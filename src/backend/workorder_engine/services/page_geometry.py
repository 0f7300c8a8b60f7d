"""
Page box resolution.

Box sources are tried as an ordered list of named strategies (crop box,
media box, generic bounds). Each strategy returns a PageBox or None; the
first valid box wins.
"""

import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from workorder_engine.models.geometry import (
    BOUNDS,
    CROP_BOX,
    MEDIA_BOX,
    PageBox,
    ResolvedPageBox,
)
from workorder_engine.services.pdf_engine import PdfEngine
from workorder_engine.utils.errors import GeometryError

logger = logging.getLogger(__name__)

_X0_KEYS = ("x0", "x", "left")
_Y0_KEYS = ("y0", "y", "top")
_X1_KEYS = ("x1", "right")
_Y1_KEYS = ("y1", "bottom")
_WIDTH_KEYS = ("width", "w")
_HEIGHT_KEYS = ("height", "h")


def _field(raw: Any, keys) -> Optional[float]:
    for key in keys:
        if isinstance(raw, Mapping):
            value = raw.get(key)
        else:
            value = getattr(raw, key, None)
        if value is None or callable(value):
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return None


def _finite(*values) -> bool:
    return all(v is not None and math.isfinite(v) for v in values)


def normalize_box(raw: Any) -> Optional[PageBox]:
    """
    Normalize a raw rectangle into a PageBox.

    Accepts objects or mappings with named fields (x0/x/left, y0/y/top,
    x1/right or width/w, y1/bottom or height/h) and 4-element sequences
    ``[x0, y0, x1, y1]``.

    Returns:
        PageBox, or None if the rectangle is missing, non-finite or degenerate
    """
    if raw is None:
        return None

    if isinstance(raw, Sequence) and not isinstance(raw, (str, bytes)):
        if len(raw) != 4:
            return None
        try:
            x0, y0, x1, y1 = (float(v) for v in raw)
        except (TypeError, ValueError):
            return None
    else:
        x0 = _field(raw, _X0_KEYS)
        y0 = _field(raw, _Y0_KEYS)
        x1 = _field(raw, _X1_KEYS)
        y1 = _field(raw, _Y1_KEYS)

        if x1 is None and x0 is not None:
            width = _field(raw, _WIDTH_KEYS)
            x1 = x0 + width if width is not None else None
        if y1 is None and y0 is not None:
            height = _field(raw, _HEIGHT_KEYS)
            y1 = y0 + height if height is not None else None

    if not _finite(x0, y0, x1, y1):
        return None
    if x1 <= x0 or y1 <= y0:
        return None

    return PageBox(x0, y0, x1, y1)


@dataclass(frozen=True)
class BoxStrategy:
    """A named way of reading a page box from a page handle."""
    name: str
    read: Callable[[PdfEngine, Any], Optional[PageBox]]

    def __call__(self, engine: PdfEngine, page: Any) -> Optional[PageBox]:
        return self.read(engine, page)


def _engine_box(kind: str) -> Callable[[PdfEngine, Any], Optional[PageBox]]:
    def read(engine: PdfEngine, page: Any) -> Optional[PageBox]:
        return normalize_box(engine.get_page_box(page, kind))
    return read


CROP_BOX_STRATEGY = BoxStrategy(CROP_BOX, _engine_box(CROP_BOX))
MEDIA_BOX_STRATEGY = BoxStrategy(MEDIA_BOX, _engine_box(MEDIA_BOX))
BOUNDS_STRATEGY = BoxStrategy(BOUNDS, _engine_box(BOUNDS))

DEFAULT_STRATEGIES: List[BoxStrategy] = [
    CROP_BOX_STRATEGY,
    MEDIA_BOX_STRATEGY,
    BOUNDS_STRATEGY,
]


class PageGeometryResolver:
    """Resolves the authoritative page box for a page handle."""

    def __init__(self, engine: PdfEngine, strategies: Optional[List[BoxStrategy]] = None):
        self.engine = engine
        self.strategies = strategies if strategies is not None else list(DEFAULT_STRATEGIES)

    def resolve(self, page: Any) -> ResolvedPageBox:
        """
        Try each strategy in order and return the first valid box.

        Raises:
            GeometryError: NO_VALID_PAGE_BOX if no strategy yields a valid box
        """
        for strategy in self.strategies:
            box = strategy(self.engine, page)
            if box is not None:
                logger.debug("Resolved page box", extra={
                    "source": strategy.name,
                    "box": box.to_dict()
                })
                return ResolvedPageBox(box=box, source=strategy.name)

        raise GeometryError(
            "No valid page box from " + ", ".join(s.name for s in self.strategies),
            GeometryError.NO_VALID_PAGE_BOX
        )

    def resolve_bounds(self, page: Any) -> Optional[PageBox]:
        """Read the generic bounds only, bypassing crop/media preference."""
        return BOUNDS_STRATEGY(self.engine, page)


def resolve_page_box(engine: PdfEngine, page: Any) -> ResolvedPageBox:
    """Resolve a page box with the default strategy order."""
    return PageGeometryResolver(engine).resolve(page)
