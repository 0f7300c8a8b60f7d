"""
Error taxonomy for the geometry and decision engine.

Every engine error carries a stable ``code`` so routers and the review queue
can report it without parsing messages.
"""

from typing import Optional


class WorkOrderEngineError(Exception):
    """Base class for all engine errors."""

    default_code = "ENGINE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class GeometryError(WorkOrderEngineError):
    """A page box could not be resolved or is not a valid rectangle."""

    NO_VALID_PAGE_BOX = "NO_VALID_PAGE_BOX"
    INVALID_BOX = "INVALID_BOX"

    default_code = INVALID_BOX


class RegionError(GeometryError):
    """A template region cannot be applied to a page box."""

    DEGENERATE_REGION = "DEGENERATE_REGION"
    BOX_MISMATCH = "BOX_MISMATCH"
    OUT_OF_BOUNDS = "OUT_OF_BOUNDS"
    INVALID_REGION = "INVALID_REGION"

    default_code = INVALID_REGION


class RenderError(WorkOrderEngineError):
    """Rasterizing a page failed, or the document was rejected before rendering."""

    INVALID_DOCUMENT = "INVALID_DOCUMENT"
    PAGE_OUT_OF_RANGE = "PAGE_OUT_OF_RANGE"
    TRANSFORM_FAILED = "TRANSFORM_FAILED"
    EMPTY_RASTER = "EMPTY_RASTER"
    RENDER_FAILED = "RENDER_FAILED"

    default_code = RENDER_FAILED


class DecisionInputError(WorkOrderEngineError):
    """An OCR result handed to the decision engine is malformed."""

    default_code = "MALFORMED_EXTRACTION"


class MatchAmbiguityWarning(UserWarning):
    """More than one issuer profile matches a sender; the first one wins."""
