"""
Multi-attempt reading of a template region.

The text layer is tried first; a conforming number there skips OCR. Otherwise
the region crop is OCR'd, retried once with a slightly larger region when the
read is weak, and read on a neighbouring page when the template page still
gives nothing usable. The strongest attempt wins.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from workorder_engine.config import settings
from workorder_engine.models.decision import ExtractionResult
from workorder_engine.models.geometry import RenderedPage
from workorder_engine.models.work_order import TemplateRegion
from workorder_engine.services.ocr import OCRService, extraction_from_text
from workorder_engine.services.page_renderer import PageRenderer
from workorder_engine.services.template_regions import (
    crop_image,
    expand_region,
    map_region_to_rendered_page,
)
from workorder_engine.utils.errors import GeometryError, RenderError
from workorder_engine.utils.identifiers import is_plausible_identifier

logger = logging.getLogger(__name__)

DIGITAL_TEXT = "digital_text"
OCR = "ocr"


@dataclass(frozen=True)
class ReadAttempt:
    """One read of the region: which page, how, and what came out."""
    page: int
    method: str
    extraction: ExtractionResult
    snippet_png: Optional[bytes] = None
    expanded: bool = False

    @property
    def is_valid(self) -> bool:
        identifier = self.extraction.identifier_text
        if not is_plausible_identifier(identifier):
            return False
        if self.extraction.candidates:
            return identifier in self.extraction.valid_candidates
        return True

    def describe(self) -> dict:
        return {
            'page': self.page,
            'method': self.method,
            'expanded': self.expanded,
            'identifier': self.extraction.identifier_text,
            'confidence_raw': self.extraction.confidence_raw,
            'valid': self.is_valid,
        }


@dataclass
class RegionRead:
    """All attempts for one document and the one chosen."""
    best: ReadAttempt
    attempts: List[ReadAttempt]
    warnings: List[str] = field(default_factory=list)

    @property
    def extraction(self) -> ExtractionResult:
        return self.best.extraction

    @property
    def snippet_png(self) -> Optional[bytes]:
        if self.best.snippet_png:
            return self.best.snippet_png
        return next((a.snippet_png for a in self.attempts if a.snippet_png), None)

    @property
    def pass_agreement(self) -> bool:
        """Two or more OCR attempts read the same valid number."""
        reads = [a.extraction.identifier_text for a in self.attempts if a.method == OCR and a.is_valid]
        return any(reads.count(value) >= 2 for value in set(reads))

    def describe(self) -> dict:
        return {
            'method': self.best.method,
            'page': self.best.page,
            'pages_tried': sorted({a.page for a in self.attempts}),
            'retry_attempted': any(a.expanded for a in self.attempts),
            'alternate_page_attempted': any(a.page != self.attempts[0].page for a in self.attempts),
            'pass_agreement': self.pass_agreement,
            'attempts': [a.describe() for a in self.attempts],
        }


def pick_best_attempt(attempts: List[ReadAttempt]) -> ReadAttempt:
    """
    Highest-confidence valid attempt, or the highest-confidence attempt when
    none is valid. Earlier attempts win ties.
    """
    if not attempts:
        raise ValueError("No read attempts to choose from")
    pool = [a for a in attempts if a.is_valid] or attempts
    best = pool[0]
    for attempt in pool[1:]:
        if attempt.extraction.confidence_raw > best.extraction.confidence_raw:
            best = attempt
    return best


def alternate_page(template_page: int, total_pages: int) -> Optional[int]:
    """
    Page to try when the template page gives no usable read.

    Two-page documents use the other page; longer ones the page before the
    template page, or page 2 when the template is on page 1.
    """
    if total_pages < 2:
        return None
    if total_pages == 2:
        return 2 if template_page == 1 else 1
    return template_page - 1 if template_page > 1 else 2


class RegionReader:
    """Reads the work-order number from a template region of a signed PDF."""

    def __init__(
        self,
        renderer: PageRenderer,
        ocr_service: OCRService,
        dpi: Optional[int] = None,
        retry_confidence: Optional[float] = None,
        retry_pad_pct: Optional[float] = None
    ):
        self.renderer = renderer
        self.ocr_service = ocr_service
        self.dpi = dpi if dpi is not None else settings.CROP_DPI
        self.retry_confidence = (
            retry_confidence if retry_confidence is not None else settings.OCR_RETRY_CONFIDENCE
        )
        self.retry_pad_pct = retry_pad_pct if retry_pad_pct is not None else settings.OCR_RETRY_PAD_PCT

    def _needs_retry(self, attempt: ReadAttempt) -> bool:
        return attempt.extraction.confidence_raw < self.retry_confidence or not attempt.is_valid

    def _ocr(
        self,
        rendered: RenderedPage,
        region: TemplateRegion,
        expected_digits: Optional[int],
        identifier_pattern: Optional[str],
        expanded: bool = False
    ) -> ReadAttempt:
        snippet_png = crop_image(rendered.png_bytes, map_region_to_rendered_page(region, rendered))
        extraction = self.ocr_service.extract_identifier(
            snippet_png,
            expected_digits=expected_digits,
            identifier_pattern=identifier_pattern
        )
        return ReadAttempt(
            page=rendered.page,
            method=OCR,
            extraction=extraction,
            snippet_png=snippet_png,
            expanded=expanded
        )

    def _read_text_layer(
        self,
        pdf_data: bytes,
        region: TemplateRegion,
        expected_digits: Optional[int],
        identifier_pattern: Optional[str],
        snippet_png: bytes,
        warnings: List[str]
    ) -> Optional[ReadAttempt]:
        try:
            text = self.renderer.read_region_text(pdf_data, region)
        except (GeometryError, RenderError) as e:
            logger.warning("Text layer unreadable, falling back to OCR", extra={
                "page": region.page,
                "error": str(e)
            })
            warnings.append(f"Text layer unreadable: {e.message}")
            return None

        if not text.strip():
            return None

        extraction = extraction_from_text(text, 1.0, expected_digits, identifier_pattern)
        if not extraction.valid_candidates:
            return None

        attempt = ReadAttempt(page=region.page, method=DIGITAL_TEXT, extraction=extraction,
                              snippet_png=snippet_png)
        return attempt if attempt.is_valid else None

    def _read_alternate(
        self,
        pdf_data: bytes,
        region: TemplateRegion,
        page_number: int,
        expected_digits: Optional[int],
        identifier_pattern: Optional[str],
        warnings: List[str]
    ) -> Optional[ReadAttempt]:
        try:
            rendered = self.renderer.render_page(pdf_data, page_number, dpi=self.dpi)
            return self._ocr(rendered, region, expected_digits, identifier_pattern)
        except (GeometryError, RenderError) as e:
            logger.warning("Alternate page unreadable", extra={
                "page": page_number,
                "error": str(e)
            })
            warnings.append(f"Alternate page {page_number} unreadable: {e.message}")
            return None

    def read(
        self,
        pdf_data: bytes,
        region: TemplateRegion,
        expected_digits: Optional[int] = None,
        identifier_pattern: Optional[str] = None
    ) -> RegionRead:
        """
        Read the region and return every attempt with the best one.

        Args:
            pdf_data: Raw PDF bytes
            region: Template region, its page included
            expected_digits: Issuer's identifier length, if configured
            identifier_pattern: Issuer's identifier regex, if configured

        Returns:
            RegionRead

        Raises:
            RenderError, GeometryError: The template page cannot be rendered or cropped
        """
        rendered = self.renderer.render_page(pdf_data, region.page, dpi=self.dpi)
        warnings = list(rendered.warnings)
        snippet_png = crop_image(rendered.png_bytes, map_region_to_rendered_page(region, rendered))

        digital = self._read_text_layer(pdf_data, region, expected_digits, identifier_pattern,
                                        snippet_png, warnings)
        if digital is not None:
            logger.info("Identifier read from text layer", extra={
                "page": region.page,
                "identifier": digital.extraction.identifier_text
            })
            return RegionRead(best=digital, attempts=[digital], warnings=warnings)

        extraction = self.ocr_service.extract_identifier(
            snippet_png,
            expected_digits=expected_digits,
            identifier_pattern=identifier_pattern
        )
        attempts = [ReadAttempt(page=region.page, method=OCR, extraction=extraction, snippet_png=snippet_png)]

        if self._needs_retry(attempts[0]):
            expanded = expand_region(region, self.retry_pad_pct)
            attempts.append(self._ocr(rendered, expanded, expected_digits, identifier_pattern, expanded=True))

        best = pick_best_attempt(attempts)

        other_page = alternate_page(region.page, rendered.total_pages)
        if other_page is not None and self._needs_retry(best):
            attempt = self._read_alternate(pdf_data, region, other_page, expected_digits,
                                           identifier_pattern, warnings)
            if attempt is not None:
                attempts.append(attempt)
                best = pick_best_attempt(attempts)

        logger.debug("Region read complete", extra={
            "attempts": len(attempts),
            "best_page": best.page,
            "best_confidence": best.extraction.confidence_raw,
            "valid": best.is_valid
        })
        return RegionRead(best=best, attempts=attempts, warnings=warnings)
