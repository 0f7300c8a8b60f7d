"""
OCR service for reading work-order numbers from template region crops.
"""

import io
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import pytesseract
from PIL import Image, ImageEnhance

from workorder_engine.config import settings
from workorder_engine.models.decision import ConfidenceLabel, ExtractionResult
from workorder_engine.utils.identifiers import analyze_identifier_text

logger = logging.getLogger(__name__)

TESSERACT_CONFIG = r'--oem 3 --psm 6'


@dataclass(frozen=True)
class OcrReading:
    """Text and mean word confidence (0..1) for one image."""
    text: str
    confidence_raw: float


def label_confidence(
    confidence_raw: float,
    high_threshold: float = None,
    medium_threshold: float = None
) -> ConfidenceLabel:
    """
    Bucket a raw OCR confidence.

    high >= 0.9, medium >= 0.6, otherwise low (thresholds configurable).
    """
    if high_threshold is None:
        high_threshold = settings.HIGH_CONFIDENCE_THRESHOLD
    if medium_threshold is None:
        medium_threshold = settings.MEDIUM_CONFIDENCE_THRESHOLD

    if confidence_raw >= high_threshold:
        return ConfidenceLabel.HIGH
    if confidence_raw >= medium_threshold:
        return ConfidenceLabel.MEDIUM
    return ConfidenceLabel.LOW


def extraction_from_text(
    text: str,
    confidence_raw: float,
    expected_digits: Optional[int] = None,
    identifier_pattern: Optional[str] = None
) -> ExtractionResult:
    """
    Build an ExtractionResult from region text.

    The first rule-conforming candidate is the identifier. When none conforms,
    the first candidate is reported so the decision can flag the mismatch.
    """
    analysis = analyze_identifier_text(text, expected_digits, identifier_pattern)
    identifier = analysis.identifier
    if identifier is None and analysis.candidates:
        identifier = analysis.candidates[0]

    return ExtractionResult(
        identifier_text=identifier,
        confidence_label=label_confidence(confidence_raw),
        confidence_raw=confidence_raw,
        raw_text=text,
        candidates=analysis.candidates,
        valid_candidates=analysis.valid
    )


class OCRService:
    """Service for running Tesseract over region crops."""

    def __init__(self):
        """Initialize OCR service with Tesseract configuration."""
        pytesseract.pytesseract.tesseract_cmd = settings.TESSERACT_CMD

    def _preprocess_image(self, image: Image.Image) -> Image.Image:
        """
        Preprocess image to improve OCR accuracy.

        Args:
            image: PIL Image object

        Returns:
            Grayscale, contrast-enhanced image
        """
        if image.mode != 'RGB':
            image = image.convert('RGB')

        image = image.convert('L')

        # Faded scans and stamps read better with doubled contrast
        enhancer = ImageEnhance.Contrast(image)
        return enhancer.enhance(2.0)

    def _reading_from_data(self, data: Dict[str, List]) -> OcrReading:
        """Join recognized words line by line and average their confidences."""
        lines: Dict[tuple, List[str]] = {}
        confidences: List[float] = []

        for i, word in enumerate(data.get('text', [])):
            word = (word or '').strip()
            if not word:
                continue
            try:
                conf = float(data['conf'][i])
            except (KeyError, IndexError, TypeError, ValueError):
                continue
            if conf < 0:
                continue

            line_key = tuple(
                data[key][i] if key in data else 0
                for key in ('block_num', 'par_num', 'line_num')
            )
            lines.setdefault(line_key, []).append(word)
            confidences.append(conf)

        text = '\n'.join(' '.join(words) for words in lines.values())
        confidence_raw = (sum(confidences) / len(confidences) / 100.0) if confidences else 0.0
        return OcrReading(text=text, confidence_raw=max(0.0, min(confidence_raw, 1.0)))

    def recognize(self, image_data: bytes) -> OcrReading:
        """
        Run OCR on an image.

        Args:
            image_data: PNG/JPEG bytes of the crop

        Returns:
            OcrReading with the text and mean word confidence
        """
        with Image.open(io.BytesIO(image_data)) as image:
            prepared = self._preprocess_image(image)
            data = pytesseract.image_to_data(
                prepared,
                config=TESSERACT_CONFIG,
                output_type=pytesseract.Output.DICT
            )

        reading = self._reading_from_data(data)
        logger.debug("OCR complete", extra={
            "text_length": len(reading.text),
            "confidence_raw": reading.confidence_raw
        })
        return reading

    def extract_identifier(
        self,
        image_data: bytes,
        expected_digits: Optional[int] = None,
        identifier_pattern: Optional[str] = None
    ) -> ExtractionResult:
        """
        Read a work-order number from a region crop.

        Args:
            image_data: Crop PNG bytes
            expected_digits: Issuer's identifier length, if configured
            identifier_pattern: Issuer's identifier regex, if configured

        Returns:
            ExtractionResult (identifier may be None)
        """
        reading = self.recognize(image_data)
        return extraction_from_text(reading.text, reading.confidence_raw, expected_digits, identifier_pattern)
