"""
Confidence-based decision engine for signed work orders.

PENDING -> AUTO_CONFIRMED | NEEDS_ATTENTION, evaluated once per document:

1. No identifier (after an optional override)      -> NEEDS_ATTENTION / NoIdentifierExtracted
2. Low OCR confidence (no override)                -> NEEDS_ATTENTION / LowConfidenceExtraction
3. Read breaks the issuer rule (no override)       -> NEEDS_ATTENTION / FormatMismatch
4. Several rule-conforming reads (no override)     -> NEEDS_ATTENTION / MultipleCandidates
5. Existence lookup of WorkOrderKey(issuer, id):
   found                                           -> AUTO_CONFIRMED / Matched
   not found, or lookup failed                     -> NEEDS_ATTENTION / OriginalNotFound

Only AUTO_CONFIRMED may lead to artifact upload and a work-order write.
"""

import logging
import math
from typing import Callable, Optional

from workorder_engine.models.decision import (
    ConfidenceLabel,
    DecisionOutcome,
    DecisionReason,
    DecisionStatus,
    ExtractionResult,
)
from workorder_engine.utils.errors import DecisionInputError
from workorder_engine.utils.identifiers import (
    generate_work_order_key,
    normalize_identifier,
    normalize_key_part,
)

logger = logging.getLogger(__name__)

# (work_order_key, identifier) -> key of the existing record, or None
ExistenceLookup = Callable[[str, str], Optional[str]]


REVIEW_REASON_MESSAGES = {
    DecisionReason.MATCHED: {
        'title': "Matched",
        'message': "Signed document attached to the existing work order.",
        'tone': "success",
    },
    DecisionReason.NO_IDENTIFIER_EXTRACTED: {
        'title': "No work order number found",
        'message': "OCR could not find a work order number in the template region. "
                   "Check the template region or enter the number manually.",
        'tone': "warning",
    },
    DecisionReason.LOW_CONFIDENCE_EXTRACTION: {
        'title': "Low confidence read",
        'message': "The work order number was read with low confidence. "
                   "Confirm it before attaching the document.",
        'tone': "warning",
    },
    DecisionReason.ORIGINAL_NOT_FOUND: {
        'title': "Original work order not found",
        'message': "No open work order matches this number. "
                   "Check the number or create the work order first.",
        'tone': "danger",
    },
    DecisionReason.RENDERING_FAILED: {
        'title': "Could not read PDF page",
        'message': "The PDF page could not be rendered or its page box is invalid.",
        'tone': "danger",
    },
    DecisionReason.MALFORMED_EXTRACTION: {
        'title': "Unreadable OCR result",
        'message': "The OCR result was incomplete. Enter the work order number manually.",
        'tone': "warning",
    },
    DecisionReason.TEMPLATE_NOT_CONFIGURED: {
        'title': "Template not configured",
        'message': "No issuer profile with a template region matches this document. "
                   "Configure the issuer's template region and resolve this item.",
        'tone': "info",
    },
    DecisionReason.WRITE_FAILED: {
        'title': "Update failed",
        'message': "The work order could not be updated. Retry from the review queue.",
        'tone': "danger",
    },
    DecisionReason.FORMAT_MISMATCH: {
        'title': "Number does not match the issuer format",
        'message': "A number was read but it does not fit this issuer's work order format. "
                   "Check the template region or enter the number manually.",
        'tone': "warning",
    },
    DecisionReason.MULTIPLE_CANDIDATES: {
        'title': "Several possible numbers",
        'message': "More than one work order number was found in the template region. "
                   "Pick the right one before attaching the document.",
        'tone': "warning",
    },
}


def review_reason_message(reason: DecisionReason) -> dict:
    return REVIEW_REASON_MESSAGES.get(reason, {
        'title': "Needs review",
        'message': "This document needs manual review.",
        'tone': "warning",
    })


def validate_extraction(extraction: ExtractionResult) -> None:
    """
    Raises:
        DecisionInputError: If any field of the OCR result is malformed
    """
    if not isinstance(extraction, ExtractionResult):
        raise DecisionInputError(f"Expected ExtractionResult, got {type(extraction).__name__}")

    if extraction.identifier_text is not None and not isinstance(extraction.identifier_text, str):
        raise DecisionInputError(
            f"identifier_text must be a string or None, got {type(extraction.identifier_text).__name__}"
        )

    if not isinstance(extraction.confidence_label, ConfidenceLabel):
        try:
            ConfidenceLabel(extraction.confidence_label)
        except ValueError:
            raise DecisionInputError(f"Unknown confidence label: {extraction.confidence_label!r}")

    for name in ('candidates', 'valid_candidates'):
        values = getattr(extraction, name)
        if not isinstance(values, (tuple, list)) or not all(isinstance(v, str) for v in values):
            raise DecisionInputError(f"{name} must be a sequence of strings, got {values!r}")

    raw = extraction.confidence_raw
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or not math.isfinite(raw) or not 0 <= raw <= 1:
        raise DecisionInputError(f"confidence_raw must be within [0, 1], got {raw!r}")


class ConfidenceDecisionEngine:
    """Turns one OCR extraction into a terminal DecisionOutcome."""

    def decide(
        self,
        extraction: ExtractionResult,
        existence_lookup: ExistenceLookup,
        issuer_key: Optional[str] = None,
        identifier_override: Optional[str] = None
    ) -> DecisionOutcome:
        """
        Evaluate the transition rules in order.

        A manual override replaces the OCR identifier and skips the
        confidence and candidate gates, but never the existence lookup.

        Args:
            extraction: OCR result for the template region
            existence_lookup: Store lookup by (key, identifier)
            issuer_key: Issuer the document was matched to
            identifier_override: Human-supplied identifier

        Returns:
            DecisionOutcome

        Raises:
            DecisionInputError: If ``extraction`` is malformed
        """
        validate_extraction(extraction)

        label = ConfidenceLabel(extraction.confidence_label)
        raw = float(extraction.confidence_raw)
        overridden = bool(identifier_override and identifier_override.strip())

        if overridden:
            identifier = normalize_identifier(identifier_override) or identifier_override.strip()
        else:
            identifier = (extraction.identifier_text or "").strip()

        # Punctuation-only reads cannot form a key
        if not normalize_key_part(identifier):
            identifier = ""

        def outcome(status, reason, matched_key=None):
            return DecisionOutcome(
                status=status,
                reason=reason,
                identifier=identifier or None,
                matched_record_key=matched_key,
                confidence_label=label,
                confidence_raw=raw,
                overridden=overridden
            )

        if not identifier:
            return outcome(DecisionStatus.NEEDS_ATTENTION, DecisionReason.NO_IDENTIFIER_EXTRACTED)

        if label == ConfidenceLabel.LOW and not overridden:
            return outcome(DecisionStatus.NEEDS_ATTENTION, DecisionReason.LOW_CONFIDENCE_EXTRACTION)

        if not overridden and extraction.candidates:
            if identifier not in extraction.valid_candidates:
                return outcome(DecisionStatus.NEEDS_ATTENTION, DecisionReason.FORMAT_MISMATCH)
            if len(set(extraction.valid_candidates)) > 1:
                return outcome(DecisionStatus.NEEDS_ATTENTION, DecisionReason.MULTIPLE_CANDIDATES)

        key = generate_work_order_key(issuer_key, identifier)
        try:
            matched_key = existence_lookup(key, identifier)
        except Exception as e:
            logger.warning("Existence lookup failed, routing to review", extra={
                "work_order_key": key,
                "error": str(e)
            })
            matched_key = None

        if matched_key:
            return outcome(DecisionStatus.AUTO_CONFIRMED, DecisionReason.MATCHED, matched_key)

        return outcome(DecisionStatus.NEEDS_ATTENTION, DecisionReason.ORIGINAL_NOT_FOUND)

    def decide_safely(
        self,
        extraction: ExtractionResult,
        existence_lookup: ExistenceLookup,
        issuer_key: Optional[str] = None,
        identifier_override: Optional[str] = None
    ) -> DecisionOutcome:
        """Like ``decide``, but a malformed extraction becomes NEEDS_ATTENTION."""
        try:
            return self.decide(extraction, existence_lookup, issuer_key, identifier_override)
        except DecisionInputError as e:
            logger.warning("Malformed extraction, routing to review", extra={
                "issuer_key": issuer_key,
                "error": str(e)
            })
            raw = getattr(extraction, 'confidence_raw', 0.0)
            if isinstance(raw, bool) or not isinstance(raw, (int, float)) or not math.isfinite(raw):
                raw = 0.0
            raw = min(max(float(raw), 0.0), 1.0)
            return DecisionOutcome(
                status=DecisionStatus.NEEDS_ATTENTION,
                reason=DecisionReason.MALFORMED_EXTRACTION,
                identifier=None,
                confidence_label=ConfidenceLabel.LOW,
                confidence_raw=float(raw),
                overridden=bool(identifier_override)
            )


def decide(
    extraction: ExtractionResult,
    existence_lookup: ExistenceLookup,
    issuer_key: Optional[str] = None,
    identifier_override: Optional[str] = None
) -> DecisionOutcome:
    """Module-level shortcut for ``ConfidenceDecisionEngine().decide``."""
    return ConfidenceDecisionEngine().decide(extraction, existence_lookup, issuer_key, identifier_override)
