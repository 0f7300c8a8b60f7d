"""
Decision engine value types: OCR extraction input and terminal outcome.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class ConfidenceLabel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class DecisionStatus(str, Enum):
    AUTO_CONFIRMED = "AUTO_CONFIRMED"
    NEEDS_ATTENTION = "NEEDS_ATTENTION"


class DecisionReason(str, Enum):
    MATCHED = "Matched"
    NO_IDENTIFIER_EXTRACTED = "NoIdentifierExtracted"
    LOW_CONFIDENCE_EXTRACTION = "LowConfidenceExtraction"
    ORIGINAL_NOT_FOUND = "OriginalNotFound"
    RENDERING_FAILED = "RenderingFailed"
    MALFORMED_EXTRACTION = "MalformedExtraction"
    TEMPLATE_NOT_CONFIGURED = "TemplateNotConfigured"
    WRITE_FAILED = "WriteFailed"
    FORMAT_MISMATCH = "FormatMismatch"
    MULTIPLE_CANDIDATES = "MultipleCandidates"


# Display label for review entries whose original work order is missing
BLOCKED_LABEL = "blocked"


@dataclass(frozen=True)
class ExtractionResult:
    """
    One read of a template region.

    ``candidates`` lists every identifier-like string found in the region,
    ``valid_candidates`` the ones that fit the issuer's identifier rule.
    Both are empty when the reader does not report them.
    """
    identifier_text: Optional[str]
    confidence_label: ConfidenceLabel
    confidence_raw: float
    raw_text: str = ""
    candidates: Tuple[str, ...] = ()
    valid_candidates: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DecisionOutcome:
    """Terminal result of the decision state machine."""
    status: DecisionStatus
    reason: DecisionReason
    identifier: Optional[str] = None
    matched_record_key: Optional[str] = None
    confidence_label: Optional[ConfidenceLabel] = None
    confidence_raw: float = 0.0
    overridden: bool = False

    @property
    def is_confirmed(self) -> bool:
        return self.status == DecisionStatus.AUTO_CONFIRMED

    @property
    def display_confidence(self) -> Optional[str]:
        """Label shown to reviewers; the raw score is kept separately."""
        if self.reason == DecisionReason.ORIGINAL_NOT_FOUND:
            return BLOCKED_LABEL
        return self.confidence_label.value if self.confidence_label else None

    def to_dict(self) -> dict:
        return {
            'status': self.status.value,
            'reason': self.reason.value,
            'identifier': self.identifier,
            'matched_record_key': self.matched_record_key,
            'confidence_label': self.confidence_label.value if self.confidence_label else None,
            'confidence_raw': self.confidence_raw,
            'display_confidence': self.display_confidence,
            'overridden': self.overridden,
        }
