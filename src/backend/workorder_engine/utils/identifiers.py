"""
Work-order identifier helpers.

Turns raw OCR text from a template region into identifier candidates, and
builds the deterministic WorkOrderKey used by every ingestion path.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

DEFAULT_ISSUER = "unknown"

_PREFIX_PATTERNS = [
    re.compile(r'^work\s*order\s*(?:no\.?|number)?\s*#?\s*', re.IGNORECASE),
    re.compile(r'^WO(?![a-z])\s*#?\s*', re.IGNORECASE),
    re.compile(r'^(?:no\.?|#)\s*', re.IGNORECASE),
]

# "WO 1234567", "WO#1234567", "WO-1234567"
_WO_PATTERN = re.compile(r'\bWO\s*#?\s*-?\s*(\d{4,})\b', re.IGNORECASE)
_DIGIT_RUN_PATTERN = re.compile(r'\b(\d{4,})\b')


def normalize_identifier(raw: Optional[str]) -> str:
    """
    Strip common work-order prefixes and keep digits only.

    Examples:
        >>> normalize_identifier("WO# 1234567")
        '1234567'
        >>> normalize_identifier("Work Order No. 88-120")
        '88120'
    """
    if not raw or not isinstance(raw, str):
        return ""

    value = raw.strip()
    for pattern in _PREFIX_PATTERNS:
        value = pattern.sub('', value)

    return ''.join(ch for ch in value if ch.isdigit())


def _length_ok(digits: str, expected_digits: Optional[int]) -> bool:
    if expected_digits is None:
        return True
    return expected_digits - 1 <= len(digits) <= expected_digits + 1


def extract_identifier_candidates(text: str, expected_digits: Optional[int] = None) -> List[str]:
    """
    Find identifier candidates in OCR text, in encounter order.

    WO-prefixed numbers come first, then standalone digit runs of at least
    four digits. When ``expected_digits`` is given only runs within one digit
    of it are kept. Candidates are normalized and de-duplicated.

    Args:
        text: Raw OCR text
        expected_digits: Expected identifier length for this issuer, if known

    Returns:
        List of digit-only candidate strings
    """
    if not text or not isinstance(text, str):
        return []

    candidates: List[str] = []

    for match in _WO_PATTERN.finditer(text):
        digits = match.group(1)
        if _length_ok(digits, expected_digits):
            candidates.append(digits)

    for match in _DIGIT_RUN_PATTERN.finditer(text):
        digits = match.group(1)
        if _length_ok(digits, expected_digits) and not any(digits in c for c in candidates):
            candidates.append(digits)

    seen = set()
    unique = []
    for candidate in candidates:
        if candidate not in seen:
            seen.add(candidate)
            unique.append(candidate)
    return unique


def validate_identifier_format(
    candidate: str,
    expected_digits: Optional[int] = None,
    pattern: Optional[str] = None
) -> bool:
    """Check a normalized candidate against an issuer's identifier rule."""
    if not candidate:
        return False
    if expected_digits is not None and len(candidate) != expected_digits:
        return False
    if pattern:
        return re.fullmatch(pattern, candidate) is not None
    return True


@dataclass(frozen=True)
class IdentifierCandidates:
    """Candidates found in a region's text, and the ones that fit the issuer rule."""
    candidates: Tuple[str, ...] = ()
    valid: Tuple[str, ...] = ()

    @property
    def identifier(self) -> Optional[str]:
        return self.valid[0] if self.valid else None


def analyze_identifier_text(
    text: str,
    expected_digits: Optional[int] = None,
    pattern: Optional[str] = None
) -> IdentifierCandidates:
    """
    Split region text into all candidates and rule-conforming candidates.

    Without a rule every candidate conforms.
    """
    candidates = extract_identifier_candidates(text, expected_digits)
    valid = [c for c in candidates if validate_identifier_format(c, expected_digits, pattern)]
    return IdentifierCandidates(candidates=tuple(candidates), valid=tuple(valid))


def select_identifier(
    text: str,
    expected_digits: Optional[int] = None,
    pattern: Optional[str] = None
) -> Optional[str]:
    """
    Pick the identifier from OCR text.

    The first candidate that satisfies the issuer rule wins. Without a rule,
    the first candidate wins.
    """
    return analyze_identifier_text(text, expected_digits, pattern).identifier


def is_plausible_identifier(value: Optional[str]) -> bool:
    """
    Reject reads that are too short or too uniform to be a work-order number.

    At least three characters and three digits, not all zeros, and not a
    single repeated digit when four characters or shorter.
    """
    if not value:
        return False
    value = value.strip()
    digits = [ch for ch in value if ch.isdigit()]
    if len(value) < 3 or len(digits) < 3:
        return False
    if all(ch == '0' for ch in digits):
        return False
    if len(value) <= 4 and len(set(value)) == 1:
        return False
    return True


def normalize_key_part(value: Optional[str]) -> str:
    """Lowercase, trim, and collapse non-alphanumerics to single underscores."""
    if not value:
        return ""
    value = value.strip().lower()
    value = re.sub(r'[^a-z0-9]+', '_', value)
    return value.strip('_')


def generate_work_order_key(issuer_key: Optional[str], identifier: str) -> str:
    """
    Build the WorkOrderKey for an issuer and identifier.

    Format: "<issuer>:<identifier>", both normalized. A missing issuer maps to
    "unknown" so keys stay stable when the issuer is not known yet.

    Raises:
        ValueError: If the identifier normalizes to an empty string
    """
    identifier_part = normalize_key_part(identifier)
    if not identifier_part:
        raise ValueError("Cannot build a work order key without an identifier")

    issuer_part = normalize_key_part(issuer_key) or DEFAULT_ISSUER
    return f"{issuer_part}:{identifier_part}"


def split_work_order_key(job_key: Optional[str]) -> Tuple[str, str]:
    """
    Split a WorkOrderKey into its issuer and identifier parts.

    Keys without an issuer part belong to the "unknown" issuer.
    """
    issuer, sep, identifier = (job_key or "").partition(':')
    if not sep:
        return DEFAULT_ISSUER, issuer
    return issuer or DEFAULT_ISSUER, identifier
