"""
Issuer profile matching by sender domain (and subject keywords as a fallback).
"""

import logging
import re
import warnings
from typing import List, Optional

from workorder_engine.models.work_order import IssuerProfile
from workorder_engine.utils.errors import MatchAmbiguityWarning

logger = logging.getLogger(__name__)

_ADDRESS_PATTERN = re.compile(r'<([^>]+)>|([^\s<>]+@[^\s<>]+)')

# Rule names, in evaluation order
EXACT = "exact"
SENDER_SUBDOMAIN = "sender_subdomain"
PATTERN_SUBDOMAIN = "pattern_subdomain"
SENDER_PREFIX = "sender_prefix"
PATTERN_PREFIX = "pattern_prefix"


def extract_sender_domain(sender: Optional[str]) -> Optional[str]:
    """
    Pull the lowercased domain out of a sender value.

    Accepts "Name <user@domain.com>", "user@domain.com" or a bare domain.
    Values without a dot are rejected.
    """
    if not sender or not sender.strip():
        return None

    value = sender.strip()
    match = _ADDRESS_PATTERN.search(value)
    if match:
        value = match.group(1) or match.group(2)

    if '@' in value:
        value = value.rsplit('@', 1)[1]

    value = value.strip().strip('>').strip().lower()

    # A single label such as "acme" is not a domain
    if '.' not in value.strip('.'):
        return None
    return value


def domain_match_rule(sender_domain: str, pattern: str) -> Optional[str]:
    """
    Return the name of the first rule under which ``sender_domain`` matches
    ``pattern``, or None.

    Examples:
        >>> domain_match_rule("mail.acme.com", "acme.com")
        'sender_subdomain'
        >>> domain_match_rule("acme.co", "acme.co.uk")
        'pattern_prefix'
    """
    sender_domain = sender_domain.strip().lower()
    pattern = pattern.strip().lower()
    if not sender_domain or not pattern:
        return None

    if sender_domain == pattern:
        return EXACT
    if sender_domain.endswith("." + pattern):
        return SENDER_SUBDOMAIN
    if pattern.endswith("." + sender_domain):
        return PATTERN_SUBDOMAIN
    if sender_domain.startswith(pattern + "."):
        return SENDER_PREFIX
    if pattern.startswith(sender_domain + "."):
        return PATTERN_PREFIX
    return None


def _profile_domain_rule(sender_domain: str, profile: IssuerProfile) -> Optional[str]:
    for pattern in profile.domain_patterns:
        rule = domain_match_rule(sender_domain, pattern)
        if rule:
            return rule
    return None


def match_issuer(
    sender: Optional[str],
    profiles: List[IssuerProfile],
    subject: Optional[str] = None
) -> Optional[IssuerProfile]:
    """
    Resolve the issuer profile for an inbound document.

    Profiles are checked in list order and the first domain match wins.
    Profiles without domain patterns never match by domain. If no profile
    matches by domain, the first profile with a keyword contained in
    ``subject`` wins.

    Args:
        sender: Sender address or domain
        profiles: Configured profiles, in priority order
        subject: Optional email subject

    Returns:
        Matching IssuerProfile, or None
    """
    if not profiles:
        return None

    sender_domain = extract_sender_domain(sender)

    if sender_domain:
        matches = []
        for profile in profiles:
            rule = _profile_domain_rule(sender_domain, profile)
            if rule:
                matches.append((profile, rule))

        if matches:
            winner, rule = matches[0]
            if len(matches) > 1:
                others = [p.issuer_key for p, _ in matches[1:]]
                message = (
                    f"Sender domain '{sender_domain}' matches {len(matches)} issuer profiles; "
                    f"using '{winner.issuer_key}', also matched {others}"
                )
                logger.warning(message, extra={
                    "sender_domain": sender_domain,
                    "issuer_key": winner.issuer_key,
                    "also_matched": others
                })
                warnings.warn(message, MatchAmbiguityWarning, stacklevel=2)

            logger.info("Matched issuer by sender domain", extra={
                "sender_domain": sender_domain,
                "issuer_key": winner.issuer_key,
                "rule": rule
            })
            return winner

    if subject and subject.strip():
        normalized_subject = subject.strip().lower()
        for profile in profiles:
            for keyword in profile.subject_keywords:
                if keyword and keyword in normalized_subject:
                    logger.info("Matched issuer by subject keyword", extra={
                        "issuer_key": profile.issuer_key,
                        "keyword": keyword
                    })
                    return profile

    logger.debug("No issuer profile matched", extra={
        "sender_domain": sender_domain,
        "profile_count": len(profiles)
    })
    return None


class IssuerDomainMatcher:
    """Holds an ordered profile list and matches senders against it."""

    def __init__(self, profiles: List[IssuerProfile]):
        self.profiles = list(profiles)

    def match(self, sender: Optional[str], subject: Optional[str] = None) -> Optional[IssuerProfile]:
        return match_issuer(sender, self.profiles, subject)
