# threatlens/services/message_indicators.py
# Scam-language heuristics over the text of a message

import logging
import re
from typing import List

from .brand_similarity import SimilarityFinding

logger = logging.getLogger(__name__)

# Finding categories
URGENCY_LANGUAGE = 'urgency_language'
THREATENING_LANGUAGE = 'threatening_language'
CREDENTIAL_REQUEST = 'credential_request'
CONTAINS_PHONE_NUMBER = 'contains_phone_number'
CONTAINS_EMAIL = 'contains_email'

URGENCY_SIMILARITY = 0.7
THREATENING_SIMILARITY = 0.6
CREDENTIAL_SIMILARITY = 0.8
CONTACT_SIMILARITY = 0.3


class MessageIndicatorScanner:
    """
    Content heuristics for free-text messages.

    Looks for the language scams lean on:
    - Urgency ("act now", "immediately")
    - Threats and alarms ("account suspended", "warning")
    - Requests for passwords or account details
    - Phone numbers and e-mail addresses to reply to

    Each category yields at most one finding, listing the terms it matched.
    """

    def __init__(self):
        self._compile_patterns()

    def _compile_patterns(self):
        """Precompile regex patterns"""
        self.patterns = {
            URGENCY_LANGUAGE: re.compile(
                r'\b(urgent(?:ly)?|immediately|quick(?:ly)?|hurry|limited time|act now|'
                r'right away|asap|expires? (?:today|soon))\b',
                re.IGNORECASE,
            ),
            THREATENING_LANGUAGE: re.compile(
                r'\b(threat|danger|risk|warning|alert|suspend(?:ed)?|locked|blocked|'
                r'legal action|arrest(?:ed)?)\b',
                re.IGNORECASE,
            ),
            CREDENTIAL_REQUEST: re.compile(
                r'\b(password|passcode|pin|login|log in|sign in|account|verify|confirm|'
                r'update|security|ssn|card number|bank details)\b',
                re.IGNORECASE,
            ),
            CONTAINS_PHONE_NUMBER: re.compile(r'\b\d{3}[-.]?\d{3}[-.]?\d{4}\b'),
            CONTAINS_EMAIL: re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'),
        }

    def scan(self, text: str) -> List[SimilarityFinding]:
        if not text:
            return []

        findings = []

        urgency = self._matches(URGENCY_LANGUAGE, text)
        if urgency:
            findings.append(SimilarityFinding(
                category=URGENCY_LANGUAGE,
                similarity=URGENCY_SIMILARITY,
                reason="Uses urgent, pressuring language",
                matched=", ".join(urgency),
            ))

        threats = self._matches(THREATENING_LANGUAGE, text)
        if threats:
            findings.append(SimilarityFinding(
                category=THREATENING_LANGUAGE,
                similarity=THREATENING_SIMILARITY,
                reason="Uses threatening or alarming language",
                matched=", ".join(threats),
            ))

        credentials = self._matches(CREDENTIAL_REQUEST, text)
        if credentials:
            findings.append(SimilarityFinding(
                category=CREDENTIAL_REQUEST,
                similarity=CREDENTIAL_SIMILARITY,
                reason="Asks for passwords or account details",
                matched=", ".join(credentials),
            ))

        phones = self._matches(CONTAINS_PHONE_NUMBER, text)
        if phones:
            findings.append(SimilarityFinding(
                category=CONTAINS_PHONE_NUMBER,
                similarity=CONTACT_SIMILARITY,
                reason="Contains a phone number",
                matched=phones[0],
            ))

        emails = self._matches(CONTAINS_EMAIL, text)
        if emails:
            findings.append(SimilarityFinding(
                category=CONTAINS_EMAIL,
                similarity=CONTACT_SIMILARITY,
                reason="Contains an email address",
                matched=emails[0],
            ))

        if findings:
            logger.debug(f"Message indicators: {[f.category for f in findings]}")

        return findings

    def _matches(self, category: str, text: str) -> List[str]:
        """Distinct matches in first-seen order, lowercased for keyword categories"""
        seen = []
        for match in self.patterns[category].finditer(text):
            term = match.group(0)
            if category not in (CONTAINS_PHONE_NUMBER, CONTAINS_EMAIL):
                term = term.lower()
            if term not in seen:
                seen.append(term)
        return seen


_default_scanner = MessageIndicatorScanner()


def scan(text: str) -> List[SimilarityFinding]:
    return _default_scanner.scan(text)
