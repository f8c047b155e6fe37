# threatlens/services/brand_similarity.py
# Brand impersonation detection over normalized domains

import logging
from dataclasses import dataclass
from typing import List, Optional

from .brand_registry import BrandRegistry, BrandEntry
from .domain_normalizer import NormalizedDomain, HOMOGLYPHS, fold

logger = logging.getLogger(__name__)

# Finding categories
LOOKALIKE_DOMAIN = 'lookalike_domain'
CHARACTER_SUBSTITUTION = 'character_substitution'
SUSPICIOUS_PATTERN = 'suspicious_pattern'
KEYWORD_COMBINATION = 'keyword_combination'
HOMOGRAPH_ATTACK = 'homograph_attack'
SECURITY_TERM_ABUSE = 'security_term_abuse'
SECURITY_KEYWORD = 'security_keyword'
EXCESSIVE_HYPHENS = 'excessive_hyphens'
CONTAINS_DIGITS = 'contains_digits'

# Fixed certainty per heuristic
SUBSTITUTION_SIMILARITY = 0.95
PATTERN_SIMILARITY = 1.0
KEYWORD_COMBINATION_SIMILARITY = 0.75
HOMOGRAPH_SIMILARITY = 0.95
SECURITY_TERM_ABUSE_SIMILARITY = 0.8
SECURITY_KEYWORD_SIMILARITY = 0.4
HYPHEN_SIMILARITY = 0.3
DIGIT_SIMILARITY = 0.3

LOOKALIKE_THRESHOLD = 0.8
MIN_SUBSTITUTION_LABEL = 4
MAX_HYPHENS = 2

SECURITY_KEYWORDS = ('secure', 'login', 'signin', 'account', 'verify', 'support')
SECURITY_TERMS = ('secure', 'security', 'login', 'verify', 'account', 'support', 'help')


@dataclass(frozen=True)
class SimilarityFinding:
    """One reason to believe a domain impersonates something"""
    category: str
    similarity: float
    reason: str
    brand: Optional[str] = None
    matched: Optional[str] = None

    def __post_init__(self):
        if not 0.0 <= self.similarity <= 1.0:
            raise ValueError(f"similarity out of range: {self.similarity}")


def levenshtein_distance(s1: str, s2: str) -> int:
    """Calculate Levenshtein distance between two strings."""
    if len(s1) < len(s2):
        s1, s2 = s2, s1

    if len(s2) == 0:
        return len(s1)

    previous_row = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row

    return previous_row[-1]


def similarity_ratio(a: str, b: str) -> float:
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1 - levenshtein_distance(a, b) / longest


class BrandSimilarityMatcher:
    """
    Compares a normalized domain against the brand registry.

    Checks, per brand:
    - edit-distance near misses against legitimate domains
    - digit/homoglyph substitution of a legitimate label
    - known suspicious substrings
    - brand keyword combinations

    plus brand-independent indicators (hyphens, digits, security terms,
    homoglyph characters). Pure computation, never raises.
    """

    def __init__(self, registry: BrandRegistry):
        self.registry = registry

    def find_similarities(self, domain: NormalizedDomain) -> List[SimilarityFinding]:
        # Exact or official-subdomain match is the safe case
        if self.registry.is_legitimate(domain.canonical):
            return []

        findings: List[SimilarityFinding] = []

        for entry in self.registry.entries:
            findings.extend(self._match_brand(domain, entry))

        findings.extend(self._generic_indicators(domain))
        findings.extend(self._homograph_findings(domain))

        if findings:
            logger.info(f"Similarity findings for {domain.canonical}: "
                        f"{[f.category for f in findings]}")
        return findings

    def _match_brand(self, domain: NormalizedDomain, entry: BrandEntry) -> List[SimilarityFinding]:
        canonical = domain.canonical
        folded = domain.folded_form
        hits = []

        substitution_found = False
        for legitimate in sorted(entry.legitimate_domains):
            similarity = similarity_ratio(canonical, legitimate)
            if LOOKALIKE_THRESHOLD < similarity < 1.0:
                hits.append(SimilarityFinding(
                    category=LOOKALIKE_DOMAIN,
                    similarity=round(similarity, 3),
                    reason=f"Suspiciously similar to {legitimate}",
                    brand=entry.name,
                    matched=legitimate,
                ))

            # Confusable substitution (paypa1 -> paypal)
            label = legitimate.split('.')[0]
            if (not substitution_found and len(label) >= MIN_SUBSTITUTION_LABEL
                    and label in folded and label not in canonical):
                substitution_found = True
                hits.append(SimilarityFinding(
                    category=CHARACTER_SUBSTITUTION,
                    similarity=SUBSTITUTION_SIMILARITY,
                    reason=f"Uses look-alike characters to imitate {entry.name}",
                    brand=entry.name,
                    matched=legitimate,
                ))

        for pattern in sorted(entry.suspicious_patterns):
            if fold(pattern) in folded:
                hits.append(SimilarityFinding(
                    category=SUSPICIOUS_PATTERN,
                    similarity=PATTERN_SIMILARITY,
                    reason=f"Contains known suspicious pattern for {entry.name}: {pattern}",
                    brand=entry.name,
                    matched=pattern,
                ))

        keyword_hits = sorted(k for k in entry.keywords if fold(k) in folded)
        if len(keyword_hits) >= 2:
            hits.append(SimilarityFinding(
                category=KEYWORD_COMBINATION,
                similarity=KEYWORD_COMBINATION_SIMILARITY,
                reason=f"Multiple suspicious keywords for {entry.name} brand",
                brand=entry.name,
                matched=', '.join(keyword_hits),
            ))

        return hits

    def _generic_indicators(self, domain: NormalizedDomain) -> List[SimilarityFinding]:
        canonical = domain.canonical
        folded = domain.folded_form
        hits = []

        if canonical.count('-') > MAX_HYPHENS:
            hits.append(SimilarityFinding(
                category=EXCESSIVE_HYPHENS,
                similarity=HYPHEN_SIMILARITY,
                reason="Excessive use of hyphens",
            ))

        if any(ch.isdigit() for ch in canonical) and not domain.is_ip_address:
            hits.append(SimilarityFinding(
                category=CONTAINS_DIGITS,
                similarity=DIGIT_SIMILARITY,
                reason="Contains numbers in suspicious positions",
            ))

        for keyword in SECURITY_KEYWORDS:
            if keyword in folded:
                hits.append(SimilarityFinding(
                    category=SECURITY_KEYWORD,
                    similarity=SECURITY_KEYWORD_SIMILARITY,
                    reason=f"Contains security-related keyword: {keyword}",
                    matched=keyword,
                ))

        security_terms = [term for term in SECURITY_TERMS if term in folded]
        if len(security_terms) >= 2:
            hits.append(SimilarityFinding(
                category=SECURITY_TERM_ABUSE,
                similarity=SECURITY_TERM_ABUSE_SIMILARITY,
                reason="Excessive use of security-related terms",
                matched=', '.join(security_terms),
            ))

        return hits

    def _homograph_findings(self, domain: NormalizedDomain) -> List[SimilarityFinding]:
        hits = []
        seen = set()
        for ch in domain.canonical:
            if ch in HOMOGLYPHS and ch not in seen:
                seen.add(ch)
                hits.append(SimilarityFinding(
                    category=HOMOGRAPH_ATTACK,
                    similarity=HOMOGRAPH_SIMILARITY,
                    reason=f"Contains deceptive character: {ch} (looks like {HOMOGLYPHS[ch]})",
                    matched=ch,
                ))
        return hits
