# threatlens/services/score_aggregator.py
"""
Fuses signal opinions and similarity findings into a single Verdict.

Two channels feed the score:

- Opinion channel: weighted mean of level scores over the opinions that
  actually answered. Failed and unknown opinions drop out of both the
  numerator and the denominator, so a missing source never drags the
  score toward safe.
- Similarity channel: weighted sum of heuristic findings, clamped to 1 and
  scaled by SIMILARITY_CHANNEL_WEIGHT. That weight sits below
  HIGH_THRESHOLD, so findings with no answering opinion top out at
  "medium".

The channels combine as 1 - (1 - opinion)(1 - similarity), so findings can
only raise the score.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .brand_similarity import (
    SimilarityFinding,
    LOOKALIKE_DOMAIN,
    CHARACTER_SUBSTITUTION,
    SUSPICIOUS_PATTERN,
    KEYWORD_COMBINATION,
    HOMOGRAPH_ATTACK,
    SECURITY_TERM_ABUSE,
    SECURITY_KEYWORD,
    EXCESSIVE_HYPHENS,
    CONTAINS_DIGITS,
)
from .message_indicators import (
    URGENCY_LANGUAGE,
    THREATENING_LANGUAGE,
    CREDENTIAL_REQUEST,
    CONTAINS_PHONE_NUMBER,
    CONTAINS_EMAIL,
)
from .signal_collectors import (
    SignalOpinion,
    ThreatLevel,
    AI_JUDGMENT,
    REPUTATION,
    SCAN_ENGINE,
    DOMAIN_AGE,
)

logger = logging.getLogger(__name__)

LEVEL_SCORES = {"safe": 0.0, "low": 0.3, "medium": 0.6, "high": 0.9}

SOURCE_WEIGHTS = {
    AI_JUDGMENT: 0.6,
    REPUTATION: 0.15,
    SCAN_ENGINE: 0.15,
    DOMAIN_AGE: 0.1,
}
DEFAULT_SOURCE_WEIGHT = 0.1

CATEGORY_WEIGHTS = {
    HOMOGRAPH_ATTACK: 0.9,
    SUSPICIOUS_PATTERN: 0.8,
    CHARACTER_SUBSTITUTION: 0.8,
    LOOKALIKE_DOMAIN: 0.75,
    SECURITY_TERM_ABUSE: 0.7,
    KEYWORD_COMBINATION: 0.6,
    EXCESSIVE_HYPHENS: 0.2,
    SECURITY_KEYWORD: 0.15,
    CONTAINS_DIGITS: 0.1,
    CREDENTIAL_REQUEST: 0.7,
    URGENCY_LANGUAGE: 0.6,
    THREATENING_LANGUAGE: 0.5,
    CONTAINS_PHONE_NUMBER: 0.15,
    CONTAINS_EMAIL: 0.15,
}
DEFAULT_CATEGORY_WEIGHT = 0.1

# Also the ceiling of a findings-only score
SIMILARITY_CHANNEL_WEIGHT = 0.6

HIGH_THRESHOLD = 0.8
MEDIUM_THRESHOLD = 0.5
LOW_THRESHOLD = 0.2


@dataclass(frozen=True)
class Verdict:
    """Final classification of one domain"""
    level: ThreatLevel
    confidence: float
    score: float
    reasons: Tuple[str, ...]
    opinions: Tuple[SignalOpinion, ...] = ()
    findings: Tuple[SimilarityFinding, ...] = ()
    domain: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc), compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "level": self.level,
            "confidence": round(self.confidence, 3),
            "score": round(self.score, 3),
            "reasons": list(self.reasons),
            "signals": [o.to_dict() for o in self.opinions],
            "findings": [
                {
                    "category": f.category,
                    "brand": f.brand,
                    "matched": f.matched,
                    "similarity": f.similarity,
                    "reason": f.reason,
                }
                for f in self.findings
            ],
            "timestamp": self.timestamp.isoformat(),
        }


def classify(score: float) -> ThreatLevel:
    if score >= HIGH_THRESHOLD:
        return "high"
    elif score >= MEDIUM_THRESHOLD:
        return "medium"
    elif score > LOW_THRESHOLD:
        return "low"
    return "safe"


def _answered(opinion: SignalOpinion) -> bool:
    return not opinion.failed and opinion.level in LEVEL_SCORES


class ScoreAggregator:
    """Pure combination of opinions and findings; holds no state"""

    def opinion_score(self, opinions: Sequence[SignalOpinion]) -> Optional[float]:
        """Weighted mean over answering opinions, None if none answered"""
        total_weight = 0.0
        weighted = 0.0
        for opinion in opinions:
            if not _answered(opinion):
                continue
            weight = SOURCE_WEIGHTS.get(opinion.source, DEFAULT_SOURCE_WEIGHT)
            weighted += weight * LEVEL_SCORES[opinion.level]
            total_weight += weight

        if total_weight == 0:
            return None
        return weighted / total_weight

    def similarity_score(self, findings: Sequence[SimilarityFinding]) -> float:
        raw = sum(
            f.similarity * CATEGORY_WEIGHTS.get(f.category, DEFAULT_CATEGORY_WEIGHT)
            for f in findings
        )
        return min(1.0, raw) * SIMILARITY_CHANNEL_WEIGHT

    def aggregate(self, opinions: Sequence[SignalOpinion],
                  findings: Sequence[SimilarityFinding],
                  now: Optional[datetime] = None,
                  domain: Optional[str] = None) -> Verdict:
        opinions = tuple(opinions)
        findings = tuple(findings)
        answered = [o for o in opinions if _answered(o)]

        opinion_score = self.opinion_score(opinions)
        similarity_score = self.similarity_score(findings)

        if opinion_score is None:
            score = similarity_score
        else:
            score = 1.0 - (1.0 - opinion_score) * (1.0 - similarity_score)
        score = min(max(score, 0.0), 1.0)

        if not answered and not findings:
            level = "unknown"
        else:
            level = classify(score)

        if answered:
            confidence = max(o.confidence for o in answered)
        elif findings:
            confidence = max(f.similarity for f in findings) * SIMILARITY_CHANNEL_WEIGHT
        else:
            confidence = 0.0

        return Verdict(
            level=level,
            confidence=confidence,
            score=score,
            reasons=self._collect_reasons(answered, findings),
            opinions=opinions,
            findings=findings,
            domain=domain,
            timestamp=now or datetime.now(timezone.utc),
        )

    def _collect_reasons(self, opinions: Sequence[SignalOpinion],
                         findings: Sequence[SimilarityFinding]) -> Tuple[str, ...]:
        reasons: List[str] = []
        seen = set()
        candidates = [r for o in opinions for r in o.reasons] + [f.reason for f in findings]
        for reason in candidates:
            if reason and reason not in seen:
                seen.add(reason)
                reasons.append(reason)
        return tuple(reasons)
