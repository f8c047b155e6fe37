# threatlens/services/signal_collectors.py
"""
Uniform contract shared by every threat signal source.

A collector wraps one external capability (reputation list, scan engine,
DNS/WHOIS, AI judgment) and maps whatever it learns onto a SignalOpinion.
Collectors raise CollectorError / MalformedExternalResponse when they cannot
answer; the orchestrator turns those into failed opinions.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional, Sequence, Tuple

from .domain_normalizer import NormalizedDomain

logger = logging.getLogger(__name__)

ThreatLevel = Literal["safe", "low", "medium", "high", "unknown"]

THREAT_LEVELS = ("safe", "low", "medium", "high", "unknown")

# Severity order for comparing levels; unknown ranks below safe
LEVEL_RANK = {"unknown": -1, "safe": 0, "low": 1, "medium": 2, "high": 3}

# Source identifiers
REPUTATION = "reputation"
SCAN_ENGINE = "scan_engine"
DOMAIN_AGE = "domain_age"
AI_JUDGMENT = "ai_judgment"


@dataclass(frozen=True)
class SignalOpinion:
    """Result of one collector invocation"""
    source: str
    level: ThreatLevel
    confidence: float
    reasons: Tuple[str, ...] = ()
    details: Optional[Dict[str, Any]] = field(default=None, compare=False)
    failed: bool = False

    def __post_init__(self):
        if self.level not in THREAT_LEVELS:
            raise ValueError(f"Unknown threat level: {self.level}")
        object.__setattr__(self, 'confidence', min(max(float(self.confidence), 0.0), 1.0))
        object.__setattr__(self, 'reasons', tuple(self.reasons))

    @classmethod
    def failure(cls, source: str, reason: str) -> "SignalOpinion":
        return cls(
            source=source,
            level="unknown",
            confidence=0.0,
            reasons=(),
            details={"error": reason},
            failed=True,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "level": self.level,
            "confidence": round(self.confidence, 3),
            "reasons": list(self.reasons),
            "details": self.details,
            "failed": self.failed,
        }


class SignalCollector(ABC):
    """Base class for threat signal sources"""

    source: str = "unknown"

    # Collectors that can judge the raw text of a message set this
    accepts_messages: bool = False

    @property
    def enabled(self) -> bool:
        return True

    @abstractmethod
    async def collect(
        self,
        domain: NormalizedDomain,
        budget: float,
        findings: Sequence[Any] = (),
    ) -> SignalOpinion:
        """
        Produce an opinion about the domain.

        Args:
            domain: Normalized target
            budget: Seconds the caller will wait; use it for client timeouts
            findings: Similarity findings, for collectors that use context

        Collectors with accepts_messages also take a message keyword, and
        receive domain=None when the message carries no link.

        Raises:
            CollectorError: the source could not answer
        """

    async def aclose(self) -> None:
        """Release clients or worker pools the collector holds"""
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} source={self.source} enabled={self.enabled}>"
