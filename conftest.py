# conftest.py
import asyncio
from typing import Any, Optional, Sequence

import pytest

from threatlens.errors import CollectorError
from threatlens.services.brand_registry import BrandRegistry
from threatlens.services.brand_similarity import BrandSimilarityMatcher
from threatlens.services.domain_normalizer import DomainNormalizer, NormalizedDomain
from threatlens.services.signal_collectors import SignalCollector, SignalOpinion


class FakeCollector(SignalCollector):
    """Scripted collector: returns a fixed opinion, raises, or stalls"""

    def __init__(self, source: str, level: str = "safe", confidence: float = 0.8,
                 reasons: Sequence[str] = (), delay: float = 0.0,
                 error: Optional[Exception] = None, enabled: bool = True,
                 accepts_messages: bool = False):
        self.source = source
        self.level = level
        self.confidence = confidence
        self.reasons = tuple(reasons)
        self.delay = delay
        self.error = error
        self._enabled = enabled
        self.calls = 0
        self.seen_findings = None
        self.seen_message = None
        self.accepts_messages = accepts_messages

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def collect(self, domain: Optional[NormalizedDomain], budget: float,
                      findings: Sequence[Any] = (),
                      message: Optional[str] = None) -> SignalOpinion:
        self.calls += 1
        self.seen_findings = tuple(findings)
        self.seen_message = message
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return SignalOpinion(
            source=self.source,
            level=self.level,
            confidence=self.confidence,
            reasons=self.reasons,
        )


def failing_collector(source: str, message: str = "service unavailable") -> FakeCollector:
    return FakeCollector(source, error=CollectorError(source, message))


@pytest.fixture(scope="session")
def registry():
    return BrandRegistry.load()


@pytest.fixture
def normalizer():
    return DomainNormalizer()


@pytest.fixture
def matcher(registry):
    return BrandSimilarityMatcher(registry)
