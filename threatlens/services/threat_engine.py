# threatlens/services/threat_engine.py
import asyncio
import logging
import time
from typing import Any, Dict, Optional

from ..errors import InvalidInputError
from .ai_judgment_collector import AIJudgmentCollector
from .brand_registry import BrandRegistry
from .brand_similarity import BrandSimilarityMatcher
from .domain_age_collector import DomainAgeCollector
from .domain_normalizer import DomainNormalizer, is_message
from .message_indicators import MessageIndicatorScanner
from .reputation_collector import ReputationCollector
from .scan_engine_collector import ScanEngineCollector
from .score_aggregator import ScoreAggregator, Verdict
from .signal_cache import SignalCache
from .signal_orchestrator import SignalOrchestrator

logger = logging.getLogger(__name__)


class ThreatEngine:
    """
    Multi-signal domain threat scoring.

    Pipeline for one input:
    - Normalize the raw URL / domain / message into a canonical host
    - Run offline brand-similarity heuristics, plus scam-language checks
      when the input is a message
    - Gather opinions from external signals (concurrently, time-boxed)
    - Fuse everything into a Verdict

    A message with no link is still scored from its text alone.

    Only InvalidInputError escapes; every other failure degrades the verdict.
    """

    def __init__(self, normalizer: DomainNormalizer, matcher: BrandSimilarityMatcher,
                 orchestrator: SignalOrchestrator, aggregator: Optional[ScoreAggregator] = None,
                 scanner: Optional[MessageIndicatorScanner] = None):
        self.normalizer = normalizer
        self.matcher = matcher
        self.orchestrator = orchestrator
        self.aggregator = aggregator or ScoreAggregator()
        self.scanner = scanner or MessageIndicatorScanner()

    @classmethod
    def from_settings(cls, settings) -> "ThreatEngine":
        """Wire the default collectors from configuration"""
        registry = BrandRegistry.load(settings.brand_patterns_path)

        collectors = [
            ReputationCollector(settings.safe_browsing_api_key),
            ScanEngineCollector(settings.virustotal_api_key),
            DomainAgeCollector(enabled=settings.domain_age_enabled),
            AIJudgmentCollector(settings.openai_api_key, model=settings.openai_model),
        ]
        cache = SignalCache(
            ttl=settings.signal_cache_ttl_seconds,
            max_entries=settings.signal_cache_max_entries,
        )
        orchestrator = SignalOrchestrator(
            collectors,
            cache=cache,
            budget=settings.signal_budget_seconds,
            ttl=settings.signal_cache_ttl_seconds,
        )

        enabled = [c.source for c in orchestrator.enabled_collectors]
        logger.info(f"Threat engine ready: {len(registry)} brands, collectors enabled: {enabled or 'none'}")

        return cls(DomainNormalizer(), BrandSimilarityMatcher(registry), orchestrator)

    async def analyze_async(self, raw: str) -> Verdict:
        """
        Analyze one input.

        Args:
            raw: URL, bare domain, or free-text message containing one

        Returns:
            Verdict for the extracted domain, or for the message text when
            it carries no link

        Raises:
            InvalidInputError: empty input, or a single token with no valid host
        """
        start_time = time.time()

        text = str(raw).strip() if raw is not None else ""
        message = text if is_message(text) else None

        try:
            domain = self.normalizer.normalize(raw)
        except InvalidInputError:
            if message is None:
                raise
            domain = None

        findings = list(self.matcher.find_similarities(domain)) if domain is not None else []
        if message is not None:
            findings.extend(self.scanner.scan(message))

        opinions = await self.orchestrator.gather(domain, findings, message=message)

        target = domain.canonical if domain is not None else None
        verdict = self.aggregator.aggregate(opinions, findings, domain=target)

        logger.info(
            f"Verdict for {target or 'message'}: level={verdict.level}, "
            f"score={verdict.score:.2f}, confidence={verdict.confidence:.2f}, "
            f"findings={len(findings)}, signals={len(opinions)} "
            f"({time.time() - start_time:.3f}s)"
        )
        return verdict

    def analyze(self, raw: str) -> Verdict:
        """Synchronous entry point; must not be called from a running event loop"""
        return asyncio.run(self.analyze_async(raw))

    def status(self) -> Dict[str, Any]:
        return {
            "collectors": [
                {"source": c.source, "enabled": c.enabled}
                for c in self.orchestrator.collectors
            ],
            "budget_seconds": self.orchestrator.budget,
            "cache": self.orchestrator.cache.stats(),
            "brands": len(self.matcher.registry),
        }

    async def aclose(self):
        await self.orchestrator.aclose()
