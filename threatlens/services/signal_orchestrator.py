# threatlens/services/signal_orchestrator.py
import asyncio
import logging
import time
from typing import Any, List, Optional, Sequence

from ..errors import CollectorError, CollectorTimeout
from .domain_normalizer import NormalizedDomain
from .signal_cache import SignalCache
from .signal_collectors import SignalCollector, SignalOpinion

logger = logging.getLogger(__name__)

DEFAULT_BUDGET_SECONDS = 4.0
DEFAULT_TTL_SECONDS = 1800


class SignalOrchestrator:
    """
    Fans a domain out to every enabled collector at once.

    Each collector gets its own time budget. A collector that times out or
    raises yields a failed opinion instead of failing the whole request.
    Successful opinions are cached per (source, domain).

    A message with no link has no domain; only collectors that accept
    messages see it. Opinions formed from message text are not cached.
    """

    def __init__(self, collectors: Sequence[SignalCollector],
                 cache: Optional[SignalCache] = None,
                 budget: float = DEFAULT_BUDGET_SECONDS,
                 ttl: float = DEFAULT_TTL_SECONDS):
        self.collectors = list(collectors)
        self.cache = cache if cache is not None else SignalCache(ttl=ttl)
        self.budget = budget
        self.ttl = ttl

    @property
    def enabled_collectors(self) -> List[SignalCollector]:
        return [c for c in self.collectors if c.enabled]

    async def gather(self, domain: Optional[NormalizedDomain],
                     findings: Sequence[Any] = (),
                     message: Optional[str] = None) -> List[SignalOpinion]:
        """
        Collect one opinion per enabled collector.

        Returns opinions in collector order, once every collector has
        answered, failed or run out of budget.
        """
        target = domain.canonical if domain is not None else "message"
        collectors = self.enabled_collectors
        if domain is None:
            collectors = [c for c in collectors if c.accepts_messages]
        if not collectors:
            logger.info(f"No signal collectors enabled for {target}")
            return []

        start_time = time.time()
        opinions = await asyncio.gather(
            *(self._collect_one(c, domain, findings, message) for c in collectors)
        )

        failed = sum(1 for o in opinions if o.failed)
        logger.info(
            f"Gathered {len(opinions)} signals for {target} "
            f"({failed} failed) in {time.time() - start_time:.3f}s"
        )
        return list(opinions)

    async def _collect_one(self, collector: SignalCollector, domain: Optional[NormalizedDomain],
                           findings: Sequence[Any], message: Optional[str]) -> SignalOpinion:
        source = collector.source
        reads_message = message is not None and collector.accepts_messages
        cacheable = domain is not None and not reads_message

        if cacheable:
            cached = self.cache.get(source, domain.canonical)
            if cached is not None:
                logger.debug(f"Cache hit: {source} {domain.canonical}")
                return cached

        if reads_message:
            call = collector.collect(domain, self.budget, findings, message=message)
        else:
            call = collector.collect(domain, self.budget, findings)

        try:
            opinion = await asyncio.wait_for(call, timeout=self.budget)
        except asyncio.TimeoutError:
            error = CollectorTimeout(source, f"no answer within {self.budget:.1f}s")
            logger.warning(f"Collector timed out: {error}")
            return SignalOpinion.failure(source, str(error))
        except CollectorError as e:
            logger.warning(f"Collector failed: {e}")
            return SignalOpinion.failure(source, str(e))
        except Exception as e:
            logger.warning(f"Collector {source} crashed: {type(e).__name__}: {e}")
            return SignalOpinion.failure(source, f"{type(e).__name__}: {e}")

        if opinion.source != source:
            opinion = SignalOpinion(
                source=source,
                level=opinion.level,
                confidence=opinion.confidence,
                reasons=opinion.reasons,
                details=opinion.details,
                failed=opinion.failed,
            )

        if cacheable and not opinion.failed:
            self.cache.set(source, domain.canonical, opinion, ttl=self.ttl)

        return opinion

    async def aclose(self):
        for collector in self.collectors:
            await collector.aclose()
