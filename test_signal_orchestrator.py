# test_signal_orchestrator.py
import asyncio
import threading

import pytest

from conftest import FakeCollector, failing_collector
from threatlens.errors import MalformedExternalResponse
from threatlens.services.domain_normalizer import normalize
from threatlens.services.signal_cache import SignalCache
from threatlens.services.signal_collectors import (
    SignalOpinion,
    AI_JUDGMENT,
    DOMAIN_AGE,
    REPUTATION,
    SCAN_ENGINE,
)
from threatlens.services.signal_orchestrator import SignalOrchestrator


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestSignalCache:
    def test_hit_and_expiry(self):
        clock = FakeClock()
        cache = SignalCache(ttl=60, clock=clock)
        opinion = SignalOpinion(source=REPUTATION, level="safe", confidence=0.8)

        cache.set(REPUTATION, "example.org", opinion)
        assert cache.get(REPUTATION, "example.org") == opinion

        clock.now += 59
        assert cache.get(REPUTATION, "example.org") == opinion

        clock.now += 1
        assert cache.get(REPUTATION, "example.org") is None
        assert len(cache) == 0

    def test_keyed_by_source_and_domain(self):
        cache = SignalCache(ttl=60, clock=FakeClock())
        opinion = SignalOpinion(source=REPUTATION, level="high", confidence=0.9)
        cache.set(REPUTATION, "evil.test", opinion)

        assert cache.get(SCAN_ENGINE, "evil.test") is None
        assert cache.get(REPUTATION, "other.test") is None

    def test_evicts_oldest_when_full(self):
        clock = FakeClock()
        cache = SignalCache(ttl=60, max_entries=10, clock=clock)
        for i in range(11):
            clock.now += 1
            cache.set(REPUTATION, f"d{i}.test", SignalOpinion(source=REPUTATION, level="safe", confidence=0.8))

        assert len(cache) == 9
        assert cache.get(REPUTATION, "d0.test") is None
        assert cache.get(REPUTATION, "d1.test") is None
        assert cache.get(REPUTATION, "d10.test") is not None

    def test_concurrent_writers(self):
        cache = SignalCache(ttl=60, max_entries=10000)
        opinion = SignalOpinion(source=REPUTATION, level="safe", confidence=0.8)

        def writer(n):
            for i in range(200):
                cache.set(REPUTATION, f"{n}-{i}.test", opinion)
                cache.get(REPUTATION, f"{n}-{i}.test")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(cache) == 1600
        assert cache.stats()["hits"] == 1600


class TestSignalOrchestrator:
    """Concurrent, time-boxed fan-out"""

    @pytest.fixture
    def domain(self):
        return normalize("paypa1-secure-login.com")

    def test_one_opinion_per_enabled_collector_in_order(self, domain):
        collectors = [
            FakeCollector(REPUTATION, "safe"),
            FakeCollector(SCAN_ENGINE, "low", delay=0.05),
            FakeCollector(DOMAIN_AGE, "medium", enabled=False),
            FakeCollector(AI_JUDGMENT, "high"),
        ]
        orchestrator = SignalOrchestrator(collectors, budget=1.0)

        opinions = asyncio.run(orchestrator.gather(domain))

        assert [o.source for o in opinions] == [REPUTATION, SCAN_ENGINE, AI_JUDGMENT]
        assert [o.level for o in opinions] == ["safe", "low", "high"]
        assert collectors[2].calls == 0

    def test_slow_collector_becomes_failed(self, domain):
        collectors = [
            FakeCollector(REPUTATION, "safe"),
            FakeCollector(AI_JUDGMENT, "high", delay=5.0),
        ]
        orchestrator = SignalOrchestrator(collectors, budget=0.1)

        opinions = asyncio.run(orchestrator.gather(domain))

        assert opinions[0].level == "safe" and not opinions[0].failed
        assert opinions[1].failed
        assert opinions[1].level == "unknown"
        assert "no answer within" in opinions[1].details["error"]

    def test_collectors_run_concurrently(self, domain):
        collectors = [FakeCollector(f"source-{i}", delay=0.3) for i in range(4)]
        orchestrator = SignalOrchestrator(collectors, budget=0.5)

        async def timed():
            loop = asyncio.get_running_loop()
            start = loop.time()
            opinions = await orchestrator.gather(domain)
            return opinions, loop.time() - start

        opinions, elapsed = asyncio.run(timed())
        assert not any(o.failed for o in opinions)
        assert elapsed < 1.0

    @pytest.mark.parametrize("error", [
        MalformedExternalResponse(AI_JUDGMENT, "not JSON"),
        RuntimeError("unexpected"),
    ])
    def test_errors_become_failed(self, domain, error):
        collectors = [FakeCollector(AI_JUDGMENT, error=error), FakeCollector(REPUTATION, "high")]
        opinions = asyncio.run(SignalOrchestrator(collectors, budget=1.0).gather(domain))

        assert opinions[0].failed
        assert opinions[1].level == "high"

    def test_cache_hit_skips_collector(self, domain):
        collector = FakeCollector(REPUTATION, "high", confidence=0.9)
        orchestrator = SignalOrchestrator([collector], cache=SignalCache(ttl=60), budget=1.0)

        first = asyncio.run(orchestrator.gather(domain))
        second = asyncio.run(orchestrator.gather(normalize("https://www.paypa1-secure-login.com/x")))

        assert collector.calls == 1
        assert first == second

    def test_failed_opinions_are_not_cached(self, domain):
        collector = failing_collector(SCAN_ENGINE)
        orchestrator = SignalOrchestrator([collector], cache=SignalCache(ttl=60), budget=1.0)

        asyncio.run(orchestrator.gather(domain))
        asyncio.run(orchestrator.gather(domain))

        assert collector.calls == 2
        assert len(orchestrator.cache) == 0

    def test_findings_are_passed_to_collectors(self, domain, matcher):
        findings = matcher.find_similarities(domain)
        collector = FakeCollector(AI_JUDGMENT, "high")

        asyncio.run(SignalOrchestrator([collector]).gather(domain, findings))

        assert collector.seen_findings == tuple(findings)
        assert collector.seen_findings

    def test_no_enabled_collectors(self, domain):
        orchestrator = SignalOrchestrator([FakeCollector(REPUTATION, enabled=False)])
        assert asyncio.run(orchestrator.gather(domain)) == []

    def test_message_goes_only_to_collectors_that_read_it(self, domain):
        ai = FakeCollector(AI_JUDGMENT, "high", accepts_messages=True)
        reputation = FakeCollector(REPUTATION, "safe")
        text = "Urgent: verify at paypa1-secure-login.com"

        asyncio.run(SignalOrchestrator([ai, reputation]).gather(domain, message=text))

        assert ai.seen_message == text
        assert reputation.calls == 1
        assert reputation.seen_message is None

    def test_without_domain_only_message_readers_run(self):
        ai = FakeCollector(AI_JUDGMENT, "high", accepts_messages=True)
        reputation = FakeCollector(REPUTATION, "safe")
        orchestrator = SignalOrchestrator([reputation, ai], cache=SignalCache(ttl=60), budget=1.0)

        opinions = asyncio.run(orchestrator.gather(None, message="send me your password now"))

        assert [o.source for o in opinions] == [AI_JUDGMENT]
        assert reputation.calls == 0
        assert len(orchestrator.cache) == 0

    def test_opinions_on_message_text_are_not_cached(self, domain):
        ai = FakeCollector(AI_JUDGMENT, "high", accepts_messages=True)
        reputation = FakeCollector(REPUTATION, "safe")
        orchestrator = SignalOrchestrator([ai, reputation], cache=SignalCache(ttl=60), budget=1.0)

        asyncio.run(orchestrator.gather(domain, message="first message paypa1-secure-login.com"))
        asyncio.run(orchestrator.gather(domain, message="second message paypa1-secure-login.com"))

        assert ai.calls == 2
        assert ai.seen_message.startswith("second")
        assert reputation.calls == 1

    def test_aclose_reaches_every_collector(self):
        closed = []

        class Closing(FakeCollector):
            async def aclose(self):
                closed.append(self.source)

        orchestrator = SignalOrchestrator([Closing(REPUTATION), Closing(SCAN_ENGINE, enabled=False)])
        asyncio.run(orchestrator.aclose())

        assert closed == [REPUTATION, SCAN_ENGINE]
