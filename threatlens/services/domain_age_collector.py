# threatlens/services/domain_age_collector.py
import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Sequence

import dns.asyncresolver
import dns.exception
import dns.resolver
import whois

from ..errors import CollectorError
from .domain_normalizer import NormalizedDomain
from .signal_collectors import SignalCollector, SignalOpinion, DOMAIN_AGE, LEVEL_RANK

logger = logging.getLogger(__name__)

NEW_DOMAIN_DAYS = 30
YOUNG_DOMAIN_DAYS = 180

Resolver = Callable[[str, float], Awaitable[List[str]]]
WhoisLookup = Callable[[str, float], Optional[datetime]]

WHOIS_WORKERS = 4


async def resolve_a_records(host: str, lifetime: float) -> List[str]:
    """Resolve A records; an empty list means the name does not resolve"""
    try:
        answer = await dns.asyncresolver.resolve(host, "A", lifetime=lifetime)
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer, dns.resolver.NoNameservers):
        return []
    except dns.exception.Timeout as e:
        raise CollectorError(DOMAIN_AGE, f"DNS timeout for {host}") from e
    return [record.to_text() for record in answer]


def whois_creation_date(domain: str, timeout: float = 10) -> Optional[datetime]:
    """Registration date from WHOIS, or None when the registry does not say"""
    record = whois.whois(domain, timeout=max(1, int(round(timeout))))
    created = record.creation_date if record else None

    # Some registries return several dates
    if isinstance(created, list):
        created = min((d for d in created if isinstance(d, datetime)), default=None)

    return created if isinstance(created, datetime) else None


class DomainAgeCollector(SignalCollector):
    """
    DNS resolution plus registration age.

    - Name does not resolve -> medium
    - Registered < 30 days ago -> high
    - Registered < 180 days ago -> medium
    - Older -> safe

    The blocking WHOIS client runs on a pool owned by this collector, so a
    hung lookup never holds up event-loop shutdown.
    """

    source = DOMAIN_AGE

    def __init__(self, enabled: bool = True, resolver: Optional[Resolver] = None,
                 whois_lookup: Optional[WhoisLookup] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self._enabled = enabled
        self._resolver = resolver or resolve_a_records
        self._whois_lookup = whois_lookup or whois_creation_date
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._executor = ThreadPoolExecutor(max_workers=WHOIS_WORKERS, thread_name_prefix="whois")

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def collect(self, domain: NormalizedDomain, budget: float,
                      findings: Sequence[Any] = ()) -> SignalOpinion:
        level = "safe"
        confidence = 0.0
        reasons = []
        details = {}

        # 1. DNS
        if domain.is_ip_address:
            addresses = [domain.canonical]
        else:
            addresses = await self._resolver(domain.ascii_host, budget)
        details['addresses'] = addresses

        if not addresses:
            level, confidence = "medium", 0.6
            reasons.append("Domain does not resolve in DNS")

        # 2. WHOIS age
        created = None
        if not domain.is_ip_address:
            try:
                loop = asyncio.get_running_loop()
                created = await loop.run_in_executor(
                    self._executor,
                    functools.partial(self._whois_lookup, domain.registrable_domain, budget),
                )
            except Exception as e:
                logger.warning(f"WHOIS lookup failed for {domain.registrable_domain}: {e}")

        if created is None:
            details['age_days'] = None
            if addresses:
                # Resolves, but no registration data to judge by
                confidence = max(confidence, 0.3)
                reasons.append("Domain registration date unavailable")
        else:
            age_days = self._age_days(created)
            details['age_days'] = age_days
            details['created'] = created.isoformat()

            age_level, age_confidence, age_reason = self._classify_age(age_days)
            if LEVEL_RANK[age_level] > LEVEL_RANK[level]:
                level = age_level
            confidence = max(confidence, age_confidence)
            reasons.append(age_reason)

        return SignalOpinion(
            source=self.source,
            level=level,
            confidence=confidence,
            reasons=tuple(reasons),
            details=details,
        )

    def _age_days(self, created: datetime) -> int:
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return (self._clock() - created).days

    def _classify_age(self, age_days: int):
        if age_days < NEW_DOMAIN_DAYS:
            return "high", 0.85, f"Domain is less than {NEW_DOMAIN_DAYS} days old"
        elif age_days < YOUNG_DOMAIN_DAYS:
            return "medium", 0.6, "Domain is less than 6 months old"
        return "safe", 0.7, "Domain age is acceptable"

    async def aclose(self) -> None:
        # Lookups still blocked in WHOIS finish on their own socket timeout
        self._executor.shutdown(wait=False, cancel_futures=True)
