# threatlens/services/reputation_collector.py
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..errors import CollectorError, MalformedExternalResponse
from .domain_normalizer import NormalizedDomain
from .signal_collectors import SignalCollector, SignalOpinion, REPUTATION

logger = logging.getLogger(__name__)

SAFE_BROWSING_LOOKUP_API = "https://safebrowsing.googleapis.com/v4/threatMatches:find"

THREAT_TYPES = [
    "MALWARE",
    "SOCIAL_ENGINEERING",
    "UNWANTED_SOFTWARE",
    "POTENTIALLY_HARMFUL_APPLICATION",
]

# Threat categories that mean "do not visit"
CRITICAL_THREATS = {"MALWARE", "SOCIAL_ENGINEERING"}


class ReputationCollector(SignalCollector):
    """
    Malicious URL/domain reputation via Google Safe Browsing.
    Hit on a critical category -> high, other hits -> medium, no hit -> safe.
    """

    source = REPUTATION

    def __init__(self, api_key: Optional[str], client: Optional[httpx.AsyncClient] = None,
                 client_id: str = "threatlens", client_version: str = "1.0.0"):
        self.api_key = api_key
        self.client_id = client_id
        self.client_version = client_version
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def aclose(self) -> None:
        """Close a client handed in at construction; per-call clients close themselves"""
        if self._client is not None:
            await self._client.aclose()

    async def collect(self, domain: NormalizedDomain, budget: float,
                      findings: Sequence[Any] = ()) -> SignalOpinion:
        if not self.api_key:
            raise CollectorError(self.source, "SAFE_BROWSING_API_KEY not configured")

        if self._client is not None:
            data = await self._lookup(self._client, domain, budget)
        else:
            async with httpx.AsyncClient(timeout=budget) as client:
                data = await self._lookup(client, domain, budget)

        return self._to_opinion(data)

    def _build_payload(self, domain: NormalizedDomain) -> Dict[str, Any]:
        host = domain.ascii_host
        return {
            "client": {
                "clientId": self.client_id,
                "clientVersion": self.client_version,
            },
            "threatInfo": {
                "threatTypes": THREAT_TYPES,
                "platformTypes": ["ANY_PLATFORM"],
                "threatEntryTypes": ["URL"],
                "threatEntries": [
                    {"url": f"http://{host}/"},
                    {"url": f"https://{host}/"},
                ],
            },
        }

    async def _lookup(self, client: httpx.AsyncClient, domain: NormalizedDomain,
                      budget: float) -> Dict[str, Any]:
        try:
            response = await client.post(
                SAFE_BROWSING_LOOKUP_API,
                params={"key": self.api_key},
                json=self._build_payload(domain),
                timeout=budget,
            )
        except httpx.HTTPError as e:
            raise CollectorError(self.source, f"request failed: {type(e).__name__}: {e}") from e

        if response.status_code != 200:
            raise CollectorError(self.source, f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedExternalResponse(self.source, "response is not JSON") from e

        if not isinstance(data, dict):
            raise MalformedExternalResponse(self.source, "unexpected response shape")
        return data

    def _to_opinion(self, data: Dict[str, Any]) -> SignalOpinion:
        # Empty body means no matches
        matches: List[Dict[str, Any]] = data.get("matches") or []
        threat_types = sorted({m.get("threatType", "UNKNOWN") for m in matches})

        if not matches:
            return SignalOpinion(
                source=self.source,
                level="safe",
                confidence=0.8,
                reasons=(),
                details={"matches": 0},
            )

        if CRITICAL_THREATS.intersection(threat_types):
            level, confidence = "high", 0.9
        else:
            level, confidence = "medium", 0.7

        reasons = tuple(
            f"Listed by Google Safe Browsing as {t.replace('_', ' ').lower()}"
            for t in threat_types
        )
        return SignalOpinion(
            source=self.source,
            level=level,
            confidence=confidence,
            reasons=reasons,
            details={"matches": len(matches), "threat_types": threat_types},
        )
