# threatlens/services/scan_engine_collector.py
import logging
from typing import Any, Dict, Optional, Sequence

import httpx

from ..errors import CollectorError, MalformedExternalResponse
from .domain_normalizer import NormalizedDomain
from .signal_collectors import SignalCollector, SignalOpinion, SCAN_ENGINE

logger = logging.getLogger(__name__)

VIRUSTOTAL_API_URL = "https://www.virustotal.com/api/v3"

# Detection ratio thresholds
HIGH_RATIO = 0.15
MEDIUM_RATIO = 0.05


def detection_level(ratio: float) -> str:
    if ratio >= HIGH_RATIO:
        return "high"
    elif ratio >= MEDIUM_RATIO:
        return "medium"
    elif ratio > 0:
        return "low"
    return "safe"


def detection_confidence(ratio: float) -> float:
    """Clean results get a fixed confidence, detections scale with the ratio"""
    if ratio <= 0:
        return 0.8
    return min(0.95, 0.5 + 2.5 * ratio)


class ScanEngineCollector(SignalCollector):
    """
    Multi-engine verdicts from VirusTotal's domain report.
    Maps the share of engines flagging the domain onto a threat level.
    """

    source = SCAN_ENGINE

    def __init__(self, api_key: Optional[str], client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
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
            raise CollectorError(self.source, "VIRUSTOTAL_API_KEY not configured")

        if self._client is not None:
            response = await self._fetch_report(self._client, domain, budget)
        else:
            async with httpx.AsyncClient(timeout=budget) as client:
                response = await self._fetch_report(client, domain, budget)

        if response.status_code == 404:
            return SignalOpinion(
                source=self.source,
                level="unknown",
                confidence=0.0,
                reasons=(),
                details={"status": "not_found"},
            )

        if response.status_code != 200:
            raise CollectorError(self.source, f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedExternalResponse(self.source, "response is not JSON") from e

        return self._to_opinion(data)

    async def _fetch_report(self, client: httpx.AsyncClient, domain: NormalizedDomain,
                            budget: float) -> httpx.Response:
        try:
            return await client.get(
                f"{VIRUSTOTAL_API_URL}/domains/{domain.ascii_host}",
                headers={"x-apikey": self.api_key},
                timeout=budget,
            )
        except httpx.HTTPError as e:
            raise CollectorError(self.source, f"request failed: {type(e).__name__}: {e}") from e

    def _to_opinion(self, data: Dict[str, Any]) -> SignalOpinion:
        try:
            stats = data["data"]["attributes"]["last_analysis_stats"]
            positives = int(stats.get("malicious", 0)) + int(stats.get("suspicious", 0))
            total = sum(int(v) for v in stats.values())
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise MalformedExternalResponse(self.source, f"missing analysis stats: {e}") from e

        if total == 0:
            return SignalOpinion(
                source=self.source,
                level="unknown",
                confidence=0.0,
                details={"positives": 0, "total": 0},
            )

        ratio = positives / total
        level = detection_level(ratio)
        reasons = ()
        if positives:
            reasons = (f"Flagged by {positives} of {total} security engines",)

        return SignalOpinion(
            source=self.source,
            level=level,
            confidence=detection_confidence(ratio),
            reasons=reasons,
            details={"positives": positives, "total": total, "ratio": round(ratio, 4)},
        )
