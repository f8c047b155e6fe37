# threatlens/services/ai_judgment_collector.py
import json
import logging
from typing import Any, List, Optional, Sequence

import openai
from openai import AsyncOpenAI

from ..errors import CollectorError, MalformedExternalResponse
from .domain_normalizer import NormalizedDomain
from .signal_collectors import SignalCollector, SignalOpinion, AI_JUDGMENT

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
VALID_LEVELS = {"safe", "low", "medium", "high"}
MAX_REASONS = 5
MAX_MESSAGE_CHARS = 1000


class AIJudgmentCollector(SignalCollector):
    """
    Asks a language model for a structured judgment of the domain.
    The similarity findings are sent along as context, and so is the text
    of the message the domain arrived in, when there is one.
    """

    source = AI_JUDGMENT
    accepts_messages = True

    def __init__(self, api_key: Optional[str], model: str = DEFAULT_MODEL,
                 client: Optional[Any] = None):
        self.api_key = api_key
        self.model = model
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.api_key) or self._client is not None

    async def aclose(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            await close()

    async def collect(self, domain: Optional[NormalizedDomain], budget: float,
                      findings: Sequence[Any] = (),
                      message: Optional[str] = None) -> SignalOpinion:
        prompt = self._build_prompt(domain, findings, message)

        if self._client is not None:
            content = await self._ask(self._client, prompt)
        else:
            if not self.api_key:
                raise CollectorError(self.source, "OPENAI_API_KEY not configured")
            async with AsyncOpenAI(api_key=self.api_key, timeout=budget, max_retries=0) as client:
                content = await self._ask(client, prompt)

        return self._parse_reply(content)

    def _build_prompt(self, domain: Optional[NormalizedDomain], findings: Sequence[Any],
                      message: Optional[str] = None) -> str:
        if findings:
            finding_lines = "\n".join(
                f"- [{f.category}] {f.reason} (similarity {f.similarity:.2f})" for f in findings
            )
        else:
            finding_lines = "- none"

        if domain is not None:
            target = (
                f"DOMAIN: {domain.canonical}\n"
                f"PUNYCODE FORM: {domain.ascii_host}\n"
                f"CONFUSABLE-FOLDED FORM: {domain.folded_form}"
            )
        else:
            target = "DOMAIN: none (the message contains no link)"

        if message:
            text = message[:MAX_MESSAGE_CHARS]
            target += f"\n\nMESSAGE TEXT (as the user received it):\n\"\"\"\n{text}\n\"\"\""

        return f"""You are a cybersecurity analyst judging whether a web domain or message is a phishing or scam attempt.

{target}

HEURISTIC FINDINGS (brand impersonation and message checks already run):
{finding_lines}

INSTRUCTIONS:
1. Judge the threat level as one of: safe | low | medium | high
2. Give your confidence as a number between 0 and 1
3. List up to {MAX_REASONS} short, plain-language reasons
4. Well-known legitimate domains are safe even if they contain security words
5. For a message, weigh pressure tactics, threats and requests for credentials or payment

Respond ONLY with valid JSON:
{{"threatLevel": "medium", "confidence": 0.7, "reasons": ["First reason", "Second reason"]}}
"""

    async def _ask(self, client: Any, prompt: str) -> Optional[str]:
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": "You are a cybersecurity expert specializing in phishing detection."},
                    {"role": "user", "content": prompt},
                ],
                response_format={"type": "json_object"},
                max_tokens=300,
                temperature=0.2,
            )
        except openai.APIError as e:
            raise CollectorError(self.source, f"model call failed: {type(e).__name__}: {e}") from e

        try:
            return response.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise MalformedExternalResponse(self.source, "reply has no message content") from e

    def _parse_reply(self, content: Optional[str]) -> SignalOpinion:
        if not content:
            raise MalformedExternalResponse(self.source, "empty reply")

        try:
            result = json.loads(content.strip())
        except ValueError as e:
            raise MalformedExternalResponse(self.source, f"reply is not JSON: {content[:80]!r}") from e

        if not isinstance(result, dict):
            raise MalformedExternalResponse(self.source, "reply is not a JSON object")

        level = str(result.get('threatLevel', '')).strip().lower()
        if level not in VALID_LEVELS:
            raise MalformedExternalResponse(self.source, f"invalid threatLevel: {level!r}")

        confidence = self._parse_confidence(result.get('confidence'))
        reasons = self._parse_reasons(result.get('reasons'))

        return SignalOpinion(
            source=self.source,
            level=level,
            confidence=confidence,
            reasons=tuple(reasons),
            details={"model": self.model},
        )

    def _parse_confidence(self, value: Any) -> float:
        try:
            confidence = float(value)
        except (TypeError, ValueError) as e:
            raise MalformedExternalResponse(self.source, f"invalid confidence: {value!r}") from e

        # Models sometimes answer in percent
        if 1.0 < confidence <= 100.0:
            confidence /= 100.0
        if not 0.0 <= confidence <= 1.0:
            raise MalformedExternalResponse(self.source, f"confidence out of range: {value!r}")
        return confidence

    def _parse_reasons(self, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list):
            raise MalformedExternalResponse(self.source, "reasons is not a list")
        return [str(r).strip() for r in value if str(r).strip()][:MAX_REASONS]
