"""
AI false-positive filter.

Each screened candidate is described to an external completion service
which answers with a JSON verdict. The verdict is untrusted: anything
malformed, and any call failure, becomes a neutral verdict (infringement,
confidence 0.5) so the candidate goes on to human verification.

A candidate passes when the model calls it an infringement with
confidence >= threshold, or when the model is unsure either way
(0.3 <= confidence < threshold). Only confident rejections are dropped.

Features:
- Async httpx client with bearer token authentication
- Bounded concurrency (SCAN_AI_MAX_CONCURRENCY)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from django.conf import settings

from scan_engine.monitoring.scan_logger import ErrorCode, ScanLogger
from scan_engine.services.scan_progress import ScanStage
from scan_engine.services.scan_types import Candidate, LearnedSignals, ProductSnapshot

logger = logging.getLogger(__name__)

UNCERTAIN_FLOOR = 0.3
NEUTRAL_CONFIDENCE = 0.5
INFRINGEMENT_TYPES = ("piracy", "unauthorized_sale", "counterfeit", "unknown")

SYSTEM_PROMPT = """You are an expert at identifying copyright infringement, piracy, and unauthorized distribution of digital products.

Analyze a search result and decide whether it COULD be an infringement. Results you approve go to a human review queue and are not actioned automatically, so when in doubt flag the result and let the human decide.

LIKELY INFRINGEMENTS:
- Free downloads of paid content (torrents, direct downloads, file sharing)
- Cracked, nulled, or pirated versions
- Unauthorized redistribution or resale
- Leaked premium content

CLEAR FALSE POSITIVES:
- The product's own website or authorized sales pages
- Review sites and news articles
- The creator's own social media accounts
- Official documentation or help pages"""

RESPONSE_FORMAT_PROMPT = """

Respond ONLY with valid JSON in this exact format:
{
  "is_infringement": true or false,
  "confidence": 0.0 to 1.0,
  "reasoning": "brief explanation",
  "infringement_type": "piracy" | "unauthorized_sale" | "counterfeit" | "unknown"
}"""


@dataclass
class CompletionResult:
    """Result of an AI completion call."""

    success: bool
    data: Any = None
    error: Optional[str] = None


class AICompletionClient:
    """
    Async HTTP client for the AI completion service.

    POSTs {system_prompt, user_prompt, options} to the service's
    /api/v1/complete/ endpoint and returns its parsed ``data`` field.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            base_url: Service URL (defaults to settings.AI_COMPLETION_SERVICE_URL)
            api_key: Bearer token (defaults to settings.AI_COMPLETION_SERVICE_TOKEN)
            timeout: Request timeout in seconds
            http_client: Shared client, mainly for tests
        """
        self.base_url = (base_url or getattr(settings, "AI_COMPLETION_SERVICE_URL", "") or "").rstrip("/")
        self.api_key = api_key or getattr(settings, "AI_COMPLETION_SERVICE_TOKEN", "")
        self.timeout = timeout
        self._client = http_client

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    @property
    def complete_endpoint(self) -> str:
        return f"{self.base_url}/api/v1/complete/"

    def _get_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> CompletionResult:
        """
        Request a completion.

        Never raises; failures come back as ``success=False``.
        """
        payload = {
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
            "options": options or {},
        }
        try:
            if self._client is not None:
                response = await self._client.post(
                    self.complete_endpoint, json=payload, headers=self._get_headers(), timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(
                        self.complete_endpoint, json=payload, headers=self._get_headers()
                    )
        except httpx.TimeoutException as e:
            logger.warning(f"AI completion timeout: {e}")
            return CompletionResult(success=False, error=f"Request timeout after {self.timeout}s")
        except Exception as e:
            logger.warning(f"AI completion request failed: {e}")
            return CompletionResult(success=False, error=str(e))

        if response.status_code != 200:
            return CompletionResult(
                success=False,
                error=f"API returned status {response.status_code}: {response.text[:200]}",
            )

        try:
            body = response.json()
        except ValueError as e:
            return CompletionResult(success=False, error=f"Invalid JSON response: {e}")

        data = body.get("data") if isinstance(body, dict) else None
        return CompletionResult(success=True, data=data)


@dataclass(frozen=True)
class FilterVerdict:
    is_infringement: bool
    confidence: float
    reasoning: str
    infringement_type: str = "unknown"
    failed: bool = False

    @classmethod
    def neutral(cls, reasoning: str, failed: bool = False) -> "FilterVerdict":
        return cls(is_infringement=True, confidence=NEUTRAL_CONFIDENCE, reasoning=reasoning, failed=failed)

    @classmethod
    def from_untrusted(cls, data: Any) -> "FilterVerdict":
        """Validate a model answer; malformed answers become neutral."""
        if not isinstance(data, dict):
            return cls.neutral("AI filter returned invalid response")

        is_infringement = data.get("is_infringement")
        confidence = data.get("confidence")
        reasoning = data.get("reasoning")
        if (
            not isinstance(is_infringement, bool)
            or isinstance(confidence, bool)
            or not isinstance(confidence, (int, float))
            or not isinstance(reasoning, str)
        ):
            return cls.neutral("AI filter returned invalid response")

        infringement_type = data.get("infringement_type")
        if infringement_type not in INFRINGEMENT_TYPES:
            infringement_type = "unknown"

        return cls(
            is_infringement=is_infringement,
            confidence=min(1.0, max(0.0, float(confidence))),
            reasoning=reasoning[:500],
            infringement_type=infringement_type,
        )

    def passes(self, threshold: float) -> bool:
        likely = self.is_infringement and self.confidence >= threshold
        uncertain = UNCERTAIN_FLOOR <= self.confidence < threshold
        return likely or uncertain


@dataclass
class FilterSummary:
    passed: List[Candidate] = field(default_factory=list)
    rejected: int = 0
    failed_calls: int = 0


class AIFilter:
    """
    Screens candidates through the completion service.

    Usage:
        ai_filter = AIFilter(AICompletionClient(), threshold=0.6)
        summary = await ai_filter.filter(candidates, product)
    """

    def __init__(
        self,
        client: Optional[AICompletionClient] = None,
        threshold: float = 0.60,
        max_concurrency: int = 5,
        scan_logger: Optional[ScanLogger] = None,
    ):
        self.client = client or AICompletionClient()
        self.threshold = threshold
        self.max_concurrency = max(1, max_concurrency)
        self.scan_logger = scan_logger

    @property
    def is_available(self) -> bool:
        return self.client.is_configured

    def build_user_prompt(self, candidate: Candidate, product: ProductSnapshot) -> str:
        lines = [
            "PRODUCT INFORMATION:",
            f"- Name: {product.name}",
            f"- Type: {product.category}",
        ]
        if product.brand:
            lines.append(f"- Brand: {product.brand}")
        if product.price:
            lines.append(f"- Price: ${product.price:.2f} (a PAID product; free downloads are infringements)")
        if product.url:
            lines.append(f"- Official URL: {product.url} (the ONLY authorized source)")
        signals = product.signals
        if signals.brand_identifiers:
            lines.append(f"- Brand identifiers: {', '.join(signals.brand_identifiers[:5])}")
        if signals.unique_phrases:
            lines.append(f"- Unique phrases: {', '.join(signals.unique_phrases[:3])}")

        hit = candidate.hit
        score = candidate.score
        lines += [
            "",
            "SEARCH RESULT TO ANALYZE:",
            f"- URL: {hit.link}",
            f"- Platform: {score.platform if score else 'unknown'}",
            f"- Risk level: {score.risk_level if score else 'unknown'}",
        ]
        if hit.title:
            lines.append(f"- Page title: {hit.title}")
        if hit.snippet:
            lines.append(f"- Search snippet: {hit.snippet}")
        lines += ["", "Respond with JSON only."]
        return "\n".join(lines)

    def build_system_prompt(self, learned: Optional[LearnedSignals] = None) -> str:
        prompt = SYSTEM_PROMPT
        if learned and learned.has_learning_data:
            prompt += "\n\nLEARNED INTELLIGENCE FROM USER FEEDBACK:"
            if learned.verified_keywords:
                prompt += f"\n- Terms seen in confirmed infringements: {', '.join(learned.verified_keywords)}"
            if learned.false_positive_domains:
                prompt += f"\n- Domains frequently flagged as false positives: {', '.join(learned.false_positive_domains)}"
        return prompt + RESPONSE_FORMAT_PROMPT

    async def assess(
        self,
        candidate: Candidate,
        product: ProductSnapshot,
        system_prompt: str,
    ) -> FilterVerdict:
        result = await self.client.complete(
            system_prompt,
            self.build_user_prompt(candidate, product),
            {"temperature": 0.2, "max_tokens": 200, "response_format": "json"},
        )
        if not result.success:
            return FilterVerdict.neutral(f"AI filter error: {result.error}", failed=True)
        return FilterVerdict.from_untrusted(result.data)

    async def filter(
        self,
        candidates: List[Candidate],
        product: ProductSnapshot,
        learned: Optional[LearnedSignals] = None,
    ) -> FilterSummary:
        """
        Assess all candidates with at most ``max_concurrency`` calls in
        flight. Order of the passed list follows the input order.
        """
        summary = FilterSummary()
        if not candidates:
            return summary

        system_prompt = self.build_system_prompt(learned)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded(candidate: Candidate) -> FilterVerdict:
            async with semaphore:
                return await self.assess(candidate, product, system_prompt)

        verdicts = await asyncio.gather(*[bounded(c) for c in candidates])

        for candidate, verdict in zip(candidates, verdicts):
            if verdict.failed:
                summary.failed_calls += 1
            candidate.ai_confidence = verdict.confidence
            candidate.ai_reasoning = verdict.reasoning
            if verdict.passes(self.threshold):
                summary.passed.append(candidate)
            else:
                summary.rejected += 1
                logger.debug(
                    f"AI filter rejected {candidate.hit.link} ({verdict.confidence:.0%}): {verdict.reasoning}"
                )

        if summary.failed_calls and self.scan_logger:
            self.scan_logger.warn(
                ScanStage.PHRASE_MATCHING,
                f"AI filter calls failed for {summary.failed_calls}/{len(candidates)} results",
                ErrorCode.AI_FILTER_FAIL,
                metrics={"failed": summary.failed_calls, "total": len(candidates)},
            )

        logger.info(
            f"AI filter for '{product.name}': {len(summary.passed)} passed, {summary.rejected} rejected"
        )
        return summary
