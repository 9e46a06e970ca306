"""
Tests for the AI false-positive filter and its completion client.
"""

import json

import httpx
import pytest

from scan_engine.monitoring.scan_logger import ScanLogger
from scan_engine.services.ai_filter import (
    AICompletionClient,
    AIFilter,
    CompletionResult,
    FilterVerdict,
)
from scan_engine.services.scan_types import Candidate, LearnedSignals, SearchHit
from scan_engine.services.url_delta import normalize_url, url_hash


def candidate(link: str, title: str = "Alpha Course free download") -> Candidate:
    hit = SearchHit(title=title, link=link, snippet="", position=1)
    return Candidate(hit=hit, normalized_url=normalize_url(link), url_hash=url_hash(link))


class StubCompletionClient:
    """Answers each prompt by looking up the analysed URL."""

    is_configured = True

    def __init__(self, answers):
        self.answers = answers
        self.prompts = []

    async def complete(self, system_prompt, user_prompt, options=None):
        self.prompts.append((system_prompt, user_prompt))
        for url, answer in self.answers.items():
            if f"- URL: {url}" in user_prompt:
                return answer
        return CompletionResult(success=False, error="no answer")


class TestFilterVerdict:
    """Untrusted model answers and pass rules."""

    @pytest.mark.parametrize("data", [
        None,
        "yes",
        {},
        {"is_infringement": "true", "confidence": 0.9, "reasoning": "x"},
        {"is_infringement": True, "confidence": "high", "reasoning": "x"},
        {"is_infringement": True, "confidence": True, "reasoning": "x"},
        {"is_infringement": True, "confidence": 0.9},
    ])
    def test_malformed_answers_are_neutral(self, data):
        verdict = FilterVerdict.from_untrusted(data)

        assert verdict.is_infringement is True
        assert verdict.confidence == 0.5

    def test_valid_answer_is_clamped(self):
        verdict = FilterVerdict.from_untrusted({
            "is_infringement": False,
            "confidence": 1.7,
            "reasoning": "official store",
            "infringement_type": "bogus",
        })

        assert verdict.is_infringement is False
        assert verdict.confidence == 1.0
        assert verdict.infringement_type == "unknown"

    @pytest.mark.parametrize("is_infringement,confidence,passes", [
        (True, 0.9, True),
        (True, 0.6, True),
        (False, 0.9, False),
        (False, 0.5, True),
        (True, 0.45, True),
        (False, 0.2, False),
        (True, 0.1, False),
    ])
    def test_passes(self, is_infringement, confidence, passes):
        verdict = FilterVerdict(is_infringement=is_infringement, confidence=confidence, reasoning="")

        assert verdict.passes(0.6) is passes


class TestAICompletionClient:
    """HTTP behaviour of the completion client."""

    @pytest.mark.asyncio
    async def test_successful_completion(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"success": True, "data": {"is_infringement": True}})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            client = AICompletionClient(base_url="https://ai.example.test/", api_key="tok", http_client=http_client)
            result = await client.complete("system", "user", {"temperature": 0.2})

        assert result.success is True
        assert result.data == {"is_infringement": True}
        assert str(requests[0].url) == "https://ai.example.test/api/v1/complete/"
        assert requests[0].headers["authorization"] == "Bearer tok"
        assert json.loads(requests[0].content)["options"] == {"temperature": 0.2}

    @pytest.mark.asyncio
    async def test_error_status_is_failed_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="overloaded")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            client = AICompletionClient(base_url="https://ai.example.test", http_client=http_client)
            result = await client.complete("system", "user")

        assert result.success is False
        assert "503" in result.error

    @pytest.mark.asyncio
    async def test_transport_error_is_failed_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            client = AICompletionClient(base_url="https://ai.example.test", http_client=http_client)
            result = await client.complete("system", "user")

        assert result.success is False
        assert "refused" in result.error

    def test_unconfigured_without_url(self):
        assert AICompletionClient(base_url="").is_configured is False


class TestAIFilter:
    """Screening candidates."""

    @pytest.mark.asyncio
    async def test_confident_rejections_are_dropped(self, product):
        stub = StubCompletionClient({
            "https://leaks.io/alpha": CompletionResult(success=True, data={
                "is_infringement": True, "confidence": 0.92, "reasoning": "free download",
            }),
            "https://reviews.io/alpha": CompletionResult(success=True, data={
                "is_infringement": False, "confidence": 0.95, "reasoning": "review article",
            }),
        })
        candidates = [candidate("https://leaks.io/alpha"), candidate("https://reviews.io/alpha")]

        summary = await AIFilter(stub, threshold=0.6).filter(candidates, product)

        assert [c.hit.link for c in summary.passed] == ["https://leaks.io/alpha"]
        assert summary.rejected == 1
        assert summary.failed_calls == 0
        assert candidates[0].ai_confidence == 0.92
        assert candidates[0].evidence()["ai_reasoning"] == "free download"

    @pytest.mark.asyncio
    async def test_failed_calls_pass_as_neutral_and_warn(self, product):
        scan_logger = ScanLogger("run-1")
        stub = StubCompletionClient({})
        candidates = [candidate("https://leaks.io/alpha"), candidate("https://mega.nz/file/x")]

        summary = await AIFilter(stub, threshold=0.6, scan_logger=scan_logger).filter(candidates, product)

        assert len(summary.passed) == 2
        assert summary.failed_calls == 2
        assert all(c.ai_confidence == 0.5 for c in candidates)
        warning = scan_logger.entries[-1]
        assert warning.error_code == "AI_FILTER_FAIL"
        assert warning.stage == "phrase_matching"

    @pytest.mark.asyncio
    async def test_empty_input_makes_no_calls(self, product):
        stub = StubCompletionClient({})

        summary = await AIFilter(stub).filter([], product)

        assert summary.passed == []
        assert stub.prompts == []

    def test_prompts_carry_product_and_learned_context(self, product):
        ai_filter = AIFilter(StubCompletionClient({}))
        learned = LearnedSignals(verified_keywords=("alpha vip",), false_positive_domains=("reviews.io",))

        user_prompt = ai_filter.build_user_prompt(candidate("https://leaks.io/alpha"), product)
        system_prompt = ai_filter.build_system_prompt(learned)

        assert "- Name: Alpha Course" in user_prompt
        assert "- Price: $197.00" in user_prompt
        assert "- URL: https://leaks.io/alpha" in user_prompt
        assert "reviews.io" in system_prompt
        assert system_prompt.rstrip().endswith("}")
