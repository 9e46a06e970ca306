"""
Budgeted Search Client - rate-limited, budget-tracked SerpAPI wrapper.

Features:
- Hard per-run call budget; a call is reserved before it is awaited so
  concurrent callers can never overshoot it
- Minimum delay between consecutive call starts
- Batches run in fixed-size concurrent groups
- Queries beyond the budget are skipped and reported, never raised
- Per-call wall-clock timeout; errors and timeouts degrade to empty results
- Diagnostic counters per run: calls, errors, empty results, recent errors
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx
from django.conf import settings

from scan_engine.exceptions import ProviderError
from scan_engine.services.scan_types import GeneratedQuery, SearchHit

logger = logging.getLogger(__name__)

# Number of recent error messages kept in diagnostics
MAX_RECENT_ERRORS = 20


@dataclass
class SearchResponse:
    """Hits returned for one query."""

    query: str
    hits: List[SearchHit] = field(default_factory=list)
    skipped: bool = False
    error: Optional[str] = None

    @property
    def executed(self) -> bool:
        return not self.skipped


@dataclass
class SearchDiagnostics:
    """Diagnostic counters for one run, read after the run completes."""

    total_calls: int = 0
    success_calls: int = 0
    error_calls: int = 0
    empty_result_calls: int = 0
    total_results: int = 0
    skipped_queries: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def record_error(self, query: str, status: int, message: str) -> None:
        self.error_calls += 1
        self.errors.append({"query": query, "status": status, "message": message[:200]})
        if len(self.errors) > MAX_RECENT_ERRORS:
            del self.errors[: len(self.errors) - MAX_RECENT_ERRORS]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_calls": self.total_calls,
            "success_calls": self.success_calls,
            "error_calls": self.error_calls,
            "empty_result_calls": self.empty_result_calls,
            "total_results": self.total_results,
            "skipped_queries": self.skipped_queries,
            "errors": list(self.errors),
        }


class BudgetedSearchClient:
    """
    Client for SerpAPI Google search with a hard per-run call budget.

    One instance serves exactly one scan run and is shared by the tiered
    search stages and every platform scanner, so the budget covers them all.

    Usage:
        async with BudgetedSearchClient(budget=75) as client:
            responses = await client.search_batch(plan.tier1)
    """

    BASE_URL = "https://serpapi.com/search.json"

    def __init__(
        self,
        budget: Optional[int] = None,
        api_key: Optional[str] = None,
        min_delay: Optional[float] = None,
        concurrency: Optional[int] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the client.

        Args:
            budget: Maximum provider calls for this run (defaults to SCAN_SEARCH_BUDGET)
            api_key: SerpAPI key (defaults to settings.SERPAPI_API_KEY)
            min_delay: Minimum seconds between call starts
            concurrency: Queries per concurrent batch group
            timeout: Wall-clock timeout per call in seconds
            http_client: Optional shared httpx client (not closed by this client)
        """
        self.api_key = api_key if api_key is not None else getattr(settings, "SERPAPI_API_KEY", "")
        self.budget = max(0, int(budget if budget is not None else getattr(settings, "SCAN_SEARCH_BUDGET", 75)))
        self.min_delay = float(
            min_delay if min_delay is not None else getattr(settings, "SCAN_MIN_CALL_DELAY_SECONDS", 0.15)
        )
        self.concurrency = max(1, int(
            concurrency if concurrency is not None else getattr(settings, "SCAN_BATCH_CONCURRENCY", 3)
        ))
        self.timeout = float(
            timeout if timeout is not None else getattr(settings, "SCAN_CALL_TIMEOUT_SECONDS", 15)
        )

        self.diagnostics = SearchDiagnostics()
        self._used = 0
        self._last_call_started: Optional[float] = None
        self._pace_lock = asyncio.Lock()
        self._http_client = http_client
        self._owns_http_client = http_client is None

        if not self.api_key:
            logger.warning("SerpAPI API key not configured; searches will return no results")

    @property
    def used(self) -> int:
        return self._used

    @property
    def remaining(self) -> int:
        return self.budget - self._used

    @property
    def is_available(self) -> bool:
        return bool(self.api_key) and self.remaining > 0

    async def __aenter__(self) -> "BudgetedSearchClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def search(self, query: str, num_results: int = 10) -> SearchResponse:
        """
        Execute one search with pacing, budget and timeout enforcement.

        Args:
            query: Search query string
            num_results: Number of results to request

        Returns:
            SearchResponse; empty on error, timeout or exhausted budget
        """
        if not self.api_key:
            self.diagnostics.skipped_queries += 1
            return SearchResponse(query=query, skipped=True)

        if self.remaining <= 0:
            logger.info(f"Search budget exhausted ({self._used}/{self.budget}), skipping: {query}")
            self.diagnostics.skipped_queries += 1
            return SearchResponse(query=query, skipped=True)

        # Reserve before the first await so concurrent callers see it.
        self._used += 1
        self.diagnostics.total_calls += 1

        await self._pace()

        params = {
            "api_key": self.api_key,
            "engine": "google",
            "q": query,
            "num": num_results,
            "hl": "en",
            "gl": "us",
        }

        try:
            data = await asyncio.wait_for(self._make_request(params), timeout=self.timeout)
            hits = self._parse_results(data)
        except asyncio.TimeoutError:
            message = f"Timed out after {self.timeout:.0f}s"
            logger.warning(f"SerpAPI search timed out for query '{query}'")
            self.diagnostics.record_error(query, 0, message)
            return SearchResponse(query=query, error=message)
        except ProviderError as e:
            logger.error(f"SerpAPI error {e.status_code} for query '{query}': {e}")
            self.diagnostics.record_error(query, e.status_code, str(e))
            return SearchResponse(query=query, error=str(e))
        except Exception as e:
            logger.error(f"SerpAPI search failed for query '{query}': {e}")
            self.diagnostics.record_error(query, 0, str(e) or e.__class__.__name__)
            return SearchResponse(query=query, error=str(e) or e.__class__.__name__)

        self.diagnostics.success_calls += 1
        self.diagnostics.total_results += len(hits)
        if not hits:
            self.diagnostics.empty_result_calls += 1

        return SearchResponse(query=query, hits=hits)

    async def search_batch(
        self,
        queries: Sequence[Union[GeneratedQuery, str]],
        reserve: int = 0,
    ) -> List[SearchResponse]:
        """
        Execute queries in fixed-size concurrent groups, trimmed to budget.

        Queries that do not fit in the remaining budget (less ``reserve``
        calls held back for later stages) are not sent; they come back as
        skipped responses after the executed ones. Hits of
        planned queries carry the query's tier and category.

        Returns:
            One SearchResponse per input query, in input order
        """
        planned = [
            q if isinstance(q, GeneratedQuery) else GeneratedQuery(query=q, tier=0, num=10, category="")
            for q in queries
        ]

        affordable_count = min(len(planned), max(0, self.remaining - reserve)) if self.api_key else 0
        affordable = planned[:affordable_count]
        skipped = planned[affordable_count:]

        if skipped:
            self.diagnostics.skipped_queries += len(skipped)
            logger.info(
                f"Budget limited: running {len(affordable)}/{len(planned)} queries "
                f"({self._used}/{self.budget} used)"
            )

        responses: List[SearchResponse] = []
        for start in range(0, len(affordable), self.concurrency):
            group = affordable[start:start + self.concurrency]
            group_responses = await asyncio.gather(
                *(self.search(q.query, q.num) for q in group)
            )
            for generated, response in zip(group, group_responses):
                if generated.tier:
                    response.hits = [hit.with_provenance(generated) for hit in response.hits]
                responses.append(response)

        responses.extend(SearchResponse(query=q.query, skipped=True) for q in skipped)
        return responses

    async def _pace(self) -> None:
        """Hold the caller until min_delay has passed since the last call start."""
        async with self._pace_lock:
            if self._last_call_started is not None and self.min_delay > 0:
                wait = self._last_call_started + self.min_delay - time.monotonic()
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_call_started = time.monotonic()

    async def _make_request(self, params: dict) -> dict:
        """Make HTTP request to SerpAPI."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
            self._owns_http_client = True

        response = await self._http_client.get(self.BASE_URL, params=params)
        if response.status_code >= 400:
            raise ProviderError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response.json()

    def _parse_results(self, response_data: Any) -> List[SearchHit]:
        """
        Parse SerpAPI response into SearchHit objects.

        The payload is untrusted: a body that is not a JSON object raises
        ProviderError, and fields of the wrong type are treated as missing.
        """
        if not isinstance(response_data, dict):
            raise ProviderError(
                f"Malformed response: expected a JSON object, got {type(response_data).__name__}"
            )

        organic_results = response_data.get("organic_results")
        if not isinstance(organic_results, list):
            return []

        hits = []
        for index, item in enumerate(organic_results):
            if not isinstance(item, dict):
                continue
            link = _text(item.get("link"))
            if not link:
                continue

            position = item.get("position")
            hits.append(SearchHit(
                title=_text(item.get("title")),
                link=link,
                snippet=_text(item.get("snippet")),
                position=position if isinstance(position, int) and not isinstance(position, bool) and position > 0 else index + 1,
            ))

        return hits


def _text(value: Any) -> str:
    """Provider string field, or "" when missing or not a string."""
    return value.strip() if isinstance(value, str) else ""
