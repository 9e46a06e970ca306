"""
Pytest configuration and fixtures for the Scan Engine test suite.
"""

import uuid
from typing import Any, Dict, List, Optional

import httpx
import pytest

from scan_engine.exceptions import ProductNotFound
from scan_engine.search.client import BudgetedSearchClient
from scan_engine.services.notifications import WebhookSink
from scan_engine.services.scan_store import InsertOutcome, ScanStore
from scan_engine.services.scan_types import LearnedSignals, ProductSnapshot, ScanConfig


def make_product(**overrides) -> ProductSnapshot:
    """Build a ProductSnapshot for "Alpha Course" with optional overrides."""
    values = {
        "id": uuid.uuid4(),
        "name": "Alpha Course",
        "category": "course",
        "brand": "",
        "url": "https://alphacourse.com",
        "price": 197.0,
    }
    values.update(overrides)
    return ProductSnapshot(**values)


def organic(link: str, title: str = "Alpha Course free download", snippet: str = "", position: int = 1) -> Dict[str, Any]:
    """One SerpAPI organic result."""
    return {"link": link, "title": title, "snippet": snippet, "position": position}


class SerpStub:
    """
    Fake SerpAPI backend for httpx.MockTransport.

    ``routes`` maps a query substring to the organic results returned for
    any query containing it; ``default`` is returned otherwise.
    """

    def __init__(self, default: Optional[List[Dict[str, Any]]] = None):
        self.routes: Dict[str, List[Dict[str, Any]]] = {}
        self.default = default or []
        self.status_code = 200
        self.queries: List[str] = []
        self.on_request = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        query = request.url.params.get("q", "")
        self.queries.append(query)
        if self.on_request:
            self.on_request(query)
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="provider unavailable")
        for fragment, results in self.routes.items():
            if fragment in query:
                return httpx.Response(200, json={"organic_results": results})
        return httpx.Response(200, json={"organic_results": self.default})

    def client(self, budget: int = 10, **kwargs) -> BudgetedSearchClient:
        options = {
            "api_key": "test-key",
            "min_delay": 0,
            "concurrency": 3,
            "timeout": 2,
        }
        options.update(kwargs)
        return BudgetedSearchClient(
            budget=budget,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)),
            **options,
        )

    def client_factory(self, config: ScanConfig) -> BudgetedSearchClient:
        return self.client(
            budget=config.search_budget,
            concurrency=config.batch_concurrency,
            timeout=config.call_timeout_seconds,
        )


class RecordingSink(WebhookSink):
    """Notification sink that keeps delivered envelopes in memory."""

    def __init__(self, fail: bool = False):
        super().__init__(url="https://hooks.example.test/scan")
        self.fail = fail
        self.envelopes: List[Dict[str, Any]] = []

    @property
    def events(self) -> List[str]:
        return [envelope["event"] for envelope in self.envelopes]

    async def send(self, envelope: Dict[str, Any]) -> None:
        if self.fail:
            raise httpx.ConnectError("webhook unreachable")
        self.envelopes.append(envelope)


class FakeStore(ScanStore):
    """In-memory ScanStore that records every call."""

    def __init__(self, product: Optional[ProductSnapshot] = None, known=(), learned=None):
        self.products = {str(product.id): product} if product else {}
        self.known = list(known)
        self.learned = learned or LearnedSignals()
        self.removed_ids = {r.record_id for r in self.known if r.status == "removed"}
        self.runs: Dict[Any, Dict[str, Any]] = {}
        self.progress_history: List[Dict[str, Any]] = []
        self.infringements = []
        self.rediscovered_ids: List[Any] = []
        self.reactivated: List[tuple] = []
        self.logs = []
        self.fail_batch = False
        self.failing_hashes = set()
        self.insert_error: Optional[Exception] = None
        self.finish_error: Optional[Exception] = None

    def load_product(self, product_id) -> ProductSnapshot:
        try:
            return self.products[str(product_id)]
        except KeyError:
            raise ProductNotFound(f"Product {product_id} not found")

    def load_known_records(self, product_id):
        return list(self.known)

    def load_learned_signals(self, product_id) -> LearnedSignals:
        return self.learned

    def create_scan_run(self, product_id, budget_limit, progress):
        run_id = uuid.uuid4()
        run_number = len(self.runs) + 1
        self.runs[run_id] = {
            "product_id": product_id,
            "run_number": run_number,
            "budget_limit": budget_limit,
            "progress": progress,
            "status": "running",
        }
        return {"id": run_id, "run_number": run_number}

    def save_progress(self, scan_run_id, progress):
        self.runs[scan_run_id]["progress"] = progress
        self.progress_history.append(progress)

    def insert_infringements(self, scan_run_id, product_id, drafts):
        if self.insert_error is not None:
            raise self.insert_error
        outcome = InsertOutcome()
        if self.fail_batch:
            outcome.batch_error = "batch rejected"
        for draft in drafts:
            if draft.url_hash in self.failing_hashes:
                outcome.row_errors[draft.url_hash] = "row rejected"
                continue
            self.infringements.append(draft)
            outcome.inserted += 1
        return outcome

    def mark_rediscovered(self, record_ids):
        ids = list(record_ids)
        self.rediscovered_ids.extend(ids)
        return len(ids)

    def reactivate(self, record_id, scan_run_id, reason):
        if record_id not in self.removed_ids:
            return False
        self.removed_ids.discard(record_id)
        self.reactivated.append((record_id, scan_run_id, reason))
        return True

    def insert_logs(self, entries):
        self.logs.extend(entries)
        return len(entries)

    def finish_scan_run(self, scan_run_id, **fields):
        if self.finish_error is not None and fields.get("status") == "completed":
            raise self.finish_error
        self.runs[scan_run_id].update(fields)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def product():
    """A course product with an official site and no whitelist."""
    return make_product()


@pytest.fixture
def serp():
    """Fake search provider with no results by default."""
    return SerpStub()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def scan_config():
    """Small, fast run configuration without the AI filter."""
    return ScanConfig(
        search_budget=30,
        tier3_reserve=5,
        platform_budget_cap=6,
        max_duration_seconds=240,
        ai_filter_enabled=False,
        min_call_delay_seconds=0,
        batch_concurrency=3,
        call_timeout_seconds=2,
    )


@pytest.fixture
def api_client():
    """Create a test API client."""
    from rest_framework.test import APIClient

    return APIClient()


@pytest.fixture
def api_user(db):
    from django.contrib.auth import get_user_model

    return get_user_model().objects.create_user(username="analyst", password="testpass123")


@pytest.fixture
def authenticated_client(api_client, api_user):
    api_client.force_authenticate(user=api_user)
    return api_client


@pytest.fixture
def product_record(db):
    """A persisted course Product."""
    from scan_engine.models import Product

    return Product.objects.create(
        name="Alpha Course",
        category="course",
        url="https://alphacourse.com",
        price="197.00",
        keywords=["alpha trading"],
        whitelist_domains=["partner-store.com"],
    )
