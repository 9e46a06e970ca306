"""
Tests for the scan orchestrator, run against an in-memory store and a
stubbed search provider.
"""

import dataclasses
from unittest.mock import patch

import pytest

from scan_engine.exceptions import ProductNotFound
from scan_engine.services.scan_orchestrator import ScanOrchestrator
from scan_engine.services.url_delta import KnownRecord, url_hash

from .conftest import FakeClock, FakeStore, organic

TIER1_HIT = "https://freecourseweb.com/alpha-course-2024"
TIER2_HIT = "https://freecourseweb.com/alpha-course"
OFFICIAL_HIT = "https://alphacourse.com/buy"


def make_orchestrator(store, serp, config, sink=None, clock=None, **kwargs):
    return ScanOrchestrator(
        store=store,
        config=config,
        client_factory=serp.client_factory,
        notification_sink=sink,
        clock=clock or FakeClock(),
        **kwargs,
    )


def logs_with_code(store, code):
    return [entry for entry in store.logs if entry.error_code == code]


def stage_entry(progress, stage):
    return next(s for s in progress["stages"] if s["stage"] == stage)


@pytest.fixture
def piracy_serp(serp):
    serp.routes['"Alpha" free download'] = [organic(TIER1_HIT, position=2)]
    serp.routes['"Alpha" nulled'] = [organic(OFFICIAL_HIT, title="Alpha Course")]
    serp.routes["site:freecourseweb.com"] = [organic(TIER2_HIT)]
    return serp


class TestScanRun:
    """Full runs through all stages."""

    @pytest.mark.asyncio
    async def test_new_infringements_are_stored(self, product, piracy_serp, scan_config, sink):
        store = FakeStore(product)
        orchestrator = make_orchestrator(store, piracy_serp, scan_config, sink)

        outcome = await orchestrator.run(product.id)

        assert outcome.status == "completed"
        assert outcome.counts["new_infringements"] == 2
        assert outcome.counts["excluded"] >= 1
        assert {draft.source_url for draft in store.infringements} == {TIER1_HIT, TIER2_HIT}
        assert outcome.budget_used <= scan_config.search_budget
        assert outcome.progress["percent_complete"] == 100

        run = store.runs[outcome.scan_run_id]
        assert run["status"] == "completed"
        assert run["new_infringements"] == 2
        assert run["budget_used"] == outcome.budget_used
        assert run["error_message"] == ""

        completed = [e for e in sink.envelopes if e["event"] == "scan_completed"]
        assert len(completed) == 1
        assert completed[0]["payload"]["new_infringements"] == 2

    @pytest.mark.asyncio
    async def test_progress_saved_after_every_transition(self, product, serp, scan_config):
        store = FakeStore(product)

        await make_orchestrator(store, serp, scan_config).run(product.id)

        # 7 stages started and completed, plus the run completion
        assert len(store.progress_history) == 15
        assert store.progress_history[0]["current_stage"] == "initialization"
        assert store.progress_history[-1]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_budget_is_never_exceeded(self, product, piracy_serp, scan_config):
        store = FakeStore(product)

        outcome = await make_orchestrator(store, piracy_serp, scan_config).run(product.id)

        assert len(piracy_serp.queries) == outcome.budget_used
        assert outcome.budget_used <= scan_config.search_budget
        assert logs_with_code(store, "BUDGET_EXHAUSTED")

    @pytest.mark.asyncio
    async def test_logs_are_persisted(self, product, serp, scan_config):
        store = FakeStore(product)

        outcome = await make_orchestrator(store, serp, scan_config).run(product.id)

        assert store.logs
        assert {entry.scan_run_id for entry in store.logs} == {outcome.scan_run_id}
        assert {entry.stage for entry in store.logs} >= {"initialization", "finalization"}

    @pytest.mark.asyncio
    async def test_no_completion_event_without_new_infringements(self, product, serp, scan_config, sink):
        store = FakeStore(product)

        await make_orchestrator(store, serp, scan_config, sink).run(product.id)

        assert "scan_completed" not in sink.events

    @pytest.mark.asyncio
    async def test_missing_api_key_skips_searches(self, product, serp, scan_config):
        store = FakeStore(product)
        orchestrator = ScanOrchestrator(
            store=store,
            config=scan_config,
            client_factory=lambda config: serp.client(budget=config.search_budget, api_key=""),
            clock=FakeClock(),
        )

        outcome = await orchestrator.run(product.id)

        assert outcome.status == "completed"
        assert outcome.budget_used == 0
        assert serp.queries == []
        assert logs_with_code(store, "SERP_ERROR")

    @pytest.mark.asyncio
    async def test_loosely_typed_provider_fields_do_not_fail_the_run(self, product, serp, scan_config):
        serp.routes['"Alpha" free download'] = [
            {"link": TIER1_HIT, "title": 12345, "snippet": {"text": "free"}, "position": 2},
        ]
        store = FakeStore(product)

        outcome = await make_orchestrator(store, serp, scan_config).run(product.id)

        assert outcome.status == "completed"
        assert store.runs[outcome.scan_run_id]["status"] == "completed"
        assert not logs_with_code(store, "UNKNOWN")

    @pytest.mark.asyncio
    async def test_unknown_product_creates_no_run(self, serp, scan_config):
        store = FakeStore()

        with pytest.raises(ProductNotFound):
            await make_orchestrator(store, serp, scan_config).run("missing")

        assert store.runs == {}


class TestDeadline:
    """A passed deadline short-circuits the remaining search stages."""

    @pytest.mark.asyncio
    async def test_run_finalizes_with_partial_results(self, product, serp, scan_config):
        clock = FakeClock()
        serp.routes['"Alpha" free download'] = [organic(TIER1_HIT, position=2)]

        def advance_clock(query):
            clock.now = 241.0

        serp.on_request = advance_clock
        store = FakeStore(product)

        outcome = await make_orchestrator(store, serp, scan_config, clock=clock).run(product.id)

        assert outcome.status == "completed"
        assert outcome.counts["new_infringements"] == 1
        assert all(not query.startswith("site:") for query in serp.queries)
        for stage in ("trademark_search", "marketplace_scan", "platform_scan"):
            entry = stage_entry(outcome.progress, stage)
            assert entry["status"] == "completed"
            assert entry["result_count"] == 0
            assert entry["self_healed"] is True
        assert stage_entry(outcome.progress, "keyword_search")["self_healed"] is False
        assert len(logs_with_code(store, "TIMEOUT")) == 3
        assert outcome.duration_seconds == 241.0


class TestKnownUrls:
    """Rediscovered and re-listed content."""

    @pytest.fixture
    def known(self):
        return [
            KnownRecord(record_id="removed-1", url_hash=url_hash("https://mega.nz/file/alpha"), status="removed"),
            KnownRecord(record_id="active-1", url_hash=url_hash("https://leaks.example/alpha"), status="active"),
        ]

    @pytest.fixture
    def known_serp(self, serp):
        serp.routes['"Alpha" nulled'] = [
            organic("https://mega.nz/file/alpha"),
            organic("https://www.leaks.example/alpha/", position=2),
        ]
        return serp

    @pytest.mark.asyncio
    async def test_relisted_content_is_reactivated_once(self, product, known, known_serp, scan_config, sink):
        store = FakeStore(product, known=known)
        orchestrator = make_orchestrator(store, known_serp, scan_config, sink)

        outcome = await orchestrator.run(product.id)

        assert outcome.counts["relisted"] == 1
        assert outcome.counts["rediscovered"] == 1
        assert outcome.counts["new_infringements"] == 0
        assert store.reactivated == [("removed-1", outcome.scan_run_id, "relisted")]
        assert store.rediscovered_ids == ["active-1"]
        assert sink.events.count("relisting_detected") == 1
        assert sink.envelopes[0]["payload"]["source_url"] == "https://mega.nz/file/alpha"

        second = await orchestrator.run(product.id)

        assert second.counts["relisted"] == 0
        assert sink.events.count("relisting_detected") == 1

    @pytest.mark.asyncio
    async def test_known_urls_are_not_rescored(self, product, known, known_serp, scan_config):
        store = FakeStore(product, known=known)
        orchestrator = make_orchestrator(store, known_serp, scan_config)

        with patch.object(orchestrator.scorer, "score", wraps=orchestrator.scorer.score) as mock_score:
            await orchestrator.run(product.id)

        scored_links = {call.args[0].link for call in mock_score.call_args_list}
        assert "https://mega.nz/file/alpha" not in scored_links
        assert "https://www.leaks.example/alpha/" not in scored_links


class TestSelfHealing:
    """Recoverable failures are logged and the run continues."""

    @pytest.mark.asyncio
    async def test_batch_insert_falls_back_to_rows(self, product, piracy_serp, scan_config):
        store = FakeStore(product)
        store.fail_batch = True
        store.failing_hashes = {url_hash(TIER2_HIT)}

        outcome = await make_orchestrator(store, piracy_serp, scan_config).run(product.id)

        assert outcome.status == "completed"
        assert outcome.counts["new_infringements"] == 1
        assert outcome.counts["failed_inserts"] == 1
        assert len(logs_with_code(store, "DB_BATCH_FAIL")) == 1
        insert_failures = logs_with_code(store, "DB_INSERT_FAIL")
        assert len(insert_failures) == 1
        assert insert_failures[0].error_details["url_hash"] == url_hash(TIER2_HIT)
        assert stage_entry(outcome.progress, "finalization")["self_healed"] is True

    @pytest.mark.asyncio
    async def test_unconfigured_ai_filter_is_skipped_once(self, product, piracy_serp, scan_config):
        config = dataclasses.replace(scan_config, ai_filter_enabled=True)
        store = FakeStore(product)

        outcome = await make_orchestrator(store, piracy_serp, config).run(product.id)

        assert outcome.status == "completed"
        assert outcome.counts["new_infringements"] == 2
        heals = [e for e in logs_with_code(store, "AI_FILTER_FAIL") if e.self_healed]
        assert len(heals) == 1
        assert stage_entry(outcome.progress, "phrase_matching")["self_healed"] is True

    @pytest.mark.asyncio
    async def test_notification_failures_do_not_fail_run(self, product, piracy_serp, scan_config):
        from .conftest import RecordingSink

        store = FakeStore(product)

        outcome = await make_orchestrator(store, piracy_serp, scan_config, RecordingSink(fail=True)).run(product.id)

        assert outcome.status == "completed"
        assert logs_with_code(store, "NOTIFY_FAIL")


class TestFailure:
    """Unhandled errors fail the run and are re-raised."""

    @pytest.mark.asyncio
    async def test_failed_run_is_recorded(self, product, piracy_serp, scan_config, sink):
        store = FakeStore(product)
        store.insert_error = RuntimeError("database is locked")
        orchestrator = make_orchestrator(store, piracy_serp, scan_config, sink)

        with patch("scan_engine.services.scan_orchestrator.capture_scan_error") as mock_capture:
            with pytest.raises(RuntimeError, match="database is locked"):
                await orchestrator.run(product.id)

        run = next(iter(store.runs.values()))
        assert run["status"] == "failed"
        assert run["error_message"] == "RuntimeError: database is locked"
        assert run["progress"]["status"] == "failed"
        assert run["progress"]["current_stage"] == "finalization"

        mock_capture.assert_called_once()
        assert mock_capture.call_args.kwargs["stage"] == "finalization"

        fatal = [e for e in store.logs if e.log_level == "fatal"]
        assert len(fatal) == 1
        assert fatal[0].scan_params["product_name"] == "Alpha Course"

        assert sink.events[-1] == "scan_failed"
        payload = sink.envelopes[-1]["payload"]
        assert payload["stage"] == "finalization"
        assert payload["recent_logs"]

    @pytest.mark.asyncio
    async def test_failed_final_write_leaves_consistent_progress(self, product, serp, scan_config, sink):
        """A run whose completed summary cannot be stored ends failed in both status and progress."""
        store = FakeStore(product)
        store.finish_error = RuntimeError("connection reset")
        orchestrator = make_orchestrator(store, serp, scan_config, sink)

        with patch("scan_engine.services.scan_orchestrator.capture_scan_error"):
            with pytest.raises(RuntimeError, match="connection reset"):
                await orchestrator.run(product.id)

        run = next(iter(store.runs.values()))
        assert run["status"] == "failed"
        assert run["progress"]["status"] == "failed"
        assert run["progress"]["error"] == "RuntimeError: connection reset"
        assert stage_entry(run["progress"], "finalization")["status"] == "completed"
        assert sink.events[-1] == "scan_failed"
