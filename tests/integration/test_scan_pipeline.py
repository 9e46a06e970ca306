"""
End-to-end scan runs against the database with a stubbed search provider.
"""

import pytest
from asgiref.sync import sync_to_async

from scan_engine.models import (
    InfringementRecord,
    InfringementStatus,
    InfringementStatusTransition,
    ScanLog,
    ScanRun,
)
from scan_engine.services.scan_orchestrator import ScanOrchestrator
from scan_engine.services.scan_store import DjangoScanStore
from scan_engine.services.url_delta import normalize_url, url_hash

from ..conftest import FakeClock, organic

RELISTED_URL = "https://mega.nz/file/alpha"
NEW_URL = "https://freecourseweb.com/alpha-course"
PARTNER_URL = "https://shop.partner-store.com/alpha-course"


@pytest.fixture
def removed_record(product_record):
    return InfringementRecord.objects.create(
        product=product_record,
        source_url=RELISTED_URL,
        url_normalized=normalize_url(RELISTED_URL),
        url_hash=url_hash(RELISTED_URL),
        platform="cyberlocker",
        infringement_type="direct_download",
        confidence=90,
        risk_level="critical",
        status=InfringementStatus.REMOVED,
    )


@pytest.fixture
def pipeline_serp(serp):
    serp.routes['"Alpha" nulled'] = [organic(RELISTED_URL), organic(PARTNER_URL, position=2)]
    serp.routes["site:freecourseweb.com"] = [organic(NEW_URL)]
    return serp


def run_state(scan_run_id):
    run = ScanRun.objects.get(pk=scan_run_id)
    return {
        "run": run,
        "records": list(InfringementRecord.objects.filter(product_id=run.product_id)),
        "transitions": list(InfringementStatusTransition.objects.all()),
        "log_codes": list(ScanLog.objects.filter(scan_run=run).values_list("error_code", flat=True)),
    }


@pytest.mark.django_db(transaction=True)
class TestScanPipeline:
    """Full pipeline runs persisted through DjangoScanStore."""

    @pytest.mark.asyncio
    async def test_relisted_content_is_reactivated(
        self, product_record, removed_record, pipeline_serp, scan_config, sink
    ):
        orchestrator = ScanOrchestrator(
            store=DjangoScanStore(),
            config=scan_config,
            client_factory=pipeline_serp.client_factory,
            notification_sink=sink,
            clock=FakeClock(),
        )

        outcome = await orchestrator.run(product_record.id)
        state = await sync_to_async(run_state)(outcome.scan_run_id)

        run = state["run"]
        assert run.status == "completed"
        assert run.run_number == 1
        assert run.relisted == 1
        assert run.new_infringements == 1
        assert run.budget_used == outcome.budget_used <= scan_config.search_budget
        assert run.progress["percent_complete"] == 100
        assert run.completed_at is not None

        records = {r.source_url: r for r in state["records"]}
        assert set(records) == {RELISTED_URL, NEW_URL}
        assert records[RELISTED_URL].status == InfringementStatus.ACTIVE
        assert records[RELISTED_URL].seen_count == 2
        assert records[NEW_URL].status == InfringementStatus.PENDING_VERIFICATION
        assert records[NEW_URL].scan_run_id == run.id

        assert len(state["transitions"]) == 1
        assert state["transitions"][0].reason == "relisted"

        assert outcome.counts["excluded"] >= 1
        assert sink.events.count("relisting_detected") == 1
        assert "scan_completed" in sink.events
        assert state["log_codes"]

    @pytest.mark.asyncio
    async def test_second_run_rediscovers_without_duplicates(
        self, product_record, pipeline_serp, scan_config
    ):
        orchestrator = ScanOrchestrator(
            store=DjangoScanStore(),
            config=scan_config,
            client_factory=pipeline_serp.client_factory,
            clock=FakeClock(),
        )

        first = await orchestrator.run(product_record.id)
        second = await orchestrator.run(product_record.id)

        assert first.counts["new_infringements"] == 2
        assert second.counts["new_infringements"] == 0
        assert second.counts["rediscovered"] == 2

        state = await sync_to_async(run_state)(second.scan_run_id)
        assert state["run"].run_number == 2
        assert len(state["records"]) == 2
        assert all(record.seen_count == 2 for record in state["records"])
