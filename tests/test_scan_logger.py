"""
Tests for the structured per-run scan logger and Sentry helpers.
"""

from unittest.mock import patch

import pytest

from scan_engine.monitoring.scan_logger import ErrorCode, LogLevel, ScanLogger
from scan_engine.monitoring.sentry_integration import (
    capture_alert,
    capture_scan_error,
    filter_sensitive_data,
)
from scan_engine.services.scan_progress import ScanStage

from .conftest import make_product


class RecordingWriter:
    """Log writer that keeps every batch it receives."""

    def __init__(self, fail_times: int = 0):
        self.batches = []
        self.fail_times = fail_times

    def __call__(self, entries):
        if self.fail_times:
            self.fail_times -= 1
            raise RuntimeError("database unavailable")
        self.batches.append(list(entries))
        return len(entries)

    @property
    def written(self):
        return [entry for batch in self.batches for entry in batch]


@pytest.fixture
def writer():
    return RecordingWriter()


class TestLogLevels:
    """Entry construction for each level."""

    def test_info_and_warn_are_buffered(self, writer):
        scan_logger = ScanLogger("run-1", writer=writer)

        scan_logger.info(ScanStage.KEYWORD_SEARCH, "Tier 1 complete", metrics={"hits": 12})
        scan_logger.warn(ScanStage.KEYWORD_SEARCH, "Budget limited", ErrorCode.BUDGET_EXHAUSTED)

        assert writer.batches == []
        assert scan_logger.unflushed_count == 2
        entries = scan_logger.entries
        assert entries[0].log_level == LogLevel.INFO.value
        assert entries[0].stage == "keyword_search"
        assert entries[0].metrics == {"hits": 12}
        assert entries[1].error_code == "BUDGET_EXHAUSTED"

    def test_error_without_running_loop_is_written_immediately(self, writer):
        scan_logger = ScanLogger("run-1", writer=writer)

        scan_logger.error(ScanStage.FINALIZATION, "Insert failed", ErrorCode.DB_INSERT_FAIL)

        assert len(writer.written) == 1
        assert writer.written[0].log_level == "error"
        assert scan_logger.unflushed_count == 0

    def test_failed_immediate_write_is_rebuffered(self):
        writer = RecordingWriter(fail_times=1)
        scan_logger = ScanLogger("run-1", writer=writer)

        scan_logger.fatal("finalization", "Scan failed")

        assert writer.written == []
        assert scan_logger.unflushed_count == 1

    def test_scan_params_only_on_error_entries(self):
        product = make_product()
        scan_logger = ScanLogger("run-1", product=product, run_number=3)

        info = scan_logger.info("initialization", "started")
        error = scan_logger.error("initialization", "broken")

        assert info.scan_params is None
        assert error.scan_params["run_number"] == 3
        assert error.scan_params["product_name"] == "Alpha Course"
        assert error.scan_params["product_type"] == "course"

    def test_self_heal_entry(self):
        scan_logger = ScanLogger("run-1")

        entry = scan_logger.self_heal(ScanStage.PLATFORM_SCAN, ErrorCode.TIMEOUT, "Skipped platform scan")

        assert entry.log_level == "warn"
        assert entry.self_healed is True
        assert entry.heal_action == "Skipped platform scan"
        assert entry.message == "Self-healed: Skipped platform scan"
        assert entry.error_code == "TIMEOUT"

    def test_error_details_are_filtered(self):
        scan_logger = ScanLogger("run-1")

        entry = scan_logger.error("platform_scan", "failed", error_details={"api_key": "secret-value", "status": 500})

        assert entry.error_details == {"api_key": "[Filtered]", "status": 500}

    def test_recent_entries(self):
        scan_logger = ScanLogger("run-1")
        for i in range(15):
            scan_logger.info("keyword_search", f"entry {i}")

        recent = scan_logger.recent(10)

        assert len(recent) == 10
        assert recent[0].message == "entry 5"
        assert recent[-1].message == "entry 14"
        assert scan_logger.recent(0) == []

    def test_entries_are_mirrored_to_breadcrumbs(self):
        scan_logger = ScanLogger("run-1")

        with patch("scan_engine.monitoring.scan_logger.add_scan_breadcrumb") as mock_breadcrumb:
            scan_logger.warn("phrase_matching", "AI filter failed", ErrorCode.AI_FILTER_FAIL)

        mock_breadcrumb.assert_called_once()
        assert mock_breadcrumb.call_args.kwargs["level"] == "warning"
        assert mock_breadcrumb.call_args.kwargs["stage"] == "phrase_matching"


class TestFlush:
    """Batch persistence of buffered entries."""

    @pytest.mark.asyncio
    async def test_flush_writes_buffer_once(self, writer):
        scan_logger = ScanLogger("run-1", writer=writer)
        scan_logger.info("initialization", "one")
        scan_logger.info("initialization", "two")

        assert await scan_logger.flush() == 2
        assert await scan_logger.flush() == 0
        assert [e.message for e in writer.written] == ["one", "two"]
        assert len(writer.batches) == 1

    @pytest.mark.asyncio
    async def test_flush_waits_for_immediate_writes(self, writer):
        scan_logger = ScanLogger("run-1", writer=writer)

        scan_logger.info("finalization", "stored")
        scan_logger.error("finalization", "row failed", ErrorCode.DB_INSERT_FAIL)
        await scan_logger.flush()

        assert [e.message for e in writer.written] == ["row failed", "stored"]

    @pytest.mark.asyncio
    async def test_failed_immediate_write_is_retried_on_flush(self):
        writer = RecordingWriter(fail_times=1)
        scan_logger = ScanLogger("run-1", writer=writer)

        scan_logger.error("finalization", "batch failed", ErrorCode.DB_BATCH_FAIL)
        await scan_logger.flush()

        assert [e.message for e in writer.written] == ["batch failed"]

    @pytest.mark.asyncio
    async def test_flush_failure_never_raises(self):
        writer = RecordingWriter(fail_times=5)
        scan_logger = ScanLogger("run-1", writer=writer)
        scan_logger.info("initialization", "lost")

        await scan_logger.flush()

        assert writer.written == []

    @pytest.mark.asyncio
    async def test_flush_without_writer(self):
        scan_logger = ScanLogger("run-1")
        scan_logger.info("initialization", "kept in memory")

        assert await scan_logger.flush() == 0
        assert len(scan_logger.entries) == 1


class TestSentryHelpers:
    """Sentry capture helpers never raise and filter secrets."""

    def test_nested_sensitive_fields_are_filtered(self):
        data = {"request": {"headers": {"Authorization": "Bearer abc"}, "url": "https://x"}, "token": "t"}

        filtered = filter_sensitive_data(data)

        assert filtered["token"] == "[Filtered]"
        assert filtered["request"]["headers"]["Authorization"] == "[Filtered]"
        assert filtered["request"]["url"] == "https://x"

    def test_capture_scan_error_tags_stage(self):
        with patch("scan_engine.monitoring.sentry_integration.sentry_sdk") as mock_sdk:
            scope = mock_sdk.new_scope.return_value.__enter__.return_value
            error = RuntimeError("boom")

            capture_scan_error(error, scan_run_id="run-1", product_id="p-1", stage="finalization")

        scope.set_tag.assert_called_with("scan.stage", "finalization")
        mock_sdk.capture_exception.assert_called_once_with(error)

    def test_capture_alert_survives_sdk_errors(self):
        with patch("scan_engine.monitoring.sentry_integration.sentry_sdk") as mock_sdk:
            mock_sdk.new_scope.side_effect = RuntimeError("sdk broken")

            capture_alert("Scan failed", level="error")

        mock_sdk.capture_message.assert_not_called()
