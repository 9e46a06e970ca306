"""
Structured per-run scan log.

Every scan run gets one ScanLogger. Entries are mirrored to the standard
``logging`` logger and to Sentry breadcrumbs as they are produced, and
persisted as ScanLog rows:
- info/warn entries are buffered and written in one batch by ``flush()``
- error/fatal entries are written immediately; a failed write puts the
  entry back in the buffer so the final flush retries it
- ``self_heal()`` records a recovered failure as a warn entry

Writing is best effort throughout: a failed log write is reported to the
standard logger and never propagates into the scan.

Usage:
    scan_logger = ScanLogger(run.id, product, config, writer=store.insert_logs)
    scan_logger.info("keyword_search", "Tier 1 complete", metrics={"hits": 12})
    scan_logger.self_heal("platform_scan", ErrorCode.TIMEOUT, "Skipped platform scan")
    await scan_logger.flush()
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from asgiref.sync import sync_to_async
from django.utils import timezone

from .sentry_integration import add_scan_breadcrumb, filter_sensitive_data

logger = logging.getLogger(__name__)


class LogLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"


class ErrorCode(str, Enum):
    """Machine-readable failure codes attached to warn/error/fatal entries."""

    TIMEOUT = "TIMEOUT"
    BUDGET_EXHAUSTED = "BUDGET_EXHAUSTED"
    SERP_ERROR = "SERP_ERROR"
    AI_FILTER_FAIL = "AI_FILTER_FAIL"
    PLATFORM_FAIL = "PLATFORM_FAIL"
    DB_BATCH_FAIL = "DB_BATCH_FAIL"
    DB_INSERT_FAIL = "DB_INSERT_FAIL"
    NOTIFY_FAIL = "NOTIFY_FAIL"
    UNKNOWN = "UNKNOWN"


STDLIB_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.FATAL: logging.CRITICAL,
}

SENTRY_LEVELS = {
    LogLevel.INFO: "info",
    LogLevel.WARN: "warning",
    LogLevel.ERROR: "error",
    LogLevel.FATAL: "fatal",
}

IMMEDIATE_LEVELS = (LogLevel.ERROR, LogLevel.FATAL)


def _value(item) -> Optional[str]:
    if item is None:
        return None
    return item.value if isinstance(item, Enum) else str(item)


@dataclass
class ScanLogEntry:
    """One structured log entry of a scan run."""

    scan_run_id: Any
    product_id: Any
    log_level: str
    stage: str
    message: str
    error_code: Optional[str] = None
    error_details: Dict[str, Any] = field(default_factory=dict)
    scan_params: Optional[Dict[str, Any]] = None
    metrics: Dict[str, Any] = field(default_factory=dict)
    self_healed: bool = False
    heal_action: str = ""
    created_at: datetime = field(default_factory=timezone.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scan_run_id": self.scan_run_id,
            "product_id": self.product_id,
            "log_level": self.log_level,
            "stage": self.stage,
            "message": self.message,
            "error_code": self.error_code,
            "error_details": self.error_details,
            "scan_params": self.scan_params,
            "metrics": self.metrics,
            "self_healed": self.self_healed,
            "heal_action": self.heal_action,
            "created_at": self.created_at.isoformat(),
        }


LogWriter = Callable[[List[ScanLogEntry]], None]


class ScanLogger:
    """
    Buffered structured logger for a single scan run.

    ``writer`` is a synchronous callable that persists a list of entries
    (normally ``ScanStore.insert_logs``). It is invoked through
    ``sync_to_async`` so database work stays off the event loop.
    """

    def __init__(
        self,
        scan_run_id: Any,
        product=None,
        config=None,
        writer: Optional[LogWriter] = None,
        run_number: int = 1,
    ):
        self.scan_run_id = scan_run_id
        self.product_id = getattr(product, "id", None)
        self._writer = writer
        self._entries: List[ScanLogEntry] = []
        self._unflushed: List[ScanLogEntry] = []
        self._pending: Set[asyncio.Task] = set()
        self._scan_params = self._build_scan_params(product, config, run_number)

    @staticmethod
    def _build_scan_params(product, config, run_number: int) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "run_number": run_number,
            "started_at": timezone.now().isoformat(),
        }
        if product is not None:
            params.update({
                "product_name": product.name,
                "product_type": product.category,
                "product_url": product.url,
            })
        if config is not None:
            params.update({
                "serp_budget": config.search_budget,
                "max_duration": config.max_duration_seconds,
                "ai_filter_enabled": config.ai_filter_enabled,
                "ai_confidence_threshold": config.ai_confidence_threshold,
            })
        return params

    @property
    def scan_params(self) -> Dict[str, Any]:
        return dict(self._scan_params)

    @property
    def entries(self) -> List[ScanLogEntry]:
        return list(self._entries)

    @property
    def unflushed_count(self) -> int:
        return len(self._unflushed)

    def recent(self, count: int = 10) -> List[ScanLogEntry]:
        """Most recent entries, oldest first."""
        if count <= 0:
            return []
        return self._entries[-count:]

    # Levels

    def info(self, stage, message: str, metrics: Optional[Dict[str, Any]] = None) -> ScanLogEntry:
        return self._log(LogLevel.INFO, stage, message, metrics=metrics)

    def warn(
        self,
        stage,
        message: str,
        error_code=None,
        metrics: Optional[Dict[str, Any]] = None,
    ) -> ScanLogEntry:
        return self._log(LogLevel.WARN, stage, message, error_code=error_code, metrics=metrics)

    def error(
        self,
        stage,
        message: str,
        error_code=ErrorCode.UNKNOWN,
        error_details: Optional[Dict[str, Any]] = None,
        metrics: Optional[Dict[str, Any]] = None,
    ) -> ScanLogEntry:
        return self._log(
            LogLevel.ERROR, stage, message,
            error_code=error_code, error_details=error_details, metrics=metrics,
        )

    def fatal(
        self,
        stage,
        message: str,
        error_code=ErrorCode.UNKNOWN,
        error_details: Optional[Dict[str, Any]] = None,
        metrics: Optional[Dict[str, Any]] = None,
    ) -> ScanLogEntry:
        return self._log(
            LogLevel.FATAL, stage, message,
            error_code=error_code, error_details=error_details, metrics=metrics,
        )

    def self_heal(
        self,
        stage,
        error_code,
        action: str,
        metrics: Optional[Dict[str, Any]] = None,
    ) -> ScanLogEntry:
        """Record a failure the run recovered from."""
        return self._log(
            LogLevel.WARN, stage, f"Self-healed: {action}",
            error_code=error_code, metrics=metrics,
            self_healed=True, heal_action=action,
        )

    def _log(
        self,
        level: LogLevel,
        stage,
        message: str,
        error_code=None,
        error_details: Optional[Dict[str, Any]] = None,
        metrics: Optional[Dict[str, Any]] = None,
        self_healed: bool = False,
        heal_action: str = "",
    ) -> ScanLogEntry:
        entry = ScanLogEntry(
            scan_run_id=self.scan_run_id,
            product_id=self.product_id,
            log_level=level.value,
            stage=_value(stage),
            message=message,
            error_code=_value(error_code),
            error_details=filter_sensitive_data(error_details or {}),
            scan_params=self.scan_params if level in IMMEDIATE_LEVELS else None,
            metrics=dict(metrics or {}),
            self_healed=self_healed,
            heal_action=heal_action,
        )
        self._entries.append(entry)

        code = f" [{entry.error_code}]" if entry.error_code else ""
        logger.log(
            STDLIB_LEVELS[level],
            f"[scan {self.scan_run_id}] [{entry.stage}]{code} {message}",
        )
        add_scan_breadcrumb(
            stage=entry.stage,
            message=message,
            level=SENTRY_LEVELS[level],
            data={"error_code": entry.error_code, **entry.metrics},
        )

        if level in IMMEDIATE_LEVELS:
            self._write_immediately(entry)
        else:
            self._unflushed.append(entry)
        return entry

    # Persistence

    def _write_immediately(self, entry: ScanLogEntry) -> None:
        if self._writer is None:
            self._unflushed.append(entry)
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            if not self._write_sync([entry]):
                self._unflushed.append(entry)
            return

        task = loop.create_task(self._write_async([entry], rebuffer=True))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _write_sync(self, entries: List[ScanLogEntry]) -> bool:
        try:
            self._writer(entries)
            return True
        except Exception as e:
            logger.warning(f"[scan {self.scan_run_id}] Failed to write {len(entries)} log entries: {e}")
            return False

    async def _write_async(self, entries: List[ScanLogEntry], rebuffer: bool = False) -> bool:
        try:
            await sync_to_async(self._writer, thread_sensitive=True)(entries)
            return True
        except Exception as e:
            logger.warning(f"[scan {self.scan_run_id}] Failed to write {len(entries)} log entries: {e}")
            if rebuffer:
                self._unflushed.extend(entries)
            return False

    async def flush(self) -> int:
        """
        Persist everything not yet written.

        Waits for in-flight immediate writes first so their failures are
        retried here. Each entry is written at most once across calls.

        Returns:
            Number of entries handed to the writer
        """
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

        if not self._unflushed or self._writer is None:
            return 0

        batch, self._unflushed = self._unflushed, []
        await self._write_async(batch)
        return len(batch)
