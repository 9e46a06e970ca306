"""
Scan Orchestrator - runs one piracy scan for one product.

Pipeline (stages run strictly in sequence; work fans out inside a stage):

    initialization    load product context, known URLs, learned signals; plan tiers 1-2
    keyword_search    Tier 1 broad queries
    trademark_search  Tier 2 targeted queries
    phrase_matching   screen tier 1-2 hits: hard pre-filter, in-run dedup,
                      known/new partition, scoring, false-positive filter,
                      optional AI filter
    marketplace_scan  Tier 3 deep-dive queries from hot domains, screened
    platform_scan     category-weighted platform scanners, screened
    finalization      persist new records, update rediscovered and re-listed
                      records, send notifications

Progress is persisted after every stage transition. A wall-clock deadline is
checked before each search stage; once it has passed, the remaining search
stages complete with 0 results as self-healed and the run still finalizes
with what it found. Any other exception fails the run: progress and counts
stay as far as processing got, the failure is logged, captured and alerted,
and the exception is re-raised.
"""

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from asgiref.sync import sync_to_async
from django.utils import timezone

from scan_engine.exceptions import TimeoutExceeded
from scan_engine.monitoring.scan_logger import ErrorCode, ScanLogger
from scan_engine.monitoring.sentry_integration import capture_alert, capture_scan_error
from scan_engine.search.client import BudgetedSearchClient, SearchResponse
from scan_engine.search.profiles import ProfileRegistry, get_profile_registry
from scan_engine.search.queries import QueryGenerator, QueryPlan, normalize_query_text
from scan_engine.services.ai_filter import AICompletionClient, AIFilter
from scan_engine.services.confidence_scorer import ConfidenceScorer
from scan_engine.services.notifications import (
    EVENT_HIGH_SEVERITY,
    EVENT_RELISTING,
    EVENT_SCAN_COMPLETED,
    EVENT_SCAN_FAILED,
    BestEffortDispatcher,
    WebhookSink,
)
from scan_engine.services.platform_router import PlatformRouter
from scan_engine.services.scan_progress import (
    RunCompleted,
    RunStatus,
    ScanProgress,
    ScanStage,
    StageCompleted,
    StageStarted,
    fail_run,
    transition,
)
from scan_engine.services.scan_store import DjangoScanStore, InfringementDraft, ScanStore
from scan_engine.services.scan_types import Candidate, LearnedSignals, ProductSnapshot, ScanConfig, SearchHit
from scan_engine.services.url_delta import KnownRecord, UrlDeltaTracker

logger = logging.getLogger(__name__)

RELISTING_REASON = "relisted"


async def _db(func: Callable, *args, **kwargs):
    """Run a synchronous store call off the event loop."""
    return await sync_to_async(func, thread_sensitive=True)(*args, **kwargs)


@dataclass
class ScanCounts:
    raw_hits: int = 0
    excluded: int = 0
    duplicates: int = 0
    false_positives: int = 0
    ai_rejected: int = 0
    new_infringements: int = 0
    rediscovered: int = 0
    relisted: int = 0
    failed_inserts: int = 0
    est_revenue_loss: int = 0

    def to_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)


@dataclass
class ScanOutcome:
    """What a finished run reports back to its caller."""

    scan_run_id: Any
    product_id: Any
    status: str
    progress: Dict[str, Any]
    counts: Dict[str, int]
    budget_used: int
    budget_limit: int
    duration_seconds: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scan_run_id": str(self.scan_run_id),
            "product_id": str(self.product_id),
            "status": self.status,
            "progress": self.progress,
            "counts": self.counts,
            "budget_used": self.budget_used,
            "budget_limit": self.budget_limit,
            "duration_seconds": round(self.duration_seconds, 2),
        }


@dataclass
class _RunState:
    """Mutable bookkeeping of one run; never shared between runs."""

    product: ProductSnapshot
    scan_run_id: Any
    run_number: int
    client: BudgetedSearchClient
    scan_logger: ScanLogger
    dispatcher: BestEffortDispatcher
    started_at: float
    progress: ScanProgress = field(default_factory=ScanProgress.initial)
    learned: LearnedSignals = field(default_factory=LearnedSignals)
    tracker: UrlDeltaTracker = field(default_factory=UrlDeltaTracker)
    plan: Optional[QueryPlan] = None
    pending_hits: List[SearchHit] = field(default_factory=list)
    hit_urls: List[str] = field(default_factory=list)
    issued_queries: Set[str] = field(default_factory=set)
    accepted: List[Candidate] = field(default_factory=list)
    rediscovered: List[Tuple[Candidate, KnownRecord]] = field(default_factory=list)
    relisted: List[Tuple[Candidate, KnownRecord]] = field(default_factory=list)
    counts: ScanCounts = field(default_factory=ScanCounts)
    ai_unavailable_reported: bool = False


class ScanOrchestrator:
    """
    Composes the scan components into one staged run.

    Usage:
        outcome = await ScanOrchestrator().run(product_id)
    """

    def __init__(
        self,
        store: Optional[ScanStore] = None,
        config: Optional[ScanConfig] = None,
        registry: Optional[ProfileRegistry] = None,
        client_factory: Optional[Callable[[ScanConfig], BudgetedSearchClient]] = None,
        ai_client: Optional[AICompletionClient] = None,
        notification_sink: Optional[WebhookSink] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store or DjangoScanStore()
        self.config = config or ScanConfig.from_settings()
        self.registry = registry or get_profile_registry()
        self.client_factory = client_factory or self._default_client
        self.ai_client = ai_client
        self.notification_sink = notification_sink
        self.clock = clock

        self.generator = QueryGenerator(self.registry, self.config.platform_weight_threshold)
        self.scorer = ConfidenceScorer(self.registry)

    @staticmethod
    def _default_client(config: ScanConfig) -> BudgetedSearchClient:
        return BudgetedSearchClient(
            budget=config.search_budget,
            min_delay=config.min_call_delay_seconds,
            concurrency=config.batch_concurrency,
            timeout=config.call_timeout_seconds,
        )

    async def run(self, product_id) -> ScanOutcome:
        """
        Execute a full scan for a product.

        Raises:
            ProductNotFound: the product does not exist (no run is created)
            Exception: any unhandled failure, after the run is marked failed
        """
        product = await _db(self.store.load_product, product_id)
        progress = ScanProgress.initial()
        run_info = await _db(
            self.store.create_scan_run, product.id, self.config.search_budget, progress.to_dict()
        )

        scan_logger = ScanLogger(
            run_info["id"],
            product,
            self.config,
            writer=self.store.insert_logs,
            run_number=run_info["run_number"],
        )
        state = _RunState(
            product=product,
            scan_run_id=run_info["id"],
            run_number=run_info["run_number"],
            client=self.client_factory(self.config),
            scan_logger=scan_logger,
            dispatcher=BestEffortDispatcher(self.notification_sink, scan_logger),
            started_at=self.clock(),
            progress=progress,
        )

        logger.info(
            f"Starting scan {state.scan_run_id} (#{state.run_number}) for '{product.name}' "
            f"[{product.category}], budget {self.config.search_budget}"
        )

        try:
            await self._stage(state, ScanStage.INITIALIZATION, self._initialize, deadline=False)
            await self._stage(state, ScanStage.KEYWORD_SEARCH, self._keyword_search)
            await self._stage(state, ScanStage.TRADEMARK_SEARCH, self._trademark_search)
            await self._stage(state, ScanStage.PHRASE_MATCHING, self._phrase_matching, deadline=False)
            await self._stage(state, ScanStage.MARKETPLACE_SCAN, self._marketplace_scan)
            await self._stage(state, ScanStage.PLATFORM_SCAN, self._platform_scan)
            await self._stage(state, ScanStage.FINALIZATION, self._finalize, deadline=False)
            await self._apply(state, RunCompleted(at=timezone.now()))
            await self._finish(state, RunStatus.COMPLETED)
        except Exception as e:
            await self._fail(state, e)
            raise
        finally:
            await scan_logger.flush()
            await state.client.aclose()

        outcome = self._outcome(state)
        logger.info(
            f"Scan {state.scan_run_id} completed in {outcome.duration_seconds:.1f}s: "
            f"{state.counts.new_infringements} new, {state.counts.rediscovered} rediscovered, "
            f"{state.counts.relisted} re-listed ({state.client.used}/{state.client.budget} calls)"
        )
        return outcome

    # Stage plumbing

    async def _apply(self, state: _RunState, event) -> None:
        state.progress = transition(state.progress, event)
        await _db(self.store.save_progress, state.scan_run_id, state.progress.to_dict())

    def _check_deadline(self, state: _RunState, stage: ScanStage) -> None:
        elapsed = self.clock() - state.started_at
        if elapsed > self.config.max_duration_seconds:
            raise TimeoutExceeded(stage.value, elapsed, self.config.max_duration_seconds)

    async def _stage(self, state: _RunState, stage: ScanStage, work, deadline: bool = True) -> None:
        """
        Run one stage between its started and completed transitions.

        ``work`` returns (result_count, self_healed). A passed deadline
        turns the stage into a self-healed no-op.
        """
        await self._apply(state, StageStarted(stage, at=timezone.now()))
        try:
            if deadline:
                self._check_deadline(state, stage)
            result_count, self_healed = await work(state)
        except TimeoutExceeded as e:
            state.scan_logger.self_heal(
                stage,
                ErrorCode.TIMEOUT,
                f"Skipped {stage.value} after deadline",
                metrics={"elapsed_seconds": round(e.elapsed, 1), "limit_seconds": e.limit},
            )
            result_count, self_healed = 0, True

        await self._apply(state, StageCompleted(
            stage, result_count=result_count, self_healed=self_healed, at=timezone.now()
        ))

    # Stages

    async def _initialize(self, state: _RunState) -> Tuple[int, bool]:
        product = state.product
        known = await _db(self.store.load_known_records, product.id)
        state.learned = await _db(self.store.load_learned_signals, product.id)
        state.tracker = UrlDeltaTracker(known)
        state.plan = self.generator.generate(product, state.learned)

        if not state.client.api_key:
            state.scan_logger.warn(
                ScanStage.INITIALIZATION,
                "Search API key not configured; searches will be skipped",
                ErrorCode.SERP_ERROR,
            )

        planned = len(state.plan.tier1) + len(state.plan.tier2)
        state.scan_logger.info(
            ScanStage.INITIALIZATION,
            f"Planned {planned} queries for '{product.name}'",
            metrics={
                "tier1": len(state.plan.tier1),
                "tier2": len(state.plan.tier2),
                "known_urls": len(known),
                "has_ai_signals": product.ai_signals is not None,
                "has_learning_data": state.learned.has_learning_data,
            },
        )
        return planned, False

    async def _run_queries(self, state: _RunState, stage: ScanStage, queries, reserve: int) -> List[SearchHit]:
        if not queries:
            return []

        responses: List[SearchResponse] = await state.client.search_batch(queries, reserve=reserve)
        hits: List[SearchHit] = []
        executed = 0
        for response in responses:
            if response.executed:
                executed += 1
                state.issued_queries.add(normalize_query_text(response.query))
            hits.extend(response.hits)

        skipped = len(responses) - executed
        if skipped:
            state.scan_logger.warn(
                stage,
                f"Budget limited: {skipped}/{len(responses)} queries skipped",
                ErrorCode.BUDGET_EXHAUSTED,
                metrics={"used": state.client.used, "budget": state.client.budget},
            )

        state.counts.raw_hits += len(hits)
        state.hit_urls.extend(hit.link for hit in hits)
        state.scan_logger.info(
            stage,
            f"{executed} queries, {len(hits)} results",
            metrics={"queries": executed, "results": len(hits), "used": state.client.used},
        )
        return hits

    async def _keyword_search(self, state: _RunState) -> Tuple[int, bool]:
        hits = await self._run_queries(
            state, ScanStage.KEYWORD_SEARCH, state.plan.tier1, self.config.tier3_reserve
        )
        state.pending_hits.extend(hits)
        return len(hits), False

    async def _trademark_search(self, state: _RunState) -> Tuple[int, bool]:
        hits = await self._run_queries(
            state, ScanStage.TRADEMARK_SEARCH, state.plan.tier2, self.config.tier3_reserve
        )
        state.pending_hits.extend(hits)
        return len(hits), False

    async def _phrase_matching(self, state: _RunState) -> Tuple[int, bool]:
        hits, state.pending_hits = state.pending_hits, []
        return await self._screen(state, ScanStage.PHRASE_MATCHING, hits)

    async def _marketplace_scan(self, state: _RunState) -> Tuple[int, bool]:
        plan = self.generator.generate(state.product, state.learned, prior_hit_urls=state.hit_urls)
        fresh = [q for q in plan.tier3 if normalize_query_text(q.query) not in state.issued_queries]
        hits = await self._run_queries(state, ScanStage.MARKETPLACE_SCAN, fresh, reserve=0)
        return await self._screen(state, ScanStage.MARKETPLACE_SCAN, hits)

    async def _platform_scan(self, state: _RunState) -> Tuple[int, bool]:
        router = PlatformRouter(
            state.client,
            self.registry,
            threshold=self.config.platform_weight_threshold,
            scan_logger=state.scan_logger,
        )
        allocations = router.allocate(
            state.product, state.client.remaining, self.config.platform_budget_cap
        )
        if not allocations:
            if state.client.remaining <= 0:
                state.scan_logger.self_heal(
                    ScanStage.PLATFORM_SCAN,
                    ErrorCode.BUDGET_EXHAUSTED,
                    "Skipped platform scan with no budget left",
                )
                return 0, True
            state.scan_logger.info(ScanStage.PLATFORM_SCAN, "No relevant platforms for category")
            return 0, False

        result = await router.run(state.product, allocations, state.issued_queries)
        state.counts.raw_hits += len(result.hits)
        return await self._screen(state, ScanStage.PLATFORM_SCAN, result.hits)

    # Screening

    async def _screen(self, state: _RunState, stage: ScanStage, hits: List[SearchHit]) -> Tuple[int, bool]:
        """
        Screen hits into accepted candidates.

        Known URLs are partitioned out before scoring; only new URLs are
        scored and filtered. Returns the number of newly accepted candidates.
        """
        product = state.product
        scored: List[Candidate] = []
        known: List[Candidate] = []

        for hit in hits:
            if self.scorer.is_excluded(hit.link, product):
                state.counts.excluded += 1
                continue

            candidate = state.tracker.claim(hit)
            if candidate is None:
                state.counts.duplicates += 1
                continue

            if state.tracker.is_known(candidate.url_hash):
                known.append(candidate)
                continue

            candidate.score = self.scorer.score(hit, product)
            if candidate.score.is_false_positive:
                state.counts.false_positives += 1
                continue
            scored.append(candidate)

        partition = state.tracker.partition(known)
        state.rediscovered.extend(partition.rediscovered)
        state.relisted.extend(partition.relisted)

        accepted, healed = await self._ai_filter(state, stage, scored)
        state.accepted.extend(accepted)

        state.scan_logger.info(
            stage,
            f"Screened {len(hits)} results: {len(accepted)} accepted",
            metrics={
                "screened": len(hits),
                "accepted": len(accepted),
                "known": len(known),
                "false_positives": state.counts.false_positives,
                "duplicates": state.counts.duplicates,
            },
        )
        return len(accepted), healed

    async def _ai_filter(
        self, state: _RunState, stage: ScanStage, candidates: List[Candidate]
    ) -> Tuple[List[Candidate], bool]:
        if not candidates or not self.config.ai_filter_enabled:
            return candidates, False

        ai_filter = AIFilter(
            self.ai_client,
            threshold=self.config.ai_confidence_threshold,
            max_concurrency=self.config.ai_max_concurrency,
            scan_logger=state.scan_logger,
        )
        if not ai_filter.is_available:
            if not state.ai_unavailable_reported:
                state.ai_unavailable_reported = True
                state.scan_logger.self_heal(
                    stage,
                    ErrorCode.AI_FILTER_FAIL,
                    "Skipped AI filter without a configured completion service",
                )
            return candidates, True

        try:
            self._check_deadline(state, stage)
        except TimeoutExceeded:
            state.scan_logger.self_heal(
                stage, ErrorCode.TIMEOUT, "Skipped AI filter after deadline"
            )
            return candidates, True

        summary = await ai_filter.filter(candidates, state.product, state.learned)
        state.counts.ai_rejected += summary.rejected
        return summary.passed, False

    # Finalization

    async def _finalize(self, state: _RunState) -> Tuple[int, bool]:
        product = state.product
        scan_logger = state.scan_logger
        healed = False

        drafts = [InfringementDraft.from_candidate(c) for c in state.accepted]
        outcome = await _db(self.store.insert_infringements, state.scan_run_id, product.id, drafts)
        if outcome.used_fallback:
            healed = True
            scan_logger.error(
                ScanStage.FINALIZATION,
                "Batch insert failed, fell back to row inserts",
                ErrorCode.DB_BATCH_FAIL,
                error_details={"error": outcome.batch_error, "rows": len(drafts)},
            )
        for url_hash, error in outcome.row_errors.items():
            scan_logger.error(
                ScanStage.FINALIZATION,
                "Infringement insert failed",
                ErrorCode.DB_INSERT_FAIL,
                error_details={"url_hash": url_hash, "error": error},
            )

        stored = [d for d in drafts if d.url_hash not in outcome.row_errors]
        state.counts.new_infringements = outcome.inserted
        state.counts.failed_inserts = len(outcome.row_errors)
        state.counts.est_revenue_loss = sum(d.est_revenue_loss for d in stored)

        if state.rediscovered:
            state.counts.rediscovered = await _db(
                self.store.mark_rediscovered, [record.record_id for _, record in state.rediscovered]
            )

        for candidate, record in state.relisted:
            reactivated = await _db(
                self.store.reactivate, record.record_id, state.scan_run_id, RELISTING_REASON
            )
            if not reactivated:
                continue
            state.counts.relisted += 1
            scan_logger.warn(
                ScanStage.FINALIZATION,
                f"Previously removed content re-listed: {candidate.hit.link}",
                metrics={"record_id": str(record.record_id)},
            )
            await state.dispatcher.dispatch(EVENT_RELISTING, {
                "product_id": str(product.id),
                "product_name": product.name,
                "record_id": str(record.record_id),
                "source_url": candidate.hit.link,
                "scan_run_id": str(state.scan_run_id),
            })

        for draft in stored:
            if draft.priority == "P0" or draft.severity_score >= self.config.high_severity_threshold:
                await state.dispatcher.dispatch(EVENT_HIGH_SEVERITY, {
                    "product_id": str(product.id),
                    "product_name": product.name,
                    "source_url": draft.source_url,
                    "platform": draft.platform,
                    "severity_score": draft.severity_score,
                    "priority": draft.priority,
                    "est_revenue_loss": draft.est_revenue_loss,
                    "scan_run_id": str(state.scan_run_id),
                })

        if state.counts.new_infringements:
            await state.dispatcher.dispatch(EVENT_SCAN_COMPLETED, {
                "product_id": str(product.id),
                "product_name": product.name,
                "scan_run_id": str(state.scan_run_id),
                "new_infringements": state.counts.new_infringements,
                "p0_count": sum(1 for d in stored if d.priority == "P0"),
                "total_scanned": state.counts.raw_hits,
            })

        scan_logger.info(
            ScanStage.FINALIZATION,
            f"Stored {outcome.inserted} new infringements",
            metrics=state.counts.to_dict(),
        )
        return outcome.inserted, healed

    def _summary_fields(self, state: _RunState) -> Dict[str, Any]:
        counts = state.counts
        diagnostics = state.client.diagnostics
        return {
            "progress": state.progress.to_dict(),
            "current_stage": (state.progress.current_stage.value if state.progress.current_stage else ""),
            "budget_used": state.client.used,
            "queries_skipped": diagnostics.skipped_queries,
            "raw_hits": counts.raw_hits,
            "false_positives_filtered": counts.false_positives + counts.excluded + counts.ai_rejected,
            "new_infringements": counts.new_infringements,
            "rediscovered": counts.rediscovered,
            "relisted": counts.relisted,
            "est_revenue_loss": Decimal(counts.est_revenue_loss),
            "search_diagnostics": diagnostics.to_dict(),
            "duration_seconds": round(self.clock() - state.started_at, 2),
        }

    async def _finish(self, state: _RunState, status: RunStatus, error_message: str = "") -> None:
        fields = self._summary_fields(state)
        fields["status"] = status.value
        fields["error_message"] = error_message
        await _db(self.store.finish_scan_run, state.scan_run_id, **fields)

    async def _fail(self, state: _RunState, error: Exception) -> None:
        """Record a failed run without masking the original error."""
        stage = state.progress.current_stage
        stage_name = stage.value if stage else ScanStage.INITIALIZATION.value
        message = f"{type(error).__name__}: {error}"

        try:
            if state.progress.status != RunStatus.FAILED:
                state.progress = fail_run(state.progress, message)
            await self._finish(state, RunStatus.FAILED, error_message=message[:2000])
        except Exception as e:
            logger.error(f"Could not record failure of scan {state.scan_run_id}: {e}")

        state.scan_logger.fatal(
            stage_name,
            f"Scan failed: {message}",
            ErrorCode.UNKNOWN,
            error_details={"exception": type(error).__name__, "message": str(error)[:500]},
        )
        logger.exception(f"Scan {state.scan_run_id} failed in {stage_name}: {error}")

        capture_scan_error(
            error,
            scan_run_id=state.scan_run_id,
            product_id=state.product.id,
            stage=stage_name,
            extra_context={"counts": state.counts.to_dict(), "budget_used": state.client.used},
        )
        capture_alert(
            f"Scan failed for '{state.product.name}' in {stage_name}",
            level="error",
            extra_data={"scan_run_id": str(state.scan_run_id), "error": message[:500]},
        )
        await state.dispatcher.dispatch(EVENT_SCAN_FAILED, {
            "product_id": str(state.product.id),
            "product_name": state.product.name,
            "scan_run_id": str(state.scan_run_id),
            "stage": stage_name,
            "error": message[:500],
            "scan_params": state.scan_logger.scan_params,
            "recent_logs": [
                {
                    "log_level": entry.log_level,
                    "stage": entry.stage,
                    "message": entry.message,
                    "error_code": entry.error_code,
                }
                for entry in state.scan_logger.recent(10)
            ],
        })

    def _outcome(self, state: _RunState) -> ScanOutcome:
        return ScanOutcome(
            scan_run_id=state.scan_run_id,
            product_id=state.product.id,
            status=state.progress.status.value,
            progress=state.progress.to_dict(),
            counts=state.counts.to_dict(),
            budget_used=state.client.used,
            budget_limit=state.client.budget,
            duration_seconds=self.clock() - state.started_at,
        )
