"""
Persistence boundary of the scan pipeline.

The orchestrator talks to storage only through ``ScanStore``; all methods
are synchronous and are called through ``sync_to_async`` from async code.
``DjangoScanStore`` is the ORM-backed implementation.

Bulk writes (infringements, logs) are tried as one batch first and fall
back to row-by-row inserts when the batch fails, so one bad row never
loses the rest.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from scan_engine.exceptions import PersistenceError, ProductNotFound
from scan_engine.services.scan_types import Candidate, LearnedSignals, ProductSnapshot
from scan_engine.services.url_delta import KnownRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InfringementDraft:
    """A screened candidate ready to be stored as an InfringementRecord."""

    source_url: str
    url_normalized: str
    url_hash: str
    platform: str
    infringement_type: str
    confidence: int
    risk_level: str
    severity_score: int
    priority: str
    audience_size: str
    est_revenue_loss: int
    evidence: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_candidate(cls, candidate: Candidate) -> "InfringementDraft":
        score = candidate.score
        if score is None:
            raise ValueError(f"Candidate {candidate.normalized_url} has not been scored")
        return cls(
            source_url=candidate.hit.link,
            url_normalized=candidate.normalized_url,
            url_hash=candidate.url_hash,
            platform=score.platform,
            infringement_type=score.infringement_type,
            confidence=score.confidence,
            risk_level=score.risk_level,
            severity_score=score.severity_score,
            priority=score.priority,
            audience_size=score.audience_size,
            est_revenue_loss=score.est_revenue_loss,
            evidence=candidate.evidence(),
        )


@dataclass
class InsertOutcome:
    """Result of a batch insert with row fallback."""

    inserted: int = 0
    batch_error: Optional[str] = None
    row_errors: Dict[str, str] = field(default_factory=dict)

    @property
    def used_fallback(self) -> bool:
        return self.batch_error is not None


class ScanStore(ABC):
    """Storage operations needed by one scan run."""

    @abstractmethod
    def load_product(self, product_id) -> ProductSnapshot:
        """Raises ProductNotFound when the product does not exist."""

    @abstractmethod
    def load_known_records(self, product_id) -> List[KnownRecord]:
        pass

    @abstractmethod
    def load_learned_signals(self, product_id) -> LearnedSignals:
        pass

    @abstractmethod
    def create_scan_run(self, product_id, budget_limit: int, progress: Dict[str, Any]) -> Dict[str, Any]:
        """Create a running ScanRun; returns {"id", "run_number"}."""

    @abstractmethod
    def save_progress(self, scan_run_id, progress: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def insert_infringements(
        self, scan_run_id, product_id, drafts: List[InfringementDraft]
    ) -> InsertOutcome:
        pass

    @abstractmethod
    def mark_rediscovered(self, record_ids: Iterable[Any]) -> int:
        pass

    @abstractmethod
    def reactivate(self, record_id, scan_run_id, reason: str) -> bool:
        pass

    @abstractmethod
    def insert_logs(self, entries: List[Any]) -> int:
        pass

    @abstractmethod
    def finish_scan_run(self, scan_run_id, **fields) -> None:
        pass


class DjangoScanStore(ScanStore):
    """ScanStore backed by the scan_engine models."""

    def load_product(self, product_id) -> ProductSnapshot:
        from scan_engine.models import Product

        try:
            product = Product.objects.get(pk=product_id)
        except (Product.DoesNotExist, ValidationError, ValueError, TypeError) as e:
            raise ProductNotFound(f"Product {product_id} not found") from e
        return ProductSnapshot.from_model(product)

    def load_known_records(self, product_id) -> List[KnownRecord]:
        from scan_engine.models import InfringementRecord

        rows = InfringementRecord.objects.filter(product_id=product_id).values_list(
            "id", "url_hash", "status", "seen_count"
        )
        return [
            KnownRecord(record_id=pk, url_hash=hash_value, status=status, seen_count=seen)
            for pk, hash_value, status, seen in rows
        ]

    def load_learned_signals(self, product_id) -> LearnedSignals:
        from scan_engine.models import LearnedPattern, LearnedPatternType

        patterns = LearnedPattern.objects.filter(product_id=product_id).order_by(
            "-confidence_score", "-occurrences"
        )
        keywords = []
        domains = []
        for pattern in patterns:
            if pattern.pattern_type == LearnedPatternType.VERIFIED_KEYWORD:
                keywords.append(pattern.value)
            elif pattern.pattern_type == LearnedPatternType.FALSE_POSITIVE_DOMAIN:
                domains.append(pattern.value)
        return LearnedSignals.from_untrusted(keywords, domains)

    def create_scan_run(self, product_id, budget_limit: int, progress: Dict[str, Any]) -> Dict[str, Any]:
        from scan_engine.models import ScanRun

        with transaction.atomic():
            run_number = ScanRun.objects.filter(product_id=product_id).count() + 1
            run = ScanRun.objects.create(
                product_id=product_id,
                run_number=run_number,
                budget_limit=budget_limit,
                progress=progress,
                current_stage=progress.get("current_stage") or "",
            )
        logger.debug(f"Created ScanRun {run.id} (#{run_number}) for product {product_id}")
        return {"id": run.id, "run_number": run_number}

    def save_progress(self, scan_run_id, progress: Dict[str, Any]) -> None:
        from scan_engine.models import ScanRun

        ScanRun.objects.filter(pk=scan_run_id).update(
            progress=progress,
            current_stage=progress.get("current_stage") or "",
        )

    def insert_infringements(
        self, scan_run_id, product_id, drafts: List[InfringementDraft]
    ) -> InsertOutcome:
        from scan_engine.models import InfringementRecord, InfringementStatus

        outcome = InsertOutcome()
        if not drafts:
            return outcome

        now = timezone.now()

        def build(draft: InfringementDraft) -> InfringementRecord:
            return InfringementRecord(
                product_id=product_id,
                scan_run_id=scan_run_id,
                source_url=draft.source_url,
                url_normalized=draft.url_normalized,
                url_hash=draft.url_hash,
                platform=draft.platform,
                infringement_type=draft.infringement_type,
                confidence=draft.confidence,
                risk_level=draft.risk_level,
                severity_score=draft.severity_score,
                priority=draft.priority,
                audience_size=draft.audience_size,
                est_revenue_loss=Decimal(draft.est_revenue_loss),
                evidence=draft.evidence,
                status=InfringementStatus.PENDING_VERIFICATION,
                first_seen_at=now,
                last_seen_at=now,
            )

        try:
            with transaction.atomic():
                InfringementRecord.objects.bulk_create([build(d) for d in drafts])
            outcome.inserted = len(drafts)
            return outcome
        except Exception as e:
            outcome.batch_error = str(e)
            logger.warning(f"Batch insert of {len(drafts)} infringements failed, retrying per row: {e}")

        for draft in drafts:
            try:
                with transaction.atomic():
                    build(draft).save(force_insert=True)
                outcome.inserted += 1
            except Exception as e:
                outcome.row_errors[draft.url_hash] = str(e)
                logger.warning(f"Insert failed for {draft.source_url}: {e}")

        return outcome

    def mark_rediscovered(self, record_ids: Iterable[Any]) -> int:
        from scan_engine.models import InfringementRecord

        ids = list(record_ids)
        if not ids:
            return 0
        return InfringementRecord.objects.filter(pk__in=ids).update(
            seen_count=F("seen_count") + 1,
            last_seen_at=timezone.now(),
        )

    def reactivate(self, record_id, scan_run_id, reason: str) -> bool:
        """
        Move a removed record back to active and record the transition.

        Returns False when the record is gone or no longer removed, e.g.
        because a concurrent run already re-activated it.
        """
        from scan_engine.models import (
            InfringementRecord,
            InfringementStatus,
            InfringementStatusTransition,
        )

        with transaction.atomic():
            record = (
                InfringementRecord.objects.select_for_update()
                .filter(pk=record_id, status=InfringementStatus.REMOVED)
                .first()
            )
            if record is None:
                return False

            record.status = InfringementStatus.ACTIVE
            record.seen_count = F("seen_count") + 1
            record.last_seen_at = timezone.now()
            record.save(update_fields=["status", "seen_count", "last_seen_at"])

            InfringementStatusTransition.objects.create(
                infringement_id=record_id,
                from_status=InfringementStatus.REMOVED,
                to_status=InfringementStatus.ACTIVE,
                reason=reason,
                scan_run_id=scan_run_id,
            )
        return True

    def insert_logs(self, entries: List[Any]) -> int:
        """
        Persist ScanLogEntry objects.

        Raises:
            PersistenceError: not a single entry could be written
        """
        from scan_engine.models import ScanLog

        if not entries:
            return 0

        def build(entry) -> ScanLog:
            return ScanLog(
                scan_run_id=entry.scan_run_id,
                product_id=entry.product_id,
                log_level=entry.log_level,
                stage=entry.stage,
                message=entry.message,
                error_code=entry.error_code,
                error_details=entry.error_details,
                scan_params=entry.scan_params,
                metrics=entry.metrics,
                self_healed=entry.self_healed,
                heal_action=entry.heal_action,
                created_at=entry.created_at,
            )

        try:
            with transaction.atomic():
                ScanLog.objects.bulk_create([build(e) for e in entries])
            return len(entries)
        except Exception as e:
            logger.warning(f"Batch insert of {len(entries)} scan logs failed, retrying per row: {e}")

        written = 0
        last_error = None
        for entry in entries:
            try:
                with transaction.atomic():
                    build(entry).save(force_insert=True)
                written += 1
            except Exception as e:
                last_error = e
                logger.warning(f"Scan log insert failed ({entry.stage}: {entry.message[:60]}): {e}")

        if written == 0:
            raise PersistenceError(f"Could not write any of {len(entries)} scan logs: {last_error}")
        return written

    def finish_scan_run(self, scan_run_id, **fields) -> None:
        from scan_engine.models import ScanRun

        if "est_revenue_loss" in fields:
            fields["est_revenue_loss"] = Decimal(fields["est_revenue_loss"])
        fields.setdefault("completed_at", timezone.now())
        ScanRun.objects.filter(pk=scan_run_id).update(**fields)
