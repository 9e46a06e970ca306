"""
Platform router - picks the platforms worth scanning for a product category,
splits the remaining search budget between them and runs their scanners
in parallel.

A failing scanner never affects the others: its exception is logged as a
PLATFORM_FAIL entry and it contributes no hits.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from scan_engine.monitoring.scan_logger import ErrorCode, ScanLogger
from scan_engine.search.client import BudgetedSearchClient
from scan_engine.search.profiles import ProfileRegistry, get_profile_registry
from scan_engine.services.platform_scanners import PlatformScanner, default_scanners
from scan_engine.services.scan_progress import ScanStage
from scan_engine.services.scan_types import ProductSnapshot, SearchHit

logger = logging.getLogger(__name__)

DEFAULT_PLATFORM_BUDGET_CAP = 12


@dataclass(frozen=True)
class PlatformAllocation:
    platform: str
    weight: float
    budget_share: int


@dataclass
class PlatformScanResult:
    """Combined output of one platform scan stage."""

    hits: List[SearchHit] = field(default_factory=list)
    platforms_run: List[str] = field(default_factory=list)
    hits_by_platform: Dict[str, int] = field(default_factory=dict)
    budget_used: int = 0
    failures: Dict[str, str] = field(default_factory=dict)


class PlatformRouter:
    """
    Category-aware platform scan dispatcher.

    Usage:
        router = PlatformRouter(client, scan_logger=scan_logger)
        allocations = router.allocate(product, client.remaining)
        result = await router.run(product, allocations, issued_queries)
    """

    def __init__(
        self,
        client: BudgetedSearchClient,
        registry: Optional[ProfileRegistry] = None,
        scanners: Optional[Dict[str, PlatformScanner]] = None,
        threshold: float = 0.6,
        scan_logger: Optional[ScanLogger] = None,
    ):
        self.client = client
        self.registry = registry or get_profile_registry()
        self.scanners = scanners if scanners is not None else default_scanners(self.registry)
        self.threshold = threshold
        self.scan_logger = scan_logger

    def allocate(
        self,
        product: ProductSnapshot,
        remaining_budget: int,
        cap: int = DEFAULT_PLATFORM_BUDGET_CAP,
    ) -> List[PlatformAllocation]:
        """
        Split ``min(remaining_budget, cap)`` across relevant platforms.

        Each platform gets max(1, round(weight / total_weight * available))
        calls, highest weight first. Shares are trimmed from the lowest
        weight upwards so the total never exceeds what is available, which
        can leave low-weight platforms out entirely on a tight budget.
        """
        available = min(max(0, remaining_budget), cap)
        if available <= 0:
            return []

        relevant = [
            p for p in self.registry.relevant_platforms(product.category, self.threshold)
            if p.platform in self.scanners
        ][:available]
        if not relevant:
            return []

        total_weight = sum(p.weight for p in relevant)
        shares = [
            max(1, int(p.weight / total_weight * available + 0.5))
            for p in relevant
        ]

        overflow = sum(shares) - available
        index = len(shares) - 1
        while overflow > 0 and index >= 0:
            reducible = min(overflow, shares[index] - 1)
            shares[index] -= reducible
            overflow -= reducible
            index -= 1

        return [
            PlatformAllocation(platform=p.platform, weight=p.weight, budget_share=share)
            for p, share in zip(relevant, shares)
        ]

    async def run(
        self,
        product: ProductSnapshot,
        allocations: List[PlatformAllocation],
        exclude_queries: Set[str] = frozenset(),
    ) -> PlatformScanResult:
        """
        Run every allocated scanner concurrently and merge their hits.
        """
        result = PlatformScanResult()
        if not allocations:
            return result

        used_before = self.client.used
        outcomes = await asyncio.gather(*[
            self._run_guarded(product, allocation, exclude_queries)
            for allocation in allocations
        ])

        for allocation, (hits, error) in zip(allocations, outcomes):
            result.platforms_run.append(allocation.platform)
            result.hits_by_platform[allocation.platform] = len(hits)
            result.hits.extend(hits)
            if error:
                result.failures[allocation.platform] = error

        result.budget_used = self.client.used - used_before

        if result.hits_by_platform and not any(result.hits_by_platform.values()):
            self._warn(
                "All platform scanners returned 0 results",
                ErrorCode.SERP_ERROR,
                {"platforms": result.platforms_run, "budget_used": result.budget_used},
            )

        logger.info(
            f"Platform scan for '{product.name}': {len(result.hits)} hits from "
            f"{len(result.platforms_run)} platforms ({result.budget_used} calls)"
        )
        return result

    async def _run_guarded(
        self,
        product: ProductSnapshot,
        allocation: PlatformAllocation,
        exclude_queries: Set[str],
    ):
        scanner = self.scanners[allocation.platform]
        try:
            hits = await scanner.scan(product, self.client, allocation.budget_share, exclude_queries)
        except Exception as e:
            logger.warning(f"Platform scanner {allocation.platform} failed: {e}")
            if self.scan_logger:
                self.scan_logger.error(
                    ScanStage.PLATFORM_SCAN,
                    f"{allocation.platform} scan failed",
                    ErrorCode.PLATFORM_FAIL,
                    error_details={"platform": allocation.platform, "error": str(e)},
                )
            return [], str(e)

        if self.scan_logger:
            self.scan_logger.info(
                ScanStage.PLATFORM_SCAN,
                f"{allocation.platform}: {len(hits)} results",
                metrics={
                    "platform": allocation.platform,
                    "weight": allocation.weight,
                    "budget_share": allocation.budget_share,
                    "results": len(hits),
                },
            )
        return hits, None

    def _warn(self, message: str, code: ErrorCode, metrics: dict) -> None:
        if self.scan_logger:
            self.scan_logger.warn(ScanStage.PLATFORM_SCAN, message, code, metrics)
        else:
            logger.warning(message)
