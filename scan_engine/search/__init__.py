"""
Search planning and execution for scan runs.

Components:
- BudgetedSearchClient: rate-limited, budget-capped SerpAPI client
- ProfileRegistry: immutable per-category scan profiles
- QueryGenerator: tiered query plans from product metadata and signals
"""

from .client import BudgetedSearchClient, SearchDiagnostics, SearchResponse
from .profiles import ProfileRegistry, ScanProfile, get_profile_registry
from .queries import QueryGenerator, QueryPlan, normalize_query_text

__all__ = [
    "BudgetedSearchClient",
    "SearchDiagnostics",
    "SearchResponse",
    "ProfileRegistry",
    "ScanProfile",
    "get_profile_registry",
    "QueryGenerator",
    "QueryPlan",
    "normalize_query_text",
]
