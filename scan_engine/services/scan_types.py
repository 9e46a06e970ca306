"""
Data types shared across the scan pipeline.

Product data is snapshotted once per run into frozen dataclasses so no
stage can mutate what another stage sees. Enrichment produced outside the
engine (AI extraction, learned signals) is treated as untrusted: it only
enters through the ``from_untrusted`` constructors, which drop anything
malformed rather than failing the run.
"""

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlparse

from django.conf import settings

# Upper bounds applied to untrusted term lists
MAX_UNTRUSTED_TERMS = 20
MAX_UNTRUSTED_TERM_LENGTH = 200


def clean_terms(value: Any, limit: int = MAX_UNTRUSTED_TERMS) -> Tuple[str, ...]:
    """
    Coerce an untrusted value into a tuple of non-empty strings.

    Non-list values become an empty tuple; non-string items, blank strings
    and overlong strings are dropped; duplicates keep first occurrence.
    """
    if not isinstance(value, (list, tuple)):
        return ()

    seen = set()
    terms = []
    for item in value:
        if not isinstance(item, str):
            continue
        term = " ".join(item.split())
        if not term or len(term) > MAX_UNTRUSTED_TERM_LENGTH:
            continue
        key = term.lower()
        if key in seen:
            continue
        seen.add(key)
        terms.append(term)
        if len(terms) >= limit:
            break
    return tuple(terms)


def host_of(url: str) -> str:
    """Lowercased hostname of a URL without a leading ``www.``, or ''."""
    if not url:
        return ""
    candidate = url if "://" in url else f"https://{url}"
    try:
        host = urlparse(candidate).hostname or ""
    except ValueError:
        return ""
    host = host.lower()
    if host.startswith("www."):
        host = host[4:]
    return host


@dataclass(frozen=True)
class AISignals:
    """
    Optional AI-extracted enrichment for a product.

    Every field defaults to empty; consumers must never assume any of them
    is present.
    """

    unique_phrases: Tuple[str, ...] = ()
    brand_identifiers: Tuple[str, ...] = ()
    copyrighted_terms: Tuple[str, ...] = ()
    piracy_search_terms: Tuple[str, ...] = ()
    platform_search_terms: Mapping[str, Tuple[str, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    auto_alternative_names: Tuple[str, ...] = ()
    auto_unique_identifiers: Tuple[str, ...] = ()

    @classmethod
    def from_untrusted(cls, payload: Any) -> "AISignals":
        """Build signals from a loosely-typed payload, dropping malformed fields."""
        if not isinstance(payload, dict):
            return cls()

        platform_terms = {}
        raw_platform_terms = payload.get("platform_search_terms")
        if isinstance(raw_platform_terms, dict):
            for platform, terms in raw_platform_terms.items():
                if not isinstance(platform, str):
                    continue
                cleaned = clean_terms(terms)
                if cleaned:
                    platform_terms[platform.lower()] = cleaned

        return cls(
            unique_phrases=clean_terms(payload.get("unique_phrases")),
            brand_identifiers=clean_terms(payload.get("brand_identifiers")),
            copyrighted_terms=clean_terms(payload.get("copyrighted_terms")),
            piracy_search_terms=clean_terms(payload.get("piracy_search_terms")),
            platform_search_terms=MappingProxyType(platform_terms),
            auto_alternative_names=clean_terms(payload.get("auto_alternative_names")),
            auto_unique_identifiers=clean_terms(payload.get("auto_unique_identifiers")),
        )

    def platform_terms(self, platform: str) -> Tuple[str, ...]:
        return self.platform_search_terms.get(platform, ())

    @property
    def is_empty(self) -> bool:
        return not any([
            self.unique_phrases,
            self.brand_identifiers,
            self.copyrighted_terms,
            self.piracy_search_terms,
            self.platform_search_terms,
            self.auto_alternative_names,
            self.auto_unique_identifiers,
        ])


@dataclass(frozen=True)
class LearnedSignals:
    """Signals learned from earlier verified and rejected detections."""

    verified_keywords: Tuple[str, ...] = ()
    false_positive_domains: Tuple[str, ...] = ()

    @classmethod
    def from_untrusted(cls, verified_keywords: Any, false_positive_domains: Any) -> "LearnedSignals":
        domains = tuple(
            host_of(domain) or domain.lower()
            for domain in clean_terms(false_positive_domains)
        )
        return cls(
            verified_keywords=clean_terms(verified_keywords),
            false_positive_domains=domains,
        )

    @property
    def has_learning_data(self) -> bool:
        return bool(self.verified_keywords or self.false_positive_domains)


@dataclass(frozen=True)
class ProductSnapshot:
    """Read-only view of a product for the duration of one scan run."""

    id: Any
    name: str
    category: str = "other"
    brand: str = ""
    url: str = ""
    price: float = 0.0
    keywords: Tuple[str, ...] = ()
    negative_keywords: Tuple[str, ...] = ()
    alternative_names: Tuple[str, ...] = ()
    unique_identifiers: Tuple[str, ...] = ()
    whitelist_domains: Tuple[str, ...] = ()
    whitelist_urls: Tuple[str, ...] = ()
    ai_signals: Optional[AISignals] = None

    @classmethod
    def from_model(cls, product) -> "ProductSnapshot":
        """Snapshot a ``scan_engine.models.Product`` row."""
        ai_signals = AISignals.from_untrusted(product.ai_extracted_data)
        return cls(
            id=product.pk,
            name=product.name.strip(),
            category=product.category,
            brand=product.brand or "",
            url=product.url or "",
            price=float(product.price or 0),
            keywords=clean_terms(product.keywords),
            negative_keywords=clean_terms(product.negative_keywords),
            alternative_names=clean_terms(product.alternative_names),
            unique_identifiers=clean_terms(product.unique_identifiers),
            whitelist_domains=tuple(
                host_of(d) or d.lower() for d in clean_terms(product.whitelist_domains)
            ),
            whitelist_urls=clean_terms(product.whitelist_urls),
            ai_signals=None if ai_signals.is_empty else ai_signals,
        )

    @property
    def official_domain(self) -> str:
        return host_of(self.url)

    @property
    def signals(self) -> AISignals:
        """AI signals, or an empty bundle when none were extracted."""
        return self.ai_signals or AISignals()


@dataclass(frozen=True)
class GeneratedQuery:
    """A planned search query."""

    query: str
    tier: int
    num: int
    category: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "tier": self.tier,
            "num": self.num,
            "category": self.category,
        }


@dataclass(frozen=True)
class SearchHit:
    """
    One organic result returned by the search provider.

    Provenance fields are filled in when the hit came from a planned query;
    tier 0 means the hit has no tier provenance.
    """

    title: str
    link: str
    snippet: str
    position: int
    query: str = ""
    tier: int = 0
    query_category: str = ""

    def with_provenance(self, generated: GeneratedQuery) -> "SearchHit":
        return replace(
            self,
            query=generated.query,
            tier=generated.tier,
            query_category=generated.category,
        )


@dataclass
class ScoredResult:
    """Outcome of scoring a single hit."""

    confidence: int
    risk_level: str
    platform: str
    infringement_type: str
    audience_size: str
    est_revenue_loss: int
    is_false_positive: bool
    reasons: List[str] = field(default_factory=list)
    severity_score: int = 0
    priority: str = "P2"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confidence": self.confidence,
            "risk_level": self.risk_level,
            "platform": self.platform,
            "infringement_type": self.infringement_type,
            "audience_size": self.audience_size,
            "est_revenue_loss": self.est_revenue_loss,
            "is_false_positive": self.is_false_positive,
            "reasons": list(self.reasons),
            "severity_score": self.severity_score,
            "priority": self.priority,
        }


@dataclass
class Candidate:
    """A deduplicated hit moving through screening towards persistence."""

    hit: SearchHit
    normalized_url: str
    url_hash: str
    score: Optional[ScoredResult] = None
    ai_confidence: Optional[float] = None
    ai_reasoning: str = ""

    @property
    def confidence(self) -> int:
        return self.score.confidence if self.score else 0

    def evidence(self) -> Dict[str, Any]:
        """Evidence payload stored alongside the infringement record."""
        evidence = {
            "title": self.hit.title,
            "snippet": self.hit.snippet,
            "position": self.hit.position,
            "query": self.hit.query,
            "tier": self.hit.tier,
            "query_category": self.hit.query_category,
            "reasons": list(self.score.reasons) if self.score else [],
        }
        if self.ai_confidence is not None:
            evidence["ai_confidence"] = self.ai_confidence
            evidence["ai_reasoning"] = self.ai_reasoning
        return evidence


@dataclass(frozen=True)
class ScanConfig:
    """Per-run configuration snapshot taken from Django settings."""

    search_budget: int = 75
    tier3_reserve: int = 10
    platform_budget_cap: int = 12
    platform_weight_threshold: float = 0.6
    max_duration_seconds: float = 240.0
    ai_filter_enabled: bool = True
    ai_confidence_threshold: float = 0.60
    ai_max_concurrency: int = 5
    min_call_delay_seconds: float = 0.15
    batch_concurrency: int = 3
    call_timeout_seconds: float = 15.0
    high_severity_threshold: int = 80

    @classmethod
    def from_settings(cls, **overrides) -> "ScanConfig":
        values = {
            "search_budget": getattr(settings, "SCAN_SEARCH_BUDGET", 75),
            "tier3_reserve": getattr(settings, "SCAN_TIER3_RESERVE", 10),
            "platform_budget_cap": getattr(settings, "SCAN_PLATFORM_BUDGET_CAP", 12),
            "platform_weight_threshold": getattr(settings, "SCAN_PLATFORM_WEIGHT_THRESHOLD", 0.6),
            "max_duration_seconds": getattr(settings, "SCAN_MAX_DURATION_SECONDS", 240.0),
            "ai_filter_enabled": getattr(settings, "SCAN_AI_FILTER_ENABLED", True),
            "ai_confidence_threshold": getattr(settings, "SCAN_AI_CONFIDENCE_THRESHOLD", 0.60),
            "ai_max_concurrency": getattr(settings, "SCAN_AI_MAX_CONCURRENCY", 5),
            "min_call_delay_seconds": getattr(settings, "SCAN_MIN_CALL_DELAY_SECONDS", 0.15),
            "batch_concurrency": getattr(settings, "SCAN_BATCH_CONCURRENCY", 3),
            "call_timeout_seconds": getattr(settings, "SCAN_CALL_TIMEOUT_SECONDS", 15.0),
            "high_severity_threshold": getattr(settings, "SCAN_HIGH_SEVERITY_THRESHOLD", 80),
        }
        values.update(overrides)
        return cls(**values)
