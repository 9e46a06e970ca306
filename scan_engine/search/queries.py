"""
Tiered Query Generator - builds search queries organized by priority.

Tier 1: Broad Discovery (up to 15 queries @ num=30)
    Product name variants with the category's piracy terms, user keywords,
    learned keywords and AI signals. Exclusions for the official site,
    whitelisted domains, top legitimate sites and negative keywords are
    appended to every query.

Tier 2: Targeted Platform (up to 25 queries @ num=10)
    Site-scoped queries against dedicated piracy sites and weight-gated
    platform lists (chat, torrent, cyberlocker, forum, code repositories),
    plus file-type queries for the category's characteristic extensions.

Tier 3: Signal-Based Deep Dive (up to 10 queries @ num=10)
    Built once Tier 1/2 hit URLs are known: follow-up queries on hot
    domains and AI-extracted copyrighted terms, brand identifiers,
    alternative names and identifiers.

Every query in a plan is unique after case-folding and whitespace
collapsing, and identical inputs always produce identical plans.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from scan_engine.search.profiles import (
    CODE_REPOS,
    CYBERLOCKER_SITES,
    TORRENT_SITES,
    WAREZ_FORUMS,
    ProfileRegistry,
    ScanProfile,
    get_profile_registry,
)
from scan_engine.services.scan_types import (
    GeneratedQuery,
    LearnedSignals,
    ProductSnapshot,
    host_of,
)

logger = logging.getLogger(__name__)

TIER1_NUM = 30
TIER2_NUM = 10
TIER3_NUM = 10

MAX_TIER1_QUERIES = 15
MAX_TIER2_QUERIES = 25
MAX_TIER3_QUERIES = 10

MAX_DEDICATED_SITE_QUERIES = 10
MAX_EXCLUDED_LEGIT_SITES = 5
MAX_NEGATIVE_KEYWORDS = 3
MAX_LEARNED_FP_EXCLUSIONS = 3

HOT_DOMAIN_MIN_HITS = 2
MAX_HOT_DOMAINS = 3

CODE_REPO_CATEGORIES = ("software", "indicator")

ARTICLE_PATTERN = re.compile(r"\b(the|a|an|by|for|of|and)\b", re.IGNORECASE)
SUFFIX_PATTERN = re.compile(
    r"\b(indicator|course|template|software|tool|system|ebook|book|guide)\b",
    re.IGNORECASE,
)
BY_CREATOR_PATTERN = re.compile(r"\bby\s+(.+)$", re.IGNORECASE)


def normalize_query_text(query: str) -> str:
    """Dedup key for a query: case-folded with collapsed whitespace."""
    return " ".join(query.split()).casefold()


def _collapse(text: str) -> str:
    return " ".join(text.split())


@dataclass(frozen=True)
class NameForms:
    """Search forms of a product name."""

    canonical: str
    article_stripped: str
    suffix_stripped: str
    short: str
    camel: str
    slug: str
    creator: Optional[str]

    def variants(self) -> List[str]:
        """Distinct stripped variants worth searching, shortest-form first."""
        seen = {self.canonical.casefold()}
        variants = []
        for variant in (self.short, self.article_stripped, self.suffix_stripped):
            key = variant.casefold()
            if len(variant) > 3 and key not in seen:
                seen.add(key)
                variants.append(variant)
        return variants


def normalize_product_name(product: ProductSnapshot) -> NameForms:
    """Derive the canonical, stripped, case and slug forms of a product name."""
    canonical = _collapse(product.name)

    article_stripped = _collapse(ARTICLE_PATTERN.sub(" ", canonical))
    suffix_stripped = _collapse(SUFFIX_PATTERN.sub(" ", canonical))
    short = _collapse(SUFFIX_PATTERN.sub(" ", article_stripped))

    words = re.findall(r"[A-Za-z0-9]+", canonical)
    camel = "".join(word[:1].upper() + word[1:] for word in words) if len(words) > 1 else ""

    slug = re.sub(r"[^a-z0-9]+", "-", canonical.lower()).strip("-")

    creator = product.brand or None
    if not creator:
        match = BY_CREATOR_PATTERN.search(canonical)
        if match:
            creator = match.group(1).strip() or None

    return NameForms(
        canonical=canonical,
        article_stripped=article_stripped,
        suffix_stripped=suffix_stripped,
        short=short,
        camel=camel,
        slug=slug,
        creator=creator,
    )


@dataclass
class QueryPlan:
    """Generated queries for one product, by tier."""

    tier1: List[GeneratedQuery] = field(default_factory=list)
    tier2: List[GeneratedQuery] = field(default_factory=list)
    tier3: List[GeneratedQuery] = field(default_factory=list)

    def all_queries(self) -> List[GeneratedQuery]:
        return [*self.tier1, *self.tier2, *self.tier3]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier1": [q.to_dict() for q in self.tier1],
            "tier2": [q.to_dict() for q in self.tier2],
            "tier3": [q.to_dict() for q in self.tier3],
        }


class _TierCollector:
    """Accumulates one tier's queries, enforcing plan-wide dedup and a cap."""

    def __init__(self, tier: int, num: int, limit: int, seen: Set[str]):
        self.tier = tier
        self.num = num
        self.limit = limit
        self.seen = seen
        self.queries: List[GeneratedQuery] = []

    def add(self, query: str, category: str) -> bool:
        query = _collapse(query)
        key = normalize_query_text(query)
        if not query or key in self.seen or len(self.queries) >= self.limit:
            return False
        self.seen.add(key)
        self.queries.append(GeneratedQuery(query=query, tier=self.tier, num=self.num, category=category))
        return True


class QueryGenerator:
    """
    Builds the tiered query plan for a product.

    Usage:
        generator = QueryGenerator(get_profile_registry())
        plan = generator.generate(product, learned)
        ...
        plan = generator.generate(product, learned, prior_hit_urls=urls)
    """

    def __init__(
        self,
        registry: Optional[ProfileRegistry] = None,
        platform_threshold: float = 0.6,
    ):
        self.registry = registry or get_profile_registry()
        self.platform_threshold = platform_threshold

    def generate(
        self,
        product: ProductSnapshot,
        learned: Optional[LearnedSignals] = None,
        prior_hit_urls: Optional[Iterable[str]] = None,
    ) -> QueryPlan:
        """
        Generate all tiered queries for a product.

        Args:
            product: The product to scan
            learned: Signals learned from earlier verified detections
            prior_hit_urls: Tier 1/2 hit URLs; Tier 3 is only built when given

        Returns:
            QueryPlan with deduplicated tier1, tier2 and tier3 lists
        """
        learned = learned or LearnedSignals()
        profile = self.registry.get_profile(product.category)
        names = normalize_product_name(product)
        seen: Set[str] = set()

        tier1 = self._tier1(product, names, profile, learned, seen)
        tier2 = self._tier2(product, names, profile, seen)
        tier3 = []
        if prior_hit_urls is not None:
            used_brand_ids = self._used_brand_identifiers(product, tier1)
            tier3 = self._tier3(
                product, names, profile, learned, list(prior_hit_urls), used_brand_ids, seen
            )

        logger.debug(
            f"Query plan for '{names.canonical}' ({profile.category}): "
            f"tier1={len(tier1)} tier2={len(tier2)} tier3={len(tier3)}"
        )
        return QueryPlan(tier1=tier1, tier2=tier2, tier3=tier3)

    def build_exclusions(
        self,
        product: ProductSnapshot,
        profile: ScanProfile,
        learned: Optional[LearnedSignals] = None,
    ) -> str:
        """
        Build the exclusion suffix for broad queries.

        Keeps broad queries from matching official pages, legitimate
        storefronts, known false-positive domains and negative keywords.
        """
        domains: List[str] = []

        def add_domain(domain: str) -> None:
            if domain and domain not in domains:
                domains.append(domain)

        add_domain(product.official_domain)
        for domain in product.whitelist_domains:
            add_domain(domain)
        for site in profile.legitimate_sites[:MAX_EXCLUDED_LEGIT_SITES]:
            add_domain(site)
        if learned:
            for domain in learned.false_positive_domains[:MAX_LEARNED_FP_EXCLUSIONS]:
                add_domain(domain)

        parts = [f"-site:{domain}" for domain in domains]
        parts.extend(
            f'-"{keyword}"' for keyword in product.negative_keywords[:MAX_NEGATIVE_KEYWORDS]
        )
        return " ".join(parts)

    def hot_domains(
        self,
        product: ProductSnapshot,
        profile: ScanProfile,
        urls: Iterable[str],
        learned: Optional[LearnedSignals] = None,
    ) -> List[str]:
        """
        Domains with at least two prior hits, most hits first.

        Legitimate, official, whitelisted, dead and known false-positive
        domains are never hot.
        """
        excluded = {host_of(site) for site in profile.legitimate_sites}
        excluded.update(host_of(domain) for domain in product.whitelist_domains)
        excluded.add(product.official_domain)
        excluded.update(self.registry.dead_sites)
        if learned:
            excluded.update(learned.false_positive_domains)
        excluded.discard("")

        counts = Counter(host for host in (host_of(url) for url in urls) if host)

        def is_excluded(host: str) -> bool:
            return any(host == domain or host.endswith(f".{domain}") for domain in excluded)

        ranked = sorted(
            (
                (host, count)
                for host, count in counts.items()
                if count >= HOT_DOMAIN_MIN_HITS and not is_excluded(host)
            ),
            key=lambda item: (-item[1], item[0]),
        )
        return [host for host, _ in ranked[:MAX_HOT_DOMAINS]]

    def _tier1(
        self,
        product: ProductSnapshot,
        names: NameForms,
        profile: ScanProfile,
        learned: LearnedSignals,
        seen: Set[str],
    ) -> List[GeneratedQuery]:
        tier = _TierCollector(1, TIER1_NUM, MAX_TIER1_QUERIES, seen)
        signals = product.signals
        exclusions = self.build_exclusions(product, profile, learned)
        canonical = names.canonical

        def q(query: str, category: str) -> None:
            tier.add(f"{query} {exclusions}", category)

        # AI-generated piracy search terms are product-specific, highest priority
        for term in signals.piracy_search_terms[:4]:
            q(term, "ai-piracy")

        profile_term_count = 2 if signals.piracy_search_terms else 4
        for term in profile.piracy_terms[:profile_term_count]:
            q(f'"{canonical}" {term}', "piracy-core")

        variants = names.variants()
        if variants:
            q(f'"{variants[0]}" free download', "piracy-short")
            q(f'"{variants[0]}" nulled', "piracy-short")
        for variant in variants[1:]:
            q(f'"{variant}" free download', "name-variant")

        for keyword in product.keywords[:3]:
            if keyword.casefold() not in canonical.casefold():
                q(f'"{keyword}" "{canonical}"', "user-keyword")

        if names.creator:
            q(f'"{names.creator}" "{canonical}"', "brand")

        for keyword in learned.verified_keywords[:2]:
            q(f'"{keyword}" "{canonical}"', "intelligence")

        for phrase in signals.unique_phrases[:2]:
            q(f'"{phrase}"', "ai-phrase")

        for brand_id in signals.brand_identifiers[:1]:
            q(f'"{brand_id}" "{canonical}"', "ai-brand")

        for term in signals.platform_terms("google")[:2]:
            q(term, "platform-google")

        if names.camel:
            q(f'"{names.camel}" download', "name-case")
        if names.slug and "-" in names.slug:
            q(f"inurl:{names.slug} download", "name-slug")

        return tier.queries

    def _tier2(
        self,
        product: ProductSnapshot,
        names: NameForms,
        profile: ScanProfile,
        seen: Set[str],
    ) -> List[GeneratedQuery]:
        tier = _TierCollector(2, TIER2_NUM, MAX_TIER2_QUERIES, seen)
        canonical = names.canonical
        threshold = self.platform_threshold

        for site in self.registry.alive(profile.dedicated_sites)[:MAX_DEDICATED_SITE_QUERIES]:
            tier.add(f'site:{site} "{canonical}"', "dedicated-site")

        if profile.weight("telegram") >= threshold:
            telegram_terms = product.signals.platform_terms("telegram")
            if telegram_terms:
                for term in telegram_terms[:2]:
                    tier.add(f"site:t.me {term}", "telegram-ai")
            else:
                tier.add(f'site:t.me "{canonical}"', "telegram")
                tier.add(f'site:t.me "{canonical}" free', "telegram")

        torrent_weight = profile.weight("torrent")
        if torrent_weight >= threshold:
            count = 5 if torrent_weight >= 0.8 else 3
            for site in self.registry.alive(TORRENT_SITES)[:count]:
                tier.add(f'site:{site} "{canonical}"', "torrent")

        cyberlocker_weight = profile.weight("cyberlocker")
        if cyberlocker_weight >= threshold:
            count = 5 if cyberlocker_weight >= 0.8 else 3
            for site in self.registry.alive(CYBERLOCKER_SITES)[:count]:
                tier.add(f'site:{site} "{canonical}"', "cyberlocker")

        forum_weight = profile.weight("forum")
        if forum_weight >= threshold:
            count = 3 if forum_weight >= 0.7 else 2
            for site in self.registry.alive(WAREZ_FORUMS)[:count]:
                tier.add(f'site:{site} "{canonical}"', "warez-forum")

        if profile.category in CODE_REPO_CATEGORIES:
            for site in CODE_REPOS[:2]:
                tier.add(f'site:{site} "{canonical}"', "code-repo")

        for ext in profile.file_extensions[:2]:
            tier.add(f'"{canonical}" filetype:{ext.lstrip(".")}', "file-ext")

        for identifier in product.signals.auto_unique_identifiers[:2]:
            tier.add(f'"{identifier}" free download', "auto-identifier")

        return tier.queries

    def _tier3(
        self,
        product: ProductSnapshot,
        names: NameForms,
        profile: ScanProfile,
        learned: LearnedSignals,
        prior_hit_urls: List[str],
        used_brand_ids: Set[str],
        seen: Set[str],
    ) -> List[GeneratedQuery]:
        tier = _TierCollector(3, TIER3_NUM, MAX_TIER3_QUERIES, seen)
        signals = product.signals
        canonical = names.canonical

        for domain in self.hot_domains(product, profile, prior_hit_urls, learned):
            tier.add(f'site:{domain} "{canonical}" download', "hot-domain")

        for term in signals.copyrighted_terms[:3]:
            tier.add(f'"{term}" cracked', "ai-copyright")
            tier.add(f'"{term}" leaked', "ai-copyright")

        unused_brand_ids = [
            brand_id for brand_id in signals.brand_identifiers
            if brand_id.casefold() not in used_brand_ids
        ]
        for brand_id in unused_brand_ids[:2]:
            tier.add(f'"{brand_id}" free download', "ai-brand")

        alt_names: List[str] = []
        for name in [*product.alternative_names, *signals.auto_alternative_names]:
            if name.casefold() not in {n.casefold() for n in alt_names}:
                alt_names.append(name)
        for name in alt_names[:3]:
            tier.add(f'"{name}" free download', "alt-name")

        for identifier in product.unique_identifiers[:2]:
            tier.add(f'"{identifier}" free download', "unique-id")

        return tier.queries

    @staticmethod
    def _used_brand_identifiers(product: ProductSnapshot, tier1: List[GeneratedQuery]) -> Set[str]:
        """Brand identifiers already searched in Tier 1, case-folded."""
        brand_queries = [q.query for q in tier1 if q.category == "ai-brand"]
        return {
            brand_id.casefold()
            for brand_id in product.signals.brand_identifiers
            if any(f'"{brand_id}"' in query for query in brand_queries)
        }
