"""
Confidence Scoring & False Positive Filtering.

Scores each search hit on a 0-100 scale of how likely it is to be a
genuine unauthorized listing:
- Search position and the tier of the query that found it
- Category relevance of the hosting platform
- Profile boost/penalty terms in the title and snippet
- Dedicated piracy site, legitimate site, official domain and whitelist
- Product name in the title, file extensions in URL or snippet

Derived fields (risk level, platform, infringement type, audience and
revenue estimates, severity and priority) are computed from the same hit.
"""

import logging
import re
from typing import List, Optional, Tuple
from urllib.parse import urlparse

from scan_engine.search.profiles import (
    CYBERLOCKER_SITES,
    TORRENT_SITES,
    ProfileRegistry,
    get_profile_registry,
)
from scan_engine.services.scan_types import ProductSnapshot, ScoredResult, SearchHit, host_of
from scan_engine.services.url_delta import normalize_url

logger = logging.getLogger(__name__)

BASE_SCORE = 40
TOP3_POSITION_POINTS = 10
FIRST_PAGE_POSITION_POINTS = 5
TIER_POINTS = {1: 5, 2: 10, 3: 15}
HIGH_WEIGHT_POINTS = 8
RELEVANT_WEIGHT_POINTS = 4
LOW_WEIGHT_PENALTY = 5
BOOST_TERM_POINTS = 8
MAX_BOOST_MATCHES = 3
PENALTY_TERM_POINTS = 10
DEDICATED_SITE_POINTS = 15
LEGITIMATE_SITE_PENALTY = 30
OFFICIAL_DOMAIN_PENALTY = 50
WHITELIST_PENALTY = 50
NAME_IN_TITLE_POINTS = 10
FILE_EXTENSION_POINTS = 5

DEFAULT_PLATFORM_WEIGHT = 0.5
FALSE_POSITIVE_THRESHOLD = 30

RISK_THRESHOLDS = (
    (80, "critical"),
    (60, "high"),
    (40, "medium"),
)

FORUM_DOMAINS = (
    "nulled.to",
    "cracked.io",
    "sinisterly.com",
    "hackforums.net",
    "leakforums.co",
    "leakforums.net",
    "blackhatworld.com",
    "nsaneforums.com",
    "reddit.com",
    "forex-station.com",
)

SOCIAL_DOMAINS = (
    "facebook.com",
    "twitter.com",
    "x.com",
    "instagram.com",
    "tiktok.com",
    "linkedin.com",
)

TORRENT_URL_PATTERN = re.compile(r"1337x|piratebay|torrentgalaxy|yts|eztv")
DIRECT_DOWNLOAD_PATTERN = re.compile(r"mega\.nz|mediafire|drive\.google|dropbox|rapidgator|uploaded\.net")
POST_PATTERN = re.compile(r"reddit\.com|forum|nulled|cracked\.io")
TELEGRAM_CHANNEL_PATTERN = re.compile(r"t\.me/[a-z][\w]{3,}$")
AUDIENCE_NUMBER_PATTERN = re.compile(r"~([\d.]+)([km]?)", re.IGNORECASE)

# Click-through rate by search position for generic web results
POSITION_CTR = {1: 0.30, 2: 0.15, 3: 0.10, 4: 0.08, 5: 0.06}
ESTIMATED_MONTHLY_SEARCHES = 2000

# Share of reached users assumed to be lost sales, by platform
CONVERSION_RATES = {
    "telegram": 0.01,
    "torrent": 0.10,
    "cyberlocker": 0.08,
    "discord": 0.01,
    "forum": 0.01,
    "google": 0.02,
    "social": 0.001,
}
DEFAULT_CONVERSION_RATE = 0.10

# Platform risk for severity scoring
SEVERITY_PLATFORM_WEIGHTS = {
    "telegram": 0.90,
    "torrent": 0.85,
    "cyberlocker": 0.80,
    "google": 0.75,
    "discord": 0.70,
    "forum": 0.65,
    "social": 0.60,
}

# Takedown enforceability by hosting country: (points, ISO codes and names)
ENFORCEABILITY_TIERS = (
    (10, frozenset({
        "US", "USA", "UNITED STATES", "GB", "UK", "UNITED KINGDOM", "CA", "CANADA",
        "AU", "AUSTRALIA", "NZ", "NEW ZEALAND",
    })),
    (5, frozenset({
        "DE", "GERMANY", "FR", "FRANCE", "IT", "ITALY", "ES", "SPAIN", "NL", "NETHERLANDS",
        "SE", "SWEDEN", "NO", "NORWAY", "DK", "DENMARK", "FI", "FINLAND", "BE", "BELGIUM",
        "AT", "AUSTRIA", "CH", "SWITZERLAND", "IE", "IRELAND", "PL", "POLAND",
    })),
    (2, frozenset({
        "JP", "JAPAN", "KR", "SOUTH KOREA", "SG", "SINGAPORE", "IL", "ISRAEL",
        "BR", "BRAZIL", "MX", "MEXICO", "AR", "ARGENTINA",
    })),
)

MONETIZATION_TERMS = (
    "paypal",
    "bitcoin",
    "usdt",
    "vip access",
    "buy access",
    "paid membership",
    "lifetime access for",
)


def _host_matches(host: str, domain: str) -> bool:
    return bool(host) and (host == domain or host.endswith(f".{domain}"))


def site_matches(site: str, url: str) -> bool:
    """
    Whether a URL is on a site list entry.

    Entries are a domain optionally followed by a path prefix, as in
    "linkedin.com/learning"; subdomains of the domain match too.
    """
    site = site.lower().strip("/")
    site_host, _, site_path = site.partition("/")
    host = host_of(url)
    if not _host_matches(host, site_host):
        return False
    if not site_path:
        return True
    candidate = url if "://" in url else f"https://{url}"
    path = (urlparse(candidate).path or "").lower().lstrip("/")
    return path == site_path or path.startswith(f"{site_path}/")


def detect_platform(url: str) -> str:
    """Classify the platform hosting a URL, in fixed priority order."""
    url_lower = url.lower()
    host = host_of(url)

    if "t.me/" in url_lower or host == "t.me" or host.startswith("telegram."):
        return "telegram"
    if host in ("discord.gg", "discord.com") or host.endswith(".discord.com"):
        return "discord"
    if any(_host_matches(host, d) for d in TORRENT_SITES) or "thepiratebay" in host:
        return "torrent"
    if any(_host_matches(host, d) for d in CYBERLOCKER_SITES):
        return "cyberlocker"
    if any(_host_matches(host, d) for d in FORUM_DOMAINS):
        return "forum"
    if any(_host_matches(host, d) for d in SOCIAL_DOMAINS):
        return "social"
    return "google"


def detect_infringement_type(url: str, query: str = "") -> str:
    """Classify the kind of listing from URL shape and query context."""
    url_lower = url.lower().rstrip("/")
    query_lower = query.lower()

    if "t.me/" in url_lower:
        path = url_lower.split("?")[0]
        if "/c/" in path or TELEGRAM_CHANNEL_PATTERN.search(path):
            return "channel"
        return "post"
    if "discord.gg" in url_lower or "discord.com/invite" in url_lower:
        return "server"
    if "torrent" in url_lower or "torrent" in query_lower or TORRENT_URL_PATTERN.search(url_lower):
        return "torrent"
    if DIRECT_DOWNLOAD_PATTERN.search(url_lower):
        return "direct_download"
    if POST_PATTERN.search(url_lower):
        return "post"
    return "indexed_page"


def estimate_audience_size(url: str, position: int, platform: str) -> str:
    """Rough audience estimate for a listing, as a display string."""
    url_lower = url.lower()

    if "tradingview.com" in url_lower:
        return "~10k+ views/month" if position <= 10 else "~2k+ views/month"
    if "mql5.com" in url_lower:
        return "~5k+ views/month" if position <= 10 else "~1k+ views/month"
    if "etsy.com" in url_lower:
        return "~500+ views/month"

    platform_defaults = {
        "telegram": "~500 members",
        "torrent": "~50 peers",
        "cyberlocker": "~300 downloads",
        "discord": "~200 members",
        "forum": "~1k views",
    }
    if platform in platform_defaults:
        return platform_defaults[platform]

    ctr = POSITION_CTR.get(position, 0.04 if position <= 10 else 0.02)
    clicks = round(ESTIMATED_MONTHLY_SEARCHES * ctr)
    if clicks >= 1000:
        return f"~{clicks / 1000:.1f}k views/month"
    return f"~{clicks} views/month"


def parse_audience_count(audience_size: str) -> int:
    """Numeric audience from an estimate string such as "~1.5k views"."""
    match = AUDIENCE_NUMBER_PATTERN.search(audience_size or "")
    if not match:
        return 0
    try:
        value = float(match.group(1))
    except ValueError:
        return 0
    suffix = match.group(2).lower()
    if suffix == "k":
        value *= 1000
    elif suffix == "m":
        value *= 1_000_000
    return int(round(value))


def estimate_revenue_loss(audience_size: str, price: float, platform: str) -> int:
    """Estimated lost revenue for a listing: audience x conversion x price."""
    audience = parse_audience_count(audience_size)
    if not audience:
        return 0
    rate = CONVERSION_RATES.get(platform, DEFAULT_CONVERSION_RATE)
    return int(round(audience * rate * (price or 0)))


def confidence_to_risk_level(confidence: int) -> str:
    for threshold, level in RISK_THRESHOLDS:
        if confidence >= threshold:
            return level
    return "low"


def severity_score(
    confidence: int,
    audience_count: int,
    platform: str,
    revenue_loss: int,
    monetized: bool = False,
    country: Optional[str] = None,
) -> int:
    """
    Severity 0-100 from confidence, reach, platform risk, revenue,
    monetization and, when the hosting country is known, takedown
    enforceability.
    """
    confidence_points = round(confidence / 100 * 20)

    if audience_count <= 0:
        audience_points = 0
    elif audience_count < 100:
        audience_points = 5
    elif audience_count < 500:
        audience_points = 10
    elif audience_count < 2000:
        audience_points = 15
    elif audience_count < 10000:
        audience_points = 20
    else:
        audience_points = 25

    platform_points = round(SEVERITY_PLATFORM_WEIGHTS.get(platform, 0.5) * 15)

    if revenue_loss <= 0:
        revenue_points = 0
    elif revenue_loss < 100:
        revenue_points = 2
    elif revenue_loss < 500:
        revenue_points = 4
    elif revenue_loss < 1000:
        revenue_points = 6
    elif revenue_loss < 5000:
        revenue_points = 8
    else:
        revenue_points = 10

    monetization_points = 30 if monetized else 0

    total = (
        confidence_points
        + audience_points
        + platform_points
        + revenue_points
        + monetization_points
        + country_enforceability(country)
    )
    return min(int(total), 100)


def country_enforceability(country: Optional[str]) -> int:
    """0-10 points for how readily takedowns succeed in the hosting country."""
    if not isinstance(country, str):
        return 0
    key = " ".join(country.upper().split())
    for points, countries in ENFORCEABILITY_TIERS:
        if key in countries:
            return points
    return 0


def assign_priority(severity: int, confidence: int, audience_count: int, monetized: bool = False) -> str:
    """P0 for urgent takedowns, P1 for important ones, P2 otherwise."""
    if monetized and confidence >= 60:
        return "P0"
    if severity >= 75 or (audience_count >= 50000 and confidence >= 60):
        return "P0"
    if severity >= 50 or audience_count >= 5000:
        return "P1"
    return "P2"


class ConfidenceScorer:
    """
    Scores hits against a product using its category profile.

    Usage:
        scorer = ConfidenceScorer(get_profile_registry())
        result = scorer.score(hit, product)
    """

    def __init__(self, registry: Optional[ProfileRegistry] = None):
        self.registry = registry or get_profile_registry()

    def score(self, hit: SearchHit, product: ProductSnapshot) -> ScoredResult:
        """
        Score a search hit's confidence of being a real infringement.

        Args:
            hit: The search hit, with tier provenance when known
            product: The product being scanned

        Returns:
            ScoredResult with confidence, derived fields and reasons
        """
        profile = self.registry.get_profile(product.category)
        text = f"{hit.title} {hit.snippet}".lower()
        url_lower = hit.link.lower()
        reasons: List[str] = []
        score = BASE_SCORE

        if hit.position <= 3:
            score += TOP3_POSITION_POINTS
            reasons.append("top-3 position")
        elif hit.position <= 10:
            score += FIRST_PAGE_POSITION_POINTS
            reasons.append("first page")

        tier_points = TIER_POINTS.get(hit.tier, 0)
        if tier_points:
            score += tier_points
            reasons.append(f"tier {hit.tier} query")

        platform = detect_platform(hit.link)
        weight = profile.weight(platform, DEFAULT_PLATFORM_WEIGHT)
        if weight >= 0.8:
            score += HIGH_WEIGHT_POINTS
            reasons.append(f"high-priority platform ({platform})")
        elif weight >= 0.6:
            score += RELEVANT_WEIGHT_POINTS
            reasons.append(f"relevant platform ({platform})")
        elif weight < 0.4:
            score -= LOW_WEIGHT_PENALTY
            reasons.append(f"low-priority platform ({platform})")

        boost_count = sum(1 for term in profile.boost_terms if term.lower() in text)
        if boost_count:
            score += BOOST_TERM_POINTS * min(boost_count, MAX_BOOST_MATCHES)
            reasons.append(f"{boost_count} piracy indicators")

        penalty_count = sum(1 for term in profile.penalty_terms if term.lower() in text)
        if penalty_count:
            score -= PENALTY_TERM_POINTS * penalty_count
            reasons.append(f"{penalty_count} non-piracy indicators")

        if any(site_matches(site, hit.link) for site in profile.dedicated_sites):
            score += DEDICATED_SITE_POINTS
            reasons.append("known piracy site")

        is_legit_site = any(site_matches(site, hit.link) for site in profile.legitimate_sites)
        if is_legit_site:
            score -= LEGITIMATE_SITE_PENALTY
            reasons.append("legitimate site")

        is_official, is_whitelisted = self.exclusion_matches(hit.link, product)
        if is_official:
            score -= OFFICIAL_DOMAIN_PENALTY
            reasons.append("official domain")
        if is_whitelisted:
            score -= WHITELIST_PENALTY
            reasons.append("whitelisted")

        if product.name and product.name.lower() in hit.title.lower():
            score += NAME_IN_TITLE_POINTS
            reasons.append("name in title")

        if any(ext in url_lower or ext in text for ext in profile.file_extensions):
            score += FILE_EXTENSION_POINTS
            reasons.append("file extension match")

        confidence = max(0, min(100, score))
        audience_size = estimate_audience_size(hit.link, hit.position, platform)
        revenue_loss = estimate_revenue_loss(audience_size, product.price, platform)
        audience_count = parse_audience_count(audience_size)
        monetized = any(term in text for term in MONETIZATION_TERMS)
        severity = severity_score(confidence, audience_count, platform, revenue_loss, monetized)

        is_false_positive = (
            confidence < FALSE_POSITIVE_THRESHOLD
            or is_legit_site
            or is_official
            or is_whitelisted
        )

        return ScoredResult(
            confidence=confidence,
            risk_level=confidence_to_risk_level(confidence),
            platform=platform,
            infringement_type=detect_infringement_type(hit.link, hit.query),
            audience_size=audience_size,
            est_revenue_loss=revenue_loss,
            is_false_positive=is_false_positive,
            reasons=reasons,
            severity_score=severity,
            priority=assign_priority(severity, confidence, audience_count, monetized),
        )

    @staticmethod
    def exclusion_matches(url: str, product: ProductSnapshot) -> Tuple[bool, bool]:
        """
        Whether a URL is on the product's official domain or whitelist.

        Returns:
            (is_official, is_whitelisted); whitelist URLs match by prefix of
            the normalized form
        """
        host = host_of(url)
        official = product.official_domain
        is_official = bool(official) and _host_matches(host, official)

        is_whitelisted = any(_host_matches(host, domain) for domain in product.whitelist_domains)
        if not is_whitelisted and product.whitelist_urls:
            normalized = normalize_url(url)
            is_whitelisted = any(
                normalized.startswith(normalize_url(prefix))
                for prefix in product.whitelist_urls
                if normalize_url(prefix)
            )
        return is_official, is_whitelisted

    def is_excluded(self, url: str, product: ProductSnapshot) -> bool:
        """Hard pre-filter: official domain or user whitelist."""
        is_official, is_whitelisted = self.exclusion_matches(url, product)
        return is_official or is_whitelisted
