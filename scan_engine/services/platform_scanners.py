"""
Platform scanners - site-scoped searches against non-web piracy platforms.

Each scanner turns a product into an ordered list of candidate queries for
its platform and filters the returned hits down to actual listing pages
(torrent detail pages, file links, forum threads, chat channels, invites).
All calls go through the run's shared BudgetedSearchClient, so scanners
consume the same per-run budget as the search tiers.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence, Set

from scan_engine.search.client import BudgetedSearchClient
from scan_engine.search.profiles import (
    CYBERLOCKER_SITES,
    TORRENT_SITES,
    ProfileRegistry,
    get_profile_registry,
)
from scan_engine.search.queries import normalize_query_text
from scan_engine.services.scan_types import GeneratedQuery, ProductSnapshot, SearchHit, host_of

logger = logging.getLogger(__name__)

PLATFORM_QUERY_TIER = 2
PLATFORM_QUERY_NUM = 10

FORUM_SITES = (
    "nulled.to",
    "cracked.io",
    "blackhatworld.com",
    "hackforums.net",
    "sinisterly.com",
    "leakforums.net",
    "leakforums.co",
    "nsaneforums.com",
    "crackingking.com",
    "crackia.com",
)

NON_LISTING_PATH_MARKERS = ("/browse", "/category", "/search", "/top", "/trending")
FORUM_EXCLUDED_MARKERS = ("/search", "/members", "/register", "/login")
FORUM_THREAD_MARKERS = ("/threads/", "/thread-", "/topic/", "/showthread", "/viewtopic", "/post/")
TELEGRAM_OFFICIAL_MARKERS = ("official", "support", "news", "updates", "announcements")
TELEGRAM_NAME_PATTERN = re.compile(r"t\.me/(?:s/)?([^/?#]+)", re.IGNORECASE)

TORRENT_DETAIL_MARKERS = {
    "1337x.to": ("/torrent/",),
    "thepiratebay.org": ("/torrent/", "/description.php"),
    "torrentgalaxy.to": ("/torrent/",),
    "yts.mx": ("/movies/",),
    "eztv.re": ("/ep/",),
}

CYBERLOCKER_FILE_MARKERS = {
    "mega.nz": ("/file/", "/folder/"),
    "mediafire.com": ("/file/", "/folder/", "/?"),
    "drive.google.com": ("/file/d/", "/folders/"),
    "dropbox.com": ("/s/", "/sh/", "/scl/"),
    "4shared.com": ("/file/", "/get/"),
    "uploaded.net": ("/file/",),
    "rapidgator.net": ("/file/",),
    "sendspace.com": ("/file/",),
}


def _path_segments(url: str) -> List[str]:
    without_scheme = url.split("://", 1)[-1]
    path = without_scheme.split("?", 1)[0].split("#", 1)[0]
    return [segment for segment in path.split("/")[1:] if segment]


def _site_for(host: str, sites: Iterable[str]) -> str:
    for site in sites:
        if host == site or host.endswith(f".{site}"):
            return site
    return ""


class PlatformScanner:
    """
    Base scanner: builds site-scoped queries and keeps listing pages only.

    Subclasses set ``platform`` and implement ``candidate_queries`` and
    ``is_listing``.
    """

    platform = ""

    def __init__(self, registry: Optional[ProfileRegistry] = None):
        self.registry = registry or get_profile_registry()

    def candidate_queries(self, product: ProductSnapshot) -> List[str]:
        raise NotImplementedError

    def is_listing(self, hit: SearchHit) -> bool:
        raise NotImplementedError

    @property
    def query_category(self) -> str:
        return f"platform-{self.platform}"

    def plan(
        self,
        product: ProductSnapshot,
        budget: int,
        exclude_queries: Set[str] = frozenset(),
    ) -> List[GeneratedQuery]:
        """
        First ``budget`` candidate queries not already issued this run.
        """
        planned: List[GeneratedQuery] = []
        seen = set(exclude_queries)
        for query in self.candidate_queries(product):
            key = normalize_query_text(query)
            if key in seen:
                continue
            seen.add(key)
            planned.append(GeneratedQuery(
                query=query,
                tier=PLATFORM_QUERY_TIER,
                num=PLATFORM_QUERY_NUM,
                category=self.query_category,
            ))
            if len(planned) >= budget:
                break
        return planned

    async def scan(
        self,
        product: ProductSnapshot,
        client: BudgetedSearchClient,
        budget: int,
        exclude_queries: Set[str] = frozenset(),
    ) -> List[SearchHit]:
        """
        Run this platform's queries and return listing hits, first sighting
        of each link only.
        """
        queries = self.plan(product, budget, exclude_queries)
        if not queries:
            return []

        responses = await client.search_batch(queries)
        hits: List[SearchHit] = []
        seen_links: Set[str] = set()
        for response in responses:
            for hit in response.hits:
                if hit.link in seen_links or not self.is_listing(hit):
                    continue
                seen_links.add(hit.link)
                hits.append(hit)

        logger.debug(
            f"[{self.platform}] {len(queries)} queries, {len(hits)} listing hits for '{product.name}'"
        )
        return hits


class TorrentScanner(PlatformScanner):
    """Torrent indexers, searched through site-scoped web search."""

    platform = "torrent"

    def candidate_queries(self, product: ProductSnapshot) -> List[str]:
        name = product.name
        queries = [f'site:{site} "{name}"' for site in self.registry.alive(TORRENT_SITES)]
        queries.append(f'"{name}" torrent download')
        queries.append(f'"{name}" magnet')
        return queries

    def is_listing(self, hit: SearchHit) -> bool:
        url_lower = hit.link.lower()
        if any(marker in url_lower for marker in NON_LISTING_PATH_MARKERS):
            return False

        site = _site_for(host_of(hit.link), TORRENT_DETAIL_MARKERS)
        if site:
            return any(marker in url_lower for marker in TORRENT_DETAIL_MARKERS[site])
        return len(_path_segments(hit.link)) >= 2


class CyberlockerScanner(PlatformScanner):
    """File hosting services with public share links."""

    platform = "cyberlocker"

    def candidate_queries(self, product: ProductSnapshot) -> List[str]:
        name = product.name
        return [f'site:{site} "{name}"' for site in self.registry.alive(CYBERLOCKER_SITES)]

    def is_listing(self, hit: SearchHit) -> bool:
        url_lower = hit.link.lower()
        site = _site_for(host_of(hit.link), CYBERLOCKER_FILE_MARKERS)
        if site:
            return any(marker in url_lower for marker in CYBERLOCKER_FILE_MARKERS[site])
        return bool(_path_segments(hit.link))


class ForumScanner(PlatformScanner):
    """Warez and leak forums."""

    platform = "forum"

    def candidate_queries(self, product: ProductSnapshot) -> List[str]:
        name = product.name
        return [f'site:{site} "{name}"' for site in self.registry.alive(FORUM_SITES)]

    def is_listing(self, hit: SearchHit) -> bool:
        url_lower = hit.link.lower()
        segments = _path_segments(url_lower)
        if not segments or any(marker in url_lower for marker in FORUM_EXCLUDED_MARKERS):
            return False
        if any(marker in url_lower for marker in FORUM_THREAD_MARKERS):
            return True
        return len(segments) > 2


class TelegramScanner(PlatformScanner):
    """Public Telegram channels and groups indexed under t.me."""

    platform = "telegram"

    def candidate_queries(self, product: ProductSnapshot) -> List[str]:
        name = product.name
        queries = [f"site:t.me {term}" for term in product.signals.platform_terms("telegram")]
        queries.extend([
            f'site:t.me "{name}"',
            f'site:t.me "{name}" free',
            f'site:t.me "{name}" download',
            f'site:t.me "{name}" leaked',
            f'site:t.me "{name}" {product.category}',
        ])
        return queries

    def is_listing(self, hit: SearchHit) -> bool:
        match = TELEGRAM_NAME_PATTERN.search(hit.link)
        if not match:
            return False
        channel = match.group(1).lower()
        if channel.endswith("bot"):
            return False
        return not any(marker in channel for marker in TELEGRAM_OFFICIAL_MARKERS)


class DiscordScanner(PlatformScanner):
    """Discord invite links and public server directory listings."""

    platform = "discord"

    def candidate_queries(self, product: ProductSnapshot) -> List[str]:
        name = product.name
        return [
            f'site:discord.gg "{name}"',
            f'site:disboard.org "{name}"',
            f'"discord.gg" "{name}" free',
        ]

    def is_listing(self, hit: SearchHit) -> bool:
        url_lower = hit.link.lower()
        host = host_of(hit.link)
        if host == "discord.gg":
            return bool(_path_segments(url_lower))
        if host in ("discord.com", "discordapp.com"):
            return "/invite/" in url_lower
        if host == "disboard.org":
            return "/server/" in url_lower
        return "discord.gg/" in f"{hit.title} {hit.snippet}".lower()


def default_scanners(registry: Optional[ProfileRegistry] = None) -> Dict[str, PlatformScanner]:
    """One scanner per supported platform, keyed by platform name."""
    scanners: Sequence[PlatformScanner] = (
        TelegramScanner(registry),
        TorrentScanner(registry),
        CyberlockerScanner(registry),
        ForumScanner(registry),
        DiscordScanner(registry),
    )
    return {scanner.platform: scanner for scanner in scanners}
