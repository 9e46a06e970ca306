"""
Scan Profiles - Per-category search, scoring and filtering configuration.

Each product category (course, indicator, software, template, ebook, other)
has a profile with piracy terms, file extensions, known piracy sites,
legitimate sites, confidence boost/penalty terms and per-platform weights.

Profiles are frozen and the registry is built once per process; consumers
receive the registry instead of reaching for module globals.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


# Shared site lists

TORRENT_SITES = (
    "1337x.to",
    "thepiratebay.org",
    "torrentgalaxy.to",
    "yts.mx",
    "eztv.re",
    "torlock.com",
    "limetorrents.pro",
    "nyaa.si",
    "rutracker.org",
    "btdig.com",
)

CYBERLOCKER_SITES = (
    "mega.nz",
    "mediafire.com",
    "drive.google.com",
    "dropbox.com",
    "4shared.com",
    "uploaded.net",
    "rapidgator.net",
    "sendspace.com",
    "fichier.com",
    "uptobox.com",
)

WAREZ_FORUMS = (
    "nulled.to",
    "cracked.io",
    "sinisterly.com",
    "hackforums.net",
    "leakforums.co",
    "blackhatworld.com",
    "nsaneforums.com",
)

CODE_REPOS = (
    "github.com",
    "gitlab.com",
    "bitbucket.org",
    "pastebin.com",
)

# Known defunct domains, skipped by every site-list consumer
DEAD_SITES = frozenset({
    "zippyshare.com",
    "anonfiles.com",
    "rarbg.to",
    "zooqle.com",
    "torrentz2.eu",
})

# Platforms searched through the general web search tiers
SEARCH_PLATFORMS = ("google", "social")

# Platforms that have a dedicated scanner behind the platform router
SCANNER_PLATFORMS = ("telegram", "torrent", "cyberlocker", "forum", "discord")

DEFAULT_CATEGORY = "other"


@dataclass(frozen=True)
class ScanProfile:
    """Static scan configuration for one product category."""

    category: str
    piracy_terms: Tuple[str, ...]
    file_extensions: Tuple[str, ...]
    dedicated_sites: Tuple[str, ...]
    legitimate_sites: Tuple[str, ...]
    boost_terms: Tuple[str, ...]
    penalty_terms: Tuple[str, ...]
    platform_weights: Mapping[str, float]

    def weight(self, platform: str, default: float = 0.0) -> float:
        """Relevance weight of a platform for this category."""
        return self.platform_weights.get(platform, default)


def _profile(category: str, weights: Dict[str, float], **lists) -> ScanProfile:
    return ScanProfile(
        category=category,
        piracy_terms=tuple(lists["piracy_terms"]),
        file_extensions=tuple(lists["file_extensions"]),
        dedicated_sites=tuple(lists["dedicated_sites"]),
        legitimate_sites=tuple(lists["legitimate_sites"]),
        boost_terms=tuple(lists["boost_terms"]),
        penalty_terms=tuple(lists["penalty_terms"]),
        platform_weights=MappingProxyType(dict(weights)),
    )


COURSE_PROFILE = _profile(
    "course",
    {
        "google": 1.0,
        "telegram": 0.9,
        "cyberlocker": 0.8,
        "torrent": 0.7,
        "forum": 0.6,
        "discord": 0.5,
        "social": 0.3,
    },
    piracy_terms=[
        "free download",
        "free course",
        "leaked",
        "torrent",
        "mega link",
        "google drive",
        "telegram group",
        "full course free",
        "premium free",
        "download free",
        "get free",
        "nulled",
        "cracked",
        "course download",
        "free access",
        "drive link",
        "free training",
        "pirated",
        "shared free",
    ],
    file_extensions=[".mp4", ".mkv", ".avi", ".zip", ".rar", ".pdf"],
    dedicated_sites=[
        "tradesmint.com",
        "rocket.place",
        "dlsub.com",
        "trading123.net",
        "digitalassistant.academy",
        "courseclub.me",
        "freecourseweb.com",
        "freecoursesonline.me",
        "getfreecourses.co",
        "tutorialsplanet.net",
        "coursedown.com",
        "paidcoursesforfree.com",
        "desirecourse.net",
        "myfreecourses.com",
        "ftuudemy.com",
        "coursesity.com",
    ],
    legitimate_sites=[
        "udemy.com",
        "coursera.org",
        "skillshare.com",
        "teachable.com",
        "thinkific.com",
        "kajabi.com",
        "podia.com",
        "gumroad.com",
        "youtube.com",
        "linkedin.com/learning",
        "pluralsight.com",
        "edx.org",
        "masterclass.com",
    ],
    boost_terms=[
        "free download",
        "leaked",
        "pirated",
        "mega.nz",
        "mediafire",
        "telegram",
        "full course",
        "premium free",
        "nulled",
    ],
    penalty_terms=[
        "review",
        "tutorial",
        "how to",
        "official",
        "buy now",
        "enroll",
        "pricing",
        "coupon",
        "discount",
        "affiliate",
    ],
)

INDICATOR_PROFILE = _profile(
    "indicator",
    {
        "google": 1.0,
        "telegram": 0.8,
        "cyberlocker": 0.7,
        "torrent": 0.6,
        "forum": 0.7,
        "discord": 0.5,
        "social": 0.3,
    },
    piracy_terms=[
        "free download",
        "cracked",
        "nulled",
        "leaked",
        "pirated",
        "clone",
        "copy",
        "replica",
        "free indicator",
        "open source version",
        "decompiled",
        "unlocked",
        "premium free",
        "full version free",
        "torrent",
        "mega link",
        "shared",
    ],
    file_extensions=[".ex4", ".ex5", ".mq4", ".mq5", ".pine", ".zip", ".rar"],
    dedicated_sites=[
        "tradingview.com/script",
        "mql5.com/market",
        "mql5.com",
        "prorealcode.com",
        "forex-station.com",
        "best-metatrader-indicators.com",
        "wstrades.com",
        "strategyquant.com",
        "tosindicators.com",
        "software.informer.com",
        "etsy.com",
    ],
    legitimate_sites=[
        "youtube.com",
        "investopedia.com",
        "babypips.com",
        "tradingview.com/chart",
    ],
    boost_terms=[
        "cracked",
        "nulled",
        "free download",
        "decompiled",
        "clone",
        "leaked",
        "pirated",
        "replica",
        "unlock",
        "keygen",
    ],
    penalty_terms=[
        "review",
        "tutorial",
        "how to use",
        "backtest",
        "performance",
        "official",
        "documentation",
        "changelog",
        "update notes",
    ],
)

SOFTWARE_PROFILE = _profile(
    "software",
    {
        "google": 1.0,
        "torrent": 0.9,
        "cyberlocker": 0.8,
        "forum": 0.7,
        "telegram": 0.6,
        "discord": 0.5,
        "social": 0.2,
    },
    piracy_terms=[
        "cracked",
        "crack",
        "keygen",
        "serial key",
        "license key",
        "activation code",
        "nulled",
        "warez",
        "pirated",
        "full version free",
        "free download",
        "patch",
        "loader",
        "activator",
        "portable",
        "pre-activated",
        "torrent",
        "mega link",
        "leaked",
    ],
    file_extensions=[".exe", ".dmg", ".zip", ".rar", ".iso", ".msi", ".deb", ".apk"],
    dedicated_sites=[
        "filecr.com",
        "getintopc.com",
        "softonic.com",
        "download.cnet.com",
        "crackwatch.com",
        "rlsbb.cc",
        "nsaneforums.com",
        "haxpc.net",
        "crackedpc.org",
        "piratepc.me",
    ],
    legitimate_sites=[
        "github.com",
        "gitlab.com",
        "sourceforge.net",
        "producthunt.com",
        "g2.com",
        "capterra.com",
        "alternativeto.net",
        "microsoft.com",
        "apple.com",
    ],
    boost_terms=[
        "crack",
        "keygen",
        "serial",
        "nulled",
        "warez",
        "activator",
        "patch",
        "loader",
        "pre-activated",
        "portable",
    ],
    penalty_terms=[
        "review",
        "comparison",
        "alternative",
        "vs",
        "pricing",
        "documentation",
        "changelog",
        "release notes",
        "open source",
    ],
)

TEMPLATE_PROFILE = _profile(
    "template",
    {
        "google": 1.0,
        "torrent": 0.7,
        "cyberlocker": 0.8,
        "forum": 0.6,
        "telegram": 0.5,
        "discord": 0.4,
        "social": 0.2,
    },
    piracy_terms=[
        "free download",
        "nulled",
        "leaked",
        "premium free",
        "shared",
        "cracked",
        "torrent",
        "mega link",
        "pirated",
        "free template",
        "full version free",
    ],
    file_extensions=[".zip", ".rar", ".psd", ".ai", ".fig", ".sketch", ".xd", ".html", ".css"],
    dedicated_sites=[
        "nulled.to",
        "themelock.com",
        "themehits.com",
        "freenulled.top",
        "wpnull.org",
        "gpldl.com",
        "babiato.co",
    ],
    legitimate_sites=[
        "themeforest.net",
        "creativemarket.com",
        "dribbble.com",
        "behance.net",
        "figma.com",
        "canva.com",
        "envato.com",
        "templatemonster.com",
    ],
    boost_terms=[
        "nulled",
        "free download",
        "leaked",
        "premium free",
        "cracked",
        "shared",
        "gpl",
        "warez",
    ],
    penalty_terms=[
        "preview",
        "demo",
        "showcase",
        "portfolio",
        "inspiration",
        "official",
        "documentation",
        "changelog",
    ],
)

EBOOK_PROFILE = _profile(
    "ebook",
    {
        "google": 1.0,
        "cyberlocker": 0.9,
        "torrent": 0.8,
        "forum": 0.6,
        "telegram": 0.7,
        "discord": 0.4,
        "social": 0.2,
    },
    piracy_terms=[
        "free pdf",
        "free download",
        "epub free",
        "torrent",
        "leaked",
        "libgen",
        "z-library",
        "sci-hub",
        "pirated",
        "full book free",
        "read online free",
        "download free",
        "mega link",
    ],
    file_extensions=[".pdf", ".epub", ".mobi", ".azw3", ".djvu", ".cbr", ".cbz"],
    dedicated_sites=[
        "libgen.is",
        "libgen.rs",
        "z-lib.org",
        "b-ok.cc",
        "pdfdrive.com",
        "archive.org",
        "epublibre.org",
        "mobilism.org",
        "allbooksfree.com",
    ],
    legitimate_sites=[
        "amazon.com",
        "amazon.co.uk",
        "barnesandnoble.com",
        "kobo.com",
        "goodreads.com",
        "audible.com",
        "scribd.com",
    ],
    boost_terms=[
        "free pdf",
        "epub free",
        "libgen",
        "z-library",
        "pirated",
        "full book free",
        "read online free",
        "torrent",
    ],
    penalty_terms=[
        "review",
        "summary",
        "book review",
        "synopsis",
        "author interview",
        "buy",
        "purchase",
        "preorder",
        "kindle",
    ],
)

OTHER_PROFILE = _profile(
    "other",
    {
        "google": 1.0,
        "telegram": 0.7,
        "cyberlocker": 0.7,
        "torrent": 0.6,
        "forum": 0.5,
        "discord": 0.4,
        "social": 0.3,
    },
    piracy_terms=[
        "free download",
        "leaked",
        "cracked",
        "nulled",
        "pirated",
        "torrent",
        "mega link",
        "mediafire",
        "premium free",
        "full version free",
        "shared",
        "free access",
    ],
    file_extensions=[".zip", ".rar", ".pdf", ".mp4"],
    dedicated_sites=[],
    legitimate_sites=[
        "gumroad.com",
        "teachable.com",
        "shopify.com",
        "etsy.com",
        "amazon.com",
        "youtube.com",
    ],
    boost_terms=[
        "free download",
        "leaked",
        "cracked",
        "pirated",
        "nulled",
        "torrent",
        "mega.nz",
        "mediafire",
    ],
    penalty_terms=[
        "review",
        "official",
        "buy",
        "purchase",
        "pricing",
        "tutorial",
    ],
)


@dataclass(frozen=True)
class PlatformRelevance:
    """A scanner platform and its weight for one category."""

    platform: str
    weight: float


class ProfileRegistry:
    """
    Read-only lookup of scan profiles by product category.

    Usage:
        registry = get_profile_registry()
        profile = registry.get_profile("course")
        sites = registry.alive(profile.dedicated_sites)
    """

    def __init__(
        self,
        profiles: Iterable[ScanProfile],
        dead_sites: Iterable[str] = DEAD_SITES,
        default_category: str = DEFAULT_CATEGORY,
    ):
        self._profiles = MappingProxyType({p.category: p for p in profiles})
        self._dead_sites = frozenset(dead_sites)
        if default_category not in self._profiles:
            raise ValueError(f"Default category '{default_category}' has no profile")
        self._default_category = default_category

    @property
    def categories(self) -> Tuple[str, ...]:
        return tuple(self._profiles)

    @property
    def dead_sites(self) -> FrozenSet[str]:
        return self._dead_sites

    def get_profile(self, category: Optional[str]) -> ScanProfile:
        """
        Get the scan profile for a product category.

        Falls back to the default profile for unknown or missing categories.
        """
        profile = self._profiles.get(category or "")
        if profile is None:
            logger.debug(
                f"No scan profile for category '{category}', using '{self._default_category}'"
            )
            return self._profiles[self._default_category]
        return profile

    def is_dead(self, site: str) -> bool:
        return site.lower() in self._dead_sites

    def alive(self, sites: Iterable[str]) -> List[str]:
        """Filter a site list down to domains not known to be defunct."""
        return [site for site in sites if not self.is_dead(site)]

    def relevant_platforms(
        self,
        category: Optional[str],
        threshold: float = 0.6,
    ) -> List[PlatformRelevance]:
        """
        Scanner platforms whose weight clears the threshold, highest first.

        Ties keep the declared scanner order so allocation is deterministic.
        """
        profile = self.get_profile(category)
        relevant = [
            PlatformRelevance(platform=platform, weight=profile.weight(platform))
            for platform in SCANNER_PLATFORMS
            if profile.weight(platform) >= threshold
        ]
        return sorted(relevant, key=lambda p: -p.weight)


_registry: Optional[ProfileRegistry] = None


def get_profile_registry() -> ProfileRegistry:
    """Get the process-wide profile registry, building it on first use."""
    global _registry
    if _registry is None:
        _registry = ProfileRegistry(
            [
                COURSE_PROFILE,
                INDICATOR_PROFILE,
                SOFTWARE_PROFILE,
                TEMPLATE_PROFILE,
                EBOOK_PROFILE,
                OTHER_PROFILE,
            ]
        )
    return _registry
