"""
URL delta tracking - canonical URLs, stable hashes and new/known partitioning.

A product's known infringement URLs are loaded once per run. Every hit is
then canonicalized and hashed so that:
- the same URL found by different tiers or scanners is considered once
- URLs already known for the product skip re-scoring and re-verification
- a known URL that had been marked removed and shows up again is flagged
  as a re-listing
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from scan_engine.services.scan_types import Candidate, SearchHit

logger = logging.getLogger(__name__)

SCHEME_PATTERN = re.compile(r"^[a-z][a-z0-9+.-]*://")
WWW_PATTERN = re.compile(r"^www\.")
QUERY_FRAGMENT_PATTERN = re.compile(r"[?#].*$", re.DOTALL)

STATUS_REMOVED = "removed"


def _normalize_once(url: str) -> str:
    value = url.strip().lower()
    value = SCHEME_PATTERN.sub("", value)
    value = WWW_PATTERN.sub("", value)
    value = QUERY_FRAGMENT_PATTERN.sub("", value)
    return value.rstrip("/")


def normalize_url(url: str) -> str:
    """
    Canonical form of a URL used for deduplication.

    Lowercases, strips the scheme, a leading "www.", the query string,
    the fragment and trailing slashes. Applied until stable, so
    normalize_url(normalize_url(u)) == normalize_url(u).
    """
    value = url or ""
    while True:
        normalized = _normalize_once(value)
        if normalized == value:
            return normalized
        value = normalized


def url_hash(url: str) -> str:
    """SHA-256 hex digest of the normalized URL."""
    return hashlib.sha256(normalize_url(url).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class KnownRecord:
    """An infringement already stored for the product."""

    record_id: object
    url_hash: str
    status: str
    seen_count: int = 1


@dataclass
class DeltaPartition:
    """Split of one run's candidates against the product's known URLs."""

    new: List[Candidate] = field(default_factory=list)
    rediscovered: List[Tuple[Candidate, KnownRecord]] = field(default_factory=list)
    relisted: List[Tuple[Candidate, KnownRecord]] = field(default_factory=list)

    @property
    def known_count(self) -> int:
        return len(self.rediscovered) + len(self.relisted)


class UrlDeltaTracker:
    """
    Per-run dedup state for one product.

    Usage:
        tracker = UrlDeltaTracker(known_records)
        candidates = tracker.dedupe(hits)
        partition = tracker.partition(candidates)
    """

    def __init__(self, known_records: Iterable[KnownRecord] = ()):
        self._known: Dict[str, KnownRecord] = {r.url_hash: r for r in known_records}
        self._claimed: Dict[str, Candidate] = {}
        self.duplicates_dropped = 0

    @property
    def known_hashes(self) -> frozenset:
        return frozenset(self._known)

    def is_known(self, hash_value: str) -> bool:
        return hash_value in self._known

    def known_record(self, hash_value: str) -> Optional[KnownRecord]:
        return self._known.get(hash_value)

    def claim(self, hit: SearchHit) -> Optional[Candidate]:
        """
        Register a hit for this run.

        Returns a new Candidate the first time a URL is seen in the run,
        None for every later sighting of the same normalized URL.
        """
        normalized = normalize_url(hit.link)
        if not normalized:
            return None

        hash_value = hashlib.sha256(normalized.encode("utf-8")).hexdigest()
        if hash_value in self._claimed:
            self.duplicates_dropped += 1
            return None

        candidate = Candidate(hit=hit, normalized_url=normalized, url_hash=hash_value)
        self._claimed[hash_value] = candidate
        return candidate

    def dedupe(self, hits: Iterable[SearchHit]) -> List[Candidate]:
        """Claim each hit in order, keeping only first sightings."""
        candidates = []
        for hit in hits:
            candidate = self.claim(hit)
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    def partition(self, candidates: Iterable[Candidate]) -> DeltaPartition:
        """Split candidates into new, rediscovered and re-listed."""
        result = DeltaPartition()
        for candidate in candidates:
            known = self._known.get(candidate.url_hash)
            if known is None:
                result.new.append(candidate)
            elif known.status == STATUS_REMOVED:
                result.relisted.append((candidate, known))
            else:
                result.rediscovered.append((candidate, known))

        if result.known_count:
            logger.debug(
                f"Delta: {len(result.new)} new, {len(result.rediscovered)} rediscovered, "
                f"{len(result.relisted)} re-listed"
            )
        return result
