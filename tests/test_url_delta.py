"""
Tests for URL canonicalization, hashing and delta partitioning.
"""

import hashlib

import pytest

from scan_engine.services.scan_types import SearchHit
from scan_engine.services.url_delta import KnownRecord, UrlDeltaTracker, normalize_url, url_hash


def hit(link: str) -> SearchHit:
    return SearchHit(title="Alpha Course", link=link, snippet="", position=1)


class TestNormalizeUrl:
    """Tests for the canonical URL form."""

    @pytest.mark.parametrize("raw,expected", [
        ("https://www.Example.com/Path/", "example.com/path"),
        ("http://example.com/path?utm_source=x#top", "example.com/path"),
        ("  HTTPS://WWW.example.com///  ", "example.com"),
        ("example.com/a", "example.com/a"),
        ("https://www.www.example.com/a", "example.com/a"),
        ("", ""),
    ])
    def test_normalization(self, raw, expected):
        assert normalize_url(raw) == expected

    @pytest.mark.parametrize("raw", [
        "https://www.www.example.com/a/?q=1",
        "http://https://example.com/x/",
        "HTTP://Mega.NZ/file/AbC#key",
    ])
    def test_normalization_is_idempotent(self, raw):
        once = normalize_url(raw)
        assert normalize_url(once) == once

    def test_hash_is_stable_across_variants(self):
        variants = [
            "https://www.example.com/alpha",
            "http://example.com/alpha/",
            "https://EXAMPLE.com/alpha?ref=1",
        ]

        assert len({url_hash(v) for v in variants}) == 1
        assert url_hash(variants[0]) == hashlib.sha256(b"example.com/alpha").hexdigest()


class TestUrlDeltaTracker:
    """Tests for in-run dedup and known/new partitioning."""

    def test_same_url_is_claimed_once(self):
        tracker = UrlDeltaTracker()

        first = tracker.claim(hit("https://leaks.io/alpha"))
        second = tracker.claim(hit("http://www.leaks.io/alpha/"))

        assert first is not None
        assert second is None
        assert tracker.duplicates_dropped == 1

    def test_empty_links_are_ignored(self):
        assert UrlDeltaTracker().claim(hit("")) is None

    def test_dedupe_keeps_first_sightings_in_order(self):
        tracker = UrlDeltaTracker()

        candidates = tracker.dedupe([hit("https://a.io/1"), hit("https://b.io/2"), hit("https://a.io/1/")])

        assert [c.normalized_url for c in candidates] == ["a.io/1", "b.io/2"]

    def test_partition_new_rediscovered_and_relisted(self):
        """A removed URL that shows up again is re-listed; an active one is rediscovered."""
        known = [
            KnownRecord(record_id=1, url_hash=url_hash("https://active.io/alpha"), status="active"),
            KnownRecord(record_id=2, url_hash=url_hash("https://removed.io/alpha"), status="removed"),
            KnownRecord(record_id=3, url_hash=url_hash("https://pending.io/alpha"), status="pending_verification"),
        ]
        tracker = UrlDeltaTracker(known)
        candidates = tracker.dedupe([
            hit("https://new.io/alpha"),
            hit("https://www.active.io/alpha/"),
            hit("https://removed.io/alpha?src=search"),
            hit("https://pending.io/alpha"),
        ])

        partition = tracker.partition(candidates)

        assert [c.normalized_url for c in partition.new] == ["new.io/alpha"]
        assert [record.record_id for _, record in partition.rediscovered] == [1, 3]
        assert [record.record_id for _, record in partition.relisted] == [2]
        assert partition.known_count == 3

    def test_known_lookup(self):
        hash_value = url_hash("https://removed.io/alpha")
        tracker = UrlDeltaTracker([KnownRecord(record_id=9, url_hash=hash_value, status="removed")])

        assert tracker.is_known(hash_value)
        assert tracker.known_record(hash_value).record_id == 9
        assert hash_value in tracker.known_hashes
