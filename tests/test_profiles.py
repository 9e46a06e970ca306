"""
Tests for scan profiles and the profile registry.
"""

import pytest

from scan_engine.search.profiles import (
    COURSE_PROFILE,
    OTHER_PROFILE,
    SCANNER_PLATFORMS,
    ProfileRegistry,
    get_profile_registry,
)


class TestProfileRegistry:
    """Tests for category lookup and fallback."""

    def test_all_categories_have_profiles(self):
        registry = get_profile_registry()

        assert set(registry.categories) == {"course", "indicator", "software", "template", "ebook", "other"}

    def test_unknown_category_falls_back_to_other(self):
        registry = get_profile_registry()

        assert registry.get_profile("podcast") is OTHER_PROFILE
        assert registry.get_profile(None) is OTHER_PROFILE
        assert registry.get_profile("") is OTHER_PROFILE

    def test_registry_is_built_once(self):
        assert get_profile_registry() is get_profile_registry()

    def test_default_category_must_exist(self):
        with pytest.raises(ValueError):
            ProfileRegistry([COURSE_PROFILE], default_category="other")

    def test_profiles_are_immutable(self):
        with pytest.raises(TypeError):
            COURSE_PROFILE.platform_weights["telegram"] = 0.1

        with pytest.raises(AttributeError):
            COURSE_PROFILE.category = "ebook"

    def test_dead_sites_are_filtered(self):
        registry = ProfileRegistry([OTHER_PROFILE], dead_sites={"zippyshare.com"})

        assert registry.alive(["mega.nz", "ZippyShare.com", "mediafire.com"]) == ["mega.nz", "mediafire.com"]
        assert registry.is_dead("zippyshare.com")


class TestRelevantPlatforms:
    """Tests for weight-gated platform relevance."""

    def test_course_platforms_above_threshold_highest_first(self):
        relevant = get_profile_registry().relevant_platforms("course", threshold=0.6)

        assert [p.platform for p in relevant] == ["telegram", "cyberlocker", "torrent", "forum"]
        assert relevant[0].weight == 0.9

    def test_only_scanner_platforms_are_considered(self):
        relevant = get_profile_registry().relevant_platforms("course", threshold=0.0)

        assert {p.platform for p in relevant} <= set(SCANNER_PLATFORMS)
        assert "google" not in {p.platform for p in relevant}

    def test_high_threshold_can_exclude_everything(self):
        assert get_profile_registry().relevant_platforms("other", threshold=0.95) == []

    def test_weight_default_for_unknown_platform(self):
        assert COURSE_PROFILE.weight("myspace") == 0.0
        assert COURSE_PROFILE.weight("myspace", 0.5) == 0.5
