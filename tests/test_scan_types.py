"""
Tests for pipeline data types and untrusted input handling.
"""

import dataclasses

import pytest

from scan_engine.services.scan_types import (
    AISignals,
    LearnedSignals,
    ScanConfig,
    clean_terms,
    host_of,
)

from .conftest import make_product


class TestCleanTerms:

    def test_drops_non_strings_blanks_and_duplicates(self):
        assert clean_terms(["alpha", 3, "  ", "Alpha", "beta  course", None]) == ("alpha", "beta course")

    def test_non_list_is_empty(self):
        assert clean_terms("alpha") == ()
        assert clean_terms({"a": 1}) == ()
        assert clean_terms(None) == ()

    def test_limits(self):
        assert len(clean_terms([f"term {i}" for i in range(50)])) == 20
        assert clean_terms(["x" * 201]) == ()


class TestAISignals:
    """Untrusted AI enrichment."""

    def test_malformed_fields_are_dropped(self):
        signals = AISignals.from_untrusted({
            "unique_phrases": "not a list",
            "brand_identifiers": ["AlphaFX", 12],
            "platform_search_terms": {"Telegram": ["alpha vip"], "discord": "bad", 5: ["x"]},
        })

        assert signals.unique_phrases == ()
        assert signals.brand_identifiers == ("AlphaFX",)
        assert signals.platform_terms("telegram") == ("alpha vip",)
        assert signals.platform_terms("discord") == ()

    def test_non_dict_payload_is_empty(self):
        assert AISignals.from_untrusted(["x"]).is_empty
        assert AISignals.from_untrusted(None).is_empty

    def test_platform_terms_are_read_only(self):
        signals = AISignals.from_untrusted({"platform_search_terms": {"telegram": ["alpha"]}})

        with pytest.raises(TypeError):
            signals.platform_search_terms["forum"] = ("x",)


class TestSnapshots:

    def test_product_snapshot_is_frozen(self):
        product = make_product()

        with pytest.raises(dataclasses.FrozenInstanceError):
            product.name = "Other"

    def test_official_domain_and_empty_signals(self):
        product = make_product(url="https://www.AlphaCourse.com/buy")

        assert product.official_domain == "alphacourse.com"
        assert product.signals.is_empty

    def test_learned_domains_are_normalized(self):
        learned = LearnedSignals.from_untrusted(["alpha"], ["https://www.Reviews.io/x", "blog.net"])

        assert learned.false_positive_domains == ("reviews.io", "blog.net")
        assert learned.has_learning_data

    @pytest.mark.parametrize("url,host", [
        ("https://www.example.com/a", "example.com"),
        ("example.com/a", "example.com"),
        ("HTTP://Sub.Example.com", "sub.example.com"),
        ("", ""),
    ])
    def test_host_of(self, url, host):
        assert host_of(url) == host


class TestScanConfig:

    def test_settings_with_overrides(self, settings):
        settings.SCAN_SEARCH_BUDGET = 50

        config = ScanConfig.from_settings(max_duration_seconds=30)

        assert config.search_budget == 50
        assert config.max_duration_seconds == 30
        assert config.ai_filter_enabled is False
