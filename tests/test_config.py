"""Tests for configuration module."""

from pathlib import Path

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from pydantic import ValidationError

import fastener_search.config
from fastener_search.config import Settings, get_settings, reload_settings

TEST_API_KEY = "sk-proj-test-fake-key-for-unit-tests-only-1234567890abcdef"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host configuration out of the tests."""
    for name in ("OPENAI_API_KEY", "LOG_LEVEL", "DEFAULT_LIMIT"):
        monkeypatch.delenv(name, raising=False)


class TestSettingsValidation:
    """Test configuration validation."""

    def test_settings_default_values(self, monkeypatch):
        """Test that default values are set correctly."""
        settings = Settings(_env_file=None)

        assert settings.api_title == "Fastener Catalogue Search"
        assert settings.company_name == "Inoxbolt"
        assert settings.openai_api_key is None
        assert settings.openai_model == "gpt-4o-mini"
        assert settings.collection_name == "catalogue_chunks"
        assert settings.default_limit == 10
        assert settings.default_threshold == 0.5
        assert settings.exact_standard_threshold == 0.3
        assert settings.exact_match_boost == 2.0
        assert settings.direct_match_boost == 1.5
        assert settings.bm25_index_path == Path("./data/vectordb/bm25_index.pkl")
        assert settings.log_level == "INFO"

    def test_settings_with_valid_config(self, monkeypatch):
        """Test that settings load correctly from the environment."""
        monkeypatch.setenv("OPENAI_API_KEY", TEST_API_KEY)
        monkeypatch.setenv("DEFAULT_LIMIT", "20")
        monkeypatch.setenv("ENABLE_KEYWORD_SEARCH", "false")
        monkeypatch.setenv("BM25_INDEX_PATH", "/tmp/bm25.pkl")

        settings = Settings(_env_file=None)

        assert settings.openai_api_key == TEST_API_KEY
        assert settings.default_limit == 20
        assert settings.enable_keyword_search is False
        assert settings.bm25_index_path == Path("/tmp/bm25.pkl")

    def test_settings_invalid_api_key_format(self, monkeypatch):
        """Test that invalid API key format raises validation error."""
        monkeypatch.setenv("OPENAI_API_KEY", "invalid-key")

        with pytest.raises(ValidationError) as exc_info:
            Settings(_env_file=None)

        assert "should start with 'sk-'" in str(exc_info.value)

    def test_settings_placeholder_api_key(self, monkeypatch):
        """Test that placeholder API key raises validation error."""
        monkeypatch.setenv("OPENAI_API_KEY", "your-openai-api-key-here")

        with pytest.raises(ValidationError) as exc_info:
            Settings(_env_file=None)

        assert "placeholder" in str(exc_info.value)

    def test_settings_invalid_log_level(self, monkeypatch):
        """Test that invalid log level raises validation error."""
        monkeypatch.setenv("LOG_LEVEL", "INVALID")

        with pytest.raises(ValidationError) as exc_info:
            Settings(_env_file=None)

        assert "log_level" in str(exc_info.value)

    def test_settings_log_level_case_insensitive(self, monkeypatch):
        """Test that log level is case insensitive."""
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = Settings(_env_file=None)

        assert settings.log_level == "DEBUG"

    def test_exact_boost_must_dominate(self):
        """An exact match boost within reach of similarity is rejected."""
        with pytest.raises(ValueError) as exc_info:
            Settings(_env_file=None, exact_match_boost=1.1)

        assert "exact_match_boost" in str(exc_info.value)

    def test_direct_boost_must_dominate(self):
        """A direct match boost within reach of similarity is rejected."""
        with pytest.raises(ValueError) as exc_info:
            Settings(_env_file=None, direct_match_boost=1.0)

        assert "direct_match_boost" in str(exc_info.value)

    def test_exact_threshold_above_default_rejected(self):
        with pytest.raises(ValueError) as exc_info:
            Settings(_env_file=None, default_threshold=0.4, exact_standard_threshold=0.6)

        assert "exact_standard_threshold" in str(exc_info.value)

    def test_default_limit_above_max_rejected(self):
        with pytest.raises(ValueError) as exc_info:
            Settings(_env_file=None, default_limit=30, max_limit=20)

        assert "default_limit" in str(exc_info.value)

    def test_max_hybrid_score(self):
        settings = Settings(_env_file=None)

        assert settings.max_secondary_boost == pytest.approx(0.3)
        assert settings.max_hybrid_score == pytest.approx(4.8)
        assert settings.wrong_standard_penalty == 0.15

    def test_get_settings_singleton(self, monkeypatch):
        """Test that get_settings returns the same instance."""
        monkeypatch.setattr(fastener_search.config, "_settings", None)

        settings1 = get_settings()
        settings2 = get_settings()

        assert settings1 is settings2

    def test_reload_settings(self, monkeypatch):
        """Test that reload_settings creates a new instance."""
        monkeypatch.setattr(fastener_search.config, "_settings", None)
        monkeypatch.setenv("DEFAULT_LIMIT", "10")

        settings1 = reload_settings()

        monkeypatch.setenv("DEFAULT_LIMIT", "25")

        settings2 = reload_settings()

        assert settings1 is not settings2
        assert settings1.default_limit == 10
        assert settings2.default_limit == 25


class TestConfigurationProperties:
    """Property-based tests for configuration validation."""

    @given(
        api_key=st.text(
            alphabet=st.characters(blacklist_categories=("Cs",), blacklist_characters="\x00"),
            min_size=1,
            max_size=100,
        ).filter(lambda x: x.strip() and not x.startswith("sk-"))
    )
    @settings(
        max_examples=100,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    def test_invalid_api_key_format_rejected(self, api_key, monkeypatch):
        """Any key not shaped like an OpenAI key fails at startup."""
        monkeypatch.setenv("OPENAI_API_KEY", api_key)

        with pytest.raises(ValidationError) as exc_info:
            Settings(_env_file=None)

        assert "openai_api_key" in str(exc_info.value).lower()

    @given(
        thread=st.floats(min_value=0.0, max_value=0.3),
        material=st.floats(min_value=0.0, max_value=0.3),
        product_type=st.floats(min_value=0.0, max_value=0.3),
    )
    @settings(max_examples=100, deadline=None)
    def test_accepted_boosts_keep_exact_matches_on_top(self, thread, material, product_type):
        """Every accepted configuration keeps the exact match boost dominant."""
        try:
            config = Settings(
                _env_file=None,
                thread_match_boost=thread,
                material_match_boost=material,
                product_type_match_boost=product_type,
            )
        except ValueError:
            # head type and supplier boosts keep their 0.05 defaults
            assert 1.0 + (thread + material + product_type + 0.05 + 0.05) >= 1.5
            return

        assert config.exact_match_boost > 1.0 + config.max_secondary_boost
        assert config.direct_match_boost > 1.0 + config.max_secondary_boost

    @given(limit=st.integers(min_value=1, max_value=50))
    @settings(
        max_examples=50,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    def test_limit_loaded_from_environment(self, limit, monkeypatch):
        """Integer settings are converted from environment strings."""
        monkeypatch.setenv("DEFAULT_LIMIT", str(limit))

        config = Settings(_env_file=None)

        assert config.default_limit == limit
