"""
Unit tests for settings and secret lookup.
"""
import pytest

from immodiag.config import Settings, gemini_api_key
from immodiag.errors import ConfigurationError


class TestSettings:
    """Environment-driven settings."""

    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings.cache_ttl_seconds == 600
        assert settings.cache_max_entries == 200
        assert settings.rate_min_interval_seconds == 1.0
        assert settings.rate_max_calls == 8
        assert settings.rate_window_seconds == 60.0
        assert settings.retry_429_backoff_seconds == 1.2
        assert settings == Settings()

    def test_overrides(self):
        settings = Settings.from_env({"CACHE_TTL_SECONDS": "30", "RATE_MAX_CALLS": "4", "FANOUT_WORKERS": " "})
        assert settings.cache_ttl_seconds == 30.0
        assert settings.rate_max_calls == 4
        assert settings.fanout_workers == 4

    def test_non_numeric_value(self):
        with pytest.raises(ConfigurationError, match="REQUEST_TIMEOUT"):
            Settings.from_env({"REQUEST_TIMEOUT": "fast"})

    def test_capacity_is_at_least_one(self):
        assert Settings.from_env({"CACHE_MAX_ENTRIES": "0"}).cache_max_entries == 1


class TestGeminiKey:
    """The LLM key is read at call time."""

    def test_present(self):
        assert gemini_api_key({"GEMINI_API_KEY": " abc "}) == "abc"

    def test_missing(self):
        with pytest.raises(ConfigurationError) as exc:
            gemini_api_key({})
        assert exc.value.status == 500
        assert "GEMINI_API_KEY" in exc.value.message
