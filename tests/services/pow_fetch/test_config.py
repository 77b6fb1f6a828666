"""
Unit tests for fetcher configuration.

Covers:
- Defaults for retry, cache, solver, header and network models
- Backoff formula bounds
- Building from application settings
- ConfigLoader validation and deep merge
"""

import random
from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError

from src.app.core.config import Settings
from src.app.services.pow_fetch.config import (
    ConfigLoader,
    FetcherConfig,
    HeadersConfig,
    RetryConfig,
)


# =============================================================================
# FIXTURES
# =============================================================================
@pytest.fixture
def mock_settings() -> MagicMock:
    """Create mock settings for testing."""
    settings = MagicMock()
    settings.POW_FETCH_RETRIES = 5
    settings.POW_FETCH_BASE_RETRY_DELAY = 0.5
    settings.POW_FETCH_JITTER_FRACTION = 0.1
    settings.POW_FETCH_RESPONSE_CACHE_TTL = 30.0
    settings.POW_FETCH_BLOCKED_TTL = 120.0
    settings.POW_FETCH_MAX_SOLVE_ITERATIONS = 1000
    settings.POW_FETCH_CHALLENGE_HEADERS = ["Captcha-Puzzle"]
    settings.POW_FETCH_SOLUTION_HEADER = "Captcha-Solution"
    settings.POW_FETCH_REQUEST_TIMEOUT = 10.0
    settings.POW_FETCH_IMPERSONATE = "chrome120"
    settings.POW_FETCH_USER_AGENT = "Test-UA"
    settings.POW_FETCH_PROXY_URL = "http://proxy:8080"
    settings.TRACKING_REFERER = "https://example.com/tracking/"
    return settings


# =============================================================================
# DEFAULTS
# =============================================================================
class TestDefaults:
    """Tests for default configuration values."""

    def test_retry_defaults(self) -> None:
        retry = FetcherConfig().retry
        assert retry.max_retries == 3
        assert retry.base_delay == 1.0
        assert retry.jitter_fraction == 0.3

    def test_cache_defaults(self) -> None:
        cache = FetcherConfig().cache
        assert cache.response_ttl == 60.0
        assert cache.blocked_ttl == 60.0

    def test_header_defaults(self) -> None:
        headers = FetcherConfig().headers
        assert headers.challenge_headers == ["Captcha-Puzzle", "X-Captcha-Puzzle"]
        assert headers.solution_header == "Captcha-Solution"
        assert headers.static["Accept"] == "application/json"

    def test_solver_default_ceiling(self) -> None:
        assert FetcherConfig().solver.max_iterations == 50_000_000

    def test_empty_challenge_headers_rejected(self) -> None:
        with pytest.raises(ValidationError):
            HeadersConfig(challenge_headers=[])

    def test_negative_retries_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RetryConfig(max_retries=-1)


# =============================================================================
# BACKOFF
# =============================================================================
class TestCalculateBackoff:
    """Tests for RetryConfig.calculate_backoff."""

    @pytest.mark.parametrize("attempt,low,high", [(0, 1.0, 1.3), (1, 2.0, 2.6), (2, 4.0, 5.2), (3, 8.0, 10.4)])
    def test_default_bounds(self, attempt: int, low: float, high: float) -> None:
        """Test delay = base*2^n plus up to 30% jitter."""
        rng = random.Random(attempt)
        for _ in range(50):
            delay = RetryConfig().calculate_backoff(attempt, rng)
            assert low <= delay <= high

    def test_zero_jitter_is_exact(self) -> None:
        retry = RetryConfig(base_delay=0.25, jitter_fraction=0.0)
        assert retry.calculate_backoff(3) == 2.0

    def test_seeded_rng_is_reproducible(self) -> None:
        retry = RetryConfig()
        assert retry.calculate_backoff(1, random.Random(7)) == retry.calculate_backoff(1, random.Random(7))


# =============================================================================
# SETTINGS
# =============================================================================
class TestFromSettings:
    """Tests for FetcherConfig.from_settings."""

    def test_maps_every_setting(self, mock_settings: MagicMock) -> None:
        config = FetcherConfig.from_settings(mock_settings)

        assert config.retry.max_retries == 5
        assert config.retry.base_delay == 0.5
        assert config.retry.jitter_fraction == 0.1
        assert config.cache.response_ttl == 30.0
        assert config.cache.blocked_ttl == 120.0
        assert config.solver.max_iterations == 1000
        assert config.headers.challenge_headers == ["Captcha-Puzzle"]
        assert config.network.timeout == 10.0
        assert config.network.proxy_url == "http://proxy:8080"

    def test_static_headers_include_identity(self, mock_settings: MagicMock) -> None:
        """Test User-Agent and Referer are added to the default static headers."""
        static = FetcherConfig.from_settings(mock_settings).headers.static

        assert static["User-Agent"] == "Test-UA"
        assert static["Referer"] == "https://example.com/tracking/"
        assert static["Accept"] == "application/json"

    def test_real_settings_defaults(self) -> None:
        """Test the application settings produce the documented defaults."""
        config = FetcherConfig.from_settings(Settings())

        assert config.retry.max_retries == 3
        assert config.cache.blocked_ttl == 60.0
        assert config.headers.solution_header == "Captcha-Solution"

    def test_environment_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("POW_FETCH_RETRIES", "7")
        monkeypatch.setenv("POW_FETCH_BLOCKED_TTL", "5")

        config = FetcherConfig.from_settings(Settings())

        assert config.retry.max_retries == 7
        assert config.cache.blocked_ttl == 5.0


# =============================================================================
# LOADER
# =============================================================================
class TestConfigLoader:
    """Tests for ConfigLoader."""

    def test_from_dict(self) -> None:
        config = ConfigLoader.from_dict({"retry": {"max_retries": 1}, "_comment": "ignored"})
        assert config.retry.max_retries == 1
        assert config.cache.response_ttl == 60.0

    def test_from_dict_invalid(self) -> None:
        with pytest.raises(ValueError, match="validation failed"):
            ConfigLoader.from_dict({"cache": {"response_ttl": 0}})

    def test_merge_is_deep(self) -> None:
        base = ConfigLoader.from_dict({"retry": {"max_retries": 1, "base_delay": 0.1}})

        merged = ConfigLoader.merge(base, {"retry": {"max_retries": 2}})

        assert merged.retry.max_retries == 2
        assert merged.retry.base_delay == 0.1
        assert base.retry.max_retries == 1

    def test_merge_replaces_lists(self) -> None:
        merged = ConfigLoader.merge(FetcherConfig(), {"headers": {"challenge_headers": ["Pow"]}})
        assert merged.headers.challenge_headers == ["Pow"]
