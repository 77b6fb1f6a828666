"""
Proof-of-Work Fetch - Configuration Models

Usage:
    from .config import ConfigLoader, FetcherConfig

    # Defaults (retries=3, base delay 1s, jitter 0.3, TTLs 60s)
    config = FetcherConfig()

    # From application settings (.env)
    config = FetcherConfig.from_settings(settings)

    # Overrides for a single client
    config = ConfigLoader.merge(config, {"retry": {"max_retries": 5}})
"""

import logging
import random
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from .classifier import DEFAULT_CHALLENGE_HEADERS
from .solver import DEFAULT_MAX_ITERATIONS

if TYPE_CHECKING:
    from ...core.config import Settings

logger = logging.getLogger(__name__)


class RetryConfig(BaseModel):
    """Backoff policy for rate-limited and transient outcomes."""

    max_retries: int = Field(default=3, ge=0)
    base_delay: float = Field(default=1.0, ge=0.0)  # seconds
    jitter_fraction: float = Field(default=0.3, ge=0.0)

    def calculate_backoff(self, attempt: int, rng: random.Random | None = None) -> float:
        """Delay before the retry that follows zero-based attempt `attempt`."""
        delay = self.base_delay * 2**attempt
        jitter = (rng or random).uniform(0, self.jitter_fraction * delay)
        return delay + jitter


class CacheConfig(BaseModel):
    """TTLs for the response and blocked-identity caches (seconds)."""

    response_ttl: float = Field(default=60.0, gt=0.0)
    blocked_ttl: float = Field(default=60.0, gt=0.0)


class SolverConfig(BaseModel):
    """Proof-of-work search limits."""

    max_iterations: int = Field(default=DEFAULT_MAX_ITERATIONS, gt=0)


class HeadersConfig(BaseModel):
    """Wire header names and static request headers."""

    challenge_headers: list[str] = Field(default_factory=lambda: list(DEFAULT_CHALLENGE_HEADERS))
    solution_header: str = "Captcha-Solution"
    static: dict[str, str] = Field(
        default_factory=lambda: {
            "Accept": "application/json",
            "Accept-Language": "en-US,en;q=0.8",
        }
    )

    @field_validator("challenge_headers")
    @classmethod
    def validate_challenge_headers(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("At least one challenge header name is required")
        return v


class NetworkConfig(BaseModel):
    """Transport settings for curl_cffi."""

    timeout: float = Field(default=30.0, gt=0.0)
    impersonate: str = "chrome120"
    proxy_url: str | None = None


class FetcherConfig(BaseModel):
    """Complete configuration for AdaptiveFetcher."""

    retry: RetryConfig = Field(default_factory=RetryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    solver: SolverConfig = Field(default_factory=SolverConfig)
    headers: HeadersConfig = Field(default_factory=HeadersConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "FetcherConfig":
        """Build from the application's environment-backed settings."""
        static = dict(HeadersConfig().static)
        static["User-Agent"] = settings.POW_FETCH_USER_AGENT
        static["Referer"] = settings.TRACKING_REFERER

        return cls(
            retry=RetryConfig(
                max_retries=settings.POW_FETCH_RETRIES,
                base_delay=settings.POW_FETCH_BASE_RETRY_DELAY,
                jitter_fraction=settings.POW_FETCH_JITTER_FRACTION,
            ),
            cache=CacheConfig(
                response_ttl=settings.POW_FETCH_RESPONSE_CACHE_TTL,
                blocked_ttl=settings.POW_FETCH_BLOCKED_TTL,
            ),
            solver=SolverConfig(max_iterations=settings.POW_FETCH_MAX_SOLVE_ITERATIONS),
            headers=HeadersConfig(
                challenge_headers=settings.POW_FETCH_CHALLENGE_HEADERS,
                solution_header=settings.POW_FETCH_SOLUTION_HEADER,
                static=static,
            ),
            network=NetworkConfig(
                timeout=settings.POW_FETCH_REQUEST_TIMEOUT,
                impersonate=settings.POW_FETCH_IMPERSONATE,
                proxy_url=settings.POW_FETCH_PROXY_URL,
            ),
        )


class ConfigLoader:
    """Builds FetcherConfig instances from plain dicts.

    Usage:
        config = ConfigLoader.from_dict({"retry": {"max_retries": 1}})
        config = ConfigLoader.merge(base, {"cache": {"response_ttl": 5}})
    """

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FetcherConfig:
        """Validate a configuration dictionary.

        Raises:
            ValueError: If validation fails
        """
        # Remove comments (keys starting with _)
        clean_data = {k: v for k, v in data.items() if not k.startswith("_")}

        try:
            config = FetcherConfig.model_validate(clean_data)
        except ValidationError as e:
            raise ValueError(f"Configuration validation failed: {e}") from e

        logger.debug(f"Parsed fetcher configuration: retries={config.retry.max_retries}")
        return config

    @classmethod
    def merge(cls, base: FetcherConfig, overrides: dict[str, Any]) -> FetcherConfig:
        """Return a new config with overrides deep-merged into base."""
        base_dict = base.model_dump()
        cls._deep_merge(base_dict, overrides)
        return cls.from_dict(base_dict)

    @staticmethod
    def _deep_merge(base: dict, overrides: dict) -> None:
        """Recursively merge overrides into base dict (in-place)."""
        for key, value in overrides.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                ConfigLoader._deep_merge(base[key], value)
            else:
                base[key] = value
