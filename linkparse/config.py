from __future__ import annotations

import os
from dataclasses import dataclass

from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_int(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


@dataclass(frozen=True)
class FetchLimits:
    """Timeouts and byte caps applied to every outbound request."""

    timeout_seconds: float
    max_html_bytes: int
    max_file_bytes: int
    max_redirects: int
    oembed_timeout_seconds: float
    robots_timeout_seconds: float
    robots_cache_ttl_seconds: int

    @classmethod
    def from_env(cls) -> FetchLimits:
        return cls(
            timeout_seconds=_env_float("FETCH_TIMEOUT_SECONDS", 10.0),
            max_html_bytes=_env_int("FETCH_MAX_HTML_BYTES", 5 * 1024 * 1024),
            max_file_bytes=_env_int("FETCH_MAX_FILE_BYTES", 10 * 1024 * 1024),
            max_redirects=_env_int("FETCH_MAX_REDIRECTS", 3),
            oembed_timeout_seconds=_env_float("OEMBED_TIMEOUT_SECONDS", 3.0),
            robots_timeout_seconds=_env_float("ROBOTS_TIMEOUT_SECONDS", 5.0),
            robots_cache_ttl_seconds=_env_int("ROBOTS_CACHE_TTL_SECONDS", 24 * 60 * 60),
        )


@dataclass(frozen=True)
class RateLimitConfig:
    """Request budgets enforced by the fetcher before any network I/O."""

    per_client_limit: int
    per_client_window_seconds: int
    per_domain_limit: int
    per_domain_window_seconds: int

    @classmethod
    def from_env(cls) -> RateLimitConfig:
        return cls(
            per_client_limit=_env_int("RATE_LIMIT_PER_CLIENT", 100),
            per_client_window_seconds=_env_int("RATE_LIMIT_PER_CLIENT_WINDOW", 3600),
            per_domain_limit=_env_int("RATE_LIMIT_PER_DOMAIN", 60),
            per_domain_window_seconds=_env_int("RATE_LIMIT_PER_DOMAIN_WINDOW", 60),
        )

    @property
    def enabled(self) -> bool:
        return self.per_client_limit > 0 or self.per_domain_limit > 0


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    ENV: str = "development"
    AUTH_ENABLED: bool = False
    API_TOKENS: str = ""
    JWT_SECRET: str | None = None
    JWT_AUDIENCE: str | None = None
    ALLOWED_ORIGINS: str = ""
    PARSE_CACHE_TTL_SECONDS: int = 86400
    PARSE_DEADLINE_SECONDS: float = 25.0
    YOUTUBE_API_KEY: str | None = None
    RATELIMIT_STORAGE_URI: str = ""
    PARSE_ROUTE_LIMIT: str = "60 per minute"
    TRUSTED_PROXY_HOPS: int = 0

    @property
    def api_tokens(self) -> list[str]:
        return [token.strip() for token in self.API_TOKENS.split(",") if token.strip()]

    @property
    def allowed_origins(self) -> list[str]:
        return [
            origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()
        ]


def get_settings() -> AppSettings:
    """Read settings fresh from the environment (tests tweak it between apps)."""
    return AppSettings()
