"""
Central configuration for the Telelistings aggregator.
Uses pydantic-settings for env-based config with validation.
"""
from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class CacheBackendKind(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


# Seconds a cached payload stays fresh, per source id.
DEFAULT_SOURCE_TTL_S: dict[str, int] = {
    "thesportsdb": 30 * 60,
    "footballdata_ics": 60 * 60,
    "remote_broadcast": 4 * 60 * 60,
    "bbc": 30 * 60,
    "skysports": 30 * 60,
    "tnt": 30 * 60,
    "livefootballontv": 30 * 60,
    "wiki": 6 * 60 * 60,
}


class Settings(BaseSettings):
    """Root settings for the aggregator and its source adapters."""

    model_config = SettingsConfigDict(
        env_prefix="TL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = "INFO"
    instance_id: str = Field(default="", description="Process identifier bound to every log line")
    timezone: str = Field(default="Europe/London", description="IANA zone for kickoff_local")

    # ── Cache ────────────────────────────────────────────────
    cache_backend: CacheBackendKind = CacheBackendKind.MEMORY
    redis_url: RedisDsn = Field(default="redis://localhost:6379/0")
    redis_max_connections: int = 20
    source_ttl_overrides_s: dict[str, int] = Field(
        default_factory=dict,
        description="Per-source TTL overrides in seconds, keyed by source id.",
    )

    # ── Sources ──────────────────────────────────────────────
    enabled_sources: list[str] = Field(
        default=[
            "thesportsdb",
            "remote_broadcast",
            "bbc",
            "skysports",
            "tnt",
            "livefootballontv",
            "wiki",
        ],
        description="Sources consulted by aggregate(); order is fixed by priority, not by this list.",
    )
    source_timeout_s: float = 20.0
    http_connect_timeout_s: float = 5.0
    user_agent: str = "TelelistingsBot/1.0 (+https://telelistings.invalid/)"

    remote_broadcast_url: str = ""
    remote_broadcast_key: str = ""
    remote_broadcast_timeout_s: float = 60.0

    thesportsdb_api_key: str = "1"
    thesportsdb_fallback_keys: list[str] = Field(default=["3", "2", "1"])

    calendar_url: str = ""
    calendar_team_url_template: str = Field(
        default="",
        description="Per-team calendar feed URL with a {slug} placeholder.",
    )
    calendar_days_ahead: int = 7
    calendar_team_filters: list[str] = Field(default_factory=list)

    # ── Batch fetching ───────────────────────────────────────
    batch_max_items: int = 10
    batch_delay_ms: int = 1500
    team_days_ahead: int = Field(default=7, description="Lookahead window for fixtures_for_teams.")

    # ── Scoring ──────────────────────────────────────────────
    score_accept_threshold: int = 50
    score_team_weight: float = 0.5
    score_time_points: float = 40.0
    score_league_weight: float = 0.1
    score_swap_discount: float = 0.9

    # ── Concurrency ──────────────────────────────────────────
    max_concurrent_aggregations: int = 4

    # ── Observability ────────────────────────────────────────
    metrics_enabled: bool = False
    metrics_port: int = 9090

    @property
    def redis_url_str(self) -> str:
        return str(self.redis_url)

    def ttl_for(self, source_id: str) -> int:
        """Freshness window for a source, honouring overrides."""
        if source_id in self.source_ttl_overrides_s:
            return self.source_ttl_overrides_s[source_id]
        return DEFAULT_SOURCE_TTL_S.get(source_id, 30 * 60)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton access to validated settings."""
    return Settings()
