from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Orchestration layer settings loaded from environment variables.

    Args:
        environment: Deployment environment, e.g. 'dev', 'staging', 'prod'.
        app_name: Human-readable application name.
        api_version: API version prefix.
        sentry_dsn: Optional Sentry DSN for error reporting.
        budget_daily_limit_usd: Global spend ceiling for the current UTC day.
        budget_monthly_limit_usd: Global spend ceiling for the current UTC month.
        budget_emergency_stop_percent: Spend percentage that blocks all requests.
        cache_max_entries: Upper bound on cached responses.
        breaker_failure_threshold: Consecutive failures that open a breaker.
        routing_cost_reference_usd: Cost that maps to a zero cost sub-score.
        routing_latency_reference_ms: Latency that maps to a zero speed sub-score.
    """

    environment: Literal["dev", "staging", "prod"] = Field(default="dev")
    app_name: str = Field(default="LLM Request Orchestrator")
    api_version: str = Field(default="v1")

    sentry_dsn: str | None = None
    enable_debug: bool = Field(default=False)

    # Provider credentials and configuration
    openai_api_key: str | None = None
    openai_base_url: HttpUrl | None = None

    anthropic_api_key: str | None = None
    anthropic_base_url: HttpUrl | None = None

    gemini_api_key: str | None = None
    gemini_base_url: HttpUrl | None = None

    # Default HTTP timeouts (seconds)
    http_connect_timeout_s: float = Field(default=5.0)
    http_read_timeout_s: float = Field(default=30.0)

    # Budget ledger
    budget_daily_limit_usd: float = Field(default=100.0)
    budget_monthly_limit_usd: float = Field(default=2000.0)
    budget_per_user_daily_limit_usd: float | None = Field(default=50.0)
    budget_per_workflow_limit_usd: float | None = Field(default=200.0)
    budget_alert_daily_percent: float = Field(default=80.0)
    budget_alert_monthly_percent: float = Field(default=85.0)
    budget_emergency_stop_percent: float = Field(default=95.0)
    budget_retention_days: int = Field(default=90)
    budget_prune_interval_s: int = Field(default=24 * 60 * 60)

    # Response cache
    cache_max_entries: int = Field(default=1000, ge=1)
    cache_default_ttl_s: int = Field(default=24 * 60 * 60)
    cache_sweep_interval_s: int = Field(default=60 * 60)

    # Circuit breakers
    breaker_failure_threshold: int = Field(default=5)
    breaker_timeout_ms: int = Field(default=60_000)
    breaker_half_open_max_requests: int = Field(default=3)

    # Routing engine
    routing_cost_reference_usd: float = Field(default=1.0)
    routing_latency_reference_ms: float = Field(default=10_000.0)
    routing_assumed_output_tokens: int = Field(default=150)
    routing_history_size: int = Field(default=10_000)
    performance_smoothing_alpha: float = Field(default=0.5)

    # Validation and repair
    repair_max_attempts: int = Field(default=3)
    repair_strategy: Literal["rule_based", "model", "hybrid"] = Field(default="hybrid")
    repair_model: str = Field(default="openai:gpt-4o-mini")

    # Periodic provider metrics log
    metrics_log_interval_s: int = Field(default=5 * 60)

    class Config:
        env_prefix = "LLMO_"
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached instance of Settings."""

    return Settings()  # type: ignore[call-arg]
