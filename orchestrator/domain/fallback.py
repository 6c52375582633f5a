from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from orchestrator.domain.adapters import LLMMessage, LLMUsage
from orchestrator.domain.circuit_breaker import CircuitBreakerConfig
from orchestrator.domain.errors import ProviderAttempt
from orchestrator.domain.routing import RoutingDecision
from orchestrator.domain.validation import ValidationResult


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    """Registration record for a provider served through the fallback executor.

    Args:
        id: Provider identifier, matching the adapter's ``name``.
        priority: Static preference; higher is tried earlier.
        max_concurrent_requests: In-flight cap; a saturated provider is skipped.
        timeout_ms: Per-attempt timeout.
        cost_multiplier: Scales observed average cost for max-cost filtering.
        models: Qualified model names (``provider:model``) this provider serves.
    """

    id: str
    priority: int = 0
    max_concurrent_requests: int = 10
    timeout_ms: int = 30_000
    cost_multiplier: float = 1.0
    models: tuple[str, ...] = ()
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)

    def serves(self, qualified_model: str) -> bool:
        return qualified_model in self.models or qualified_model.split(":", 1)[0] == self.id


@dataclass(slots=True)
class FallbackRequest:
    """Provider-agnostic request executed with automatic fallback."""

    model: str
    messages: list[LLMMessage]
    alternative_models: list[str] = field(default_factory=list)
    temperature: float = 0.7
    max_tokens: int | None = None
    tools: list[dict[str, Any]] | None = None
    tool_choice: str | dict[str, Any] | None = None
    response_format: str | dict[str, Any] | None = None
    abort_signal: asyncio.Event | None = None
    preferred_providers: list[str] = field(default_factory=list)
    excluded_providers: list[str] = field(default_factory=list)
    max_cost_usd: float | None = None
    max_latency_ms: float | None = None
    request_id: str = ""

    @property
    def requested_models(self) -> list[str]:
        return [self.model, *self.alternative_models]


@dataclass(slots=True)
class FallbackResult:
    """Successful completion with full routing and repair provenance."""

    text: str
    usage: LLMUsage
    provider_used: str
    model_used: str
    attempts_count: int
    failed_providers: list[str]
    total_latency_ms: float
    routing_reason: str
    provider_latency_ms: float = 0.0
    attempts: list[ProviderAttempt] = field(default_factory=list)
    finish_reason: str | None = None
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    from_cache: bool = False
    routing_decision: RoutingDecision | None = None
    validation: ValidationResult | None = None

    @property
    def repair_attempts(self) -> int:
        return self.validation.repair_attempts if self.validation else 0
