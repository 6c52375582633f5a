from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from orchestrator.domain.adapters import LLMMessage, MessageRole
from orchestrator.domain.models import ModelProfile, ModelSpecialty


class RequestPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class UserTier(str, Enum):
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class CostSensitivity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True, slots=True)
class RoutingWeights:
    """Weight vector over the five scoring criteria; sums to 1."""

    cost: float
    speed: float
    quality: float
    reliability: float
    availability: float


class RoutingStrategy(str, Enum):
    COST_OPTIMIZED = "cost_optimized"
    SPEED_OPTIMIZED = "speed_optimized"
    QUALITY_OPTIMIZED = "quality_optimized"
    BALANCED = "balanced"

    @property
    def weights(self) -> RoutingWeights:
        return STRATEGY_WEIGHTS[self]


STRATEGY_WEIGHTS: dict[RoutingStrategy, RoutingWeights] = {
    RoutingStrategy.COST_OPTIMIZED: RoutingWeights(
        cost=0.7, speed=0.1, quality=0.1, reliability=0.05, availability=0.05,
    ),
    RoutingStrategy.SPEED_OPTIMIZED: RoutingWeights(
        cost=0.1, speed=0.7, quality=0.1, reliability=0.05, availability=0.05,
    ),
    RoutingStrategy.QUALITY_OPTIMIZED: RoutingWeights(
        cost=0.05, speed=0.1, quality=0.7, reliability=0.1, availability=0.05,
    ),
    RoutingStrategy.BALANCED: RoutingWeights(
        cost=0.3, speed=0.3, quality=0.3, reliability=0.05, availability=0.05,
    ),
}


class RoutingReason(str, Enum):
    COST_OPTIMIZED = "cost_optimized"
    SPEED_OPTIMIZED = "speed_optimized"
    QUALITY_OPTIMIZED = "quality_optimized"
    TASK_SPECIALIZED = "task_specialized"
    BALANCED = "balanced"


@dataclass(frozen=True, slots=True)
class RoutingConstraints:
    max_cost_usd: float | None = None
    max_latency_ms: float | None = None
    min_quality: float | None = None
    preferred_providers: tuple[str, ...] = ()
    excluded_providers: tuple[str, ...] = ()
    requires_json: bool = False
    requires_tool_calls: bool = False
    requires_streaming: bool = False


@dataclass(frozen=True, slots=True)
class RequestContext:
    workflow_id: str | None = None
    node_id: str | None = None
    user_id: str | None = None
    session_id: str | None = None


@dataclass(frozen=True, slots=True)
class UserPreferences:
    preferred_providers: tuple[str, ...] = ()
    cost_sensitivity: CostSensitivity = CostSensitivity.MEDIUM
    quality_over_speed: bool = False


@dataclass(frozen=True, slots=True)
class UserProfile:
    id: str = "anonymous"
    tier: UserTier = UserTier.FREE
    daily_budget_usd: float | None = None
    used_budget_usd: float = 0.0
    preferences: UserPreferences = field(default_factory=UserPreferences)


@dataclass(frozen=True, slots=True)
class RoutingRequest:
    """Immutable description of a completion the caller wants served.

    Args:
        id: Caller supplied request identifier.
        prompt: The user prompt; also the basis for cost/latency estimates.
        task: Specialty used for accuracy lookups.
        messages: Full conversation; defaults to a single user message.
        response_schema: JSON schema the output must satisfy, if structured.
        abort_signal: Set by the caller to stop further provider attempts.
    """

    id: str
    prompt: str
    task: ModelSpecialty = ModelSpecialty.GENERAL
    priority: RequestPriority = RequestPriority.NORMAL
    constraints: RoutingConstraints = field(default_factory=RoutingConstraints)
    context: RequestContext = field(default_factory=RequestContext)
    user: UserProfile = field(default_factory=UserProfile)
    messages: tuple[LLMMessage, ...] = ()
    temperature: float = 0.7
    max_tokens: int | None = None
    tools: tuple[dict[str, Any], ...] = ()
    tool_choice: str | dict[str, Any] | None = None
    response_schema: dict[str, Any] | None = None
    cache_enabled: bool = True
    cache_ttl_seconds: int | None = None
    abort_signal: asyncio.Event | None = field(default=None, compare=False)

    def effective_messages(self) -> list[LLMMessage]:
        if self.messages:
            return list(self.messages)
        return [LLMMessage(role=MessageRole.USER, content=self.prompt)]

    def cache_prompt(self) -> str:
        """Text that identifies this request's prompt for caching."""
        return "\n".join(f"{m.role.value}: {m.content}" for m in self.effective_messages())


@dataclass(frozen=True, slots=True)
class ScoredModel:
    model: ModelProfile
    score: float
    reasoning: str


@dataclass(frozen=True, slots=True)
class RoutingDecision:
    """Final routing decision taken by the routing engine."""

    request_id: str
    selected_model: ModelProfile
    reason: RoutingReason
    strategy: RoutingStrategy
    alternatives: tuple[ScoredModel, ...]
    estimated_cost_usd: float
    estimated_latency_ms: float
    estimated_quality: float
    confidence: float

    @property
    def ranked_models(self) -> list[ModelProfile]:
        return [self.selected_model, *(alt.model for alt in self.alternatives)]


@dataclass(slots=True)
class RoutingOutcome:
    success: bool
    actual_latency_ms: float
    actual_cost_usd: float
    provider_used: str | None = None


@dataclass(slots=True)
class RoutingHistoryEntry:
    request: RoutingRequest
    decision: RoutingDecision
    timestamp: datetime
    outcome: RoutingOutcome | None = None
