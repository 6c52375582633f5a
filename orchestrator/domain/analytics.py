from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from orchestrator.domain.circuit_breaker import CircuitState
from orchestrator.domain.routing import RoutingReason


class ModelUsage(BaseModel):
    """Usage of one model derived from the routing history."""
    model: str
    requests: int = 0
    total_cost: float = 0.0
    average_latency_ms: float = 0.0
    success_rate: float = Field(default=0.0, ge=0.0, le=100.0)


class ReasonShare(BaseModel):
    reason: RoutingReason
    count: int
    percentage: float


class DailyCost(BaseModel):
    date: str = Field(..., description="UTC date, YYYY-MM-DD")
    total_cost: float = 0.0
    request_count: int = 0


class ModelAnalytics(BaseModel):
    model_usage: list[ModelUsage] = Field(default_factory=list)
    cost_trends: list[DailyCost] = Field(default_factory=list)
    routing_reasons: list[ReasonShare] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class OptimizationStrategy(str, Enum):
    PROMPT_COMPRESSION = "prompt_compression"
    CACHING = "caching"
    MODEL_SWITCHING = "model_switching"
    BATCH_PROCESSING = "batch_processing"


class OptimizationRecommendation(BaseModel):
    strategy: OptimizationStrategy
    description: str
    estimated_savings: float
    implementation_complexity: str = Field(..., description="low, medium, or high")
    risk_level: str = Field(..., description="low, medium, or high")


class CostOptimization(BaseModel):
    """Savings opportunities found in one user's routing history."""
    strategy: OptimizationStrategy = OptimizationStrategy.CACHING
    potential_savings: float = 0.0
    realized_savings: float = 0.0
    recommendations: list[OptimizationRecommendation] = Field(default_factory=list)


class ProviderStatus(BaseModel):
    """Point-in-time view of one registered provider."""
    provider: str
    priority: int
    circuit_state: CircuitState
    available: bool
    concurrent_requests: int
    max_concurrent_requests: int
    success_rate: float
    avg_latency_ms: float
    avg_cost_usd: float
    total_requests: int
    performance_score: float


class ProviderRecommendation(BaseModel):
    provider: str
    severity: str = Field(..., description="info, warning, or critical")
    message: str
