from __future__ import annotations

import json
import math
from collections import Counter, defaultdict, deque
from collections.abc import Callable
from datetime import datetime, timezone

from orchestrator.application.services.provider_metrics import ProviderMetricsRegistry
from orchestrator.core.logging import get_logger
from orchestrator.domain.analytics import (
    CostOptimization,
    DailyCost,
    ModelAnalytics,
    ModelUsage,
    OptimizationRecommendation,
    OptimizationStrategy,
    ReasonShare,
)
from orchestrator.domain.errors import InvalidRequestError, NoAvailableModelError
from orchestrator.domain.models import ModelProfile
from orchestrator.domain.routing import (
    CostSensitivity,
    RequestPriority,
    RoutingDecision,
    RoutingHistoryEntry,
    RoutingOutcome,
    RoutingReason,
    RoutingRequest,
    RoutingStrategy,
    ScoredModel,
)
from orchestrator.domain.services.model_catalog import ModelCatalog
from orchestrator.monitoring.metrics import ROUTING_DECISIONS_TOTAL

logger = get_logger(__name__)

CHARS_PER_TOKEN = 4
MAX_ALTERNATIVES = 3

_STRATEGY_REASONS = {
    RoutingStrategy.COST_OPTIMIZED: RoutingReason.COST_OPTIMIZED,
    RoutingStrategy.SPEED_OPTIMIZED: RoutingReason.SPEED_OPTIMIZED,
    RoutingStrategy.QUALITY_OPTIMIZED: RoutingReason.QUALITY_OPTIMIZED,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def estimate_prompt_tokens(prompt: str) -> int:
    return math.ceil(len(prompt) / CHARS_PER_TOKEN)


class RoutingEngine:
    """Multi-criteria model selection over the catalog.

    Every candidate is scored on cost, speed, quality, reliability and
    availability; the strategy chosen for the request decides the weights.
    Decisions are kept in a bounded history used for analytics.
    """

    def __init__(
        self,
        catalog: ModelCatalog,
        metrics: ProviderMetricsRegistry,
        *,
        cost_reference_usd: float = 1.0,
        latency_reference_ms: float = 10_000.0,
        assumed_output_tokens: int = 150,
        history_size: int = 10_000,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._catalog = catalog
        self._metrics = metrics
        self._cost_reference = cost_reference_usd
        self._latency_reference = latency_reference_ms
        self._output_tokens = assumed_output_tokens
        self._now = now
        self._history: deque[RoutingHistoryEntry] = deque(maxlen=history_size)

    # Estimation

    def estimate_cost(self, model: ModelProfile, request: RoutingRequest) -> float:
        pricing = model.pricing
        prompt_tokens = estimate_prompt_tokens(request.prompt)
        return (
            prompt_tokens / 1000 * pricing.input_per_1k
            + self._output_tokens / 1000 * pricing.output_per_1k
            + pricing.per_request
        )

    def estimate_latency(self, model: ModelProfile, request: RoutingRequest) -> float:
        length_penalty = max(0.0, (len(request.prompt) - 1000) / 1000) * 200
        return model.performance.average_latency_ms + length_penalty

    def estimate_quality(self, model: ModelProfile, request: RoutingRequest) -> float:
        return model.accuracy_for(request.task)

    # Selection

    def route(self, request: RoutingRequest) -> RoutingDecision:
        """Pick the best model for ``request`` and record the decision."""

        self._validate(request)

        candidates = self.candidates(request)
        if not candidates:
            raise NoAvailableModelError(
                f"No available models match the constraints of request {request.id}",
            )

        strategy = self.select_strategy(request)
        ranked = self._score(candidates, request, strategy)
        best = ranked[0]
        selected = best.model

        decision = RoutingDecision(
            request_id=request.id,
            selected_model=selected,
            reason=self._reason(selected, request, strategy),
            strategy=strategy,
            alternatives=tuple(ranked[1 : 1 + MAX_ALTERNATIVES]),
            estimated_cost_usd=self.estimate_cost(selected, request),
            estimated_latency_ms=self.estimate_latency(selected, request),
            estimated_quality=self.estimate_quality(selected, request),
            confidence=best.score,
        )

        self._history.append(
            RoutingHistoryEntry(request=request, decision=decision, timestamp=self._now()),
        )
        ROUTING_DECISIONS_TOTAL.labels(
            strategy=strategy.value,
            reason=decision.reason.value,
        ).inc()
        logger.info(
            "Routed request %s to %s (%s)",
            request.id,
            selected.qualified_name,
            decision.reason.value,
            extra={
                "orch_extra": json.dumps(
                    {
                        "request_id": request.id,
                        "model": selected.qualified_name,
                        "strategy": strategy.value,
                        "score": round(best.score, 2),
                        "candidates": len(candidates),
                    },
                ),
            },
        )
        return decision

    def candidates(self, request: RoutingRequest) -> list[ModelProfile]:
        """Catalog entries that pass every hard constraint of ``request``."""

        constraints = request.constraints
        prompt_tokens = estimate_prompt_tokens(request.prompt)
        result: list[ModelProfile] = []

        for model in self._catalog.list_models():
            caps = model.capabilities
            if constraints.requires_json and not caps.supports_json:
                continue
            if constraints.requires_tool_calls and not caps.supports_tool_calls:
                continue
            if constraints.requires_streaming and not caps.supports_streaming:
                continue
            if constraints.preferred_providers and model.provider not in constraints.preferred_providers:
                continue
            if model.provider in constraints.excluded_providers:
                continue
            if prompt_tokens > caps.max_context_tokens:
                continue
            if (
                constraints.max_cost_usd is not None
                and self.estimate_cost(model, request) > constraints.max_cost_usd
            ):
                continue
            if (
                constraints.max_latency_ms is not None
                and self.estimate_latency(model, request) > constraints.max_latency_ms
            ):
                continue
            if (
                constraints.min_quality is not None
                and self.estimate_quality(model, request) < constraints.min_quality
            ):
                continue
            result.append(model)

        return result

    @staticmethod
    def select_strategy(request: RoutingRequest) -> RoutingStrategy:
        preferences = request.user.preferences
        if preferences.cost_sensitivity == CostSensitivity.HIGH:
            return RoutingStrategy.COST_OPTIMIZED
        if request.priority == RequestPriority.CRITICAL or request.constraints.max_latency_ms is not None:
            return RoutingStrategy.SPEED_OPTIMIZED
        if preferences.quality_over_speed:
            return RoutingStrategy.QUALITY_OPTIMIZED
        return RoutingStrategy.BALANCED

    @staticmethod
    def _validate(request: RoutingRequest) -> None:
        if not request.prompt or not request.prompt.strip():
            raise InvalidRequestError("Request must include a non-empty prompt")
        constraints = request.constraints
        if constraints.max_cost_usd is not None and constraints.max_cost_usd <= 0:
            raise InvalidRequestError("Max cost constraint must be positive")
        if constraints.max_latency_ms is not None and constraints.max_latency_ms <= 0:
            raise InvalidRequestError("Max latency constraint must be positive")

    def _sub_scores(self, model: ModelProfile, request: RoutingRequest) -> dict[str, float]:
        observed = self._metrics.observed_success_rate(model.provider)
        reliability = observed if observed is not None else model.performance.reliability_score / 100
        return {
            "cost": max(0.0, 1 - self.estimate_cost(model, request) / self._cost_reference),
            "speed": max(0.0, 1 - self.estimate_latency(model, request) / self._latency_reference),
            "quality": self.estimate_quality(model, request) / 100,
            "reliability": reliability,
            "availability": model.availability.uptime_percent / 100,
        }

    def _score(
        self,
        models: list[ModelProfile],
        request: RoutingRequest,
        strategy: RoutingStrategy,
    ) -> list[ScoredModel]:
        weights = strategy.weights
        scored: list[ScoredModel] = []
        for model in models:
            sub = self._sub_scores(model, request)
            weighted = (
                sub["cost"] * weights.cost
                + sub["speed"] * weights.speed
                + sub["quality"] * weights.quality
                + sub["reliability"] * weights.reliability
                + sub["availability"] * weights.availability
            )
            top_factors = sorted(sub, key=lambda k: sub[k], reverse=True)[:2]
            scored.append(
                ScoredModel(
                    model=model,
                    score=weighted * 100,
                    reasoning=(
                        f"Selected for {' and '.join(top_factors)} optimization "
                        f"({strategy.value} strategy)"
                    ),
                ),
            )
        scored.sort(key=lambda s: (-s.score, s.model.qualified_name))
        return scored

    @staticmethod
    def _reason(
        model: ModelProfile,
        request: RoutingRequest,
        strategy: RoutingStrategy,
    ) -> RoutingReason:
        if strategy in _STRATEGY_REASONS:
            return _STRATEGY_REASONS[strategy]
        if request.task in model.capabilities.specialties:
            return RoutingReason.TASK_SPECIALIZED
        return RoutingReason.BALANCED

    # History and analytics

    @property
    def history(self) -> list[RoutingHistoryEntry]:
        return list(self._history)

    def record_outcome(
        self,
        request_id: str,
        *,
        success: bool,
        latency_ms: float,
        cost_usd: float,
        provider_used: str | None = None,
    ) -> bool:
        """Attach the observed outcome to the newest decision for ``request_id``."""

        for entry in reversed(self._history):
            if entry.request.id == request_id:
                entry.outcome = RoutingOutcome(
                    success=success,
                    actual_latency_ms=latency_ms,
                    actual_cost_usd=cost_usd,
                    provider_used=provider_used,
                )
                return True
        return False

    def get_model_analytics(self) -> ModelAnalytics:
        history = list(self._history)
        if not history:
            return ModelAnalytics()

        usage: dict[str, ModelUsage] = {}
        latency_sums: dict[str, float] = defaultdict(float)
        successes: Counter[str] = Counter()
        by_day: dict[str, DailyCost] = {}

        for entry in history:
            decision = entry.decision
            name = decision.selected_model.qualified_name
            stats = usage.setdefault(name, ModelUsage(model=name))
            cost = entry.outcome.actual_cost_usd if entry.outcome else decision.estimated_cost_usd
            latency = (
                entry.outcome.actual_latency_ms if entry.outcome else decision.estimated_latency_ms
            )
            stats.requests += 1
            stats.total_cost += cost
            latency_sums[name] += latency
            if entry.outcome and entry.outcome.success:
                successes[name] += 1

            day = entry.timestamp.astimezone(timezone.utc).date().isoformat()
            bucket = by_day.setdefault(day, DailyCost(date=day))
            bucket.total_cost += cost
            bucket.request_count += 1

        for name, stats in usage.items():
            stats.average_latency_ms = latency_sums[name] / stats.requests
            stats.success_rate = successes[name] / stats.requests * 100

        model_usage = sorted(usage.values(), key=lambda u: u.requests, reverse=True)

        reason_counts = Counter(entry.decision.reason for entry in history)
        routing_reasons = [
            ReasonShare(reason=reason, count=count, percentage=count / len(history) * 100)
            for reason, count in reason_counts.most_common()
        ]

        recommendations: list[str] = []
        top = model_usage[0]
        if top.average_latency_ms > 5000:
            recommendations.append(
                f"Consider faster alternatives to {top.model} for latency-sensitive tasks",
            )
        if top.success_rate < 95:
            recommendations.append(
                f"Monitor {top.model} reliability - success rate below 95%",
            )
        if sum(u.total_cost for u in model_usage) > 100:
            recommendations.append(
                "High usage detected - consider implementing cost optimization strategies",
            )

        return ModelAnalytics(
            model_usage=model_usage,
            cost_trends=[by_day[d] for d in sorted(by_day)],
            routing_reasons=routing_reasons,
            recommendations=recommendations,
        )

    def get_cost_optimization(self, user_id: str) -> CostOptimization:
        history = [
            entry
            for entry in self._history
            if (entry.request.context.user_id or entry.request.user.id) == user_id
        ]
        if not history:
            return CostOptimization()

        recommendations: list[OptimizationRecommendation] = []

        long_prompts = [h for h in history if len(h.request.prompt) > 2000]
        if long_prompts:
            recommendations.append(
                OptimizationRecommendation(
                    strategy=OptimizationStrategy.PROMPT_COMPRESSION,
                    description=(
                        f"{len(long_prompts)} requests with prompts >2000 chars "
                        "could benefit from compression"
                    ),
                    estimated_savings=len(long_prompts) * 0.015,
                    implementation_complexity="medium",
                    risk_level="low",
                ),
            )

        seen: set[str] = set()
        duplicates = 0
        for entry in history:
            if entry.request.prompt in seen:
                duplicates += 1
            seen.add(entry.request.prompt)
        if duplicates:
            recommendations.append(
                OptimizationRecommendation(
                    strategy=OptimizationStrategy.CACHING,
                    description=f"{duplicates} duplicate prompts could be cached",
                    estimated_savings=duplicates * 0.8,
                    implementation_complexity="low",
                    risk_level="low",
                ),
            )

        expensive = [h for h in history if h.decision.estimated_cost_usd > 0.05]
        if expensive:
            recommendations.append(
                OptimizationRecommendation(
                    strategy=OptimizationStrategy.MODEL_SWITCHING,
                    description=f"{len(expensive)} expensive requests could use cheaper models",
                    estimated_savings=len(expensive) * 0.03,
                    implementation_complexity="medium",
                    risk_level="medium",
                ),
            )

        batchable = [
            h
            for h in history
            if h.request.priority == RequestPriority.LOW and h.decision.estimated_latency_ms < 2000
        ]
        if len(batchable) > 5:
            recommendations.append(
                OptimizationRecommendation(
                    strategy=OptimizationStrategy.BATCH_PROCESSING,
                    description=f"{len(batchable)} low-priority requests could be batched",
                    estimated_savings=len(batchable) * 0.02,
                    implementation_complexity="high",
                    risk_level="low",
                ),
            )

        if not recommendations:
            return CostOptimization()

        recommendations.sort(key=lambda r: r.estimated_savings, reverse=True)
        return CostOptimization(
            strategy=recommendations[0].strategy,
            potential_savings=sum(r.estimated_savings for r in recommendations),
            recommendations=recommendations,
        )
