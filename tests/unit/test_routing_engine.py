"""Tests for multi-criteria model selection."""

from __future__ import annotations

import pytest

from orchestrator.application.services.catalog_defaults import default_model_profiles
from orchestrator.application.services.model_catalog import InMemoryModelCatalog
from orchestrator.application.services.provider_metrics import ProviderMetricsRegistry
from orchestrator.application.services.routing_engine import RoutingEngine, estimate_prompt_tokens
from orchestrator.domain.analytics import OptimizationStrategy
from orchestrator.domain.errors import InvalidRequestError, NoAvailableModelError
from orchestrator.domain.routing import (
    CostSensitivity,
    RequestContext,
    RequestPriority,
    RoutingConstraints,
    RoutingReason,
    RoutingRequest,
    RoutingStrategy,
    UserPreferences,
    UserProfile,
)

PROMPT = "Classify this support ticket"


@pytest.fixture
def metrics() -> ProviderMetricsRegistry:
    return ProviderMetricsRegistry()


@pytest.fixture
def engine(metrics) -> RoutingEngine:
    return RoutingEngine(InMemoryModelCatalog(default_model_profiles()), metrics)


def _request(request_id: str = "r1", prompt: str = PROMPT, **overrides) -> RoutingRequest:
    return RoutingRequest(id=request_id, prompt=prompt, **overrides)


def _user(**preferences) -> UserProfile:
    return UserProfile(id="alice", preferences=UserPreferences(**preferences))


class TestStrategySelection:
    def test_default_is_balanced(self):
        assert RoutingEngine.select_strategy(_request()) == RoutingStrategy.BALANCED

    def test_cost_sensitive_user(self):
        request = _request(user=_user(cost_sensitivity=CostSensitivity.HIGH))
        assert RoutingEngine.select_strategy(request) == RoutingStrategy.COST_OPTIMIZED

    def test_critical_priority_or_latency_cap(self):
        assert (
            RoutingEngine.select_strategy(_request(priority=RequestPriority.CRITICAL))
            == RoutingStrategy.SPEED_OPTIMIZED
        )
        capped = _request(constraints=RoutingConstraints(max_latency_ms=5_000))
        assert RoutingEngine.select_strategy(capped) == RoutingStrategy.SPEED_OPTIMIZED

    def test_quality_over_speed(self):
        request = _request(user=_user(quality_over_speed=True))
        assert RoutingEngine.select_strategy(request) == RoutingStrategy.QUALITY_OPTIMIZED


class TestRoute:
    def test_cost_optimized_picks_cheapest_above_quality_floor(self, engine):
        request = _request(
            user=_user(cost_sensitivity=CostSensitivity.HIGH),
            constraints=RoutingConstraints(min_quality=80),
        )
        first = engine.route(request)
        second = engine.route(request)

        assert first.selected_model.qualified_name == "openai:gpt-4o-mini"
        assert first.strategy == RoutingStrategy.COST_OPTIMIZED
        assert first.reason == RoutingReason.COST_OPTIMIZED
        assert second.selected_model.qualified_name == first.selected_model.qualified_name

    def test_speed_optimized_prefers_fastest(self, engine):
        decision = engine.route(_request(priority=RequestPriority.CRITICAL))
        assert decision.selected_model.qualified_name == "anthropic:claude-3-haiku"
        assert decision.reason == RoutingReason.SPEED_OPTIMIZED

    def test_quality_optimized_prefers_most_accurate(self, engine):
        decision = engine.route(_request(user=_user(quality_over_speed=True)))
        assert decision.selected_model.qualified_name == "openai:gpt-4"

    def test_balanced_general_task_is_task_specialized(self, engine):
        decision = engine.route(_request())
        assert decision.reason == RoutingReason.TASK_SPECIALIZED

    def test_alternatives_ranked_and_bounded(self, engine):
        decision = engine.route(_request())
        assert len(decision.alternatives) == 3
        scores = [decision.confidence, *(a.score for a in decision.alternatives)]
        assert scores == sorted(scores, reverse=True)
        assert decision.alternatives[0].reasoning.startswith("Selected for ")
        assert len(decision.ranked_models) == 4

    def test_estimates_match_selected_model(self, engine):
        prompt = "x" * 4_000
        decision = engine.route(_request(prompt=prompt, priority=RequestPriority.CRITICAL))
        model = decision.selected_model
        assert decision.estimated_cost_usd == pytest.approx(
            1_000 / 1000 * model.pricing.input_per_1k + 150 / 1000 * model.pricing.output_per_1k,
        )
        assert decision.estimated_latency_ms == pytest.approx(
            model.performance.average_latency_ms + 600,
        )

    def test_observed_failures_demote_provider(self, engine, metrics):
        for _ in range(10):
            metrics.get("openai").record_request(500, 0.0, success=False)
        decision = engine.route(_request(user=_user(quality_over_speed=True)))
        assert decision.selected_model.provider != "openai"


class TestHardConstraints:
    @pytest.mark.parametrize(
        "constraints",
        [
            RoutingConstraints(max_cost_usd=0.0002),
            RoutingConstraints(max_latency_ms=1_000),
            RoutingConstraints(min_quality=90),
            RoutingConstraints(requires_tool_calls=True, max_latency_ms=1_500),
            RoutingConstraints(requires_json=True, excluded_providers=("anthropic",), min_quality=85),
        ],
    )
    def test_selected_model_satisfies_constraints(self, engine, constraints):
        request = _request(constraints=constraints)
        decision = engine.route(request)
        model = decision.selected_model

        if constraints.max_cost_usd is not None:
            assert engine.estimate_cost(model, request) <= constraints.max_cost_usd
        if constraints.max_latency_ms is not None:
            assert engine.estimate_latency(model, request) <= constraints.max_latency_ms
        if constraints.min_quality is not None:
            assert engine.estimate_quality(model, request) >= constraints.min_quality
        if constraints.requires_tool_calls:
            assert model.capabilities.supports_tool_calls
        if constraints.requires_json:
            assert model.capabilities.supports_json
        assert model.provider not in constraints.excluded_providers

    def test_tool_calls_exclude_models_without_support(self, engine):
        request = _request(constraints=RoutingConstraints(requires_tool_calls=True))
        names = {m.qualified_name for m in engine.candidates(request)}
        assert "anthropic:claude-3-haiku" not in names
        assert names

    def test_excluded_and_preferred_providers(self, engine):
        excluded = _request(constraints=RoutingConstraints(excluded_providers=("openai",)))
        assert all(m.provider != "openai" for m in engine.candidates(excluded))

        preferred = _request(constraints=RoutingConstraints(preferred_providers=("google",)))
        assert [m.qualified_name for m in engine.candidates(preferred)] == ["google:gemini-pro"]

    def test_max_cost_filters_expensive_models(self, engine):
        request = _request(constraints=RoutingConstraints(max_cost_usd=0.001))
        names = {m.qualified_name for m in engine.candidates(request)}
        assert "openai:gpt-4" not in names

    def test_context_window(self, engine):
        prompt = "x" * 600_000
        assert estimate_prompt_tokens(prompt) == 150_000
        names = [m.qualified_name for m in engine.candidates(_request(prompt=prompt))]
        assert names == ["anthropic:claude-3-haiku"]

    def test_unsatisfiable_constraints(self, engine):
        with pytest.raises(NoAvailableModelError):
            engine.route(_request(constraints=RoutingConstraints(min_quality=99.5)))

    @pytest.mark.parametrize(
        "request_kwargs",
        [
            {"prompt": "   "},
            {"constraints": RoutingConstraints(max_cost_usd=0)},
            {"constraints": RoutingConstraints(max_latency_ms=-1)},
        ],
    )
    def test_invalid_requests(self, engine, request_kwargs):
        with pytest.raises(InvalidRequestError):
            engine.route(_request(**request_kwargs))


class TestHistoryAndAnalytics:
    def test_record_outcome(self, engine):
        engine.route(_request("r1"))
        assert engine.record_outcome("r1", success=True, latency_ms=321, cost_usd=0.01)
        assert not engine.record_outcome("missing", success=True, latency_ms=1, cost_usd=0)
        outcome = engine.history[-1].outcome
        assert outcome.actual_latency_ms == 321

    def test_model_analytics(self, engine):
        for i in range(3):
            engine.route(_request(f"r{i}", priority=RequestPriority.CRITICAL))
            engine.record_outcome(f"r{i}", success=i != 0, latency_ms=100, cost_usd=0.5)

        analytics = engine.get_model_analytics()

        usage = analytics.model_usage[0]
        assert usage.model == "anthropic:claude-3-haiku"
        assert usage.requests == 3
        assert usage.total_cost == pytest.approx(1.5)
        assert usage.success_rate == pytest.approx(200 / 3)
        assert analytics.routing_reasons[0].percentage == pytest.approx(100.0)
        assert analytics.cost_trends[0].request_count == 3
        assert any("success rate below 95%" in r for r in analytics.recommendations)

    def test_empty_analytics(self, engine):
        analytics = engine.get_model_analytics()
        assert analytics.model_usage == []

    def test_duplicate_prompts_suggest_caching(self, engine):
        for i in range(3):
            engine.route(_request(f"r{i}", user=_user()))
        engine.route(_request("other", context=RequestContext(user_id="bob")))

        optimization = engine.get_cost_optimization("alice")

        assert optimization.strategy == OptimizationStrategy.CACHING
        assert optimization.recommendations[0].estimated_savings == pytest.approx(1.6)
        assert engine.get_cost_optimization("nobody").recommendations == []
