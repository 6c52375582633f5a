from __future__ import annotations

from orchestrator.core.settings import Settings
from orchestrator.domain.circuit_breaker import CircuitBreakerConfig
from orchestrator.domain.fallback import ProviderConfig
from orchestrator.domain.models import (
    ModelAvailability,
    ModelCapabilities,
    ModelLimits,
    ModelPerformance,
    ModelPricing,
    ModelProfile,
    ModelSpecialty as S,
    ModelTier,
)

_LANGS = ["en", "es", "fr", "de", "it", "pt", "ja", "ko", "zh"]


def _accuracy(*scores: float) -> dict[S, float]:
    order = [
        S.GENERAL, S.CODING, S.MATH, S.REASONING, S.CREATIVE_WRITING,
        S.SUMMARIZATION, S.TRANSLATION, S.QA, S.CLASSIFICATION, S.EXTRACTION,
    ]
    return dict(zip(order, scores))


def default_model_profiles() -> list[ModelProfile]:
    """Seed catalog. Prices are USD per 1K tokens."""

    return [
        ModelProfile(
            provider="openai",
            model_id="gpt-4o-mini",
            display_name="GPT-4o Mini",
            tier=ModelTier.FAST,
            capabilities=ModelCapabilities(
                max_context_tokens=128_000,
                supports_json=True,
                supports_tool_calls=True,
                supports_streaming=True,
                languages=[*_LANGS, "ru"],
                specialties=[S.GENERAL, S.CODING, S.REASONING, S.QA, S.CLASSIFICATION],
            ),
            performance=ModelPerformance(
                average_latency_ms=800,
                tokens_per_second=150,
                quality_score=85,
                reliability_score=98,
                accuracy_by_task=_accuracy(85, 80, 75, 85, 75, 90, 80, 88, 90, 85),
            ),
            pricing=ModelPricing(input_per_1k=0.00015, output_per_1k=0.0006),
            limits=ModelLimits(1000, 30_000, 200_000, 200_000, 2_000_000, 100),
            availability=ModelAvailability(["us-east-1", "us-west-2", "eu-west-1"], 99.9),
        ),
        ModelProfile(
            provider="openai",
            model_id="gpt-4",
            display_name="GPT-4",
            tier=ModelTier.ACCURATE,
            capabilities=ModelCapabilities(
                max_context_tokens=128_000,
                supports_json=True,
                supports_tool_calls=True,
                supports_streaming=True,
                languages=[*_LANGS, "ru"],
                specialties=[S.GENERAL, S.CODING, S.MATH, S.REASONING, S.CREATIVE_WRITING, S.QA],
            ),
            performance=ModelPerformance(
                average_latency_ms=2500,
                tokens_per_second=50,
                quality_score=95,
                reliability_score=99,
                accuracy_by_task=_accuracy(95, 95, 90, 98, 90, 95, 90, 96, 94, 92),
            ),
            pricing=ModelPricing(input_per_1k=0.03, output_per_1k=0.06),
            limits=ModelLimits(500, 10_000, 40_000, 40_000, 300_000, 50),
            availability=ModelAvailability(["us-east-1", "us-west-2", "eu-west-1"], 99.95),
        ),
        ModelProfile(
            provider="anthropic",
            model_id="claude-3-haiku",
            display_name="Claude 3 Haiku",
            tier=ModelTier.ULTRA_FAST,
            capabilities=ModelCapabilities(
                max_context_tokens=200_000,
                supports_json=True,
                supports_tool_calls=False,
                supports_streaming=True,
                languages=list(_LANGS),
                specialties=[S.GENERAL, S.SUMMARIZATION, S.QA, S.CLASSIFICATION, S.EXTRACTION],
            ),
            performance=ModelPerformance(
                average_latency_ms=400,
                tokens_per_second=200,
                quality_score=80,
                reliability_score=97,
                accuracy_by_task=_accuracy(80, 70, 70, 78, 75, 88, 85, 85, 88, 90),
            ),
            pricing=ModelPricing(input_per_1k=0.00025, output_per_1k=0.00125),
            limits=ModelLimits(1000, 40_000, 300_000, 300_000, 5_000_000, 100),
            availability=ModelAvailability(["us-east-1", "us-west-2", "eu-west-1"], 99.8),
        ),
        ModelProfile(
            provider="google",
            model_id="gemini-pro",
            display_name="Gemini Pro",
            tier=ModelTier.BALANCED,
            capabilities=ModelCapabilities(
                max_context_tokens=128_000,
                supports_json=True,
                supports_tool_calls=True,
                supports_streaming=True,
                languages=[*_LANGS, "ru", "hi", "ar"],
                specialties=[S.GENERAL, S.CODING, S.MATH, S.REASONING, S.TRANSLATION],
            ),
            performance=ModelPerformance(
                average_latency_ms=1200,
                tokens_per_second=100,
                quality_score=88,
                reliability_score=96,
                accuracy_by_task=_accuracy(88, 85, 88, 90, 80, 87, 92, 89, 87, 85),
            ),
            pricing=ModelPricing(input_per_1k=0.001, output_per_1k=0.002),
            limits=ModelLimits(600, 15_000, 100_000, 120_000, 1_000_000, 60),
            availability=ModelAvailability(["us-central1", "europe-west1", "asia-east1"], 99.7),
        ),
    ]


def default_provider_configs(settings: Settings) -> list[ProviderConfig]:
    breaker = CircuitBreakerConfig(
        failure_threshold=settings.breaker_failure_threshold,
        timeout_ms=settings.breaker_timeout_ms,
        half_open_max_requests=settings.breaker_half_open_max_requests,
    )
    return [
        ProviderConfig(
            id="openai",
            priority=10,
            max_concurrent_requests=10,
            timeout_ms=30_000,
            cost_multiplier=1.0,
            models=("openai:gpt-4o-mini", "openai:gpt-4", "openai:gpt-4.1", "openai:o3-mini"),
            circuit_breaker=breaker,
        ),
        ProviderConfig(
            id="anthropic",
            priority=8,
            max_concurrent_requests=8,
            timeout_ms=25_000,
            cost_multiplier=1.2,
            models=("anthropic:claude-3-5-sonnet", "anthropic:claude-3-haiku"),
            circuit_breaker=breaker,
        ),
        ProviderConfig(
            id="google",
            priority=6,
            max_concurrent_requests=6,
            timeout_ms=20_000,
            cost_multiplier=0.8,
            models=("google:gemini-pro", "google:gemini-1.5-pro", "google:gemini-1.5-flash"),
            circuit_breaker=breaker,
        ),
    ]
