"""
Operational status routes.
Read-only views over the orchestrator's providers, budget, cache and routing history.
"""
from typing import List, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from orchestrator.api.dependencies import get_orchestrator
from orchestrator.application.services.orchestrator import LLMOrchestrator
from orchestrator.application.services.validation_repair import ValidationStats
from orchestrator.domain.analytics import (
    CostOptimization,
    ModelAnalytics,
    ProviderRecommendation,
    ProviderStatus,
)
from orchestrator.domain.budget import BudgetStatus, UsageAnalytics
from orchestrator.domain.cache import CacheStats

router = APIRouter(tags=["status"])


class ProvidersOverview(BaseModel):
    providers: List[ProviderStatus]
    recommendations: List[ProviderRecommendation]


@router.get("/providers", response_model=ProvidersOverview)
async def get_providers(
    orchestrator: LLMOrchestrator = Depends(get_orchestrator),
) -> ProvidersOverview:
    """Breaker state, load and rolling metrics for every registered provider."""
    executor = orchestrator.executor
    return ProvidersOverview(
        providers=executor.get_provider_status(),
        recommendations=executor.get_provider_recommendations(),
    )


@router.get("/budget", response_model=BudgetStatus)
async def get_budget(
    orchestrator: LLMOrchestrator = Depends(get_orchestrator),
) -> BudgetStatus:
    return orchestrator.ledger.get_budget_status()


@router.get("/budget/usage", response_model=UsageAnalytics)
async def get_budget_usage(
    timeframe: Literal["day", "week", "month"] = Query("day"),
    orchestrator: LLMOrchestrator = Depends(get_orchestrator),
) -> UsageAnalytics:
    return orchestrator.ledger.get_usage_analytics(timeframe)


@router.get("/cache", response_model=CacheStats)
async def get_cache_stats(
    orchestrator: LLMOrchestrator = Depends(get_orchestrator),
) -> CacheStats:
    return orchestrator.cache.stats()


@router.get("/validation", response_model=ValidationStats)
async def get_validation_stats(
    orchestrator: LLMOrchestrator = Depends(get_orchestrator),
) -> ValidationStats:
    return orchestrator.validator.get_stats()


@router.get("/routing/analytics", response_model=ModelAnalytics)
async def get_routing_analytics(
    orchestrator: LLMOrchestrator = Depends(get_orchestrator),
) -> ModelAnalytics:
    """Model usage, daily cost trend and routing reason distribution."""
    return orchestrator.router.get_model_analytics()


@router.get("/routing/optimizations/{user_id}", response_model=CostOptimization)
async def get_cost_optimizations(
    user_id: str,
    orchestrator: LLMOrchestrator = Depends(get_orchestrator),
) -> CostOptimization:
    return orchestrator.router.get_cost_optimization(user_id)
