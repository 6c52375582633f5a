from __future__ import annotations

import time
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from orchestrator.api.dependencies import get_orchestrator
from orchestrator.application.services.orchestrator import LLMOrchestrator
from orchestrator.core.logging import get_logger
from orchestrator.domain.adapters import LLMMessage, MessageRole
from orchestrator.domain.models import ModelSpecialty
from orchestrator.domain.routing import (
    CostSensitivity,
    RequestContext,
    RequestPriority,
    RoutingConstraints,
    RoutingRequest,
    UserPreferences,
    UserProfile,
    UserTier,
)

router = APIRouter(prefix="/v1", tags=["complete"])
logger = get_logger(__name__)


class MessageBody(BaseModel):
    role: MessageRole
    content: str
    name: str | None = None


class ConstraintsBody(BaseModel):
    max_cost_usd: float | None = None
    max_latency_ms: float | None = None
    min_quality: float | None = Field(default=None, ge=0.0, le=100.0)
    preferred_providers: list[str] = Field(default_factory=list)
    excluded_providers: list[str] = Field(default_factory=list)
    requires_json: bool = False
    requires_tool_calls: bool = False
    requires_streaming: bool = False


class UserBody(BaseModel):
    id: str = "anonymous"
    tier: UserTier = UserTier.FREE
    daily_budget_usd: float | None = None
    used_budget_usd: float = Field(default=0.0, ge=0.0)
    preferred_providers: list[str] = Field(default_factory=list)
    cost_sensitivity: CostSensitivity = CostSensitivity.MEDIUM
    quality_over_speed: bool = False


class CompleteRequestBody(BaseModel):
    """Body of ``POST /v1/complete``."""
    prompt: str = Field(..., min_length=1)
    request_id: str | None = None
    messages: list[MessageBody] = Field(default_factory=list)
    task: ModelSpecialty = ModelSpecialty.GENERAL
    priority: RequestPriority = RequestPriority.NORMAL
    constraints: ConstraintsBody = Field(default_factory=ConstraintsBody)
    user: UserBody = Field(default_factory=UserBody)
    workflow_id: str | None = None
    node_id: str | None = None
    session_id: str | None = None
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)
    tools: list[dict[str, Any]] = Field(default_factory=list)
    tool_choice: str | dict[str, Any] | None = None
    response_schema: dict[str, Any] | None = None
    cache_enabled: bool = True
    cache_ttl_seconds: int | None = Field(default=None, gt=0)

    def to_routing_request(self) -> RoutingRequest:
        c = self.constraints
        return RoutingRequest(
            id=self.request_id or str(uuid4()),
            prompt=self.prompt,
            task=self.task,
            priority=self.priority,
            constraints=RoutingConstraints(
                max_cost_usd=c.max_cost_usd,
                max_latency_ms=c.max_latency_ms,
                min_quality=c.min_quality,
                preferred_providers=tuple(c.preferred_providers),
                excluded_providers=tuple(c.excluded_providers),
                requires_json=c.requires_json or self.response_schema is not None,
                requires_tool_calls=c.requires_tool_calls or bool(self.tools),
                requires_streaming=c.requires_streaming,
            ),
            context=RequestContext(
                workflow_id=self.workflow_id,
                node_id=self.node_id,
                user_id=self.user.id,
                session_id=self.session_id,
            ),
            user=UserProfile(
                id=self.user.id,
                tier=self.user.tier,
                daily_budget_usd=self.user.daily_budget_usd,
                used_budget_usd=self.user.used_budget_usd,
                preferences=UserPreferences(
                    preferred_providers=tuple(self.user.preferred_providers),
                    cost_sensitivity=self.user.cost_sensitivity,
                    quality_over_speed=self.user.quality_over_speed,
                ),
            ),
            messages=tuple(
                LLMMessage(role=m.role, content=m.content, name=m.name) for m in self.messages
            ),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            tools=tuple(self.tools),
            tool_choice=self.tool_choice,
            response_schema=self.response_schema,
            cache_enabled=self.cache_enabled,
            cache_ttl_seconds=self.cache_ttl_seconds,
        )


class ValidationBody(BaseModel):
    is_valid: bool
    repair_attempts: int
    errors: list[str]
    data: Any = None


class CompleteResponseBody(BaseModel):
    request_id: str
    text: str
    provider_used: str
    model_used: str
    attempts_count: int
    failed_providers: list[str]
    routing_reason: str
    strategy: str | None = None
    from_cache: bool
    total_latency_ms: float
    usage: dict[str, float]
    finish_reason: str | None = None
    tool_calls: list[dict[str, Any]] = Field(default_factory=list)
    validation: ValidationBody | None = None


@router.post("/complete", response_model=CompleteResponseBody)
async def complete(
    body: CompleteRequestBody,
    orchestrator: LLMOrchestrator = Depends(get_orchestrator),
) -> CompleteResponseBody:
    """Route and execute one completion with fallback, budget and repair."""

    started_ns = time.perf_counter_ns()
    routing_request = body.to_routing_request()
    result = await orchestrator.complete(routing_request)

    validation = None
    if result.validation is not None:
        validation = ValidationBody(
            is_valid=result.validation.is_valid,
            repair_attempts=result.validation.repair_attempts,
            errors=result.validation.errors,
            data=result.validation.repaired_data,
        )

    logger.info(
        "Completed request %s via %s in %.1fms",
        routing_request.id,
        result.model_used,
        (time.perf_counter_ns() - started_ns) / 1_000_000,
    )

    return CompleteResponseBody(
        request_id=routing_request.id,
        text=result.text,
        provider_used=result.provider_used,
        model_used=result.model_used,
        attempts_count=result.attempts_count,
        failed_providers=result.failed_providers,
        routing_reason=result.routing_reason,
        strategy=result.routing_decision.strategy.value if result.routing_decision else None,
        from_cache=result.from_cache,
        total_latency_ms=result.total_latency_ms,
        usage={
            "prompt_tokens": result.usage.prompt_tokens,
            "completion_tokens": result.usage.completion_tokens,
            "total_tokens": result.usage.total_tokens,
            "cost_usd": result.usage.cost_usd,
        },
        finish_reason=result.finish_reason,
        tool_calls=result.tool_calls,
        validation=validation,
    )
