from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from orchestrator.domain.errors import BudgetLimitKind


class AlertThresholds(BaseModel):
    """Soft alert levels, as percentages of the daily and monthly ceilings."""
    daily: float = Field(default=80.0, ge=0.0)
    monthly: float = Field(default=85.0, ge=0.0)


class BudgetConfig(BaseModel):
    """Spend ceilings enforced by the budget ledger."""
    daily_limit_usd: float = Field(default=100.0, gt=0.0)
    monthly_limit_usd: float = Field(default=2000.0, gt=0.0)
    per_user_daily_limit_usd: float | None = Field(default=50.0, gt=0.0)
    per_workflow_limit_usd: float | None = Field(default=200.0, gt=0.0)
    alert_thresholds: AlertThresholds = Field(default_factory=AlertThresholds)
    emergency_stop_threshold: float = Field(default=95.0, ge=0.0)


class BudgetStatus(BaseModel):
    """Spend snapshot derived from the usage ledger."""
    current_daily_spend: float
    current_monthly_spend: float
    daily_limit: float
    monthly_limit: float
    daily_percentage_used: float
    monthly_percentage_used: float
    is_over_budget: bool
    should_alert: bool
    emergency_stop: bool
    remaining_daily_budget: float
    remaining_monthly_budget: float


class BudgetCheckResult(BaseModel):
    allowed: bool
    reason: str | None = None
    limit_kind: BudgetLimitKind | None = None
    budget_status: BudgetStatus

    @model_validator(mode="after")
    def _kind_set_on_rejection(self) -> BudgetCheckResult:
        if self.allowed != (self.limit_kind is None):
            raise ValueError("limit_kind is set exactly when the check rejects")
        return self


@dataclass(frozen=True, slots=True)
class UsageRecord:
    """One billed provider call. The ledger never mutates these."""

    provider: str
    model: str
    tokens_used: int
    cost_usd: float
    timestamp: datetime
    execution_id: str
    node_id: str | None = None
    user_id: str | None = None
    workflow_id: str | None = None


class SpendBucket(BaseModel):
    key: str
    cost: float = 0.0
    requests: int = 0


class UsageAnalytics(BaseModel):
    timeframe: str
    total_cost: float
    total_tokens: int
    total_requests: int
    average_cost_per_request: float
    top_models: list[SpendBucket]
    top_providers: list[SpendBucket]
    top_users: list[SpendBucket]
    cost_by_day: dict[str, float]
