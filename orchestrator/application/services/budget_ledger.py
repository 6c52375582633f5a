from __future__ import annotations

import json
from collections import defaultdict
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

from orchestrator.core.logging import get_logger
from orchestrator.domain.budget import (
    BudgetCheckResult,
    BudgetConfig,
    BudgetStatus,
    SpendBucket,
    UsageAnalytics,
    UsageRecord,
)
from orchestrator.domain.errors import BudgetExceededError, BudgetLimitKind
from orchestrator.monitoring.metrics import (
    BUDGET_ALERTS_TOTAL,
    BUDGET_REJECTIONS_TOTAL,
    COST_TOTAL,
)

logger = get_logger(__name__)

Timeframe = Literal["day", "week", "month"]
AlertHandler = Callable[[BudgetStatus], None]

# USD per 1M prompt tokens, used only when no catalog pricing is at hand.
_FALLBACK_PRICING_PER_1M: dict[str, dict[str, float]] = {
    "openai": {"gpt-4o-mini": 0.15, "gpt-4": 30.0, "gpt-3.5-turbo": 1.5},
    "anthropic": {"claude-3-5-sonnet": 3.0, "claude-3-haiku": 0.25},
    "google": {"gemini-1.5-pro": 1.25, "gemini-1.5-flash": 0.075},
}
_DEFAULT_PRICE_PER_1M = 1.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _start_of_month(now: datetime) -> datetime:
    return _start_of_day(now).replace(day=1)


def _log_alert(status: BudgetStatus) -> None:
    BUDGET_ALERTS_TOTAL.inc()
    logger.warning(
        "Budget alert: daily %.1f%%, monthly %.1f%%",
        status.daily_percentage_used,
        status.monthly_percentage_used,
        extra={"orch_extra": status.model_dump_json()},
    )


class BudgetLedger:
    """Append-only spend log with derived day/month budget status.

    All aggregations are recomputed from the records on demand, with day and
    month boundaries taken in UTC. Checks never mutate the ledger; callers
    append through ``record_usage`` once a provider call has been billed.
    """

    def __init__(
        self,
        config: BudgetConfig | None = None,
        *,
        now: Callable[[], datetime] = _utcnow,
        retention_days: int = 90,
        alert_handler: AlertHandler | None = None,
    ) -> None:
        self._config = config or BudgetConfig()
        self._now = now
        self._retention = timedelta(days=retention_days)
        self._alert_handler = alert_handler or _log_alert
        self._records: list[UsageRecord] = []

    @property
    def config(self) -> BudgetConfig:
        return self._config

    @property
    def records(self) -> tuple[UsageRecord, ...]:
        return tuple(self._records)

    def now(self) -> datetime:
        return self._now()

    def _spend(
        self,
        since: datetime,
        *,
        user_id: str | None = None,
        workflow_id: str | None = None,
    ) -> float:
        total = 0.0
        for record in self._records:
            if record.timestamp < since:
                continue
            if user_id is not None and record.user_id != user_id:
                continue
            if workflow_id is not None and record.workflow_id != workflow_id:
                continue
            total += record.cost_usd
        return total

    def get_budget_status(self) -> BudgetStatus:
        now = self._now()
        cfg = self._config
        daily = self._spend(_start_of_day(now))
        monthly = self._spend(_start_of_month(now))
        daily_pct = daily / cfg.daily_limit_usd * 100
        monthly_pct = monthly / cfg.monthly_limit_usd * 100

        return BudgetStatus(
            current_daily_spend=daily,
            current_monthly_spend=monthly,
            daily_limit=cfg.daily_limit_usd,
            monthly_limit=cfg.monthly_limit_usd,
            daily_percentage_used=daily_pct,
            monthly_percentage_used=monthly_pct,
            is_over_budget=daily > cfg.daily_limit_usd or monthly > cfg.monthly_limit_usd,
            should_alert=(
                daily_pct >= cfg.alert_thresholds.daily
                or monthly_pct >= cfg.alert_thresholds.monthly
            ),
            emergency_stop=(
                daily_pct >= cfg.emergency_stop_threshold
                or monthly_pct >= cfg.emergency_stop_threshold
            ),
            remaining_daily_budget=max(0.0, cfg.daily_limit_usd - daily),
            remaining_monthly_budget=max(0.0, cfg.monthly_limit_usd - monthly),
        )

    def check_budget_constraints(
        self,
        estimated_cost_usd: float,
        user_id: str | None = None,
        workflow_id: str | None = None,
        user_daily_limit_usd: float | None = None,
        user_used_usd: float = 0.0,
    ) -> BudgetCheckResult:
        """Decide whether a request estimated at ``estimated_cost_usd`` may run.

        Checks run in order: daily ceiling, monthly ceiling, emergency stop,
        per-user daily ceiling, per-workflow monthly ceiling. The first one
        that fails decides the reason. ``user_used_usd`` is spend the caller
        reports for the user today; the per-user check uses it when it exceeds
        what the ledger itself has recorded.
        """

        status = self.get_budget_status()
        cfg = self._config

        def reject(kind: BudgetLimitKind, reason: str) -> BudgetCheckResult:
            return BudgetCheckResult(
                allowed=False, reason=reason, limit_kind=kind, budget_status=status,
            )

        if status.current_daily_spend + estimated_cost_usd > status.daily_limit:
            return reject(
                BudgetLimitKind.DAILY,
                f"Would exceed daily budget limit (${status.daily_limit:.2f})",
            )
        if status.current_monthly_spend + estimated_cost_usd > status.monthly_limit:
            return reject(
                BudgetLimitKind.MONTHLY,
                f"Would exceed monthly budget limit (${status.monthly_limit:.2f})",
            )
        if status.emergency_stop:
            return reject(
                BudgetLimitKind.EMERGENCY,
                "Emergency budget stop activated - contact administrator",
            )

        user_limit = user_daily_limit_usd if user_daily_limit_usd is not None else cfg.per_user_daily_limit_usd
        if user_id and user_limit:
            user_spend = max(
                self._spend(_start_of_day(self._now()), user_id=user_id), user_used_usd,
            )
            if user_spend + estimated_cost_usd > user_limit:
                return reject(
                    BudgetLimitKind.USER,
                    f"Would exceed user daily limit (${user_limit:.2f})",
                )

        if workflow_id and cfg.per_workflow_limit_usd:
            workflow_spend = self._spend(_start_of_month(self._now()), workflow_id=workflow_id)
            if workflow_spend + estimated_cost_usd > cfg.per_workflow_limit_usd:
                return reject(
                    BudgetLimitKind.WORKFLOW,
                    f"Would exceed workflow limit (${cfg.per_workflow_limit_usd:.2f})",
                )

        return BudgetCheckResult(allowed=True, budget_status=status)

    def enforce(
        self,
        estimated_cost_usd: float,
        user_id: str | None = None,
        workflow_id: str | None = None,
        user_daily_limit_usd: float | None = None,
        user_used_usd: float = 0.0,
    ) -> BudgetCheckResult:
        """Like ``check_budget_constraints`` but raises on rejection."""

        result = self.check_budget_constraints(
            estimated_cost_usd, user_id, workflow_id, user_daily_limit_usd, user_used_usd,
        )
        kind = result.limit_kind
        if kind is None:
            return result

        BUDGET_REJECTIONS_TOTAL.labels(kind=kind.value).inc()
        logger.warning(
            "Budget check rejected request: %s",
            result.reason,
            extra={
                "orch_extra": json.dumps(
                    {
                        "kind": kind.value,
                        "estimated_cost_usd": estimated_cost_usd,
                        "user_id": user_id,
                        "workflow_id": workflow_id,
                    },
                ),
            },
        )
        raise BudgetExceededError(kind, result.reason or "Budget exceeded")

    def record_usage(self, record: UsageRecord) -> None:
        """Append ``record`` and fire the alert handler if a threshold is crossed."""

        self._records.append(record)
        COST_TOTAL.labels(provider=record.provider, model=record.model).inc(record.cost_usd)
        logger.info(
            "Recorded usage $%.6f (%d tokens) for %s:%s",
            record.cost_usd,
            record.tokens_used,
            record.provider,
            record.model,
        )

        status = self.get_budget_status()
        if status.should_alert:
            self._alert_handler(status)

    def prune(self, now: datetime | None = None) -> int:
        """Drop records older than the retention window; returns the count removed."""

        cutoff = (now or self._now()) - self._retention
        before = len(self._records)
        self._records = [r for r in self._records if r.timestamp >= cutoff]
        removed = before - len(self._records)
        if removed:
            logger.info("Pruned %d usage records older than %s", removed, cutoff.isoformat())
        return removed

    def update_budget_config(self, **changes: Any) -> BudgetConfig:
        self._config = self._config.model_copy(update=changes)
        logger.info("Budget configuration updated: %s", ", ".join(sorted(changes)))
        return self._config

    @staticmethod
    def estimate_cost(provider: str, model: str, prompt_tokens: int) -> float:
        """Rough prompt-only estimate from a static price table."""

        per_1m = _FALLBACK_PRICING_PER_1M.get(provider, {}).get(model, _DEFAULT_PRICE_PER_1M)
        return prompt_tokens / 1_000_000 * per_1m

    def get_usage_analytics(self, timeframe: Timeframe = "day") -> UsageAnalytics:
        now = self._now()
        if timeframe == "week":
            since = now - timedelta(days=7)
        elif timeframe == "month":
            since = _start_of_month(now)
        else:
            since = _start_of_day(now)

        records = [r for r in self._records if r.timestamp >= since]
        total_cost = sum(r.cost_usd for r in records)

        return UsageAnalytics(
            timeframe=timeframe,
            total_cost=total_cost,
            total_tokens=sum(r.tokens_used for r in records),
            total_requests=len(records),
            average_cost_per_request=total_cost / len(records) if records else 0.0,
            top_models=_top(records, lambda r: f"{r.provider}:{r.model}", limit=10),
            top_providers=_top(records, lambda r: r.provider),
            top_users=_top(records, lambda r: r.user_id, limit=10),
            cost_by_day=_cost_by_day(records),
        )


def _top(
    records: Iterable[UsageRecord],
    key: Callable[[UsageRecord], str | None],
    limit: int | None = None,
) -> list[SpendBucket]:
    buckets: dict[str, SpendBucket] = {}
    for record in records:
        name = key(record)
        if name is None:
            continue
        bucket = buckets.setdefault(name, SpendBucket(key=name))
        bucket.cost += record.cost_usd
        bucket.requests += 1
    ordered = sorted(buckets.values(), key=lambda b: b.cost, reverse=True)
    return ordered[:limit] if limit is not None else ordered


def _cost_by_day(records: Iterable[UsageRecord]) -> dict[str, float]:
    totals: dict[str, float] = defaultdict(float)
    for record in records:
        totals[record.timestamp.astimezone(timezone.utc).date().isoformat()] += record.cost_usd
    return dict(sorted(totals.items()))
