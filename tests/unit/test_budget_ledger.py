"""Tests for budget checks, usage recording and spend analytics."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from unittest.mock import patch

import pytest
from pydantic import ValidationError

from orchestrator.application.services.budget_ledger import BudgetLedger
from orchestrator.domain.budget import (
    AlertThresholds,
    BudgetCheckResult,
    BudgetConfig,
    UsageRecord,
)
from orchestrator.domain.errors import BudgetExceededError, BudgetLimitKind

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def _record(cost: float, *, at: datetime = NOW, user: str | None = "u1", workflow: str | None = None,
            provider: str = "openai", model: str = "gpt-4o-mini") -> UsageRecord:
    return UsageRecord(
        provider=provider,
        model=model,
        tokens_used=100,
        cost_usd=cost,
        timestamp=at,
        execution_id=f"exec-{cost}-{at.isoformat()}",
        user_id=user,
        workflow_id=workflow,
    )


@pytest.fixture
def alerts() -> list:
    return []


@pytest.fixture
def ledger(alerts) -> BudgetLedger:
    config = BudgetConfig(
        daily_limit_usd=10.0,
        monthly_limit_usd=100.0,
        per_user_daily_limit_usd=5.0,
        per_workflow_limit_usd=20.0,
        alert_thresholds=AlertThresholds(daily=80.0, monthly=85.0),
        emergency_stop_threshold=99.0,
    )
    return BudgetLedger(config, now=lambda: NOW, alert_handler=alerts.append)


class TestBudgetStatus:
    def test_empty_ledger(self, ledger):
        status = ledger.get_budget_status()
        assert status.current_daily_spend == 0
        assert status.remaining_daily_budget == 10.0
        assert not status.should_alert
        assert not status.emergency_stop

    def test_day_and_month_windows(self, ledger):
        ledger.record_usage(_record(2.0, user=None))
        ledger.record_usage(_record(3.0, at=NOW - timedelta(days=1), user=None))
        ledger.record_usage(_record(7.0, at=datetime(2026, 2, 28, 23, 0, tzinfo=timezone.utc), user=None))

        status = ledger.get_budget_status()
        assert status.current_daily_spend == pytest.approx(2.0)
        assert status.current_monthly_spend == pytest.approx(5.0)
        assert status.daily_percentage_used == pytest.approx(20.0)
        assert status.monthly_percentage_used == pytest.approx(5.0)


class TestBudgetChecks:
    def test_daily_limit_rejects_without_recording(self, ledger):
        ledger.record_usage(_record(9.5, user=None))
        before = ledger.records

        result = ledger.check_budget_constraints(1.0)

        assert not result.allowed
        assert result.limit_kind == BudgetLimitKind.DAILY
        assert result.reason == "Would exceed daily budget limit ($10.00)"
        assert ledger.records == before

    def test_enforce_raises_budget_exceeded(self, ledger):
        ledger.record_usage(_record(9.5, user=None))
        with pytest.raises(BudgetExceededError) as exc_info:
            ledger.enforce(1.0)
        assert exc_info.value.kind == BudgetLimitKind.DAILY
        assert len(ledger.records) == 1

    def test_exact_limit_is_allowed(self, ledger):
        ledger.record_usage(_record(4.0, user=None))
        assert ledger.check_budget_constraints(6.0).allowed

    def test_monthly_limit(self, ledger):
        for day in range(1, 11):
            ledger.record_usage(
                _record(9.9, at=datetime(2026, 3, day, 9, 0, tzinfo=timezone.utc), user=None),
            )
        result = ledger.check_budget_constraints(2.0)
        assert result.limit_kind == BudgetLimitKind.MONTHLY

    def test_emergency_stop(self, alerts):
        ledger = BudgetLedger(
            BudgetConfig(daily_limit_usd=10.0, monthly_limit_usd=100.0, emergency_stop_threshold=50.0),
            now=lambda: NOW,
            alert_handler=alerts.append,
        )
        ledger.record_usage(_record(6.0, user=None))
        result = ledger.check_budget_constraints(0.1)
        assert result.limit_kind == BudgetLimitKind.EMERGENCY
        assert result.budget_status.emergency_stop

    def test_per_user_daily_limit(self, ledger):
        ledger.record_usage(_record(4.5, user="alice"))

        rejected = ledger.check_budget_constraints(1.0, user_id="alice")
        assert rejected.limit_kind == BudgetLimitKind.USER
        assert ledger.check_budget_constraints(1.0, user_id="bob").allowed

    def test_user_limit_override(self, ledger):
        ledger.record_usage(_record(4.5, user="alice"))
        result = ledger.check_budget_constraints(1.0, user_id="alice", user_daily_limit_usd=8.0)
        assert result.allowed

    def test_caller_reported_user_spend(self, ledger):
        ledger.record_usage(_record(1.0, user="alice"))

        assert ledger.check_budget_constraints(1.0, user_id="alice", user_used_usd=0.5).allowed
        rejected = ledger.check_budget_constraints(1.0, user_id="alice", user_used_usd=4.5)
        assert rejected.limit_kind == BudgetLimitKind.USER

    def test_rejection_always_names_its_limit(self, ledger):
        status = ledger.get_budget_status()
        with pytest.raises(ValidationError):
            BudgetCheckResult(allowed=False, reason="over", budget_status=status)
        with pytest.raises(ValidationError):
            BudgetCheckResult(allowed=True, limit_kind=BudgetLimitKind.DAILY, budget_status=status)

    def test_per_workflow_limit(self, ledger):
        ledger.record_usage(
            _record(9.5, at=datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc), user=None, workflow="wf"),
        )
        ledger.record_usage(
            _record(9.8, at=datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc), user=None, workflow="wf"),
        )
        result = ledger.check_budget_constraints(1.0, workflow_id="wf")
        assert result.limit_kind == BudgetLimitKind.WORKFLOW
        assert ledger.check_budget_constraints(1.0, workflow_id="other").allowed


class TestRecording:
    def test_alert_fires_past_threshold(self, ledger, alerts):
        ledger.record_usage(_record(5.0, user=None))
        assert alerts == []
        ledger.record_usage(_record(3.5, user=None))
        assert len(alerts) == 1
        assert alerts[0].should_alert

    def test_default_alert_handler_counts_alerts(self):
        ledger = BudgetLedger(BudgetConfig(daily_limit_usd=10.0), now=lambda: NOW)
        with patch("orchestrator.application.services.budget_ledger.BUDGET_ALERTS_TOTAL") as counter:
            ledger.record_usage(_record(9.0, user=None))
        counter.inc.assert_called_once_with()

    def test_prune_drops_records_past_retention(self, ledger):
        ledger.record_usage(_record(1.0, at=NOW - timedelta(days=120), user=None))
        ledger.record_usage(_record(1.0, at=NOW - timedelta(days=10), user=None))
        assert ledger.prune() == 1
        assert len(ledger.records) == 1

    def test_update_budget_config(self, ledger):
        ledger.record_usage(_record(9.5, user=None))
        ledger.update_budget_config(daily_limit_usd=50.0)
        assert ledger.config.daily_limit_usd == 50.0
        assert ledger.check_budget_constraints(1.0).allowed


class TestAnalytics:
    def test_usage_analytics_for_month(self, ledger):
        ledger.record_usage(_record(1.0, user="alice"))
        ledger.record_usage(_record(2.0, user="bob", provider="anthropic", model="claude-3-haiku"))
        ledger.record_usage(_record(0.5, at=NOW - timedelta(days=3), user="alice"))

        analytics = ledger.get_usage_analytics("month")

        assert analytics.total_requests == 3
        assert analytics.total_cost == pytest.approx(3.5)
        assert analytics.total_tokens == 300
        assert analytics.top_providers[0].key == "anthropic"
        assert analytics.top_users[0].key == "bob"
        assert analytics.cost_by_day == {"2026-03-12": 0.5, "2026-03-15": 3.0}

    def test_day_timeframe_excludes_earlier_days(self, ledger):
        ledger.record_usage(_record(1.0, user=None))
        ledger.record_usage(_record(0.5, at=NOW - timedelta(days=1), user=None))
        analytics = ledger.get_usage_analytics("day")
        assert analytics.total_requests == 1
        assert analytics.average_cost_per_request == pytest.approx(1.0)


def test_static_cost_estimate():
    assert BudgetLedger.estimate_cost("openai", "gpt-4", 1_000) == pytest.approx(0.03)
    assert BudgetLedger.estimate_cost("unknown", "model", 1_000_000) == pytest.approx(1.0)
