"""Tests for priority-ordered provider fallback with circuit breakers."""

from __future__ import annotations

import asyncio

import pytest

from orchestrator.application.services.fallback_executor import FallbackExecutor
from orchestrator.application.services.provider_metrics import ProviderMetricsRegistry
from orchestrator.domain.adapters import LLMMessage, MessageRole
from orchestrator.domain.circuit_breaker import CircuitBreakerConfig, CircuitState
from orchestrator.domain.errors import (
    AllProvidersFailedError,
    NoAvailableModelError,
    ProviderError,
    RequestAbortedError,
)
from orchestrator.domain.fallback import FallbackRequest, ProviderConfig


def _error(provider: str, *, fallback: bool = True) -> ProviderError:
    return ProviderError(
        provider=provider,
        model="m",
        retryable=fallback,
        fallback=fallback,
        message=f"{provider} returned 503",
    )


def _request(**overrides) -> FallbackRequest:
    kwargs = {
        "model": "primary:large",
        "alternative_models": ["backup:small"],
        "messages": [LLMMessage(role=MessageRole.USER, content="hi")],
        "request_id": "req-1",
    }
    kwargs.update(overrides)
    return FallbackRequest(**kwargs)


@pytest.fixture
def build_executor(fake_factory):
    def _build(*adapters, timeout_ms=30_000, max_concurrent=10, threshold=5):
        executor = FallbackExecutor(fake_factory(*adapters), ProviderMetricsRegistry())
        breaker = CircuitBreakerConfig(failure_threshold=threshold, timeout_ms=60_000)
        executor.register_provider(
            ProviderConfig(
                id="primary",
                priority=10,
                timeout_ms=timeout_ms,
                max_concurrent_requests=max_concurrent,
                models=("primary:large",),
                circuit_breaker=breaker,
            ),
        )
        executor.register_provider(
            ProviderConfig(
                id="backup",
                priority=8,
                timeout_ms=timeout_ms,
                models=("backup:small",),
                circuit_breaker=breaker,
            ),
        )
        return executor

    return _build


class TestProviderOrdering:
    def test_priority_orders_candidates(self, build_executor):
        executor = build_executor()
        assert [p.id for p in executor.select_providers(_request())] == ["primary", "backup"]

    def test_preferred_providers_go_first(self, build_executor):
        executor = build_executor()
        ordered = executor.select_providers(_request(preferred_providers=["backup"]))
        assert [p.id for p in ordered] == ["backup", "primary"]

    def test_excluded_providers_are_dropped(self, build_executor):
        executor = build_executor()
        ordered = executor.select_providers(_request(excluded_providers=["primary"]))
        assert [p.id for p in ordered] == ["backup"]

    def test_open_breaker_sorts_last(self, build_executor):
        executor = build_executor()
        for _ in range(5):
            executor.breaker("primary").record_failure()
        assert [p.id for p in executor.select_providers(_request())] == ["backup", "primary"]


class TestExecuteWithFallback:
    @pytest.mark.asyncio
    async def test_first_provider_success(self, build_executor, make_adapter):
        primary, backup = make_adapter("primary", "hello"), make_adapter("backup")
        result = await build_executor(primary, backup).execute_with_fallback(_request())

        assert result.text == "hello"
        assert result.provider_used == "primary"
        assert result.model_used == "primary:large"
        assert result.attempts_count == 1
        assert result.failed_providers == []
        assert result.routing_reason == "Highest priority available provider"
        assert primary.calls[0].model == "large"
        assert backup.call_count == 0

    @pytest.mark.asyncio
    async def test_falls_back_after_failure(self, build_executor, make_adapter):
        primary = make_adapter("primary", _error("primary"))
        backup = make_adapter("backup", "from backup")
        executor = build_executor(primary, backup)

        result = await executor.execute_with_fallback(_request())

        assert result.provider_used == "backup"
        assert result.attempts_count == 2
        assert result.failed_providers == ["primary"]
        assert result.routing_reason == "Selected after 1 failed attempts"
        assert executor.breaker("primary").failure_count == 1
        assert [(a.provider, a.model, a.called) for a in result.attempts] == [
            ("primary", "primary:large", True),
        ]

    @pytest.mark.asyncio
    async def test_open_breaker_is_skipped_and_reported(self, build_executor, make_adapter):
        primary, backup = make_adapter("primary"), make_adapter("backup", "from backup")
        executor = build_executor(primary, backup)
        for _ in range(5):
            executor.breaker("primary").record_failure()
        assert executor.breaker("primary").state == CircuitState.OPEN

        result = await executor.execute_with_fallback(_request())

        assert result.provider_used == "backup"
        assert "primary" in result.failed_providers
        assert primary.call_count == 0
        assert not result.attempts[0].called

    @pytest.mark.asyncio
    async def test_breaker_opens_after_repeated_failures(self, build_executor, make_adapter):
        primary = make_adapter("primary", *[_error("primary") for _ in range(5)])
        executor = build_executor(primary, make_adapter("backup"), threshold=5)
        for _ in range(5):
            await executor.execute_with_fallback(_request())

        assert executor.breaker("primary").state == CircuitState.OPEN
        result = await executor.execute_with_fallback(_request())
        assert result.provider_used == "backup"
        assert result.attempts_count == 2
        assert result.failed_providers == ["primary"]
        assert primary.call_count == 5

    @pytest.mark.asyncio
    async def test_all_providers_failed(self, build_executor, make_adapter):
        executor = build_executor(
            make_adapter("primary", _error("primary")),
            make_adapter("backup", _error("backup")),
        )
        with pytest.raises(AllProvidersFailedError) as exc_info:
            await executor.execute_with_fallback(_request())

        assert exc_info.value.failed_providers == ["primary", "backup"]
        assert "backup returned 503" in exc_info.value.attempts[1].reason

    @pytest.mark.asyncio
    async def test_non_fallback_error_still_moves_to_next_provider(self, build_executor, make_adapter):
        backup = make_adapter("backup", "from backup")
        executor = build_executor(make_adapter("primary", _error("primary", fallback=False)), backup)

        result = await executor.execute_with_fallback(_request())

        assert result.provider_used == "backup"
        assert result.text == "from backup"
        assert result.failed_providers == ["primary"]
        assert backup.call_count == 1

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self, build_executor, make_adapter):
        slow = make_adapter("primary", delay_s=0.5)
        backup = make_adapter("backup", "fast")
        executor = build_executor(slow, backup, timeout_ms=20)

        result = await executor.execute_with_fallback(_request())

        assert result.provider_used == "backup"
        assert result.failed_providers == ["primary"]
        assert executor.breaker("primary").failure_count == 1
        assert result.provider_latency_ms < result.total_latency_ms

    @pytest.mark.asyncio
    async def test_saturated_provider_is_skipped(self, build_executor, make_adapter):
        primary, backup = make_adapter("primary"), make_adapter("backup", "spare")
        executor = build_executor(primary, backup, max_concurrent=1)
        executor._metrics.get("primary").increment_concurrent()

        result = await executor.execute_with_fallback(_request())

        assert result.provider_used == "backup"
        assert result.failed_providers == ["primary"]
        assert primary.call_count == 0

    @pytest.mark.asyncio
    async def test_abort_signal_stops_attempts(self, build_executor, make_adapter):
        primary = make_adapter("primary")
        signal = asyncio.Event()
        signal.set()
        with pytest.raises(RequestAbortedError):
            await build_executor(primary, make_adapter("backup")).execute_with_fallback(
                _request(abort_signal=signal),
            )
        assert primary.call_count == 0

    @pytest.mark.asyncio
    async def test_no_provider_serves_model(self, build_executor):
        with pytest.raises(NoAvailableModelError):
            await build_executor().execute_with_fallback(
                _request(model="other:model", alternative_models=[]),
            )

    @pytest.mark.asyncio
    async def test_single_candidate_reason(self, build_executor, make_adapter):
        executor = build_executor(make_adapter("primary"), make_adapter("backup"))
        result = await executor.execute_with_fallback(_request(alternative_models=[]))
        assert result.routing_reason == "Only available provider"

    @pytest.mark.asyncio
    async def test_in_flight_count_released(self, build_executor, make_adapter):
        executor = build_executor(make_adapter("primary", _error("primary")), make_adapter("backup"))
        await executor.execute_with_fallback(_request())
        assert executor._metrics.get("primary").concurrent_requests == 0
        assert executor._metrics.get("backup").concurrent_requests == 0


def test_provider_status_and_recommendations(build_executor):
    executor = build_executor()
    for _ in range(5):
        executor.breaker("primary").record_failure()

    statuses = {s.provider: s for s in executor.get_provider_status()}
    assert statuses["primary"].circuit_state == CircuitState.OPEN
    assert not statuses["primary"].available
    assert statuses["backup"].available

    recommendations = {r.provider: r for r in executor.get_provider_recommendations()}
    assert recommendations["primary"].severity == "critical"
    assert recommendations["backup"].message == "Good performance - recommended for general use"
