from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable

from orchestrator.application.llm.factory import ProviderAdapterFactory
from orchestrator.application.services.provider_metrics import (
    ProviderMetricsRegistry,
    ScoreWeights,
)
from orchestrator.core.logging import get_logger
from orchestrator.domain.adapters import GenerateRequest, GenerateResult
from orchestrator.domain.analytics import ProviderRecommendation, ProviderStatus
from orchestrator.domain.circuit_breaker import CircuitBreaker, CircuitState
from orchestrator.domain.errors import (
    AllProvidersFailedError,
    NoAvailableModelError,
    ProviderAttempt,
    ProviderTimeoutError,
    RequestAbortedError,
)
from orchestrator.domain.fallback import FallbackRequest, FallbackResult, ProviderConfig
from orchestrator.monitoring.metrics import (
    CIRCUIT_BREAKER_STATE,
    FALLBACKS_TOTAL,
    PROVIDER_LATENCY_SECONDS,
    PROVIDER_REQUESTS_TOTAL,
    TOKENS_TOTAL,
)

logger = get_logger(__name__)

DEFAULT_WEIGHTS = ScoreWeights()


def _on_breaker_transition(provider: str, old: CircuitState, new: CircuitState) -> None:
    CIRCUIT_BREAKER_STATE.labels(provider=provider, state=new.value).inc()
    log = logger.warning if new == CircuitState.OPEN else logger.info
    log("Circuit breaker for %s moved %s -> %s", provider, old.value, new.value)


def _bare_model(qualified: str) -> str:
    return qualified.split(":", 1)[1] if ":" in qualified else qualified


class FallbackExecutor:
    """Runs a request against an ordered list of providers until one succeeds.

    Each registered provider has its own circuit breaker, in-flight cap and
    timeout. Providers that cannot be attempted (open breaker, saturated) are
    skipped and reported in ``failed_providers`` alongside the ones that
    actually failed.
    """

    def __init__(
        self,
        factory: ProviderAdapterFactory,
        metrics: ProviderMetricsRegistry,
        *,
        clock: Callable[[], float] = time.monotonic,
        weights: ScoreWeights = DEFAULT_WEIGHTS,
    ) -> None:
        self._factory = factory
        self._metrics = metrics
        self._clock = clock
        self._weights = weights
        self._providers: dict[str, ProviderConfig] = {}
        self._breakers: dict[str, CircuitBreaker] = {}

    def register_provider(self, config: ProviderConfig) -> None:
        self._providers[config.id] = config
        self._breakers[config.id] = CircuitBreaker(
            provider=config.id,
            config=config.circuit_breaker,
            clock=self._clock,
            on_transition=_on_breaker_transition,
        )
        self._metrics.get(config.id)
        logger.info("Registered fallback provider %s (priority %d)", config.id, config.priority)

    @property
    def providers(self) -> list[ProviderConfig]:
        return list(self._providers.values())

    def breaker(self, provider: str) -> CircuitBreaker:
        return self._breakers[provider]

    def provider_score(self, config: ProviderConfig) -> float:
        if not self._breakers[config.id].is_available():
            return -1.0
        return config.priority + self._metrics.get(config.id).score(self._weights)

    def select_providers(self, request: FallbackRequest) -> list[ProviderConfig]:
        """Candidate providers for ``request`` in the order they will be tried."""

        requested = request.requested_models
        candidates = [
            p
            for p in self._providers.values()
            if any(p.serves(m) for m in requested) and p.id not in request.excluded_providers
        ]

        if request.max_cost_usd is not None:
            candidates = [
                p
                for p in candidates
                if self._metrics.get(p.id).average_cost_usd * p.cost_multiplier <= request.max_cost_usd
            ]
        if request.max_latency_ms is not None:
            candidates = [
                p
                for p in candidates
                if self._metrics.get(p.id).average_latency_ms <= request.max_latency_ms
            ]

        preferred = [
            p
            for pid in request.preferred_providers
            for p in candidates
            if p.id == pid
        ]
        others = [p for p in candidates if p.id not in request.preferred_providers]
        others.sort(key=lambda p: (-self.provider_score(p), p.id))
        return preferred + others

    async def execute_with_fallback(self, request: FallbackRequest) -> FallbackResult:
        start = self._clock()
        providers = self.select_providers(request)
        if not providers:
            raise NoAvailableModelError(
                f"No available providers for model {request.model}",
            )

        attempts: list[ProviderAttempt] = []

        # Providers that cannot be admitted are reported before anything is tried.
        ready: list[ProviderConfig] = []
        for config in providers:
            if self._breakers[config.id].is_available():
                ready.append(config)
            else:
                attempts.append(ProviderAttempt(config.id, None, "circuit breaker open"))
                PROVIDER_REQUESTS_TOTAL.labels(provider=config.id, status="skipped").inc()

        logger.info(
            "Attempting fallback with providers: %s",
            " -> ".join(p.id for p in ready) or "(none ready)",
            extra={
                "orch_extra": json.dumps(
                    {"request_id": request.request_id, "skipped": [a.provider for a in attempts]},
                ),
            },
        )

        for config in ready:
            if request.abort_signal is not None and request.abort_signal.is_set():
                raise RequestAbortedError(
                    f"Request {request.request_id} aborted after {len(attempts)} attempts",
                )

            model = next(m for m in request.requested_models if config.serves(m))
            metrics = self._metrics.get(config.id)
            breaker = self._breakers[config.id]

            if not breaker.is_available():
                attempts.append(ProviderAttempt(config.id, model, "circuit breaker open"))
                PROVIDER_REQUESTS_TOTAL.labels(provider=config.id, status="skipped").inc()
                continue
            if metrics.concurrent_requests >= config.max_concurrent_requests:
                attempts.append(ProviderAttempt(config.id, model, "too many concurrent requests"))
                PROVIDER_REQUESTS_TOTAL.labels(provider=config.id, status="skipped").inc()
                logger.info("Skipping %s - too many concurrent requests", config.id)
                continue

            metrics.increment_concurrent()
            call_start = self._clock()
            try:
                result = await breaker.call(lambda: self._generate(config, model, request))
            except Exception as exc:  # noqa: BLE001
                latency_ms = (self._clock() - call_start) * 1000
                metrics.record_request(latency_ms, 0.0, success=False)
                attempts.append(ProviderAttempt(config.id, model, str(exc), latency_ms, called=True))
                PROVIDER_REQUESTS_TOTAL.labels(provider=config.id, status="error").inc()
                logger.warning(
                    "Request failed with %s: %s",
                    config.id,
                    exc,
                    extra={
                        "orch_extra": json.dumps(
                            {
                                "request_id": request.request_id,
                                "retryable": getattr(exc, "retryable", None),
                                "fallback_hint": getattr(exc, "fallback", None),
                            },
                        ),
                    },
                )
                continue
            finally:
                metrics.decrement_concurrent()

            latency_ms = (self._clock() - call_start) * 1000
            metrics.record_request(latency_ms, result.usage.cost_usd, success=True)
            PROVIDER_REQUESTS_TOTAL.labels(provider=config.id, status="success").inc()
            PROVIDER_LATENCY_SECONDS.labels(provider=config.id).observe(latency_ms / 1000)
            TOKENS_TOTAL.labels(provider=config.id, model=result.model, type="prompt").inc(
                result.usage.prompt_tokens,
            )
            TOKENS_TOTAL.labels(provider=config.id, model=result.model, type="completion").inc(
                result.usage.completion_tokens,
            )
            if attempts:
                FALLBACKS_TOTAL.inc()

            logger.info("Request succeeded with %s in %.0fms", config.id, latency_ms)
            return FallbackResult(
                text=result.text,
                usage=result.usage,
                provider_used=config.id,
                model_used=f"{config.id}:{result.model}",
                attempts_count=len(attempts) + 1,
                failed_providers=[a.provider for a in attempts],
                total_latency_ms=(self._clock() - start) * 1000,
                routing_reason=self._routing_reason(len(providers), len(attempts)),
                provider_latency_ms=latency_ms,
                attempts=attempts,
                finish_reason=result.finish_reason,
                tool_calls=result.tool_calls,
            )

        total_latency_ms = (self._clock() - start) * 1000
        logger.error(
            "All provider candidates failed",
            extra={
                "orch_extra": json.dumps(
                    {
                        "request_id": request.request_id,
                        "attempts": [
                            {"provider": a.provider, "model": a.model, "reason": a.reason}
                            for a in attempts
                        ],
                        "total_latency_ms": round(total_latency_ms, 1),
                    },
                ),
            },
        )
        raise AllProvidersFailedError(attempts, total_latency_ms)

    async def _generate(
        self,
        config: ProviderConfig,
        model: str,
        request: FallbackRequest,
    ) -> GenerateResult:
        adapter = self._factory.get_adapter(config.id)
        bare = _bare_model(model)
        generate_request = GenerateRequest(
            model=bare,
            messages=request.messages,
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            tools=request.tools,
            tool_choice=request.tool_choice,
            response_format=request.response_format,
            abort_signal=request.abort_signal,
            request_id=request.request_id,
        )
        try:
            return await asyncio.wait_for(
                adapter.generate(generate_request), timeout=config.timeout_ms / 1000,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderTimeoutError(
                provider=config.id, model=bare, timeout_ms=config.timeout_ms,
            ) from exc

    @staticmethod
    def _routing_reason(candidate_count: int, failures: int) -> str:
        if candidate_count == 1:
            return "Only available provider"
        if failures == 0:
            return "Highest priority available provider"
        return f"Selected after {failures} failed attempts"

    def get_provider_status(self) -> list[ProviderStatus]:
        statuses: list[ProviderStatus] = []
        for config in self._providers.values():
            metrics = self._metrics.get(config.id)
            breaker = self._breakers[config.id]
            available = breaker.is_available()
            statuses.append(
                ProviderStatus(
                    provider=config.id,
                    priority=config.priority,
                    circuit_state=breaker.state,
                    available=available,
                    concurrent_requests=metrics.concurrent_requests,
                    max_concurrent_requests=config.max_concurrent_requests,
                    success_rate=metrics.success_rate,
                    avg_latency_ms=metrics.average_latency_ms,
                    avg_cost_usd=metrics.average_cost_usd,
                    total_requests=metrics.total_requests,
                    performance_score=metrics.score(self._weights),
                ),
            )
        return statuses

    def get_provider_recommendations(self) -> list[ProviderRecommendation]:
        """One recommendation per provider, best performance score first."""

        scored: list[tuple[float, ProviderRecommendation]] = []
        for config in self._providers.values():
            metrics = self._metrics.get(config.id)
            state = self._breakers[config.id].state

            if state == CircuitState.OPEN:
                severity, message = "critical", "Circuit breaker is open - provider experiencing issues"
            elif metrics.success_rate < 0.9:
                severity, message = "warning", "Low success rate - monitor for issues"
            elif metrics.average_latency_ms > 5000:
                severity, message = (
                    "warning",
                    "High latency - consider using for non-time-critical requests",
                )
            elif metrics.average_cost_usd > 0.05:
                severity, message = "info", "High cost - use for high-value requests only"
            else:
                severity, message = "info", "Good performance - recommended for general use"

            scored.append(
                (
                    metrics.score(self._weights),
                    ProviderRecommendation(provider=config.id, severity=severity, message=message),
                ),
            )

        scored.sort(key=lambda item: item[0], reverse=True)
        return [rec for _, rec in scored]
