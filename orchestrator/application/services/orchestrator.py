from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable

from orchestrator.application.llm.factory import ProviderAdapterFactory
from orchestrator.application.services.budget_ledger import BudgetLedger
from orchestrator.application.services.catalog_defaults import (
    default_model_profiles,
    default_provider_configs,
)
from orchestrator.application.services.fallback_executor import FallbackExecutor
from orchestrator.application.services.model_catalog import InMemoryModelCatalog
from orchestrator.application.services.provider_metrics import ProviderMetricsRegistry
from orchestrator.application.services.response_cache import ResponseCache
from orchestrator.application.services.routing_engine import RoutingEngine
from orchestrator.application.services.validation_repair import ValidationRepairService
from orchestrator.core.logging import get_logger
from orchestrator.core.settings import Settings
from orchestrator.domain.adapters import LLMUsage
from orchestrator.domain.budget import AlertThresholds, BudgetConfig, UsageRecord
from orchestrator.domain.cache import CacheConfig, CacheEntry
from orchestrator.domain.errors import (
    AllProvidersFailedError,
    OrchestrationError,
    ProviderAttempt,
)
from orchestrator.domain.fallback import FallbackRequest, FallbackResult
from orchestrator.domain.models import ModelProfile
from orchestrator.domain.routing import RoutingDecision, RoutingRequest
from orchestrator.domain.validation import RepairOptions, RepairStrategy

logger = get_logger(__name__)


class LLMOrchestrator:
    """Process-wide orchestration context.

    Owns one instance of every orchestration service and the background
    tasks that maintain them. Constructed once at startup and passed to call
    sites; tests build isolated instances with fresh state.
    """

    def __init__(
        self,
        *,
        catalog: InMemoryModelCatalog,
        metrics: ProviderMetricsRegistry,
        router: RoutingEngine,
        executor: FallbackExecutor,
        ledger: BudgetLedger,
        cache: ResponseCache,
        validator: ValidationRepairService,
        cache_sweep_interval_s: float = 3600,
        ledger_prune_interval_s: float = 86400,
        metrics_log_interval_s: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.catalog = catalog
        self.metrics = metrics
        self.router = router
        self.executor = executor
        self.ledger = ledger
        self.cache = cache
        self.validator = validator
        self._intervals = {
            "cache-sweep": cache_sweep_interval_s,
            "ledger-prune": ledger_prune_interval_s,
            "metrics-log": metrics_log_interval_s,
        }
        self._clock = clock
        self._tasks: list[asyncio.Task[None]] = []

    @classmethod
    def from_settings(cls, settings: Settings, factory: ProviderAdapterFactory) -> LLMOrchestrator:
        catalog = InMemoryModelCatalog(
            default_model_profiles(),
            smoothing_alpha=settings.performance_smoothing_alpha,
        )
        metrics = ProviderMetricsRegistry()
        executor = FallbackExecutor(factory, metrics)
        for config in default_provider_configs(settings):
            executor.register_provider(config)

        return cls(
            catalog=catalog,
            metrics=metrics,
            router=RoutingEngine(
                catalog,
                metrics,
                cost_reference_usd=settings.routing_cost_reference_usd,
                latency_reference_ms=settings.routing_latency_reference_ms,
                assumed_output_tokens=settings.routing_assumed_output_tokens,
                history_size=settings.routing_history_size,
            ),
            executor=executor,
            ledger=BudgetLedger(
                BudgetConfig(
                    daily_limit_usd=settings.budget_daily_limit_usd,
                    monthly_limit_usd=settings.budget_monthly_limit_usd,
                    per_user_daily_limit_usd=settings.budget_per_user_daily_limit_usd,
                    per_workflow_limit_usd=settings.budget_per_workflow_limit_usd,
                    alert_thresholds=AlertThresholds(
                        daily=settings.budget_alert_daily_percent,
                        monthly=settings.budget_alert_monthly_percent,
                    ),
                    emergency_stop_threshold=settings.budget_emergency_stop_percent,
                ),
                retention_days=settings.budget_retention_days,
            ),
            cache=ResponseCache(
                CacheConfig(
                    max_entries=settings.cache_max_entries,
                    default_ttl_seconds=settings.cache_default_ttl_s,
                ),
            ),
            validator=ValidationRepairService(
                factory,
                options=RepairOptions(
                    max_repair_attempts=settings.repair_max_attempts,
                    repair_strategy=RepairStrategy(settings.repair_strategy),
                    repair_model=settings.repair_model,
                ),
            ),
            cache_sweep_interval_s=settings.cache_sweep_interval_s,
            ledger_prune_interval_s=settings.budget_prune_interval_s,
            metrics_log_interval_s=settings.metrics_log_interval_s,
        )

    # Background maintenance

    async def start(self) -> None:
        """Start the periodic maintenance tasks."""
        if self._tasks:
            return
        jobs: dict[str, Callable[[], object]] = {
            "cache-sweep": self.cache.sweep_expired,
            "ledger-prune": self.ledger.prune,
            "metrics-log": self._log_provider_metrics,
        }
        for name, job in jobs.items():
            self._tasks.append(
                asyncio.create_task(self._periodic(name, self._intervals[name], job), name=name),
            )
        logger.info("Orchestrator background tasks started.")

    async def stop(self) -> None:
        """Cancel the maintenance tasks and wait for them to finish."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("Orchestrator background tasks stopped.")

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    @staticmethod
    async def _periodic(name: str, interval_s: float, job: Callable[[], object]) -> None:
        while True:
            await asyncio.sleep(interval_s)
            try:
                job()
            except Exception:
                logger.exception("Error during background job %s", name)

    def _log_provider_metrics(self) -> None:
        snapshots = [s.model_dump() for s in self.metrics.snapshots()]
        logger.info(
            "Provider metrics snapshot",
            extra={"orch_extra": json.dumps(snapshots)},
        )

    # Request path

    def _cache_lookup(
        self,
        request: RoutingRequest,
        decision: RoutingDecision,
    ) -> tuple[ModelProfile, CacheEntry] | None:
        prompt = request.cache_prompt()
        for model in decision.ranked_models:
            entry = self.cache.get(prompt, model.model_id, model.provider)
            if entry is not None:
                return model, entry
        return None

    @staticmethod
    def _fallback_request(request: RoutingRequest, decision: RoutingDecision) -> FallbackRequest:
        ranked = decision.ranked_models
        preferred: list[str] = []
        routed = [m.provider for m in ranked]
        for provider in [*request.user.preferences.preferred_providers, *routed]:
            if provider not in preferred:
                preferred.append(provider)
        constraints = request.constraints
        return FallbackRequest(
            model=ranked[0].qualified_name,
            alternative_models=[m.qualified_name for m in ranked[1:]],
            messages=request.effective_messages(),
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            tools=list(request.tools) or None,
            tool_choice=request.tool_choice,
            response_format={"type": "json_object"} if request.response_schema else None,
            abort_signal=request.abort_signal,
            preferred_providers=preferred,
            excluded_providers=list(constraints.excluded_providers),
            max_cost_usd=constraints.max_cost_usd,
            max_latency_ms=constraints.max_latency_ms,
            request_id=request.id,
        )

    def _record_failed_models(self, attempts: list[ProviderAttempt]) -> None:
        for attempt in attempts:
            if attempt.called and attempt.model is not None:
                self.catalog.update_performance(attempt.model, success=False)

    def _actual_cost(self, result: FallbackResult) -> float:
        if result.usage.cost_usd > 0:
            return result.usage.cost_usd
        profile = self.catalog.get_model(result.model_used)
        if profile is None:
            return 0.0
        pricing = profile.pricing
        return (
            result.usage.prompt_tokens / 1000 * pricing.input_per_1k
            + result.usage.completion_tokens / 1000 * pricing.output_per_1k
            + pricing.per_request
        )

    async def complete(self, request: RoutingRequest) -> FallbackResult:
        """Route, budget-check, execute and validate one request.

        Raises:
            InvalidRequestError: The request is malformed.
            NoAvailableModelError: No model or provider satisfies the constraints.
            BudgetExceededError: A spend ceiling would be crossed.
            AllProvidersFailedError: Every candidate provider failed.
            RequestAbortedError: The abort signal was set before a provider answered.
        """

        start = self._clock()
        decision = self.router.route(request)
        user_id = request.context.user_id or request.user.id

        use_cache = request.cache_enabled and not request.tools
        if use_cache:
            hit = self._cache_lookup(request, decision)
            if hit is not None:
                return await self._serve_from_cache(request, decision, *hit, start=start)

        self.ledger.enforce(
            decision.estimated_cost_usd,
            user_id=user_id,
            workflow_id=request.context.workflow_id,
            user_daily_limit_usd=request.user.daily_budget_usd,
            user_used_usd=request.user.used_budget_usd,
        )

        try:
            result = await self.executor.execute_with_fallback(
                self._fallback_request(request, decision),
            )
        except OrchestrationError as exc:
            if isinstance(exc, AllProvidersFailedError):
                self._record_failed_models(exc.attempts)
            self.router.record_outcome(
                request.id,
                success=False,
                latency_ms=(self._clock() - start) * 1000,
                cost_usd=0.0,
            )
            raise

        result.usage.cost_usd = self._actual_cost(result)
        result.routing_decision = decision
        provider, _, model_id = result.model_used.partition(":")

        self.ledger.record_usage(
            UsageRecord(
                provider=provider,
                model=model_id,
                tokens_used=result.usage.total_tokens,
                cost_usd=result.usage.cost_usd,
                timestamp=self.ledger.now(),
                execution_id=request.id,
                node_id=request.context.node_id,
                user_id=user_id,
                workflow_id=request.context.workflow_id,
            ),
        )
        self._record_failed_models(result.attempts)
        self.catalog.update_performance(
            result.model_used,
            latency_ms=result.provider_latency_ms,
            success=True,
        )

        cacheable_text = result.text
        if request.response_schema is not None:
            result.validation = await self.validator.validate_and_repair(
                result.text, request.response_schema, request.prompt,
            )
            result.text = result.validation.final_response
            cacheable_text = result.text if result.validation.is_valid else None

        if use_cache and cacheable_text is not None:
            self.cache.store(
                request.cache_prompt(),
                cacheable_text,
                provider=provider,
                model=model_id,
                tokens_used=result.usage.total_tokens,
                cost_usd=result.usage.cost_usd,
                ttl_seconds=request.cache_ttl_seconds,
            )

        self.router.record_outcome(
            request.id,
            success=True,
            latency_ms=result.total_latency_ms,
            cost_usd=result.usage.cost_usd,
            provider_used=result.provider_used,
        )
        return result

    async def _serve_from_cache(
        self,
        request: RoutingRequest,
        decision: RoutingDecision,
        model: ModelProfile,
        entry: CacheEntry,
        *,
        start: float,
    ) -> FallbackResult:
        latency_ms = (self._clock() - start) * 1000
        result = FallbackResult(
            text=entry.response,
            usage=LLMUsage(prompt_tokens=0, completion_tokens=0, cost_usd=0.0),
            provider_used=entry.provider,
            model_used=model.qualified_name,
            attempts_count=0,
            failed_providers=[],
            total_latency_ms=latency_ms,
            routing_reason="Served from response cache",
            from_cache=True,
            routing_decision=decision,
        )
        if request.response_schema is not None:
            result.validation = await self.validator.validate_and_repair(
                entry.response, request.response_schema, request.prompt,
            )
        self.router.record_outcome(
            request.id,
            success=True,
            latency_ms=latency_ms,
            cost_usd=0.0,
            provider_used=entry.provider,
        )
        logger.info("Served request %s from cache (%s)", request.id, model.qualified_name)
        return result
