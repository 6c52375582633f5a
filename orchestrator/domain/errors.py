from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class OrchestrationError(Exception):
    """Base class for every error surfaced by the orchestration layer."""


class InvalidRequestError(OrchestrationError):
    """The routing request itself is malformed."""


class ProviderError(OrchestrationError):
    """Error raised by provider adapters with retry/fallback hints."""

    def __init__(
        self,
        *,
        provider: str,
        model: str,
        retryable: bool,
        fallback: bool,
        message: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.retryable = retryable
        self.fallback = fallback
        self.status_code = status_code


class ProviderTimeoutError(ProviderError):
    """A provider call did not finish within its configured timeout."""

    def __init__(self, *, provider: str, model: str, timeout_ms: int) -> None:
        super().__init__(
            provider=provider,
            model=model,
            retryable=True,
            fallback=True,
            message=f"{provider} did not respond within {timeout_ms}ms",
        )
        self.timeout_ms = timeout_ms


class CircuitOpenError(OrchestrationError):
    """The provider's circuit breaker rejected the call."""

    def __init__(self, provider: str, message: str | None = None) -> None:
        super().__init__(message or f"Circuit breaker for {provider} is open")
        self.provider = provider


class BudgetLimitKind(str, Enum):
    DAILY = "daily"
    MONTHLY = "monthly"
    USER = "user"
    WORKFLOW = "workflow"
    EMERGENCY = "emergency"


class BudgetExceededError(OrchestrationError):
    """A budget ceiling would be crossed; no provider was attempted."""

    def __init__(self, kind: BudgetLimitKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class NoAvailableModelError(OrchestrationError):
    """Hard constraints eliminated every candidate model or provider."""


class RequestAbortedError(OrchestrationError):
    """The caller signalled abort before a provider produced a result."""


@dataclass(slots=True)
class ProviderAttempt:
    """One entry in the ordered failure list of a fallback run."""

    provider: str
    model: str | None
    reason: str
    latency_ms: float = 0.0
    called: bool = False


class AllProvidersFailedError(OrchestrationError):
    """Every candidate provider was tried and none produced a result."""

    def __init__(self, attempts: list[ProviderAttempt], total_latency_ms: float) -> None:
        summary = ", ".join(f"{a.provider} ({a.reason})" for a in attempts)
        super().__init__(
            f"All providers failed. Attempted: {summary}. Total time: {total_latency_ms:.0f}ms",
        )
        self.attempts = attempts
        self.total_latency_ms = total_latency_ms

    @property
    def failed_providers(self) -> list[str]:
        return [a.provider for a in self.attempts]
