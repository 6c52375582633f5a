from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from pydantic import BaseModel

WINDOW_SIZE = 100

# Reference points that map a metric to a zero sub-score.
LATENCY_REFERENCE_MS = 10_000.0
COST_REFERENCE_USD = 0.10
LOAD_REFERENCE = 10


@dataclass(frozen=True, slots=True)
class ScoreWeights:
    latency: float = 0.3
    cost: float = 0.2
    success: float = 0.4
    load: float = 0.1


class ProviderMetricsSnapshot(BaseModel):
    provider: str
    avg_latency_ms: float
    avg_cost_usd: float
    success_rate: float
    total_requests: int
    concurrent_requests: int
    last_used: float | None


class ProviderMetrics:
    """Rolling per-provider counters used for scoring.

    Latency and cost keep the last ``WINDOW_SIZE`` samples; success/failure
    counts are cumulative. Values are statistical and last-writer-wins.
    """

    def __init__(self, provider: str, clock: Callable[[], float] = time.time) -> None:
        self.provider = provider
        self._clock = clock
        self._latencies: deque[float] = deque(maxlen=WINDOW_SIZE)
        self._costs: deque[float] = deque(maxlen=WINDOW_SIZE)
        self.success_count = 0
        self.failure_count = 0
        self.concurrent_requests = 0
        self.last_used: float | None = None

    def record_request(self, latency_ms: float, cost_usd: float, success: bool) -> None:
        self._latencies.append(latency_ms)
        self._costs.append(cost_usd)
        if success:
            self.success_count += 1
        else:
            self.failure_count += 1
        self.last_used = self._clock()

    def increment_concurrent(self) -> None:
        self.concurrent_requests += 1

    def decrement_concurrent(self) -> None:
        self.concurrent_requests = max(0, self.concurrent_requests - 1)

    @property
    def total_requests(self) -> int:
        return self.success_count + self.failure_count

    @property
    def average_latency_ms(self) -> float:
        return sum(self._latencies) / len(self._latencies) if self._latencies else 0.0

    @property
    def average_cost_usd(self) -> float:
        return sum(self._costs) / len(self._costs) if self._costs else 0.0

    @property
    def success_rate(self) -> float:
        total = self.total_requests
        return self.success_count / total if total > 0 else 1.0

    def score(self, weights: ScoreWeights = ScoreWeights()) -> float:
        latency_score = max(0.0, 1 - self.average_latency_ms / LATENCY_REFERENCE_MS)
        cost_score = max(0.0, 1 - self.average_cost_usd / COST_REFERENCE_USD)
        load_score = max(0.0, 1 - self.concurrent_requests / LOAD_REFERENCE)
        return (
            latency_score * weights.latency
            + cost_score * weights.cost
            + self.success_rate * weights.success
            + load_score * weights.load
        )

    def snapshot(self) -> ProviderMetricsSnapshot:
        return ProviderMetricsSnapshot(
            provider=self.provider,
            avg_latency_ms=self.average_latency_ms,
            avg_cost_usd=self.average_cost_usd,
            success_rate=self.success_rate,
            total_requests=self.total_requests,
            concurrent_requests=self.concurrent_requests,
            last_used=self.last_used,
        )


class ProviderMetricsRegistry:
    """Shared map of provider id to ``ProviderMetrics``, created lazily."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._metrics: dict[str, ProviderMetrics] = {}

    def get(self, provider: str) -> ProviderMetrics:
        if provider not in self._metrics:
            self._metrics[provider] = ProviderMetrics(provider, clock=self._clock)
        return self._metrics[provider]

    def observed_success_rate(self, provider: str) -> float | None:
        """Success rate if the provider has any recorded outcome, else None."""
        metrics = self._metrics.get(provider)
        if metrics is None or metrics.total_requests == 0:
            return None
        return metrics.success_rate

    def snapshots(self) -> list[ProviderMetricsSnapshot]:
        return [m.snapshot() for m in self._metrics.values()]
