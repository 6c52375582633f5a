from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

from orchestrator.domain.errors import CircuitOpenError

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True, slots=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    timeout_ms: int = 60_000
    half_open_max_requests: int = 3


@dataclass(slots=True)
class CircuitBreaker:
    """Per-provider failure detector.

    CLOSED counts consecutive failures and opens at ``failure_threshold``.
    OPEN rejects until ``timeout_ms`` has passed since the last failure, then
    moves to HALF_OPEN. HALF_OPEN admits ``half_open_max_requests`` trial
    calls; one success closes the breaker, one failure reopens it.
    """

    provider: str
    config: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    clock: Callable[[], float] = time.monotonic
    on_transition: Callable[[str, CircuitState, CircuitState], None] | None = None

    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_failure_ts: float | None = None
    half_open_trials: int = 0

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self.state
        if old_state == new_state:
            return
        self.state = new_state
        if new_state == CircuitState.HALF_OPEN:
            self.half_open_trials = 0
        if self.on_transition is not None:
            self.on_transition(self.provider, old_state, new_state)

    def _maybe_half_open(self) -> None:
        if self.state != CircuitState.OPEN or self.last_failure_ts is None:
            return
        if (self.clock() - self.last_failure_ts) * 1000 > self.config.timeout_ms:
            self._transition(CircuitState.HALF_OPEN)

    def is_available(self) -> bool:
        """Whether a call would currently be admitted. Never consumes a trial."""
        self._maybe_half_open()
        if self.state == CircuitState.CLOSED:
            return True
        if self.state == CircuitState.HALF_OPEN:
            return self.half_open_trials < self.config.half_open_max_requests
        return False

    def acquire(self) -> None:
        """Admit one call or raise ``CircuitOpenError``."""
        self._maybe_half_open()
        if self.state == CircuitState.OPEN:
            raise CircuitOpenError(self.provider)
        if self.state == CircuitState.HALF_OPEN:
            if self.half_open_trials >= self.config.half_open_max_requests:
                raise CircuitOpenError(
                    self.provider,
                    f"Circuit breaker for {self.provider} half-open trial limit reached",
                )
            self.half_open_trials += 1

    def record_success(self) -> None:
        self.failure_count = 0
        if self.state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_ts = self.clock()
        if self.state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
        elif self.failure_count >= self.config.failure_threshold:
            self._transition(CircuitState.OPEN)

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` under the breaker, recording its outcome."""
        self.acquire()
        try:
            result = await operation()
        except asyncio.CancelledError:
            # A cancelled trial produced no verdict; give the slot back.
            if self.state == CircuitState.HALF_OPEN and self.half_open_trials > 0:
                self.half_open_trials -= 1
            raise
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result
