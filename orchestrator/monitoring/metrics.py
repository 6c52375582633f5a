from __future__ import annotations

from prometheus_client import Counter, Histogram


ROUTING_DECISIONS_TOTAL = Counter(
    "llm_orchestrator_routing_decisions_total",
    "Routing decisions taken by the routing engine",
    ["strategy", "reason"],
)

PROVIDER_REQUESTS_TOTAL = Counter(
    "llm_orchestrator_provider_requests_total",
    "Provider attempts made by the fallback executor",
    ["provider", "status"],
)

PROVIDER_LATENCY_SECONDS = Histogram(
    "llm_orchestrator_provider_latency_seconds",
    "Provider call latency in seconds",
    ["provider"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)

FALLBACKS_TOTAL = Counter(
    "llm_orchestrator_fallbacks_total",
    "Requests served by a provider other than the first candidate",
)

TOKENS_TOTAL = Counter(
    "llm_orchestrator_tokens_total",
    "Total tokens processed",
    ["provider", "model", "type"],
)

COST_TOTAL = Counter(
    "llm_orchestrator_cost_total",
    "Total recorded spend in USD",
    ["provider", "model"],
)

CACHE_HITS_TOTAL = Counter(
    "llm_orchestrator_cache_hits_total",
    "Total response cache hits",
)

CACHE_MISS_TOTAL = Counter(
    "llm_orchestrator_cache_miss_total",
    "Total response cache misses",
)

CACHE_EVICTIONS_TOTAL = Counter(
    "llm_orchestrator_cache_evictions_total",
    "Response cache evictions",
    ["cause"],
)

CIRCUIT_BREAKER_STATE = Counter(
    "llm_orchestrator_circuit_breaker_state",
    "Circuit breaker state transitions",
    ["provider", "state"],
)

BUDGET_REJECTIONS_TOTAL = Counter(
    "llm_orchestrator_budget_rejections_total",
    "Requests rejected by the budget ledger",
    ["kind"],
)

BUDGET_ALERTS_TOTAL = Counter(
    "llm_orchestrator_budget_alerts_total",
    "Budget alert notifications emitted",
)

VALIDATIONS_TOTAL = Counter(
    "llm_orchestrator_validations_total",
    "Structured output validations",
    ["outcome"],
)

REPAIR_ATTEMPTS_TOTAL = Counter(
    "llm_orchestrator_repair_attempts_total",
    "Repair loop iterations",
    ["strategy"],
)
