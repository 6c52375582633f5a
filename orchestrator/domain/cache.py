from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel


@dataclass(frozen=True, slots=True)
class CacheConfig:
    max_entries: int = 1000
    default_ttl_seconds: int = 24 * 60 * 60

    def __post_init__(self) -> None:
        if self.max_entries < 1:
            raise ValueError("max_entries must be at least 1")


@dataclass(slots=True)
class CacheEntry:
    """A cached provider response. Validity is always re-derived from ``timestamp``."""

    key: str
    prompt: str
    response: str
    provider: str
    model: str
    tokens_used: int
    cost_usd: float
    timestamp: float
    ttl_seconds: int
    access_count: int = 0
    last_accessed: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp >= self.ttl_seconds


class CacheStats(BaseModel):
    total_entries: int
    hit_rate: float
    miss_rate: float
    total_hits: int
    total_misses: int
    approximate_size_bytes: int
    average_tokens_saved: float
    total_cost_saved: float
