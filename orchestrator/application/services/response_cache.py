from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from hashlib import sha256

from orchestrator.core.logging import get_logger
from orchestrator.domain.cache import CacheConfig, CacheEntry, CacheStats
from orchestrator.monitoring.metrics import (
    CACHE_EVICTIONS_TOTAL,
    CACHE_HITS_TOTAL,
    CACHE_MISS_TOTAL,
)

logger = get_logger(__name__)


class ResponseCache:
    """In-process LRU cache of provider responses.

    Entries are keyed by provider, model and prompt. An entry is served only
    while ``now - timestamp < ttl_seconds``; an expired entry found on lookup
    is evicted and counted as a miss. Recency order is kept by the
    ``OrderedDict``: the first item is always the least recently accessed.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or CacheConfig()
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._hits = 0
        self._misses = 0

    @property
    def config(self) -> CacheConfig:
        return self._config

    @staticmethod
    def make_key(prompt: str, model: str, provider: str) -> str:
        digest = sha256(f"{provider}:{model}:{prompt}".encode("utf-8")).hexdigest()
        return f"orch:resp:{digest}"

    def get(self, prompt: str, model: str, provider: str) -> CacheEntry | None:
        key = self.make_key(prompt, model, provider)
        entry = self._entries.get(key)
        now = self._clock()

        if entry is None:
            self._misses += 1
            CACHE_MISS_TOTAL.inc()
            return None

        if entry.is_expired(now):
            del self._entries[key]
            self._misses += 1
            CACHE_MISS_TOTAL.inc()
            CACHE_EVICTIONS_TOTAL.labels(cause="expired").inc()
            return None

        entry.access_count += 1
        entry.last_accessed = now
        self._entries.move_to_end(key)
        self._hits += 1
        CACHE_HITS_TOTAL.inc()
        return entry

    def put(self, entry: CacheEntry) -> None:
        if entry.key in self._entries:
            del self._entries[entry.key]
        elif len(self._entries) >= self._config.max_entries:
            evicted_key, _ = self._entries.popitem(last=False)
            CACHE_EVICTIONS_TOTAL.labels(cause="capacity").inc()
            logger.debug("Evicted least recently used cache entry %s", evicted_key)
        self._entries[entry.key] = entry

    def store(
        self,
        prompt: str,
        response: str,
        *,
        provider: str,
        model: str,
        tokens_used: int,
        cost_usd: float,
        ttl_seconds: int | None = None,
    ) -> CacheEntry:
        now = self._clock()
        entry = CacheEntry(
            key=self.make_key(prompt, model, provider),
            prompt=prompt,
            response=response,
            provider=provider,
            model=model,
            tokens_used=tokens_used,
            cost_usd=cost_usd,
            timestamp=now,
            ttl_seconds=ttl_seconds if ttl_seconds is not None else self._config.default_ttl_seconds,
            last_accessed=now,
        )
        self.put(entry)
        return entry

    def sweep_expired(self) -> int:
        """Drop every expired entry; returns how many were removed."""

        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            CACHE_EVICTIONS_TOTAL.labels(cause="expired").inc(len(expired))
            logger.info("Swept %d expired cache entries", len(expired))
        return len(expired)

    def stats(self) -> CacheStats:
        """Hit and miss rates are percentages of all lookups since the last clear."""

        lookups = self._hits + self._misses
        entries = list(self._entries.values())
        # UTF-16 estimate: two bytes per character.
        size = sum((len(e.prompt) + len(e.response)) * 2 for e in entries)
        tokens_saved = sum(e.tokens_used * e.access_count for e in entries)
        return CacheStats(
            total_entries=len(entries),
            hit_rate=self._hits / lookups * 100 if lookups else 0.0,
            miss_rate=self._misses / lookups * 100 if lookups else 0.0,
            total_hits=self._hits,
            total_misses=self._misses,
            approximate_size_bytes=size,
            average_tokens_saved=tokens_saved / len(entries) if entries else 0.0,
            total_cost_saved=sum(e.cost_usd * e.access_count for e in entries),
        )

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        logger.info("Response cache cleared")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
