"""Tests for the in-process LRU response cache."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from orchestrator.application.services.response_cache import ResponseCache
from orchestrator.core.settings import Settings
from orchestrator.domain.cache import CacheConfig


@pytest.fixture
def cache(clock) -> ResponseCache:
    return ResponseCache(CacheConfig(max_entries=2, default_ttl_seconds=10), clock=clock)


def _store(cache: ResponseCache, prompt: str, **overrides):
    kwargs = {
        "provider": "openai",
        "model": "gpt-4o-mini",
        "tokens_used": 20,
        "cost_usd": 0.002,
    }
    kwargs.update(overrides)
    return cache.store(prompt, f"answer to {prompt}", **kwargs)


class TestLookup:
    def test_hit_returns_stored_response(self, cache):
        _store(cache, "hello")
        entry = cache.get("hello", "gpt-4o-mini", "openai")
        assert entry is not None
        assert entry.response == "answer to hello"
        assert entry.access_count == 1

    def test_round_trip_preserves_response_and_cost(self, cache):
        cache.store(
            "prompt \u00e9\n", "r\u00e9sum\u00e9 \u2713", provider="anthropic", model="claude-3-haiku",
            tokens_used=5, cost_usd=0.000123,
        )
        entry = cache.get("prompt \u00e9\n", "claude-3-haiku", "anthropic")
        assert entry.response == "r\u00e9sum\u00e9 \u2713"
        assert entry.cost_usd == 0.000123

    def test_key_includes_provider_and_model(self, cache):
        _store(cache, "hello")
        assert cache.get("hello", "gpt-4", "openai") is None
        assert cache.get("hello", "gpt-4o-mini", "anthropic") is None

    def test_key_is_namespaced_digest(self):
        key = ResponseCache.make_key("hello", "gpt-4o-mini", "openai")
        assert key.startswith("orch:resp:")
        assert len(key) == len("orch:resp:") + 64
        assert key == ResponseCache.make_key("hello", "gpt-4o-mini", "openai")

    def test_access_updates_last_accessed(self, cache, clock):
        _store(cache, "hello")
        clock.advance(3)
        entry = cache.get("hello", "gpt-4o-mini", "openai")
        assert entry.last_accessed == clock.now


class TestExpiry:
    def test_entry_expires_at_ttl(self, cache, clock):
        _store(cache, "hello")
        clock.advance(9)
        assert cache.get("hello", "gpt-4o-mini", "openai") is not None
        clock.advance(1)
        assert cache.get("hello", "gpt-4o-mini", "openai") is None
        assert len(cache) == 0

    def test_per_entry_ttl_overrides_default(self, cache, clock):
        _store(cache, "short", ttl_seconds=1)
        clock.advance(1)
        assert cache.get("short", "gpt-4o-mini", "openai") is None

    def test_sweep_removes_only_expired(self, cache, clock):
        _store(cache, "old", ttl_seconds=1)
        _store(cache, "fresh", ttl_seconds=100)
        clock.advance(5)
        assert cache.sweep_expired() == 1
        assert len(cache) == 1
        assert cache.get("fresh", "gpt-4o-mini", "openai") is not None


class TestEviction:
    def test_least_recently_used_is_evicted_at_capacity(self, cache):
        a = _store(cache, "a")
        b = _store(cache, "b")
        cache.get("a", "gpt-4o-mini", "openai")
        c = _store(cache, "c")

        assert a.key in cache
        assert b.key not in cache
        assert c.key in cache
        assert len(cache) == 2

    def test_restoring_existing_key_does_not_evict(self, cache):
        a = _store(cache, "a")
        b = _store(cache, "b")
        _store(cache, "a")
        assert a.key in cache
        assert b.key in cache

    def test_single_entry_cache_keeps_latest(self, clock):
        cache = ResponseCache(CacheConfig(max_entries=1), clock=clock)
        a = _store(cache, "a")
        b = _store(cache, "b")

        assert a.key not in cache
        assert b.key in cache
        assert len(cache) == 1

    @pytest.mark.parametrize("max_entries", [0, -1])
    def test_capacity_must_be_positive(self, max_entries):
        with pytest.raises(ValueError):
            CacheConfig(max_entries=max_entries)

    def test_settings_reject_empty_cache(self):
        with pytest.raises(ValidationError):
            Settings(cache_max_entries=0)


class TestStats:
    def test_empty_cache(self, cache):
        stats = cache.stats()
        assert stats.total_entries == 0
        assert stats.hit_rate == 0.0
        assert stats.miss_rate == 0.0

    def test_rates_and_savings(self, cache):
        _store(cache, "hello", tokens_used=40, cost_usd=0.01)
        cache.get("hello", "gpt-4o-mini", "openai")
        cache.get("hello", "gpt-4o-mini", "openai")
        cache.get("missing", "gpt-4o-mini", "openai")

        stats = cache.stats()
        assert stats.total_hits == 2
        assert stats.total_misses == 1
        assert stats.hit_rate == pytest.approx(200 / 3)
        assert stats.miss_rate == pytest.approx(100 / 3)
        assert stats.total_cost_saved == pytest.approx(0.02)
        assert stats.average_tokens_saved == pytest.approx(80)
        assert stats.approximate_size_bytes == (len("hello") + len("answer to hello")) * 2

    def test_clear_resets_entries_and_counters(self, cache):
        _store(cache, "hello")
        cache.get("hello", "gpt-4o-mini", "openai")
        cache.clear()
        stats = cache.stats()
        assert stats.total_entries == 0
        assert stats.total_hits == 0
