"""Shared fixtures: scripted provider adapters, a manual clock and a fake factory."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

import pytest

from orchestrator.application.llm.factory import ProviderAdapterFactory
from orchestrator.core.settings import Settings
from orchestrator.domain.adapters import GenerateRequest, GenerateResult, LLMUsage


class FakeAdapter:
    """Provider adapter double.

    ``script`` items are consumed one per call: strings become completions,
    exceptions are raised. Once the script is exhausted ``default_text`` is
    returned.
    """

    def __init__(
        self,
        name: str,
        script: Iterable[str | BaseException] = (),
        *,
        default_text: str = "ok",
        delay_s: float = 0.0,
        usage: LLMUsage | None = None,
    ) -> None:
        self.name = name
        self._script = list(script)
        self._default_text = default_text
        self._delay_s = delay_s
        self._usage = usage
        self.calls: list[GenerateRequest] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def generate(self, request: GenerateRequest) -> GenerateResult:
        self.calls.append(request)
        if self._delay_s:
            await asyncio.sleep(self._delay_s)
        item = self._script.pop(0) if self._script else self._default_text
        if isinstance(item, BaseException):
            raise item
        usage = self._usage or LLMUsage(prompt_tokens=12, completion_tokens=8)
        return GenerateResult(
            provider=self.name,
            model=request.model,
            text=item,
            usage=LLMUsage(usage.prompt_tokens, usage.completion_tokens, usage.cost_usd),
            finish_reason="stop",
        )


class FakeClock:
    """Monotonic clock advanced by hand, in seconds."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        openai_api_key=None,
        anthropic_api_key=None,
        gemini_api_key=None,
        sentry_dsn=None,
    )


@pytest.fixture
def make_adapter():
    """Factory fixture building ``FakeAdapter`` instances."""

    def _make(name: str, *script: str | BaseException, **kwargs) -> FakeAdapter:
        return FakeAdapter(name, script, **kwargs)

    return _make


@pytest.fixture
def fake_factory(settings: Settings):
    """ProviderAdapterFactory whose adapters are registered by the test."""

    def _build(*adapters: FakeAdapter) -> ProviderAdapterFactory:
        factory = ProviderAdapterFactory(settings)
        for adapter in adapters:
            factory.register_adapter(adapter)
        return factory

    return _build
