from __future__ import annotations

import httpx

from orchestrator.application.llm.anthropic_adapter import AnthropicAdapter
from orchestrator.application.llm.gemini_adapter import GeminiAdapter
from orchestrator.application.llm.openai_adapter import OpenAIAdapter
from orchestrator.core.logging import get_logger
from orchestrator.core.settings import Settings
from orchestrator.domain.adapters import LLMProviderAdapter

logger = get_logger(__name__)

BUILTIN_PROVIDERS = ("openai", "anthropic", "google")


class ProviderAdapterFactory:
    """Factory for creating and pooling LLM provider adapters and their HTTP clients.

    Built-in adapters are created lazily on first use. Custom adapters (or
    test doubles) registered through ``register_adapter`` take precedence.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._clients: dict[str, httpx.AsyncClient] = {}
        self._adapters: dict[str, LLMProviderAdapter] = {}

    def register_adapter(self, adapter: LLMProviderAdapter) -> None:
        self._adapters[adapter.name] = adapter
        logger.info("Registered provider adapter %s", adapter.name)

    def available_providers(self) -> list[str]:
        """Providers that have an adapter registered or credentials configured."""

        s = self._settings
        configured = {
            "openai": s.openai_api_key,
            "anthropic": s.anthropic_api_key,
            "google": s.gemini_api_key,
        }
        names = set(self._adapters)
        names.update(name for name, key in configured.items() if key)
        return sorted(names)

    def get_adapter(self, provider: str) -> LLMProviderAdapter:
        """Get or create an adapter for the specified provider."""
        provider = provider.lower()
        if provider not in self._adapters:
            client = self._get_or_create_client(provider)
            if provider == "openai":
                self._adapters[provider] = OpenAIAdapter(client)
            elif provider == "anthropic":
                self._adapters[provider] = AnthropicAdapter(client)
            elif provider == "google":
                self._adapters[provider] = GeminiAdapter(
                    client, api_key=self._settings.gemini_api_key,
                )
            else:
                raise ValueError(f"Unknown provider: {provider}")

        return self._adapters[provider]

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            timeout=self._settings.http_read_timeout_s,
            connect=self._settings.http_connect_timeout_s,
        )

    def _get_or_create_client(self, provider: str) -> httpx.AsyncClient:
        if provider in self._clients:
            return self._clients[provider]

        s = self._settings
        if provider == "openai":
            client = httpx.AsyncClient(
                base_url=str(s.openai_base_url or "https://api.openai.com/v1/"),
                headers={
                    "Authorization": f"Bearer {s.openai_api_key or ''}",
                    "Content-Type": "application/json",
                },
                timeout=self._timeout(),
            )
        elif provider == "anthropic":
            client = httpx.AsyncClient(
                base_url=str(s.anthropic_base_url or "https://api.anthropic.com/v1/"),
                headers={
                    "x-api-key": s.anthropic_api_key or "",
                    "anthropic-version": "2023-06-01",
                    "Content-Type": "application/json",
                },
                timeout=self._timeout(),
            )
        elif provider == "google":
            client = httpx.AsyncClient(
                base_url=str(s.gemini_base_url or "https://generativelanguage.googleapis.com/v1beta/"),
                headers={"Content-Type": "application/json"},
                timeout=self._timeout(),
            )
        else:
            raise ValueError(f"Unknown provider: {provider}")

        self._clients[provider] = client
        return client

    async def shutdown(self) -> None:
        """Close all HTTP clients."""
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()
        self._adapters.clear()
