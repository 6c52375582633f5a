from __future__ import annotations

from typing import Any

import httpx

from orchestrator.application.llm.http import post_json, usd_cost
from orchestrator.domain.adapters import (
    GenerateRequest,
    GenerateResult,
    LLMMessage,
    LLMProviderAdapter,
    LLMUsage,
    MessageRole,
)
from orchestrator.domain.errors import ProviderError

_GEMINI_COSTS_USD: dict[str, dict[str, float]] = {
    # USD per 1K tokens.
    "gemini-pro": {"prompt": 0.001, "completion": 0.002},
    "gemini-1.5-pro": {"prompt": 0.00125, "completion": 0.005},
    "gemini-1.5-flash": {"prompt": 0.000075, "completion": 0.0003},
}


def _count_tokens_gemini(messages: list[LLMMessage]) -> int:
    """
    Gemini uses characters for pricing, but tokens for limits.
    Rough estimation: 1 token ~= 4 characters.
    """
    total_chars = sum(len(m.content) for m in messages)
    return max(1, total_chars // 4)


def _to_gemini_payload(messages: list[LLMMessage]) -> tuple[list[dict[str, Any]], dict[str, Any] | None]:
    """Split unified messages into Gemini contents and a system instruction."""
    system_parts: list[dict[str, str]] = []
    contents: list[dict[str, Any]] = []
    for m in messages:
        if m.role == MessageRole.SYSTEM:
            system_parts.append({"text": m.content})
            continue
        role = "model" if m.role == MessageRole.ASSISTANT else "user"
        contents.append({"role": role, "parts": [{"text": m.content}]})
    system = {"parts": system_parts} if system_parts else None
    return contents, system


class GeminiAdapter(LLMProviderAdapter):
    """Google Gemini implementation of the LLMProviderAdapter protocol."""

    name = "google"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str | None = None,
        max_retries: int = 1,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._max_retries = max_retries

    async def generate(self, request: GenerateRequest) -> GenerateResult:
        contents, system = _to_gemini_payload(request.messages)

        generation_config: dict[str, Any] = {
            "temperature": request.temperature,
            "maxOutputTokens": request.max_tokens or 2048,
        }
        if request.response_format in ("json", "json_object") or isinstance(request.response_format, dict):
            generation_config["responseMimeType"] = "application/json"

        payload: dict[str, Any] = {"contents": contents, "generationConfig": generation_config}
        if system:
            payload["systemInstruction"] = system

        data = await post_json(
            self._client,
            f"models/{request.model}:generateContent",
            payload,
            provider=self.name,
            model=request.model,
            request_id=request.request_id,
            # Gemini API key is passed as a query param
            params={"key": self._api_key or ""},
            max_retries=self._max_retries,
        )

        try:
            candidate = data["candidates"][0]
            parts = candidate["content"]["parts"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError(
                provider=self.name,
                model=request.model,
                retryable=False,
                fallback=True,
                message="Gemini returned no candidates",
            ) from exc
        content = "".join(p.get("text", "") for p in parts)

        usage_metadata = data.get("usageMetadata", {})
        prompt_tokens = int(usage_metadata.get("promptTokenCount") or 0) or _count_tokens_gemini(
            request.messages,
        )
        completion_tokens = int(usage_metadata.get("candidatesTokenCount") or 0)

        return GenerateResult(
            provider=self.name,
            model=request.model,
            text=content,
            usage=LLMUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                cost_usd=usd_cost(
                    _GEMINI_COSTS_USD.get(request.model), prompt_tokens, completion_tokens,
                ),
            ),
            finish_reason=candidate.get("finishReason"),
            tool_calls=[p["functionCall"] for p in parts if "functionCall" in p],
            raw_response=data,
        )
