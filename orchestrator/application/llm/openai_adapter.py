from __future__ import annotations

import json
from typing import Any

import httpx
import tiktoken

from orchestrator.application.llm.http import post_json, usd_cost
from orchestrator.domain.adapters import (
    GenerateRequest,
    GenerateResult,
    LLMMessage,
    LLMProviderAdapter,
    LLMUsage,
)
from orchestrator.domain.errors import ProviderError

_ENCODING_CACHE: dict[str, tiktoken.Encoding] = {}

_MODEL_COSTS_USD: dict[str, dict[str, float]] = {
    # USD per 1K tokens; keep in sync with provider pricing.
    "gpt-4o": {"prompt": 0.005, "completion": 0.015},
    "gpt-4o-mini": {"prompt": 0.00015, "completion": 0.0006},
    "gpt-4": {"prompt": 0.03, "completion": 0.06},
}


def _encoding_for_model(model: str) -> tiktoken.Encoding:
    if model in _ENCODING_CACHE:
        return _ENCODING_CACHE[model]
    try:
        encoding = tiktoken.encoding_for_model(model)
    except KeyError:
        encoding = tiktoken.get_encoding("cl100k_base")
    _ENCODING_CACHE[model] = encoding
    return encoding


def count_tokens(model: str, messages: list[LLMMessage]) -> int:
    encoding = _encoding_for_model(model)
    joined = "\n".join(f"{m.role.value}\n{m.content}" for m in messages)
    return len(encoding.encode(joined))


def _to_openai_messages(messages: list[LLMMessage]) -> list[dict[str, Any]]:
    result: list[dict[str, Any]] = []
    for m in messages:
        item: dict[str, Any] = {"role": m.role.value, "content": m.content}
        if m.name:
            item["name"] = m.name
        result.append(item)
    return result


def _response_format(value: str | dict[str, Any] | None) -> dict[str, Any] | None:
    if value is None:
        return None
    if isinstance(value, dict):
        return value
    return {"type": value}


class OpenAIAdapter(LLMProviderAdapter):
    """OpenAI chat completions implementation of the LLMProviderAdapter protocol."""

    name = "openai"

    def __init__(self, client: httpx.AsyncClient, *, max_retries: int = 1) -> None:
        self._client = client
        self._max_retries = max_retries

    async def generate(self, request: GenerateRequest) -> GenerateResult:
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": _to_openai_messages(request.messages),
            "temperature": request.temperature,
        }
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        if request.tools:
            payload["tools"] = request.tools
        if request.tool_choice:
            payload["tool_choice"] = request.tool_choice
        response_format = _response_format(request.response_format)
        if response_format:
            payload["response_format"] = response_format

        data = await post_json(
            self._client,
            "chat/completions",
            payload,
            provider=self.name,
            model=request.model,
            request_id=request.request_id,
            max_retries=self._max_retries,
        )

        try:
            choice = data["choices"][0]
            message = choice["message"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError(
                provider=self.name,
                model=request.model,
                retryable=False,
                fallback=True,
                message=f"Unexpected OpenAI response shape: {json.dumps(data)[:200]}",
            ) from exc

        content = message.get("content") or ""

        # Prefer provider's token counts if present.
        usage_data = data.get("usage") or {}
        prompt_tokens = int(usage_data.get("prompt_tokens") or 0) or count_tokens(
            request.model, request.messages,
        )
        completion_tokens = int(usage_data.get("completion_tokens") or 0)
        if completion_tokens == 0 and content:
            completion_tokens = len(_encoding_for_model(request.model).encode(content))

        return GenerateResult(
            provider=self.name,
            model=request.model,
            text=content,
            usage=LLMUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                cost_usd=usd_cost(
                    _MODEL_COSTS_USD.get(request.model), prompt_tokens, completion_tokens,
                ),
            ),
            finish_reason=choice.get("finish_reason"),
            tool_calls=list(message.get("tool_calls") or []),
            raw_response=data,
        )
