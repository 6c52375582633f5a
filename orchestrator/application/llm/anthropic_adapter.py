from __future__ import annotations

from typing import Any

import httpx

from orchestrator.application.llm.http import TRANSIENT_STATUSES, post_json, usd_cost
from orchestrator.domain.adapters import (
    GenerateRequest,
    GenerateResult,
    LLMMessage,
    LLMProviderAdapter,
    LLMUsage,
    MessageRole,
)

_ANTHROPIC_TRANSIENT = TRANSIENT_STATUSES | {529}

_ANTHROPIC_COSTS_USD: dict[str, dict[str, float]] = {
    # USD per 1K tokens.
    "claude-3-5-sonnet": {"prompt": 0.003, "completion": 0.015},
    "claude-3-haiku": {"prompt": 0.00025, "completion": 0.00125},
    "claude-3-opus": {"prompt": 0.015, "completion": 0.075},
}


def _count_tokens_estimate(messages: list[LLMMessage]) -> int:
    # ~4 chars per token; Anthropic does not ship a local tokenizer.
    total_chars = sum(len(m.content) for m in messages)
    return max(1, total_chars // 4)


def _to_anthropic_messages(messages: list[LLMMessage]) -> tuple[list[dict[str, Any]], str | None]:
    """Convert unified messages into Anthropic roles and system prompt."""

    system_parts: list[str] = []
    converted: list[dict[str, Any]] = []

    for m in messages:
        if m.role == MessageRole.SYSTEM:
            system_parts.append(m.content)
            continue
        role = "assistant" if m.role == MessageRole.ASSISTANT else "user"
        converted.append({"role": role, "content": m.content})

    system_prompt = "\n".join(system_parts) if system_parts else None
    return converted, system_prompt


class AnthropicAdapter(LLMProviderAdapter):
    """Anthropic messages API implementation of the LLMProviderAdapter protocol."""

    name = "anthropic"

    def __init__(self, client: httpx.AsyncClient, *, max_retries: int = 1) -> None:
        self._client = client
        self._max_retries = max_retries

    async def generate(self, request: GenerateRequest) -> GenerateResult:
        messages, system_prompt = _to_anthropic_messages(request.messages)

        payload: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "max_tokens": request.max_tokens or 1024,
            "temperature": request.temperature,
        }
        if system_prompt:
            payload["system"] = system_prompt
        if request.tools:
            payload["tools"] = request.tools

        data = await post_json(
            self._client,
            "messages",
            payload,
            provider=self.name,
            model=request.model,
            request_id=request.request_id,
            transient_statuses=_ANTHROPIC_TRANSIENT,
            max_retries=self._max_retries,
        )

        text_parts: list[str] = []
        tool_calls: list[dict[str, Any]] = []
        for block in data.get("content", []):
            if block.get("type") == "text":
                text_parts.append(block.get("text") or "")
            elif block.get("type") == "tool_use":
                tool_calls.append(block)
        content = "".join(text_parts)

        usage_data = data.get("usage") or {}
        prompt_tokens = int(usage_data.get("input_tokens") or 0) or _count_tokens_estimate(
            request.messages,
        )
        completion_tokens = int(usage_data.get("output_tokens") or 0)
        if completion_tokens == 0 and content:
            completion_tokens = _count_tokens_estimate(
                [LLMMessage(role=MessageRole.ASSISTANT, content=content)],
            )

        return GenerateResult(
            provider=self.name,
            model=request.model,
            text=content,
            usage=LLMUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                cost_usd=usd_cost(
                    _ANTHROPIC_COSTS_USD.get(request.model), prompt_tokens, completion_tokens,
                ),
            ),
            finish_reason=data.get("stop_reason"),
            tool_calls=tool_calls,
            raw_response=data,
        )
