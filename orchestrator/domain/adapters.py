from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class MessageRole(str, Enum):
    """Supported chat message roles."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(slots=True)
class LLMMessage:
    """Unified representation of a chat message."""

    role: MessageRole
    content: str
    name: str | None = None


@dataclass(slots=True)
class LLMUsage:
    """Token usage and spend for a completion."""

    prompt_tokens: int
    completion_tokens: int
    cost_usd: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(slots=True)
class GenerateRequest:
    """Provider-level generation request passed to adapters."""

    model: str
    messages: list[LLMMessage]
    temperature: float = 0.7
    max_tokens: int | None = None
    tools: list[dict[str, Any]] | None = None
    tool_choice: str | dict[str, Any] | None = None
    response_format: str | dict[str, Any] | None = None
    abort_signal: asyncio.Event | None = None
    request_id: str = ""


@dataclass(slots=True)
class GenerateResult:
    """Normalized generation result from a provider."""

    provider: str
    model: str
    text: str
    usage: LLMUsage
    finish_reason: str | None = None
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    raw_response: Mapping[str, Any] = field(default_factory=dict)


@runtime_checkable
class LLMProviderAdapter(Protocol):
    """Protocol implemented by all LLM provider adapters."""

    name: str

    async def generate(self, request: GenerateRequest) -> GenerateResult:
        """Execute a single non-streaming generation."""
