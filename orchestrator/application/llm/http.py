from __future__ import annotations

import asyncio
from collections.abc import Collection, Mapping
from typing import Any

import httpx

from orchestrator.domain.errors import ProviderError

TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})


async def post_json(
    client: httpx.AsyncClient,
    path: str,
    payload: Mapping[str, Any],
    *,
    provider: str,
    model: str,
    request_id: str = "",
    params: Mapping[str, str] | None = None,
    transient_statuses: Collection[int] = TRANSIENT_STATUSES,
    max_retries: int = 1,
    backoff_s: float = 0.5,
) -> dict[str, Any]:
    """POST ``payload`` and return the decoded JSON body.

    Transient statuses and network errors are retried ``max_retries`` times
    with exponential backoff before surfacing as a ``ProviderError``. Every
    error raised here allows fallback to another provider.
    """

    headers = {"X-Request-ID": request_id} if request_id else None

    for attempt in range(max_retries + 1):
        last_attempt = attempt == max_retries
        try:
            resp = await client.post(path, json=dict(payload), params=params, headers=headers)
        except httpx.RequestError as exc:
            if last_attempt:
                raise ProviderError(
                    provider=provider,
                    model=model,
                    retryable=True,
                    fallback=True,
                    message=f"{provider} network error: {exc}",
                ) from exc
            await asyncio.sleep(backoff_s * 2**attempt)
            continue

        if resp.status_code in transient_statuses:
            if last_attempt:
                raise ProviderError(
                    provider=provider,
                    model=model,
                    retryable=True,
                    fallback=True,
                    message=f"{provider} transient error: {resp.status_code} {resp.text}",
                    status_code=resp.status_code,
                )
            await asyncio.sleep(backoff_s * 2**attempt)
            continue

        if resp.status_code >= 400:
            raise ProviderError(
                provider=provider,
                model=model,
                retryable=False,
                fallback=True,
                message=f"{provider} client error: {resp.status_code} {resp.text}",
                status_code=resp.status_code,
            )

        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderError(
                provider=provider,
                model=model,
                retryable=False,
                fallback=True,
                message=f"{provider} returned a non-JSON body",
                status_code=resp.status_code,
            ) from exc

    raise ProviderError(
        provider=provider,
        model=model,
        retryable=True,
        fallback=True,
        message=f"{provider} retries exhausted",
    )


def usd_cost(prices: Mapping[str, float] | None, prompt_tokens: int, completion_tokens: int) -> float:
    """Cost from a ``{"prompt": ..., "completion": ...}`` USD per 1K token table."""

    if not prices:
        return 0.0
    return prices["prompt"] * prompt_tokens / 1000 + prices["completion"] * completion_tokens / 1000
