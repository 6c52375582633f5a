from __future__ import annotations

from fastapi import Request

from orchestrator.application.services.orchestrator import LLMOrchestrator


def get_orchestrator(request: Request) -> LLMOrchestrator:
    """Return the LLMOrchestrator built in the lifespan."""
    return request.app.state.orchestrator
