from typing import Any

from fastapi import APIRouter, Request


router = APIRouter(tags=["health"])


@router.get("/health", summary="Readiness probe")
async def health(request: Request) -> dict[str, Any]:
    """Report orchestrator readiness and the state of each provider breaker."""

    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        return {"status": "starting", "dependencies": {}}

    providers = {
        s.provider: s.circuit_state.value for s in orchestrator.executor.get_provider_status()
    }
    budget = orchestrator.ledger.get_budget_status()

    status = "healthy"
    if not orchestrator.running:
        status = "degraded"
    if providers and all(state == "open" for state in providers.values()):
        status = "degraded"
    if budget.emergency_stop:
        status = "degraded"

    return {
        "status": status,
        "dependencies": {
            "providers": providers,
            "configured_providers": request.app.state.provider_factory.available_providers(),
            "budget": "emergency_stop" if budget.emergency_stop else "ok",
            "cache_entries": len(orchestrator.cache),
        },
    }
