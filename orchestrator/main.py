from __future__ import annotations

from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from orchestrator.api.routes import complete, health, metrics, status
from orchestrator.application.llm.factory import ProviderAdapterFactory
from orchestrator.application.services.orchestrator import LLMOrchestrator
from orchestrator.core.logging import configure_logging, get_logger
from orchestrator.core.settings import get_settings
from orchestrator.domain.errors import (
    AllProvidersFailedError,
    BudgetExceededError,
    InvalidRequestError,
    NoAvailableModelError,
    OrchestrationError,
    RequestAbortedError,
)


settings = get_settings()
logger = get_logger(__name__)

_STATUS_BY_ERROR: list[tuple[type[OrchestrationError], int]] = [
    (InvalidRequestError, 400),
    (BudgetExceededError, 402),
    (RequestAbortedError, 408),
    (NoAvailableModelError, 422),
    (AllProvidersFailedError, 503),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context."""

    configure_logging(json=settings.environment != "dev")

    if settings.sentry_dsn:
        sentry_sdk.init(dsn=settings.sentry_dsn, traces_sample_rate=0.1)

    factory = ProviderAdapterFactory(settings)
    orchestrator = LLMOrchestrator.from_settings(settings, factory)

    await orchestrator.start()

    app.state.provider_factory = factory
    app.state.orchestrator = orchestrator

    yield

    await orchestrator.stop()
    await factory.shutdown()


def _error_body(exc: OrchestrationError) -> dict:
    body: dict = {"error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, BudgetExceededError):
        body["limit"] = exc.kind.value
    if isinstance(exc, AllProvidersFailedError):
        body["failed_providers"] = exc.failed_providers
        body["total_latency_ms"] = exc.total_latency_ms
    return body


def create_app() -> FastAPI:
    """Application factory."""

    app = FastAPI(
        title=settings.app_name,
        version=settings.api_version,
        lifespan=lifespan,
        debug=settings.enable_debug,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(f"Incoming {request.method} request to {request.url.path}")
        response = await call_next(request)
        logger.info(f"Response status: {response.status_code}")
        return response

    @app.exception_handler(OrchestrationError)
    async def orchestration_error_handler(request: Request, exc: OrchestrationError):
        status_code = 500
        for error_type, code in _STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                status_code = code
                break
        logger.warning(
            "Request to %s failed with %s: %s", request.url.path, type(exc).__name__, exc,
        )
        return JSONResponse(status_code=status_code, content=_error_body(exc))

    @app.get("/")
    async def root():
        return {
            "name": settings.app_name,
            "version": settings.api_version,
            "status": "online",
            "message": "Access /internal/health for status.",
        }

    app.include_router(health.router, prefix="/internal")
    app.include_router(metrics.router, prefix="/internal")
    app.include_router(status.router, prefix="/internal")
    app.include_router(complete.router)

    return app


app = create_app()
