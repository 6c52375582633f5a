"""HTTP surface tests using FastAPI's TestClient with scripted adapters."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from orchestrator.domain.budget import UsageRecord
from orchestrator.main import create_app


@pytest.fixture
def client(make_adapter):
    with TestClient(create_app()) as test_client:
        factory = test_client.app.state.provider_factory
        for name in ("openai", "anthropic", "google"):
            factory.register_adapter(make_adapter(name, default_text=f"hello from {name}"))
        yield test_client


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "online"


def test_health_reports_providers(client):
    body = client.get("/internal/health").json()
    assert body["status"] == "healthy"
    assert set(body["dependencies"]["providers"]) == {"openai", "anthropic", "google"}
    assert body["dependencies"]["configured_providers"] == ["anthropic", "google", "openai"]


def test_metrics_exposition(client):
    response = client.get("/internal/metrics")
    assert response.status_code == 200
    assert "llm_orchestrator" in response.text


def test_complete(client):
    response = client.post(
        "/v1/complete",
        json={"prompt": "Say hello", "request_id": "api-1", "user": {"id": "alice"}},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["request_id"] == "api-1"
    assert body["text"] == f"hello from {body['provider_used']}"
    assert body["attempts_count"] == 1
    assert body["from_cache"] is False
    assert body["strategy"] == "balanced"

    budget = client.get("/internal/budget").json()
    assert budget["current_daily_spend"] > 0


def test_complete_with_schema_reports_validation(client, make_adapter):
    factory = client.app.state.provider_factory
    for name in ("openai", "anthropic", "google"):
        factory.register_adapter(make_adapter(name, default_text="{'greeting': 'hi'}"))

    response = client.post(
        "/v1/complete",
        json={
            "prompt": "Greet me as JSON",
            "response_schema": {
                "type": "object",
                "required": ["greeting"],
                "properties": {"greeting": {"type": "string"}},
            },
        },
    )
    body = response.json()
    assert response.status_code == 200
    assert body["validation"]["is_valid"] is True
    assert body["validation"]["repair_attempts"] == 1
    assert body["validation"]["data"] == {"greeting": "hi"}


def test_empty_prompt_is_rejected_by_schema(client):
    assert client.post("/v1/complete", json={"prompt": ""}).status_code == 422


def test_blank_prompt_is_invalid_request(client):
    response = client.post("/v1/complete", json={"prompt": "   "})
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidRequestError"


def test_budget_exceeded_maps_to_402(client):
    ledger = client.app.state.orchestrator.ledger
    ledger.record_usage(
        UsageRecord(
            provider="openai",
            model="gpt-4",
            tokens_used=10,
            cost_usd=ledger.config.daily_limit_usd,
            timestamp=ledger.now(),
            execution_id="seed",
        ),
    )
    response = client.post("/v1/complete", json={"prompt": "Too expensive"})
    assert response.status_code == 402
    assert response.json()["limit"] == "daily"


def test_status_endpoints(client):
    client.post("/v1/complete", json={"prompt": "Say hello"})

    providers = client.get("/internal/providers").json()
    assert {p["provider"] for p in providers["providers"]} == {"openai", "anthropic", "google"}

    assert client.get("/internal/cache").json()["total_entries"] == 1
    assert client.get("/internal/budget/usage", params={"timeframe": "week"}).json()["total_requests"] == 1
    assert client.get("/internal/routing/analytics").json()["model_usage"][0]["requests"] == 1
    assert client.get("/internal/validation").status_code == 200
    assert client.get("/internal/routing/optimizations/anonymous").status_code == 200
