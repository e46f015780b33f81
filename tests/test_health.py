"""Tests for /health endpoints."""

from collections.abc import AsyncGenerator

import pytest
from conftest import ScriptedUpstream
from httpx import ASGITransport, AsyncClient

from llmgateway.main import app
from llmgateway.providers import ActiveConfig


@pytest.fixture(autouse=True)
def cleanup_gateway():
    yield
    if hasattr(app.state, "gateway"):
        del app.state.gateway


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# /health
# ---------------------------------------------------------------------------
class TestHealthEndpoint:
    async def test_returns_200(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == 200

    async def test_response_structure(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        body = response.json()
        assert body["status"] == "healthy"
        assert "timestamp" in body
        assert "version" in body

    async def test_version_matches_settings(self, client: AsyncClient) -> None:
        from llmgateway.config import settings

        response = await client.get("/health")
        assert response.json()["version"] == settings.app_version


# ---------------------------------------------------------------------------
# /health/live
# ---------------------------------------------------------------------------
class TestLivenessEndpoint:
    async def test_returns_200(self, client: AsyncClient) -> None:
        response = await client.get("/health/live")
        assert response.status_code == 200

    async def test_response_body(self, client: AsyncClient) -> None:
        response = await client.get("/health/live")
        assert response.json()["status"] == "alive"


# ---------------------------------------------------------------------------
# /health/ready
# ---------------------------------------------------------------------------
class TestReadinessEndpoint:
    async def test_configured_gateway_is_ready(self, client: AsyncClient, make_gateway) -> None:
        upstream = ScriptedUpstream()
        app.state.gateway = make_gateway(upstream)

        response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ready", "checks": {"llm": "ok"}}
        assert upstream.requests == []

    async def test_missing_key_returns_503(self, client: AsyncClient, make_gateway) -> None:
        active = ActiveConfig(provider="groq", model="llama", api_url="https://api.groq.test/openai/v1")
        app.state.gateway = make_gateway(ScriptedUpstream(), active=active)

        response = await client.get("/health/ready")

        assert response.status_code == 503
        body = response.json()
        assert body["status"] == "unavailable"
        assert body["errors"]["llm"] == "Missing API key"

    async def test_no_configuration_returns_503(self, client: AsyncClient, make_gateway) -> None:
        app.state.gateway = make_gateway(ScriptedUpstream(), active=None)

        response = await client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["errors"]["llm"] == "No LLM configuration found"

    async def test_gateway_not_initialised_returns_503(self, client: AsyncClient) -> None:
        response = await client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["errors"]["llm"] == "Gateway not initialised"
