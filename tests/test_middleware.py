"""Middleware tests: request ID, rate limiting, CORS, error envelope."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import AsyncClient

import rundao.middleware.rate_limit as rate_limit


def _fake_redis(count: int) -> MagicMock:
    """Redis stand-in whose pipeline reports ``count`` hits in the window."""
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[count, True])
    redis = MagicMock()
    redis.pipeline.return_value = pipe
    return redis


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient) -> None:
    """Request ID is auto-generated when not provided."""
    response = await client.get("/api/health")
    assert len(response.headers["x-request-id"]) == 36  # UUID format


@pytest.mark.asyncio
async def test_request_id_preserved(client: AsyncClient) -> None:
    response = await client.get("/api/health", headers={"X-Request-Id": "test-abc-123"})
    assert response.headers["x-request-id"] == "test-abc-123"


@pytest.mark.asyncio
async def test_no_rate_limit_without_redis(client: AsyncClient) -> None:
    response = await client.get("/api/users")
    assert response.status_code == 200
    assert "x-ratelimit-limit" not in response.headers


@pytest.mark.asyncio
async def test_rate_limit_headers(client: AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(rate_limit, "get_redis", lambda: _fake_redis(3))
    response = await client.get("/api/users")
    assert response.status_code == 200
    assert response.headers["x-ratelimit-limit"] == "100"
    assert response.headers["x-ratelimit-remaining"] == "97"


@pytest.mark.asyncio
async def test_rate_limit_blocks_excess(client: AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
    """Request over the window budget returns 429 with Retry-After."""
    monkeypatch.setattr(rate_limit, "get_redis", lambda: _fake_redis(101))
    response = await client.get("/api/users")
    assert response.status_code == 429
    assert response.headers["retry-after"] == "60"
    assert response.json() == {"error": "Rate limit exceeded. Try again later."}


@pytest.mark.asyncio
async def test_health_exempt_from_rate_limit(client: AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(rate_limit, "get_redis", lambda: _fake_redis(10_000))
    response = await client.get("/api/health")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_cors_preflight(client: AsyncClient) -> None:
    """CORS preflight returns access-control-allow-origin for configured origin."""
    response = await client.options(
        "/api/health",
        headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "GET",
        },
    )
    assert response.headers["access-control-allow-origin"] == "http://localhost:5173"


@pytest.mark.asyncio
async def test_404_uses_error_envelope(client: AsyncClient) -> None:
    response = await client.get("/nonexistent-path")
    assert response.status_code == 404
    assert response.headers["content-type"] == "application/json"
    assert response.json() == {"error": "Not Found"}


@pytest.mark.asyncio
async def test_body_validation_is_400(client: AsyncClient) -> None:
    """Malformed request bodies are client errors with the same envelope."""
    response = await client.post("/api/users", json={"custody_type": "bank"})
    assert response.status_code == 400
    assert "custody_type" in response.json()["error"]


@pytest.mark.asyncio
async def test_missing_token_is_401(client: AsyncClient) -> None:
    response = await client.post("/api/crews", json={"name": "Nobody's Crew"})
    assert response.status_code == 401
    assert response.json() == {"error": "Missing bearer token"}
