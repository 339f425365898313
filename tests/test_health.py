"""Health endpoint tests."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    """GET /health returns 200 with healthy status."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_readiness_without_redis(client: AsyncClient) -> None:
    """GET /ready reports degraded when Redis is not configured."""
    response = await client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert data["checks"]["database"] == "ok"
    assert data["checks"]["redis"] == "not configured"


@pytest.mark.asyncio
async def test_version(client: AsyncClient) -> None:
    """GET /version returns version and environment."""
    response = await client.get("/version")
    assert response.status_code == 200
    assert response.json() == {"version": "0.1.0", "environment": "development"}


@pytest.mark.asyncio
async def test_request_id_header(client: AsyncClient) -> None:
    response = await client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
