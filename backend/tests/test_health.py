"""Tests for the health endpoint."""
import pytest
from httpx import AsyncClient, ASGITransport

from church_approvals.main import app


@pytest.mark.asyncio
async def test_health_returns_200():
    """GET /health should return HTTP 200 with status ok."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/health")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_health_returns_ok_status():
    """GET /health should return JSON body with status == ok."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/health")
    data = response.json()
    assert data["status"] == "ok"


@pytest.mark.asyncio
async def test_health_echoes_request_id():
    """Responses carry the caller's X-Request-ID, or a generated one."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        given = await client.get("/health", headers={"X-Request-ID": "abc123"})
        generated = await client.get("/health")
    assert given.headers["X-Request-ID"] == "abc123"
    assert len(generated.headers["X-Request-ID"]) == 32
