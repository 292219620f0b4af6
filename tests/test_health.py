"""Health endpoint + request-ID middleware tests."""

import pytest


@pytest.mark.asyncio
async def test_health_returns_ok(client):
    """Health endpoint should return server status, version and counters."""
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["server"] == "ok"
    assert data["jobs"] == "ok"
    assert "version" in data
    assert data["cache"] == {"size": 0, "valid": 0, "invalidated": 0}
    assert data["subscriptions"] == {"channels": 0, "connections": 0}


@pytest.mark.asyncio
async def test_health_degraded_when_workers_stopped(app, services):
    """Without started workers the queue reports stopped."""
    from httpx import ASGITransport, AsyncClient

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        resp = await ac.get("/api/health")
    assert resp.json()["status"] == "degraded"
    assert resp.json()["jobs"] == "stopped"


@pytest.mark.asyncio
async def test_request_id_generated(client):
    """Each request gets a unique X-Request-ID header."""
    r1 = await client.get("/api/health")
    r2 = await client.get("/api/health")
    assert "X-Request-ID" in r1.headers
    assert r1.headers["X-Request-ID"] != r2.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_request_id_propagated(client):
    """Incoming X-Request-ID is echoed back."""
    r = await client.get("/api/health", headers={"X-Request-ID": "trace-12345"})
    assert r.headers["X-Request-ID"] == "trace-12345"
