"""Tests for health check endpoints."""

import pytest

from api.routes import health


@pytest.mark.unit
class TestHealth:
    """Health endpoint tests."""

    async def test_health_v1(self, client):
        """GET /api/v1/health/ returns app info."""
        resp = await client.get("/api/v1/health/")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["app"] == "Business Automation Engine"
        assert "version" in data

    async def test_health_root(self, client):
        """GET /api/health/ answers too (unversioned, for LB probes)."""
        resp = await client.get("/api/health/")
        assert resp.status_code == 200

    async def test_dependencies(self, client):
        resp = await client.get("/api/health/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy", "database": "ok", "redis": "not_used"}

    async def test_database_down(self, client, monkeypatch):
        async def unavailable():
            return "unavailable"

        monkeypatch.setattr(health, "_check_database", unavailable)
        resp = await client.get("/api/v1/health/health")
        assert resp.status_code == 503
        assert resp.json()["detail"]["status"] == "unhealthy"

    async def test_redis_down_degrades(self, client, monkeypatch):
        async def unavailable():
            return "unavailable"

        monkeypatch.setattr(health, "_check_redis", unavailable)
        resp = await client.get("/api/v1/health/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "degraded"

    async def test_response_has_request_id(self, client):
        """Every response should have X-Request-ID header."""
        resp = await client.get("/api/v1/health/")
        assert "x-request-id" in resp.headers

    async def test_custom_request_id_propagated(self, client):
        """If client sends X-Request-ID, it should be echoed back."""
        custom_id = "test-request-12345"
        resp = await client.get(
            "/api/v1/health/",
            headers={"X-Request-ID": custom_id},
        )
        assert resp.headers.get("x-request-id") == custom_id
