"""
Tests for the /healthz endpoints.

Validates basic health check functionality, response format,
request tracking headers, and the store-backed readiness probe.
"""

from fastapi import status

from workfusion.db.store import StoreUnavailableError


class TestHealthEndpoint:
    """Test suite for health check endpoint."""

    def test_healthz_returns_200(self, test_client):
        """Health endpoint should return 200 OK."""
        response = test_client.get("/healthz")

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"] == "application/json"

    def test_healthz_response_structure(self, test_client, test_settings):
        """Health endpoint should return status, version and environment."""
        data = test_client.get("/healthz").json()

        assert data == {
            "status": "ok",
            "version": test_settings.app_version,
            "environment": "test",
        }

    def test_healthz_request_id_header(self, test_client):
        """Every response carries a request ID and timing header."""
        response = test_client.get("/healthz")

        assert response.headers.get("X-Request-ID")
        assert response.headers.get("X-Response-Time", "").endswith("ms")

    def test_healthz_no_caching_headers(self, test_client):
        """Health endpoint should not be cached."""
        response = test_client.get("/healthz")

        assert "no-cache" in response.headers.get("cache-control", "")

    def test_healthz_does_not_require_auth(self, test_client):
        assert test_client.get("/healthz").status_code == 200

    def test_liveness_probe(self, test_client):
        assert test_client.get("/healthz/live").json() == {"status": "alive"}


class TestReadinessProbe:
    def test_ready_when_store_answers(self, test_client):
        response = test_client.get("/healthz/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["ready"] is True
        assert data["integrations"] == {"xero": True, "paypal": True, "plaid": True, "stripe": True}

    def test_not_ready_when_store_is_down(self, test_client, memory_store):
        async def down():
            raise StoreUnavailableError("connection refused")

        memory_store.ping = down

        response = test_client.get("/healthz/ready")

        assert response.status_code == 503
        assert response.json()["ready"] is False
