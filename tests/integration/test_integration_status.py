"""
Route tests for the per-user integration status overview.
"""

from datetime import timedelta

import pytest

from workfusion.db.store import StoreUnavailableError
from workfusion.utils.types import Provider

pytestmark = pytest.mark.integration


class TestIntegrationStatus:
    def test_requires_authentication(self, test_client):
        assert test_client.get("/api/integrations/status").status_code == 401

    def test_new_user_has_nothing_connected(self, test_client, auth_headers):
        response = test_client.get("/api/integrations/status", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert set(data) == {"xero", "paypal", "plaid", "stripe"}
        assert all(entry["connected"] is False for entry in data.values())

    def test_reports_each_provider_without_tokens(
        self, test_client, auth_headers, memory_store, make_credential, now
    ):
        memory_store.put(make_credential(Provider.XERO, connected_at=now - timedelta(days=2)))
        memory_store.put(
            make_credential(
                Provider.PAYPAL,
                connected=False,
                last_error="Token refresh rejected (400): invalid_grant",
            )
        )

        response = test_client.get("/api/integrations/status", headers=auth_headers)

        data = response.json()["data"]
        assert data["xero"] == {
            "connected": True,
            "connected_at": (now - timedelta(days=2)).isoformat(),
            "last_error": None,
        }
        assert data["paypal"]["connected"] is False
        assert data["paypal"]["last_error"] == "Token refresh rejected (400): invalid_grant"
        assert data["plaid"]["connected"] is False
        assert "xero-access" not in response.text
        assert "xero-refresh" not in response.text

    def test_store_outage_is_500(self, test_client, auth_headers, memory_store):
        async def unavailable(user_id, provider):
            raise StoreUnavailableError("database down")

        memory_store.get = unavailable

        response = test_client.get("/api/integrations/status", headers=auth_headers)

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to load integration state"
