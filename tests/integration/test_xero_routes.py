"""
Route tests for the Xero integration.
"""

import pytest

from workfusion.utils.types import Provider

pytestmark = pytest.mark.integration

XERO_API = "https://api.xero.com/api.xro/2.0"


class TestXeroRoutes:
    def test_invoices_not_connected(self, test_client, auth_headers):
        response = test_client.get("/api/xero/invoices", headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "Xero integration not connected"

    def test_invoices_use_stored_tenant(
        self, test_client, auth_headers, provider_mock, memory_store, make_credential
    ):
        memory_store.put(make_credential(Provider.XERO))
        provider_mock.json("GET", f"{XERO_API}/Invoices", {"Invoices": [{"InvoiceID": "inv-1"}]})

        response = test_client.get("/api/xero/invoices", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {
            "ok": True,
            "provider": "xero",
            "data": {"Invoices": [{"InvoiceID": "inv-1"}]},
        }
        request = provider_mock.calls_to(f"{XERO_API}/Invoices")[0]
        assert request.headers["Xero-Tenant-Id"] == "tenant-1"
        assert request.headers["Authorization"] == "Bearer xero-access"

    def test_contacts_honour_tenant_header(
        self, test_client, auth_headers, provider_mock, memory_store, make_credential
    ):
        memory_store.put(make_credential(Provider.XERO))
        provider_mock.json("GET", f"{XERO_API}/Contacts", {"Contacts": []})

        response = test_client.get(
            "/api/xero/contacts", headers={**auth_headers, "Xero-Tenant-Id": "tenant-2"}
        )

        assert response.status_code == 200
        request = provider_mock.calls_to(f"{XERO_API}/Contacts")[0]
        assert request.headers["Xero-Tenant-Id"] == "tenant-2"

    def test_xero_server_error_passes_through(
        self, test_client, auth_headers, provider_mock, memory_store, make_credential
    ):
        memory_store.put(make_credential(Provider.XERO))
        provider_mock.json("GET", f"{XERO_API}/Contacts", {"Title": "Unavailable"}, status_code=503)

        response = test_client.get("/api/xero/contacts", headers=auth_headers)

        assert response.status_code == 503
        assert response.json()["details"] == {"Title": "Unavailable"}
        assert response.json()["provider"] == "Xero"
