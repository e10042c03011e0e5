"""
Route tests for the PayPal integration, including the refresh lifecycle as
seen through the API.
"""

from datetime import timedelta

import pytest

from workfusion.utils.types import Provider

pytestmark = pytest.mark.integration

PAYPAL = "https://api-m.sandbox.paypal.com"
TOKEN_URL = f"{PAYPAL}/v1/oauth2/token"
TRANSACTIONS_URL = f"{PAYPAL}/v1/reporting/transactions"
BALANCES_URL = f"{PAYPAL}/v1/reporting/balances"


class TestPayPalData:
    def test_not_connected_user_gets_400(self, test_client, auth_headers, provider_mock):
        response = test_client.get("/api/paypal/balance", headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "PayPal integration not connected"
        assert provider_mock.requests == []

    def test_balance_uses_currency_and_bearer_token(
        self, test_client, auth_headers, provider_mock, memory_store, make_credential
    ):
        memory_store.put(make_credential(Provider.PAYPAL))
        provider_mock.json("GET", BALANCES_URL, {"balances": [{"currency": "EUR"}]})

        response = test_client.get(
            "/api/paypal/balance", params={"currency_code": "eur"}, headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["data"] == {"balances": [{"currency": "EUR"}]}
        request = provider_mock.calls_to(BALANCES_URL)[0]
        assert request.url.params["currency_code"] == "EUR"
        assert "as_of_time" in request.url.params
        assert request.headers["Authorization"] == "Bearer paypal-access"

    def test_transactions_pass_dates_verbatim_in_one_call(
        self, test_client, auth_headers, provider_mock, memory_store, make_credential
    ):
        memory_store.put(make_credential(Provider.PAYPAL))
        provider_mock.json("GET", TRANSACTIONS_URL, {"transaction_details": [], "total_items": 0})

        response = test_client.get(
            "/api/paypal/transactions",
            params={
                "start_date": "2024-01-01T00:00:00-0700",
                "end_date": "2024-01-31T23:59:59-0700",
            },
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["data"] == {"transaction_details": [], "total_items": 0}
        calls = provider_mock.calls_to(TRANSACTIONS_URL)
        assert len(calls) == 1
        assert calls[0].url.params["start_date"] == "2024-01-01T00:00:00-0700"
        assert calls[0].url.params["end_date"] == "2024-01-31T23:59:59-0700"
        assert calls[0].url.params["fields"] == "all"

    def test_paypal_error_passes_through(
        self, test_client, auth_headers, provider_mock, memory_store, make_credential
    ):
        memory_store.put(make_credential(Provider.PAYPAL))
        paypal_error = {"name": "INVALID_REQUEST", "message": "Date range exceeds 31 days"}
        provider_mock.json("GET", TRANSACTIONS_URL, paypal_error, status_code=422)

        response = test_client.get("/api/paypal/transactions", headers=auth_headers)

        assert response.status_code == 422
        assert response.json()["details"] == paypal_error


class TestPayPalRefreshLifecycle:
    def test_stale_token_is_refreshed_before_the_call(
        self, test_client, auth_headers, provider_mock, memory_store, make_credential, user_id, now
    ):
        memory_store.put(make_credential(Provider.PAYPAL, expires_at=now + timedelta(seconds=30)))
        provider_mock.json("POST", TOKEN_URL, {"access_token": "fresh-access", "expires_in": 32400})
        provider_mock.json("GET", TRANSACTIONS_URL, {"transaction_details": []})

        response = test_client.get("/api/paypal/transactions", headers=auth_headers)

        assert response.status_code == 200
        assert len(provider_mock.calls_to(TOKEN_URL)) == 1
        data_call = provider_mock.calls_to(TRANSACTIONS_URL)[0]
        assert data_call.headers["Authorization"] == "Bearer fresh-access"
        stored = memory_store.records[(user_id, Provider.PAYPAL)]
        assert stored.access_token == "fresh-access"
        assert stored.expires_at == now + timedelta(seconds=32400)

    def test_revoked_refresh_token_disconnects_and_returns_400(
        self, test_client, auth_headers, provider_mock, memory_store, make_credential, user_id, now
    ):
        memory_store.put(make_credential(Provider.PAYPAL, expires_at=now - timedelta(hours=1)))
        provider_mock.json("POST", TOKEN_URL, {"error": "invalid_grant"}, status_code=400)

        response = test_client.get("/api/paypal/transactions", headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "PayPal integration not connected"
        assert provider_mock.calls_to(TRANSACTIONS_URL) == []

        stored = memory_store.records[(user_id, Provider.PAYPAL)]
        assert stored.connected is False
        assert "invalid_grant" in stored.last_error

        # The disconnected record is not refreshed again
        second = test_client.get("/api/paypal/balance", headers=auth_headers)
        assert second.status_code == 400
        assert len(provider_mock.calls_to(TOKEN_URL)) == 1

    def test_refresh_outage_returns_400_without_disconnecting(
        self, test_client, auth_headers, provider_mock, memory_store, make_credential, user_id, now
    ):
        memory_store.put(make_credential(Provider.PAYPAL, expires_at=now))
        provider_mock.json("POST", TOKEN_URL, {"error": "server_error"}, status_code=503)

        response = test_client.get("/api/paypal/balance", headers=auth_headers)

        assert response.status_code == 400
        assert memory_store.records[(user_id, Provider.PAYPAL)].connected is True
