"""
PayPal reporting routes.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Query

from ..middleware.auth import Container, CurrentUser
from ..services.provider_client import ProviderRequest
from ..utils.responses import success_envelope
from ..utils.types import Provider

router = APIRouter(prefix="/api/paypal")

DEFAULT_LOOKBACK_DAYS = 30


def _paypal_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@router.get("/balance", summary="PayPal account balances")
async def get_balance(
    user_id: CurrentUser,
    container: Container,
    currency_code: str = Query("USD", min_length=3, max_length=3),
) -> Dict[str, Any]:
    response = await container.provider_client.call_provider(
        user_id,
        Provider.PAYPAL,
        ProviderRequest(
            "GET",
            "/v1/reporting/balances",
            params={
                "currency_code": currency_code.upper(),
                "as_of_time": _paypal_timestamp(datetime.now(timezone.utc)),
            },
        ),
    )
    return success_envelope(response.data, Provider.PAYPAL.value)


@router.get("/transactions", summary="PayPal transactions")
async def get_transactions(
    user_id: CurrentUser,
    container: Container,
    start_date: Optional[str] = Query(None, description="Passed to PayPal as given"),
    end_date: Optional[str] = Query(None, description="Passed to PayPal as given"),
) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    params = {
        "start_date": start_date or _paypal_timestamp(now - timedelta(days=DEFAULT_LOOKBACK_DAYS)),
        "end_date": end_date or _paypal_timestamp(now),
        "fields": "all",
    }
    response = await container.provider_client.call_provider(
        user_id,
        Provider.PAYPAL,
        ProviderRequest("GET", "/v1/reporting/transactions", params=params),
    )
    return success_envelope(response.data, Provider.PAYPAL.value)
