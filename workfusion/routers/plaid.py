"""
Plaid routes: Link token creation, public token exchange and bank data.

Plaid access tokens do not expire, so the token lifecycle here is just
"connected" or "not connected".
"""

from datetime import date, timedelta
from typing import Any, Dict, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from ..errors import InvalidRequest, ProviderApiError
from ..middleware.auth import Container, CurrentUser
from ..services.provider_client import ProviderRequest
from ..utils.crypto import redact_token_for_logging
from ..utils.logging import get_logger
from ..utils.responses import success_envelope
from ..utils.types import Provider

logger = get_logger(__name__)

router = APIRouter(prefix="/api/plaid")

DEFAULT_LOOKBACK_DAYS = 30


class ExchangeTokenRequest(BaseModel):
    public_token: str = Field(..., min_length=1, description="Public token from Plaid Link")


@router.post("/create-link-token", summary="Create a Plaid Link token")
async def create_link_token(user_id: CurrentUser, container: Container) -> Dict[str, Any]:
    settings = container.settings
    payload: Dict[str, Any] = {
        "user": {"client_user_id": user_id},
        "client_name": settings.plaid_client_name,
        "products": ["transactions"],
        "country_codes": ["US"],
        "language": "en",
    }
    if settings.plaid_redirect_uri:
        payload["redirect_uri"] = settings.plaid_redirect_uri

    response = await container.provider_client.call_with_app_credentials(
        Provider.PLAID,
        ProviderRequest("POST", "/link/token/create", json=payload, idempotent=False),
    )
    return success_envelope({"link_token": response.data.get("link_token")}, Provider.PLAID.value)


@router.post("/exchange-token", summary="Exchange a Plaid public token")
async def exchange_token(
    body: ExchangeTokenRequest, user_id: CurrentUser, container: Container
) -> Dict[str, Any]:
    response = await container.provider_client.call_with_app_credentials(
        Provider.PLAID,
        ProviderRequest(
            "POST",
            "/item/public_token/exchange",
            json={"public_token": body.public_token},
            idempotent=False,
        ),
    )
    data = response.data if isinstance(response.data, dict) else {}
    if not data.get("access_token") or not data.get("item_id"):
        raise ProviderApiError("Plaid", 502, response.data)

    await container.oauth_manager.store_plaid_item(
        user_id, data["access_token"], data["item_id"]
    )
    logger.info(
        "Plaid item linked",
        item_id=data["item_id"],
        token_preview=redact_token_for_logging(data["access_token"]),
    )
    return success_envelope({"status": "success", "item_id": data["item_id"]}, Provider.PLAID.value)


@router.get("/balances", summary="Account balances for the linked item")
async def get_balances(user_id: CurrentUser, container: Container) -> Dict[str, Any]:
    response = await container.provider_client.call_provider(
        user_id,
        Provider.PLAID,
        ProviderRequest("POST", "/accounts/balance/get", json={}, idempotent=True),
    )
    return success_envelope(response.data, Provider.PLAID.value)


@router.get("/transactions", summary="Transactions for the linked item")
async def get_transactions(
    user_id: CurrentUser,
    container: Container,
    start_date: Optional[date] = Query(None, description="YYYY-MM-DD, defaults to 30 days ago"),
    end_date: Optional[date] = Query(None, description="YYYY-MM-DD, defaults to today"),
) -> Dict[str, Any]:
    end = end_date or date.today()
    start = start_date or end - timedelta(days=DEFAULT_LOOKBACK_DAYS)
    if start > end:
        raise InvalidRequest("start_date must not be after end_date")

    response = await container.provider_client.call_provider(
        user_id,
        Provider.PLAID,
        ProviderRequest(
            "POST",
            "/transactions/get",
            json={"start_date": start.isoformat(), "end_date": end.isoformat()},
            idempotent=True,
        ),
    )
    return success_envelope(response.data, Provider.PLAID.value)
