"""
Stripe Connect routes.

Data calls use the platform secret key with a ``Stripe-Account`` header for
the account the user connected; the connection record only needs to exist and
be connected.
"""

from typing import Any, Dict

from fastapi import APIRouter, Query

from ..middleware.auth import Container, CurrentUser
from ..services.provider_client import ProviderRequest
from ..utils.responses import success_envelope
from ..utils.types import Provider

router = APIRouter(prefix="/api/stripe")


@router.get("/transactions", summary="Charges on the connected Stripe account")
async def get_transactions(
    user_id: CurrentUser,
    container: Container,
    limit: int = Query(10, ge=1, le=100),
) -> Dict[str, Any]:
    response = await container.provider_client.call_provider(
        user_id,
        Provider.STRIPE,
        ProviderRequest("GET", "/v1/charges", params={"limit": limit}),
    )
    return success_envelope(response.data, Provider.STRIPE.value)
