"""
Xero accounting routes.

The tenant id captured at connection time is sent as ``Xero-Tenant-Id``; a
client may override it with the same header when the user has several
organisations.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Header

from ..middleware.auth import Container, CurrentUser
from ..services.provider_client import ProviderRequest
from ..utils.responses import success_envelope
from ..utils.types import Provider

router = APIRouter(prefix="/api/xero")


def _tenant_headers(tenant_id: Optional[str]) -> Optional[Dict[str, str]]:
    return {"Xero-Tenant-Id": tenant_id} if tenant_id else None


@router.get("/invoices", summary="Xero invoices")
async def get_invoices(
    user_id: CurrentUser,
    container: Container,
    xero_tenant_id: Optional[str] = Header(None),
) -> Dict[str, Any]:
    response = await container.provider_client.call_provider(
        user_id,
        Provider.XERO,
        ProviderRequest("GET", "/Invoices", headers=_tenant_headers(xero_tenant_id)),
    )
    return success_envelope(response.data, Provider.XERO.value)


@router.get("/contacts", summary="Xero contacts")
async def get_contacts(
    user_id: CurrentUser,
    container: Container,
    xero_tenant_id: Optional[str] = Header(None),
) -> Dict[str, Any]:
    response = await container.provider_client.call_provider(
        user_id,
        Provider.XERO,
        ProviderRequest("GET", "/Contacts", headers=_tenant_headers(xero_tenant_id)),
    )
    return success_envelope(response.data, Provider.XERO.value)
