"""
Integration status for the signed-in user.

Used by the dashboard to show which providers are connected. Token values
never leave the store through this route.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter

from ..middleware.auth import Container, CurrentUser
from ..utils.responses import success_envelope
from ..utils.types import IntegrationCredential, Provider

router = APIRouter(prefix="/api/integrations")


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def integration_status(credential: Optional[IntegrationCredential]) -> Dict[str, Any]:
    if credential is None:
        return {"connected": False, "connected_at": None, "last_error": None}
    return {
        "connected": credential.usable,
        "connected_at": _isoformat(credential.connected_at),
        "last_error": credential.last_error,
    }


@router.get("/status", summary="Connection status of every integration")
async def get_status(user_id: CurrentUser, container: Container) -> Dict[str, Any]:
    statuses = {}
    for provider in Provider:
        credential = await container.credentials.read_credential(user_id, provider)
        statuses[provider.value] = integration_status(credential)
    return success_envelope(statuses)
