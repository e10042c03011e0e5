"""
OAuth endpoints for provider integrations.

- ``GET  /api/{provider}/connect``    - authorization URL for the signed-in user
- ``GET  /api/{provider}/callback``   - provider redirect target (no bearer token)
- ``POST /api/{provider}/disconnect`` - mark the integration disconnected

The callback is reached by the user's browser coming back from the provider,
so it always answers with a redirect to the frontend integrations page rather
than a JSON body. The user is identified by the signed ``state`` token issued
in ``connect``.
"""

from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Query
from fastapi.responses import RedirectResponse

from ..errors import InvalidRequest, ServiceNotConfigured, StoreError
from ..middleware.auth import Container, CurrentUser
from ..services.oauth_manager import (
    OAuthManagerError,
    ProviderNotConfiguredError,
    StateValidationError,
    TokenExchangeError,
)
from ..utils.logging import get_logger
from ..utils.responses import success_envelope
from ..utils.types import Provider

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["oauth"])

# Provider-reported errors on the callback, mapped to the reason shown to the frontend
OAUTH_ERROR_REASONS = {
    "access_denied": "access_denied",
    "invalid_request": "provider_error",
    "invalid_scope": "provider_error",
    "server_error": "provider_error",
    "temporarily_unavailable": "provider_error",
}


def _frontend_redirect(
    base_url: str, provider: Provider, status: str, reason: Optional[str] = None
) -> RedirectResponse:
    query = {"status": status}
    if reason:
        query["reason"] = reason
    return RedirectResponse(
        f"{base_url}/integrations/{provider.value}?{urlencode(query)}",
        status_code=302,
    )


@router.get("/{provider}/connect", summary="Start the OAuth flow")
async def connect(provider: Provider, user_id: CurrentUser, container: Container) -> Dict[str, Any]:
    try:
        url, expires_at = container.oauth_manager.build_authorization_url(user_id, provider)
    except ProviderNotConfiguredError as e:
        raise ServiceNotConfigured(str(e)) from e
    except OAuthManagerError as e:
        raise InvalidRequest(str(e)) from e

    return success_envelope(
        {"authorization_url": url, "expires_at": expires_at.isoformat()},
        provider.value,
    )


@router.get("/{provider}/callback", summary="OAuth redirect target", include_in_schema=False)
async def callback(
    provider: Provider,
    container: Container,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
) -> RedirectResponse:
    base_url = container.settings.app_base_url

    if error:
        logger.warning(
            "Provider returned an OAuth error",
            provider=provider.value,
            error=error,
            error_description=error_description,
        )
        return _frontend_redirect(
            base_url, provider, "error", OAUTH_ERROR_REASONS.get(error, "provider_error")
        )

    if not code or not state:
        logger.warning("OAuth callback missing code or state", provider=provider.value)
        return _frontend_redirect(base_url, provider, "error", "missing_parameters")

    try:
        user_id = await container.oauth_manager.complete_connection(provider, code, state)
    except (StateValidationError, TokenExchangeError, ProviderNotConfiguredError) as e:
        logger.warning("OAuth callback failed", provider=provider.value, code=e.code, error=str(e))
        return _frontend_redirect(base_url, provider, "error", e.code)
    except OAuthManagerError as e:
        logger.warning("OAuth callback rejected", provider=provider.value, error=str(e))
        return _frontend_redirect(base_url, provider, "error", e.code)
    except StoreError as e:
        logger.error("Could not persist OAuth connection", provider=provider.value, error=e.log_detail)
        return _frontend_redirect(base_url, provider, "error", "store_error")

    logger.info("OAuth callback completed", provider=provider.value, user_id=user_id)
    return _frontend_redirect(base_url, provider, "success")


@router.post("/{provider}/disconnect", summary="Disconnect an integration")
async def disconnect(provider: Provider, user_id: CurrentUser, container: Container) -> Dict[str, Any]:
    disconnected_at = await container.oauth_manager.disconnect(user_id, provider)
    return success_envelope(
        {"connected": False, "disconnected_at": disconnected_at.isoformat()},
        provider.value,
    )
