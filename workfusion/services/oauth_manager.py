"""
OAuth Manager: connecting and disconnecting user integrations.

OAuth Flow (Xero, PayPal, Stripe Connect):
1. /api/{provider}/connect - sign a state token, build the authorization URL
2. /api/{provider}/callback - validate state, exchange code for tokens, store them

Plaid uses its Link flow instead: the frontend obtains a public token which is
exchanged server-side for a non-expiring access token.

Security features:
- State is an HS256 JWT bound to user and provider with a short expiry
- Client secrets only ever travel to the provider's token endpoint
- Tokens are encrypted at rest by the credential store
"""

import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Mapping, Tuple
from urllib.parse import urlencode

import httpx
import jwt
import structlog

from ..config import Settings
from ..errors import IntegrationNotConnected
from ..utils.http_client import parse_response_body
from ..utils.types import Provider, utcnow
from .credential_store import ResilientCredentialStore
from .providers import ProviderConfig

logger = structlog.get_logger(__name__)


class OAuthManagerError(Exception):
    """Base exception for OAuth Manager operations."""

    code = "oauth_error"


class ProviderNotConfiguredError(OAuthManagerError):
    """Raised when the provider's client credentials are missing."""

    code = "not_configured"


class StateValidationError(OAuthManagerError):
    """Raised when OAuth state validation fails."""

    code = "invalid_state"


class TokenExchangeError(OAuthManagerError):
    """Raised when OAuth token exchange fails."""

    code = "token_exchange_failed"


class OAuthManager:
    """Builds authorization URLs and turns callbacks into stored credentials."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        store: ResilientCredentialStore,
        providers: Mapping[Provider, ProviderConfig],
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.http_client = http_client
        self.store = store
        self.providers = providers
        self._clock = clock

    def _oauth_config(self, provider: Provider) -> ProviderConfig:
        config = self.providers[Provider(provider)]
        if not config.supports_oauth:
            raise OAuthManagerError(f"{config.display_name} does not use redirect OAuth")
        if not config.configured:
            raise ProviderNotConfiguredError(
                f"{config.display_name} OAuth credentials not configured"
            )
        return config

    # ===== State tokens =====

    def create_state_token(self, user_id: str, provider: Provider) -> Tuple[str, datetime]:
        """Sign a state token binding the callback to ``user_id``."""
        issued_at = self._clock()
        expires_at = issued_at + timedelta(seconds=self.settings.oauth_state_ttl_seconds)
        payload = {
            "sub": user_id,
            "provider": Provider(provider).value,
            "nonce": secrets.token_urlsafe(16),
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        return jwt.encode(payload, self.settings.jwt_secret, algorithm="HS256"), expires_at

    def validate_state_token(self, token: str, provider: Provider) -> str:
        """
        Decode a state token and return the user id it was issued for.

        Raises:
            StateValidationError: Bad signature, expired, or for another provider
        """
        # Expiry is checked against the injected clock, not PyJWT's wall clock
        try:
            payload = jwt.decode(
                token,
                self.settings.jwt_secret,
                algorithms=["HS256"],
                options={"verify_exp": False, "verify_iat": False, "require": ["exp", "sub"]},
            )
        except jwt.InvalidTokenError as e:
            raise StateValidationError(f"Invalid OAuth state token: {e}") from e

        if int(payload["exp"]) <= int(self._clock().timestamp()):
            raise StateValidationError("OAuth session expired")
        if payload.get("provider") != Provider(provider).value:
            raise StateValidationError("State token issued for a different provider")
        if not payload.get("sub"):
            raise StateValidationError("State token has no subject")
        return payload["sub"]

    # ===== Authorization =====

    def build_authorization_url(self, user_id: str, provider: Provider) -> Tuple[str, datetime]:
        """
        Build the provider authorization URL for ``user_id``.

        Returns:
            (authorization_url, state_expires_at)
        """
        config = self._oauth_config(provider)
        state, expires_at = self.create_state_token(user_id, config.provider)
        params = {
            "response_type": "code",
            "client_id": config.client_id,
            "redirect_uri": config.callback_url(self.settings.app_base_url),
            "scope": " ".join(config.scopes),
            "state": state,
        }
        logger.info(
            "Built authorization URL",
            provider=config.provider.value,
            user_id=user_id,
            redirect_uri=params["redirect_uri"],
        )
        return f"{config.authorize_url}?{urlencode(params)}", expires_at

    async def exchange_code_for_tokens(self, provider: Provider, code: str) -> Dict[str, Any]:
        """
        Exchange an authorization code for access/refresh tokens.

        Raises:
            TokenExchangeError: If the provider rejects the code or is unreachable
        """
        config = self._oauth_config(provider)
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": config.callback_url(self.settings.app_base_url),
        }
        headers = {"Accept": "application/json"}
        if config.client_auth == "basic":
            headers["Authorization"] = config.basic_auth_header()
        else:
            data["client_id"] = config.client_id
            data["client_secret"] = config.client_secret

        try:
            response = await self.http_client.post(config.token_url, data=data, headers=headers)
        except httpx.RequestError as e:
            logger.error("Token exchange network error", provider=config.provider.value, error=str(e))
            raise TokenExchangeError(f"{config.display_name} token endpoint unreachable") from e

        body = parse_response_body(response)
        if response.status_code != 200 or not isinstance(body, dict):
            logger.error(
                "Token exchange failed",
                provider=config.provider.value,
                status_code=response.status_code,
                error_detail=str(body)[:200],
            )
            raise TokenExchangeError(
                f"{config.display_name} token exchange failed with status {response.status_code}"
            )

        required = ("access_token", "expires_in") if config.tokens_expire else ("access_token",)
        missing = [f for f in required if not body.get(f)]
        if missing:
            logger.error("Token response missing fields", provider=config.provider.value, missing=missing)
            raise TokenExchangeError(f"Token response missing required fields: {missing}")

        return body

    async def fetch_xero_tenant(self, access_token: str) -> Dict[str, Any]:
        """Return the first organisation connected to a Xero token."""
        config = self.providers[Provider.XERO]
        try:
            response = await self.http_client.get(
                config.connections_url,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
            )
        except httpx.RequestError as e:
            raise TokenExchangeError("Xero connections endpoint unreachable") from e

        body = parse_response_body(response)
        if response.status_code != 200 or not isinstance(body, list) or not body:
            logger.error(
                "No Xero tenant available",
                status_code=response.status_code,
            )
            raise TokenExchangeError("No Xero organisation is connected to this authorization")
        return body[0]

    async def complete_connection(
        self, provider: Provider, code: str, state: str
    ) -> str:
        """
        Finish an OAuth callback and persist the new credential.

        Returns:
            The user id the connection was stored for

        Raises:
            StateValidationError, TokenExchangeError: For OAuth flow errors
            StoreError: If the credential cannot be persisted
        """
        provider = Provider(provider)
        user_id = self.validate_state_token(state, provider)
        token_response = await self.exchange_code_for_tokens(provider, code)

        metadata: Dict[str, Any] = {}
        if provider == Provider.XERO:
            tenant = await self.fetch_xero_tenant(token_response["access_token"])
            metadata = {
                "tenant_id": tenant.get("tenantId"),
                "tenant_name": tenant.get("tenantName"),
            }
        elif provider == Provider.STRIPE:
            account_id = token_response.get("stripe_user_id")
            if not account_id:
                raise TokenExchangeError("Stripe token response has no stripe_user_id")
            metadata = {"stripe_user_id": account_id}

        now = self._clock()
        expires_at = None
        if token_response.get("expires_in"):
            expires_at = now + timedelta(seconds=int(float(token_response["expires_in"])))

        await self.store.write_or_raise(
            user_id,
            provider,
            {
                "access_token": token_response["access_token"],
                "refresh_token": token_response.get("refresh_token"),
                "expires_at": expires_at,
                "connected": True,
                "connected_at": now,
                "last_error": None,
                "disconnected_at": None,
                "provider_metadata": metadata,
            },
        )
        logger.info("Integration connected", provider=provider.value, user_id=user_id)
        return user_id

    async def store_plaid_item(self, user_id: str, access_token: str, item_id: str) -> None:
        """Persist the result of a Plaid public token exchange."""
        now = self._clock()
        await self.store.write_or_raise(
            user_id,
            Provider.PLAID,
            {
                "access_token": access_token,
                "refresh_token": None,
                "expires_at": None,
                "connected": True,
                "connected_at": now,
                "last_error": None,
                "disconnected_at": None,
                "provider_metadata": {"item_id": item_id},
            },
        )
        logger.info("Integration connected", provider=Provider.PLAID.value, user_id=user_id)

    async def disconnect(self, user_id: str, provider: Provider) -> datetime:
        """
        Mark the user's integration disconnected. The record is kept.

        Raises:
            IntegrationNotConnected: If the user never connected this provider
        """
        provider = Provider(provider)
        credential = await self.store.read_credential(user_id, provider)
        if credential is None:
            config = self.providers[provider]
            raise IntegrationNotConnected(provider.value, config.not_connected_message)

        now = self._clock()
        await self.store.write_or_raise(
            user_id, provider, {"connected": False, "disconnected_at": now}
        )
        logger.info("Integration disconnected by user", provider=provider.value, user_id=user_id)
        return now
