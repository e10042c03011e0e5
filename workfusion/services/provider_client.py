"""
Authenticated Fetch: outbound provider calls on behalf of a user.

Wraps each data request with the Token Refresher and maps failures onto the
error taxonomy. Provider HTTP errors keep their status and body verbatim.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, NamedTuple, Optional

import httpx
import structlog

from ..errors import IntegrationNotConnected, ProviderApiError, ProviderUnreachable
from ..utils.http_client import parse_response_body
from ..utils.retry import RetryPolicy, with_retry
from ..utils.types import IntegrationCredential, Provider
from .providers import ProviderConfig
from .token_refresher import TokenRefresher

logger = structlog.get_logger(__name__)


@dataclass
class ProviderRequest:
    """
    One outbound data call.

    ``path`` is relative to the provider's API base unless it is an absolute
    URL. ``idempotent`` defaults to True for GET; read-only POSTs (Plaid)
    set it explicitly.
    """

    method: str
    path: str
    params: Optional[Dict[str, Any]] = None
    json: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, str]] = None
    idempotent: Optional[bool] = None

    @property
    def retryable(self) -> bool:
        if self.idempotent is not None:
            return self.idempotent
        return self.method.upper() == "GET"


class ProviderResponse(NamedTuple):
    status_code: int
    data: Any


def is_transport_error(error: BaseException) -> bool:
    return isinstance(error, httpx.TransportError)


class ProviderClient:
    """Issues provider data calls with a valid token attached."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        refresher: TokenRefresher,
        providers: Mapping[Provider, ProviderConfig],
        retry_policy: RetryPolicy,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.http_client = http_client
        self.refresher = refresher
        self.providers = providers
        self.retry_policy = retry_policy
        self._sleep = sleep

    async def call_provider(
        self, user_id: str, provider: Provider, request: ProviderRequest
    ) -> ProviderResponse:
        """
        Call a provider data endpoint as ``user_id``.

        Raises:
            IntegrationNotConnected: No usable credential (no record, disconnected,
                or the refresh failed)
            ProviderApiError: The provider answered with an HTTP error
            ProviderUnreachable: No response from the provider
        """
        provider = Provider(provider)
        config = self.providers[provider]

        token = await self.refresher.ensure_valid_token(user_id, provider)
        if not token.available:
            raise IntegrationNotConnected(
                provider.value,
                config.not_connected_message,
                reason=token.error or token.status.value,
            )

        return await self._send(config, request, token.credential)

    async def call_with_app_credentials(
        self, provider: Provider, request: ProviderRequest
    ) -> ProviderResponse:
        """Call an endpoint that authenticates with the app's own credentials only."""
        return await self._send(self.providers[Provider(provider)], request, None)

    def _build(
        self,
        config: ProviderConfig,
        request: ProviderRequest,
        credential: Optional[IntegrationCredential],
    ) -> httpx.Request:
        url = request.path
        if not url.startswith(("http://", "https://")):
            url = f"{config.api_base_url}{request.path}"

        headers = {"Accept": "application/json", **config.extra_headers}
        body = dict(request.json) if request.json is not None else None

        if config.credential_style == "body":
            # Plaid: app credentials as headers, item token in the JSON body
            headers["PLAID-CLIENT-ID"] = config.client_id or ""
            headers["PLAID-SECRET"] = config.client_secret or ""
            if credential is not None:
                body = {**(body or {}), "access_token": credential.access_token}
        elif config.credential_style == "connected_account":
            # Stripe Connect: platform key acts on behalf of the connected account
            headers["Authorization"] = f"Bearer {config.client_secret or ''}"
            if credential is not None:
                account_id = credential.provider_metadata.get("stripe_user_id")
                if account_id:
                    headers["Stripe-Account"] = account_id
        elif credential is not None:
            headers["Authorization"] = f"Bearer {credential.access_token}"

        if credential is not None and credential.provider == Provider.XERO:
            tenant_id = credential.provider_metadata.get("tenant_id")
            if tenant_id:
                headers["Xero-Tenant-Id"] = tenant_id

        headers.update(request.headers or {})
        return self.http_client.build_request(
            request.method.upper(), url, params=request.params, json=body, headers=headers
        )

    async def _send(
        self,
        config: ProviderConfig,
        request: ProviderRequest,
        credential: Optional[IntegrationCredential],
    ) -> ProviderResponse:
        outbound = self._build(config, request, credential)
        policy = self.retry_policy if request.retryable else RetryPolicy(max_attempts=1)

        try:
            response = await with_retry(
                lambda: self.http_client.send(outbound),
                policy,
                retry_on=is_transport_error,
                sleep=self._sleep,
                operation_name=f"{config.provider.value}_api_call",
            )
        except httpx.TransportError as e:
            logger.error(
                "Provider unreachable",
                provider=config.provider.value,
                method=outbound.method,
                path=outbound.url.path,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ProviderUnreachable(config.display_name, log_detail=str(e)) from e

        body = parse_response_body(response)
        if response.is_error:
            logger.warning(
                "Provider API error",
                provider=config.provider.value,
                method=outbound.method,
                path=outbound.url.path,
                status_code=response.status_code,
            )
            raise ProviderApiError(config.display_name, response.status_code, body)

        logger.info(
            "Provider call completed",
            provider=config.provider.value,
            method=outbound.method,
            path=outbound.url.path,
            status_code=response.status_code,
        )
        return ProviderResponse(response.status_code, body)
