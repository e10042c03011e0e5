"""
Token Refresher: returns a currently-valid access token for a user/provider.

Refresh happens on demand only. A stale token (``now + skew >= expires_at``)
triggers exactly one call to the provider's token endpoint per invocation:
- success rotates the stored tokens and moves ``expires_at`` forward
- a terminal rejection (invalid/revoked refresh token) disconnects the record
- a transient failure leaves the record alone; the next request tries again

Refresh grants rotate the refresh token, so the token call itself is never
retried in-process; only the idempotent store reads/writes around it are.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Mapping, NamedTuple, Optional

import httpx
import structlog

from ..utils.http_client import parse_response_body
from ..utils.types import (
    IntegrationCredential,
    Provider,
    TokenResult,
    TokenStatus,
    utcnow,
)
from .credential_store import ResilientCredentialStore
from .providers import ProviderConfig

logger = structlog.get_logger(__name__)

# Token endpoint statuses that mean the refresh token itself is dead
TERMINAL_STATUS_CODES = frozenset({400, 401})


class RefreshResult(NamedTuple):
    """Result of a token refresh call with failure classification."""

    success: bool
    error: Optional[str] = None
    classification: str = "success"  # "success", "terminal", "transient"
    token_response: Optional[Dict[str, Any]] = None


class TokenRefresher:
    """
    Keeps stored provider tokens usable.

    Concurrent requests for the same user may both observe staleness and both
    refresh; the record tolerates last-write-wins because a successful refresh
    never writes ``connected`` and a terminal failure re-reads before
    disconnecting.
    """

    def __init__(
        self,
        store: ResilientCredentialStore,
        http_client: httpx.AsyncClient,
        providers: Mapping[Provider, ProviderConfig],
        skew_seconds: int = 300,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.http_client = http_client
        self.providers = providers
        self.skew = timedelta(seconds=skew_seconds)
        self._clock = clock

    def is_token_stale(
        self, credential: IntegrationCredential, now: Optional[datetime] = None
    ) -> bool:
        """True when the token expires within the skew window (or already has)."""
        if credential.expires_at is None:
            return False
        now = now or self._clock()
        return now + self.skew >= credential.expires_at

    async def ensure_valid_token(self, user_id: str, provider: Provider) -> TokenResult:
        """
        Return a usable credential, refreshing it first if it is stale.

        Returns:
            TokenResult; ``available`` is False when there is no record, the
            record is disconnected, or the refresh failed

        Raises:
            StoreError: If the store cannot be read, or refreshed tokens cannot
                be persisted after retries
        """
        provider = Provider(provider)
        log = logger.bind(user_id=user_id, provider=provider.value)

        credential = await self.store.read_credential(user_id, provider)
        if credential is None:
            log.info("No integration record")
            return TokenResult(None, TokenStatus.NOT_CONNECTED)

        if not credential.connected:
            log.info("Integration is disconnected", last_error=credential.last_error)
            return TokenResult(None, TokenStatus.DISCONNECTED, credential.last_error)

        now = self._clock()
        if not self.is_token_stale(credential, now):
            return TokenResult(credential, TokenStatus.VALID)

        log.info(
            "Access token stale, refreshing",
            expires_at=credential.expires_at.isoformat(),
            skew_seconds=int(self.skew.total_seconds()),
        )

        if not credential.refresh_token:
            return await self._disconnect(
                credential, "No refresh token available", now
            )

        result = await self.request_refresh(credential)

        if result.success:
            return await self._store_refreshed(credential, result.token_response, now)

        if result.classification == "terminal":
            return await self._disconnect(credential, result.error, now)

        log.warning("Transient refresh failure, leaving record unchanged", error=result.error)
        return TokenResult(None, TokenStatus.REFRESH_FAILED, result.error)

    async def request_refresh(self, credential: IntegrationCredential) -> RefreshResult:
        """
        Exchange the refresh token at the provider's token endpoint.

        Single attempt; failures are classified rather than raised.
        """
        config = self.providers[credential.provider]
        data = {
            "grant_type": "refresh_token",
            "refresh_token": credential.refresh_token,
        }
        headers = {"Accept": "application/json"}
        if config.client_auth == "basic":
            headers["Authorization"] = config.basic_auth_header()
        else:
            data["client_id"] = config.client_id or ""
            data["client_secret"] = config.client_secret or ""

        try:
            response = await self.http_client.post(config.token_url, data=data, headers=headers)
        except httpx.RequestError as e:
            logger.warning(
                "Network error during token refresh",
                provider=config.provider.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return RefreshResult(
                success=False, error=f"Network: {type(e).__name__}", classification="transient"
            )

        if response.is_success:
            body = parse_response_body(response)
            if not _is_valid_token_response(body):
                logger.error(
                    "Token endpoint returned an unusable success body",
                    provider=config.provider.value,
                    status_code=response.status_code,
                )
                return RefreshResult(
                    success=False,
                    error="Malformed token response",
                    classification="transient",
                )
            logger.info(
                "Token refresh successful",
                provider=config.provider.value,
                rotated=bool(body.get("refresh_token")),
            )
            return RefreshResult(success=True, token_response=body)

        body = parse_response_body(response)
        error_code = body.get("error") if isinstance(body, dict) else None

        if response.status_code in TERMINAL_STATUS_CODES:
            logger.warning(
                "Terminal refresh error",
                provider=config.provider.value,
                status_code=response.status_code,
                error_code=error_code,
            )
            return RefreshResult(
                success=False,
                error=f"Token refresh rejected ({response.status_code}): {error_code or 'invalid refresh token'}",
                classification="terminal",
            )

        logger.warning(
            "HTTP error during token refresh",
            provider=config.provider.value,
            status_code=response.status_code,
            error_code=error_code,
        )
        return RefreshResult(
            success=False,
            error=f"HTTP {response.status_code}",
            classification="transient",
        )

    async def _store_refreshed(
        self,
        credential: IntegrationCredential,
        token_response: Dict[str, Any],
        now: datetime,
    ) -> TokenResult:
        new_expires_at = now + timedelta(seconds=int(float(token_response["expires_in"])))
        if credential.expires_at is not None and new_expires_at <= credential.expires_at:
            new_expires_at = credential.expires_at + timedelta(seconds=1)

        # PayPal may omit refresh_token; the previous one stays valid then
        fields = {
            "access_token": token_response["access_token"],
            "refresh_token": token_response.get("refresh_token") or credential.refresh_token,
            "expires_at": new_expires_at,
            "last_error": None,
        }
        await self.store.write_or_raise(credential.user_id, credential.provider, fields)

        logger.info(
            "Token refresh completed and stored",
            user_id=credential.user_id,
            provider=credential.provider.value,
            new_expires_at=new_expires_at.isoformat(),
        )
        return TokenResult(credential.merged(fields), TokenStatus.REFRESHED)

    async def _disconnect(
        self, credential: IntegrationCredential, error: str, now: datetime
    ) -> TokenResult:
        # TODO: replace the re-read with a compare-and-swap on a revision field
        # once both store backends carry one.
        current = await self.store.read_credential(credential.user_id, credential.provider)
        if (
            current is not None
            and current.connected
            and current.refresh_token != credential.refresh_token
            and not self.is_token_stale(current, now)
        ):
            logger.info(
                "Concurrent refresh already rotated the token, keeping connection",
                user_id=credential.user_id,
                provider=credential.provider.value,
            )
            return TokenResult(current, TokenStatus.REFRESHED)

        await self.store.write_or_raise(
            credential.user_id,
            credential.provider,
            {"connected": False, "last_error": error, "disconnected_at": now},
        )
        logger.warning(
            "Integration disconnected after terminal refresh failure",
            user_id=credential.user_id,
            provider=credential.provider.value,
            error=error,
        )
        return TokenResult(None, TokenStatus.REFRESH_REJECTED, error)


def _is_valid_token_response(body: Any) -> bool:
    if not isinstance(body, dict) or not body.get("access_token"):
        return False
    try:
        return float(body.get("expires_in")) > 0
    except (TypeError, ValueError):
        return False
