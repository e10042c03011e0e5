"""
Type definitions and data classes for the Workfusion API.

Shared domain types for integration credentials and the results returned by
the token lifecycle components.
"""

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, NamedTuple, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Provider(str, Enum):
    """Third-party integrations a user can connect."""

    XERO = "xero"
    PAYPAL = "paypal"
    PLAID = "plaid"
    STRIPE = "stripe"


@dataclass
class IntegrationCredential:
    """
    Stored OAuth token pair plus connection metadata for one user/provider.

    At most one record exists per (user_id, provider). Once ``connected`` is
    False the tokens must not be used; reconnecting requires a fresh
    authorization.

    Attributes:
        user_id: Identity-provider user id (Firebase uid)
        provider: Which integration this credential belongs to
        access_token: Short-lived bearer token (Plaid: long-lived access token)
        refresh_token: Long-lived token for refresh-token OAuth providers
        expires_at: Absolute access token expiry; None means it never expires
        connected_at: When the user first completed authorization
        connected: False after a terminal refresh failure or user disconnect
        last_error: Diagnostic for the terminal failure that disconnected it
        disconnected_at: When the record was marked disconnected
        updated_at: Last write to the record
        provider_metadata: Provider-specific ids (Xero tenant_id, Plaid item_id,
            Stripe stripe_user_id)
    """

    user_id: str
    provider: Provider
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    connected_at: Optional[datetime] = None
    connected: bool = False
    last_error: Optional[str] = None
    disconnected_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    provider_metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def usable(self) -> bool:
        return self.connected and bool(self.access_token)

    def merged(self, changes: Dict[str, Any]) -> "IntegrationCredential":
        """Return a copy with ``changes`` applied (document-store merge semantics)."""
        return replace(self, **changes)


# Fields a merge-write may set; user_id and provider address the record
CREDENTIAL_FIELDS = frozenset(
    f.name for f in fields(IntegrationCredential) if f.name not in ("user_id", "provider")
)


class TokenStatus(str, Enum):
    VALID = "valid"
    REFRESHED = "refreshed"
    NOT_CONNECTED = "not_connected"
    DISCONNECTED = "disconnected"
    REFRESH_REJECTED = "refresh_rejected"
    REFRESH_FAILED = "refresh_failed"


class TokenResult(NamedTuple):
    """Outcome of ensuring a usable access token for a user/provider."""

    credential: Optional[IntegrationCredential]
    status: TokenStatus
    error: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.credential is not None and self.status in (
            TokenStatus.VALID,
            TokenStatus.REFRESHED,
        )


class WriteResult(NamedTuple):
    """Outcome of a resilient credential write."""

    success: bool
    attempts: int
    error: Optional[BaseException] = None
