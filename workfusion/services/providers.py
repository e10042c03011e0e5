"""
Provider registry: endpoints, scopes and authentication style per integration.
"""

import base64
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from ..config import Settings
from ..utils.types import Provider

PLAID_HOSTS = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}

PAYPAL_HOSTS = {
    "live": ("https://api-m.paypal.com", "https://www.paypal.com"),
    "sandbox": ("https://api-m.sandbox.paypal.com", "https://www.sandbox.paypal.com"),
}

PAYPAL_SCOPES = (
    "openid",
    "profile",
    "email",
    "https://uri.paypal.com/services/invoicing",
    "https://uri.paypal.com/services/paypalattributes",
    "https://uri.paypal.com/services/reporting/search/read",
)

XERO_SCOPES = (
    "openid",
    "profile",
    "email",
    "offline_access",
    "accounting.transactions",
    "accounting.contacts",
)

STRIPE_SCOPES = ("read_write",)


@dataclass(frozen=True)
class ProviderConfig:
    """
    Static description of one provider.

    ``client_auth`` selects how the app authenticates to the token endpoint:
    ``"basic"`` (HTTP Basic header) or ``"form"`` (client id/secret in the form
    body). ``credential_style`` selects how a user's access token travels on
    data calls: ``"bearer"`` header, ``"body"`` (Plaid's JSON body) or
    ``"connected_account"`` (Stripe: the platform key as bearer plus a
    ``Stripe-Account`` header naming the connected account). Providers whose
    access tokens never expire set ``tokens_expire=False``.
    """

    provider: Provider
    display_name: str
    not_connected_message: str
    api_base_url: str
    client_id: Optional[str]
    client_secret: Optional[str]
    token_url: Optional[str] = None
    authorize_url: Optional[str] = None
    connections_url: Optional[str] = None
    scopes: Tuple[str, ...] = ()
    client_auth: str = "form"
    credential_style: str = "bearer"
    supports_oauth: bool = True
    tokens_expire: bool = True
    extra_headers: Dict[str, str] = field(default_factory=dict)

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def basic_auth_header(self) -> str:
        raw = f"{self.client_id}:{self.client_secret}".encode()
        return f"Basic {base64.b64encode(raw).decode()}"

    def callback_url(self, base_url: str) -> str:
        return f"{base_url}/api/{self.provider.value}/callback"


def build_provider_configs(settings: Settings) -> Dict[Provider, ProviderConfig]:
    paypal_api, paypal_web = PAYPAL_HOSTS[settings.paypal_env]
    return {
        Provider.XERO: ProviderConfig(
            provider=Provider.XERO,
            display_name="Xero",
            not_connected_message="Xero integration not connected",
            api_base_url="https://api.xero.com/api.xro/2.0",
            client_id=settings.xero_client_id,
            client_secret=settings.xero_client_secret,
            token_url="https://identity.xero.com/connect/token",
            authorize_url="https://login.xero.com/identity/connect/authorize",
            connections_url="https://api.xero.com/connections",
            scopes=XERO_SCOPES,
            client_auth="form",
        ),
        Provider.PAYPAL: ProviderConfig(
            provider=Provider.PAYPAL,
            display_name="PayPal",
            not_connected_message="PayPal integration not connected",
            api_base_url=paypal_api,
            client_id=settings.paypal_client_id,
            client_secret=settings.paypal_client_secret,
            token_url=f"{paypal_api}/v1/oauth2/token",
            authorize_url=f"{paypal_web}/signin/authorize",
            scopes=PAYPAL_SCOPES,
            client_auth="basic",
        ),
        Provider.PLAID: ProviderConfig(
            provider=Provider.PLAID,
            display_name="Plaid",
            not_connected_message="Bank account not connected",
            api_base_url=PLAID_HOSTS[settings.plaid_env],
            client_id=settings.plaid_client_id,
            client_secret=settings.plaid_secret,
            credential_style="body",
            supports_oauth=False,
        ),
        Provider.STRIPE: ProviderConfig(
            provider=Provider.STRIPE,
            display_name="Stripe",
            not_connected_message="Stripe not connected",
            api_base_url="https://api.stripe.com",
            client_id=settings.stripe_client_id,
            client_secret=settings.stripe_secret_key,
            token_url="https://connect.stripe.com/oauth/token",
            authorize_url="https://connect.stripe.com/oauth/authorize",
            scopes=STRIPE_SCOPES,
            client_auth="form",
            credential_style="connected_account",
            tokens_expire=False,
        ),
    }
