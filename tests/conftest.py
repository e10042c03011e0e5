"""
Shared test fixtures for the Workfusion API tests.

Provides an in-memory credential store, a fake identity verifier, a recording
mock transport for provider HTTP calls, and a fully wired FastAPI TestClient.
Nothing here touches the network, Firebase, or a real database.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient

# Set test environment before importing the app module
os.environ.update({"APP_ENV": "test", "LOG_LEVEL": "DEBUG"})

from workfusion.app import create_app
from workfusion.clients.firebase import IdentityVerificationError
from workfusion.config import Settings
from workfusion.db.store import StoreUnavailableError, validate_merge_fields
from workfusion.services.container import assemble_container
from workfusion.utils.http_client import create_http_client
from workfusion.utils.types import IntegrationCredential, Provider

FIXED_NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
TEST_USER_ID = "user-123"
VALID_ID_TOKEN = "valid-id-token"


class InMemoryCredentialStore:
    """Dict-backed credential store with document-merge semantics."""

    def __init__(self):
        self.records: Dict[Tuple[str, Provider], IntegrationCredential] = {}
        self.merge_calls: List[Tuple[str, Provider, Dict[str, Any]]] = []
        self.get_calls = 0

    async def get(self, user_id: str, provider: Provider) -> Optional[IntegrationCredential]:
        self.get_calls += 1
        return self.records.get((user_id, Provider(provider)))

    async def merge(self, user_id: str, provider: Provider, fields: Dict[str, Any]) -> None:
        changes = validate_merge_fields(fields)
        provider = Provider(provider)
        self.merge_calls.append((user_id, provider, changes))

        current = self.records.get((user_id, provider)) or IntegrationCredential(
            user_id=user_id, provider=provider
        )
        if "provider_metadata" in changes:
            changes["provider_metadata"] = {
                **current.provider_metadata,
                **changes["provider_metadata"],
            }
        self.records[(user_id, provider)] = current.merged(changes)

    async def ping(self) -> None:
        return None

    def put(self, credential: IntegrationCredential) -> IntegrationCredential:
        self.records[(credential.user_id, credential.provider)] = credential
        return credential


class FlakyCredentialStore(InMemoryCredentialStore):
    """Fails the first ``failures`` writes (or every write) as unavailable."""

    def __init__(self, failures: int = 0, fail_always: bool = False, error: Exception = None):
        super().__init__()
        self.failures = failures
        self.fail_always = fail_always
        self.error = error
        self.write_attempts = 0

    async def merge(self, user_id: str, provider: Provider, fields: Dict[str, Any]) -> None:
        self.write_attempts += 1
        if self.fail_always or self.write_attempts <= self.failures:
            raise self.error or StoreUnavailableError("store unreachable")
        await super().merge(user_id, provider, fields)


class FakeIdentityVerifier:
    """Accepts ``VALID_ID_TOKEN`` (or any token registered in ``tokens``)."""

    def __init__(self, tokens: Optional[Dict[str, str]] = None):
        self.tokens = tokens or {VALID_ID_TOKEN: TEST_USER_ID}

    async def verify(self, token: str) -> str:
        if token not in self.tokens:
            raise IdentityVerificationError("token rejected")
        return self.tokens[token]


class ProviderMock:
    """
    Routes outbound provider requests to canned responses and records them.

    Routes are keyed by ``(METHOD, url-without-query)``. A route is either a
    callable taking the request, or a list of ``(status_code, json_body)``
    pairs served in order (the last one repeats).
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Any] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, url: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[(method.upper(), url)] = handler

    def json(self, method: str, url: str, body: Any, status_code: int = 200) -> None:
        self.sequence(method, url, [(status_code, body)])

    def sequence(self, method: str, url: str, replies: List[Tuple[int, Any]]) -> None:
        self.routes[(method.upper(), url)] = list(replies)

    def calls_to(self, url: str) -> List[httpx.Request]:
        return [r for r in self.requests if str(r.url).split("?")[0] == url]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, str(request.url).split("?")[0])
        if key not in self.routes:
            return httpx.Response(404, json={"error": "no mock route", "url": str(request.url)})

        route = self.routes[key]
        if callable(route):
            return route(request)
        status_code, body = route.pop(0) if len(route) > 1 else route[0]
        return httpx.Response(status_code, json=body)


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def sleeps() -> List[float]:
    """Delays requested by retry loops, in order."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        app_env="test",
        log_level="DEBUG",
        app_base_url="https://app.example.com/",
        plaid_client_id="plaid-client",
        plaid_secret="plaid-secret",
        plaid_env="sandbox",
        paypal_client_id="paypal-client",
        paypal_client_secret="paypal-secret",
        paypal_env="sandbox",
        xero_client_id="xero-client",
        xero_client_secret="xero-secret",
        stripe_client_id="ca_test",
        stripe_secret_key="sk_test_platform",
        fernet_key=Fernet.generate_key().decode(),
        jwt_secret="test-jwt-secret-with-enough-entropy-123456",
        store_retry_max_attempts=3,
        store_retry_base_delay_ms=200,
        store_retry_max_delay_ms=2000,
    )


@pytest.fixture
def memory_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def provider_mock() -> ProviderMock:
    return ProviderMock()


@pytest.fixture
def http_client(test_settings, provider_mock) -> httpx.AsyncClient:
    return create_http_client(test_settings, transport=httpx.MockTransport(provider_mock.handler))


@pytest.fixture
def identity_verifier() -> FakeIdentityVerifier:
    return FakeIdentityVerifier()


@pytest.fixture
def container(test_settings, memory_store, http_client, identity_verifier, fake_sleep, clock):
    return assemble_container(
        test_settings,
        memory_store,
        http_client,
        identity_verifier=identity_verifier,
        sleep=fake_sleep,
        clock=clock,
    )


@pytest.fixture
def test_client(container):
    """
    FastAPI TestClient over an app wired to the in-memory fakes.

    Server-side exceptions are rendered as responses rather than re-raised so
    tests can assert on the 500 envelope.
    """
    app = create_app(container=container)
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {VALID_ID_TOKEN}"}


@pytest.fixture
def make_credential() -> Callable[..., IntegrationCredential]:
    """Factory for a connected credential; keyword arguments override fields."""

    def _make(provider: Provider = Provider.XERO, **overrides: Any) -> IntegrationCredential:
        values: Dict[str, Any] = {
            "user_id": TEST_USER_ID,
            "provider": provider,
            "access_token": f"{provider.value}-access",
            "refresh_token": f"{provider.value}-refresh",
            "expires_at": FIXED_NOW + timedelta(hours=1),
            "connected_at": FIXED_NOW - timedelta(days=1),
            "connected": True,
        }
        if provider == Provider.PLAID:
            values.update(refresh_token=None, expires_at=None, provider_metadata={"item_id": "item-1"})
        if provider == Provider.XERO:
            values["provider_metadata"] = {"tenant_id": "tenant-1", "tenant_name": "Demo Co"}
        if provider == Provider.STRIPE:
            values.update(expires_at=None, provider_metadata={"stripe_user_id": "acct_123"})
        values.update(overrides)
        return IntegrationCredential(**values)

    return _make


@pytest.fixture
def flaky_store() -> Callable[..., FlakyCredentialStore]:
    """Factory: ``flaky_store(failures=2)`` or ``flaky_store(fail_always=True)``."""
    return FlakyCredentialStore


@pytest.fixture
def now() -> datetime:
    """The instant the ``clock`` fixture reports."""
    return FIXED_NOW


@pytest.fixture
def user_id() -> str:
    """The uid ``auth_headers`` authenticates as."""
    return TEST_USER_ID
