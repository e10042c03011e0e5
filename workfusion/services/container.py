"""
Service container: every long-lived client, constructed once per process.

The application lifespan builds the container, stores it on ``app.state`` and
closes it on shutdown. Tests build their own from fakes.
"""

import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import httpx
import structlog
from openai import AsyncOpenAI

from ..clients.firebase import (
    FirebaseIdentityVerifier,
    IdentityVerifier,
    create_firebase_app,
    create_firestore_client,
)
from ..config import Settings
from ..db import (
    CredentialStore,
    FirestoreCredentialStore,
    SqlCredentialStore,
    create_engine,
    create_session_factory,
    create_tables,
)
from ..utils.crypto import CryptoService
from ..utils.http_client import create_http_client
from ..utils.retry import RetryPolicy
from ..utils.types import Provider
from .credential_store import ResilientCredentialStore, store_retry_policy
from .insights import InsightsService
from .oauth_manager import OAuthManager
from .provider_client import ProviderClient
from .providers import ProviderConfig, build_provider_configs
from .token_refresher import TokenRefresher

logger = structlog.get_logger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    http_client: httpx.AsyncClient
    providers: Dict[Provider, ProviderConfig]
    store: CredentialStore
    credentials: ResilientCredentialStore
    refresher: TokenRefresher
    provider_client: ProviderClient
    oauth_manager: OAuthManager
    insights: InsightsService
    identity_verifier: Optional[IdentityVerifier] = None
    _closers: List[Callable[[], Any]] = field(default_factory=list)

    async def close(self) -> None:
        for closer in reversed(self._closers):
            result = closer()
            if inspect.isawaitable(result):
                await result
        self._closers.clear()
        logger.info("Service container closed")


def assemble_container(
    settings: Settings,
    store: CredentialStore,
    http_client: httpx.AsyncClient,
    identity_verifier: Optional[IdentityVerifier] = None,
    openai_client: Optional[AsyncOpenAI] = None,
    sleep: Optional[Callable[[float], Any]] = None,
    clock: Optional[Callable[[], Any]] = None,
) -> ServiceContainer:
    """Wire the services around already-constructed clients."""
    providers = build_provider_configs(settings)
    credentials = ResilientCredentialStore(store, store_retry_policy(settings), sleep=sleep)
    clock_kwargs = {"clock": clock} if clock is not None else {}

    refresher = TokenRefresher(
        credentials,
        http_client,
        providers,
        skew_seconds=settings.token_refresh_skew_seconds,
        **clock_kwargs,
    )
    provider_client = ProviderClient(
        http_client,
        refresher,
        providers,
        RetryPolicy(
            max_attempts=settings.provider_retry_max_attempts,
            base_delay=0.25,
            max_delay=1.0,
        ),
        sleep=sleep,
    )
    oauth_manager = OAuthManager(settings, http_client, credentials, providers, **clock_kwargs)
    insights = InsightsService(
        openai_client,
        model=settings.openai_model,
        max_tokens=settings.openai_max_tokens,
    )

    return ServiceContainer(
        settings=settings,
        http_client=http_client,
        providers=providers,
        store=store,
        credentials=credentials,
        refresher=refresher,
        provider_client=provider_client,
        oauth_manager=oauth_manager,
        insights=insights,
        identity_verifier=identity_verifier,
    )


async def build_container(settings: Settings) -> ServiceContainer:
    """Construct production clients from settings."""
    missing = settings.missing_required_settings()
    if missing:
        logger.error(
            "Required configuration missing; affected integrations will be unavailable",
            missing=missing,
        )

    crypto = CryptoService(settings.fernet_key)
    firebase_app = create_firebase_app(settings)
    closers: List[Callable[[], Any]] = []

    if settings.credential_store_backend == "firestore":
        if firebase_app is None:
            raise ValueError("The firestore credential store requires FIREBASE_SERVICE_ACCOUNT_KEY")
        firestore_client = create_firestore_client(firebase_app)
        store: CredentialStore = FirestoreCredentialStore(
            firestore_client, crypto, collection=settings.firestore_collection
        )
    else:
        engine = create_engine(settings)
        await create_tables(engine)
        store = SqlCredentialStore(create_session_factory(engine), crypto, engine=engine)
        closers.append(engine.dispose)

    http_client = create_http_client(settings)
    closers.append(http_client.aclose)

    openai_client = None
    if settings.openai_api_key:
        openai_client = AsyncOpenAI(
            api_key=settings.openai_api_key,
            timeout=settings.provider_timeout_seconds,
        )
        closers.append(openai_client.close)

    container = assemble_container(
        settings,
        store,
        http_client,
        identity_verifier=FirebaseIdentityVerifier(firebase_app) if firebase_app else None,
        openai_client=openai_client,
    )
    container._closers.extend(closers)

    logger.info(
        "Service container ready",
        store_backend=settings.credential_store_backend,
        configured_providers=[p.value for p, c in container.providers.items() if c.configured],
    )
    return container
