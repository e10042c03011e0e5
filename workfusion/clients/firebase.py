"""
Firebase Admin integration: app construction, ID token verification, Firestore.

The firebase-admin ``App`` is created once by the service container and passed
explicitly to everything that needs it; the SDK's default app is never used.
"""

import json
from typing import Any, Optional, Protocol

import firebase_admin
import structlog
from firebase_admin import auth, credentials, firestore_async
from starlette.concurrency import run_in_threadpool

from ..config import Settings

logger = structlog.get_logger(__name__)


class IdentityVerificationError(Exception):
    """The bearer token is missing, malformed, expired or revoked."""

    pass


class IdentityServiceUnavailable(Exception):
    """Signing keys could not be fetched, so no token can be verified."""

    pass


class IdentityVerifier(Protocol):
    async def verify(self, token: str) -> str: ...


def create_firebase_app(settings: Settings) -> Optional[firebase_admin.App]:
    """
    Initialize a named firebase-admin app from the service account JSON.

    Returns None when no service account is configured.
    """
    if not settings.firebase_service_account_key:
        logger.warning("Firebase service account not configured, identity checks disabled")
        return None

    try:
        service_account = json.loads(settings.firebase_service_account_key)
    except json.JSONDecodeError as e:
        raise ValueError("FIREBASE_SERVICE_ACCOUNT_KEY is not valid JSON") from e

    options = {}
    if settings.firebase_project_id:
        options["projectId"] = settings.firebase_project_id

    name = settings.app_name.replace(" ", "-").lower()
    try:
        return firebase_admin.get_app(name)
    except ValueError:
        app = firebase_admin.initialize_app(
            credentials.Certificate(service_account), options or None, name=name
        )
        logger.info("Firebase app initialized", project_id=app.project_id)
        return app


def create_firestore_client(app: firebase_admin.App) -> Any:
    """Async Firestore client bound to ``app``."""
    return firestore_async.client(app)


class FirebaseIdentityVerifier:
    """Verifies Firebase ID tokens and returns the caller's uid."""

    def __init__(self, app: firebase_admin.App, check_revoked: bool = False):
        self.app = app
        self.check_revoked = check_revoked

    async def verify(self, token: str) -> str:
        """
        Raises:
            IdentityVerificationError: For any token the SDK rejects
            IdentityServiceUnavailable: If Google's signing keys are unreachable
        """
        try:
            decoded = await run_in_threadpool(
                auth.verify_id_token, token, self.app, self.check_revoked
            )
        except auth.CertificateFetchError as e:
            raise IdentityServiceUnavailable(str(e)) from e
        except (ValueError, auth.InvalidIdTokenError, auth.UserDisabledError) as e:
            raise IdentityVerificationError(str(e)) from e
        return decoded["uid"]
