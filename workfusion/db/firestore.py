"""
Firestore-backed credential store.

Layout matches what the dashboard frontend already reads: one document per
user at ``integrations/{user_id}`` holding one map per provider, with
camelCase field names. Writes use ``set(..., merge=True)`` so a partial update
never clobbers sibling fields or other providers.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

import structlog
from google.api_core import exceptions as gexc

from ..utils.crypto import CryptoService, CryptoServiceError
from ..utils.types import IntegrationCredential, Provider
from .store import (
    CredentialStoreError,
    StoreUnavailableError,
    StoreWriteRejectedError,
    validate_merge_fields,
)

logger = structlog.get_logger(__name__)

DOCUMENT_FIELDS = {
    "access_token": "accessToken",
    "refresh_token": "refreshToken",
    "expires_at": "expiresAt",
    "connected_at": "connectedAt",
    "connected": "connected",
    "last_error": "lastError",
    "disconnected_at": "disconnectedAt",
    "updated_at": "updatedAt",
    "provider_metadata": "metadata",
}

TRANSIENT_ERRORS = (
    gexc.ServiceUnavailable,
    gexc.DeadlineExceeded,
    gexc.InternalServerError,
    gexc.Aborted,
    gexc.ResourceExhausted,
    gexc.Unknown,
    gexc.RetryError,
)


def classify_firestore_error(error: Exception) -> CredentialStoreError:
    if isinstance(error, TRANSIENT_ERRORS):
        return StoreUnavailableError(f"Firestore unavailable: {error}")
    return StoreWriteRejectedError(f"Firestore rejected the operation: {error}")


class FirestoreCredentialStore:
    """Credential store over the firebase-admin async Firestore client."""

    def __init__(self, client: Any, crypto: CryptoService, collection: str = "integrations"):
        """
        Args:
            client: ``google.cloud.firestore.AsyncClient`` (from ``firebase_admin.firestore_async``)
            crypto: token encryption service
            collection: top-level collection, one document per user
        """
        self.client = client
        self.crypto = crypto
        self.collection = collection

    def _document(self, user_id: str):
        return self.client.collection(self.collection).document(user_id)

    def _encrypt(self, value: Optional[str]) -> Optional[str]:
        ciphertext = self.crypto.encrypt_optional(value)
        return ciphertext.decode("ascii") if ciphertext else None

    def _decrypt(self, value: Optional[str]) -> Optional[str]:
        return self.crypto.decrypt_optional(value.encode("ascii")) if value else None

    def _to_document(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        document: Dict[str, Any] = {}
        for name, value in fields.items():
            if name in ("access_token", "refresh_token"):
                value = self._encrypt(value)
            document[DOCUMENT_FIELDS[name]] = value
        document["updatedAt"] = datetime.now(timezone.utc)
        return document

    def _to_domain(
        self, user_id: str, provider: Provider, data: Dict[str, Any]
    ) -> IntegrationCredential:
        try:
            access_token = self._decrypt(data.get("accessToken"))
            refresh_token = self._decrypt(data.get("refreshToken"))
        except CryptoServiceError as e:
            raise StoreWriteRejectedError(f"Stored token cannot be decrypted: {e}") from e

        return IntegrationCredential(
            user_id=user_id,
            provider=provider,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=data.get("expiresAt"),
            connected_at=data.get("connectedAt"),
            connected=bool(data.get("connected", False)),
            last_error=data.get("lastError"),
            disconnected_at=data.get("disconnectedAt"),
            updated_at=data.get("updatedAt"),
            provider_metadata=dict(data.get("metadata") or {}),
        )

    async def get(
        self, user_id: str, provider: Provider
    ) -> Optional[IntegrationCredential]:
        provider = Provider(provider)
        try:
            snapshot = await self._document(user_id).get()
        except gexc.GoogleAPICallError as e:
            raise classify_firestore_error(e) from e

        if not snapshot.exists:
            return None
        data = (snapshot.to_dict() or {}).get(provider.value)
        if not data:
            return None
        return self._to_domain(user_id, provider, data)

    async def merge(
        self, user_id: str, provider: Provider, fields: Mapping[str, Any]
    ) -> None:
        provider = Provider(provider)
        changes = validate_merge_fields(fields)
        try:
            document = self._to_document(changes)
        except CryptoServiceError as e:
            raise StoreWriteRejectedError(f"Token encryption failed: {e}") from e

        try:
            await self._document(user_id).set({provider.value: document}, merge=True)
        except gexc.GoogleAPICallError as e:
            raise classify_firestore_error(e) from e

        logger.debug(
            "Credential document merged",
            user_id=user_id,
            provider=provider.value,
            fields=sorted(changes),
        )

    async def ping(self) -> None:
        try:
            await self.client.collection(self.collection).document("_healthcheck").get()
        except gexc.GoogleAPICallError as e:
            raise classify_firestore_error(e) from e
