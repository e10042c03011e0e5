"""
Credential store interface shared by the SQL and Firestore backends.
"""

from typing import Any, Dict, Mapping, Optional, Protocol

from ..utils.types import CREDENTIAL_FIELDS, IntegrationCredential, Provider


class CredentialStoreError(Exception):
    """Base exception for credential store operations."""

    pass


class StoreUnavailableError(CredentialStoreError):
    """Transient failure: the store could not be reached or the write raced."""

    pass


class StoreWriteRejectedError(CredentialStoreError):
    """Terminal failure: the store refused the input; retrying cannot help."""

    pass


class CredentialStore(Protocol):
    """
    One record per (user_id, provider).

    ``merge`` creates the record when absent and otherwise updates only the
    supplied fields, mirroring a document store's ``set(..., merge=True)``.
    """

    async def get(
        self, user_id: str, provider: Provider
    ) -> Optional[IntegrationCredential]: ...

    async def merge(
        self, user_id: str, provider: Provider, fields: Mapping[str, Any]
    ) -> None: ...

    async def ping(self) -> None: ...


def validate_merge_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Reject unknown or malformed fields before they reach a backend."""
    if not fields:
        raise StoreWriteRejectedError("Refusing an empty credential write")

    unknown = set(fields) - CREDENTIAL_FIELDS
    if unknown:
        raise StoreWriteRejectedError(f"Unknown credential fields: {sorted(unknown)}")

    if "connected" in fields and not isinstance(fields["connected"], bool):
        raise StoreWriteRejectedError("'connected' must be a boolean")

    if "provider_metadata" in fields and not isinstance(fields["provider_metadata"], dict):
        raise StoreWriteRejectedError("'provider_metadata' must be a mapping")

    return dict(fields)
