"""
SQL-backed credential store.

Encapsulates all access to ``integration_credentials``: encryption of tokens on
the way in, decryption on the way out, and classification of SQLAlchemy errors
into transient (retryable) and terminal failures.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import (
    DataError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ..utils.crypto import CryptoService, CryptoServiceError
from ..utils.types import IntegrationCredential, Provider
from .database import ping
from .models import IntegrationCredentialRecord
from .store import (
    CredentialStoreError,
    StoreUnavailableError,
    StoreWriteRejectedError,
    validate_merge_fields,
)

logger = structlog.get_logger(__name__)

TOKEN_COLUMNS = {
    "access_token": "access_token_ciphertext",
    "refresh_token": "refresh_token_ciphertext",
}


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def classify_sqlalchemy_error(error: SQLAlchemyError) -> CredentialStoreError:
    """Map a SQLAlchemy exception onto the store's transient/terminal split."""
    if isinstance(error, (OperationalError, InterfaceError, PoolTimeoutError)):
        return StoreUnavailableError(f"Database unavailable: {error}")
    if isinstance(error, IntegrityError):
        # Two first-time writes for the same (user, provider) raced; a retry
        # takes the update path.
        return StoreUnavailableError(f"Concurrent credential insert: {error}")
    if isinstance(error, DataError):
        return StoreWriteRejectedError(f"Invalid credential data: {error}")
    return StoreWriteRejectedError(f"Database error: {error}")


class SqlCredentialStore:
    """Credential store over an async SQLAlchemy engine."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        crypto: CryptoService,
        engine: Optional[AsyncEngine] = None,
    ):
        self.session_factory = session_factory
        self.crypto = crypto
        self.engine = engine

    def _to_domain(self, record: IntegrationCredentialRecord) -> IntegrationCredential:
        try:
            access_token = self.crypto.decrypt_optional(record.access_token_ciphertext)
            refresh_token = self.crypto.decrypt_optional(record.refresh_token_ciphertext)
        except CryptoServiceError as e:
            raise StoreWriteRejectedError(f"Stored token cannot be decrypted: {e}") from e

        return IntegrationCredential(
            user_id=record.user_id,
            provider=Provider(record.provider),
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=_as_utc(record.expires_at),
            connected_at=_as_utc(record.connected_at),
            connected=record.connected,
            last_error=record.last_error,
            disconnected_at=_as_utc(record.disconnected_at),
            updated_at=_as_utc(record.updated_at),
            provider_metadata=dict(record.provider_metadata or {}),
        )

    def _apply(self, record: IntegrationCredentialRecord, fields: Dict[str, Any]) -> None:
        for name, value in fields.items():
            if name in TOKEN_COLUMNS:
                try:
                    setattr(record, TOKEN_COLUMNS[name], self.crypto.encrypt_optional(value))
                except CryptoServiceError as e:
                    raise StoreWriteRejectedError(f"Token encryption failed: {e}") from e
            elif name == "provider_metadata":
                # Merge like a document store would for a nested map
                record.provider_metadata = {**(record.provider_metadata or {}), **value}
            elif name == "updated_at":
                continue
            else:
                setattr(record, name, value)

    async def get(
        self, user_id: str, provider: Provider
    ) -> Optional[IntegrationCredential]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(IntegrationCredentialRecord).where(
                        IntegrationCredentialRecord.user_id == user_id,
                        IntegrationCredentialRecord.provider == Provider(provider).value,
                    )
                )
                record = result.scalar_one_or_none()
                return self._to_domain(record) if record else None
        except SQLAlchemyError as e:
            raise classify_sqlalchemy_error(e) from e

    async def merge(
        self, user_id: str, provider: Provider, fields: Mapping[str, Any]
    ) -> None:
        changes = validate_merge_fields(fields)
        provider_value = Provider(provider).value

        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(IntegrationCredentialRecord).where(
                        IntegrationCredentialRecord.user_id == user_id,
                        IntegrationCredentialRecord.provider == provider_value,
                    )
                )
                record = result.scalar_one_or_none()
                if record is None:
                    record = IntegrationCredentialRecord(
                        user_id=user_id,
                        provider=provider_value,
                        connected=False,
                        provider_metadata={},
                    )
                    session.add(record)

                self._apply(record, changes)
                await session.commit()
        except SQLAlchemyError as e:
            raise classify_sqlalchemy_error(e) from e

        logger.debug(
            "Credential record merged",
            user_id=user_id,
            provider=provider_value,
            fields=sorted(changes),
        )

    async def ping(self) -> None:
        if self.engine is None:
            return
        try:
            await ping(self.engine)
        except SQLAlchemyError as e:
            raise classify_sqlalchemy_error(e) from e
