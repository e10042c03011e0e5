"""
Database models for the Workfusion API.

Security: all provider tokens are encrypted at rest using Fernet encryption;
only ciphertext columns exist on the table.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..utils.types import utcnow


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class IntegrationCredentialRecord(Base):
    """
    One integration connection per user and provider.

    Attributes:
        id: Surrogate key
        user_id: Firebase uid of the owner
        provider: 'xero', 'paypal' or 'plaid'
        access_token_ciphertext: Encrypted access token
        refresh_token_ciphertext: Encrypted refresh token (refresh-token OAuth only)
        expires_at: Access token expiry (NULL = does not expire)
        connected_at: Initial linking timestamp
        connected: False once refresh fails terminally or the user disconnects
        last_error: Diagnostic for the terminal failure
        disconnected_at: When the record was marked disconnected
        provider_metadata: Provider-specific identifiers (tenant_id, item_id, stripe_user_id)
    """

    __tablename__ = "integration_credentials"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    user_id: Mapped[str] = mapped_column(String(128), nullable=False)

    provider: Mapped[str] = mapped_column(String(32), nullable=False)

    access_token_ciphertext: Mapped[Optional[bytes]] = mapped_column(
        LargeBinary, nullable=True
    )

    refresh_token_ciphertext: Mapped[Optional[bytes]] = mapped_column(
        LargeBinary, nullable=True
    )

    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    connected_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    connected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    disconnected_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    provider_metadata: Mapped[Dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_integration_user_provider"),
        Index("ix_integration_credentials_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<IntegrationCredentialRecord(user_id={self.user_id}, "
            f"provider={self.provider}, connected={self.connected})>"
        )
