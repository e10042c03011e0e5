"""
Database module for the Workfusion API.

Single import point for credential storage: the store interface, its SQL and
Firestore backends, and engine/session construction.
"""

from .database import create_engine, create_session_factory, create_tables, get_database_url, ping
from .firestore import FirestoreCredentialStore
from .models import Base, IntegrationCredentialRecord
from .repositories import SqlCredentialStore
from .store import (
    CredentialStore,
    CredentialStoreError,
    StoreUnavailableError,
    StoreWriteRejectedError,
)

__all__ = [
    # Engine and sessions
    "create_engine",
    "create_session_factory",
    "create_tables",
    "get_database_url",
    "ping",
    # Models
    "Base",
    "IntegrationCredentialRecord",
    # Stores
    "CredentialStore",
    "SqlCredentialStore",
    "FirestoreCredentialStore",
    "CredentialStoreError",
    "StoreUnavailableError",
    "StoreWriteRejectedError",
]
