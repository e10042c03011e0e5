"""Client modules for external service integrations."""

from .firebase import (
    FirebaseIdentityVerifier,
    IdentityServiceUnavailable,
    IdentityVerificationError,
    IdentityVerifier,
    create_firebase_app,
    create_firestore_client,
)

__all__ = [
    "FirebaseIdentityVerifier",
    "IdentityServiceUnavailable",
    "IdentityVerificationError",
    "IdentityVerifier",
    "create_firebase_app",
    "create_firestore_client",
]
