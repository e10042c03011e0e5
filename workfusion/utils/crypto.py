"""
Token encryption for stored integration credentials.

Provider access and refresh tokens are encrypted at rest with Fernet
(AES-128-CBC + HMAC-SHA256). MultiFernet lets old keys listed in
``FERNET_KEYS`` keep decrypting while the primary ``FERNET_KEY`` encrypts.
"""

import os
from typing import List, Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet


class CryptoServiceError(Exception):
    """Base exception for CryptoService operations."""

    pass


class DecryptionError(CryptoServiceError):
    """Raised when decryption fails (invalid ciphertext, wrong key, etc.)."""

    pass


class CryptoService:
    """
    Encrypts and decrypts provider tokens with key rotation support.

    Usage:
        crypto = CryptoService(settings.fernet_key)
        ciphertext = crypto.encrypt_token("access-token")
        plaintext = crypto.decrypt_token(ciphertext)
    """

    def __init__(
        self, primary_key_b64: str, rotated_keys: Optional[str] = None
    ):
        """
        Args:
            primary_key_b64: base64 Fernet key used for all new encryption
            rotated_keys: comma-separated older keys still accepted for decryption
                (defaults to the FERNET_KEYS environment variable)
        """
        if not primary_key_b64:
            raise CryptoServiceError("FERNET_KEY is required for token encryption")

        try:
            keys: List[Fernet] = [Fernet(primary_key_b64.encode())]
        except ValueError as e:
            raise CryptoServiceError(f"Invalid FERNET_KEY: {e}") from e

        if rotated_keys is None:
            rotated_keys = os.getenv("FERNET_KEYS", "")
        for key_b64 in rotated_keys.split(","):
            key_b64 = key_b64.strip()
            if not key_b64:
                continue
            try:
                keys.append(Fernet(key_b64.encode()))
            except ValueError as e:
                raise CryptoServiceError(f"Invalid key in FERNET_KEYS: {e}") from e

        self._multi_fernet = MultiFernet(keys)
        self._key_count = len(keys)

    def encrypt_token(self, plaintext_token: str) -> bytes:
        """Encrypt a token with the newest key."""
        if not plaintext_token:
            raise CryptoServiceError("Cannot encrypt empty token")
        return self._multi_fernet.encrypt(plaintext_token.encode("utf-8"))

    def decrypt_token(self, ciphertext: bytes) -> str:
        """
        Decrypt a token, trying every configured key.

        Raises:
            DecryptionError: If no key can decrypt the ciphertext
        """
        if not ciphertext:
            raise DecryptionError("Cannot decrypt empty ciphertext")
        try:
            return self._multi_fernet.decrypt(ciphertext).decode("utf-8")
        except InvalidToken as e:
            raise DecryptionError(
                f"Failed to decrypt token with any of the {self._key_count} available keys"
            ) from e

    def encrypt_optional(self, plaintext_token: Optional[str]) -> Optional[bytes]:
        return self.encrypt_token(plaintext_token) if plaintext_token else None

    def decrypt_optional(self, ciphertext: Optional[bytes]) -> Optional[str]:
        return self.decrypt_token(ciphertext) if ciphertext else None

    def get_key_count(self) -> int:
        return self._key_count


def redact_token_for_logging(token: Optional[str]) -> str:
    """
    Redact a token for safe logging.

    Example:
        redact_token_for_logging("access-sandbox-1234567890")
        # Returns: "access-s...7890"
    """
    if not token or len(token) < 12:
        return "***REDACTED***"
    return f"{token[:8]}...{token[-4:]}"
