"""
Tests for token encryption and key rotation.
"""

import pytest
from cryptography.fernet import Fernet

from workfusion.utils.crypto import (
    CryptoService,
    CryptoServiceError,
    DecryptionError,
    redact_token_for_logging,
)


@pytest.fixture
def key() -> str:
    return Fernet.generate_key().decode()


class TestCryptoService:
    def test_round_trip(self, key):
        crypto = CryptoService(key, rotated_keys="")

        ciphertext = crypto.encrypt_token("secret-token")

        assert b"secret-token" not in ciphertext
        assert crypto.decrypt_token(ciphertext) == "secret-token"

    def test_rotated_key_still_decrypts(self, key):
        old_key = Fernet.generate_key().decode()
        old_ciphertext = CryptoService(old_key, rotated_keys="").encrypt_token("legacy")

        crypto = CryptoService(key, rotated_keys=old_key)

        assert crypto.get_key_count() == 2
        assert crypto.decrypt_token(old_ciphertext) == "legacy"

    def test_foreign_ciphertext_fails(self, key):
        other = CryptoService(Fernet.generate_key().decode(), rotated_keys="")

        with pytest.raises(DecryptionError):
            CryptoService(key, rotated_keys="").decrypt_token(other.encrypt_token("x"))

    def test_invalid_primary_key_is_rejected(self):
        with pytest.raises(CryptoServiceError):
            CryptoService("not-a-fernet-key", rotated_keys="")

    def test_optional_helpers_pass_none_through(self, key):
        crypto = CryptoService(key, rotated_keys="")

        assert crypto.encrypt_optional(None) is None
        assert crypto.decrypt_optional(None) is None


class TestRedaction:
    def test_long_token_keeps_prefix_and_suffix(self):
        assert redact_token_for_logging("access-sandbox-1234567890") == "access-s...7890"

    def test_short_token_is_fully_hidden(self):
        assert redact_token_for_logging("short") == "***REDACTED***"
