"""Tests for credential secret encryption."""

import pytest

from credential_lifecycle_core.config import SecurityConfig
from credential_lifecycle_core.exceptions import ConfigurationError, DecryptionError
from credential_lifecycle_core.utils.cipher import Cipher, derive_fernet_key


class TestCipher:
    """Test Cipher encrypt/decrypt behaviour."""

    def test_round_trip(self, cipher):
        """Decrypting an encrypted value returns the original plaintext."""
        for plaintext in ["tok1", "xoxb-123-456", "ünïcødé ✓", "a" * 4096]:
            assert cipher.decrypt(cipher.encrypt(plaintext)) == plaintext

    def test_empty_values_short_circuit(self, cipher):
        """Empty and None plaintext encrypt to the empty string; empty decrypts to empty."""
        assert cipher.encrypt("") == ""
        assert cipher.encrypt(None) == ""
        assert cipher.decrypt("") == ""
        assert cipher.decrypt(None) == ""

    def test_encrypt_optional_keeps_absent_secrets_null(self, cipher):
        """Absent secrets never produce ciphertext."""
        assert cipher.encrypt_optional(None) is None
        assert cipher.encrypt_optional("") is None
        assert cipher.encrypt_optional("secret") != "secret"

    def test_ciphertext_is_not_plaintext(self, cipher):
        """Ciphertext differs from the plaintext and between encryptions."""
        first = cipher.encrypt("tok1")
        second = cipher.encrypt("tok1")
        assert "tok1" not in first
        assert first != second

    def test_corrupted_ciphertext_raises_decryption_error(self, cipher):
        """Tampered ciphertext fails with DecryptionError."""
        ciphertext = cipher.encrypt("tok1")
        corrupted = ciphertext[:-4] + ("AAAA" if not ciphertext.endswith("AAAA") else "BBBB")
        with pytest.raises(DecryptionError):
            cipher.decrypt(corrupted)

    def test_garbage_ciphertext_raises_decryption_error(self, cipher):
        """Non-Fernet input fails with DecryptionError."""
        with pytest.raises(DecryptionError) as exc_info:
            cipher.decrypt("not-a-fernet-token")
        assert exc_info.value.message == "Failed to decrypt credential data"

    def test_wrong_key_raises_decryption_error(self, cipher):
        """Ciphertext from another key cannot be decrypted."""
        other = Cipher("another-passphrase", salt="test-salt", iterations=1_000)
        with pytest.raises(DecryptionError):
            cipher.decrypt(other.encrypt("tok1"))

    def test_empty_passphrase_is_configuration_error(self):
        """A cipher cannot be built without a key."""
        with pytest.raises(ConfigurationError):
            Cipher("")

    def test_from_config_requires_key(self):
        """from_config rejects a missing encryption key."""
        with pytest.raises(ConfigurationError):
            Cipher.from_config(SecurityConfig(encryption_key=None))

    def test_from_config_builds_working_cipher(self):
        """from_config uses the configured passphrase, salt and iterations."""
        config = SecurityConfig(encryption_key="k", encryption_salt="s", kdf_iterations=1_000)
        cipher = Cipher.from_config(config)
        assert cipher.decrypt(cipher.encrypt("value")) == "value"

    def test_key_derivation_is_deterministic(self):
        """The same passphrase and salt always derive the same key."""
        assert derive_fernet_key("p", "s", 1_000) == derive_fernet_key("p", "s", 1_000)
        assert derive_fernet_key("p", "s", 1_000) != derive_fernet_key("p", "other", 1_000)
