"""
Symmetric encryption of credential secrets at rest.

Secrets are encrypted with Fernet (AES-128-CBC + HMAC-SHA256). The Fernet
key is derived from the deployment passphrase with PBKDF2 once, when the
cipher is constructed; the passphrase is never persisted.
"""

import base64
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..config import SecurityConfig
from ..exceptions import ConfigurationError, DecryptionError


def derive_fernet_key(passphrase: str, salt: str, iterations: int = 100_000) -> bytes:
    """Derive a URL-safe base64 Fernet key from a passphrase using PBKDF2-SHA256."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt.encode("utf-8"),
        iterations=iterations,
    )
    return base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8")))


class Cipher:
    """
    Encrypts and decrypts credential secrets.

    Empty or None plaintext encrypts to the empty string and the empty
    string decrypts to the empty string, so absent secrets never produce
    ciphertext.
    """

    def __init__(self, passphrase: str, salt: str = "credential-lifecycle-core", iterations: int = 100_000):
        if not passphrase:
            raise ConfigurationError("Encryption key cannot be empty", setting="encryption_key")
        self._fernet = Fernet(derive_fernet_key(passphrase, salt, iterations))

    @classmethod
    def from_config(cls, config: SecurityConfig) -> "Cipher":
        if not config.encryption_key:
            raise ConfigurationError("Encryption key is not configured", setting="encryption_key")
        return cls(config.encryption_key, config.encryption_salt, config.kdf_iterations)

    def encrypt(self, plaintext: Optional[str]) -> str:
        if not plaintext:
            return ""
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: Optional[str]) -> str:
        """
        Decrypt a value produced by ``encrypt``.

        Raises:
            DecryptionError: If the ciphertext is malformed, tampered with,
                or was encrypted under a different key
        """
        if not ciphertext:
            return ""
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError, ValueError) as e:
            raise DecryptionError("Failed to decrypt credential data", cause=e) from e

    def encrypt_optional(self, plaintext: Optional[str]) -> Optional[str]:
        """Encrypt a present secret; absent or empty secrets stay None."""
        if not plaintext:
            return None
        return self.encrypt(plaintext)
