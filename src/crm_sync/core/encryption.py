"""Symmetric encryption for integration credential blobs.

Credentials are stored as Fernet tokens (AES-128-CBC + HMAC-SHA256). The key
comes from CREDENTIALS_ENCRYPTION_KEY; generate one with
``Fernet.generate_key()``.
"""

from __future__ import annotations

from cryptography.fernet import Fernet, InvalidToken

from src.crm_sync.config import get_settings
from src.crm_sync.crm.errors import CredentialDecryptError


class CredentialCipher:
    """Encrypts and decrypts credential blobs with a single Fernet key."""

    def __init__(self, key: str | bytes) -> None:
        if not key:
            raise ValueError("CREDENTIALS_ENCRYPTION_KEY is not configured")
        self._fernet = Fernet(key)

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, token: str) -> str:
        """Decrypt a stored blob.

        Raises:
            CredentialDecryptError: If the token is malformed or was encrypted
                with a different key.
        """
        try:
            return self._fernet.decrypt(token.encode("utf-8")).decode("utf-8")
        except (InvalidToken, ValueError) as exc:
            raise CredentialDecryptError("Stored credentials could not be decrypted") from exc


def get_cipher() -> CredentialCipher:
    """Build a cipher from application settings."""
    return CredentialCipher(get_settings().CREDENTIALS_ENCRYPTION_KEY)
