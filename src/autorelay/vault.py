"""Credential vault: symmetric encryption of stored secrets."""

from __future__ import annotations

import base64

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .settings import settings

_SALT = b"autorelay_credential_salt"


class VaultError(Exception):
    """Raised when a ciphertext cannot be decrypted with the configured key."""


class CredentialVault:
    """Encrypts and decrypts credential secrets with a key derived from a passphrase."""

    def __init__(self, secret: str | None = None):
        self._fernet = self._create_fernet(secret or settings.encryption_key)

    @staticmethod
    def _create_fernet(secret: str) -> Fernet:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_SALT,
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(secret.encode()))
        return Fernet(key)

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except (InvalidToken, ValueError) as exc:
            raise VaultError("credential secret could not be decrypted") from exc


_vault: CredentialVault | None = None


def get_vault() -> CredentialVault:
    global _vault
    if _vault is None:
        _vault = CredentialVault()
    return _vault
