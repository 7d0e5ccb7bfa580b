"""Cryptographic utilities for secure key storage.

Uses Fernet (AES-128-CBC with HMAC) for symmetric encryption of the
deposit xpub at rest.
"""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from goldenarrow.errors import InvalidKeyMaterial

logger = logging.getLogger(__name__)

# Fernet tokens are base64 of a 0x80 version byte, hence this prefix
FERNET_PREFIX = "gAAAAA"


def generate_encryption_key() -> str:
    """Generate a new Fernet key (base64-encoded 32 bytes)."""
    return Fernet.generate_key().decode()


def is_encrypted(value: str) -> bool:
    """Check whether a stored value looks like a Fernet token."""
    return value.startswith(FERNET_PREFIX)


class XpubEncryptor:
    """Encrypts and decrypts xpub keys using Fernet.

    Usage:
        encryptor = XpubEncryptor(encryption_key)
        encrypted = encryptor.encrypt("xpub...")
        decrypted = encryptor.decrypt(encrypted)
    """

    def __init__(self, encryption_key: str):
        try:
            self._fernet = Fernet(encryption_key.encode())
        except (ValueError, TypeError) as e:
            raise InvalidKeyMaterial(f"Invalid xpub encryption key: {e}") from e

    def encrypt(self, xpub: str) -> str:
        return self._fernet.encrypt(xpub.encode()).decode()

    def decrypt(self, encrypted_xpub: str) -> str:
        """Decrypt an encrypted xpub.

        Raises:
            InvalidKeyMaterial: If the token is corrupted or was encrypted
                under a different key.
        """
        try:
            return self._fernet.decrypt(encrypted_xpub.encode()).decode()
        except InvalidToken as e:
            raise InvalidKeyMaterial("Encrypted XPUB_KEY could not be decrypted") from e


def decrypt_xpub(value: str, encryption_key: Optional[str]) -> str:
    """Return the plain xpub for a configured value.

    Plain values pass through unchanged. Encrypted values require the
    encryption key; ciphertext is never handed on as if it were a key.
    """
    value = value.strip()
    if not is_encrypted(value):
        return value

    if not encryption_key:
        raise InvalidKeyMaterial(
            "XPUB_KEY is encrypted but XPUB_ENCRYPTION_KEY is not set"
        )

    logger.debug("Decrypting configured xpub")
    return XpubEncryptor(encryption_key).decrypt(value)
