"""
Token Encryption Utilities

Symmetric encryption for OAuth secrets at rest using Fernet (AES-128-CBC).
The key is derived from the ENCRYPTION_KEY environment variable.
"""

import os
import base64
from functools import lru_cache

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from apps.shared.errors import ConfigurationError


# Salt for key derivation (fixed salt is okay for this use case since key is secret)
SALT = b"strava_mirror_token_salt_v1"


@lru_cache(maxsize=4)
def _fernet_for(secret: str) -> Fernet:
    # PBKDF2 is deliberately slow; derive once per distinct secret
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=SALT,
        iterations=100000,
    )
    key = base64.urlsafe_b64encode(kdf.derive(secret.encode()))
    return Fernet(key)


def _get_fernet() -> Fernet:
    """
    Get Fernet cipher instance.

    Raises:
        ConfigurationError: If ENCRYPTION_KEY is not set
    """
    secret = os.getenv("ENCRYPTION_KEY")
    if not secret:
        raise ConfigurationError(
            "ENCRYPTION_KEY environment variable must be set for token encryption"
        )
    return _fernet_for(secret)


def encrypt_token(plaintext: str) -> str:
    """
    Encrypt a token for storage.

    Empty values are stored as-is.
    """
    if not plaintext:
        return plaintext

    return _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt_token(ciphertext: str) -> str:
    """
    Decrypt a token from storage.

    Raises:
        ConfigurationError: If ENCRYPTION_KEY is not configured
        cryptography.fernet.InvalidToken: If decryption fails
    """
    if not ciphertext:
        return ciphertext

    return _get_fernet().decrypt(ciphertext.encode()).decode()
