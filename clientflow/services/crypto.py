"""
Encryption for stored client credentials (Fernet: AES-128-CBC + HMAC-SHA256).
"""
import base64
import hashlib
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from ..config import settings


class CredentialDecryptError(Exception):
    pass


def _derive_key(secret: str) -> bytes:
    return base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())


@lru_cache(maxsize=4)
def get_fernet(key: Optional[str] = None) -> Fernet:
    key = key or settings.credentials_key
    if key:
        return Fernet(key.encode("utf-8") if isinstance(key, str) else key)
    return Fernet(_derive_key(settings.jwt_secret))


def encrypt_secret(plain: str, key: Optional[str] = None) -> str:
    return get_fernet(key).encrypt(plain.encode("utf-8")).decode("ascii")


def decrypt_secret(token: str, key: Optional[str] = None) -> str:
    try:
        return get_fernet(key).decrypt(token.encode("ascii")).decode("utf-8")
    except (InvalidToken, ValueError):
        raise CredentialDecryptError("Stored credential could not be decrypted")
