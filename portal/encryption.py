"""
Field-level encryption for PHI/PII columns.

Values are stored as base64(iv | tag | ciphertext) using AES-256-GCM with a key
derived from ENCRYPTION_KEY via scrypt.
"""

import base64
import hashlib
import logging
import os
from functools import lru_cache
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from sqlalchemy.types import Text, TypeDecorator

from .config import ENCRYPTION_KEY

logger = logging.getLogger(__name__)

IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
KEY_SALT = b"medibytes-encryption-salt"


@lru_cache(maxsize=4)
def derive_key(secret: str) -> bytes:
    kdf = Scrypt(salt=KEY_SALT, length=KEY_LENGTH, n=2**14, r=8, p=1)
    return kdf.derive(secret.encode("utf-8"))


def encrypt(text: str, secret: str = ENCRYPTION_KEY) -> str:
    """Encrypt a string and return the base64 envelope"""
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(derive_key(secret)).encrypt(iv, text.encode("utf-8"), None)
    # AESGCM appends the tag; the stored layout keeps it ahead of the ciphertext
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return base64.b64encode(iv + tag + ciphertext).decode("ascii")


def decrypt(encrypted_text: str, secret: str = ENCRYPTION_KEY) -> str:
    """Decrypt a value produced by encrypt(); raises ValueError when it can't"""
    try:
        combined = base64.b64decode(encrypted_text, validate=True)
    except (ValueError, TypeError) as e:
        raise ValueError("Value is not base64 encoded") from e

    if len(combined) < IV_LENGTH + TAG_LENGTH:
        raise ValueError("Encrypted value is too short")

    iv = combined[:IV_LENGTH]
    tag = combined[IV_LENGTH : IV_LENGTH + TAG_LENGTH]
    ciphertext = combined[IV_LENGTH + TAG_LENGTH :]
    try:
        plain = AESGCM(derive_key(secret)).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as e:
        raise ValueError("Authentication tag mismatch") from e
    return plain.decode("utf-8")


def hash_lookup_value(value: Optional[str]) -> Optional[str]:
    """Deterministic digest used to look up rows by an encrypted column"""
    if value is None:
        return None
    return hashlib.sha256(value.strip().lower().encode("utf-8")).hexdigest()


class EncryptedString(TypeDecorator):
    """String column transparently encrypted at rest"""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return encrypt(str(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        try:
            return decrypt(value)
        except ValueError:
            # Rows written before encryption was enabled
            logger.warning("⚠️ Failed to decrypt column value, returning stored value")
            return value
