"""Fernet encryption for platform credentials stored on connection rows.

The key comes from settings.encryption_key. decrypt() on a value that is
not a Fernet token returns it unchanged, so rows written before
encryption was enabled keep working.
"""

from __future__ import annotations

import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger("encryption")

_fernet: Fernet | None = None


def _get_fernet() -> Fernet:
    global _fernet
    if _fernet is None:
        from replyflow.config import settings
        _fernet = Fernet(settings.encryption_key.encode())
    return _fernet


def encrypt(plaintext: str) -> str:
    """Encrypt a plaintext string → URL-safe base64 Fernet token."""
    if not plaintext:
        return plaintext
    return _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt(ciphertext: str) -> str:
    if not ciphertext:
        return ciphertext
    try:
        return _get_fernet().decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        logger.debug("Value is not a Fernet token — returning as plaintext")
        return ciphertext


def encrypt_credentials(credentials: dict[str, Any]) -> dict[str, Any]:
    """Encrypt every string value of a credentials mapping."""
    return {
        key: encrypt(value) if isinstance(value, str) else value
        for key, value in credentials.items()
    }


def decrypt_credentials(credentials: dict[str, Any] | None) -> dict[str, Any]:
    return {
        key: decrypt(value) if isinstance(value, str) else value
        for key, value in (credentials or {}).items()
    }
