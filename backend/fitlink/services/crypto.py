"""
At-rest encryption for provider secrets (refresh tokens, OAuth1 token secrets).

ENCRYPTION_KEY may list several Fernet keys separated by commas: the first
encrypts, all of them decrypt, so keys can be rotated without re-connecting
every user. Without a key (local development) values are stored as given.
"""
import logging
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from fitlink.config import settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=4)
def _cipher(key_spec: str) -> MultiFernet | None:
    keys = [k.strip() for k in key_spec.split(",") if k.strip()]
    if not keys:
        return None
    return MultiFernet([Fernet(k.encode()) for k in keys])


def encrypt_value(value: str | None) -> str | None:
    if not value:
        return None
    cipher = _cipher(settings.encryption_key)
    return cipher.encrypt(value.encode()).decode() if cipher else value


def decrypt_value(stored: str | None) -> str:
    """Plaintext of a stored secret; empty when missing or no configured key can open it."""
    if not stored:
        return ""
    cipher = _cipher(settings.encryption_key)
    if cipher is None:
        return stored
    try:
        return cipher.decrypt(stored.encode()).decode()
    except InvalidToken:
        logger.warning("Stored provider secret could not be decrypted with any configured key")
        return ""
