"""Gateway API key generation and hashing.

Keys are 256-bit random tokens, so a keyed HMAC-SHA256 digest is enough to
store them. The digest is deterministic, which lets authentication look a
key up by its hash instead of checking every stored key.
"""

import hashlib
import hmac
import secrets

from src.core.config import get_settings

API_KEY_PREFIX = "mvk_"
API_KEY_BYTES = 32

_API_KEY_LENGTH = len(API_KEY_PREFIX) + API_KEY_BYTES * 2
_HEX_DIGITS = frozenset("0123456789abcdef")


def generate_api_key() -> str:
    """Generate a new key of the form ``mvk_<64 hex chars>``."""
    return f"{API_KEY_PREFIX}{secrets.token_hex(API_KEY_BYTES)}"


def hash_api_key(api_key: str, secret: str | None = None) -> str:
    """HMAC-SHA256 of ``api_key`` under the configured hash secret."""
    key = (secret or get_settings().api_key_hash_secret).encode("utf-8")
    return hmac.new(key, api_key.encode("utf-8"), hashlib.sha256).hexdigest()


def create_api_key() -> tuple[str, str]:
    """Return ``(plaintext, hash)``. Only the hash may be stored."""
    key = generate_api_key()
    return key, hash_api_key(key)


def is_valid_api_key_format(api_key: str) -> bool:
    """Cheap shape check run before touching the database."""
    if len(api_key) != _API_KEY_LENGTH or not api_key.startswith(API_KEY_PREFIX):
        return False
    return set(api_key[len(API_KEY_PREFIX):]) <= _HEX_DIGITS
