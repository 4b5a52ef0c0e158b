"""Cryptographic helpers — secrets and HMAC signatures."""

from __future__ import annotations

import hashlib
import hmac
import secrets
import string

_SECRET_ALPHABET = string.ascii_letters + string.digits


def random_secret(length: int = 32) -> str:
    """Alphanumeric secret drawn from the OS CSPRNG."""
    return "".join(secrets.choice(_SECRET_ALPHABET) for _ in range(length))


def hmac_sha256_hex(key: str, data: bytes) -> str:
    """Hex HMAC-SHA256 of *data* keyed with the UTF-8 bytes of *key*."""
    return hmac.new(key.encode("utf-8"), data, hashlib.sha256).hexdigest()


def constant_time_equals(a: str, b: str) -> bool:
    """Compare two strings without leaking timing information."""
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
