from __future__ import annotations

import hashlib
import secrets

_PASSWORD_ALGO = "pbkdf2_sha256"
_PASSWORD_ITERATIONS = 310000
_PLACEHOLDER_ENTROPY_BYTES = 32


def hash_password(password: str) -> str:
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, _PASSWORD_ITERATIONS)
    return (
        f"{_PASSWORD_ALGO}${_PASSWORD_ITERATIONS}$"
        f"{salt.hex()}$"
        f"{digest.hex()}"
    )


def generate_placeholder_credential() -> str:
    """Hash of a random secret nobody knows; the owner must reset it."""
    return hash_password(secrets.token_urlsafe(_PLACEHOLDER_ENTROPY_BYTES))
