"""Opaque bearer tokens for tickets and transfers.

Raw tokens are handed to the caller exactly once; only the SHA-256 digest is
persisted and compared.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

TOKEN_BYTES = 32


def generate_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def hash_token(raw_token: str) -> str:
    return hashlib.sha256((raw_token or "").encode("utf-8")).hexdigest()


def token_matches(raw_token: str, digest: str) -> bool:
    if not raw_token or not digest:
        return False
    return hmac.compare_digest(hash_token(raw_token), digest)


def issue_token() -> tuple[str, str]:
    """Return `(raw_token, digest)` for a freshly generated token."""

    raw_token = generate_token()
    return raw_token, hash_token(raw_token)
