"""Proof Key for Code Exchange (RFC 7636) verification."""
from __future__ import annotations

import secrets

from authlib.oauth2.rfc7636 import create_s256_code_challenge

SUPPORTED_METHODS = ('S256', 'plain')


def create_s256_challenge(verifier: str) -> str:
    return create_s256_code_challenge(verifier)


def create_verifier() -> str:
    return secrets.token_urlsafe(48)


def verify(method: str | None, challenge: str | None, verifier: str | None) -> bool:
    """Check ``verifier`` against the stored ``challenge``.

    Unknown methods and missing values are rejected rather than skipped.
    """
    if not challenge or not verifier:
        return False
    if method == 'S256':
        computed = create_s256_code_challenge(verifier)
    elif method == 'plain':
        computed = verifier
    else:
        return False
    return secrets.compare_digest(computed.encode(), challenge.encode())
