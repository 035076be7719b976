"""
Token Generator: Unguessable Download Tokens

Tokens are 24 random bytes from the OS CSPRNG, base64url-encoded without
padding so they can sit directly in a URL path segment. Uniqueness is
probabilistic; the store rejects a collision rather than checking up front.
"""

from __future__ import annotations

import base64
import secrets

from ..errors import TokenGenerationError

TOKEN_BYTES = 24


def generate_token(nbytes: int = TOKEN_BYTES) -> str:
    """
    Generate a URL-safe opaque token.

    Args:
        nbytes: Number of random bytes (at least 24)

    Returns:
        Padding-free base64url string

    Raises:
        TokenGenerationError: If the entropy source is unavailable
    """
    nbytes = max(nbytes, TOKEN_BYTES)
    try:
        raw = secrets.token_bytes(nbytes)
    except (OSError, NotImplementedError) as e:
        raise TokenGenerationError(f"entropy source unavailable: {e}") from e
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")
