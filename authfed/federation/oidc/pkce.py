"""State and PKCE parameter generation."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from authlib.common.security import generate_token
from authlib.oauth2.rfc7636 import create_s256_code_challenge

# RFC 7636 allows 43-128 characters; 64 alphanumerics carry ~380 bits
CODE_VERIFIER_LENGTH = 64
STATE_LENGTH = 32

PKCE_METHOD_S256 = "S256"
PKCE_METHOD_PLAIN = "plain"


def generate_random_state() -> str:
    """Generate a random ``state`` value for an authentication request."""
    return generate_token(STATE_LENGTH)


def generate_random_code_verifier() -> str:
    """Generate a random PKCE code verifier."""
    return generate_token(CODE_VERIFIER_LENGTH)


def calculate_code_challenge(verifier: str, method: str | None) -> tuple[str, str]:
    """Calculate the PKCE code challenge for a verifier.

    Args:
        verifier: The PKCE code verifier.
        method: Requested challenge method. Only ``"S256"`` applies the
            SHA-256 transform; anything else falls back to ``plain``.

    Returns:
        Tuple of (code_challenge, code_challenge_method).
    """
    if method == PKCE_METHOD_S256:
        return create_s256_code_challenge(verifier), PKCE_METHOD_S256
    return verifier, PKCE_METHOD_PLAIN


@dataclass(frozen=True)
class SecurityParameterGenerator:
    """Source of the per-login random values.

    Handlers take an instance so tests can supply deterministic values.
    """

    state: Callable[[], str] = generate_random_state
    code_verifier: Callable[[], str] = generate_random_code_verifier
