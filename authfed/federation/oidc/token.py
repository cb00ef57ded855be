"""Token endpoint exchange and ID token claim validation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx
import jwt
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.httpx_client import AsyncOAuth2Client

from authfed.core.logging import get_protocol_logger
from authfed.federation.errors import UpstreamError
from authfed.federation.oidc.metadata import DEFAULT_TIMEOUT, ServerMetadata

logger = logging.getLogger(__name__)

DEFAULT_ID_TOKEN_ALG = "RS256"
# Allowed clock skew in seconds for exp/iat checks
CLOCK_SKEW = 30


class TokenError(UpstreamError):
    """The token endpoint rejected the request or returned an unusable response."""


class IDTokenError(UpstreamError):
    """The ID token failed claim validation."""


@dataclass
class TokenResponse:
    """Token endpoint response."""

    access_token: str
    token_type: str
    id_token: str
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenResponse:
        """Create TokenResponse from a token endpoint response.

        Raises:
            TokenError: If ``access_token`` or ``id_token`` is missing.
        """
        if not data.get("access_token"):
            raise TokenError("Token response does not contain an access_token")
        if not data.get("id_token"):
            raise TokenError("Token response does not contain an id_token")
        return cls(
            access_token=data["access_token"],
            token_type=data.get("token_type", "Bearer"),
            id_token=data["id_token"],
            expires_in=data.get("expires_in"),
            refresh_token=data.get("refresh_token"),
            scope=data.get("scope"),
            raw_response=dict(data),
        )


async def exchange_code(
    metadata: ServerMetadata,
    client_id: str,
    client_secret: str | None,
    redirect_uri: str,
    code: str,
    code_verifier: str | None,
    transport: httpx.AsyncBaseTransport | None = None,
    verify: bool = True,
    timeout: float | None = None,
) -> TokenResponse:
    """Exchange an authorization code for tokens.

    The client authenticates with HTTP Basic when a secret is configured and
    as a public client otherwise.

    Args:
        metadata: Provider metadata supplying the token endpoint.
        client_id: OAuth client id.
        client_secret: OAuth client secret, or None for a public client.
        redirect_uri: Redirect URI used in the authentication request.
        code: Authorization code from the callback.
        code_verifier: PKCE verifier matching the request's challenge.
        transport: Inner httpx transport, for tests.
        verify: Whether to verify TLS certificates.
        timeout: Request timeout in seconds.

    Returns:
        Parsed TokenResponse.

    Raises:
        TokenError: If the exchange fails.
    """
    protocol_logger = get_protocol_logger()
    auth_method = "client_secret_basic" if client_secret else "none"

    async with AsyncOAuth2Client(
        client_id=client_id,
        client_secret=client_secret,
        token_endpoint_auth_method=auth_method,
        redirect_uri=redirect_uri,
        transport=protocol_logger.create_transport(transport, verify=verify),
        timeout=timeout or DEFAULT_TIMEOUT,
    ) as client:
        extra = {"code_verifier": code_verifier} if code_verifier else {}
        try:
            token = await client.fetch_token(
                metadata.token_endpoint,
                grant_type="authorization_code",
                code=code,
                **extra,
            )
        except AuthlibBaseError as e:
            raise TokenError(f"Token request failed: {e.error}: {e.description}") from e
        except httpx.HTTPError as e:
            raise TokenError(f"Token request failed: {e}") from e
        except ValueError as e:
            raise TokenError("Token endpoint returned an invalid response") from e

    logger.debug(f"Exchanged authorization code at {metadata.token_endpoint}")
    return TokenResponse.from_dict(dict(token))


def validate_id_token(
    id_token: str,
    metadata: ServerMetadata,
    client_id: str,
    expected_alg: str | None = None,
) -> dict[str, Any]:
    """Validate the claims of an ID token received from the token endpoint.

    The token came directly from the provider over TLS, so its signature is
    not re-verified; issuer, audience, expiry, issued-at, subject and the
    signing algorithm are.

    Args:
        id_token: Compact JWT.
        metadata: Provider metadata (issuer, supported algorithms).
        client_id: Expected audience.
        expected_alg: Configured ``id_token_signed_response_alg``.

    Returns:
        The ID token claims.

    Raises:
        IDTokenError: If a check fails.
    """
    try:
        header = jwt.get_unverified_header(id_token)
    except jwt.DecodeError as e:
        raise IDTokenError(f"Malformed ID token: {e}") from e

    alg = header.get("alg")
    if expected_alg is not None:
        allowed = [expected_alg]
    else:
        allowed = metadata.id_token_signing_alg_values_supported or [DEFAULT_ID_TOKEN_ALG]
    if alg == "none" or alg not in allowed:
        raise IDTokenError(f"Unexpected ID token signing algorithm: {alg}")

    try:
        claims = jwt.decode(
            id_token,
            options={
                "verify_signature": False,
                "verify_exp": True,
                "verify_iat": True,
                "verify_aud": True,
                "verify_iss": True,
                "require": ["iss", "sub", "aud", "exp", "iat"],
            },
            audience=client_id,
            issuer=metadata.issuer,
            leeway=CLOCK_SKEW,
        )
    except jwt.PyJWTError as e:
        raise IDTokenError(f"ID token validation failed: {e}") from e

    aud = claims["aud"]
    if isinstance(aud, list) and len(aud) > 1 and claims.get("azp") != client_id:
        raise IDTokenError("ID token 'azp' does not match client_id")
    if claims.get("nonce") is not None:
        raise IDTokenError("Unexpected 'nonce' claim in ID token")

    return claims
