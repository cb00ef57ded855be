"""UserInfo endpoint access."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from authfed.core.logging import AsyncLoggingClient
from authfed.federation.errors import UpstreamError
from authfed.federation.oidc.metadata import DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)


class UserInfoError(UpstreamError):
    """The userinfo endpoint failed or returned claims for another subject."""


async def fetch_userinfo(
    userinfo_endpoint: str,
    access_token: str,
    expected_subject: str,
    transport: httpx.AsyncBaseTransport | None = None,
    verify: bool = True,
    timeout: float | None = None,
) -> dict[str, Any]:
    """Fetch user claims with an access token.

    Args:
        userinfo_endpoint: Provider userinfo endpoint.
        access_token: Bearer token from the token response.
        expected_subject: ``sub`` of the validated ID token.
        transport: Inner httpx transport, for tests.
        verify: Whether to verify TLS certificates.
        timeout: Request timeout in seconds.

    Returns:
        The userinfo claims.

    Raises:
        UserInfoError: If the request fails or ``sub`` does not match.
    """
    try:
        async with AsyncLoggingClient(
            transport=transport,
            verify=verify,
            timeout=timeout or DEFAULT_TIMEOUT,
        ) as client:
            response = await client.get(
                userinfo_endpoint,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
            )
    except httpx.RequestError as e:
        raise UserInfoError(f"UserInfo request failed: {e}") from e

    if response.status_code != 200:
        raise UserInfoError(f"UserInfo endpoint returned HTTP {response.status_code}")

    content_type = response.headers.get("content-type", "")
    if not content_type.startswith("application/json"):
        raise UserInfoError(f"Unsupported UserInfo response content type: {content_type or 'none'}")

    try:
        claims = response.json()
    except ValueError as e:
        raise UserInfoError("UserInfo response is not valid JSON") from e
    if not isinstance(claims, dict):
        raise UserInfoError("UserInfo response is not a JSON object")

    if claims.get("sub") != expected_subject:
        raise UserInfoError("UserInfo 'sub' does not match the ID token subject")

    logger.debug(f"Fetched userinfo for subject {expected_subject}")
    return claims
