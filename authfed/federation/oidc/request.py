"""OIDC authentication request construction."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx

from authfed.federation.oidc.pkce import calculate_code_challenge

T = TypeVar("T")

Resolver = Callable[[], T | Awaitable[T]]


async def resolve(resolver: Resolver[T]) -> T:
    """Call a resolver that may be sync or async."""
    result = resolver()
    if inspect.isawaitable(result):
        return await result
    return result


class AuthenticationRequestBuilder:
    """Builds the URL the end user is redirected to at the OIDC provider.

    Every input is a resolver so the authorization endpoint can come from
    lazily discovered provider metadata while the rest comes from config.
    """

    def __init__(
        self,
        authorization_endpoint: Resolver[str],
        scopes: Resolver[list[str]],
        client_id: Resolver[str],
        redirect_uri: Resolver[str],
    ) -> None:
        self._authorization_endpoint = authorization_endpoint
        self._scopes = scopes
        self._client_id = client_id
        self._redirect_uri = redirect_uri

    async def build(
        self,
        state: str,
        verifier: str | None = None,
        method: str | None = None,
    ) -> str:
        """Build the authentication request URL.

        Args:
            state: Opaque value the callback must echo back.
            verifier: PKCE code verifier. No challenge is sent if omitted.
            method: PKCE challenge method; ``"S256"`` or anything else for plain.

        Returns:
            The authorization endpoint URL with the request parameters.
        """
        endpoint = await resolve(self._authorization_endpoint)
        scopes = await resolve(self._scopes)

        params: dict[str, Any] = {
            "response_type": "code",
            "scope": " ".join(scopes) if scopes else None,
            "client_id": await resolve(self._client_id),
            "redirect_uri": await resolve(self._redirect_uri),
            "state": state,
        }
        if verifier is not None:
            challenge, challenge_method = calculate_code_challenge(verifier, method)
            params["code_challenge"] = challenge
            params["code_challenge_method"] = challenge_method

        params = {k: v for k, v in params.items() if v is not None}
        return str(httpx.URL(endpoint).copy_merge_params(params))
