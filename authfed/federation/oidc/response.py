"""OIDC authorization response validation."""

from __future__ import annotations

import hmac
from collections.abc import Awaitable, Callable

import httpx

from authfed.federation.errors import InvalidAuthResponseError
from authfed.federation.oidc.metadata import ServerMetadata

# Parameters that only appear in implicit/hybrid or JARM responses
_FORBIDDEN_PARAMS = ("id_token", "access_token", "token")


def validate_auth_response(
    metadata: ServerMetadata,
    client_id: str,
    params: httpx.QueryParams,
    expected_state: str | None,
) -> dict[str, str]:
    """Validate authorization response parameters.

    Args:
        metadata: Provider metadata (issuer, iss-parameter support).
        client_id: Client the request was made for.
        params: Query parameters of the callback.
        expected_state: State sent with the request, or None if none was sent.

    Returns:
        The validated parameters as a dict (always containing ``code``).

    Raises:
        InvalidAuthResponseError: If the response is an error or fails validation.
    """
    if "response" in params:
        raise InvalidAuthResponseError("JARM responses are not supported")

    if "error" in params:
        description = params.get("error_description")
        message = f"Authorization server returned error: {params['error']}"
        if description:
            message += f" ({description})"
        raise InvalidAuthResponseError(message)

    for name in _FORBIDDEN_PARAMS:
        if name in params:
            raise InvalidAuthResponseError(f"Unexpected '{name}' parameter in authorization response")

    echoed_client_id = params.get("client_id")
    if echoed_client_id is not None and echoed_client_id != client_id:
        raise InvalidAuthResponseError(f"Unexpected 'client_id' parameter value: {echoed_client_id}")

    iss = params.get("iss")
    if iss is not None:
        if iss != metadata.issuer:
            raise InvalidAuthResponseError(f"Unexpected 'iss' parameter value: {iss}")
    elif metadata.authorization_response_iss_parameter_supported:
        raise InvalidAuthResponseError("Response parameter 'iss' missing")

    state = params.get("state")
    if expected_state is None:
        if state is not None:
            raise InvalidAuthResponseError("Unexpected 'state' parameter")
    elif state is None:
        raise InvalidAuthResponseError("Response parameter 'state' missing")
    elif not hmac.compare_digest(state.encode(), expected_state.encode()):
        raise InvalidAuthResponseError("Unexpected 'state' parameter value")

    if not params.get("code"):
        raise InvalidAuthResponseError("Response parameter 'code' missing")

    return {k: params[k] for k in params.keys()}


class AuthorizationCodeExtractor:
    """Extracts the authorization code from a callback URL.

    Provider metadata is resolved through ``metadata`` so the extractor shares
    the federation's cache. A ``client_id`` echoed by the provider must be
    the federation's own.
    """

    def __init__(
        self,
        metadata: Callable[[], Awaitable[ServerMetadata]],
        client_id: str,
    ) -> None:
        self._metadata = metadata
        self._client_id = client_id

    async def extract(self, response_url: str, expected_state: str | None = None) -> dict[str, str]:
        """Validate the callback URL and return its parameters.

        Raises:
            InvalidAuthResponseError: If validation fails.
        """
        metadata = await self._metadata()
        params = httpx.URL(response_url).params
        return validate_auth_response(metadata, self._client_id, params, expected_state)
