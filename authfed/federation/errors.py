"""Federation error taxonomy.

Every failure raised by the federation subsystem derives from
:class:`FederationError` and carries an OAuth-style ``error`` code plus the
HTTP status the web layer answers with.
"""

from __future__ import annotations


class FederationError(Exception):
    """Base exception for federation failures."""

    error = "server_error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        """Convert to an error response body."""
        return {"error": self.error, "error_description": self.message}


class ConfigurationError(FederationError):
    """A federation config is malformed or uses an unsupported protocol."""

    error = "server_error"
    status_code = 500


class FederationNotFoundError(FederationError):
    """No federation is registered under the requested id."""

    error = "not_found"
    status_code = 404

    def __init__(self, federation_id: str) -> None:
        super().__init__(f"Federation with ID '{federation_id}' not found")
        self.federation_id = federation_id


class FederationValidationError(FederationError):
    """The end-user request or callback is invalid (missing or mismatched data)."""

    error = "invalid_request"
    status_code = 400


class InvalidAuthResponseError(FederationValidationError):
    """The authorization response failed validation."""


class UpstreamError(FederationError):
    """The identity provider failed or returned something unusable."""

    error = "temporarily_unavailable"
    status_code = 502


class DiscoveryError(UpstreamError):
    """Provider metadata could not be discovered or is invalid."""


class FederationResponseError(UpstreamError):
    """Processing an OIDC federation response failed.

    The original failure is chained as ``__cause__``.
    """

    error = "invalid_request"
    status_code = 400


class Saml2ResponseError(UpstreamError):
    """Processing a SAML2 response failed."""

    error = "invalid_request"
    status_code = 400


class FederationInternalError(FederationError):
    """An unexpected failure inside the federation subsystem."""
