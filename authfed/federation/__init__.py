"""Federation subsystem: OIDC and SAML2 identity-provider delegation."""

from authfed.federation.errors import (
    ConfigurationError,
    DiscoveryError,
    FederationError,
    FederationInternalError,
    FederationNotFoundError,
    FederationResponseError,
    FederationValidationError,
    InvalidAuthResponseError,
    Saml2ResponseError,
    UpstreamError,
)
from authfed.federation.models import (
    FederationCallbackParams,
    FederationConfig,
    FederationRegistry,
    FederationType,
    Saml2UserInfo,
    UserInfo,
    compose_subject,
)

__all__ = [
    "ConfigurationError",
    "DiscoveryError",
    "FederationCallbackParams",
    "FederationConfig",
    "FederationError",
    "FederationInternalError",
    "FederationNotFoundError",
    "FederationRegistry",
    "FederationResponseError",
    "FederationType",
    "FederationValidationError",
    "InvalidAuthResponseError",
    "Saml2ResponseError",
    "Saml2UserInfo",
    "UpstreamError",
    "UserInfo",
    "compose_subject",
]
