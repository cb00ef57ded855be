"""OIDC federation: authorization code flow with PKCE."""

from authfed.federation.oidc.federation import OidcFederation, OidcFlowStatus
from authfed.federation.oidc.metadata import (
    ServerMetadata,
    ServerMetadataCache,
    ServerMetadataProvider,
    discover,
)
from authfed.federation.oidc.pkce import (
    SecurityParameterGenerator,
    calculate_code_challenge,
    generate_random_code_verifier,
    generate_random_state,
)
from authfed.federation.oidc.request import AuthenticationRequestBuilder
from authfed.federation.oidc.response import AuthorizationCodeExtractor, validate_auth_response
from authfed.federation.oidc.token import TokenResponse, exchange_code, validate_id_token
from authfed.federation.oidc.userinfo import fetch_userinfo

__all__ = [
    "AuthenticationRequestBuilder",
    "AuthorizationCodeExtractor",
    "OidcFederation",
    "OidcFlowStatus",
    "SecurityParameterGenerator",
    "ServerMetadata",
    "ServerMetadataCache",
    "ServerMetadataProvider",
    "TokenResponse",
    "calculate_code_challenge",
    "discover",
    "exchange_code",
    "fetch_userinfo",
    "generate_random_code_verifier",
    "generate_random_state",
    "validate_auth_response",
    "validate_id_token",
]
