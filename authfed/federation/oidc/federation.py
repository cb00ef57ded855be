"""OIDC federation: authorization code flow with PKCE."""

from __future__ import annotations

import logging
import uuid
from enum import StrEnum

import httpx

from authfed.core.logging import get_protocol_logger
from authfed.federation.config import from_federation_config
from authfed.federation.errors import FederationError, FederationResponseError
from authfed.federation.models import FederationConfig, FederationType, UserInfo
from authfed.federation.oidc.metadata import ServerMetadata, ServerMetadataCache, ServerMetadataProvider
from authfed.federation.oidc.pkce import PKCE_METHOD_S256
from authfed.federation.oidc.request import AuthenticationRequestBuilder
from authfed.federation.oidc.response import AuthorizationCodeExtractor
from authfed.federation.oidc.token import exchange_code, validate_id_token
from authfed.federation.oidc.userinfo import fetch_userinfo

logger = logging.getLogger(__name__)


class OidcFlowStatus(StrEnum):
    """Lifecycle of one OIDC federated login."""

    INITIATED = "initiated"
    AWAITING_CALLBACK = "awaiting_callback"
    COMPLETED = "completed"
    FAILED = "failed"


class OidcFederation:
    """Federation with an OpenID Connect provider.

    Stateless between calls: the per-login state and code verifier travel
    through the caller's session, and provider metadata lives in the shared
    :class:`ServerMetadataCache`.
    """

    type = FederationType.OIDC

    def __init__(
        self,
        config: FederationConfig,
        cache: ServerMetadataCache,
        is_dev: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the federation.

        Args:
            config: OIDC federation config.
            cache: Shared metadata cache.
            is_dev: Allow insecure transport to the provider.
            transport: Inner httpx transport, for tests.
            timeout: Default timeout in seconds for provider requests.

        Raises:
            ConfigurationError: If ``config`` is not an OIDC federation.
        """
        lookup = from_federation_config(config)
        self._config = config
        self._id: str = lookup(("id",))
        self._issuer: str = lookup(("server", "issuer"))
        self._client_id: str = lookup(("client", "client_id"))
        self._client_secret: str | None = lookup(("client", "client_secret"))
        self._redirect_uri: str = lookup(("client", "redirect_uri"))
        self._scopes: list[str] = lookup(("client", "scopes"))
        self._id_token_signed_response_alg: str | None = lookup(("client", "id_token_signed_response_alg"))
        self._cache = cache
        self._is_dev = is_dev
        self._transport = transport
        self._timeout = timeout

        self._metadata_provider = ServerMetadataProvider(
            issuer=self._issuer,
            cached=lambda: cache.get(self._id),
            setter=lambda metadata: cache.set(self._id, metadata),
            allow_insecure=is_dev,
            transport=transport,
        )
        self._request_builder = AuthenticationRequestBuilder(
            authorization_endpoint=self._authorization_endpoint,
            scopes=lambda: self._scopes,
            client_id=lambda: self._client_id,
            redirect_uri=lambda: self._redirect_uri,
        )
        self._code_extractor = AuthorizationCodeExtractor(self.get_server_metadata, self._client_id)

    @property
    def id(self) -> str:
        """Federation id."""
        return self._id

    @property
    def config(self) -> FederationConfig:
        """Federation config."""
        return self._config

    @property
    def issuer(self) -> str:
        """Configured issuer identifier."""
        return self._issuer

    @property
    def client_id(self) -> str:
        """OAuth client id."""
        return self._client_id

    @property
    def redirect_uri(self) -> str:
        """Redirect URI registered with the provider."""
        return self._redirect_uri

    async def get_server_metadata(self, timeout: float | None = None) -> ServerMetadata:
        """Return provider metadata, discovering it once on first use."""
        return await self._cache.get_or_fetch(
            self._id,
            lambda: self._metadata_provider.get(timeout=timeout or self._timeout),
        )

    async def _authorization_endpoint(self) -> str:
        metadata = await self.get_server_metadata()
        return metadata.lookup("authorization_endpoint")

    async def create_federation_request(self, state: str, code_verifier: str | None = None) -> str:
        """Build the authentication request URL for a new login.

        Args:
            state: Random state bound to the user's session.
            code_verifier: PKCE verifier; the S256 challenge is sent when given.

        Returns:
            URL to redirect the user agent to.
        """
        method = PKCE_METHOD_S256 if code_verifier else None
        url = await self._request_builder.build(state, code_verifier, method)
        logger.info(f"Created authentication request for federation '{self._id}'")
        return url

    async def extract_authorization_code(
        self,
        response_url: str,
        expected_state: str | None = None,
    ) -> str:
        """Validate the callback URL and return the authorization code.

        Raises:
            InvalidAuthResponseError: If the callback fails validation.
        """
        params = await self._code_extractor.extract(response_url, expected_state)
        return params["code"]

    async def process_federation_response(
        self,
        response_url: str,
        expected_state: str | None,
        code_verifier: str | None,
        timeout: float | None = None,
    ) -> UserInfo:
        """Complete a login from the provider's callback.

        Args:
            response_url: Full callback URL including its query.
            expected_state: State stored at initiation.
            code_verifier: PKCE verifier stored at initiation.
            timeout: Timeout in seconds for each provider request.

        Returns:
            The end user's claims.

        Raises:
            FederationResponseError: If any step fails; the cause is chained.
        """
        timeout = timeout or self._timeout
        protocol_logger = get_protocol_logger()
        protocol_logger.start_flow(f"oidc_callback_{uuid.uuid4().hex[:8]}", "oidc_callback")
        status = OidcFlowStatus.AWAITING_CALLBACK
        try:
            metadata = await self.get_server_metadata(timeout)
            code = await self.extract_authorization_code(response_url, expected_state)
            tokens = await exchange_code(
                metadata,
                client_id=self._client_id,
                client_secret=self._client_secret,
                redirect_uri=self._redirect_uri,
                code=code,
                code_verifier=code_verifier,
                transport=self._transport,
                verify=not self._is_dev,
                timeout=timeout,
            )
            id_claims = validate_id_token(
                tokens.id_token,
                metadata,
                client_id=self._client_id,
                expected_alg=self._id_token_signed_response_alg,
            )
            if metadata.userinfo_endpoint:
                claims = await fetch_userinfo(
                    metadata.userinfo_endpoint,
                    tokens.access_token,
                    expected_subject=id_claims["sub"],
                    transport=self._transport,
                    verify=not self._is_dev,
                    timeout=timeout,
                )
            else:
                claims = id_claims
            status = OidcFlowStatus.COMPLETED
        except (FederationError, httpx.HTTPError) as e:
            status = OidcFlowStatus.FAILED
            raise FederationResponseError(f"Failed to process federation response: {e}") from e
        finally:
            protocol_logger.end_flow()
            logger.info(f"OIDC federation '{self._id}' callback {status}")

        return UserInfo(sub=claims["sub"], claims=claims)
