"""Tests for the OIDC federation flow against a fake provider."""

import base64
from urllib.parse import parse_qs, urlsplit

import pytest
from authlib.oauth2.rfc7636 import create_s256_code_challenge

from authfed.core.logging import ProtocolLogger
from authfed.federation.errors import (
    ConfigurationError,
    DiscoveryError,
    FederationResponseError,
    InvalidAuthResponseError,
)
from authfed.federation.models import FederationConfig
from authfed.federation.oidc.federation import OidcFederation
from authfed.federation.oidc.metadata import ServerMetadata, ServerMetadataCache
from authfed.federation.oidc.token import IDTokenError, TokenError, validate_id_token
from authfed.federation.oidc.userinfo import UserInfoError

from conftest import (
    CLIENT_ID,
    CLIENT_SECRET,
    CODE_VERIFIER,
    ISSUER,
    REDIRECT_URI,
    STATE,
    FakeOidcProvider,
    make_id_token,
    oidc_config_dict,
)

CALLBACK_URL = f"{REDIRECT_URI}?code=auth-code-1&state={STATE}"


def _federation(provider: FakeOidcProvider, **client_overrides) -> OidcFederation:
    config = FederationConfig.from_dict(oidc_config_dict(**client_overrides))
    return OidcFederation(config, ServerMetadataCache(), transport=provider.transport)


def _form(request) -> dict[str, list[str]]:
    return parse_qs(request.content.decode())


class TestOidcFederationRequest:
    """Tests for building the authentication request."""

    def test_rejects_saml2_config(self, saml2_config):
        """Test an OIDC federation cannot be built from a SAML2 config."""
        with pytest.raises(ConfigurationError):
            OidcFederation(saml2_config, ServerMetadataCache())

    @pytest.mark.asyncio
    async def test_create_federation_request(self, provider: FakeOidcProvider):
        """Test the request targets the discovered endpoint with an S256 challenge."""
        federation = _federation(provider)

        url = await federation.create_federation_request(STATE, CODE_VERIFIER)

        parts = urlsplit(url)
        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == f"{ISSUER}/authorize"
        query = parse_qs(parts.query)
        assert query["client_id"] == [CLIENT_ID]
        assert query["redirect_uri"] == [REDIRECT_URI]
        assert query["scope"] == ["openid email"]
        assert query["state"] == [STATE]
        assert query["code_challenge"] == [create_s256_code_challenge(CODE_VERIFIER)]
        assert query["code_challenge_method"] == ["S256"]

    @pytest.mark.asyncio
    async def test_metadata_discovered_once(self, provider: FakeOidcProvider):
        """Test repeated requests reuse cached metadata."""
        federation = _federation(provider)

        await federation.create_federation_request(STATE, CODE_VERIFIER)
        await federation.create_federation_request("another-state", CODE_VERIFIER)

        assert provider.count("/.well-known/openid-configuration") == 1

    @pytest.mark.asyncio
    async def test_extract_authorization_code(self, provider: FakeOidcProvider):
        """Test the code is returned from a valid callback."""
        federation = _federation(provider)
        assert await federation.extract_authorization_code(CALLBACK_URL, STATE) == "auth-code-1"

    @pytest.mark.asyncio
    async def test_extract_rejects_state_mismatch(self, provider: FakeOidcProvider):
        """Test a callback for another login is rejected."""
        federation = _federation(provider)
        with pytest.raises(InvalidAuthResponseError):
            await federation.extract_authorization_code(CALLBACK_URL, "different-state")


class TestOidcFederationResponse:
    """Tests for process_federation_response."""

    @pytest.mark.asyncio
    async def test_successful_login(self, provider: FakeOidcProvider):
        """Test the full code exchange returns userinfo claims."""
        federation = _federation(provider)

        user_info = await federation.process_federation_response(CALLBACK_URL, STATE, CODE_VERIFIER)

        assert user_info.sub == "user-123"
        assert user_info.claims["email"] == "alice@example.com"
        assert user_info.to_user("test-oidc") == {
            "subject": "user-123@test-oidc",
            "email": "alice@example.com",
        }

    @pytest.mark.asyncio
    async def test_token_request_confidential_client(self, provider: FakeOidcProvider):
        """Test the token request uses Basic auth and carries the verifier."""
        federation = _federation(provider)

        await federation.process_federation_response(CALLBACK_URL, STATE, CODE_VERIFIER)

        request = provider.last("/token")
        expected = base64.b64encode(f"{CLIENT_ID}:{CLIENT_SECRET}".encode()).decode()
        assert request.headers["authorization"] == f"Basic {expected}"
        form = _form(request)
        assert form["grant_type"] == ["authorization_code"]
        assert form["code"] == ["auth-code-1"]
        assert form["code_verifier"] == [CODE_VERIFIER]
        assert form["redirect_uri"] == [REDIRECT_URI]
        assert "client_secret" not in form

    @pytest.mark.asyncio
    async def test_token_request_public_client(self, provider: FakeOidcProvider):
        """Test a client without secret sends client_id in the body."""
        federation = _federation(provider, client_secret=None)

        await federation.process_federation_response(CALLBACK_URL, STATE, CODE_VERIFIER)

        request = provider.last("/token")
        assert "authorization" not in request.headers
        assert _form(request)["client_id"] == [CLIENT_ID]

    @pytest.mark.asyncio
    async def test_userinfo_request_uses_bearer_token(self, provider: FakeOidcProvider):
        """Test userinfo is fetched with the access token."""
        federation = _federation(provider)

        await federation.process_federation_response(CALLBACK_URL, STATE, CODE_VERIFIER)

        assert provider.last("/userinfo").headers["authorization"] == "Bearer access-token-1"

    @pytest.mark.asyncio
    async def test_without_userinfo_endpoint(self):
        """Test ID token claims are used when the provider has no userinfo endpoint."""
        provider = FakeOidcProvider(userinfo_endpoint=None)
        provider.token_response["id_token"] = make_id_token(email="bob@example.com")
        federation = _federation(provider)

        user_info = await federation.process_federation_response(CALLBACK_URL, STATE, CODE_VERIFIER)

        assert user_info.claims["email"] == "bob@example.com"
        assert provider.count("/userinfo") == 0

    @pytest.mark.asyncio
    async def test_invalid_callback_is_wrapped(self, provider: FakeOidcProvider):
        """Test validation errors surface as FederationResponseError with a cause."""
        federation = _federation(provider)

        with pytest.raises(FederationResponseError) as exc_info:
            await federation.process_federation_response(
                f"{REDIRECT_URI}?error=access_denied&state={STATE}", STATE, CODE_VERIFIER
            )

        assert isinstance(exc_info.value.__cause__, InvalidAuthResponseError)
        assert exc_info.value.status_code == 400
        assert provider.count("/token") == 0

    @pytest.mark.asyncio
    async def test_plain_http_token_endpoint_refused(self):
        """Test the code and client secret are never sent to an http token endpoint."""
        provider = FakeOidcProvider(
            token_endpoint="http://idp.example.com/token",
            userinfo_endpoint="http://idp.example.com/userinfo",
        )
        federation = _federation(provider)

        with pytest.raises(FederationResponseError, match="must use https") as exc_info:
            await federation.process_federation_response(CALLBACK_URL, STATE, CODE_VERIFIER)

        assert isinstance(exc_info.value.__cause__, DiscoveryError)
        assert provider.count("/token") == 0
        assert provider.count("/userinfo") == 0

    @pytest.mark.asyncio
    async def test_plain_http_endpoints_allowed_in_dev(self):
        """Test development mode accepts http endpoints."""
        provider = FakeOidcProvider(token_endpoint="http://idp.example.com/token")
        config = FederationConfig.from_dict(oidc_config_dict())
        federation = OidcFederation(config, ServerMetadataCache(), is_dev=True, transport=provider.transport)

        user_info = await federation.process_federation_response(CALLBACK_URL, STATE, CODE_VERIFIER)

        assert user_info.sub == "user-123"
        assert provider.last("/token").url.scheme == "http"

    @pytest.mark.asyncio
    async def test_token_error(self, provider: FakeOidcProvider):
        """Test a token endpoint error is wrapped."""
        provider.token_status = 400
        provider.token_response = {"error": "invalid_grant", "error_description": "Code expired"}
        federation = _federation(provider)

        with pytest.raises(FederationResponseError, match="invalid_grant") as exc_info:
            await federation.process_federation_response(CALLBACK_URL, STATE, CODE_VERIFIER)

        assert isinstance(exc_info.value.__cause__, TokenError)

    @pytest.mark.asyncio
    async def test_token_response_without_id_token(self, provider: FakeOidcProvider):
        """Test a token response lacking id_token is rejected."""
        del provider.token_response["id_token"]
        federation = _federation(provider)

        with pytest.raises(FederationResponseError, match="id_token"):
            await federation.process_federation_response(CALLBACK_URL, STATE, CODE_VERIFIER)

    @pytest.mark.asyncio
    async def test_id_token_audience_mismatch(self, provider: FakeOidcProvider):
        """Test an ID token for another client is rejected."""
        provider.token_response["id_token"] = make_id_token(aud="other-client")
        federation = _federation(provider)

        with pytest.raises(FederationResponseError) as exc_info:
            await federation.process_federation_response(CALLBACK_URL, STATE, CODE_VERIFIER)

        assert isinstance(exc_info.value.__cause__, IDTokenError)
        assert provider.count("/userinfo") == 0

    @pytest.mark.asyncio
    async def test_configured_alg_enforced(self, provider: FakeOidcProvider):
        """Test id_token_signed_response_alg overrides the advertised algorithms."""
        federation = _federation(provider, id_token_signed_response_alg="RS256")

        with pytest.raises(FederationResponseError, match="signing algorithm"):
            await federation.process_federation_response(CALLBACK_URL, STATE, CODE_VERIFIER)

    @pytest.mark.asyncio
    async def test_userinfo_subject_mismatch(self, provider: FakeOidcProvider):
        """Test userinfo for another subject is rejected."""
        provider.userinfo = {"sub": "someone-else"}
        federation = _federation(provider)

        with pytest.raises(FederationResponseError) as exc_info:
            await federation.process_federation_response(CALLBACK_URL, STATE, CODE_VERIFIER)

        assert isinstance(exc_info.value.__cause__, UserInfoError)

    @pytest.mark.asyncio
    async def test_callback_exchanges_are_logged(self, provider: FakeOidcProvider, monkeypatch):
        """Test discovery, token and userinfo requests land in one callback flow."""
        logger = ProtocolLogger()
        monkeypatch.setattr("authfed.core.logging._global_logger", logger)
        logged = []
        original_end_flow = logger.end_flow

        def end_flow():
            log = original_end_flow()
            logged.append(log)
            return log

        monkeypatch.setattr(logger, "end_flow", end_flow)
        federation = _federation(provider)

        await federation.process_federation_response(CALLBACK_URL, STATE, CODE_VERIFIER)

        assert len(logged) == 1
        assert logged[0].flow_type == "oidc_callback"
        paths = [exchange.url.split(ISSUER, 1)[1] for exchange in logged[0].exchanges]
        assert paths == ["/.well-known/openid-configuration", "/token", "/userinfo"]


class TestValidateIdToken:
    """Tests for ID token claim validation."""

    @pytest.fixture
    def metadata(self, provider: FakeOidcProvider) -> ServerMetadata:
        return ServerMetadata.from_dict(provider.discovery)

    def test_valid(self, metadata):
        """Test a valid token returns its claims."""
        claims = validate_id_token(make_id_token(), metadata, CLIENT_ID)
        assert claims["sub"] == "user-123"

    def test_expired(self, metadata):
        """Test an expired token is rejected."""
        token = make_id_token(exp=1000, iat=900)
        with pytest.raises(IDTokenError, match="expired"):
            validate_id_token(token, metadata, CLIENT_ID)

    def test_wrong_issuer(self, metadata):
        """Test a token from another issuer is rejected."""
        with pytest.raises(IDTokenError):
            validate_id_token(make_id_token(iss="https://evil.example.com"), metadata, CLIENT_ID)

    def test_missing_subject(self, metadata):
        """Test a token without sub is rejected."""
        with pytest.raises(IDTokenError, match="sub"):
            validate_id_token(make_id_token(sub=None), metadata, CLIENT_ID)

    def test_multiple_audiences_require_azp(self, metadata):
        """Test azp must name the client when several audiences are present."""
        token = make_id_token(aud=[CLIENT_ID, "other"])
        with pytest.raises(IDTokenError, match="azp"):
            validate_id_token(token, metadata, CLIENT_ID)

        token = make_id_token(aud=[CLIENT_ID, "other"], azp=CLIENT_ID)
        assert validate_id_token(token, metadata, CLIENT_ID)["azp"] == CLIENT_ID

    def test_unsigned_token_rejected(self, metadata):
        """Test alg none is never accepted."""
        token = make_id_token(algorithm="none")
        with pytest.raises(IDTokenError, match="signing algorithm"):
            validate_id_token(token, metadata, CLIENT_ID, expected_alg="none")

    def test_nonce_rejected(self, metadata):
        """Test a nonce claim is rejected since none was sent."""
        with pytest.raises(IDTokenError, match="nonce"):
            validate_id_token(make_id_token(nonce="n-1"), metadata, CLIENT_ID)

    def test_malformed(self, metadata):
        """Test garbage input is rejected."""
        with pytest.raises(IDTokenError, match="Malformed"):
            validate_id_token("not-a-jwt", metadata, CLIENT_ID)
