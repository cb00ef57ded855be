"""Federation data model.

Configuration records for each federated identity provider, the registry
that holds them, the session-scoped callback parameters and the user
information a completed federation yields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from authfed.federation.errors import ConfigurationError

SAML2_BINDING_POST = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST"
SAML2_BINDING_REDIRECT = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect"
SAML2_NAMEID_UNSPECIFIED = "urn:oasis:names:tc:SAML:1.1:nameid-format:unspecified"

_BINDING_ALIASES = {
    "post": SAML2_BINDING_POST,
    "redirect": SAML2_BINDING_REDIRECT,
    SAML2_BINDING_POST: SAML2_BINDING_POST,
    SAML2_BINDING_REDIRECT: SAML2_BINDING_REDIRECT,
}


class FederationType(StrEnum):
    """Federation protocols."""

    OIDC = "oidc"
    SAML2 = "saml2"


def _require(data: dict[str, Any], key: str, section: str) -> Any:
    value = data.get(key)
    if value is None or value == "":
        raise ConfigurationError(f"'{section}.{key}' is required")
    return value


def _binding(value: str | None, default: str) -> str:
    if value is None:
        return default
    try:
        return _BINDING_ALIASES[value]
    except KeyError:
        raise ConfigurationError(f"Unsupported SAML2 binding: {value}") from None


@dataclass(frozen=True)
class OidcClientConfig:
    """Relying-party registration at an OIDC provider."""

    client_id: str
    redirect_uri: str
    client_secret: str | None = None
    id_token_signed_response_alg: str | None = None
    scopes: list[str] = field(default_factory=lambda: ["openid"])

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OidcClientConfig:
        """Create OidcClientConfig from a dictionary."""
        scopes = data.get("scopes", ["openid"])
        if isinstance(scopes, str):
            scopes = scopes.split()
        return cls(
            client_id=_require(data, "client_id", "client"),
            redirect_uri=_require(data, "redirect_uri", "client"),
            client_secret=data.get("client_secret") or None,
            id_token_signed_response_alg=data.get("id_token_signed_response_alg"),
            scopes=list(scopes),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "id_token_signed_response_alg": self.id_token_signed_response_alg,
            "scopes": list(self.scopes),
        }


@dataclass(frozen=True)
class OidcServerConfig:
    """OIDC provider identification."""

    name: str
    issuer: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OidcServerConfig:
        """Create OidcServerConfig from a dictionary."""
        return cls(
            name=data.get("name", ""),
            issuer=_require(data, "issuer", "server"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"name": self.name, "issuer": self.issuer}


@dataclass(frozen=True)
class Saml2ClientConfig:
    """Service provider settings for a SAML2 federation."""

    entity_id: str
    acs_url: str
    acs_binding: str = SAML2_BINDING_POST
    x509cert: str = ""
    private_key: str = ""
    authn_requests_signed: bool = False
    want_assertions_signed: bool = True
    want_messages_signed: bool = False
    name_id_format: str = SAML2_NAMEID_UNSPECIFIED
    relay_state: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Saml2ClientConfig:
        """Create Saml2ClientConfig from a dictionary."""
        return cls(
            entity_id=_require(data, "entity_id", "client"),
            acs_url=_require(data, "acs_url", "client"),
            acs_binding=_binding(data.get("acs_binding"), SAML2_BINDING_POST),
            x509cert=data.get("x509cert", ""),
            private_key=data.get("private_key", ""),
            authn_requests_signed=data.get("authn_requests_signed", False),
            want_assertions_signed=data.get("want_assertions_signed", True),
            want_messages_signed=data.get("want_messages_signed", False),
            name_id_format=data.get("name_id_format", SAML2_NAMEID_UNSPECIFIED),
            relay_state=data.get("relay_state"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "entity_id": self.entity_id,
            "acs_url": self.acs_url,
            "acs_binding": self.acs_binding,
            "x509cert": self.x509cert,
            "private_key": self.private_key,
            "authn_requests_signed": self.authn_requests_signed,
            "want_assertions_signed": self.want_assertions_signed,
            "want_messages_signed": self.want_messages_signed,
            "name_id_format": self.name_id_format,
            "relay_state": self.relay_state,
        }


@dataclass(frozen=True)
class Saml2ServerConfig:
    """Identity provider settings for a SAML2 federation.

    The provider is described by inline ``metadata`` XML, a ``metadata_url``
    fetched on first use, or the explicit ``entity_id``/``sso_url`` pair.
    """

    name: str = ""
    entity_id: str | None = None
    sso_url: str | None = None
    sso_binding: str = SAML2_BINDING_REDIRECT
    x509cert: str = ""
    metadata: str | None = None
    metadata_url: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Saml2ServerConfig:
        """Create Saml2ServerConfig from a dictionary."""
        config = cls(
            name=data.get("name", ""),
            entity_id=data.get("entity_id"),
            sso_url=data.get("sso_url"),
            sso_binding=_binding(data.get("sso_binding"), SAML2_BINDING_REDIRECT),
            x509cert=data.get("x509cert", ""),
            metadata=data.get("metadata"),
            metadata_url=data.get("metadata_url"),
        )
        if not (config.metadata or config.metadata_url or (config.entity_id and config.sso_url)):
            raise ConfigurationError(
                "SAML2 server requires 'metadata', 'metadata_url', or both 'entity_id' and 'sso_url'"
            )
        return config

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "entity_id": self.entity_id,
            "sso_url": self.sso_url,
            "sso_binding": self.sso_binding,
            "x509cert": self.x509cert,
            "metadata": self.metadata,
            "metadata_url": self.metadata_url,
        }


@dataclass(frozen=True)
class FederationConfig:
    """One federated identity provider."""

    id: str
    protocol: str
    client: OidcClientConfig | Saml2ClientConfig
    server: OidcServerConfig | Saml2ServerConfig

    @property
    def name(self) -> str:
        """Display name of the provider, falling back to the id."""
        return self.server.name or self.id

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FederationConfig:
        """Create FederationConfig from a dictionary.

        Raises:
            ConfigurationError: If the protocol is unsupported or a section is invalid.
        """
        federation_id = _require(data, "id", "federation")
        protocol = data.get("protocol")
        client_data = data.get("client") or {}
        server_data = data.get("server") or {}
        try:
            if protocol == FederationType.OIDC:
                return cls(
                    id=federation_id,
                    protocol=FederationType.OIDC,
                    client=OidcClientConfig.from_dict(client_data),
                    server=OidcServerConfig.from_dict(server_data),
                )
            if protocol == FederationType.SAML2:
                return cls(
                    id=federation_id,
                    protocol=FederationType.SAML2,
                    client=Saml2ClientConfig.from_dict(client_data),
                    server=Saml2ServerConfig.from_dict(server_data),
                )
        except ConfigurationError as e:
            raise ConfigurationError(f"Federation '{federation_id}': {e.message}") from e
        raise ConfigurationError(f"Federation '{federation_id}': unsupported protocol '{protocol}'")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "protocol": str(self.protocol),
            "client": self.client.to_dict(),
            "server": self.server.to_dict(),
        }


@dataclass(frozen=True)
class FederationRegistry:
    """The ordered list of configured federations."""

    federations: list[FederationConfig] = field(default_factory=list)

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for federation in self.federations:
            if federation.id in seen:
                raise ConfigurationError(f"Duplicate federation id '{federation.id}'")
            seen.add(federation.id)

    @classmethod
    def from_list(cls, data: list[dict[str, Any]]) -> FederationRegistry:
        """Create FederationRegistry from a list of federation dictionaries."""
        return cls(federations=[FederationConfig.from_dict(item) for item in data])

    def to_list(self) -> list[dict[str, Any]]:
        """Convert to a list for serialization."""
        return [federation.to_dict() for federation in self.federations]


@dataclass
class FederationCallbackParams:
    """Per-login parameters kept in the session between initiation and callback."""

    federation_id: str
    protocol: str
    state: str | None = None
    code_verifier: str | None = None
    request_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FederationCallbackParams:
        """Create FederationCallbackParams from session data."""
        return cls(
            federation_id=data["federation_id"],
            protocol=data["protocol"],
            state=data.get("state"),
            code_verifier=data.get("code_verifier"),
            request_id=data.get("request_id"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to session data."""
        return {
            "federation_id": self.federation_id,
            "protocol": self.protocol,
            "state": self.state,
            "code_verifier": self.code_verifier,
            "request_id": self.request_id,
        }


@dataclass
class UserInfo:
    """Claims about the end user returned by an OIDC provider."""

    sub: str
    claims: dict[str, Any] = field(default_factory=dict)

    def to_user(self, federation_id: str) -> dict[str, Any]:
        """Build the local user record for this federation."""
        user = {k: v for k, v in self.claims.items() if k != "sub"}
        user["subject"] = compose_subject(self.sub, federation_id)
        return user


@dataclass
class Saml2UserInfo:
    """Identity extracted from a validated SAML2 response."""

    name_id: str
    name_id_format: str | None = None
    session_index: str | None = None
    attributes: dict[str, list[str]] = field(default_factory=dict)

    def to_user(self, federation_id: str) -> dict[str, Any]:
        """Build the local user record for this federation."""
        return {
            "subject": compose_subject(self.name_id, federation_id),
            "attributes": dict(self.attributes),
        }


def compose_subject(provider_subject: str, federation_id: str) -> str:
    """Compose the local subject for a federated identity.

    Args:
        provider_subject: ``sub`` claim or SAML2 NameID issued by the provider.
        federation_id: Id of the federation that authenticated the user.

    Returns:
        ``"<providerSubject>@<federationId>"``.
    """
    return f"{provider_subject}@{federation_id}"
