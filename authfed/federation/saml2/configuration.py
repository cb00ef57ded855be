"""SAML2 federation settings for the python3-saml toolkit."""

from __future__ import annotations

import copy
import logging
import uuid
from typing import Any

import httpx
from onelogin.saml2.errors import OneLogin_Saml2_Error
from onelogin.saml2.idp_metadata_parser import OneLogin_Saml2_IdPMetadataParser
from onelogin.saml2.settings import OneLogin_Saml2_Settings

from authfed.core.logging import AsyncLoggingClient, get_protocol_logger
from authfed.federation.errors import ConfigurationError, DiscoveryError
from authfed.federation.models import (
    FederationConfig,
    FederationType,
    Saml2ClientConfig,
    Saml2ServerConfig,
)
from authfed.federation.oidc.metadata import DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)


class Saml2Configuration:
    """Toolkit settings for one SAML2 federation.

    Settings are validated at construction when the identity provider is
    described inline. A ``metadata_url`` provider is fetched and validated on
    first use, then kept for the lifetime of the process.
    """

    def __init__(
        self,
        config: FederationConfig,
        is_dev: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the configuration.

        Args:
            config: SAML2 federation config.
            is_dev: Allow insecure transport when fetching IdP metadata.
            transport: Inner httpx transport, for tests.

        Raises:
            ConfigurationError: If the config is not SAML2 or its settings are invalid.
        """
        if config.protocol != FederationType.SAML2:
            raise ConfigurationError(
                f"Unsupported protocol: {config.protocol}. Only 'saml2' protocol is supported."
            )
        self._config = config
        self._sp: Saml2ClientConfig = config.client  # type: ignore[assignment]
        self._idp: Saml2ServerConfig = config.server  # type: ignore[assignment]
        self._is_dev = is_dev
        self._transport = transport
        self._settings: OneLogin_Saml2_Settings | None = None

        if self._idp.metadata:
            self._settings = self._build_settings(self._parse_metadata(self._idp.metadata))
        elif not self._idp.metadata_url:
            self._settings = self._build_settings({"idp": self._explicit_idp()})

    @property
    def federation_id(self) -> str:
        """Federation id."""
        return self._config.id

    @property
    def sp(self) -> Saml2ClientConfig:
        """Service provider settings."""
        return self._sp

    @property
    def is_resolved(self) -> bool:
        """Whether the identity provider settings are known."""
        return self._settings is not None

    def base_settings(self) -> dict[str, Any]:
        """Toolkit settings dict without identity provider data."""
        sp: dict[str, Any] = {
            "entityId": self._sp.entity_id,
            "assertionConsumerService": {
                "url": self._sp.acs_url,
                "binding": self._sp.acs_binding,
            },
            "NameIDFormat": self._sp.name_id_format,
            "x509cert": self._sp.x509cert,
            "privateKey": self._sp.private_key,
        }
        return {
            "strict": True,
            "debug": False,
            "sp": sp,
            "security": {
                "authnRequestsSigned": self._sp.authn_requests_signed,
                "wantAssertionsSigned": self._sp.want_assertions_signed,
                "wantMessagesSigned": self._sp.want_messages_signed,
            },
        }

    def _explicit_idp(self) -> dict[str, Any]:
        return {
            "entityId": self._idp.entity_id,
            "singleSignOnService": {
                "url": self._idp.sso_url,
                "binding": self._idp.sso_binding,
            },
            "x509cert": self._idp.x509cert,
        }

    def _parse_metadata(self, metadata_xml: str) -> dict[str, Any]:
        try:
            parsed = OneLogin_Saml2_IdPMetadataParser.parse(
                metadata_xml,
                required_sso_binding=self._idp.sso_binding,
            )
        except (OneLogin_Saml2_Error, ValueError, SyntaxError) as e:
            raise ConfigurationError(
                f"Federation '{self._config.id}': invalid IdP metadata: {e}"
            ) from e
        idp = parsed.get("idp")
        if not idp or not idp.get("singleSignOnService", {}).get("url"):
            raise ConfigurationError(
                f"Federation '{self._config.id}': IdP metadata has no SingleSignOnService "
                f"for binding {self._idp.sso_binding}"
            )
        if self._idp.x509cert:
            idp = {**idp, "x509cert": self._idp.x509cert}
            idp.pop("x509certMulti", None)
        return {**parsed, "idp": idp}

    def _build_settings(self, idp_settings: dict[str, Any]) -> OneLogin_Saml2_Settings:
        settings = OneLogin_Saml2_IdPMetadataParser.merge_settings(
            copy.deepcopy(self.base_settings()), idp_settings
        )
        try:
            return OneLogin_Saml2_Settings(settings)
        except OneLogin_Saml2_Error as e:
            raise ConfigurationError(f"Federation '{self._config.id}': {e}") from e

    async def fetch_metadata(self, timeout: float | None = None) -> str:
        """Fetch the identity provider metadata document.

        Raises:
            DiscoveryError: If the metadata cannot be fetched.
        """
        url = self._idp.metadata_url
        if not url:
            raise ConfigurationError(f"Federation '{self._config.id}' has no metadata_url")
        if httpx.URL(url).scheme != "https" and not self._is_dev:
            raise DiscoveryError(f"IdP metadata URL must use https: {url}")

        logger.debug(f"Fetching SAML metadata from {url}")
        protocol_logger = get_protocol_logger()
        owns_flow = protocol_logger.current_flow is None
        if owns_flow:
            protocol_logger.start_flow(f"saml2_metadata_{uuid.uuid4().hex[:8]}", "saml2_metadata_fetch")
        try:
            async with AsyncLoggingClient(
                protocol_logger=protocol_logger,
                transport=self._transport,
                verify=not self._is_dev,
                timeout=timeout or DEFAULT_TIMEOUT,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            raise DiscoveryError(f"Timeout fetching metadata from {url}") from e
        except httpx.HTTPStatusError as e:
            raise DiscoveryError(f"HTTP {e.response.status_code} fetching metadata from {url}") from e
        except httpx.RequestError as e:
            raise DiscoveryError(f"Request error fetching metadata: {e}") from e
        finally:
            if owns_flow:
                protocol_logger.end_flow()
        return response.text

    async def settings(self, timeout: float | None = None) -> OneLogin_Saml2_Settings:
        """Return validated toolkit settings, fetching IdP metadata if needed."""
        if self._settings is None:
            metadata_xml = await self.fetch_metadata(timeout)
            try:
                self._settings = self._build_settings(self._parse_metadata(metadata_xml))
            except ConfigurationError as e:
                raise DiscoveryError(e.message) from e
            logger.info(f"Resolved IdP metadata for federation '{self._config.id}'")
        return self._settings

    def invalidate(self) -> None:
        """Forget fetched IdP metadata so the next use fetches it again."""
        if self._idp.metadata_url:
            self._settings = None
