"""Registry of configured federations."""

from __future__ import annotations

import logging
from collections.abc import Iterator

import httpx

from authfed.federation.errors import ConfigurationError, FederationNotFoundError
from authfed.federation.models import FederationConfig, FederationRegistry, FederationType
from authfed.federation.oidc.federation import OidcFederation
from authfed.federation.oidc.metadata import ServerMetadataCache
from authfed.federation.saml2.federation import AuthFactory, Saml2Federation

logger = logging.getLogger(__name__)

Federation = OidcFederation | Saml2Federation


class FederationManager:
    """Builds every configured federation up front and looks them up by id."""

    def __init__(
        self,
        registry: FederationRegistry,
        is_dev: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
        saml2_auth_factory: AuthFactory | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            registry: Configured federations.
            is_dev: Allow insecure transport to providers.
            transport: Inner httpx transport shared by all federations, for tests.
            timeout: Default timeout in seconds for provider requests.
            saml2_auth_factory: Override for the SAML2 toolkit, for tests.

        Raises:
            ConfigurationError: If any federation cannot be built.
        """
        self._registry = registry
        self._is_dev = is_dev
        self._transport = transport
        self._timeout = timeout
        self._saml2_auth_factory = saml2_auth_factory
        self._metadata_cache = ServerMetadataCache()
        self._federations: dict[str, Federation] = {}

        for config in registry.federations:
            self._federations[config.id] = self._build(config)
        logger.info(f"Loaded {len(self._federations)} federation(s)")

    def _build(self, config: FederationConfig) -> Federation:
        if config.protocol == FederationType.OIDC:
            return OidcFederation(
                config,
                cache=self._metadata_cache,
                is_dev=self._is_dev,
                transport=self._transport,
                timeout=self._timeout,
            )
        if config.protocol == FederationType.SAML2:
            kwargs = {"auth_factory": self._saml2_auth_factory} if self._saml2_auth_factory else {}
            return Saml2Federation(
                config,
                is_dev=self._is_dev,
                transport=self._transport,
                timeout=self._timeout,
                **kwargs,
            )
        raise ConfigurationError(f"Federation '{config.id}': unsupported protocol '{config.protocol}'")

    @property
    def metadata_cache(self) -> ServerMetadataCache:
        """Shared OIDC provider metadata cache."""
        return self._metadata_cache

    def get_federation(self, federation_id: str) -> Federation:
        """Look up a federation by id.

        Raises:
            FederationNotFoundError: If no federation has this id.
        """
        try:
            return self._federations[federation_id]
        except KeyError:
            raise FederationNotFoundError(federation_id) from None

    def get_configurations(self) -> FederationRegistry:
        """Return the registry the manager was built from."""
        return self._registry

    def federation_ids(self) -> list[str]:
        """Ids of all federations, in configuration order."""
        return list(self._federations)

    def __iter__(self) -> Iterator[Federation]:
        return iter(self._federations.values())

    def __len__(self) -> int:
        return len(self._federations)

    def invalidate_server_metadata(self, federation_id: str) -> None:
        """Force rediscovery of a federation's provider metadata.

        Raises:
            FederationNotFoundError: If no federation has this id.
        """
        federation = self.get_federation(federation_id)
        if isinstance(federation, OidcFederation):
            self._metadata_cache.invalidate(federation_id)
        else:
            federation.configuration.invalidate()
