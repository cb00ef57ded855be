"""OIDC provider metadata discovery and caching."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from authfed.core.logging import AsyncLoggingClient, get_protocol_logger
from authfed.federation.errors import DiscoveryError

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-configuration"
DEFAULT_TIMEOUT = 10.0


@dataclass
class ServerMetadata:
    """Discovered OIDC provider metadata."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str | None = None
    jwks_uri: str | None = None
    authorization_response_iss_parameter_supported: bool = False
    id_token_signing_alg_values_supported: list[str] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServerMetadata:
        """Create ServerMetadata from a discovery document.

        Raises:
            DiscoveryError: If a required endpoint is missing.
        """
        for name in ("issuer", "authorization_endpoint", "token_endpoint"):
            if not isinstance(data.get(name), str) or not data[name]:
                raise DiscoveryError(f"'{name}' is not found in server metadata")
        return cls(
            issuer=data["issuer"],
            authorization_endpoint=data["authorization_endpoint"],
            token_endpoint=data["token_endpoint"],
            userinfo_endpoint=data.get("userinfo_endpoint"),
            jwks_uri=data.get("jwks_uri"),
            authorization_response_iss_parameter_supported=bool(
                data.get("authorization_response_iss_parameter_supported", False)
            ),
            id_token_signing_alg_values_supported=list(data.get("id_token_signing_alg_values_supported", [])),
            raw=dict(data),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            **self.raw,
            "issuer": self.issuer,
            "authorization_endpoint": self.authorization_endpoint,
            "token_endpoint": self.token_endpoint,
            "userinfo_endpoint": self.userinfo_endpoint,
            "jwks_uri": self.jwks_uri,
            "authorization_response_iss_parameter_supported": self.authorization_response_iss_parameter_supported,
            "id_token_signing_alg_values_supported": list(self.id_token_signing_alg_values_supported),
        }

    def lookup(self, name: str, required: bool = True) -> Any:
        """Read one metadata field.

        Args:
            name: Metadata field name.
            required: Raise if the field is absent.

        Returns:
            The field value, or None for an absent optional field.

        Raises:
            DiscoveryError: If a required field is absent.
        """
        value = self.to_dict().get(name)
        if value is None and required:
            raise DiscoveryError(f"'{name}' is not found in server metadata")
        return value


def _same_issuer(a: str, b: str) -> bool:
    return a.rstrip("/") == b.rstrip("/")


def _check_endpoint_schemes(metadata: ServerMetadata, allow_insecure: bool) -> None:
    """Refuse discovered endpoints that would send codes or credentials over plain http."""
    for name in ("authorization_endpoint", "token_endpoint", "userinfo_endpoint"):
        url = getattr(metadata, name)
        if url is None:
            continue
        try:
            scheme = httpx.URL(url).scheme
        except (httpx.InvalidURL, TypeError) as e:
            raise DiscoveryError(f"'{name}' is not a valid URL: {url}") from e
        if scheme != "https" and not (allow_insecure and scheme == "http"):
            raise DiscoveryError(f"'{name}' must use https: {url}")


def build_discovery_url(issuer: str) -> str:
    """Build the well-known discovery URL for an issuer."""
    return issuer.rstrip("/") + WELL_KNOWN_PATH


async def discover(
    issuer: str,
    allow_insecure: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
    timeout: float | None = None,
) -> ServerMetadata:
    """Fetch and validate the discovery document of an OIDC provider.

    Args:
        issuer: Configured issuer identifier.
        allow_insecure: Permit plain ``http`` issuers and endpoints (development only).
        transport: Inner httpx transport, for tests.
        timeout: Request timeout in seconds.

    Returns:
        The validated ServerMetadata.

    Raises:
        DiscoveryError: If the provider is unreachable or the document is invalid.
    """
    url = build_discovery_url(issuer)
    scheme = httpx.URL(url).scheme
    if scheme != "https" and not (allow_insecure and scheme == "http"):
        raise DiscoveryError(f"Issuer must use https: {issuer}")

    logger.debug(f"Fetching OIDC discovery from {url}")
    protocol_logger = get_protocol_logger()
    # Discovery during a callback joins the callback flow
    owns_flow = protocol_logger.current_flow is None
    if owns_flow:
        protocol_logger.start_flow(f"oidc_discovery_{uuid.uuid4().hex[:8]}", "oidc_discovery")
    try:
        async with AsyncLoggingClient(
            protocol_logger=protocol_logger,
            transport=transport,
            verify=not allow_insecure,
            timeout=timeout or DEFAULT_TIMEOUT,
        ) as client:
            response = await client.get(url, headers={"Accept": "application/json"})
    except httpx.TimeoutException as e:
        raise DiscoveryError(f"Timeout fetching discovery from {url}") from e
    except httpx.RequestError as e:
        raise DiscoveryError(f"Request error fetching discovery: {e}") from e
    finally:
        if owns_flow:
            protocol_logger.end_flow()

    if response.status_code != 200:
        raise DiscoveryError(f"HTTP {response.status_code} fetching discovery: {response.text[:200]}")

    try:
        data = response.json()
    except ValueError as e:
        raise DiscoveryError("Discovery response is not valid JSON") from e
    if not isinstance(data, dict):
        raise DiscoveryError("Discovery response is not a JSON object")

    metadata = ServerMetadata.from_dict(data)
    if not _same_issuer(metadata.issuer, issuer):
        raise DiscoveryError(
            f"Discovered issuer '{metadata.issuer}' does not match configured issuer '{issuer}'"
        )
    _check_endpoint_schemes(metadata, allow_insecure)
    return metadata


class ServerMetadataCache:
    """Process-wide cache of discovered metadata, keyed by federation id.

    Concurrent first callers for one federation on the same event loop share
    a single discovery fetch. Entries never expire; call :meth:`invalidate`
    to force rediscovery.
    """

    def __init__(self) -> None:
        self._entries: dict[str, ServerMetadata] = {}
        self._inflight: dict[str, asyncio.Future[ServerMetadata]] = {}

    def get(self, federation_id: str) -> ServerMetadata | None:
        """Return the cached metadata for a federation, if any."""
        return self._entries.get(federation_id)

    def set(self, federation_id: str, metadata: ServerMetadata) -> None:
        """Store metadata for a federation."""
        self._entries[federation_id] = metadata

    def invalidate(self, federation_id: str) -> None:
        """Drop cached metadata so the next lookup rediscovers it."""
        self._entries.pop(federation_id, None)
        logger.info(f"Invalidated server metadata for federation '{federation_id}'")

    async def get_or_fetch(
        self,
        federation_id: str,
        fetch: Callable[[], Awaitable[ServerMetadata]],
    ) -> ServerMetadata:
        """Return cached metadata or fetch it once for all concurrent callers.

        Args:
            federation_id: Cache key.
            fetch: Coroutine factory performing discovery.

        Returns:
            The cached or freshly fetched metadata.
        """
        while True:
            cached = self._entries.get(federation_id)
            if cached is not None:
                return cached

            loop = asyncio.get_running_loop()
            pending = self._inflight.get(federation_id)
            if pending is None or pending.get_loop() is not loop:
                return await self._lead(federation_id, fetch, loop)

            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                # Leader cancelled; retry unless this task is the one being cancelled
                current = asyncio.current_task()
                if current is not None and current.cancelling():
                    raise

    async def _lead(
        self,
        federation_id: str,
        fetch: Callable[[], Awaitable[ServerMetadata]],
        loop: asyncio.AbstractEventLoop,
    ) -> ServerMetadata:
        future: asyncio.Future[ServerMetadata] = loop.create_future()
        self._inflight[federation_id] = future
        try:
            metadata = await fetch()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unawaited failure is not reported by the loop
            future.exception()
            raise
        else:
            self.set(federation_id, metadata)
            future.set_result(metadata)
            return metadata
        finally:
            if self._inflight.get(federation_id) is future:
                del self._inflight[federation_id]


class ServerMetadataProvider:
    """Cache-first access to one federation's provider metadata."""

    def __init__(
        self,
        issuer: str,
        cached: Callable[[], ServerMetadata | None],
        setter: Callable[[ServerMetadata], None],
        allow_insecure: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            issuer: Configured issuer identifier.
            cached: Returns the cached metadata, or None.
            setter: Persists freshly discovered metadata.
            allow_insecure: Permit plain ``http`` issuers and endpoints (development only).
            transport: Inner httpx transport, for tests.
        """
        self._issuer = issuer
        self._cached = cached
        self._setter = setter
        self._allow_insecure = allow_insecure
        self._transport = transport

    @property
    def issuer(self) -> str:
        """Configured issuer identifier."""
        return self._issuer

    async def get(self, timeout: float | None = None) -> ServerMetadata:
        """Return provider metadata, discovering it on a cache miss."""
        cached = self._cached()
        if cached is not None:
            return cached
        metadata = await discover(
            self._issuer,
            allow_insecure=self._allow_insecure,
            transport=self._transport,
            timeout=timeout,
        )
        self._setter(metadata)
        return metadata
