"""Typed lookups over an OIDC federation config."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

from authfed.federation.errors import ConfigurationError
from authfed.federation.models import FederationConfig, FederationType

ConfigLookup = Callable[[Sequence[str]], Any]


def from_federation_config(config: FederationConfig) -> ConfigLookup:
    """Create a lookup function for an OIDC federation config.

    The returned function accepts a path of ``("id",)``, ``("client", key)``
    or ``("server", key)`` and returns the configured value. Unknown paths and
    keys yield ``None``.

    Args:
        config: Federation config to read from.

    Returns:
        Lookup function bound to ``config``.

    Raises:
        ConfigurationError: If the config is not an OIDC federation.
    """
    if config.protocol != FederationType.OIDC:
        raise ConfigurationError(
            f"Unsupported protocol: {config.protocol}. Only 'oidc' protocol is supported."
        )

    sections = {
        "client": config.client.to_dict(),
        "server": config.server.to_dict(),
    }

    def lookup(path: Sequence[str]) -> Any:
        path = tuple(path)
        if path == ("id",):
            return config.id
        if len(path) == 2 and path[0] in sections:
            return sections[path[0]].get(path[1])
        return None

    return lookup
