"""Federation inspection CLI commands."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

import click

from authfed.cli.config import config_path_option, error_result, json_option, output_result

if TYPE_CHECKING:
    from authfed.federation.manager import FederationManager


def _load_manager(config_path: Path | None, output_json: bool) -> FederationManager:
    from authfed.core.config import load_config
    from authfed.federation.errors import ConfigurationError
    from authfed.federation.manager import FederationManager

    try:
        app_config = load_config(config_path)
        return FederationManager(
            app_config.federations,
            is_dev=app_config.is_dev,
            timeout=app_config.http_timeout,
        )
    except ConfigurationError as e:
        error_result(e.message, output_json)


@click.group()
def federations() -> None:
    """Inspect configured federations."""
    pass


@federations.command("list")
@config_path_option
@json_option
def federations_list(config_path: Path | None, output_json: bool) -> None:
    """List configured federations."""
    manager = _load_manager(config_path, output_json)

    rows = [
        {"id": federation.id, "protocol": str(federation.type), "name": federation.config.name}
        for federation in manager
    ]

    if output_json:
        output_result({"federations": rows}, as_json=True)
        return

    if not rows:
        click.echo("No federations configured.")
        return

    click.echo(f"{'ID':<24} {'PROTOCOL':<10} NAME")
    for row in rows:
        click.echo(f"{row['id']:<24} {row['protocol']:<10} {row['name']}")


@federations.command("discover")
@click.argument("federation_id")
@config_path_option
@json_option
def federations_discover(federation_id: str, config_path: Path | None, output_json: bool) -> None:
    """Fetch and validate OIDC provider metadata for a federation.

    Examples:

        authfed federations discover example-oidc
    """
    from authfed.federation.errors import FederationError
    from authfed.federation.oidc.federation import OidcFederation

    manager = _load_manager(config_path, output_json)

    try:
        federation = manager.get_federation(federation_id)
        if not isinstance(federation, OidcFederation):
            error_result(f"Federation '{federation_id}' is not an OIDC federation", output_json)
        metadata = asyncio.run(federation.get_server_metadata())
    except FederationError as e:
        error_result(e.message, output_json)

    if output_json:
        output_result(metadata.to_dict(), as_json=True)
        return

    click.echo(f"Issuer:                 {metadata.issuer}")
    click.echo(f"Authorization endpoint: {metadata.authorization_endpoint}")
    click.echo(f"Token endpoint:         {metadata.token_endpoint}")
    click.echo(f"UserInfo endpoint:      {metadata.userinfo_endpoint or '-'}")
    click.echo(f"JWKS URI:               {metadata.jwks_uri or '-'}")
    iss_supported = "yes" if metadata.authorization_response_iss_parameter_supported else "no"
    click.echo(f"iss parameter:          {iss_supported}")
