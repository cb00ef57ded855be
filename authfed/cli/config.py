"""Configuration management CLI commands."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, NoReturn

import click

# Common option for JSON output
json_option = click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output results as JSON for scripting",
)

config_path_option = click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),  # type: ignore[type-var]
    default=None,
    help="Path to config.yaml (default: ~/.authfed/config.yaml)",
)


def output_result(data: dict[str, Any], as_json: bool = False) -> None:
    """Output result as JSON.

    Args:
        data: Data to output
        as_json: If True, output as JSON
    """
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))


def error_result(message: str, as_json: bool = False) -> NoReturn:
    """Output error message and exit.

    This function never returns - it either raises ClickException or calls sys.exit.

    Args:
        message: Error message
        as_json: If True, output as JSON
    """
    if as_json:
        click.echo(json.dumps({"error": message}, indent=2), err=True)
        sys.exit(1)
    raise click.ClickException(message)


@click.group()
def config() -> None:
    """Manage AuthFed configuration."""
    pass


@config.command("show-default")
def config_show_default() -> None:
    """Print an example config.yaml."""
    from authfed.core.config import get_default_config_yaml

    click.echo(get_default_config_yaml(), nl=False)


@config.command("init")
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite an existing config file.",
)
@click.option(
    "--path",
    type=click.Path(path_type=Path),  # type: ignore[type-var]
    default=None,
    help="Where to write config.yaml (default: ~/.authfed/config.yaml)",
)
def config_init(force: bool, path: Path | None) -> None:
    """Write an example config.yaml to get started.

    Examples:

        # Write ~/.authfed/config.yaml
        authfed config init

        # Write to a custom location
        authfed config init --path ./config.yaml
    """
    from authfed.core.config import DEFAULT_CONFIG_FILE, get_default_config_yaml

    target = path or DEFAULT_CONFIG_FILE
    if target.exists() and not force:
        raise click.ClickException(f"{target} already exists. Use --force to overwrite.")

    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(get_default_config_yaml())
    click.echo(f"Config written to: {target}")


@config.command("validate")
@config_path_option
@json_option
def config_validate(config_path: Path | None, output_json: bool) -> None:
    """Load the configuration and build every federation."""
    from authfed.core.config import load_config
    from authfed.federation.errors import ConfigurationError
    from authfed.federation.manager import FederationManager

    try:
        app_config = load_config(config_path)
        manager = FederationManager(app_config.federations, is_dev=app_config.is_dev)
    except ConfigurationError as e:
        error_result(e.message, output_json)

    if output_json:
        output_result({"valid": True, "federations": manager.federation_ids()}, as_json=True)
        return

    click.echo(f"Configuration is valid ({len(manager)} federation(s)).")
