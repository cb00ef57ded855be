"""CLI entry point for AuthFed."""

import click

from authfed import __version__
from authfed.cli import config as config_commands
from authfed.cli import federation as federation_commands
from authfed.cli import serve as serve_commands


@click.group()
@click.version_option(version=__version__, prog_name="authfed")
@click.option(
    "--log-level",
    type=click.Choice(["ERROR", "INFO", "DEBUG", "TRACE"], case_sensitive=False),
    default="INFO",
    help="Protocol logging level.",
)
@click.option(
    "--trace-sensitive",
    is_flag=True,
    help="Include tokens and secrets in TRACE output.",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str, trace_sensitive: bool) -> None:
    """AuthFed - OIDC/SAML2 Federation Client for Authorization Servers."""
    from authfed.core.logging import configure_logging

    ctx.ensure_object(dict)
    configure_logging(level=log_level, trace_enabled=trace_sensitive)


cli.add_command(config_commands.config)
cli.add_command(federation_commands.federations)
cli.add_command(serve_commands.serve)
