"""Server CLI commands."""

from pathlib import Path

import click


@click.command()
@click.option(
    "--host",
    "-h",
    default=None,
    help="Host to bind to (default: from config or 127.0.0.1)",
)
@click.option(
    "--port",
    "-p",
    type=int,
    default=None,
    help="Port to bind to (default: from config or 8443)",
)
@click.option(
    "--no-tls",
    is_flag=True,
    help="Disable TLS even if enabled in config",
)
@click.option(
    "--cert",
    type=click.Path(exists=True, path_type=Path),  # type: ignore[type-var]
    help="Path to TLS certificate (PEM format)",
)
@click.option(
    "--key",
    type=click.Path(exists=True, path_type=Path),  # type: ignore[type-var]
    help="Path to TLS private key (PEM format)",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug mode",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),  # type: ignore[type-var]
    default=None,
    help="Path to config.yaml (default: ~/.authfed/config.yaml)",
)
def serve(
    host: str | None,
    port: int | None,
    no_tls: bool,
    cert: Path | None,
    key: Path | None,
    debug: bool,
    config_path: Path | None,
) -> None:
    """Start the AuthFed web server.

    Serves the federation initiation and callback routes for every
    federation in the configuration.

    Examples:

        # Start with settings from ~/.authfed/config.yaml
        authfed serve

        # Start on custom port
        authfed serve --port 9443

        # Serve HTTPS with a certificate
        authfed serve --cert /path/to/cert.pem --key /path/to/key.pem
    """
    from authfed.app import run_server
    from authfed.core.config import load_config
    from authfed.federation.errors import ConfigurationError

    # Validate cert/key pair
    if cert and not key:
        raise click.ClickException("--key is required when --cert is provided")
    if key and not cert:
        raise click.ClickException("--cert is required when --key is provided")

    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        raise click.ClickException(e.message) from None

    # Apply CLI overrides
    if cert and key:
        config.server.tls.enabled = True
        config.server.tls.cert_path = cert
        config.server.tls.key_path = key

    if no_tls:
        config.server.tls.enabled = False

    if debug:
        config.server.debug = True

    try:
        run_server(app_config=config, host=host, port=port)
    except (ConfigurationError, ValueError) as e:
        raise click.ClickException(str(e)) from None
