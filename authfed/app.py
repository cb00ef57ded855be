"""Flask application factory."""

from __future__ import annotations

import os
import secrets
import ssl
from pathlib import Path
from typing import TYPE_CHECKING

from flask import Flask

from authfed.federation.manager import FederationManager
from authfed.federation.models import FederationRegistry
from authfed.federation.oidc.pkce import SecurityParameterGenerator
from authfed.web.routes.federation import MANAGER_EXTENSION, SECURITY_EXTENSION

if TYPE_CHECKING:
    from authfed.core.config import AppConfig


def _load_secret_key() -> str:
    secret_key = os.environ.get("AUTHFED_SECRET_KEY")
    if secret_key:
        return secret_key
    # Use a persistent secret key from the config directory
    key_path = Path.home() / ".authfed" / "flask_secret.key"
    if key_path.exists():
        return key_path.read_text().strip()
    secret_key = secrets.token_hex(32)
    key_path.parent.mkdir(parents=True, exist_ok=True)
    key_path.write_text(secret_key)
    key_path.chmod(0o600)
    return secret_key


def create_app(
    config: dict | None = None,
    federation_manager: FederationManager | None = None,
    security: SecurityParameterGenerator | None = None,
) -> Flask:
    """Create and configure the Flask application.

    Args:
        config: Optional configuration dictionary to override defaults.
        federation_manager: Federations to serve. Empty if not provided.
        security: Source of state and PKCE verifier values.

    Returns:
        Configured Flask application instance.
    """
    app = Flask(__name__)

    app.config.from_mapping(
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        POST_LOGIN_REDIRECT=None,
    )

    if config:
        app.config.from_mapping(config)

    if not app.config.get("SECRET_KEY"):
        app.config["SECRET_KEY"] = _load_secret_key()

    if federation_manager is None:
        federation_manager = FederationManager(FederationRegistry())
    app.extensions[MANAGER_EXTENSION] = federation_manager
    app.extensions[SECURITY_EXTENSION] = security or SecurityParameterGenerator()

    from authfed.web import routes

    routes.init_app(app)

    return app


def create_app_from_config(app_config: AppConfig) -> Flask:
    """Create the Flask application from loaded configuration.

    Raises:
        ConfigurationError: If a configured federation cannot be built.
    """
    manager = FederationManager(
        app_config.federations,
        is_dev=app_config.is_dev,
        timeout=app_config.http_timeout,
    )
    app = create_app({
        "POST_LOGIN_REDIRECT": app_config.post_login_redirect,
        "SESSION_COOKIE_SECURE": app_config.server.tls.enabled,
    }, federation_manager=manager)
    app.debug = app_config.server.debug
    return app


def create_ssl_context(
    cert_path: Path,
    key_path: Path,
) -> ssl.SSLContext:
    """Create an SSL context for HTTPS.

    Args:
        cert_path: Path to the certificate file (PEM format).
        key_path: Path to the private key file (PEM format).

    Returns:
        Configured SSL context.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(str(cert_path), str(key_path))
    return context


def run_server(
    app_config: AppConfig | None = None,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Run the Flask development server.

    Args:
        app_config: Application configuration. Loads from file/env if not provided.
        host: Override host from config.
        port: Override port from config.
    """
    from authfed.core.config import load_config

    if app_config is None:
        app_config = load_config()

    server_host = host or app_config.server.host
    server_port = port or app_config.server.port
    tls_settings = app_config.server.tls

    app = create_app_from_config(app_config)

    ssl_context: ssl.SSLContext | None = None
    if tls_settings.enabled:
        if not tls_settings.cert_path or not tls_settings.key_path:
            raise ValueError("TLS is enabled but cert_path and key_path are not both configured")
        ssl_context = create_ssl_context(tls_settings.cert_path, tls_settings.key_path)
        protocol = "https"
    else:
        protocol = "http"
        print("WARNING: TLS is disabled. Serve behind a TLS-terminating proxy in production.")
        print("")

    if app_config.is_dev:
        print("WARNING: is_dev is enabled. Insecure transport to identity providers is allowed.")
        print("")

    print("Starting AuthFed server...")
    print(f"  URL: {protocol}://{server_host}:{server_port}")
    print(f"  Federations: {', '.join(app.extensions[MANAGER_EXTENSION].federation_ids()) or '(none)'}")
    print("")

    app.run(
        host=server_host,
        port=server_port,
        ssl_context=ssl_context,
    )
