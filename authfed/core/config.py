"""Application configuration management.

Loads configuration from config.yaml files and environment variables.
Environment variables take precedence over config file settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from authfed.federation.errors import ConfigurationError
from authfed.federation.models import FederationRegistry

# Default config locations
DEFAULT_CONFIG_DIR = Path.home() / ".authfed"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

# Environment variable prefix
ENV_PREFIX = "AUTHFED_"


@dataclass
class TLSSettings:
    """TLS/HTTPS configuration settings."""

    enabled: bool = False
    cert_path: Path | None = None
    key_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TLSSettings:
        """Create TLSSettings from a dictionary."""
        return cls(
            enabled=data.get("enabled", False),
            cert_path=Path(data["cert_path"]).expanduser() if data.get("cert_path") else None,
            key_path=Path(data["key_path"]).expanduser() if data.get("key_path") else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "enabled": self.enabled,
            "cert_path": str(self.cert_path) if self.cert_path else None,
            "key_path": str(self.key_path) if self.key_path else None,
        }


@dataclass
class ServerSettings:
    """Server configuration settings."""

    host: str = "127.0.0.1"
    port: int = 8443
    debug: bool = False
    tls: TLSSettings = field(default_factory=TLSSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServerSettings:
        """Create ServerSettings from a dictionary."""
        tls_data = data.get("tls", {})
        return cls(
            host=data.get("host", "127.0.0.1"),
            port=data.get("port", 8443),
            debug=data.get("debug", False),
            tls=TLSSettings.from_dict(tls_data) if tls_data else TLSSettings(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "host": self.host,
            "port": self.port,
            "debug": self.debug,
            "tls": self.tls.to_dict(),
        }


@dataclass
class AppConfig:
    """Main application configuration."""

    server: ServerSettings = field(default_factory=ServerSettings)
    federations: FederationRegistry = field(default_factory=FederationRegistry)
    is_dev: bool = False
    post_login_redirect: str | None = None
    http_timeout: float = 10.0
    config_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], config_path: Path | None = None) -> AppConfig:
        """Create AppConfig from a dictionary.

        Raises:
            ConfigurationError: If a federation entry is invalid.
        """
        server_data = data.get("server", {})
        return cls(
            server=ServerSettings.from_dict(server_data) if server_data else ServerSettings(),
            federations=FederationRegistry.from_list(data.get("federations") or []),
            is_dev=data.get("is_dev", False),
            post_login_redirect=data.get("post_login_redirect"),
            http_timeout=float(data.get("http_timeout", 10.0)),
            config_path=config_path,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "server": self.server.to_dict(),
            "is_dev": self.is_dev,
            "post_login_redirect": self.post_login_redirect,
            "http_timeout": self.http_timeout,
            "federations": self.federations.to_list(),
        }

    def save(self, path: Path | None = None) -> None:
        """Save configuration to a YAML file.

        Args:
            path: Path to save to. Uses config_path or default if not specified.
        """
        save_path = path or self.config_path or DEFAULT_CONFIG_FILE
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


def _get_env_bool(key: str, default: bool) -> bool:
    """Get a boolean from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _get_env_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_env_float(key: str, default: float) -> float:
    """Get a float from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def federation_secret_env_var(federation_id: str) -> str:
    """Name of the environment variable holding a federation's client secret."""
    key = federation_id.upper().replace("-", "_").replace(".", "_")
    return f"{ENV_PREFIX}FEDERATION_{key}_CLIENT_SECRET"


def _apply_secret_overrides(data: dict[str, Any]) -> None:
    for federation in data.get("federations") or []:
        if not isinstance(federation, dict) or not federation.get("id"):
            continue
        secret = os.environ.get(federation_secret_env_var(str(federation["id"])))
        if secret:
            federation["client"] = {**(federation.get("client") or {}), "client_secret": secret}


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load application configuration.

    Configuration is loaded in this order (later values override earlier):
    1. Default values
    2. config.yaml file (if exists)
    3. Environment variables

    Args:
        config_path: Path to config file. Uses default if not specified.

    Returns:
        AppConfig with merged settings.

    Raises:
        ConfigurationError: If the config file cannot be read or is invalid.
    """
    data: dict[str, Any] = {}

    file_path = config_path or DEFAULT_CONFIG_FILE
    if file_path.exists():
        try:
            with open(file_path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read config file {file_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {file_path} must contain a mapping")

    _apply_secret_overrides(data)
    config = AppConfig.from_dict(data, config_path=file_path if file_path.exists() else None)

    # Server settings
    if os.environ.get(f"{ENV_PREFIX}HOST"):
        config.server.host = os.environ[f"{ENV_PREFIX}HOST"]

    if os.environ.get(f"{ENV_PREFIX}PORT"):
        config.server.port = _get_env_int(f"{ENV_PREFIX}PORT", config.server.port)

    config.server.debug = _get_env_bool(f"{ENV_PREFIX}DEBUG", config.server.debug)

    # TLS settings
    tls = config.server.tls
    tls.enabled = _get_env_bool(f"{ENV_PREFIX}TLS_ENABLED", tls.enabled)

    if os.environ.get(f"{ENV_PREFIX}TLS_CERT"):
        tls.cert_path = Path(os.environ[f"{ENV_PREFIX}TLS_CERT"])

    if os.environ.get(f"{ENV_PREFIX}TLS_KEY"):
        tls.key_path = Path(os.environ[f"{ENV_PREFIX}TLS_KEY"])

    # Federation settings
    config.is_dev = _get_env_bool(f"{ENV_PREFIX}IS_DEV", config.is_dev)

    if os.environ.get(f"{ENV_PREFIX}POST_LOGIN_REDIRECT"):
        config.post_login_redirect = os.environ[f"{ENV_PREFIX}POST_LOGIN_REDIRECT"]

    config.http_timeout = _get_env_float(f"{ENV_PREFIX}HTTP_TIMEOUT", config.http_timeout)

    return config


def get_default_config_yaml() -> str:
    """Get the default config.yaml content as a string.

    Useful for generating example configuration files.
    """
    return """\
# AuthFed Configuration File
# Environment variables override these settings (prefix: AUTHFED_)

server:
  # Server bind address
  host: "127.0.0.1"

  # Server port
  port: 8443

  # Enable debug mode (not recommended for production)
  debug: false

  # TLS/HTTPS settings
  tls:
    enabled: false
    # cert_path: ~/.authfed/certs/server.crt
    # key_path: ~/.authfed/certs/server.key

# Allow plain http to identity providers (development only)
is_dev: false

# Where to send the user after a successful federated login.
# If unset, the callback answers with the user as JSON.
# post_login_redirect: "/"

# Timeout in seconds for requests to identity providers
http_timeout: 10

federations:
  # OpenID Connect provider (authorization code flow with PKCE)
  - id: example-oidc
    protocol: oidc
    server:
      name: "Example OIDC"
      issuer: "https://idp.example.com"
    client:
      client_id: "my-client"
      # Prefer AUTHFED_FEDERATION_EXAMPLE_OIDC_CLIENT_SECRET
      # client_secret: "..."
      redirect_uri: "https://localhost:8443/api/federation/callback/example-oidc"
      scopes: ["openid", "profile", "email"]
      # id_token_signed_response_alg: RS256

  # SAML2 identity provider
  # - id: example-saml
  #   protocol: saml2
  #   server:
  #     name: "Example SAML"
  #     metadata_url: "https://idp.example.com/saml/metadata"
  #     sso_binding: redirect
  #   client:
  #     entity_id: "https://localhost:8443/saml"
  #     acs_url: "https://localhost:8443/api/federation/callback/example-saml"
"""
