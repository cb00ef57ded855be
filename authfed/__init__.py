"""AuthFed - OIDC and SAML2 federation client for authorization servers."""

__version__ = "0.1.0"
