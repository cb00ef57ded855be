"""SAML2 federation built on the python3-saml toolkit."""

from authfed.federation.saml2.configuration import Saml2Configuration
from authfed.federation.saml2.federation import (
    CallbackRequest,
    LoginRequest,
    PostLoginRequest,
    RedirectLoginRequest,
    Saml2Federation,
    render_post_form,
)

__all__ = [
    "CallbackRequest",
    "LoginRequest",
    "PostLoginRequest",
    "RedirectLoginRequest",
    "Saml2Configuration",
    "Saml2Federation",
    "render_post_form",
]
