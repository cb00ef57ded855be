"""SAML2 federation: Web Browser SSO with a SAML2 identity provider."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
from markupsafe import Markup, escape
from onelogin.saml2.auth import OneLogin_Saml2_Auth
from onelogin.saml2.authn_request import OneLogin_Saml2_Authn_Request
from onelogin.saml2.errors import OneLogin_Saml2_Error, OneLogin_Saml2_ValidationError
from onelogin.saml2.utils import OneLogin_Saml2_Utils

from authfed.federation.errors import FederationError, Saml2ResponseError
from authfed.federation.models import (
    SAML2_BINDING_POST,
    SAML2_BINDING_REDIRECT,
    FederationConfig,
    FederationType,
    Saml2UserInfo,
)
from authfed.federation.saml2.configuration import Saml2Configuration

logger = logging.getLogger(__name__)

AuthFactory = Callable[..., Any]

_POST_FORM_TEMPLATE = """\
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Redirecting</title></head>
<body onload="document.forms[0].submit()">
<form method="post" action="{action}">
{fields}
<noscript><button type="submit">Continue</button></noscript>
</form>
</body>
</html>
"""


@dataclass
class RedirectLoginRequest:
    """Login request sent with the HTTP-Redirect binding."""

    location: str
    request_id: str
    binding: str = SAML2_BINDING_REDIRECT


@dataclass
class PostLoginRequest:
    """Login request sent with the HTTP-POST binding as an auto-submitting form."""

    html: str
    request_id: str
    binding: str = SAML2_BINDING_POST


LoginRequest = RedirectLoginRequest | PostLoginRequest


@dataclass
class CallbackRequest:
    """The parts of an incoming HTTP request a SAML2 response is read from."""

    method: str
    url: str
    form: dict[str, str] = field(default_factory=dict)

    def to_request_data(self) -> dict[str, Any]:
        """Convert to the request dict python3-saml expects.

        A non-default port travels in ``http_host``.
        """
        url = httpx.URL(self.url)
        return {
            "https": "on" if url.scheme == "https" else "off",
            "http_host": url.netloc.decode("ascii"),
            "script_name": url.path,
            "get_data": dict(url.params),
            "post_data": dict(self.form),
            "query_string": url.query.decode("ascii"),
        }


def render_post_form(action: str, fields: dict[str, str]) -> str:
    """Render an HTML form that posts ``fields`` to ``action`` on load.

    All values are HTML-escaped.
    """
    inputs = "\n".join(
        Markup('<input type="hidden" name="{}" value="{}"/>').format(name, value)
        for name, value in fields.items()
    )
    return _POST_FORM_TEMPLATE.format(action=escape(action), fields=inputs)


class Saml2Federation:
    """Federation with a SAML2 identity provider."""

    type = FederationType.SAML2

    def __init__(
        self,
        config: FederationConfig,
        is_dev: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
        auth_factory: AuthFactory = OneLogin_Saml2_Auth,
    ) -> None:
        """Initialize the federation.

        Args:
            config: SAML2 federation config.
            is_dev: Allow insecure transport when fetching IdP metadata.
            transport: Inner httpx transport, for tests.
            timeout: Timeout in seconds for the IdP metadata fetch.
            auth_factory: Builds the toolkit object that validates responses.

        Raises:
            ConfigurationError: If ``config`` is not a valid SAML2 federation.
        """
        self._configuration = Saml2Configuration(config, is_dev=is_dev, transport=transport)
        self._config = config
        self._timeout = timeout
        self._auth_factory = auth_factory

    @property
    def id(self) -> str:
        """Federation id."""
        return self._config.id

    @property
    def config(self) -> FederationConfig:
        """Federation config."""
        return self._config

    @property
    def configuration(self) -> Saml2Configuration:
        """Toolkit settings holder."""
        return self._configuration

    async def process_login_request(self) -> LoginRequest:
        """Build an AuthnRequest for the identity provider.

        The binding follows the provider's SingleSignOnService: HTTP-POST
        yields an auto-submitting form, anything else a redirect URL.

        Returns:
            RedirectLoginRequest or PostLoginRequest.
        """
        settings = await self._configuration.settings(self._timeout)
        sso = settings.get_idp_data()["singleSignOnService"]
        security = settings.get_security_data()
        relay_state = self._configuration.sp.relay_state

        authn_request = OneLogin_Saml2_Authn_Request(settings)
        request_id = authn_request.get_id()

        if sso.get("binding") == SAML2_BINDING_POST:
            xml = authn_request.get_xml()
            if security.get("authnRequestsSigned"):
                xml = OneLogin_Saml2_Utils.add_sign(
                    xml,
                    settings.get_sp_key(),
                    settings.get_sp_cert(),
                    sign_algorithm=security["signatureAlgorithm"],
                    digest_algorithm=security["digestAlgorithm"],
                )
            fields = {"SAMLRequest": OneLogin_Saml2_Utils.b64encode(xml)}
            if relay_state:
                fields["RelayState"] = relay_state
            logger.info(f"Created SAML2 POST login request {request_id} for federation '{self.id}'")
            return PostLoginRequest(html=render_post_form(sso["url"], fields), request_id=request_id)

        params = {"SAMLRequest": authn_request.get_request()}
        if relay_state:
            params["RelayState"] = relay_state
        if security.get("authnRequestsSigned"):
            # Adds SigAlg and Signature over the quote_plus encoded query
            auth = self._auth_factory(self._acs_request_data(), old_settings=settings)
            auth.add_request_signature(params, security["signatureAlgorithm"])
        location = OneLogin_Saml2_Utils.redirect(sso["url"], params)
        logger.info(f"Created SAML2 redirect login request {request_id} for federation '{self.id}'")
        return RedirectLoginRequest(location=location, request_id=request_id)

    def _acs_request_data(self) -> dict[str, Any]:
        return CallbackRequest(method="GET", url=self._configuration.sp.acs_url).to_request_data()

    async def process_saml2_response(
        self,
        request: CallbackRequest,
        request_id: str | None = None,
    ) -> Saml2UserInfo:
        """Validate a SAML2 response and extract the authenticated identity.

        Args:
            request: The callback request carrying the POSTed ``SAMLResponse``.
            request_id: Id of the AuthnRequest this response must answer.

        Returns:
            The NameID and attributes of the authenticated user.

        Raises:
            Saml2ResponseError: If the response is missing or invalid.
        """
        if request.method.upper() != "POST":
            raise Saml2ResponseError("SAML2 responses are only accepted with the HTTP-POST binding")
        if not request.form.get("SAMLResponse"):
            raise Saml2ResponseError("SAMLResponse is not included in response.")

        try:
            settings = await self._configuration.settings(self._timeout)
        except FederationError as e:
            raise Saml2ResponseError(f"Failed to resolve IdP settings: {e}") from e

        auth = self._auth_factory(request.to_request_data(), old_settings=settings)
        try:
            auth.process_response(request_id=request_id)
        except (OneLogin_Saml2_Error, OneLogin_Saml2_ValidationError, ValueError, SyntaxError) as e:
            raise Saml2ResponseError(f"Failed to process SAML response: {e}") from e

        errors = auth.get_errors()
        if errors:
            reason = auth.get_last_error_reason()
            raise Saml2ResponseError(f"Invalid SAML response: {', '.join(errors)}: {reason}")
        if not auth.is_authenticated():
            raise Saml2ResponseError("SAML response did not authenticate the user")

        name_id = auth.get_nameid()
        if not name_id:
            raise Saml2ResponseError("NameID is not included in SAML response")

        logger.info(f"SAML2 federation '{self.id}' authenticated {name_id}")
        return Saml2UserInfo(
            name_id=name_id,
            name_id_format=auth.get_nameid_format(),
            session_index=auth.get_session_index(),
            attributes=auth.get_attributes(),
        )
