"""Federated login routes: initiation and provider callback."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from flask import Blueprint, Response, current_app, jsonify, redirect, request
from werkzeug.exceptions import HTTPException

from authfed.federation.errors import FederationError, FederationInternalError, FederationValidationError
from authfed.federation.models import FederationCallbackParams
from authfed.federation.oidc.federation import OidcFederation
from authfed.federation.saml2.federation import CallbackRequest, PostLoginRequest
from authfed.web.session import (
    AUTH_TIME_KEY,
    FEDERATION_CALLBACK_PARAMS_KEY,
    USER_KEY,
    FlaskSessionStore,
)

if TYPE_CHECKING:
    from werkzeug.wrappers import Response as WerkzeugResponse

    from authfed.federation.manager import FederationManager
    from authfed.federation.oidc.pkce import SecurityParameterGenerator

logger = logging.getLogger(__name__)

federation_bp = Blueprint("federation", __name__, url_prefix="/api/federation")

# app.extensions keys
MANAGER_EXTENSION = "authfed.federations"
SECURITY_EXTENSION = "authfed.security"


def get_federation_manager() -> FederationManager:
    """Return the FederationManager of the current app."""
    return current_app.extensions[MANAGER_EXTENSION]


def get_security_parameters() -> SecurityParameterGenerator:
    """Return the state/verifier generator of the current app."""
    return current_app.extensions[SECURITY_EXTENSION]


@federation_bp.route("/initiation/<federation_id>")
async def initiation(federation_id: str) -> Response | WerkzeugResponse:
    """Start a federated login by sending the user agent to the provider."""
    federation = get_federation_manager().get_federation(federation_id)
    store = FlaskSessionStore()

    if isinstance(federation, OidcFederation):
        security = get_security_parameters()
        state = security.state()
        code_verifier = security.code_verifier()
        location = await federation.create_federation_request(state, code_verifier)
        store.set(
            FEDERATION_CALLBACK_PARAMS_KEY,
            FederationCallbackParams(
                federation_id=federation.id,
                protocol=federation.type,
                state=state,
                code_verifier=code_verifier,
            ).to_dict(),
        )
        return redirect(location)

    login_request = await federation.process_login_request()
    store.set(
        FEDERATION_CALLBACK_PARAMS_KEY,
        FederationCallbackParams(
            federation_id=federation.id,
            protocol=federation.type,
            request_id=login_request.request_id,
        ).to_dict(),
    )
    if isinstance(login_request, PostLoginRequest):
        return Response(
            login_request.html,
            mimetype="text/html",
            headers={"Cache-Control": "no-store"},
        )
    return redirect(login_request.location)


@federation_bp.route("/callback/<federation_id>", methods=["GET", "POST"])
async def callback(federation_id: str) -> Response | WerkzeugResponse:
    """Complete a federated login from the provider's response."""
    federation = get_federation_manager().get_federation(federation_id)
    store = FlaskSessionStore()

    # Read once: the entry is gone whether processing succeeds or fails
    raw_params = store.pop(FEDERATION_CALLBACK_PARAMS_KEY)
    if not raw_params:
        raise FederationValidationError("Federation parameters not found")
    try:
        params = FederationCallbackParams.from_dict(raw_params)
    except (KeyError, TypeError) as e:
        raise FederationValidationError("Federation parameters not found") from e
    if params.federation_id != federation.id or params.protocol != federation.type:
        raise FederationValidationError("Federation parameters do not match this federation")

    if isinstance(federation, OidcFederation):
        if not params.state:
            raise FederationValidationError("State not found")
        user_info = await federation.process_federation_response(
            request.url, params.state, params.code_verifier
        )
    else:
        user_info = await federation.process_saml2_response(
            CallbackRequest(method=request.method, url=request.url, form=request.form.to_dict()),
            request_id=params.request_id,
        )

    user = user_info.to_user(federation.id)
    store.set_batch({USER_KEY: user, AUTH_TIME_KEY: int(time.time())})
    logger.info(f"Federated login via '{federation.id}' for {user['subject']}")

    post_login_redirect = current_app.config.get("POST_LOGIN_REDIRECT")
    if post_login_redirect:
        return redirect(post_login_redirect)
    return jsonify({"user": user})


@federation_bp.errorhandler(FederationError)
def handle_federation_error(error: FederationError) -> tuple[Response, int]:
    """Answer a federation failure with its status and an OAuth-style body."""
    if error.status_code >= 500:
        logger.error(f"Federation error: {error.message}", exc_info=error)
    else:
        logger.warning(f"Federation request rejected: {error.message}")
    return jsonify(error.to_dict()), error.status_code


@federation_bp.errorhandler(Exception)
def handle_unexpected_error(error: Exception) -> HTTPException | tuple[Response, int]:
    """Log unexpected failures and answer with a generic error."""
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in federation handler")
    internal = FederationInternalError("Unexpected error")
    return jsonify(internal.to_dict()), internal.status_code
