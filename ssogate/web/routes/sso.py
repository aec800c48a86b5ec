"""SSO routes.

Provider discovery and SP-initiated login for the frontend, plus the SAML
endpoints the IdP talks to (SP metadata and the Assertion Consumer Service).
"""

from __future__ import annotations

import json
import logging
import secrets
from typing import TYPE_CHECKING

from flask import Blueprint, Response, current_app, redirect, request, session

from ssogate.core.errors import InactiveUserError, NotEnabledError, SSOError
from ssogate.core.providers import ProviderRegistry, provider_summary

if TYPE_CHECKING:
    from werkzeug.wrappers import Response as WerkzeugResponse

logger = logging.getLogger(__name__)

sso_bp = Blueprint("sso", __name__, url_prefix="/api/v1/auth")

# Session key holding the identity of the last successful SSO login
SSO_IDENTITY_KEY = "sso_identity"

# Key under app.extensions for the provider registry
REGISTRY_EXTENSION = "ssogate.providers"


def get_registry() -> ProviderRegistry:
    """Get the provider registry of the current app."""
    return current_app.extensions[REGISTRY_EXTENSION]


def _error(status: int, message: str) -> Response:
    return Response(
        json.dumps({"error": message}),
        status=status,
        mimetype="application/json",
    )


@sso_bp.route("/sso/providers", methods=["GET"])
def list_providers() -> dict[str, list[dict[str, str]]]:
    """List enabled SSO providers for the login page."""
    return {"providers": [provider_summary(p) for p in get_registry().list_enabled()]}


@sso_bp.route("/sso/initiate", methods=["POST"])
def initiate() -> dict[str, str] | Response:
    """Start SP-initiated SSO and return the IdP redirect URL."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _error(400, "Invalid request")

    provider_name = data.get("provider_name")
    if not provider_name or not isinstance(provider_name, str):
        return _error(400, "provider_name is required")

    state = secrets.token_urlsafe(32)
    try:
        provider = get_registry().get_enabled(provider_name)
        redirect_url = provider.generate_auth_url(state)
    except SSOError as e:
        logger.warning(f"SSO initiate failed for provider {provider_name}: {e}")
        return _error(400, "Failed to initiate SSO")

    return {"redirect_url": redirect_url}


@sso_bp.route("/saml/metadata", methods=["GET"])
def saml_metadata() -> Response:
    """Serve the SP metadata document."""
    provider_name = request.args.get("provider") or current_app.config["SAML_PROVIDER_NAME"]
    try:
        metadata_xml = get_registry().get(provider_name).publish_metadata()
    except NotEnabledError:
        return _error(404, "Provider not found")

    return Response(metadata_xml, status=200, mimetype="application/xml")


@sso_bp.route("/saml/acs", methods=["POST"])
def saml_acs() -> WerkzeugResponse:
    """Assertion Consumer Service - handles the SAML Response from the IdP."""
    saml_response = request.form.get("SAMLResponse")
    relay_state = request.form.get("RelayState", "")

    if not saml_response:
        return _error(400, "Missing SAMLResponse parameter")

    provider_name = current_app.config["SAML_PROVIDER_NAME"]
    try:
        identity = get_registry().get(provider_name).authenticate(saml_response, relay_state)
    except InactiveUserError as e:
        logger.error(f"SSO assert failed: {e}")
        return _error(401, "user is inactive")
    except SSOError as e:
        logger.error(f"SSO assert failed: {e}")
        return _error(401, "SSO authentication failed")

    session[SSO_IDENTITY_KEY] = identity.to_dict()
    frontend_url = current_app.config["FRONTEND_URL"].rstrip("/")
    return redirect(f"{frontend_url}/auth/saml/success", code=302)
