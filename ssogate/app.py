"""Flask application factory."""

from __future__ import annotations

import logging
import os
import secrets
from typing import TYPE_CHECKING, Any

from flask import Flask

from ssogate.core.config import DEFAULT_CONFIG_DIR, DEFAULT_SAML_PROVIDER_NAME, ENV_PREFIX
from ssogate.core.providers import ProviderRegistry

if TYPE_CHECKING:
    import httpx

    from ssogate.core.config import AppConfig
    from ssogate.core.identity import UserRepository

logger = logging.getLogger(__name__)


def _load_secret_key() -> str:
    """Get the session secret from the environment or a persistent key file."""
    secret_key = os.environ.get(f"{ENV_PREFIX}SECRET_KEY")
    if secret_key:
        return secret_key

    key_path = DEFAULT_CONFIG_DIR / "flask_secret.key"
    if key_path.exists():
        return key_path.read_text().strip()

    secret_key = secrets.token_hex(32)
    key_path.parent.mkdir(parents=True, exist_ok=True)
    key_path.write_text(secret_key)
    key_path.chmod(0o600)
    return secret_key


def create_app(
    config: dict[str, Any] | None = None,
    registry: ProviderRegistry | None = None,
) -> Flask:
    """Create and configure the Flask application.

    Args:
        config: Optional configuration dictionary to override defaults.
        registry: SSO providers to serve. An empty registry is used if omitted.

    Returns:
        Configured Flask application instance.
    """
    app = Flask(__name__)

    app.config.from_mapping(
        FRONTEND_URL="",
        SAML_PROVIDER_NAME=DEFAULT_SAML_PROVIDER_NAME,
    )

    if config:
        app.config.from_mapping(config)

    if not app.config.get("SECRET_KEY"):
        app.config["SECRET_KEY"] = _load_secret_key()

    from ssogate.web.routes.sso import REGISTRY_EXTENSION

    app.extensions[REGISTRY_EXTENSION] = registry if registry is not None else ProviderRegistry()

    from ssogate.web import routes

    routes.init_app(app)

    return app


def build_registry(
    app_config: AppConfig,
    users: UserRepository,
    transport: httpx.BaseTransport | None = None,
) -> ProviderRegistry:
    """Construct the configured SSO providers.

    Providers that fail to initialize are logged and left out.
    """
    from ssogate.core.saml.provider import SAMLProvider

    registry = ProviderRegistry()
    SAMLProvider.from_settings(app_config.saml, users, registry=registry, transport=transport)
    return registry


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
    from ssogate.core.config import load_config
    from ssogate.core.logging import configure_logging
    from ssogate.storage.database import Database
    from ssogate.storage.users import SQLAlchemyUserRepository

    if app_config is None:
        app_config = load_config()

    configure_logging(
        level=app_config.logging.level,
        trace_enabled=app_config.logging.trace_enabled,
        log_file=app_config.logging.file,
    )

    # Initialize database (ensures tables exist)
    db = Database(db_path=app_config.database.path)
    db.init_db()
    users = SQLAlchemyUserRepository(
        db, activate_external_users=app_config.users.activate_external_users
    )

    registry = build_registry(app_config, users)
    if not registry.list_enabled():
        logger.warning("No SSO provider is enabled")

    server_host = host or app_config.server.host
    server_port = port or app_config.server.port

    app_settings: dict[str, Any] = {
        "FRONTEND_URL": app_config.server.frontend_url,
        "SAML_PROVIDER_NAME": app_config.saml.name,
    }
    if app_config.server.secret_key:
        app_settings["SECRET_KEY"] = app_config.server.secret_key

    app = create_app(app_settings, registry=registry)
    app.debug = app_config.server.debug

    print("Starting ssogate server...")
    print(f"  URL: http://{server_host}:{server_port}")
    print("")

    app.run(host=server_host, port=server_port)
