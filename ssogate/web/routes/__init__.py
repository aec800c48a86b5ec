"""Web routes for ssogate."""

from flask import Blueprint, Flask

main_bp = Blueprint("main", __name__)


@main_bp.route("/health")
def health() -> dict[str, str]:
    """Health check endpoint (unauthenticated)."""
    return {"status": "healthy"}


def init_app(app: Flask) -> None:
    """Register blueprints with the Flask app."""
    from ssogate.web.routes.sso import sso_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(sso_bp)
