"""Server CLI commands."""

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
    help="Port to bind to (default: from config or 8080)",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug mode",
)
def serve(host: str | None, port: int | None, debug: bool) -> None:
    """Start the ssogate web server.

    The SAML provider is built from config.yaml at startup; if it fails to
    initialize the server still starts with SSO disabled.

    Examples:

        # Start with settings from config.yaml
        ssogate serve

        # Start on custom port
        ssogate serve --port 9000
    """
    from ssogate.app import run_server
    from ssogate.core.config import load_config

    config = load_config()

    if debug:
        config.server.debug = True
        config.logging.level = "DEBUG"

    run_server(app_config=config, host=host, port=port)
