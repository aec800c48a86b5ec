"""CLI entry point for ssogate."""

import click

from ssogate import __version__
from ssogate.cli import certs as certs_commands
from ssogate.cli import saml as saml_commands
from ssogate.cli import serve as serve_commands


@click.group()
@click.version_option(version=__version__, prog_name="ssogate")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """ssogate - SAML single sign-on for the management service."""
    ctx.ensure_object(dict)


@cli.command()
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite an existing config file.",
)
def init(force: bool) -> None:
    """Initialize ssogate configuration and database.

    Writes a commented config.yaml (unless one exists) and creates the
    user database.
    """
    from sqlalchemy.exc import SQLAlchemyError

    from ssogate.core.config import get_config_path, get_default_config_yaml, load_config
    from ssogate.storage import Database, DatabaseError

    config = load_config()
    config_path = config.config_path or get_config_path()

    if config_path.exists() and not force:
        click.echo(f"Config file already exists: {config_path}")
    else:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(get_default_config_yaml())
        click.echo(f"Wrote config file: {config_path}")

    db_path = config.database.path
    click.echo(f"Creating database at: {db_path}")
    try:
        database = Database(db_path=db_path)
        database.init_db()
        database.verify_connection()
        database.close()
    except (DatabaseError, SQLAlchemyError) as e:
        raise click.ClickException(str(e)) from None

    click.echo("")
    click.echo("ssogate initialized successfully!")
    click.echo("")
    click.echo("Next steps:")
    click.echo(f"  1. Fill in the saml section of {config_path}")
    click.echo("  2. Run 'ssogate saml metadata' and register the SP with your IdP")
    click.echo("  3. Run 'ssogate serve'")


cli.add_command(certs_commands.certs)
cli.add_command(saml_commands.saml)
cli.add_command(serve_commands.serve)
