"""SAML CLI commands."""

from pathlib import Path

import click


@click.group()
def saml() -> None:
    """Inspect SAML metadata."""
    pass


@saml.command("metadata")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),  # type: ignore[type-var]
    help="Write metadata to a file instead of stdout",
)
def saml_metadata(output: Path | None) -> None:
    """Print the Service Provider metadata for the configured provider.

    Hand this document to the IdP administrator. Key material is loaded
    (or generated) exactly as the server would do it.
    """
    from ssogate.core.config import load_config
    from ssogate.core.crypto import ensure_key_material
    from ssogate.core.errors import KeyMaterialError
    from ssogate.core.saml.metadata import is_valid_url
    from ssogate.core.saml.sp import ServiceProvider

    settings = load_config().saml
    if not is_valid_url(settings.public_root_url):
        raise click.ClickException(
            f"saml.public_root_url is not a valid URL: {settings.public_root_url!r}"
        )

    try:
        key_material = ensure_key_material(settings)
    except KeyMaterialError as e:
        raise click.ClickException(str(e)) from None

    metadata_xml = ServiceProvider(settings.public_root_url, key_material).metadata_xml()

    if output:
        output.write_bytes(metadata_xml)
        click.echo(f"SP metadata written to {output}")
    else:
        click.echo(metadata_xml.decode("utf-8"), nl=False)


@saml.command("idp-metadata")
@click.argument("url")
@click.option(
    "--insecure",
    "-k",
    is_flag=True,
    help="Skip TLS certificate verification",
)
@click.option(
    "--timeout",
    type=float,
    default=30.0,
    show_default=True,
    help="Request timeout in seconds",
)
def saml_idp_metadata(url: str, insecure: bool, timeout: float) -> None:
    """Fetch IdP metadata from URL and summarise what would be trusted."""
    from ssogate.core.crypto import get_certificate_info
    from ssogate.core.errors import TrustResolutionError
    from ssogate.core.saml.metadata import fetch_trust_metadata

    try:
        metadata = fetch_trust_metadata(url, timeout=timeout, verify_ssl=not insecure)
    except TrustResolutionError as e:
        raise click.ClickException(str(e)) from None

    click.echo(f"Entity ID: {metadata.entity_id}")
    click.echo(f"Wants signed AuthnRequests: {metadata.want_authn_requests_signed}")
    click.echo("")
    click.echo("SSO endpoints:")
    for endpoint in metadata.sso_endpoints:
        click.echo(f"  {endpoint.binding}")
        click.echo(f"    {endpoint.location}")

    click.echo("")
    if not metadata.signing_certificates:
        click.echo(click.style("No signing certificates found", fg="red"))
        return

    from cryptography import x509

    click.echo("Signing certificates:")
    for cert_pem in metadata.signing_certificates:
        try:
            cert = x509.load_pem_x509_certificate(cert_pem.encode("ascii"))
        except ValueError:
            click.echo(click.style("  (could not decode certificate)", fg="red"))
            continue
        info = get_certificate_info(cert)
        click.echo(f"  Subject: {info.subject}")
        click.echo(f"    Expires: {info.not_after.strftime('%Y-%m-%d')}")
        click.echo(f"    SHA-256: {info.fingerprint_sha256}")
