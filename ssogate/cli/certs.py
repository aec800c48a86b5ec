"""SAML signing certificate CLI commands."""

from pathlib import Path
from typing import TYPE_CHECKING

import click

if TYPE_CHECKING:
    from ssogate.core.crypto import CertificateInfo


@click.group()
def certs() -> None:
    """Manage the SAML signing certificate and key.

    The Service Provider signs its AuthnRequests with this key pair and
    publishes the certificate in its metadata.
    """
    pass


def _configured_paths(output: Path | None) -> tuple[Path, Path]:
    """Resolve certificate and key paths from --output or the config file."""
    from ssogate.core.config import DEFAULT_CERT_DIR, load_config

    if output is not None:
        return output / "signing.crt", output / "signing.key"

    saml = load_config().saml
    cert_path = saml.certificate_path or DEFAULT_CERT_DIR / "signing.crt"
    key_path = saml.private_key_path or DEFAULT_CERT_DIR / "signing.key"
    return cert_path, key_path


def _echo_info(info: "CertificateInfo") -> None:
    click.echo("Certificate details:")
    click.echo(f"  Subject: {info.subject}")
    click.echo(f"  Valid from: {info.not_before.strftime('%Y-%m-%d %H:%M:%S UTC')}")
    click.echo(f"  Valid until: {info.not_after.strftime('%Y-%m-%d %H:%M:%S UTC')}")
    click.echo(f"  Key: {info.key_type} {info.key_size} bits")
    click.echo(f"  Fingerprint (SHA-256): {info.fingerprint_sha256}")


@certs.command("generate")
@click.option(
    "--common-name",
    "-cn",
    default="ssogate",
    help="Common Name (CN) for the certificate",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),  # type: ignore[type-var]
    help="Output directory (default: paths from config.yaml)",
)
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Replace existing certificate files",
)
def certs_generate(common_name: str, output: Path | None, force: bool) -> None:
    """Generate a new self-signed SAML signing certificate.

    Creates an RSA-2048 key pair and a certificate valid for 365 days.

    Examples:

        # Generate at the configured paths
        ssogate certs generate

        # Generate to a specific directory
        ssogate certs generate --output /path/to/certs
    """
    from ssogate.core.crypto import (
        generate_private_key,
        generate_self_signed_certificate,
        get_certificate_info,
        save_certificate,
        save_private_key,
    )

    cert_path, key_path = _configured_paths(output)

    if cert_path.exists() or key_path.exists():
        if not force:
            raise click.ClickException(
                f"Certificate files already exist ({cert_path}, {key_path}). "
                "Use --force to replace them."
            )
        cert_path.unlink(missing_ok=True)
        key_path.unlink(missing_ok=True)

    private_key = generate_private_key()
    cert = generate_self_signed_certificate(private_key, common_name=common_name)

    try:
        save_private_key(private_key, key_path)
        save_certificate(cert, cert_path)
    except OSError as e:
        raise click.ClickException(f"Failed to write certificate files: {e}") from None

    click.echo("Certificate generated successfully!")
    click.echo("")
    click.echo("Files created:")
    click.echo(f"  Certificate: {cert_path}")
    click.echo(f"  Private key: {key_path}")
    click.echo("")
    _echo_info(get_certificate_info(cert))


@certs.command("show")
@click.argument(
    "cert_path",
    required=False,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),  # type: ignore[type-var]
)
def certs_show(cert_path: Path | None) -> None:
    """Show details of the SAML signing certificate.

    Without CERT_PATH the configured certificate is shown.
    """
    from ssogate.core.crypto import get_certificate_info, load_certificate
    from ssogate.core.errors import KeyMaterialError

    if cert_path is None:
        cert_path, _ = _configured_paths(None)
        if not cert_path.exists():
            raise click.ClickException(
                f"No certificate at {cert_path}. Run 'ssogate certs generate' first."
            )

    try:
        cert = load_certificate(cert_path)
    except KeyMaterialError as e:
        raise click.ClickException(str(e)) from None

    info = get_certificate_info(cert)
    click.echo(f"Certificate: {cert_path}")
    click.echo(f"  Issuer: {info.issuer}")
    click.echo(f"  Self-signed: {info.is_self_signed}")
    click.echo(f"  Serial Number: {info.serial_number}")
    _echo_info(info)
