"""SAML signing key material management.

Loads the Service Provider's RSA key pair and X.509 certificate from PEM
files, or generates a self-signed pair and persists it without overwriting
anything that already exists on disk.
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from ssogate.core.errors import KeyMaterialError

if TYPE_CHECKING:
    from ssogate.core.config import SAMLSettings

logger = logging.getLogger(__name__)

# Subject of generated SP certificates
DEFAULT_COMMON_NAME = "ssogate"
DEFAULT_ORGANIZATION = "ssogate"

# Generated certificates are backdated to tolerate clock drift
CERT_BACKDATE = timedelta(hours=1)
CERT_VALIDITY = timedelta(days=365)


@dataclass(frozen=True)
class KeyMaterial:
    """An RSA key pair and the certificate wrapping its public half."""

    private_key: rsa.RSAPrivateKey
    certificate: x509.Certificate

    @property
    def certificate_pem(self) -> str:
        return get_certificate_pem(self.certificate)

    @property
    def certificate_base64(self) -> str:
        """Certificate DER as bare base64, as embedded in SAML metadata."""
        lines = self.certificate_pem.strip().splitlines()
        return "".join(line for line in lines if not line.startswith("-----"))


@dataclass
class CertificateInfo:
    """Information extracted from an X.509 certificate."""

    subject: str
    issuer: str
    serial_number: str
    not_before: datetime
    not_after: datetime
    fingerprint_sha256: str
    is_self_signed: bool
    key_type: str
    key_size: int


def generate_private_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """Generate an RSA private key.

    Args:
        key_size: RSA key size in bits. Default 2048.

    Returns:
        RSA private key.
    """
    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )


def generate_self_signed_certificate(
    private_key: rsa.RSAPrivateKey,
    common_name: str = DEFAULT_COMMON_NAME,
    organization: str = DEFAULT_ORGANIZATION,
    now: datetime | None = None,
) -> x509.Certificate:
    """Generate a self-signed SAML signing certificate.

    The certificate is valid from one hour before ``now`` until 365 days
    after it.

    Args:
        private_key: RSA private key to sign the certificate.
        common_name: Common Name (CN) for the certificate subject.
        organization: Organization (O) for the certificate subject.
        now: Reference time. Defaults to the current time.

    Returns:
        Self-signed X.509 certificate.
    """
    subject = issuer = x509.Name([
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
    ])

    now = now or datetime.now(UTC)

    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - CERT_BACKDATE)
        .not_valid_after(now + CERT_VALIDITY)
        .add_extension(
            x509.BasicConstraints(ca=False, path_length=None),
            critical=True,
        )
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_encipherment=True,
                content_commitment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .sign(private_key, hashes.SHA256())
    )


def _write_new_file(path: Path, data: bytes, mode: int) -> bool:
    """Write ``data`` to ``path`` only if the file does not exist yet.

    Returns:
        True if the file was written, False if it already existed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
    except FileExistsError:
        return False
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    return True


def save_private_key(private_key: rsa.RSAPrivateKey, path: Path) -> bool:
    """Save a private key as PKCS#8 PEM with owner-only permissions.

    Existing files are left untouched.

    Returns:
        True if the key was written.
    """
    pem_data = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return _write_new_file(path, pem_data, stat.S_IRUSR | stat.S_IWUSR)


def save_certificate(cert: x509.Certificate, path: Path) -> bool:
    """Save a certificate as PEM. Existing files are left untouched.

    Returns:
        True if the certificate was written.
    """
    pem_data = cert.public_bytes(serialization.Encoding.PEM)
    return _write_new_file(path, pem_data, 0o644)


def load_private_key(path: Path) -> rsa.RSAPrivateKey:
    """Load an RSA private key from a PKCS#1 or PKCS#8 PEM file.

    Args:
        path: Path to the key file.

    Returns:
        RSA private key.

    Raises:
        KeyMaterialError: If the file is missing, cannot be decoded, or does
            not hold an RSA key.
    """
    try:
        pem_data = path.read_bytes()
    except OSError as e:
        raise KeyMaterialError(f"Failed to read private key file {path}: {e}") from e

    try:
        key = serialization.load_pem_private_key(pem_data, password=None)
    except (ValueError, TypeError) as e:
        raise KeyMaterialError(f"Failed to decode private key PEM {path}: {e}") from e

    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyMaterialError(
            f"Unsupported private key format in {path}: expected RSA, got {type(key).__name__}"
        )
    return key


def load_certificate(path: Path) -> x509.Certificate:
    """Load a certificate from a PEM file.

    Raises:
        KeyMaterialError: If the file is missing or cannot be decoded.
    """
    try:
        pem_data = path.read_bytes()
    except OSError as e:
        raise KeyMaterialError(f"Failed to read certificate file {path}: {e}") from e

    try:
        return x509.load_pem_x509_certificate(pem_data)
    except ValueError as e:
        raise KeyMaterialError(f"Failed to decode certificate PEM {path}: {e}") from e


def generate_key_material(
    cert_path: Path | None = None,
    key_path: Path | None = None,
) -> KeyMaterial:
    """Generate a self-signed key pair and persist it where files are missing.

    Args:
        cert_path: Where to write the certificate, if anywhere.
        key_path: Where to write the private key, if anywhere.

    Returns:
        The generated KeyMaterial.
    """
    private_key = generate_private_key()
    certificate = generate_self_signed_certificate(private_key)

    try:
        if cert_path and save_certificate(certificate, cert_path):
            logger.info(f"Wrote SAML certificate to {cert_path}")
        if key_path and save_private_key(private_key, key_path):
            logger.info(f"Wrote SAML private key to {key_path}")
    except OSError as e:
        raise KeyMaterialError(f"Failed to store SAML key pair: {e}") from e

    return KeyMaterial(private_key=private_key, certificate=certificate)


def ensure_key_material(settings: SAMLSettings) -> KeyMaterial:
    """Load or create the SP signing key material described by ``settings``.

    1. With ``create_certs`` set and no file at ``certificate_path``, a new
       self-signed pair is generated and written (existing files are never
       overwritten).
    2. Certificate and key are loaded from their configured paths. Only
       one of the two being present is an error, as is a configured path
       with no file behind it.
    3. With no paths configured at all, an ephemeral self-signed pair is
       generated in memory and nothing is written.

    Raises:
        KeyMaterialError: If configured files are missing or cannot be
            decoded, hold an unsupported key, or the certificate does not
            match the key.
    """
    cert_path = settings.certificate_path
    key_path = settings.private_key_path

    if cert_path is None and key_path is None:
        logger.warning("Generating ephemeral self-signed certificate for SAML provider")
        return generate_key_material()

    if settings.create_certs and cert_path and not cert_path.exists():
        logger.info(f"Generating SAML key pair: no certificate at {cert_path}")
        generate_key_material(cert_path, key_path)

    certificate = load_certificate(cert_path) if cert_path and cert_path.exists() else None
    private_key = load_private_key(key_path) if key_path and key_path.exists() else None

    if certificate is None and private_key is None:
        raise KeyMaterialError(
            f"SAML key pair not found: certificate={cert_path} private_key={key_path}"
            " (set create_certs to generate one)"
        )

    if certificate is None or private_key is None:
        raise KeyMaterialError(
            f"Incomplete SAML key pair: certificate={cert_path} private_key={key_path}"
        )

    if certificate.public_key().public_numbers() != private_key.public_key().public_numbers():
        raise KeyMaterialError(
            f"Certificate {cert_path} does not match private key {key_path}"
        )

    return KeyMaterial(private_key=private_key, certificate=certificate)


def get_certificate_info(cert: x509.Certificate) -> CertificateInfo:
    """Extract information from an X.509 certificate.

    Args:
        cert: X.509 certificate.

    Returns:
        CertificateInfo with extracted details.
    """
    public_key = cert.public_key()
    if isinstance(public_key, rsa.RSAPublicKey):
        key_type = "RSA"
        key_size = public_key.key_size
    else:
        key_type = type(public_key).__name__
        key_size = 0

    return CertificateInfo(
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        serial_number=format(cert.serial_number, "x"),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        fingerprint_sha256=cert.fingerprint(hashes.SHA256()).hex(),
        is_self_signed=cert.subject == cert.issuer,
        key_type=key_type,
        key_size=key_size,
    )


def get_private_key_pem(private_key: rsa.RSAPrivateKey) -> str:
    """Get the unencrypted PKCS#8 PEM string of a private key."""
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


def get_certificate_pem(cert: x509.Certificate) -> str:
    """Get PEM-encoded string of a certificate."""
    return cert.public_bytes(serialization.Encoding.PEM).decode("utf-8")
