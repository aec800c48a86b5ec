"""Key and certificate handling for SAML signing."""

from ssogate.core.crypto.certs import (
    CertificateInfo,
    KeyMaterial,
    ensure_key_material,
    generate_key_material,
    generate_private_key,
    generate_self_signed_certificate,
    get_certificate_info,
    get_certificate_pem,
    get_private_key_pem,
    load_certificate,
    load_private_key,
    save_certificate,
    save_private_key,
)

__all__ = [
    "CertificateInfo",
    "KeyMaterial",
    "ensure_key_material",
    "generate_key_material",
    "generate_private_key",
    "generate_self_signed_certificate",
    "get_certificate_info",
    "get_certificate_pem",
    "get_private_key_pem",
    "load_certificate",
    "load_private_key",
    "save_certificate",
    "save_private_key",
]
