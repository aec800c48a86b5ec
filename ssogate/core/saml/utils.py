"""SAML utility functions and protocol constants."""

from __future__ import annotations

from datetime import UTC, datetime

from lxml import etree

# SAML namespaces
SAML_NS = "urn:oasis:names:tc:SAML:2.0:assertion"
SAMLP_NS = "urn:oasis:names:tc:SAML:2.0:protocol"
MD_NS = "urn:oasis:names:tc:SAML:2.0:metadata"
DSIG_NS = "http://www.w3.org/2000/09/xmldsig#"

NAMESPACES = {
    "saml": SAML_NS,
    "samlp": SAMLP_NS,
    "md": MD_NS,
    "ds": DSIG_NS,
}

# Bindings
BINDING_HTTP_REDIRECT = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect"
BINDING_HTTP_POST = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST"

# Status and confirmation methods
STATUS_SUCCESS = "urn:oasis:names:tc:SAML:2.0:status:Success"
CM_BEARER = "urn:oasis:names:tc:SAML:2.0:cm:bearer"

NAMEID_FORMAT_UNSPECIFIED = "urn:oasis:names:tc:SAML:1.1:nameid-format:unspecified"

# Signature algorithm for HTTP-Redirect query signing
SIG_ALG_RSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256"


def _safe_parser() -> etree.XMLParser:
    # lxml parser objects must not be shared between threads
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        remove_comments=True,
        huge_tree=False,
    )


def parse_xml(data: bytes | str) -> etree._Element:
    """Parse untrusted XML without entity expansion or network access.

    Raises:
        etree.XMLSyntaxError: If the document is not well-formed.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return etree.fromstring(data, parser=_safe_parser())


def qname(namespace: str, tag: str) -> str:
    """Build a Clark-notation tag name, e.g. ``{urn:...}Assertion``."""
    return f"{{{namespace}}}{tag}"


def format_instant(moment: datetime) -> str:
    """Format a datetime as a SAML ``xs:dateTime`` in UTC."""
    return moment.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_instant(value: str) -> datetime:
    """Parse a SAML ``xs:dateTime`` value into an aware datetime.

    Raises:
        ValueError: If the value is not a valid timestamp.
    """
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
