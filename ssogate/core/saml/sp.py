"""SAML Service Provider messages.

Builds AuthnRequests for the HTTP-Redirect binding (signed with the SP key
over the query string) and the SP metadata document the IdP consumes.
"""

from __future__ import annotations

import base64
import secrets
import zlib
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode, urlparse, urlunparse

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from lxml import etree

from ssogate.core.crypto.certs import KeyMaterial
from ssogate.core.saml.utils import (
    BINDING_HTTP_POST,
    DSIG_NS,
    MD_NS,
    NAMEID_FORMAT_UNSPECIFIED,
    SAML_NS,
    SAMLP_NS,
    SIG_ALG_RSA_SHA256,
    format_instant,
    qname,
)

# Endpoint paths under the public root URL
METADATA_PATH = "/api/v1/auth/saml/metadata"
ACS_PATH = "/api/v1/auth/saml/acs"

# How long published SP metadata stays valid
METADATA_VALID_DURATION = timedelta(hours=24)


def generate_request_id() -> str:
    """Generate an AuthnRequest ID (must start with a letter to be an xs:ID)."""
    return f"id-{secrets.token_hex(20)}"


@dataclass
class SAMLRequest:
    """Represents a SAML AuthnRequest."""

    id: str
    issue_instant: str
    issuer: str
    destination: str
    acs_url: str
    name_id_policy_format: str = NAMEID_FORMAT_UNSPECIFIED

    def to_element(self) -> etree._Element:
        """Build the AuthnRequest element."""
        request = etree.Element(
            qname(SAMLP_NS, "AuthnRequest"),
            nsmap={"samlp": SAMLP_NS, "saml": SAML_NS},
        )
        request.set("ID", self.id)
        request.set("Version", "2.0")
        request.set("IssueInstant", self.issue_instant)
        request.set("Destination", self.destination)
        request.set("AssertionConsumerServiceURL", self.acs_url)
        request.set("ProtocolBinding", BINDING_HTTP_POST)

        issuer = etree.SubElement(request, qname(SAML_NS, "Issuer"))
        issuer.text = self.issuer

        policy = etree.SubElement(request, qname(SAMLP_NS, "NameIDPolicy"))
        policy.set("Format", self.name_id_policy_format)
        policy.set("AllowCreate", "true")
        return request

    def to_xml(self) -> str:
        """Generate the AuthnRequest XML."""
        return etree.tostring(self.to_element(), encoding="unicode")

    def encode_redirect(self) -> str:
        """Encode request for HTTP-Redirect binding (raw deflate + base64)."""
        xml_bytes = self.to_xml().encode("utf-8")
        # Strip the 2-byte zlib header and 4-byte checksum to get raw DEFLATE
        compressed = zlib.compress(xml_bytes)[2:-4]
        return base64.b64encode(compressed).decode("ascii")


class ServiceProvider:
    """The SP side of the SAML exchange.

    Derives its entity ID, ACS URL, and metadata URL from the public root
    URL, and signs outgoing requests with its key material.
    """

    def __init__(self, public_root_url: str, key_material: KeyMaterial) -> None:
        """Initialize the Service Provider.

        Args:
            public_root_url: Public base URL of this service.
            key_material: SP signing key and certificate.
        """
        self.base_url = public_root_url.rstrip("/")
        self.key_material = key_material

    @property
    def metadata_url(self) -> str:
        return f"{self.base_url}{METADATA_PATH}"

    @property
    def entity_id(self) -> str:
        """The SP entity ID; equal to the metadata URL."""
        return self.metadata_url

    @property
    def acs_url(self) -> str:
        return f"{self.base_url}{ACS_PATH}"

    def create_authn_request(self, destination: str) -> SAMLRequest:
        """Create an AuthnRequest addressed to ``destination``."""
        return SAMLRequest(
            id=generate_request_id(),
            issue_instant=format_instant(datetime.now(UTC)),
            issuer=self.entity_id,
            destination=destination,
            acs_url=self.acs_url,
        )

    def sign_redirect_query(self, params: list[tuple[str, str]]) -> str:
        """Sign HTTP-Redirect query parameters.

        Appends ``SigAlg`` and computes ``Signature`` over the URL-encoded
        ``SAMLRequest=...&RelayState=...&SigAlg=...`` octet string.

        Returns:
            The complete, signed query string.
        """
        params = [*params, ("SigAlg", SIG_ALG_RSA_SHA256)]
        signed_octets = urlencode(params).encode("ascii")
        signature = self.key_material.private_key.sign(
            signed_octets,
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
        params.append(("Signature", base64.b64encode(signature).decode("ascii")))
        return urlencode(params)

    def build_redirect_url(self, request: SAMLRequest, relay_state: str) -> str:
        """Build the signed SSO redirect URL for ``request``.

        Query parameters already present on the IdP endpoint are preserved.
        """
        params = [("SAMLRequest", request.encode_redirect())]
        if relay_state:
            params.append(("RelayState", relay_state))
        query = self.sign_redirect_query(params)

        parsed = urlparse(request.destination)
        if parsed.query:
            query = f"{parsed.query}&{query}"
        return urlunparse(parsed._replace(query=query))

    def metadata_xml(self, now: datetime | None = None) -> bytes:
        """Serialize the SP entity descriptor for the IdP.

        Returns:
            UTF-8 encoded XML document.
        """
        now = now or datetime.now(UTC)

        descriptor = etree.Element(
            qname(MD_NS, "EntityDescriptor"),
            nsmap={"md": MD_NS, "ds": DSIG_NS},
        )
        descriptor.set("entityID", self.entity_id)
        descriptor.set("validUntil", format_instant(now + METADATA_VALID_DURATION))

        sp_descriptor = etree.SubElement(descriptor, qname(MD_NS, "SPSSODescriptor"))
        sp_descriptor.set("AuthnRequestsSigned", "true")
        sp_descriptor.set("WantAssertionsSigned", "true")
        sp_descriptor.set("protocolSupportEnumeration", SAMLP_NS)

        key_descriptor = etree.SubElement(sp_descriptor, qname(MD_NS, "KeyDescriptor"))
        key_descriptor.set("use", "signing")
        key_info = etree.SubElement(key_descriptor, qname(DSIG_NS, "KeyInfo"))
        x509_data = etree.SubElement(key_info, qname(DSIG_NS, "X509Data"))
        x509_cert = etree.SubElement(x509_data, qname(DSIG_NS, "X509Certificate"))
        x509_cert.text = self.key_material.certificate_base64

        name_id_format = etree.SubElement(sp_descriptor, qname(MD_NS, "NameIDFormat"))
        name_id_format.text = NAMEID_FORMAT_UNSPECIFIED

        acs = etree.SubElement(sp_descriptor, qname(MD_NS, "AssertionConsumerService"))
        acs.set("Binding", BINDING_HTTP_POST)
        acs.set("Location", self.acs_url)
        acs.set("index", "1")
        acs.set("isDefault", "true")

        return etree.tostring(
            descriptor,
            xml_declaration=True,
            encoding="UTF-8",
            pretty_print=True,
        )
