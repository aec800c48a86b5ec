"""SAML signature verification.

Verifies the XML signature of a SAML Response (or of its Assertion)
against the IdP's trusted signing certificates and hands back the element
that the signature actually covers. Only that element may be trusted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from lxml import etree
from signxml import XMLVerifier
from signxml.exceptions import InvalidSignature

from ssogate.core.saml.utils import DSIG_NS, NAMESPACES, SAML_NS, SAMLP_NS, parse_xml, qname


class SignatureLocation(StrEnum):
    """Where the signature was found in the SAML document."""

    RESPONSE = "response"
    ASSERTION = "assertion"


class SignatureStatus(StrEnum):
    """Result of signature validation."""

    VALID = "valid"
    INVALID = "invalid"
    MISSING = "missing"
    NO_CERTIFICATE = "no_certificate"


# Mapping of signature algorithm URIs to friendly names
SIGNATURE_ALGORITHMS: dict[str, str] = {
    "http://www.w3.org/2000/09/xmldsig#rsa-sha1": "RSA-SHA1",
    "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256": "RSA-SHA256",
    "http://www.w3.org/2001/04/xmldsig-more#rsa-sha384": "RSA-SHA384",
    "http://www.w3.org/2001/04/xmldsig-more#rsa-sha512": "RSA-SHA512",
    "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha256": "ECDSA-SHA256",
    "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha384": "ECDSA-SHA384",
    "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha512": "ECDSA-SHA512",
}


@dataclass
class SignatureInfo:
    """Information about a signature in the SAML document."""

    location: SignatureLocation
    signature_algorithm: str | None = None
    signature_algorithm_name: str | None = None
    reference_uri: str | None = None


@dataclass
class SignatureValidationResult:
    """Result of SAML signature validation.

    Attributes:
        signed_element: The element covered by the verified signature
            (a Response or an Assertion), parsed from the verifier's output.
        certificate_index: Which trusted certificate verified the signature.
        trace: Step-by-step notes for operator diagnosis.
    """

    status: SignatureStatus
    message: str
    signatures: list[SignatureInfo] = field(default_factory=list)
    signed_element: etree._Element | None = None
    certificate_index: int | None = None
    trace: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.status == SignatureStatus.VALID

    def add_trace(self, message: str) -> None:
        self.trace.append(message)


def _find_signatures(doc: etree._Element) -> list[tuple[etree._Element, SignatureLocation]]:
    """Find Signature elements on the Response and its direct Assertions."""
    signatures: list[tuple[etree._Element, SignatureLocation]] = []

    for sig in doc.findall(qname(DSIG_NS, "Signature")):
        signatures.append((sig, SignatureLocation.RESPONSE))

    for assertion in doc.findall(qname(SAML_NS, "Assertion")):
        for sig in assertion.findall(qname(DSIG_NS, "Signature")):
            signatures.append((sig, SignatureLocation.ASSERTION))

    return signatures


def _extract_signature_info(sig_elem: etree._Element, location: SignatureLocation) -> SignatureInfo:
    info = SignatureInfo(location=location)
    sig_method = sig_elem.find("ds:SignedInfo/ds:SignatureMethod", NAMESPACES)
    if sig_method is not None:
        algo = sig_method.get("Algorithm")
        info.signature_algorithm = algo
        info.signature_algorithm_name = SIGNATURE_ALGORITHMS.get(algo or "", algo)
    reference = sig_elem.find("ds:SignedInfo/ds:Reference", NAMESPACES)
    if reference is not None:
        info.reference_uri = reference.get("URI")
    return info


def _is_expected_signed_element(doc: etree._Element, signed: etree._Element) -> bool:
    """Check the signature covers the Response itself or one of its Assertions.

    Guards against a valid signature over some unrelated element being
    wrapped into the response.
    """
    signed_id = signed.get("ID")
    if not signed_id:
        return False
    if signed.tag == qname(SAMLP_NS, "Response"):
        return doc.tag == signed.tag and doc.get("ID") == signed_id
    if signed.tag == qname(SAML_NS, "Assertion"):
        return any(a.get("ID") == signed_id for a in doc.findall(qname(SAML_NS, "Assertion")))
    return False


def verify_signature(doc: etree._Element, certificates: tuple[str, ...] | list[str]) -> SignatureValidationResult:
    """Verify the signature of a parsed SAML Response.

    Each trusted certificate is tried in turn until one verifies.

    Args:
        doc: The parsed ``samlp:Response`` element.
        certificates: PEM certificates trusted to sign responses.

    Returns:
        SignatureValidationResult; ``signed_element`` is set when valid.
    """
    result = SignatureValidationResult(
        status=SignatureStatus.INVALID,
        message="Validation not completed",
    )

    signatures = _find_signatures(doc)
    if not signatures:
        result.status = SignatureStatus.MISSING
        result.message = "No signature found in SAML Response or Assertion"
        result.add_trace("No ds:Signature elements found on Response or Assertion")
        return result

    for sig_elem, location in signatures:
        info = _extract_signature_info(sig_elem, location)
        result.signatures.append(info)
        result.add_trace(
            f"Signature at {location.value}: Algorithm={info.signature_algorithm_name}, "
            f"Reference={info.reference_uri}"
        )

    if not certificates:
        result.status = SignatureStatus.NO_CERTIFICATE
        result.message = "No IdP signing certificate available to verify the signature"
        result.add_trace("Trust metadata carries no signing certificates")
        return result

    serialized = etree.tostring(doc)
    errors: list[str] = []

    for index, cert_pem in enumerate(certificates):
        try:
            verified = XMLVerifier().verify(
                serialized,
                x509_cert=cert_pem,
                ignore_ambiguous_key_info=True,
            )
        except (InvalidSignature, ValueError) as e:
            errors.append(f"certificate {index}: {e}")
            result.add_trace(f"Certificate {index} rejected the signature: {e}")
            continue

        signed_element = verified.signed_xml
        if signed_element is None or not _is_expected_signed_element(doc, signed_element):
            result.message = "Signature does not cover the Response or one of its Assertions"
            result.add_trace(result.message)
            return result

        # Re-parse so callers work on a standalone tree
        result.signed_element = parse_xml(etree.tostring(signed_element))
        result.certificate_index = index
        result.status = SignatureStatus.VALID
        result.message = "Signature validated successfully against IdP certificate"
        result.add_trace(f"Certificate {index} verified element {signed_element.tag}")
        return result

    result.message = f"Signature validation failed: {'; '.join(errors)}"
    return result
