"""IdP trust metadata resolution.

Fetches the Identity Provider's SAML metadata once, keeps the parts the
Service Provider relies on (entity ID, signing certificates, SSO endpoints)
in an immutable value, and applies the operator's SSO endpoint override.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx
from lxml import etree

from ssogate.core.errors import TrustResolutionError
from ssogate.core.logging import LoggingClient, get_protocol_logger
from ssogate.core.saml.utils import (
    BINDING_HTTP_REDIRECT,
    MD_NS,
    NAMESPACES,
    parse_xml,
    qname,
)

logger = logging.getLogger(__name__)

DEFAULT_METADATA_TIMEOUT = 30.0


@dataclass(frozen=True)
class SSOEndpoint:
    """A SingleSignOnService entry of the IdP."""

    binding: str
    location: str


@dataclass(frozen=True)
class TrustMetadata:
    """What the SP trusts about its IdP.

    Attributes:
        entity_id: The IdP entity ID; assertions must be issued by it.
        signing_certificates: PEM certificates allowed to sign responses.
        sso_endpoints: SingleSignOnService endpoints in document order.
        want_authn_requests_signed: Whether the IdP asks for signed requests.
    """

    entity_id: str
    signing_certificates: tuple[str, ...]
    sso_endpoints: tuple[SSOEndpoint, ...]
    want_authn_requests_signed: bool = False

    def sso_location(self, binding: str = BINDING_HTTP_REDIRECT) -> str | None:
        """Return the first SSO endpoint location for ``binding``."""
        for endpoint in self.sso_endpoints:
            if endpoint.binding == binding:
                return endpoint.location
        return None


def _certificate_to_pem(text: str) -> str:
    """Wrap base64 certificate content from metadata in PEM armor."""
    cert_data = "".join(text.split())
    lines = [cert_data[i : i + 64] for i in range(0, len(cert_data), 64)]
    body = "\n".join(lines)
    return f"-----BEGIN CERTIFICATE-----\n{body}\n-----END CERTIFICATE-----\n"


def parse_trust_metadata(metadata_xml: bytes | str) -> TrustMetadata:
    """Parse IdP metadata XML.

    Accepts either an ``md:EntityDescriptor`` or an ``md:EntitiesDescriptor``;
    in the latter case the first entity with an IDPSSODescriptor is used.

    Raises:
        TrustResolutionError: If the document is malformed or has no usable
            IdP descriptor.
    """
    try:
        root = parse_xml(metadata_xml)
    except etree.XMLSyntaxError as e:
        raise TrustResolutionError(f"Invalid XML in IdP metadata: {e}") from e

    if root.tag == qname(MD_NS, "EntityDescriptor"):
        candidates = [root]
    elif root.tag == qname(MD_NS, "EntitiesDescriptor"):
        candidates = root.findall(".//md:EntityDescriptor", NAMESPACES)
    else:
        raise TrustResolutionError(f"Unexpected IdP metadata root element: {root.tag}")

    for entity in candidates:
        idp_descriptor = entity.find("md:IDPSSODescriptor", NAMESPACES)
        if idp_descriptor is not None:
            break
    else:
        raise TrustResolutionError("No IDPSSODescriptor found - this may be SP metadata")

    entity_id = entity.get("entityID")
    if not entity_id:
        raise TrustResolutionError("IdP metadata has no entityID")

    certificates: list[str] = []
    for key_descriptor in idp_descriptor.findall("md:KeyDescriptor", NAMESPACES):
        # A KeyDescriptor without "use" applies to both signing and encryption
        if key_descriptor.get("use", "signing") != "signing":
            continue
        for cert_elem in key_descriptor.findall(
            "ds:KeyInfo/ds:X509Data/ds:X509Certificate", NAMESPACES
        ):
            if cert_elem.text and cert_elem.text.strip():
                certificates.append(_certificate_to_pem(cert_elem.text))

    endpoints = tuple(
        SSOEndpoint(binding=service.get("Binding", ""), location=service.get("Location", ""))
        for service in idp_descriptor.findall("md:SingleSignOnService", NAMESPACES)
        if service.get("Location")
    )

    return TrustMetadata(
        entity_id=entity_id,
        signing_certificates=tuple(certificates),
        sso_endpoints=endpoints,
        want_authn_requests_signed=idp_descriptor.get("WantAuthnRequestsSigned") == "true",
    )


def fetch_trust_metadata(
    metadata_url: str,
    timeout: float = DEFAULT_METADATA_TIMEOUT,
    verify_ssl: bool = True,
    transport: httpx.BaseTransport | None = None,
) -> TrustMetadata:
    """Fetch and parse IdP metadata from a URL.

    Args:
        metadata_url: URL to fetch SAML metadata from.
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify the server's TLS certificate.
        transport: Optional httpx transport (used by tests).

    Raises:
        TrustResolutionError: If the fetch fails or the metadata is unusable.
    """
    logger.debug(f"Fetching IdP metadata from {metadata_url}")
    protocol_logger = get_protocol_logger()
    protocol_logger.start_flow(f"saml_metadata_{id(metadata_url):x}", "saml_metadata_fetch")

    try:
        with LoggingClient(
            protocol_logger=protocol_logger,
            timeout=timeout,
            verify=verify_ssl,
            transport=transport,
        ) as client:
            response = client.get(metadata_url)
            response.raise_for_status()
            metadata_xml = response.content
    except httpx.TimeoutException as e:
        raise TrustResolutionError(f"Timeout fetching IdP metadata from {metadata_url}") from e
    except httpx.HTTPStatusError as e:
        raise TrustResolutionError(
            f"HTTP {e.response.status_code} fetching IdP metadata from {metadata_url}"
        ) from e
    except httpx.HTTPError as e:
        raise TrustResolutionError(f"Request error fetching IdP metadata: {e}") from e
    finally:
        protocol_logger.end_flow()

    metadata = parse_trust_metadata(metadata_xml)
    logger.debug(
        f"IdP metadata fetched: entity_id={metadata.entity_id} "
        f"sso_endpoints={len(metadata.sso_endpoints)} "
        f"signing_certificates={len(metadata.signing_certificates)}"
    )
    return metadata


def is_valid_url(url: str) -> bool:
    """Check that ``url`` is an absolute http(s) URL."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def apply_sso_override(metadata: TrustMetadata, sso_url: str) -> TrustMetadata:
    """Return metadata whose HTTP-Redirect SSO location is ``sso_url``.

    Only the location of the first HTTP-Redirect endpoint changes. The
    signing certificates are carried over untouched: response signature
    verification depends on them surviving the override.

    An invalid override URL, or metadata without an HTTP-Redirect endpoint,
    leaves the metadata unchanged (with a warning).
    """
    if not sso_url:
        return metadata

    if not is_valid_url(sso_url):
        logger.warning(f"Invalid SSO URL override, using metadata URL: {sso_url}")
        return metadata

    endpoints = list(metadata.sso_endpoints)
    for i, endpoint in enumerate(endpoints):
        if endpoint.binding == BINDING_HTTP_REDIRECT:
            endpoints[i] = dataclasses.replace(endpoint, location=sso_url)
            logger.info(
                f"SAML SSO URL overridden: {endpoint.location} -> {sso_url} "
                f"(certificates preserved: {len(metadata.signing_certificates)})"
            )
            break
    else:
        logger.warning(
            f"SSO URL override configured but no HTTP-Redirect endpoint in metadata: {sso_url}"
        )
        return metadata

    return dataclasses.replace(metadata, sso_endpoints=tuple(endpoints))
