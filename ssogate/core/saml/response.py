"""SAML Response validation.

Decodes an HTTP-POST SAMLResponse, verifies its signature against the IdP's
trusted certificates, and checks the protocol conditions that bind the
assertion to one outstanding AuthnRequest of this Service Provider.
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from lxml import etree

from ssogate.core.errors import InvalidResponseError
from ssogate.core.saml.metadata import TrustMetadata
from ssogate.core.saml.signature import verify_signature
from ssogate.core.saml.sp import ServiceProvider
from ssogate.core.saml.utils import (
    CM_BEARER,
    NAMESPACES,
    SAML_NS,
    SAMLP_NS,
    STATUS_SUCCESS,
    parse_instant,
    parse_xml,
    qname,
)

logger = logging.getLogger(__name__)

DEFAULT_CLOCK_SKEW = timedelta(seconds=180)

_Fail = Callable[[str], InvalidResponseError]


@dataclass(frozen=True)
class SAMLAttribute:
    """An assertion attribute with its values in document order."""

    name: str
    values: tuple[str, ...]


@dataclass
class SAMLAssertion:
    """The trusted content of a validated assertion."""

    assertion_id: str
    issuer: str
    subject_name_id: str | None
    subject_name_id_format: str | None = None
    session_index: str | None = None
    authn_instant: str | None = None
    attributes: list[SAMLAttribute] = field(default_factory=list)

    @classmethod
    def from_element(cls, elem: etree._Element) -> SAMLAssertion:
        """Extract assertion fields from a verified Assertion element."""
        issuer_elem = elem.find("saml:Issuer", NAMESPACES)

        name_id_elem = elem.find("saml:Subject/saml:NameID", NAMESPACES)
        subject_name_id = name_id_elem.text if name_id_elem is not None else None
        subject_name_id_format = name_id_elem.get("Format") if name_id_elem is not None else None

        authn_stmt = elem.find("saml:AuthnStatement", NAMESPACES)
        session_index = authn_stmt.get("SessionIndex") if authn_stmt is not None else None
        authn_instant = authn_stmt.get("AuthnInstant") if authn_stmt is not None else None

        return cls(
            assertion_id=elem.get("ID", ""),
            issuer=(issuer_elem.text or "").strip() if issuer_elem is not None else "",
            subject_name_id=subject_name_id,
            subject_name_id_format=subject_name_id_format,
            session_index=session_index,
            authn_instant=authn_instant,
            attributes=extract_attributes(elem),
        )


def extract_attributes(assertion: etree._Element) -> list[SAMLAttribute]:
    """Collect attributes from every AttributeStatement, in document order."""
    attributes: list[SAMLAttribute] = []
    for attr_elem in assertion.findall("saml:AttributeStatement/saml:Attribute", NAMESPACES):
        name = attr_elem.get("Name", "")
        if not name:
            continue
        values = tuple(
            value_elem.text
            for value_elem in attr_elem.findall("saml:AttributeValue", NAMESPACES)
            if value_elem.text is not None
        )
        attributes.append(SAMLAttribute(name=name, values=values))
    return attributes


def decode_response(encoded_response: str) -> etree._Element:
    """Base64-decode and parse a SAMLResponse form value.

    Raises:
        InvalidResponseError: If the value is not base64 or not a SAML Response.
    """
    try:
        xml_bytes = base64.b64decode(encoded_response, validate=False)
    except (binascii.Error, ValueError) as e:
        raise InvalidResponseError(f"cannot decode response: {e}") from e

    try:
        root = parse_xml(xml_bytes)
    except (etree.XMLSyntaxError, ValueError) as e:
        raise InvalidResponseError(f"malformed XML: {e}") from e

    if root.tag != qname(SAMLP_NS, "Response"):
        raise InvalidResponseError(f"unexpected root element {root.tag}")
    return root


class ResponseValidator:
    """Validates SAML Responses for one Service Provider and one IdP.

    Checks, in order:

    1. Signature verification against the IdP signing certificates; only
       the signed element is used afterwards.
    2. Status code is Success.
    3. Destination (if present) equals the ACS URL.
    4. InResponseTo on the Response (if present) equals the request ID.
    5. Assertion issuer equals the IdP entity ID.
    6. A bearer SubjectConfirmation answers the request at the ACS URL and
       has not expired.
    7. Conditions time window (with clock skew) and audience.
    """

    def __init__(
        self,
        sp: ServiceProvider,
        trust_metadata: TrustMetadata,
        clock_skew: timedelta = DEFAULT_CLOCK_SKEW,
    ) -> None:
        self.sp = sp
        self.trust_metadata = trust_metadata
        self.clock_skew = clock_skew

    def validate(
        self,
        encoded_response: str,
        request_id: str,
        now: datetime | None = None,
    ) -> SAMLAssertion:
        """Validate a SAMLResponse against the request it must answer.

        Args:
            encoded_response: Base64 SAMLResponse form value.
            request_id: ID of the AuthnRequest this response must answer.
            now: Reference time (defaults to the current UTC time).

        Returns:
            The validated assertion.

        Raises:
            InvalidResponseError: On any signature or protocol failure. The
                reason is operator detail and is never shown to end users.
        """
        now = now or datetime.now(UTC)

        def fail(reason: str) -> InvalidResponseError:
            return InvalidResponseError(reason, request_id=request_id)

        try:
            root = decode_response(encoded_response)
        except InvalidResponseError as e:
            raise fail(e.reason) from e

        signature = verify_signature(root, self.trust_metadata.signing_certificates)
        for line in signature.trace:
            logger.debug(f"Signature: {line}")
        if not signature.is_valid or signature.signed_element is None:
            raise fail(signature.message)

        signed = signature.signed_element
        if signed.tag == qname(SAMLP_NS, "Response"):
            response = signed
            assertions = signed.findall(qname(SAML_NS, "Assertion"))
            if len(assertions) != 1:
                raise fail(f"expected exactly one assertion, found {len(assertions)}")
            assertion_elem = assertions[0]
        else:
            # Only the assertion was signed; protocol fields come from the envelope
            response = root
            assertion_elem = signed

        self._check_status(response, fail)
        self._check_response_fields(response, request_id, fail)
        self._check_issuer(assertion_elem, fail)
        self._check_subject_confirmation(assertion_elem, request_id, now, fail)
        self._check_conditions(assertion_elem, now, fail)

        assertion = SAMLAssertion.from_element(assertion_elem)
        logger.debug(
            f"Assertion {assertion.assertion_id} accepted for request {request_id} "
            f"(attributes: {len(assertion.attributes)})"
        )
        return assertion

    def _check_status(self, response: etree._Element, fail: _Fail) -> None:
        status_elem = response.find("samlp:Status/samlp:StatusCode", NAMESPACES)
        status_code = status_elem.get("Value") if status_elem is not None else None
        if status_code != STATUS_SUCCESS:
            message_elem = response.find("samlp:Status/samlp:StatusMessage", NAMESPACES)
            message = message_elem.text if message_elem is not None else None
            detail = f" ({message})" if message else ""
            raise fail(f"status is not Success: {status_code}{detail}")

    def _check_response_fields(self, response: etree._Element, request_id: str, fail: _Fail) -> None:
        destination = response.get("Destination")
        if destination and destination != self.sp.acs_url:
            raise fail(f"Destination {destination} does not match ACS URL {self.sp.acs_url}")

        in_response_to = response.get("InResponseTo")
        if in_response_to and in_response_to != request_id:
            raise fail(f"InResponseTo {in_response_to} does not match")

    def _check_issuer(self, assertion: etree._Element, fail: _Fail) -> None:
        issuer_elem = assertion.find("saml:Issuer", NAMESPACES)
        issuer = (issuer_elem.text or "").strip() if issuer_elem is not None else ""
        if issuer != self.trust_metadata.entity_id:
            raise fail(
                f"assertion issuer ({issuer}) does not match IdP entity ID "
                f"({self.trust_metadata.entity_id})"
            )

    def _check_subject_confirmation(
        self,
        assertion: etree._Element,
        request_id: str,
        now: datetime,
        fail: _Fail,
    ) -> None:
        confirmations = assertion.findall("saml:Subject/saml:SubjectConfirmation", NAMESPACES)
        problems: list[str] = []

        for confirmation in confirmations:
            if confirmation.get("Method") != CM_BEARER:
                continue
            data = confirmation.find("saml:SubjectConfirmationData", NAMESPACES)
            if data is None:
                problems.append("bearer confirmation without SubjectConfirmationData")
                continue
            if data.get("InResponseTo") != request_id:
                problems.append(f"SubjectConfirmationData InResponseTo {data.get('InResponseTo')}")
                continue
            recipient = data.get("Recipient")
            if recipient and recipient != self.sp.acs_url:
                problems.append(f"SubjectConfirmationData Recipient {recipient}")
                continue
            not_on_or_after = data.get("NotOnOrAfter")
            if not_on_or_after:
                expires = self._parse_time(not_on_or_after, fail)
                if now >= expires + self.clock_skew:
                    problems.append(f"SubjectConfirmationData expired at {not_on_or_after}")
                    continue
            return

        if not problems:
            raise fail("no bearer SubjectConfirmation")
        raise fail("; ".join(problems))

    def _check_conditions(self, assertion: etree._Element, now: datetime, fail: _Fail) -> None:
        conditions = assertion.find("saml:Conditions", NAMESPACES)
        if conditions is None:
            return

        not_before = conditions.get("NotBefore")
        if not_before and now + self.clock_skew < self._parse_time(not_before, fail):
            raise fail(f"assertion not valid yet (NotBefore: {not_before})")

        not_on_or_after = conditions.get("NotOnOrAfter")
        if not_on_or_after and now >= self._parse_time(not_on_or_after, fail) + self.clock_skew:
            raise fail(f"assertion has expired (NotOnOrAfter: {not_on_or_after})")

        audiences = [
            (elem.text or "").strip()
            for elem in conditions.findall("saml:AudienceRestriction/saml:Audience", NAMESPACES)
        ]
        if audiences and self.sp.entity_id not in audiences:
            raise fail(f"SP entity ID ({self.sp.entity_id}) not in audience restrictions ({audiences})")

    @staticmethod
    def _parse_time(value: str, fail: _Fail) -> datetime:
        try:
            return parse_instant(value)
        except ValueError as e:
            raise fail(f"invalid timestamp {value!r}") from e
