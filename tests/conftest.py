"""Pytest configuration and fixtures."""

from __future__ import annotations

import base64
import itertools
import zlib
from collections.abc import Generator, Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from flask import Flask
from flask.testing import FlaskClient
from lxml import etree
from signxml import XMLSigner
from signxml.algorithms import CanonicalizationMethod, DigestAlgorithm, SignatureMethod

from ssogate.app import create_app
from ssogate.core.config import SAMLSettings
from ssogate.core.crypto import KeyMaterial, generate_key_material, get_private_key_pem
from ssogate.core.errors import EntityNotFoundError
from ssogate.core.identity import NewUser, User
from ssogate.core.providers import ProviderRegistry
from ssogate.core.saml.provider import SAMLProvider
from ssogate.core.saml.utils import (
    BINDING_HTTP_POST,
    BINDING_HTTP_REDIRECT,
    CM_BEARER,
    DSIG_NS,
    MD_NS,
    NAMESPACES,
    SAML_NS,
    SAMLP_NS,
    STATUS_SUCCESS,
    format_instant,
    parse_xml,
    qname,
)

IDP_ENTITY_ID = "https://idp.example.com/saml/metadata"
IDP_METADATA_URL = "https://idp.example.com/saml/metadata"
IDP_SSO_URL = "https://idp.example.com/saml/sso"
SP_ROOT_URL = "https://manager.example.com"
FRONTEND_URL = "https://app.example.com"


class IdPSimulator:
    """A minimal SAML IdP used to drive the Service Provider in tests.

    Publishes metadata, decodes AuthnRequests from redirect URLs and issues
    signed Responses.
    """

    def __init__(self, key_material: KeyMaterial, entity_id: str = IDP_ENTITY_ID) -> None:
        self.key_material = key_material
        self.entity_id = entity_id
        self._ids = itertools.count(1)
        self.metadata_requests = 0

    def metadata_xml(
        self,
        sso_endpoints: Sequence[tuple[str, str]] = (
            (BINDING_HTTP_REDIRECT, IDP_SSO_URL),
            (BINDING_HTTP_POST, IDP_SSO_URL),
        ),
        extra_certificates: Sequence[KeyMaterial] = (),
    ) -> bytes:
        descriptor = etree.Element(qname(MD_NS, "EntityDescriptor"), nsmap={"md": MD_NS, "ds": DSIG_NS})
        descriptor.set("entityID", self.entity_id)
        idp = etree.SubElement(descriptor, qname(MD_NS, "IDPSSODescriptor"))
        idp.set("protocolSupportEnumeration", SAMLP_NS)

        for material in (*extra_certificates, self.key_material):
            key_descriptor = etree.SubElement(idp, qname(MD_NS, "KeyDescriptor"))
            key_descriptor.set("use", "signing")
            key_info = etree.SubElement(key_descriptor, qname(DSIG_NS, "KeyInfo"))
            x509_data = etree.SubElement(key_info, qname(DSIG_NS, "X509Data"))
            cert = etree.SubElement(x509_data, qname(DSIG_NS, "X509Certificate"))
            cert.text = material.certificate_base64

        for binding, location in sso_endpoints:
            service = etree.SubElement(idp, qname(MD_NS, "SingleSignOnService"))
            service.set("Binding", binding)
            service.set("Location", location)

        return etree.tostring(descriptor, xml_declaration=True, encoding="UTF-8")

    def transport(self, metadata: bytes | None = None, status_code: int = 200) -> httpx.MockTransport:
        """An httpx transport serving this IdP's metadata."""
        body = metadata if metadata is not None else self.metadata_xml()

        def handler(request: httpx.Request) -> httpx.Response:
            self.metadata_requests += 1
            if str(request.url) != IDP_METADATA_URL:
                return httpx.Response(404)
            return httpx.Response(
                status_code,
                content=body,
                headers={"Content-Type": "application/samlmetadata+xml"},
            )

        return httpx.MockTransport(handler)

    @staticmethod
    def parse_redirect(url: str) -> tuple[etree._Element, dict[str, str]]:
        """Decode the AuthnRequest carried by an HTTP-Redirect URL."""
        params = {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}
        xml = zlib.decompress(base64.b64decode(params["SAMLRequest"]), -15)
        return parse_xml(xml), params

    def _new_id(self, kind: str) -> str:
        return f"_{kind}{next(self._ids):04d}"

    def build_assertion(
        self,
        request_id: str,
        acs_url: str,
        audience: str,
        attributes: Sequence[tuple[str, Sequence[str]]] = (),
        issuer: str | None = None,
        now: datetime | None = None,
        not_before: timedelta = timedelta(minutes=-1),
        not_on_or_after: timedelta = timedelta(minutes=5),
        recipient: str | None = None,
        confirmation_in_response_to: str | None = None,
    ) -> etree._Element:
        now = now or datetime.now(UTC)
        assertion = etree.Element(qname(SAML_NS, "Assertion"), nsmap={"saml": SAML_NS})
        assertion.set("ID", self._new_id("assertion"))
        assertion.set("Version", "2.0")
        assertion.set("IssueInstant", format_instant(now))

        issuer_elem = etree.SubElement(assertion, qname(SAML_NS, "Issuer"))
        issuer_elem.text = issuer or self.entity_id

        subject = etree.SubElement(assertion, qname(SAML_NS, "Subject"))
        name_id = etree.SubElement(subject, qname(SAML_NS, "NameID"))
        name_id.text = "subject-1"
        confirmation = etree.SubElement(subject, qname(SAML_NS, "SubjectConfirmation"))
        confirmation.set("Method", CM_BEARER)
        data = etree.SubElement(confirmation, qname(SAML_NS, "SubjectConfirmationData"))
        data.set("InResponseTo", confirmation_in_response_to or request_id)
        data.set("Recipient", recipient or acs_url)
        data.set("NotOnOrAfter", format_instant(now + not_on_or_after))

        conditions = etree.SubElement(assertion, qname(SAML_NS, "Conditions"))
        conditions.set("NotBefore", format_instant(now + not_before))
        conditions.set("NotOnOrAfter", format_instant(now + not_on_or_after))
        restriction = etree.SubElement(conditions, qname(SAML_NS, "AudienceRestriction"))
        etree.SubElement(restriction, qname(SAML_NS, "Audience")).text = audience

        authn = etree.SubElement(assertion, qname(SAML_NS, "AuthnStatement"))
        authn.set("AuthnInstant", format_instant(now))
        authn.set("SessionIndex", "session-1")

        if attributes:
            statement = etree.SubElement(assertion, qname(SAML_NS, "AttributeStatement"))
            for name, values in attributes:
                attribute = etree.SubElement(statement, qname(SAML_NS, "Attribute"))
                attribute.set("Name", name)
                for value in values:
                    etree.SubElement(attribute, qname(SAML_NS, "AttributeValue")).text = value
        return assertion

    def sign(self, element: etree._Element, key_material: KeyMaterial | None = None) -> etree._Element:
        material = key_material or self.key_material
        signer = XMLSigner(
            signature_algorithm=SignatureMethod.RSA_SHA256,
            digest_algorithm=DigestAlgorithm.SHA256,
            c14n_algorithm=CanonicalizationMethod.EXCLUSIVE_XML_CANONICALIZATION_1_0,
        )
        return signer.sign(
            element,
            key=get_private_key_pem(material.private_key),
            cert=material.certificate_pem,
            reference_uri=f"#{element.get('ID')}",
        )

    def build_response(
        self,
        request_id: str,
        acs_url: str,
        audience: str,
        attributes: Sequence[tuple[str, Sequence[str]]] = (),
        sign: str | None = "assertion",
        signing_key: KeyMaterial | None = None,
        status: str = STATUS_SUCCESS,
        destination: str | None = None,
        in_response_to: str | None = None,
        **assertion_options,
    ) -> str:
        """Build a base64-encoded SAML Response.

        Args:
            sign: ``"assertion"``, ``"response"``, or None for unsigned.
        """
        assertion = self.build_assertion(request_id, acs_url, audience, attributes, **assertion_options)
        if sign == "assertion":
            assertion = self.sign(assertion, signing_key)

        response = etree.Element(
            qname(SAMLP_NS, "Response"),
            nsmap={"samlp": SAMLP_NS, "saml": SAML_NS},
        )
        response.set("ID", self._new_id("response"))
        response.set("Version", "2.0")
        response.set("IssueInstant", format_instant(datetime.now(UTC)))
        response.set("Destination", destination or acs_url)
        response.set("InResponseTo", in_response_to or request_id)
        etree.SubElement(response, qname(SAML_NS, "Issuer")).text = self.entity_id
        status_elem = etree.SubElement(response, qname(SAMLP_NS, "Status"))
        etree.SubElement(status_elem, qname(SAMLP_NS, "StatusCode")).set("Value", status)
        response.append(assertion)

        if sign == "response":
            response = self.sign(response, signing_key)

        return base64.b64encode(etree.tostring(response)).decode("ascii")

    def respond_to(self, redirect_url: str, **options) -> tuple[str, str]:
        """Answer the AuthnRequest in ``redirect_url``.

        The audience defaults to the request issuer (the SP entity ID).

        Returns:
            ``(SAMLResponse, RelayState)`` as the browser would post them.
        """
        request, params = self.parse_redirect(redirect_url)
        options.setdefault("audience", request.findtext("saml:Issuer", namespaces=NAMESPACES))
        saml_response = self.build_response(
            request_id=request.get("ID"),
            acs_url=request.get("AssertionConsumerServiceURL"),
            **options,
        )
        return saml_response, params.get("RelayState", "")


class InMemoryUserRepository:
    """User repository backed by a dict, for tests."""

    def __init__(self, activate_external_users: bool = True) -> None:
        self.activate_external_users = activate_external_users
        self.users: dict[str, User] = {}
        self.created: list[NewUser] = []
        self._ids = itertools.count(1)

    def add(self, username: str, email: str | None = None, is_active: bool = True) -> User:
        user = User(id=next(self._ids), username=username, email=email, is_external=False, is_active=is_active)
        self.users[username] = user
        return user

    def get_by_username(self, username: str) -> User:
        try:
            return self.users[username]
        except KeyError:
            raise EntityNotFoundError(username) from None

    def get_by_email(self, email: str) -> User:
        for user in self.users.values():
            if user.email == email:
                return user
        raise EntityNotFoundError(email)

    def create(self, new_user: NewUser) -> User:
        self.created.append(new_user)
        user = User(
            id=next(self._ids),
            username=new_user.username,
            email=new_user.email,
            is_external=new_user.is_external,
            is_active=self.activate_external_users,
            is_superuser=new_user.is_superuser,
            is_tmp_password=new_user.is_tmp_password,
        )
        self.users[user.username] = user
        return user


@pytest.fixture(scope="session")
def idp_key_material() -> KeyMaterial:
    return generate_key_material()


@pytest.fixture(scope="session")
def other_key_material() -> KeyMaterial:
    """A key pair the IdP metadata does not trust."""
    return generate_key_material()


@pytest.fixture
def idp(idp_key_material: KeyMaterial) -> IdPSimulator:
    return IdPSimulator(idp_key_material)


@pytest.fixture
def users() -> InMemoryUserRepository:
    return InMemoryUserRepository()


@pytest.fixture
def saml_settings(tmp_path: Path) -> SAMLSettings:
    return SAMLSettings(
        enabled=True,
        public_root_url=SP_ROOT_URL,
        idp_metadata_url=IDP_METADATA_URL,
        certificate_path=tmp_path / "saml" / "sp.crt",
        private_key_path=tmp_path / "saml" / "sp.key",
        create_certs=True,
        attribute_mapping={"uid": "username", "mail": "email"},
    )


@pytest.fixture
def registry() -> ProviderRegistry:
    return ProviderRegistry()


@pytest.fixture
def provider(
    saml_settings: SAMLSettings,
    users: InMemoryUserRepository,
    idp: IdPSimulator,
    registry: ProviderRegistry,
) -> SAMLProvider:
    provider = SAMLProvider.from_settings(
        saml_settings, users, registry=registry, transport=idp.transport()
    )
    assert provider.is_enabled()
    return provider


@pytest.fixture
def app(provider: SAMLProvider, registry: ProviderRegistry) -> Generator[Flask, None, None]:
    """Create application for testing with an enabled SAML provider."""
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key",
            "FRONTEND_URL": FRONTEND_URL,
            "SAML_PROVIDER_NAME": provider.get_name(),
        },
        registry=registry,
    )
    yield app


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create test client."""
    return app.test_client()

