"""Tests for the SSO HTTP endpoints."""

from ssogate.app import create_app
from ssogate.core.saml.utils import NAMESPACES, parse_xml
from ssogate.web.routes.sso import SSO_IDENTITY_KEY

from tests.conftest import FRONTEND_URL, IDP_SSO_URL, SP_ROOT_URL

JDOE = [("uid", ["jdoe"]), ("mail", ["jdoe@example.com"])]


def _initiate(client) -> str:
    response = client.post("/api/v1/auth/sso/initiate", json={"provider_name": "ad_saml"})
    assert response.status_code == 200
    return response.get_json()["redirect_url"]


def test_health_endpoint(client) -> None:
    """Test health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.get_json() == {"status": "healthy"}


class TestProviders:
    def test_list(self, client):
        response = client.get("/api/v1/auth/sso/providers")

        assert response.status_code == 200
        assert response.get_json() == {
            "providers": [
                {"name": "ad_saml", "display_name": "SAML SSO", "icon_url": "", "type": "saml"}
            ]
        }

    def test_empty_registry(self):
        app = create_app({"TESTING": True, "SECRET_KEY": "test"})
        response = app.test_client().get("/api/v1/auth/sso/providers")
        assert response.get_json() == {"providers": []}


class TestInitiate:
    """Tests for POST /sso/initiate."""

    def test_returns_redirect_url(self, client, provider):
        redirect_url = _initiate(client)

        assert redirect_url.startswith(IDP_SSO_URL + "?")
        assert len(provider.pending) == 1

    def test_states_are_unique(self, client, provider):
        _initiate(client)
        _initiate(client)
        assert len(provider.pending) == 2

    def test_invalid_body(self, client):
        response = client.post("/api/v1/auth/sso/initiate", data="nope", content_type="text/plain")
        assert response.status_code == 400
        assert response.get_json() == {"error": "Invalid request"}

    def test_missing_provider_name(self, client):
        response = client.post("/api/v1/auth/sso/initiate", json={})
        assert response.status_code == 400
        assert response.get_json() == {"error": "provider_name is required"}

    def test_unknown_provider(self, client):
        response = client.post("/api/v1/auth/sso/initiate", json={"provider_name": "okta"})
        assert response.status_code == 400
        assert response.get_json() == {"error": "Failed to initiate SSO"}


class TestMetadataEndpoint:
    """Tests for GET /saml/metadata."""

    def test_metadata(self, client):
        response = client.get("/api/v1/auth/saml/metadata")

        assert response.status_code == 200
        assert response.mimetype == "application/xml"
        root = parse_xml(response.data)
        assert root.get("entityID") == f"{SP_ROOT_URL}/api/v1/auth/saml/metadata"

    def test_named_provider(self, client):
        response = client.get("/api/v1/auth/saml/metadata?provider=ad_saml")
        assert response.status_code == 200

    def test_unknown_provider(self, client):
        response = client.get("/api/v1/auth/saml/metadata?provider=okta")
        assert response.status_code == 404
        assert response.get_json() == {"error": "Provider not found"}


class TestAssertionConsumerService:
    """Tests for POST /saml/acs."""

    def test_successful_login(self, client, idp):
        saml_response, relay_state = idp.respond_to(_initiate(client), attributes=JDOE)

        response = client.post(
            "/api/v1/auth/saml/acs",
            data={"SAMLResponse": saml_response, "RelayState": relay_state},
        )

        assert response.status_code == 302
        assert response.headers["Location"] == f"{FRONTEND_URL}/auth/saml/success"
        with client.session_transaction() as session:
            identity = session[SSO_IDENTITY_KEY]
        assert identity["username"] == "jdoe"
        assert identity["is_external"] is True

    def test_replay_rejected(self, client, idp):
        saml_response, relay_state = idp.respond_to(_initiate(client), attributes=JDOE)
        form = {"SAMLResponse": saml_response, "RelayState": relay_state}

        assert client.post("/api/v1/auth/saml/acs", data=form).status_code == 302
        response = client.post("/api/v1/auth/saml/acs", data=form)

        assert response.status_code == 401
        assert response.get_json() == {"error": "SSO authentication failed"}

    def test_missing_saml_response(self, client):
        response = client.post("/api/v1/auth/saml/acs", data={"RelayState": "x"})
        assert response.status_code == 400
        assert response.get_json() == {"error": "Missing SAMLResponse parameter"}

    def test_inactive_user(self, client, idp, users):
        users.add("jdoe", is_active=False)
        saml_response, relay_state = idp.respond_to(_initiate(client), attributes=JDOE)

        response = client.post(
            "/api/v1/auth/saml/acs",
            data={"SAMLResponse": saml_response, "RelayState": relay_state},
        )

        assert response.status_code == 401
        assert response.get_json() == {"error": "user is inactive"}

    def test_invalid_signature(self, client, idp, other_key_material):
        saml_response, relay_state = idp.respond_to(
            _initiate(client), attributes=JDOE, signing_key=other_key_material
        )

        response = client.post(
            "/api/v1/auth/saml/acs",
            data={"SAMLResponse": saml_response, "RelayState": relay_state},
        )

        assert response.status_code == 401
        assert response.get_json() == {"error": "SSO authentication failed"}
        with client.session_transaction() as session:
            assert SSO_IDENTITY_KEY not in session

    def test_error_hides_reason(self, client, idp):
        saml_response, _ = idp.respond_to(_initiate(client), attributes=JDOE)

        response = client.post(
            "/api/v1/auth/saml/acs",
            data={"SAMLResponse": saml_response, "RelayState": "forged-state"},
        )

        assert response.status_code == 401
        assert b"state" not in response.data

    def test_metadata_links_acs(self, client):
        root = parse_xml(client.get("/api/v1/auth/saml/metadata").data)
        acs = root.find("md:SPSSODescriptor/md:AssertionConsumerService", NAMESPACES)
        assert acs.get("Location") == f"{SP_ROOT_URL}/api/v1/auth/saml/acs"
