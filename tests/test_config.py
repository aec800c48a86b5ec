"""Tests for configuration loading."""

import os
from pathlib import Path

import pytest
import yaml

from ssogate.core.config import (
    AppConfig,
    SAMLSettings,
    get_config_path,
    get_default_config_yaml,
    load_config,
    parse_attribute_mapping,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep SSOGATE_* variables from the host out of these tests."""
    for key in list(os.environ):
        if key.startswith("SSOGATE_"):
            monkeypatch.delenv(key)


class TestLoadConfig:
    """Tests for defaults, config file and environment precedence."""

    def test_defaults_without_file(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")

        assert config.server.port == 8080
        assert config.logging.level == "INFO"
        assert config.users.activate_external_users
        assert not config.saml.enabled
        assert config.saml.name == "ad_saml"
        assert config.saml.request_ttl_seconds == 600
        assert config.saml.clock_skew_seconds == 180

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "server": {"port": 9000, "frontend_url": "https://app.example.com"},
                    "saml": {
                        "enabled": True,
                        "public_root_url": "https://manager.example.com",
                        "idp_metadata_url": "https://idp.example.com/metadata",
                        "certificate_path": "~/certs/sp.crt",
                        "attribute_mapping": {"uid": "username"},
                    },
                }
            )
        )

        config = load_config(path)

        assert config.config_path == path
        assert config.server.port == 9000
        assert config.server.frontend_url == "https://app.example.com"
        assert config.saml.enabled
        assert config.saml.certificate_path == Path("~/certs/sp.crt").expanduser()
        assert config.saml.attribute_mapping == {"uid": "username"}

    def test_invalid_yaml_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("server: [unclosed")

        config = load_config(path)

        assert config.server.port == 8080

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"server": {"port": 9000}, "saml": {"enabled": False}}))
        monkeypatch.setenv("SSOGATE_PORT", "9100")
        monkeypatch.setenv("SSOGATE_SAML_ENABLED", "true")
        monkeypatch.setenv("SSOGATE_SAML_SSO_URL", "https://sso.example.com/login")
        monkeypatch.setenv("SSOGATE_SAML_ATTRIBUTE_MAPPING", "uid=username, mail=email")
        monkeypatch.setenv("SSOGATE_ACTIVATE_EXTERNAL_USERS", "no")

        config = load_config(path)

        assert config.server.port == 9100
        assert config.saml.enabled
        assert config.saml.sso_url == "https://sso.example.com/login"
        assert config.saml.attribute_mapping == {"uid": "username", "mail": "email"}
        assert not config.users.activate_external_users

    def test_invalid_int_env_ignored(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SSOGATE_PORT", "eighty")
        assert load_config(tmp_path / "missing.yaml").server.port == 8080

    def test_invalid_attribute_mapping_env_disables_saml(self, tmp_path, monkeypatch, caplog):
        """A bad mapping override disables the provider instead of failing the load."""
        path = tmp_path / "config.yaml"
        path.write_text(
            yaml.safe_dump({"saml": {"enabled": True, "attribute_mapping": {"uid": "username"}}})
        )
        monkeypatch.setenv("SSOGATE_SAML_ATTRIBUTE_MAPPING", "uid=login")

        config = load_config(path)

        assert not config.saml.enabled
        assert config.saml.attribute_mapping == {"uid": "username"}
        assert "SSOGATE_SAML_ATTRIBUTE_MAPPING" in caplog.text

    def test_config_path_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SSOGATE_CONFIG", str(tmp_path / "custom.yaml"))
        assert get_config_path() == tmp_path / "custom.yaml"


class TestSAMLSettings:
    def test_frozen(self):
        settings = SAMLSettings()
        with pytest.raises(AttributeError):
            settings.enabled = True  # type: ignore[misc]

    def test_attribute_mapping_read_only(self):
        mapping = {"uid": "username"}
        settings = SAMLSettings(attribute_mapping=mapping)

        mapping["mail"] = "email"
        with pytest.raises(TypeError):
            settings.attribute_mapping["mail"] = "email"  # type: ignore[index]

        assert settings.attribute_mapping == {"uid": "username"}

    def test_dict_round_trip(self, tmp_path):
        settings = SAMLSettings(
            enabled=True,
            public_root_url="https://manager.example.com",
            certificate_path=tmp_path / "sp.crt",
            attribute_mapping={"uid": "username"},
        )
        assert SAMLSettings.from_dict(settings.to_dict()) == settings


class TestParseAttributeMapping:
    def test_pairs(self):
        assert parse_attribute_mapping("uid=username,mail=email") == {
            "uid": "username",
            "mail": "email",
        }

    def test_empty_entries_skipped(self):
        assert parse_attribute_mapping("uid=username,,") == {"uid": "username"}

    @pytest.mark.parametrize("value", ["uid", "=username", "uid=department"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_attribute_mapping(value)


def test_default_config_yaml_is_loadable(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(get_default_config_yaml())

    config = load_config(path)

    assert config.saml.name == "ad_saml"
    assert config.saml.attribute_mapping == {"uid": "username", "mail": "email"}
    assert config.saml.create_certs


def test_save_and_reload(tmp_path):
    config = AppConfig()
    config.server.port = 9200
    path = tmp_path / "saved.yaml"

    config.save(path)

    assert load_config(path).server.port == 9200
