"""Application configuration management.

Loads configuration from config.yaml files and environment variables.
Environment variables take precedence over config file settings.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# Default config locations
DEFAULT_CONFIG_DIR = Path.home() / ".ssogate"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
DEFAULT_CERT_DIR = DEFAULT_CONFIG_DIR / "saml"

# Environment variable prefix
ENV_PREFIX = "SSOGATE_"

# Provider name the ACS endpoint authenticates against
DEFAULT_SAML_PROVIDER_NAME = "ad_saml"

# Logical identity fields an IdP attribute can be mapped to
IDENTITY_FIELDS = ("username", "email")


@dataclass(frozen=True)
class SAMLSettings:
    """SAML Service Provider settings.

    Immutable once built; a provider keeps the instance it was constructed
    with for its whole lifetime.
    """

    enabled: bool = False
    name: str = DEFAULT_SAML_PROVIDER_NAME
    display_name: str = "SAML SSO"
    icon_url: str = ""
    public_root_url: str = ""
    idp_metadata_url: str = ""
    sso_url: str = ""
    certificate_path: Path | None = None
    private_key_path: Path | None = None
    create_certs: bool = False
    skip_tls_verify: bool = False
    attribute_mapping: Mapping[str, str] = field(default_factory=dict)
    metadata_timeout: float = 30.0
    request_ttl_seconds: int = 600
    clock_skew_seconds: int = 180

    def __post_init__(self) -> None:
        # Copy and freeze the mapping so the caller's dict cannot change it later
        object.__setattr__(
            self, "attribute_mapping", MappingProxyType(dict(self.attribute_mapping))
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SAMLSettings:
        """Create SAMLSettings from a dictionary."""
        return cls(
            enabled=data.get("enabled", False),
            name=data.get("name", DEFAULT_SAML_PROVIDER_NAME),
            display_name=data.get("display_name", "SAML SSO"),
            icon_url=data.get("icon_url", ""),
            public_root_url=data.get("public_root_url", ""),
            idp_metadata_url=data.get("idp_metadata_url", ""),
            sso_url=data.get("sso_url", ""),
            certificate_path=Path(data["certificate_path"]).expanduser()
            if data.get("certificate_path")
            else None,
            private_key_path=Path(data["private_key_path"]).expanduser()
            if data.get("private_key_path")
            else None,
            create_certs=data.get("create_certs", False),
            skip_tls_verify=data.get("skip_tls_verify", False),
            attribute_mapping=dict(data.get("attribute_mapping") or {}),
            metadata_timeout=float(data.get("metadata_timeout", 30.0)),
            request_ttl_seconds=int(data.get("request_ttl_seconds", 600)),
            clock_skew_seconds=int(data.get("clock_skew_seconds", 180)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "enabled": self.enabled,
            "name": self.name,
            "display_name": self.display_name,
            "icon_url": self.icon_url,
            "public_root_url": self.public_root_url,
            "idp_metadata_url": self.idp_metadata_url,
            "sso_url": self.sso_url,
            "certificate_path": str(self.certificate_path) if self.certificate_path else None,
            "private_key_path": str(self.private_key_path) if self.private_key_path else None,
            "create_certs": self.create_certs,
            "skip_tls_verify": self.skip_tls_verify,
            "attribute_mapping": dict(self.attribute_mapping),
            "metadata_timeout": self.metadata_timeout,
            "request_ttl_seconds": self.request_ttl_seconds,
            "clock_skew_seconds": self.clock_skew_seconds,
        }


@dataclass
class ServerSettings:
    """Server configuration settings."""

    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False
    frontend_url: str = ""
    secret_key: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServerSettings:
        """Create ServerSettings from a dictionary."""
        return cls(
            host=data.get("host", "127.0.0.1"),
            port=data.get("port", 8080),
            debug=data.get("debug", False),
            frontend_url=data.get("frontend_url", ""),
            secret_key=data.get("secret_key"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "host": self.host,
            "port": self.port,
            "debug": self.debug,
            "frontend_url": self.frontend_url,
            "secret_key": self.secret_key,
        }


@dataclass
class LoggingSettings:
    """Logging configuration settings."""

    level: str = "INFO"
    file: str | None = None
    trace_enabled: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoggingSettings:
        """Create LoggingSettings from a dictionary."""
        return cls(
            level=data.get("level", "INFO"),
            file=data.get("file"),
            trace_enabled=data.get("trace_enabled", False),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"level": self.level, "file": self.file, "trace_enabled": self.trace_enabled}


@dataclass
class DatabaseSettings:
    """User database settings."""

    path: Path = DEFAULT_CONFIG_DIR / "ssogate.db"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DatabaseSettings:
        if data.get("path"):
            return cls(path=Path(data["path"]).expanduser())
        return cls()

    def to_dict(self) -> dict[str, Any]:
        return {"path": str(self.path)}


@dataclass
class UserSettings:
    """Provisioning rules for users created by SSO."""

    activate_external_users: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserSettings:
        return cls(activate_external_users=data.get("activate_external_users", True))

    def to_dict(self) -> dict[str, Any]:
        return {"activate_external_users": self.activate_external_users}


@dataclass
class AppConfig:
    """Main application configuration."""

    server: ServerSettings = field(default_factory=ServerSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    users: UserSettings = field(default_factory=UserSettings)
    saml: SAMLSettings = field(default_factory=SAMLSettings)
    config_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], config_path: Path | None = None) -> AppConfig:
        """Create AppConfig from a dictionary."""
        return cls(
            server=ServerSettings.from_dict(data.get("server") or {}),
            logging=LoggingSettings.from_dict(data.get("logging") or {}),
            database=DatabaseSettings.from_dict(data.get("database") or {}),
            users=UserSettings.from_dict(data.get("users") or {}),
            saml=SAMLSettings.from_dict(data.get("saml") or {}),
            config_path=config_path,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "server": self.server.to_dict(),
            "logging": self.logging.to_dict(),
            "database": self.database.to_dict(),
            "users": self.users.to_dict(),
            "saml": self.saml.to_dict(),
        }

    def save(self, path: Path | None = None) -> None:
        """Save configuration to a YAML file.

        Args:
            path: Path to save to. Uses config_path or default if not specified.
        """
        save_path = path or self.config_path or DEFAULT_CONFIG_FILE
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False)


def _get_env_bool(key: str, default: bool) -> bool:
    """Get a boolean from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _get_env_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def parse_attribute_mapping(value: str) -> dict[str, str]:
    """Parse an attribute mapping from ``idp_name=field`` pairs.

    Pairs are separated by commas, e.g. ``uid=username,mail=email``.

    Raises:
        ValueError: If a pair is malformed or maps to an unknown field.
    """
    mapping: dict[str, str] = {}
    for pair in value.split(","):
        pair = pair.strip()
        if not pair:
            continue
        attr_name, sep, target = pair.partition("=")
        if not sep or not attr_name.strip():
            raise ValueError(f"Invalid attribute mapping entry: {pair!r}")
        target = target.strip()
        if target not in IDENTITY_FIELDS:
            raise ValueError(
                f"Unknown identity field {target!r} (expected one of {', '.join(IDENTITY_FIELDS)})"
            )
        mapping[attr_name.strip()] = target
    return mapping


def _apply_saml_env(saml: SAMLSettings) -> SAMLSettings:
    """Return SAML settings with environment variable overrides applied."""
    prefix = f"{ENV_PREFIX}SAML_"
    changes: dict[str, Any] = {}

    for key in ("name", "display_name", "icon_url", "public_root_url", "idp_metadata_url", "sso_url"):
        env_value = os.environ.get(f"{prefix}{key.upper()}")
        if env_value:
            changes[key] = env_value

    if os.environ.get(f"{prefix}CERTIFICATE_PATH"):
        changes["certificate_path"] = Path(os.environ[f"{prefix}CERTIFICATE_PATH"])

    if os.environ.get(f"{prefix}PRIVATE_KEY_PATH"):
        changes["private_key_path"] = Path(os.environ[f"{prefix}PRIVATE_KEY_PATH"])

    changes["enabled"] = _get_env_bool(f"{prefix}ENABLED", saml.enabled)
    changes["create_certs"] = _get_env_bool(f"{prefix}CREATE_CERTS", saml.create_certs)
    changes["skip_tls_verify"] = _get_env_bool(f"{prefix}SKIP_TLS_VERIFY", saml.skip_tls_verify)
    changes["request_ttl_seconds"] = _get_env_int(
        f"{prefix}REQUEST_TTL_SECONDS", saml.request_ttl_seconds
    )

    if os.environ.get(f"{prefix}ATTRIBUTE_MAPPING"):
        try:
            changes["attribute_mapping"] = parse_attribute_mapping(
                os.environ[f"{prefix}ATTRIBUTE_MAPPING"]
            )
        except ValueError as e:
            logger.error(f"Disabling SAML provider: invalid {prefix}ATTRIBUTE_MAPPING: {e}")
            changes["enabled"] = False

    return dataclasses.replace(saml, **changes)


def get_config_path() -> Path:
    """Config file location: $SSOGATE_CONFIG or ~/.ssogate/config.yaml."""
    return Path(os.environ.get(f"{ENV_PREFIX}CONFIG", DEFAULT_CONFIG_FILE))


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load application configuration.

    Configuration is loaded in this order (later values override earlier):
    1. Default values
    2. config.yaml file (if exists)
    3. Environment variables

    Args:
        config_path: Path to config file. Uses default if not specified.

    Returns:
        AppConfig with merged settings.
    """
    # Start with defaults
    config = AppConfig()

    # Try to load from config file
    file_path = config_path or get_config_path()
    if file_path.exists():
        try:
            with open(file_path) as f:
                data = yaml.safe_load(f) or {}
            config = AppConfig.from_dict(data, config_path=file_path)
        except (OSError, yaml.YAMLError, ValueError, TypeError) as e:
            # If config file is invalid, use defaults
            logger.warning(f"Ignoring invalid config file {file_path}: {e}")

    # Server settings
    if os.environ.get(f"{ENV_PREFIX}HOST"):
        config.server.host = os.environ[f"{ENV_PREFIX}HOST"]

    if os.environ.get(f"{ENV_PREFIX}PORT"):
        config.server.port = _get_env_int(f"{ENV_PREFIX}PORT", config.server.port)

    config.server.debug = _get_env_bool(f"{ENV_PREFIX}DEBUG", config.server.debug)

    if os.environ.get(f"{ENV_PREFIX}FRONTEND_URL"):
        config.server.frontend_url = os.environ[f"{ENV_PREFIX}FRONTEND_URL"]

    if os.environ.get(f"{ENV_PREFIX}SECRET_KEY"):
        config.server.secret_key = os.environ[f"{ENV_PREFIX}SECRET_KEY"]

    # Logging settings
    if os.environ.get(f"{ENV_PREFIX}LOG_LEVEL"):
        config.logging.level = os.environ[f"{ENV_PREFIX}LOG_LEVEL"]

    if os.environ.get(f"{ENV_PREFIX}LOG_FILE"):
        config.logging.file = os.environ[f"{ENV_PREFIX}LOG_FILE"]

    # Database settings
    if os.environ.get(f"{ENV_PREFIX}DB_PATH"):
        config.database.path = Path(os.environ[f"{ENV_PREFIX}DB_PATH"])

    config.users.activate_external_users = _get_env_bool(
        f"{ENV_PREFIX}ACTIVATE_EXTERNAL_USERS", config.users.activate_external_users
    )

    config.saml = _apply_saml_env(config.saml)

    return config


def get_default_config_yaml() -> str:
    """Get the default config.yaml content as a string.

    Useful for generating example configuration files.
    """
    return """\
# ssogate Configuration File
# Environment variables override these settings (prefix: SSOGATE_)

server:
  host: "127.0.0.1"
  port: 8080
  debug: false

  # Browser is sent to <frontend_url>/auth/saml/success after a SAML login
  frontend_url: ""

logging:
  # ERROR, INFO, DEBUG or TRACE (TRACE also needs trace_enabled)
  level: "INFO"
  # file: ~/.ssogate/ssogate.log
  trace_enabled: false

database:
  path: ~/.ssogate/ssogate.db

users:
  # Whether users provisioned by SSO start out active
  activate_external_users: true

saml:
  enabled: false
  name: "ad_saml"
  display_name: "SAML SSO"
  icon_url: ""

  # Public URL of this service; the SP entity ID and ACS URL derive from it
  public_root_url: "https://manager.example.com"

  # Where the IdP publishes its metadata (fetched once at startup)
  idp_metadata_url: "https://idp.example.com/metadata"

  # Optional replacement for the IdP's HTTP-Redirect SSO endpoint
  sso_url: ""

  # SP signing certificate and key (PEM)
  certificate_path: ~/.ssogate/saml/sp.crt
  private_key_path: ~/.ssogate/saml/sp.key

  # Generate a self-signed certificate when certificate_path does not exist
  create_certs: true

  # Skip TLS verification when fetching IdP metadata (not recommended)
  skip_tls_verify: false

  # IdP attribute name -> identity field (username or email)
  attribute_mapping:
    uid: username
    mail: email

  # Seconds to wait for the IdP metadata endpoint
  metadata_timeout: 30

  # Seconds an issued request stays answerable (0 = forever)
  request_ttl_seconds: 600

  # Tolerated clock difference with the IdP, in seconds
  clock_skew_seconds: 180
"""
