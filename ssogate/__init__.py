"""ssogate - SAML Single Sign-On for the management service."""

__version__ = "0.1.0"
