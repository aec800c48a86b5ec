"""Error taxonomy for SSO authentication.

Every failure an SSO provider can report derives from ``SSOError`` so that
the HTTP layer can translate it into a single generic response while the
detailed reason stays in the logs.
"""

from __future__ import annotations


class SSOError(Exception):
    """Base exception for SSO provider failures."""


class NotEnabledError(SSOError):
    """Raised when a provider is disabled or failed to initialize."""

    def __init__(self, provider_name: str) -> None:
        super().__init__(f"SSO provider '{provider_name}' is not enabled")
        self.provider_name = provider_name


class TrustResolutionError(SSOError):
    """Raised when IdP trust metadata cannot be fetched or used."""


class UnknownStateError(SSOError):
    """Raised when a state token is absent, expired, or already consumed.

    The message never reveals whether the state was ever issued.
    """

    def __init__(self) -> None:
        super().__init__("Unknown or already used authentication state")


class InvalidResponseError(SSOError):
    """Raised when a SAML Response fails signature or protocol checks.

    Attributes:
        reason: Protocol-level detail for operators. Never shown to end users.
        request_id: The request ID the response was expected to answer.
    """

    def __init__(self, reason: str, request_id: str | None = None) -> None:
        message = f"Invalid SAML response: {reason}"
        if request_id:
            message = f"{message}. Expected Request ID: {request_id}"
        super().__init__(message)
        self.reason = reason
        self.request_id = request_id


class KeyMaterialError(SSOError):
    """Raised when SP key material cannot be loaded, decoded, or generated."""


class InactiveUserError(SSOError):
    """Raised when the resolved account is not allowed to sign in."""

    def __init__(self, username: str) -> None:
        super().__init__(f"User '{username}' is inactive")
        self.username = username


class EntityNotFoundError(Exception):
    """Raised by user repositories when a lookup matches nothing."""
