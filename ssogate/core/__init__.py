"""Core SSO components: provider interface, identity resolution, errors."""

from ssogate.core.errors import (
    EntityNotFoundError,
    InactiveUserError,
    InvalidResponseError,
    KeyMaterialError,
    NotEnabledError,
    SSOError,
    TrustResolutionError,
    UnknownStateError,
)
from ssogate.core.identity import IdentityResolver, NewUser, ResolvedIdentity, User, UserRepository
from ssogate.core.providers import ProviderRegistry, SSOProvider, SSOProviderType

__all__ = [
    # Errors
    "EntityNotFoundError",
    "InactiveUserError",
    "InvalidResponseError",
    "KeyMaterialError",
    "NotEnabledError",
    "SSOError",
    "TrustResolutionError",
    "UnknownStateError",
    # Identity
    "IdentityResolver",
    "NewUser",
    "ResolvedIdentity",
    "User",
    "UserRepository",
    # Providers
    "ProviderRegistry",
    "SSOProvider",
    "SSOProviderType",
]
