"""SSO provider interface and registry.

The host application talks to every SSO mechanism through the
``SSOProvider`` protocol and finds providers by name in a
``ProviderRegistry``.
"""

from __future__ import annotations

import logging
import threading
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from ssogate.core.errors import NotEnabledError
from ssogate.core.identity import ResolvedIdentity

logger = logging.getLogger(__name__)


class SSOProviderType(StrEnum):
    """Kinds of SSO provider."""

    SAML = "saml"


@runtime_checkable
class SSOProvider(Protocol):
    """Operations every SSO provider offers the host application."""

    def get_type(self) -> SSOProviderType: ...

    def get_name(self) -> str: ...

    def get_display_name(self) -> str: ...

    def get_icon_url(self) -> str: ...

    def is_enabled(self) -> bool: ...

    def generate_auth_url(self, state: str) -> str: ...

    def authenticate(self, response: str, state: str) -> ResolvedIdentity: ...

    def publish_metadata(self) -> bytes: ...


def provider_summary(provider: SSOProvider) -> dict[str, Any]:
    """Describe a provider for login pages."""
    return {
        "name": provider.get_name(),
        "display_name": provider.get_display_name(),
        "icon_url": provider.get_icon_url(),
        "type": str(provider.get_type()),
    }


class ProviderRegistry:
    """Providers registered under stable names."""

    def __init__(self) -> None:
        self._providers: dict[str, SSOProvider] = {}
        self._lock = threading.Lock()

    def add_provider(self, provider: SSOProvider) -> None:
        """Register ``provider`` under its name, replacing any previous one."""
        name = provider.get_name()
        with self._lock:
            if name in self._providers:
                logger.warning(f"Replacing registered SSO provider {name}")
            self._providers[name] = provider
        logger.info(f"Registered SSO provider {name} ({provider.get_type()})")

    def get(self, name: str) -> SSOProvider:
        """Look up a provider by name.

        Raises:
            NotEnabledError: If no provider is registered under ``name``.
        """
        with self._lock:
            provider = self._providers.get(name)
        if provider is None:
            raise NotEnabledError(name)
        return provider

    def get_enabled(self, name: str) -> SSOProvider:
        """Look up a provider by name and require it to be enabled."""
        provider = self.get(name)
        if not provider.is_enabled():
            raise NotEnabledError(name)
        return provider

    def list_enabled(self) -> list[SSOProvider]:
        with self._lock:
            providers = list(self._providers.values())
        return [p for p in providers if p.is_enabled()]

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._providers

    def __len__(self) -> int:
        with self._lock:
            return len(self._providers)
