"""SAML SSO provider.

Ties key material, IdP trust metadata, request correlation, response
validation and identity resolution together behind the ``SSOProvider``
interface.
"""

from __future__ import annotations

import logging
from datetime import timedelta

import httpx

from ssogate.core.config import SAMLSettings
from ssogate.core.crypto.certs import ensure_key_material
from ssogate.core.errors import (
    InvalidResponseError,
    KeyMaterialError,
    NotEnabledError,
    TrustResolutionError,
    UnknownStateError,
)
from ssogate.core.identity import IdentityResolver, ResolvedIdentity, UserRepository
from ssogate.core.providers import ProviderRegistry, SSOProviderType
from ssogate.core.saml.correlation import PendingRequestStore
from ssogate.core.saml.metadata import (
    TrustMetadata,
    apply_sso_override,
    fetch_trust_metadata,
    is_valid_url,
)
from ssogate.core.saml.response import ResponseValidator, SAMLAssertion
from ssogate.core.saml.sp import ServiceProvider
from ssogate.core.saml.utils import BINDING_HTTP_REDIRECT

logger = logging.getLogger(__name__)


class SAMLProvider:
    """A SAML 2.0 Service Provider acting as an SSO provider.

    A provider that failed to initialize stays disabled for its whole
    lifetime; every operation then raises ``NotEnabledError``.
    """

    def __init__(
        self,
        settings: SAMLSettings,
        users: UserRepository | None = None,
        sp: ServiceProvider | None = None,
        trust_metadata: TrustMetadata | None = None,
    ) -> None:
        self.settings = settings
        self.sp = sp
        self.trust_metadata = trust_metadata
        self._enabled = settings.enabled and sp is not None and trust_metadata is not None

        self.pending = PendingRequestStore(ttl_seconds=settings.request_ttl_seconds)
        self.identity = (
            IdentityResolver(users, settings.attribute_mapping) if users is not None else None
        )
        self.validator = (
            ResponseValidator(
                sp,
                trust_metadata,
                clock_skew=timedelta(seconds=settings.clock_skew_seconds),
            )
            if sp is not None and trust_metadata is not None
            else None
        )

    @classmethod
    def from_settings(
        cls,
        settings: SAMLSettings,
        users: UserRepository,
        registry: ProviderRegistry | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> SAMLProvider:
        """Build a provider from configuration.

        Initialization failures (bad URLs, unusable key material, metadata
        that cannot be fetched) are logged and yield a disabled provider
        instead of raising. The provider is added to ``registry`` only when
        it is enabled.

        Args:
            settings: SAML provider settings.
            users: User repository for identity resolution.
            registry: Registry to add the provider to on success.
            transport: Optional httpx transport for the metadata fetch.
        """
        if not settings.enabled:
            logger.info(f"SAML provider {settings.name} is disabled")
            return cls(settings, users)

        if not is_valid_url(settings.public_root_url):
            logger.error(f"SAML provider disabled: invalid public root URL {settings.public_root_url!r}")
            return cls(settings, users)
        if not is_valid_url(settings.idp_metadata_url):
            logger.error(f"SAML provider disabled: invalid IdP metadata URL {settings.idp_metadata_url!r}")
            return cls(settings, users)

        if settings.skip_tls_verify:
            logger.warning("TLS verification is disabled for the IdP metadata fetch")

        try:
            key_material = ensure_key_material(settings)
        except KeyMaterialError as e:
            logger.error(f"SAML provider disabled: failed to load key material: {e}")
            return cls(settings, users)

        try:
            trust_metadata = fetch_trust_metadata(
                settings.idp_metadata_url,
                timeout=settings.metadata_timeout,
                verify_ssl=not settings.skip_tls_verify,
                transport=transport,
            )
        except TrustResolutionError as e:
            logger.error(f"SAML provider disabled: failed to fetch IdP metadata: {e}")
            return cls(settings, users)

        trust_metadata = apply_sso_override(trust_metadata, settings.sso_url)

        sp = ServiceProvider(settings.public_root_url, key_material)
        provider = cls(settings, users, sp=sp, trust_metadata=trust_metadata)
        logger.info(
            f"SAML provider {settings.name} enabled: entity_id={sp.entity_id} "
            f"idp={trust_metadata.entity_id}"
        )

        if registry is not None:
            registry.add_provider(provider)
        return provider

    def _require_enabled(self) -> None:
        if not self._enabled or self.sp is None or self.validator is None:
            raise NotEnabledError(self.settings.name)

    def get_type(self) -> SSOProviderType:
        return SSOProviderType.SAML

    def get_name(self) -> str:
        return self.settings.name

    def get_display_name(self) -> str:
        return self.settings.display_name

    def get_icon_url(self) -> str:
        return self.settings.icon_url

    def is_enabled(self) -> bool:
        return self._enabled

    def generate_auth_url(self, state: str) -> str:
        """Issue a signed AuthnRequest and return the IdP redirect URL.

        The request ID is remembered under ``state`` until the response
        comes back.

        Raises:
            NotEnabledError: If the provider is disabled.
            TrustResolutionError: If the IdP has no HTTP-Redirect SSO endpoint.
        """
        self._require_enabled()

        destination = self.trust_metadata.sso_location(BINDING_HTTP_REDIRECT)
        if not destination:
            raise TrustResolutionError("IdP metadata has no HTTP-Redirect SSO endpoint")

        request = self.sp.create_authn_request(destination)
        redirect_url = self.sp.build_redirect_url(request, relay_state=state)
        self.pending.put(state, request.id)
        logger.debug(f"Issued AuthnRequest {request.id} to {destination}")
        return redirect_url

    def validate_response(self, saml_response: str, state: str) -> SAMLAssertion:
        """Consume ``state`` and validate the response answering it.

        Raises:
            NotEnabledError: If the provider is disabled.
            UnknownStateError: If the state is unknown, expired or used.
            InvalidResponseError: If validation fails.
        """
        self._require_enabled()

        request_id = self.pending.pop(state)
        if request_id is None:
            raise UnknownStateError()

        try:
            return self.validator.validate(saml_response, request_id)
        except InvalidResponseError as e:
            logger.warning(f"Rejected SAML response: {e}")
            raise

    def authenticate(self, response: str, state: str) -> ResolvedIdentity:
        """Authenticate a SAML Response and resolve the local identity.

        Args:
            response: Base64 SAMLResponse from the ACS POST.
            state: The RelayState returned by the IdP.

        Raises:
            NotEnabledError: If the provider is disabled.
            UnknownStateError: If the state is unknown, expired or used.
            InvalidResponseError: If the response fails validation.
            InactiveUserError: If the resolved user is inactive.
        """
        assertion = self.validate_response(response, state)
        if self.identity is None:
            raise NotEnabledError(self.settings.name)

        identity = self.identity.resolve(assertion.attributes)
        logger.info(
            f"SAML authentication succeeded for {identity.username} "
            f"(assertion {assertion.assertion_id})"
        )
        return identity

    def publish_metadata(self) -> bytes:
        """Return the SP metadata document.

        Raises:
            NotEnabledError: If the provider is disabled.
        """
        self._require_enabled()
        return self.sp.metadata_xml()
