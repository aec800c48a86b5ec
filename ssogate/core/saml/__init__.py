"""SAML 2.0 Service Provider implementation."""

from ssogate.core.saml.correlation import PendingRequestStore
from ssogate.core.saml.metadata import (
    SSOEndpoint,
    TrustMetadata,
    apply_sso_override,
    fetch_trust_metadata,
    parse_trust_metadata,
)
from ssogate.core.saml.provider import SAMLProvider
from ssogate.core.saml.response import (
    ResponseValidator,
    SAMLAssertion,
    SAMLAttribute,
)
from ssogate.core.saml.signature import (
    SignatureInfo,
    SignatureLocation,
    SignatureStatus,
    SignatureValidationResult,
    verify_signature,
)
from ssogate.core.saml.sp import (
    ACS_PATH,
    METADATA_PATH,
    SAMLRequest,
    ServiceProvider,
)
from ssogate.core.saml.utils import BINDING_HTTP_POST, BINDING_HTTP_REDIRECT

__all__ = [
    # Correlation
    "PendingRequestStore",
    # Trust metadata
    "SSOEndpoint",
    "TrustMetadata",
    "apply_sso_override",
    "fetch_trust_metadata",
    "parse_trust_metadata",
    # Provider
    "SAMLProvider",
    # Response
    "ResponseValidator",
    "SAMLAssertion",
    "SAMLAttribute",
    # Signature
    "SignatureInfo",
    "SignatureLocation",
    "SignatureStatus",
    "SignatureValidationResult",
    "verify_signature",
    # SP
    "ACS_PATH",
    "METADATA_PATH",
    "SAMLRequest",
    "ServiceProvider",
    "BINDING_HTTP_POST",
    "BINDING_HTTP_REDIRECT",
]
