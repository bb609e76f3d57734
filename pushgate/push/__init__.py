"""
Push notification gateways for mobile platforms.

This package contains:
- APNS (Apple Push Notification Service): ES256 provider tokens, HTTP/2 dispatch
- HMS (Huawei Mobile Services): OAuth 2.0 access tokens, JSON dispatch
- Per-provider clients combining token caching with dispatch
"""

from pushgate.push.apns_provider import ApnsDispatcher
from pushgate.push.clients import ApnsPushClient, HmsPushClient, PushClient
from pushgate.push.errors import (
    AuthError,
    CredentialError,
    ProtocolNegotiationError,
    PushError,
    SigningError,
    TokenExpiredError,
    TransportError,
)
from pushgate.push.hms_oauth import OAuthClient
from pushgate.push.hms_provider import HmsDispatcher
from pushgate.push.models import (
    APNSCredential,
    ApnsEnvironment,
    DeliveryStatus,
    HMSCredential,
    OAuthToken,
    PushEnvelope,
    SendResult,
    SignedToken,
)
from pushgate.push.token_signer import CachingTokenSigner, TokenSigner

__all__ = [
    # Clients
    "PushClient",
    "ApnsPushClient",
    "HmsPushClient",
    # APNS
    "ApnsDispatcher",
    "APNSCredential",
    "ApnsEnvironment",
    "SignedToken",
    "TokenSigner",
    "CachingTokenSigner",
    # HMS
    "HmsDispatcher",
    "HMSCredential",
    "OAuthClient",
    "OAuthToken",
    # Common
    "PushEnvelope",
    "SendResult",
    "DeliveryStatus",
    # Errors
    "PushError",
    "CredentialError",
    "SigningError",
    "TransportError",
    "ProtocolNegotiationError",
    "AuthError",
    "TokenExpiredError",
]
