"""
Per-provider push clients.

Each client binds one credential to its dispatcher and owns the token
lifecycle for it, exposing the same two operations:

- authenticate(): return a valid provider token, renewing it when stale
- send(envelope): authenticate, then deliver to one device

Tokens are cached with a bounded age and renewed single-flight.
"""

import asyncio
import logging
import time
from typing import Callable, Optional, Protocol, Union

from pushgate.core.config import Settings, get_settings
from pushgate.push.apns_provider import ApnsDispatcher
from pushgate.push.constants import (
    APNS_PROVIDER_TOKEN_REASONS,
    HMS_TOKEN_REFRESH_MARGIN_SECONDS,
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
from pushgate.push.token_signer import CachingTokenSigner

logger = logging.getLogger(__name__)


class PushClient(Protocol):
    """Capability set shared by every provider client."""

    async def authenticate(self, timeout: Optional[float] = None): ...

    async def send(self, envelope: PushEnvelope, timeout: Optional[float] = None) -> SendResult: ...

    async def close(self) -> None: ...


def _notify_invalid(callback: Optional[Callable[[str], None]], device_token: str) -> None:
    if callback is None:
        return
    try:
        callback(device_token)
    except Exception as e:
        logger.error(f"Error in token invalidation callback: {e}", exc_info=True)


class ApnsPushClient:
    """
    APNS client: cached provider token plus ApnsDispatcher.

    Usage:
        async with ApnsPushClient(credential, ApnsEnvironment.PRODUCTION) as client:
            result = await client.send(envelope)
    """

    def __init__(
        self,
        credential: APNSCredential,
        environment: Union[ApnsEnvironment, str] = ApnsEnvironment.PRODUCTION,
        signer: Optional[CachingTokenSigner] = None,
        dispatcher: Optional[ApnsDispatcher] = None,
        on_token_invalid: Optional[Callable[[str], None]] = None,
    ):
        """
        Args:
            credential: APNS credential
            environment: development or production endpoint
            signer: Token cache (50 minute max age by default)
            dispatcher: Dispatcher to send through
            on_token_invalid: Callback(device_token) for unregistered devices
        """
        self.credential = credential
        self.environment = ApnsEnvironment(environment)
        self._signer = signer or CachingTokenSigner()
        self._dispatcher = dispatcher or ApnsDispatcher()
        self._on_token_invalid = on_token_invalid

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        **kwargs,
    ) -> "ApnsPushClient":
        """Build a client from APNS_* settings."""
        settings = settings or get_settings()
        kwargs.setdefault(
            "signer", CachingTokenSigner(max_age_seconds=settings.APNS_TOKEN_MAX_AGE_SECONDS)
        )
        return cls(settings.apns_credential(), settings.APNS_ENVIRONMENT, **kwargs)

    async def authenticate(self, timeout: Optional[float] = None) -> SignedToken:
        """Return the cached provider token, signing a fresh one when stale."""
        return self._signer.sign(self.credential)

    async def send(self, envelope: PushEnvelope, timeout: Optional[float] = None) -> SendResult:
        token = await self.authenticate()
        result = await self._dispatcher.send(
            self.credential, token, envelope, self.environment, timeout=timeout
        )

        if result.status == DeliveryStatus.AUTH_ERROR and result.error_code in APNS_PROVIDER_TOKEN_REASONS:
            self._signer.invalidate(self.credential)
        elif result.status == DeliveryStatus.INVALID_TOKEN:
            _notify_invalid(self._on_token_invalid, envelope.device_token)

        return result

    async def close(self) -> None:
        await self._dispatcher.close()

    async def __aenter__(self) -> "ApnsPushClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class HmsPushClient:
    """
    HMS client: cached OAuth access token plus HmsDispatcher.

    The access token is renewed refresh_margin_seconds before it expires.
    Concurrent callers that find no fresh token wait on a single exchange.
    A token is only cached once the exchange has completed, so a cancelled
    or failed exchange leaves the cache untouched.

    Usage:
        async with HmsPushClient(credential) as client:
            result = await client.send(envelope)
    """

    def __init__(
        self,
        credential: HMSCredential,
        oauth: Optional[OAuthClient] = None,
        dispatcher: Optional[HmsDispatcher] = None,
        refresh_margin_seconds: float = HMS_TOKEN_REFRESH_MARGIN_SECONDS,
        on_token_invalid: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.credential = credential
        self.refresh_margin_seconds = refresh_margin_seconds
        self._oauth = oauth or OAuthClient()
        self._dispatcher = dispatcher or HmsDispatcher()
        self._on_token_invalid = on_token_invalid
        self._clock = clock
        self._token: Optional[OAuthToken] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        **kwargs,
    ) -> "HmsPushClient":
        """Build a client from HMS_* settings."""
        settings = settings or get_settings()
        kwargs.setdefault("refresh_margin_seconds", settings.HMS_TOKEN_REFRESH_MARGIN_SECONDS)
        return cls(settings.hms_credential(), **kwargs)

    def _is_fresh(self, token: Optional[OAuthToken]) -> bool:
        if token is None:
            return False
        # Short-lived tokens would otherwise be stale on arrival
        margin = min(self.refresh_margin_seconds, token.expires_in / 2)
        return not token.is_expired(now=self._clock(), margin=margin)

    async def authenticate(self, timeout: Optional[float] = None) -> OAuthToken:
        """Return a fresh access token, exchanging credentials if needed."""
        if self._is_fresh(self._token):
            return self._token

        async with self._lock:
            if self._is_fresh(self._token):
                return self._token

            token = await self._oauth.authenticate(self.credential, timeout=timeout)
            self._token = token
            return token

    def invalidate(self, token: Optional[OAuthToken] = None) -> None:
        """Forget the cached access token.

        When token is given, it is forgotten only if still cached.
        """
        if token is None or self._token is token:
            self._token = None

    async def send(self, envelope: PushEnvelope, timeout: Optional[float] = None) -> SendResult:
        token = await self.authenticate(timeout=timeout)
        result = await self._dispatcher.send(self.credential, token, envelope, timeout=timeout)

        if result.status == DeliveryStatus.AUTH_ERROR:
            logger.warning(
                "HMS rejected access token, dropping cached token",
                extra={"client_id": self.credential.client_id, "code": result.error_code},
            )
            self.invalidate(token)
        elif result.status == DeliveryStatus.INVALID_TOKEN:
            _notify_invalid(self._on_token_invalid, envelope.device_token)

        return result

    async def close(self) -> None:
        await self._dispatcher.close()
        await self._oauth.close()

    async def __aenter__(self) -> "HmsPushClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
