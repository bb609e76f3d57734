"""
APNS (Apple Push Notification Service) Dispatcher.

Sends a single notification over HTTP/2 using token-based authentication.

Features:
- HTTP/2 connection with persistent connection pooling
- Gateway-mandated apns-* headers built from the envelope
- Classification of every APNS response into a SendResult
- Fails fast when the connection is not HTTP/2
"""

import json
import logging
from typing import Dict, Optional, Tuple, Union

import httpx

from pushgate.core.logging_config import mask_token
from pushgate.push.constants import (
    APNS_AUTH_ERROR_STATUS_CODES,
    APNS_COLLAPSE_ID_HEADER,
    APNS_DEVICE_PATH,
    APNS_ERROR_CODES,
    APNS_HOSTS,
    APNS_ID_HEADER,
    APNS_PORT,
    APNS_PUSH_TYPE_ALERT,
    APNS_PUSH_TYPE_BACKGROUND,
    APNS_RATE_LIMIT_STATUS_CODES,
    APNS_TOKEN_INVALID_REASONS,
    APNS_TOKEN_INVALID_STATUS_CODES,
    HTTP2_VERSION,
    UNKNOWN_PROVIDER_ERROR,
)
from pushgate.push.errors import ProtocolNegotiationError, TransportError
from pushgate.push.http_client import LazyAsyncClient
from pushgate.push.models import (
    APNSCredential,
    ApnsEnvironment,
    DeliveryStatus,
    PushEnvelope,
    SendResult,
    SignedToken,
)

logger = logging.getLogger(__name__)

PROVIDER = "apns"


class ApnsDispatcher:
    """
    Dispatcher for sending push notifications to Apple devices.

    Stateless apart from one pooled HTTP/2 client created on first send.
    Token signing and caching belong to the caller.

    Usage:
        async with ApnsDispatcher() as dispatcher:
            result = await dispatcher.send(credential, token, envelope, "production")

    Attributes:
        _http: Lazily created HTTP/2 client
    """

    def __init__(
        self,
        http: Optional[LazyAsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize APNS dispatcher.

        Args:
            http: Optional client holder (a new HTTP/2 one by default)
            transport: Optional httpx transport for the default holder
        """
        self._http = http or LazyAsyncClient(http2=True, transport=transport)

    @staticmethod
    def base_url(environment: Union[ApnsEnvironment, str]) -> str:
        """Return the fixed endpoint for an environment."""
        environment = ApnsEnvironment(environment)
        return f"https://{APNS_HOSTS[environment.value]}:{APNS_PORT}"

    def build_url(self, device_token: str, environment: Union[ApnsEnvironment, str]) -> str:
        return f"{self.base_url(environment)}{APNS_DEVICE_PATH.format(device_token=device_token)}"

    @staticmethod
    def build_headers(
        credential: APNSCredential,
        token: Union[SignedToken, str],
        envelope: PushEnvelope,
    ) -> Dict[str, str]:
        """Build request headers for APNS."""
        headers = {
            "authorization": f"bearer {token}",
            "apns-topic": credential.bundle_id,
            "apns-expiration": str(envelope.expiration),
            "apns-priority": str(envelope.priority),
            "apns-push-type": (
                APNS_PUSH_TYPE_BACKGROUND if envelope.background else APNS_PUSH_TYPE_ALERT
            ),
        }

        if envelope.apns_id:
            headers[APNS_ID_HEADER] = envelope.apns_id
        if envelope.collapse_id:
            headers[APNS_COLLAPSE_ID_HEADER] = envelope.collapse_id

        return headers

    async def send(
        self,
        credential: APNSCredential,
        token: Union[SignedToken, str],
        envelope: PushEnvelope,
        environment: Union[ApnsEnvironment, str] = ApnsEnvironment.PRODUCTION,
        timeout: Optional[float] = None,
    ) -> SendResult:
        """
        Send a push notification to a single device.

        Args:
            credential: APNS credential (supplies apns-topic)
            token: Signed provider token
            envelope: Target device, body and delivery controls
            environment: development or production endpoint
            timeout: Optional per-call timeout in seconds

        Returns:
            SendResult describing the APNS verdict

        Raises:
            TransportError: Connection failure or timeout
            ProtocolNegotiationError: The connection was not HTTP/2
        """
        url = self.build_url(envelope.device_token, environment)
        headers = self.build_headers(credential, token, envelope)
        body = json.dumps(envelope.body, separators=(",", ":"))
        client = self._http.get()

        request_kwargs = {}
        if timeout is not None:
            request_kwargs["timeout"] = timeout

        try:
            response = await client.post(url, content=body, headers=headers, **request_kwargs)
        except httpx.TimeoutException as e:
            logger.warning(
                "APNS request timed out",
                extra={"device_token": mask_token(envelope.device_token)},
            )
            raise TransportError(f"APNS request timed out: {e}", url=url) from e
        except httpx.HTTPError as e:
            logger.warning(
                f"APNS HTTP error: {e}",
                extra={"device_token": mask_token(envelope.device_token)},
            )
            raise TransportError(f"APNS HTTP error: {e}", url=url) from e

        if response.http_version != HTTP2_VERSION:
            raise ProtocolNegotiationError(
                f"APNS requires HTTP/2, connection used {response.http_version}"
            )

        return self._classify(envelope.device_token, response)

    @staticmethod
    def _parse_error_body(response: httpx.Response) -> Tuple[Optional[str], Optional[int]]:
        """Extract (reason, timestamp) from an error body, (None, None) if malformed."""
        if not response.content:
            return None, None
        try:
            data = response.json()
        except ValueError:
            return None, None
        if not isinstance(data, dict) or not isinstance(data.get("reason"), str):
            return None, None

        timestamp = data.get("timestamp")
        try:
            timestamp = int(timestamp) if timestamp is not None else None
        except (TypeError, ValueError, OverflowError):
            timestamp = None
        return data["reason"], timestamp

    def _classify(self, device_token: str, response: httpx.Response) -> SendResult:
        status_code = response.status_code
        apns_id = response.headers.get(APNS_ID_HEADER)

        if status_code == 200:
            logger.info(
                "APNS notification sent successfully",
                extra={
                    "device_token": mask_token(device_token),
                    "apns_id": apns_id,
                }
            )
            return SendResult(
                device_token=device_token,
                success=True,
                status=DeliveryStatus.SUCCESS,
                status_code=status_code,
                request_id=apns_id,
                provider=PROVIDER,
            )

        reason, timestamp = self._parse_error_body(response)

        if reason is None:
            logger.error(
                "APNS returned an unparseable error body",
                extra={"status_code": status_code, "device_token": mask_token(device_token)},
            )
            return SendResult(
                device_token=device_token,
                success=False,
                status=DeliveryStatus.MALFORMED_RESPONSE,
                status_code=status_code,
                error_code=UNKNOWN_PROVIDER_ERROR,
                error_message=f"Unparseable APNS error body (HTTP {status_code})",
                request_id=apns_id,
                provider=PROVIDER,
            )

        if status_code in APNS_TOKEN_INVALID_STATUS_CODES or reason in APNS_TOKEN_INVALID_REASONS:
            status = DeliveryStatus.INVALID_TOKEN
        elif status_code in APNS_AUTH_ERROR_STATUS_CODES:
            status = DeliveryStatus.AUTH_ERROR
        elif status_code in APNS_RATE_LIMIT_STATUS_CODES:
            status = DeliveryStatus.RATE_LIMITED
        elif status_code >= 500:
            status = DeliveryStatus.SERVER_ERROR
        else:
            status = DeliveryStatus.REJECTED

        log = logger.warning if status in (DeliveryStatus.INVALID_TOKEN, DeliveryStatus.RATE_LIMITED) else logger.error
        log(
            f"APNS rejected notification: {reason}",
            extra={
                "status_code": status_code,
                "reason": reason,
                "device_token": mask_token(device_token),
            }
        )

        return SendResult(
            device_token=device_token,
            success=False,
            status=status,
            status_code=status_code,
            error_code=reason,
            error_message=APNS_ERROR_CODES.get(reason, reason),
            request_id=apns_id,
            timestamp_ms=timestamp,
            provider=PROVIDER,
        )

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        await self._http.aclose()

    async def __aenter__(self) -> "ApnsDispatcher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
