"""
HMS (Huawei Mobile Services) Push Dispatcher.

Sends a single message through the HMS Push Kit v1 send API.
"""

import logging
from typing import Optional, Union

import httpx

from pushgate.core.logging_config import mask_token
from pushgate.push.constants import (
    HMS_AUTH_ERROR_CODES,
    HMS_RESULT_CODES,
    HMS_SEND_URL,
    HMS_SERVER_ERROR_CODES,
    HMS_SUCCESS_CODE,
    HMS_TOKEN_INVALID_CODES,
    UNKNOWN_PROVIDER_ERROR,
)
from pushgate.push.errors import TokenExpiredError, TransportError
from pushgate.push.http_client import LazyAsyncClient
from pushgate.push.models import (
    DeliveryStatus,
    HMSCredential,
    OAuthToken,
    PushEnvelope,
    SendResult,
)

logger = logging.getLogger(__name__)

PROVIDER = "hms"


class HmsDispatcher:
    """
    Dispatcher for sending push notifications to Huawei devices.

    Success is decided by the result code in the response body, never by
    the HTTP status alone: HMS reports most failures inside a 200.

    Usage:
        async with HmsDispatcher() as dispatcher:
            result = await dispatcher.send(credential, access_token, envelope)
    """

    def __init__(
        self,
        send_url: str = HMS_SEND_URL,
        http: Optional[LazyAsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.send_url = send_url
        self._http = http or LazyAsyncClient(transport=transport)

    def build_url(self, credential: HMSCredential) -> str:
        return self.send_url.format(client_id=credential.client_id)

    async def send(
        self,
        credential: HMSCredential,
        access_token: Union[OAuthToken, str],
        envelope: PushEnvelope,
        timeout: Optional[float] = None,
    ) -> SendResult:
        """
        Send a push message to a single device.

        Args:
            credential: HMS credential (supplies the app id in the URL)
            access_token: OAuthToken or raw bearer token string
            envelope: Target device and HMS message body
            timeout: Optional per-call timeout in seconds

        Returns:
            SendResult describing the HMS verdict

        Raises:
            TokenExpiredError: access_token is an OAuthToken past its expiry
            TransportError: Connection failure or timeout
        """
        if isinstance(access_token, OAuthToken):
            if access_token.is_expired():
                raise TokenExpiredError("HMS access token has expired")
            access_token = access_token.access_token

        url = self.build_url(credential)
        headers = {"authorization": f"bearer {access_token}"}
        client = self._http.get()

        request_kwargs = {}
        if timeout is not None:
            request_kwargs["timeout"] = timeout

        try:
            response = await client.post(
                url, json=envelope.to_hms_dict(), headers=headers, **request_kwargs
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"HMS request timed out: {e}", url=url) from e
        except httpx.HTTPError as e:
            raise TransportError(f"HMS HTTP error: {e}", url=url) from e

        return self._classify(envelope.device_token, response)

    def _classify(self, device_token: str, response: httpx.Response) -> SendResult:
        status_code = response.status_code
        try:
            data = response.json()
        except ValueError:
            data = None

        code = data.get("code") if isinstance(data, dict) else None
        if code is None:
            logger.error(
                "HMS returned an unparseable response body",
                extra={"status_code": status_code, "device_token": mask_token(device_token)},
            )
            return SendResult(
                device_token=device_token,
                success=False,
                status=DeliveryStatus.MALFORMED_RESPONSE,
                status_code=status_code,
                error_code=UNKNOWN_PROVIDER_ERROR,
                error_message=f"Unparseable HMS response body (HTTP {status_code})",
                provider=PROVIDER,
            )

        code = str(code)
        message = data.get("msg")
        request_id = data.get("requestId")

        if code == HMS_SUCCESS_CODE and response.is_success:
            logger.info(
                "HMS notification sent successfully",
                extra={"device_token": mask_token(device_token), "request_id": request_id},
            )
            return SendResult(
                device_token=device_token,
                success=True,
                status=DeliveryStatus.SUCCESS,
                status_code=status_code,
                request_id=request_id,
                provider=PROVIDER,
            )

        if code in HMS_TOKEN_INVALID_CODES:
            status = DeliveryStatus.INVALID_TOKEN
        elif code in HMS_AUTH_ERROR_CODES or status_code in (401, 403):
            status = DeliveryStatus.AUTH_ERROR
        elif status_code == 429:
            status = DeliveryStatus.RATE_LIMITED
        elif code in HMS_SERVER_ERROR_CODES or status_code >= 500:
            status = DeliveryStatus.SERVER_ERROR
        else:
            status = DeliveryStatus.REJECTED

        logger.error(
            f"HMS rejected notification: {code}",
            extra={
                "status_code": status_code,
                "code": code,
                "hms_msg": message,
                "request_id": request_id,
                "device_token": mask_token(device_token),
            }
        )

        return SendResult(
            device_token=device_token,
            success=False,
            status=status,
            status_code=status_code,
            error_code=code,
            error_message=message if message is not None else HMS_RESULT_CODES.get(code),
            request_id=request_id,
            provider=PROVIDER,
        )

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        await self._http.aclose()

    async def __aenter__(self) -> "HmsDispatcher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
