"""
HMS (Huawei Mobile Services) OAuth client.

Exchanges app credentials, or a refresh token, for a short-lived bearer
access token. Nothing is cached here; callers track expiry.
"""

import logging
import time
from typing import Dict, Optional

import httpx

from pushgate.push.constants import (
    HMS_GRANT_CLIENT_CREDENTIALS,
    HMS_GRANT_REFRESH_TOKEN,
    HMS_OAUTH_URL,
)
from pushgate.push.errors import AuthError, TransportError
from pushgate.push.http_client import LazyAsyncClient
from pushgate.push.models import HMSCredential, OAuthToken

logger = logging.getLogger(__name__)


class OAuthClient:
    """
    Client for the HMS OAuth 2.0 token endpoint.

    Usage:
        async with OAuthClient() as oauth:
            token = await oauth.authenticate(credential)

    Attributes:
        token_url: Token endpoint URL
        _http: Lazily created HTTP client
    """

    def __init__(
        self,
        token_url: str = HMS_OAUTH_URL,
        http: Optional[LazyAsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token_url = token_url
        self._http = http or LazyAsyncClient(transport=transport)

    async def authenticate(
        self,
        credential: HMSCredential,
        timeout: Optional[float] = None,
    ) -> OAuthToken:
        """
        Request a token with the client credentials grant.

        Raises:
            AuthError: Non-2xx response or provider error in the body
            TransportError: Connection failure or timeout
        """
        form = {
            "grant_type": HMS_GRANT_CLIENT_CREDENTIALS,
            "client_id": credential.client_id,
            "client_secret": credential.client_secret,
        }
        return await self._request_token(credential, form, timeout)

    async def refresh(
        self,
        credential: HMSCredential,
        refresh_token: str,
        timeout: Optional[float] = None,
    ) -> OAuthToken:
        """
        Request a token with the refresh token grant.

        Raises:
            AuthError: Non-2xx response or provider error in the body
            TransportError: Connection failure or timeout
        """
        if not refresh_token:
            raise ValueError("refresh_token is required")
        form = {
            "grant_type": HMS_GRANT_REFRESH_TOKEN,
            "refresh_token": refresh_token,
            "client_id": credential.client_id,
            "client_secret": credential.client_secret,
        }
        return await self._request_token(credential, form, timeout)

    async def _request_token(
        self,
        credential: HMSCredential,
        form: Dict[str, str],
        timeout: Optional[float],
    ) -> OAuthToken:
        client = self._http.get()
        request_kwargs = {}
        if timeout is not None:
            request_kwargs["timeout"] = timeout

        try:
            response = await client.post(self.token_url, data=form, **request_kwargs)
        except httpx.TimeoutException as e:
            raise TransportError(f"HMS OAuth request timed out: {e}", url=self.token_url) from e
        except httpx.HTTPError as e:
            raise TransportError(f"HMS OAuth HTTP error: {e}", url=self.token_url) from e

        issued_at = time.time()
        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            data = None

        if not response.is_success:
            token = OAuthToken.from_response(data or {}, issued_at=issued_at)
            logger.error(
                "HMS OAuth request failed",
                extra={
                    "client_id": credential.client_id,
                    "grant_type": form["grant_type"],
                    "status_code": response.status_code,
                    "error": token.error,
                    "sub_error": token.sub_error,
                }
            )
            raise AuthError(
                f"HMS OAuth endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
                error=token.error,
                sub_error=token.sub_error,
                description=token.error_description,
            )

        if data is None:
            raise AuthError(
                "HMS OAuth endpoint returned an unparseable body",
                status_code=response.status_code,
                description="Malformed token response",
            )

        token = OAuthToken.from_response(data, issued_at=issued_at)
        if not token.ok:
            logger.error(
                "HMS OAuth request rejected",
                extra={
                    "client_id": credential.client_id,
                    "grant_type": form["grant_type"],
                    "error": token.error,
                    "sub_error": token.sub_error,
                    "error_description": token.error_description,
                }
            )
            raise AuthError(
                f"HMS OAuth rejected credentials: {token.problem}",
                status_code=response.status_code,
                error=token.error,
                sub_error=token.sub_error,
                description=token.problem,
            )

        logger.info(
            "HMS access token obtained",
            extra={
                "client_id": credential.client_id,
                "grant_type": form["grant_type"],
                "expires_in": token.expires_in,
            }
        )
        return token

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        await self._http.aclose()

    async def __aenter__(self) -> "OAuthClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
