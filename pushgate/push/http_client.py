"""
Lazily created, shared httpx client for the gateway components.
"""

import logging
import threading
from typing import Optional

import httpx

from pushgate.core.config import get_settings
from pushgate.push.errors import ProtocolNegotiationError

logger = logging.getLogger(__name__)


class LazyAsyncClient:
    """
    Owns at most one httpx.AsyncClient, created on first use.

    Creation is guarded by a lock so concurrent first access from threads or
    tasks builds a single connection pool. The client is recreated if it
    was closed.

    Attributes:
        http2: Require HTTP/2 (the h2 package must be installed)
        _client: The pooled client, None until first use
    """

    def __init__(
        self,
        http2: bool = False,
        timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        max_connections: Optional[int] = None,
        max_keepalive_connections: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.http2 = http2
        self._timeout = httpx.Timeout(
            timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS,
            connect=connect_timeout if connect_timeout is not None else settings.HTTP_CONNECT_TIMEOUT_SECONDS,
        )
        self._limits = httpx.Limits(
            max_connections=max_connections or settings.HTTP_MAX_CONNECTIONS,
            max_keepalive_connections=max_keepalive_connections or settings.HTTP_MAX_KEEPALIVE_CONNECTIONS,
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._client is not None and not self._client.is_closed

    def get(self) -> httpx.AsyncClient:
        """Get or create the pooled client."""
        with self._lock:
            if self._client is None or self._client.is_closed:
                try:
                    self._client = httpx.AsyncClient(
                        http2=self.http2,
                        timeout=self._timeout,
                        limits=self._limits,
                        transport=self._transport,
                    )
                except ImportError as e:
                    # httpx raises ImportError when http2=True and h2 is missing
                    raise ProtocolNegotiationError(
                        f"HTTP/2 transport unavailable: {e}"
                    ) from e
                logger.debug("HTTP client created", extra={"http2": self.http2})
            return self._client

    async def aclose(self) -> None:
        """Close the pooled client and release its connections."""
        with self._lock:
            client, self._client = self._client, None
        if client is not None and not client.is_closed:
            await client.aclose()
            logger.debug("HTTP client closed")
