"""
Tests for the lazily created shared HTTP client.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import httpx
import pytest

from pushgate.push.errors import ProtocolNegotiationError
from pushgate.push.http_client import LazyAsyncClient


class TestLazyAsyncClient:
    """Tests for LazyAsyncClient."""

    def test_not_created_until_first_use(self):
        holder = LazyAsyncClient()
        assert holder.is_open is False

    @pytest.mark.asyncio
    async def test_created_once_under_concurrent_first_access(self):
        holder = LazyAsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        workers = 16
        barrier = threading.Barrier(workers)

        def first_use():
            barrier.wait()
            return holder.get()

        with patch("pushgate.push.http_client.httpx.AsyncClient", wraps=httpx.AsyncClient) as factory:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                clients = list(pool.map(lambda _: first_use(), range(workers)))

        assert factory.call_count == 1
        assert all(c is clients[0] for c in clients)
        await holder.aclose()

    @pytest.mark.asyncio
    async def test_recreated_after_close(self):
        holder = LazyAsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))

        first = holder.get()
        await holder.aclose()
        second = holder.get()

        assert first.is_closed
        assert second is not first
        await holder.aclose()

    @pytest.mark.asyncio
    async def test_aclose_without_client_is_noop(self):
        await LazyAsyncClient().aclose()

    def test_settings_limits_applied(self, monkeypatch):
        monkeypatch.setenv("HTTP_TIMEOUT_SECONDS", "5")
        holder = LazyAsyncClient()
        assert holder._timeout.read == 5.0
        assert holder._timeout.connect == 10.0

    def test_missing_http2_support_fails_fast(self):
        holder = LazyAsyncClient(http2=True)
        with patch(
            "pushgate.push.http_client.httpx.AsyncClient",
            side_effect=ImportError("Using http2=True, but the 'h2' package is not installed."),
        ):
            with pytest.raises(ProtocolNegotiationError, match="HTTP/2"):
                holder.get()
