"""Pytest fixtures shared by the push gateway tests

Provides:
1. Freshly generated P-256 keys and APNS/HMS credentials
2. Envelope factories with sensible defaults
3. httpx response/transport helpers that capture outgoing requests
"""
import json
import pytest
from typing import Any, Dict, List, Optional

import httpx
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from pushgate.core.config import get_settings
from pushgate.push.models import APNSCredential, HMSCredential, PushEnvelope


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are cached per process; make each test read the environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def ec_private_key():
    """Generate a P-256 key like the ones in Apple .p8 files."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def p8_pem(ec_private_key) -> bytes:
    return ec_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture
def test_key_file(tmp_path, p8_pem):
    """Create a temporary .p8 key file for testing."""
    key_file = tmp_path / "AuthKey_KEYID12345.p8"
    key_file.write_bytes(p8_pem)
    return str(key_file)


@pytest.fixture
def apns_credential(test_key_file):
    """Create a test APNS credential."""
    return APNSCredential(
        key_file=test_key_file,
        key_id="KEYID12345",
        team_id="TEAMID1234",
        bundle_id="com.example.test",
    )


@pytest.fixture
def hms_credential():
    return HMSCredential(client_id="103456789", client_secret="s3cr3t")


def make_envelope(device_token: str = "TOKEN123", **overrides) -> PushEnvelope:
    """
    Factory function to create PushEnvelope instances for testing.

    Example:
        envelope = make_envelope(background=True)
    """
    fields: Dict[str, Any] = {
        "device_token": device_token,
        "body": {"aps": {"alert": {"title": "Hello", "body": "World"}}},
    }
    fields.update(overrides)
    return PushEnvelope(**fields)


@pytest.fixture
def envelope():
    return make_envelope()


def make_response(
    status_code: int = 200,
    json_body: Optional[Any] = None,
    content: Optional[bytes] = None,
    headers: Optional[Dict[str, str]] = None,
    http2: bool = True,
) -> httpx.Response:
    """Build a real httpx.Response, optionally marked as HTTP/2."""
    extensions = {"http_version": b"HTTP/2" if http2 else b"HTTP/1.1"}
    if json_body is not None:
        return httpx.Response(status_code, json=json_body, headers=headers, extensions=extensions)
    return httpx.Response(status_code, content=content or b"", headers=headers, extensions=extensions)


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it handled."""

    def __init__(self, responder):
        self.requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return responder(request)

        super().__init__(handler)

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]

    def last_json(self) -> Any:
        return json.loads(self.last_request.content)
