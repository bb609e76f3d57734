"""
Tests for APNS provider token signing and caching.
"""

import base64
import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import jwt
import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature
from jwt.utils import base64url_decode

from pushgate.push.constants import JWT_ALGORITHM
from pushgate.push.errors import CredentialError, SigningError
from pushgate.push.models import APNSCredential, decode_segment
from pushgate.push.token_signer import CachingTokenSigner, TokenSigner, load_private_key


class FakeClock:
    """Controllable wall clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _credential(**key_source) -> APNSCredential:
    return APNSCredential(
        key_id="KEYID12345",
        team_id="TEAMID1234",
        bundle_id="com.example.test",
        **key_source,
    )


# =============================================================================
# Key loading
# =============================================================================

class TestLoadPrivateKey:
    """Tests for reading APNS auth keys."""

    def test_load_from_file(self, apns_credential):
        key = load_private_key(apns_credential)
        assert isinstance(key, ec.EllipticCurvePrivateKey)
        assert isinstance(key.curve, ec.SECP256R1)

    def test_load_inline_pem(self, p8_pem):
        key = load_private_key(_credential(private_key=p8_pem.decode()))
        assert isinstance(key, ec.EllipticCurvePrivateKey)

    def test_load_bare_base64_pkcs8(self, ec_private_key):
        """The .p8 body pasted without BEGIN/END lines is accepted."""
        der = ec_private_key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        key = load_private_key(_credential(private_key=base64.b64encode(der).decode()))
        assert key.private_numbers() == ec_private_key.private_numbers()

    def test_missing_file(self, tmp_path):
        with pytest.raises(CredentialError, match="not found"):
            load_private_key(_credential(key_file=str(tmp_path / "missing.p8")))

    def test_garbage_key_material(self):
        with pytest.raises(CredentialError):
            load_private_key(_credential(private_key="definitely-not-a-key"))

    def test_wrong_curve_rejected(self):
        key = ec.generate_private_key(ec.SECP384R1())
        pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode()
        with pytest.raises(CredentialError, match="P-256"):
            load_private_key(_credential(private_key=pem))

    def test_rsa_key_rejected(self):
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode()
        with pytest.raises(CredentialError, match="EC private key"):
            load_private_key(_credential(private_key=pem))


# =============================================================================
# TokenSigner
# =============================================================================

class TestTokenSigner:
    """Tests for TokenSigner."""

    def test_header_and_claims(self, apns_credential):
        clock = FakeClock(1_700_000_123.9)
        token = TokenSigner(clock=clock).sign(apns_credential)

        assert token.header() == {"alg": JWT_ALGORITHM, "kid": "KEYID12345"}
        assert token.claims() == {"iss": "TEAMID1234", "iat": 1_700_000_123}
        assert token.issued_at == 1_700_000_123

    def test_signature_verifies_over_exact_signing_input(self, apns_credential, ec_private_key):
        token = TokenSigner().sign(apns_credential)
        raw = base64url_decode(token.segments[2].encode())
        assert len(raw) == 64  # r || s, not DER

        der = encode_dss_signature(
            int.from_bytes(raw[:32], "big"),
            int.from_bytes(raw[32:], "big"),
        )
        ec_private_key.public_key().verify(der, token.signing_input, ec.ECDSA(hashes.SHA256()))

    def test_pyjwt_verifies_token(self, apns_credential, ec_private_key):
        token = TokenSigner().sign(apns_credential)
        decoded = jwt.decode(token.value, ec_private_key.public_key(), algorithms=[JWT_ALGORITHM])
        assert decoded["iss"] == apns_credential.team_id

    def test_segments_are_unpadded_base64url(self, apns_credential):
        for _ in range(5):
            token = TokenSigner().sign(apns_credential)
            for segment in token.segments:
                assert "=" not in segment
                assert "+" not in segment
                assert "/" not in segment

    def test_segments_round_trip(self, apns_credential):
        token = TokenSigner(clock=FakeClock(1_700_000_000)).sign(apns_credential)
        header, payload, _ = token.value.split(".")

        assert decode_segment(header) == {"alg": "ES256", "kid": "KEYID12345"}
        assert decode_segment(payload) == {"iss": "TEAMID1234", "iat": 1_700_000_000}

    def test_str_is_token_value(self, apns_credential):
        token = TokenSigner().sign(apns_credential)
        assert str(token) == token.value
        assert f"bearer {token}" == f"bearer {token.value}"

    def test_signing_failure_raises_signing_error(self, apns_credential):
        with patch("pushgate.push.token_signer.jwt.encode", side_effect=jwt.InvalidKeyError("bad key")):
            with pytest.raises(SigningError):
                TokenSigner().sign(apns_credential)

    def test_signing_error_is_credential_error(self):
        assert issubclass(SigningError, CredentialError)
        assert SigningError("x").retryable is False

    def test_key_parsed_once(self, apns_credential):
        signer = TokenSigner()
        with patch(
            "pushgate.push.token_signer.load_private_key", wraps=load_private_key
        ) as loader:
            signer.sign(apns_credential)
            signer.sign(apns_credential)
        assert loader.call_count == 1


# =============================================================================
# CachingTokenSigner
# =============================================================================

class TestCachingTokenSigner:
    """Tests for bounded-age token caching."""

    def test_reuses_token_within_max_age(self, apns_credential):
        clock = FakeClock()
        signer = CachingTokenSigner(max_age_seconds=3000, clock=clock)

        first = signer.sign(apns_credential)
        clock.advance(5 * 60)
        second = signer.sign(apns_credential)

        assert second.value == first.value

    def test_regenerates_after_max_age(self, apns_credential):
        clock = FakeClock()
        signer = CachingTokenSigner(max_age_seconds=3000, clock=clock)

        first = signer.sign(apns_credential)
        clock.advance(3001)
        second = signer.sign(apns_credential)

        assert second.value != first.value
        assert second.claims()["iat"] > first.claims()["iat"]

    def test_tokens_cached_per_credential(self, apns_credential, test_key_file):
        other = APNSCredential(
            key_file=test_key_file,
            key_id="OTHERKEY12",
            team_id="TEAMID1234",
            bundle_id="com.example.test",
        )
        signer = CachingTokenSigner()

        assert signer.sign(apns_credential).key_id == "KEYID12345"
        assert signer.sign(other).key_id == "OTHERKEY12"

    def test_invalidate_forces_new_signature(self, apns_credential):
        clock = FakeClock()
        signer = CachingTokenSigner(clock=clock)

        first = signer.sign(apns_credential)
        signer.invalidate(apns_credential)
        clock.advance(1)
        second = signer.sign(apns_credential)

        assert second.issued_at == first.issued_at + 1

    def test_failed_signature_is_not_cached(self, apns_credential):
        signer = CachingTokenSigner()
        with patch("pushgate.push.token_signer.jwt.encode", side_effect=ValueError("boom")):
            with pytest.raises(SigningError):
                signer.sign(apns_credential)

        assert signer.sign(apns_credential).value.count(".") == 2

    def test_concurrent_first_use_signs_once(self, apns_credential):
        signer = CachingTokenSigner()
        workers = 16
        barrier = threading.Barrier(workers)

        def sign():
            barrier.wait()
            return signer.sign(apns_credential)

        with patch("pushgate.push.token_signer.jwt.encode", wraps=jwt.encode) as encode:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                tokens = list(pool.map(lambda _: sign(), range(workers)))

        assert encode.call_count == 1
        assert len({t.value for t in tokens}) == 1

    def test_rejects_non_positive_max_age(self):
        with pytest.raises(ValueError):
            CachingTokenSigner(max_age_seconds=0)
