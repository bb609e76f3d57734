"""
APNS provider token signing.

Produces ES256 signed tokens (header.payload.signature, unpadded base64url
segments) from an APNS auth key. Signing does no network I/O.
"""

import base64
import binascii
import logging
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Optional

import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from pushgate.push.constants import JWT_ALGORITHM, JWT_TOKEN_MAX_AGE_SECONDS
from pushgate.push.errors import CredentialError, SigningError
from pushgate.push.models import APNSCredential, SignedToken

logger = logging.getLogger(__name__)

PEM_MARKER = "-----BEGIN"


def load_private_key(credential: APNSCredential) -> ec.EllipticCurvePrivateKey:
    """
    Load the P-256 private key referenced by an APNS credential.

    Accepts a .p8 file, inline PEM text, or the bare base64 PKCS#8 body.

    Raises:
        CredentialError: Key is missing, unparseable, not EC or not P-256
    """
    if credential.key_file:
        key_path = Path(credential.key_file)
        if not key_path.exists():
            raise CredentialError(f"APNS key file not found: {key_path}")
        key_data = key_path.read_bytes()
    else:
        key_data = credential.private_key.strip().encode("utf-8")

    try:
        if PEM_MARKER.encode() in key_data:
            private_key = serialization.load_pem_private_key(key_data, password=None)
        else:
            der = base64.b64decode(b"".join(key_data.split()), validate=True)
            private_key = serialization.load_der_private_key(der, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm, binascii.Error) as e:
        raise CredentialError(f"APNS key {credential.key_id} could not be parsed: {e}") from e

    if not isinstance(private_key, ec.EllipticCurvePrivateKey):
        raise CredentialError("APNS key must be an EC private key (ES256)")
    if not isinstance(private_key.curve, ec.SECP256R1):
        raise CredentialError(
            f"APNS key must use curve P-256, got {private_key.curve.name}"
        )

    return private_key


class TokenSigner:
    """
    Signs APNS provider tokens.

    Header is {"alg": "ES256", "kid": key_id}, payload is
    {"iss": team_id, "iat": now}. Parsed keys are kept per credential so
    repeated signing does not re-read key material.

    Attributes:
        _clock: Wall clock returning epoch seconds
        _keys: Parsed private keys by credential
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._keys: Dict[APNSCredential, ec.EllipticCurvePrivateKey] = {}
        self._keys_lock = threading.Lock()

    def _private_key(self, credential: APNSCredential) -> ec.EllipticCurvePrivateKey:
        with self._keys_lock:
            key = self._keys.get(credential)
            if key is None:
                key = load_private_key(credential)
                self._keys[credential] = key
                logger.debug(
                    "Loaded APNS private key",
                    extra={"key_id": credential.key_id},
                )
            return key

    def sign(self, credential: APNSCredential) -> SignedToken:
        """
        Sign a new provider token with iat set to the current time.

        Raises:
            CredentialError: Key material cannot be loaded
            SigningError: The signature operation failed
        """
        private_key = self._private_key(credential)
        issued_at = int(self._clock())

        try:
            value = jwt.encode(
                {"iss": credential.team_id, "iat": issued_at},
                private_key,
                algorithm=JWT_ALGORITHM,
                headers={"kid": credential.key_id, "typ": None},
            )
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise SigningError(f"Failed to sign APNS token: {e}") from e

        logger.debug(
            "Generated new APNS JWT",
            extra={
                "team_id": credential.team_id,
                "key_id": credential.key_id,
                "iat": issued_at,
            }
        )

        return SignedToken(
            value=value,
            key_id=credential.key_id,
            team_id=credential.team_id,
            issued_at=issued_at,
        )


class CachingTokenSigner:
    """
    Keeps one signed token per credential until it reaches max_age_seconds.

    Signing happens under a lock, so concurrent first use results in a
    single signature and every caller receives the same token. A failed
    signature caches nothing.

    Usage:
        signer = CachingTokenSigner(max_age_seconds=3000)
        token = signer.sign(credential)
    """

    def __init__(
        self,
        signer: Optional[TokenSigner] = None,
        max_age_seconds: float = JWT_TOKEN_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if max_age_seconds <= 0:
            raise ValueError("max_age_seconds must be positive")
        self._signer = signer or TokenSigner(clock=clock)
        self._clock = clock
        self.max_age_seconds = max_age_seconds
        self._cache: Dict[APNSCredential, SignedToken] = {}
        self._lock = threading.Lock()

    def sign(self, credential: APNSCredential) -> SignedToken:
        """Return the cached token, signing a new one once it is too old."""
        with self._lock:
            token = self._cache.get(credential)
            if token is not None and token.age(self._clock()) < self.max_age_seconds:
                return token

            token = self._signer.sign(credential)
            self._cache[credential] = token
            return token

    def invalidate(self, credential: Optional[APNSCredential] = None) -> None:
        """Drop the cached token for one credential, or all of them."""
        with self._lock:
            if credential is None:
                self._cache.clear()
            else:
                self._cache.pop(credential, None)
        logger.info(
            "APNS token cache invalidated",
            extra={"key_id": credential.key_id if credential else "*"},
        )
