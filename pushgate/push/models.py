"""
Models for the APNS and HMS push gateways.

Credentials and envelopes are validated Pydantic models. Tokens and
results are plain dataclasses produced by the gateway code.
"""

import json
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from jwt.utils import base64url_decode
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pushgate.push.constants import (
    APNS_ALLOWED_PRIORITIES,
    APNS_PRIORITY_IMMEDIATE,
    OAUTH_UNKNOWN_ERROR,
)


class ApnsEnvironment(str, Enum):
    """APNS server environment."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"


class DeliveryStatus(str, Enum):
    """Delivery status for push notifications."""

    SUCCESS = "success"
    REJECTED = "rejected"
    INVALID_TOKEN = "invalid_token"
    RATE_LIMITED = "rate_limited"
    AUTH_ERROR = "auth_error"
    SERVER_ERROR = "server_error"
    MALFORMED_RESPONSE = "malformed_response"


RETRYABLE_STATUSES = {DeliveryStatus.RATE_LIMITED, DeliveryStatus.SERVER_ERROR}


@dataclass
class SendResult:
    """Result of a single push notification send."""

    device_token: str
    success: bool
    status: DeliveryStatus = DeliveryStatus.REJECTED
    status_code: Optional[int] = None
    error_code: Optional[str] = None  # APNS reason or HMS result code
    error_message: Optional[str] = None
    request_id: Optional[str] = None  # APNS apns-id or HMS requestId
    timestamp_ms: Optional[int] = None  # APNS: last time the token was valid
    provider: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def retryable(self) -> bool:
        """True when the failure is transient on the provider side."""
        if self.success:
            return False
        if self.status in RETRYABLE_STATUSES:
            return True
        return (
            self.status == DeliveryStatus.MALFORMED_RESPONSE
            and self.status_code is not None
            and (self.status_code >= 500 or self.status_code == 429)
        )


class APNSCredential(BaseModel):
    """Token-based authentication material for APNS.

    Exactly one of key_file or private_key supplies the ES256 key.

    Attributes:
        key_file: Path to the .p8 auth key file
        private_key: PEM text, or the base64 PKCS#8 body of the .p8 file
        key_id: 10-character key identifier from Apple Developer Portal
        team_id: 10-character team identifier
        bundle_id: App bundle identifier, sent as apns-topic
    """

    model_config = ConfigDict(frozen=True)

    key_file: Optional[str] = Field(None, description="Path to .p8 auth key file")
    private_key: Optional[str] = Field(None, repr=False, description="Inline key material")
    key_id: str = Field(..., min_length=10, max_length=10, description="10-character key ID")
    team_id: str = Field(..., min_length=10, max_length=10, description="10-character team ID")
    bundle_id: str = Field(..., min_length=1, description="App bundle identifier")

    @field_validator("key_id", "team_id")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        """Validate that identifiers are alphanumeric."""
        if not v.isalnum():
            raise ValueError("Must be alphanumeric")
        return v.upper()

    @model_validator(mode="after")
    def validate_key_source(self) -> "APNSCredential":
        """Require exactly one source of key material."""
        if bool(self.key_file) == bool(self.private_key):
            raise ValueError("Provide exactly one of key_file or private_key")
        return self


class HMSCredential(BaseModel):
    """OAuth client credentials for Huawei push.

    Attributes:
        client_id: Huawei app id, also used in the send URL
        client_secret: App secret from AppGallery Connect
    """

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    client_id: str = Field(..., min_length=1, description="HMS app (client) id")
    client_secret: str = Field(..., min_length=1, repr=False, description="HMS app secret")

    @field_validator("client_id")
    @classmethod
    def validate_client_id(cls, v: str) -> str:
        """Client id is placed in the URL path, so it must be numeric."""
        v = v.strip()
        if not v.isdigit():
            raise ValueError("client_id must be numeric")
        return v


@dataclass(frozen=True)
class SignedToken:
    """APNS provider authentication token (header.payload.signature).

    The token carries no expiry claim; Apple accepts it for roughly an hour
    after issued_at.
    """

    value: str
    key_id: str
    team_id: str
    issued_at: int

    def __str__(self) -> str:
        return self.value

    @property
    def segments(self) -> tuple:
        header, payload, signature = self.value.split(".")
        return header, payload, signature

    @property
    def signing_input(self) -> bytes:
        """The exact bytes the signature covers."""
        header, payload, _ = self.segments
        return f"{header}.{payload}".encode("utf-8")

    def header(self) -> Dict[str, Any]:
        return decode_segment(self.segments[0])

    def claims(self) -> Dict[str, Any]:
        return decode_segment(self.segments[1])

    def age(self, now: Optional[float] = None) -> float:
        """Seconds elapsed since the token was issued."""
        return (time.time() if now is None else now) - self.issued_at


def decode_segment(segment: str) -> Dict[str, Any]:
    """Decode one unpadded base64url JSON segment of a signed token."""
    return json.loads(base64url_decode(segment.encode("ascii")))


def _parse_int(value: Any) -> Optional[int]:
    """Return value as an int, 0 when absent, None when not numeric."""
    if value is None or value == "":
        return 0
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


@dataclass
class OAuthToken:
    """HMS OAuth token endpoint response.

    expires_in is relative to issued_at, the local time the response was
    received. Error fields are zero/None on a successful exchange.
    """

    access_token: Optional[str] = None
    expires_in: int = 0
    token_type: Optional[str] = None
    scope: Optional[str] = None
    refresh_token: Optional[str] = None
    error: int = 0
    sub_error: int = 0
    error_description: Optional[str] = None
    issued_at: float = field(default_factory=time.time)

    @classmethod
    def from_response(cls, data: Dict[str, Any], issued_at: Optional[float] = None) -> "OAuthToken":
        """Build a token from the decoded JSON body of the token endpoint.

        Non-numeric error codes (e.g. RFC 6749 "invalid_client") become
        OAUTH_UNKNOWN_ERROR and the raw code is kept in error_description.
        A non-numeric expires_in is treated as absent.
        """
        description = data.get("error_description")
        raw_error, raw_sub_error = data.get("error"), data.get("sub_error")

        error = _parse_int(raw_error)
        if error is None:
            error = OAUTH_UNKNOWN_ERROR
            description = description or str(raw_error)
        sub_error = _parse_int(raw_sub_error)
        if sub_error is None:
            sub_error = OAUTH_UNKNOWN_ERROR
            description = description or str(raw_sub_error)

        return cls(
            access_token=data.get("access_token"),
            expires_in=_parse_int(data.get("expires_in")) or 0,
            token_type=data.get("token_type"),
            scope=data.get("scope"),
            refresh_token=data.get("refresh_token"),
            error=error,
            sub_error=sub_error,
            error_description=description,
            issued_at=time.time() if issued_at is None else issued_at,
        )

    @property
    def ok(self) -> bool:
        """True when the exchange succeeded and produced a usable token."""
        return (
            self.error == 0
            and self.sub_error == 0
            and bool(self.access_token)
            and self.expires_in > 0
        )

    @property
    def problem(self) -> Optional[str]:
        """Why the token is not usable, None when ok."""
        if self.error or self.sub_error:
            return self.error_description or f"HMS OAuth error {self.error}/{self.sub_error}"
        if not self.access_token:
            return "Token response has no access_token"
        if self.expires_in <= 0:
            return "Token response has no expires_in"
        return None

    @property
    def expires_at(self) -> float:
        return self.issued_at + self.expires_in

    def is_expired(self, now: Optional[float] = None, margin: float = 0.0) -> bool:
        """True once now + margin reaches the expiry instant."""
        now = time.time() if now is None else now
        return now + margin >= self.expires_at

    def __repr__(self) -> str:
        # Keep secrets out of logs and tracebacks
        return (
            f"OAuthToken(token_type={self.token_type!r}, expires_in={self.expires_in!r}, "
            f"error={self.error!r}, sub_error={self.sub_error!r})"
        )


class PushEnvelope(BaseModel):
    """A notification addressed to exactly one device.

    Attributes:
        device_token: Target device token
        body: JSON-serializable notification body (APNS payload or HMS message)
        expiration: APNS expiration epoch seconds, 0 = do not store
        priority: APNS priority (10 immediate, 5 power-conserving, 1 low)
        background: Send as a background (content-available) push
        collapse_id: Optional collapse identifier
        apns_id: Optional correlation UUID echoed back by APNS
        validate_only: HMS dry run, message is validated but not delivered
    """

    device_token: str = Field(..., min_length=1, description="Target device token")
    body: Dict[str, Any] = Field(default_factory=dict, description="Notification body")
    expiration: int = Field(default=0, ge=0, description="APNS expiration epoch seconds")
    priority: int = Field(default=APNS_PRIORITY_IMMEDIATE, description="APNS priority")
    background: bool = Field(default=False, description="Background push")
    collapse_id: Optional[str] = Field(None, description="Collapse identifier")
    apns_id: Optional[str] = Field(None, description="Correlation UUID")
    validate_only: bool = Field(default=False, description="HMS dry run")

    @field_validator("device_token")
    @classmethod
    def validate_device_token(cls, v: str) -> str:
        """Device tokens are placed in the URL path, reject separators."""
        v = v.strip()
        if not v or "/" in v or any(c.isspace() for c in v):
            raise ValueError("device_token must be a single non-empty token")
        return v

    @field_validator("priority")
    @classmethod
    def validate_priority(cls, v: int) -> int:
        """Validate priority is one of the APNS values."""
        if v not in APNS_ALLOWED_PRIORITIES:
            raise ValueError(f"Priority must be one of: {sorted(APNS_ALLOWED_PRIORITIES)}")
        return v

    @field_validator("collapse_id")
    @classmethod
    def validate_collapse_id(cls, v: Optional[str]) -> Optional[str]:
        """APNS limits collapse identifiers to 64 bytes."""
        if v is not None and len(v.encode("utf-8")) > 64:
            raise ValueError("collapse_id must be at most 64 bytes")
        return v

    @field_validator("apns_id")
    @classmethod
    def validate_apns_id(cls, v: Optional[str]) -> Optional[str]:
        """APNS requires a canonical UUID."""
        if v is None:
            return v
        try:
            return str(uuid.UUID(v))
        except ValueError as e:
            raise ValueError("apns_id must be a UUID") from e

    def to_hms_dict(self) -> Dict[str, Any]:
        """Build the HMS send request body targeting this device."""
        message = dict(self.body)
        message["token"] = [self.device_token]
        return {
            "validate_only": self.validate_only,
            "message": message,
        }
