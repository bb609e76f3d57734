"""
Exception taxonomy for the push gateways.

Provider-side delivery rejections are not exceptions: dispatchers return
them as SendResult values. Exceptions are reserved for failures that stop a
call from producing a provider verdict at all.
"""

from typing import Optional


class PushError(Exception):
    """Base class for all gateway errors."""

    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class CredentialError(PushError):
    """Malformed or unsupported credential material. Never retryable."""


class SigningError(CredentialError):
    """The provider token could not be signed with the configured key."""


class TransportError(PushError):
    """Connection failure, timeout or protocol failure talking to a gateway."""

    retryable = True

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class ProtocolNegotiationError(TransportError):
    """The connection could not be established over the required protocol."""


class TokenExpiredError(PushError):
    """An access token was handed to a dispatcher after its expiry instant."""


class AuthError(PushError):
    """
    The OAuth endpoint rejected the token exchange.

    Raised for non-2xx responses and for 2xx bodies carrying a non-zero
    provider error code.

    Attributes:
        status_code: HTTP status of the token endpoint response
        error: Provider error code (0 when absent)
        sub_error: Provider sub error code (0 when absent)
        description: Provider error description
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error: int = 0,
        sub_error: int = 0,
        description: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.sub_error = sub_error
        self.description = description
        self.retryable = status_code is not None and (status_code >= 500 or status_code == 429)

    def __repr__(self) -> str:
        return (
            f"AuthError(status_code={self.status_code!r}, error={self.error!r}, "
            f"sub_error={self.sub_error!r}, description={self.description!r})"
        )
