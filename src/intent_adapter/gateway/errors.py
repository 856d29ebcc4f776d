"""Errors raised by payment gateways."""

from typing import Optional


class GatewayError(Exception):
    """Base exception for errors reported by, or while reaching, the gateway."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        retryable: bool = False,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize gateway error.

        Args:
            message: Error message
            code: Gateway error code, when one was reported
            retryable: Whether repeating the call may succeed
            original_error: Underlying client exception
        """
        super().__init__(message)
        self.code = code
        self.retryable = retryable
        self.original_error = original_error


class GatewayConnectionError(GatewayError):
    """Network failure or timeout. The outcome at the gateway is unknown."""

    def __init__(self, message: str, code: Optional[str] = None, original_error: Optional[Exception] = None):
        super().__init__(message, code=code, retryable=True, original_error=original_error)


class GatewayRequestError(GatewayError):
    """The gateway rejected the request."""


class WebhookSignatureError(Exception):
    """A webhook payload failed signature verification."""
