"""
Gateway error types and EigenAI error-code normalisation.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Normalised EigenAI service error codes."""
    GRANT_EXPIRED = "grant_expired"
    GRANT_NOT_FOUND = "grant_not_found"
    INSUFFICIENT_TOKENS = "insufficient_tokens"
    INVALID_SIGNATURE = "invalid_signature"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


class GatewayError(Exception):
    """Base exception for gateway errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class TransportError(GatewayError):
    """Raised when the service answers non-2xx or cannot be reached."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: ErrorCode = ErrorCode.UNKNOWN,
        body: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.body = body


class AuthError(TransportError):
    """Raised when authentication material cannot be produced or is rejected."""

    def __init__(
        self,
        message: str,
        stage: str,
        status_code: Optional[int] = None,
        code: ErrorCode = ErrorCode.UNKNOWN,
        body: Any = None,
    ):
        super().__init__(message, status_code=status_code, code=code, body=body)
        self.stage = stage


class ConfigurationError(AuthError):
    """Raised at construction when no usable credential is configured."""

    def __init__(self, message: str):
        super().__init__(message, stage="config")


class ProtocolParseError(GatewayError):
    """Raised when a 2xx response body is not a usable completion."""
    pass


class AbortedError(GatewayError):
    """Raised when the caller's abort signal fires during a request."""
    pass


def parse_error_code(body: Any) -> ErrorCode:
    """
    Map an EigenAI error body to an ErrorCode.

    The service may send {"error": {"code", "message"}}, a flat
    {"code", "message"}, a bare string, or nothing useful at all, so both the
    code field and the message text are checked.
    """
    error: Any = None
    if isinstance(body, dict):
        error = body.get("error")
    if isinstance(error, str):
        error = {"message": error}
    if not isinstance(error, dict):
        error = {}

    flat = body if isinstance(body, dict) else {}
    message = error.get("message") or flat.get("message") or ""
    if not message and isinstance(body, str):
        message = body
    code = error.get("code") or flat.get("code") or ""

    message = str(message).lower()
    code = str(code)

    if code == "grant_expired" or "grant expired" in message:
        return ErrorCode.GRANT_EXPIRED
    if code == "grant_not_found" or "no grant" in message or "grant not found" in message:
        return ErrorCode.GRANT_NOT_FOUND
    if code == "insufficient_tokens" or "insufficient" in message:
        return ErrorCode.INSUFFICIENT_TOKENS
    if code == "invalid_signature" or "invalid signature" in message:
        return ErrorCode.INVALID_SIGNATURE
    if code == "rate_limited" or "rate limit" in message:
        return ErrorCode.RATE_LIMITED
    return ErrorCode.UNKNOWN
