"""
scriptstream - Error Definitions

Error taxonomy for the streaming engine with retryable vs terminal
classification.

Propagation rules:
- ShapeError is recovered locally (fragment dropped) and never reaches callers
- RetryableTransportError is retried transparently up to the configured bound
- AbortError is never retried and is distinct from a failure
- ReconstructionError means the network succeeded but no result was derived
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional


RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class ErrorType(str, Enum):
    """Error classification."""
    TRANSPORT = "transport_error"
    ABORT = "abort"
    SHAPE = "shape_error"
    RECONSTRUCTION = "reconstruction_error"
    CONFIG = "config_error"


@dataclass
class ErrorDetails:
    """Full error information, suitable for logs and state snapshots."""
    # Core fields (always present)
    code: str
    message: str
    type: ErrorType

    # Recovery fields
    retryable: bool = False
    status_code: Optional[int] = None
    retry_after: Optional[int] = None

    # Trace fields
    endpoint: str = ""

    # Diagnostic fields
    partial_content: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "type": self.type.value,
            "retryable": self.retryable,
        }

        if self.status_code is not None:
            result["status_code"] = self.status_code
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        if self.endpoint:
            result["endpoint"] = self.endpoint
        if self.partial_content:
            result["partial_content_length"] = len(self.partial_content)
        if self.details:
            result["details"] = self.details

        return {"error": result}


class StreamEngineError(Exception):
    """Base exception for all scriptstream errors."""

    def __init__(self, error: ErrorDetails):
        self.error = error
        super().__init__(error.message)

    @property
    def message(self) -> str:
        return self.error.message

    @property
    def code(self) -> str:
        return self.error.code

    @property
    def retryable(self) -> bool:
        return self.error.retryable

    @property
    def status_code(self) -> Optional[int]:
        return self.error.status_code

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code!r}, "
            f"message={self.message!r}, "
            f"status_code={self.status_code})"
        )


# ============================================================
# Transport Errors
# ============================================================

class TransportError(StreamEngineError):
    """A single HTTP attempt failed. Terminal unless a retryable subclass."""

    def __init__(
        self,
        message: str,
        code: str = "transport_error",
        status_code: Optional[int] = None,
        endpoint: str = "",
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
        retry_after: Optional[int] = None,
    ):
        super().__init__(
            ErrorDetails(
                code=code,
                message=message,
                type=ErrorType.TRANSPORT,
                retryable=retryable,
                status_code=status_code,
                retry_after=retry_after,
                endpoint=endpoint,
                details=details or {},
            )
        )


class AuthenticationError(TransportError):
    """Bearer token rejected (401/403)."""

    def __init__(self, message: str = "Authentication failed", status_code: int = 401, **kwargs):
        super().__init__(
            message,
            code="authentication_failed",
            status_code=status_code,
            **kwargs
        )


class ClientRequestError(TransportError):
    """Server refused the request parameters (non-retryable 4xx)."""

    def __init__(self, message: str, status_code: int = 400, **kwargs):
        super().__init__(
            message,
            code="client_error",
            status_code=status_code,
            **kwargs
        )


class RetryableTransportError(TransportError):
    """Base class for transport failures worth another attempt."""

    def __init__(self, message: str, **kwargs):
        kwargs.pop("retryable", None)  # Remove if passed, we force it
        super().__init__(message, retryable=True, **kwargs)


class RateLimitedError(RetryableTransportError):
    """Server-side rate limit (429)."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
        **kwargs
    ):
        kwargs.pop("code", None)
        super().__init__(
            message,
            code="rate_limited",
            status_code=kwargs.pop("status_code", 429),
            retry_after=retry_after,
            **kwargs
        )


class RequestTimeoutError(RetryableTransportError):
    """Request timed out (408 or a client-side read/connect timeout)."""

    def __init__(self, message: str = "Request timed out", **kwargs):
        kwargs.pop("code", None)
        super().__init__(
            message,
            code="request_timeout",
            status_code=kwargs.pop("status_code", 408),
            **kwargs
        )


class UpstreamError(RetryableTransportError):
    """Server returned 500/502/503/504."""

    def __init__(self, status_code: int, message: str = "", **kwargs):
        kwargs.pop("code", None)
        super().__init__(
            message or f"Server returned error {status_code}",
            code=f"upstream_{status_code}",
            status_code=status_code,
            **kwargs
        )


class ConnectionFailedError(RetryableTransportError):
    """Network-level failure: refused, reset, DNS, protocol breakage."""

    def __init__(self, message: str = "Connection failed", **kwargs):
        kwargs.pop("code", None)
        super().__init__(message, code="connection_failed", **kwargs)


# ============================================================
# Engine Errors
# ============================================================

class AbortError(StreamEngineError):
    """Stream was cancelled by the caller. Never retried."""

    def __init__(self, reason: str = "cancelled"):
        self.reason = reason
        super().__init__(
            ErrorDetails(
                code="aborted",
                message=f"Stream aborted: {reason}",
                type=ErrorType.ABORT,
            )
        )


class StreamTimeoutError(StreamEngineError):
    """Overall wall-clock budget for the session expired."""

    def __init__(self, timeout_seconds: float, partial_content: str = ""):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            ErrorDetails(
                code="timeout",
                message="timeout",
                type=ErrorType.TRANSPORT,
                partial_content=partial_content or None,
                details={"timeout_seconds": timeout_seconds},
            )
        )


class ShapeError(StreamEngineError):
    """A decoded record carries no recognizable text field."""

    def __init__(self, message: str, record: Any = None):
        self.record = record
        super().__init__(
            ErrorDetails(
                code="invalid_fragment_shape",
                message=message,
                type=ErrorType.SHAPE,
            )
        )


class ReconstructionError(StreamEngineError):
    """Every reconstruction strategy failed on the accumulated text."""

    def __init__(self, message: str, partial_content: str = "", attempted: Optional[list] = None):
        super().__init__(
            ErrorDetails(
                code="reconstruction_failed",
                message=message,
                type=ErrorType.RECONSTRUCTION,
                partial_content=partial_content or None,
                details={"attempted": list(attempted or [])},
            )
        )


class InvalidOptionsError(StreamEngineError, ValueError):
    """Stream options failed validation."""

    def __init__(self, param: str, message: str):
        self.param = param
        super().__init__(
            ErrorDetails(
                code="invalid_options",
                message=f"{param}: {message}",
                type=ErrorType.CONFIG,
                details={"param": param},
            )
        )


# ============================================================
# Mapping helpers
# ============================================================

def _parse_retry_after(headers: Optional[Mapping[str, str]]) -> Optional[int]:
    if not headers:
        return None
    raw = headers.get("Retry-After") or headers.get("retry-after")
    if raw is None:
        return None
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        return None


def error_from_status(
    status_code: int,
    body: str = "",
    headers: Optional[Mapping[str, str]] = None,
    endpoint: str = ""
) -> TransportError:
    """Create the appropriate transport error for a non-2xx response."""
    preview = (body or "").strip()[:200]
    message = f"Failed to start streaming: {status_code}"
    if preview:
        message = f"{message} {preview}"
    details = {"body_preview": preview} if preview else None

    if status_code == 429:
        return RateLimitedError(
            message,
            retry_after=_parse_retry_after(headers),
            endpoint=endpoint,
            details=details,
        )

    if status_code == 408:
        return RequestTimeoutError(message, endpoint=endpoint, details=details)

    if status_code in RETRYABLE_STATUS_CODES:
        return UpstreamError(status_code, message, endpoint=endpoint, details=details)

    if status_code in (401, 403):
        return AuthenticationError(
            message, status_code=status_code, endpoint=endpoint, details=details
        )

    if 400 <= status_code < 500:
        return ClientRequestError(
            message, status_code=status_code, endpoint=endpoint, details=details
        )

    return TransportError(
        message, status_code=status_code, endpoint=endpoint, details=details
    )


def error_from_exception(error: Exception, endpoint: str = "") -> StreamEngineError:
    """
    Convert an httpx (or OS-level) exception to the canonical taxonomy.

    Already-canonical errors pass through unchanged.
    """
    import httpx

    if isinstance(error, StreamEngineError):
        return error

    if isinstance(error, httpx.TimeoutException):
        return RequestTimeoutError(f"Request timed out: {error}", endpoint=endpoint)

    if isinstance(error, (httpx.ConnectError, httpx.ReadError, httpx.WriteError,
                          httpx.RemoteProtocolError, httpx.NetworkError)):
        return ConnectionFailedError(f"Network error: {error}", endpoint=endpoint)

    if isinstance(error, (ConnectionResetError, ConnectionRefusedError, ConnectionAbortedError)):
        return ConnectionFailedError(f"Network error: {error}", endpoint=endpoint)

    return TransportError(str(error) or error.__class__.__name__, endpoint=endpoint)
