"""
scriptstream Core Module

Error taxonomy and shared data models.
"""

from .errors import (
    RETRYABLE_STATUS_CODES,
    ErrorType,
    ErrorDetails,
    StreamEngineError,

    # Transport
    TransportError,
    AuthenticationError,
    ClientRequestError,
    RetryableTransportError,
    RateLimitedError,
    RequestTimeoutError,
    UpstreamError,
    ConnectionFailedError,

    # Engine
    AbortError,
    StreamTimeoutError,
    ShapeError,
    ReconstructionError,
    InvalidOptionsError,

    # Mapping
    error_from_status,
    error_from_exception,
)
from .models import (
    TextRecord,
    CandidateRecord,
    ParseSuccess,
    ParseFailure,
    ParseOutcome,
    SessionPhase,
    SettledKind,
    SessionState,
)

__all__ = [
    "RETRYABLE_STATUS_CODES",
    "ErrorType",
    "ErrorDetails",
    "StreamEngineError",
    "TransportError",
    "AuthenticationError",
    "ClientRequestError",
    "RetryableTransportError",
    "RateLimitedError",
    "RequestTimeoutError",
    "UpstreamError",
    "ConnectionFailedError",
    "AbortError",
    "StreamTimeoutError",
    "ShapeError",
    "ReconstructionError",
    "InvalidOptionsError",
    "error_from_status",
    "error_from_exception",
    "TextRecord",
    "CandidateRecord",
    "ParseSuccess",
    "ParseFailure",
    "ParseOutcome",
    "SessionPhase",
    "SettledKind",
    "SessionState",
]
