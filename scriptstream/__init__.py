"""
scriptstream - Streaming NDJSON ingestion and JSON reconstruction

Consumes a long-running NDJSON response from a generative backend, survives
transient failures with bounded retry, deduplicates fragments, and rebuilds
one structured result from text that may never have been valid JSON.
"""

__version__ = "1.0.0"

from .config import StreamOptions
from .core.errors import (
    StreamEngineError,
    TransportError,
    AbortError,
    StreamTimeoutError,
    ReconstructionError,
    InvalidOptionsError,
)
from .core.models import SessionPhase, SettledKind, SessionState
from .streaming.session import StreamSession
from .streaming.events import StreamEvent, StreamEventType, SampledListener
from .streaming.reconstruct import Reconstructor, reconstruct
from .transport.reader import TransportReader

__all__ = [
    "__version__",
    "StreamOptions",
    "StreamEngineError",
    "TransportError",
    "AbortError",
    "StreamTimeoutError",
    "ReconstructionError",
    "InvalidOptionsError",
    "SessionPhase",
    "SettledKind",
    "SessionState",
    "StreamSession",
    "StreamEvent",
    "StreamEventType",
    "SampledListener",
    "Reconstructor",
    "reconstruct",
    "TransportReader",
]
