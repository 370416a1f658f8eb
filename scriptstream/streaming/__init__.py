"""
scriptstream - Streaming Module

Stream ingestion pipeline:
- Retry with cancellable exponential backoff
- Fragment deduplication and accumulation
- Completion heuristic
- Incremental JSON reconstruction
- Session state machine and events
"""

from .retry import (
    CancellationToken,
    RetryPolicy,
    RetryController,
    calculate_backoff,
    is_retryable_error,
)
from .accumulator import (
    FragmentAccumulator,
    AdmitResult,
    normalize_fragment,
    fragment_key,
)
from .completion import (
    is_likely_complete,
    braces_balanced,
    ends_on_object_boundary,
)
from .reconstruct import (
    Strategy,
    Reconstructor,
    DEFAULT_STRATEGIES,
    reconstruct,
    extract_fenced_block,
    find_keyed_object_span,
)
from .events import (
    StreamEvent,
    StreamEventType,
    SampledListener,
)
from .session import StreamSession

__all__ = [
    # Retry
    "CancellationToken",
    "RetryPolicy",
    "RetryController",
    "calculate_backoff",
    "is_retryable_error",
    # Accumulator
    "FragmentAccumulator",
    "AdmitResult",
    "normalize_fragment",
    "fragment_key",
    # Completion
    "is_likely_complete",
    "braces_balanced",
    "ends_on_object_boundary",
    # Reconstruction
    "Strategy",
    "Reconstructor",
    "DEFAULT_STRATEGIES",
    "reconstruct",
    "extract_fenced_block",
    "find_keyed_object_span",
    # Session
    "StreamEvent",
    "StreamEventType",
    "SampledListener",
    "StreamSession",
]
