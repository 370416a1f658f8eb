"""
scriptstream - Observability Module

Structured logging and Prometheus metrics for stream sessions.
"""

from .logging import (
    LogContext,
    JSONFormatter,
    StructuredLogger,
    TimedOperation,
    setup_logging,
    get_logger,
)
from .metrics import (
    StreamMetrics,
    ActiveSessionTracker,
    setup_metrics,
    get_metrics,
    render_latest,
)

__all__ = [
    # Logging
    "LogContext",
    "JSONFormatter",
    "StructuredLogger",
    "TimedOperation",
    "setup_logging",
    "get_logger",
    # Metrics
    "StreamMetrics",
    "ActiveSessionTracker",
    "setup_metrics",
    "get_metrics",
    "render_latest",
]
