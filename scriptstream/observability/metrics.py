"""
scriptstream - Prometheus Metrics

Metrics collection for stream sessions with the Prometheus client library.

Metrics exposed:
- scriptstream_sessions_total: Counter of settled sessions by outcome
- scriptstream_session_duration_seconds: Histogram of start-to-settle time
- scriptstream_active_sessions: Gauge of sessions currently streaming
- scriptstream_fragments_total: Counter of fragments by kind (admitted/duplicate/dropped)
- scriptstream_bytes_total: Counter of admitted fragment bytes
- scriptstream_retries_total: Counter of retry attempts by error code
- scriptstream_reconstructions_total: Counter of reconstruction outcomes by strategy

Usage:
    from scriptstream.observability.metrics import get_metrics, render_latest

    metrics = get_metrics()
    metrics.record_fragment("admitted", size_bytes=42)

    body, content_type = render_latest()
"""

from typing import Optional, Tuple

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY,
)


class StreamMetrics:
    """
    Metrics collector for stream sessions.

    One instance per registry; the process-wide instance lives on the
    default registry, tests pass their own CollectorRegistry.
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.registry = registry

        self.sessions_total = Counter(
            "scriptstream_sessions_total",
            "Total number of settled stream sessions",
            labelnames=["outcome"],  # success/error/aborted
            registry=registry,
        )

        # Generative streams typically run from a few seconds to minutes
        self.session_duration = Histogram(
            "scriptstream_session_duration_seconds",
            "Time from start() to settlement",
            labelnames=["outcome"],
            buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, float("inf")),
            registry=registry,
        )

        self.active_sessions = Gauge(
            "scriptstream_active_sessions",
            "Number of sessions currently streaming",
            registry=registry,
        )

        self.fragments_total = Counter(
            "scriptstream_fragments_total",
            "Fragments seen by the accumulator",
            labelnames=["kind"],  # admitted/duplicate/dropped
            registry=registry,
        )

        self.bytes_total = Counter(
            "scriptstream_bytes_total",
            "UTF-8 bytes of admitted fragment text",
            registry=registry,
        )

        self.retries_total = Counter(
            "scriptstream_retries_total",
            "Retry attempts scheduled after a retryable failure",
            labelnames=["error"],
            registry=registry,
        )

        self.reconstructions_total = Counter(
            "scriptstream_reconstructions_total",
            "Reconstruction outcomes by winning strategy",
            labelnames=["strategy"],  # strategy name or "failed"
            registry=registry,
        )

    def record_session(self, outcome: str, duration_seconds: float):
        """Record a settled session."""
        self.sessions_total.labels(outcome=outcome).inc()
        self.session_duration.labels(outcome=outcome).observe(duration_seconds)

    def record_fragment(self, kind: str, size_bytes: int = 0):
        """Record a fragment decision."""
        self.fragments_total.labels(kind=kind).inc()
        if size_bytes:
            self.bytes_total.inc(size_bytes)

    def record_retry(self, error_code: str):
        """Record a scheduled retry."""
        self.retries_total.labels(error=error_code).inc()

    def record_reconstruction(self, strategy: Optional[str]):
        """Record which strategy produced a result (None when all failed)."""
        self.reconstructions_total.labels(strategy=strategy or "failed").inc()

    def track_active_session(self) -> "ActiveSessionTracker":
        """Context manager to track active sessions."""
        return ActiveSessionTracker(self)


class ActiveSessionTracker:
    """Context manager for tracking active sessions."""

    def __init__(self, collector: StreamMetrics):
        self.collector = collector

    def __enter__(self):
        self.collector.active_sessions.inc()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.collector.active_sessions.dec()


# Module-level functions for convenience
_metrics_instance: Optional[StreamMetrics] = None


def setup_metrics(registry: CollectorRegistry = REGISTRY) -> StreamMetrics:
    """
    Setup metrics collection.

    Safe to call multiple times - returns the existing instance for the
    same registry.
    """
    global _metrics_instance

    if _metrics_instance is not None and _metrics_instance.registry is registry:
        return _metrics_instance

    _metrics_instance = StreamMetrics(registry)
    return _metrics_instance


def get_metrics() -> StreamMetrics:
    """Get the process-wide metrics collector, creating it on first use."""
    if _metrics_instance is None:
        return setup_metrics()
    return _metrics_instance


def render_latest(registry: CollectorRegistry = REGISTRY) -> Tuple[bytes, str]:
    """Render the Prometheus exposition body and its content type."""
    return generate_latest(registry), CONTENT_TYPE_LATEST
