"""
scriptstream - Pytest Configuration

Configures:
- Integration test markers (skip by default)
- Fresh Prometheus registries per test
- Scripted NDJSON backends built on httpx.MockTransport
"""

import os
import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import httpx
import pytest


# ============================================================
# Environment Configuration
# ============================================================

def _is_truthy(value: Optional[str]) -> bool:
    """Check if environment variable is truthy."""
    if value is None:
        return False
    return value.lower() in ("1", "true", "yes", "on")


RUN_INTEGRATION = _is_truthy(os.getenv("RUN_INTEGRATION"))

ENDPOINT = "https://backend.test/v1/scripts:stream"


# ============================================================
# Pytest Markers
# ============================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires RUN_INTEGRATION=1)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless RUN_INTEGRATION=1."""
    skip_integration = pytest.mark.skip(
        reason="Integration test - set RUN_INTEGRATION=1 to run"
    )
    for item in items:
        if "integration" in item.keywords and not RUN_INTEGRATION:
            item.add_marker(skip_integration)


# ============================================================
# Metrics / Options
# ============================================================

@pytest.fixture
def metrics():
    """StreamMetrics bound to a fresh registry."""
    from prometheus_client import CollectorRegistry
    from scriptstream.observability.metrics import StreamMetrics

    return StreamMetrics(CollectorRegistry())


@pytest.fixture
def fast_options():
    """Options with zero backoff so retry tests run instantly."""
    from scriptstream.config import StreamOptions

    return StreamOptions(max_retries=3, retry_delay_ms=0, timeout_ms=5000)


# ============================================================
# Scripted Backend
# ============================================================

def ndjson(*records: Any) -> bytes:
    """Encode records as an NDJSON body (strings pass through as raw lines)."""
    lines = []
    for record in records:
        lines.append(record if isinstance(record, str) else json.dumps(record))
    return ("\n".join(lines) + "\n").encode("utf-8")


def text_records(*texts: str) -> bytes:
    return ndjson(*({"text": t} for t in texts))


Reply = Union[httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


class ScriptedBackend:
    """
    Replays one scripted reply per request.

    A reply is an httpx.Response, an exception to raise, or a callable
    taking the request. The last reply repeats once the script runs out.
    """

    def __init__(self, replies: Iterable[Reply]):
        self.replies: List[Reply] = list(replies)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self.replies)) - 1
        reply = self.replies[index]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply) and not isinstance(reply, httpx.Response):
            return reply(request)
        return reply

    @property
    def calls(self) -> int:
        return len(self.requests)


def stream_response(body: bytes, status_code: int = 200, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
    merged = {"Content-Type": "application/x-ndjson", **(headers or {})}
    return httpx.Response(status_code, headers=merged, content=body)


@pytest.fixture
def make_backend():
    """Build a ScriptedBackend and a TransportReader that talks to it."""
    from scriptstream.transport.reader import TransportReader

    def factory(*replies: Reply, token: Optional[str] = "test-token"):
        backend = ScriptedBackend(replies)
        client = httpx.AsyncClient(transport=httpx.MockTransport(backend))
        reader = TransportReader(client=client, token_provider=token)
        return backend, reader

    return factory


# ============================================================
# Logging Configuration
# ============================================================

@pytest.fixture(autouse=True)
def configure_test_logging():
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    yield
