"""
scriptstream - Retry System Tests

Tests for:
- Backoff calculation and jitter bounds
- Retryable vs terminal classification
- RetryController attempt loop
- Cancellation during backoff
"""

import asyncio
import random

import httpx
import pytest

from scriptstream.core.errors import (
    AbortError,
    AuthenticationError,
    ClientRequestError,
    ConnectionFailedError,
    RateLimitedError,
    ReconstructionError,
    TransportError,
    UpstreamError,
)
from scriptstream.streaming.retry import (
    CancellationToken,
    RetryController,
    RetryPolicy,
    calculate_backoff,
    is_retryable_error,
)


class _FixedRandom:
    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


# ============================================================
# Backoff
# ============================================================

class TestBackoff:
    """Tests for calculate_backoff."""

    def test_unjittered_doubles(self):
        """Test exponential growth without jitter."""
        delays = [calculate_backoff(k, base_delay=1.0, jitter=False) for k in range(3)]
        assert delays == [1.0, 2.0, 4.0]

    def test_jitter_within_bounds(self):
        """Test that every jittered delay lies in [0.85, 1.15) of nominal."""
        rng = random.Random(1234)
        for k in range(3):
            nominal = 1.0 * (2 ** k)
            for _ in range(200):
                delay = calculate_backoff(k, base_delay=1.0, rng=rng)
                assert nominal * 0.85 <= delay < nominal * 1.15

    def test_jitter_extremes(self):
        """Test the multiplier endpoints."""
        assert calculate_backoff(0, rng=_FixedRandom(0.0)) == pytest.approx(0.85)
        assert calculate_backoff(1, rng=_FixedRandom(0.5)) == pytest.approx(2.0)

    def test_policy_nominal_delays(self):
        """Test that a policy lists one delay per allowed retry."""
        policy = RetryPolicy(max_retries=3, base_delay=0.5)
        assert policy.nominal_delays() == [0.5, 1.0, 2.0]

    def test_policy_delay_for(self):
        """Test that delay_for applies the policy's jitter bounds."""
        policy = RetryPolicy(base_delay=1.0, jitter_min=1.0, jitter_max=1.0)
        assert policy.delay_for(2) == pytest.approx(4.0)


# ============================================================
# Classification
# ============================================================

class TestClassification:
    """Tests for is_retryable_error."""

    @pytest.mark.parametrize("error", [
        RateLimitedError(),
        UpstreamError(503),
        ConnectionFailedError(),
        TransportError("gateway", status_code=502),
        httpx.ConnectError("connection refused"),
        httpx.ReadTimeout("read timed out"),
        ConnectionResetError("reset by peer"),
        RuntimeError("ECONNRESET while reading"),
        RuntimeError("Failed to start streaming: 503"),
    ])
    def test_retryable(self, error):
        """Test transient failures are retried."""
        assert is_retryable_error(error) is True

    @pytest.mark.parametrize("error", [
        AbortError("user"),
        asyncio.CancelledError(),
        AuthenticationError(),
        ClientRequestError("bad request", status_code=400),
        TransportError("teapot", status_code=418),
        ReconstructionError("no result"),
        ValueError("bad input"),
    ])
    def test_terminal(self, error):
        """Test terminal failures are not retried."""
        assert is_retryable_error(error) is False


# ============================================================
# Cancellation Token
# ============================================================

class TestCancellationToken:
    """Tests for CancellationToken."""

    @pytest.mark.asyncio
    async def test_cancel_once(self):
        """Test that only the first cancel() wins."""
        token = CancellationToken()
        assert token.cancel("first") is True
        assert token.cancel("second") is False
        assert token.reason == "first"

    @pytest.mark.asyncio
    async def test_sleep_completes(self):
        """Test that an uncancelled sleep simply returns."""
        token = CancellationToken()
        await token.sleep(0.01)
        assert token.cancelled is False

    @pytest.mark.asyncio
    async def test_sleep_interrupted(self):
        """Test that cancelling during a sleep raises AbortError promptly."""
        token = CancellationToken()

        async def trip():
            await asyncio.sleep(0.01)
            token.cancel("stop")

        asyncio.ensure_future(trip())
        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(AbortError) as exc_info:
            await token.sleep(10.0)

        assert exc_info.value.reason == "stop"
        assert loop.time() - started < 1.0


# ============================================================
# Retry Controller
# ============================================================

class TestRetryController:
    """Tests for RetryController.attempt."""

    @pytest.mark.asyncio
    async def test_success_first_try(self):
        """Test no retries on immediate success."""
        controller = RetryController(RetryPolicy(base_delay=0))

        async def fn(attempt):
            return "ok"

        assert await controller.attempt(fn) == "ok"
        assert controller.attempts_made == 1

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        """Test recovery after transient failures."""
        seen = []
        retries = []
        controller = RetryController(
            RetryPolicy(max_retries=3, base_delay=0),
            on_retry=lambda attempt, error, delay: retries.append(attempt),
        )

        async def fn(attempt):
            seen.append(attempt)
            if attempt < 2:
                raise UpstreamError(503)
            return "ok"

        assert await controller.attempt(fn) == "ok"
        assert seen == [0, 1, 2]
        assert retries == [0, 1]

    @pytest.mark.asyncio
    async def test_exhaustion_raises_last_error(self):
        """Test that max_retries + 1 attempts are made, then the last error propagates."""
        calls = []
        controller = RetryController(RetryPolicy(max_retries=3, base_delay=0))

        async def fn(attempt):
            calls.append(attempt)
            raise UpstreamError(500, f"attempt {attempt}")

        with pytest.raises(UpstreamError) as exc_info:
            await controller.attempt(fn)

        assert len(calls) == 4
        assert exc_info.value.message == "attempt 3"

    @pytest.mark.asyncio
    async def test_terminal_error_not_retried(self):
        """Test that a 401 fails on the first attempt."""
        calls = []
        controller = RetryController(RetryPolicy(max_retries=3, base_delay=0))

        async def fn(attempt):
            calls.append(attempt)
            raise AuthenticationError()

        with pytest.raises(AuthenticationError):
            await controller.attempt(fn)
        assert calls == [0]

    @pytest.mark.asyncio
    async def test_zero_retries(self):
        """Test that max_retries=0 makes exactly one attempt."""
        calls = []
        controller = RetryController(RetryPolicy(max_retries=0, base_delay=0))

        async def fn(attempt):
            calls.append(attempt)
            raise RateLimitedError()

        with pytest.raises(RateLimitedError):
            await controller.attempt(fn)
        assert calls == [0]

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self):
        """Test that cancelling while waiting to retry aborts without another attempt."""
        token = CancellationToken()
        calls = []
        controller = RetryController(
            RetryPolicy(max_retries=3, base_delay=10.0),
            token=token,
            on_retry=lambda attempt, error, delay: token.cancel("user"),
        )

        async def fn(attempt):
            calls.append(attempt)
            raise UpstreamError(503)

        with pytest.raises(AbortError):
            await controller.attempt(fn)
        assert calls == [0]

    @pytest.mark.asyncio
    async def test_already_cancelled(self):
        """Test that a pre-cancelled token never calls fn."""
        token = CancellationToken()
        token.cancel("early")
        controller = RetryController(token=token)

        async def fn(attempt):
            raise AssertionError("should not run")

        with pytest.raises(AbortError):
            await controller.attempt(fn)
