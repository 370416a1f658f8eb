"""
scriptstream - Retry Logic

Exponential backoff with jitter around a single logical stream attempt.

Delay for attempt k (0-based): base_delay * 2^k * j, j uniform in [0.85, 1.15).
Backoff waits are cancellable: cancelling the session token during a wait
raises AbortError immediately and the scheduled retry never runs.
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, FrozenSet, Optional, TypeVar

import httpx

from ..core.errors import (
    RETRYABLE_STATUS_CODES,
    AbortError,
    StreamEngineError,
    TransportError,
)
from ..observability.logging import get_logger


logger = get_logger(__name__)

T = TypeVar("T")

JITTER_MIN = 0.85
JITTER_MAX = 1.15

# Substrings that mark a plain exception as a transient network condition
_RETRYABLE_MARKERS = (
    "network",
    "timeout",
    "timed out",
    "reset",
    "econnreset",
    "refused",
    "econnrefused",
)


class CancellationToken:
    """
    Cancellation signal shared by everything one start() call spawns.

    Must be created inside a running event loop.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        """Trip the token. Returns False if it was already cancelled."""
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        return True

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise AbortError(self._reason or "cancelled")

    async def wait(self) -> str:
        """Wait until cancelled and return the reason."""
        await self._event.wait()
        return self._reason or "cancelled"

    async def sleep(self, delay: float):
        """Sleep for `delay` seconds unless cancelled first (then AbortError)."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, delay))
        except asyncio.TimeoutError:
            return
        raise AbortError(self._reason or "cancelled")


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    jitter_min: float = JITTER_MIN,
    jitter_max: float = JITTER_MAX,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Calculate delay for exponential backoff with optional jitter.

    Args:
        attempt: Current retry attempt (0-based)
        base_delay: Delay for the first retry in seconds
        exponential_base: Base for exponential calculation
        jitter: Whether to apply the random multiplier
        jitter_min: Lower bound of the multiplier (inclusive)
        jitter_max: Upper bound of the multiplier (exclusive)
        rng: Random source, mainly for deterministic tests

    Returns:
        Delay in seconds
    """
    delay = base_delay * (exponential_base ** attempt)

    if jitter:
        source = rng or random
        delay = delay * (jitter_min + source.random() * (jitter_max - jitter_min))

    return max(0.0, delay)


def is_retryable_error(
    error: BaseException,
    retryable_status_codes: FrozenSet[int] = RETRYABLE_STATUS_CODES
) -> bool:
    """
    Determine whether a failed attempt should be retried.

    Cancellation is never retryable. Canonical errors use their status
    code and retryable flag; httpx transport failures are transient;
    anything else is judged by its message text.
    """
    if isinstance(error, (AbortError, asyncio.CancelledError)):
        return False

    if isinstance(error, TransportError):
        if error.retryable:
            return True
        return error.status_code in retryable_status_codes

    if isinstance(error, StreamEngineError):
        return False

    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return True

    text = str(error).lower()
    if any(marker in text for marker in _RETRYABLE_MARKERS):
        return True
    return any(str(code) in text for code in retryable_status_codes)


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    exponential_base: float = 2.0
    jitter_min: float = JITTER_MIN
    jitter_max: float = JITTER_MAX
    retryable_status_codes: FrozenSet[int] = field(
        default_factory=lambda: RETRYABLE_STATUS_CODES
    )

    def delay_for(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Jittered delay before retry number attempt + 1."""
        return calculate_backoff(
            attempt,
            base_delay=self.base_delay,
            exponential_base=self.exponential_base,
            jitter_min=self.jitter_min,
            jitter_max=self.jitter_max,
            rng=rng,
        )

    def nominal_delays(self):
        """Un-jittered delays for every retry this policy allows."""
        return [
            calculate_backoff(k, self.base_delay, self.exponential_base, jitter=False)
            for k in range(self.max_retries)
        ]


class RetryController:
    """
    Runs one logical attempt function until it succeeds, fails terminally,
    or exhausts the retry bound.

    Example:
        controller = RetryController(RetryPolicy(max_retries=3), token)
        result = await controller.attempt(run_single_attempt)
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        token: Optional[CancellationToken] = None,
        on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.policy = policy or RetryPolicy()
        self.token = token or CancellationToken()
        self.on_retry = on_retry
        self.rng = rng
        self.attempts_made = 0

    async def attempt(self, fn: Callable[[int], Awaitable[T]]) -> T:
        """
        Execute `fn(attempt_index)` with retry logic.

        Every retry calls fn again from scratch; the caller owns any
        per-attempt state reset.
        """
        attempt = 0

        while True:
            self.token.raise_if_cancelled()
            self.attempts_made = attempt + 1

            try:
                return await fn(attempt)
            except Exception as e:
                if not is_retryable_error(e, self.policy.retryable_status_codes):
                    raise

                if attempt >= self.policy.max_retries:
                    logger.error(
                        f"Streaming failed after {attempt + 1} attempts: {e}",
                        attempts=attempt + 1,
                    )
                    raise

                delay = self.policy.delay_for(attempt, self.rng)
                logger.warning(
                    f"Attempt {attempt + 1}/{self.policy.max_retries}: {e}, "
                    f"retrying in {delay * 1000:.0f}ms",
                    delay_ms=round(delay * 1000, 1),
                )

                if self.on_retry:
                    self.on_retry(attempt, e, delay)

                await self.token.sleep(delay)
                attempt += 1
