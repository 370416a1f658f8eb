"""
scriptstream - Stream Session

The public state machine around one logical ingestion:

    IDLE --start()--> STREAMING --success/error/abort--> SETTLED
      ^                                                     |
      +---------------------reset_stream()------------------+

A session drives the retry controller over single attempts. Each attempt
opens the transport, admits fragments into a fresh accumulator and
reconstructs the result once the body ends. The whole call is bounded by a
wall-clock timeout and can be cancelled at any point, including while a
retry backoff is pending.

Exactly one settlement happens per start(). Work belonging to a superseded
start() (after reset_stream() or a newer start()) can no longer change the
observable state.
"""

import asyncio
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from ..config import StreamOptions
from ..core.errors import (
    AbortError,
    ReconstructionError,
    StreamEngineError,
    StreamTimeoutError,
)
from ..core.models import (
    ParseSuccess,
    SessionPhase,
    SessionState,
    SettledKind,
)
from ..observability.logging import LogContext, get_logger
from ..observability.metrics import StreamMetrics, get_metrics
from ..transport.reader import TransportReader
from .accumulator import FragmentAccumulator
from .completion import is_likely_complete
from .events import Listener, StreamEvent, StreamEventType, dispatch
from .reconstruct import Reconstructor
from .retry import CancellationToken, RetryController


logger = get_logger(__name__)

JSON_BODY_STRATEGY = "json_body"


def _error_message(error: BaseException) -> str:
    if isinstance(error, StreamEngineError):
        return error.message
    return str(error) or error.__class__.__name__


async def _drain(task: "asyncio.Future"):
    """Cancel `task` if still running and wait for it to unwind."""
    if not task.done():
        task.cancel()
    await asyncio.wait({task})
    if not task.cancelled():
        # Mark the exception retrieved; the caller already decided the outcome
        task.exception()


class StreamSession:
    """
    One streaming ingestion with observable state.

    Args:
        reader: TransportReader to use. Created (and owned) if omitted.
        token_provider: Passed to the owned TransportReader.
        options: Default StreamOptions for every start().
        metrics: StreamMetrics collector (process-wide one if omitted).
        reconstructor: Reconstructor chain (default chain if omitted).
        session_id: Correlation id for logs.

    Example:
        async with StreamSession(token_provider=get_token) as session:
            session.subscribe(lambda event: render(event.state))
            result = await session.start(url, {"scriptId": "s1"})
    """

    def __init__(
        self,
        reader: Optional[TransportReader] = None,
        token_provider: Any = None,
        options: Optional[StreamOptions] = None,
        metrics: Optional[StreamMetrics] = None,
        reconstructor: Optional[Reconstructor] = None,
        session_id: Optional[str] = None,
    ):
        self.reader = reader or TransportReader(token_provider=token_provider)
        self._owns_reader = reader is None
        self.options = options or StreamOptions()
        self.metrics = metrics or get_metrics()
        self.reconstructor = reconstructor or Reconstructor()
        self.session_id = session_id or f"sess_{uuid.uuid4().hex[:12]}"

        self._listeners: List[Listener] = []
        self._accumulator = FragmentAccumulator(self.options.max_chunks)
        self._generation = 0
        self._token: Optional[CancellationToken] = None
        self._task: Optional[asyncio.Task] = None
        self._started = time.monotonic()

        self._phase = SessionPhase.IDLE
        self._settled: Optional[SettledKind] = None
        self._error: Optional[str] = None
        self._attempt = 0
        self._result: Optional[Dict[str, Any]] = None
        self._strategy: Optional[str] = None
        self._state = SessionState()

    # ============================================================
    # Observation
    # ============================================================

    @property
    def state(self) -> SessionState:
        """Latest immutable state snapshot."""
        return self._state

    @property
    def is_streaming(self) -> bool:
        return self._phase == SessionPhase.STREAMING

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self):
        acc = self._accumulator
        self._state = SessionState(
            phase=self._phase,
            settled=self._settled,
            error=self._error,
            text=acc.snapshot(),
            chunk_count=acc.chunk_count,
            total_bytes=acc.total_bytes,
            attempt=self._attempt,
            retained_fragments=len(acc.retained_fragments),
            result=self._result,
            strategy=self._strategy,
        )

    def _emit(self, event_type: StreamEventType, **kwargs):
        if self._listeners:
            dispatch(self._listeners, StreamEvent(type=event_type, state=self._state, **kwargs))

    # ============================================================
    # Fragment admission
    # ============================================================

    def _admit(self, acc: FragmentAccumulator, raw: str, generation: int) -> bool:
        if generation != self._generation or self._phase != SessionPhase.STREAMING:
            return False

        result = acc.admit(raw)
        if not result.novel:
            if result.fragment:
                self.metrics.record_fragment("duplicate")
            return False

        self.metrics.record_fragment("admitted", len(result.fragment.encode("utf-8")))
        self._publish()
        self._emit(StreamEventType.FRAGMENT, fragment=result.fragment)
        return True

    def admit_fragment(self, text: str) -> bool:
        """
        Admit one fragment into the current stream.

        Refused (False, nothing changes) unless the session is streaming.
        """
        return self._admit(self._accumulator, text, self._generation)

    # ============================================================
    # Attempts
    # ============================================================

    async def _run_attempt(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]],
        opts: StreamOptions,
        token: CancellationToken,
        acc: FragmentAccumulator,
        generation: int,
        attempt: int,
    ) -> ParseSuccess:
        acc.reset()
        if generation == self._generation:
            self._attempt = attempt
            self._publish()

        ctx = LogContext.get_current()
        if ctx is not None:
            ctx.update(attempt=attempt)

        try:
            async with self.reader.open(endpoint, params, token=token) as response:
                if not response.is_streaming:
                    logger.info("Received JSON response instead of stream")
                    return ParseSuccess(value=response.json_result, strategy=JSON_BODY_STRATEGY)

                async for fragment in response.fragments(token):
                    self._admit(acc, fragment, generation)

                if response.dropped:
                    self.metrics.fragments_total.labels(kind="dropped").inc(response.dropped)
        except AbortError:
            raise
        except Exception as e:
            salvaged = self._salvage(acc, opts, e)
            if salvaged is None:
                raise
            return salvaged

        return self._reconstruct(acc, opts)

    def _salvage(
        self,
        acc: FragmentAccumulator,
        opts: StreamOptions,
        error: Exception,
    ) -> Optional[ParseSuccess]:
        """Strict reconstruction of a buffer that already looked complete."""
        if not is_likely_complete(
            acc,
            fragment_threshold=opts.completion_fragment_threshold,
            min_length=opts.completion_min_length,
        ):
            return None

        outcome = self.reconstructor.strict(acc.accumulated_text)
        if not outcome.ok:
            return None

        logger.warning(
            f"Stream failed after sufficient data ({_error_message(error)}), using partial content",
            chunk_count=acc.chunk_count,
            strategy=outcome.strategy,
        )
        self.metrics.record_reconstruction(outcome.strategy)
        return outcome

    def _reconstruct(self, acc: FragmentAccumulator, opts: StreamOptions) -> ParseSuccess:
        text = acc.accumulated_text
        logger.info(
            f"Stream completed with {acc.chunk_count} chunks, {acc.total_bytes} bytes",
            chunk_count=acc.chunk_count,
            total_bytes=acc.total_bytes,
        )

        outcome = self.reconstructor.reconstruct(text, allow_fallback=opts.allow_fallback)
        self.metrics.record_reconstruction(outcome.strategy if outcome.ok else None)

        if not outcome.ok:
            raise ReconstructionError(
                f"Failed to parse result: {outcome.reason}",
                partial_content=text,
                attempted=outcome.attempted,
            )
        return outcome

    # ============================================================
    # Lifecycle
    # ============================================================

    def _begin(self, opts: StreamOptions) -> int:
        self._generation += 1
        self._accumulator = FragmentAccumulator(opts.max_chunks)
        self._phase = SessionPhase.STREAMING
        self._settled = None
        self._error = None
        self._attempt = 0
        self._result = None
        self._strategy = None
        self._publish()
        return self._generation

    def _settle(
        self,
        generation: int,
        kind: SettledKind,
        started: float,
        outcome: Optional[ParseSuccess] = None,
        error: Optional[BaseException] = None,
    ) -> bool:
        """Move to SETTLED once; later calls for the same start() are no-ops."""
        if generation != self._generation or self._phase != SessionPhase.STREAMING:
            return False

        self._phase = SessionPhase.SETTLED
        self._settled = kind
        self._error = _error_message(error) if error is not None else None
        if outcome is not None:
            self._result = outcome.value
            self._strategy = outcome.strategy

        self._accumulator.release()
        self.metrics.record_session(kind.value, time.monotonic() - started)
        self._publish()

        if kind == SettledKind.SUCCESS:
            logger.info(f"Stream settled: {kind.value}", strategy=self._strategy)
        else:
            logger.warning(f"Stream settled: {kind.value} ({self._error})")

        self._emit(StreamEventType.SETTLED, error=error)
        return True

    def _on_retry(self, generation: int, attempt: int, error: BaseException, delay: float):
        self.metrics.record_retry(getattr(error, "code", error.__class__.__name__))
        if generation != self._generation:
            return
        self._emit(StreamEventType.RETRY, error=error, delay=delay)

    async def _race(
        self,
        task: "asyncio.Future",
        token: CancellationToken,
        acc: FragmentAccumulator,
        timeout: float,
    ) -> ParseSuccess:
        """Wait for the attempt chain, the cancel token or the wall clock."""
        cancel_waiter = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {task, cancel_waiter},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancel_waiter.cancel()

        if task in done and not task.cancelled():
            return task.result()

        if token.cancelled:
            await _drain(task)
            raise AbortError(token.reason or "cancelled")

        token.cancel("timeout")
        await _drain(task)
        logger.error(f"Stream timed out after {timeout:.1f}s", chunk_count=acc.chunk_count)
        raise StreamTimeoutError(timeout, partial_content=acc.accumulated_text)

    async def start(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        options: Optional[StreamOptions] = None,
        **overrides: Any,
    ) -> Optional[Dict[str, Any]]:
        """
        Run one logical ingestion to settlement.

        Returns the reconstructed result, or None if a stream was already in
        flight (the call is ignored). Raises the terminal error on failure
        and AbortError on cancellation.
        """
        if self._phase == SessionPhase.STREAMING:
            logger.warning("Stream already in progress, ignoring start()")
            return None

        opts = (options or self.options).merged(**overrides)
        generation = self._begin(opts)
        acc = self._accumulator
        token = CancellationToken()
        self._token = token
        started = time.monotonic()
        self._started = started

        ctx_token = LogContext.set_current(
            LogContext(session_id=self.session_id, endpoint=endpoint, attempt=0)
        )
        try:
            logger.info(f"Starting stream to {endpoint}", max_retries=opts.max_retries)
            self._emit(StreamEventType.STARTED)

            controller = RetryController(
                opts.to_retry_policy(),
                token,
                on_retry=lambda attempt, error, delay: self._on_retry(generation, attempt, error, delay),
            )

            async def run(attempt: int) -> ParseSuccess:
                return await self._run_attempt(endpoint, params, opts, token, acc, generation, attempt)

            task = asyncio.ensure_future(controller.attempt(run))
            self._task = task

            try:
                with self.metrics.track_active_session():
                    outcome = await self._race(task, token, acc, opts.timeout_seconds)
            except AbortError as e:
                self._settle(generation, SettledKind.ABORTED, started, error=e)
                raise
            except asyncio.CancelledError:
                token.cancel("cancelled")
                await _drain(task)
                self._settle(generation, SettledKind.ABORTED, started, error=AbortError("cancelled"))
                raise
            except Exception as e:
                self._settle(generation, SettledKind.ERROR, started, error=e)
                raise

            if not self._settle(generation, SettledKind.SUCCESS, started, outcome=outcome):
                # Superseded by reset_stream() while the result was in flight
                raise AbortError(token.reason or "reset")
            return outcome.value
        finally:
            if self._task is not None and self._task.done():
                self._task = None
            LogContext.restore(ctx_token)

    def cancel(self, reason: str = "cancelled"):
        """Abort the in-flight stream, if any. start() then raises AbortError."""
        if self._phase == SessionPhase.STREAMING and self._token is not None:
            logger.info(f"Cancelling stream: {reason}")
            self._token.cancel(reason)

    def reset_stream(self):
        """
        Abort anything in flight and return to IDLE with empty state.

        In-flight work from the previous start() can no longer touch the
        session once this returns.
        """
        if self._phase == SessionPhase.STREAMING and self._token is not None:
            self._token.cancel("reset")
            self._settle(
                self._generation,
                SettledKind.ABORTED,
                self._started,
                error=AbortError("reset"),
            )
        self._generation += 1
        self._accumulator = FragmentAccumulator(self.options.max_chunks)
        self._token = None
        self._task = None
        self._phase = SessionPhase.IDLE
        self._settled = None
        self._error = None
        self._attempt = 0
        self._result = None
        self._strategy = None
        self._publish()

    async def aclose(self):
        """Cancel anything in flight and close the owned reader."""
        if self._task is not None and not self._task.done():
            self.cancel("closed")
            await _drain(self._task)
        if self._owns_reader:
            await self.reader.aclose()

    async def __aenter__(self) -> "StreamSession":
        return self

    async def __aexit__(self, *args):
        await self.aclose()
