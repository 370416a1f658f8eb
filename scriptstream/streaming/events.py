"""
scriptstream - Stream Events

Observable notifications emitted by a StreamSession:
- started   a start() call entered STREAMING
- fragment  a novel fragment was admitted
- retry     a retryable failure scheduled another attempt
- settled   the session reached its terminal state
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..core.models import SessionState
from ..observability.logging import get_logger


logger = get_logger(__name__)


class StreamEventType(str, Enum):
    """Types of session events."""
    STARTED = "started"
    FRAGMENT = "fragment"
    RETRY = "retry"
    SETTLED = "settled"


@dataclass
class StreamEvent:
    """
    One session notification.

    `state` is the snapshot taken right after the change; `fragment` is set
    for FRAGMENT events, `error` for RETRY and failed SETTLED events.
    """
    type: StreamEventType
    state: SessionState
    fragment: Optional[str] = None
    error: Optional[BaseException] = None
    delay: Optional[float] = None
    created: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "type": self.type.value,
            "state": self.state.to_dict(),
            "created": self.created,
        }
        if self.fragment is not None:
            result["fragment"] = self.fragment
        if self.error is not None:
            result["error"] = str(self.error)
        if self.delay is not None:
            result["delay_ms"] = round(self.delay * 1000, 1)
        return result


Listener = Callable[[StreamEvent], None]


class SampledListener:
    """
    Forwards only every K-th FRAGMENT event to `listener`.

    All other event types pass straight through, so consumers rendering
    partial text stay cheap without missing retries or settlement.
    """

    def __init__(self, listener: Listener, every: int = 5):
        if every < 1:
            raise ValueError("every must be >= 1")
        self.listener = listener
        self.every = every
        self._seen = 0

    def __call__(self, event: StreamEvent):
        if event.type == StreamEventType.STARTED:
            self._seen = 0
        elif event.type == StreamEventType.FRAGMENT:
            self._seen += 1
            if self._seen % self.every:
                return
        self.listener(event)


def dispatch(listeners, event: StreamEvent):
    """Deliver `event` to every listener; listener failures are only logged."""
    for listener in list(listeners):
        try:
            listener(event)
        except Exception:
            logger.exception(f"Stream listener failed on {event.type.value} event")
