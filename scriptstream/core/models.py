"""
scriptstream - Core Models

Data structures shared across the engine:
- Wire records (pydantic) describing the accepted fragment shapes
- ParseOutcome variants produced by the reconstructor
- Session phases and the observable state snapshot
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field


# ============================================================
# Wire Records
# ============================================================

class TextRecord(BaseModel):
    """Plain NDJSON record: {"text": "..."}."""
    text: str

    model_config = ConfigDict(extra="allow")


class Part(BaseModel):
    text: str

    model_config = ConfigDict(extra="allow")


class Content(BaseModel):
    parts: List[Part] = Field(..., min_length=1)

    model_config = ConfigDict(extra="allow")


class Candidate(BaseModel):
    content: Content
    finishReason: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class CandidateRecord(BaseModel):
    """Provider-native record: candidates[0].content.parts[0].text."""
    candidates: List[Candidate] = Field(..., min_length=1)
    modelVersion: Optional[str] = None

    model_config = ConfigDict(extra="allow")

    @property
    def text(self) -> str:
        return self.candidates[0].content.parts[0].text


# ============================================================
# Parse Outcomes
# ============================================================

@dataclass(frozen=True)
class ParseSuccess:
    """A usable structured result and the strategy that produced it."""
    value: Dict[str, Any]
    strategy: str
    best_effort: bool = False

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ParseFailure:
    """No strategy produced a result."""
    reason: str
    attempted: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return False


ParseOutcome = Union[ParseSuccess, ParseFailure]


# ============================================================
# Session State
# ============================================================

class SessionPhase(str, Enum):
    """Macro-state of a stream session."""
    IDLE = "idle"
    STREAMING = "streaming"
    SETTLED = "settled"


class SettledKind(str, Enum):
    """Terminal sub-state once a session has settled."""
    SUCCESS = "success"
    ERROR = "error"
    ABORTED = "aborted"


class TextSnapshot:
    """
    Lazily joined prefix of an append-only fragment list.

    Holds the list and the number of parts visible when the snapshot was
    taken; the string is built on first read and cached.
    """

    __slots__ = ("_parts", "_count", "_text")

    def __init__(self, parts: Sequence[str] = (), count: Optional[int] = None):
        self._parts = parts
        self._count = len(parts) if count is None else count
        self._text: Optional[str] = None

    def __len__(self) -> int:
        return self._count

    def __str__(self) -> str:
        if self._text is None:
            self._text = "".join(self._parts[:self._count])
        return self._text


@dataclass(frozen=True)
class SessionState:
    """
    Immutable snapshot of a session, safe to hand to any consumer.

    `error` is the terminal error message (None unless settled with an
    error or abort).
    """
    phase: SessionPhase = SessionPhase.IDLE
    settled: Optional[SettledKind] = None
    error: Optional[str] = None
    text: TextSnapshot = field(default_factory=TextSnapshot, repr=False, compare=False)
    chunk_count: int = 0
    total_bytes: int = 0
    attempt: int = 0
    retained_fragments: int = 0
    result: Optional[Dict[str, Any]] = None
    strategy: Optional[str] = None
    updated_at: float = field(default_factory=time.time)

    @property
    def is_streaming(self) -> bool:
        return self.phase == SessionPhase.STREAMING

    @property
    def is_settled(self) -> bool:
        return self.phase == SessionPhase.SETTLED

    @property
    def accumulated_text(self) -> str:
        return str(self.text)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isStreaming": self.is_streaming,
            "error": self.error,
            "accumulatedText": self.accumulated_text,
            "chunkCount": self.chunk_count,
            "totalBytes": self.total_bytes,
            "phase": self.phase.value,
            "settled": self.settled.value if self.settled else None,
            "attempt": self.attempt,
        }
