"""
scriptstream - Fragment Accumulator

Deduplicates fragments and grows the accumulated text for one attempt.

Memory model:
- accumulated_text is append-only and never evicted; reconstruction always
  sees every distinct fragment of the attempt
- fragments are kept as a list and joined only when the text is read;
  snapshot() hands out a lazy view that later admissions do not change
- retained_fragments is a bounded ring (max_chunks); once full, each new
  admission evicts the oldest entry
"""

import hashlib
import json
import re
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Set

from ..core.models import TextSnapshot
from ..observability.logging import get_logger


logger = get_logger(__name__)

DEFAULT_MAX_CHUNKS = 500

# Control characters except tab, newline and carriage return
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_THINKING_MARKER = re.compile(r'"thinking"\s*:\s*true')


def _looks_like_html(text: str) -> bool:
    stripped = text.lstrip()
    return (
        stripped.startswith("<!DOCTYPE")
        or stripped.startswith("<html")
        or "</html>" in text
    )


def normalize_fragment(raw: str) -> str:
    """
    Reduce a raw fragment to the plain text that joins the buffer.

    Returns "" for noise (thinking notifications, HTML error pages), which
    callers treat as not admissible.
    """
    if not isinstance(raw, str):
        return ""

    text = raw

    if _THINKING_MARKER.search(text):
        return ""

    if _looks_like_html(text):
        logger.warning("Received HTML content instead of stream text, dropping fragment")
        return ""

    # Embedded {"text": "..."} envelope
    stripped = text.strip()
    if stripped.startswith("{") and stripped.endswith("}") and '"text"' in stripped:
        try:
            envelope = json.loads(stripped)
        except ValueError:
            envelope = None
        if isinstance(envelope, dict) and isinstance(envelope.get("text"), str) and len(envelope) == 1:
            text = envelope["text"]

    return _CONTROL_CHARS.sub("", text)


def fragment_key(text: str) -> str:
    """Membership key for the seen-set."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class AdmitResult:
    """Outcome of one admit() call; `buffer` is the accumulator itself."""
    novel: bool
    buffer: "FragmentAccumulator"
    fragment: str = ""

    @property
    def accumulated_text(self) -> str:
        return self.buffer.accumulated_text


class FragmentAccumulator:
    """
    Seen-set, text buffer and retained-fragment ring for one attempt.

    Not shared between sessions; each StreamSession owns one.
    """

    def __init__(self, max_chunks: int = DEFAULT_MAX_CHUNKS):
        if max_chunks < 1:
            raise ValueError("max_chunks must be >= 1")
        self.max_chunks = max_chunks
        self._seen: Set[str] = set()
        self._parts: List[str] = []
        self._text_cache = ""
        self._joined = 0
        self._retained: Deque[str] = deque(maxlen=max_chunks)
        self.chunk_count = 0
        self.total_bytes = 0
        self.duplicates = 0
        self.evicted = 0

    @property
    def accumulated_text(self) -> str:
        self._flush()
        return self._text_cache

    @property
    def retained_fragments(self) -> List[str]:
        return list(self._retained)

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    def _flush(self):
        if self._joined != len(self._parts):
            self._text_cache = "".join(self._parts)
            self._joined = len(self._parts)

    def snapshot(self) -> TextSnapshot:
        """View of the text admitted so far, joined on first read."""
        return TextSnapshot(self._parts, len(self._parts))

    def admit(self, raw: str) -> AdmitResult:
        """
        Normalize, dedup and append one fragment.

        Duplicates and noise return novel=False and leave every counter
        untouched except `duplicates`.
        """
        text = normalize_fragment(raw)
        if not text:
            return AdmitResult(novel=False, buffer=self)

        key = fragment_key(text)
        if key in self._seen:
            self.duplicates += 1
            if self.duplicates <= 5:
                logger.warning(f"Duplicate chunk detected: {text[:50]}...")
            return AdmitResult(novel=False, buffer=self, fragment=text)

        self._seen.add(key)
        self._parts.append(text)

        if len(self._retained) == self.max_chunks:
            self.evicted += 1
        self._retained.append(text)

        self.chunk_count += 1
        self.total_bytes += len(text.encode("utf-8"))

        return AdmitResult(novel=True, buffer=self, fragment=text)

    def replay(self) -> str:
        """Concatenation of the retained window (diagnostics only)."""
        return "".join(self._retained)

    def reset(self):
        """Start a fresh buffer for a new attempt."""
        self._seen.clear()
        # New list: snapshots of the previous attempt keep their parts
        self._parts = []
        self._text_cache = ""
        self._joined = 0
        self._retained.clear()
        self.chunk_count = 0
        self.total_bytes = 0
        self.duplicates = 0
        self.evicted = 0

    def release(self):
        """
        Drop the seen-set and retained ring after settlement.

        Text and counters stay readable for diagnostics.
        """
        self._seen.clear()
        self._retained.clear()
