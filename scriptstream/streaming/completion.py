"""
scriptstream - Completion Heuristic

Cheap judgment of whether a partial buffer is "done enough" to attempt
reconstruction. Advisory only: false positives are expected on some payload
shapes, so reconstruction always runs its full chain regardless.
"""

from typing import Any

DEFAULT_FRAGMENT_THRESHOLD = 5
DEFAULT_MIN_LENGTH = 1000


def braces_balanced(text: str) -> bool:
    """At least one opening brace and no more openings than closings."""
    opening = text.count("{")
    return opening > 0 and text.count("}") >= opening


def ends_on_object_boundary(text: str) -> bool:
    trimmed = text.rstrip()
    return trimmed.endswith("}") or trimmed.endswith('"}')


def is_likely_complete(
    buffer: Any,
    fragment_threshold: int = DEFAULT_FRAGMENT_THRESHOLD,
    min_length: int = DEFAULT_MIN_LENGTH,
) -> bool:
    """
    Decide from partial state whether the stream looks finished.

    `buffer` is anything exposing `accumulated_text` and `chunk_count`
    (a FragmentAccumulator or a SessionState snapshot).

    True when more than `fragment_threshold` fragments arrived, or when the
    text is longer than `min_length`, has balanced-or-closed braces and ends
    on `}` / `"}`.
    """
    if buffer.chunk_count > fragment_threshold:
        return True

    text = buffer.accumulated_text
    if len(text) <= min_length:
        return False

    return braces_balanced(text) and ends_on_object_boundary(text)
