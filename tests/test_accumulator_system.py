"""
scriptstream - Accumulator System Tests

Tests for:
- Fragment normalization
- Deduplication
- Sliding retention window
- Completion heuristic
"""

import pytest

from scriptstream.streaming.accumulator import (
    FragmentAccumulator,
    fragment_key,
    normalize_fragment,
)
from scriptstream.streaming.completion import (
    braces_balanced,
    ends_on_object_boundary,
    is_likely_complete,
)


# ============================================================
# Normalization
# ============================================================

class TestNormalizeFragment:
    """Tests for normalize_fragment."""

    def test_plain_text_passes_through(self):
        """Test that ordinary text is unchanged."""
        assert normalize_fragment('{"data": {"scriptTitle": "A"') == '{"data": {"scriptTitle": "A"'

    def test_thinking_notification_dropped(self):
        """Test that thinking notifications normalize to nothing."""
        assert normalize_fragment('{"thinking": true, "text": "pondering"}') == ""

    def test_html_error_page_dropped(self):
        """Test that HTML pages normalize to nothing."""
        assert normalize_fragment("<!DOCTYPE html><html><body>502</body></html>") == ""
        assert normalize_fragment("  <html><head></head></html>") == ""

    def test_text_envelope_unwrapped(self):
        """Test that an embedded {"text": ...} envelope is unwrapped."""
        assert normalize_fragment('{"text": "hello"}') == "hello"

    def test_envelope_with_other_keys_kept(self):
        """Test that objects with more than a text key are left alone."""
        raw = '{"text": "hello", "data": 1}'
        assert normalize_fragment(raw) == raw

    def test_control_characters_removed(self):
        """Test that control characters other than tab/newline/CR are stripped."""
        assert normalize_fragment("a\x00b\x07c\td\ne\rf") == "abc\td\ne\rf"

    def test_non_string_is_empty(self):
        """Test that non-string input is not admissible."""
        assert normalize_fragment(None) == ""
        assert normalize_fragment(42) == ""


# ============================================================
# Deduplication
# ============================================================

class TestDeduplication:
    """Tests for seen-set membership."""

    def test_first_admission_is_novel(self):
        """Test that a new fragment is appended."""
        acc = FragmentAccumulator()
        result = acc.admit("alpha")

        assert result.novel is True
        assert result.accumulated_text == "alpha"
        assert acc.chunk_count == 1

    def test_duplicate_is_idempotent(self):
        """Test that re-admitting a fragment changes nothing."""
        acc = FragmentAccumulator()
        acc.admit("alpha")
        acc.admit("beta")
        before = (acc.accumulated_text, acc.chunk_count, acc.total_bytes)

        result = acc.admit("alpha")

        assert result.novel is False
        assert (acc.accumulated_text, acc.chunk_count, acc.total_bytes) == before
        assert acc.duplicates == 1

    def test_duplicate_after_normalization(self):
        """Test that an envelope and its bare text dedup to the same key."""
        acc = FragmentAccumulator()
        acc.admit("hello")
        result = acc.admit('{"text": "hello"}')

        assert result.novel is False
        assert acc.accumulated_text == "hello"

    def test_noise_is_not_counted_as_duplicate(self):
        """Test that dropped noise leaves counters untouched."""
        acc = FragmentAccumulator()
        result = acc.admit('{"thinking": true}')

        assert result.novel is False
        assert result.fragment == ""
        assert acc.chunk_count == 0
        assert acc.duplicates == 0

    def test_text_is_concatenation_in_order(self):
        """Test that accumulated text preserves arrival order."""
        acc = FragmentAccumulator()
        for part in ['{"data": ', '{"a": 1', "}}"]:
            acc.admit(part)

        assert acc.accumulated_text == '{"data": {"a": 1}}'

    def test_total_bytes_is_utf8_length(self):
        """Test that total_bytes counts encoded bytes."""
        acc = FragmentAccumulator()
        acc.admit("é")
        acc.admit("ab")

        assert acc.total_bytes == 3

    def test_fragment_key_is_stable(self):
        """Test that equal text yields equal keys."""
        assert fragment_key("x") == fragment_key("x")
        assert fragment_key("x") != fragment_key("y")
        assert len(fragment_key("x")) == 64


# ============================================================
# Retention Window
# ============================================================

class TestRetentionWindow:
    """Tests for the bounded fragment ring."""

    def test_window_is_bounded(self):
        """Test that only the newest max_chunks fragments are retained."""
        acc = FragmentAccumulator(max_chunks=3)
        for i in range(5):
            acc.admit(f"f{i}")

        assert acc.retained_fragments == ["f2", "f3", "f4"]
        assert acc.evicted == 2

    def test_eviction_never_touches_text(self):
        """Test that evicted fragments remain in accumulated text."""
        acc = FragmentAccumulator(max_chunks=2)
        for i in range(6):
            acc.admit(f"f{i}")

        assert acc.accumulated_text == "f0f1f2f3f4f5"
        assert acc.chunk_count == 6

    def test_replay_joins_window(self):
        """Test replay of the retained window."""
        acc = FragmentAccumulator(max_chunks=2)
        for part in ["a", "b", "c"]:
            acc.admit(part)

        assert acc.replay() == "bc"

    def test_invalid_window_size(self):
        """Test that a zero-sized window is rejected."""
        with pytest.raises(ValueError):
            FragmentAccumulator(max_chunks=0)


# ============================================================
# Lifecycle
# ============================================================

class TestLifecycle:
    """Tests for reset() and release()."""

    def test_reset_clears_everything(self):
        """Test that reset() gives a fresh buffer."""
        acc = FragmentAccumulator()
        acc.admit("a")
        acc.admit("a")
        acc.reset()

        assert acc.accumulated_text == ""
        assert acc.chunk_count == 0
        assert acc.total_bytes == 0
        assert acc.duplicates == 0
        assert acc.seen_count == 0
        assert acc.admit("a").novel is True

    def test_release_keeps_text(self):
        """Test that release() drops the seen-set but keeps diagnostics."""
        acc = FragmentAccumulator()
        acc.admit("a")
        acc.admit("b")
        acc.release()

        assert acc.accumulated_text == "ab"
        assert acc.chunk_count == 2
        assert acc.seen_count == 0
        assert acc.retained_fragments == []

    def test_snapshot_is_stable(self):
        """Test that a snapshot ignores later admissions and resets."""
        acc = FragmentAccumulator()
        acc.admit("a")
        acc.admit("b")
        snapshot = acc.snapshot()

        acc.admit("c")
        assert len(snapshot) == 2
        assert str(snapshot) == "ab"

        acc.reset()
        acc.admit("z")
        assert str(snapshot) == "ab"
        assert str(acc.snapshot()) == "z"

    def test_many_fragments_join_once(self):
        """Test that taking snapshots does not rebuild the text per fragment."""
        acc = FragmentAccumulator(max_chunks=10)
        snapshots = []
        for i in range(2000):
            acc.admit(f"f{i};")
            snapshots.append(acc.snapshot())

        assert acc._joined == 0
        assert str(snapshots[9]) == "".join(f"f{i};" for i in range(10))
        assert acc.accumulated_text == "".join(f"f{i};" for i in range(2000))
        assert acc._joined == 2000


# ============================================================
# Completion Heuristic
# ============================================================

class TestCompletionHeuristic:
    """Tests for is_likely_complete."""

    def _buffer(self, parts):
        acc = FragmentAccumulator()
        for part in parts:
            acc.admit(part)
        return acc

    def test_many_fragments_is_complete(self):
        """Test that more than five fragments counts as complete."""
        acc = self._buffer([f"p{i}" for i in range(6)])
        assert is_likely_complete(acc) is True

    def test_exactly_threshold_is_not_complete(self):
        """Test that five short fragments are not enough."""
        acc = self._buffer([f"p{i}" for i in range(5)])
        assert is_likely_complete(acc) is False

    def test_long_closed_object_is_complete(self):
        """Test that a long balanced object ending on } counts as complete."""
        text = '{"data": {"script": "' + "x" * 1200 + '"}}'
        acc = self._buffer([text])
        assert is_likely_complete(acc) is True

    def test_long_open_object_is_not_complete(self):
        """Test that a long but unclosed object is not complete."""
        text = '{"data": {"script": "' + "x" * 1200 + '"'
        acc = self._buffer([text])
        assert is_likely_complete(acc) is False

    def test_short_closed_object_is_not_complete(self):
        """Test that short text never qualifies on shape alone."""
        acc = self._buffer(['{"data": {}}'])
        assert is_likely_complete(acc) is False

    def test_thresholds_are_configurable(self):
        """Test custom thresholds."""
        acc = self._buffer(["a", "b"])
        assert is_likely_complete(acc, fragment_threshold=1) is True
        assert is_likely_complete(self._buffer(['{"a": 1}']), min_length=3) is True

    def test_helpers(self):
        """Test the brace and boundary helpers."""
        assert braces_balanced("{}") is True
        assert braces_balanced("no braces") is False
        assert braces_balanced("{{}") is False
        assert ends_on_object_boundary('{"a": "b"}  ') is True
        assert ends_on_object_boundary('{"a": "b"') is False
