"""
scriptstream - Incremental JSON Reconstructor

Recovers one structured result object from accumulated stream text that
may never have been well-formed JSON.

Strategies run in order and the first success wins:
1. repaired_whole_text  - json_repair over the whole text (object-shaped text only)
2. fenced_code_block    - ```json fenced block, repaired
3. direct_parse         - plain json.loads of the text or the fenced content
4. keyed_brace_scan     - slice the first {"data": {...}} object by brace depth
5. plain_text_fallback  - wrap the raw text as a best-effort narrative

Every strategy is a pure function of (text, expected_key); none touch
shared state, so each can be tested on its own.
"""

import json
import re
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Sequence

from json_repair import repair_json

from ..core.models import ParseFailure, ParseOutcome, ParseSuccess
from ..observability.logging import TimedOperation, get_logger


logger = get_logger(__name__)

DEFAULT_EXPECTED_KEY = "data"
FALLBACK_TITLE = "Generated Script"

# Closing fence optional: a stream cut mid-block still yields its content
_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*(?:```|$)")

_TITLE_FIELD = re.compile(r'"scriptTitle"\s*:\s*"((?:\\"|[^"])+)"')
_SCRIPT_FIELD = re.compile(r'"script"\s*:\s*"((?:\\"|[^"])+)"')
_DURATION_FIELD = re.compile(r'"script(?:Duration|DurationEstimated)"\s*:\s*(\d+)')


StrategyFunc = Callable[[str, str], Optional[Dict[str, Any]]]


class Strategy(NamedTuple):
    """A named reconstruction strategy."""
    name: str
    func: StrategyFunc
    best_effort: bool = False


def has_expected_key(value: Any, expected_key: str = DEFAULT_EXPECTED_KEY) -> bool:
    """The success criterion shared by strategies 1-4."""
    return isinstance(value, dict) and value.get(expected_key) is not None


def _repair_to_object(text: str) -> Any:
    repaired = repair_json(text, return_objects=True)
    # json_repair hands back a list when it finds several top-level values
    if isinstance(repaired, list):
        for item in repaired:
            if isinstance(item, dict):
                return item
    return repaired


def extract_fenced_block(text: str) -> Optional[str]:
    """Inner content of the first Markdown fenced block, if any."""
    match = _FENCED_BLOCK.search(text)
    if not match:
        return None
    content = match.group(1).strip()
    return content or None


def find_keyed_object_span(text: str, expected_key: str = DEFAULT_EXPECTED_KEY) -> Optional[str]:
    """
    Slice the first `{"<key>": {` object by counting brace depth.

    Braces inside JSON strings are ignored. Returns None when the marker is
    missing or depth never returns to zero.
    """
    marker = re.compile(r"\{\s*\"" + re.escape(expected_key) + r"\"\s*:\s*\{")
    match = marker.search(text)
    if not match:
        return None

    start = match.start()
    depth = 0
    in_string = False
    escaped = False

    for index in range(start, len(text)):
        char = text[index]

        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]

    return None


# ============================================================
# Strategies
# ============================================================

def repaired_whole_text(text: str, expected_key: str = DEFAULT_EXPECTED_KEY) -> Optional[Dict[str, Any]]:
    """Strategy 1: structural repair of the entire text."""
    cleaned = text.strip()
    if not cleaned.startswith("{"):
        return None

    value = _repair_to_object(cleaned)
    if has_expected_key(value, expected_key):
        return value
    return None


def fenced_code_block(text: str, expected_key: str = DEFAULT_EXPECTED_KEY) -> Optional[Dict[str, Any]]:
    """Strategy 2: repaired content of a ```json fenced block."""
    content = extract_fenced_block(text)
    if content is None:
        return None

    logger.debug("Found JSON code block in content")
    value = _repair_to_object(content)
    if has_expected_key(value, expected_key):
        return value
    return None


def direct_parse(text: str, expected_key: str = DEFAULT_EXPECTED_KEY) -> Optional[Dict[str, Any]]:
    """Strategy 3: json.loads with no repair, whole text then fenced content."""
    candidates = [text.strip()]
    block = extract_fenced_block(text)
    if block is not None:
        candidates.append(block)

    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except ValueError:
            continue
        if has_expected_key(value, expected_key):
            return value
    return None


def keyed_brace_scan(text: str, expected_key: str = DEFAULT_EXPECTED_KEY) -> Optional[Dict[str, Any]]:
    """Strategy 4: parse exactly the first keyed object, ignoring what follows."""
    span = find_keyed_object_span(text, expected_key)
    if span is None:
        return None

    try:
        value = json.loads(span)
    except ValueError:
        value = _repair_to_object(span)

    if has_expected_key(value, expected_key):
        return value
    return None


def _unescape(fragment: str) -> str:
    return fragment.replace('\\"', '"').replace("\\n", "\n").replace("\\\\", "\\")


def plain_text_fallback(text: str, expected_key: str = DEFAULT_EXPECTED_KEY) -> Optional[Dict[str, Any]]:
    """
    Strategy 5: synthesize a minimal result around the raw text.

    Title and duration are salvaged from half-written JSON fields when
    present; a salvaged "script" field longer than 20 characters replaces
    the raw text as the narrative.
    """
    if not text or not text.strip():
        return None

    title_match = _TITLE_FIELD.search(text)
    script_match = _SCRIPT_FIELD.search(text)
    duration_match = _DURATION_FIELD.search(text)

    narrative = text
    if script_match:
        salvaged = _unescape(script_match.group(1))
        if len(salvaged) > 20:
            narrative = salvaged

    return {
        expected_key: {
            "scriptTitle": _unescape(title_match.group(1)) if title_match else FALLBACK_TITLE,
            "scriptNarrativeParagraph": narrative,
            "scriptDurationEstimated": int(duration_match.group(1)) if duration_match else 0,
        },
        "fallback": True,
    }


DEFAULT_STRATEGIES: Sequence[Strategy] = (
    Strategy("repaired_whole_text", repaired_whole_text),
    Strategy("fenced_code_block", fenced_code_block),
    Strategy("direct_parse", direct_parse),
    Strategy("keyed_brace_scan", keyed_brace_scan),
    Strategy("plain_text_fallback", plain_text_fallback, best_effort=True),
)


# ============================================================
# Chain
# ============================================================

def reconstruct(
    text: str,
    strategies: Optional[Iterable[Strategy]] = None,
    allow_fallback: bool = True,
    expected_key: str = DEFAULT_EXPECTED_KEY,
) -> ParseOutcome:
    """
    Run the strategy chain over `text`; first success wins.

    Returns ParseSuccess (with the winning strategy's name) or ParseFailure
    listing every strategy that was tried.
    """
    chain = list(strategies if strategies is not None else DEFAULT_STRATEGIES)
    attempted: List[str] = []

    if not text or not text.strip():
        return ParseFailure(reason="accumulated text is empty", attempted=attempted)

    with TimedOperation("reconstruct", logger, extra={"content_length": len(text)}):
        for strategy in chain:
            if strategy.best_effort and not allow_fallback:
                continue

            attempted.append(strategy.name)
            try:
                value = strategy.func(text, expected_key)
            except (ValueError, TypeError, RecursionError) as e:
                logger.debug(f"Strategy {strategy.name} raised: {e}")
                continue

            if value is None:
                logger.debug(f"Strategy {strategy.name} failed")
                continue

            logger.info(
                f"Reconstructed result via {strategy.name}",
                strategy=strategy.name,
                best_effort=strategy.best_effort,
            )
            return ParseSuccess(value=value, strategy=strategy.name, best_effort=strategy.best_effort)

    logger.error(
        "No reconstruction strategy produced a result",
        attempted=attempted,
        content_length=len(text),
    )
    return ParseFailure(
        reason=f"no strategy recovered a '{expected_key}' object",
        attempted=attempted,
    )


class Reconstructor:
    """
    A configured strategy chain.

    Example:
        reconstructor = Reconstructor(allow_fallback=False)
        outcome = reconstructor.reconstruct(session.state.accumulated_text)
        if outcome.ok:
            use(outcome.value)
    """

    def __init__(
        self,
        strategies: Optional[Iterable[Strategy]] = None,
        allow_fallback: bool = True,
        expected_key: str = DEFAULT_EXPECTED_KEY,
    ):
        self.strategies = tuple(strategies if strategies is not None else DEFAULT_STRATEGIES)
        self.allow_fallback = allow_fallback
        self.expected_key = expected_key

    @property
    def strategy_names(self) -> List[str]:
        return [s.name for s in self.strategies]

    def reconstruct(self, text: str, allow_fallback: Optional[bool] = None) -> ParseOutcome:
        return reconstruct(
            text,
            strategies=self.strategies,
            allow_fallback=self.allow_fallback if allow_fallback is None else allow_fallback,
            expected_key=self.expected_key,
        )

    def strict(self, text: str) -> ParseOutcome:
        """Reconstruct without the plain-text fallback."""
        return self.reconstruct(text, allow_fallback=False)
