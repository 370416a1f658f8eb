"""
scriptstream - Configuration

Per-session stream options plus environment overrides.

Environment:
    SCRIPTSTREAM_MAX_RETRIES      retry bound (default 3)
    SCRIPTSTREAM_RETRY_DELAY_MS   base backoff delay (default 1000)
    SCRIPTSTREAM_TIMEOUT_MS       overall wall-clock budget (default 300000)
    SCRIPTSTREAM_MAX_CHUNKS       retained fragment window (default 500)
    SCRIPTSTREAM_DISABLE_FALLBACK disable the plain-text fallback (1/true)
    SCRIPTSTREAM_TOKEN            static bearer token for EnvTokenProvider
"""

import os
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Optional

from .core.errors import InvalidOptionsError


ENV_PREFIX = "SCRIPTSTREAM_"

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_MS = 1000
DEFAULT_TIMEOUT_MS = 300_000
DEFAULT_MAX_CHUNKS = 500


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise InvalidOptionsError(name, f"expected an integer, got {raw!r}")


def _is_truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class StreamOptions:
    """
    Options accepted by StreamSession.start().

    Times are in milliseconds to match the wire-facing contract; use
    `retry_delay_seconds` / `timeout_seconds` internally.
    """
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_chunks: int = DEFAULT_MAX_CHUNKS

    # Completion heuristic thresholds
    completion_fragment_threshold: int = 5
    completion_min_length: int = 1000

    # Plain-text fallback in the reconstruction chain
    allow_fallback: bool = True

    def __post_init__(self):
        if self.max_retries < 0:
            raise InvalidOptionsError("max_retries", "must be >= 0")
        if self.retry_delay_ms < 0:
            raise InvalidOptionsError("retry_delay_ms", "must be >= 0")
        if self.timeout_ms <= 0:
            raise InvalidOptionsError("timeout_ms", "must be > 0")
        if self.max_chunks < 1:
            raise InvalidOptionsError("max_chunks", "must be >= 1")
        if self.completion_fragment_threshold < 0:
            raise InvalidOptionsError("completion_fragment_threshold", "must be >= 0")
        if self.completion_min_length < 0:
            raise InvalidOptionsError("completion_min_length", "must be >= 0")

    @property
    def retry_delay_seconds(self) -> float:
        return self.retry_delay_ms / 1000.0

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    def merged(self, **overrides: Any) -> "StreamOptions":
        """Return a copy with non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        unknown = set(changes) - set(asdict(self))
        if unknown:
            raise InvalidOptionsError(sorted(unknown)[0], "unknown option")
        return replace(self, **changes)

    def to_retry_policy(self):
        """Build the RetryPolicy for these options."""
        from .streaming.retry import RetryPolicy

        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.retry_delay_seconds,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> "StreamOptions":
        """Load options from environment variables, falling back to defaults."""
        return cls(
            max_retries=_env_int(f"{prefix}MAX_RETRIES", DEFAULT_MAX_RETRIES),
            retry_delay_ms=_env_int(f"{prefix}RETRY_DELAY_MS", DEFAULT_RETRY_DELAY_MS),
            timeout_ms=_env_int(f"{prefix}TIMEOUT_MS", DEFAULT_TIMEOUT_MS),
            max_chunks=_env_int(f"{prefix}MAX_CHUNKS", DEFAULT_MAX_CHUNKS),
            allow_fallback=not _is_truthy(os.getenv(f"{prefix}DISABLE_FALLBACK")),
        )


def get_bearer_token_env(prefix: str = ENV_PREFIX) -> Optional[str]:
    """Static bearer token from the environment, if configured."""
    token = os.getenv(f"{prefix}TOKEN")
    if token is None or not token.strip():
        return None
    return token.strip()
