"""
scriptstream - Configuration Tests

Tests for StreamOptions validation, overrides and environment loading,
plus bearer token providers.
"""

import pytest

from scriptstream.config import StreamOptions, get_bearer_token_env
from scriptstream.core.errors import InvalidOptionsError
from scriptstream.streaming.retry import RetryPolicy
from scriptstream.transport.auth import (
    CallableTokenProvider,
    EnvTokenProvider,
    StaticTokenProvider,
    as_token_provider,
)


class TestStreamOptions:
    """Tests for StreamOptions."""

    def test_defaults(self):
        """Test documented defaults."""
        opts = StreamOptions()
        assert opts.max_retries == 3
        assert opts.retry_delay_ms == 1000
        assert opts.timeout_ms == 300000
        assert opts.max_chunks == 500
        assert opts.allow_fallback is True

    def test_seconds_properties(self):
        """Test millisecond to second conversion."""
        opts = StreamOptions(retry_delay_ms=250, timeout_ms=1500)
        assert opts.retry_delay_seconds == 0.25
        assert opts.timeout_seconds == 1.5

    @pytest.mark.parametrize("field,value", [
        ("max_retries", -1),
        ("retry_delay_ms", -5),
        ("timeout_ms", 0),
        ("max_chunks", 0),
        ("completion_fragment_threshold", -1),
    ])
    def test_validation(self, field, value):
        """Test that out-of-range values are rejected."""
        with pytest.raises(InvalidOptionsError) as exc_info:
            StreamOptions(**{field: value})
        assert exc_info.value.param == field

    def test_merged_ignores_none(self):
        """Test that None overrides keep the current value."""
        opts = StreamOptions(max_retries=5).merged(max_retries=None, max_chunks=10)
        assert opts.max_retries == 5
        assert opts.max_chunks == 10

    def test_merged_rejects_unknown(self):
        """Test that unknown override names are rejected."""
        with pytest.raises(InvalidOptionsError):
            StreamOptions().merged(retries=2)

    def test_to_retry_policy(self):
        """Test the derived retry policy."""
        policy = StreamOptions(max_retries=2, retry_delay_ms=500).to_retry_policy()
        assert isinstance(policy, RetryPolicy)
        assert policy.max_retries == 2
        assert policy.base_delay == 0.5

    def test_from_env(self, monkeypatch):
        """Test loading options from the environment."""
        monkeypatch.setenv("SCRIPTSTREAM_MAX_RETRIES", "1")
        monkeypatch.setenv("SCRIPTSTREAM_TIMEOUT_MS", "2000")
        monkeypatch.setenv("SCRIPTSTREAM_DISABLE_FALLBACK", "true")

        opts = StreamOptions.from_env()
        assert opts.max_retries == 1
        assert opts.timeout_ms == 2000
        assert opts.retry_delay_ms == 1000
        assert opts.allow_fallback is False

    def test_from_env_rejects_garbage(self, monkeypatch):
        """Test that non-integer env values are reported."""
        monkeypatch.setenv("SCRIPTSTREAM_MAX_CHUNKS", "lots")
        with pytest.raises(InvalidOptionsError):
            StreamOptions.from_env()


class TestTokenProviders:
    """Tests for bearer token providers."""

    @pytest.mark.asyncio
    async def test_static(self):
        """Test a fixed token."""
        assert await StaticTokenProvider("abc").get_token() == "abc"

    @pytest.mark.asyncio
    async def test_env(self, monkeypatch):
        """Test reading the token from the environment on each call."""
        provider = EnvTokenProvider()
        monkeypatch.delenv("SCRIPTSTREAM_TOKEN", raising=False)
        assert await provider.get_token() is None

        monkeypatch.setenv("SCRIPTSTREAM_TOKEN", " tok ")
        assert await provider.get_token() == "tok"
        assert get_bearer_token_env() == "tok"

    @pytest.mark.asyncio
    async def test_callable_sync_and_async(self):
        """Test adapting plain and coroutine callables."""
        async def fetch():
            return "async-token"

        assert await CallableTokenProvider(lambda: "sync-token").get_token() == "sync-token"
        assert await CallableTokenProvider(fetch).get_token() == "async-token"

    def test_coercion(self):
        """Test as_token_provider input handling."""
        static = StaticTokenProvider("x")
        assert isinstance(as_token_provider(None), EnvTokenProvider)
        assert isinstance(as_token_provider("tok"), StaticTokenProvider)
        assert as_token_provider(static) is static
        assert isinstance(as_token_provider(lambda: "t"), CallableTokenProvider)
        with pytest.raises(TypeError):
            as_token_provider(42)
