"""
scriptstream - Bearer Token Providers

The engine never manages credentials; it only asks a provider for the
current bearer token right before each HTTP attempt, so a provider backed
by a refreshing identity SDK always hands out a fresh token.
"""

import inspect
from typing import Awaitable, Callable, Optional, Protocol, Union, runtime_checkable

from ..config import get_bearer_token_env


@runtime_checkable
class TokenProvider(Protocol):
    """Anything that can produce a current bearer token on demand."""

    async def get_token(self) -> Optional[str]:
        ...


class StaticTokenProvider:
    """Fixed token, mostly for scripts and tests."""

    def __init__(self, token: Optional[str]):
        self._token = token

    async def get_token(self) -> Optional[str]:
        return self._token


class EnvTokenProvider:
    """Reads SCRIPTSTREAM_TOKEN (or `<prefix>TOKEN`) on every call."""

    def __init__(self, prefix: str = "SCRIPTSTREAM_"):
        self.prefix = prefix

    async def get_token(self) -> Optional[str]:
        return get_bearer_token_env(self.prefix)


class CallableTokenProvider:
    """Adapts a plain sync or async callable returning a token."""

    def __init__(self, fn: Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]):
        self._fn = fn

    async def get_token(self) -> Optional[str]:
        result = self._fn()
        if inspect.isawaitable(result):
            result = await result
        return result


def as_token_provider(source) -> TokenProvider:
    """
    Coerce None, a string, a callable or a provider into a TokenProvider.

    None falls back to the environment.
    """
    if source is None:
        return EnvTokenProvider()
    if isinstance(source, str):
        return StaticTokenProvider(source)
    if isinstance(source, TokenProvider):
        return source
    if callable(source):
        return CallableTokenProvider(source)
    raise TypeError(f"Unsupported token provider: {source!r}")
