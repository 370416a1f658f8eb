"""
scriptstream - Transport Module

Authenticated streaming HTTP access to the generative backend.
"""

from .auth import (
    TokenProvider,
    StaticTokenProvider,
    EnvTokenProvider,
    CallableTokenProvider,
    as_token_provider,
)
from .reader import (
    TransportReader,
    TransportResponse,
    decode_ndjson_line,
    extract_fragment_text,
    NDJSON_MEDIA_TYPE,
    JSON_MEDIA_TYPE,
)

__all__ = [
    # Auth
    "TokenProvider",
    "StaticTokenProvider",
    "EnvTokenProvider",
    "CallableTokenProvider",
    "as_token_provider",
    # Reader
    "TransportReader",
    "TransportResponse",
    "decode_ndjson_line",
    "extract_fragment_text",
    "NDJSON_MEDIA_TYPE",
    "JSON_MEDIA_TYPE",
]
