"""
scriptstream - Transport Reader

One authenticated streaming POST per call, exposed as either:
- a terminal JSON value (Content-Type: application/json), or
- an async sequence of fragment strings decoded from NDJSON lines

Line decoding is tolerant: concatenated objects on one line are split,
object-looking lines that fail to parse are repaired, and anything that is
still unreadable or lacks a text field is dropped and logged rather than
failing the stream.
"""

import json
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from json_repair import repair_json
from pydantic import ValidationError

from ..core.errors import (
    ShapeError,
    TransportError,
    error_from_exception,
    error_from_status,
)
from ..core.models import CandidateRecord, TextRecord
from ..observability.logging import get_logger
from .auth import TokenProvider, as_token_provider


logger = get_logger(__name__)

__version__ = "1.0.0"

NDJSON_MEDIA_TYPE = "application/x-ndjson"
JSON_MEDIA_TYPE = "application/json"

# Generative backends can pause between units; a read stall past this is a
# retryable timeout. The session enforces the overall wall clock.
DEFAULT_TIMEOUT = httpx.Timeout(60.0, connect=10.0)

_OBJECT_BOUNDARY = re.compile(r"\}\s*\{")


# ============================================================
# Line and record decoding
# ============================================================

def decode_ndjson_line(line: str) -> List[Any]:
    """
    Decode one body line into zero or more JSON records.

    Handles SSE-style "data: " prefixes, several objects on one line and
    repairable object-shaped lines. Undecodable input yields [].
    """
    stripped = line.strip()
    if not stripped:
        return []

    if stripped.startswith("data:"):
        stripped = stripped[5:].strip()
        if not stripped or stripped == "[DONE]":
            return []

    try:
        return [json.loads(stripped)]
    except ValueError:
        pass

    if _OBJECT_BOUNDARY.search(stripped):
        records = []
        for part in _OBJECT_BOUNDARY.sub("}\n{", stripped).split("\n"):
            part = part.strip()
            if not part:
                continue
            try:
                records.append(json.loads(part))
            except ValueError:
                logger.warning(f"Failed to parse part: {part[:80]}")
        return records

    if stripped.startswith("{") and stripped.endswith("}"):
        repaired = repair_json(stripped, return_objects=True)
        if isinstance(repaired, dict) and repaired:
            return [repaired]
        logger.warning(f"Failed to repair JSON line: {stripped[:80]}")
        return []

    logger.warning(f"Failed to parse line: {stripped[:80]}")
    return []


def extract_fragment_text(record: Any) -> str:
    """
    Pull the fragment text out of a decoded record.

    Accepts {"text": "..."} and candidates[0].content.parts[0].text.
    Raises ShapeError for anything else, including blank text.
    """
    if not isinstance(record, dict):
        raise ShapeError(f"Record is not an object: {type(record).__name__}", record)

    try:
        if "text" in record:
            text = TextRecord.model_validate(record).text
        elif "candidates" in record:
            text = CandidateRecord.model_validate(record).text
        else:
            raise ShapeError("Record has no text field", record)
    except ValidationError as e:
        raise ShapeError(f"Record failed shape check: {e.error_count()} errors", record) from e

    if not text.strip():
        raise ShapeError("Record text is empty", record)

    return text


# ============================================================
# Response
# ============================================================

class TransportResponse:
    """
    An open HTTP response. Valid only inside TransportReader.open().
    """

    def __init__(self, response: httpx.Response, endpoint: str):
        self.response = response
        self.endpoint = endpoint
        self.content_type = response.headers.get("content-type", "")
        self.json_result: Any = None
        self.records = 0
        self.dropped = 0

    @property
    def status_code(self) -> int:
        return self.response.status_code

    @property
    def is_streaming(self) -> bool:
        return JSON_MEDIA_TYPE not in self.content_type.lower()

    async def fragments(self, token=None) -> AsyncIterator[str]:
        """
        Yield fragment texts in arrival order.

        Shape failures are counted in `dropped` and skipped. Network
        failures mid-body are raised as canonical transport errors.
        """
        try:
            async for line in self.response.aiter_lines():
                if token is not None:
                    token.raise_if_cancelled()

                for record in decode_ndjson_line(line):
                    self.records += 1
                    try:
                        text = extract_fragment_text(record)
                    except ShapeError as e:
                        self.dropped += 1
                        logger.debug(
                            f"Invalid chunk at record {self.records}: {e.message}",
                            dropped=self.dropped,
                        )
                        continue
                    yield text
        except httpx.HTTPError as e:
            raise error_from_exception(e, self.endpoint) from e


# ============================================================
# Reader
# ============================================================

class TransportReader:
    """
    Opens streaming POST requests against the generative backend.

    Args:
        client: Existing httpx.AsyncClient to reuse. Created lazily if omitted
            and then owned (closed by aclose()).
        token_provider: TokenProvider, token string, callable, or None for the
            SCRIPTSTREAM_TOKEN environment variable.
        timeout: httpx timeout for lazily created clients.
        headers: Extra headers sent with every request.

    Example:
        async with TransportReader(token_provider="tok") as reader:
            async with reader.open(url, {"scriptId": "s1"}) as response:
                async for text in response.fragments():
                    print(text)
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        token_provider: Any = None,
        timeout: Optional[httpx.Timeout] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self._client = client
        self._owns_client = client is None
        self.token_provider: TokenProvider = as_token_provider(token_provider)
        self.timeout = timeout or DEFAULT_TIMEOUT
        self.default_headers = headers or {}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def build_headers(self) -> Dict[str, str]:
        """Request headers, with a freshly fetched bearer token."""
        headers = {
            "Accept": NDJSON_MEDIA_TYPE,
            "Content-Type": JSON_MEDIA_TYPE,
            "User-Agent": f"scriptstream/{__version__}",
            **self.default_headers,
        }
        token = await self.token_provider.get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    @asynccontextmanager
    async def open(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        token=None,
    ) -> AsyncIterator[TransportResponse]:
        """
        Send the POST and yield the open response.

        The connection is released when the context exits, on every path.
        """
        if token is not None:
            token.raise_if_cancelled()

        client = await self._get_client()
        headers = await self.build_headers()
        request = client.build_request("POST", endpoint, json=params or {}, headers=headers)

        logger.debug(f"Opening stream POST {endpoint}")
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise error_from_exception(e, endpoint) from e

        try:
            if not response.is_success:
                try:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                except httpx.HTTPError:
                    body = ""
                raise error_from_status(
                    response.status_code,
                    body,
                    response.headers,
                    endpoint=endpoint,
                )

            result = TransportResponse(response, endpoint)

            if not result.is_streaming:
                try:
                    raw = await response.aread()
                except httpx.HTTPError as e:
                    raise error_from_exception(e, endpoint) from e
                try:
                    result.json_result = json.loads(raw)
                except ValueError as e:
                    raise TransportError(
                        f"Malformed JSON body: {e}",
                        code="malformed_json_body",
                        status_code=response.status_code,
                        endpoint=endpoint,
                    ) from e

            yield result
        finally:
            await response.aclose()

    async def aclose(self):
        """Close the HTTP client if this reader created it."""
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "TransportReader":
        return self

    async def __aexit__(self, *args):
        await self.aclose()
