"""Completion client -- chat completions via direct httpx calls.

CompletionClient is the capability the rest of the relay depends on.
OpenAICompletionClient implements it against any OpenAI-compatible
/v1/chat/completions endpoint, without an SDK.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any, Protocol

import httpx

from relay.config import Settings
from relay.errors import AdapterError
from relay.sessions.schemas import Turn

logger = logging.getLogger(__name__)

_COMPLETIONS_PATH = "/v1/chat/completions"
_DONE_SENTINEL = "[DONE]"


class CompletionClient(Protocol):
    """Produces assistant output for an ordered turn history."""

    async def complete_once(self, history: Sequence[Turn], model: str | None = None) -> Turn:
        ...

    def complete_streaming(
        self, history: Sequence[Turn], model: str | None = None
    ) -> AsyncIterator[str]:
        ...


def _parse_stream_chunk(data: Any) -> str | None:
    """Extract the text delta from one streamed chunk.

    Returns None for chunks that carry no content (role preamble,
    finish_reason-only chunk). Raises AdapterError for in-stream errors
    (HTTP 200 but an error object in the body) and for chunks that do not
    have the chat completion chunk shape.
    """
    if not isinstance(data, dict):
        raise AdapterError(f"Malformed stream chunk: expected object, got {type(data).__name__}")

    if "error" in data:
        error = data.get("error")
        if not isinstance(error, dict):
            error = {"message": str(error)}
        raise AdapterError(
            f"{error.get('type', 'unknown')}: {error.get('message', '')}"
        )

    choices = data.get("choices") or []
    if not isinstance(choices, list):
        raise AdapterError("Malformed stream chunk: choices is not a list")
    if not choices:
        return None
    choice = choices[0]
    if not isinstance(choice, dict):
        raise AdapterError("Malformed stream chunk: choice is not an object")
    delta = choice.get("delta") or {}
    if not isinstance(delta, dict):
        raise AdapterError("Malformed stream chunk: delta is not an object")
    content = delta.get("content")
    if content is None:
        return None
    if not isinstance(content, str):
        raise AdapterError("Malformed stream chunk: content is not a string")
    return content


def _error_detail(response: httpx.Response, body: bytes) -> str:
    try:
        error = json.loads(body).get("error", {})
        return f"{error.get('type', 'unknown')} - {error.get('message', 'unknown error')}"
    except (ValueError, AttributeError):
        return f"HTTP {response.status_code}: {body.decode(errors='replace')[:500]}"


class OpenAICompletionClient:
    """Chat completions over httpx, streaming via Server-Sent Events."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Initialize the httpx client with auth and timeout settings."""
        settings = self._settings

        headers: dict[str, str] = {"content-type": "application/json"}
        if settings.openai_api_key:
            headers["authorization"] = f"Bearer {settings.openai_api_key}"
        else:
            logger.warning("OPENAI_API_KEY is not set -- API calls will fail")

        timeout = httpx.Timeout(
            connect=settings.api_timeout_connect,
            read=settings.api_timeout_read,
            write=10.0,
            pool=10.0,
        )
        limits = httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        )

        self._http = httpx.AsyncClient(
            base_url=settings.api_base_url,
            headers=headers,
            timeout=timeout,
            limits=limits,
            transport=self._transport,
        )
        logger.info("Completion client initialized (base_url: %s)", settings.api_base_url)

    async def close(self) -> None:
        """Clean up httpx client."""
        if self._http:
            await self._http.aclose()
            self._http = None

    def _build_payload(
        self,
        history: Sequence[Turn],
        model: str | None,
        stream: bool = False,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model or self._settings.model,
            "messages": [turn.to_api() for turn in history],
        }
        if stream:
            payload["stream"] = True
        return payload

    def _client(self) -> httpx.AsyncClient:
        if not self._http:
            raise AdapterError("httpx client not initialized -- call start() first")
        return self._http

    async def complete_once(self, history: Sequence[Turn], model: str | None = None) -> Turn:
        """Request a single, non-streamed completion."""
        http = self._client()
        payload = self._build_payload(history, model)

        try:
            response = await http.post(_COMPLETIONS_PATH, json=payload)
        except httpx.TimeoutException as e:
            raise AdapterError(f"API request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise AdapterError(f"HTTP error: {e}") from e

        if response.status_code != 200:
            raise AdapterError(
                f"Completion API error ({response.status_code}): "
                f"{_error_detail(response, response.content)}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
            content = data["choices"][0]["message"].get("content") or ""
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            raise AdapterError(f"Malformed completion response: {e}") from e
        if not isinstance(content, str):
            raise AdapterError("Malformed completion response: content is not a string")
        return Turn.assistant(content)

    async def complete_streaming(
        self, history: Sequence[Turn], model: str | None = None
    ) -> AsyncIterator[str]:
        """Yield text fragments as the endpoint streams them.

        Only data: lines are processed; data: [DONE] ends the stream.
        """
        http = self._client()
        payload = self._build_payload(history, model, stream=True)

        try:
            async with http.stream("POST", _COMPLETIONS_PATH, json=payload) as response:
                if response.status_code != 200:
                    body = await response.aread()
                    raise AdapterError(
                        f"Completion API error ({response.status_code}): "
                        f"{_error_detail(response, body)}",
                        status_code=response.status_code,
                    )

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    raw = line[5:].strip()
                    if raw == _DONE_SENTINEL:
                        return
                    try:
                        data = json.loads(raw)
                    except json.JSONDecodeError as e:
                        raise AdapterError(f"Malformed stream chunk: {raw[:200]}") from e
                    fragment = _parse_stream_chunk(data)
                    if fragment is not None:
                        yield fragment
        except httpx.TimeoutException as e:
            raise AdapterError(f"Stream timed out: {e}") from e
        except httpx.HTTPError as e:
            raise AdapterError(f"HTTP error during stream: {e}") from e
