"""LLM client — streaming chat completion over HTTP.

The turn orchestrator only needs something matching the protocol:

    def generate(self, messages: list[ChatMessage], params: GenerateParams)
        -> AsyncIterator[StreamChunk]: ...

Chunks carry ``type`` "text" (a piece of the completion), "done" (end of
stream) or "error" (the backend reported a failure mid-stream).

Two implementations are provided:

    HttpLLM   — OpenAI-compatible /v1/chat/completions with SSE streaming.
    EchoLLM   — streams the last user message back. Useful for smoke-testing
                 the turn wiring without a running model.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Literal, Protocol

import httpx
from pydantic import BaseModel

from world_engine.models import ChatMessage

logger = logging.getLogger(__name__)


class StreamChunk(BaseModel):
    type: Literal["text", "done", "error"]
    content: str = ""


class GenerateParams(BaseModel):
    model: str = ""
    max_tokens: int = 2048
    temperature: float = 0.8
    response_format: Literal["json_object"] | None = None


# ---------------------------------------------------------------------------
# Protocol: every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    def generate(self, messages: list[ChatMessage], params: GenerateParams) -> AsyncIterator[StreamChunk]: ...


# ---------------------------------------------------------------------------
# HttpLLM: connects to a real backend
# ---------------------------------------------------------------------------

class HttpLLM:
    """Async streaming client for OpenAI-compatible chat backends.

    POST {provider_url}/v1/chat/completions with ``"stream": true``.
    The response is server-sent events: ``data: {json}`` lines carrying
    ``choices[0].delta.content``, terminated by ``data: [DONE]``.

    Args:
        provider_url: Base URL of the backend, e.g. "http://localhost:5001".
        api_key:      Bearer token, or empty string if not required.
        model:        Default model identifier; GenerateParams.model overrides it.
        timeout:      HTTP timeout in seconds. Defaults to 120.
        transport:    Optional httpx transport (tests pass a MockTransport).
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        model: str = "",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._model = model
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, messages: list[ChatMessage], params: GenerateParams) -> tuple[str, dict]:
        """Return (url, body) for a streaming chat completion."""
        url = f"{self._base_url}/v1/chat/completions"
        body: dict = {
            "messages": [m.model_dump() for m in messages],
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
            "stream": True,
        }
        model = params.model or self._model
        if model:
            body["model"] = model
        if params.response_format:
            body["response_format"] = {"type": params.response_format}
        return url, body

    def _parse_line(self, line: str) -> StreamChunk | None:
        """Turn one SSE line into a chunk, or None for keep-alives and empty deltas."""
        if not line.startswith("data:"):
            return None
        payload = line[len("data:"):].strip()
        if payload == "[DONE]":
            return StreamChunk(type="done")
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Skipping malformed stream line: %.80s", payload)
            return None
        if "error" in data:
            error = data["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            return StreamChunk(type="error", content=message)
        choices = data.get("choices") or []
        if not choices:
            return None
        content = (choices[0].get("delta") or {}).get("content")
        return StreamChunk(type="text", content=content) if content else None

    async def generate(self, messages: list[ChatMessage], params: GenerateParams) -> AsyncIterator[StreamChunk]:
        url, body = self._build_request(messages, params)
        logger.debug("llm call url=%s messages=%d", url, len(messages))

        received = 0
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                async with client.stream("POST", url, json=body, headers=self._headers()) as resp:
                    resp.raise_for_status()
                    async for line in resp.aiter_lines():
                        chunk = self._parse_line(line)
                        if chunk is None:
                            continue
                        if chunk.type == "done":
                            break
                        received += len(chunk.content)
                        yield chunk
                        if chunk.type == "error":
                            return
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"LLM backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e

        logger.debug("llm response len=%d", received)
        yield StreamChunk(type="done")


# ---------------------------------------------------------------------------
# EchoLLM: streams the player's message back; useful for wiring tests
# ---------------------------------------------------------------------------

class EchoLLM:
    """Echoes the last user message as the completion. No network calls.

    Lets you verify the turn wiring (retrieval, prompt building, parsing,
    rules) end-to-end without a running model. A user message containing
    tags such as ``[gold: +5]`` comes back and is parsed like model output.
    """

    async def generate(self, messages: list[ChatMessage], params: GenerateParams) -> AsyncIterator[StreamChunk]:
        last = next((m.content for m in reversed(messages) if m.role == "user"), "")
        logger.debug("EchoLLM messages=%d len=%d", len(messages), len(last))
        if last:
            yield StreamChunk(type="text", content=last)
        yield StreamChunk(type="done")


# ---------------------------------------------------------------------------
# LLMError: raised by HttpLLM for all connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""
