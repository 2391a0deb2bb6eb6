"""LLM client — HTTP connection to a chat-completion provider.

The orchestrator injects an LLM callable matching the protocol:

    async def __call__(self, messages, *, model, temperature, max_tokens,
                       on_chunk=None) -> str: ...

`on_chunk`, when given, receives the full text accumulated so far each time
more arrives; the return value is always the final complete text. Any failure
(unreachable host, non-2xx status, unusable body) raises LLMError.

Two implementations are provided:

    HttpLLM   — real HTTP client for OpenAI-style and Anthropic-style chat
                APIs, or a plain JSON proxy. Streams over SSE when a chunk
                callback is supplied.
    EchoLLM   — returns the last message back unchanged. Useful for
                smoke-testing the game loop without a running model.

Tests use StubLLM (defined in tests/helpers.py) instead.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from typing import Literal, Protocol

import httpx

from rpg_arena.models import ChatMessage

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], None]


# ---------------------------------------------------------------------------
# Protocol — every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(
        self,
        messages: Sequence[ChatMessage],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        on_chunk: ChunkCallback | None = None,
    ) -> str: ...


# ---------------------------------------------------------------------------
# HttpLLM — connects to a real provider
# ---------------------------------------------------------------------------

Provider = Literal["openai", "anthropic"]

DEFAULT_BASE_URLS: dict[str, str] = {
    "openai": "https://api.openai.com",
    "anthropic": "https://api.anthropic.com",
}

ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_FALLBACK_MODEL = "claude-sonnet-4-5-20250929"
OPENAI_FALLBACK_MODEL = "gpt-4o-mini"


def resolve_model(model: str, provider: Provider) -> str:
    """Swap a model id that belongs to the other provider for a sane default.

    Characters carry a model id chosen at setup time; the configured provider
    may not serve it.
    """
    if provider == "anthropic" and model.startswith("gpt-"):
        return ANTHROPIC_FALLBACK_MODEL
    if provider == "openai" and model.startswith("claude-"):
        return OPENAI_FALLBACK_MODEL
    return model


class HttpLLM:
    """Async HTTP client for chat-completion providers.

    Supported formats:
      "openai"     — POST /v1/chat/completions  {"model", "messages", ...}
                     Response: {"choices": [{"message": {"content": "..."}}]}
                     Stream:   data: {"choices": [{"delta": {"content": "..."}}]}
      "anthropic"  — POST /v1/messages  {"model", "system", "messages", ...}
                     Response: {"content": [{"text": "..."}]}
                     Stream:   data: {"type": "content_block_delta", "delta": {"text": "..."}}
      proxy        — POST {proxy_url}  {"messages", "model", "temperature", "maxTokens"}
                     Response: {"content": "..."} or {"message": "..."}; never streams.

    Args:
        provider:   Wire format to use. Defaults to "openai".
        api_key:    API key, or empty string when a proxy holds the key.
        base_url:   Override for the provider's base URL.
        proxy_url:  When set, every request goes to this endpoint instead.
        timeout:    HTTP timeout in seconds. Defaults to 120.
        transport:  Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        provider: Provider = "openai",
        api_key: str = "",
        *,
        base_url: str = "",
        proxy_url: str = "",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._provider = provider
        self._api_key = api_key
        self._base_url = (base_url or DEFAULT_BASE_URLS[provider]).rstrip("/")
        self._proxy_url = proxy_url
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._proxy_url:
            return headers
        if self._provider == "anthropic":
            headers["x-api-key"] = self._api_key
            headers["anthropic-version"] = ANTHROPIC_VERSION
        elif self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(
        self,
        messages: Sequence[ChatMessage],
        model: str,
        temperature: float,
        max_tokens: int,
        stream: bool,
    ) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        model = resolve_model(model, self._provider)

        if self._proxy_url:
            return self._proxy_url, {
                "messages": [m.model_dump() for m in messages],
                "model": model,
                "temperature": temperature,
                "maxTokens": max_tokens,
            }

        if self._provider == "anthropic":
            system = next((m.content for m in messages if m.role == "system"), "")
            body: dict = {
                "model": model,
                "system": system,
                "messages": [m.model_dump() for m in messages if m.role != "system"],
                "temperature": temperature,
                "max_tokens": max_tokens,
                "stream": stream,
            }
            return f"{self._base_url}/v1/messages", body

        # openai (default)
        return f"{self._base_url}/v1/chat/completions", {
            "model": model,
            "messages": [m.model_dump() for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": stream,
        }

    def _parse_response(self, data: dict) -> str:
        """Extract the completion text from a non-streaming response body."""
        if self._proxy_url:
            text = data.get("content", data.get("message"))
            if not isinstance(text, str):
                raise LLMError("Unexpected response format from LLM proxy")
            return text

        if self._provider == "anthropic":
            content = data.get("content")
            if not content or "text" not in content[0]:
                raise LLMError("Unexpected response format from Anthropic backend")
            return content[0]["text"]

        choices = data.get("choices")
        if not choices or "content" not in choices[0].get("message", {}):
            raise LLMError("Unexpected response format from OpenAI-compatible backend")
        return choices[0]["message"]["content"] or ""

    def _parse_stream_event(self, payload: str) -> str:
        """Return the text carried by one SSE data payload ("" if none)."""
        if payload == "[DONE]":
            return ""
        try:
            event = json.loads(payload)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed stream chunk: %r", payload)
            return ""
        if self._provider == "anthropic":
            if event.get("type") == "error":
                raise LLMError(_stream_error_message(event))
            if event.get("type") == "content_block_delta":
                return event.get("delta", {}).get("text") or ""
            return ""
        if event.get("error"):
            raise LLMError(_stream_error_message(event))
        choices = event.get("choices") or [{}]
        return choices[0].get("delta", {}).get("content") or ""

    async def _read_stream(self, resp: httpx.Response, on_chunk: ChunkCallback) -> str:
        full = ""
        async for line in resp.aiter_lines():
            line = line.strip()
            if not line.startswith("data: "):
                continue
            delta = self._parse_stream_event(line[6:])
            if delta:
                full += delta
                on_chunk(full)
        return full

    def _error_message(self, resp: httpx.Response) -> str:
        """Provider-supplied error text when available, else the status code."""
        try:
            data = resp.json()
        except (json.JSONDecodeError, ValueError):
            data = {}
        err = data.get("error") if isinstance(data, dict) else None
        if isinstance(err, dict) and err.get("message"):
            return err["message"]
        if isinstance(err, str) and err:
            return err
        return f"LLM backend returned HTTP {resp.status_code}"

    async def __call__(
        self,
        messages: Sequence[ChatMessage],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        on_chunk: ChunkCallback | None = None,
    ) -> str:
        stream = on_chunk is not None and not self._proxy_url
        url, body = self._build_request(messages, model, temperature, max_tokens, stream)
        logger.debug(
            "llm call url=%s model=%s messages=%d stream=%s",
            url, body["model"], len(messages), stream,
        )

        try:
            async with self._client() as client:
                if stream:
                    async with client.stream(
                        "POST", url, json=body, headers=self._headers()
                    ) as resp:
                        if resp.is_error:
                            await resp.aread()
                            raise LLMError(self._error_message(resp))
                        text = await self._read_stream(resp, on_chunk)
                else:
                    resp = await client.post(url, json=body, headers=self._headers())
                    if resp.is_error:
                        raise LLMError(self._error_message(resp))
                    try:
                        data = resp.json()
                    except ValueError as e:
                        raise LLMError("LLM backend returned a non-JSON body") from e
                    text = self._parse_response(data)
                    if on_chunk is not None:
                        on_chunk(text)
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {url}") from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"LLM request failed: {e}") from e

        logger.debug("llm response model=%s len=%d", body["model"], len(text))
        return text


# ---------------------------------------------------------------------------
# EchoLLM — returns the last message unchanged; useful for smoke tests
# ---------------------------------------------------------------------------

class EchoLLM:
    """Returns the content of the last message as-is. No network calls.

    Lets you verify that the game loop (prompt building, turn order, state
    commits) works end-to-end without a running model. The output carries no
    annotations, so nobody ever takes damage.
    """

    async def __call__(
        self,
        messages: Sequence[ChatMessage],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        on_chunk: ChunkCallback | None = None,
    ) -> str:
        logger.debug("EchoLLM model=%s messages=%d", model, len(messages))
        text = messages[-1].content if messages else ""
        if on_chunk is not None:
            on_chunk(text)
        return text


# ---------------------------------------------------------------------------
# LLMError — raised by HttpLLM for all connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""


def _stream_error_message(event: dict) -> str:
    """Error text from an error event inside a stream."""
    err = event.get("error")
    if isinstance(err, dict) and err.get("message"):
        return err["message"]
    if isinstance(err, str) and err:
        return err
    return "LLM stream reported an error"
