"""Server-sent-event streaming transport for chat completions."""

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import ValidationError

from story_api.constants import SSE_DATA_PREFIX, SSE_DONE_SENTINEL
from story_api.errors import (
    HttpError,
    StreamAbortedError,
    StreamDecodeError,
    StoryEngineError,
    TransportError,
)
from story_api.message_mappers import (
    build_provider_headers,
    build_provider_payload,
    build_relay_payload,
)
from story_api.provider_registry import ProviderConfig
from story_api.schemas import ChatMessage, TokenUsage

from .base import StreamChunk, StreamSink
from .http_transport import extract_error_message

logger = logging.getLogger(__name__)

RELAY_ERROR_STATUS = 502


@dataclass
class _StreamState:
    parts: list[str] = field(default_factory=list)
    usage: TokenUsage | None = None
    completed: bool = False

    @property
    def full_content(self) -> str:
        return "".join(self.parts)


def _parse_event(data: str) -> dict[str, Any]:
    try:
        event = json.loads(data)
    except ValueError as exc:
        raise StreamDecodeError(f"Malformed stream event: {data[:120]!r}") from exc
    if not isinstance(event, dict):
        raise StreamDecodeError(f"Stream event is not an object: {data[:120]!r}")
    return event


async def _read_next(texts: AsyncIterator[str]) -> str | None:
    return await anext(texts, None)


def _raise_for_error_frame(event: dict[str, Any]) -> None:
    error = event.get("error")
    if not error:
        return
    if isinstance(error, dict):
        status = int(error.get("status") or RELAY_ERROR_STATUS)
        message = str(error.get("message") or "Streaming error occurred")
    else:
        status = int(event.get("status") or RELAY_ERROR_STATUS)
        message = str(event.get("message") or error)
    raise HttpError(status, message)


class StreamingTransport:
    def __init__(self, client: httpx.AsyncClient, *, relay_url: str | None = None) -> None:
        self._client = client
        self._relay_url = relay_url

    def _build_request(
        self, conversation: Sequence[ChatMessage], provider: ProviderConfig
    ) -> tuple[str, dict[str, Any], dict[str, str]]:
        if self._relay_url:
            return (
                self._relay_url,
                build_relay_payload(conversation, provider, stream=True),
                {"Content-Type": "application/json", "Accept": "text/event-stream"},
            )
        return (
            provider.endpoint,
            build_provider_payload(conversation, provider, stream=True),
            build_provider_headers(provider, stream=True),
        )

    def _handle_line(self, line: str, state: _StreamState, sink: StreamSink) -> None:
        line = line.rstrip("\r")
        if not line.strip():
            return
        if not line.startswith(SSE_DATA_PREFIX):
            logger.debug("Ignoring non-data stream line", extra={"line": line[:120]})
            return

        data = line[len(SSE_DATA_PREFIX) :].strip()
        if data == SSE_DONE_SENTINEL:
            state.completed = True
            return

        try:
            event = _parse_event(data)
        except StreamDecodeError:
            logger.warning("Failed to parse streaming chunk", extra={"data": data[:200]}, exc_info=True)
            return

        _raise_for_error_frame(event)

        if event.get("usage"):
            try:
                state.usage = TokenUsage.model_validate(event["usage"])
            except ValidationError:
                logger.warning("Ignoring malformed usage block", extra={"usage": event["usage"]})

        choices = event.get("choices") or []
        choice = choices[0] if choices and isinstance(choices[0], dict) else {}
        delta = choice.get("delta") or {}
        content = delta.get("content") if isinstance(delta, dict) else None
        if content:
            state.parts.append(content)
            sink.on_chunk(StreamChunk(content=content))

        if choice.get("finish_reason"):
            state.completed = True

    async def _next_text(
        self, texts: AsyncIterator[str], abort: asyncio.Event | None
    ) -> str | None:
        """Return the next decoded text, or None once the body ends.

        A pending read is abandoned as soon as ``abort`` is set.
        """
        if abort is None:
            return await _read_next(texts)
        if abort.is_set():
            raise StreamAbortedError("Stream aborted by caller")

        read = asyncio.create_task(_read_next(texts))
        aborted = asyncio.create_task(abort.wait())
        try:
            await asyncio.wait({read, aborted}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            read.cancel()
            aborted.cancel()
            await asyncio.gather(read, aborted, return_exceptions=True)

        if abort.is_set():
            raise StreamAbortedError("Stream aborted by caller")
        return read.result()

    async def _receive(
        self,
        response: httpx.Response,
        sink: StreamSink,
        abort: asyncio.Event | None,
    ) -> _StreamState:
        state = _StreamState()
        buffer = ""
        texts = response.aiter_text()
        while True:
            text = await self._next_text(texts, abort)
            if text is None:
                break
            buffer += text
            lines = buffer.split("\n")
            buffer = lines.pop()
            for line in lines:
                self._handle_line(line, state, sink)
                if state.completed:
                    return state

        if buffer:
            self._handle_line(buffer, state, sink)
        state.completed = True
        return state

    async def stream(
        self,
        conversation: Sequence[ChatMessage],
        provider: ProviderConfig,
        sink: StreamSink,
        *,
        abort: asyncio.Event | None = None,
    ) -> None:
        """Stream one chat completion into ``sink``.

        Chunks are delivered in arrival order. Afterwards the sink receives
        either a final ``is_complete`` chunk followed by ``on_complete``, or a
        single ``on_error``; never both.
        """
        url, body, headers = self._build_request(conversation, provider)
        logger.info(
            "Sending streaming chat request",
            extra={
                "provider": provider.key,
                "model": provider.model,
                "message_count": len(conversation),
                "via_relay": bool(self._relay_url),
            },
        )

        start = time.time()
        try:
            if abort is not None and abort.is_set():
                raise StreamAbortedError("Stream aborted before sending")
            async with self._client.stream("POST", url, json=body, headers=headers) as response:
                if response.is_error:
                    text = (await response.aread()).decode("utf-8", errors="replace")
                    raise HttpError(response.status_code, extract_error_message(response, text))
                state = await self._receive(response, sink, abort)
                if abort is not None and abort.is_set():
                    raise StreamAbortedError("Stream aborted by caller")
        except asyncio.CancelledError:
            sink.on_error(StreamAbortedError("Stream cancelled"))
            raise
        except httpx.TransportError as exc:
            logger.error("Streaming request failed", extra={"provider": provider.key}, exc_info=True)
            sink.on_error(TransportError(f"Network failure calling {url}: {exc}"))
            return
        except StoryEngineError as exc:
            logger.error("Streaming request failed", extra={"provider": provider.key, "error": str(exc)})
            sink.on_error(exc)
            return
        except Exception as exc:
            logger.exception("Unexpected streaming failure", extra={"provider": provider.key})
            sink.on_error(exc)
            return

        logger.info(
            "Streaming response completed",
            extra={
                "provider": provider.key,
                "duration_ms": int((time.time() - start) * 1000),
                "response_length": len(state.full_content),
                "usage_total_tokens": state.usage.total_tokens if state.usage else None,
            },
        )
        sink.on_chunk(StreamChunk(content="", is_complete=True, usage=state.usage))
        sink.on_complete(state.full_content, state.usage)
