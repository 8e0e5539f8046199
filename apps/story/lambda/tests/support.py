"""Shared fakes for transport and pipeline tests."""

import asyncio
import json
from collections.abc import AsyncIterator, Callable

import httpx

from story_api.providers.base import StreamChunk
from story_api.schemas import TokenUsage


class CountingStream(httpx.AsyncByteStream):
    def __init__(self, chunks: list[bytes], *, stall: bool = False) -> None:
        self._chunks = chunks
        self._stall = stall
        self.close_count = 0

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self._chunks:
            yield chunk
        if self._stall:
            # Hold the connection open until the reader gives up.
            await asyncio.Event().wait()

    async def aclose(self) -> None:
        self.close_count += 1


class RecordingSink:
    def __init__(self, on_first_chunk: Callable[[], None] | None = None) -> None:
        self.chunks: list[StreamChunk] = []
        self.completed: list[tuple[str, TokenUsage | None]] = []
        self.errors: list[Exception] = []
        self._on_first_chunk = on_first_chunk

    def on_chunk(self, chunk: StreamChunk) -> None:
        self.chunks.append(chunk)
        if self._on_first_chunk is not None and len(self.chunks) == 1:
            self._on_first_chunk()

    def on_complete(self, full_content: str, usage: TokenUsage | None) -> None:
        self.completed.append((full_content, usage))

    def on_error(self, error: Exception) -> None:
        self.errors.append(error)

    @property
    def contents(self) -> list[str]:
        return [chunk.content for chunk in self.chunks if not chunk.is_complete]


def delta_event(
    content: str,
    finish_reason: str | None = None,
    usage: dict | None = None,
    *,
    ensure_ascii: bool = True,
) -> bytes:
    event: dict = {"choices": [{"delta": {"content": content}, "finish_reason": finish_reason}]}
    if usage is not None:
        event["usage"] = usage
    return f"data: {json.dumps(event, ensure_ascii=ensure_ascii)}\n\n".encode()


def completion_body(content: str, usage: dict | None = None) -> dict:
    body: dict = {
        "id": "chatcmpl-1",
        "model": "deepseek-v3-250324",
        "choices": [
            {"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}
        ],
    }
    if usage is not None:
        body["usage"] = usage
    return body
