"""Transport interfaces and shared stream value types."""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from story_api.provider_registry import ProviderConfig
from story_api.schemas import ChatCompletion, ChatMessage, TokenUsage


@dataclass(frozen=True)
class StreamChunk:
    content: str
    is_complete: bool = False
    usage: TokenUsage | None = None


class StreamSink(Protocol):
    def on_chunk(self, chunk: StreamChunk) -> None:
        """Receive one decoded chunk; the last one has ``is_complete=True``."""
        ...

    def on_complete(self, full_content: str, usage: TokenUsage | None) -> None:
        """Receive the full accumulated content once the stream has completed."""
        ...

    def on_error(self, error: Exception) -> None:
        """Receive the single terminal error of a failed stream."""
        ...


class ChatTransport(Protocol):
    async def send(
        self, conversation: Sequence[ChatMessage], provider: ProviderConfig
    ) -> ChatCompletion:
        """Execute one blocking request/response cycle."""
        ...
