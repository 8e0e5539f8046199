"""Conversion helpers between conversations and provider/relay request bodies."""

from collections.abc import Sequence
from typing import Any

from .constants import DEFAULT_TEMPERATURE
from .provider_registry import ProviderConfig, capability_for
from .schemas import ChatMessage


def to_wire_messages(conversation: Sequence[ChatMessage]) -> list[dict[str, str]]:
    return [{"role": message.role, "content": message.content} for message in conversation]


def build_provider_payload(
    conversation: Sequence[ChatMessage],
    provider: ProviderConfig,
    *,
    stream: bool = False,
) -> dict[str, Any]:
    """Build a native chat-completions body for a direct provider call."""
    capability = capability_for(provider)
    payload: dict[str, Any] = {
        "model": provider.model,
        "messages": to_wire_messages(conversation),
    }
    if capability.supports_temperature:
        payload["temperature"] = DEFAULT_TEMPERATURE
    payload.update(capability.extra_params)
    if stream:
        payload["stream"] = True
    return payload


def build_relay_payload(
    conversation: Sequence[ChatMessage],
    provider: ProviderConfig,
    *,
    stream: bool = False,
) -> dict[str, Any]:
    return {
        "messages": to_wire_messages(conversation),
        "provider": provider.key,
        "streaming": stream,
    }


def build_provider_headers(provider: ProviderConfig, *, stream: bool = False) -> dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {provider.credential}",
    }
    if stream:
        headers["Accept"] = "text/event-stream"
    return headers
