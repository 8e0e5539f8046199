"""Server-side relay that forwards chat requests to providers with server-held keys."""

import json
import logging
from collections.abc import AsyncIterator

import httpx

from story_api.constants import SSE_DONE_SENTINEL
from story_api.errors import HttpError, StoryEngineError, TransportError
from story_api.message_mappers import build_provider_headers, build_provider_payload
from story_api.provider_registry import ProviderConfig, ProviderRegistry
from story_api.providers.http_transport import RequestTransport, extract_error_message
from story_api.schemas import ChatCompletion, ProviderMetadata, RelayChatRequest

logger = logging.getLogger(__name__)


class MissingCredentialError(StoryEngineError):
    """The relay has no API key configured for the requested provider."""


def sse_frame(payload: object) -> bytes:
    data = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
    return f"data: {data}\n\n".encode()


def error_frame(status: int, message: str) -> bytes:
    return sse_frame({"error": {"status": status, "message": message}})


class RelayService:
    def __init__(self, registry: ProviderRegistry, client: httpx.AsyncClient) -> None:
        self._registry = registry
        self._client = client
        self._transport = RequestTransport(client)

    def list_providers(self) -> list[ProviderMetadata]:
        return [
            ProviderMetadata(
                key=provider.key,
                display_name=provider.display_name,
                model=provider.model,
                premium=self._registry.is_premium(provider.key),
                configured=bool(provider.credential),
            )
            for provider in (self._registry.get(key) for key in self._registry.keys())
            if provider is not None
        ]

    def _provider_for(self, request: RelayChatRequest) -> ProviderConfig:
        provider = self._registry.get(request.provider)
        if not provider.credential:
            logger.error("API key not configured", extra={"provider": provider.key})
            raise MissingCredentialError(f"API key not configured for {provider.key}")
        return provider

    async def complete(self, request: RelayChatRequest) -> ChatCompletion:
        provider = self._provider_for(request)
        logger.info(
            "Relay chat request received",
            extra={"provider": provider.key, "message_count": len(request.messages)},
        )
        return await self._transport.send(request.messages, provider)

    async def open_stream(self, request: RelayChatRequest) -> AsyncIterator[bytes]:
        """Start a streaming provider call and return its SSE bytes.

        Failures before the provider answers are raised; failures after the
        first byte are reported in-band as an error frame and the stream ends.
        """
        provider = self._provider_for(request)
        logger.info(
            "Relay streaming request received",
            extra={"provider": provider.key, "message_count": len(request.messages)},
        )
        upstream = self._client.build_request(
            "POST",
            provider.endpoint,
            json=build_provider_payload(request.messages, provider, stream=True),
            headers=build_provider_headers(provider, stream=True),
        )
        try:
            response = await self._client.send(upstream, stream=True)
        except httpx.TransportError as exc:
            raise TransportError(f"Network failure calling {provider.endpoint}: {exc}") from exc

        if response.is_error:
            try:
                text = (await response.aread()).decode("utf-8", errors="replace")
            finally:
                await response.aclose()
            message = extract_error_message(response, text)
            logger.error(
                "Provider rejected streaming request",
                extra={"provider": provider.key, "status_code": response.status_code, "error": message},
            )
            raise HttpError(response.status_code, f"Failed request to {provider.key}: {message}")

        return self._passthrough(response, provider)

    async def _passthrough(
        self, response: httpx.Response, provider: ProviderConfig
    ) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as exc:
            logger.error(
                "Provider stream interrupted", extra={"provider": provider.key}, exc_info=True
            )
            yield error_frame(502, f"Stream from {provider.key} interrupted: {exc}")
            yield sse_frame(SSE_DONE_SENTINEL)
        finally:
            await response.aclose()
