"""Blocking request/response transport for providers and the relay."""

import json
import logging
import time
from collections.abc import Sequence
from typing import Any

import httpx
from langsmith import traceable
from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from story_api.errors import HttpError, MalformedResponseError, TransportError
from story_api.message_mappers import (
    build_provider_headers,
    build_provider_payload,
    build_relay_payload,
)
from story_api.provider_registry import ProviderConfig
from story_api.schemas import ChatCompletion, ChatMessage

from .throttle import SingleFlightThrottle

logger = logging.getLogger(__name__)

# Network failures are retried once; HTTP and body errors never are.
NETWORK_RETRY_ATTEMPTS = 2


def _trace_inputs(inputs: dict[str, Any]) -> dict[str, Any]:
    provider = inputs.get("provider")
    return {
        "provider": getattr(provider, "key", None),
        "model": getattr(provider, "model", None),
        "messages": [message.model_dump() for message in inputs.get("conversation") or ()],
    }


def extract_error_message(response: httpx.Response, body: str) -> str:
    """Best-effort extraction of an error message from a failed response body."""
    try:
        payload: Any = json.loads(body) if body else None
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if payload.get("message"):
            return str(payload["message"])
    return response.reason_phrase or body or "Request failed"


class RequestTransport:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        relay_url: str | None = None,
        throttle: SingleFlightThrottle | None = None,
    ) -> None:
        """Create a transport that calls providers directly, or via ``relay_url`` when set."""
        self._client = client
        self._relay_url = relay_url
        self._throttle = throttle

    def _build_request(
        self, conversation: Sequence[ChatMessage], provider: ProviderConfig
    ) -> tuple[str, dict[str, Any], dict[str, str]]:
        if self._relay_url:
            return (
                self._relay_url,
                build_relay_payload(conversation, provider),
                {"Content-Type": "application/json"},
            )
        return (
            provider.endpoint,
            build_provider_payload(conversation, provider),
            build_provider_headers(provider),
        )

    async def _post(self, url: str, body: dict[str, Any], headers: dict[str, str]) -> httpx.Response:
        try:
            return await self._client.post(url, json=body, headers=headers)
        except httpx.TransportError as exc:
            raise TransportError(f"Network failure calling {url}: {exc}") from exc

    async def _exchange(
        self, url: str, body: dict[str, Any], headers: dict[str, str]
    ) -> ChatCompletion:
        if self._throttle is not None:
            response = await self._throttle.fetch(lambda: self._post(url, body, headers))
        else:
            response = await self._post(url, body, headers)

        text = response.text
        if response.is_error:
            message = extract_error_message(response, text)
            logger.error(
                "Provider request failed",
                extra={"status_code": response.status_code, "url": url, "error": message},
            )
            raise HttpError(response.status_code, message)

        try:
            payload = json.loads(text) if text else {}
        except ValueError as exc:
            raise MalformedResponseError(f"Response from {url} is not valid JSON") from exc

        try:
            return ChatCompletion.model_validate(payload)
        except ValidationError as exc:
            raise MalformedResponseError(
                f"Response from {url} is not a chat completion envelope"
            ) from exc

    @traceable(run_type="llm", name="story.chat.completions", process_inputs=_trace_inputs)
    async def send(
        self, conversation: Sequence[ChatMessage], provider: ProviderConfig
    ) -> ChatCompletion:
        url, body, headers = self._build_request(conversation, provider)
        logger.info(
            "Sending chat request",
            extra={
                "provider": provider.key,
                "model": provider.model,
                "message_count": len(conversation),
                "via_relay": bool(self._relay_url),
            },
        )

        start = time.time()
        retrying = AsyncRetrying(
            stop=stop_after_attempt(NETWORK_RETRY_ATTEMPTS),
            retry=retry_if_exception_type(TransportError),
            reraise=True,
        )
        completion = await retrying(self._exchange, url, body, headers)
        duration_ms = int((time.time() - start) * 1000)

        logger.info(
            "Chat response received",
            extra={
                "provider": provider.key,
                "duration_ms": duration_ms,
                "usage_prompt_tokens": (
                    completion.usage.prompt_tokens if completion.usage else None
                ),
                "usage_completion_tokens": (
                    completion.usage.completion_tokens if completion.usage else None
                ),
                "response_length": len(completion.content),
            },
        )
        return completion
