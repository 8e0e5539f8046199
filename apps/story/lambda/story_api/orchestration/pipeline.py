"""End-to-end JSON generation: provider choice, transport, recovery, billing."""

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from typing import Any

from story_api.constants import PREMIUM_CREDIT_COST
from story_api.errors import InsufficientCreditsError
from story_api.json_recovery import JSONRecoveryParser, ParsedResult, recover_json
from story_api.provider_registry import ProviderConfig, ProviderRegistry
from story_api.providers.base import ChatTransport
from story_api.providers.streaming_transport import StreamingTransport
from story_api.schemas import ChatMessage, TokenUsage

from .base import CreditService, EventSink
from .policy import ProviderPolicy, UsageMeter

logger = logging.getLogger(__name__)


class StoryPipeline:
    def __init__(
        self,
        *,
        registry: ProviderRegistry,
        request_transport: ChatTransport,
        streaming_transport: StreamingTransport,
        policy: ProviderPolicy,
        meter: UsageMeter,
        credit_service: CreditService | None = None,
        event_sink: EventSink | None = None,
        account_id: str | None = None,
    ) -> None:
        self._registry = registry
        self._request_transport = request_transport
        self._streaming_transport = streaming_transport
        self._policy = policy
        self._meter = meter
        self._credit_service = credit_service
        self._event_sink = event_sink
        self._account_id = account_id
        self._background: set[asyncio.Task[None]] = set()

    @property
    def policy(self) -> ProviderPolicy:
        return self._policy

    @property
    def meter(self) -> UsageMeter:
        return self._meter

    def current_provider(self) -> ProviderConfig:
        return self._registry.resolve(self._policy.effective_provider_key())

    async def _complete_blocking(
        self, conversation: Sequence[ChatMessage], provider: ProviderConfig
    ) -> tuple[dict[str, Any], TokenUsage | None]:
        completion = await self._request_transport.send(conversation, provider)
        return recover_json(completion.content), completion.usage

    async def _complete_streaming(
        self,
        conversation: Sequence[ChatMessage],
        provider: ProviderConfig,
        on_progress: Callable[[str], None] | None,
        abort: asyncio.Event | None,
    ) -> tuple[dict[str, Any], TokenUsage | None]:
        future: asyncio.Future[ParsedResult] = asyncio.get_running_loop().create_future()

        def deliver(result: ParsedResult) -> None:
            if not future.done():
                future.set_result(result)

        def fail(error: Exception) -> None:
            if not future.done():
                future.set_exception(error)

        parser = JSONRecoveryParser(on_result=deliver, on_error=fail, on_progress=on_progress)
        try:
            await self._streaming_transport.stream(conversation, provider, parser, abort=abort)
        except asyncio.CancelledError:
            # The parser may already hold the abort error; nobody will await it now.
            if not future.cancel():
                future.exception()
            raise
        result = await future
        return result.value, result.usage

    async def _charge_premium(self, provider: ProviderConfig) -> None:
        if self._credit_service is None or not self._account_id:
            logger.warning(
                "Premium provider used without a credit account",
                extra={"provider": provider.key},
            )
            return
        try:
            remaining = await self._credit_service.consume(self._account_id, PREMIUM_CREDIT_COST)
        except InsufficientCreditsError:
            raise
        except Exception:
            logger.error(
                "Credit deduction failed; continuing without charge",
                extra={"provider": provider.key, "amount": PREMIUM_CREDIT_COST},
                exc_info=True,
            )
            return
        logger.info(
            "Premium credit consumed",
            extra={"amount": PREMIUM_CREDIT_COST, "remaining": remaining},
        )

    def _emit_event(self, event_type: str, payload: dict[str, Any]) -> None:
        if self._event_sink is None:
            return
        task = asyncio.create_task(self._event_sink.log_event(event_type, payload))
        self._background.add(task)
        task.add_done_callback(self._event_done)

    def _event_done(self, task: asyncio.Task[None]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Event logging failed", exc_info=task.exception())

    async def drain_events(self) -> None:
        """Wait for any fire-and-forget event writes still in progress."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def complete_json(
        self,
        conversation: Sequence[ChatMessage],
        *,
        operation: str = "complete_json",
        streaming: bool = False,
        on_progress: Callable[[str], None] | None = None,
        abort: asyncio.Event | None = None,
    ) -> dict[str, Any]:
        """Run one generation step and return the recovered JSON object.

        Usage is metered after every successful call. Premium generations are
        charged before the result is returned; an empty balance fails the call.
        """
        provider = self.current_provider()
        logger.info(
            "Running generation step",
            extra={"operation": operation, "provider": provider.key, "streaming": streaming},
        )

        start = time.time()
        if streaming:
            value, usage = await self._complete_streaming(conversation, provider, on_progress, abort)
        else:
            value, usage = await self._complete_blocking(conversation, provider)

        self._meter.record(provider.key, usage, operation=operation)
        if self._registry.is_premium(provider.key):
            await self._charge_premium(provider)

        self._emit_event(
            "generation_completed",
            {
                "operation": operation,
                "provider": provider.key,
                "streaming": streaming,
                "duration_ms": int((time.time() - start) * 1000),
                "total_tokens": usage.total_tokens if usage else None,
            },
        )
        return value
