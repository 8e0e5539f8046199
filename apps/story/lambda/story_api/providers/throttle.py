"""Single-flight request throttle with exponential backoff on HTTP 429."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from story_api.constants import (
    THROTTLE_BACKOFF_BASE_SECONDS,
    THROTTLE_JITTER_SECONDS,
    THROTTLE_MAX_RETRIES,
)

logger = logging.getLogger(__name__)

TOO_MANY_REQUESTS = 429


def _is_rate_limited(response: httpx.Response) -> bool:
    return response.status_code == TOO_MANY_REQUESTS


def _return_last_response(retry_state: RetryCallState) -> httpx.Response:
    logger.warning(
        "Exceeded retry limit after HTTP 429",
        extra={"attempts": retry_state.attempt_number},
    )
    return retry_state.outcome.result()


def _log_backoff(retry_state: RetryCallState) -> None:
    logger.warning(
        "HTTP 429 received; backing off",
        extra={
            "attempt": retry_state.attempt_number,
            "backoff_seconds": round(retry_state.upcoming_sleep, 3),
        },
    )


class SingleFlightThrottle:
    """Serialises calls to one logical endpoint and retries 429 responses.

    Only one ``send`` runs at a time. The lock is released while backing off,
    so a queued caller may use the endpoint during another caller's wait, but
    two requests are never in flight together.
    """

    def __init__(
        self,
        *,
        max_retries: int = THROTTLE_MAX_RETRIES,
        backoff_base: float = THROTTLE_BACKOFF_BASE_SECONDS,
        jitter: float = THROTTLE_JITTER_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._lock = asyncio.Lock()
        self._max_retries = max(1, max_retries)
        self._backoff_base = backoff_base
        self._jitter = jitter
        self._sleep = sleep

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    async def _attempt(self, send: Callable[[], Awaitable[httpx.Response]]) -> httpx.Response:
        async with self._lock:
            return await send()

    async def fetch(self, send: Callable[[], Awaitable[httpx.Response]]) -> httpx.Response:
        retrying = AsyncRetrying(
            sleep=self._sleep,
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=self._backoff_base, min=0)
            + wait_random(0, self._jitter),
            retry=retry_if_result(_is_rate_limited),
            before_sleep=_log_backoff,
            retry_error_callback=_return_last_response,
        )
        return await retrying(self._attempt, send)
