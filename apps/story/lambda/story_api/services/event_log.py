"""Fire-and-forget session event logging."""

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class HttpEventLogger:
    def __init__(
        self,
        client: httpx.AsyncClient,
        api_base: str,
        anon_id: str,
        kid_id: str | None = None,
    ) -> None:
        self._client = client
        self._url = f"{api_base.rstrip('/')}/log-event"
        self._anon_id = anon_id
        self._kid_id = kid_id

    def set_kid_id(self, kid_id: str | None) -> None:
        self._kid_id = kid_id

    async def log_event(self, event_type: str, payload: dict[str, Any] | None = None) -> None:
        body = {
            "anonId": self._anon_id,
            "kidId": self._kid_id,
            "type": event_type,
            "payload": payload or {},
        }
        try:
            response = await self._client.post(self._url, json=body)
        except httpx.HTTPError:
            logger.warning("Failed to log event", extra={"event_type": event_type}, exc_info=True)
            return
        if response.is_error:
            logger.warning(
                "Event log rejected",
                extra={"event_type": event_type, "status_code": response.status_code},
            )
