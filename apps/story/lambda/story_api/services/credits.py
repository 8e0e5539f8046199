"""HTTP client for the credit ledger."""

import logging

import httpx
from pydantic import ValidationError

from story_api.errors import CreditServiceError, InsufficientCreditsError
from story_api.schemas import ConsumeCreditResponse

logger = logging.getLogger(__name__)

NO_CREDITS_ERROR = "no_credits"


class HttpCreditService:
    def __init__(self, client: httpx.AsyncClient, api_base: str) -> None:
        self._client = client
        self._url = f"{api_base.rstrip('/')}/consume-credit"

    async def consume(self, account_id: str, amount: float) -> float:
        try:
            response = await self._client.post(
                self._url, json={"anonId": account_id, "amount": amount}
            )
        except httpx.TransportError as exc:
            raise CreditServiceError(f"Credit service unreachable: {exc}") from exc

        try:
            body = ConsumeCreditResponse.model_validate_json(response.content or b"{}")
        except ValidationError as exc:
            raise CreditServiceError(
                f"Credit service returned an unreadable body (HTTP {response.status_code})"
            ) from exc

        if body.error == NO_CREDITS_ERROR:
            logger.info("Account has no credits left", extra={"account_id": account_id})
            raise InsufficientCreditsError("No credits remaining")
        if response.is_error or body.ok is False:
            raise CreditServiceError(
                f"Credit deduction failed (HTTP {response.status_code}): {body.error or 'unknown'}"
            )
        return body.remaining if body.remaining is not None else 0.0
