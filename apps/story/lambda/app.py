"""Story chat relay using FastAPI + Mangum for AWS Lambda."""

import logging
from functools import lru_cache
from typing import Any

from fastapi import APIRouter, FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from mangum import Mangum
from starlette.background import BackgroundTask

from story_api.errors import HttpError, StoryEngineError
from story_api.infra.runtime import (
    ensure_langsmith_configured,
    flush_langsmith_traces,
    get_http_client,
    get_provider_credentials,
)
from story_api.provider_registry import build_provider_registry
from story_api.schemas import ProviderMetadata, RelayChatRequest
from story_api.services.relay_service import MissingCredentialError, RelayService

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

app = FastAPI()
router = APIRouter(prefix="/api")


@lru_cache(maxsize=1)
def get_relay_service() -> RelayService:
    registry = build_provider_registry(get_provider_credentials())
    return RelayService(registry=registry, client=get_http_client())


def _to_http_exception(error: Exception) -> HTTPException:
    if isinstance(error, MissingCredentialError):
        return HTTPException(status_code=500, detail=str(error))
    if isinstance(error, HttpError):
        return HTTPException(status_code=error.status, detail=error.message)
    if isinstance(error, StoryEngineError):
        logger.error("Provider call failed", extra={"error": str(error)})
        return HTTPException(status_code=502, detail=str(error))
    logger.exception("Relay request failed unexpectedly")
    return HTTPException(status_code=502, detail=str(error))


@router.post("/chat")
async def chat(request: RelayChatRequest) -> Any:
    """Forward a chat completion to the requested provider using server-held keys."""
    ensure_langsmith_configured()
    service = get_relay_service()

    if request.streaming:
        try:
            body = await service.open_stream(request)
        except Exception as e:
            flush_langsmith_traces()
            raise _to_http_exception(e) from e
        return StreamingResponse(
            body,
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
            background=BackgroundTask(flush_langsmith_traces),
        )

    try:
        completion = await service.complete(request)
    except Exception as e:
        raise _to_http_exception(e) from e
    finally:
        flush_langsmith_traces()
    return completion.model_dump(exclude_none=True)


@router.get("/providers", response_model=list[ProviderMetadata])
def providers() -> list[ProviderMetadata]:
    """List relay providers and whether each has a key configured."""
    return get_relay_service().list_providers()


@router.get("/health")
def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


app.include_router(router)


handler = Mangum(app)
