"""Wiring of the client-side story engine from runtime settings."""

import logging

import httpx

from story_api.constants import DEFAULT_LANGUAGE, DEFAULT_STYLE, GameStyle, Language
from story_api.infra.runtime import (
    RuntimeSettings,
    get_http_client,
    get_provider_credentials,
    get_runtime_settings,
)
from story_api.orchestration.pipeline import StoryPipeline
from story_api.orchestration.policy import ProviderPolicy, UsageMeter
from story_api.provider_registry import build_provider_registry
from story_api.providers.http_transport import RequestTransport
from story_api.providers.streaming_transport import StreamingTransport
from story_api.providers.throttle import SingleFlightThrottle

from .credits import HttpCreditService
from .event_log import HttpEventLogger
from .prompt_composer import TemplatePromptComposer
from .story_service import StoryService

logger = logging.getLogger(__name__)


def create_story_service(
    anon_id: str,
    *,
    kid_id: str | None = None,
    style: GameStyle = DEFAULT_STYLE,
    language: Language = DEFAULT_LANGUAGE,
    settings: RuntimeSettings | None = None,
    client: httpx.AsyncClient | None = None,
) -> StoryService:
    """Build a session's story service.

    In direct mode requests go straight to providers with locally held keys;
    otherwise they go through the relay and no local keys are needed.
    """
    settings = settings or get_runtime_settings()
    client = client or get_http_client()

    if settings.direct_api_mode:
        registry = build_provider_registry(
            get_provider_credentials(), default_key=settings.active_provider
        )
        relay_url = None
    else:
        registry = build_provider_registry(
            {}, default_key=settings.active_provider, require_credentials=False
        )
        relay_url = settings.relay_url

    logger.info(
        "Creating story service",
        extra={
            "direct_api_mode": settings.direct_api_mode,
            "default_provider": registry.default_key,
            "style": style,
        },
    )
    pipeline = StoryPipeline(
        registry=registry,
        request_transport=RequestTransport(
            client, relay_url=relay_url, throttle=SingleFlightThrottle()
        ),
        streaming_transport=StreamingTransport(client, relay_url=relay_url),
        policy=ProviderPolicy(registry, style=style, default_provider=registry.default_key),
        meter=UsageMeter(),
        credit_service=HttpCreditService(client, settings.api_base),
        event_sink=HttpEventLogger(client, settings.api_base, anon_id, kid_id),
        account_id=anon_id,
    )
    return StoryService(pipeline, TemplatePromptComposer(), language=language)
