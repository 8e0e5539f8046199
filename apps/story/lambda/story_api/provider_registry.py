"""Provider registry and per-provider request capabilities."""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .constants import (
    DEEPSEEK_CHAT_URL,
    DEFAULT_MAX_TOKENS,
    DEFAULT_PROVIDER,
    OPENAI_CHAT_URL,
    PREMIUM_PROVIDER,
    PROVIDER_ORDER,
    VOLCENGINE_CHAT_URL,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderConfig:
    key: str
    display_name: str
    endpoint: str
    credential: str
    model: str


@dataclass(frozen=True)
class ProviderCapability:
    supports_temperature: bool = True
    extra_params: Mapping[str, Any] = field(default_factory=dict)


# (display name, endpoint, credential source key, model id)
PROVIDER_DEFINITIONS: dict[str, tuple[str, str, str, str]] = {
    "openai": ("OpenAI", OPENAI_CHAT_URL, "openai", "gpt-4o-mini"),
    "deepseek": ("DeepSeek", DEEPSEEK_CHAT_URL, "deepseek", "deepseek-chat"),
    "volcengine": ("Volcano Engine", VOLCENGINE_CHAT_URL, "volcengine", "deepseek-v3-250324"),
    "gpt5": ("OpenAI GPT-5", OPENAI_CHAT_URL, "openai", "gpt-5-mini-2025-08-07"),
}

PROVIDER_CAPABILITIES: dict[str, ProviderCapability] = {
    "openai": ProviderCapability(extra_params={"max_tokens": DEFAULT_MAX_TOKENS}),
    "deepseek": ProviderCapability(
        extra_params={
            "max_tokens": DEFAULT_MAX_TOKENS,
            "top_p": 0.8,
            "frequency_penalty": 0,
            "presence_penalty": 0,
        }
    ),
    "volcengine": ProviderCapability(),
    # gpt-5 family rejects sampling parameters.
    "gpt5": ProviderCapability(supports_temperature=False),
}


def capability_for(provider: ProviderConfig) -> ProviderCapability:
    capability = PROVIDER_CAPABILITIES.get(provider.key, ProviderCapability())
    if capability.supports_temperature and provider.model.startswith("gpt-5"):
        return ProviderCapability(supports_temperature=False, extra_params=capability.extra_params)
    return capability


class ProviderRegistry:
    def __init__(
        self,
        providers: Mapping[str, ProviderConfig],
        *,
        default_key: str = DEFAULT_PROVIDER,
        order: Sequence[str] = PROVIDER_ORDER,
        require_credentials: bool = True,
    ) -> None:
        if default_key not in providers:
            raise ValueError(f"Default provider {default_key!r} is not registered")
        self._providers = dict(providers)
        self._default_key = default_key
        self._order = tuple(order)
        self._require_credentials = require_credentials

    @property
    def default_key(self) -> str:
        return self._default_key

    @property
    def order(self) -> tuple[str, ...]:
        return self._order

    def keys(self) -> list[str]:
        return list(self._providers)

    def get(self, key: str) -> ProviderConfig | None:
        return self._providers.get(key)

    def resolve(self, key: str | None) -> ProviderConfig:
        """Look up a provider, falling back to the default instead of raising."""
        provider = self._providers.get(key) if key else None
        if provider is None:
            if key:
                logger.warning(
                    "Unknown provider requested; using default",
                    extra={"provider": key, "default_provider": self._default_key},
                )
            return self._providers[self._default_key]
        if self._require_credentials and not provider.credential:
            logger.warning(
                "Provider has no credential configured; using default",
                extra={"provider": key, "default_provider": self._default_key},
            )
            return self._providers[self._default_key]
        return provider

    def cycle(self, current_key: str | None) -> str:
        if current_key not in self._order:
            return self._order[0]
        index = self._order.index(current_key)
        return self._order[(index + 1) % len(self._order)]

    def is_premium(self, key: str) -> bool:
        return key == PREMIUM_PROVIDER


def build_provider_registry(
    credentials: Mapping[str, str],
    *,
    default_key: str = DEFAULT_PROVIDER,
    require_credentials: bool = True,
) -> ProviderRegistry:
    providers = {
        key: ProviderConfig(
            key=key,
            display_name=display_name,
            endpoint=endpoint,
            credential=credentials.get(credential_key, ""),
            model=model,
        )
        for key, (display_name, endpoint, credential_key, model) in PROVIDER_DEFINITIONS.items()
    }
    return ProviderRegistry(
        providers, default_key=default_key, require_credentials=require_credentials
    )
