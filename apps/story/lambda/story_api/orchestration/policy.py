"""Provider selection policy and token usage metering."""

import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass

from story_api.constants import (
    COST_PER_1K_TOKENS,
    DEFAULT_PROVIDER,
    DEFAULT_STYLE,
    PREMIUM_PROVIDER,
    PREMIUM_STYLE,
    GameStyle,
)
from story_api.provider_registry import ProviderRegistry
from story_api.schemas import TokenUsage

logger = logging.getLogger(__name__)


class ProviderPolicy:
    """Session-scoped style and provider-override state.

    The premium style locks generation to the premium provider; while it is
    active overrides are ignored and cannot be changed.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        style: GameStyle = DEFAULT_STYLE,
        default_provider: str = DEFAULT_PROVIDER,
        premium_provider: str = PREMIUM_PROVIDER,
    ) -> None:
        self._registry = registry
        self._style: GameStyle = style
        self._default_provider = default_provider
        self._premium_provider = premium_provider
        self._override: str | None = None

    @property
    def style(self) -> GameStyle:
        return self._style

    @property
    def override(self) -> str | None:
        return self._override

    @property
    def is_locked(self) -> bool:
        return self._style == PREMIUM_STYLE

    def set_style(self, style: GameStyle) -> None:
        self._style = style
        logger.info("Game style changed", extra={"style": style, "locked": self.is_locked})

    def set_override(self, provider_key: str | None) -> bool:
        """Set or clear the provider override. Returns False while locked."""
        if self.is_locked:
            logger.info(
                "Provider override ignored while style is locked",
                extra={"requested_provider": provider_key, "style": self._style},
            )
            return False
        if provider_key is not None and self._registry.get(provider_key) is None:
            logger.warning("Ignoring unknown provider override", extra={"provider": provider_key})
            return False
        self._override = provider_key
        return True

    def cycle_override(self) -> str | None:
        if self.is_locked:
            return None
        next_key = self._registry.cycle(self._override or self._default_provider)
        self._override = next_key
        logger.info("Switched model provider", extra={"provider": next_key})
        return next_key

    def effective_provider_key(self) -> str:
        if self.is_locked:
            return self._premium_provider
        return self._override or self._default_provider


@dataclass
class TokenUsageStats:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    api_calls: int = 0
    estimated_cost: float = 0.0


class UsageMeter:
    def __init__(self, rates: Mapping[str, float] = COST_PER_1K_TOKENS) -> None:
        self._rates = dict(rates)
        self._stats = TokenUsageStats()

    def record(self, provider_key: str, usage: TokenUsage | None, *, operation: str = "") -> float:
        """Add one completed call to the running totals and return its estimated cost."""
        self._stats.api_calls += 1
        if usage is None:
            return 0.0

        cost = usage.total_tokens / 1000 * self._rates.get(provider_key, 0.0)
        self._stats.prompt_tokens += usage.prompt_tokens
        self._stats.completion_tokens += usage.completion_tokens
        self._stats.total_tokens += usage.total_tokens
        self._stats.estimated_cost += cost
        logger.info(
            "Token usage recorded",
            extra={
                "operation": operation,
                "provider": provider_key,
                "prompt_tokens": usage.prompt_tokens,
                "completion_tokens": usage.completion_tokens,
                "total_tokens": usage.total_tokens,
                "estimated_cost": round(cost, 6),
            },
        )
        return cost

    def snapshot(self) -> TokenUsageStats:
        return TokenUsageStats(**asdict(self._stats))

    def reset(self) -> None:
        self._stats = TokenUsageStats()
        logger.info("Token usage statistics have been reset")
