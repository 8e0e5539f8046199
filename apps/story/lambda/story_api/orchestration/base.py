"""Collaborator interfaces consumed by the story pipeline."""

from typing import Any, Protocol

from story_api.constants import GameStyle, Language
from story_api.schemas import ChatMessage, GameState


class PromptComposer(Protocol):
    def build_messages(
        self,
        game_state: GameState | None,
        style: GameStyle,
        language: Language,
        special_requirements: str | None,
        *,
        kind: str,
        **context: Any,
    ) -> list[ChatMessage]:
        """Build the role-tagged conversation for one generation step."""
        ...


class CreditService(Protocol):
    async def consume(self, account_id: str, amount: float) -> float:
        """Deduct ``amount`` credits and return the remaining balance.

        Raises ``InsufficientCreditsError`` when the balance is exhausted.
        """
        ...


class EventSink(Protocol):
    async def log_event(
        self, event_type: str, payload: dict[str, Any] | None = None
    ) -> None:
        """Record a session event. Implementations must not raise."""
        ...
