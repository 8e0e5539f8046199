"""Game-level generation operations built on the story pipeline."""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from story_api.constants import DEFAULT_LANGUAGE, FINAL_QUESTION_AGE, Language
from story_api.errors import MalformedResponseError
from story_api.orchestration.base import PromptComposer
from story_api.orchestration.pipeline import StoryPipeline
from story_api.schemas import EndingResult, GameState, OutcomeResult, Question

from .prompt_composer import format_ending

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _validate(model: type[ModelT], value: dict[str, Any], operation: str) -> ModelT:
    try:
        return model.model_validate(value)
    except ValidationError as exc:
        logger.error(
            "Generated JSON has an invalid shape",
            extra={"operation": operation, "errors": exc.errors(include_url=False)},
        )
        raise MalformedResponseError(f"Invalid {operation} format received from API") from exc


def _question_id() -> str:
    return f"q_{int(time.time() * 1000)}"


class StoryService:
    def __init__(
        self,
        pipeline: StoryPipeline,
        composer: PromptComposer,
        *,
        language: Language = DEFAULT_LANGUAGE,
    ) -> None:
        self._pipeline = pipeline
        self._composer = composer
        self._language: Language = language

    @property
    def language(self) -> Language:
        return self._language

    def set_language(self, language: Language) -> None:
        self._language = language

    async def drain_events(self) -> None:
        await self._pipeline.drain_events()

    async def _generate(
        self,
        kind: str,
        game_state: GameState | None,
        special_requirements: str | None,
        *,
        streaming: bool,
        on_progress: Callable[[str], None] | None,
        abort: asyncio.Event | None,
        **context: Any,
    ) -> dict[str, Any]:
        conversation = self._composer.build_messages(
            game_state,
            self._pipeline.policy.style,
            self._language,
            special_requirements,
            kind=kind,
            **context,
        )
        return await self._pipeline.complete_json(
            conversation,
            operation=kind,
            streaming=streaming,
            on_progress=on_progress,
            abort=abort,
        )

    async def generate_initial_state(
        self,
        special_requirements: str | None = None,
        *,
        streaming: bool = False,
        on_progress: Callable[[str], None] | None = None,
        abort: asyncio.Event | None = None,
    ) -> GameState:
        logger.info(
            "Generating initial state",
            extra={"has_special_requirements": bool(special_requirements)},
        )
        value = await self._generate(
            "initial_state",
            None,
            special_requirements,
            streaming=streaming,
            on_progress=on_progress,
            abort=abort,
        )
        state = _validate(GameState, value, "initial state")
        if special_requirements and not state.special_requirements:
            state = state.model_copy(update={"special_requirements": special_requirements})
        return state

    async def generate_question(
        self,
        game_state: GameState,
        *,
        streaming: bool = False,
        on_progress: Callable[[str], None] | None = None,
        abort: asyncio.Event | None = None,
    ) -> Question:
        logger.info("Generating question", extra={"child_age": game_state.child.age})
        value = await self._generate(
            "question",
            game_state,
            game_state.special_requirements,
            streaming=streaming,
            on_progress=on_progress,
            abort=abort,
        )
        question = _validate(Question, value, "question")
        return question.model_copy(update={"id": _question_id()})

    async def generate_outcome_and_next_question(
        self,
        game_state: GameState,
        question: str,
        choice: str,
        *,
        streaming: bool = False,
        on_progress: Callable[[str], None] | None = None,
        abort: asyncio.Event | None = None,
    ) -> OutcomeResult:
        """Describe the outcome of ``choice`` and, before the final year, the next question."""
        include_next_question = game_state.child.age < FINAL_QUESTION_AGE
        logger.info(
            "Generating outcome",
            extra={
                "child_age": game_state.child.age,
                "include_next_question": include_next_question,
            },
        )
        value = await self._generate(
            "outcome",
            game_state,
            game_state.special_requirements,
            streaming=streaming,
            on_progress=on_progress,
            abort=abort,
            question=question,
            choice=choice,
            include_next_question=include_next_question,
        )
        result = _validate(OutcomeResult, value, "outcome")

        if not include_next_question:
            return OutcomeResult(outcome=result.outcome, next_question=None, is_ending=True)
        next_question = result.next_question
        if next_question is not None:
            next_question = next_question.model_copy(update={"id": _question_id()})
        return OutcomeResult(outcome=result.outcome, next_question=next_question, is_ending=False)

    async def generate_ending(
        self,
        game_state: GameState,
        *,
        streaming: bool = False,
        on_progress: Callable[[str], None] | None = None,
        abort: asyncio.Event | None = None,
    ) -> str:
        logger.info("Generating ending", extra={"history_length": len(game_state.history)})
        value = await self._generate(
            "ending",
            game_state,
            game_state.special_requirements,
            streaming=streaming,
            on_progress=on_progress,
            abort=abort,
        )
        _validate(EndingResult, value, "ending")
        return format_ending(value)
