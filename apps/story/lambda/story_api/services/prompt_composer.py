"""Default template-based prompt composition for the parenting story game."""

import logging
from typing import Any

from story_api.constants import HISTORY_WINDOW, PREMIUM_STYLE, GameStyle, Language
from story_api.schemas import ChatMessage, GameState

logger = logging.getLogger(__name__)

STYLE_LABELS: dict[str, dict[str, str]] = {
    "realistic": {"zh": "真实", "en": "realistic", "ja": "リアル", "es": "realista"},
    "fantasy": {"zh": "魔幻", "en": "fantasy", "ja": "ファンタジー", "es": "fantasía"},
    "cool": {"zh": "爽", "en": "thrilling", "ja": "スリリング", "es": "emocionante"},
    "ultra": {
        "zh": "超真实（付费）",
        "en": "ultra-realistic",
        "ja": "超リアル（有料）",
        "es": "ultrarrealista (de pago)",
    },
}

SYSTEM_TEMPLATE = (
    "You are the narrator of an interactive parenting simulation written in a {style} style. "
    "The player raises a child from birth to age 18. Always answer with a single JSON object "
    "and nothing else."
)
SPECIAL_REQUIREMENTS_TEMPLATE = (
    "At the beginning of the game, the player provided special requirements: {requirements}"
)
NUMERIC_HEADER_TEMPLATE = "[Finance: {finance}/10] [Marital: {marital}/10]"
HISTORY_ITEM_TEMPLATE = "Age {age}: {question}\nChoice: {choice}\nOutcome: {outcome}"
PREMIUM_GUARDRAILS = (
    "Keep every outcome grounded in everyday reality. Avoid graphic content and keep the "
    "narration concise."
)

TASK_TEMPLATES: dict[str, str] = {
    "initial_state": (
        "Create the opening situation of a new game. Return JSON with keys player "
        "(name, gender, age), child (name, gender, age=0), playerDescription, "
        "childDescription, finance (0-10), marital (0-10) and isSingleParent."
    ),
    "question": (
        "Write the dilemma the player faces when the child is {child_age} years old. Return "
        "JSON with keys question, options (each with id, text, financeDelta, maritalDelta) "
        "and isExtremeEvent."
    ),
    "outcome": (
        "The player was asked: {question}\nThey chose: {choice}\nDescribe the outcome. "
        "Return JSON with key outcome{next_question_note}."
    ),
    "ending": (
        "The child has turned 18. Summarise the journey. Return JSON with keys "
        "child_status_at_18, parent_evaluation, future_outlook and story_style."
    ),
}
NEXT_QUESTION_NOTE = (
    " and key nextQuestion holding the dilemma for the following year in the same shape as "
    "a question"
)

ENDING_TEMPLATE = (
    "## Your child at 18\n{child_status}\n\n"
    "## Your parenting\n{parent_evaluation}\n\n"
    "## Looking ahead\n{future_outlook}"
)


def style_label(style: GameStyle, language: Language) -> str:
    return STYLE_LABELS.get(style, {}).get(language, style)


def _numeric_header(game_state: GameState) -> str:
    if game_state.finance is None:
        return ""
    marital = game_state.marital
    if marital is None:
        marital = 0 if game_state.is_single_parent else 5
    return NUMERIC_HEADER_TEMPLATE.format(finance=game_state.finance, marital=marital)


def _history_context(game_state: GameState) -> str:
    recent = game_state.history[-HISTORY_WINDOW:]
    if not recent:
        return ""
    items = "\n\n".join(
        HISTORY_ITEM_TEMPLATE.format(
            age=entry.age, question=entry.question, choice=entry.choice, outcome=entry.outcome
        )
        for entry in recent
    )
    return f"Recent history:\n{items}"


def _profile_section(game_state: GameState) -> str:
    player, child = game_state.player, game_state.child
    return (
        f"Parent: {player.gender}, age {player.age}. {game_state.player_description}\n"
        f"Child: {child.name}, {child.gender}, age {child.age}. {game_state.child_description}"
    ).strip()


class TemplatePromptComposer:
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
        if kind not in TASK_TEMPLATES:
            raise ValueError(f"Unknown prompt kind: {kind}")

        requirements = (special_requirements or "").strip()
        system = SYSTEM_TEMPLATE.format(style=style_label(style, language))
        if requirements:
            system += "\n\n" + SPECIAL_REQUIREMENTS_TEMPLATE.format(requirements=requirements)

        sections: list[str] = []
        if game_state is not None:
            sections.extend(
                [_numeric_header(game_state), _profile_section(game_state), _history_context(game_state)]
            )
        sections.append(self._task_section(kind, game_state, context))
        if style == PREMIUM_STYLE:
            sections.append(PREMIUM_GUARDRAILS)
        sections.append(f"Write all text in language: {language}.")

        user = "\n\n".join(section for section in sections if section)
        logger.debug(
            "Composed prompt",
            extra={"kind": kind, "style": style, "language": language, "user_length": len(user)},
        )
        return [
            ChatMessage(role="system", content=system),
            ChatMessage(role="user", content=user),
        ]

    def _task_section(
        self, kind: str, game_state: GameState | None, context: dict[str, Any]
    ) -> str:
        template = TASK_TEMPLATES[kind]
        if kind == "question":
            return template.format(child_age=game_state.child.age if game_state else 0)
        if kind == "outcome":
            note = NEXT_QUESTION_NOTE if context.get("include_next_question") else ""
            return template.format(
                question=context.get("question", ""),
                choice=context.get("choice", ""),
                next_question_note=note,
            )
        return template


def format_ending(result: dict[str, Any]) -> str:
    """Render the ending object as markdown, keeping the art style as a hidden comment."""
    text = ENDING_TEMPLATE.format(
        child_status=result.get("child_status_at_18", ""),
        parent_evaluation=result.get("parent_evaluation", ""),
        future_outlook=result.get("future_outlook", ""),
    )
    story_style = result.get("story_style")
    if isinstance(story_style, str) and story_style.strip():
        return f"{text}\n\n<!-- story_style: {story_style.strip()} -->"
    return text
