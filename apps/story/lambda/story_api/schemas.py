"""Pydantic schemas for conversations, provider envelopes and game state."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import (
    MAX_RELAY_MESSAGE_CHARS,
    MAX_RELAY_MESSAGES,
    ProviderKey,
    Role,
)


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class AssistantMessage(BaseModel):
    role: str | None = None
    content: str | None = None


class CompletionChoice(BaseModel):
    index: int = 0
    message: AssistantMessage
    finish_reason: str | None = None


class ChatCompletion(BaseModel):
    """Native chat-completion envelope returned by providers and the relay."""

    id: str | None = None
    model: str | None = None
    created: int | None = None
    choices: list[CompletionChoice] = Field(min_length=1)
    usage: TokenUsage | None = None

    @property
    def content(self) -> str:
        return self.choices[0].message.content or ""


class RelayChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(min_length=1, max_length=MAX_RELAY_MESSAGES)
    provider: ProviderKey = "volcengine"
    streaming: bool = False

    @field_validator("messages")
    @classmethod
    def validate_message_content(cls, messages: list[ChatMessage]) -> list[ChatMessage]:
        for message in messages:
            if not message.content:
                raise ValueError("Each message must have role and content")
            if len(message.content) > MAX_RELAY_MESSAGE_CHARS:
                raise ValueError(
                    f"Message content must be under {MAX_RELAY_MESSAGE_CHARS} characters"
                )
        return messages


class ProviderMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    key: str
    display_name: str = Field(alias="displayName")
    model: str
    premium: bool
    configured: bool


class ConsumeCreditResponse(BaseModel):
    ok: bool | None = None
    remaining: float | None = None
    error: str | None = None


# --- Game state ---


class PersonProfile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    gender: Literal["male", "female"] = "female"
    age: int = 0


class HistoryEntry(BaseModel):
    age: int
    question: str
    choice: str
    outcome: str = ""


class QuestionOption(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str | None = None
    text: str
    finance_delta: float = Field(default=0, alias="financeDelta")
    marital_delta: float = Field(default=0, alias="maritalDelta")


class Question(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    question: str
    options: list[QuestionOption] = Field(min_length=1)
    is_extreme_event: bool = Field(default=False, alias="isExtremeEvent")


class OutcomeResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    outcome: str
    next_question: Question | None = Field(default=None, alias="nextQuestion")
    is_ending: bool = Field(default=False, alias="isEnding")


class EndingResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    child_status_at_18: str
    parent_evaluation: str
    future_outlook: str
    story_style: str | None = None


class GameState(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    player: PersonProfile = Field(default_factory=PersonProfile)
    child: PersonProfile = Field(default_factory=PersonProfile)
    player_description: str = Field(default="", alias="playerDescription")
    child_description: str = Field(default="", alias="childDescription")
    finance: int | float | None = 5
    marital: int | float | None = None
    is_single_parent: bool = Field(default=False, alias="isSingleParent")
    history: list[HistoryEntry] = Field(default_factory=list)
    special_requirements: str | None = Field(default=None, alias="specialRequirements")
