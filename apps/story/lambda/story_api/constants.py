"""Shared constants and literal types for the story engine."""

from typing import Literal

ProviderKey = Literal["openai", "deepseek", "volcengine", "gpt5"]
GameStyle = Literal["realistic", "fantasy", "cool", "ultra"]
Language = Literal["zh", "en", "ja", "es"]
Role = Literal["system", "user", "assistant"]

AWS_REGION = "ap-northeast-1"
LANGSMITH_API_KEY_PARAMETER_NAME = "/story-app/langsmith-api-key"
LANGSMITH_PROJECT = "kid-story-engine"
PROVIDER_API_KEY_PARAMETER_NAMES: dict[str, str] = {
    "openai": "/story-app/openai-api-key",
    "deepseek": "/story-app/deepseek-api-key",
    "volcengine": "/story-app/volcengine-api-key",
}
PROVIDER_API_KEY_ENV_VARS: dict[str, tuple[str, ...]] = {
    "openai": ("OPENAI_API_KEY",),
    "deepseek": ("DEEPSEEK_API_KEY",),
    "volcengine": ("ARK_API_KEY", "VOLCENGINE_LLM_API_KEY"),
}

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
DEEPSEEK_CHAT_URL = "https://api.deepseek.com/v1/chat/completions"
VOLCENGINE_CHAT_URL = "https://ark.cn-beijing.volces.com/api/v3/chat/completions"

PROVIDER_ORDER: tuple[ProviderKey, ...] = ("openai", "deepseek", "volcengine")
DEFAULT_PROVIDER: ProviderKey = "volcengine"
PREMIUM_PROVIDER: ProviderKey = "gpt5"
PREMIUM_STYLE: GameStyle = "ultra"
DEFAULT_STYLE: GameStyle = "realistic"
DEFAULT_LANGUAGE: Language = "en"

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 2048

# USD per 1000 tokens; providers missing here are not billed.
COST_PER_1K_TOKENS: dict[str, float] = {
    "openai": 0.002,
    "deepseek": 0.0014,
}
PREMIUM_CREDIT_COST = 0.2

DEFAULT_RELAY_PATH = "/api/chat"
DEFAULT_API_BASE = "http://localhost:3000/api"
DEFAULT_HTTP_TIMEOUT_SECONDS = 60.0

SSE_DATA_PREFIX = "data:"
SSE_DONE_SENTINEL = "[DONE]"

THROTTLE_MAX_RETRIES = 3
THROTTLE_BACKOFF_BASE_SECONDS = 1.0
THROTTLE_JITTER_SECONDS = 0.5

ERROR_EXCERPT_LENGTH = 200
HISTORY_WINDOW = 8
FINAL_QUESTION_AGE = 17

MAX_RELAY_MESSAGES = 50
MAX_RELAY_MESSAGE_CHARS = 20_000
