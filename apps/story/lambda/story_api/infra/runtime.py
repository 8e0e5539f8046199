"""Runtime infrastructure helpers for settings, credentials, tracing, and HTTP clients."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import boto3
import httpx
from langsmith.run_trees import get_cached_client

from story_api.constants import (
    AWS_REGION,
    DEFAULT_API_BASE,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_PROVIDER,
    DEFAULT_RELAY_PATH,
    LANGSMITH_API_KEY_PARAMETER_NAME,
    LANGSMITH_PROJECT,
    PROVIDER_API_KEY_ENV_VARS,
    PROVIDER_API_KEY_PARAMETER_NAMES,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuntimeSettings:
    api_base: str
    relay_url: str
    direct_api_mode: bool
    active_provider: str
    http_timeout_seconds: float
    use_ssm: bool


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes"}


@lru_cache(maxsize=1)
def get_runtime_settings() -> RuntimeSettings:
    api_base = os.environ.get("STORY_API_BASE", DEFAULT_API_BASE).rstrip("/")
    relay_url = os.environ.get("STORY_RELAY_URL") or (
        api_base.removesuffix("/api") + DEFAULT_RELAY_PATH
    )
    return RuntimeSettings(
        api_base=api_base,
        relay_url=relay_url,
        direct_api_mode=_env_flag("STORY_DIRECT_API_MODE"),
        active_provider=os.environ.get("STORY_ACTIVE_PROVIDER", DEFAULT_PROVIDER),
        http_timeout_seconds=float(
            os.environ.get("STORY_HTTP_TIMEOUT_SECONDS", DEFAULT_HTTP_TIMEOUT_SECONDS)
        ),
        use_ssm=_env_flag("STORY_USE_SSM"),
    )


def _get_secure_parameter(ssm_client: Any, parameter_name: str) -> str:
    result = ssm_client.get_parameter(Name=parameter_name, WithDecryption=True)
    value = result["Parameter"].get("Value")
    if not value:
        raise RuntimeError(f"SSM parameter {parameter_name} has no value")
    return value


def _get_optional_secure_parameter(ssm_client: Any, parameter_name: str) -> str | None:
    try:
        return _get_secure_parameter(ssm_client, parameter_name)
    except Exception:
        logger.warning(
            "Optional SSM parameter is unavailable; disabling dependent feature",
            extra={"parameter_name": parameter_name},
            exc_info=True,
        )
        return None


def _credential_from_env(provider_key: str) -> str:
    for name in PROVIDER_API_KEY_ENV_VARS.get(provider_key, ()):
        value = os.environ.get(name)
        if value:
            return value
    return ""


@lru_cache(maxsize=1)
def get_provider_credentials() -> dict[str, str]:
    """Collect provider API keys from the environment, then SSM when enabled."""
    credentials = {key: _credential_from_env(key) for key in PROVIDER_API_KEY_ENV_VARS}
    missing = [key for key, value in credentials.items() if not value]
    if missing and get_runtime_settings().use_ssm:
        ssm_client = boto3.client("ssm", region_name=AWS_REGION)
        for key in missing:
            credentials[key] = (
                _get_optional_secure_parameter(ssm_client, PROVIDER_API_KEY_PARAMETER_NAMES[key])
                or ""
            )
    return credentials


def _get_langsmith_api_key() -> str | None:
    api_key = os.environ.get("LANGSMITH_API_KEY")
    if api_key or not get_runtime_settings().use_ssm:
        return api_key
    ssm_client = boto3.client("ssm", region_name=AWS_REGION)
    return _get_optional_secure_parameter(ssm_client, LANGSMITH_API_KEY_PARAMETER_NAME)


def _configure_langsmith(langsmith_api_key: str | None) -> None:
    if not langsmith_api_key:
        os.environ.pop("LANGSMITH_TRACING", None)
        os.environ.pop("LANGSMITH_API_KEY", None)
        logger.info("LangSmith tracing disabled because API key is unavailable")
        return

    os.environ["LANGSMITH_TRACING"] = "true"
    os.environ["LANGSMITH_API_KEY"] = langsmith_api_key
    os.environ.setdefault("LANGSMITH_PROJECT", LANGSMITH_PROJECT)


@lru_cache(maxsize=1)
def ensure_langsmith_configured() -> None:
    """Configure LangSmith environment variables (called once via lru_cache)."""
    _configure_langsmith(_get_langsmith_api_key())


def flush_langsmith_traces() -> None:
    if os.environ.get("LANGSMITH_TRACING", "").lower() != "true":
        return
    if not os.environ.get("LANGSMITH_API_KEY"):
        return
    try:
        get_cached_client().flush()
    except Exception:
        logger.warning("Failed to flush LangSmith traces", exc_info=True)


@lru_cache(maxsize=1)
def get_http_client() -> httpx.AsyncClient:
    settings = get_runtime_settings()
    return httpx.AsyncClient(timeout=settings.http_timeout_seconds)
