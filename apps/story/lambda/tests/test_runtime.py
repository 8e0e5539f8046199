import os
import unittest
from unittest.mock import Mock, patch

import httpx

from story_api.errors import (
    GENERIC_FAILURE_MESSAGE,
    INSUFFICIENT_CREDITS_MESSAGE,
    InsufficientCreditsError,
    TransportError,
    user_message_for,
)
from story_api.infra import runtime
from story_api.infra.runtime import RuntimeSettings
from story_api.schemas import GameState
from story_api.services.factory import create_story_service


def runtime_state() -> GameState:
    return GameState.model_validate({"child": {"name": "Kai", "gender": "male", "age": 17}})


def settings(**overrides) -> RuntimeSettings:
    values = {
        "api_base": "https://story.example/api",
        "relay_url": "https://story.example/api/chat",
        "direct_api_mode": False,
        "active_provider": "volcengine",
        "http_timeout_seconds": 5.0,
        "use_ssm": False,
    }
    values.update(overrides)
    return RuntimeSettings(**values)


class RuntimeSettingsTests(unittest.TestCase):
    def setUp(self) -> None:
        runtime.get_runtime_settings.cache_clear()
        runtime.get_provider_credentials.cache_clear()

    def tearDown(self) -> None:
        runtime.get_runtime_settings.cache_clear()
        runtime.get_provider_credentials.cache_clear()

    def test_relay_url_is_derived_from_api_base(self) -> None:
        with patch.dict(os.environ, {"STORY_API_BASE": "https://story.example/api/"}, clear=True):
            result = runtime.get_runtime_settings()

        self.assertEqual(result.api_base, "https://story.example/api")
        self.assertEqual(result.relay_url, "https://story.example/api/chat")
        self.assertFalse(result.direct_api_mode)
        self.assertEqual(result.active_provider, "volcengine")

    def test_flags_and_explicit_relay_url(self) -> None:
        env = {
            "STORY_RELAY_URL": "https://relay.example/chat",
            "STORY_DIRECT_API_MODE": "true",
            "STORY_ACTIVE_PROVIDER": "deepseek",
            "STORY_HTTP_TIMEOUT_SECONDS": "12.5",
        }
        with patch.dict(os.environ, env, clear=True):
            result = runtime.get_runtime_settings()

        self.assertEqual(result.relay_url, "https://relay.example/chat")
        self.assertTrue(result.direct_api_mode)
        self.assertEqual(result.active_provider, "deepseek")
        self.assertEqual(result.http_timeout_seconds, 12.5)

    def test_credentials_come_from_environment_aliases(self) -> None:
        env = {"OPENAI_API_KEY": "sk-openai", "VOLCENGINE_LLM_API_KEY": "volc"}
        with patch.dict(os.environ, env, clear=True):
            credentials = runtime.get_provider_credentials()

        self.assertEqual(
            credentials, {"openai": "sk-openai", "deepseek": "", "volcengine": "volc"}
        )

    def test_missing_credentials_are_read_from_ssm_when_enabled(self) -> None:
        ssm_client = Mock()
        ssm_client.get_parameter.return_value = {"Parameter": {"Value": "from-ssm"}}
        env = {"STORY_USE_SSM": "1", "OPENAI_API_KEY": "sk-openai"}
        with patch.dict(os.environ, env, clear=True), patch.object(
            runtime.boto3, "client", return_value=ssm_client
        ):
            credentials = runtime.get_provider_credentials()

        self.assertEqual(credentials["openai"], "sk-openai")
        self.assertEqual(credentials["deepseek"], "from-ssm")
        self.assertEqual(ssm_client.get_parameter.call_count, 2)


class UserMessageTests(unittest.TestCase):
    def test_insufficient_credits_has_its_own_message(self) -> None:
        self.assertEqual(
            user_message_for(InsufficientCreditsError("empty")), INSUFFICIENT_CREDITS_MESSAGE
        )
        self.assertEqual(user_message_for(TransportError("down")), GENERIC_FAILURE_MESSAGE)


class CreateStoryServiceTests(unittest.IsolatedAsyncioTestCase):
    async def test_relay_mode_sends_through_relay_without_local_keys(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.path.endswith("/log-event"):
                return httpx.Response(200, json={"ok": True})
            return httpx.Response(
                200,
                json={"choices": [{"message": {"role": "assistant", "content": '{"outcome": "ok"}'}}]},
            )

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            service = create_story_service("anon-1", settings=settings(), client=client)
            state = await service.generate_outcome_and_next_question(
                runtime_state(), "Question?", "Choice"
            )
            await service.drain_events()

        self.assertTrue(state.is_ending)
        self.assertEqual(str(seen[0].url), "https://story.example/api/chat")
        self.assertNotIn("authorization", seen[0].headers)

    async def test_direct_mode_uses_local_credentials(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={"choices": [{"message": {"role": "assistant", "content": '{"outcome": "ok"}'}}]},
            )

        with patch(
            "story_api.services.factory.get_provider_credentials",
            return_value={"deepseek": "sk-deep"},
        ):
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                service = create_story_service(
                    "anon-1",
                    settings=settings(direct_api_mode=True, active_provider="deepseek"),
                    client=client,
                )
                await service.generate_outcome_and_next_question(runtime_state(), "Q", "C")
                await service.drain_events()

        self.assertEqual(str(seen[0].url), "https://api.deepseek.com/v1/chat/completions")
        self.assertEqual(seen[0].headers["authorization"], "Bearer sk-deep")


if __name__ == "__main__":
    unittest.main()
