import json
import unittest

from story_api.errors import JSONRecoveryError
from story_api.json_recovery import (
    JSONRecoveryParser,
    ParsedResult,
    clean_json_content,
    is_json_potentially_complete,
    recover_json,
)
from story_api.providers.base import StreamChunk
from story_api.schemas import TokenUsage


class CollectingParser:
    def __init__(self) -> None:
        self.results: list[ParsedResult] = []
        self.errors: list[Exception] = []
        self.progress: list[str] = []
        self.parser = JSONRecoveryParser(
            on_result=self.results.append,
            on_error=self.errors.append,
            on_progress=self.progress.append,
        )

    def feed(self, parts: list[str], usage: TokenUsage | None = None) -> None:
        for part in parts:
            self.parser.on_chunk(StreamChunk(content=part))
        self.parser.on_chunk(StreamChunk(content="", is_complete=True, usage=usage))
        self.parser.on_complete("".join(parts), usage)


class CleanJsonContentTests(unittest.TestCase):
    def test_strips_fences_quotes_and_invisible_characters(self) -> None:
        raw = "```json\n{\u201ctitle\u201d: \u201cHi\u201d}\u200b\x07\n```"

        self.assertEqual(clean_json_content(raw), '{"title": "Hi"}')


class PotentiallyCompleteTests(unittest.TestCase):
    def test_requires_leading_brace(self) -> None:
        self.assertFalse(is_json_potentially_complete('Here you go: {"a": 1}'))

    def test_ignores_braces_inside_strings(self) -> None:
        self.assertFalse(is_json_potentially_complete('{"a": "}"'))
        self.assertTrue(is_json_potentially_complete('{"a": "}"}'))

    def test_escaped_quote_does_not_close_string(self) -> None:
        self.assertFalse(is_json_potentially_complete('{"a": "say \\"}\\" "'))

    def test_nested_objects_balance(self) -> None:
        self.assertFalse(is_json_potentially_complete('{"a": {"b": 1}'))
        self.assertTrue(is_json_potentially_complete('{"a": {"b": 1}}'))


class RecoverJsonTests(unittest.TestCase):
    def test_parses_fenced_object(self) -> None:
        self.assertEqual(recover_json('```json\n{"question": "Q?"}\n```'), {"question": "Q?"})

    def test_repairs_trailing_and_missing_commas(self) -> None:
        content = 'Sure!\n{\n  "a": 1\n  "b": [1, 2,],\n}\nThanks'

        self.assertEqual(recover_json(content), {"a": 1, "b": [1, 2]})

    def test_typographic_quotes_inside_strings_are_kept(self) -> None:
        content = '{"q": "孩子问“为什么”？"}'

        self.assertEqual(recover_json(content), {"q": "孩子问“为什么”？"})

    def test_typographic_quotes_as_delimiters_are_normalised(self) -> None:
        self.assertEqual(recover_json("{“title”: “Hi”}"), {"title": "Hi"})

    def test_repairs_invalid_escape(self) -> None:
        self.assertEqual(recover_json('{"path": "C:\\dir"}'), {"path": "C:\\dir"})

    def test_unrecoverable_content_raises_with_excerpt(self) -> None:
        content = "I cannot answer that. " * 20

        with self.assertRaises(JSONRecoveryError) as ctx:
            recover_json(content)

        self.assertEqual(ctx.exception.excerpt, content[:200])

    def test_non_object_json_is_rejected(self) -> None:
        with self.assertRaises(JSONRecoveryError):
            recover_json("[1, 2, 3]")


class JSONRecoveryParserTests(unittest.TestCase):
    def test_split_object_delivers_once_after_completion(self) -> None:
        collector = CollectingParser()
        usage = TokenUsage(prompt_tokens=3, completion_tokens=4, total_tokens=7)

        collector.feed(['{"a":1,', '"b":2}'], usage)

        self.assertEqual(len(collector.results), 1)
        self.assertEqual(collector.results[0].value, {"a": 1, "b": 2})
        self.assertEqual(collector.results[0].usage, usage)
        self.assertEqual(collector.errors, [])
        self.assertEqual(collector.progress, ['{"a":1,', '{"a":1,"b":2}'])

    def test_speculative_parse_is_kept_but_not_delivered_before_completion(self) -> None:
        collector = CollectingParser()

        collector.parser.on_chunk(StreamChunk(content='{"a": 1}'))

        self.assertEqual(collector.parser.last_valid, {"a": 1})
        self.assertEqual(collector.results, [])
        self.assertFalse(collector.parser.delivered)

    def test_any_chunk_boundary_yields_same_result(self) -> None:
        document = json.dumps(
            {
                "question": 'She asks "why?" {curious}',
                "options": [{"id": "a", "text": "Explain", "financeDelta": -1}],
                "isExtremeEvent": False,
            }
        )
        for size in range(1, len(document) + 1):
            with self.subTest(chunk_size=size):
                collector = CollectingParser()
                parts = [document[i : i + size] for i in range(0, len(document), size)]

                collector.feed(parts)

                self.assertEqual(len(collector.results), 1)
                self.assertEqual(collector.results[0].value, json.loads(document))

    def test_streamed_dialogue_keeps_typographic_quotes(self) -> None:
        collector = CollectingParser()

        collector.feed(['{"question": "她说“', '我不去”。"}'])

        self.assertEqual(collector.results[0].value, {"question": "她说“我不去”。"})
        self.assertEqual(collector.errors, [])

    def test_garbage_stream_reports_single_error(self) -> None:
        collector = CollectingParser()

        collector.feed(["not ", "json ", "at all"])

        self.assertEqual(collector.results, [])
        self.assertEqual(len(collector.errors), 1)
        self.assertIsInstance(collector.errors[0], JSONRecoveryError)

    def test_error_after_delivery_is_ignored(self) -> None:
        collector = CollectingParser()
        collector.feed(['{"a": 1}'])

        collector.parser.on_error(RuntimeError("late"))

        self.assertEqual(len(collector.results), 1)
        self.assertEqual(collector.errors, [])

    def test_transport_error_before_completion_is_forwarded_once(self) -> None:
        collector = CollectingParser()
        collector.parser.on_chunk(StreamChunk(content='{"a": '))

        collector.parser.on_error(RuntimeError("connection reset"))
        collector.parser.on_error(RuntimeError("again"))

        self.assertEqual(collector.results, [])
        self.assertEqual(len(collector.errors), 1)

    def test_on_complete_alone_finalizes_from_full_content(self) -> None:
        collector = CollectingParser()

        collector.parser.on_complete('{"outcome": "ok"}', None)

        self.assertEqual(collector.results[0].value, {"outcome": "ok"})


if __name__ == "__main__":
    unittest.main()
