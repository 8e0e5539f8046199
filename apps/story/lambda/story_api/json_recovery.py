"""Incremental recovery of one JSON object from streamed model output.

Models are asked for a single JSON object but the text arrives in fragments
and is often wrapped in code fences, decorated with typographic quotes, or
carries stray control characters. This module cleans the accumulated text,
decides cheaply whether it could already hold a whole object, and keeps the
last successful parse so a caller can react before the stream ends.
"""

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .constants import ERROR_EXCERPT_LENGTH
from .errors import JSONRecoveryError
from .providers.base import StreamChunk
from .schemas import TokenUsage

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_ZERO_WIDTH = re.compile(r"[\u200b-\u200d\ufeff]")
_CURLY_QUOTES = str.maketrans({"\u201c": '"', "\u201d": '"', "\u2018": "'", "\u2019": "'"})
_ESCAPE_SEQUENCE = re.compile(r'\\(["\\/bfnrt]|u[0-9a-fA-F]{4})|\\')
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_MISSING_COMMA_PATTERNS = (
    re.compile(r'("\s*)\n(\s*")'),
    re.compile(r"([}\]]\s*)\n(\s*[\"{\[])"),
    re.compile(r'(\d\s*)\n(\s*")'),
    re.compile(r'((?:true|false|null)\s*)\n(\s*")'),
)


def _strip_wrapping(content: str) -> str:
    content = _CODE_FENCE.sub("", content)
    return _ZERO_WIDTH.sub("", content).strip()


def clean_json_content(content: str) -> str:
    content = _CONTROL_CHARS.sub("", content)
    content = content.translate(_CURLY_QUOTES)
    return _strip_wrapping(content)


def is_json_potentially_complete(text: str) -> bool:
    """Return True once the leading object's braces balance outside strings."""
    text = text.strip()
    if not text.startswith("{"):
        return False

    depth = 0
    in_string = False
    escape_next = False
    for char in text:
        if in_string:
            if escape_next:
                escape_next = False
            elif char == "\\":
                escape_next = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return True
    return False


def _fix_escapes(text: str) -> str:
    return _ESCAPE_SEQUENCE.sub(lambda m: m.group(0) if m.group(1) else "\\\\", text)


def repair_json(text: str) -> str:
    """Fix common model JSON mistakes. Only used after ``json.loads`` failed."""
    text = _fix_escapes(text)
    for pattern in _MISSING_COMMA_PATTERNS:
        text = pattern.sub(r"\1,\n\2", text)
    return _TRAILING_COMMA.sub(r"\1", text)


def parse_object(text: str) -> dict[str, Any]:
    value = json.loads(text, strict=False)
    if not isinstance(value, dict):
        raise ValueError(f"Expected a JSON object, got {type(value).__name__}")
    return value


def parse_model_output(content: str) -> dict[str, Any]:
    """Parse model output, normalising typographic quotes only when the text needs it.

    Valid JSON may carry curly quotes inside string values (dialogue in
    Chinese or Japanese text), so the untranslated text is tried first.
    """
    try:
        return parse_object(_strip_wrapping(content))
    except ValueError:
        return parse_object(clean_json_content(content))


def recover_json(content: str) -> dict[str, Any]:
    """Parse ``content`` as one JSON object, repairing it if a plain parse fails."""
    cleaned = clean_json_content(content)
    try:
        return parse_model_output(content)
    except ValueError as exc:
        first_error: ValueError = exc

    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start != -1 and end > start:
        try:
            value = parse_object(repair_json(cleaned[start : end + 1]))
        except ValueError:
            logger.debug("Repaired JSON still does not parse", exc_info=True)
        else:
            logger.info("Recovered JSON after repair", extra={"content_length": len(content)})
            return value

    excerpt = content[:ERROR_EXCERPT_LENGTH]
    logger.error(
        "Failed to parse JSON response",
        extra={"error": str(first_error), "content_excerpt": excerpt},
    )
    raise JSONRecoveryError(f"Failed to parse JSON response: {first_error}", excerpt)


@dataclass(frozen=True)
class ParsedResult:
    value: dict[str, Any]
    usage: TokenUsage | None = None


class JSONRecoveryParser:
    """Stream sink that turns chunks into exactly one result or one error."""

    def __init__(
        self,
        on_result: Callable[[ParsedResult], None],
        on_error: Callable[[Exception], None],
        on_progress: Callable[[str], None] | None = None,
    ) -> None:
        self._on_result = on_result
        self._on_error = on_error
        self._on_progress = on_progress
        self._accumulated = ""
        self._last_valid: dict[str, Any] | None = None
        self._delivered = False

    @property
    def accumulated(self) -> str:
        return self._accumulated

    @property
    def last_valid(self) -> dict[str, Any] | None:
        return self._last_valid

    @property
    def delivered(self) -> bool:
        return self._delivered

    def on_chunk(self, chunk: StreamChunk) -> None:
        if self._delivered:
            return
        if chunk.content:
            self._accumulated += chunk.content
            if self._on_progress is not None:
                self._on_progress(self._accumulated)
            self._try_speculative_parse()
        if chunk.is_complete:
            self._finalize(chunk.usage)

    def on_complete(self, full_content: str, usage: TokenUsage | None) -> None:
        # Normally already finalized by the completion chunk.
        if self._delivered:
            return
        if full_content and not self._accumulated:
            self._accumulated = full_content
        self._finalize(usage)

    def on_error(self, error: Exception) -> None:
        if self._delivered:
            return
        self._delivered = True
        self._on_error(error)

    def _try_speculative_parse(self) -> None:
        cleaned = clean_json_content(self._accumulated)
        if not is_json_potentially_complete(cleaned):
            return
        try:
            self._last_valid = parse_model_output(self._accumulated)
        except ValueError:
            logger.debug("JSON not ready for parsing yet; continuing stream")
            return
        logger.debug("Parsed partial JSON during streaming")

    def _finalize(self, usage: TokenUsage | None) -> None:
        self._delivered = True
        if self._last_valid is not None:
            self._on_result(ParsedResult(value=self._last_valid, usage=usage))
            return
        try:
            value = recover_json(self._accumulated)
        except JSONRecoveryError as exc:
            self._on_error(exc)
            return
        self._on_result(ParsedResult(value=value, usage=usage))
