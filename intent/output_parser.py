"""
LLM Output Parser

Schema-validated decoding of provider responses. Parsing never raises:
callers get a ParseResult that either carries the validated value or an
OutputParseError, and decide on their own default.

Features:
- JSON extraction from markdown fences and surrounding prose
- Pydantic validation against lenient payload schemas
- Top-level array decoding (alternative intents, clarification questions)
- Parse failure metrics
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from intent.exceptions import OutputParseError
from observability.logging_config import get_logger
from observability.metrics import metrics

logger = get_logger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")


@dataclass(frozen=True)
class ParseResult(Generic[T]):
    """Tagged outcome of a parse: exactly one of value/error is set."""

    value: Optional[T] = None
    error: Optional[OutputParseError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default

    @classmethod
    def success(cls, value: T) -> "ParseResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: OutputParseError) -> "ParseResult[T]":
        return cls(error=error)


def extract_json_payload(text: str) -> str:
    """
    Extract the JSON part of an LLM response.

    Prefers a fenced ```json block; otherwise trims any prose before the
    first bracket and after the last one.
    """
    match = _FENCE_RE.search(text)
    if match:
        text = match.group(1)

    text = text.strip()
    if not text or text[0] in "{[":
        return text

    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    if not starts:
        return text
    start = min(starts)
    end = max(text.rfind("}"), text.rfind("]"))
    if end <= start:
        return text[start:]
    return text[start:end + 1]


def _decode(text: Optional[str], schema_name: str) -> ParseResult[Any]:
    if text is None or not text.strip():
        return _fail(schema_name, "empty response", text or "")
    try:
        return ParseResult.success(json.loads(extract_json_payload(text)))
    except json.JSONDecodeError as e:
        return _fail(schema_name, f"invalid JSON: {e}", text)


def _fail(schema_name: str, reason: str, raw: str) -> ParseResult[Any]:
    logger.warning("llm_output_parse_failed", schema=schema_name, error=reason)
    metrics.record_parse_failure(schema_name)
    return ParseResult.failure(OutputParseError(schema_name, reason, raw))


def parse_llm_output(text: Optional[str], schema: Type[M]) -> ParseResult[M]:
    """
    Parse a JSON object response into a payload schema.

    Args:
        text: Raw provider response
        schema: Pydantic model class for the expected object

    Returns:
        ParseResult with the validated model, or the parse error
    """
    decoded = _decode(text, schema.__name__)
    if not decoded.ok:
        return decoded

    data = decoded.value
    if not isinstance(data, dict):
        return _fail(schema.__name__, f"expected object, got {type(data).__name__}", text)

    try:
        return ParseResult.success(schema.model_validate(data))
    except ValidationError as e:
        return _fail(schema.__name__, f"schema error: {e.error_count()} invalid fields", text)


def parse_llm_list(
    text: Optional[str],
    item_schema: Optional[Type[M]] = None,
    schema_name: str = "list",
) -> ParseResult[List[Any]]:
    """
    Parse a JSON array response.

    With an item schema, object items are validated (others skipped);
    without one, the raw items are returned.
    """
    name = item_schema.__name__ if item_schema else schema_name
    decoded = _decode(text, name)
    if not decoded.ok:
        return decoded

    data = decoded.value
    if not isinstance(data, list):
        return _fail(name, f"expected array, got {type(data).__name__}", text)

    if item_schema is None:
        return ParseResult.success(data)

    items = []
    for raw in data:
        if not isinstance(raw, dict):
            continue
        try:
            items.append(item_schema.model_validate(raw))
        except ValidationError as e:
            logger.debug("llm_list_item_skipped", schema=name, error=str(e))
    return ParseResult.success(items)


def salvage_questions(text: str, limit: int) -> List[str]:
    """
    Recover clarification questions from a response that is not valid JSON.

    Splits on quoted-string boundaries and keeps fragments ending in '?'.
    """
    if not text:
        return []
    stripped = text.replace("[", "").replace("]", "")
    questions = []
    for part in stripped.split('",'):
        candidate = part.replace('"', "").strip()
        if candidate and candidate.endswith("?"):
            questions.append(candidate)
        if len(questions) >= limit:
            break
    return questions
