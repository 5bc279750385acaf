"""Recover JSON values from free-text model responses.

Models wrap JSON in code fences, lead with "Here's the JSON:", or leave
trailing commas behind. Each recovery strategy below is a plain function
``(text, shape) -> value`` that raises ``ValueError`` when it cannot produce
a value of the expected shape; ``extract_json`` tries them in order.
"""

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Literal, Optional

import structlog

logger = structlog.get_logger(__name__)

JsonShape = Optional[Literal["object", "array"]]

_FENCE_RE = re.compile(r"```[ \t]*[A-Za-z]*")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_BRACKETS = {"object": ("{", "}"), "array": ("[", "]")}


class ParseFailure(Exception):
    """No strategy recovered a JSON value of the expected shape."""

    def __init__(self, message: str, raw_text: str = "", errors: Optional[list[str]] = None):
        self.raw_text = raw_text
        self.errors = errors or []
        super().__init__(message)


class ExtractionOutcome(str, Enum):
    """How a stage value was obtained."""

    OK = "ok"
    REPAIRED = "parsed-with-repair"
    DEFAULT = "fallback-default"


@dataclass
class ExtractedJson:
    """A recovered JSON value and the strategy that produced it."""

    value: Any
    strategy: str
    outcome: ExtractionOutcome


def _check_shape(value: Any, shape: JsonShape) -> Any:
    if shape == "object" and not isinstance(value, dict):
        raise ValueError(f"Expected a JSON object, got {type(value).__name__}")
    if shape == "array" and not isinstance(value, list):
        raise ValueError(f"Expected a JSON array, got {type(value).__name__}")
    return value


def strip_code_fences(text: str) -> str:
    """Remove markdown code-fence markers (```json, ```), keeping their content."""
    return _FENCE_RE.sub("", text).strip()


def outer_span(text: str, shape: JsonShape = None) -> str:
    """Return the substring from the first opening to the last closing bracket.

    With no shape, whichever of ``{`` / ``[`` appears first decides the pair.
    """
    if shape is None:
        starts = [(text.find(o), kind) for kind, (o, _) in _BRACKETS.items() if o in text]
        if not starts:
            raise ValueError("No JSON opening bracket found")
        _, shape = min(starts)

    opener, closer = _BRACKETS[shape]
    start = text.find(opener)
    end = text.rfind(closer)
    if start == -1 or end <= start:
        raise ValueError(f"No {opener}...{closer} span found")
    return text[start:end + 1]


def repair_json_text(text: str) -> str:
    """Apply syntactic repairs for common LLM JSON mistakes.

    - BOM and zero-width characters are dropped
    - Trailing commas before ``}`` or ``]`` are removed
    - Literal newlines become spaces (raw newlines inside strings are invalid JSON)

    Escaped ``\\n`` sequences are valid JSON and are left alone.
    """
    text = text.strip("\ufeff\u200b\u200c\u200d")
    text = _TRAILING_COMMA_RE.sub(r"\1", text)
    return re.sub(r"\r\n|\r|\n", " ", text)


def parse_direct(text: str, shape: JsonShape = None) -> Any:
    """Strategy 1: strip fences and parse the whole remainder."""
    return _check_shape(json.loads(strip_code_fences(text)), shape)


def parse_outer_span(text: str, shape: JsonShape = None) -> Any:
    """Strategy 2: parse the first-bracket-to-last-bracket span."""
    return _check_shape(json.loads(outer_span(strip_code_fences(text), shape)), shape)


def parse_repaired(text: str, shape: JsonShape = None) -> Any:
    """Strategy 3: repair the span (or the whole text if there is none) and parse."""
    cleaned = strip_code_fences(text)
    try:
        candidate = outer_span(cleaned, shape)
    except ValueError:
        candidate = cleaned
    return _check_shape(json.loads(repair_json_text(candidate)), shape)


STRATEGIES: list[tuple[str, Callable[[str, JsonShape], Any]]] = [
    ("direct", parse_direct),
    ("outer_span", parse_outer_span),
    ("repaired", parse_repaired),
]


def extract_json(text: str, shape: JsonShape = None) -> ExtractedJson:
    """Recover a JSON value from an arbitrary model response.

    Args:
        text: Raw model output.
        shape: Expected top-level type, or None to accept either.

    Returns:
        ExtractedJson with the value and the strategy that succeeded.

    Raises:
        ParseFailure: If every strategy failed.
    """
    if not text or not text.strip():
        raise ParseFailure("Empty response from LLM", raw_text=text or "")

    logger.debug(
        "raw_llm_response",
        response_length=len(text),
        preview=text[:200],
    )

    errors: list[str] = []
    for name, strategy in STRATEGIES:
        try:
            value = strategy(text, shape)
        except ValueError as e:
            errors.append(f"{name}: {e}")
            logger.debug("json_strategy_failed", strategy=name, error=str(e))
            continue

        outcome = ExtractionOutcome.OK if name == "direct" else ExtractionOutcome.REPAIRED
        if outcome is ExtractionOutcome.REPAIRED:
            logger.debug("json_parse_repaired", strategy=name)
        return ExtractedJson(value=value, strategy=name, outcome=outcome)

    logger.warning("json_parse_error", errors=errors, response_length=len(text))
    logger.debug("json_parse_error_response", preview=text[:150])
    raise ParseFailure(
        f"Failed to parse LLM JSON response ({len(text)} chars)",
        raw_text=text,
        errors=errors,
    )
