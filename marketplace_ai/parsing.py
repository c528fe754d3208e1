"""
Response extractor / JSON sanitizer.

Model output is text: sometimes bare JSON, often JSON wrapped in Markdown
fences or prose, occasionally JSON with trailing commas or single quotes.
Recovery is an ordered tuple of pure strategies (text -> dict | None), tried
in sequence until one yields a JSON object:

  1. clean:      strip fences and surrounding quotes, fix trailing commas, parse
  2. balanced:   scan for balanced {...} spans and run strategy 1 on each
  3. aggressive: keep first "{" .. last "}", fix commas, then json-repair

Arrays and primitives are never accepted as results, and neither is a reply
that was cut off before its object closed.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Optional

import structlog
from json_repair import repair_json

from marketplace_ai.llm_client import UnparsableResponseError
from marketplace_ai.models import ExtractionResult, ExtractionStatus

logger = structlog.get_logger()

Strategy = Callable[[str], Optional[dict[str, Any]]]

_FENCE_RE = re.compile(r"```(?:json|JSON)?[ \t]*")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


def strip_code_fences(text: str) -> str:
    """Remove every Markdown code-fence marker (```json / ```), keeping the enclosed text."""
    return _FENCE_RE.sub("", text).strip()


def remove_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def sanitize_json(text: str) -> str:
    """Fix common LLM JSON errors (fences, wrapping quotes, trailing commas, comments, NaN/Infinity)."""
    cleaned = strip_code_fences(text)
    if len(cleaned) >= 2 and cleaned[0] in "\"'" and cleaned[-1] == cleaned[0]:
        cleaned = cleaned[1:-1].strip()
    cleaned = re.sub(r"(?m)^\s*//.*$", "", cleaned)
    cleaned = remove_trailing_commas(cleaned)
    cleaned = re.sub(r"\bNaN\b", "null", cleaned)
    cleaned = re.sub(r"-?\bInfinity\b", "null", cleaned)
    return cleaned.strip()


def _loads_object(text: str) -> Optional[dict[str, Any]]:
    if not text:
        return None
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


_UNCLOSED = -1
_MISMATCHED = -2


def _object_end(text: str, start: int) -> int:
    """
    Index of the "}" that closes the object opened at text[start].

    Returns _UNCLOSED when the text ends first and _MISMATCHED when a bracket
    closes the wrong opener. String literals are skipped.
    """
    stack: list[str] = ["}"]
    in_string = False
    escape = False
    for i in range(start + 1, len(text)):
        c = text[i]
        if in_string:
            if escape:
                escape = False
            elif c == "\\":
                escape = True
            elif c == '"':
                in_string = False
            continue
        if c == '"':
            in_string = True
        elif c == "{":
            stack.append("}")
        elif c == "[":
            stack.append("]")
        elif c in "}]":
            if stack.pop() != c:
                return _MISMATCHED
            if not stack:
                return i
    return _UNCLOSED


def find_balanced_objects(text: str) -> list[str]:
    """
    Every top-level {...} span whose braces and brackets balance, in order.

    String literals are skipped so braces inside values do not count. A span
    that never closes is not returned.
    """
    spans: list[str] = []
    start = text.find("{")
    while start != -1:
        end = _object_end(text, start)
        if end == _UNCLOSED:
            break
        if end == _MISMATCHED:
            # Abandon this span and rescan after its opening brace
            start = text.find("{", start + 1)
            continue
        spans.append(text[start : end + 1])
        start = text.find("{", end + 1)
    return spans


# ── Strategies ──


def clean_strategy(text: str) -> Optional[dict[str, Any]]:
    return _loads_object(sanitize_json(text))


def balanced_span_strategy(text: str) -> Optional[dict[str, Any]]:
    for span in find_balanced_objects(strip_code_fences(text)):
        parsed = clean_strategy(span)
        if parsed is not None:
            return parsed
    return None


def aggressive_strategy(text: str) -> Optional[dict[str, Any]]:
    first, last = text.find("{"), text.rfind("}")
    if first == -1 or last <= first:
        return None
    candidate = remove_trailing_commas(text[first : last + 1])
    parsed = _loads_object(candidate)
    if parsed is not None:
        return parsed
    # A reply cut off mid-object must stay unparsable, so repair only a span that closes where it ends
    if _object_end(candidate, 0) != len(candidate) - 1:
        return None
    # Last resort: json-repair handles unquoted keys and single quotes
    repaired = repair_json(candidate, return_objects=True)
    if isinstance(repaired, dict) and repaired:
        logger.debug("json_repaired", preview=text[:100])
        return repaired
    return None


EXTRACTION_STRATEGIES: tuple[Strategy, ...] = (
    clean_strategy,
    balanced_span_strategy,
    aggressive_strategy,
)


def parse_json(text: str, max_attempts: int = 3) -> dict[str, Any]:
    """
    Recover a JSON object from model output.

    max_attempts caps how many strategies (in escalation order) are tried.

    Raises:
        UnparsableResponseError: no strategy produced a JSON object.
    """
    if not text or not isinstance(text, str) or not text.strip():
        raise UnparsableResponseError("Empty text provided for JSON parsing", raw_text=text or "")

    strategies = EXTRACTION_STRATEGIES[: max(1, max_attempts)]
    for strategy in strategies:
        parsed = strategy(text)
        if parsed is not None:
            return parsed

    logger.warning("json_parse_failed", preview=text[:200], strategies=len(strategies))
    raise UnparsableResponseError(
        f"JSON parsing failed after {len(strategies)} attempts",
        raw_text=text,
    )


def missing_fields(obj: Any, fields: Iterable[str]) -> list[str]:
    """Required fields that are absent, None or the empty string."""
    if not isinstance(obj, Mapping):
        return list(fields)
    return [f for f in fields if obj.get(f) is None or obj.get(f) == ""]


def validate_required_fields(obj: Any, fields: Iterable[str]) -> bool:
    return not missing_fields(obj, fields)


def extract_json(text: str, required_fields: Iterable[str] = (), max_attempts: int = 3) -> ExtractionResult:
    """
    Parse and validate in one step. Never raises: failure is reported as
    ExtractionStatus.FALLBACK with the raw text, so callers cannot confuse a
    schema-valid object with a substituted default.
    """
    required = list(required_fields)
    try:
        value = parse_json(text, max_attempts=max_attempts)
    except UnparsableResponseError as exc:
        return ExtractionResult(status=ExtractionStatus.FALLBACK, raw_text=text or "", reason=str(exc))

    missing = missing_fields(value, required)
    if missing:
        return ExtractionResult(
            status=ExtractionStatus.FALLBACK,
            raw_text=text,
            missing_fields=missing,
            reason=f"Missing required fields: {', '.join(missing)}",
        )
    return ExtractionResult(status=ExtractionStatus.PARSED, value=value, raw_text=text)
