"""Lenient JSON handling for tool parameters.

Some MCP clients send array and object parameters as JSON-encoded strings,
occasionally double-encoded or with typographic quotes pasted in. The types
built here accept either the native value or such a string.
"""

import json
from dataclasses import dataclass
from typing import Annotated, Any

from pydantic import BeforeValidator, Field
from pydantic_core import PydanticCustomError


MAX_REBUILD_DEPTH = 50

SMART_QUOTES = str.maketrans({
    "“": '"',
    "”": '"',
    "„": '"',
    "‟": '"',
    "″": '"',
    "‘": "'",
    "’": "'",
    "‚": "'",
    "‛": "'",
    "′": "'",
})


@dataclass(frozen=True)
class ParseOutcome:
    """Result of parse_json_leniently: either data or an error message."""

    success: bool
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any) -> "ParseOutcome":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, error: str) -> "ParseOutcome":
        return cls(success=False, error=error)


def looks_like_json(text: str) -> bool:
    """Cheap check that text could be a JSON object, array or string."""
    return text.strip()[:1] in ("{", "[", '"')


def describe_decode_error(text: str, exc: json.JSONDecodeError) -> str:
    """Human readable parse error with a snippet around the failure."""
    start = max(0, exc.pos - 30)
    snippet = text[start:exc.pos + 30]
    return f'JSON parse error at position {exc.pos}: {exc.msg}. Context: "...{snippet}..."'


def _json_type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


def _rebuild(value: Any, depth: int = 0) -> Any:
    # Past the cap the subtree is returned untouched.
    if depth > MAX_REBUILD_DEPTH:
        return value
    if type(value) is dict:
        return {key: _rebuild(item, depth + 1) for key, item in value.items()}
    if isinstance(value, list):
        return [_rebuild(item, depth + 1) for item in value]
    return value


def _decode_nested(candidate: str, max_depth: int) -> Any:
    value = json.loads(candidate)
    depth = 1
    while depth < max_depth and isinstance(value, str) and looks_like_json(value):
        try:
            value = json.loads(value.strip())
        except (ValueError, RecursionError):
            break
        depth += 1
    return value


def parse_json_leniently(
    text: str,
    max_depth: int = 3,
    normalize_smart_quotes: bool = True,
) -> ParseOutcome:
    """
    Parse JSON text, recovering from common client mistakes.

    Args:
        text: Raw parameter value
        max_depth: Maximum number of decode passes for values that were
            JSON-encoded more than once
        normalize_smart_quotes: Also try a variant with typographic quotes
            replaced by ASCII quotes

    Returns:
        ParseOutcome with the decoded value (objects rebuilt as plain dicts)
        or the collected diagnostics
    """
    if not text or not text.strip():
        return ParseOutcome.failed("Empty string cannot be parsed as JSON")

    trimmed = text.strip()
    candidates = [trimmed]
    if normalize_smart_quotes:
        normalized = trimmed.translate(SMART_QUOTES)
        if normalized != trimmed:
            candidates.append(normalized)

    errors = []
    for candidate in candidates:
        if not looks_like_json(candidate):
            errors.append(
                f"Does not look like JSON (expected it to start with '{{', '[' or '\"'): "
                f"{candidate[:40]!r}"
            )
            continue

        try:
            value = _decode_nested(candidate, max_depth)
        except json.JSONDecodeError as exc:
            errors.append(describe_decode_error(candidate, exc))
            continue
        except RecursionError:
            errors.append("JSON parse error: value is nested too deeply")
            continue

        return ParseOutcome.ok(_rebuild(value))

    return ParseOutcome.failed("; ".join(errors))


def json_string_to_native(tp: Any, param_name: str, **field_kwargs) -> Any:
    """
    Wrap a type so that JSON strings are decoded before validation.

    Strings go through parse_json_leniently; any other value is handed to
    the wrapped type unchanged.

    Args:
        tp: Target type (e.g. list[int], dict[str, str], a BaseModel)
        param_name: Parameter name used in error messages
        **field_kwargs: Constraints passed to pydantic.Field (min_length, ...)

    Returns:
        An Annotated type usable as a pydantic field annotation
    """
    def coerce(value: Any) -> Any:
        if not isinstance(value, str):
            return value
        outcome = parse_json_leniently(value)
        if not outcome.success:
            raise PydanticCustomError(
                "json_string",
                "Invalid JSON string for parameter '{param}': {error}. "
                "Pass a native value (array or object) instead of a JSON-encoded string.",
                {"param": param_name, "error": outcome.error},
            )
        return outcome.data

    return Annotated[tp, Field(**field_kwargs), BeforeValidator(coerce)]


def _decode_once(text: str, type_name: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise PydanticCustomError(
            "json_decode",
            "[{type_name}] {error}",
            {"type_name": type_name, "error": describe_decode_error(text, exc)},
        ) from exc


def _wrong_shape(type_name: str, value: Any) -> PydanticCustomError:
    return PydanticCustomError(
        "json_shape",
        "Invalid {type_name}: expected {type_name} but got {actual}",
        {"type_name": type_name, "actual": _json_type_name(value)},
    )


def json_array(
    item_type: Any,
    min_length: int | None = None,
    max_length: int | None = None,
    description: str | None = None,
) -> Any:
    """List type that also accepts a JSON-encoded array string."""
    def coerce(value: Any) -> Any:
        if isinstance(value, str):
            value = _decode_once(value, "array")
            if not isinstance(value, list):
                raise _wrong_shape("array", value)
        return value

    return Annotated[
        list[item_type],
        Field(min_length=min_length, max_length=max_length, description=description),
        BeforeValidator(coerce),
    ]


def _object_coercer(type_name: str):
    def coerce(value: Any) -> Any:
        if isinstance(value, str):
            value = _decode_once(value, type_name)
            if not isinstance(value, dict):
                raise _wrong_shape(type_name, value)
        return value
    return coerce


def json_record(description: str | None = None) -> Any:
    """dict[str, str] type that also accepts a JSON-encoded object string."""
    return Annotated[
        dict[str, str],
        Field(description=description),
        BeforeValidator(_object_coercer("fields object")),
    ]


def json_object(model: Any, description: str | None = None) -> Any:
    """Model type that also accepts a JSON-encoded object string."""
    return Annotated[
        model,
        Field(description=description),
        BeforeValidator(_object_coercer("object")),
    ]
