"""Prioritized field extraction from loosely shaped session-error events."""

from __future__ import annotations

import json
import math
from typing import Any, Callable, Iterable, Mapping, Sequence

Extractor = Callable[[Mapping[str, Any]], Any]


def field_path(*keys: str) -> Extractor:
    """Build an extractor that walks nested mappings and returns ``None`` on any miss."""

    def extract(event: Mapping[str, Any]) -> Any:
        current: Any = event
        for key in keys:
            if not isinstance(current, Mapping):
                return None
            current = current.get(key)
        return current

    extract.__name__ = "field_path_" + "_".join(keys)
    return extract


def _scoped(name: str) -> list[Extractor]:
    return [
        field_path("properties", "error", name),
        field_path("properties", name),
        field_path("error", name),
        field_path(name),
    ]


STATUS_EXTRACTORS: Sequence[Extractor] = [
    *_scoped("status"),
    field_path("properties", "error", "data", "statusCode"),
]
CODE_EXTRACTORS: Sequence[Extractor] = _scoped("code")
MESSAGE_EXTRACTORS: Sequence[Extractor] = [
    *_scoped("message"),
    field_path("properties", "error", "data", "message"),
]
SESSION_ID_EXTRACTORS: Sequence[Extractor] = [
    field_path("properties", "session", "id"),
    field_path("properties", "sessionId"),
    field_path("properties", "sessionID"),
    field_path("properties", "id"),
    field_path("session", "id"),
    field_path("sessionId"),
    field_path("id"),
]


def first_match(
    event: Mapping[str, Any],
    extractors: Iterable[Extractor],
    convert: Callable[[Any], Any],
) -> Any:
    """Return the first non-``None`` converted value produced by the chain."""

    for extractor in extractors:
        value = convert(extractor(event))
        if value is not None:
            return value
    return None


def _as_status(value: Any) -> int | float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


def _as_text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def extract_status(event: Mapping[str, Any]) -> int | float | None:
    return first_match(event, STATUS_EXTRACTORS, _as_status)


def extract_code(event: Mapping[str, Any]) -> str | None:
    return first_match(event, CODE_EXTRACTORS, _as_text)


def extract_text(event: Mapping[str, Any]) -> str:
    """Lower-cased error message, or the whole event serialized when none is present."""

    message = first_match(event, MESSAGE_EXTRACTORS, _as_text)
    if message is not None:
        return message.lower()
    try:
        return json.dumps(event, default=str).lower()
    except (TypeError, ValueError):
        return ""


def extract_session_id(event: Mapping[str, Any]) -> str | None:
    return first_match(event, SESSION_ID_EXTRACTORS, _as_text)


__all__ = [
    "Extractor",
    "extract_code",
    "extract_session_id",
    "extract_status",
    "extract_text",
    "field_path",
    "first_match",
]
