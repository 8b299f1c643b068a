"""Helpers that normalize loosely shaped host payloads."""

from __future__ import annotations

from typing import Any, Mapping

from ..storage.models import ModelRef

USER_ROLES = {"user", "UserMessage"}
_CONFIRM_KEYS = ("confirmed", "accepted", "value", "ok", "success")


def unwrap(payload: Any) -> Any:
    """Strip an SDK-style ``{"data": ...}`` envelope when present."""

    if isinstance(payload, Mapping) and "data" in payload and payload["data"] is not None:
        return payload["data"]
    return payload


def provider_id(provider: Mapping[str, Any]) -> str | None:
    for key in ("id", "providerID", "name"):
        value = provider.get(key)
        if value:
            return str(value)
    return None


def providers_from(payload: Any) -> list[dict[str, Any]]:
    body = unwrap(payload)
    if isinstance(body, Mapping):
        body = body.get("providers")
    if not isinstance(body, list):
        return []
    return [item for item in body if isinstance(item, Mapping)]


def session_model_from(payload: Any) -> ModelRef | None:
    session = unwrap(payload)
    if not isinstance(session, Mapping):
        return None

    model = session.get("model")
    if not model:
        config = session.get("config")
        model = config.get("model") if isinstance(config, Mapping) else None
    if not model:
        current = session.get("current")
        model = current.get("model") if isinstance(current, Mapping) else None
    if not model:
        return None

    if isinstance(model, str):
        return ModelRef.parse(model)
    if not isinstance(model, Mapping):
        return None

    provider = model.get("providerID") or model.get("providerId") or model.get("provider")
    model_id = model.get("modelID") or model.get("modelId") or model.get("id")
    if provider and model_id:
        return ModelRef(provider_id=str(provider), model_id=str(model_id))
    return None


def _is_user_entry(entry: Mapping[str, Any]) -> bool:
    info = entry.get("info") or entry.get("message") or {}
    if not isinstance(info, Mapping):
        return False
    role = info.get("role") or info.get("type") or info.get("kind")
    return role in USER_ROLES or info.get("user") is True


def last_user_parts(payload: Any) -> list[dict[str, Any]] | None:
    """Return the content parts of the most recent user-authored message."""

    messages = unwrap(payload)
    if not isinstance(messages, list):
        return None
    for entry in reversed(messages):
        if not isinstance(entry, Mapping) or not _is_user_entry(entry):
            continue
        parts = entry.get("parts")
        if isinstance(parts, list) and parts:
            return list(parts)
        return None
    return None


def confirm_answer(payload: Any) -> bool | None:
    body = unwrap(payload)
    if isinstance(body, bool):
        return body
    if isinstance(body, Mapping):
        for key in _CONFIRM_KEYS:
            value = body.get(key)
            if value is not None:
                return value if isinstance(value, bool) else None
    return None


__all__ = [
    "confirm_answer",
    "last_user_parts",
    "provider_id",
    "providers_from",
    "session_model_from",
    "unwrap",
]
