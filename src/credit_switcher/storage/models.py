"""Data models for persisted fallback tracking."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


def _epoch_millis(value: Any) -> int:
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"timestamp must be finite, got {value!r}")
    return int(number)


@dataclass(frozen=True, slots=True)
class ModelRef:
    """A provider-qualified model reference such as ``azure-openai/gpt-4o``."""

    provider_id: str
    model_id: str

    @classmethod
    def parse(cls, value: Any) -> ModelRef | None:
        """Parse ``provider/model``; the model part may contain further slashes."""

        if not value or not isinstance(value, str):
            return None
        provider_id, sep, model_id = value.partition("/")
        if not sep:
            return None
        return cls(provider_id=provider_id, model_id=model_id)

    def as_host_payload(self) -> dict[str, str]:
        return {"providerID": self.provider_id, "modelID": self.model_id}

    def __str__(self) -> str:
        return f"{self.provider_id}/{self.model_id}"


class FallbackRecord(BaseModel):
    """Per-session fallback history; timestamps are epoch milliseconds."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    exhausted_at: int | None = Field(default=None, alias="exhaustedAt")
    last_fallback_at: int | None = Field(default=None, alias="lastFallbackAt")
    original_model: str | None = Field(default=None, alias="originalModel")
    fallback_model: str | None = Field(default=None, alias="fallbackModel")
    restored_at: int | None = Field(default=None, alias="restoredAt")
    last_restore_attempt_at: int | None = Field(default=None, alias="lastRestoreAttemptAt")

    @field_validator(
        "exhausted_at",
        "last_fallback_at",
        "restored_at",
        "last_restore_attempt_at",
        mode="before",
    )
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> int | None:
        if value is None or value == "":
            return None
        return _epoch_millis(value)

    @property
    def is_restored(self) -> bool:
        return self.restored_at is not None

    def original_ref(self, default: str | None = None) -> ModelRef | None:
        return ModelRef.parse(self.original_model or default)

    def fallback_ref(self, default: str | None = None) -> ModelRef | None:
        return ModelRef.parse(self.fallback_model or default)


class PersistedState(BaseModel):
    """The on-disk document: fallback records keyed by session id."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sessions: dict[str, FallbackRecord] = Field(default_factory=dict)
    last_check_at: int = Field(default=0, alias="lastCheckAt")

    @field_validator("sessions", mode="before")
    @classmethod
    def _drop_malformed_records(cls, value: Any) -> dict[str, Any]:
        if not isinstance(value, dict):
            return {}
        records: dict[str, Any] = {}
        for session_id, raw in value.items():
            try:
                records[str(session_id)] = FallbackRecord.model_validate(raw)
            except (ValidationError, TypeError, ValueError):
                logger.warning("Dropping malformed fallback record", extra={"session_id": session_id})
        return records

    @field_validator("last_check_at", mode="before")
    @classmethod
    def _coerce_last_check(cls, value: Any) -> int:
        try:
            return _epoch_millis(value or 0)
        except (TypeError, ValueError):
            return 0

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


__all__ = ["FallbackRecord", "ModelRef", "PersistedState"]
