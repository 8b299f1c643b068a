"""Configuration models for the credit switcher."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_REQUIRED_PROVIDERS = ("azure-openai", "github-copilot")
DEFAULT_ON_STATUS = (402, 429)
DEFAULT_ON_ERROR_CODES = ("CREDITS_EXHAUSTED", "ACCOUNT_LIMIT_REACHED", "QUOTA_EXCEEDED")
DEFAULT_ON_MESSAGE_MATCHES = ("credit", "quota", "insufficient", "exceeded", "payment", "limit")
DEFAULT_INTERVAL_HOURS = 24.0
MIN_INTERVAL_HOURS = 1.0


class _PolicyModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


def _list_or_default(value: Any, default: tuple[Any, ...]) -> list[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return list(default)


class LicensingPolicy(_PolicyModel):
    """Providers that must be configured on the host before a fallback is legitimate."""

    require_providers: list[str] = Field(
        default_factory=lambda: list(DEFAULT_REQUIRED_PROVIDERS),
        alias="requireProviders",
    )

    @field_validator("require_providers", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> list[str]:
        return [str(item) for item in _list_or_default(value, DEFAULT_REQUIRED_PROVIDERS)]


class RestorePolicy(_PolicyModel):
    enabled: bool = True
    interval_hours: float = Field(default=DEFAULT_INTERVAL_HOURS, alias="intervalHours")

    @field_validator("interval_hours", mode="before")
    @classmethod
    def _normalize_interval(cls, value: Any) -> float:
        try:
            hours = float(value)
        except (TypeError, ValueError):
            return DEFAULT_INTERVAL_HOURS
        # Zero or negative means "unset" and takes the default.
        return hours if hours > 0 else DEFAULT_INTERVAL_HOURS

    @property
    def interval(self) -> timedelta:
        return timedelta(hours=max(MIN_INTERVAL_HOURS, self.interval_hours))


class FallbackRules(_PolicyModel):
    """Signals that classify a session error as credit exhaustion."""

    on_status: list[int] = Field(default_factory=lambda: list(DEFAULT_ON_STATUS), alias="onStatus")
    on_error_codes: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ON_ERROR_CODES), alias="onErrorCodes"
    )
    on_message_matches: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ON_MESSAGE_MATCHES), alias="onMessageMatches"
    )

    @field_validator("on_status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> list[int]:
        statuses: list[int] = []
        for item in _list_or_default(value, DEFAULT_ON_STATUS):
            try:
                statuses.append(int(item))
            except (TypeError, ValueError):
                continue
        return statuses

    @field_validator("on_error_codes", mode="before")
    @classmethod
    def _normalize_codes(cls, value: Any) -> list[str]:
        return [str(item) for item in _list_or_default(value, DEFAULT_ON_ERROR_CODES)]

    @field_validator("on_message_matches", mode="before")
    @classmethod
    def _normalize_matches(cls, value: Any) -> list[str]:
        return [str(item) for item in _list_or_default(value, DEFAULT_ON_MESSAGE_MATCHES)]


class NotificationPolicy(_PolicyModel):
    toast_on_fallback: bool = Field(default=True, alias="toastOnFallback")
    toast_on_restore: bool = Field(default=True, alias="toastOnRestore")
    confirm_on_fallback: bool = Field(default=False, alias="confirmOnFallback")


class SwitcherConfig(_PolicyModel):
    """The resolved switcher configuration, merged over built-in defaults."""

    enabled: bool = True
    primary_model: str | None = Field(default="azure-openai/<deployment-name>", alias="primaryModel")
    fallback_model: str | None = Field(default="llama.cpp/qwen3-coder:a3b", alias="fallbackModel")
    licensing: LicensingPolicy = Field(default_factory=LicensingPolicy)
    restore: RestorePolicy = Field(default_factory=RestorePolicy)
    fallback: FallbackRules = Field(default_factory=FallbackRules)
    notifications: NotificationPolicy = Field(default_factory=NotificationPolicy)

    @field_validator("licensing", "restore", "fallback", "notifications", mode="before")
    @classmethod
    def _default_sections(cls, value: Any) -> Any:
        if value is None or not isinstance(value, (dict, BaseModel)):
            return {}
        return value

    @classmethod
    def disabled(cls) -> SwitcherConfig:
        return cls(enabled=False)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


__all__ = [
    "FallbackRules",
    "LicensingPolicy",
    "NotificationPolicy",
    "RestorePolicy",
    "SwitcherConfig",
]
