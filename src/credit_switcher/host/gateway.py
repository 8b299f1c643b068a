"""The host surface the switcher depends on, plus an in-memory test double."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from ..storage.models import ModelRef


class HostError(RuntimeError):
    """Raised when a host API call fails."""


@dataclass(slots=True)
class UserMessage:
    """The replayable content of a user-authored message."""

    parts: list[dict[str, Any]]


class HostGateway(Protocol):
    """Session, provider and UI operations consumed from the host application."""

    @property
    def supports_confirm(self) -> bool:
        ...

    async def list_providers(self) -> list[dict[str, Any]]:
        ...

    async def get_session_model(self, session_id: str) -> ModelRef | None:
        ...

    async def set_session_model(self, session_id: str, model: ModelRef) -> bool:
        ...

    async def get_last_user_message(self, session_id: str) -> UserMessage | None:
        ...

    async def send_prompt(self, session_id: str, model: ModelRef, parts: list[dict[str, Any]]) -> None:
        ...

    async def show_toast(self, message: str, variant: str) -> None:
        ...

    async def show_confirm(self, message: str) -> bool | None:
        ...

    async def log(self, level: str, message: str, extra: dict[str, Any] | None = None) -> None:
        ...


@dataclass
class FakeHostGateway:
    """Test double that simulates a host application in memory.

    Methods named in ``failing`` raise :class:`HostError`.
    """

    providers: list[dict[str, Any]] = field(default_factory=list)
    session_models: dict[str, ModelRef | None] = field(default_factory=dict)
    messages: dict[str, UserMessage] = field(default_factory=dict)
    confirm_answer: bool | None = True
    supports_confirm: bool = True
    update_succeeds: bool = True
    failing: set[str] = field(default_factory=set)
    prompts: list[tuple[str, ModelRef, list[dict[str, Any]]]] = field(default_factory=list)
    updates: list[tuple[str, ModelRef]] = field(default_factory=list)
    toasts: list[tuple[str, str]] = field(default_factory=list)
    confirms: list[str] = field(default_factory=list)
    logs: list[tuple[str, str, dict[str, Any]]] = field(default_factory=list)
    calls: list[str] = field(default_factory=list)

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failing:
            raise HostError(f"{name} failed")

    def fail(self, *names: str) -> FakeHostGateway:
        self.failing.update(names)
        return self

    async def list_providers(self) -> list[dict[str, Any]]:
        self._enter("list_providers")
        return list(self.providers)

    async def get_session_model(self, session_id: str) -> ModelRef | None:
        self._enter("get_session_model")
        return self.session_models.get(session_id)

    async def set_session_model(self, session_id: str, model: ModelRef) -> bool:
        self._enter("set_session_model")
        self.updates.append((session_id, model))
        if self.update_succeeds:
            self.session_models[session_id] = model
        return self.update_succeeds

    async def get_last_user_message(self, session_id: str) -> UserMessage | None:
        self._enter("get_last_user_message")
        return self.messages.get(session_id)

    async def send_prompt(self, session_id: str, model: ModelRef, parts: list[dict[str, Any]]) -> None:
        self._enter("send_prompt")
        self.prompts.append((session_id, model, list(parts)))

    async def show_toast(self, message: str, variant: str) -> None:
        self._enter("show_toast")
        self.toasts.append((message, variant))

    async def show_confirm(self, message: str) -> bool | None:
        self._enter("show_confirm")
        self.confirms.append(message)
        return self.confirm_answer

    async def log(self, level: str, message: str, extra: dict[str, Any] | None = None) -> None:
        self.logs.append((level, message, dict(extra or {})))

    async def aclose(self) -> None:
        return None


__all__ = ["FakeHostGateway", "HostError", "HostGateway", "UserMessage"]
