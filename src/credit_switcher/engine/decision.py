"""React to credit-exhaustion session errors by replaying on the fallback model."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Mapping

from ..context import SwitcherContext
from ..host import UserMessage
from ..host.payloads import provider_id
from ..policy import FallbackRules
from ..storage import FallbackRecord, ModelRef
from ..storage import journal
from .extractors import extract_code, extract_session_id, extract_status, extract_text

logger = logging.getLogger(__name__)

SESSION_ERROR = "session.error"
FALLBACK_TOAST = "Credits exhausted. Switched to fallback model."
CONFIRM_PROMPT = "Credits exhausted. Retry with fallback model?"


class FallbackOutcome(str, Enum):
    IGNORED = "ignored"
    NOT_EXHAUSTED = "not_exhausted"
    NO_SESSION = "no_session"
    ALREADY_ATTEMPTED = "already_attempted"
    UNLICENSED = "unlicensed"
    INVALID_CONFIG = "invalid_config"
    FOREIGN_MODEL = "foreign_model"
    NO_MESSAGE = "no_message"
    DECLINED = "declined"
    SEND_FAILED = "send_failed"
    SWITCHED = "switched"
    ERROR = "error"


def is_credit_exhausted(event: Mapping[str, Any], rules: FallbackRules) -> bool:
    """Any one of status, error code or message text matching is enough."""

    status = extract_status(event)
    code = extract_code(event)
    text = extract_text(event)

    status_matches = status is not None and status in rules.on_status
    code_matches = bool(code) and any(value.lower() == code.lower() for value in rules.on_error_codes)
    text_matches = bool(text) and any(value.lower() in text for value in rules.on_message_matches)
    return status_matches or code_matches or text_matches


class FallbackEngine:
    """Decide on and perform the one-shot switch to the fallback model."""

    def __init__(self, context: SwitcherContext) -> None:
        self._context = context

    async def handle_event(self, event: Any) -> FallbackOutcome:
        """Process one host event; never raises into the host's dispatcher."""

        try:
            return await self._handle(event)
        except Exception:
            logger.exception("Fallback handler failed")
            return FallbackOutcome.ERROR

    async def _handle(self, event: Any) -> FallbackOutcome:
        ctx = self._context
        config = ctx.config

        if not isinstance(event, Mapping) or event.get("type") != SESSION_ERROR:
            return FallbackOutcome.IGNORED
        if not config.enabled:
            return FallbackOutcome.IGNORED
        if not is_credit_exhausted(event, config.fallback):
            return FallbackOutcome.NOT_EXHAUSTED

        session_id = extract_session_id(event)
        if not session_id:
            await ctx.notify("warning", "Credit error without session id", event_type=event.get("type"))
            return FallbackOutcome.NO_SESSION

        if session_id in ctx.attempted_sessions or session_id in ctx.pending_sessions:
            return FallbackOutcome.ALREADY_ATTEMPTED

        ctx.pending_sessions.add(session_id)
        try:
            return await self._offer(session_id)
        finally:
            ctx.pending_sessions.discard(session_id)

    async def _offer(self, session_id: str) -> FallbackOutcome:
        ctx = self._context
        config = ctx.config

        if not await self._has_required_providers():
            await ctx.notify(
                "warning",
                "Required providers not configured; skipping fallback",
                required=list(config.licensing.require_providers),
            )
            return FallbackOutcome.UNLICENSED

        primary = ModelRef.parse(config.primary_model)
        fallback = ModelRef.parse(config.fallback_model)
        if fallback is None:
            await ctx.notify(
                "error",
                "Invalid fallbackModel in config",
                value=config.fallback_model,
                path=str(ctx.config_path) if ctx.config_path else None,
            )
            return FallbackOutcome.INVALID_CONFIG

        current = await self._session_model(session_id)
        if primary is not None and current is not None and current.provider_id != primary.provider_id:
            return FallbackOutcome.FOREIGN_MODEL

        message = await self._last_user_message(session_id)
        if message is None or not message.parts:
            await ctx.notify("warning", "No user message to retry", session_id=session_id)
            return FallbackOutcome.NO_MESSAGE

        if not await self._confirm(session_id, fallback):
            ctx.attempted_sessions.add(session_id)
            await ctx.notify("info", "User declined fallback retry", session_id=session_id)
            ctx.record_transition(session_id, journal.FALLBACK_DECLINED, fallback_model=str(fallback))
            return FallbackOutcome.DECLINED

        ctx.attempted_sessions.add(session_id)
        await ctx.notify("info", "Retrying with fallback model", session_id=session_id, fallback=str(fallback))

        try:
            await ctx.gateway.send_prompt(session_id, fallback, message.parts)
        except Exception as exc:
            await ctx.notify(
                "error",
                "Failed to replay prompt on fallback model",
                session_id=session_id,
                fallback=str(fallback),
                error=str(exc),
            )
            return FallbackOutcome.SEND_FAILED

        original = current or primary
        now = ctx.now_ms()
        if ctx.state is not None:
            ctx.state.sessions[session_id] = FallbackRecord(
                exhausted_at=now,
                last_fallback_at=now,
                original_model=str(original) if original else None,
                fallback_model=str(fallback),
            )
            ctx.persist()
        ctx.record_transition(
            session_id,
            journal.FALLBACK,
            original_model=str(original) if original else None,
            fallback_model=str(fallback),
        )

        if config.notifications.toast_on_fallback:
            try:
                await ctx.gateway.show_toast(FALLBACK_TOAST, "warning")
            except Exception as exc:
                await ctx.notify("debug", "Toast failed", error=str(exc))

        return FallbackOutcome.SWITCHED

    async def _has_required_providers(self) -> bool:
        required = self._context.config.licensing.require_providers
        if not required:
            return True

        try:
            providers = await self._context.gateway.list_providers()
        except Exception as exc:
            await self._context.notify("warning", "Provider listing failed", error=str(exc))
            return False
        if not providers:
            return False

        available = {ident.lower() for ident in (provider_id(item) for item in providers) if ident}
        return all(str(value).lower() in available for value in required)

    async def _session_model(self, session_id: str) -> ModelRef | None:
        try:
            return await self._context.gateway.get_session_model(session_id)
        except Exception as exc:
            await self._context.notify("debug", "Session model lookup failed", session_id=session_id, error=str(exc))
            return None

    async def _last_user_message(self, session_id: str) -> UserMessage | None:
        try:
            return await self._context.gateway.get_last_user_message(session_id)
        except Exception as exc:
            await self._context.notify("warning", "Message history lookup failed", session_id=session_id, error=str(exc))
            return None

    async def _confirm(self, session_id: str, fallback: ModelRef) -> bool:
        """Ask before switching when configured; an unanswerable prompt means proceed."""

        ctx = self._context
        if not ctx.config.notifications.confirm_on_fallback or not ctx.gateway.supports_confirm:
            return True
        try:
            answer = await ctx.gateway.show_confirm(CONFIRM_PROMPT)
        except Exception as exc:
            await ctx.notify(
                "debug",
                "Confirm prompt failed",
                session_id=session_id,
                fallback=str(fallback),
                error=str(exc),
            )
            return True
        return True if answer is None else answer


__all__ = ["FallbackEngine", "FallbackOutcome", "is_credit_exhausted"]
