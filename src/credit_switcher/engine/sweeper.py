"""Periodic restoration of sessions that were moved to the fallback model."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta

from ..context import SwitcherContext
from ..storage import FallbackRecord, ModelRef
from ..storage import journal

logger = logging.getLogger(__name__)

RESTORE_TOAST = "Credits restored. Switched back to primary model."

SKIPPED = "skipped"
RATE_LIMITED = "rate_limited"
COMPLETED = "completed"


@dataclass(slots=True)
class SweepReport:
    """Summary of one sweep pass, keyed by per-session outcome."""

    status: str
    checked_at: int | None = None
    restored: list[str] = field(default_factory=list)
    caught_up: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    foreign: list[str] = field(default_factory=list)
    not_due: list[str] = field(default_factory=list)
    invalid: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {
            "status": self.status,
            "checked_at": self.checked_at,
            "restored": list(self.restored),
            "caught_up": list(self.caught_up),
            "failed": list(self.failed),
            "foreign": list(self.foreign),
            "not_due": list(self.not_due),
            "invalid": list(self.invalid),
        }


class RestoreSweeper:
    """Move fallen-back sessions to their original model once an interval has passed."""

    def __init__(self, context: SwitcherContext) -> None:
        self._context = context

    @property
    def interval(self) -> timedelta:
        return self._context.config.restore.interval

    @property
    def interval_ms(self) -> int:
        return int(self.interval.total_seconds() * 1000)

    async def run_once(self) -> SweepReport:
        """Run a single pass; at most one real pass happens per interval."""

        ctx = self._context
        if not ctx.config.restore.enabled or ctx.state is None:
            return SweepReport(status=SKIPPED)

        now = ctx.now_ms()
        threshold = self.interval_ms
        if now - ctx.state.last_check_at < threshold:
            return SweepReport(status=RATE_LIMITED)

        # Stamp first so a slow pass cannot retrigger itself.
        ctx.state.last_check_at = now
        report = SweepReport(status=COMPLETED, checked_at=now)

        for session_id, record in list(ctx.state.sessions.items()):
            await self._process(session_id, record, now, threshold, report)

        ctx.persist()
        logger.info(
            "Restore sweep finished",
            extra={
                "restored": len(report.restored),
                "caught_up": len(report.caught_up),
                "failed": len(report.failed),
            },
        )
        return report

    async def _process(
        self,
        session_id: str,
        record: FallbackRecord,
        now: int,
        threshold: int,
        report: SweepReport,
    ) -> None:
        ctx = self._context
        if not record.exhausted_at or now - record.exhausted_at < threshold:
            report.not_due.append(session_id)
            return

        original = record.original_ref(ctx.config.primary_model)
        fallback = record.fallback_ref(ctx.config.fallback_model)
        if original is None or fallback is None:
            report.invalid.append(session_id)
            return

        current = await self._session_model(session_id)
        if current is not None and current == original:
            if record.restored_at is None:
                ctx.record_transition(session_id, journal.RESTORE_CATCH_UP, original_model=str(original))
            record.restored_at = now
            report.caught_up.append(session_id)
            return
        if current is not None and current != fallback:
            report.foreign.append(session_id)
            return

        updated = await self._switch(session_id, original)
        record.last_restore_attempt_at = now

        if not updated:
            report.failed.append(session_id)
            await ctx.notify(
                "warning",
                "Failed to restore primary model",
                session_id=session_id,
                model=str(original),
            )
            ctx.record_transition(session_id, journal.RESTORE_FAILED, original_model=str(original))
            return

        record.restored_at = now
        report.restored.append(session_id)
        ctx.record_transition(session_id, journal.RESTORE, original_model=str(original))
        if ctx.config.notifications.toast_on_restore:
            try:
                await ctx.gateway.show_toast(RESTORE_TOAST, "success")
            except Exception as exc:
                await ctx.notify("debug", "Restore toast failed", error=str(exc))

    async def _session_model(self, session_id: str) -> ModelRef | None:
        try:
            return await self._context.gateway.get_session_model(session_id)
        except Exception as exc:
            logger.debug("Session model lookup failed", extra={"session_id": session_id, "error": str(exc)})
            return None

    async def _switch(self, session_id: str, model: ModelRef) -> bool:
        try:
            return bool(await self._context.gateway.set_session_model(session_id, model))
        except Exception as exc:
            logger.debug("Session model update raised", extra={"session_id": session_id, "error": str(exc)})
            return False

    def start(self) -> asyncio.Task:
        """Schedule an immediate pass followed by one pass per interval."""

        self.stop()
        task = asyncio.get_running_loop().create_task(self._loop(), name="credit-switcher-restore")
        self._context.restore_task = task
        return task

    def stop(self) -> None:
        task = self._context.restore_task
        if task is not None and not task.done():
            task.cancel()
        self._context.restore_task = None

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Restore sweep failed")
            await asyncio.sleep(self.interval.total_seconds())


__all__ = ["RestoreSweeper", "SweepReport"]
