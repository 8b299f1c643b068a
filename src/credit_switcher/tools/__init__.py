"""Tool registration for the credit-switcher MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastmcp import FastMCP

from ..context import SwitcherContext
from ..engine import FallbackEngine, RestoreSweeper

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    report_session_error: Any
    run_restore_sweep: Any
    list_fallback_sessions: Any
    attempted_sessions: Any


def _iso(millis: int | None) -> str | None:
    if not millis:
        return None
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).isoformat()


def register_tools(
    server: FastMCP,
    *,
    context: SwitcherContext,
    engine: FallbackEngine,
    sweeper: RestoreSweeper,
) -> ToolHandles:
    """Register credit-switcher tools on the server."""

    async def _report_session_error(event: dict[str, Any]) -> dict[str, Any]:
        """Feed a host session-error event to the fallback engine."""

        outcome = await engine.handle_event(event)
        logger.debug("Reported session error", extra={"outcome": outcome.value})
        return {"outcome": outcome.value}

    async def _run_restore_sweep() -> dict[str, Any]:
        """Run one restore pass now (still subject to the once-per-interval limit)."""

        report = await sweeper.run_once()
        return report.as_dict()

    def _list_fallback_sessions(include_restored: bool = True) -> list[dict[str, Any]]:
        """List persisted fallback records."""

        if context.state is None:
            return []
        sessions = []
        for session_id, record in sorted(context.state.sessions.items()):
            if record.is_restored and not include_restored:
                continue
            sessions.append(
                {
                    "session_id": session_id,
                    "original_model": record.original_model,
                    "fallback_model": record.fallback_model,
                    "exhausted_at": _iso(record.exhausted_at),
                    "last_fallback_at": _iso(record.last_fallback_at),
                    "restored_at": _iso(record.restored_at),
                    "last_restore_attempt_at": _iso(record.last_restore_attempt_at),
                    "status": "restored" if record.is_restored else "fallback",
                }
            )
        return sessions

    def _attempted_sessions() -> list[str]:
        """Session ids already offered a fallback by this process."""

        return sorted(context.attempted_sessions)

    tool_report = server.tool(
        name="report_session_error",
        description=(
            "Submit a host session.error event. If it signals credit exhaustion the session "
            "is retried once on the configured fallback model."
        ),
    )(_report_session_error)

    tool_sweep = server.tool(
        name="run_restore_sweep",
        description="Attempt to move fallen-back sessions to their original model.",
    )(_run_restore_sweep)

    tool_list = server.tool(
        name="list_fallback_sessions",
        description="List sessions with fallback history, optionally hiding restored ones.",
    )(_list_fallback_sessions)

    tool_attempted = server.tool(
        name="attempted_sessions",
        description="List session ids that have already been offered a fallback in this process.",
    )(_attempted_sessions)

    return ToolHandles(
        report_session_error=tool_report,
        run_restore_sweep=tool_sweep,
        list_fallback_sessions=tool_list,
        attempted_sessions=tool_attempted,
    )


__all__ = ["ToolHandles", "register_tools"]
