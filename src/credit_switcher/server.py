"""FastMCP server bootstrap for credit-switcher."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from fastmcp import FastMCP

from . import __version__
from .config import SwitcherSettings, get_settings
from .context import SwitcherContext
from .engine import FallbackEngine, RestoreSweeper
from .host import HostGateway, HttpHostGateway
from .storage import JournalUnavailableError, TransitionJournal
from .tools import register_tools

logger = logging.getLogger(__name__)

EVENT_RECONNECT_SECONDS = 5.0


def configure_logging(level: str) -> None:
    """Configure root logging for the credit-switcher server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _open_journal(settings: SwitcherSettings, metadata: dict[str, Any]) -> TransitionJournal | None:
    if settings.journal_path is None:
        metadata["error"] = "journal path not configured"
        return None
    try:
        journal = TransitionJournal(settings.journal_path)
        journal.ping()
    except JournalUnavailableError as exc:
        metadata["error"] = str(exc)
        return None
    except Exception as exc:
        logger.warning(
            "Journal could not be opened; continuing without it",
            extra={"journal_path": str(settings.journal_path), "error": str(exc)},
        )
        metadata["error"] = f"{type(exc).__name__}: {exc}"
        return None
    metadata["available"] = True
    return journal


async def pump_events(gateway: HostGateway, engine: FallbackEngine) -> None:
    """Feed the host event stream into the engine, reconnecting after stream errors."""

    iter_events = getattr(gateway, "iter_events")
    while True:
        try:
            async for event in iter_events():
                await engine.handle_event(event)
        except httpx.HTTPError as exc:
            logger.warning("Host event stream interrupted", extra={"error": str(exc)})
        await asyncio.sleep(EVENT_RECONNECT_SECONDS)


def create_server(
    settings: Optional[SwitcherSettings] = None,
    gateway: HostGateway | None = None,
    journal: TransitionJournal | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server wired to a host gateway."""

    settings = settings or get_settings()
    gateway = gateway or HttpHostGateway(
        settings.host_url,
        timeout=settings.host_timeout,
        directory=str(settings.directory) if settings.directory else None,
    )

    journal_metadata: dict[str, Any] = {
        "available": journal is not None,
        "path": str(settings.journal_path) if settings.journal_path else None,
        "error": None,
    }
    if journal is None:
        journal = _open_journal(settings, journal_metadata)

    context = SwitcherContext.bootstrap(settings, gateway, journal=journal)
    engine = FallbackEngine(context)
    sweeper = RestoreSweeper(context)

    @asynccontextmanager
    async def lifespan(_server: FastMCP):
        pump: asyncio.Task | None = None
        if context.config.restore.enabled:
            sweeper.start()
        if settings.subscribe_events and hasattr(gateway, "iter_events"):
            pump = asyncio.get_running_loop().create_task(
                pump_events(gateway, engine), name="credit-switcher-events"
            )
        try:
            yield
        finally:
            sweeper.stop()
            if pump is not None:
                pump.cancel()
            aclose = getattr(gateway, "aclose", None)
            if callable(aclose):
                await aclose()

    server = FastMCP(
        name="Credit Switcher",
        version=__version__,
        instructions=(
            "Credit Switcher moves chat sessions to a fallback model when the provider "
            "reports exhausted credits, replays the last user message, and restores the "
            "original model on a fixed schedule."
        ),
        lifespan=lifespan,
    )

    handles = register_tools(server, context=context, engine=engine, sweeper=sweeper)

    def status_payload() -> str:
        """Return a JSON string summarizing runtime state."""

        sessions = context.state.sessions if context.state is not None else {}
        restored = sum(1 for record in sessions.values() if record.is_restored)
        last_check = context.state.last_check_at if context.state is not None else 0
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "config": {
                "path": str(context.config_path) if context.config_path else None,
                "enabled": context.config.enabled,
                "primary_model": context.config.primary_model,
                "fallback_model": context.config.fallback_model,
                "restore_enabled": context.config.restore.enabled,
                "restore_interval_hours": context.config.restore.interval.total_seconds() / 3600,
            },
            "state": {
                "path": str(context.state_store.path) if context.state_store.path else None,
                "sessions": len(sessions),
                "on_fallback": len(sessions) - restored,
                "restored": restored,
                "last_check_at": (
                    datetime.fromtimestamp(last_check / 1000, tz=timezone.utc).isoformat()
                    if last_check
                    else None
                ),
                "attempted_this_process": len(context.attempted_sessions),
            },
            "journal": journal_metadata,
        }
        return json.dumps(payload)

    server.resource(
        "resource://credit-switcher/status",
        name="credit_switcher_status",
        description="Provides the current runtime status for the credit switcher.",
        mime_type="application/json",
    )(status_payload)

    setattr(server, "switcher_context", context)
    setattr(server, "fallback_engine", engine)
    setattr(server, "restore_sweeper", sweeper)
    setattr(server, "journal_metadata", journal_metadata)
    setattr(server, "tool_handles", handles)
    setattr(server, "status_payload", status_payload)
    return server


def main() -> None:
    """Entry point for running the credit-switcher server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    context: SwitcherContext = getattr(server, "switcher_context")
    logger.info(
        "Launching credit-switcher server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "config_path": str(context.config_path) if context.config_path else None,
            "enabled": context.config.enabled,
        },
    )
    server.run()


if __name__ == "__main__":
    main()
