"""Runtime context shared by the fallback engine and the restore sweeper."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from .config import SwitcherSettings
from .host import HostGateway
from .policy import ConfigLoader, SwitcherConfig, config_search_paths, state_path_for
from .storage import PersistedState, StateStore, TransitionJournal

logger = logging.getLogger(__name__)

_LOG_LEVELS = {"debug", "info", "warning", "error"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SwitcherContext:
    """Explicit holder for everything a running switcher shares.

    ``attempted_sessions`` is process-local de-duplication of fallback offers;
    ``state.sessions`` is the durable per-session history. They are kept apart.
    ``pending_sessions`` holds sessions whose offer is still in progress.
    """

    config: SwitcherConfig
    gateway: HostGateway
    state_store: StateStore
    state: PersistedState | None = None
    config_path: Path | None = None
    journal: TransitionJournal | None = None
    clock: Callable[[], datetime] = _utcnow
    attempted_sessions: set[str] = field(default_factory=set)
    pending_sessions: set[str] = field(default_factory=set)
    restore_task: asyncio.Task | None = None

    @classmethod
    def bootstrap(
        cls,
        settings: SwitcherSettings,
        gateway: HostGateway,
        *,
        journal: TransitionJournal | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> SwitcherContext:
        """Resolve config and state from disk the way a host install lays them out."""

        search_paths = config_search_paths(
            config_path=settings.config_path,
            worktree=settings.worktree,
            directory=settings.directory,
            home=settings.home,
        )
        loader = ConfigLoader(search_paths)
        loader.ensure_default()
        loaded = loader.load()
        if loaded.path is None:
            logger.warning(
                "No config found; plugin disabled",
                extra={"paths": [str(path) for path in search_paths]},
            )

        store = StateStore(
            state_path_for(
                loaded.path,
                worktree=settings.worktree,
                directory=settings.directory,
                home=settings.home,
            )
        )
        store.ensure()

        return cls(
            config=loaded.config,
            gateway=gateway,
            state_store=store,
            state=store.load(),
            config_path=loaded.path,
            journal=journal,
            clock=clock or _utcnow,
        )

    def now_ms(self) -> int:
        return int(self.clock().timestamp() * 1000)

    def persist(self) -> bool:
        if self.state is None:
            return False
        return self.state_store.save(self.state)

    async def notify(self, level: str, message: str, **extra: Any) -> None:
        """Log locally and mirror the entry to the host log; host failures are ignored."""

        level = level if level in _LOG_LEVELS else "info"
        getattr(logger, level)(message, extra=extra)
        try:
            await self.gateway.log(level, message, extra)
        except Exception:  # pragma: no cover - best effort
            logger.debug("Host log call failed", exc_info=True)

    def record_transition(
        self,
        session_id: str,
        event_type: str,
        *,
        original_model: str | None = None,
        fallback_model: str | None = None,
    ) -> None:
        if self.journal is None:
            return
        try:
            self.journal.record_event(
                session_id,
                event_type,
                original_model=original_model,
                fallback_model=fallback_model,
            )
        except Exception as exc:  # pragma: no cover - best effort
            logger.debug(
                "Journal write failed",
                extra={"session_id": session_id, "event_type": event_type, "error": str(exc)},
            )


__all__ = ["SwitcherContext"]
