"""Chroma-backed journal of fallback and restore transitions."""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

FALLBACK = "fallback"
FALLBACK_DECLINED = "fallback_declined"
RESTORE = "restore"
RESTORE_FAILED = "restore_failed"
RESTORE_CATCH_UP = "restore_catch_up"

EVENT_TYPES = frozenset({FALLBACK, FALLBACK_DECLINED, RESTORE, RESTORE_FAILED, RESTORE_CATCH_UP})

_SUMMARIES = {
    FALLBACK: "switched {session} from {original} to {fallback}",
    FALLBACK_DECLINED: "user declined switching {session} to {fallback}",
    RESTORE: "restored {session} to {original}",
    RESTORE_FAILED: "could not restore {session} to {original}",
    RESTORE_CATCH_UP: "{session} was already back on {original}",
}


class JournalUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class ClientProtocol(Protocol):
    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class TransitionEvent:
    """One model switch (or refusal to switch) for a session."""

    id: str
    session_id: str
    event_type: str
    recorded_at: datetime
    original_model: str | None = None
    fallback_model: str | None = None
    sequence: int = 0
    summary: str = ""

    @classmethod
    def from_row(cls, event_id: str, document: str, metadata: dict[str, Any]) -> TransitionEvent:
        recorded_ms = metadata.get("recorded_at_ms") or 0
        return cls(
            id=event_id,
            session_id=str(metadata.get("session_id", "")),
            event_type=str(metadata.get("event_type", "")),
            recorded_at=datetime.fromtimestamp(recorded_ms / 1000, tz=timezone.utc),
            original_model=metadata.get("original_model") or None,
            fallback_model=metadata.get("fallback_model") or None,
            sequence=int(metadata.get("sequence", 0)),
            summary=document,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.id,
            "session_id": self.session_id,
            "event_type": self.event_type,
            "original_model": self.original_model,
            "fallback_model": self.fallback_model,
            "recorded_at": self.recorded_at.isoformat(),
        }


class TransitionJournal:
    """Append-only transition history stored in a Chroma collection."""

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "credit_switcher_transitions",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._persistent_client
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._collection: CollectionProtocol | None = None
        self._sequence = itertools.count(1)

    @property
    def path(self) -> Path:
        return self._path

    def _persistent_client(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise JournalUnavailableError(
                "chromadb package is not installed; install credit-switcher[journal]"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _transitions(self) -> CollectionProtocol:
        if self._collection is None:
            self._collection = self._client_factory().get_or_create_collection(self._collection_name)
        return self._collection

    def ping(self) -> bool:
        self._transitions()
        return True

    def record_event(
        self,
        session_id: str,
        event_type: str,
        *,
        original_model: str | None = None,
        fallback_model: str | None = None,
    ) -> TransitionEvent:
        """Append one transition; unknown event types are rejected."""

        if event_type not in EVENT_TYPES:
            raise ValueError(f"unknown transition type {event_type!r}")

        recorded_at = self._clock()
        recorded_ms = int(recorded_at.timestamp() * 1000)
        sequence = next(self._sequence)
        event_id = f"{session_id}:{recorded_ms}:{sequence}"
        summary = _SUMMARIES[event_type].format(
            session=session_id,
            original=original_model or "the primary model",
            fallback=fallback_model or "the fallback model",
        )

        # Chroma rejects None metadata values.
        metadata: dict[str, Any] = {
            "session_id": session_id,
            "event_type": event_type,
            "recorded_at_ms": recorded_ms,
            "sequence": sequence,
        }
        if original_model:
            metadata["original_model"] = original_model
        if fallback_model:
            metadata["fallback_model"] = fallback_model

        self._transitions().add(documents=[summary], metadatas=[metadata], ids=[event_id])
        return TransitionEvent.from_row(event_id, summary, metadata)

    def history(self, session_id: str) -> list[TransitionEvent]:
        """All transitions of one session, oldest first."""

        return self.transitions(session_id=session_id)

    def transitions(
        self,
        *,
        session_id: str | None = None,
        event_type: str | None = None,
        model: str | None = None,
        limit: int | None = None,
    ) -> list[TransitionEvent]:
        """Filtered transitions, oldest first; ``limit`` keeps the newest N."""

        conditions: list[dict[str, Any]] = []
        if session_id:
            conditions.append({"session_id": session_id})
        if event_type:
            conditions.append({"event_type": event_type})

        if not conditions:
            where = None
        elif len(conditions) == 1:
            where = conditions[0]
        else:
            where = {"$and": conditions}

        result = self._transitions().get(where=where)
        events = [
            TransitionEvent.from_row(event_id, document, metadata)
            for event_id, document, metadata in zip(
                result.get("ids", []), result.get("documents", []), result.get("metadatas", [])
            )
        ]
        if model:
            events = [event for event in events if model in (event.original_model, event.fallback_model)]
        events.sort(key=lambda event: (event.recorded_at, event.sequence))
        if limit is not None and limit > 0:
            events = events[-limit:]
        return events


__all__ = [
    "EVENT_TYPES",
    "FALLBACK",
    "FALLBACK_DECLINED",
    "RESTORE",
    "RESTORE_CATCH_UP",
    "RESTORE_FAILED",
    "JournalUnavailableError",
    "TransitionEvent",
    "TransitionJournal",
]
