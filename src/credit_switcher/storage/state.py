"""JSON file persistence for fallback state."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from .models import PersistedState

logger = logging.getLogger(__name__)

STATE_FILENAME = "credit-switcher.state.json"


class StateStore:
    """Load and save the persisted state document.

    A store without a path keeps state in memory only; ``save`` is then a no-op.
    """

    def __init__(self, path: Path | None) -> None:
        self._path = Path(path) if path is not None else None

    @property
    def path(self) -> Path | None:
        return self._path

    def ensure(self) -> None:
        """Create an empty state file when none exists yet."""

        if self._path is None or self._path.exists():
            return
        try:
            self._write(PersistedState())
            logger.info("Created state file", extra={"path": str(self._path)})
        except OSError as exc:
            logger.error("Failed to create state file", extra={"path": str(self._path), "error": str(exc)})

    def load(self) -> PersistedState:
        if self._path is None or not self._path.exists():
            return PersistedState()
        try:
            document = json.loads(self._path.read_text(encoding="utf-8"))
            return PersistedState.model_validate(document or {})
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.error("Failed to load state", extra={"path": str(self._path), "error": str(exc)})
            return PersistedState()

    def save(self, state: PersistedState) -> bool:
        if self._path is None:
            return False
        try:
            self._write(state)
        except OSError as exc:
            logger.error("Failed to save state", extra={"path": str(self._path), "error": str(exc)})
            return False
        return True

    def _write(self, state: PersistedState) -> None:
        assert self._path is not None
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(state.to_document(), indent=2)
        fd, tmp_name = tempfile.mkstemp(dir=str(self._path.parent), prefix=".credit-switcher-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, self._path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise


__all__ = ["STATE_FILENAME", "StateStore"]
