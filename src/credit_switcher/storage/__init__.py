"""Storage abstractions for credit-switcher."""

from .journal import JournalUnavailableError, TransitionEvent, TransitionJournal
from .models import FallbackRecord, ModelRef, PersistedState
from .state import STATE_FILENAME, StateStore

__all__ = [
    "FallbackRecord",
    "JournalUnavailableError",
    "ModelRef",
    "PersistedState",
    "STATE_FILENAME",
    "StateStore",
    "TransitionEvent",
    "TransitionJournal",
]
