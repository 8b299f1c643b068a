from __future__ import annotations

import json
from pathlib import Path

from credit_switcher.storage import FallbackRecord, PersistedState, StateStore


def test_ensure_creates_empty_state_file(tmp_path: Path) -> None:
    path = tmp_path / ".opencode" / "credit-switcher.state.json"
    store = StateStore(path)

    store.ensure()

    assert json.loads(path.read_text(encoding="utf-8")) == {"sessions": {}, "lastCheckAt": 0}


def test_ensure_leaves_existing_file_alone(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"sessions": {}, "lastCheckAt": 99}), encoding="utf-8")

    StateStore(path).ensure()

    assert json.loads(path.read_text(encoding="utf-8"))["lastCheckAt"] == 99


def test_save_and_load_preserve_restored_records(tmp_path: Path) -> None:
    store = StateStore(tmp_path / "state.json")
    state = PersistedState(
        sessions={
            "s1": FallbackRecord(
                exhausted_at=1,
                last_fallback_at=1,
                original_model="a/b",
                fallback_model="c/d",
                restored_at=5,
                last_restore_attempt_at=5,
            )
        },
        last_check_at=5,
    )

    assert store.save(state)
    loaded = store.load()

    assert loaded.sessions["s1"].restored_at == 5
    assert loaded.sessions["s1"].is_restored
    assert loaded.last_check_at == 5
    assert not list(tmp_path.glob("*.tmp"))


def test_load_tolerates_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text("{oops", encoding="utf-8")

    state = StateStore(path).load()

    assert state.sessions == {}
    assert state.last_check_at == 0


def test_store_without_path_is_memory_only() -> None:
    store = StateStore(None)
    store.ensure()

    assert store.load() == PersistedState()
    assert store.save(PersistedState()) is False


def test_load_drops_non_finite_timestamps(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text(
        '{"sessions": {"bad": {"exhaustedAt": Infinity}, "huge": {"restoredAt": 1e400},'
        ' "ok": {"exhaustedAt": 7}}, "lastCheckAt": -Infinity}',
        encoding="utf-8",
    )

    state = StateStore(path).load()

    assert set(state.sessions) == {"ok"}
    assert state.sessions["ok"].exhausted_at == 7
    assert state.last_check_at == 0
