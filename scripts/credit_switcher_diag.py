"""credit-switcher diagnostics CLI."""

from __future__ import annotations

import argparse
import json
from datetime import datetime, timezone

from credit_switcher.config import SwitcherSettings, get_settings
from credit_switcher.policy import ConfigLoader, config_search_paths, state_path_for
from credit_switcher.storage import JournalUnavailableError, PersistedState, StateStore, TransitionJournal
from credit_switcher.storage.journal import EVENT_TYPES


def _iso(millis: int | None) -> str | None:
    if not millis:
        return None
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).isoformat()


def load_state(settings: SwitcherSettings) -> tuple[StateStore, PersistedState]:
    paths = config_search_paths(
        config_path=settings.config_path,
        worktree=settings.worktree,
        directory=settings.directory,
        home=settings.home,
    )
    config_path = ConfigLoader(paths).existing_path()
    store = StateStore(
        state_path_for(
            config_path,
            worktree=settings.worktree,
            directory=settings.directory,
            home=settings.home,
        )
    )
    return store, store.load()


def load_journal(settings: SwitcherSettings) -> TransitionJournal:
    if settings.journal_path is None:
        print("Journal unavailable: CREDIT_SWITCHER_JOURNAL_PATH is not set")
        raise SystemExit(1)
    try:
        journal = TransitionJournal(settings.journal_path)
        journal.ping()
    except JournalUnavailableError as exc:
        print(f"Journal unavailable: {exc}")
        raise SystemExit(1)
    return journal


def cmd_sessions(args: argparse.Namespace) -> None:
    settings = get_settings()
    store, state = load_state(settings)
    records = [
        {
            "session_id": session_id,
            "status": "restored" if record.is_restored else "fallback",
            "original_model": record.original_model,
            "fallback_model": record.fallback_model,
            "exhausted_at": _iso(record.exhausted_at),
            "restored_at": _iso(record.restored_at),
            "last_restore_attempt_at": _iso(record.last_restore_attempt_at),
        }
        for session_id, record in sorted(state.sessions.items())
        if args.all or not record.is_restored
    ]
    if args.json:
        print(json.dumps({"path": str(store.path) if store.path else None, "sessions": records}, indent=2))
    else:
        for record in records:
            print(
                f"{record['session_id']} [{record['status']}] "
                f"{record['fallback_model']} -> {record['original_model']}"
            )


def cmd_metrics(args: argparse.Namespace) -> None:
    settings = get_settings()
    _, state = load_state(settings)

    restored = [record for record in state.sessions.values() if record.is_restored]
    pending_retry = [
        record
        for record in state.sessions.values()
        if not record.is_restored and record.last_restore_attempt_at is not None
    ]
    metrics = {
        "sessions_total": len(state.sessions),
        "on_fallback": len(state.sessions) - len(restored),
        "restored": len(restored),
        "failed_restore_pending_retry": len(pending_retry),
        "last_check_at": _iso(state.last_check_at),
    }
    print(json.dumps(metrics, indent=2))


def cmd_transitions(args: argparse.Namespace) -> None:
    settings = get_settings()
    journal = load_journal(settings)
    try:
        events = journal.transitions(
            session_id=args.session_id,
            event_type=args.event_type,
            model=args.model,
            limit=args.limit,
        )
    except JournalUnavailableError as exc:
        print(f"Journal unavailable: {exc}")
        raise SystemExit(1)

    print(json.dumps([event.as_dict() for event in events], indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="credit-switcher diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_sessions = sub.add_parser("sessions", help="List persisted fallback records")
    p_sessions.add_argument("--all", action="store_true", help="Include restored sessions")
    p_sessions.add_argument("--json", action="store_true", help="Output JSON")
    p_sessions.set_defaults(func=cmd_sessions)

    p_metrics = sub.add_parser("metrics", help="Show fallback/restore counts")
    p_metrics.set_defaults(func=cmd_metrics)

    p_transitions = sub.add_parser("transitions", help="List journaled transitions")
    p_transitions.add_argument("--session-id")
    p_transitions.add_argument("--model", help="Only transitions to or from this provider/model")
    p_transitions.add_argument(
        "--event-type",
        choices=sorted(EVENT_TYPES),
    )
    p_transitions.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N transitions",
    )
    p_transitions.set_defaults(func=cmd_transitions)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
