from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx

from credit_switcher.context import SwitcherContext
from credit_switcher.engine import FallbackEngine, FallbackOutcome
from credit_switcher.engine.decision import FALLBACK_TOAST
from credit_switcher.host import FakeHostGateway, HttpHostGateway, UserMessage
from credit_switcher.policy import SwitcherConfig
from credit_switcher.storage import ModelRef, PersistedState, StateStore

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
NOW_MS = int(NOW.timestamp() * 1000)

HI = [{"type": "text", "text": "hi"}]


def _config(**overrides: Any) -> SwitcherConfig:
    document: dict[str, Any] = {
        "primaryModel": "azure/gpt",
        "fallbackModel": "local/qwen",
        "licensing": {"requireProviders": []},
        "fallback": {"onStatus": [429], "onErrorCodes": [], "onMessageMatches": []},
    }
    document.update(overrides)
    return SwitcherConfig.model_validate(document)


def _context(tmp_path: Path, gateway: FakeHostGateway, config: SwitcherConfig | None = None) -> SwitcherContext:
    return SwitcherContext(
        config=config or _config(),
        gateway=gateway,
        state_store=StateStore(tmp_path / "credit-switcher.state.json"),
        state=PersistedState(),
        clock=lambda: NOW,
    )


def _gateway(**kwargs: Any) -> FakeHostGateway:
    gateway = FakeHostGateway(**kwargs)
    gateway.session_models.setdefault("ses-1", ModelRef("azure", "gpt"))
    gateway.messages.setdefault("ses-1", UserMessage(parts=list(HI)))
    return gateway


def _event(status: int = 429, session_id: str | None = "ses-1", **extra: Any) -> dict[str, Any]:
    properties: dict[str, Any] = {"error": {"status": status}}
    if session_id is not None:
        properties["sessionID"] = session_id
    properties.update(extra)
    return {"type": "session.error", "properties": properties}


def _handle(engine: FallbackEngine, event: Any) -> FallbackOutcome:
    return asyncio.run(engine.handle_event(event))


def test_end_to_end_fallback_replays_message(tmp_path: Path) -> None:
    gateway = _gateway()
    context = _context(tmp_path, gateway)
    engine = FallbackEngine(context)

    outcome = _handle(engine, _event())

    assert outcome is FallbackOutcome.SWITCHED
    assert gateway.prompts == [("ses-1", ModelRef("local", "qwen"), HI)]
    assert gateway.updates == []
    record = context.state.sessions["ses-1"]
    assert record.fallback_model == "local/qwen"
    assert record.original_model == "azure/gpt"
    assert record.exhausted_at == NOW_MS
    assert record.last_fallback_at == NOW_MS
    assert record.restored_at is None
    assert gateway.toasts == [(FALLBACK_TOAST, "warning")]
    on_disk = json.loads((tmp_path / "credit-switcher.state.json").read_text(encoding="utf-8"))
    assert on_disk["sessions"]["ses-1"]["fallbackModel"] == "local/qwen"
    assert "ses-1" in context.attempted_sessions


def test_non_matching_event_has_no_effect(tmp_path: Path) -> None:
    gateway = _gateway()
    context = _context(
        tmp_path,
        gateway,
        _config(fallback={"onStatus": [429], "onErrorCodes": ["QUOTA_EXCEEDED"], "onMessageMatches": ["credit"]}),
    )
    event = {
        "type": "session.error",
        "properties": {"sessionID": "ses-1", "error": {"status": 500, "code": "BOOM", "message": "server fell over"}},
    }

    outcome = _handle(FallbackEngine(context), event)

    assert outcome is FallbackOutcome.NOT_EXHAUSTED
    assert gateway.calls == []
    assert gateway.logs == []
    assert context.state.sessions == {}
    assert context.attempted_sessions == set()
    assert not (tmp_path / "credit-switcher.state.json").exists()


def test_other_event_types_and_disabled_config_are_ignored(tmp_path: Path) -> None:
    gateway = _gateway()
    engine = FallbackEngine(_context(tmp_path, gateway))
    assert _handle(engine, {"type": "session.idle", "properties": {"sessionID": "ses-1"}}) is FallbackOutcome.IGNORED
    assert _handle(engine, None) is FallbackOutcome.IGNORED

    disabled = FallbackEngine(_context(tmp_path, gateway, _config(enabled=False)))
    assert _handle(disabled, _event()) is FallbackOutcome.IGNORED
    assert gateway.calls == []


def test_session_offered_fallback_only_once_per_process(tmp_path: Path) -> None:
    gateway = _gateway()
    engine = FallbackEngine(_context(tmp_path, gateway))

    outcomes = [_handle(engine, _event()) for _ in range(3)]

    assert outcomes == [
        FallbackOutcome.SWITCHED,
        FallbackOutcome.ALREADY_ATTEMPTED,
        FallbackOutcome.ALREADY_ATTEMPTED,
    ]
    assert len(gateway.prompts) == 1


def test_declined_confirmation_still_blocks_further_offers(tmp_path: Path) -> None:
    gateway = _gateway(confirm_answer=False)
    context = _context(tmp_path, gateway, _config(notifications={"confirmOnFallback": True}))
    engine = FallbackEngine(context)

    assert _handle(engine, _event()) is FallbackOutcome.DECLINED
    assert _handle(engine, _event()) is FallbackOutcome.ALREADY_ATTEMPTED

    assert len(gateway.confirms) == 1
    assert gateway.prompts == []
    assert context.state.sessions == {}
    assert any(message == "User declined fallback retry" for _, message, _ in gateway.logs)


def test_confirmation_failures_default_to_proceed(tmp_path: Path) -> None:
    gateway = _gateway().fail("show_confirm")
    engine = FallbackEngine(_context(tmp_path, gateway, _config(notifications={"confirmOnFallback": True})))

    assert _handle(engine, _event()) is FallbackOutcome.SWITCHED
    assert any(level == "debug" and message == "Confirm prompt failed" for level, message, _ in gateway.logs)


def test_unsupported_confirmation_is_skipped(tmp_path: Path) -> None:
    gateway = _gateway(supports_confirm=False, confirm_answer=False)
    engine = FallbackEngine(_context(tmp_path, gateway, _config(notifications={"confirmOnFallback": True})))

    assert _handle(engine, _event()) is FallbackOutcome.SWITCHED
    assert "show_confirm" not in gateway.calls


def test_missing_required_provider_blocks_fallback(tmp_path: Path) -> None:
    gateway = _gateway(providers=[{"id": "p1"}])
    context = _context(tmp_path, gateway, _config(licensing={"requireProviders": ["p1", "p2"]}))

    assert _handle(FallbackEngine(context), _event()) is FallbackOutcome.UNLICENSED
    assert gateway.prompts == []
    assert "ses-1" not in context.attempted_sessions


def test_required_providers_match_case_insensitively(tmp_path: Path) -> None:
    gateway = _gateway(providers=[{"id": "Azure"}, {"providerID": "github-copilot"}])
    config = _config(licensing={"requireProviders": ["azure", "GitHub-Copilot"]})

    assert _handle(FallbackEngine(_context(tmp_path, gateway, config)), _event()) is FallbackOutcome.SWITCHED


def test_empty_or_failing_provider_listing_blocks_fallback(tmp_path: Path) -> None:
    config = _config(licensing={"requireProviders": ["azure"]})

    empty = _gateway(providers=[])
    assert _handle(FallbackEngine(_context(tmp_path, empty, config)), _event()) is FallbackOutcome.UNLICENSED

    failing = _gateway(providers=[{"id": "azure"}]).fail("list_providers")
    assert _handle(FallbackEngine(_context(tmp_path, failing, config)), _event()) is FallbackOutcome.UNLICENSED


def test_session_on_other_provider_is_left_alone(tmp_path: Path) -> None:
    gateway = _gateway(session_models={"ses-1": ModelRef("p3", "m3")})
    config = _config(primaryModel="p1/m1", fallbackModel="p2/m2")

    assert _handle(FallbackEngine(_context(tmp_path, gateway, config)), _event()) is FallbackOutcome.FOREIGN_MODEL
    assert gateway.prompts == []
    assert gateway.updates == []


def test_unknown_current_model_records_configured_primary(tmp_path: Path) -> None:
    gateway = _gateway().fail("get_session_model")
    context = _context(tmp_path, gateway)

    assert _handle(FallbackEngine(context), _event()) is FallbackOutcome.SWITCHED
    assert context.state.sessions["ses-1"].original_model == "azure/gpt"


def test_other_model_on_primary_provider_is_recorded_as_original(tmp_path: Path) -> None:
    gateway = _gateway(session_models={"ses-1": ModelRef("azure", "gpt-mini")})
    context = _context(tmp_path, gateway)

    assert _handle(FallbackEngine(context), _event()) is FallbackOutcome.SWITCHED
    assert context.state.sessions["ses-1"].original_model == "azure/gpt-mini"


def test_malformed_fallback_model_aborts(tmp_path: Path) -> None:
    gateway = _gateway()
    context = _context(tmp_path, gateway, _config(fallbackModel="qwen"))

    assert _handle(FallbackEngine(context), _event()) is FallbackOutcome.INVALID_CONFIG
    assert gateway.prompts == []
    assert ("error", "Invalid fallbackModel in config") in [(level, message) for level, message, _ in gateway.logs]


def test_missing_session_id_aborts(tmp_path: Path) -> None:
    gateway = _gateway()

    assert _handle(FallbackEngine(_context(tmp_path, gateway)), _event(session_id=None)) is FallbackOutcome.NO_SESSION
    assert gateway.logs[0][:2] == ("warning", "Credit error without session id")


def test_missing_user_message_aborts(tmp_path: Path) -> None:
    gateway = _gateway(messages={"ses-1": UserMessage(parts=[])})
    context = _context(tmp_path, gateway)

    assert _handle(FallbackEngine(context), _event()) is FallbackOutcome.NO_MESSAGE
    assert gateway.prompts == []
    assert context.attempted_sessions == set()


def test_toast_failure_is_not_fatal(tmp_path: Path) -> None:
    gateway = _gateway().fail("show_toast")
    context = _context(tmp_path, gateway)

    assert _handle(FallbackEngine(context), _event()) is FallbackOutcome.SWITCHED
    assert "ses-1" in context.state.sessions
    assert ("debug", "Toast failed") in [(level, message) for level, message, _ in gateway.logs]


def test_toast_can_be_disabled(tmp_path: Path) -> None:
    gateway = _gateway()
    context = _context(tmp_path, gateway, _config(notifications={"toastOnFallback": False}))

    assert _handle(FallbackEngine(context), _event()) is FallbackOutcome.SWITCHED
    assert gateway.toasts == []


def test_send_failure_leaves_no_record(tmp_path: Path) -> None:
    gateway = _gateway().fail("send_prompt")
    context = _context(tmp_path, gateway)

    assert _handle(FallbackEngine(context), _event()) is FallbackOutcome.SEND_FAILED
    assert context.state.sessions == {}
    assert "ses-1" in context.attempted_sessions


def test_new_episode_overwrites_restored_record(tmp_path: Path) -> None:
    gateway = _gateway()
    context = _context(tmp_path, gateway)
    engine = FallbackEngine(context)
    assert _handle(engine, _event()) is FallbackOutcome.SWITCHED
    context.state.sessions["ses-1"].restored_at = NOW_MS

    # A fresh process starts with an empty attempted set.
    context.attempted_sessions.clear()
    assert _handle(engine, _event()) is FallbackOutcome.SWITCHED

    assert context.state.sessions["ses-1"].restored_at is None


def test_handler_never_raises(tmp_path: Path) -> None:
    class ExplodingGateway(FakeHostGateway):
        async def send_prompt(self, session_id, model, parts):  # type: ignore[override]
            raise ZeroDivisionError("boom")

        async def log(self, level, message, extra=None):  # type: ignore[override]
            raise RuntimeError("log down")

    gateway = ExplodingGateway(
        session_models={"ses-1": ModelRef("azure", "gpt")},
        messages={"ses-1": UserMessage(parts=list(HI))},
    )

    assert _handle(FallbackEngine(_context(tmp_path, gateway)), _event()) is FallbackOutcome.SEND_FAILED


class SlowHistoryGateway(FakeHostGateway):
    async def get_last_user_message(self, session_id):  # type: ignore[override]
        await asyncio.sleep(0.01)
        return await super().get_last_user_message(session_id)


def test_concurrent_duplicate_events_replay_once(tmp_path: Path) -> None:
    gateway = SlowHistoryGateway(
        session_models={"ses-1": ModelRef("azure", "gpt")},
        messages={"ses-1": UserMessage(parts=list(HI))},
    )
    context = _context(tmp_path, gateway)
    engine = FallbackEngine(context)

    async def scenario() -> list[FallbackOutcome]:
        return list(await asyncio.gather(engine.handle_event(_event()), engine.handle_event(_event())))

    outcomes = asyncio.run(scenario())

    assert sorted(outcome.value for outcome in outcomes) == ["already_attempted", "switched"]
    assert len(gateway.prompts) == 1
    assert context.pending_sessions == set()
    assert context.attempted_sessions == {"ses-1"}


def test_aborted_offer_releases_session_for_later_events(tmp_path: Path) -> None:
    gateway = SlowHistoryGateway(
        session_models={"ses-1": ModelRef("azure", "gpt")},
        messages={"ses-1": UserMessage(parts=[])},
    )
    context = _context(tmp_path, gateway)
    engine = FallbackEngine(context)

    async def scenario() -> list[FallbackOutcome]:
        return list(await asyncio.gather(engine.handle_event(_event()), engine.handle_event(_event())))

    assert sorted(outcome.value for outcome in asyncio.run(scenario())) == ["already_attempted", "no_message"]
    assert context.pending_sessions == set()
    assert context.attempted_sessions == set()

    gateway.messages["ses-1"] = UserMessage(parts=list(HI))
    assert _handle(engine, _event()) is FallbackOutcome.SWITCHED


def test_newest_user_message_without_parts_is_not_replayed(tmp_path: Path) -> None:
    history = [
        {"info": {"role": "user"}, "parts": [{"type": "text", "text": "old prompt"}]},
        {"info": {"role": "assistant"}, "parts": [{"type": "text", "text": "reply"}]},
        {"info": {"role": "user"}, "parts": []},
    ]
    sent: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET" and request.url.path == "/session/ses-1":
            return httpx.Response(200, json={"model": {"providerID": "azure", "modelID": "gpt"}})
        if request.method == "GET" and request.url.path == "/session/ses-1/message":
            return httpx.Response(200, json=history)
        if request.method == "POST" and request.url.path == "/session/ses-1/message":
            sent.append(request)
        return httpx.Response(200, json=True)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://host")
    context = _context(tmp_path, FakeHostGateway())
    context.gateway = HttpHostGateway("http://host", client=client)

    assert _handle(FallbackEngine(context), _event()) is FallbackOutcome.NO_MESSAGE
    assert sent == []
    assert context.state.sessions == {}
