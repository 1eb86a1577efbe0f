from __future__ import annotations

import pytest

from engine.control.commands import HANDLERS, dispatch
from engine.io.controller import ControllerMessage


def _kinds(events, name: str = "error") -> list[str]:
    return [e.payload.get("kind") for e in events if e.name == name]


def test_posted_commands_apply_on_next_update(make_hub, basic_document) -> None:
    hub = make_hub(basic_document)
    events = []
    hub.subscribe(events.append)
    hub.post("set_value", {"name": "x", "value": 0.7})
    assert hub.resolve("x") == pytest.approx(0.2)
    hub.update()
    assert hub.resolve("x") == pytest.approx(0.7)
    assert [e.payload for e in events if e.name == "value_updated"] == [{"name": "x", "value": 0.7}]


def test_unknown_command_and_bad_payload_become_error_events(make_hub, basic_document) -> None:
    hub = make_hub(basic_document)
    events = []
    hub.subscribe(events.append)
    hub.post("explode")
    hub.commands.post_envelope({"event_name": "set_value", "payload": ["x", 1.0]})
    hub.update()
    assert _kinds(events) == ["UnknownCommand", "InvalidPayload"]


def test_handler_failures_are_reported_not_raised(make_hub, basic_document) -> None:
    hub = make_hub(basic_document)
    events = []
    hub.subscribe(events.append)
    hub.post("recall_snapshot", {"slot": "4"})
    hub.post("set_value", {"value": 1.0})
    hub.post("set_value", {"name": "ghost", "value": 1.0})
    hub.post("set_value", {"name": "show", "value": "yes"})
    hub.post("start_learning", {"name": "show"})
    hub.update()
    assert _kinds(events) == [
        "SnapshotNotFound",
        "ValueError",
        "UnknownControl",
        "TypeError",
        "ValueError",
    ]
    assert hub.resolve("show") is True


def test_snapshot_and_transport_commands(make_hub, basic_document) -> None:
    hub = make_hub(basic_document)
    events = []
    hub.subscribe(events.append)
    hub.post("capture_snapshot", {"slot": 3})
    hub.post("set_tempo", {"bpm": 90})
    hub.post("bind", {"channel": 0, "controller": 7, "name": "x"})
    hub.update()
    assert hub.snapshot_slots() == ["3"]
    assert hub.clock.bpm == pytest.approx(90.0)
    assert hub.bindings() == {"x": (0, 7)}
    names = [e.name for e in events]
    assert "snapshots_changed" in names and "transport_changed" in names
    assert "bindings_changed" in names

    hub.post("delete_snapshot", {"slot": "3"})
    hub.post("pause")
    hub.update()
    assert hub.snapshot_slots() == [] and hub.clock.is_paused


def test_reload_command_replaces_the_script(make_hub, basic_document) -> None:
    hub = make_hub(basic_document)
    hub.post("reload", {"document": {"y": {"type": "slider", "default": 0.4}}})
    hub.update()
    assert hub.store.names() == ["y"]


def test_non_mapping_reload_is_reported_and_the_frame_continues(make_hub, basic_document) -> None:
    hub = make_hub(basic_document)
    hub.bind(0, 10, "x")
    events = []
    hub.subscribe(events.append)
    hub.post("reload", {"document": ["not", "a", "mapping"]})
    hub.post("reload", {"document": "x: 1"})
    hub.push_controller_message(ControllerMessage(0, 10, 127))
    hub.update()
    assert _kinds(events) == ["InvalidCurve", "InvalidCurve"]
    # 既存のスクリプトはそのまま、コントローラ入力も同じフレームで反映される
    assert hub.store.names() == ["x", "size", "show", "mode", "sep"]
    assert hub.bindings() == {"x": (0, 10)}
    assert hub.resolve("x") == pytest.approx(1.0)


@pytest.mark.parametrize(
    "event_name, payload, kind",
    [
        ("set_tempo", {"bpm": "fast"}, "ValueError"),
        ("set_tempo", {"bpm": None}, "TypeError"),
        ("bind", {"channel": "a", "controller": 1, "name": "x"}, "ValueError"),
        ("recall_snapshot", {"slot": "0", "duration": "slow"}, "ValueError"),
        ("set_value", {"name": "x", "value": {"nested": 1}}, "TypeError"),
        ("set_bypass", {"name": "ghost"}, "UnknownControl"),
        ("reload", {}, "ValueError"),
    ],
)
def test_malformed_payloads_become_error_events(
    make_hub, basic_document, event_name: str, payload: dict, kind: str
) -> None:
    hub = make_hub(basic_document)
    events = []
    hub.subscribe(events.append)
    hub.post(event_name, payload)
    hub.update()
    assert _kinds(events) == [kind]
    assert hub.resolve("x") == pytest.approx(0.2)
    assert hub.clock.bpm == pytest.approx(60.0)


def test_unexpected_handler_exception_is_logged_and_reported(
    make_hub, monkeypatch, caplog
) -> None:
    def _boom(hub, payload):
        raise RuntimeError("boom")

    monkeypatch.setitem(HANDLERS, "resend", _boom)
    hub = make_hub()
    events = []
    hub.subscribe(events.append)
    hub.post("resend")
    hub.post("pause")
    hub.update()
    assert _kinds(events) == ["RuntimeError"]
    assert hub.clock.is_paused
    assert "command resend raised unexpectedly" in caplog.text


def test_dispatch_returns_success_flag(make_hub) -> None:
    hub = make_hub()
    assert dispatch(hub, {"event_name": "play"})
    assert not dispatch(hub, {"event_name": "set_tempo", "payload": {"bpm": -1}})


def test_every_host_command_has_a_handler() -> None:
    assert set(HANDLERS) == {
        "set_value",
        "set_bypass",
        "set_excluded",
        "capture_snapshot",
        "recall_snapshot",
        "delete_snapshot",
        "clear_snapshots",
        "randomize",
        "start_learning",
        "stop_learning",
        "bind",
        "unbind",
        "set_tempo",
        "tap_tempo",
        "play",
        "pause",
        "advance",
        "reset",
        "set_bridge_enabled",
        "resend",
        "reload",
    }
