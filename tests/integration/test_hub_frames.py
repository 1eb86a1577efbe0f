from __future__ import annotations

import copy

import pytest

from engine.control.errors import StaleMapping
from engine.control.hub import HubOptions
from engine.io.controller import ControllerMessage

# What this tests
# - フレーム単位のシナリオ（recall 補間、ランダマイズ、ホットリロード、トランスポート）。


def _advance(hub, frames: int) -> None:
    for _ in range(frames):
        hub.update()


@pytest.mark.integration
def test_recall_interpolates_from_current_value_over_beats(make_hub, basic_document) -> None:
    hub = make_hub(basic_document)
    events = []
    hub.subscribe(events.append)
    _advance(hub, 10)
    assert hub.clock.position_in_beats() == pytest.approx(10.0)

    hub.capture("1")
    hub.set_value("x", 0.9)
    hub.recall("1", duration=4)
    assert hub.resolve("x") == pytest.approx(0.9)
    _advance(hub, 2)
    assert hub.resolve("x") == pytest.approx(0.55)
    _advance(hub, 2)
    assert hub.resolve("x") == pytest.approx(0.2)

    # 完了時に基底値へ確定して補間は外れる
    assert hub.interpolation is None
    assert hub.store.base_value("x") == pytest.approx(0.2)
    assert hub.source_of("x") == "base"
    ended = [e for e in events if e.name == "transition_ended"]
    assert len(ended) == 1 and ended[0].payload["slot"] == "1"


@pytest.mark.integration
def test_new_recall_replaces_running_interpolation(make_hub, basic_document) -> None:
    hub = make_hub(basic_document)
    hub.capture("0")
    hub.set_value("x", 1.0)
    hub.capture("1")
    hub.recall("0", duration=4)
    _advance(hub, 2)
    assert hub.resolve("x") == pytest.approx(0.6)
    hub.recall("1", duration=2)
    assert hub.resolve("x") == pytest.approx(0.6)
    _advance(hub, 1)
    assert hub.resolve("x") == pytest.approx(0.8)


@pytest.mark.integration
def test_paused_clock_freezes_interpolation(make_hub, basic_document) -> None:
    hub = make_hub(basic_document)
    hub.capture("0")
    hub.set_value("x", 1.0)
    hub.recall("0", duration=4)
    _advance(hub, 1)
    hub.pause()
    _advance(hub, 5)
    assert hub.resolve("x") == pytest.approx(0.8)
    hub.advance()
    hub.update()
    assert hub.resolve("x") == pytest.approx(0.6)


@pytest.mark.integration
def test_randomize_skips_excluded_bypassed_disabled_and_curves(make_hub) -> None:
    hub = make_hub(
        {
            "a": {"type": "slider", "default": 0.0, "range": [0, 10], "step": 0.5},
            "b": {"type": "slider", "default": 0.3, "excluded": True},
            "c": {"type": "slider", "default": 0.3, "bypass": 0.3},
            "flag": {"type": "checkbox", "default": True},
            "d": {"type": "slider", "default": 0.3, "disabled": "flag"},
            "lfo": {"type": "triangle", "beats": 4},
        }
    )
    interp = hub.randomize(duration=0)
    assert set(interp.to_state) == {"a", "flag"}
    hub.update()
    a = hub.store.base_value("a")
    assert 0.0 <= a <= 10.0
    assert (a / 0.5) == pytest.approx(round(a / 0.5))
    assert hub.store.base_value("b") == 0.3


@pytest.mark.integration
def test_reload_with_changed_bounds_keeps_other_controls(make_hub, basic_document) -> None:
    hub = make_hub(basic_document)
    events = []
    hub.subscribe(events.append)
    hub.set_value("x", 0.5)
    hub.set_value("size", 40.0)
    hub.bind(0, 1, "x")
    hub.bind(0, 2, "size")
    hub.update()
    before = hub.values()

    edited = copy.deepcopy(basic_document)
    edited["size"]["range"] = [0, 50]
    errors = hub.reload(edited)
    hub.update()

    after = hub.values()
    assert {k: v for k, v in after.items() if k != "size"} == {
        k: v for k, v in before.items() if k != "size"
    }
    assert after["size"] == pytest.approx(10.0)
    assert hub.bindings() == {"x": (0, 1)}
    assert [type(e) for e in errors] == [StaleMapping]
    assert any(e.name == "warning" and e.payload.get("control") == "size" for e in events)


@pytest.mark.integration
def test_reload_drops_removed_controls_everywhere(make_hub, basic_document) -> None:
    hub = make_hub(basic_document)
    hub.bind(0, 1, "x")
    hub.capture("0")
    hub.set_value("x", 1.0)
    hub.set_value("size", 50.0)
    hub.recall("0", duration=4)

    edited = {k: v for k, v in basic_document.items() if k != "x"}
    edited["extra"] = {"type": "slider", "default": 0.7}
    hub.reload(edited)
    assert not hub.store.has("x")
    assert hub.bindings() == {}
    assert hub.interpolation is not None and not hub.interpolation.covers("x")
    assert hub.interpolation.covers("size")
    assert hub.resolve("extra") == pytest.approx(0.7)


@pytest.mark.integration
def test_reload_keeps_runtime_toggles_for_compatible_controls(make_hub, basic_document) -> None:
    hub = make_hub(basic_document)
    hub.set_bypass("x", True)
    hub.set_excluded("size", True)
    hub.reload(copy.deepcopy(basic_document))
    assert hub.store.is_bypassed("x")
    assert hub.is_excluded("size")


@pytest.mark.integration
def test_completed_transition_resends_bound_values(make_hub, basic_document) -> None:
    hub = make_hub(basic_document)
    sent: list[ControllerMessage] = []
    hub.bridge.sender = sent.append
    hub.bind(0, 1, "x")
    hub.capture("0")
    hub.set_value("x", 1.0)
    hub.recall("0", duration=0)
    hub.update()
    assert sent == [ControllerMessage(0, 1, 25)]


@pytest.mark.integration
def test_transport_operations_emit_events(make_hub) -> None:
    hub = make_hub()
    events = []
    hub.subscribe(events.append)
    assert hub.tap(0.0) is None
    assert hub.tap(0.5) == pytest.approx(120.0)
    assert hub.clock.bpm == pytest.approx(120.0)
    hub.pause()
    hub.play()
    hub.update()
    hub.reset()
    assert hub.clock.position_in_beats() == 0.0
    transport = [e.payload for e in events if e.name == "transport_changed"]
    assert transport[0] == {"bpm": 120.0, "paused": False}
    assert transport[1]["paused"] is True
    assert len(transport) == 4


def test_listener_errors_do_not_break_the_hub(make_hub, basic_document) -> None:
    hub = make_hub(basic_document)

    def boom(_event) -> None:
        raise RuntimeError("listener broke")

    hub.subscribe(boom)
    hub.set_value("x", 0.4)
    hub.unsubscribe(boom)
    hub.unsubscribe(boom)
    assert hub.resolve("x") == pytest.approx(0.4)


def test_hub_options_from_config(monkeypatch: pytest.MonkeyPatch) -> None:
    import common.settings as settings

    monkeypatch.setattr(settings.get(), "HRCC", None)
    monkeypatch.setattr(settings.get(), "RANDOM_SEED", 5)
    opts = HubOptions.from_config(
        {
            "clock": {"bpm": 100, "fps": 30},
            "control_hub": {"transition_beats": 2, "capture_bypassed": False},
            "midi": {"hrcc": True},
        }
    )
    assert (opts.bpm, opts.fps, opts.transition_beats) == (100.0, 30.0, 2.0)
    assert opts.capture_bypassed is False and opts.hrcc is True and opts.seed == 5
    assert opts.snapshot_slots == 10


def test_capture_can_skip_bypassed_controls(make_hub, basic_document) -> None:
    hub = make_hub(basic_document, capture_bypassed=False)
    hub.set_bypass("x", True)
    assert "x" not in hub.capture("0")
    assert "x" in make_hub(basic_document).capture("0")
