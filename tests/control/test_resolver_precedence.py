from __future__ import annotations

import pytest

from engine.control.errors import UnknownControl
from engine.io.controller import ControllerMessage

# What this tests
# - bypass → 補間 → コントローラ上書き → カーブ/モジュレーション → 基底値 の優先順と、フレーム内の冪等性。


def test_base_value_when_nothing_else_applies(make_hub, basic_document) -> None:
    hub = make_hub(basic_document)
    hub.update()
    assert hub.resolve("x") == pytest.approx(0.2)
    assert hub.source_of("x") == "base"
    assert hub.values() == {"x": 0.2, "size": 10.0, "show": True, "mode": "a"}


def test_bypass_beats_interpolation_and_controller(make_hub, basic_document) -> None:
    hub = make_hub(basic_document)
    assert hub.bind(0, 10, "x")
    hub.push_controller_message(ControllerMessage(0, 10, 127))
    hub.update()
    assert hub.resolve("x") == pytest.approx(1.0)
    assert hub.source_of("x") == "controller"

    hub.capture("0")
    hub.recall("0", 4)
    assert hub.resolve("x") == pytest.approx(1.0)
    assert hub.source_of("x") == "interpolation"

    hub.set_bypass("x", True)
    assert hub.resolve("x") == pytest.approx(0.2)
    assert hub.source_of("x") == "bypass"

    hub.set_bypass("x", False)
    assert hub.source_of("x") == "interpolation"


def test_script_bypass_pins_declared_value(make_hub) -> None:
    hub = make_hub({"x": {"type": "slider", "default": 0.1, "bypass": 0.8}})
    hub.set_value("x", 0.5)
    assert hub.resolve("x") == pytest.approx(0.8)


def test_disabled_bridge_falls_back_to_base(make_hub, basic_document) -> None:
    hub = make_hub(basic_document)
    hub.bind(0, 10, "x")
    hub.push_controller_message(ControllerMessage(0, 10, 0))
    hub.update()
    assert hub.resolve("x") == 0.0
    hub.set_bridge_enabled(False)
    assert hub.resolve("x") == pytest.approx(0.2)


def test_host_edit_clears_controller_override(make_hub, basic_document) -> None:
    hub = make_hub(basic_document)
    hub.bind(0, 10, "x")
    hub.push_controller_message(ControllerMessage(0, 10, 127))
    hub.update()
    hub.set_value("x", 0.4)
    assert hub.resolve("x") == pytest.approx(0.4)
    assert hub.source_of("x") == "base"


def test_curve_drives_value_and_is_not_host_editable(make_hub) -> None:
    hub = make_hub({"lfo": {"type": "triangle", "beats": 4, "range": [0, 1]}})
    hub.update()
    hub.update()
    assert hub.resolve("lfo") == pytest.approx(1.0)
    assert hub.source_of("lfo") == "curve"
    with pytest.raises(ValueError):
        hub.set_value("lfo", 0.5)


def test_modulation_multiplies_by_other_control(make_hub) -> None:
    hub = make_hub(
        {
            "lfo": {"type": "ramp", "beats": 4},
            "depth": {"type": "slider", "default": 0.5},
            "m": {"type": "mod", "source": "lfo", "modulators": ["depth"]},
        }
    )
    hub.update()
    assert hub.resolve("lfo") == pytest.approx(0.125)
    assert hub.source_of("lfo") == "modulation"


def test_stateful_chain_is_idempotent_within_a_frame(make_hub) -> None:
    hub = make_hub(
        {
            "lfo": {"type": "ramp", "beats": 4},
            "slew": {"type": "effect", "kind": "slew_limiter", "rise": 0.1},
            "m": {"type": "mod", "source": "lfo", "modulators": ["slew"]},
        }
    )
    hub.update()
    assert hub.resolve("lfo") == pytest.approx(0.25)
    hub.update()
    first = hub.resolve("lfo")
    hub.resolver.invalidate()
    second = hub.resolve("lfo")
    assert first == second == pytest.approx(0.35)


def test_curve_failure_falls_back_to_default_and_reports(make_hub) -> None:
    hub = make_hub({"lfo": {"type": "triangle", "beats": 4, "range": [2, 3]}})
    events = []
    hub.subscribe(events.append)

    class Broken:
        def evaluate(self, beats, previous=None):
            raise ValueError("boom")

    hub.resolver.curves["lfo"] = Broken()  # type: ignore[assignment]
    hub.update()
    assert hub.values()["lfo"] == pytest.approx(2.0)
    assert [e.payload["kind"] for e in events if e.name == "error"] == ["InvalidCurve"]


def test_separator_and_unknown_names(make_hub, basic_document) -> None:
    hub = make_hub(basic_document)
    with pytest.raises(ValueError):
        hub.resolve("sep")
    with pytest.raises(UnknownControl):
        hub.resolve("nope")


def test_alias_resolves_to_the_same_control(make_hub) -> None:
    hub = make_hub({"x": {"type": "slider", "default": 0.3, "var": "level"}})
    hub.set_value("level", 0.6)
    assert hub.resolve("x") == pytest.approx(0.6)
    assert hub.resolve("level") == pytest.approx(0.6)


def test_disabled_predicate_tracks_current_values(make_hub) -> None:
    hub = make_hub(
        {
            "show": {"type": "checkbox", "default": False},
            "x": {"type": "slider", "disabled": "not show"},
        }
    )
    assert hub.is_disabled("x")
    hub.set_value("show", True)
    assert not hub.is_disabled("x")


def test_hot_parameter_follows_the_referenced_control(make_hub) -> None:
    hub = make_hub(
        {
            "period": {"type": "slider", "default": 4, "range": [1, 8], "step": 1},
            "lfo": {"type": "ramp", "beats": "$period"},
        }
    )
    events = []
    hub.subscribe(events.append)
    hub.update()
    assert hub.resolve("lfo") == pytest.approx(0.25)
    hub.set_value("period", 2)
    assert hub.resolve("lfo") == pytest.approx(0.5)
    assert hub.source_of("lfo") == "curve"
    # 束縛後の値が不正（周期 0）なら既定値へフォールバックして報告する
    hub.set_value("period", 0)
    assert hub.resolve("lfo") == pytest.approx(0.0)
    assert hub.source_of("lfo") == "base"
    assert [e.payload.get("control") for e in events if e.name == "error"] == ["lfo"]


def test_ring_modulator_and_hot_effect_parameters_read_live_values(make_hub) -> None:
    hub = make_hub(
        {
            "carrier": {"type": "slider", "default": 1.0},
            "other": {"type": "slider", "default": 0.0},
            "mix": {"type": "slider", "default": 0.5},
            "ring": {
                "type": "effect",
                "kind": "ring_modulator",
                "modulator": "other",
                "mix": "$mix",
            },
            "m": {"type": "mod", "source": "carrier", "modulators": ["ring"]},
        }
    )
    assert hub.script_errors == []
    # mix=0.5 は純粋なリング変調: (+1) * (-1) → 下端
    assert hub.resolve("carrier") == pytest.approx(0.0)
    assert hub.source_of("carrier") == "modulation"
    hub.set_value("mix", 0.25)
    assert hub.resolve("carrier") == pytest.approx(0.5)
    hub.set_value("mix", 0.0)
    assert hub.resolve("carrier") == pytest.approx(1.0)
