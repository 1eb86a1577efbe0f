from __future__ import annotations

import pytest

from engine.control.curves import (
    Breakpoint,
    Curve,
    Ramp,
    RandomHold,
    RandomSlewed,
    Triangle,
    evaluate_curve,
    is_stateful,
    normalize_mode,
)

# What this tests
# - 区間の評価（step/ramp/random/wave）、ループモード（once/loop/ping_pong）、構築時検証、短縮カーブ。


def _up_down(mode: str = "once") -> Curve:
    return Curve(
        (
            Breakpoint(0.0, 0.0, "ramp"),
            Breakpoint(4.0, 1.0, "ramp"),
            Breakpoint(8.0, 0.0, "end"),
        ),
        mode=mode,  # type: ignore[arg-type]
    )


def test_ramp_curve_once_holds_end_value() -> None:
    c = _up_down("once")
    assert c.evaluate(2) == pytest.approx(0.5)
    assert c.evaluate(6) == pytest.approx(0.5)
    assert c.evaluate(10) == pytest.approx(0.0)
    assert c.duration == 8.0


def test_breakpoint_position_starts_its_segment() -> None:
    c = _up_down()
    assert c.evaluate(0) == 0.0
    assert c.evaluate(4) == pytest.approx(1.0)


def test_loop_mode_repeats_every_duration() -> None:
    c = _up_down("loop")
    assert c.evaluate(10) == pytest.approx(c.evaluate(2))
    assert c.evaluate(8) == pytest.approx(c.evaluate(0))
    assert c.evaluate(21) == pytest.approx(0.75)


def test_ping_pong_reverses_on_odd_cycles() -> None:
    c = Curve((Breakpoint(0, 0.0), Breakpoint(4, 1.0, "end")), mode="ping-pong")  # type: ignore[arg-type]
    assert c.mode == "ping_pong"
    assert c.evaluate(1) == pytest.approx(0.25)
    assert c.evaluate(5) == pytest.approx(0.75)
    assert c.evaluate(9) == pytest.approx(0.25)


def test_step_holds_value_until_next_breakpoint() -> None:
    c = Curve((Breakpoint(0, 0.3, "step"), Breakpoint(2, 1.0, "end")))
    assert c.evaluate(1.99) == 0.3
    assert c.evaluate(2) == 1.0


def test_ramp_uses_named_easing() -> None:
    c = Curve((Breakpoint(0, 0.0, "ramp", easing="ease_in_quad"), Breakpoint(2, 1.0, "end")))
    assert c.evaluate(1) == pytest.approx(0.25)


def test_random_segment_is_stable_within_segment_and_across_loops() -> None:
    c = Curve(
        (Breakpoint(0, 0.5, "random", amplitude=0.25), Breakpoint(2, 0.0, "end")),
        mode="loop",
        stem=42,
    )
    v = c.evaluate(0.5)
    assert 0.25 <= v < 0.75
    assert c.evaluate(1.9) == v
    assert c.evaluate(2.5) == v
    other = Curve(c.breakpoints, mode="loop", stem=43)
    assert other.evaluate(0.5) != v


def test_wave_segment_adds_shape_over_ramp() -> None:
    c = Curve(
        (
            Breakpoint(0, 0.0, "wave", amplitude=1.0, shape="square", frequency=1.0),
            Breakpoint(4, 0.0, "end"),
        )
    )
    assert c.evaluate(0.25) == pytest.approx(1.0)
    assert c.evaluate(0.75) == pytest.approx(-1.0)


@pytest.mark.parametrize(
    "bps",
    [
        (Breakpoint(0, 0.0, "end"),),
        (Breakpoint(0, 0.0), Breakpoint(0, 1.0, "end")),
        (Breakpoint(2, 0.0), Breakpoint(1, 1.0, "end")),
        (Breakpoint(-1, 0.0), Breakpoint(1, 1.0, "end")),
        (Breakpoint(0, 0.0), Breakpoint(1, 1.0)),
        (Breakpoint(0, 0.0, "end"), Breakpoint(1, 1.0, "end")),
        (Breakpoint(0, 0.0, easing="nope"), Breakpoint(1, 1.0, "end")),
        (Breakpoint(0, 0.0, "wave", shape="saw"), Breakpoint(1, 1.0, "end")),
        (Breakpoint(0, 0.0, "jump"), Breakpoint(1, 1.0, "end")),  # type: ignore[arg-type]
    ],
)
def test_invalid_curves_are_rejected(bps) -> None:
    with pytest.raises(ValueError):
        Curve(bps)


def test_mode_normalization() -> None:
    assert normalize_mode("Ping-Pong") == "ping_pong"
    assert normalize_mode(None) == "once"
    with pytest.raises(ValueError):
        normalize_mode("bounce")


def test_breakpoint_from_mapping_requires_position_and_value() -> None:
    bp = Breakpoint.from_mapping({"position": 1, "value": 2, "kind": "step"})
    assert bp == Breakpoint(1.0, 2.0, "step")
    with pytest.raises(ValueError):
        Breakpoint.from_mapping({"position": 1})


def test_triangle_and_ramp_shorthands() -> None:
    tri = Triangle(beats=4, range=(0.0, 10.0))
    assert tri.evaluate(0) == pytest.approx(0.0)
    assert tri.evaluate(1) == pytest.approx(5.0)
    assert tri.evaluate(2) == pytest.approx(10.0)
    ramp = Ramp(beats=4, range=(0.0, 8.0))
    assert ramp.evaluate(1) == pytest.approx(2.0)
    assert ramp.evaluate(5) == pytest.approx(2.0)
    with pytest.raises(ValueError):
        Triangle(beats=0)


def test_random_hold_changes_only_at_period_boundaries() -> None:
    rh = RandomHold(beats=2, range=(-1.0, 1.0))
    assert rh.evaluate(0.1) == rh.evaluate(1.9)
    assert -1.0 <= rh.evaluate(3.0) < 1.0
    delayed = RandomHold(beats=2, range=(-1.0, 1.0), delay=0.5)
    assert delayed.evaluate(2.25) == rh.evaluate(0.25)


def test_random_slewed_follows_target_by_slew_factor() -> None:
    rs = RandomSlewed(beats=1, range=(0.0, 1.0), slew=0.5)
    target = rs.evaluate(0.5)
    assert is_stateful(rs) and not is_stateful(Triangle())
    assert evaluate_curve(rs, 0.5, previous=0.0) == pytest.approx(0.5 * target)
    with pytest.raises(ValueError):
        RandomSlewed(slew=1.5)
