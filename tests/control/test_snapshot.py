from __future__ import annotations

import pytest

from engine.control.errors import SnapshotNotFound
from engine.control.snapshot import Interpolation, Randomizer, SnapshotManager, slot_ids
from engine.control.state import ControlDescriptor, RangeHint


def test_slots_are_fixed_and_listed_in_numeric_order() -> None:
    mgr = SnapshotManager(slot_ids(12))
    mgr.capture("10", {"x": 1.0})
    mgr.capture("2", {"x": 0.5})
    assert mgr.slots() == ["2", "10"]
    assert mgr.get("2") == {"x": 0.5}
    with pytest.raises(ValueError):
        mgr.capture("12", {})
    with pytest.raises(ValueError):
        slot_ids(0)


def test_empty_slot_recall_and_delete_raise_snapshot_not_found() -> None:
    mgr = SnapshotManager()
    with pytest.raises(SnapshotNotFound):
        mgr.get("3")
    with pytest.raises(SnapshotNotFound):
        mgr.delete("3")
    mgr.capture("3", {"x": 0.1})
    mgr.delete("3")
    assert not mgr.has("3")


def test_captured_values_are_copies() -> None:
    mgr = SnapshotManager()
    values = {"x": 0.1}
    mgr.capture("0", values)
    values["x"] = 0.9
    mgr.get("0")["x"] = 0.7
    assert mgr.get("0") == {"x": 0.1}


def test_export_and_load_skip_unknown_slots() -> None:
    mgr = SnapshotManager()
    assert mgr.load({"1": {"x": 0.2}, "99": {"x": 0.3}, "2": "broken"}) == 1
    assert mgr.export() == {"1": {"x": 0.2}}
    mgr.clear()
    assert mgr.slots() == []


def test_interpolation_lerps_floats_and_switches_discrete_values() -> None:
    interp = Interpolation(
        from_state={"x": 0.9, "show": False, "mode": "a"},
        to_state={"x": 0.2, "show": True, "mode": "b"},
        start=10.0,
        duration=4.0,
    )
    assert interp.value("x", 10.0) == pytest.approx(0.9)
    assert interp.value("x", 12.0) == pytest.approx(0.55)
    assert interp.value("x", 14.0) == pytest.approx(0.2)
    assert interp.value("show", 10.0) is False
    assert interp.value("show", 10.1) is True
    assert interp.value("mode", 10.1) == "b"
    assert not interp.is_complete(13.9) and interp.is_complete(14.0)
    interp.retain(["x"])
    assert not interp.covers("show")


def test_zero_duration_interpolation_is_immediately_complete() -> None:
    interp = Interpolation({"x": 0.0}, {"x": 1.0}, start=0.0, duration=0.0)
    assert interp.is_complete(0.0)
    assert interp.value("x", 0.0) == 1.0


def test_randomizer_respects_bounds_step_and_choices() -> None:
    rnd = Randomizer(seed=3)
    slider = ControlDescriptor("x", "float", 0.0, RangeHint(-1.0, 1.0, 0.25))
    select = ControlDescriptor("m", "enum", "a", choices=("a", "b", "c"))
    flag = ControlDescriptor("f", "bool", False)
    for _ in range(50):
        v = rnd.draw(slider)
        assert -1.0 <= v <= 1.0
        assert ((v + 1.0) / 0.25) == pytest.approx(round((v + 1.0) / 0.25))
        assert rnd.draw(select) in ("a", "b", "c")
        assert isinstance(rnd.draw(flag), bool)
    with pytest.raises(ValueError):
        rnd.draw(ControlDescriptor("s", "separator"))


def test_randomizer_is_deterministic_for_a_seed() -> None:
    slider = ControlDescriptor("x", "float", 0.0, RangeHint(0.0, 1.0, 0.01))
    ra, rb = Randomizer(seed=11), Randomizer(seed=11)
    a = [ra.draw(slider) for _ in range(3)]
    b = [rb.draw(slider) for _ in range(3)]
    assert a == b
