from __future__ import annotations

import pytest

from common import lfo


def test_rand01_is_deterministic_and_in_unit_interval() -> None:
    values = [lfo.rand01(7, i) for i in range(200)]
    assert values == [lfo.rand01(7, i) for i in range(200)]
    assert all(0.0 <= v < 1.0 for v in values)
    assert lfo.rand01(7, 0) != lfo.rand01(8, 0)


def test_uniform_maps_into_range() -> None:
    for i in range(50):
        assert -2.0 <= lfo.uniform(1, i, -2.0, 3.0) < 3.0


def test_triangle_and_ramp_shapes() -> None:
    assert lfo.triangle(0.0, 4.0) == pytest.approx(0.0)
    assert lfo.triangle(2.0, 4.0) == pytest.approx(1.0)
    assert lfo.triangle(3.0, 4.0, 10.0, 20.0) == pytest.approx(15.0)
    assert lfo.ramp(3.0, 4.0) == pytest.approx(0.75)
    assert lfo.ramp(1.0, 4.0, phase=0.5) == pytest.approx(0.75)
    with pytest.raises(ValueError):
        lfo.ramp(1.0, 0.0)


def test_wave_bipolar_shapes() -> None:
    assert lfo.wave_bipolar("sine", 0.25) == pytest.approx(1.0)
    assert lfo.wave_bipolar("triangle", 0.0) == pytest.approx(0.0)
    assert lfo.wave_bipolar("triangle", 0.25) == pytest.approx(1.0)
    assert lfo.wave_bipolar("square", 0.2, width=0.25) == 1.0
    assert lfo.wave_bipolar("square", 0.3, width=0.25) == -1.0
    with pytest.raises(ValueError):
        lfo.wave_bipolar("saw", 0.1)


def test_sample_hold_changes_per_period() -> None:
    a = lfo.sample_hold(0.1, 2.0, seed=3)
    assert a == lfo.sample_hold(1.9, 2.0, seed=3)
    assert a != lfo.sample_hold(2.1, 2.0, seed=3)
