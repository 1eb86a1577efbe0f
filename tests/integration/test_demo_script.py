from __future__ import annotations

from pathlib import Path

import pytest

from engine.control.hub import ControlHub, HubOptions
from util.utils import load_control_script

DEMO = Path(__file__).resolve().parents[2] / "demo" / "controls.yaml"


@pytest.mark.integration
def test_demo_script_loads_cleanly_and_runs() -> None:
    document = load_control_script(DEMO)
    hub = ControlHub(document, options=HubOptions(seed=1))
    assert hub.script_errors == []
    assert "_unit" not in hub.store.names()
    assert hub.store.canonical("s") == "size"
    for _ in range(120):
        hub.update()
    values = hub.values()
    assert set(values) == {
        "size",
        "density",
        "show_grid",
        "palette",
        "grid_spacing",
        "sweep",
        "wobble",
        "pulse",
        "drift",
    }
    assert -1.0 <= values["wobble"] <= 1.0
    assert 0.0 <= values["sweep"] <= 1.0
    assert hub.source_of("drift") == "curve"
    assert not hub.is_disabled("grid_spacing")


def test_load_control_script_rejects_non_mapping(tmp_path) -> None:
    p = tmp_path / "list.yaml"
    p.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_control_script(p)
    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    assert load_control_script(empty) == {}
