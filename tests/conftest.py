"""共通フィクスチャ。

- 乱数シード固定
- 設定ファイルの隔離（`util.utils.load_config` を空辞書へ）
- 小さなコントロールスクリプト
"""

from __future__ import annotations

from typing import Any, Callable

import numpy as np
import pytest

from engine.control.hub import ControlHub, HubOptions
from engine.core.clock import MusicalClock


@pytest.fixture(scope="session", autouse=True)
def np_seed() -> None:
    """NumPy の乱数を固定。"""
    np.random.seed(12345)


@pytest.fixture()
def no_config(monkeypatch: pytest.MonkeyPatch) -> None:
    import util.utils as utils

    monkeypatch.setattr(utils, "load_config", lambda: {})


@pytest.fixture()
def basic_document() -> dict[str, Any]:
    return {
        "x": {"type": "slider", "default": 0.2, "range": [0, 1], "step": 0.01},
        "size": {"type": "slider", "default": 10.0, "range": [0, 100], "step": 1},
        "show": {"type": "checkbox", "default": True},
        "mode": {"type": "select", "options": ["a", "b", "c"], "default": "a"},
        "sep": {"type": "separator"},
    }


@pytest.fixture()
def make_hub() -> Callable[..., ControlHub]:
    """bpm=60, fps=1 の時計（`update()` 1 回 = 1 拍）でハブを作る。"""

    def _make(document: dict[str, Any] | None = None, **opts: Any) -> ControlHub:
        options = HubOptions(bpm=60.0, fps=1.0, seed=7, **opts)
        clock = MusicalClock(options.bpm, options.fps)
        return ControlHub(document, options=options, clock=clock)

    return _make
