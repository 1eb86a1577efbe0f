"""
どこで: `api` 入口（高レベル公開 API）。
何を: ControlHub・HubOptions・MusicalClock・カーブ型・永続化関数などを再輸出。
なぜ: 利用者（描画ループ側）が単一名前空間からハブの生成→フレーム更新→値取得まで完結できるようにするため。

Usage:
    from api import ControlHub

    hub = ControlHub({
        "size": {"type": "slider", "default": 0.5, "range": [0, 1]},
        "sweep": {"type": "triangle", "beats": 4, "range": [0, 1]},
    })
    while running:
        hub.update()
        values = hub.values()
"""

from engine.control import (
    Breakpoint,
    ControlEvent,
    Curve,
    ModulationChain,
    RandomHold,
    RandomSlewed,
    Ramp,
    Triangle,
)
from engine.control.hub import ControlHub, HubOptions
from engine.control.persistence import load_state, save_state
from engine.core.clock import MusicalClock, TapTempo
from engine.core.frame_clock import FrameClock

from .controller import NullPort, open_controller

__all__ = [
    # メインAPI
    "ControlHub",
    "HubOptions",
    "ControlEvent",
    # 時間
    "MusicalClock",
    "TapTempo",
    "FrameClock",
    # カーブ/モジュレーション（高度な使用）
    "Curve",
    "Breakpoint",
    "Triangle",
    "Ramp",
    "RandomHold",
    "RandomSlewed",
    "ModulationChain",
    # 永続化
    "save_state",
    "load_state",
    # 外部コントローラ
    "open_controller",
    "NullPort",
]

# バージョン情報
__version__ = "2026.10"
