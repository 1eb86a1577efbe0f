"""
どこで: `engine.core` の簡易フレームドライバ。
何を: `Tickable` の列を固定順序で呼び出す FrameClock（dt 測定/固定 dt とループ管理）。
なぜ: ホストの描画ループから呼び出すだけで、ハブ → 値の消費者の更新順を統一するため。
"""

from __future__ import annotations

import time
from typing import Sequence

from .tickable import Tickable


class FrameClock:
    """登録された Tickable を固定順序で実行するだけの極小クラス。"""

    def __init__(self, tickables: Sequence[Tickable], *, fixed_dt: float | None = None):
        self._tickables = tuple(tickables)
        self._fixed_dt = fixed_dt
        self._last_time = time.perf_counter()

    # ホストのループ（pyglet の schedule_interval 等）から呼ばせる
    def tick(self, dt: float | None = None) -> None:
        if dt is None:
            if self._fixed_dt is not None:
                dt = self._fixed_dt
            else:
                now = time.perf_counter()
                dt = now - self._last_time
                self._last_time = now

        for t in self._tickables:
            t.tick(dt)
