"""
どこで: `engine.control.easing`
何を: ramp/wave ブレークポイントが参照するイージング関数（t∈[0,1] → [0,1] 近傍）を名前で登録。
なぜ: スクリプトからは文字列で指定されるため、ロード時に名前を解決して未知名を弾けるようにする。

補足:
- すべて f(0)=0, f(1)=1 を満たす（back は途中で範囲外へ振れる）。
- 名前は `BaseRegistry` の正規化により "easeInOut" / "ease-in-out" も受け付ける。
"""

from __future__ import annotations

import math
from typing import Callable

from common.base_registry import BaseRegistry

Easing = Callable[[float], float]


class EasingRegistry(BaseRegistry):
    """イージング関数のレジストリ。"""

    def resolve(self, name: str | None) -> Easing:
        """名前から関数を引く（None/空は linear）。未知名は KeyError。"""
        if not name:
            return linear
        return self.get(name)


easings = EasingRegistry()


@easings.register()
def linear(t: float) -> float:
    return t


@easings.register()
def ease_in_quad(t: float) -> float:
    return t * t


@easings.register()
def ease_out_quad(t: float) -> float:
    return t * (2.0 - t)


@easings.register()
def ease_in_out_quad(t: float) -> float:
    return 2.0 * t * t if t < 0.5 else -1.0 + (4.0 - 2.0 * t) * t


@easings.register()
def ease_in_cubic(t: float) -> float:
    return t**3


@easings.register()
def ease_out_cubic(t: float) -> float:
    return 1.0 - (1.0 - t) ** 3


@easings.register()
def ease_in_out_cubic(t: float) -> float:
    return 4.0 * t**3 if t < 0.5 else 1.0 - (-2.0 * t + 2.0) ** 3 / 2.0


@easings.register()
def ease_in_sine(t: float) -> float:
    return 1.0 - math.cos(t * math.pi / 2.0)


@easings.register()
def ease_out_sine(t: float) -> float:
    return math.sin(t * math.pi / 2.0)


@easings.register()
def ease_in_out_sine(t: float) -> float:
    return -(math.cos(math.pi * t) - 1.0) / 2.0


@easings.register()
def ease_in_expo(t: float) -> float:
    return 0.0 if t <= 0.0 else 2.0 ** (10.0 * t - 10.0) if t < 1.0 else 1.0


@easings.register()
def ease_out_expo(t: float) -> float:
    return 1.0 if t >= 1.0 else 1.0 - 2.0 ** (-10.0 * t)


@easings.register()
def ease_in_circ(t: float) -> float:
    return 1.0 - math.sqrt(max(0.0, 1.0 - t * t))


@easings.register()
def ease_out_circ(t: float) -> float:
    return math.sqrt(max(0.0, 1.0 - (t - 1.0) ** 2))


@easings.register()
def ease_in_back(t: float) -> float:
    c1 = 1.70158
    return (c1 + 1.0) * t**3 - c1 * t * t


@easings.register()
def ease_out_back(t: float) -> float:
    c1 = 1.70158
    return 1.0 + (c1 + 1.0) * (t - 1.0) ** 3 + c1 * (t - 1.0) ** 2


@easings.register()
def ease_out_bounce(t: float) -> float:
    n1, d1 = 7.5625, 2.75
    if t < 1.0 / d1:
        return n1 * t * t
    if t < 2.0 / d1:
        t -= 1.5 / d1
        return n1 * t * t + 0.75
    if t < 2.5 / d1:
        t -= 2.25 / d1
        return n1 * t * t + 0.9375
    t -= 2.625 / d1
    return n1 * t * t + 0.984375


@easings.register()
def ease_in_bounce(t: float) -> float:
    return 1.0 - ease_out_bounce(1.0 - t)


@easings.register()
def logarithmic(t: float) -> float:
    return math.log1p(9.0 * t) / math.log(10.0)


# 短縮名（2 次）
easings.alias("ease_in", "ease_in_quad")
easings.alias("ease_out", "ease_out_quad")
easings.alias("ease_in_out", "ease_in_out_quad")


__all__ = ["Easing", "EasingRegistry", "easings", "linear"]
