"""
どこで: `engine.control.modulation`
何を: カーブ出力を整形するエフェクト（閉じたタグ付きバリアント）と、その順序付きチェーン。
なぜ: エフェクトの集合は固定で毎フレーム評価されるため、プラグイン的な多態ではなく
    dataclass のバリアント + `apply_effect` の分岐で表現する。

補足:
- 状態を持つのは slew_limiter と hysteresis のみ。状態は `EffectState` に分離し、
  フレーム内では `committed` を読み `pending` に書く。フレーム境界で `commit()` する。
  これにより同一フレーム内で何度評価しても同じ値になる。
- チェーンのリンクが文字列の場合は「他コントロールの値を乗算するモジュレータ」。
- `Hot` でくるまれたリンクは、評価のたびに `$name` パラメータを束縛してから適用する。
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Literal, Sequence, Union

from .easing import ease_out_expo
from .hot import Hot


@dataclass(frozen=True)
class SlewLimiter:
    """上昇/下降それぞれの変化率上限（値/拍）。0 はその方向を無制限とする。"""

    rise: float = 0.0
    fall: float = 0.0

    def __post_init__(self) -> None:
        if self.rise < 0.0 or self.fall < 0.0:
            raise ValueError("rise/fall は 0 以上が必要")


@dataclass(frozen=True)
class WaveFolder:
    """範囲中点まわりに増幅し、範囲外への振れを反射で折り返す。"""

    gain: float = 1.0
    iterations: int = 1
    symmetry: float = 1.0
    bias: float = 0.0
    # 0: 直線 / 正: 折り返し端を鋭く / 負: 正弦で丸める（-1 で完全に正弦）
    shape: float = 0.0
    range: tuple[float, float] = (0.0, 1.0)

    def __post_init__(self) -> None:
        if self.iterations < 1:
            raise ValueError("iterations は 1 以上が必要")
        if self.symmetry <= 0.0:
            raise ValueError("symmetry は正の値が必要")
        if not self.range[1] > self.range[0]:
            raise ValueError("range は (min, max) で min < max が必要")

    def fold(self, value: float) -> float:
        lo, hi = self.range
        half = (hi - lo) / 2.0
        mid = lo + half
        x = (float(value) - mid) / half
        x = self.gain * x + self.bias
        x = x * self.symmetry if x > 0.0 else x / self.symmetry
        for _ in range(self.iterations):
            if -1.0 <= x <= 1.0:
                break
            x = 2.0 - x if x > 1.0 else -2.0 - x
        x = max(-1.0, min(1.0, x))
        if self.shape > 0.0:
            x = math.copysign(abs(x) ** (1.0 + self.shape), x)
        elif self.shape < 0.0:
            s = min(1.0, -self.shape)
            x = x * (1.0 - s) + math.sin(x * math.pi / 2.0) * s
        return x * half + mid


@dataclass(frozen=True)
class Constrain:
    """範囲への拘束。clamp / wrap（周回）/ fold（反射）。"""

    mode: Literal["clamp", "wrap", "fold"] = "clamp"
    range: tuple[float, float] = (0.0, 1.0)

    def __post_init__(self) -> None:
        if self.mode not in ("clamp", "wrap", "fold"):
            raise ValueError(f"未知の constrain モード: {self.mode}")
        if not self.range[1] > self.range[0]:
            raise ValueError("range は (min, max) で min < max が必要")

    def constrain(self, value: float) -> float:
        lo, hi = self.range
        span = hi - lo
        if self.mode == "clamp":
            return max(lo, min(hi, value))
        if self.mode == "wrap":
            return lo + (value - lo) % span
        r = (value - lo) % (2.0 * span)
        return lo + (r if r <= span else 2.0 * span - r)


@dataclass(frozen=True)
class Map:
    """`domain` から `range` への線形写像（拘束はしない）。"""

    domain: tuple[float, float] = (0.0, 1.0)
    range: tuple[float, float] = (0.0, 1.0)

    def __post_init__(self) -> None:
        if self.domain[1] == self.domain[0]:
            raise ValueError("domain の幅が 0")

    def map(self, value: float) -> float:
        d0, d1 = self.domain
        r0, r1 = self.range
        return r0 + (value - d0) / (d1 - d0) * (r1 - r0)


@dataclass(frozen=True)
class Quantizer:
    """範囲を正規化した上で `step` 刻みへ丸める（例: step=0.25 で 0.26 → 0.25）。"""

    step: float = 0.25
    range: tuple[float, float] = (0.0, 1.0)

    def __post_init__(self) -> None:
        if self.step <= 0.0:
            raise ValueError("step は正の値が必要")
        if not self.range[1] > self.range[0]:
            raise ValueError("range は (min, max) で min < max が必要")

    def quantize(self, value: float) -> float:
        lo, hi = self.range
        span = hi - lo
        steps = round(((value - lo) / span) / self.step)
        return max(lo, min(hi, steps * self.step * span + lo))


@dataclass(frozen=True)
class Math:
    operator: Literal["add", "mult"] = "add"
    operand: float = 1.0

    def __post_init__(self) -> None:
        if self.operator not in ("add", "mult"):
            raise ValueError(f"未知の演算子: {self.operator}")


@dataclass(frozen=True)
class Hysteresis:
    """上閾値以上で high、下閾値以下で low に切り替え、その間は直前の状態を保つ。"""

    lower_threshold: float = 0.3
    upper_threshold: float = 0.7
    output_low: float = 0.0
    output_high: float = 1.0
    # 閾値の間では入力をそのまま通す
    pass_through: bool = False

    def __post_init__(self) -> None:
        if self.lower_threshold > self.upper_threshold:
            raise ValueError("lower_threshold は upper_threshold 以下が必要")


@dataclass(frozen=True)
class RingModulator:
    """入力（キャリア）と `modulator` コントロールの値を範囲中点まわりで掛け合わせる。

    `mix` は 0 でキャリア、0.5 で純粋なリング変調、1 でモジュレータそのもの。
    """

    modulator: str = ""
    mix: float = 0.0
    range: tuple[float, float] = (0.0, 1.0)

    def __post_init__(self) -> None:
        if not self.modulator:
            raise ValueError("modulator（参照するコントロール名）が必要")
        if not (0.0 <= self.mix <= 1.0):
            raise ValueError("mix は 0..1 が必要")
        if not self.range[1] > self.range[0]:
            raise ValueError("range は (min, max) で min < max が必要")

    def modulate(self, carrier: float, modulator: float) -> float:
        lo, hi = self.range
        half = (hi - lo) / 2.0
        mid = lo + half
        c = (carrier - mid) / half
        m = (modulator - mid) / half
        ring = c * m
        if self.mix <= 0.5:
            t = self.mix * 2.0
            x = c * (1.0 - t) + ring * t
        else:
            t = (self.mix - 0.5) * 2.0
            x = ring * (1.0 - t) + m * t
        return max(lo, min(hi, x * half + mid))


@dataclass(frozen=True)
class Saturator:
    """tanh による飽和。`drive` 0 は素通し、1 未満は素の値と飽和を混ぜる。"""

    drive: float = 1.0
    range: tuple[float, float] = (0.0, 1.0)

    def __post_init__(self) -> None:
        if self.drive < 0.0:
            raise ValueError("drive は 0 以上が必要")
        if not self.range[1] > self.range[0]:
            raise ValueError("range は (min, max) で min < max が必要")

    def saturate(self, value: float) -> float:
        if self.drive == 0.0:
            return value
        lo, hi = self.range
        half = (hi - lo) / 2.0
        mid = lo + half
        x = (value - mid) / half
        if self.drive < 1.0:
            e = ease_out_expo(self.drive)
            x = x * (1.0 - e) + math.tanh(x) * e
        else:
            x = math.tanh(x * self.drive)
        return x * half + mid


Effect = Union[
    SlewLimiter, WaveFolder, Constrain, Map, Quantizer, Math, Hysteresis, RingModulator, Saturator
]

EFFECT_KINDS: dict[str, type] = {
    "slew_limiter": SlewLimiter,
    "wave_folder": WaveFolder,
    "constrain": Constrain,
    "map": Map,
    "quantizer": Quantizer,
    "math": Math,
    "hysteresis": Hysteresis,
    "ring_modulator": RingModulator,
    "saturator": Saturator,
}


@dataclass
class EffectState:
    """フレームをまたいで持ち越す内部状態。"""

    committed: Any = None
    pending: Any = None

    def commit(self) -> None:
        if self.pending is not None:
            self.committed = self.pending
            self.pending = None

    def reset(self) -> None:
        self.committed = None
        self.pending = None


def apply_effect(
    effect: Effect,
    value: float,
    state: EffectState,
    dt_beats: float,
    lookup: Callable[[str], Any] | None = None,
) -> float:
    """1 エフェクトを適用する（状態は `state.pending` にのみ書く）。

    `lookup` は他コントロールの値を読むエフェクト（ring_modulator）が使う。
    """
    if isinstance(effect, SlewLimiter):
        prev = state.committed
        if prev is None:
            out = value
        else:
            delta = value - prev
            if delta > 0.0 and effect.rise > 0.0:
                delta = min(delta, effect.rise * dt_beats)
            elif delta < 0.0 and effect.fall > 0.0:
                delta = max(delta, -effect.fall * dt_beats)
            out = prev + delta
        state.pending = out
        return out
    if isinstance(effect, WaveFolder):
        return effect.fold(value)
    if isinstance(effect, Constrain):
        return effect.constrain(value)
    if isinstance(effect, Map):
        return effect.map(value)
    if isinstance(effect, Quantizer):
        return effect.quantize(value)
    if isinstance(effect, Math):
        return value + effect.operand if effect.operator == "add" else value * effect.operand
    if isinstance(effect, Hysteresis):
        high = bool(state.committed)
        if value >= effect.upper_threshold:
            high = True
        elif value <= effect.lower_threshold:
            high = False
        elif effect.pass_through:
            state.pending = high
            return value
        state.pending = high
        return effect.output_high if high else effect.output_low
    if isinstance(effect, Saturator):
        return effect.saturate(value)
    if isinstance(effect, RingModulator):
        if lookup is None:
            raise TypeError(f"ring_modulator needs a value lookup for {effect.modulator!r}")
        return effect.modulate(value, float(lookup(effect.modulator)))
    raise TypeError(f"unsupported effect: {type(effect).__name__}")


Link = Union[Effect, Hot, str]


class ModulationChain:
    """ソースコントロールに結び付いた順序付きのエフェクト列。"""

    def __init__(self, source: str, links: Sequence[Link]) -> None:
        self.source = source
        self.links: tuple[Link, ...] = tuple(links)
        self._states = [EffectState() for _ in self.links]

    def __repr__(self) -> str:
        return f"ModulationChain(source={self.source!r}, links={len(self.links)})"

    def control_refs(self) -> list[str]:
        """チェーンが値を読む他コントロール名（乗算モジュレータ/リング変調/ホットパラメータ）。"""
        refs: list[str] = []
        for link in self.links:
            if isinstance(link, str):
                refs.append(link)
                continue
            if isinstance(link, Hot):
                refs.extend(sorted(link.names()))
                link = link.target
            if isinstance(link, RingModulator):
                refs.append(link.modulator)
        return refs

    def apply(
        self,
        value: float,
        dt_beats: float,
        lookup: Callable[[str], Any] | None = None,
    ) -> float:
        out = float(value)
        for link, state in zip(self.links, self._states):
            if isinstance(link, str):
                if lookup is None:
                    raise TypeError(f"modulator {link!r} needs a value lookup")
                out *= float(lookup(link))
            else:
                if isinstance(link, Hot):
                    if lookup is None:
                        raise TypeError(f"hot parameters of {self.source!r} need a value lookup")
                    link = link.bind(lookup)
                out = apply_effect(link, out, state, dt_beats, lookup)
        return out

    def commit(self) -> None:
        for state in self._states:
            state.commit()

    def reset(self) -> None:
        for state in self._states:
            state.reset()

    def adopt_state(self, other: "ModulationChain") -> bool:
        """同一構成のチェーンから内部状態を引き継ぐ（ホットリロード用）。"""
        if other.links != self.links:
            return False
        self._states = other._states
        return True


__all__ = [
    "SlewLimiter",
    "WaveFolder",
    "Constrain",
    "Map",
    "Quantizer",
    "Math",
    "Hysteresis",
    "RingModulator",
    "Saturator",
    "Effect",
    "EFFECT_KINDS",
    "EffectState",
    "apply_effect",
    "ModulationChain",
]
