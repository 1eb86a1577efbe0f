"""
どこで: `engine.control.curves`
何を: ブレークポイント型オートメーションカーブと、拍周期の短縮カーブ（triangle/ramp/random/random_slewed）を評価。
なぜ: 時間を拍で表すことで、テンポ変更が曲線の形を変えず速度だけを変えるようにするため。

設計:
- `Curve` は不変。検証は構築時に行い、不正なら ValueError（ロード層が InvalidCurve へ包む）。
- 区間は半開区間 `[p0.position, p1.position)`。ブレークポイント位置ちょうどの問い合わせは
  その点から始まる区間として評価する。
- random 区間の乱数は `(stem, 区間インデックス)` だけで決まる（ループ周回に依存しない）。
"""

from __future__ import annotations

import math
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Union

from common import lfo

from .easing import Easing, easings

LoopMode = Literal["once", "loop", "ping_pong"]
BreakpointKind = Literal["step", "ramp", "random", "wave", "end"]

LOOP_MODES: tuple[str, ...] = ("once", "loop", "ping_pong")
BREAKPOINT_KINDS: tuple[str, ...] = ("step", "ramp", "random", "wave", "end")
WAVE_SHAPES: tuple[str, ...] = ("sine", "triangle", "square")

# 区間端の丸め誤差許容（拍）
_EPS = 1e-9


def normalize_mode(mode: str | None) -> str:
    """ループモード名を正規化（"ping-pong" 等の表記揺れを吸収）。"""
    m = (mode or "once").strip().lower().replace("-", "_")
    if m == "pingpong":
        m = "ping_pong"
    if m not in LOOP_MODES:
        raise ValueError(f"未知のループモード: {mode}")
    return m


@dataclass(frozen=True)
class Breakpoint:
    """カーブの節点。kind ごとに参照する属性が異なる。"""

    position: float
    value: float
    kind: BreakpointKind = "ramp"
    # ramp / wave
    easing: str = "linear"
    # random / wave
    amplitude: float = 0.25
    # wave
    shape: str = "sine"
    frequency: float = 0.25
    width: float = 0.5

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Breakpoint":
        """`{position, value, kind, ...}` から生成（未知キーは無視）。"""
        if "position" not in data or "value" not in data:
            raise ValueError("breakpoint には position と value が必要")
        kind = str(data.get("kind", "ramp"))
        return cls(
            position=float(data["position"]),
            value=float(data["value"]),
            kind=kind,  # type: ignore[arg-type]
            easing=str(data.get("easing", "linear")),
            amplitude=float(data.get("amplitude", 0.25)),
            shape=str(data.get("shape", "sine")),
            frequency=float(data.get("frequency", 0.25)),
            width=float(data.get("width", 0.5)),
        )


@dataclass(frozen=True)
class Curve:
    """ブレークポイント列 + ループモード。"""

    breakpoints: tuple[Breakpoint, ...]
    mode: LoopMode = "once"
    stem: int = 0
    _positions: tuple[float, ...] = field(init=False, repr=False, compare=False)
    _easings: tuple[Easing, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        bps = tuple(self.breakpoints)
        object.__setattr__(self, "breakpoints", bps)
        object.__setattr__(self, "mode", normalize_mode(self.mode))
        if len(bps) < 2:
            raise ValueError("ブレークポイントは 2 個以上が必要")
        for bp in bps:
            if bp.kind not in BREAKPOINT_KINDS:
                raise ValueError(f"未知のブレークポイント種別: {bp.kind}")
            if not (math.isfinite(bp.position) and math.isfinite(bp.value)):
                raise ValueError("position/value は有限値が必要")
        if bps[0].position < 0.0:
            raise ValueError("先頭の position は 0 以上が必要")
        for a, b in zip(bps, bps[1:]):
            if not b.position > a.position:
                raise ValueError(f"position は狭義単調増加が必要: {a.position} -> {b.position}")
        ends = [i for i, bp in enumerate(bps) if bp.kind == "end"]
        if ends != [len(bps) - 1]:
            raise ValueError("end はちょうど 1 個で、末尾に置く必要がある")
        fns: list[Easing] = []
        for bp in bps:
            try:
                fns.append(easings.resolve(bp.easing))
            except KeyError:
                raise ValueError(f"未知のイージング: {bp.easing}") from None
            if bp.kind == "wave" and bp.shape not in WAVE_SHAPES:
                raise ValueError(f"未知の波形: {bp.shape}")
        object.__setattr__(self, "_positions", tuple(bp.position for bp in bps))
        object.__setattr__(self, "_easings", tuple(fns))

    @property
    def end(self) -> Breakpoint:
        return self.breakpoints[-1]

    @property
    def duration(self) -> float:
        """総尺（拍）。0 拍目から end の位置まで。"""
        return self.end.position

    def reduce(self, beats: float) -> float:
        """ループモードに従って問い合わせ位置を有効域へ落とす。"""
        t = float(beats)
        total = self.duration
        if self.mode == "once" or total <= 0.0:
            return t
        cycle = math.floor(t / total)
        r = t - cycle * total
        # 周期境界の丸め誤差（total - 1e-15 等）は次周期の先頭に寄せる
        if r >= total - _EPS * max(1.0, total):
            r = 0.0
            cycle += 1
        if self.mode == "ping_pong" and cycle % 2 == 1:
            return total - r
        return r

    def evaluate(self, beats: float) -> float:
        """拍位置 `beats` の値を返す。"""
        t = self.reduce(beats)
        bps = self.breakpoints
        if t >= self.end.position:
            return self.end.value
        idx = bisect_right(self._positions, t) - 1
        if idx < 0:
            return bps[0].value
        p0 = bps[idx]
        p1 = bps[idx + 1]
        frac = (t - p0.position) / (p1.position - p0.position)
        if p0.kind == "step":
            return p0.value
        if p0.kind == "ramp":
            return _lerp(p0.value, p1.value, self._easings[idx](frac))
        if p0.kind == "random":
            return lfo.uniform(
                self.stem, idx, p0.value - p0.amplitude, p0.value + p0.amplitude
            )
        if p0.kind == "wave":
            base = _lerp(p0.value, p1.value, self._easings[idx](frac))
            phi = _frac((t - p0.position) * p0.frequency)
            return base + p0.amplitude * lfo.wave_bipolar(p0.shape, phi, p0.width)
        # end 以外はすべて上で処理済み
        return p0.value

    def __call__(self, beats: float) -> float:
        return self.evaluate(beats)


# ---- 短縮カーブ -----------------------------------------------------------


@dataclass(frozen=True)
class Triangle:
    """`beats` 拍周期の三角波。"""

    beats: float = 1.0
    range: tuple[float, float] = (0.0, 1.0)
    phase: float = 0.0
    stateful = False

    def __post_init__(self) -> None:
        _check_period(self.beats)

    def evaluate(self, beats: float, previous: float | None = None) -> float:
        lo, hi = self.range
        return lfo.triangle(beats, self.beats, lo, hi, self.phase)


@dataclass(frozen=True)
class Ramp:
    """`beats` 拍周期で lo → hi を繰り返す上昇ランプ。"""

    beats: float = 1.0
    range: tuple[float, float] = (0.0, 1.0)
    phase: float = 0.0
    stateful = False

    def __post_init__(self) -> None:
        _check_period(self.beats)

    def evaluate(self, beats: float, previous: float | None = None) -> float:
        lo, hi = self.range
        return lfo.ramp(beats, self.beats, lo, hi, self.phase)


@dataclass(frozen=True)
class RandomHold:
    """`beats` 拍ごとに範囲内の乱数を引き直して保持する。"""

    beats: float = 1.0
    range: tuple[float, float] = (0.0, 1.0)
    delay: float = 0.0
    stem: int = 93473
    stateful = False

    def __post_init__(self) -> None:
        _check_period(self.beats)

    def evaluate(self, beats: float, previous: float | None = None) -> float:
        lo, hi = self.range
        return lfo.sample_hold(beats, self.beats, lo, hi, seed=self.stem, delay=self.delay)


@dataclass(frozen=True)
class RandomSlewed:
    """RandomHold の出力を 1 フレームごとに係数 `slew` でなめらかに追従させる。

    `slew` は 0..1。0 で即時追従、1 に近いほど遅い。前フレームの出力 `previous` を
    呼び出し側（リゾルバ）が保持して渡す。
    """

    beats: float = 1.0
    range: tuple[float, float] = (0.0, 1.0)
    slew: float = 0.65
    delay: float = 0.0
    stem: int = 93472
    stateful = True

    def __post_init__(self) -> None:
        _check_period(self.beats)
        if not (0.0 <= self.slew <= 1.0):
            raise ValueError("slew は 0..1 が必要")

    def evaluate(self, beats: float, previous: float | None = None) -> float:
        lo, hi = self.range
        target = lfo.sample_hold(beats, self.beats, lo, hi, seed=self.stem, delay=self.delay)
        if previous is None:
            return target
        return previous + (1.0 - self.slew) * (target - previous)


AnyCurve = Union[Curve, Triangle, Ramp, RandomHold, RandomSlewed]


def evaluate_curve(curve: AnyCurve, beats: float, previous: float | None = None) -> float:
    """カーブ種別を問わず評価する（ブレークポイントカーブは状態を持たない）。"""
    if isinstance(curve, Curve):
        return curve.evaluate(beats)
    return curve.evaluate(beats, previous)


def is_stateful(curve: AnyCurve) -> bool:
    return bool(getattr(curve, "stateful", False))


def _check_period(beats: float) -> None:
    if not (beats > 0.0):
        raise ValueError("beats は正の値が必要")


def _lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def _frac(x: float) -> float:
    return x - math.floor(x)


__all__ = [
    "LoopMode",
    "BreakpointKind",
    "LOOP_MODES",
    "Breakpoint",
    "Curve",
    "Triangle",
    "Ramp",
    "RandomHold",
    "RandomSlewed",
    "AnyCurve",
    "evaluate_curve",
    "is_stateful",
    "normalize_mode",
]
