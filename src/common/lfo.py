"""
どこで: `common.lfo`
何を: 拍位置（beats）を入力とする周期波形と、決定的擬似乱数の純粋ロジックを提供。
なぜ: オートメーションカーブ/短縮カーブ（triangle/ramp/random）が共有する部品を
    エンジン/IO 非依存の再利用可能な関数として切り出すため。

設計方針:
- 純粋・決定的。副作用なし。型注釈あり。
- 位相 `phi` は 0..1（周期単位）。周期の指定は拍で行い、テンポには依存しない。
- 乱数は `(seed, index)` から一意に決まる（同じ区間は何度評価しても同じ値）。
"""

from __future__ import annotations

import math


def _frac(x: float) -> float:
    """x の小数部（0.0 <= r < 1.0）。負の値にも安定。"""
    r = x - math.floor(x)
    # 妥当化（ULP 誤差に対するガード）
    if r < 0.0:
        return 0.0
    if r >= 1.0:
        return 0.0
    return r


def _lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


# ---- 決定的擬似乱数 -----------------------------------------------------


def _splitmix64(x: int) -> int:
    """SplitMix64 由来の簡易 64bit ミキサ（決定的ランダム化）。"""
    z = (x + 0x9E3779B97F4A7C15) & 0xFFFFFFFFFFFFFFFF
    z = (z ^ (z >> 30)) * 0xBF58476D1CE4E5B9 & 0xFFFFFFFFFFFFFFFF
    z = (z ^ (z >> 27)) * 0x94D049BB133111EB & 0xFFFFFFFFFFFFFFFF
    z = z ^ (z >> 31)
    return z & 0xFFFFFFFFFFFFFFFF


def rand01(seed: int, idx: int) -> float:
    """種 `seed` とインデックス `idx` から [0,1) の一様乱数を決定的生成。

    `seed` を先にミックスしてから `idx` と合成する（近い種同士の相関を避ける）。
    """
    x = _splitmix64(_splitmix64(seed & 0xFFFFFFFFFFFFFFFF) ^ (idx & 0xFFFFFFFFFFFFFFFF))
    # 上位 53bit を IEEE754 の仮数として 0..1 に正規化
    mant = x >> 11  # 64-53=11
    return (mant & ((1 << 53) - 1)) / float(1 << 53)


def uniform(seed: int, idx: int, lo: float, hi: float) -> float:
    """`rand01` を [lo, hi) へ射影する。"""
    return _lerp(float(lo), float(hi), rand01(seed, idx))


# ---- 周期波形（0..1 / -1..1） ------------------------------------------


def triangle_unipolar(phi: float) -> float:
    """0 → 1 → 0 の三角波。phi∈[0,1)。"""
    return phi * 2.0 if phi < 0.5 else (1.0 - phi) * 2.0


def wave_bipolar(shape: str, phi: float, width: float = 0.5) -> float:
    """周期波形（-1..1）。

    引数:
        shape: "sine" / "triangle" / "square"。
        phi: 位相（0..1）。
        width: sine では歪み（0.5 で正弦）、triangle では頂点位置、square ではデューティ比。
    """
    w = min(1.0, max(0.0, float(width)))
    if shape == "sine":
        # width=0.5 で純正弦、それ以外は位相変調で前後に偏らせる
        m = 2.0 * (w - 0.5)
        return math.sin(2.0 * math.pi * phi + m * math.sin(2.0 * math.pi * phi))
    if shape == "triangle":
        # 0 から始まるよう 1/4 周期ずらす
        p = _frac(phi + 0.25)
        if w <= 0.0:
            return 1.0 - 2.0 * p
        if w >= 1.0:
            return 2.0 * p - 1.0
        if p < w:
            return 2.0 * (p / w) - 1.0
        return 1.0 - 2.0 * ((p - w) / (1.0 - w))
    if shape == "square":
        return 1.0 if phi < w else -1.0
    raise ValueError(f"未知の波形: {shape}")


# ---- 拍ベースの短縮波形 -------------------------------------------------


def triangle(beats: float, period: float, lo: float = 0.0, hi: float = 1.0, phase: float = 0.0) -> float:
    """`period` 拍周期の三角波を [lo, hi] で返す（phase=0 で lo から開始）。"""
    if period <= 0.0:
        raise ValueError("period は正の値が必要")
    phi = _frac(float(beats) / float(period) + float(phase))
    return _lerp(float(lo), float(hi), triangle_unipolar(phi))


def ramp(beats: float, period: float, lo: float = 0.0, hi: float = 1.0, phase: float = 0.0) -> float:
    """`period` 拍周期の上昇ノコギリ波を [lo, hi) で返す。"""
    if period <= 0.0:
        raise ValueError("period は正の値が必要")
    phi = _frac(float(beats) / float(period) + float(phase))
    return _lerp(float(lo), float(hi), phi)


def sample_hold(
    beats: float,
    period: float,
    lo: float = 0.0,
    hi: float = 1.0,
    *,
    seed: int = 0,
    delay: float = 0.0,
) -> float:
    """`period` 拍ごとに引き直すサンプル&ホールド（`delay` 拍だけ切替を遅らせる）。"""
    if period <= 0.0:
        raise ValueError("period は正の値が必要")
    k = int(math.floor((float(beats) - float(delay)) / float(period)))
    return uniform(seed, k, lo, hi)


__all__ = [
    "rand01",
    "uniform",
    "triangle_unipolar",
    "wave_bipolar",
    "triangle",
    "ramp",
    "sample_hold",
]
