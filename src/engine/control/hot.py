"""
どこで: `engine.control.hot`
何を: `"$name"` 形式のホットパラメータ。カーブ/エフェクトの数値パラメータを、
    他コントロールの現在値で毎フレーム差し替える。
なぜ: パラメータ自体（周期/ゲインなど）をスライダーやカーブから操作できるようにするため。
    定義オブジェクトは不変のまま保ち、評価時にだけ値を束縛した複製を作る。

補足:
- 束縛時の検証は定義側の `__post_init__` に任せる（不正値は ValueError）。
- 参照先の値は int/bool のパラメータでは丸め/真偽値化して渡す。
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")

HOT_PREFIX = "$"


def hot_ref(value: Any) -> str | None:
    """`"$name"` なら参照先の名前、それ以外は None。"""
    if isinstance(value, str) and value.startswith(HOT_PREFIX) and len(value) > len(HOT_PREFIX):
        return value[len(HOT_PREFIX) :]
    return None


@dataclass(frozen=True)
class Hot(Generic[T]):
    """ホットパラメータ付きの定義。`target` は既定値で構築済みのプレースホルダ。"""

    target: T
    params: tuple[tuple[str, str], ...]

    def names(self) -> set[str]:
        return {ref for _, ref in self.params}

    def bind(self, lookup: Callable[[str], float]) -> T:
        changes = {param: _like(getattr(self.target, param), lookup(ref)) for param, ref in self.params}
        return replace(self.target, **changes)  # type: ignore[type-var]


def _like(current: Any, value: float) -> Any:
    if isinstance(current, bool):
        return bool(value)
    if isinstance(current, int):
        return int(round(value))
    return float(value)


__all__ = ["Hot", "hot_ref", "HOT_PREFIX"]
