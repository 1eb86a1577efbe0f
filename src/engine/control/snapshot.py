"""
どこで: `engine.control.snapshot`
何を: スナップショットのスロット管理（capture/recall/delete）、拍ベースの補間（Interpolation）、
    ランダマイズ目標値の生成（Randomizer）。
なぜ: recall/randomize を「現在値 → 目標値」の同一の補間経路に載せ、見た目の跳びを防ぐため。

補足:
- スロットは固定個数（既定 "0".."9"）。未知のスロット名は ValueError。
- 補間の進行は拍で測る。時計が止まれば補間も止まる。
- float は線形補間、bool/str は進行が 0 を超えた時点で目標値へ切り替える。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Literal, Mapping, Sequence

import numpy as np

from .errors import SnapshotNotFound
from .state import ControlDescriptor, ControlValue

DEFAULT_SLOT_COUNT = 10
InterpolationKind = Literal["recall", "randomize"]


def slot_ids(count: int = DEFAULT_SLOT_COUNT) -> tuple[str, ...]:
    if count < 1:
        raise ValueError("スロット数は 1 以上が必要")
    return tuple(str(i) for i in range(count))


@dataclass
class Interpolation:
    """`from_state` → `to_state` の一時的な遷移。"""

    from_state: dict[str, ControlValue]
    to_state: dict[str, ControlValue]
    start: float
    duration: float
    kind: InterpolationKind = "recall"
    slot: str | None = None

    def progress(self, now: float) -> float:
        if self.duration <= 0.0:
            return 1.0
        return min(1.0, max(0.0, (float(now) - self.start) / self.duration))

    def is_complete(self, now: float) -> bool:
        return self.progress(now) >= 1.0

    def covers(self, name: str) -> bool:
        return name in self.to_state

    def value(self, name: str, now: float) -> ControlValue:
        target = self.to_state[name]
        origin = self.from_state.get(name, target)
        t = self.progress(now)
        if isinstance(target, bool) or isinstance(target, str):
            return target if t > 0.0 else origin
        if isinstance(origin, bool) or not isinstance(origin, (int, float)):
            return target if t > 0.0 else origin
        if t >= 1.0:
            return target
        return origin + (target - origin) * t

    def retain(self, names: Iterable[str]) -> None:
        """指定名以外を落とす（ホットリロード用）。"""
        keep = set(names)
        self.to_state = {k: v for k, v in self.to_state.items() if k in keep}
        self.from_state = {k: v for k, v in self.from_state.items() if k in keep}


@dataclass
class SnapshotManager:
    """固定個数のスロットに基底値のコピーを保持する。"""

    slot_names: tuple[str, ...] = field(default_factory=slot_ids)
    _slots: dict[str, dict[str, ControlValue]] = field(default_factory=dict, repr=False)

    def _check(self, slot: str) -> str:
        key = str(slot)
        if key not in self.slot_names:
            raise ValueError(f"未知のスロット: {slot!r}（{', '.join(self.slot_names)}）")
        return key

    def capture(self, slot: str, values: Mapping[str, ControlValue]) -> None:
        """スロットへ値をコピーする（既存内容は上書き）。"""
        self._slots[self._check(slot)] = dict(values)

    def get(self, slot: str) -> dict[str, ControlValue]:
        key = self._check(slot)
        if key not in self._slots:
            raise SnapshotNotFound(key)
        return dict(self._slots[key])

    def delete(self, slot: str) -> None:
        key = self._check(slot)
        if key not in self._slots:
            raise SnapshotNotFound(key)
        del self._slots[key]

    def clear(self) -> None:
        self._slots.clear()

    def has(self, slot: str) -> bool:
        return str(slot) in self._slots

    def slots(self) -> list[str]:
        """埋まっているスロット名（数値順）。"""
        return sorted(self._slots, key=_slot_sort_key)

    def export(self) -> dict[str, dict[str, ControlValue]]:
        return {k: dict(self._slots[k]) for k in self.slots()}

    def load(self, data: Mapping[str, Mapping[str, ControlValue]]) -> int:
        """永続化データを読み込む。未知スロットは無視し、読み込んだ数を返す。"""
        count = 0
        for slot, values in data.items():
            if str(slot) in self.slot_names and isinstance(values, Mapping):
                self._slots[str(slot)] = dict(values)
                count += 1
        return count


def _slot_sort_key(slot: str) -> tuple[int, int, str]:
    return (0, int(slot), "") if slot.isdigit() else (1, 0, slot)


class Randomizer:
    """範囲/step/選択肢を守った乱数目標値を作る。"""

    def __init__(self, seed: int | None = None) -> None:
        self._rng = np.random.default_rng(seed)

    def draw(self, desc: ControlDescriptor) -> ControlValue:
        if desc.kind == "bool":
            return bool(self._rng.integers(0, 2))
        if desc.kind == "enum":
            choices = desc.choices or ()
            if not choices:
                raise ValueError(f"{desc.name}: 選択肢がない")
            return choices[int(self._rng.integers(0, len(choices)))]
        if desc.kind == "float":
            hint = desc.range_hint
            if hint is None:
                raise ValueError(f"{desc.name}: 範囲がない")
            if not hint.step:
                return float(self._rng.uniform(hint.min_value, hint.max_value))
            k = int(self._rng.integers(0, hint.lattice_size() + 1))
            return min(hint.max_value, hint.min_value + k * hint.step)
        raise ValueError(f"{desc.name}: {desc.kind} はランダマイズできない")

    def target(self, descriptors: Sequence[ControlDescriptor]) -> dict[str, ControlValue]:
        return {d.name: self.draw(d) for d in descriptors}


__all__ = [
    "DEFAULT_SLOT_COUNT",
    "slot_ids",
    "Interpolation",
    "SnapshotManager",
    "Randomizer",
]
