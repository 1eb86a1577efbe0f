"""
どこで: `engine.control` の状態管理層（コントロールレジストリ）。
何を: ControlDescriptor/RangeHint のメタと、ControlStore による基底値・表示値・実行時フラグを集中管理。
    購読通知も提供する。
なぜ: フレーム評価ループが排他的に所有する単一の真実源として、ホスト編集/補間の確定/
    ホットリロードの差分適用をすべてここに集約するため。

補足:
- `set_base()` は型の検査/変換のみ行い、範囲へのクランプはしない（表示上のクランプは表面側の責務）。
- 表示値（displayed）はリゾルバが確定した最終値で、外向きのミラーリングにだけ使う。
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Literal, Union

from .disabled import DisabledExpr
from .errors import UnknownControl

logger = logging.getLogger(__name__)

ControlKind = Literal["float", "bool", "enum", "separator"]
ControlOrigin = Literal["ui", "curve"]
ControlValue = Union[float, bool, str]


@dataclass(frozen=True)
class RangeHint:
    """スライダーの実レンジ（min/max/step）。"""

    min_value: float
    max_value: float
    step: float | None = None

    def __post_init__(self) -> None:
        if not self.max_value >= self.min_value:
            raise ValueError(f"range は min <= max が必要: {self.min_value}, {self.max_value}")
        if self.step is not None and self.step <= 0.0:
            raise ValueError("step は正の値が必要")

    def contains(self, value: float) -> bool:
        return self.min_value <= value <= self.max_value

    def lattice_size(self) -> int:
        """step 格子の点数 - 1（step 未指定は 0）。"""
        if not self.step:
            return 0
        span = self.max_value - self.min_value
        # 丸め誤差で 1 点欠けないよう微小量を足す
        return int(math.floor(span / self.step + 1e-9))

    def snap(self, value: float) -> float:
        """step 格子へ丸めて範囲内へ収める。"""
        v = min(self.max_value, max(self.min_value, float(value)))
        if not self.step:
            return v
        k = round((v - self.min_value) / self.step)
        k = max(0, min(self.lattice_size(), k))
        return self.min_value + k * self.step


@dataclass(frozen=True)
class ControlDescriptor:
    """コントロールのメタ情報。

    - `origin="curve"` はカーブ駆動（ホスト編集/スナップショット/ランダマイズの対象外）。
    - `bypass` が None 以外なら、その値に固定される（スクリプト由来）。
    """

    name: str
    kind: ControlKind
    default: ControlValue | None = None
    range_hint: RangeHint | None = None
    choices: tuple[str, ...] | None = None
    disabled: DisabledExpr | None = None
    excluded: bool = False
    bypass: ControlValue | None = None
    origin: ControlOrigin = "ui"
    alias: str | None = None

    @property
    def has_value(self) -> bool:
        return self.kind != "separator"

    @property
    def host_editable(self) -> bool:
        return self.has_value and self.origin == "ui"

    def bypass_value(self) -> ControlValue | None:
        """bypass 時に返す宣言値（明示値がなければ既定値）。"""
        return self.bypass if self.bypass is not None else self.default

    def is_compatible(self, other: "ControlDescriptor") -> bool:
        """ホットリロードで状態を引き継げるか（種別/レンジ/選択肢が同じ）。"""
        if self.kind != other.kind or self.origin != other.origin:
            return False
        if self.kind == "float":
            a, b = self.range_hint, other.range_hint
            if (a is None) != (b is None):
                return False
            if a is not None and b is not None:
                return (a.min_value, a.max_value) == (b.min_value, b.max_value)
        if self.kind == "enum":
            return self.choices == other.choices
        return True

    def coerce(self, value: Any) -> ControlValue:
        """ホストから来た値を種別に合わせて変換する（不正なら ValueError/TypeError）。"""
        if self.kind == "float":
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise TypeError(f"{self.name}: float が必要: {value!r}")
            v = float(value)
            if not math.isfinite(v):
                raise ValueError(f"{self.name}: 有限値が必要")
            return v
        if self.kind == "bool":
            if not isinstance(value, bool):
                raise TypeError(f"{self.name}: bool が必要: {value!r}")
            return value
        if self.kind == "enum":
            if not isinstance(value, str):
                raise TypeError(f"{self.name}: str が必要: {value!r}")
            if self.choices is not None and value not in self.choices:
                raise ValueError(f"{self.name}: 未知の選択肢 {value!r}")
            return value
        raise TypeError(f"{self.name}: separator は値を持たない")


@dataclass
class ControlEntry:
    """基底値と最後に確定した表示値。"""

    base: ControlValue | None
    displayed: ControlValue | None = None


Subscriber = Callable[[Iterable[str]], None]


class ControlStore:
    """コントロールのメタデータと値を集中管理する（宣言順を保持）。"""

    def __init__(self) -> None:
        self._descriptors: dict[str, ControlDescriptor] = {}
        self._values: dict[str, ControlEntry] = {}
        self._aliases: dict[str, str] = {}
        self._listeners: list[Subscriber] = []
        # 実行時トグル（スクリプトの宣言より優先）
        self._bypass_overrides: dict[str, bool] = {}
        self._excluded_overrides: dict[str, bool] = {}

    # --- 登録 / 問合せ ---
    def register(self, descriptor: ControlDescriptor, value: ControlValue | None = None) -> None:
        """Descriptor を登録し、初期値（省略時は既定値）を保存する。"""
        name = descriptor.name
        self._descriptors[name] = descriptor
        base = descriptor.default if value is None else value
        self._values[name] = ControlEntry(base=base if descriptor.has_value else None)
        if descriptor.alias:
            self._aliases[descriptor.alias] = name
        self._notify([name])

    def remove(self, name: str) -> None:
        desc = self._descriptors.pop(name, None)
        self._values.pop(name, None)
        self._bypass_overrides.pop(name, None)
        self._excluded_overrides.pop(name, None)
        if desc is not None and desc.alias:
            self._aliases.pop(desc.alias, None)

    def clear(self) -> None:
        self._descriptors.clear()
        self._values.clear()
        self._aliases.clear()
        self._bypass_overrides.clear()
        self._excluded_overrides.clear()

    def canonical(self, name: str) -> str:
        """別名（`var`）を実名へ解決する。未知名は UnknownControl。"""
        if name in self._descriptors:
            return name
        target = self._aliases.get(name)
        if target is None:
            raise UnknownControl(name)
        return target

    def has(self, name: str) -> bool:
        return name in self._descriptors or name in self._aliases

    def descriptors(self) -> list[ControlDescriptor]:
        return list(self._descriptors.values())

    def names(self) -> list[str]:
        return list(self._descriptors.keys())

    def value_names(self) -> list[str]:
        """値を持つ（separator 以外の）コントロール名。"""
        return [n for n, d in self._descriptors.items() if d.has_value]

    def get_descriptor(self, name: str) -> ControlDescriptor:
        return self._descriptors[self.canonical(name)]

    # --- 値操作 ---
    def base_value(self, name: str) -> ControlValue | None:
        return self._values[self.canonical(name)].base

    def base_values(self) -> dict[str, ControlValue]:
        return {
            n: e.base
            for n, e in self._values.items()
            if e.base is not None and self._descriptors[n].has_value
        }

    def set_base(self, name: str, value: Any, *, notify: bool = True) -> ControlValue:
        """基底値を設定する（型変換のみ、クランプしない）。"""
        key = self.canonical(name)
        desc = self._descriptors[key]
        coerced = desc.coerce(value)
        entry = self._values[key]
        entry.base = coerced
        if notify:
            self._notify([key])
        return coerced

    def displayed_value(self, name: str) -> ControlValue | None:
        return self._values[self.canonical(name)].displayed

    def commit_displayed(self, name: str, value: ControlValue | None) -> None:
        self._values[self.canonical(name)].displayed = value

    # --- 実行時フラグ ---
    def is_bypassed(self, name: str) -> bool:
        key = self.canonical(name)
        flag = self._bypass_overrides.get(key)
        if flag is not None:
            return flag
        return self._descriptors[key].bypass is not None

    def set_bypassed(self, name: str, bypassed: bool) -> None:
        key = self.canonical(name)
        self._bypass_overrides[key] = bool(bypassed)
        self._notify([key])

    def is_excluded(self, name: str) -> bool:
        key = self.canonical(name)
        flag = self._excluded_overrides.get(key)
        if flag is not None:
            return flag
        return self._descriptors[key].excluded

    def set_excluded(self, name: str, excluded: bool) -> None:
        key = self.canonical(name)
        self._excluded_overrides[key] = bool(excluded)

    def runtime_flags(self) -> tuple[dict[str, bool], dict[str, bool]]:
        """(bypass, excluded) の実行時トグルを返す（ホットリロードの引き継ぎ用）。"""
        return dict(self._bypass_overrides), dict(self._excluded_overrides)

    def restore_runtime_flags(self, bypass: dict[str, bool], excluded: dict[str, bool]) -> None:
        for name, flag in bypass.items():
            if name in self._descriptors:
                self._bypass_overrides[name] = flag
        for name, flag in excluded.items():
            if name in self._descriptors:
                self._excluded_overrides[name] = flag

    # --- リスナー ---
    def subscribe(self, listener: Subscriber) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Subscriber) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def _notify(self, names: Iterable[str]) -> None:
        ids = list(names)
        if not ids:
            return
        for listener in list(self._listeners):
            try:
                listener(ids)
            except Exception:
                logger.exception("control listener failed for %s", ids)


__all__ = [
    "ControlKind",
    "ControlOrigin",
    "ControlValue",
    "RangeHint",
    "ControlDescriptor",
    "ControlEntry",
    "ControlStore",
]
