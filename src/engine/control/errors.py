"""
どこで: `engine.control.errors`
何を: コントロール層の例外階層と、表面（コントロールパネル）へ流す離散イベントを定義。
なぜ: 直接呼び出しでは例外で中断し、フレーム評価/コマンド処理では同じ例外を
    イベントへ変換して報告する、という二系統の扱いを一か所の型で表現するため。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal


class ControlError(Exception):
    """コントロール層の基底例外。"""


class UnknownControl(ControlError, KeyError):
    """名前がレジストリに存在しない。操作は中断され、部分的な変更は行わない。"""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"unknown control: {self.name!r}"


class InvalidCurve(ControlError, ValueError):
    """ロード時に不正と判定された定義（ブレークポイント列/式/依存循環など）。"""

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"{name}: {reason}")
        self.name = name
        self.reason = reason


class SnapshotNotFound(ControlError, KeyError):
    """空スロットへの recall/delete。状態は変更しない。"""

    def __init__(self, slot: str) -> None:
        super().__init__(slot)
        self.slot = slot

    def __str__(self) -> str:
        return f"snapshot not found: {self.slot!r}"


class BindingConflict(ControlError):
    """学習中でないのに既に別コントロールへ割り当て済みのチャンネルを指定した。"""

    def __init__(self, channel_key: tuple[int, int], bound_to: str, requested: str) -> None:
        super().__init__(
            f"channel {channel_key[0]}:{channel_key[1]} is bound to {bound_to!r}; "
            f"refusing to bind {requested!r}"
        )
        self.channel_key = channel_key
        self.bound_to = bound_to
        self.requested = requested


class StaleMapping(ControlError):
    """保存済み/既存のバインディングが、編集後のスクリプトに対応しなくなった。"""

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"{name}: {reason}")
        self.name = name
        self.reason = reason


EventName = Literal[
    "value_updated",
    "snapshots_changed",
    "bindings_changed",
    "learning_changed",
    "transport_changed",
    "transition_ended",
    "error",
    "warning",
]


@dataclass(frozen=True)
class ControlEvent:
    """表面へ送る離散イベント（`{event_name, payload}` と同じ形）。"""

    name: EventName
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_error(cls, err: Exception, *, warning: bool = False) -> "ControlEvent":
        payload: dict[str, Any] = {"kind": type(err).__name__, "message": str(err)}
        control = getattr(err, "name", None)
        if isinstance(control, str):
            payload["control"] = control
        return cls("warning" if warning else "error", payload)


__all__ = [
    "ControlError",
    "UnknownControl",
    "InvalidCurve",
    "SnapshotNotFound",
    "BindingConflict",
    "StaleMapping",
    "ControlEvent",
    "EventName",
]
