"""
どこで: `engine.control` パッケージの公開入口。
何を: ControlStore/Curve/ModulationChain/例外などコントロール機構の値型を再輸出。
    ハブ本体は `engine.control.hub`、永続化は `engine.control.persistence` から取得する。
なぜ: 外部から薄いファサードを提供し、内部実装の入れ替えと依存分離を容易にするため。
"""

from .curves import Breakpoint, Curve, RandomHold, RandomSlewed, Ramp, Triangle
from .errors import (
    BindingConflict,
    ControlError,
    ControlEvent,
    InvalidCurve,
    SnapshotNotFound,
    StaleMapping,
    UnknownControl,
)
from .modulation import ModulationChain
from .script import ControlScript, parse_script
from .state import ControlDescriptor, ControlStore, RangeHint

__all__ = [
    "ControlStore",
    "ControlDescriptor",
    "RangeHint",
    "ControlScript",
    "parse_script",
    "Curve",
    "Breakpoint",
    "Triangle",
    "Ramp",
    "RandomHold",
    "RandomSlewed",
    "ModulationChain",
    "ControlEvent",
    "ControlError",
    "UnknownControl",
    "InvalidCurve",
    "SnapshotNotFound",
    "BindingConflict",
    "StaleMapping",
]
