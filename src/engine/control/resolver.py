"""
どこで: `engine.control.resolver`
何を: コントロールごとの単一の「get」。bypass → 補間 → 外部コントローラ上書き →
    カーブ/モジュレーション → 基底値 の優先順で 1 つの値へ合成する。
なぜ: 値の出どころが複数あっても、1 フレーム内では何度呼んでも同じ値を返す
    決定的な合成点を 1 か所に置くため。

補足:
- フレーム内メモ化（`_cache`）。フレーム開始時と、あらゆる変更操作の直後に破棄する。
- 副作用はレジストリへの表示値の確定（外向きミラー用）のみ。
- 状態を持つカーブ/エフェクトは `pending` に書き、フレーム開始時に確定する。
- カーブ/チェーンの評価失敗はそのコントロールだけ既定値へフォールバックし、報告する。
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Literal

from .curves import AnyCurve, evaluate_curve, is_stateful
from .errors import ControlError, InvalidCurve
from .hot import Hot
from .modulation import EffectState, ModulationChain
from .snapshot import Interpolation
from .state import ControlStore, ControlValue

if TYPE_CHECKING:
    from engine.core.clock import MusicalClock
    from engine.io.bridge import ControllerBridge

logger = logging.getLogger(__name__)

ValueSource = Literal["bypass", "interpolation", "controller", "curve", "modulation", "base"]


class PrecedenceResolver:
    """優先順位に従ってコントロール値を解決する。"""

    def __init__(
        self,
        store: ControlStore,
        bridge: "ControllerBridge",
        clock: "MusicalClock",
        *,
        on_error: Callable[[ControlError], None] | None = None,
    ) -> None:
        self._store = store
        self._bridge = bridge
        self._clock = clock
        self._on_error = on_error
        self.curves: dict[str, AnyCurve | Hot] = {}
        self.chains: dict[str, ModulationChain] = {}
        self.interpolation: Interpolation | None = None
        self._curve_states: dict[str, EffectState] = {}
        self._cache: dict[str, ControlValue] = {}
        self._sources: dict[str, ValueSource] = {}
        self._resolving: set[str] = set()
        self._dt_beats = 0.0

    # --- フレーム境界 ---
    def begin_frame(self, dt_beats: float) -> None:
        """前フレームの状態を確定し、キャッシュを破棄する。"""
        for chain in self.chains.values():
            chain.commit()
        for state in self._curve_states.values():
            state.commit()
        self._dt_beats = max(0.0, float(dt_beats))
        self.invalidate()

    def invalidate(self) -> None:
        self._cache.clear()
        self._sources.clear()

    # --- スクリプト差し替え ---
    def set_animation(
        self, curves: dict[str, AnyCurve | Hot], chains: dict[str, ModulationChain]
    ) -> None:
        """カーブ/チェーンを差し替える。構成が同じものは内部状態を引き継ぐ。"""
        for name, chain in chains.items():
            old = self.chains.get(name)
            if old is not None:
                chain.adopt_state(old)
        kept_states = {
            n: s
            for n, s in self._curve_states.items()
            if n in curves and self.curves.get(n) == curves[n]
        }
        self.curves = dict(curves)
        self.chains = dict(chains)
        self._curve_states = kept_states
        self.invalidate()

    # --- 解決 ---
    def resolve(self, name: str) -> ControlValue:
        key = self._store.canonical(name)
        if key in self._cache:
            return self._cache[key]
        desc = self._store.get_descriptor(key)
        if not desc.has_value:
            raise ValueError(f"{key} は separator で値を持たない")
        if key in self._resolving:
            raise InvalidCurve(key, "dependency cycle during resolution")
        self._resolving.add(key)
        try:
            value, source = self._compute(key)
        finally:
            self._resolving.discard(key)
        self._cache[key] = value
        self._sources[key] = source
        self._store.commit_displayed(key, value)
        return value

    def source_of(self, name: str) -> ValueSource:
        """直近の解決で採用された層（デバッグ/テスト用）。"""
        key = self._store.canonical(name)
        if key not in self._sources:
            self.resolve(key)
        return self._sources[key]

    def _compute(self, key: str) -> tuple[ControlValue, ValueSource]:
        desc = self._store.get_descriptor(key)
        if self._store.is_bypassed(key):
            pinned = desc.bypass_value()
            assert pinned is not None
            return pinned, "bypass"
        interp = self.interpolation
        if interp is not None and interp.covers(key):
            return interp.value(key, self._clock.position_in_beats()), "interpolation"
        override = self._bridge.override(key)
        if override is not None:
            return override, "controller"
        return self._animated(key)

    def _animated(self, key: str) -> tuple[ControlValue, ValueSource]:
        desc = self._store.get_descriptor(key)
        base = self._store.base_value(key)
        curve = self.curves.get(key)
        chain = self.chains.get(key)
        source: ValueSource = "base"
        try:
            value: ControlValue | None = base
            if curve is not None:
                if isinstance(curve, Hot):
                    curve = curve.bind(self._lookup)
                state = self._curve_states.get(key)
                if state is None and is_stateful(curve):
                    state = self._curve_states.setdefault(key, EffectState())
                previous = state.committed if state is not None else None
                value = evaluate_curve(curve, self._clock.position_in_beats(), previous)
                if state is not None:
                    state.pending = value
                source = "curve"
            if chain is not None and desc.kind == "float" and value is not None:
                value = chain.apply(float(value), self._dt_beats, self._lookup)
                source = "modulation"
        except (ArithmeticError, ValueError, TypeError) as e:
            err = InvalidCurve(key, f"evaluation failed: {e}")
            logger.warning("%s", err)
            if self._on_error is not None:
                self._on_error(err)
            return desc.default if desc.default is not None else 0.0, "base"
        if value is None:
            value = desc.default if desc.default is not None else 0.0
        return value, source

    def _lookup(self, name: str) -> float:
        value = self.resolve(name)
        return float(value) if isinstance(value, (int, float)) else 0.0

    # --- 補助 ---
    def is_disabled(self, name: str) -> bool:
        desc = self._store.get_descriptor(name)
        if desc.disabled is None:
            return False
        return desc.disabled.evaluate(self.resolve)

    def values(self) -> dict[str, ControlValue]:
        """値を持つ全コントロールを解決する。1 件の失敗で他を止めない。"""
        out: dict[str, ControlValue] = {}
        for name in self._store.value_names():
            try:
                out[name] = self.resolve(name)
            except ControlError as e:
                logger.warning("resolve failed for %s: %s", name, e)
                if self._on_error is not None:
                    self._on_error(e)
                desc = self._store.get_descriptor(name)
                if desc.default is not None:
                    out[name] = desc.default
        return out


__all__ = ["PrecedenceResolver", "ValueSource"]
