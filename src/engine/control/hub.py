"""
どこで: `engine.control.hub`
何を: 1 スケッチにつき 1 つの ControlHub。レジストリ/カーブ/チェーン/ブリッジ/スナップショット/
    補間/コマンドキューを所有し、フレームごとの更新と優先順位に基づく解決を提供する。
なぜ: 「現在の補間」などの可変状態をシングルトンにせず、スケッチの生存期間に結び付いた
    明示的な所有者に置くため（スケッチ切替時はハブごと差し替える）。

フレーム手順（`update()`）:
    時計 tick → ホストコマンド排出 → コントローラ入力排出 → 完了した補間の確定 →
    エフェクト状態の確定とキャッシュ破棄。その後に `values()` / `resolve()` を呼ぶ。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from common.settings import get as get_settings
from engine.core.clock import MusicalClock, TapTempo
from engine.core.tickable import Tickable
from engine.io.bridge import ChannelKey, ControllerBridge
from engine.io.controller import ControllerMessage
from util.utils import load_config

from .commands import CommandChannel
from .errors import ControlError, ControlEvent, StaleMapping
from .resolver import PrecedenceResolver, ValueSource
from .script import parse_script
from .snapshot import Interpolation, InterpolationKind, Randomizer, SnapshotManager, slot_ids
from .state import ControlDescriptor, ControlStore, ControlValue

logger = logging.getLogger(__name__)

Listener = Callable[[ControlEvent], None]


@dataclass(frozen=True)
class HubOptions:
    """ハブの構成値（YAML `configs/default.yaml` + 環境変数 `PXC_*`）。"""

    bpm: float = 134.0
    fps: float = 60.0
    transition_beats: float = 4.0
    snapshot_slots: int = 10
    # bypass 中のコントロールもスナップショットへ含める（解決時にだけ上書き）
    capture_bypassed: bool = True
    hrcc: bool = False
    seed: int | None = None
    state_dir: str | None = None

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any] | None = None) -> "HubOptions":
        """構成辞書（省略時は `load_config()`）と環境設定から組み立てる。"""
        data = load_config() if cfg is None else cfg
        clock = _section(data, "clock")
        hub = _section(data, "control_hub")
        midi = _section(data, "midi")
        settings = get_settings()
        hrcc = settings.HRCC if settings.HRCC is not None else bool(midi.get("hrcc", False))
        state_dir = hub.get("state_dir")
        return cls(
            bpm=float(clock.get("bpm", cls.bpm)),
            fps=float(clock.get("fps", cls.fps)),
            transition_beats=float(hub.get("transition_beats", cls.transition_beats)),
            snapshot_slots=int(hub.get("snapshot_slots", cls.snapshot_slots)),
            capture_bypassed=bool(hub.get("capture_bypassed", cls.capture_bypassed)),
            hrcc=hrcc,
            seed=settings.RANDOM_SEED,
            state_dir=str(state_dir) if state_dir else None,
        )


def _section(cfg: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = cfg.get(name) if isinstance(cfg, Mapping) else None
    return section if isinstance(section, Mapping) else {}


class ControlHub(Tickable):
    """コントロールの宣言/状態/時間進行を束ね、フレームごとに値を解決する。"""

    def __init__(
        self,
        document: Mapping[str, Any] | None = None,
        *,
        options: HubOptions | None = None,
        clock: MusicalClock | None = None,
        sketch: str = "sketch",
    ) -> None:
        self.options = options if options is not None else HubOptions()
        self.sketch = sketch
        self.clock = clock if clock is not None else MusicalClock(self.options.bpm, self.options.fps)
        self.store = ControlStore()
        self.bridge = ControllerBridge(self.store, hrcc=self.options.hrcc, emit=self.emit)
        self.snapshots = SnapshotManager(slot_ids(self.options.snapshot_slots))
        self.randomizer = Randomizer(self.options.seed)
        self.resolver = PrecedenceResolver(
            self.store, self.bridge, self.clock, on_error=self._report
        )
        self.commands = CommandChannel()
        self.tap_tempo = TapTempo()
        self._listeners: list[Listener] = []
        self._last_beats = self.clock.position_in_beats()
        self.errors: list[ControlError] = []
        if document is not None:
            self.reload(document)

    def __repr__(self) -> str:
        return (
            f"ControlHub(sketch={self.sketch!r}, controls={len(self.store.value_names())}, "
            f"beats={self.clock.position_in_beats():.3f})"
        )

    # ------------------------------------------------------------------
    # スクリプト（初回ロード/ホットリロード）
    # ------------------------------------------------------------------
    def reload(self, document: Mapping[str, Any] | None) -> list[ControlError]:
        """スクリプトを（再）適用する。名前で差分を取り、互換なものは状態を引き継ぐ。

        文書がマッピングでなければ InvalidCurve を送出し、現在の状態は変えない。
        """
        script = parse_script(document)
        old_desc = {d.name: d for d in self.store.descriptors()}
        old_base = self.store.base_values()
        bypass_flags, excluded_flags = self.store.runtime_flags()

        new_desc = {d.name: d for d in script.descriptors}
        compatible = {
            n for n, d in new_desc.items() if n in old_desc and old_desc[n].is_compatible(d)
        }
        self.store.clear()
        for desc in script.descriptors:
            value = old_base.get(desc.name) if desc.name in compatible else None
            self.store.register(desc, value)
        self.store.restore_runtime_flags(
            {n: f for n, f in bypass_flags.items() if n in compatible},
            {n: f for n, f in excluded_flags.items() if n in compatible},
        )

        stale: list[StaleMapping] = self.bridge.prune(lambda n: n in compatible)
        interp = self.resolver.interpolation
        if interp is not None:
            interp.retain(n for n in interp.to_state if n in compatible)
            if not interp.to_state:
                self.resolver.interpolation = None
        self.resolver.set_animation(script.curves, script.chains)

        self.errors = list(script.errors) + list(stale)
        for err in self.errors:
            self.emit(ControlEvent.from_error(err, warning=isinstance(err, StaleMapping)))
        dropped = sorted(set(old_desc) - set(new_desc))
        if old_desc:
            logger.info(
                "reloaded controls: %d kept, %d reset, %d dropped",
                len(compatible),
                len(new_desc) - len(compatible),
                len(dropped),
            )
        return self.errors

    @property
    def script_errors(self) -> list[ControlError]:
        return list(self.errors)

    # ------------------------------------------------------------------
    # フレーム
    # ------------------------------------------------------------------
    def update(self, dt: float | None = None) -> None:
        """1 フレーム分の更新（時計 → コマンド → コントローラ入力 → 補間確定）。"""
        self.clock.tick(dt)
        self.commands.drain(self)
        self.bridge.drain()
        self._finish_interpolation()
        now = self.clock.position_in_beats()
        self.resolver.begin_frame(now - self._last_beats)
        self._last_beats = now

    # -------- Tickable interface --------
    def tick(self, dt: float | None = None) -> None:
        self.update(dt)

    def _finish_interpolation(self) -> None:
        interp = self.resolver.interpolation
        if interp is None or not interp.is_complete(self.clock.position_in_beats()):
            return
        committed: dict[str, ControlValue] = {}
        for name, value in interp.to_state.items():
            if not self.store.has(name):
                continue
            try:
                committed[name] = self.store.set_base(name, value, notify=False)
            except (TypeError, ValueError) as e:
                logger.warning("cannot commit %s=%r: %s", name, value, e)
                continue
            self.bridge.clear_override(name)
        self.resolver.interpolation = None
        self.resolver.invalidate()
        self.emit(
            ControlEvent(
                "transition_ended",
                {"kind": interp.kind, "slot": interp.slot, "values": dict(committed)},
            )
        )
        self.resend()

    # ------------------------------------------------------------------
    # 解決
    # ------------------------------------------------------------------
    def resolve(self, name: str) -> ControlValue:
        """優先順位に従った現在値（フレーム内で冪等）。"""
        return self.resolver.resolve(name)

    get = resolve

    def values(self) -> dict[str, ControlValue]:
        """描画側へ渡す全コントロールの値。"""
        return self.resolver.values()

    def source_of(self, name: str) -> ValueSource:
        return self.resolver.source_of(name)

    def is_disabled(self, name: str) -> bool:
        return self.resolver.is_disabled(name)

    def descriptor(self, name: str) -> ControlDescriptor:
        return self.store.get_descriptor(name)

    # ------------------------------------------------------------------
    # ホスト編集
    # ------------------------------------------------------------------
    def set_value(self, name: str, value: Any) -> ControlValue:
        key = self.store.canonical(name)
        desc = self.store.get_descriptor(key)
        if not desc.host_editable:
            raise ValueError(f"{key} はホストから編集できない（{desc.kind}/{desc.origin}）")
        coerced = self.store.set_base(key, value)
        self.bridge.clear_override(key)
        interp = self.resolver.interpolation
        if interp is not None and interp.covers(key):
            interp.retain(n for n in interp.to_state if n != key)
        self.resolver.invalidate()
        self.emit(ControlEvent("value_updated", {"name": key, "value": coerced}))
        return coerced

    def set_bypass(self, name: str, bypassed: bool = True) -> None:
        key = self.store.canonical(name)
        if bypassed and self.store.get_descriptor(key).bypass_value() is None:
            raise ValueError(f"{key} は bypass できない")
        self.store.set_bypassed(key, bypassed)
        self.resolver.invalidate()

    def set_excluded(self, name: str, excluded: bool = True) -> None:
        self.store.set_excluded(name, excluded)

    def is_excluded(self, name: str) -> bool:
        return self.store.is_excluded(name)

    # ------------------------------------------------------------------
    # スナップショット / ランダマイズ
    # ------------------------------------------------------------------
    def capture(self, slot: str) -> dict[str, ControlValue]:
        """ホスト編集可能な全コントロールの基底値をスロットへコピーする。"""
        values: dict[str, ControlValue] = {}
        for desc in self.store.descriptors():
            if not desc.host_editable:
                continue
            if not self.options.capture_bypassed and self.store.is_bypassed(desc.name):
                continue
            base = self.store.base_value(desc.name)
            if base is not None:
                values[desc.name] = base
        self.snapshots.capture(slot, values)
        self._fire_snapshots()
        return values

    def recall(self, slot: str, duration: float | None = None) -> Interpolation:
        """スロットへ向かう補間を開始する（空スロットは SnapshotNotFound）。"""
        stored = self.snapshots.get(slot)
        target: dict[str, ControlValue] = {}
        for name, value in stored.items():
            if not self.store.has(name):
                continue
            desc = self.store.get_descriptor(name)
            if not desc.host_editable:
                continue
            try:
                target[desc.name] = desc.coerce(value)
            except (TypeError, ValueError):
                logger.debug("skip incompatible snapshot value %s=%r", name, value)
        return self._start_interpolation(target, duration, kind="recall", slot=str(slot))

    def delete_snapshot(self, slot: str) -> None:
        self.snapshots.delete(slot)
        self._fire_snapshots()

    def clear_snapshots(self) -> None:
        self.snapshots.clear()
        self._fire_snapshots()

    def snapshot_slots(self) -> list[str]:
        return self.snapshots.slots()

    def randomize(self, duration: float | None = None) -> Interpolation:
        """除外/無効/bypass 以外のホスト編集コントロールを乱数目標へ補間する。"""
        eligible = [
            d
            for d in self.store.descriptors()
            if d.host_editable
            and not self.store.is_excluded(d.name)
            and not self.store.is_bypassed(d.name)
            and not self.is_disabled(d.name)
        ]
        target = self.randomizer.target(eligible)
        return self._start_interpolation(target, duration, kind="randomize", slot=None)

    def _start_interpolation(
        self,
        target: dict[str, ControlValue],
        duration: float | None,
        *,
        kind: InterpolationKind,
        slot: str | None,
    ) -> Interpolation:
        # 進行中の補間の現在値を from にして、見た目の跳びを防ぐ
        origin = {name: self.resolve(name) for name in target}
        interp = Interpolation(
            from_state=origin,
            to_state=dict(target),
            start=self.clock.position_in_beats(),
            duration=self.options.transition_beats if duration is None else float(duration),
            kind=kind,
            slot=slot,
        )
        self.resolver.interpolation = interp
        self.resolver.invalidate()
        return interp

    @property
    def interpolation(self) -> Interpolation | None:
        return self.resolver.interpolation

    # ------------------------------------------------------------------
    # 外部コントローラ
    # ------------------------------------------------------------------
    def start_learning(self, name: str) -> None:
        self.bridge.start_learning(name)

    def stop_learning(self) -> None:
        self.bridge.stop_learning()

    def bind(self, channel: int, controller: int, name: str) -> bool:
        ok = self.bridge.bind(channel, controller, name)
        self.resolver.invalidate()
        return ok

    def unbind(self, name: str) -> bool:
        ok = self.bridge.unbind(self.store.canonical(name))
        self.resolver.invalidate()
        return ok

    def bindings(self) -> dict[str, ChannelKey]:
        return self.bridge.bindings()

    def set_bridge_enabled(self, enabled: bool) -> None:
        self.bridge.set_enabled(enabled)
        self.resolver.invalidate()

    def push_controller_message(self, message: ControllerMessage) -> None:
        """I/O スレッドからの入力（次の `update()` で排出される）。"""
        self.bridge.push(message)

    def resend(self) -> list[ControllerMessage]:
        return self.bridge.resend_all(self.resolve)

    # ------------------------------------------------------------------
    # 時間
    # ------------------------------------------------------------------
    def set_tempo(self, bpm: float) -> None:
        self.clock.tempo(bpm)
        self._fire_transport()

    def tap(self, now: float | None = None) -> float | None:
        bpm = self.tap_tempo.tap(now)
        if bpm is not None:
            self.set_tempo(bpm)
        return bpm

    def play(self) -> None:
        self.clock.play()
        self._fire_transport()

    def pause(self) -> None:
        self.clock.pause()
        self._fire_transport()

    def advance(self) -> None:
        self.clock.advance_one_frame()
        self.resolver.invalidate()

    def reset(self) -> None:
        self.clock.reset()
        self._last_beats = 0.0
        self.resolver.invalidate()
        self._fire_transport()

    # ------------------------------------------------------------------
    # 表面へのコマンド/イベント
    # ------------------------------------------------------------------
    def post(self, event_name: str, payload: Mapping[str, Any] | None = None) -> None:
        """コマンドを積む（次の `update()` で適用）。"""
        self.commands.post(event_name, payload)

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def emit(self, event: ControlEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("event listener failed for %s", event.name)

    def _report(self, err: ControlError) -> None:
        self.emit(ControlEvent.from_error(err))

    def _fire_snapshots(self) -> None:
        self.emit(ControlEvent("snapshots_changed", {"slots": self.snapshots.slots()}))

    def _fire_transport(self) -> None:
        self.emit(
            ControlEvent(
                "transport_changed",
                {"bpm": self.clock.bpm, "paused": self.clock.is_paused},
            )
        )


__all__ = ["ControlHub", "HubOptions"]
