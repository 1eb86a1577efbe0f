"""
どこで: `engine.io.bridge`
何を: 外部コントローラのチャンネル（channel, CC）とコントロール名の双方向バインディング、
    学習（learn）モード、受信値のスケーリング、全再送（resend）を担う ControllerBridge。
なぜ: 非同期に届く入力を SPSC キューで受け、フレーム先頭で 1 回だけ排出することで、
    各フレームの解決値を（時計位置, レジストリ, 排出済み入力）の決定的な関数に保つため。

状態（チャンネルごと）:
- unbound / bound(name) / learning(name)。学習中は次に届いたメッセージのチャンネルへ束縛する。

補足:
- 14bit（hrcc）モードでは CC n < 32 を MSB として保持し、CC n + 32（LSB）の到着で値を確定する。
- 学習中でないときの占有済みチャンネルへの明示 bind は BindingConflict として無視/報告する。
"""

from __future__ import annotations

import logging
from queue import Empty, SimpleQueue
from typing import Any, Callable

from engine.control.errors import BindingConflict, ControlEvent, StaleMapping, UnknownControl
from engine.control.state import ControlDescriptor, ControlStore

from .controller import (
    MAX_7BIT_VAL,
    MAX_14BIT_VAL,
    MSB_THRESHOLD,
    ControllerMessage,
    combine_14bit,
    split_14bit,
)

logger = logging.getLogger(__name__)

ChannelKey = tuple[int, int]
EventSink = Callable[[ControlEvent], None]


def is_bindable(desc: ControlDescriptor) -> bool:
    """外部コントローラへ割り当て可能か（範囲付きのホスト編集スライダーのみ）。"""
    return desc.kind == "float" and desc.host_editable and desc.range_hint is not None


class ControllerBridge:
    """コントローラ入力の排出とバインディング管理。"""

    def __init__(
        self,
        store: ControlStore,
        *,
        hrcc: bool = False,
        enabled: bool = True,
        sender: Callable[[ControllerMessage], None] | None = None,
        emit: EventSink | None = None,
    ) -> None:
        self._store = store
        self.hrcc = bool(hrcc)
        self.enabled = bool(enabled)
        self.sender = sender
        self._emit = emit
        self._queue: SimpleQueue[ControllerMessage] = SimpleQueue()
        self._by_channel: dict[ChannelKey, str] = {}
        self._by_control: dict[str, ChannelKey] = {}
        self._overrides: dict[str, float] = {}
        self._pending_msb: dict[ChannelKey, int] = {}
        self._learning: str | None = None

    def __repr__(self) -> str:
        return (
            f"ControllerBridge(bindings={len(self._by_control)}, hrcc={self.hrcc}, "
            f"enabled={self.enabled}, learning={self._learning!r})"
        )

    # --- 生産者側（I/O スレッド） ---
    def push(self, message: ControllerMessage) -> None:
        """入力メッセージをキューへ積む（スレッドセーフ）。"""
        self._queue.put(message)

    # --- 消費者側（フレームループ） ---
    def drain(self) -> int:
        """キューを空になるまで排出して処理する。処理件数を返す。"""
        processed = 0
        while True:
            try:
                msg = self._queue.get_nowait()
            except Empty:
                break
            self._handle(msg)
            processed += 1
        return processed

    def _handle(self, msg: ControllerMessage) -> None:
        logger.debug("inbound ch=%s cc=%s value=%s", msg.channel, msg.controller, msg.value)
        if self.hrcc and msg.controller < MSB_THRESHOLD:
            # MSB を保持して LSB を待つ
            self._pending_msb[msg.key] = msg.value
            return
        if self.hrcc and msg.controller < 2 * MSB_THRESHOLD:
            key: ChannelKey = (msg.channel, msg.controller - MSB_THRESHOLD)
            msb = self._pending_msb.get(key)
            if msb is None:
                # 対応する MSB がまだ届いていない
                return
            normalized = combine_14bit(msb, msg.value) / MAX_14BIT_VAL
        else:
            key = msg.key
            normalized = msg.value / MAX_7BIT_VAL

        if self._learning is not None:
            self._bind_learned(key)
            return
        name = self._by_channel.get(key)
        if name is None:
            logger.debug("unbound channel %s:%s", key[0], key[1])
            return
        if not self.enabled:
            return
        hint = self._store.get_descriptor(name).range_hint
        if hint is None:
            return
        self._overrides[name] = hint.min_value + normalized * (hint.max_value - hint.min_value)

    # --- 学習 ---
    @property
    def learning(self) -> str | None:
        return self._learning

    def start_learning(self, name: str) -> None:
        """次の入力メッセージで `name` を束縛する。保留中の学習は取り消す。"""
        key = self._require_bindable(name)
        if self._learning is not None and self._learning != key:
            logger.info("cancel pending learn for %s", self._learning)
        self._learning = key
        self._pending_msb.clear()
        self._fire("learning_changed", {"control": key})

    def stop_learning(self) -> None:
        if self._learning is None:
            return
        self._learning = None
        self._fire("learning_changed", {"control": None})

    def _bind_learned(self, key: ChannelKey) -> None:
        name = self._learning
        self._learning = None
        assert name is not None
        self._set_binding(key, name)
        logger.info("learned %s -> %s:%s", name, key[0], key[1])
        self._fire("learning_changed", {"control": None})

    # --- バインディング ---
    def bind(self, channel: int, controller: int, name: str) -> bool:
        """明示的に束縛する。占有済みチャンネル（学習中以外）は BindingConflict として無視。"""
        canonical = self._require_bindable(name)
        key: ChannelKey = (int(channel), int(controller))
        bound_to = self._by_channel.get(key)
        if bound_to is not None and bound_to != canonical and self._learning is None:
            err = BindingConflict(key, bound_to, canonical)
            logger.warning("%s", err)
            if self._emit is not None:
                self._emit(ControlEvent.from_error(err, warning=True))
            return False
        self._set_binding(key, canonical)
        return True

    def unbind(self, name: str) -> bool:
        key = self._by_control.pop(name, None)
        self._overrides.pop(name, None)
        if key is None:
            return False
        self._by_channel.pop(key, None)
        self._fire_bindings()
        return True

    def binding_for(self, name: str) -> ChannelKey | None:
        return self._by_control.get(name)

    def bindings(self) -> dict[str, ChannelKey]:
        return dict(self._by_control)

    def _set_binding(self, key: ChannelKey, name: str) -> None:
        # 1 チャンネル ↔ 1 コントロール
        previous = self._by_channel.get(key)
        if previous is not None and previous != name:
            self._by_control.pop(previous, None)
            self._overrides.pop(previous, None)
        old_key = self._by_control.get(name)
        if old_key is not None and old_key != key:
            self._by_channel.pop(old_key, None)
        self._by_channel[key] = name
        self._by_control[name] = key
        self._fire_bindings()

    def _require_bindable(self, name: str) -> str:
        canonical = self._store.canonical(name)
        desc = self._store.get_descriptor(canonical)
        if not is_bindable(desc):
            raise ValueError(f"{canonical} は外部コントローラへ割り当てできない（{desc.kind}）")
        return canonical

    # --- 上書き値 ---
    def override(self, name: str) -> float | None:
        """有効時のみ上書き値を返す。"""
        if not self.enabled:
            return None
        return self._overrides.get(name)

    def clear_override(self, name: str) -> None:
        self._overrides.pop(name, None)

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = bool(enabled)

    # --- 再送 ---
    def resend_all(self, resolve: Callable[[str], Any]) -> list[ControllerMessage]:
        """束縛中の全コントロールの解決値をコントローラへ送り返す（一方向の同期）。"""
        out: list[ControllerMessage] = []
        for name, (channel, controller) in self._by_control.items():
            hint = self._store.get_descriptor(name).range_hint
            if hint is None:
                continue
            span = hint.max_value - hint.min_value
            value = float(resolve(name))
            normalized = 0.0 if span == 0 else (value - hint.min_value) / span
            normalized = max(0.0, min(1.0, normalized))
            if self.hrcc and controller < MSB_THRESHOLD:
                msb, lsb = split_14bit(round(normalized * MAX_14BIT_VAL))
                out.append(ControllerMessage(channel, controller, msb))
                out.append(ControllerMessage(channel, controller + MSB_THRESHOLD, lsb))
            else:
                out.append(ControllerMessage(channel, controller, round(normalized * MAX_7BIT_VAL)))
        if self.sender is not None:
            for msg in out:
                self.sender(msg)
        return out

    # --- スクリプト変更への追従 ---
    def prune(self, compatible: Callable[[str], bool] | None = None) -> list[StaleMapping]:
        """消えた/非互換になったコントロールのバインディングを落とす。"""
        stale: list[StaleMapping] = []
        for name in list(self._by_control):
            reason = None
            if not self._store.has(name):
                reason = "control no longer exists"
            elif not is_bindable(self._store.get_descriptor(name)):
                reason = "control is no longer a bounded slider"
            elif compatible is not None and not compatible(name):
                reason = "control bounds changed"
            if reason is None:
                continue
            key = self._by_control.pop(name)
            self._by_channel.pop(key, None)
            self._overrides.pop(name, None)
            stale.append(StaleMapping(name, reason))
        if self._learning is not None and not self._store.has(self._learning):
            self._learning = None
        if stale:
            for err in stale:
                logger.warning("dropping controller binding: %s", err)
            self._fire_bindings()
        return stale

    def restore_bindings(self, mapping: dict[str, ChannelKey]) -> list[StaleMapping]:
        """永続化済みのバインディングを復元する。対応しないものは StaleMapping として返す。"""
        stale: list[StaleMapping] = []
        for name, (channel, controller) in mapping.items():
            try:
                desc = self._store.get_descriptor(name)
            except UnknownControl:
                stale.append(StaleMapping(name, "control no longer exists"))
                continue
            if not is_bindable(desc):
                stale.append(StaleMapping(name, "control is no longer a bounded slider"))
                continue
            key: ChannelKey = (int(channel), int(controller))
            if key in self._by_channel and self._by_channel[key] != desc.name:
                stale.append(StaleMapping(name, f"channel {key[0]}:{key[1]} already bound"))
                continue
            self._by_channel[key] = desc.name
            self._by_control[desc.name] = key
        for err in stale:
            logger.warning("dropping persisted controller binding: %s", err)
        self._fire_bindings()
        return stale

    def clear(self) -> None:
        self._by_channel.clear()
        self._by_control.clear()
        self._overrides.clear()
        self._pending_msb.clear()
        self._learning = None

    # --- 通知 ---
    def _fire_bindings(self) -> None:
        self._fire(
            "bindings_changed",
            {"bindings": {n: [k[0], k[1]] for n, k in self._by_control.items()}},
        )

    def _fire(self, event: str, payload: dict[str, Any]) -> None:
        if self._emit is not None:
            self._emit(ControlEvent(event, payload))  # type: ignore[arg-type]


__all__ = ["ControllerBridge", "ChannelKey", "is_bindable"]
