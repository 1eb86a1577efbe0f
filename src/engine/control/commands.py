"""
どこで: `engine.control.commands`
何を: 表面（コントロールパネル）からのコマンド封筒 `{event_name, payload?}` を受けるキューと、
    イベント名 → ハブ操作のディスパッチ表。
なぜ: 別スレッド/別プロセス由来のコマンドをフレーム先頭でまとめて適用し、
    解決前に状態を確定させるため。失敗は例外ではなくイベントとして報告する。
"""

from __future__ import annotations

import logging
from queue import Empty, SimpleQueue
from typing import TYPE_CHECKING, Any, Callable, Mapping

from .errors import ControlError, ControlEvent

if TYPE_CHECKING:
    from .hub import ControlHub

logger = logging.getLogger(__name__)

Envelope = Mapping[str, Any]
Handler = Callable[["ControlHub", Mapping[str, Any]], Any]


def _require(payload: Mapping[str, Any], key: str) -> Any:
    if key not in payload:
        raise ValueError(f"payload に {key!r} が必要")
    return payload[key]


def _duration(payload: Mapping[str, Any]) -> float | None:
    d = payload.get("duration")
    return None if d is None else float(d)


HANDLERS: dict[str, Handler] = {
    "set_value": lambda hub, p: hub.set_value(_require(p, "name"), _require(p, "value")),
    "set_bypass": lambda hub, p: hub.set_bypass(_require(p, "name"), bool(p.get("bypassed", True))),
    "set_excluded": lambda hub, p: hub.set_excluded(
        _require(p, "name"), bool(p.get("excluded", True))
    ),
    "capture_snapshot": lambda hub, p: hub.capture(str(_require(p, "slot"))),
    "recall_snapshot": lambda hub, p: hub.recall(str(_require(p, "slot")), _duration(p)),
    "delete_snapshot": lambda hub, p: hub.delete_snapshot(str(_require(p, "slot"))),
    "clear_snapshots": lambda hub, p: hub.clear_snapshots(),
    "randomize": lambda hub, p: hub.randomize(_duration(p)),
    "start_learning": lambda hub, p: hub.start_learning(_require(p, "name")),
    "stop_learning": lambda hub, p: hub.stop_learning(),
    "bind": lambda hub, p: hub.bind(
        int(_require(p, "channel")), int(_require(p, "controller")), _require(p, "name")
    ),
    "unbind": lambda hub, p: hub.unbind(_require(p, "name")),
    "set_tempo": lambda hub, p: hub.set_tempo(float(_require(p, "bpm"))),
    "tap_tempo": lambda hub, p: hub.tap(p.get("now")),
    "play": lambda hub, p: hub.play(),
    "pause": lambda hub, p: hub.pause(),
    "advance": lambda hub, p: hub.advance(),
    "reset": lambda hub, p: hub.reset(),
    "set_bridge_enabled": lambda hub, p: hub.set_bridge_enabled(bool(_require(p, "enabled"))),
    "resend": lambda hub, p: hub.resend(),
    "reload": lambda hub, p: hub.reload(_require(p, "document")),
}


class CommandChannel:
    """コマンド封筒のキュー（生産者はどのスレッドからでも `post` できる）。"""

    def __init__(self) -> None:
        self._queue: SimpleQueue[dict[str, Any]] = SimpleQueue()

    def post(self, event_name: str, payload: Mapping[str, Any] | None = None) -> None:
        self._queue.put({"event_name": event_name, "payload": dict(payload or {})})

    def post_envelope(self, envelope: Envelope) -> None:
        self._queue.put(dict(envelope))

    def drain(self, hub: "ControlHub") -> int:
        """キューを空にしながら順に適用する。処理件数を返す。"""
        processed = 0
        while True:
            try:
                envelope = self._queue.get_nowait()
            except Empty:
                break
            dispatch(hub, envelope)
            processed += 1
        return processed


def dispatch(hub: "ControlHub", envelope: Envelope) -> bool:
    """1 件のコマンドを適用する。失敗はログ + error イベントにし、False を返す。"""
    name = envelope.get("event_name")
    payload = envelope.get("payload") or {}
    handler = HANDLERS.get(str(name))
    if handler is None:
        logger.warning("unknown command: %r", name)
        hub.emit(ControlEvent("error", {"kind": "UnknownCommand", "message": f"{name!r}"}))
        return False
    if not isinstance(payload, Mapping):
        hub.emit(ControlEvent("error", {"kind": "InvalidPayload", "message": f"{name}"}))
        return False
    try:
        handler(hub, payload)
    except (ControlError, ValueError, TypeError, KeyError) as e:
        logger.warning("command %s failed: %s", name, e)
        hub.emit(ControlEvent.from_error(e))
        return False
    except Exception as e:
        logger.exception("command %s raised unexpectedly", name)
        hub.emit(ControlEvent.from_error(e))
        return False
    return True


__all__ = ["CommandChannel", "HANDLERS", "dispatch"]
