"""
どこで: `api.controller`
何を: 外部コントローラ（MIDI ポート）の初期化（Null 実装含む）とハブへの接続。
なぜ: ポート名の検証/フォールバックをハブ本体から分離し、未接続でもスケッチを動かすため。
"""

from __future__ import annotations

import logging

from engine.control.hub import ControlHub
from engine.io.controller import ControllerMessage, InvalidPortError, MidiPort
from util.utils import config_section

logger = logging.getLogger(__name__)


class NullPort:
    """ポート未接続時の代替（送信は捨てる）。"""

    input_name: str | None = None
    output_name: str | None = None

    def send(self, message: ControllerMessage) -> None:  # noqa: ARG002
        return None

    def close(self) -> None:
        return None


def open_controller(
    hub: ControlHub,
    input_port: str | None = None,
    output_port: str | None = None,
) -> MidiPort | NullPort:
    """ポートを開いてハブのブリッジへ接続する。

    - ポート名を省略した場合は設定 `midi.input_port` / `midi.output_port` を使う。
    - 入力ポート名が無い/開けない場合は警告を出して NullPort を返す。
    """
    midi = config_section("midi")
    in_name = input_port if input_port is not None else midi.get("input_port")
    out_name = output_port if output_port is not None else midi.get("output_port")
    if not in_name:
        logger.info("no controller input port configured; using NullPort")
        return NullPort()
    try:
        port = MidiPort(str(in_name), hub.push_controller_message, output_name=out_name or None)
    except (InvalidPortError, OSError, RuntimeError) as e:
        logger.warning("controller unavailable; falling back to NullPort: %s", e)
        return NullPort()
    hub.bridge.sender = port.send
    logger.info("controller connected: %r", port)
    return port


__all__ = ["open_controller", "NullPort"]
