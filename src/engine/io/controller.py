"""
MIDI コントローラ入出力（IO モジュール）

本モジュールは、外部 MIDI デバイスとのワイヤプロトコル（コントロールチェンジ）を扱う。
7bit/14bit の CC を `ControllerMessage` に正規化し、入力ポートのコールバックから
ブリッジのキューへ受け渡す。出力ポートがあれば再同期（resend）のメッセージを送出する。

主な責務:
- MIDI 入力/出力ポートの検証とオープン（存在しない場合は `InvalidPortError`）。
- mido メッセージ ↔ `ControllerMessage` の変換（control_change 以外は捨てる）。
- 14bit 値の合成/分解（MSB: CC0–31, LSB: CC32–63）。

設計メモ:
- 入力はコールバック（mido のバックエンドスレッド）で受け、`sink` に渡すだけにする。
  ブリッジ側の `queue.SimpleQueue` が唯一の共有点で、ロックは持たない。
- デバイス/ポートの列挙は扱わない（エラー時の案内ログのみ）。

使用例:
    from engine.io.controller import MidiPort
    port = MidiPort("Grid", bridge.push, output_name="Grid")
    bridge.sender = port.send
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import mido

logger = logging.getLogger(__name__)

MSB_THRESHOLD = 32  # 14ビットのコントロールチェンジメッセージのMSBは32未満
MAX_7BIT_VAL = 127
MAX_14BIT_VAL = 16383  # 14ビットのMIDI値の最大値
CONTROL_CHANGE_STATUS = 176  # 0xB0 + channel


class InvalidPortError(Exception):
    """要求された MIDI ポート名が存在しない場合に送出される例外。"""


@dataclass(frozen=True)
class ControllerMessage:
    """チャンネル/CC 番号/7bit 値の 3 つ組。"""

    channel: int
    controller: int
    value: int

    def __post_init__(self) -> None:
        if not (0 <= self.channel <= 15):
            raise ValueError(f"channel は 0..15: {self.channel}")
        if not (0 <= self.controller <= 127):
            raise ValueError(f"controller は 0..127: {self.controller}")
        if not (0 <= self.value <= MAX_7BIT_VAL):
            raise ValueError(f"value は 0..127: {self.value}")

    @property
    def key(self) -> tuple[int, int]:
        return (self.channel, self.controller)

    def as_bytes(self) -> tuple[int, int, int]:
        """生の 3 バイト（status, controller, value）。"""
        return (CONTROL_CHANGE_STATUS + self.channel, self.controller, self.value)


def decode(msg: mido.Message) -> Optional[ControllerMessage]:
    """mido メッセージを変換する。control_change 以外は None。"""
    if msg.type != "control_change":  # type: ignore[attr-defined]
        return None
    return ControllerMessage(msg.channel, msg.control, msg.value)  # type: ignore[attr-defined]


def encode(message: ControllerMessage) -> mido.Message:
    return mido.Message(
        "control_change",
        channel=message.channel,
        control=message.controller,
        value=message.value,
    )


def combine_14bit(msb: int, lsb: int) -> int:
    """MSB/LSB から 0..16383 を組み立てる。"""
    return ((int(msb) & 0x7F) << 7) | (int(lsb) & 0x7F)


def split_14bit(value: int) -> tuple[int, int]:
    v = max(0, min(MAX_14BIT_VAL, int(value)))
    return v >> 7, v & 0x7F


class MidiPort:
    """入力ポート（コールバックで `sink` へ転送）と任意の出力ポートを束ねる。"""

    def __init__(
        self,
        input_name: str,
        sink: Callable[[ControllerMessage], None],
        *,
        output_name: str | None = None,
    ) -> None:
        self.input_name = input_name
        self.output_name = output_name
        self._sink = sink
        self.inport = self.validate_and_open_port(input_name, callback=self._on_message)
        self.outport = (
            self.validate_and_open_output(output_name) if output_name is not None else None
        )

    def __repr__(self) -> str:
        return f"MidiPort(input={self.input_name}, output={self.output_name})"

    def _on_message(self, msg: mido.Message) -> None:
        decoded = decode(msg)
        if decoded is not None:
            self._sink(decoded)

    def send(self, message: ControllerMessage) -> None:
        if self.outport is None:
            return
        self.outport.send(encode(message))

    def close(self) -> None:
        for port in (self.inport, self.outport):
            if port is not None:
                port.close()

    @staticmethod
    def validate_and_open_port(port_name: str, *, callback=None):
        if port_name in mido.get_input_names():  # type: ignore
            return mido.open_input(port_name, callback=callback)  # type: ignore
        MidiPort.handle_invalid_port_name(port_name, mido.get_input_names())  # type: ignore

    @staticmethod
    def validate_and_open_output(port_name: str):
        if port_name in mido.get_output_names():  # type: ignore
            return mido.open_output(port_name)  # type: ignore
        MidiPort.handle_invalid_port_name(port_name, mido.get_output_names())  # type: ignore

    @staticmethod
    def handle_invalid_port_name(port_name: str, available: list[str]) -> None:
        logger.error("Invalid port name: %s", port_name)
        logger.info("Available ports: %s", available)
        raise InvalidPortError(f"Invalid port name: {port_name}. Available: {available}")


__all__ = [
    "InvalidPortError",
    "ControllerMessage",
    "MidiPort",
    "decode",
    "encode",
    "combine_14bit",
    "split_14bit",
    "MSB_THRESHOLD",
    "MAX_7BIT_VAL",
    "MAX_14BIT_VAL",
]
