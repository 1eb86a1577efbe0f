"""
どこで: `engine.control` の永続化ヘルパ。
何を: ハブの基底値/バインディング/テンポ/スナップショット/除外フラグを JSON に保存/復元する（スケッチ単位）。
なぜ: 次回実行時に前回の調整値とコントローラ割り当てを反映し、作業を継続しやすくするため。

仕様（要点）:
- 保存先: 既定 `data/controls/<sketch>.json`。設定 `control_hub.state_dir` で上書き可。
- 保存対象: ホスト編集可能なコントロールの基底値（既定値と異なるもののみ）。
- 量子化: float は RangeHint の step を優先、未指定は 1e-6
  （環境変数 `PXC_PERSIST_QUANT_STEP` があればそれを用いる）。
- 復元できないバインディングは StaleMapping として warning イベントにする。
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from common.settings import get as get_settings
from util.utils import config_section

from .errors import ControlEvent, UnknownControl
from .state import ControlDescriptor, ControlValue

if TYPE_CHECKING:
    from .hub import ControlHub

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def _default_step() -> float:
    return float(get_settings().PERSIST_QUANT_STEP)


def _quantize_value(value: float, *, step: float | None) -> float:
    if not step:
        return value
    return round(float(value) / float(step)) * float(step)


def _descriptor_step(desc: ControlDescriptor) -> float | None:
    if desc.range_hint is not None and desc.range_hint.step:
        return float(desc.range_hint.step)
    return None


def _resolve_state_dir(hub: "ControlHub | None" = None) -> Path:
    if hub is not None and hub.options.state_dir:
        return Path(hub.options.state_dir)
    state_dir = config_section("control_hub").get("state_dir")
    if isinstance(state_dir, str) and state_dir.strip():
        return Path(state_dir)
    return Path.cwd() / "data" / "controls"


def state_path_for(hub: "ControlHub", path: str | Path | None = None) -> Path:
    """保存先パス（明示指定が無ければ `<state_dir>/<sketch>.json`）。"""
    if path is not None:
        return Path(path)
    stem = Path(hub.sketch).stem or "sketch"
    return _resolve_state_dir(hub) / f"{stem}.json"


def _q(desc: ControlDescriptor, value: ControlValue, step_default: float) -> ControlValue:
    if isinstance(value, float):
        return _quantize_value(value, step=_descriptor_step(desc) or step_default)
    return value


def export_state(hub: "ControlHub") -> dict[str, Any]:
    """ハブの状態を JSON 化できる辞書にする。"""
    step_default = _default_step()
    values: dict[str, ControlValue] = {}
    excluded: list[str] = []
    for desc in hub.store.descriptors():
        if not desc.host_editable:
            continue
        if hub.store.is_excluded(desc.name):
            excluded.append(desc.name)
        base = hub.store.base_value(desc.name)
        if base is None:
            continue
        # 比較は量子化後に行い、微小差分での保存を避ける
        cur_q = _q(desc, base, step_default)
        if desc.default is not None and cur_q == _q(desc, desc.default, step_default):
            continue
        values[desc.name] = cur_q
    return {
        "version": STATE_VERSION,
        "sketch": hub.sketch,
        "saved_at": datetime.now(timezone.utc).isoformat(),
        "values": values,
        "bindings": {n: [k[0], k[1]] for n, k in hub.bridge.bindings().items()},
        "tempo": hub.clock.bpm,
        "paused": hub.clock.is_paused,
        "snapshots": hub.snapshots.export(),
        "excluded": excluded,
    }


def import_state(hub: "ControlHub", data: dict[str, Any]) -> int:
    """辞書からハブへ適用する。未知キー/型不一致はスキップし、適用した値の件数を返す。"""
    applied = 0
    values = data.get("values", {})
    if isinstance(values, dict):
        for name, value in values.items():
            try:
                if not hub.store.get_descriptor(name).host_editable:
                    continue
                hub.store.set_base(name, value)
            except (UnknownControl, TypeError, ValueError) as e:
                logger.debug("skip persisted value %s=%r: %s", name, value, e)
                continue
            applied += 1

    excluded = data.get("excluded", [])
    if isinstance(excluded, list):
        for name in excluded:
            if isinstance(name, str) and hub.store.has(name):
                hub.store.set_excluded(name, True)

    bindings = data.get("bindings", {})
    if isinstance(bindings, dict):
        mapping: dict[str, tuple[int, int]] = {}
        for name, pair in bindings.items():
            if not isinstance(pair, (list, tuple)) or len(pair) != 2:
                continue
            try:
                mapping[str(name)] = (int(pair[0]), int(pair[1]))
            except (TypeError, ValueError):
                continue
        for err in hub.bridge.restore_bindings(mapping):
            hub.emit(ControlEvent.from_error(err, warning=True))

    tempo = data.get("tempo")
    if isinstance(tempo, (int, float)) and tempo > 0:
        hub.clock.tempo(float(tempo))
    if data.get("paused") is True:
        hub.clock.pause()

    snapshots = data.get("snapshots", {})
    if isinstance(snapshots, dict):
        hub.snapshots.load(snapshots)

    hub.resolver.invalidate()
    return applied


def save_state(hub: "ControlHub", path: str | Path | None = None) -> Path | None:
    """ハブの状態を JSON に保存する。

    失敗時は None を返す（フェイルソフト）。
    """
    target = state_path_for(hub, path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("w", encoding="utf-8") as f:
            json.dump(export_state(hub), f, ensure_ascii=False, indent=2)
    except (OSError, TypeError, ValueError) as e:
        logger.warning("failed to save control state to %s: %s", target, e)
        return None
    return target


def load_state(hub: "ControlHub", path: str | Path | None = None) -> int:
    """JSON から状態をロードし、ハブへ適用する。

    戻り値は適用した値の件数。ファイルが無い/壊れている場合は 0。
    """
    source = state_path_for(hub, path)
    if not source.exists():
        return 0
    try:
        with source.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("failed to load control state from %s: %s", source, e)
        return 0
    if not isinstance(data, dict):
        logger.warning("ignored control state %s: not a mapping", source)
        return 0
    return import_state(hub, data)


__all__ = ["save_state", "load_state", "export_state", "import_state", "state_path_for"]
