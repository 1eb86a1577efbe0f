"""
どこで: `engine.control.script`
何を: 宣言的コントロールスクリプト（インメモリ文書: 名前 → タグ付きレコード）を
    ControlDescriptor/カーブ/エフェクト/モジュレーションチェーンへ変換する。
なぜ: 不正な定義を 1 件ずつ隔離し（InvalidCurve として収集）、残りのロードを継続するため。

補足:
- `type` を持たないエントリ（YAML アンカー置き場など）は無視する。
- `disabled` 式・モジュレータ参照・`$name` ホットパラメータからなる依存グラフに循環があれば、
  循環に含まれるコントロールの式/チェーン/ホットカーブを捨ててエラーとして報告する。
- ホットパラメータはエフェクトの数値パラメータと短縮カーブの beats/phase/delay/slew で使える。
"""

from __future__ import annotations

import logging
import zlib
from dataclasses import dataclass, field, fields, replace
from typing import Any, Mapping

from .curves import AnyCurve, Breakpoint, Curve, RandomHold, RandomSlewed, Ramp, Triangle
from .disabled import DisabledExpr, parse_disabled
from .errors import ControlError, InvalidCurve
from .hot import Hot, hot_ref
from .modulation import EFFECT_KINDS, Effect, Link, ModulationChain, RingModulator
from .state import ControlDescriptor, ControlValue, RangeHint

logger = logging.getLogger(__name__)

UI_TYPES = ("slider", "checkbox", "select", "separator")
CURVE_TYPES = ("automate", "triangle", "ramp", "random", "random_slewed")
SCRIPT_TYPES = UI_TYPES + CURVE_TYPES + ("effect", "mod")

SLIDER_RANGE = (0.0, 1.0)
SLIDER_STEP = 0.0001


@dataclass
class ControlScript:
    """解析済みスクリプト。"""

    descriptors: list[ControlDescriptor] = field(default_factory=list)
    curves: dict[str, AnyCurve | Hot] = field(default_factory=dict)
    effects: dict[str, Effect | Hot] = field(default_factory=dict)
    chains: dict[str, ModulationChain] = field(default_factory=dict)
    errors: list[ControlError] = field(default_factory=list)

    def descriptor(self, name: str) -> ControlDescriptor | None:
        for d in self.descriptors:
            if d.name == name:
                return d
        return None


def parse_script(document: Mapping[str, Any] | None) -> ControlScript:
    """文書を解析して ControlScript を返す。

    個々の定義の不正は送出せず errors に集める。文書自体がマッピングでない場合のみ
    InvalidCurve を送出する（呼び出し側の状態を変えずに済むよう、解析前に弾く）。
    """
    script = ControlScript()
    if document is None:
        return script
    if not isinstance(document, Mapping):
        raise InvalidCurve("<script>", f"document must be a mapping, got {type(document).__name__}")
    mods: list[tuple[str, Mapping[str, Any]]] = []
    for name, entry in document.items():
        if not isinstance(name, str) or not isinstance(entry, Mapping) or "type" not in entry:
            logger.debug("skip non-control entry: %r", name)
            continue
        kind = entry.get("type")
        try:
            if kind in UI_TYPES:
                desc = _parse_ui(name, kind, entry)
                script.descriptors.append(_checked_bypass(desc, script.errors))
            elif kind in CURVE_TYPES:
                desc, curve = _parse_curve_control(name, kind, entry, script.errors)
                script.descriptors.append(_checked_bypass(desc, script.errors))
                if curve is not None:
                    script.curves[name] = curve
            elif kind == "effect":
                script.effects[name] = _parse_effect(name, entry)
            elif kind == "mod":
                mods.append((name, entry))
            else:
                raise InvalidCurve(name, f"unknown control type {kind!r}")
        except InvalidCurve as e:
            script.errors.append(e)
        except (TypeError, ValueError) as e:
            script.errors.append(InvalidCurve(name, str(e)))

    _attach_disabled(script, document)
    _check_aliases(script)
    _check_hot_refs(script)
    for name, entry in mods:
        try:
            _attach_mod(script, name, entry)
        except InvalidCurve as e:
            script.errors.append(e)
    _reject_cycles(script)
    for err in script.errors:
        logger.warning("control script: %s", err)
    return script


# ---- 共通フィールド ---------------------------------------------------------


def _shared(entry: Mapping[str, Any], default: ControlValue | None) -> dict[str, Any]:
    bypass = entry.get("bypass")
    if bypass is True:
        pinned: ControlValue | None = default
    elif bypass is None or bypass is False:
        pinned = None
    elif isinstance(bypass, (int, float, str)):
        pinned = bypass
    else:
        raise ValueError(f"bypass must be a bool or a value, got {bypass!r}")
    alias = entry.get("var")
    return {
        "bypass": pinned,
        "alias": str(alias) if alias else None,
        "excluded": bool(entry.get("excluded", False)),
    }


def _pair(value: Any, default: tuple[float, float], label: str) -> tuple[float, float]:
    if value is None:
        return default
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ValueError(f"{label} must be [min, max]")
    return float(value[0]), float(value[1])


def _checked_bypass(desc: ControlDescriptor, errors: list[ControlError]) -> ControlDescriptor:
    """bypass の固定値をコントロールの種別へ変換する。不正なら bypass を外して報告する。"""
    raw = desc.bypass
    if raw is None:
        return desc
    if desc.kind == "bool" and not isinstance(raw, bool) and raw in (0, 1):
        raw = bool(raw)
    try:
        pinned = desc.coerce(raw)
    except (TypeError, ValueError) as e:
        errors.append(InvalidCurve(desc.name, f"bypass: {e}"))
        return _with(desc, bypass=None)
    return _with(desc, bypass=pinned)


# ---- UI コントロール --------------------------------------------------------


def _parse_ui(name: str, kind: str, entry: Mapping[str, Any]) -> ControlDescriptor:
    if kind == "slider":
        lo, hi = _pair(entry.get("range"), SLIDER_RANGE, "range")
        step = float(entry.get("step", SLIDER_STEP))
        default = float(entry.get("default", 0.0))
        return ControlDescriptor(
            name=name,
            kind="float",
            default=default,
            range_hint=RangeHint(lo, hi, step),
            **_shared(entry, default),
        )
    if kind == "checkbox":
        default_b = bool(entry.get("default", False))
        return ControlDescriptor(name=name, kind="bool", default=default_b, **_shared(entry, default_b))
    if kind == "select":
        options = entry.get("options")
        if not isinstance(options, (list, tuple)) or not options:
            raise ValueError("select requires a non-empty options list")
        choices = tuple(str(o) for o in options)
        default_s = str(entry.get("default", choices[0]))
        if default_s not in choices:
            raise ValueError(f"default {default_s!r} is not one of the options")
        return ControlDescriptor(
            name=name,
            kind="enum",
            default=default_s,
            choices=choices,
            **_shared(entry, default_s),
        )
    return ControlDescriptor(name=name, kind="separator")


# ---- カーブ ---------------------------------------------------------------


def _parse_curve_control(
    name: str, kind: str, entry: Mapping[str, Any], errors: list[ControlError]
) -> tuple[ControlDescriptor, AnyCurve | None]:
    """カーブ駆動コントロールを解析する。カーブが不正でもコントロール自体は既定値で残す。"""
    curve: AnyCurve | None = None
    hint: RangeHint | None = None
    try:
        if kind == "automate":
            curve = _parse_automate(name, entry)
        else:
            lo, hi = _pair(entry.get("range"), (0.0, 1.0), "range")
            hint = RangeHint(min(lo, hi), max(lo, hi))
            curve = _parse_shorthand(name, kind, entry, (lo, hi))
    except (TypeError, ValueError) as e:
        errors.append(InvalidCurve(name, str(e)))
        curve = None

    if "default" in entry:
        default = float(entry["default"])
    elif isinstance(curve, Curve):
        default = curve.breakpoints[0].value
    elif hint is not None:
        default = hint.min_value
    else:
        default = 0.0
    desc = ControlDescriptor(
        name=name,
        kind="float",
        default=default,
        range_hint=hint,
        origin="curve",
        **_shared(entry, default),
    )
    return desc, curve


def _default_stem(name: str) -> int:
    return zlib.crc32(name.encode("utf-8"))


def _parse_automate(name: str, entry: Mapping[str, Any]) -> Curve:
    raw = entry.get("breakpoints")
    if not isinstance(raw, (list, tuple)):
        raise ValueError("automate requires a breakpoints list")
    bps = []
    for i, item in enumerate(raw):
        if not isinstance(item, Mapping):
            raise ValueError(f"breakpoint #{i} must be a mapping")
        bps.append(Breakpoint.from_mapping(item))
    return Curve(
        tuple(bps),
        mode=str(entry.get("mode", "loop")),  # type: ignore[arg-type]
        stem=int(entry.get("stem", _default_stem(name))),
    )


def _parse_shorthand(
    name: str, kind: str, entry: Mapping[str, Any], rng: tuple[float, float]
) -> AnyCurve | Hot:
    hot: list[tuple[str, str]] = []

    def num(key: str, default: float) -> float:
        value = entry.get(key, default)
        ref = hot_ref(value)
        if ref is not None:
            hot.append((key, ref))
            return default
        return float(value)

    beats = num("beats", 1.0)
    curve: AnyCurve
    if kind == "triangle":
        curve = Triangle(beats=beats, range=rng, phase=num("phase", 0.0))
    elif kind == "ramp":
        curve = Ramp(beats=beats, range=rng, phase=num("phase", 0.0))
    elif kind == "random":
        curve = RandomHold(
            beats=beats,
            range=rng,
            delay=num("delay", 0.0),
            stem=int(entry.get("stem", 93473)),
        )
    else:
        curve = RandomSlewed(
            beats=beats,
            range=rng,
            slew=num("slew", 0.65),
            delay=num("delay", 0.0),
            stem=int(entry.get("stem", 93472)),
        )
    return Hot(curve, tuple(hot)) if hot else curve


# ---- エフェクト / モジュレーション ------------------------------------------


def _parse_effect(name: str, entry: Mapping[str, Any]) -> Effect | Hot:
    kind = entry.get("kind")
    cls = EFFECT_KINDS.get(str(kind))
    if cls is None:
        raise InvalidCurve(name, f"unknown effect kind {kind!r}")
    defaults = {f.name: f.default for f in fields(cls)}
    params: dict[str, Any] = {}
    hot: list[tuple[str, str]] = []
    for key, value in entry.items():
        if key in ("type", "kind"):
            continue
        if key not in defaults:
            logger.debug("effect %s: ignore unknown parameter %r", name, key)
            continue
        default = defaults[key]
        ref = hot_ref(value)
        if ref is not None and isinstance(default, (int, float)):
            hot.append((key, ref))
            continue
        params[key] = _effect_param(key, default, value)
    effect = cls(**params)
    return Hot(effect, tuple(hot)) if hot else effect


def _effect_param(key: str, default: Any, value: Any) -> Any:
    """エフェクトのパラメータをフィールド既定値の型へ揃える。"""
    if isinstance(default, tuple):
        return _pair(value, default, key)
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise ValueError(f"{key} must be true or false")
        return value
    if isinstance(default, (int, float)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{key} must be a number, got {value!r}")
        return type(default)(value)
    return str(value)


def _attach_mod(script: ControlScript, name: str, entry: Mapping[str, Any]) -> None:
    source = entry.get("source")
    modulators = entry.get("modulators")
    if not isinstance(source, str) or not isinstance(modulators, (list, tuple)):
        raise InvalidCurve(name, "mod requires source and a modulators list")
    src = script.descriptor(source)
    if src is None or src.kind != "float":
        raise InvalidCurve(name, f"mod source {source!r} is not a float control")
    links: list[Link] = []
    for m in modulators:
        m = str(m)
        if m in script.effects:
            links.append(script.effects[m])
            continue
        ref = script.descriptor(m)
        if ref is None or ref.kind not in ("float", "bool"):
            raise InvalidCurve(name, f"unknown modulator {m!r}")
        links.append(m)
    prior = script.chains.get(source)
    merged = (prior.links if prior is not None else ()) + tuple(links)
    script.chains[source] = ModulationChain(source, merged)


def _attach_disabled(script: ControlScript, document: Mapping[str, Any]) -> None:
    known = {d.name for d in script.descriptors if d.has_value}
    for i, desc in enumerate(script.descriptors):
        entry = document.get(desc.name)
        text = entry.get("disabled") if isinstance(entry, Mapping) else None
        if not text:
            continue
        try:
            expr: DisabledExpr = parse_disabled(str(text))
        except ValueError as e:
            script.errors.append(InvalidCurve(desc.name, f"disabled: {e}"))
            continue
        missing = sorted(expr.names() - known)
        if missing:
            script.errors.append(
                InvalidCurve(desc.name, f"disabled references unknown controls {missing}")
            )
            continue
        script.descriptors[i] = _with(desc, disabled=expr)


def _check_aliases(script: ControlScript) -> None:
    names = {d.name for d in script.descriptors}
    seen: set[str] = set()
    for i, desc in enumerate(script.descriptors):
        if desc.alias is None:
            continue
        if desc.alias in names or desc.alias in seen:
            script.errors.append(InvalidCurve(desc.name, f"alias {desc.alias!r} is already taken"))
            script.descriptors[i] = _with(desc, alias=None)
            continue
        seen.add(desc.alias)


def _check_hot_refs(script: ControlScript) -> None:
    """ホットパラメータ/リング変調の参照先が数値を持つコントロールか検査し、不正なら定義を捨てる。"""
    known = {d.name for d in script.descriptors if d.kind in ("float", "bool")}
    for name, curve in list(script.curves.items()):
        if isinstance(curve, Hot):
            missing = sorted(curve.names() - known)
            if missing:
                script.errors.append(
                    InvalidCurve(name, f"hot parameter references unknown controls {missing}")
                )
                del script.curves[name]
    for name, effect in list(script.effects.items()):
        refs = set(effect.names()) if isinstance(effect, Hot) else set()
        target = effect.target if isinstance(effect, Hot) else effect
        if isinstance(target, RingModulator):
            refs.add(target.modulator)
        missing = sorted(refs - known)
        if missing:
            script.errors.append(InvalidCurve(name, f"effect references unknown controls {missing}"))
            del script.effects[name]


def _reject_cycles(script: ControlScript) -> None:
    graph: dict[str, set[str]] = {}
    for desc in script.descriptors:
        deps: set[str] = set()
        if desc.disabled is not None:
            deps |= desc.disabled.names()
        chain = script.chains.get(desc.name)
        if chain is not None:
            deps |= set(chain.control_refs())
        curve = script.curves.get(desc.name)
        if isinstance(curve, Hot):
            deps |= curve.names()
        graph[desc.name] = deps
    for cycle in find_cycles(graph):
        path = " -> ".join(cycle + [cycle[0]])
        for member in cycle:
            script.errors.append(InvalidCurve(member, f"dependency cycle: {path}"))
            script.chains.pop(member, None)
            if isinstance(script.curves.get(member), Hot):
                del script.curves[member]
            for i, desc in enumerate(script.descriptors):
                if desc.name == member and desc.disabled is not None:
                    script.descriptors[i] = _with(desc, disabled=None)


def find_cycles(graph: Mapping[str, set[str]]) -> list[list[str]]:
    """有向グラフの循環（強連結成分のうち 2 点以上、または自己ループ）を返す。"""
    index: dict[str, int] = {}
    low: dict[str, int] = {}
    stack: list[str] = []
    on_stack: set[str] = set()
    result: list[list[str]] = []
    counter = 0

    def visit(v: str) -> None:
        nonlocal counter
        index[v] = low[v] = counter
        counter += 1
        stack.append(v)
        on_stack.add(v)
        for w in sorted(graph.get(v, ())):
            if w not in graph:
                continue
            if w not in index:
                visit(w)
                low[v] = min(low[v], low[w])
            elif w in on_stack:
                low[v] = min(low[v], index[w])
        if low[v] == index[v]:
            comp: list[str] = []
            while True:
                w = stack.pop()
                on_stack.discard(w)
                comp.append(w)
                if w == v:
                    break
            if len(comp) > 1 or v in graph.get(v, ()):
                result.append(list(reversed(comp)))

    for node in graph:
        if node not in index:
            visit(node)
    return result


def _with(desc: ControlDescriptor, **changes: Any) -> ControlDescriptor:
    return replace(desc, **changes)


__all__ = ["ControlScript", "parse_script", "find_cycles", "SCRIPT_TYPES"]
