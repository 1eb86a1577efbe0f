"""
どこで: `engine.control.disabled`
何を: コントロールの `disabled` 式（他コントロールの現在値に依存する小さな真偽式）を解析/評価。
なぜ: ロード時に構文と参照先を検証し、フレーム中は辞書参照だけで評価できる形にしておくため。

文法（`and` は `or` より強く結合）:
    expr := term ("or" term)*
    term := cond ("and" cond)*
    cond := "not" NAME | NAME "is" "not" VALUE | NAME "is" VALUE | NAME
VALUE はクォート（'..' / "..")も可。
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import Any, Callable, Literal

ConditionOp = Literal["truthy", "falsy", "eq", "ne"]


@dataclass(frozen=True)
class Condition:
    name: str
    op: ConditionOp
    operand: str | None = None

    def evaluate(self, value: Any) -> bool:
        if self.op == "truthy":
            return _truthy(value)
        if self.op == "falsy":
            return not _truthy(value)
        same = _matches(value, self.operand)
        return same if self.op == "eq" else not same


@dataclass(frozen=True)
class DisabledExpr:
    """OR-of-AND で保持した disabled 式。"""

    source: str
    clauses: tuple[tuple[Condition, ...], ...]

    def names(self) -> set[str]:
        return {c.name for clause in self.clauses for c in clause}

    def evaluate(self, lookup: Callable[[str], Any]) -> bool:
        for clause in self.clauses:
            if all(c.evaluate(lookup(c.name)) for c in clause):
                return True
        return False


def parse_disabled(text: str) -> DisabledExpr:
    """式文字列を解析する。構文不正は ValueError。"""
    if not isinstance(text, str) or not text.strip():
        raise ValueError("disabled 式が空")
    try:
        tokens = shlex.split(text)
    except ValueError as e:
        raise ValueError(f"disabled 式を分解できない: {text!r} ({e})") from None

    clauses: list[tuple[Condition, ...]] = []
    for or_part in _split(tokens, "or"):
        conds: list[Condition] = []
        for and_part in _split(or_part, "and"):
            conds.append(_parse_condition(and_part, text))
        clauses.append(tuple(conds))
    return DisabledExpr(source=text, clauses=tuple(clauses))


def _split(tokens: list[str], keyword: str) -> list[list[str]]:
    parts: list[list[str]] = [[]]
    for tok in tokens:
        if tok == keyword:
            parts.append([])
        else:
            parts[-1].append(tok)
    if any(not p for p in parts):
        raise ValueError(f"'{keyword}' の前後に条件が必要")
    return parts


def _parse_condition(tokens: list[str], source: str) -> Condition:
    if len(tokens) == 1:
        return Condition(tokens[0], "truthy")
    if len(tokens) == 2 and tokens[0] == "not":
        return Condition(tokens[1], "falsy")
    if len(tokens) == 3 and tokens[1] == "is":
        return Condition(tokens[0], "eq", tokens[2])
    if len(tokens) == 4 and tokens[1] == "is" and tokens[2] == "not":
        return Condition(tokens[0], "ne", tokens[3])
    raise ValueError(f"解釈できない条件 {' '.join(tokens)!r}（式: {source!r}）")


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return bool(value) and value.lower() not in ("false", "0")
    return bool(value)


def _matches(value: Any, operand: str | None) -> bool:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return float(value) == float(operand or "")
        except ValueError:
            return False
    return _as_text(value) == operand


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


__all__ = ["Condition", "DisabledExpr", "parse_disabled"]
