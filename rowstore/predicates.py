"""Search specifications: conditions, validation and in-process evaluation.

A spec is an ordered list of conditions combined with a `SearchMode`:
ALL (every condition holds) or ANY (at least one holds). Conditions may be
given as `Condition` objects or as dicts shaped
``{'column': 'name', 'condition': Operator.EQUAL, 'value': 'x'}``.
"""
from __future__ import annotations
import operator as _op
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Union


class Operator(IntEnum):
    EQUAL = 0
    NOT_EQUAL = 1
    LESS = 2
    LESS_OR_EQUAL = 3
    GREATER = 4
    GREATER_OR_EQUAL = 5

    def negate(self) -> "Operator":
        return _NEGATIONS[self]


_NEGATIONS = {
    Operator.EQUAL: Operator.NOT_EQUAL,
    Operator.NOT_EQUAL: Operator.EQUAL,
    Operator.LESS: Operator.GREATER_OR_EQUAL,
    Operator.GREATER_OR_EQUAL: Operator.LESS,
    Operator.LESS_OR_EQUAL: Operator.GREATER,
    Operator.GREATER: Operator.LESS_OR_EQUAL,
}

_ORDERING = {
    Operator.LESS: _op.lt,
    Operator.LESS_OR_EQUAL: _op.le,
    Operator.GREATER: _op.gt,
    Operator.GREATER_OR_EQUAL: _op.ge,
}


class SearchMode(IntEnum):
    ALL = 0
    ANY = 1


@dataclass(frozen=True)
class Condition:
    column: str
    operator: Operator
    value: Any

    def negate(self) -> "Condition":
        return Condition(self.column, self.operator.negate(), self.value)

    def as_dict(self) -> Dict[str, Any]:
        return {"column": self.column, "condition": self.operator, "value": self.value}


ConditionLike = Union[Condition, Mapping[str, Any]]


def _is_scalar(value: Any) -> bool:
    return value is None or (isinstance(value, (str, int, float)) and not isinstance(value, bool))


def _coerce_operator(raw: Any):
    if isinstance(raw, Operator):
        return raw
    if isinstance(raw, int) and not isinstance(raw, bool):
        try:
            return Operator(raw)
        except ValueError:
            return None
    return None


def validate_spec(spec: Sequence[ConditionLike]) -> List[str]:
    """Return a list of problems with `spec`; an empty list means it is valid."""
    if isinstance(spec, (str, bytes)) or not isinstance(spec, Sequence):
        return ["search spec must be a sequence of conditions"]
    if not spec:
        return ["search spec is empty"]
    problems: List[str] = []
    for i, cond in enumerate(spec):
        if isinstance(cond, Condition):
            column, raw_op, value = cond.column, cond.operator, cond.value
        elif isinstance(cond, Mapping):
            missing = [k for k in ("column", "condition", "value") if k not in cond]
            if missing:
                problems.append(f"condition {i}: missing key(s) {', '.join(missing)}")
                continue
            column, raw_op, value = cond["column"], cond["condition"], cond["value"]
        else:
            problems.append(f"condition {i}: not a condition ({type(cond).__name__})")
            continue
        if not isinstance(column, str) or not column:
            problems.append(f"condition {i}: column must be a non-empty string")
        op = _coerce_operator(raw_op)
        if op is None:
            problems.append(f"condition {i}: invalid operator {raw_op!r}")
        if not _is_scalar(value):
            problems.append(f"condition {i}: value of type {type(value).__name__} is not comparable")
        elif value is None and op is not None and op not in (Operator.EQUAL, Operator.NOT_EQUAL):
            problems.append(f"condition {i}: null value only supports EQUAL / NOT_EQUAL")
    return problems


def normalize_spec(spec: Iterable[ConditionLike]) -> List[Condition]:
    """Convert a validated spec into `Condition` objects."""
    out = []
    for cond in spec:
        if isinstance(cond, Condition):
            out.append(Condition(cond.column, Operator(cond.operator), cond.value))
        else:
            out.append(Condition(cond["column"], Operator(cond["condition"]), cond["value"]))
    return out


def coerce_mode(mode: Any):
    if isinstance(mode, SearchMode):
        return mode
    if isinstance(mode, int) and not isinstance(mode, bool):
        try:
            return SearchMode(mode)
        except ValueError:
            return None
    return None


def spec_from_row(match_row: Mapping[str, Any]) -> List[Condition]:
    return [Condition(k, Operator.EQUAL, v) for k, v in match_row.items()]


def _equal(stored: Any, wanted: Any) -> bool:
    if wanted is None:
        return stored is None
    if isinstance(wanted, str):
        return isinstance(stored, str) and stored == wanted
    return type(stored) is type(wanted) and stored == wanted


def condition_holds(row: Mapping[str, Any], cond: Condition) -> bool:
    if cond.column not in row:
        return False
    stored = row[cond.column]
    if cond.operator is Operator.EQUAL:
        return _equal(stored, cond.value)
    if cond.operator is Operator.NOT_EQUAL:
        if cond.value is None:
            return stored is not None
        return stored is not None and not _equal(stored, cond.value)
    if stored is None:
        return False
    if isinstance(cond.value, str) and not isinstance(stored, str):
        return False
    try:
        return bool(_ORDERING[cond.operator](stored, cond.value))
    except TypeError:
        return False


def row_matches(row: Mapping[str, Any], spec: Sequence[Condition], mode: SearchMode) -> bool:
    if mode is SearchMode.ALL:
        return all(condition_holds(row, c) for c in spec)
    return any(condition_holds(row, c) for c in spec)


def filter_rows(rows: Iterable[Mapping[str, Any]], spec: Sequence[Condition],
                mode: SearchMode, max_results: int = 0) -> List[Dict[str, Any]]:
    results: List[Dict[str, Any]] = []
    for row in rows:
        if row_matches(row, spec, mode):
            results.append(dict(row))
            if max_results > 0 and len(results) == max_results:
                break
    return results
