"""Translate rows and search specs into parameterized SQLite statements.

Values always travel as `?` parameters; only validated, backtick-quoted
column and table names are interpolated into statement text.
"""
from __future__ import annotations
from typing import Any, List, Mapping, Sequence, Tuple

from .predicates import Condition, Operator, SearchMode
from .schema import quote_identifier

SQL_OPERATORS = {
    Operator.EQUAL: "=",
    Operator.LESS: "<",
    Operator.LESS_OR_EQUAL: "<=",
    Operator.GREATER: ">",
    Operator.GREATER_OR_EQUAL: ">=",
}

Statement = Tuple[str, List[Any]]


def type_guard(column: str, value: Any, ordering: bool) -> str:
    """typeof() test a stored cell must pass before it is compared with `value`.

    Strings only meet text cells. Equality on numbers needs the same storage
    class; ordering accepts either numeric class.
    """
    if isinstance(value, str):
        return f"typeof({column}) = 'text'"
    if ordering:
        return f"typeof({column}) IN ('integer', 'real')"
    return f"typeof({column}) = '{'integer' if isinstance(value, int) else 'real'}'"


def condition_sql(cond: Condition) -> Statement:
    column = quote_identifier(cond.column)
    if cond.value is None:
        return (f"{column} IS NULL" if cond.operator is Operator.EQUAL else f"{column} IS NOT NULL"), []
    if cond.operator is Operator.NOT_EQUAL:
        # a non-null cell of another type is not equal
        guard = type_guard(column, cond.value, ordering=False)
        return f"({column} IS NOT NULL AND NOT ({guard} AND {column} = ?))", [cond.value]
    guard = type_guard(column, cond.value, ordering=cond.operator is not Operator.EQUAL)
    return f"({guard} AND {column} {SQL_OPERATORS[cond.operator]} ?)", [cond.value]


def where_clause(conditions: Sequence[Condition], mode: SearchMode) -> Statement:
    joiner = " AND " if mode is SearchMode.ALL else " OR "
    parts, params = [], []
    for cond in conditions:
        sql, p = condition_sql(cond)
        parts.append(sql)
        params.extend(p)
    return "(" + joiner.join(parts) + ")", params


def select_sql(table: str, conditions: Sequence[Condition], mode: SearchMode,
               max_results: int = 0, extra_where: str = "", extra_params: Sequence[Any] = ()) -> Statement:
    """SELECT * matching the conditions, optionally ANDed with `extra_where`."""
    where, params = where_clause(conditions, mode)
    if extra_where:
        where = f"{where} AND {extra_where}"
        params = params + list(extra_params)
    sql = f"SELECT * FROM `{table}` WHERE {where}"
    if max_results > 0:
        sql += " LIMIT ?"
        params.append(max_results)
    return sql, params


def insert_sql(table: str, row: Mapping[str, Any]) -> Statement:
    columns = list(row)
    names = ", ".join(quote_identifier(c) for c in columns)
    marks = ", ".join("?" for _ in columns)
    return f"INSERT INTO `{table}` ({names}) VALUES ({marks})", [row[c] for c in columns]


def update_sql(table: str, row: Mapping[str, Any]) -> Statement:
    """UPDATE the non-id columns of `row`; an empty statement if there are none."""
    columns = [c for c in row if c != "id"]
    if not columns:
        return "", []
    sets = ", ".join(f"{quote_identifier(c)} = ?" for c in columns)
    return f"UPDATE `{table}` SET {sets} WHERE `id` = ?", [row[c] for c in columns] + [row["id"]]
