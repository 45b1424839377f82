"""Table layout rules for SQLite-backed row stores.

A row table needs an integer `id` column. A temporal table additionally needs
`valid_from` / `valid_until` datetime columns and keys versions on
`(id, valid_from)`. `check_row_table` is the construction-time preflight;
`create_row_table` builds a conforming table for scripts and tests.
"""
from __future__ import annotations
import re
import sqlite3
from typing import Dict, Mapping, Optional

from .errors import ErrorCode, RowStoreError

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
VALID_FROM = "valid_from"
VALID_UNTIL = "valid_until"
TIME_COLUMNS = (VALID_FROM, VALID_UNTIL)

INTEGER_TYPES = ("INT",)
DATETIME_TYPES = ("DATE", "TIME", "TEXT")


def is_identifier(name) -> bool:
    return isinstance(name, str) and bool(IDENTIFIER_RE.match(name))


def quote_identifier(name: str) -> str:
    """Backtick-quote a validated identifier.

    Backticks never fall back to string literals the way unresolved
    double-quoted identifiers do in SQLite.
    """
    if not is_identifier(name):
        raise RowStoreError.of(ErrorCode.INVALID_SPEC, f"Invalid column name {name!r}", column=name)
    return f"`{name}`"


def table_columns(conn: sqlite3.Connection, table: str) -> Dict[str, str]:
    """Map column name -> declared type (upper case) for `table`; empty if missing."""
    rows = conn.execute(f"PRAGMA table_info(`{table}`)").fetchall()
    return {r[1]: (r[2] or "").upper() for r in rows}


def check_column(columns: Mapping[str, str], table: str, column: str, type_markers) -> None:
    if column not in columns:
        raise RowStoreError.of(ErrorCode.REQUIRED_COLUMN_NOT_FOUND,
                               f"Required column {column} not found in table {table}",
                               table=table, column=column)
    declared = columns[column]
    if not any(marker in declared for marker in type_markers):
        raise RowStoreError.of(ErrorCode.WRONG_COLUMN_TYPE,
                               f"Wrong column type for {table}::{column}, required one of "
                               f"{'/'.join(type_markers)}, actual '{declared}'",
                               table=table, column=column, actual=declared)


def check_row_table(conn: sqlite3.Connection, table: str, temporal: bool = False) -> Dict[str, str]:
    """Preflight `table`; raises RowStoreError, returns the column map when usable."""
    if not is_identifier(table):
        raise RowStoreError.of(ErrorCode.INVALID_TABLE, f"Invalid table name {table!r}", table=table)
    try:
        columns = table_columns(conn, table)
    except sqlite3.Error as e:
        raise RowStoreError.of(ErrorCode.QUERY_ERROR,
                               f"Query error checking table {table}: {e}",
                               table=table, engine_message=str(e)) from e
    if not columns:
        raise RowStoreError.of(ErrorCode.TABLE_NOT_FOUND, f"Table {table} not found", table=table)
    check_column(columns, table, "id", INTEGER_TYPES)
    if temporal:
        for name in TIME_COLUMNS:
            check_column(columns, table, name, DATETIME_TYPES)
    return columns


def create_row_table(conn: sqlite3.Connection, table: str,
                     columns: Optional[Mapping[str, str]] = None, temporal: bool = False) -> None:
    """CREATE TABLE IF NOT EXISTS with the id (and temporal) columns plus `columns`."""
    if not is_identifier(table):
        raise RowStoreError.of(ErrorCode.INVALID_TABLE, f"Invalid table name {table!r}", table=table)
    defs = ["`id` INTEGER NOT NULL" if temporal else "`id` INTEGER PRIMARY KEY"]
    for name, col_type in (columns or {}).items():
        if name == "id" or (temporal and name in TIME_COLUMNS):
            continue
        if not re.match(r"^[A-Za-z][A-Za-z0-9_ (),]*$", col_type):
            raise ValueError(f"Unsupported column type {col_type!r} for {name}")
        defs.append(f"{quote_identifier(name)} {col_type}")
    if temporal:
        defs.append("`valid_from` DATETIME NOT NULL")
        defs.append("`valid_until` DATETIME NOT NULL")
        defs.append("PRIMARY KEY (`id`, `valid_from`)")
    conn.execute(f"CREATE TABLE IF NOT EXISTS `{table}` ({', '.join(defs)})")
    if temporal:
        conn.execute(f"CREATE INDEX IF NOT EXISTS `{table}_valid_until_idx` ON `{table}` (`id`, `valid_until`)")
