"""Row store backed by a SQLite table.

The table must have an integer `id` column; this is checked once when the
store is built (`TABLE_NOT_FOUND` / `REQUIRED_COLUMN_NOT_FOUND` /
`WRONG_COLUMN_TYPE` raise `RowStoreError`). Ids are assigned by the store's
allocator, not by SQLite.

Each write is one statement inside its own BEGIN IMMEDIATE transaction. Engine
failures come back as `QUERY_ERROR` results carrying the failing statement.

Search leniency: a search that fails with "no such column" or a syntax error
is reported as an empty result and only logged, so callers can test columns
that exist in some tables but not others. This also hides genuine schema
mistakes; it is kept for compatibility with existing callers.
"""
from __future__ import annotations
import sqlite3
from typing import Any, List, Mapping, Optional, Sequence

from .base_store import (DiagnosticsSurface, Row, check_id_for_update, diagnosed,
                         first_id_or_null, max_as_int, prepare_row_for_create,
                         row_not_found, validate_search)
from .errors import ErrorCode, Result, RowStoreError, fail, ok
from .ids import MAX_ID, IdAllocator, RandomIdAllocator
from .logging_util import debug, info, warn
from .predicates import Condition, ConditionLike, SearchMode, spec_from_row
from .schema import check_row_table, quote_identifier
from .sql_builder import insert_sql, select_sql, update_sql
from .sqlite_backend import SQLiteBackend, transaction


def query_error(context: str, sql: str, exc: sqlite3.Error) -> Result:
    return fail(ErrorCode.QUERY_ERROR,
                f'Query error in "{context}": "{exc}", query = "{sql}"',
                context=context, statement=sql, engine_message=str(exc))


def is_duplicate_key(exc: sqlite3.IntegrityError) -> bool:
    msg = str(exc).upper()
    return "UNIQUE" in msg or "PRIMARY KEY" in msg


def is_schema_lookup_error(exc: sqlite3.Error) -> bool:
    """True for the errors a search on a column the table lacks produces."""
    msg = str(exc).lower()
    return isinstance(exc, sqlite3.OperationalError) and ("no such column" in msg or "syntax error" in msg)


def as_row(record: sqlite3.Row, drop: Sequence[str] = ()) -> Row:
    row = {k: record[k] for k in record.keys() if k not in drop}
    row["id"] = int(row["id"])
    return row


def run_search(backend: SQLiteBackend, write: bool, table: str, conditions: Sequence[Condition],
               mode: SearchMode, max_results: int, extra_where: str = "",
               extra_params: Sequence[Any] = (), drop: Sequence[str] = ()) -> Result[List[Row]]:
    """Execute a validated search, applying the unknown-column leniency."""
    sql, params = select_sql(table, conditions, mode, max_results, extra_where, extra_params)
    try:
        with backend.connection(write=write) as conn:
            records = conn.execute(sql, params).fetchall()
    except sqlite3.Error as e:
        if is_schema_lookup_error(e):
            warn("search_query_error_as_empty", table=table, query=sql, error=str(e))
            return ok([])
        return query_error("search", sql, e)
    return ok([as_row(r, drop) for r in records])


class SQLiteRowStore(DiagnosticsSurface):
    """`RowStore` over one SQLite table reached through a `SQLiteBackend`."""

    def __init__(self, backend: SQLiteBackend, table: str, id_allocator: Optional[IdAllocator] = None,
                 fallback_to_sequential: bool = False, read_only: bool = False):
        self._init_surface(id_allocator, fallback_to_sequential)
        self.backend = backend
        self.table = table
        self.read_only = read_only
        try:
            with backend.connection(write=not read_only) as conn:
                self.columns = check_row_table(conn, table)
        except sqlite3.Error as e:
            raise RowStoreError.of(ErrorCode.QUERY_ERROR, f"Cannot open table {table}: {e}",
                                   table=table, engine_message=str(e)) from e
        info("row_store_opened", table=table, path=backend.path, read_only=read_only,
             allocator=type(self.id_policy.allocator).__name__)

    @classmethod
    def with_random_ids(cls, backend: SQLiteBackend, table: str, min_id: int = 1, max_id: int = MAX_ID,
                        **kwargs) -> "SQLiteRowStore":
        return cls(backend, table, id_allocator=RandomIdAllocator(min_id, max_id), **kwargs)

    def _connection(self):
        return self.backend.connection(write=not self.read_only)

    def row_exists(self, row_id: int) -> bool:
        sql = f"SELECT 1 FROM `{self.table}` WHERE `id` = ? LIMIT 1"
        try:
            with self._connection() as conn:
                return conn.execute(sql, (row_id,)).fetchone() is not None
        except sqlite3.Error as e:
            raise RowStoreError(query_error("row_exists", sql, e).error) from e

    @diagnosed
    def create_row(self, row: Mapping[str, Any]) -> Result[int]:
        prepared = prepare_row_for_create(self, row)
        if not prepared.success:
            return prepared
        new_row = prepared.value
        sql, params = insert_sql(self.table, new_row)
        try:
            with self._connection() as conn, transaction(conn):
                conn.execute(sql, params)
        except sqlite3.IntegrityError as e:
            if is_duplicate_key(e):
                return fail(ErrorCode.ROW_ALREADY_EXISTS,
                            f"The row with given id ({new_row['id']}) already exists, cannot create",
                            prepared.warnings, id=new_row["id"])
            return query_error("create_row", sql, e).with_warnings(*prepared.warnings)
        except sqlite3.Error as e:
            return query_error("create_row", sql, e).with_warnings(*prepared.warnings)
        debug("row_created", table=self.table, id=new_row["id"])
        return ok(int(new_row["id"]), prepared.warnings)

    @diagnosed
    def get_row(self, row_id: int) -> Result[Row]:
        sql = f"SELECT * FROM `{self.table}` WHERE `id` = ? LIMIT 1"
        try:
            with self._connection() as conn:
                record = conn.execute(sql, (row_id,)).fetchone()
        except sqlite3.Error as e:
            return query_error("get_row", sql, e)
        if record is None:
            return row_not_found(row_id)
        return ok(as_row(record))

    @diagnosed
    def get_all_rows(self) -> Result[List[Row]]:
        sql = f"SELECT * FROM `{self.table}`"
        try:
            with self._connection() as conn:
                return ok([as_row(r) for r in conn.execute(sql).fetchall()])
        except sqlite3.Error as e:
            return query_error("get_all_rows", sql, e)

    @diagnosed
    def update_row(self, row: Mapping[str, Any]) -> Result[None]:
        bad = check_id_for_update(row)
        if bad:
            return bad
        if not self.row_exists(row["id"]):
            return row_not_found(row["id"], "update")
        sql, params = update_sql(self.table, row)
        if not sql:
            # nothing but the id was given
            return ok()
        try:
            with self._connection() as conn, transaction(conn):
                changed = conn.execute(sql, params).rowcount
        except sqlite3.Error as e:
            return query_error("update_row", sql, e)
        if changed == 0:
            return row_not_found(row["id"], "update")
        debug("row_updated", table=self.table, id=row["id"], columns=sorted(row))
        return ok()

    @diagnosed
    def delete_row(self, row_id: int) -> Result[int]:
        sql = f"DELETE FROM `{self.table}` WHERE `id` = ?"
        try:
            with self._connection() as conn, transaction(conn):
                deleted = conn.execute(sql, (row_id,)).rowcount
        except sqlite3.Error as e:
            return query_error("delete_row", sql, e)
        if deleted:
            debug("row_deleted", table=self.table, id=row_id)
        return ok(1 if deleted else 0)

    @diagnosed
    def find_rows(self, match_row: Mapping[str, Any], max_results: int = 0) -> Result[List[Row]]:
        return self.search(spec_from_row(match_row), SearchMode.ALL, max_results)

    @diagnosed
    def search(self, spec: Sequence[ConditionLike], mode: SearchMode = SearchMode.ALL,
               max_results: int = 0) -> Result[List[Row]]:
        checked = validate_search(spec, mode)
        if not checked.success:
            return checked
        conditions, search_mode = checked.value
        return run_search(self.backend, not self.read_only, self.table, conditions,
                          search_mode, max_results)

    @diagnosed
    def get_id_for_key_value(self, column: str, value: Any) -> Result[int]:
        return first_id_or_null(self.find_rows({column: value}, 1), column, value)

    @diagnosed
    def get_max_value_in_column(self, column: str) -> Result[int]:
        sql = f"SELECT MAX({quote_identifier(column)}) FROM `{self.table}`"
        try:
            with self._connection() as conn:
                value = conn.execute(sql).fetchone()[0]
        except sqlite3.Error as e:
            return query_error("get_max_value_in_column", sql, e)
        return max_as_int(value, column)

    @diagnosed
    def get_max_id(self) -> Result[int]:
        return self.get_max_value_in_column("id")
