"""Time-versioned row store on a SQLite table.

Every logical row is a chain of versions keyed by `(id, valid_from)`. The
version whose `valid_until` equals OPEN_END is the current one; the others are
history. Nothing is ever physically removed:

    create  -> insert current version, valid_from = now
    update  -> close current version (valid_until = now) and insert the merged
               row as the new current version, in one transaction
    delete  -> close current version

Ordinary operations see current versions only; the `*_with_time` variants see
the versions valid at a given instant. Timestamps are stored as fixed-width
UTC text (`YYYY-MM-DD HH:MM:SS.ffffff`) so text order is time order.
"""
from __future__ import annotations
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Mapping, Optional, Sequence, Union

from .base_store import (DiagnosticsSurface, Row, check_id_for_update, diagnosed,
                         first_id_or_null, max_as_int, prepare_row_for_create,
                         row_not_found, validate_search)
from .errors import ErrorCode, Result, RowStoreError, fail, ok
from .ids import IdAllocator
from .logging_util import debug, info
from .predicates import ConditionLike, SearchMode, spec_from_row
from .schema import TIME_COLUMNS, VALID_FROM, VALID_UNTIL, check_row_table, quote_identifier
from .sql_builder import insert_sql
from .sqlite_backend import SQLiteBackend, transaction
from .sqlite_store import as_row, is_duplicate_key, query_error, run_search

TIME_FORMAT = "%Y-%m-%d %H:%M:%S.%f"
OPEN_END = "9999-12-31 23:59:59.999999"
ONE_TICK = timedelta(microseconds=1)

TimeLike = Union[int, float, str, datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def format_time(dt: datetime) -> str:
    return _naive_utc(dt).strftime(TIME_FORMAT)


def parse_time(t: TimeLike) -> Result[str]:
    """Normalize an epoch number, datetime or datetime string to stored text.

    Epoch numbers are read as UTC. Datetimes and strings are taken at their
    wall-clock value: an attached offset is dropped, not converted.
    """
    if isinstance(t, bool):
        return fail(ErrorCode.INVALID_TIME, f"Invalid time {t!r}")
    if isinstance(t, (int, float)):
        try:
            return ok(format_time(datetime.fromtimestamp(t, timezone.utc)))
        except (OverflowError, OSError, ValueError) as e:
            return fail(ErrorCode.INVALID_TIME, f"Invalid epoch timestamp {t!r}: {e}")
    if isinstance(t, datetime):
        return ok(t.replace(tzinfo=None).strftime(TIME_FORMAT))
    if isinstance(t, str):
        try:
            return ok(datetime.fromisoformat(t.strip()).replace(tzinfo=None).strftime(TIME_FORMAT))
        except ValueError as e:
            return fail(ErrorCode.INVALID_TIME, f"Invalid time string {t!r}: {e}")
    return fail(ErrorCode.INVALID_TIME, f"Unsupported time value of type {type(t).__name__}")


class TemporalRowStore(DiagnosticsSurface):
    """`RowStore` with valid-time versioning over one SQLite table."""

    def __init__(self, backend: SQLiteBackend, table: str, id_allocator: Optional[IdAllocator] = None,
                 fallback_to_sequential: bool = False, read_only: bool = False,
                 clock: Optional[Callable[[], datetime]] = None):
        self._init_surface(id_allocator, fallback_to_sequential)
        self.backend = backend
        self.table = table
        self.read_only = read_only
        self.clock = clock or utc_now
        self._current_sql = f"SELECT * FROM `{table}` WHERE `id` = ? AND `valid_until` = ? LIMIT 1"
        self._transaction_label = f"versioned write on `{table}`"
        try:
            with backend.connection(write=not read_only) as conn:
                self.columns = check_row_table(conn, table, temporal=True)
        except sqlite3.Error as e:
            raise RowStoreError.of(ErrorCode.QUERY_ERROR, f"Cannot open table {table}: {e}",
                                   table=table, engine_message=str(e)) from e
        info("temporal_store_opened", table=table, path=backend.path, read_only=read_only)

    def _connection(self):
        return self.backend.connection(write=not self.read_only)

    def _current(self, conn: sqlite3.Connection, row_id: int) -> Optional[sqlite3.Row]:
        return conn.execute(self._current_sql, (row_id, OPEN_END)).fetchone()

    def _transition_time(self, conn: sqlite3.Connection, row_id: int) -> str:
        """`now`, moved forward if needed so it falls after every existing version of row_id."""
        now = _naive_utc(self.clock())
        latest_from, latest_until = conn.execute(
            f"SELECT MAX(`valid_from`), MAX(CASE WHEN `valid_until` != ? THEN `valid_until` END) "
            f"FROM `{self.table}` WHERE `id` = ?", (OPEN_END, row_id)).fetchone()
        if latest_from is not None:
            now = max(now, datetime.strptime(latest_from, TIME_FORMAT) + ONE_TICK)
        if latest_until is not None:
            now = max(now, datetime.strptime(latest_until, TIME_FORMAT))
        return format_time(now)

    def _close_current(self, conn: sqlite3.Connection, row_id: int, now: str) -> int:
        return conn.execute(
            f"UPDATE `{self.table}` SET `valid_until` = ? WHERE `id` = ? AND `valid_until` = ?",
            (now, row_id, OPEN_END)).rowcount

    def _insert_version(self, conn: sqlite3.Connection, row: Mapping[str, Any], now: str) -> None:
        version = {k: v for k, v in row.items() if k not in TIME_COLUMNS}
        version[VALID_FROM] = now
        version[VALID_UNTIL] = OPEN_END
        sql, params = insert_sql(self.table, version)
        conn.execute(sql, params)

    def row_exists(self, row_id: int) -> bool:
        try:
            with self._connection() as conn:
                return self._current(conn, row_id) is not None
        except sqlite3.Error as e:
            raise RowStoreError(query_error("row_exists", self._current_sql, e).error) from e

    def id_in_use(self, row_id: int) -> bool:
        """True if any version, current or closed, carries row_id."""
        sql = f"SELECT 1 FROM `{self.table}` WHERE `id` = ? LIMIT 1"
        try:
            with self._connection() as conn:
                return conn.execute(sql, (row_id,)).fetchone() is not None
        except sqlite3.Error as e:
            raise RowStoreError(query_error("id_in_use", sql, e).error) from e

    @diagnosed
    def create_row(self, row: Mapping[str, Any]) -> Result[int]:
        prepared = prepare_row_for_create(self, row)
        if not prepared.success:
            return prepared
        new_row = prepared.value
        try:
            with self._connection() as conn, transaction(conn):
                if self._current(conn, new_row["id"]) is not None:
                    return fail(ErrorCode.ROW_ALREADY_EXISTS,
                                f"The row with given id ({new_row['id']}) already exists, cannot create",
                                prepared.warnings, id=new_row["id"])
                now = self._transition_time(conn, new_row["id"])
                self._insert_version(conn, new_row, now)
        except sqlite3.IntegrityError as e:
            if is_duplicate_key(e):
                return fail(ErrorCode.ROW_ALREADY_EXISTS,
                            f"The row with given id ({new_row['id']}) already exists, cannot create",
                            prepared.warnings, id=new_row["id"])
            return query_error("create_row", self._transaction_label, e).with_warnings(*prepared.warnings)
        except sqlite3.Error as e:
            return query_error("create_row", self._transaction_label, e).with_warnings(*prepared.warnings)
        debug("row_created", table=self.table, id=new_row["id"], valid_from=now)
        return ok(int(new_row["id"]), prepared.warnings)

    @diagnosed
    def update_row(self, row: Mapping[str, Any]) -> Result[None]:
        bad = check_id_for_update(row)
        if bad:
            return bad
        try:
            with self._connection() as conn, transaction(conn):
                current = self._current(conn, row["id"])
                if current is None:
                    return row_not_found(row["id"], "update")
                merged = as_row(current, TIME_COLUMNS)
                merged.update({k: v for k, v in row.items() if k not in TIME_COLUMNS})
                now = self._transition_time(conn, row["id"])
                self._close_current(conn, row["id"], now)
                self._insert_version(conn, merged, now)
        except sqlite3.Error as e:
            return query_error("update_row", self._transaction_label, e)
        debug("row_updated", table=self.table, id=row["id"], valid_from=now)
        return ok()

    @diagnosed
    def delete_row(self, row_id: int) -> Result[int]:
        try:
            with self._connection() as conn, transaction(conn):
                if self._current(conn, row_id) is None:
                    return ok(0)
                now = self._transition_time(conn, row_id)
                self._close_current(conn, row_id, now)
        except sqlite3.Error as e:
            return query_error("delete_row", self._transaction_label, e)
        debug("row_deleted", table=self.table, id=row_id, valid_until=now)
        return ok(1)

    @diagnosed
    def get_row(self, row_id: int) -> Result[Row]:
        try:
            with self._connection() as conn:
                record = self._current(conn, row_id)
        except sqlite3.Error as e:
            return query_error("get_row", self._current_sql, e)
        if record is None:
            return row_not_found(row_id)
        return ok(as_row(record, TIME_COLUMNS))

    @diagnosed
    def get_row_with_time(self, row_id: int, t: TimeLike) -> Result[Row]:
        at = parse_time(t)
        if not at.success:
            return at
        sql = (f"SELECT * FROM `{self.table}` WHERE `id` = ? AND `valid_from` <= ? AND `valid_until` > ? "
               f"ORDER BY `valid_from` DESC LIMIT 1")
        try:
            with self._connection() as conn:
                record = conn.execute(sql, (row_id, at.value, at.value)).fetchone()
        except sqlite3.Error as e:
            return query_error("get_row_with_time", sql, e)
        if record is None:
            return fail(ErrorCode.ROW_NOT_FOUND, f"Row {row_id} does not exist at {at.value}",
                        id=row_id, time=at.value)
        return ok(as_row(record, TIME_COLUMNS))

    @diagnosed
    def get_row_history(self, row_id: int) -> Result[List[Row]]:
        """All versions of row_id, oldest first, including their validity interval."""
        sql = f"SELECT * FROM `{self.table}` WHERE `id` = ? ORDER BY `valid_from`"
        try:
            with self._connection() as conn:
                records = conn.execute(sql, (row_id,)).fetchall()
        except sqlite3.Error as e:
            return query_error("get_row_history", sql, e)
        if not records:
            return row_not_found(row_id)
        return ok([as_row(r) for r in records])

    @diagnosed
    def get_all_rows(self) -> Result[List[Row]]:
        sql = f"SELECT * FROM `{self.table}` WHERE `valid_until` = ?"
        return self._select(sql, (OPEN_END,), "get_all_rows")

    @diagnosed
    def get_all_rows_with_time(self, t: TimeLike) -> Result[List[Row]]:
        at = parse_time(t)
        if not at.success:
            return at
        sql = f"SELECT * FROM `{self.table}` WHERE `valid_from` <= ? AND `valid_until` > ?"
        return self._select(sql, (at.value, at.value), "get_all_rows_with_time")

    def _select(self, sql: str, params, context: str) -> Result[List[Row]]:
        try:
            with self._connection() as conn:
                return ok([as_row(r, TIME_COLUMNS) for r in conn.execute(sql, params).fetchall()])
        except sqlite3.Error as e:
            return query_error(context, sql, e)

    @diagnosed
    def find_rows(self, match_row: Mapping[str, Any], max_results: int = 0) -> Result[List[Row]]:
        return self.search(spec_from_row(match_row), SearchMode.ALL, max_results)

    @diagnosed
    def find_rows_with_time(self, match_row: Mapping[str, Any], t: TimeLike,
                            max_results: int = 0) -> Result[List[Row]]:
        return self.search_with_time(spec_from_row(match_row), SearchMode.ALL, t, max_results)

    @diagnosed
    def search(self, spec: Sequence[ConditionLike], mode: SearchMode = SearchMode.ALL,
               max_results: int = 0) -> Result[List[Row]]:
        checked = validate_search(spec, mode)
        if not checked.success:
            return checked
        conditions, search_mode = checked.value
        return run_search(self.backend, not self.read_only, self.table, conditions, search_mode,
                          max_results, "`valid_until` = ?", (OPEN_END,), TIME_COLUMNS)

    @diagnosed
    def search_with_time(self, spec: Sequence[ConditionLike], mode: SearchMode, t: TimeLike,
                         max_results: int = 0) -> Result[List[Row]]:
        checked = validate_search(spec, mode)
        if not checked.success:
            return checked
        at = parse_time(t)
        if not at.success:
            return at
        conditions, search_mode = checked.value
        return run_search(self.backend, not self.read_only, self.table, conditions, search_mode,
                          max_results, "`valid_from` <= ? AND `valid_until` > ?",
                          (at.value, at.value), TIME_COLUMNS)

    @diagnosed
    def get_id_for_key_value(self, column: str, value: Any) -> Result[int]:
        return first_id_or_null(self.find_rows({column: value}, 1), column, value)

    @diagnosed
    def get_max_value_in_column(self, column: str) -> Result[int]:
        sql = f"SELECT MAX({quote_identifier(column)}) FROM `{self.table}` WHERE `valid_until` = ?"
        try:
            with self._connection() as conn:
                value = conn.execute(sql, (OPEN_END,)).fetchone()[0]
        except sqlite3.Error as e:
            return query_error("get_max_value_in_column", sql, e)
        return max_as_int(value, column)

    @diagnosed
    def get_max_id(self) -> Result[int]:
        """Max id over every version, so closed ids are not handed out again."""
        sql = f"SELECT MAX(`id`) FROM `{self.table}`"
        try:
            with self._connection() as conn:
                value = conn.execute(sql).fetchone()[0]
        except sqlite3.Error as e:
            return query_error("get_max_id", sql, e)
        return max_as_int(value, "id")
