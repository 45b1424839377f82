"""In-memory row store.

Reference implementation of the `RowStore` contract, backed by a dict keyed by
id. Used in tests and wherever persistence is not needed. Rows are copied on
the way in and out so callers never alias the internal state.
"""
from __future__ import annotations
from threading import RLock
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .base_store import (DiagnosticsSurface, Row, check_id_for_update, diagnosed,
                         first_id_or_null, is_int_id, max_as_int, prepare_row_for_create,
                         row_not_found, validate_search)
from .errors import ErrorCode, Result, fail, ok
from .ids import IdAllocator
from .logging_util import debug
from .predicates import ConditionLike, SearchMode, filter_rows, spec_from_row


class InMemoryRowStore(DiagnosticsSurface):
    def __init__(self, id_allocator: Optional[IdAllocator] = None, fallback_to_sequential: bool = False):
        self._init_surface(id_allocator, fallback_to_sequential)
        self._lock = RLock()
        self._rows: Dict[int, Row] = {}

    def row_exists(self, row_id: int) -> bool:
        with self._lock:
            return row_id in self._rows

    @diagnosed
    def create_row(self, row: Mapping[str, Any]) -> Result[int]:
        with self._lock:
            prepared = prepare_row_for_create(self, row)
            if not prepared.success:
                return prepared
            new_row = prepared.value
            self._rows[new_row["id"]] = new_row
        debug("row_created", store="memory", id=new_row["id"])
        return ok(new_row["id"], prepared.warnings)

    @diagnosed
    def get_row(self, row_id: int) -> Result[Row]:
        with self._lock:
            row = self._rows.get(row_id)
            if row is None:
                return row_not_found(row_id)
            return ok(dict(row))

    @diagnosed
    def get_all_rows(self) -> Result[List[Row]]:
        with self._lock:
            return ok([dict(r) for r in self._rows.values()])

    @diagnosed
    def update_row(self, row: Mapping[str, Any]) -> Result[None]:
        bad = check_id_for_update(row)
        if bad:
            return bad
        with self._lock:
            current = self._rows.get(row["id"])
            if current is None:
                return row_not_found(row["id"], "update")
            current.update(row)
        debug("row_updated", store="memory", id=row["id"], columns=sorted(row))
        return ok()

    @diagnosed
    def delete_row(self, row_id: int) -> Result[int]:
        with self._lock:
            if self._rows.pop(row_id, None) is None:
                return ok(0)
        debug("row_deleted", store="memory", id=row_id)
        return ok(1)

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
        with self._lock:
            return ok(filter_rows(self._rows.values(), conditions, search_mode, max_results))

    @diagnosed
    def get_id_for_key_value(self, column: str, value: Any) -> Result[int]:
        return first_id_or_null(self.find_rows({column: value}, 1), column, value)

    @diagnosed
    def get_max_value_in_column(self, column: str) -> Result[int]:
        with self._lock:
            values = [r[column] for r in self._rows.values() if r.get(column) is not None]
        for v in values:
            if not (is_int_id(v) or isinstance(v, float)):
                return fail(ErrorCode.WRONG_COLUMN_TYPE,
                            f"Column '{column}' holds non-numeric value {v!r}", column=column)
        return max_as_int(max(values) if values else None, column)

    @diagnosed
    def get_max_id(self) -> Result[int]:
        with self._lock:
            return ok(max(self._rows) if self._rows else 0)
