"""Row store abstraction layer.

`RowStore` is the capability set every backend implements: in-memory, SQLite
and the temporal SQLite overlay. Backends implement it independently and share
the validation rules through the helper functions below instead of a common
base class.

Public operations return `Result` values. The `diagnosed` decorator mirrors
each top-level result into the store's `Diagnostics` so the last error and
the accumulated warnings can be inspected afterwards.
"""
from __future__ import annotations
import functools
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from .errors import Diagnostics, ErrorCode, Result, RowStoreError, fail, ok
from .ids import AllocationPolicy, IdAllocator, SequentialIdAllocator
from .logging_util import error, info
from .predicates import ConditionLike, SearchMode, coerce_mode, normalize_spec, validate_spec

NULL_ROW_ID = -1

Row = Dict[str, Any]


class RowStore(Protocol):  # pragma: no cover - structural typing helper
    def row_exists(self, row_id: int) -> bool: ...
    def id_in_use(self, row_id: int) -> bool: ...
    def create_row(self, row: Mapping[str, Any]) -> Result[int]: ...
    def get_row(self, row_id: int) -> Result[Row]: ...
    def get_all_rows(self) -> Result[List[Row]]: ...
    def update_row(self, row: Mapping[str, Any]) -> Result[None]: ...
    def delete_row(self, row_id: int) -> Result[int]: ...
    def find_rows(self, match_row: Mapping[str, Any], max_results: int = 0) -> Result[List[Row]]: ...
    def search(self, spec: Sequence[ConditionLike], mode: SearchMode = SearchMode.ALL,
               max_results: int = 0) -> Result[List[Row]]: ...
    def get_id_for_key_value(self, column: str, value: Any) -> Result[int]: ...
    def get_max_value_in_column(self, column: str) -> Result[int]: ...
    def get_max_id(self) -> Result[int]: ...
    def get_error_code(self) -> int: ...
    def get_error_message(self) -> str: ...
    def get_warnings(self) -> List[str]: ...


def diagnosed(method):
    """Wrap a public operation: reset diagnostics, run, record the result.

    Nested calls on the same store (e.g. `get_max_id` during `create_row`)
    leave recording to the outermost operation. A `RowStoreError` escaping
    the operation becomes a failed `Result`.
    """
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        diag: Diagnostics = self.diagnostics
        if diag.depth:
            return method(self, *args, **kwargs)
        diag.reset()
        diag.depth += 1
        try:
            result = method(self, *args, **kwargs)
        except RowStoreError as e:
            result = Result(error=e.error)
        finally:
            diag.depth -= 1
        diag.record(result)
        if result.error is not None:
            log = error if result.error.code >= ErrorCode.QUERY_ERROR else info
            log("operation_failed", op=method.__name__, store=type(self).__name__,
                code=int(result.error.code), error=result.error.message)
        return result
    return wrapper


class DiagnosticsSurface:
    """Diagnostics accessors and allocator wiring shared by the backends."""

    diagnostics: Diagnostics
    id_policy: AllocationPolicy

    def _init_surface(self, id_allocator: Optional[IdAllocator] = None,
                      fallback_to_sequential: bool = False) -> None:
        self.diagnostics = Diagnostics()
        self.id_policy = AllocationPolicy(id_allocator or SequentialIdAllocator(),
                                          fallback_to_sequential)

    def set_id_allocator(self, allocator: IdAllocator, fallback_to_sequential: bool = False) -> None:
        self.id_policy = AllocationPolicy(allocator, fallback_to_sequential)

    def id_in_use(self, row_id: int) -> bool:
        """Whether an allocator may not hand out row_id; stores keeping history widen this."""
        return self.row_exists(row_id)

    def get_error_code(self) -> int:
        return int(self.diagnostics.error_code)

    def get_error_message(self) -> str:
        return self.diagnostics.error_message

    def get_warnings(self) -> List[str]:
        return list(self.diagnostics.warnings)

    def clear_warnings(self) -> None:
        self.diagnostics.clear_warnings()


# --- Shared validation helpers ---------------------------------------------------

def is_int_id(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def needs_new_id(row: Mapping[str, Any]) -> bool:
    """True if `row` carries no usable id and one must be allocated on create."""
    row_id = row.get("id")
    return not is_int_id(row_id) or row_id == 0


def check_id_for_update(row: Mapping[str, Any]) -> Optional[Result]:
    """Return a failed Result if `row` cannot identify a row to update."""
    if row.get("id") is None:
        return fail(ErrorCode.ID_NOT_SET, "Id not set in given row, cannot update")
    row_id = row["id"]
    if is_int_id(row_id) and row_id == 0:
        return fail(ErrorCode.ID_IS_ZERO, "Id is equal to zero in given row, cannot update")
    if not is_int_id(row_id):
        return fail(ErrorCode.ID_NOT_INTEGER, "Id in given row is not an integer, cannot update")
    return None


def prepare_row_for_create(store, row: Mapping[str, Any]) -> Result[Row]:
    """Copy `row` and make sure it carries an id that is free in `store`."""
    prepared = dict(row)
    if needs_new_id(prepared):
        allocated = store.id_policy.allocate(store)
        if not allocated.success:
            return allocated
        prepared["id"] = allocated.value
        return ok(prepared, allocated.warnings)
    if store.row_exists(prepared["id"]):
        return fail(ErrorCode.ROW_ALREADY_EXISTS,
                    f"The row with given id ({prepared['id']}) already exists, cannot create",
                    id=prepared["id"])
    return ok(prepared)


def row_not_found(row_id: Any, action: str = "") -> Result:
    suffix = f", cannot {action}" if action else ""
    return fail(ErrorCode.ROW_NOT_FOUND, f"Row {row_id} does not exist{suffix}", id=row_id)


def first_id_or_null(rows_result: Result[List[Row]], column: str, value: Any) -> Result[int]:
    """Shared tail of get_id_for_key_value: first match id or NULL_ROW_ID + warning."""
    if not rows_result.success:
        return rows_result
    if not rows_result.value:
        return ok(NULL_ROW_ID, rows_result.warnings + (
            f"{ErrorCode.KEY_VALUE_NOT_FOUND.name}: value {value!r} for key '{column}' not found",))
    return ok(int(rows_result.value[0]["id"]), rows_result.warnings)


def validate_search(spec: Sequence[ConditionLike], mode: Any) -> Result:
    """Validate a spec and mode; the value is `(conditions, mode)` on success."""
    problems = validate_spec(spec)
    if problems:
        return fail(ErrorCode.INVALID_SPEC, "Search spec is not valid: " + "; ".join(problems),
                    problems=problems)
    search_mode = coerce_mode(mode)
    if search_mode is None:
        return fail(ErrorCode.INVALID_SEARCH_TYPE, f"Invalid search mode {mode!r}")
    return ok((normalize_spec(spec), search_mode))


def max_as_int(value: Any, column: str) -> Result[int]:
    """Turn a column maximum into an int; None (empty store) counts as 0."""
    if value is None:
        return ok(0)
    if is_int_id(value) or isinstance(value, float):
        return ok(int(value))
    return fail(ErrorCode.WRONG_COLUMN_TYPE,
                f"Max value in column '{column}' is not numeric: {value!r}", column=column)
