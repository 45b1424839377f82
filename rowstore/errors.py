"""Error codes, result values and per-store diagnostics.

Every public store operation returns a `Result`: either a value or a tagged
`StoreError`, plus the warnings raised while producing it. Stores also mirror
the outcome of their last operation into a `Diagnostics` object so callers
can inspect `get_error_code()` / `get_error_message()` / `get_warnings()`.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

T = TypeVar("T")


class ErrorCode(IntEnum):
    NO_ERROR = 0
    CANNOT_GET_UNUSED_ID = 101
    ROW_NOT_FOUND = 102
    ROW_ALREADY_EXISTS = 103
    ID_NOT_INTEGER = 104
    ID_NOT_SET = 105
    ID_IS_ZERO = 106
    KEY_VALUE_NOT_FOUND = 108
    INVALID_SEARCH_TYPE = 109
    INVALID_SPEC = 110
    INVALID_TIME = 111
    # storage engine
    QUERY_ERROR = 1010
    REQUIRED_COLUMN_NOT_FOUND = 1020
    WRONG_COLUMN_TYPE = 1030
    TABLE_NOT_FOUND = 1040
    INVALID_TABLE = 1050
    # allocators
    RANDOM_GENERATOR_ERROR = 2001


@dataclass(frozen=True)
class StoreError:
    code: ErrorCode
    message: str
    detail: Dict[str, Any] = field(default_factory=dict)


class RowStoreError(Exception):
    """Raised for failures that cannot be returned as a `Result`
    (construction preflight, engine failures in existence checks) and by `Result.unwrap`."""

    def __init__(self, error: StoreError):
        super().__init__(error.message)
        self.error = error

    @property
    def code(self) -> ErrorCode:
        return self.error.code

    @classmethod
    def of(cls, code: ErrorCode, message: str, **detail) -> "RowStoreError":
        return cls(StoreError(code, message, detail))


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[StoreError] = None
    warnings: Tuple[str, ...] = ()

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def code(self) -> ErrorCode:
        return self.error.code if self.error else ErrorCode.NO_ERROR

    def unwrap(self) -> T:
        if self.error is not None:
            raise RowStoreError(self.error)
        return self.value  # type: ignore[return-value]

    def with_warnings(self, *warnings: str) -> "Result[T]":
        if not warnings:
            return self
        return Result(self.value, self.error, self.warnings + tuple(warnings))

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success}
        if self.error is None:
            out["value"] = self.value
        else:
            out["error"] = self.error.message
            out["code"] = int(self.error.code)
        if self.warnings:
            out["warnings"] = list(self.warnings)
        return out


def ok(value: T = None, warnings=()) -> Result[T]:
    return Result(value=value, warnings=tuple(warnings))


def fail(code: ErrorCode, message: str, warnings=(), **detail) -> Result[Any]:
    return Result(error=StoreError(code, message, detail), warnings=tuple(warnings))


class Diagnostics:
    """Last-error + warning channel owned by one store instance.

    The error is reset when a public operation starts and set from that
    operation's result; warnings accumulate until `clear_warnings()`.
    """

    def __init__(self):
        self.error_code: ErrorCode = ErrorCode.NO_ERROR
        self.error_message: str = ""
        self.error_detail: Dict[str, Any] = {}
        self.warnings: List[str] = []
        self.depth = 0

    def reset(self) -> None:
        self.error_code = ErrorCode.NO_ERROR
        self.error_message = ""
        self.error_detail = {}

    def record(self, result: Result) -> None:
        if result.error is not None:
            self.error_code = result.error.code
            self.error_message = result.error.message
            self.error_detail = dict(result.error.detail)
        self.warnings.extend(result.warnings)

    def record_exception(self, exc: RowStoreError) -> None:
        self.error_code = exc.error.code
        self.error_message = exc.error.message
        self.error_detail = dict(exc.error.detail)

    def clear_warnings(self) -> None:
        self.warnings.clear()
