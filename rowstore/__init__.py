"""rowstore package initialization.

Single source of truth for the package version and the public names so code,
tests and scripts can import without reaching into submodules.
"""

PACKAGE_VERSION = "0.4.0"  # Keep in sync with pyproject version.

from .errors import ErrorCode, Result, RowStoreError, StoreError
from .predicates import Condition, Operator, SearchMode
from .ids import AllocationPolicy, RandomIdAllocator, SequentialIdAllocator, MAX_ID
from .base_store import NULL_ROW_ID, RowStore
from .memory_store import InMemoryRowStore
from .sqlite_backend import BackendConfig, SQLiteBackend
from .sqlite_store import SQLiteRowStore
from .temporal_store import OPEN_END, TemporalRowStore

__all__ = [
    "PACKAGE_VERSION",
    "ErrorCode", "Result", "RowStoreError", "StoreError",
    "Condition", "Operator", "SearchMode",
    "AllocationPolicy", "RandomIdAllocator", "SequentialIdAllocator", "MAX_ID",
    "NULL_ROW_ID", "RowStore",
    "InMemoryRowStore", "BackendConfig", "SQLiteBackend", "SQLiteRowStore",
    "OPEN_END", "TemporalRowStore",
]
