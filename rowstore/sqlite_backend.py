"""SQLite connection provider for the relational row stores.

Responsibilities:
    - Hand out connections in writable or read-only (mode=ro + query_only) mode
    - Apply tuned pragmas with environment driven, clamped settings
    - Optional small connection pool via BACKEND_POOL_SIZE
    - Explicit transactions: connections run in autocommit mode and callers
      group statements with `transaction()`
    - Health check helper + optional integrity_check (VERIFY_ON_CONNECT=1)
"""
from __future__ import annotations
import sqlite3, os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

from .logging_util import warn, debug

MAX_CACHE_KIB = 512 * 1024        # 512 MiB upper clamp
MIN_CACHE_KIB = 16
DEFAULT_CACHE_KIB = 64 * 1024     # 64 MiB
MAX_MMAP_BYTES = 2 * 1024 * 1024 * 1024  # 2 GiB
MIN_MMAP_BYTES = 1 * 1024 * 1024        # 1 MiB
DEFAULT_MMAP_BYTES = 256 * 1024 * 1024  # 256 MiB
MAX_WAL_AUTOCHECKPOINT = 100_000
DEFAULT_WAL_AUTOCHECKPOINT = 1000
BUSY_TIMEOUT_MS = 30000


def _clamp(value: int, low: int, high: int) -> int:
    return min(high, max(low, value))


@dataclass
class BackendConfig:
    cache_kib: int = DEFAULT_CACHE_KIB
    mmap_bytes: int = DEFAULT_MMAP_BYTES
    wal_autocheckpoint: int = DEFAULT_WAL_AUTOCHECKPOINT
    pool_size: int = 0
    verify_on_connect: bool = False

    @classmethod
    def from_env(cls) -> "BackendConfig":
        def _int(name: str, default: int) -> int:
            raw = os.environ.get(name)
            if raw is None:
                return default
            try:
                return int(raw)
            except ValueError:
                warn("invalid_env_int", key=name, value=raw, default=default)
                return default
        requested = {
            "cache_kib": _int("CACHE_SIZE_KIB", DEFAULT_CACHE_KIB),
            "mmap_bytes": _int("MMAP_SIZE_BYTES", DEFAULT_MMAP_BYTES),
            "wal_autocheckpoint": _int("WAL_AUTOCHECKPOINT", DEFAULT_WAL_AUTOCHECKPOINT),
        }
        final = {
            "cache_kib": _clamp(requested["cache_kib"], MIN_CACHE_KIB, MAX_CACHE_KIB),
            "mmap_bytes": _clamp(requested["mmap_bytes"], MIN_MMAP_BYTES, MAX_MMAP_BYTES),
            "wal_autocheckpoint": _clamp(requested["wal_autocheckpoint"], 1, MAX_WAL_AUTOCHECKPOINT),
        }
        adjusted = {k: v for k, v in requested.items() if final[k] != v}
        if adjusted:
            warn("backend_config_clamped", original=adjusted, clamped=final)
        return cls(pool_size=max(0, _int("BACKEND_POOL_SIZE", 0)),
                   verify_on_connect=os.environ.get("VERIFY_ON_CONNECT", "0") == "1",
                   **final)


class _PooledConnection:
    """Wrapper whose close() hands the connection back to its pool."""

    def __init__(self, inner: sqlite3.Connection, pool: List[sqlite3.Connection], max_pool: int):
        self._inner = inner
        self._pool = pool
        self._max_pool = max_pool

    def __getattr__(self, item):
        return getattr(self._inner, item)

    def close(self):
        if self._inner is None:
            return
        if self._inner.in_transaction:
            self._inner.rollback()
        if len(self._pool) < self._max_pool:
            self._pool.append(self._inner)
        else:
            try:
                self._inner.close()
            except sqlite3.Error:
                pass
        self._inner = None  # type: ignore


class SQLiteBackend:
    """Connection factory for one SQLite database file."""

    def __init__(self, path: str, config: Optional[BackendConfig] = None):
        if os.path.isdir(path):
            raise ValueError(f"Path points to a directory, expected file: {path}")
        self.path = path
        self.config = config or BackendConfig.from_env()
        self._pools: Dict[bool, List[sqlite3.Connection]] = {True: [], False: []}
        self._pool_hits: int = 0
        self._pool_misses: int = 0

    # --- Public API -----------------------------------------------------------------
    def connect(self, write: bool) -> sqlite3.Connection:
        """Return a configured connection in autocommit mode.

        write=False opens the file read-only (mode=ro) and sets query_only, so
        any write fails inside SQLite. Raises sqlite3.OperationalError with a
        clearer message when a read-only open targets a missing file.
        """
        if not write and not os.path.exists(self.path):
            raise sqlite3.OperationalError(f"Database not found and read-only access requested: {self.path}")

        if self.config.pool_size > 0 and self._pools[write]:
            conn = self._pools[write].pop()
            self._pool_hits += 1
            return _PooledConnection(conn, self._pools[write], self.config.pool_size)  # type: ignore
        if self.config.pool_size > 0:
            self._pool_misses += 1

        if write:
            conn = sqlite3.connect(self.path, isolation_level=None)
        else:
            conn = sqlite3.connect(f"file:{self.path}?mode=ro", uri=True, isolation_level=None)
        conn.row_factory = sqlite3.Row
        self._apply_pragmas(conn, write)
        if self.config.verify_on_connect and write:
            res = conn.execute("PRAGMA integrity_check").fetchone()[0]
            if res != "ok":
                warn("integrity_check_failed", path=self.path, result=res)
        if self.config.pool_size == 0:
            return conn
        return _PooledConnection(conn, self._pools[write], self.config.pool_size)  # type: ignore

    @contextmanager
    def connection(self, write: bool) -> Iterator[sqlite3.Connection]:
        """Connection scoped to a with-block; closed (or pooled) afterwards."""
        conn = self.connect(write)
        try:
            yield conn
        finally:
            conn.close()

    def health_check(self) -> Dict[str, Any]:
        """Return current core pragma values and basic status."""
        try:
            conn = self.connect(write=False)
        except sqlite3.Error as e:
            return {"ok": False, "error": str(e)}
        try:
            rows = {
                "foreign_keys": conn.execute("PRAGMA foreign_keys").fetchone()[0],
                "journal_mode": conn.execute("PRAGMA journal_mode").fetchone()[0],
                "synchronous": conn.execute("PRAGMA synchronous").fetchone()[0],
                "cache_size": conn.execute("PRAGMA cache_size").fetchone()[0],
                "mmap_size": conn.execute("PRAGMA mmap_size").fetchone()[0],
                "query_only": conn.execute("PRAGMA query_only").fetchone()[0],
            }
            if self.config.pool_size > 0:
                rows.update({
                    "pool_size_configured": self.config.pool_size,
                    "pool_available_read": len(self._pools[False]),
                    "pool_available_write": len(self._pools[True]),
                    "pool_hits": self._pool_hits,
                    "pool_misses": self._pool_misses,
                })
            return {"ok": True, "path": self.path, **rows}
        finally:
            conn.close()

    def get_connection_id(self, conn) -> int:
        """Identity of the underlying connection (pool reuse checks in tests)."""
        if hasattr(conn, '_inner'):
            return id(conn._inner)
        return id(conn)

    # --- Internal -------------------------------------------------------------------
    def _apply_pragmas(self, conn: sqlite3.Connection, write: bool) -> None:
        mode = "write" if write else "read_only"
        conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
        conn.execute("PRAGMA foreign_keys=ON")
        if not write:
            conn.execute("PRAGMA query_only=ON")
            return
        try:
            jm = conn.execute("PRAGMA journal_mode=WAL").fetchone()[0]
            if jm.lower() != "wal":
                warn("journal_mode_unexpected", got=jm, path=self.path)
        except sqlite3.Error as e:
            warn("pragma_failed", pragma="journal_mode=WAL", mode=mode, path=self.path, error=str(e))
        pragmas = [
            f"cache_size=-{self.config.cache_kib}",  # negative => KiB
            f"mmap_size={self.config.mmap_bytes}",
            f"wal_autocheckpoint={self.config.wal_autocheckpoint}",
            "synchronous=NORMAL",
            "trusted_schema=OFF",
        ]
        for p in pragmas:
            try:
                conn.execute(f"PRAGMA {p}")
            except sqlite3.Error as e:
                warn("pragma_failed", pragma=p, mode=mode, path=self.path, error=str(e))
        debug("connection_opened", mode=mode, path=self.path)

    def close_all(self):
        """Close all pooled connections (use in test teardown / shutdown)."""
        for pool in self._pools.values():
            while pool:
                c = pool.pop()
                try:
                    c.close()
                except sqlite3.Error:
                    pass


@contextmanager
def transaction(conn: sqlite3.Connection, immediate: bool = True) -> Iterator[sqlite3.Connection]:
    """BEGIN ... COMMIT around the block, ROLLBACK if it raises."""
    conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def cli_dump_config(argv=None):  # pragma: no cover - thin CLI wrapper
    """CLI helper: print resolved BackendConfig, health_check and table preflight JSON."""
    import argparse, json
    from .errors import RowStoreError
    from .schema import check_row_table
    ap = argparse.ArgumentParser(description='Dump backend config, health info and table preflight')
    ap.add_argument('db', help='Path to SQLite database')
    ap.add_argument('--table', help='Run the row table preflight against this table')
    ap.add_argument('--temporal', action='store_true', help='Preflight as a temporal table')
    args = ap.parse_args(argv)
    be = SQLiteBackend(args.db)
    out: Dict[str, Any] = {'config': be.config.__dict__.copy(), 'health_check': be.health_check()}
    if args.table:
        try:
            with be.connection(write=False) as conn:
                check_row_table(conn, args.table, temporal=args.temporal)
            out['preflight'] = {'ok': True, 'table': args.table}
        except (RowStoreError, sqlite3.Error) as e:
            code = int(e.code) if isinstance(e, RowStoreError) else None
            out['preflight'] = {'ok': False, 'table': args.table, 'error': str(e), 'code': code}
    print(json.dumps(out, indent=2))
    return 0 if out['health_check'].get('ok') else 1


if __name__ == '__main__':  # pragma: no cover
    raise SystemExit(cli_dump_config())
