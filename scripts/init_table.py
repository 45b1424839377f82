#!/usr/bin/env python3
"""Idempotent row table initializer.

Creates the SQLite database file if needed and a table usable by the row
stores: an integer `id` column, optional extra columns and, with --temporal,
the `valid_from` / `valid_until` version columns. Safe to run multiple times;
an existing table is left as is and only preflight-checked.

Usage:
  python scripts/init_table.py /path/to/db.sqlite people --column name:TEXT --column age:INTEGER
  python scripts/init_table.py /path/to/db.sqlite people_history --temporal --column name:TEXT
"""
from __future__ import annotations
import argparse, sys, pathlib

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from rowstore.errors import RowStoreError  # noqa: E402
from rowstore.schema import check_row_table, create_row_table  # noqa: E402
from rowstore.sqlite_backend import SQLiteBackend, transaction  # noqa: E402


def parse_column(spec: str):
    name, sep, col_type = spec.partition(':')
    if not sep or not name or not col_type:
        raise argparse.ArgumentTypeError(f"expected name:TYPE, got {spec!r}")
    return name, col_type


def main(argv=None):
    ap = argparse.ArgumentParser(description='Create a row store table')
    ap.add_argument('db', type=pathlib.Path)
    ap.add_argument('table')
    ap.add_argument('--temporal', action='store_true', help='Add valid_from/valid_until version columns')
    ap.add_argument('--column', action='append', type=parse_column, default=[], help='Extra column as name:TYPE')
    args = ap.parse_args(argv)
    args.db.parent.mkdir(parents=True, exist_ok=True)
    backend = SQLiteBackend(str(args.db))
    try:
        with backend.connection(write=True) as conn:
            with transaction(conn):
                create_row_table(conn, args.table, dict(args.column), temporal=args.temporal)
            check_row_table(conn, args.table, temporal=args.temporal)
    except (RowStoreError, ValueError) as e:
        print(f"init failed: {e}", file=sys.stderr)
        return 1
    print(f"initialized: {args.db}::{args.table}")
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
