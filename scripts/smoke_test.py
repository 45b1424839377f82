#!/usr/bin/env python3
"""Smoke test for core store invariants against a real database file.

Checks (on a scratch table, dropped afterwards):
  * create assigns an id and the row reads back unchanged
  * update touches only the given columns
  * search with ALL / ANY returns the expected ids
  * delete returns 1 then 0, and get afterwards fails with ROW_NOT_FOUND
  * (Optional) temporal table history survives delete (set SMOKE_TEMPORAL=1)
  * (Optional) health_check output contains required keys (set SMOKE_HEALTH_CHECK=1)

Database path comes from ROWSTORE_DB. Prints one JSON line; exit 0 on success.
"""
import os, sys, json
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from rowstore import (ErrorCode, Operator, SearchMode, SQLiteBackend,  # noqa: E402
                      SQLiteRowStore, TemporalRowStore)
from rowstore.schema import create_row_table  # noqa: E402

DB_PATH = os.environ.get('ROWSTORE_DB', str(ROOT / 'data' / 'rowstore.db'))
TABLE = '__smoke_rows'
TEMPORAL_TABLE = '__smoke_versions'

failures = []


def check(cond, msg):
    if not cond:
        failures.append(msg)


Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
backend = SQLiteBackend(DB_PATH)
with backend.connection(write=True) as conn:
    conn.execute(f"DROP TABLE IF EXISTS {TABLE}")
    create_row_table(conn, TABLE, {'name': 'TEXT', 'score': 'INTEGER'})

store = SQLiteRowStore(backend, TABLE)
first = store.create_row({'name': 'alpha', 'score': 1}).unwrap()
second = store.create_row({'name': 'beta', 'score': 2}).unwrap()
check(store.get_row(first).value == {'id': first, 'name': 'alpha', 'score': 1}, 'created row does not read back')
store.update_row({'id': first, 'score': 10})
check(store.get_row(first).value == {'id': first, 'name': 'alpha', 'score': 10}, 'update changed other columns')
found = store.search([{'column': 'score', 'condition': Operator.GREATER, 'value': 5}]).value or []
check([r['id'] for r in found] == [first], f'ALL search mismatch: {found}')
found = store.search([{'column': 'name', 'condition': Operator.EQUAL, 'value': 'alpha'},
                      {'column': 'name', 'condition': Operator.EQUAL, 'value': 'beta'}], SearchMode.ANY).value or []
check(sorted(r['id'] for r in found) == sorted([first, second]), f'ANY search mismatch: {found}')
check(store.delete_row(first).value == 1, 'first delete did not remove the row')
check(store.delete_row(first).value == 0, 'second delete was not a no-op')
check(store.get_row(first).code == ErrorCode.ROW_NOT_FOUND, 'deleted row still readable')

if os.environ.get('SMOKE_TEMPORAL', '0') == '1':
    with backend.connection(write=True) as conn:
        conn.execute(f"DROP TABLE IF EXISTS {TEMPORAL_TABLE}")
        create_row_table(conn, TEMPORAL_TABLE, {'name': 'TEXT'}, temporal=True)
    versions = TemporalRowStore(backend, TEMPORAL_TABLE)
    rid = versions.create_row({'name': 'v1'}).unwrap()
    versions.update_row({'id': rid, 'name': 'v2'})
    versions.delete_row(rid)
    history = versions.get_row_history(rid).value or []
    check([h['name'] for h in history] == ['v1', 'v2'], f'temporal history mismatch: {history}')
    check(not versions.row_exists(rid), 'temporal row still current after delete')

if os.environ.get('SMOKE_HEALTH_CHECK', '0') == '1':
    hc = backend.health_check()
    missing = {'ok', 'foreign_keys', 'journal_mode', 'cache_size', 'mmap_size'} - hc.keys()
    check(hc.get('ok') and not missing, f"health_check problem: {hc}")

with backend.connection(write=True) as conn:
    conn.execute(f"DROP TABLE IF EXISTS {TABLE}")
    conn.execute(f"DROP TABLE IF EXISTS {TEMPORAL_TABLE}")
backend.close_all()

if failures:
    print(json.dumps({'success': False, 'failures': failures}))
    sys.exit(2)
print(json.dumps({'success': True}))
