import pytest
from datetime import datetime, timedelta
from rowstore import BackendConfig, InMemoryRowStore, SQLiteBackend, SQLiteRowStore, TemporalRowStore
from rowstore.schema import create_row_table
from rowstore.sqlite_backend import transaction

COLUMNS = {"v": "TEXT", "somekey": "INTEGER", "someotherkey": "TEXT", "value": "TEXT"}


def make_row(**values):
    """Row with every test column present; unspecified columns are NULL."""
    row = {name: None for name in COLUMNS}
    row.update(values)
    return row


class FakeClock:
    def __init__(self, start=datetime(2024, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **delta):
        self.now = self.now + timedelta(**delta)
        return self.now


def make_table(backend, table="rows", temporal=False, columns=COLUMNS):
    with backend.connection(write=True) as conn, transaction(conn):
        create_row_table(conn, table, columns, temporal=temporal)


@pytest.fixture(autouse=True)
def _quiet_env(monkeypatch):
    for key in ('BACKEND_POOL_SIZE', 'VERIFY_ON_CONNECT', 'CACHE_SIZE_KIB', 'MMAP_SIZE_BYTES',
                'WAL_AUTOCHECKPOINT', 'LOG_LEVEL'):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture()
def db_path(tmp_path):
    return str(tmp_path / 'rows.db')


@pytest.fixture()
def backend(db_path):
    be = SQLiteBackend(db_path, BackendConfig())
    yield be
    be.close_all()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture(params=['memory', 'sqlite', 'temporal'])
def store(request, backend):
    """Every backend behind the same contract."""
    kind = request.param
    if kind == 'memory':
        return InMemoryRowStore()
    make_table(backend, temporal=(kind == 'temporal'))
    if kind == 'sqlite':
        return SQLiteRowStore(backend, 'rows')
    return TemporalRowStore(backend, 'rows')


@pytest.fixture()
def temporal(backend, clock):
    make_table(backend, 'versions', temporal=True)
    return TemporalRowStore(backend, 'versions', clock=clock)
