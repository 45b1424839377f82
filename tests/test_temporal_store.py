import sqlite3
import pytest
from datetime import datetime, timedelta, timezone
from rowstore import (OPEN_END, ErrorCode, Operator, RandomIdAllocator, RowStoreError, SearchMode,
                      TemporalRowStore)
from rowstore.temporal_store import format_time, parse_time
from conftest import make_row, make_table


@pytest.fixture()
def timeline(temporal, clock):
    """Row 1: 'a' from t0, 'b' from t0+1h, deleted at t0+2h."""
    t0 = clock.now
    row_id = temporal.create_row(make_row(v='a', somekey=1)).unwrap()
    clock.advance(hours=1)
    temporal.update_row({'id': row_id, 'v': 'b'}).unwrap()
    clock.advance(hours=1)
    assert temporal.delete_row(row_id).unwrap() == 1
    return row_id, t0


def test_versions_are_visible_at_their_time(temporal, timeline):
    row_id, t0 = timeline
    assert temporal.get_row(row_id).code == ErrorCode.ROW_NOT_FOUND
    assert not temporal.row_exists(row_id)
    assert temporal.get_row_with_time(row_id, '2024-01-01 12:30:00').unwrap() == make_row(id=1, v='a', somekey=1)
    assert temporal.get_row_with_time(row_id, datetime(2024, 1, 1, 13, 30)).unwrap()['v'] == 'b'
    # intervals are closed at the start and open at the end
    assert temporal.get_row_with_time(row_id, t0).unwrap()['v'] == 'a'
    assert temporal.get_row_with_time(row_id, '2024-01-01 13:00:00').unwrap()['v'] == 'b'
    res = temporal.get_row_with_time(row_id, '2024-01-01 14:00:00')
    assert res.code == ErrorCode.ROW_NOT_FOUND
    assert '2024-01-01 14:00:00' in res.error.message
    assert temporal.get_row_with_time(row_id, '2024-01-01 11:59:59').code == ErrorCode.ROW_NOT_FOUND


def test_epoch_and_aware_times(temporal, timeline):
    row_id, _ = timeline
    epoch = datetime(2024, 1, 1, 12, 30, tzinfo=timezone.utc).timestamp()
    assert temporal.get_row_with_time(row_id, epoch).unwrap()['v'] == 'a'
    assert temporal.get_row_with_time(row_id, int(epoch) + 3600).unwrap()['v'] == 'b'
    # offsets are dropped, the wall-clock value is compared as given
    assert temporal.get_row_with_time(row_id, '2024-01-01T12:30:00+05:00').unwrap()['v'] == 'a'
    aware = datetime(2024, 1, 1, 13, 30, tzinfo=timezone(timedelta(hours=-8)))
    assert temporal.get_row_with_time(row_id, aware).unwrap()['v'] == 'b'


def test_history_lists_every_version(temporal, timeline):
    row_id, _ = timeline
    history = temporal.get_row_history(row_id).unwrap()
    assert [h['v'] for h in history] == ['a', 'b']
    assert history[0]['valid_from'] == '2024-01-01 12:00:00.000000'
    assert history[0]['valid_until'] == history[1]['valid_from'] == '2024-01-01 13:00:00.000000'
    assert history[1]['valid_until'] == '2024-01-01 14:00:00.000000'
    assert temporal.get_row_history(99).code == ErrorCode.ROW_NOT_FOUND


def test_point_in_time_listing_and_search(temporal, clock):
    temporal.create_row(make_row(v='a', somekey=1)).unwrap()
    temporal.create_row(make_row(v='b', somekey=2)).unwrap()
    t_before = clock.now
    clock.advance(minutes=10)
    temporal.update_row({'id': 1, 'v': 'z'}).unwrap()
    temporal.create_row(make_row(v='c', somekey=3)).unwrap()

    assert sorted(r['v'] for r in temporal.get_all_rows().unwrap()) == ['b', 'c', 'z']
    assert sorted(r['v'] for r in temporal.get_all_rows_with_time(t_before).unwrap()) == ['a', 'b']
    past = temporal.find_rows_with_time({'v': 'a'}, t_before).unwrap()
    assert [r['id'] for r in past] == [1]
    assert 'valid_from' not in past[0]
    assert temporal.find_rows({'v': 'a'}).unwrap() == []
    spec = [{'column': 'somekey', 'condition': Operator.GREATER_OR_EQUAL, 'value': 2}]
    assert [r['v'] for r in temporal.search_with_time(spec, SearchMode.ALL, t_before).unwrap()] == ['b']
    assert len(temporal.search_with_time(spec, SearchMode.ANY, clock.now, 1).unwrap()) == 1


def test_updates_within_one_clock_tick_stay_ordered(temporal):
    row_id = temporal.create_row(make_row(v='a')).unwrap()
    temporal.update_row({'id': row_id, 'v': 'b'}).unwrap()
    temporal.update_row({'id': row_id, 'v': 'c'}).unwrap()
    history = temporal.get_row_history(row_id).unwrap()
    assert [h['v'] for h in history] == ['a', 'b', 'c']
    starts = [h['valid_from'] for h in history]
    assert starts == sorted(set(starts))
    assert [h['valid_until'] for h in history][-1] == OPEN_END
    assert temporal.get_row(row_id).unwrap()['v'] == 'c'


def test_recreating_a_deleted_id(temporal, timeline):
    row_id, _ = timeline
    assert temporal.create_row(make_row(id=row_id, v='again')).unwrap() == row_id
    history = temporal.get_row_history(row_id).unwrap()
    assert [h['v'] for h in history] == ['a', 'b', 'again']
    assert history[2]['valid_from'] >= history[1]['valid_until']
    assert temporal.get_row_with_time(row_id, '2024-01-01 12:30:00').unwrap()['v'] == 'a'


def test_ids_of_deleted_rows_are_not_reused(temporal, timeline):
    row_id, _ = timeline
    assert temporal.get_max_id().unwrap() == row_id
    assert temporal.create_row(make_row(v='new')).unwrap() == row_id + 1


def test_random_ids_skip_ids_kept_in_history(temporal, clock):
    temporal.set_id_allocator(RandomIdAllocator(1, 1))
    assert temporal.create_row(make_row(v='alice')).unwrap() == 1
    clock.advance(seconds=1)
    temporal.delete_row(1).unwrap()
    assert not temporal.row_exists(1)
    assert temporal.id_in_use(1)
    clock.advance(seconds=1)
    res = temporal.create_row(make_row(v='bob'))
    assert res.unwrap() == 2
    assert any('No unused id' in w for w in res.warnings)
    assert [r['v'] for r in temporal.get_row_history(1).unwrap()] == ['alice']
    assert [r['v'] for r in temporal.get_row_history(2).unwrap()] == ['bob']


def test_max_value_covers_current_versions(temporal):
    temporal.create_row(make_row(v='a', somekey=50)).unwrap()
    temporal.create_row(make_row(v='b', somekey=7)).unwrap()
    temporal.update_row({'id': 1, 'somekey': 5}).unwrap()
    assert temporal.get_max_value_in_column('somekey').unwrap() == 7


def test_time_columns_in_input_are_ignored(temporal):
    row_id = temporal.create_row({'v': 'x', 'valid_from': '1999-01-01', 'valid_until': '2000-01-01'}).unwrap()
    assert temporal.get_row(row_id).unwrap()['v'] == 'x'
    temporal.update_row({'id': row_id, 'valid_until': '2000-01-01'}).unwrap()
    assert temporal.get_row_history(row_id).unwrap()[-1]['valid_until'] == OPEN_END


def test_update_and_delete_of_missing_rows(temporal, timeline):
    row_id, _ = timeline
    assert temporal.update_row({'id': row_id, 'v': 'x'}).code == ErrorCode.ROW_NOT_FOUND
    assert temporal.delete_row(row_id).unwrap() == 0
    assert len(temporal.get_row_history(row_id).unwrap()) == 2


@pytest.mark.parametrize('bad', ['not a time', '2024-13-45', True, [2024], None, float('nan')])
def test_invalid_times(temporal, timeline, bad):
    row_id, _ = timeline
    assert temporal.get_row_with_time(row_id, bad).code == ErrorCode.INVALID_TIME
    assert temporal.get_all_rows_with_time(bad).code == ErrorCode.INVALID_TIME
    assert temporal.find_rows_with_time({'v': 'a'}, bad).code == ErrorCode.INVALID_TIME
    assert temporal.get_error_code() == ErrorCode.INVALID_TIME


def test_parse_time_normalizes_to_stored_text():
    assert parse_time('2024-05-06 07:08:09').unwrap() == '2024-05-06 07:08:09.000000'
    assert parse_time(0).unwrap() == '1970-01-01 00:00:00.000000'
    assert format_time(datetime(2024, 1, 1, 1, 0, tzinfo=timezone.utc)) == '2024-01-01 01:00:00.000000'
    assert parse_time('2024-05-06T07:08:09+02:00').unwrap() == '2024-05-06 07:08:09.000000'
    assert parse_time(datetime(2024, 5, 6, 7, 8, tzinfo=timezone.utc)).unwrap() == '2024-05-06 07:08:00.000000'


def test_temporal_preflight(db_path, backend):
    make_table(backend, 'plain')
    with pytest.raises(RowStoreError) as exc:
        TemporalRowStore(backend, 'plain')
    assert exc.value.code == ErrorCode.REQUIRED_COLUMN_NOT_FOUND
    conn = sqlite3.connect(db_path)
    conn.execute('CREATE TABLE odd (id INTEGER, valid_from DATETIME, valid_until INTEGER)')
    conn.commit()
    conn.close()
    with pytest.raises(RowStoreError) as exc:
        TemporalRowStore(backend, 'odd')
    assert exc.value.code == ErrorCode.WRONG_COLUMN_TYPE
