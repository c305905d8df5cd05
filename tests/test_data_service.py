from datetime import date, datetime

import pytest
import pytz

from services import data_service
from services.record_store import StoreError

NY = pytz.timezone('America/New_York')
SAVED_AT = pytz.utc.localize(datetime(2024, 1, 2, 3, 4, 5))
SAVED_AT_MS = 1704164645000


def test_fetch_attaches_ids_and_hydrates_instants(fake_store):
    fake_store.tree = {
        'calendarItems': {'u1': {'calendarItems1': {
            'title': 'Standup',
            'start': '2024-01-01T14:00:00.000Z',
            'end': '2024-01-01T15:00:00.000Z',
            'recurrence': {
                'frequency': 'week',
                'interval': 1,
                'weekdays': ['Mon'],
                'endDate': '2024-02-01',
                'blackoutDates': ['2024-01-08'],
            },
        }}},
        'todos': {'u1': {'todos1': {'title': 'Pay rent', 'dueDate': '2024-01-05T00:00:00.000Z'}}},
    }
    data = data_service.fetch_user_data(fake_store, 'u1', tz=NY)

    assert data['notes'] == []
    item = data['calendarItems'][0]
    assert item['id'] == 'calendarItems1'
    assert item['start'] == NY.localize(datetime(2024, 1, 1, 9, 0))
    assert item['end'].tzinfo is not None
    assert item['recurrence']['endDate'] == date(2024, 2, 1)
    assert item['recurrence']['blackoutDates'] == [date(2024, 1, 8)]
    todo = data['todos'][0]
    assert todo['id'] == 'todos1'
    assert todo['dueDate'] == pytz.utc.localize(datetime(2024, 1, 5))


def test_missing_collections_default_to_empty_lists(fake_store):
    data = data_service.fetch_user_data(fake_store, 'nobody')
    assert data == {'notes': [], 'todos': [], 'calendarItems': []}


def test_offset_less_strings_are_local_time():
    parsed = data_service.parse_instant('2024-06-01T09:30:00', tz=NY)
    assert parsed == NY.localize(datetime(2024, 6, 1, 9, 30))
    assert data_service.parse_instant('2024-06-01', tz=NY) == NY.localize(datetime(2024, 6, 1))


def test_unparseable_instant_is_left_alone():
    assert data_service.parse_instant('next tuesday') == 'next tuesday'
    assert data_service.parse_instant('') is None


def test_save_serializes_instants_and_stamps_last_edited(fake_store):
    start = NY.localize(datetime(2024, 1, 1, 9, 0))
    item_id = data_service.save_calendar_item(fake_store, 'u1', None, {
        'title': 'Standup',
        'start': start,
        'end': NY.localize(datetime(2024, 1, 1, 10, 0)),
        'recurrence': {'frequency': 'day', 'endDate': date(2024, 1, 31), 'blackoutDates': [date(2024, 1, 2)]},
    }, now=SAVED_AT)

    assert item_id == f'calendarItems{SAVED_AT_MS}'
    collection, owner, key, record = fake_store.writes[-1]
    assert (collection, owner, key) == ('calendarItems', 'u1', item_id)
    assert record['id'] == item_id
    assert record['lastEdited'] == SAVED_AT_MS
    assert record['start'] == '2024-01-01T14:00:00.000Z'
    assert record['end'] == '2024-01-01T15:00:00.000Z'
    assert record['recurrence']['endDate'] == '2024-01-31'
    assert record['recurrence']['blackoutDates'] == ['2024-01-02']


def test_save_keeps_supplied_id_and_overwrites(fake_store):
    data_service.save_note(fake_store, 'u1', 'notes1', {'title': 'First'}, now=SAVED_AT)
    data_service.save_note(fake_store, 'u1', 'notes1', {'title': 'Second'}, now=SAVED_AT)
    assert fake_store.tree['notes']['u1'] == {
        'notes1': {'title': 'Second', 'id': 'notes1', 'lastEdited': SAVED_AT_MS},
    }


def test_round_trip_preserves_instants(fake_store):
    fake_store.tree = {'todos': {'u1': {'todos9': {
        'title': 'File taxes', 'dueDate': '2024-04-15T16:00:00.000Z', 'status': 'pending',
    }}}}
    todo = data_service.fetch_user_data(fake_store, 'u1', tz=NY)['todos'][0]
    data_service.save_todo(fake_store, 'u1', todo['id'], todo, tz=NY)
    assert fake_store.tree['todos']['u1']['todos9']['dueDate'] == '2024-04-15T16:00:00.000Z'

    again = data_service.fetch_user_data(fake_store, 'u1', tz=NY)['todos'][0]
    assert again['dueDate'] == todo['dueDate']


def test_delete_removes_record(fake_store):
    data_service.save_todo(fake_store, 'u1', 'todos1', {'title': 'x'})
    data_service.delete_todo(fake_store, 'u1', 'todos1')
    assert fake_store.tree['todos']['u1'] == {}


def test_store_failures_propagate(fake_store):
    fake_store.fail = True
    with pytest.raises(StoreError):
        data_service.fetch_user_data(fake_store, 'u1')
    with pytest.raises(StoreError):
        data_service.save_note(fake_store, 'u1', None, {'title': 'x'})
    with pytest.raises(StoreError):
        data_service.delete_note(fake_store, 'u1', 'notes1')


def test_is_user_admin(fake_store):
    assert data_service.is_user_admin(fake_store, 'u1') is False
    fake_store.tree['admins'] = {'u1': {'granted': True}}
    assert data_service.is_user_admin(fake_store, 'u1') is True


def test_array_shaped_collection_is_keyed_by_index():
    records = data_service.hydrate_collection('notes', [None, {'title': 'one'}])
    assert records == [{'title': 'one', 'id': '1'}]


def test_sub_millisecond_precision_is_dropped_on_parse():
    parsed = data_service.parse_instant('2024-01-01T09:00:00.123456Z')
    assert parsed.microsecond == 123000
    assert data_service.format_instant(parsed) == '2024-01-01T09:00:00.123Z'
    assert data_service.parse_instant(data_service.format_instant(parsed)) == parsed


def test_absent_instant_fields_hydrate_as_none():
    todo = data_service.hydrate_record('todos', 'todos1', {'title': 'No date'})
    assert todo['dueDate'] is None
    item = data_service.hydrate_record('calendarItems', 'calendarItems1', {'title': 'Draft'})
    assert item['start'] is None and item['end'] is None
    assert 'dueDate' not in data_service.hydrate_record('notes', 'notes1', {'title': 'Plain'})
