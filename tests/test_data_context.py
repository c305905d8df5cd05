from datetime import datetime

import pytest
import pytz

from services.data_context import DataContext
from services.notifications import ToastNotifier
from services.record_store import StoreError


@pytest.fixture
def notifier():
    return ToastNotifier()


@pytest.fixture
def seeded(fake_store):
    fake_store.tree = {
        'notes': {'u1': {
            'notes1': {'title': 'Ideas', 'content': '# Ideas', 'category': 'Work'},
            'notes2': {'title': 'Old style todo', 'category': 'Todo', 'status': 'pending'},
        }},
        'todos': {'u1': {
            'todos1': {'title': 'Pay rent', 'dueDate': '2024-01-05T12:00:00.000Z', 'status': 'not-started'},
            'todos2': {'title': 'Renew passport', 'dueDate': '2024-02-20T12:00:00.000Z', 'status': 'completed'},
        }},
        'calendarItems': {'u1': {
            'calendarItems1': {
                'title': 'Standup',
                'start': '2024-01-01T09:00:00.000Z',
                'end': '2024-01-01T09:15:00.000Z',
                'recurrence': {'frequency': 'day', 'interval': 1, 'endDate': '2024-01-10'},
            },
            'calendarItems2': {'title': 'Broken', 'start': 'whenever'},
        }},
    }
    return fake_store


def test_load_populates_collections(seeded):
    ctx = DataContext(seeded, 'u1')
    assert ctx.load() is True
    assert ctx.loaded and ctx.error is None and ctx.loading is False
    assert [n['id'] for n in ctx.notes] == ['notes1']
    assert len(ctx.calendar_items) == 2


def test_legacy_todo_notes_merge_into_todos(seeded):
    ctx = DataContext(seeded, 'u1').ensure_loaded()
    assert {t['id'] for t in ctx.todos} == {'todos1', 'todos2', 'notes2'}
    assert ctx.get_note('notes2') is None


def test_legacy_merge_does_not_duplicate_ids(fake_store):
    ctx = DataContext(fake_store, 'u1')
    ctx.update_todos([{'id': 'x1', 'title': 'Current'}])
    ctx.update_notes([{'id': 'x1', 'title': 'Legacy', 'category': 'Todo'}])
    assert ctx.todos == [{'id': 'x1', 'title': 'Current'}]


def test_lookup_of_unknown_id_returns_none(seeded):
    ctx = DataContext(seeded, 'u1').ensure_loaded()
    assert ctx.get_todo('missing') is None
    assert ctx.get_calendar_item(None) is None
    assert ctx.get_todo('todos1')['title'] == 'Pay rent'


def test_failed_load_keeps_last_good_state_and_toasts(seeded, notifier):
    ctx = DataContext(seeded, 'u1', notifier=notifier)
    ctx.load()
    before = list(ctx.todos)

    seeded.fail = True
    assert ctx.load() is False
    assert ctx.todos == before
    assert ctx.error == 'store unavailable'
    toasts = notifier.drain('u1')
    assert toasts[0]['level'] == 'error'
    assert toasts[0]['duration'] == 5000


def test_save_reloads_and_returns_new_id(fake_store):
    ctx = DataContext(fake_store, 'u1').ensure_loaded()
    new_id = ctx.save_todo(None, {'title': 'Write report'})
    assert new_id.startswith('todos')
    assert ctx.get_todo(new_id)['title'] == 'Write report'

    ctx.delete_todo(new_id)
    assert ctx.get_todo(new_id) is None


def test_failed_write_toasts_and_propagates(fake_store, notifier):
    ctx = DataContext(fake_store, 'u1', notifier=notifier).ensure_loaded()
    fake_store.fail = True
    with pytest.raises(StoreError):
        ctx.save_note(None, {'title': 'Lost'})
    assert notifier.drain('u1')[0]['message'] == 'Could not save note'


def test_calendar_events_expand_items_and_include_todos(seeded):
    ctx = DataContext(seeded, 'u1', tz=pytz.utc).ensure_loaded()
    window_start = pytz.utc.localize(datetime(2024, 1, 4))
    window_end = pytz.utc.localize(datetime(2024, 1, 6, 23, 59))
    events = ctx.calendar_events(window_start, window_end, now=window_start)

    calendar = [e for e in events if e['type'] == 'calendarItem']
    assert [e['instanceDate'] for e in calendar] == ['2024-01-04', '2024-01-05', '2024-01-06']
    todos = [e for e in events if e['type'] == 'todoItem']
    assert [e['id'] for e in todos] == ['todos1']
    assert todos[0]['allDay'] is True


def test_calendar_events_can_hide_completed_todos(seeded):
    ctx = DataContext(seeded, 'u1', tz=pytz.utc).ensure_loaded()
    now = pytz.utc.localize(datetime(2024, 1, 1))
    shown = [e['id'] for e in ctx.calendar_events(now=now) if e['type'] == 'todoItem']
    hidden = [e['id'] for e in ctx.calendar_events(show_completed=False, now=now) if e['type'] == 'todoItem']
    assert 'todos2' in shown
    assert 'todos2' not in hidden


def test_new_ids_skip_keys_already_taken(fake_store):
    ctx = DataContext(fake_store, 'u1').ensure_loaded()
    now = pytz.utc.localize(datetime(2024, 1, 1))
    first = ctx.save_note(None, {'title': 'One'}, now=now)
    second = ctx.save_note(None, {'title': 'Two'}, now=now)
    assert first == 'notes1704067200000'
    assert second == 'notes1704067200001'
    assert {n['title'] for n in ctx.notes} == {'One', 'Two'}


def test_calendar_feed_survives_malformed_recurrence(fake_store):
    fake_store.tree = {'calendarItems': {'u1': {
        'calendarItems1': {'title': 'Legacy', 'start': '2024-01-02T09:00:00.000Z', 'recurrence': 'none'},
        'calendarItems2': {'title': 'Odd', 'start': '2024-01-03T09:00:00.000Z',
                           'recurrence': {'frequency': 3, 'weekdays': 'Mon'}},
    }}}
    ctx = DataContext(fake_store, 'u1', tz=pytz.utc).ensure_loaded()
    events = ctx.calendar_events(now=pytz.utc.localize(datetime(2024, 1, 1)))
    assert [e['id'] for e in events] == ['calendarItems1']


def test_deleting_legacy_todo_removes_the_note(fake_store):
    fake_store.tree = {'notes': {'u1': {'n1': {'title': 'Old task', 'category': 'Todo'}}}}
    ctx = DataContext(fake_store, 'u1').ensure_loaded()
    assert ctx.get_todo('n1')['dueDate'] is None

    ctx.delete_todo('n1')
    assert ctx.get_todo('n1') is None
    assert fake_store.tree['notes']['u1'] == {}


def test_saving_legacy_todo_moves_it_to_todos(fake_store):
    fake_store.tree = {'notes': {'u1': {'n1': {'title': 'Old task', 'category': 'Todo'}}}}
    ctx = DataContext(fake_store, 'u1').ensure_loaded()
    ctx.save_todo('n1', dict(ctx.get_todo('n1'), status='completed'))

    assert fake_store.tree['notes']['u1'] == {}
    assert fake_store.tree['todos']['u1']['n1']['status'] == 'completed'
    assert ctx.get_todo('n1')['status'] == 'completed'
    assert ctx.legacy_todo_ids == set()
