"""
Per-user state container for notes, todos and calendar items.

Views read collections from here and write through the save/delete methods,
which call the data service and then reload. A failed load leaves the last
known-good collections in place.
"""
import logging
from datetime import datetime

from recurrence import EventTemplate, expand_events
from services import data_service
from services.record_store import StoreError

logger = logging.getLogger(__name__)

LEGACY_TODO_CATEGORY = 'Todo'
ERROR_TOAST_MS = 5000


def _find(items, item_id):
    if item_id is None:
        return None
    for item in items:
        if str(item.get('id')) == str(item_id):
            return item
    return None


class DataContext:
    def __init__(self, store, user_id, notifier=None, tz=None):
        self.store = store
        self.user_id = user_id
        self.notifier = notifier
        self.tz = tz
        self.notes = []
        self.todos = []
        self.calendar_items = []
        self.legacy_todo_ids = set()
        self.loading = False
        self.loaded = False
        self.error = None

    def _report(self, message, exc):
        logger.error("%s for user %s: %s", message, self.user_id, exc)
        if self.notifier is not None:
            self.notifier.notify(self.user_id, message, duration=ERROR_TOAST_MS, level='error')

    def load(self):
        """Fetch every collection. Returns False (state untouched) when the store fails."""
        self.loading = True
        try:
            data = data_service.fetch_user_data(self.store, self.user_id, tz=self.tz)
        except StoreError as exc:
            self.error = str(exc)
            self._report('Could not load your data', exc)
            return False
        finally:
            self.loading = False
        self.error = None
        self.todos = data[data_service.TODOS]
        self.update_notes(data[data_service.NOTES])
        self.update_calendar_items(data[data_service.CALENDAR_ITEMS])
        self.loaded = True
        return True

    def ensure_loaded(self):
        if not self.loaded:
            self.load()
        return self

    def update_notes(self, notes):
        """
        Replace notes; legacy notes filed under the Todo category move to todos.
        Their ids are kept in ``legacy_todo_ids`` so writes also reach the
        note record they came from.
        """
        plain, legacy_todos = [], []
        for note in notes or []:
            if note.get('category') == LEGACY_TODO_CATEGORY:
                legacy_todos.append(note)
            else:
                plain.append(note)
        self.notes = plain
        self.legacy_todo_ids = {str(note.get('id')) for note in legacy_todos}
        if legacy_todos:
            known = {str(t.get('id')) for t in self.todos}
            merged = list(self.todos)
            for todo in legacy_todos:
                if str(todo.get('id')) not in known:
                    merged.append(dict(todo, dueDate=data_service.parse_instant(todo.get('dueDate'), self.tz)))
                    known.add(str(todo.get('id')))
            self.todos = merged

    def update_todos(self, todos):
        self.todos = list(todos or [])

    def update_calendar_items(self, calendar_items):
        self.calendar_items = list(calendar_items or [])

    def get_note(self, note_id):
        return _find(self.notes, note_id)

    def get_todo(self, todo_id):
        return _find(self.todos, todo_id)

    def get_calendar_item(self, item_id):
        return _find(self.calendar_items, item_id)

    def _write(self, action, collection_label, call):
        try:
            result = call()
        except StoreError as exc:
            self._report(f'Could not {action} {collection_label}', exc)
            raise
        self.load()
        return result

    def _item_id(self, collection, items, item_id, now):
        if item_id:
            return item_id
        return data_service.new_item_id(collection, (i.get('id') for i in items), now=now)

    def save_note(self, note_id, data, now=None):
        note_id = self._item_id(data_service.NOTES, self.notes, note_id, now)
        return self._write('save', 'note', lambda: data_service.save_note(
            self.store, self.user_id, note_id, data, tz=self.tz, now=now))

    def save_todo(self, todo_id, data, now=None):
        todo_id = self._item_id(data_service.TODOS, self.todos, todo_id, now)
        legacy = str(todo_id) in self.legacy_todo_ids

        def call():
            saved = data_service.save_todo(self.store, self.user_id, todo_id, data, tz=self.tz, now=now)
            if legacy:
                # The record lives under todos from now on.
                data_service.delete_note(self.store, self.user_id, todo_id)
            return saved
        return self._write('save', 'todo', call)

    def save_calendar_item(self, item_id, data, now=None):
        item_id = self._item_id(data_service.CALENDAR_ITEMS, self.calendar_items, item_id, now)
        return self._write('save', 'calendar item', lambda: data_service.save_calendar_item(
            self.store, self.user_id, item_id, data, tz=self.tz, now=now))

    def delete_note(self, note_id):
        self._write('delete', 'note', lambda: data_service.delete_note(self.store, self.user_id, note_id))

    def delete_todo(self, todo_id):
        legacy = str(todo_id) in self.legacy_todo_ids

        def call():
            data_service.delete_todo(self.store, self.user_id, todo_id)
            if legacy:
                data_service.delete_note(self.store, self.user_id, todo_id)
        self._write('delete', 'todo', call)

    def delete_calendar_item(self, item_id):
        self._write('delete', 'calendar item',
                    lambda: data_service.delete_calendar_item(self.store, self.user_id, item_id))

    def calendar_templates(self):
        templates = []
        for item in self.calendar_items:
            if not isinstance(item.get('start'), datetime):
                logger.warning("Skipping calendar item %s without a usable start", item.get('id'))
                continue
            if not isinstance(item.get('end'), datetime):
                item = dict(item, end=item['start'])
            templates.append(EventTemplate.from_dict(item))
        return templates

    def calendar_events(self, window_start=None, window_end=None, show_completed=True, now=None):
        """
        Calendar feed: expanded calendar items followed by todos with a due
        date, shown as all-day entries on that date.
        """
        events = []
        for instance in expand_events(self.calendar_templates(), window_start, window_end, now=now):
            event = instance.to_dict()
            event['type'] = 'calendarItem'
            events.append(event)

        for todo in self.todos:
            due = todo.get('dueDate')
            if not isinstance(due, datetime):
                continue
            if not show_completed and todo.get('status') == 'completed':
                continue
            if window_start is not None and due.date() < window_start.date():
                continue
            if window_end is not None and due.date() > window_end.date():
                continue
            event = dict(todo)
            event.update({
                'type': 'todoItem',
                'start': due,
                'end': due,
                'allDay': True,
                'instanceDate': due.date().isoformat(),
            })
            events.append(event)
        return events
