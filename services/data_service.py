"""
Normalization between raw store records and the typed collections the
views work with.

Fetching attaches the record key as ``id`` and hydrates instant fields into
timezone-aware datetimes; saving does the inverse and stamps ``lastEdited``.
"""
import logging
import time
from datetime import date, datetime

import pytz
from dateutil import parser as date_parser

from services.record_store import StoreError

logger = logging.getLogger(__name__)

NOTES = 'notes'
TODOS = 'todos'
CALENDAR_ITEMS = 'calendarItems'
ADMINS = 'admins'
COLLECTIONS = (NOTES, TODOS, CALENDAR_ITEMS)

INSTANT_FIELDS = {
    NOTES: (),
    TODOS: ('dueDate',),
    CALENDAR_ITEMS: ('start', 'end'),
}
RECURRENCE_INSTANT_FIELDS = ('start', 'endDate')

_DATE_ONLY_LENGTH = len('YYYY-MM-DD')


def _zone(tz):
    if tz is None:
        return pytz.utc
    if isinstance(tz, str):
        return pytz.timezone(tz)
    return tz


def _localize(naive, zone):
    if hasattr(zone, 'localize'):
        return zone.localize(naive)
    return naive.replace(tzinfo=zone)


def epoch_millis(now=None):
    if now is None:
        return int(time.time() * 1000)
    return int(now.timestamp() * 1000)


def new_item_id(collection, taken=(), now=None):
    """``{collection}{epoch-millis}``, moved forward past any key already in ``taken``."""
    millis = epoch_millis(now)
    taken = {str(key) for key in taken}
    while f"{collection}{millis}" in taken:
        millis += 1
    return f"{collection}{millis}"


def parse_instant(value, tz=None):
    """
    Hydrate a wire value into an aware datetime in ``tz``.

    Strings without an offset, date-only ones included, are read as local
    time in ``tz``. Precision is cut to milliseconds, which is what
    ``format_instant`` writes. Values that cannot be parsed are returned
    untouched so a later save does not lose them.
    """
    zone = _zone(tz)
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, datetime.min.time())
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = datetime.fromtimestamp(value / 1000.0, tz=pytz.utc)
    elif isinstance(value, str):
        text = value.strip()
        try:
            parsed = date_parser.isoparse(text)
        except (TypeError, ValueError):
            logger.warning("Leaving unparseable instant %r as-is", value)
            return value
    else:
        logger.warning("Leaving instant of unexpected type %s as-is", type(value).__name__)
        return value
    if parsed.tzinfo is None:
        parsed = _localize(parsed, zone)
    parsed = parsed.replace(microsecond=parsed.microsecond // 1000 * 1000)
    return parsed.astimezone(zone)


def parse_recurrence_bound(value, tz=None):
    """Recurrence bounds are day-granular: date-only strings stay plain dates."""
    if isinstance(value, str) and len(value.strip()) == _DATE_ONLY_LENGTH:
        return parse_day(value)
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    return parse_instant(value, tz)


def parse_day(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:_DATE_ONLY_LENGTH])
    except ValueError:
        logger.warning("Leaving unparseable day %r as-is", value)
        return value


def format_instant(value, tz=None):
    """Serialize a datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` and a date as ``YYYY-MM-DD``."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = _localize(value, _zone(tz))
        return value.astimezone(pytz.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')
    if isinstance(value, date):
        return value.isoformat()
    return value


def to_wire(value, tz=None):
    """Recursively serialize every date/datetime inside a record."""
    if isinstance(value, dict):
        return {k: to_wire(v, tz) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_wire(v, tz) for v in value]
    if isinstance(value, (date, datetime)):
        return format_instant(value, tz)
    return value


def hydrate_record(collection, key, raw, tz=None):
    record = dict(raw) if isinstance(raw, dict) else {}
    record['id'] = key
    for name in INSTANT_FIELDS.get(collection, ()):
        record[name] = parse_instant(record.get(name), tz)
    if collection == CALENDAR_ITEMS and isinstance(record.get('recurrence'), dict):
        recurrence = dict(record['recurrence'])
        for name in RECURRENCE_INSTANT_FIELDS:
            if name in recurrence:
                recurrence[name] = parse_recurrence_bound(recurrence[name], tz)
        recurrence['weekdays'] = list(recurrence.get('weekdays') or [])
        recurrence['blackoutDates'] = [parse_day(v) for v in (recurrence.get('blackoutDates') or [])]
        record['recurrence'] = recurrence
    return record


def hydrate_collection(collection, tree, tz=None):
    if not tree:
        return []
    if isinstance(tree, list):
        # Realtime databases return arrays for densely numeric keys.
        tree = {str(i): v for i, v in enumerate(tree) if v is not None}
    return [hydrate_record(collection, key, raw, tz) for key, raw in tree.items()]


def fetch_user_data(store, user_id, tz=None):
    """Read all three collections for a user; absent collections come back empty."""
    try:
        return {
            collection: hydrate_collection(collection, store.read_collection(collection, user_id), tz)
            for collection in COLLECTIONS
        }
    except StoreError as exc:
        logger.error("Error fetching user data for %s: %s", user_id, exc)
        raise


def serialize_record(collection, record, tz=None):
    return to_wire(dict(record), tz)


def save_item(store, user_id, item_id, item_data, collection, tz=None, now=None):
    """
    Write a record at ``{collection}/{user_id}/{item_id}`` and return its id.

    A missing id is synthesized as ``{collection}{epoch-millis}``, which is
    unique only while a single client is writing.
    """
    last_edited = epoch_millis(now)
    if not item_id:
        item_id = new_item_id(collection, now=now)
    record = dict(item_data or {})
    record['id'] = item_id
    record['lastEdited'] = last_edited
    payload = serialize_record(collection, record, tz)
    try:
        store.write_record(collection, user_id, item_id, payload)
    except StoreError as exc:
        logger.error("Error saving %s: %s", collection, exc)
        raise
    return item_id


def save_note(store, user_id, note_id, note_data, **kwargs):
    return save_item(store, user_id, note_id, note_data, NOTES, **kwargs)


def save_todo(store, user_id, todo_id, todo_data, **kwargs):
    return save_item(store, user_id, todo_id, todo_data, TODOS, **kwargs)


def save_calendar_item(store, user_id, item_id, item_data, **kwargs):
    return save_item(store, user_id, item_id, item_data, CALENDAR_ITEMS, **kwargs)


def delete_item(store, user_id, item_id, collection):
    try:
        store.delete_record(collection, user_id, item_id)
    except StoreError as exc:
        logger.error("Error deleting %s: %s", collection, exc)
        raise


def delete_note(store, user_id, note_id):
    delete_item(store, user_id, note_id, NOTES)


def delete_todo(store, user_id, todo_id):
    delete_item(store, user_id, todo_id, TODOS)


def delete_calendar_item(store, user_id, item_id):
    delete_item(store, user_id, item_id, CALENDAR_ITEMS)


def is_user_admin(store, user_id):
    return bool(store.exists(ADMINS, user_id))
