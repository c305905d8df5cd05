from datetime import date, datetime

from recurrence import FREQUENCIES, WEEKDAY_TOKENS

ALLOWED_PRIORITIES = {'low', 'medium', 'high'}
ALLOWED_EVENT_STATUSES = {'confirmed', 'tentative', 'canceled'}
ALLOWED_TODO_STATUSES = {'not-started', 'in-progress', 'completed', 'pending'}


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ["1", "true", "yes", "on"]


def parse_day_value(raw):
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        return datetime.strptime(str(raw)[:10], "%Y-%m-%d").date()
    except (TypeError, ValueError):
        return None


def normalize_priority(raw, default='medium'):
    value = str(raw or default).strip().lower()
    return value if value in ALLOWED_PRIORITIES else default


def normalize_event_status(raw, default='confirmed'):
    value = str(raw or default).strip().lower()
    return value if value in ALLOWED_EVENT_STATUSES else default


def normalize_todo_status(raw, default='not-started'):
    value = str(raw or default).strip().lower().replace('_', '-')
    return value if value in ALLOWED_TODO_STATUSES else default


def parse_weekdays(raw):
    """Accept tokens ('mon', 'Mon') or 0-6 indexes (Monday=0); return canonical tokens in week order."""
    if raw is None:
        return []
    values = raw if isinstance(raw, (list, tuple)) else str(raw).split(",")
    lookup = {token.lower(): token for token in WEEKDAY_TOKENS}
    days = set()
    for val in values:
        text = str(val).strip()
        if text.isdigit():
            index = int(text)
            if 0 <= index <= 6:
                days.add(WEEKDAY_TOKENS[index])
            continue
        token = lookup.get(text[:3].lower())
        if token:
            days.add(token)
    return [token for token in WEEKDAY_TOKENS if token in days]


def parse_interval(raw):
    try:
        return max(int(raw), 1)
    except (TypeError, ValueError):
        return 1


def normalize_recurrence(raw):
    """
    Clean a recurrence payload from a client. Returns None for a missing
    rule and raises ValueError for an unknown frequency.
    """
    if not raw:
        return None
    if not isinstance(raw, dict):
        raise ValueError('Recurrence must be an object')
    frequency = str(raw.get('frequency') or 'none').strip().lower()
    if frequency not in FREQUENCIES:
        raise ValueError('Invalid frequency')
    recurrence = dict(raw)
    recurrence['frequency'] = frequency
    recurrence['interval'] = parse_interval(raw.get('interval', 1))
    recurrence['weekdays'] = parse_weekdays(raw.get('weekdays'))
    recurrence['blackoutDates'] = [d for d in (parse_day_value(v) for v in raw.get('blackoutDates') or []) if d]
    if not raw.get('endDate'):
        recurrence['endDate'] = None
    return recurrence
