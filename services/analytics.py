"""Dashboard aggregates over todos and calendar items."""
from collections import Counter
from datetime import datetime, timedelta

from recurrence import WEEKDAY_TOKENS

TASK_STATUSES = (
    ('completed', 'Completed'),
    ('in-progress', 'In Progress'),
    ('not-started', 'Not Started'),
)


def task_completion(todos):
    counts = Counter(t.get('status') for t in todos)
    return [{'name': label, 'value': counts.get(status, 0)} for status, label in TASK_STATUSES]


def category_distribution(todos, calendar_items):
    counts = Counter()
    for item in list(todos) + list(calendar_items):
        if item.get('category'):
            counts[item['category']] += 1
    return [{'name': name, 'value': value} for name, value in counts.items()]


def week_start(now):
    """Sunday of the week containing ``now``, at midnight."""
    days_since_sunday = (now.weekday() + 1) % 7
    return now.replace(hour=0, minute=0, second=0, microsecond=0) - timedelta(days=days_since_sunday)


def _day_index(value, start):
    if not isinstance(value, datetime):
        return None
    if start.tzinfo is not None and value.tzinfo is not None:
        value = value.astimezone(start.tzinfo)
    elif (start.tzinfo is None) != (value.tzinfo is None):
        value = value.replace(tzinfo=start.tzinfo)
    index = (value.date() - start.date()).days
    return index if 0 <= index < 7 else None


def weekly_activity(todos, calendar_items, now):
    start = week_start(now)
    data = []
    for offset in range(7):
        day = start + timedelta(days=offset)
        data.append({'name': WEEKDAY_TOKENS[day.weekday()], 'todos': 0, 'events': 0})
    for todo in todos:
        index = _day_index(todo.get('dueDate'), start)
        if index is not None:
            data[index]['todos'] += 1
    for item in calendar_items:
        index = _day_index(item.get('start'), start)
        if index is not None:
            data[index]['events'] += 1
    return data


def _is_past(item, now):
    end = item.get('end')
    if not isinstance(end, datetime):
        return False
    if (end.tzinfo is None) != (now.tzinfo is None):
        end = end.replace(tzinfo=now.tzinfo)
    return end < now


def productivity_score(todos, calendar_items, now):
    total_tasks = len(todos)
    completed = sum(1 for t in todos if t.get('status') == 'completed')
    total_events = len(calendar_items)
    attended = sum(1 for item in calendar_items if _is_past(item, now))
    task_score = completed * 50.0 / total_tasks if total_tasks else 0
    event_score = attended * 50.0 / total_events if total_events else 0
    return int(round(task_score + event_score))


def build_dashboard(todos, calendar_items, now):
    return {
        'task_completion': task_completion(todos),
        'category_distribution': category_distribution(todos, calendar_items),
        'weekly_activity': weekly_activity(todos, calendar_items, now),
        'productivity_score': productivity_score(todos, calendar_items, now),
    }
