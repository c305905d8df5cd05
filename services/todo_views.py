"""List, board and stats views over the normalized todo collection."""
from datetime import datetime, timezone

BOARD_COLUMNS = (
    ('to-do', 'To Do'),
    ('in-progress', 'In Progress'),
    ('done', 'Done'),
)
COLUMN_STATUS = {
    'to-do': 'not-started',
    'in-progress': 'in-progress',
    'done': 'completed',
}
STATUS_COLUMN = {
    'not-started': 'to-do',
    'pending': 'to-do',
    'in-progress': 'in-progress',
    'completed': 'done',
}
LIST_FILTERS = ('all', 'completed', 'pending')
SORT_KEYS = ('start', 'end', 'title', 'importance')

_FAR_FUTURE = datetime.max


def is_completed(todo):
    return (todo.get('status') or '') == 'completed'


def _instant_key(value):
    # Naive keys let aware and missing values sort together; missing sorts last.
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    return _FAR_FUTURE


def _importance(todo):
    try:
        return int(todo.get('importance') or 0)
    except (TypeError, ValueError):
        return 0


def filter_todos(todos, list_filter='all', search=''):
    term = (search or '').strip().lower()
    results = []
    for todo in todos:
        if list_filter == 'completed' and not is_completed(todo):
            continue
        if list_filter == 'pending' and is_completed(todo):
            continue
        if term and term not in (todo.get('title') or '').lower():
            continue
        results.append(todo)
    return results


def sort_todos(todos, sort_by='start'):
    """Completed todos always sink below open ones; ``sort_by`` orders within each group."""
    def key(todo):
        if sort_by == 'start':
            secondary = _instant_key(todo.get('start') or todo.get('dueDate'))
        elif sort_by == 'end':
            secondary = _instant_key(todo.get('end') or todo.get('dueDate'))
        elif sort_by == 'title':
            secondary = (todo.get('title') or '').lower()
        elif sort_by == 'importance':
            secondary = -_importance(todo)
        else:
            secondary = 0
        return (is_completed(todo), secondary)
    return sorted(todos, key=key)


def build_board(todos):
    """Group todos into kanban columns, each ordered by due date."""
    columns = {column_id: {'id': column_id, 'title': title, 'items': []}
               for column_id, title in BOARD_COLUMNS}
    for todo in todos:
        column_id = STATUS_COLUMN.get(todo.get('status') or 'not-started')
        if column_id:
            columns[column_id]['items'].append(todo)
    for column in columns.values():
        column['items'].sort(key=lambda t: _instant_key(t.get('dueDate')))
    return columns


def status_for_column(column_id):
    return COLUMN_STATUS.get(column_id)


def subtask_progress(todo):
    subtasks = todo.get('subtasks') or []
    if not subtasks:
        return 0
    done = sum(1 for s in subtasks if (s or {}).get('status') == 'completed')
    return int(done * 100 / len(subtasks))


def todo_stats(todos):
    total = len(todos)
    completed = sum(1 for t in todos if is_completed(t))
    rate = round(completed * 100.0 / total, 2) if total else 0
    return {
        'total': total,
        'completed': completed,
        'pending': total - completed,
        'completion_rate': rate,
    }
