"""Extracted todo route handlers from app.py."""
from datetime import datetime

from flask import jsonify, request

from services import data_service, todo_views
from services.request_helpers import (
    get_current_user,
    get_data_context,
    load_failed,
    local_zone,
    no_user,
    now_local,
    serialize,
)
from services.validation_service import normalize_priority, normalize_todo_status

MAX_IMPORTANCE = 2


def _todo_response(todo):
    data = serialize(data_service.TODOS, todo)
    data['subtaskProgress'] = todo_views.subtask_progress(todo)
    return data


def _clean_subtasks(raw):
    if not isinstance(raw, list):
        raise ValueError('subtasks must be a list')
    subtasks = []
    for index, sub in enumerate(raw):
        if not isinstance(sub, dict) or not (sub.get('title') or '').strip():
            continue
        subtasks.append({
            'id': str(sub.get('id') or index + 1),
            'title': sub['title'].strip(),
            'status': 'completed' if sub.get('status') == 'completed' else 'pending',
        })
    return subtasks


def _todo_payload(data, existing=None):
    """Merge request fields over an existing todo. Raises ValueError on bad input."""
    todo = dict(existing or {})
    if existing is None or 'title' in data:
        title = (data.get('title') or '').strip()
        if not title:
            raise ValueError('Title is required')
        todo['title'] = title
    if existing is None or 'content' in data:
        todo['content'] = data.get('content') or ''
    if existing is None or 'dueDate' in data:
        raw_due = data.get('dueDate')
        if raw_due:
            due = data_service.parse_instant(raw_due, tz=local_zone())
            if not isinstance(due, datetime):
                raise ValueError('Invalid dueDate')
        else:
            due = now_local().replace(hour=0, minute=0, second=0, microsecond=0) if existing is None else None
        todo['dueDate'] = due
    if existing is None or 'status' in data:
        todo['status'] = normalize_todo_status(data.get('status'))
    if existing is None or 'importance' in data:
        try:
            importance = int(data.get('importance') or 0)
        except (TypeError, ValueError):
            importance = 0
        todo['importance'] = min(max(importance, 0), MAX_IMPORTANCE)
    if existing is None or 'priority' in data:
        todo['priority'] = normalize_priority(data.get('priority'))
    if 'category' in data or existing is None:
        todo['category'] = (data.get('category') or '').strip() or None
    if 'subtasks' in data:
        todo['subtasks'] = _clean_subtasks(data.get('subtasks') or [])
    return todo


def handle_todos():
    """List (filtered, searched, sorted) or create todos."""
    user = get_current_user()
    if not user:
        return no_user()
    ctx = get_data_context(user)

    if request.method == 'POST':
        try:
            todo = _todo_payload(request.json or {})
        except ValueError as exc:
            return jsonify({'error': str(exc)}), 400
        todo_id = ctx.save_todo(None, todo)
        return jsonify(_todo_response(ctx.get_todo(todo_id) or dict(todo, id=todo_id))), 201

    list_filter = (request.args.get('filter') or 'all').lower()
    if list_filter not in todo_views.LIST_FILTERS:
        return jsonify({'error': 'Invalid filter'}), 400
    sort_by = (request.args.get('sort') or 'start').lower()
    if sort_by not in todo_views.SORT_KEYS:
        return jsonify({'error': 'Invalid sort'}), 400

    failed = load_failed(ctx)
    if failed:
        return failed
    todos = todo_views.filter_todos(ctx.todos, list_filter, request.args.get('q') or '')
    return jsonify([_todo_response(t) for t in todo_views.sort_todos(todos, sort_by)])


def handle_todo(todo_id):
    user = get_current_user()
    if not user:
        return no_user()
    ctx = get_data_context(user)
    failed = load_failed(ctx)
    if failed:
        return failed

    todo = ctx.get_todo(todo_id)
    if todo is None:
        return jsonify({'error': 'Todo not found'}), 404

    if request.method == 'DELETE':
        ctx.delete_todo(todo_id)
        return '', 204

    if request.method == 'PUT':
        try:
            updated = _todo_payload(request.json or {}, existing=todo)
        except ValueError as exc:
            return jsonify({'error': str(exc)}), 400
        ctx.save_todo(todo_id, updated)
        return jsonify(_todo_response(ctx.get_todo(todo_id) or updated))

    return jsonify(_todo_response(todo))


def todo_board():
    """Kanban columns keyed by column id."""
    user = get_current_user()
    if not user:
        return no_user()
    ctx = get_data_context(user)
    failed = load_failed(ctx)
    if failed:
        return failed
    board = todo_views.build_board(ctx.todos)
    for column in board.values():
        column['items'] = [_todo_response(t) for t in column['items']]
    return jsonify(board)


def move_todo(todo_id):
    """Drop a todo into a board column; the column decides its new status."""
    user = get_current_user()
    if not user:
        return no_user()
    column_id = ((request.json or {}).get('column') or '').strip()
    status = todo_views.status_for_column(column_id)
    if not status:
        return jsonify({'error': 'Invalid column'}), 400

    ctx = get_data_context(user)
    failed = load_failed(ctx)
    if failed:
        return failed
    todo = ctx.get_todo(todo_id)
    if todo is None:
        return jsonify({'error': 'Todo not found'}), 404
    ctx.save_todo(todo_id, dict(todo, status=status))
    return jsonify(_todo_response(ctx.get_todo(todo_id) or dict(todo, status=status)))


def todo_stats():
    user = get_current_user()
    if not user:
        return no_user()
    ctx = get_data_context(user)
    failed = load_failed(ctx)
    if failed:
        return failed
    return jsonify(todo_views.todo_stats(ctx.todos))
