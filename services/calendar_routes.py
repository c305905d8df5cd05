"""Extracted calendar route handlers from app.py."""
from datetime import datetime, timedelta

from flask import jsonify, request

from recurrence import EventTemplate, Recurrence, add_blackout_date, recurrence_summary
from services import data_service
from services.request_helpers import (
    get_current_user,
    get_data_context,
    load_failed,
    local_zone,
    no_user,
    now_local,
    serialize,
)
from services.validation_service import (
    normalize_event_status,
    normalize_priority,
    normalize_recurrence,
    parse_bool,
    parse_day_value,
)

DEFAULT_EVENT_LENGTH = timedelta(hours=1)


def _parse_window_bound(raw, end_of_day=False):
    if not raw:
        return None
    value = data_service.parse_instant(raw, tz=local_zone())
    if not isinstance(value, datetime):
        raise ValueError(f'Invalid date: {raw}')
    if end_of_day and len(str(raw).strip()) == 10:
        value = value.replace(hour=23, minute=59, second=59, microsecond=999999)
    return value


def _item_response(item):
    data = serialize(data_service.CALENDAR_ITEMS, item)
    start, end = item.get('start'), item.get('end')
    if isinstance(start, datetime):
        template = EventTemplate.from_dict(dict(item, end=end if isinstance(end, datetime) else start))
        data['summary'] = recurrence_summary(template)
    return data


def _calendar_payload(data, existing=None):
    """Merge request fields over an existing record, validating as we go. Raises ValueError."""
    tz = local_zone()
    item = dict(existing or {})

    if existing is None or 'title' in data:
        title = (data.get('title') or '').strip()
        if not title:
            raise ValueError('Title is required')
        item['title'] = title

    if existing is None or 'start' in data:
        start = data_service.parse_instant(data.get('start'), tz=tz)
        if not isinstance(start, datetime):
            raise ValueError('Invalid start')
        item['start'] = start
    if existing is None or 'end' in data:
        end = data_service.parse_instant(data.get('end'), tz=tz) if data.get('end') else None
        if data.get('end') and not isinstance(end, datetime):
            raise ValueError('Invalid end')
        item['end'] = end or item['start'] + DEFAULT_EVENT_LENGTH
    if isinstance(item.get('start'), datetime) and isinstance(item.get('end'), datetime) \
            and item['end'] < item['start']:
        raise ValueError('End must not be before start')

    for field in ('category', 'location', 'description'):
        if existing is None or field in data:
            item[field] = (data.get(field) or '').strip() or None
    if existing is None or 'allDay' in data:
        item['allDay'] = parse_bool(data.get('allDay'))
    if existing is None or 'notification' in data:
        notification = data.get('notification')
        try:
            item['notification'] = int(notification) if notification not in (None, '') else None
        except (TypeError, ValueError):
            item['notification'] = None
    if existing is None or 'priority' in data:
        item['priority'] = normalize_priority(data.get('priority'))
    if existing is None or 'status' in data:
        item['status'] = normalize_event_status(data.get('status'))
    if existing is None or 'recurrence' in data:
        recurrence = normalize_recurrence(data.get('recurrence'))
        item['recurrence'] = recurrence or {'frequency': 'none', 'interval': 1, 'weekdays': [], 'endDate': None}
    return item


def calendar_events():
    """Expanded calendar feed for a visible window (start & end inclusive)."""
    user = get_current_user()
    if not user:
        return no_user()
    try:
        window_start = _parse_window_bound(request.args.get('start'))
        window_end = _parse_window_bound(request.args.get('end'), end_of_day=True)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    if window_start and window_end and window_start > window_end:
        return jsonify({'error': 'start must be on or before end'}), 400

    ctx = get_data_context(user)
    failed = load_failed(ctx)
    if failed:
        return failed
    show_completed = parse_bool(request.args.get('show_completed'), default=True)
    events = ctx.calendar_events(window_start, window_end, show_completed=show_completed, now=now_local())
    return jsonify({'events': [serialize(data_service.CALENDAR_ITEMS, ev) for ev in events]})


def calendar_items():
    """List stored calendar templates or create one."""
    user = get_current_user()
    if not user:
        return no_user()
    ctx = get_data_context(user)

    if request.method == 'POST':
        try:
            item = _calendar_payload(request.json or {})
        except ValueError as exc:
            return jsonify({'error': str(exc)}), 400
        item_id = ctx.save_calendar_item(None, item)
        return jsonify(_item_response(ctx.get_calendar_item(item_id) or dict(item, id=item_id))), 201

    failed = load_failed(ctx)
    if failed:
        return failed
    return jsonify([_item_response(item) for item in ctx.calendar_items])


def calendar_item_detail(item_id):
    """Read, update or delete a calendar template; ``scope=instance`` deletes one occurrence."""
    user = get_current_user()
    if not user:
        return no_user()
    ctx = get_data_context(user)
    failed = load_failed(ctx)
    if failed:
        return failed

    item = ctx.get_calendar_item(item_id)
    if item is None:
        return jsonify({'error': 'Calendar item not found'}), 404

    if request.method == 'DELETE':
        if (request.args.get('scope') or 'series') == 'instance':
            rule = Recurrence.from_dict(item.get('recurrence'))
            if rule is None or not rule.is_recurring:
                return jsonify({'error': 'Only recurring items have instances'}), 400
            day = parse_day_value(request.args.get('date'))
            if not day:
                return jsonify({'error': 'A valid date is required'}), 400
            ctx.save_calendar_item(item_id, add_blackout_date(item, day))
            return jsonify(_item_response(ctx.get_calendar_item(item_id) or item))
        ctx.delete_calendar_item(item_id)
        return '', 204

    if request.method == 'PUT':
        try:
            updated = _calendar_payload(request.json or {}, existing=item)
        except ValueError as exc:
            return jsonify({'error': str(exc)}), 400
        ctx.save_calendar_item(item_id, updated)
        return jsonify(_item_response(ctx.get_calendar_item(item_id) or updated))

    return jsonify(_item_response(item))
