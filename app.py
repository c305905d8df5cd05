import os

from dotenv import load_dotenv
from flask import Flask, jsonify, request, session
from flask_login import LoginManager, login_user

load_dotenv()

from background_jobs import start_scheduler, sweep_upcoming_deadlines
from models import db
from services import analytics, calendar_routes, data_service, todo_routes
from services.notifications import ToastNotifier, check_upcoming_deadlines
from services.record_store import StoreError, build_record_store
from services.request_helpers import (
    NOTIFIER_EXTENSION,
    STORE_EXTENSION,
    StoreUser,
    get_current_user,
    get_data_context,
    load_failed,
    no_user,
    now_local,
    serialize,
)
from services.validation_service import parse_bool
from text_helpers import DEFAULT_NOTE_CATEGORY, build_note_graph, group_notes_by_category, note_snippet

app = Flask(__name__)
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///productivity.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
app.config['PERMANENT_SESSION_LIFETIME'] = 365 * 24 * 60 * 60  # 1 year in seconds
app.config['API_SHARED_KEY'] = os.environ.get('API_SHARED_KEY')  # Optional shared key for API callers
app.config['DEFAULT_TIMEZONE'] = os.environ.get('DEFAULT_TIMEZONE', 'UTC')
app.config['DATA_STORE_URL'] = os.environ.get('DATA_STORE_URL')  # Realtime database root; unset uses SQL
app.config['DATA_STORE_AUTH'] = os.environ.get('DATA_STORE_AUTH')
app.config['DATA_STORE_TIMEOUT'] = os.environ.get('DATA_STORE_TIMEOUT')
app.config['DEADLINE_SWEEP_MINUTES'] = int(os.environ.get('DEADLINE_SWEEP_MINUTES', '60'))

db.init_app(app)
login_manager = LoginManager(app)
record_store = build_record_store(app.config)
notifier = ToastNotifier()
app.extensions[STORE_EXTENSION] = record_store
app.extensions[NOTIFIER_EXTENSION] = notifier
scheduler = None

with app.app_context():
    db.create_all()


@login_manager.user_loader
def load_user(user_id):
    return StoreUser(user_id) if user_id else None


@login_manager.request_loader
def load_user_from_request(req):
    """Header-based auth for service callers sharing the API key."""
    api_key = req.headers.get('X-API-Key')
    api_user_id = (req.headers.get('X-User-Id') or '').strip()
    shared_key = app.config.get('API_SHARED_KEY')
    if shared_key and api_key and api_user_id and api_key == shared_key:
        return StoreUser(api_user_id)
    return None


@app.errorhandler(StoreError)
def handle_store_error(exc):
    app.logger.error(f"Store request failed ({exc.path}): {exc}")
    return jsonify({'error': 'The data store request failed', 'detail': str(exc)}), 502


# User Selection Routes
@app.route('/api/set-user/<user_id>', methods=['POST'])
def set_user(user_id):
    """Set the current user in session"""
    user_id = (user_id or '').strip()
    if not user_id:
        return jsonify({'error': 'User id is required'}), 400
    login_user(StoreUser(user_id), remember=True)
    session.permanent = True  # Make session persistent across browser restarts
    return jsonify({'success': True, 'user_id': user_id})


@app.route('/api/current-user')
def current_user_info():
    """Get current user info"""
    user = get_current_user()
    return jsonify({'user_id': user.id if user else None})


@app.route('/api/admin-status')
def admin_status():
    user = get_current_user()
    if not user:
        return no_user()
    return jsonify({'is_admin': data_service.is_user_admin(record_store, user.id)})


@app.route('/api/toasts')
def drain_toasts():
    user = get_current_user()
    if not user:
        return no_user()
    return jsonify({'toasts': notifier.drain(user.id)})


@app.route('/api/data')
def user_data():
    """Everything the views need, plus the upcoming deadline check the dashboard runs on load."""
    user = get_current_user()
    if not user:
        return no_user()
    ctx = get_data_context(user)
    failed = load_failed(ctx)
    if failed:
        return failed
    check_upcoming_deadlines(ctx.todos, notifier, user.id, now_local())
    return jsonify({
        'notes': [serialize(data_service.NOTES, n) for n in ctx.notes],
        'todos': [serialize(data_service.TODOS, t) for t in ctx.todos],
        'calendarItems': [serialize(data_service.CALENDAR_ITEMS, c) for c in ctx.calendar_items],
    })


@app.route('/api/analytics')
def analytics_dashboard():
    user = get_current_user()
    if not user:
        return no_user()
    ctx = get_data_context(user)
    failed = load_failed(ctx)
    if failed:
        return failed
    return jsonify(analytics.build_dashboard(ctx.todos, ctx.calendar_items, now_local()))


# Notes API
def _note_payload(data, existing=None):
    note = dict(existing or {})
    if existing is None or 'title' in data:
        note['title'] = (data.get('title') or '').strip() or 'Untitled Note'
    if existing is None or 'content' in data:
        note['content'] = data.get('content') or ''
    if existing is None or 'category' in data:
        note['category'] = (data.get('category') or '').strip() or DEFAULT_NOTE_CATEGORY
    if existing is None or 'isPublic' in data:
        note['isPublic'] = parse_bool(data.get('isPublic'))
    return note


def _note_response(note):
    data = serialize(data_service.NOTES, note)
    data['snippet'] = note_snippet(note.get('content'))
    return data


@app.route('/api/notes', methods=['GET', 'POST'])
def handle_notes():
    """List or create markdown notes for the current user."""
    user = get_current_user()
    if not user:
        return no_user()
    ctx = get_data_context(user)

    if request.method == 'POST':
        data = request.json or {}
        note_id = ctx.save_note(None, _note_payload(data))
        return jsonify(_note_response(ctx.get_note(note_id) or {'id': note_id})), 201

    failed = load_failed(ctx)
    if failed:
        return failed
    category = (request.args.get('category') or '').strip()
    notes = [n for n in ctx.notes if not category or (n.get('category') or DEFAULT_NOTE_CATEGORY) == category]
    notes.sort(key=lambda n: n.get('lastEdited') or 0, reverse=True)
    return jsonify([_note_response(n) for n in notes])


@app.route('/api/notes/<note_id>', methods=['GET', 'PUT', 'DELETE'])
def handle_note(note_id):
    """CRUD operations for a single note."""
    user = get_current_user()
    if not user:
        return no_user()
    ctx = get_data_context(user)
    failed = load_failed(ctx)
    if failed:
        return failed

    note = ctx.get_note(note_id)
    if note is None:
        return jsonify({'error': 'Note not found'}), 404

    if request.method == 'DELETE':
        ctx.delete_note(note_id)
        return '', 204

    if request.method == 'PUT':
        data = request.json or {}
        ctx.save_note(note_id, _note_payload(data, existing=note))
        return jsonify(_note_response(ctx.get_note(note_id) or note))

    return jsonify(_note_response(note))


@app.route('/api/notes/directory')
def notes_directory():
    user = get_current_user()
    if not user:
        return no_user()
    ctx = get_data_context(user)
    failed = load_failed(ctx)
    if failed:
        return failed
    return jsonify(group_notes_by_category(ctx.notes))


@app.route('/api/notes/graph')
def notes_graph():
    user = get_current_user()
    if not user:
        return no_user()
    ctx = get_data_context(user)
    failed = load_failed(ctx)
    if failed:
        return failed
    return jsonify(build_note_graph(ctx.notes, category=(request.args.get('category') or '').strip() or None))


# Calendar and todo handlers live in services/
app.add_url_rule('/api/calendar/events', view_func=calendar_routes.calendar_events)
app.add_url_rule('/api/calendar/items', view_func=calendar_routes.calendar_items, methods=['GET', 'POST'])
app.add_url_rule('/api/calendar/items/<item_id>', view_func=calendar_routes.calendar_item_detail,
                 methods=['GET', 'PUT', 'DELETE'])
app.add_url_rule('/api/todos', view_func=todo_routes.handle_todos, methods=['GET', 'POST'])
app.add_url_rule('/api/todos/board', view_func=todo_routes.todo_board)
app.add_url_rule('/api/todos/stats', view_func=todo_routes.todo_stats)
app.add_url_rule('/api/todos/<todo_id>', view_func=todo_routes.handle_todo, methods=['GET', 'PUT', 'DELETE'])
app.add_url_rule('/api/todos/<todo_id>/move', view_func=todo_routes.move_todo, methods=['POST'])


def _run_deadline_sweep():
    return sweep_upcoming_deadlines(app, record_store, notifier, now_local())


def _start_scheduler():
    """Start background scheduler for the upcoming deadline sweep."""
    global scheduler
    if os.environ.get('ENABLE_DEADLINE_JOBS', '1') != '1':
        return
    if scheduler and scheduler.running:
        return
    # Avoid double-start in Flask debug reloader
    if app.debug and os.environ.get('WERKZEUG_RUN_MAIN') != 'true':
        return
    scheduler = start_scheduler(app, _run_deadline_sweep, minutes=app.config['DEADLINE_SWEEP_MINUTES'])


# Start scheduler on process startup (not request-dependent).
# Can be disabled for tooling/tests that only need app context.
if os.environ.get('BOOTSTRAP_JOBS_ON_IMPORT', '1') == '1':
    try:
        _start_scheduler()
    except Exception as e:
        app.logger.error(f"Error starting scheduler on startup: {e}")

if __name__ == '__main__':
    app.run(host='0.0.0.0', debug=True)
