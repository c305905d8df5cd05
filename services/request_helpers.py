"""Request-scoped helpers shared by app.py and the extracted route modules."""
from datetime import datetime

import pytz
from flask import current_app, g, jsonify
from flask_login import UserMixin, current_user

from services import data_service
from services.data_context import DataContext

STORE_EXTENSION = 'record_store'
NOTIFIER_EXTENSION = 'toast_notifier'


class StoreUser(UserMixin):
    """Authenticated user; only a stable identifier is needed to namespace records."""

    def __init__(self, user_id):
        self.id = str(user_id)


def get_current_user():
    """Resolve the current user from the API key headers, else the session."""
    if current_user and current_user.is_authenticated:
        return current_user
    return None


def get_record_store():
    return current_app.extensions[STORE_EXTENSION]


def get_notifier():
    return current_app.extensions[NOTIFIER_EXTENSION]


def local_zone():
    return pytz.timezone(current_app.config.get('DEFAULT_TIMEZONE', 'UTC'))


def now_local():
    return datetime.now(local_zone())


def get_data_context(user):
    """Load the user's collections once per request."""
    ctx = g.get('data_context')
    if ctx is None or ctx.user_id != user.id:
        ctx = DataContext(get_record_store(), user.id, notifier=get_notifier(), tz=local_zone())
        ctx.load()
        g.data_context = ctx
    return ctx


def serialize(collection, record):
    return data_service.serialize_record(collection, record, tz=local_zone())


def load_failed(ctx):
    """Error response when the initial load failed and nothing is cached."""
    if ctx.error and not ctx.loaded:
        return jsonify({'error': 'Could not load your data', 'detail': ctx.error}), 502
    return None


def no_user():
    return jsonify({'error': 'No user selected'}), 401
