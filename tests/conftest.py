import os

os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['BOOTSTRAP_JOBS_ON_IMPORT'] = '0'
os.environ['API_SHARED_KEY'] = 'test-key'
os.environ['DEFAULT_TIMEZONE'] = 'UTC'
os.environ.pop('DATA_STORE_URL', None)

import pytest

import app as app_module
from models import db


@pytest.fixture
def flask_app():
    app = app_module.app
    app.config['TESTING'] = True
    with app.app_context():
        db.drop_all()
        db.create_all()
    app_module.notifier.drain('alice')
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture
def auth_headers():
    return {'X-API-Key': 'test-key', 'X-User-Id': 'alice'}


@pytest.fixture
def store(flask_app):
    with flask_app.app_context():
        yield app_module.record_store


class FakeStore:
    """In-memory stand-in for the key-value store with switchable failures."""

    def __init__(self, tree=None):
        self.tree = tree or {}
        self.fail = False
        self.writes = []

    def _check(self):
        from services.record_store import StoreError
        if self.fail:
            raise StoreError('store unavailable', 'fake')

    def read_collection(self, collection, owner):
        self._check()
        return self.tree.get(collection, {}).get(owner)

    def write_record(self, collection, owner, key, record):
        self._check()
        self.writes.append((collection, owner, key, record))
        self.tree.setdefault(collection, {}).setdefault(owner, {})[key] = record

    def delete_record(self, collection, owner, key):
        self._check()
        self.tree.get(collection, {}).get(owner, {}).pop(key, None)

    def exists(self, collection, owner):
        self._check()
        return bool(self.tree.get(collection, {}).get(owner))

    def list_owners(self, collection):
        self._check()
        return list(self.tree.get(collection, {}).keys())


@pytest.fixture
def fake_store():
    return FakeStore()
