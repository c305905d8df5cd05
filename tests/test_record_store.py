import pytest
import requests

from services.record_store import (
    RealtimeDatabaseStore,
    SqlRecordStore,
    StoreError,
    build_record_store,
)


def test_sql_store_write_read_delete(store):
    assert store.read_collection('notes', 'alice') is None

    store.write_record('notes', 'alice', 'notes1', {'title': 'One'})
    store.write_record('notes', 'alice', 'notes2', {'title': 'Two'})
    store.write_record('notes', 'bob', 'notes3', {'title': 'Bob'})
    assert store.read_collection('notes', 'alice') == {
        'notes1': {'title': 'One'},
        'notes2': {'title': 'Two'},
    }

    store.write_record('notes', 'alice', 'notes1', {'title': 'Replaced'})
    assert store.read_collection('notes', 'alice')['notes1'] == {'title': 'Replaced'}

    store.delete_record('notes', 'alice', 'notes1')
    assert list(store.read_collection('notes', 'alice')) == ['notes2']


def test_sql_store_exists_and_owners(store):
    assert store.exists('admins', 'alice') is False
    store.write_record('admins', 'alice', 'granted', True)
    assert store.exists('admins', 'alice') is True

    store.write_record('todos', 'alice', 'todos1', {'title': 'a'})
    store.write_record('todos', 'bob', 'todos2', {'title': 'b'})
    assert sorted(store.list_owners('todos')) == ['alice', 'bob']


class FakeResponse:
    def __init__(self, payload=None, status=200):
        self.payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'{self.status_code} error')

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse()
        self.error = error
        self.calls = []

    def request(self, method, url, params=None, json=None, timeout=None):
        self.calls.append({'method': method, 'url': url, 'params': params, 'json': json, 'timeout': timeout})
        if self.error:
            raise self.error
        return self.response


def test_realtime_store_builds_rest_paths():
    session = FakeSession(FakeResponse({'notes1': {'title': 'One'}}))
    rtdb = RealtimeDatabaseStore('https://example.test/', auth_token='secret', timeout=5, session=session)

    assert rtdb.read_collection('notes', 'alice') == {'notes1': {'title': 'One'}}
    rtdb.write_record('notes', 'alice', 'notes1', {'title': 'One'})
    rtdb.delete_record('notes', 'alice', 'notes1')

    read, write, delete = session.calls
    assert read['method'] == 'GET'
    assert read['url'] == 'https://example.test/notes/alice.json'
    assert read['params'] == {'auth': 'secret'}
    assert read['timeout'] == 5
    assert write['method'] == 'PUT'
    assert write['url'] == 'https://example.test/notes/alice/notes1.json'
    assert write['json'] == {'title': 'One'}
    assert delete['method'] == 'DELETE'


def test_realtime_store_shallow_queries():
    session = FakeSession(FakeResponse({'alice': True, 'bob': True}))
    rtdb = RealtimeDatabaseStore('https://example.test', session=session)
    assert rtdb.list_owners('todos') == ['alice', 'bob']
    assert session.calls[0]['params'] == {'shallow': 'true'}

    session.response = FakeResponse(None)
    assert rtdb.exists('admins', 'carol') is False


def test_realtime_store_wraps_http_failures():
    rtdb = RealtimeDatabaseStore('https://example.test', session=FakeSession(FakeResponse(status=401)))
    with pytest.raises(StoreError) as excinfo:
        rtdb.read_collection('notes', 'alice')
    assert excinfo.value.path == 'notes/alice'

    offline = RealtimeDatabaseStore('https://example.test',
                                    session=FakeSession(error=requests.ConnectionError('offline')))
    with pytest.raises(StoreError):
        offline.write_record('notes', 'alice', 'n1', {})


def test_build_record_store_picks_backend():
    assert isinstance(build_record_store({}), SqlRecordStore)
    rtdb = build_record_store({'DATA_STORE_URL': 'https://example.test', 'DATA_STORE_TIMEOUT': 'soon'})
    assert isinstance(rtdb, RealtimeDatabaseStore)
    assert rtdb.timeout is None
    assert build_record_store({'DATA_STORE_URL': 'https://example.test', 'DATA_STORE_TIMEOUT': '2.5'}).timeout == 2.5
