"""
Key-value record stores backing notes, todos and calendar items.

Both backends expose the same access pattern: read a whole collection for
one owner, write a single record, delete a single record. There is no
querying, no versioning and no conflict detection; the last write wins.
"""
import logging

import requests
from sqlalchemy.exc import SQLAlchemyError

from models import db, StoreRecord

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A read or write against the record store failed."""

    def __init__(self, message, path=None):
        super().__init__(message)
        self.path = path


class SqlRecordStore:
    """Record store kept in the application's own database."""

    def read_collection(self, collection, owner):
        try:
            rows = StoreRecord.query.filter_by(collection=collection, owner=str(owner)).all()
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to read {collection}/{owner}: {exc}", f"{collection}/{owner}") from exc
        if not rows:
            return None
        return {row.key: row.payload for row in rows}

    def write_record(self, collection, owner, key, record):
        try:
            row = StoreRecord.query.filter_by(collection=collection, owner=str(owner), key=str(key)).first()
            if row is None:
                row = StoreRecord(collection=collection, owner=str(owner), key=str(key))
                db.session.add(row)
            row.payload = record
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError(f"Failed to write {collection}/{owner}/{key}: {exc}",
                             f"{collection}/{owner}/{key}") from exc

    def delete_record(self, collection, owner, key):
        try:
            StoreRecord.query.filter_by(collection=collection, owner=str(owner), key=str(key)).delete()
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError(f"Failed to delete {collection}/{owner}/{key}: {exc}",
                             f"{collection}/{owner}/{key}") from exc

    def exists(self, collection, owner):
        try:
            return bool(db.session.query(
                StoreRecord.query.filter_by(collection=collection, owner=str(owner)).exists()
            ).scalar())
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to read {collection}/{owner}: {exc}", f"{collection}/{owner}") from exc

    def list_owners(self, collection):
        try:
            rows = db.session.query(StoreRecord.owner).filter_by(collection=collection).distinct().all()
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to list {collection}: {exc}", collection) from exc
        return [owner for (owner,) in rows]


class RealtimeDatabaseStore:
    """
    Record store served by a realtime database over its REST interface,
    where ``GET {base}/{path}.json`` returns the JSON tree at that path.
    No timeout is applied unless one is configured, and nothing is retried.
    """

    def __init__(self, base_url, auth_token=None, timeout=None, session=None):
        self.base_url = base_url.rstrip('/')
        self.auth_token = auth_token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _url(self, *parts):
        return f"{self.base_url}/{'/'.join(str(p) for p in parts)}.json"

    def _request(self, method, path_parts, params=None, payload=None):
        params = dict(params or {})
        if self.auth_token:
            params['auth'] = self.auth_token
        url = self._url(*path_parts)
        try:
            response = self.session.request(method, url, params=params, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise StoreError(f"{method} {'/'.join(str(p) for p in path_parts)} failed: {exc}",
                             '/'.join(str(p) for p in path_parts)) from exc
        if method == 'DELETE':
            return None
        return response.json()

    def read_collection(self, collection, owner):
        return self._request('GET', (collection, owner))

    def write_record(self, collection, owner, key, record):
        self._request('PUT', (collection, owner, key), payload=record)

    def delete_record(self, collection, owner, key):
        self._request('DELETE', (collection, owner, key))

    def exists(self, collection, owner):
        return self._request('GET', (collection, owner), params={'shallow': 'true'}) is not None

    def list_owners(self, collection):
        tree = self._request('GET', (collection,), params={'shallow': 'true'})
        return list((tree or {}).keys())


def build_record_store(config):
    """Pick the store backend from app config."""
    base_url = config.get('DATA_STORE_URL')
    if not base_url:
        return SqlRecordStore()
    timeout = config.get('DATA_STORE_TIMEOUT')
    try:
        timeout = float(timeout) if timeout else None
    except (TypeError, ValueError):
        logger.warning("Ignoring invalid DATA_STORE_TIMEOUT %r", timeout)
        timeout = None
    logger.info("Using realtime database store at %s", base_url)
    return RealtimeDatabaseStore(base_url, auth_token=config.get('DATA_STORE_AUTH'), timeout=timeout)
