"""
Keyed record store used by the coordinators.

Every operation is atomic for a single key; nothing spans keys. Two backends
are provided and picked once at startup by :func:`create_store`.
"""

import copy
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import ExitStack, contextmanager
from typing import Callable, Dict, List, Optional

from flask import Flask
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .database import MODELS, db, init_database

logger = logging.getLogger(__name__)

CERTIFICATES = "certificates"
INSTITUTES = "institutes"
UNIQUE_IDS = "unique_ids"
SAGAS = "sagas"

TABLES = (CERTIFICATES, INSTITUTES, UNIQUE_IDS, SAGAS)

Mutator = Callable[[dict], dict]


class StoreError(Exception):
    pass


class RecordExists(StoreError):
    pass


class RecordNotFound(StoreError):
    pass


class Store(ABC):
    @abstractmethod
    def insert(self, table: str, key: str, record: dict) -> None:
        """Insert ``record`` under ``key``; raise RecordExists if the key is taken."""

    @abstractmethod
    def get(self, table: str, key: str) -> dict:
        ...

    @abstractmethod
    def update(self, table: str, key: str, mutator: Mutator) -> dict:
        """Apply ``mutator`` to a copy of the record and persist its return value."""

    @abstractmethod
    def delete(self, table: str, key: str) -> None:
        ...

    @abstractmethod
    def find(self, table: str, **filters) -> List[dict]:
        ...

    def exists(self, table: str, key: str) -> bool:
        try:
            self.get(table, key)
        except RecordNotFound:
            return False
        return True


def _check_table(table):
    if table not in TABLES:
        raise StoreError(f"unknown table {table!r}")


# ---------------- SQL BACKEND ----------------
class SqlStore(Store):
    def __init__(self, app: Flask):
        self.app = app
        # sqlite allows one writer; writes from this process queue here
        self._write_lock = threading.Lock()

    @classmethod
    def from_uri(cls, uri: str) -> "SqlStore":
        app = Flask(__name__)
        init_database(app, uri)
        return cls(app)

    @staticmethod
    def _row_to_dict(row) -> dict:
        return {c.name: getattr(row, c.name) for c in row.__table__.columns if c.name != "record_key"}

    @contextmanager
    def _session(self, lock=False):
        with ExitStack() as stack:
            if lock:
                stack.enter_context(self._write_lock)
            stack.enter_context(self.app.app_context())
            try:
                yield db.session
            except SQLAlchemyError as exc:
                db.session.rollback()
                if isinstance(exc, IntegrityError):
                    raise
                raise StoreError(str(exc)) from exc

    def insert(self, table, key, record):
        _check_table(table)
        model = MODELS[table]
        try:
            with self._session(lock=True) as session:
                session.add(model(record_key=key, **record))
                session.commit()
        except IntegrityError as exc:
            raise RecordExists(f"{table}/{key} already exists") from exc

    def get(self, table, key):
        _check_table(table)
        with self._session() as session:
            row = session.get(MODELS[table], key)
            if row is None:
                raise RecordNotFound(f"{table}/{key} not found")
            return self._row_to_dict(row)

    def update(self, table, key, mutator):
        _check_table(table)
        with self._session(lock=True) as session:
            row = session.get(MODELS[table], key)
            if row is None:
                raise RecordNotFound(f"{table}/{key} not found")
            updated = mutator(self._row_to_dict(row))
            for name, value in updated.items():
                setattr(row, name, value)
            session.commit()
            return self._row_to_dict(row)

    def delete(self, table, key):
        _check_table(table)
        with self._session(lock=True) as session:
            row = session.get(MODELS[table], key)
            if row is None:
                raise RecordNotFound(f"{table}/{key} not found")
            session.delete(row)
            session.commit()

    def find(self, table, **filters):
        _check_table(table)
        with self._session() as session:
            rows = session.query(MODELS[table]).filter_by(**filters).all()
            return [self._row_to_dict(row) for row in rows]


# ---------------- FILE BACKEND ----------------
class FileStore(Store):
    """JSON document on disk, rewritten atomically after every mutation."""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.RLock()
        self._data: Dict[str, Dict[str, dict]] = {table: {} for table in TABLES}
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                loaded = json.load(f)
            for table in TABLES:
                self._data[table].update(loaded.get(table, {}))

    def _flush(self):
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise StoreError(f"could not write {self.path}: {exc}") from exc

    def insert(self, table, key, record):
        _check_table(table)
        with self._lock:
            if key in self._data[table]:
                raise RecordExists(f"{table}/{key} already exists")
            self._data[table][key] = copy.deepcopy(record)
            try:
                self._flush()
            except StoreError:
                del self._data[table][key]
                raise

    def get(self, table, key):
        _check_table(table)
        with self._lock:
            try:
                return copy.deepcopy(self._data[table][key])
            except KeyError:
                raise RecordNotFound(f"{table}/{key} not found") from None

    def update(self, table, key, mutator):
        _check_table(table)
        with self._lock:
            current = self._data[table].get(key)
            if current is None:
                raise RecordNotFound(f"{table}/{key} not found")
            updated = mutator(copy.deepcopy(current))
            self._data[table][key] = copy.deepcopy(updated)
            try:
                self._flush()
            except StoreError:
                self._data[table][key] = current
                raise
            return copy.deepcopy(updated)

    def delete(self, table, key):
        _check_table(table)
        with self._lock:
            current = self._data[table].pop(key, None)
            if current is None:
                raise RecordNotFound(f"{table}/{key} not found")
            try:
                self._flush()
            except StoreError:
                self._data[table][key] = current
                raise

    def find(self, table, **filters):
        _check_table(table)
        with self._lock:
            return [
                copy.deepcopy(record)
                for record in self._data[table].values()
                if all(record.get(name) == value for name, value in filters.items())
            ]


def create_store(settings, app: Optional[Flask] = None) -> Store:
    if settings.store_backend == "file":
        logger.info("using file store at %s", settings.store_file)
        return FileStore(settings.store_file)
    if settings.store_backend == "sql":
        logger.info("using sql store at %s", settings.database_uri)
        if app is None:
            return SqlStore.from_uri(settings.database_uri)
        init_database(app, settings.database_uri)
        return SqlStore(app)
    raise ValueError(f"unknown store backend {settings.store_backend!r}")
