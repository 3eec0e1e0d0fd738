"""Persistence gateway: one get/set/add/update/delete contract per collection.

Two implementations share the contract:

- ``MemoryGateway`` keeps deep-copied lists in process memory.
- ``SqlGateway`` maps each collection onto a Flask-SQLAlchemy table.

Records are plain dicts. Every read hands back fresh copies, so callers can
never mutate the store through a reference they were given. The gateway
offers no cross-collection transactions.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from errors import PersistenceError, RecordMissing
from utils import new_id

logger = logging.getLogger(__name__)

SPARE_PARTS = "spare_parts"
CASES = "maintenance_cases"
TECHNICIANS = "technicians"
COLLECTIONS = (SPARE_PARTS, CASES, TECHNICIANS)

EXTENSION_KEY = "inventory_gateway"


def dedupe_by_id(records: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Collapse repeated deliveries of the same record.

    The last copy of an id wins; order follows first appearance.
    """
    latest: Dict[Any, Dict[str, Any]] = {}
    for record in records:
        latest[record.get("id")] = record
    return list(latest.values())


class PersistenceGateway(ABC):
    @abstractmethod
    def get(self, collection: str) -> List[Dict[str, Any]]:
        """Return every record in ``collection``."""

    @abstractmethod
    def set(self, collection: str, items: Iterable[Dict[str, Any]]) -> None:
        """Replace the whole collection."""

    @abstractmethod
    def add(self, collection: str, item: Dict[str, Any]) -> Dict[str, Any]:
        """Insert ``item`` (an id is assigned when missing) and return the stored record."""

    @abstractmethod
    def update(self, collection: str, record_id: str, fields: Dict[str, Any]) -> None:
        """Overwrite ``fields`` on one record. Raises ``RecordMissing``."""

    @abstractmethod
    def delete(self, collection: str, record_id: str) -> None:
        """Remove one record. Raises ``RecordMissing``."""


class MemoryGateway(PersistenceGateway):
    def __init__(self, collections: Iterable[str] = COLLECTIONS):
        self._data: Dict[str, List[Dict[str, Any]]] = {key: [] for key in collections}
        self._guard = threading.Lock()

    def _collection(self, collection: str) -> List[Dict[str, Any]]:
        try:
            return self._data[collection]
        except KeyError:
            raise PersistenceError(f"Unknown collection: {collection}") from None

    def _index(self, collection: str, record_id: str) -> int:
        for index, record in enumerate(self._collection(collection)):
            if record.get("id") == record_id:
                return index
        raise RecordMissing(collection, record_id)

    def get(self, collection):
        with self._guard:
            return copy.deepcopy(self._collection(collection))

    def set(self, collection, items):
        with self._guard:
            self._collection(collection)
            self._data[collection] = [copy.deepcopy(dict(item)) for item in items]

    def add(self, collection, item):
        record = copy.deepcopy(dict(item))
        record.setdefault("id", None)
        if not record["id"]:
            record["id"] = new_id()
        with self._guard:
            self._collection(collection).append(record)
        return copy.deepcopy(record)

    def update(self, collection, record_id, fields):
        changes = {k: copy.deepcopy(v) for k, v in fields.items() if k != "id"}
        with self._guard:
            index = self._index(collection, record_id)
            records = self._collection(collection)
            records[index] = {**records[index], **changes}

    def delete(self, collection, record_id):
        with self._guard:
            index = self._index(collection, record_id)
            del self._collection(collection)[index]


class SqlGateway(PersistenceGateway):
    """Gateway over Flask-SQLAlchemy tables.

    ``tables`` maps collection keys to model classes that implement
    ``RecordMixin``. Each call commits on its own; on a database error the
    session is rolled back and ``PersistenceError`` is raised.
    """

    def __init__(self, db, tables: Dict[str, Any]):
        self.db = db
        self.tables = dict(tables)

    def _model(self, collection: str):
        try:
            return self.tables[collection]
        except KeyError:
            raise PersistenceError(f"Unknown collection: {collection}") from None

    def _commit(self, action: str, collection: str) -> None:
        try:
            self.db.session.commit()
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            logger.error("Gateway %s on %s failed: %s", action, collection, exc)
            raise PersistenceError(f"Could not {action} {collection}: {exc}") from exc

    def _row(self, collection: str, record_id: str):
        try:
            row = self.db.session.get(self._model(collection), record_id)
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            raise PersistenceError(f"Could not read {collection}: {exc}") from exc
        if row is None:
            raise RecordMissing(collection, record_id)
        return row

    def get(self, collection):
        model = self._model(collection)
        try:
            rows = self.db.session.execute(self.db.select(model)).scalars().all()
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            raise PersistenceError(f"Could not read {collection}: {exc}") from exc
        return [row.to_record() for row in rows]

    def set(self, collection, items):
        model = self._model(collection)
        try:
            self.db.session.execute(self.db.delete(model))
            for item in items:
                self.db.session.add(model.from_record(item))
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            raise PersistenceError(f"Could not replace {collection}: {exc}") from exc
        self._commit("replace", collection)

    def add(self, collection, item):
        record = dict(item)
        if not record.get("id"):
            record["id"] = new_id()
        row = self._model(collection).from_record(record)
        self.db.session.add(row)
        self._commit("add to", collection)
        return row.to_record()

    def update(self, collection, record_id, fields):
        row = self._row(collection, record_id)
        row.apply(fields)
        self._commit("update", collection)

    def delete(self, collection, record_id):
        row = self._row(collection, record_id)
        self.db.session.delete(row)
        self._commit("delete from", collection)


def init_gateway(app) -> PersistenceGateway:
    """Build the configured gateway and attach it to ``app.extensions``."""
    backend = app.config.get("STORAGE_BACKEND", "sql")
    if backend == "memory":
        gateway = MemoryGateway()
    elif backend == "sql":
        from extensions import db
        from modules.cases.models import MaintenanceCaseRow
        from modules.spare_parts.models import SparePartRow
        from modules.technicians.models import TechnicianRow

        gateway = SqlGateway(db, {
            SPARE_PARTS: SparePartRow,
            CASES: MaintenanceCaseRow,
            TECHNICIANS: TechnicianRow,
        })
    else:
        raise ValueError(f"Unknown STORAGE_BACKEND: {backend!r}")

    app.extensions[EXTENSION_KEY] = gateway
    logger.info("Inventory storage backend: %s", backend)
    return gateway


def get_gateway() -> PersistenceGateway:
    return current_app.extensions[EXTENSION_KEY]
