"""
store/record_store.py — Record-store interface and the in-memory implementation.

The core never talks to a database directly. Repositories and services go
through this interface:

    get(collection, id)            -> dict | None
    list(collection, filter=None)  -> list[dict]
    put(collection, record)        -> dict      (insert or full replace by id)
    delete(collection, id)         -> bool      (False when absent)
    commit() / rollback()

Records are JSON-compatible dicts with a string "id" key. Collections used by
the application: users, groups, expenses.

Concurrency: last write wins. There is no locking across requests beyond
keeping a single store operation atomic. Uncommitted writes belong to the
thread that made them.
"""

from __future__ import annotations

import abc
import copy
import threading
from typing import Any

USERS    = "users"
GROUPS   = "groups"
EXPENSES = "expenses"

COLLECTIONS = (USERS, GROUPS, EXPENSES)


def matches(record: dict, filter: dict | None) -> bool:
    """True if every key in `filter` equals the record's value for that key."""
    if not filter:
        return True
    return all(record.get(key) == value for key, value in filter.items())


class RecordStore(abc.ABC):

    @abc.abstractmethod
    def get(self, collection: str, record_id: str) -> dict | None:
        ...

    @abc.abstractmethod
    def list(self, collection: str, filter: dict | None = None) -> list[dict]:
        ...

    @abc.abstractmethod
    def put(self, collection: str, record: dict) -> dict:
        ...

    @abc.abstractmethod
    def delete(self, collection: str, record_id: str) -> bool:
        ...

    def commit(self) -> None:
        """Makes every write since the last commit durable."""

    def rollback(self) -> None:
        """Discards every write since the last commit."""


class InMemoryRecordStore(RecordStore):
    """
    Dict-backed store. Used by unit tests and when STORE_BACKEND=memory.

    Writes are journaled per thread, so rollback() undoes only the calling
    thread's writes since its last commit(). A request that fails never
    discards another request's pending writes. Returned records are
    copies; mutating them never changes the stored data.
    """

    _MISSING = object()

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict]] = {c: {} for c in COLLECTIONS}
        self._local = threading.local()
        self._lock = threading.RLock()

    @property
    def _journal(self) -> list[tuple[str, str, Any]]:
        journal = getattr(self._local, "journal", None)
        if journal is None:
            journal = self._local.journal = []
        return journal

    def _bucket(self, collection: str) -> dict[str, dict]:
        return self._data.setdefault(collection, {})

    def get(self, collection: str, record_id: str) -> dict | None:
        with self._lock:
            record = self._bucket(collection).get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def list(self, collection: str, filter: dict | None = None) -> list[dict]:
        with self._lock:
            return [
                copy.deepcopy(r)
                for r in self._bucket(collection).values()
                if matches(r, filter)
            ]

    def put(self, collection: str, record: dict) -> dict:
        record_id = record.get("id")
        if not record_id:
            raise ValueError("Records must carry an 'id' before they are stored.")
        with self._lock:
            bucket = self._bucket(collection)
            previous = bucket.get(record_id, self._MISSING)
            self._journal.append((collection, record_id, previous))
            bucket[record_id] = copy.deepcopy(record)
        return copy.deepcopy(record)

    def delete(self, collection: str, record_id: str) -> bool:
        with self._lock:
            bucket = self._bucket(collection)
            if record_id not in bucket:
                return False
            self._journal.append((collection, record_id, bucket.pop(record_id)))
            return True

    def commit(self) -> None:
        with self._lock:
            self._journal.clear()

    def rollback(self) -> None:
        with self._lock:
            while self._journal:
                collection, record_id, previous = self._journal.pop()
                bucket = self._bucket(collection)
                if previous is self._MISSING:
                    bucket.pop(record_id, None)
                else:
                    bucket[record_id] = previous
