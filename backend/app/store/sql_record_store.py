"""
store/sql_record_store.py — Record store over the `records` table.

Layer rules:
  - No Flask imports. Receives a SQLAlchemy Session.
  - put()/delete() only flush; commit() is called once per operation by the
    lifecycle (or by the route for non-expense writes).
  - Any SQLAlchemyError rolls the session back and surfaces as
    PersistenceError, so no half-written record is ever committed.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.errors import PersistenceError
from backend.app.models.record import Record
from backend.app.store.record_store import RecordStore, matches

logger = logging.getLogger(__name__)


def _parse_created_at(value) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


class SqlRecordStore(RecordStore):

    def __init__(self, session: Session) -> None:
        self.session = session

    def _fail(self, action: str, error: SQLAlchemyError) -> PersistenceError:
        logger.error("Record store %s failed: %s", action, error)
        self.session.rollback()
        return PersistenceError(f"Could not {action}. No changes were saved.")

    def get(self, collection: str, record_id: str) -> dict | None:
        try:
            row = self.session.get(Record, (collection, record_id))
        except SQLAlchemyError as exc:
            raise self._fail(f"read {collection}/{record_id}", exc) from exc
        return dict(row.payload) if row is not None else None

    def list(self, collection: str, filter: dict | None = None) -> list[dict]:
        stmt = select(Record).where(Record.collection == collection)
        if filter and "group_id" in filter:
            stmt = stmt.where(Record.group_id == filter["group_id"])
        try:
            rows = self.session.execute(stmt).scalars().all()
        except SQLAlchemyError as exc:
            raise self._fail(f"list {collection}", exc) from exc
        return [dict(r.payload) for r in rows if matches(r.payload, filter)]

    def put(self, collection: str, record: dict) -> dict:
        record_id = record.get("id")
        if not record_id:
            raise ValueError("Records must carry an 'id' before they are stored.")
        try:
            row = self.session.get(Record, (collection, record_id))
            if row is None:
                row = Record(collection=collection, id=record_id)
                self.session.add(row)
            # Assign a fresh dict so the JSON column is marked dirty.
            row.payload = dict(record)
            row.group_id = record.get("group_id")
            row.created_at = _parse_created_at(record.get("created_at"))
            self.session.flush()
        except SQLAlchemyError as exc:
            raise self._fail(f"write {collection}/{record_id}", exc) from exc
        return dict(record)

    def delete(self, collection: str, record_id: str) -> bool:
        try:
            row = self.session.get(Record, (collection, record_id))
            if row is None:
                return False
            self.session.delete(row)
            self.session.flush()
        except SQLAlchemyError as exc:
            raise self._fail(f"delete {collection}/{record_id}", exc) from exc
        return True

    def commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail("commit", exc) from exc

    def rollback(self) -> None:
        self.session.rollback()
